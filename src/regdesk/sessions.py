"""Single active session management.

The session is an immutable :class:`Session` value handed to every operation.
The ``active_session`` table only keeps a copy of it so a desktop crash does
not silently log the user out; erasing that row is the canonical logout.

The role is captured at login. A promotion or demotion does not change an
existing session unless it is read with ``refresh_role=True``; otherwise the
user has to log in again for the new role to apply.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session as DbSession

from .database import SessionRecord
from .errors import InvalidCredential, NotFound
from .models.user import Role, User
from .passwords import verify_password

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    """The authenticated context of the desk operator."""

    user_id: int
    role: Role


class SessionManager:
    """Create, read and erase the single active session row."""

    def __init__(self, db: DbSession):
        self.db = db

    def find_login_user(self, identifier: str) -> Optional[User]:
        identifier = (identifier or "").strip()
        if not identifier:
            return None
        return (
            self.db.query(User)
            .filter(
                User.is_deleted.is_(False),
                or_(User.name == identifier, func.lower(User.email) == identifier.lower()),
            )
            .first()
        )

    def login(self, identifier: str, password: str) -> Session:
        """Authenticate ``identifier`` and replace any prior session.

        Raises:
            NotFound: no live user has that name or email.
            InvalidCredential: the password does not match.
        """
        user = self.find_login_user(identifier)
        if user is None:
            raise NotFound("User not found", field="identifier")
        if not verify_password(password, user.password_hash):
            raise InvalidCredential("Invalid credentials", field="password")

        session = Session(user_id=user.id, role=Role(user.role))
        self.db.query(SessionRecord).delete()
        self.db.add(SessionRecord(id=1, user_id=session.user_id, role=session.role.value))
        self.db.commit()
        logger.info("user %s logged in as %s", session.user_id, session.role.value)
        return session

    def read(self, refresh_role: bool = False) -> Optional[Session]:
        record = self.db.get(SessionRecord, 1)
        if record is None:
            return None
        if not refresh_role:
            return Session(user_id=record.user_id, role=Role(record.role))

        user = self.db.get(User, record.user_id)
        if user is None or user.is_deleted:
            logger.info("session user %s no longer active, erasing session", record.user_id)
            self.erase()
            return None
        return Session(user_id=user.id, role=Role(user.role))

    def erase(self) -> None:
        deleted = self.db.query(SessionRecord).delete()
        self.db.commit()
        if deleted:
            logger.info("session erased")
