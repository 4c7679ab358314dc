"""Authorization guard for user-management actions.

Rules are evaluated against the caller's session, never against who owns the
target row. Self-protection is checked first and wins over role rank: nobody
can delete, promote or demote their own account.
"""

import enum
import logging
from typing import Optional, Set

from prometheus_client import Counter

from .config import settings
from .errors import NoActiveSession, PermissionDenied, ValidationError
from .models.user import Role
from .sessions import Session

logger = logging.getLogger(__name__)

PERMISSION_DENIED_COUNTER = Counter(
    "permission_denied_total", "Actions rejected by the authorization guard", ["action"]
)


class Action(str, enum.Enum):
    CREATE_USER = "create_user"
    DELETE_USER = "delete_user"
    PROMOTE = "promote_to_manager"
    DEMOTE = "demote_to_operator"


SELF_PROTECTED = {Action.DELETE_USER, Action.PROMOTE, Action.DEMOTE}

# Role a promote/demote target must currently hold.
SOURCE_ROLE = {Action.PROMOTE: Role.OPERATOR, Action.DEMOTE: Role.MANAGER}


def require_session(session: Optional[Session]) -> Session:
    if session is None:
        raise NoActiveSession()
    return session


class AuthorizationGuard:
    """Allow or deny user-management actions by role hierarchy."""

    def __init__(self, promotion_requires_owner: Optional[bool] = None):
        if promotion_requires_owner is None:
            promotion_requires_owner = settings.promotion_requires_owner
        self.promotion_requires_owner = promotion_requires_owner

    def _deny(self, action: Action, session: Session, reason: str) -> None:
        PERMISSION_DENIED_COUNTER.labels(action=action.value).inc()
        logger.warning(
            "denied %s for user %s (%s): %s",
            action.value,
            session.user_id,
            session.role.value,
            reason,
        )
        raise PermissionDenied(reason)

    def minimum_role(self, action: Action) -> Role:
        if action in (Action.PROMOTE, Action.DEMOTE):
            return Role.OWNER if self.promotion_requires_owner else Role.MANAGER
        return Role.MANAGER

    def authorize(
        self, session: Optional[Session], action: Action, target_id: Optional[int] = None
    ) -> Session:
        """Check everything that does not need the target row.

        Returns the active session so callers can chain on it.
        """
        session = require_session(session)
        if action in SELF_PROTECTED and target_id == session.user_id:
            self._deny(action, session, "You cannot change or delete your own account")
        if session.role.rank < self.minimum_role(action).rank:
            self._deny(action, session, "Insufficient role")
        return session

    def authorize_target(self, session: Session, action: Action, target_role: Role) -> None:
        """Check the rules that depend on the target's current role."""
        if target_role is Role.OWNER:
            self._deny(action, session, "The owner account cannot be modified")
        if action is Action.DELETE_USER and target_role.rank >= session.role.rank:
            self._deny(action, session, "You may only delete users below your role")
        expected = SOURCE_ROLE.get(action)
        if expected is not None and target_role is not expected:
            raise ValidationError("role", f"User is not an {expected.value}")

    def hidden_roles(self, session: Session) -> Set[Role]:
        """Roles whose rows are filtered out of user listings."""
        if session.role is Role.OWNER:
            return set()
        return {Role.OWNER}

    def may_read_user_audit(self, session: Session, subject_id: int) -> bool:
        return subject_id == session.user_id or session.role.rank >= Role.MANAGER.rank
