"""Operations exposed to the desktop shell.

Each function opens its own database session, commits once and rolls back on
any failure, so a row change and its audit entry are stored together or not
at all. Failures are raised as :mod:`regdesk.errors` types.
"""

import logging
from typing import Any, List, Mapping, Optional

from prometheus_client import Counter
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session as DbSession

from . import profiles
from .auth import Action, AuthorizationGuard, require_session
from .config import settings
from .database import Participant, Score, SessionLocal
from .errors import (
    InvalidCredential,
    NotFound,
    PermissionDenied,
    RegistryError,
    StorageError,
    ValidationError,
)
from .models.user import Role, User
from .passwords import hash_password, is_strong, verify_password
from .sessions import Session, SessionManager


logger = logging.getLogger(__name__)

LOGIN_COUNTER = Counter("logins_total", "Login attempts by outcome", ["outcome"])
USER_COUNTER = Counter("users_created_total", "Users created")
PARTICIPANT_COUNTER = Counter("participants_created_total", "Participants registered")

UNIQUE_COLUMNS = ("email", "name")


def _guard() -> AuthorizationGuard:
    return AuthorizationGuard(settings.promotion_requires_owner)


def _duplicate_field(exc: IntegrityError) -> str:
    detail = str(exc.orig).lower()
    for column in UNIQUE_COLUMNS:
        if f".{column}" in detail:
            return column
    return "email"


def _handle_service_error(db: DbSession, exc: Exception) -> None:
    """Rollback the transaction and re-raise ``exc`` as a registry error."""
    db.rollback()
    if isinstance(exc, RegistryError):
        raise exc
    if isinstance(exc, IntegrityError):
        logger.warning("uniqueness violation: %s", exc.orig)
        raise ValidationError(_duplicate_field(exc), "Duplicate value") from exc
    logger.exception("service layer error", exc_info=exc)
    if isinstance(exc, SQLAlchemyError):
        raise StorageError("Database error") from exc
    raise exc


def _live_user(db: DbSession, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id, User.is_deleted.is_(False)).first()
    if user is None:
        raise NotFound("User not found")
    return user


def _live_participant(db: DbSession, participant_id: int) -> Participant:
    participant = (
        db.query(Participant)
        .filter(Participant.id == participant_id, Participant.is_deleted.is_(False))
        .first()
    )
    if participant is None:
        raise NotFound("Participant not found")
    return participant


def _require_strong(field: str, password: Optional[str]) -> str:
    if not password:
        raise ValidationError(field, "Password is required.")
    if not is_strong(password):
        raise ValidationError(
            field,
            "Password must be at least 8 characters and include upper and lower "
            "case letters, a digit and a symbol.",
        )
    return password


# Sessions -------------------------------------------------------------------


def login(identifier: str, password: str) -> Session:
    """Authenticate by name or email and start the single active session."""
    db: DbSession = SessionLocal()
    try:
        session = SessionManager(db).login(identifier, password)
        LOGIN_COUNTER.labels(outcome="success").inc()
        return session
    except (NotFound, InvalidCredential) as exc:
        LOGIN_COUNTER.labels(outcome=exc.kind).inc()
        logger.info("login failed for %r: %s", identifier, exc.kind)
        _handle_service_error(db, exc)
    except Exception as exc:
        _handle_service_error(db, exc)
    finally:
        db.close()


def logout() -> None:
    db: DbSession = SessionLocal()
    try:
        SessionManager(db).erase()
    except Exception as exc:
        _handle_service_error(db, exc)
    finally:
        db.close()


def current_session() -> Optional[Session]:
    """Return the persisted session, or None when nobody is logged in."""
    db: DbSession = SessionLocal()
    try:
        return SessionManager(db).read(refresh_role=settings.refresh_session_role)
    except Exception as exc:
        _handle_service_error(db, exc)
    finally:
        db.close()


# Users ----------------------------------------------------------------------


def provision_owner(data: Mapping[str, Any]) -> int:
    """Seed the single OWNER account of a fresh store."""
    db: DbSession = SessionLocal()
    try:
        if db.query(User.id).filter(User.role == Role.OWNER.value).first():
            raise ValidationError("role", "An owner account already exists")
        fields = profiles.require_complete(data)
        profiles.check_login_name(fields)
        password = _require_strong("password", data.get("password"))
        owner = User(**fields, role=Role.OWNER.value, password_hash=hash_password(password))
        db.add(owner)
        db.commit()
        logger.info("provisioned owner account %s", owner.id)
        return owner.id
    except Exception as exc:
        _handle_service_error(db, exc)
    finally:
        db.close()


def create_user(session: Optional[Session], data: Mapping[str, Any]) -> int:
    """Create an OPERATOR account. Requires a MANAGER or OWNER session."""
    session = _guard().authorize(session, Action.CREATE_USER)
    role = data.get("role") or Role.OPERATOR.value
    if role != Role.OPERATOR.value:
        raise ValidationError("role", "New users are always created as OPERATOR")
    fields = profiles.require_complete(data)
    profiles.check_login_name(fields)
    password = _require_strong("password", data.get("password"))

    db: DbSession = SessionLocal()
    try:
        user = User(**fields, role=Role.OPERATOR.value, password_hash=hash_password(password))
        db.add(user)
        db.commit()
        USER_COUNTER.inc()
        logger.info("user %s created by %s", user.id, session.user_id)
        return user.id
    except Exception as exc:
        _handle_service_error(db, exc)
    finally:
        db.close()


def list_users(session: Optional[Session]) -> List[User]:
    """Return live users visible to the session's role."""
    session = require_session(session)
    hidden = [role.value for role in _guard().hidden_roles(session)]
    db: DbSession = SessionLocal()
    try:
        query = db.query(User).filter(User.is_deleted.is_(False))
        if hidden:
            query = query.filter(User.role.notin_(hidden))
        users = query.order_by(User.id).all()
        db.expunge_all()
        return users
    except Exception as exc:
        _handle_service_error(db, exc)
    finally:
        db.close()


def _change_user(session: Optional[Session], user_id: int, action: Action) -> None:
    guard = _guard()
    session = guard.authorize(session, action, target_id=user_id)
    db: DbSession = SessionLocal()
    try:
        target = _live_user(db, user_id)
        guard.authorize_target(session, action, Role(target.role))
        if action is Action.DELETE_USER:
            target.is_deleted = True
        elif action is Action.PROMOTE:
            target.role = Role.MANAGER.value
        else:
            target.role = Role.OPERATOR.value
        db.commit()
        logger.info("%s applied to user %s by %s", action.value, user_id, session.user_id)
    except Exception as exc:
        _handle_service_error(db, exc)
    finally:
        db.close()


def delete_user(session: Optional[Session], user_id: int) -> None:
    """Soft-delete a user below the session's role."""
    _change_user(session, user_id, Action.DELETE_USER)


def promote_to_manager(session: Optional[Session], user_id: int) -> None:
    _change_user(session, user_id, Action.PROMOTE)


def demote_to_operator(session: Optional[Session], user_id: int) -> None:
    _change_user(session, user_id, Action.DEMOTE)


def get_own_profile(session: Optional[Session]) -> User:
    session = require_session(session)
    db: DbSession = SessionLocal()
    try:
        user = _live_user(db, session.user_id)
        db.expunge(user)
        return user
    except Exception as exc:
        _handle_service_error(db, exc)
    finally:
        db.close()


def update_own_profile(session: Optional[Session], fields: Mapping[str, Any]) -> int:
    """Apply a partial update to the caller's own profile.

    Returns 0 when ``fields`` holds nothing to save.
    """
    session = require_session(session)
    profiles.check_login_name(fields)
    db: DbSession = SessionLocal()
    try:
        changed = profiles.apply_update(db, "user", session.user_id, fields, session.user_id)
        db.commit()
        return changed
    except Exception as exc:
        _handle_service_error(db, exc)
    finally:
        db.close()


def change_own_password(session: Optional[Session], old_password: str, new_password: str) -> None:
    """Replace the caller's password. Not recorded in the audit trail."""
    session = require_session(session)
    db: DbSession = SessionLocal()
    try:
        user = _live_user(db, session.user_id)
        if not verify_password(old_password, user.password_hash):
            raise InvalidCredential("Current password is incorrect", field="old_password")
        _require_strong("new_password", new_password)
        user.password_hash = hash_password(new_password)
        db.commit()
        logger.info("user %s changed password", session.user_id)
    except Exception as exc:
        _handle_service_error(db, exc)
    finally:
        db.close()


# Participants ---------------------------------------------------------------


def create_participant(session: Optional[Session], data: Mapping[str, Any]) -> int:
    session = require_session(session)
    fields = profiles.require_complete(data)
    db: DbSession = SessionLocal()
    try:
        participant = Participant(**fields)
        db.add(participant)
        db.commit()
        PARTICIPANT_COUNTER.inc()
        logger.info("participant %s registered by %s", participant.id, session.user_id)
        return participant.id
    except Exception as exc:
        _handle_service_error(db, exc)
    finally:
        db.close()


def list_participants(session: Optional[Session]) -> List[Participant]:
    require_session(session)
    db: DbSession = SessionLocal()
    try:
        rows = (
            db.query(Participant)
            .filter(Participant.is_deleted.is_(False))
            .order_by(Participant.created_at.desc(), Participant.id.desc())
            .all()
        )
        db.expunge_all()
        return rows
    except Exception as exc:
        _handle_service_error(db, exc)
    finally:
        db.close()


def update_participant(
    session: Optional[Session], participant_id: int, fields: Mapping[str, Any]
) -> int:
    """Apply a partial update to a participant. Returns 0 when nothing to save."""
    session = require_session(session)
    db: DbSession = SessionLocal()
    try:
        changed = profiles.apply_update(
            db, "participant", participant_id, fields, session.user_id
        )
        db.commit()
        return changed
    except Exception as exc:
        _handle_service_error(db, exc)
    finally:
        db.close()


def delete_participant(session: Optional[Session], participant_id: int) -> None:
    session = require_session(session)
    db: DbSession = SessionLocal()
    try:
        _live_participant(db, participant_id).is_deleted = True
        db.commit()
        logger.info("participant %s deleted by %s", participant_id, session.user_id)
    except Exception as exc:
        _handle_service_error(db, exc)
    finally:
        db.close()


def list_scores(session: Optional[Session]) -> List[Score]:
    """Return scores of live participants, oldest first."""
    require_session(session)
    db: DbSession = SessionLocal()
    try:
        rows = (
            db.query(Score)
            .join(Participant, Participant.id == Score.customer_id)
            .filter(Participant.is_deleted.is_(False))
            .order_by(Score.date, Score.id)
            .all()
        )
        db.expunge_all()
        return rows
    except Exception as exc:
        _handle_service_error(db, exc)
    finally:
        db.close()


def get_audit_trail(
    session: Optional[Session], subject_type: str, subject_id: int
) -> profiles.AuditTrail:
    session = require_session(session)
    if subject_type not in profiles.SUBJECT_MODELS:
        raise ValidationError("subject_type", f"Unknown subject type: {subject_type}")
    if subject_type == "user" and not _guard().may_read_user_audit(session, subject_id):
        raise PermissionDenied("Insufficient role")
    db: DbSession = SessionLocal()
    try:
        if subject_type == "user":
            _live_user(db, subject_id)
        else:
            _live_participant(db, subject_id)
        return profiles.audit_trail(db, subject_type, subject_id)
    except Exception as exc:
        _handle_service_error(db, exc)
    finally:
        db.close()
