"""Validation and audited partial updates of user and participant profiles."""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Mapping

from prometheus_client import Counter
from sqlalchemy import update
from sqlalchemy.orm import Session as DbSession

from .database import AuditEntry, Participant
from .errors import NotFound, StoreInvariantError, ValidationError
from .models.user import User

logger = logging.getLogger(__name__)

PROFILE_UPDATE_COUNTER = Counter(
    "profile_updates_total", "Audited profile updates applied", ["subject_type"]
)

# Order matters: the first failing field is the one reported.
PROFILE_FIELDS = (
    "name",
    "email",
    "phone",
    "emergency_contact",
    "address",
    "date_of_birth",
    "gender",
    "blood_group",
)
PHONE_FIELDS = ("phone", "emergency_contact")
GENDERS = ("M", "F", "O")
BLOOD_GROUPS = ("A+", "A-", "B+", "B-", "O+", "O-", "AB+", "AB-")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

SUBJECT_MODELS = {"user": User, "participant": Participant}


def _label(name: str) -> str:
    return name.replace("_", " ").capitalize()


def normalize(fields: Mapping[str, Any]) -> Dict[str, str]:
    """Validate and clean the profile fields present in ``fields``.

    Keys whose value is None are treated as omitted. Raises
    :class:`ValidationError` naming the first offending field.
    """
    unknown = [key for key in fields if key not in PROFILE_FIELDS]
    if unknown:
        raise ValidationError(unknown[0], f"Unknown field: {unknown[0]}")

    cleaned: Dict[str, str] = {}
    for name in PROFILE_FIELDS:
        value = fields.get(name)
        if value is None:
            continue
        text = str(value).strip()
        if not text:
            raise ValidationError(name, f"{_label(name)} is required.")

        if name in PHONE_FIELDS:
            text = re.sub(r"\D", "", text)
            if len(text) != 10:
                raise ValidationError(name, f"{_label(name)} must be exactly 10 digits.")
        elif name == "email":
            text = text.lower()
            if not EMAIL_RE.match(text):
                raise ValidationError(name, "Invalid email address.")
        elif name == "gender":
            text = text.upper()
            if text not in GENDERS:
                raise ValidationError(name, "Gender must be one of M, F or O.")
        elif name == "blood_group":
            text = text.upper()
            if text not in BLOOD_GROUPS:
                raise ValidationError(name, "Unknown blood group.")
        elif name == "date_of_birth":
            try:
                date.fromisoformat(text)
            except ValueError:
                raise ValidationError(name, "Date of birth must be YYYY-MM-DD.") from None
        cleaned[name] = text
    return cleaned


def check_login_name(fields: Mapping[str, Any]) -> None:
    """Reject a user name that could be mistaken for an email at login."""
    name = fields.get("name")
    if name is not None and "@" in str(name):
        raise ValidationError("name", "Name may not contain '@'.")


def require_complete(fields: Mapping[str, Any]) -> Dict[str, str]:
    """Normalize ``fields`` and require every profile field to be present."""
    for name in PROFILE_FIELDS:
        value = fields.get(name)
        if value is None or not str(value).strip():
            raise ValidationError(name, f"{_label(name)} is required.")
    return normalize({name: fields[name] for name in PROFILE_FIELDS})


def apply_update(
    db: DbSession,
    subject_type: str,
    subject_id: int,
    fields: Mapping[str, Any],
    actor_id: int,
) -> int:
    """Apply a partial profile update and append one audit entry.

    Returns the number of rows changed: 0 when ``fields`` holds nothing to
    apply, otherwise 1. The caller commits; on any error nothing is written.
    """
    model = SUBJECT_MODELS[subject_type]
    changes = normalize(fields)

    exists = (
        db.query(model.id)
        .filter(model.id == subject_id, model.is_deleted.is_(False))
        .first()
    )
    if exists is None:
        raise NotFound(f"{subject_type.capitalize()} not found")
    if not changes:
        return 0

    result = db.execute(
        update(model)
        .where(model.id == subject_id, model.is_deleted.is_(False))
        .values(**changes)
    )
    if result.rowcount > 1:
        db.rollback()
        raise StoreInvariantError(
            f"Update of {subject_type} {subject_id} touched {result.rowcount} rows"
        )
    if result.rowcount == 1:
        db.add(
            AuditEntry(
                subject_type=subject_type,
                subject_id=subject_id,
                modified_by=actor_id,
                modified_at=datetime.utcnow(),
            )
        )
        PROFILE_UPDATE_COUNTER.labels(subject_type=subject_type).inc()
        logger.info(
            "%s %s updated by user %s: %s",
            subject_type,
            subject_id,
            actor_id,
            sorted(changes),
        )
    return result.rowcount


@dataclass
class AuditTrail:
    """Parallel who/when sequences for one subject, oldest first."""

    modified_by: List[int] = field(default_factory=list)
    modified_at: List[datetime] = field(default_factory=list)


def audit_trail(db: DbSession, subject_type: str, subject_id: int) -> AuditTrail:
    entries = (
        db.query(AuditEntry)
        .filter(AuditEntry.subject_type == subject_type, AuditEntry.subject_id == subject_id)
        .order_by(AuditEntry.id)
        .all()
    )
    trail = AuditTrail()
    for entry in entries:
        trail.modified_by.append(entry.modified_by)
        trail.modified_at.append(entry.modified_at)
    return trail
