"""Typed failures raised by the registration core.

Every operation in :mod:`regdesk.services` either returns normally or raises
one of the :class:`RegistryError` subclasses below. The local API bridge
turns them into a tagged error envelope so no half-applied mutation or raw
storage error ever reaches the desktop shell.
"""

from typing import Dict, Optional


class RegistryError(Exception):
    """Base class for all failures surfaced to callers."""

    kind = "RegistryError"
    status_code = 500

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"kind": self.kind, "message": self.message, "field": self.field}


class NotFound(RegistryError):
    """The subject of the request does not exist or was soft-deleted."""

    kind = "NotFound"
    status_code = 404


class InvalidCredential(RegistryError):
    """Password did not match the stored digest."""

    kind = "InvalidCredential"
    status_code = 401


class PermissionDenied(RegistryError):
    """Role hierarchy or self-protection rule violated."""

    kind = "PermissionDenied"
    status_code = 403


class NoActiveSession(RegistryError):
    """Operation requires a logged-in user."""

    kind = "NoActiveSession"
    status_code = 401

    def __init__(self, message: str = "Not logged in"):
        super().__init__(message)


class ValidationError(RegistryError):
    """Malformed or missing field. Always names the offending field."""

    kind = "ValidationError"
    status_code = 422

    def __init__(self, field: str, message: str):
        super().__init__(message, field=field)


class StorageError(RegistryError):
    """The embedded database failed in a way the caller may retry."""

    kind = "StorageError"


class StoreInvariantError(RegistryError):
    """The store reported a state that unique identifiers make impossible."""

    kind = "StoreInvariantError"
