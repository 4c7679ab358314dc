"""Session, authorization and credential core of the registration desk."""

from .api import app
from .sessions import Session, SessionManager

__all__ = ["app", "Session", "SessionManager"]
