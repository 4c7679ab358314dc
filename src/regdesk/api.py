"""Loopback HTTP bridge between the desktop shell and the registration core.

Every route reads the persisted session, passes it explicitly to the
matching :mod:`regdesk.services` operation and wraps the outcome in a tagged
envelope: ``{"ok": true, "value": ...}`` or ``{"ok": false, "error": ...}``.
"""

import datetime as dt
import logging
from contextlib import asynccontextmanager
from typing import Generic, List, Optional, TypeVar

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import Counter
from pydantic import BaseModel, ConfigDict, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from . import services
from .config import settings
from .database import init_db
from .errors import RegistryError
from .sessions import Session

logger = logging.getLogger(__name__)

T = TypeVar("T")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    init_db()
    yield
    # No session may outlive the application.
    services.logout()
    logger.info("application shutdown, session erased")


limiter = Limiter(key_func=get_remote_address)
app = FastAPI(title=settings.api_title, lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Prometheus counter to track API requests by method, endpoint and status code
REQUEST_COUNTER = Counter(
    "api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log incoming requests and their outcomes while updating metrics."""
    logger.info("request %s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
        REQUEST_COUNTER.labels(
            method=request.method,
            endpoint=request.url.path,
            status=str(response.status_code),
        ).inc()
        logger.info(
            "response %s %s status %s",
            request.method,
            request.url.path,
            response.status_code,
        )
        return response
    except Exception:
        REQUEST_COUNTER.labels(
            method=request.method,
            endpoint=request.url.path,
            status="500",
        ).inc()
        logger.exception(
            "error handling %s %s", request.method, request.url.path
        )
        raise


@app.exception_handler(RegistryError)
async def registry_error_handler(request: Request, exc: RegistryError):
    return JSONResponse(
        status_code=exc.status_code, content={"ok": False, "error": exc.to_dict()}
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    loc = errors[0].get("loc", ()) if errors else ()
    field = str(loc[-1]) if loc else None
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(
        status_code=422,
        content={
            "ok": False,
            "error": {"kind": "ValidationError", "message": message, "field": field},
        },
    )


def get_session() -> Optional[Session]:
    """Resolve the caller's session from the persisted session row."""
    return services.current_session()


class Envelope(BaseModel, Generic[T]):
    """Successful result of an operation."""

    ok: bool = True
    value: T


class SessionOut(BaseModel):
    user_id: int
    role: str


class LoginRequest(BaseModel):
    identifier: str = Field(..., description="User name or email")
    password: str


class PasswordChangeRequest(BaseModel):
    old_password: str
    new_password: str


class ProfileFields(BaseModel):
    """Partial profile; omitted fields are left unchanged."""

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    emergency_contact: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[str] = None
    gender: Optional[str] = None
    blood_group: Optional[str] = None


class UserCreate(ProfileFields):
    password: Optional[str] = None
    role: Optional[str] = None


class ProfileOut(BaseModel):
    id: int
    name: str
    email: str
    phone: str
    emergency_contact: str
    address: str
    date_of_birth: str
    gender: str
    blood_group: str
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


class UserOut(ProfileOut):
    """Serialized user. The password hash is never part of it."""

    role: str


class ScoreOut(BaseModel):
    id: int
    customer_id: int
    score: int
    date: dt.date

    model_config = ConfigDict(from_attributes=True)


class AuditTrailOut(BaseModel):
    modified_by: List[int]
    modified_at: List[dt.datetime]


def _session_out(session: Optional[Session]) -> Optional[SessionOut]:
    if session is None:
        return None
    return SessionOut(user_id=session.user_id, role=session.role.value)


def _audit_out(trail) -> AuditTrailOut:
    return AuditTrailOut(modified_by=trail.modified_by, modified_at=trail.modified_at)


# Session --------------------------------------------------------------------


@app.post("/session/login", response_model=Envelope[SessionOut])
@limiter.limit(settings.login_rate_limit)
def login(request: Request, payload: LoginRequest):
    session = services.login(payload.identifier, payload.password)
    return Envelope(value=_session_out(session))


@app.get("/session", response_model=Envelope[Optional[SessionOut]])
def read_session(session: Optional[Session] = Depends(get_session)):
    return Envelope(value=_session_out(session))


@app.delete("/session", response_model=Envelope[None])
def erase_session():
    services.logout()
    return Envelope(value=None)


# Users ----------------------------------------------------------------------


@app.get("/users/me", response_model=Envelope[UserOut])
def get_own_profile(session: Optional[Session] = Depends(get_session)):
    user = services.get_own_profile(session)
    return Envelope(value=UserOut.model_validate(user))


@app.patch("/users/me", response_model=Envelope[int])
def update_own_profile(
    payload: ProfileFields, session: Optional[Session] = Depends(get_session)
):
    changed = services.update_own_profile(session, payload.model_dump(exclude_none=True))
    return Envelope(value=changed)


@app.post("/users/me/password", response_model=Envelope[None])
def change_own_password(
    payload: PasswordChangeRequest, session: Optional[Session] = Depends(get_session)
):
    services.change_own_password(session, payload.old_password, payload.new_password)
    return Envelope(value=None)


@app.post("/users", response_model=Envelope[int])
def create_user(payload: UserCreate, session: Optional[Session] = Depends(get_session)):
    user_id = services.create_user(session, payload.model_dump(exclude_none=True))
    return Envelope(value=user_id)


@app.get("/users", response_model=Envelope[List[UserOut]])
def list_users(session: Optional[Session] = Depends(get_session)):
    users = services.list_users(session)
    return Envelope(value=[UserOut.model_validate(u) for u in users])


@app.delete("/users/{user_id}", response_model=Envelope[None])
def delete_user(user_id: int, session: Optional[Session] = Depends(get_session)):
    services.delete_user(session, user_id)
    return Envelope(value=None)


@app.post("/users/{user_id}/promote", response_model=Envelope[None])
def promote_to_manager(user_id: int, session: Optional[Session] = Depends(get_session)):
    services.promote_to_manager(session, user_id)
    return Envelope(value=None)


@app.post("/users/{user_id}/demote", response_model=Envelope[None])
def demote_to_operator(user_id: int, session: Optional[Session] = Depends(get_session)):
    services.demote_to_operator(session, user_id)
    return Envelope(value=None)


@app.get("/users/{user_id}/audit", response_model=Envelope[AuditTrailOut])
def get_user_audit(user_id: int, session: Optional[Session] = Depends(get_session)):
    trail = services.get_audit_trail(session, "user", user_id)
    return Envelope(value=_audit_out(trail))


# Participants ---------------------------------------------------------------


@app.post("/participants", response_model=Envelope[int])
def create_participant(
    payload: ProfileFields, session: Optional[Session] = Depends(get_session)
):
    participant_id = services.create_participant(session, payload.model_dump(exclude_none=True))
    return Envelope(value=participant_id)


@app.get("/participants", response_model=Envelope[List[ProfileOut]])
def list_participants(session: Optional[Session] = Depends(get_session)):
    rows = services.list_participants(session)
    return Envelope(value=[ProfileOut.model_validate(p) for p in rows])


@app.patch("/participants/{participant_id}", response_model=Envelope[int])
def update_participant(
    participant_id: int,
    payload: ProfileFields,
    session: Optional[Session] = Depends(get_session),
):
    changed = services.update_participant(
        session, participant_id, payload.model_dump(exclude_none=True)
    )
    return Envelope(value=changed)


@app.delete("/participants/{participant_id}", response_model=Envelope[None])
def delete_participant(participant_id: int, session: Optional[Session] = Depends(get_session)):
    services.delete_participant(session, participant_id)
    return Envelope(value=None)


@app.get("/participants/{participant_id}/audit", response_model=Envelope[AuditTrailOut])
def get_participant_audit(
    participant_id: int, session: Optional[Session] = Depends(get_session)
):
    trail = services.get_audit_trail(session, "participant", participant_id)
    return Envelope(value=_audit_out(trail))


@app.get("/scores", response_model=Envelope[List[ScoreOut]])
def list_scores(session: Optional[Session] = Depends(get_session)):
    rows = services.list_scores(session)
    return Envelope(value=[ScoreOut.model_validate(s) for s in rows])
