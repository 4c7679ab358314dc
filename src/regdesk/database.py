"""Database setup for the registration desk credential store."""

import sqlite3
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import settings

DATABASE_URL = settings.database_url

engine = create_engine(DATABASE_URL, future=True)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
Base = declarative_base()


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class Participant(Base):
    """A registered attendee (a "customer" in the desktop UI)."""

    __tablename__ = "participants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String, nullable=False)
    emergency_contact = Column(String, nullable=False)
    address = Column(String, nullable=False)
    date_of_birth = Column(String, nullable=False)
    gender = Column(String(1), nullable=False)
    blood_group = Column(String(3), nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Score(Base):
    """A score recorded for a participant on a given day."""

    __tablename__ = "scores"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("participants.id"), index=True, nullable=False)
    score = Column(Integer, default=0, nullable=False)
    date = Column(Date, default=date.today, nullable=False)


class AuditEntry(Base):
    """One append-only record of who changed a profile and when."""

    __tablename__ = "audit_entries"
    __table_args__ = (
        CheckConstraint("subject_type IN ('user', 'participant')", name="ck_audit_subject_type"),
    )

    id = Column(Integer, primary_key=True, index=True)
    subject_type = Column(String, nullable=False)
    subject_id = Column(Integer, index=True, nullable=False)
    modified_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    modified_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class SessionRecord(Base):
    """Persisted copy of the single active session.

    The primary key is pinned to 1 so the table can never hold more than one
    row.
    """

    __tablename__ = "active_session"
    __table_args__ = (CheckConstraint("id = 1", name="ck_single_session"),)

    id = Column(Integer, primary_key=True, default=1)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    role = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


def init_db(bind=None) -> None:
    """Create database tables if they do not exist."""
    from .models import user  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
