import enum
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from ..database import Base


class Role(str, enum.Enum):
    """User roles, ordered by privilege."""

    OPERATOR = "OPERATOR"
    MANAGER = "MANAGER"
    OWNER = "OWNER"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS = {Role.OPERATOR: 1, Role.MANAGER: 2, Role.OWNER: 3}


class User(Base):
    """SQLAlchemy model for desk staff who can log in."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String, nullable=False)
    emergency_contact = Column(String, nullable=False)
    address = Column(String, nullable=False)
    date_of_birth = Column(String, nullable=False)
    gender = Column(String(1), nullable=False)
    blood_group = Column(String(3), nullable=False)
    role = Column(String, default=Role.OPERATOR.value, nullable=False)
    password_hash = Column(String, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
