"""create credential store

Revision ID: 3b1c9d0a6f42
Revises: 
Create Date: 2026-10-19 09:12:31.480215

"""
from typing import Sequence, Union

from alembic import op
from regdesk.database import Base
from regdesk.models import user  # noqa: F401


# revision identifiers, used by Alembic.
revision: str = '3b1c9d0a6f42'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users, participants, scores, audit and session tables."""
    bind = op.get_bind()
    Base.metadata.create_all(bind)


def downgrade() -> None:
    """Drop every credential store table."""
    bind = op.get_bind()
    Base.metadata.drop_all(bind)
