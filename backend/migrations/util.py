"""Utility functions for Alembic migrations."""
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from alembic import op


def get_uuid_type():
    """UUID column type for the current dialect.

    PostgreSQL gets its native type; everything else gets ``sa.Uuid`` so the
    stored form matches what the models' ``Uuid(as_uuid=True)`` columns bind.
    """
    bind = op.get_bind()
    if bind.dialect.name == 'postgresql':
        return UUID(as_uuid=True)
    return sa.Uuid()
