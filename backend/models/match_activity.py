"""Match activity feed model."""
from sqlalchemy import Column, String, DateTime, ForeignKey, Index
import uuid
from datetime import datetime, UTC
from backend.database import Base
from backend.models.base import get_uuid_column


class MatchActivity(Base):
    """Append-only audit entry for a match."""
    __tablename__ = "match_activities"

    activity_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
    match_id = get_uuid_column(ForeignKey("matches.match_id", ondelete="CASCADE"), nullable=False)
    activity_type = Column(String(20), nullable=False)
    message = Column(String(500), nullable=False)
    user_id = get_uuid_column(nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)

    __table_args__ = (
        Index('ix_match_activities_match_created', 'match_id', 'created_at'),
    )

    def __repr__(self):
        return f"<MatchActivity(match_id={self.match_id}, type={self.activity_type})>"
