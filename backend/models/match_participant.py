"""Match participant model."""
from sqlalchemy import Column, String, Integer, DateTime, Boolean, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime, UTC
from backend.database import Base
from backend.models.base import get_uuid_column, SubscriptionTier


class MatchParticipant(Base):
    """One row per user per match."""
    __tablename__ = "match_participants"

    participant_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
    match_id = get_uuid_column(ForeignKey("matches.match_id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = get_uuid_column(ForeignKey("users.user_id"), nullable=False, index=True)
    stake_amount = Column(Integer, nullable=False)
    # Tier frozen at join time so later subscription changes do not alter fees
    subscription_tier = Column(String(20), nullable=False, default=SubscriptionTier.FREE.value)
    vote_for_user_id = get_uuid_column(nullable=True)
    voted_at = Column(DateTime(timezone=True), nullable=True)
    is_winner = Column(Boolean, nullable=False, default=False)
    payout_amount = Column(Integer, nullable=True)
    leave_requested = Column(Boolean, nullable=False, default=False)
    leave_approved_by = Column(JSON, nullable=False, default=list)  # User id strings
    joined_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)

    match = relationship("Match", back_populates="participants")

    __table_args__ = (
        UniqueConstraint('match_id', 'user_id', name='uq_match_participants_match_user'),
    )

    @property
    def tier(self) -> SubscriptionTier:
        return SubscriptionTier(self.subscription_tier)

    @property
    def has_voted(self) -> bool:
        return self.vote_for_user_id is not None

    def __repr__(self):
        return (f"<MatchParticipant(match_id={self.match_id}, user_id={self.user_id}, "
                f"vote_for={self.vote_for_user_id})>")
