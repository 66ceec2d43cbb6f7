"""Match model."""
from sqlalchemy import Column, String, Integer, DateTime, Boolean, ForeignKey, JSON, Index
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime, UTC
from backend.database import Base
from backend.models.base import get_uuid_column, MatchStatus


class Match(Base):
    """A wager between participants.

    Status changes go through MatchService only; see backend.services.match_state
    for the allowed transitions.
    """
    __tablename__ = "matches"

    match_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
    creator_id = get_uuid_column(ForeignKey("users.user_id"), nullable=False, index=True)
    activity_type = Column(String(100), nullable=False)
    custom_rules = Column(String(1000), nullable=True)
    stake_amount = Column(Integer, nullable=False)  # Per-participant entry fee
    total_pot = Column(Integer, nullable=False, default=0)
    is_premium_only = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default=MatchStatus.PENDING.value, index=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False, index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    voting_deadline = Column(DateTime(timezone=True), nullable=True)
    vote_reminder_sent_at = Column(DateTime(timezone=True), nullable=True)
    dispute_deadline = Column(DateTime(timezone=True), nullable=True)
    dispute_evidence = Column(JSON, nullable=False, default=list)  # Evidence references (URLs, object keys)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    payout_amount = Column(Integer, nullable=True)
    fee_amount = Column(Integer, nullable=True)

    participants = relationship(
        "MatchParticipant",
        back_populates="match",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="MatchParticipant.joined_at",
    )

    __table_args__ = (
        Index('ix_matches_status_created', 'status', 'created_at'),
    )

    @property
    def participant_count(self) -> int:
        return len(self.participants)

    def get_participant(self, user_id: uuid.UUID):
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant
        return None

    def __repr__(self):
        return f"<Match(match_id={self.match_id}, status={self.status}, total_pot={self.total_pot})>"
