"""Base utilities for SQLAlchemy models."""
from enum import Enum
from sqlalchemy import Column, Uuid


class MatchStatus(str, Enum):
    """Match status enumeration for type safety."""
    PENDING = "pending"
    ACTIVE = "active"
    VOTING = "voting"
    DISPUTED = "disputed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TransactionKind(str, Enum):
    """Ledger entry kinds."""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    STAKE = "stake"
    PAYOUT = "payout"
    REFUND = "refund"
    FEE = "fee"
    BONUS = "bonus"


class SubscriptionTier(str, Enum):
    """Subscription tiers; both premium variants waive the platform fee."""
    FREE = "free"
    PREMIUM = "premium"
    PREMIUM_TRIAL = "premium_trial"

    @property
    def is_premium(self) -> bool:
        return self in (SubscriptionTier.PREMIUM, SubscriptionTier.PREMIUM_TRIAL)


class MatchActivityType(str, Enum):
    """Entries in the per-match activity feed."""
    CREATED = "created"
    JOINED = "joined"
    START = "start"
    CANCELLED = "cancelled"
    LEFT = "left"
    VOTING = "voting"
    VOTE = "vote"
    DISPUTED = "disputed"
    EVIDENCE = "evidence"
    PAYOUT = "payout"
    ESCALATION = "escalation"


def get_uuid_column(*args, **kwargs):
    """Get a UUID column that is native on PostgreSQL and CHAR(32) elsewhere.

    Example:
        user_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
        match_id = get_uuid_column(ForeignKey("matches.match_id"), nullable=False)
    """
    return Column(Uuid(as_uuid=True), *args, **kwargs)
