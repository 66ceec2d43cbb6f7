"""Transaction ledger model."""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index
import uuid
from datetime import datetime, UTC
from backend.database import Base
from backend.models.base import get_uuid_column


class Transaction(Base):
    """Append-only ledger entry. Never updated or deleted once written."""
    __tablename__ = "transactions"

    transaction_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
    user_id = get_uuid_column(ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)  # Negative for debits, positive for credits
    withdrawable_amount = Column(Integer, nullable=False, default=0)  # Change to the withdrawable balance
    kind = Column(String(20), nullable=False, index=True)
    # Kinds: deposit, withdrawal, stake, payout, refund, fee, bonus
    related_match_id = get_uuid_column(ForeignKey("matches.match_id"), nullable=True, index=True)
    external_reference = Column(String(128), nullable=True)  # Payment processor reference
    total_balance_after = Column(Integer, nullable=False)  # For audit trail
    withdrawable_balance_after = Column(Integer, nullable=False)  # For audit trail
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False, index=True)

    __table_args__ = (
        Index('ix_transactions_user_created', 'user_id', 'created_at'),
    )

    def __repr__(self):
        return f"<Transaction(transaction_id={self.transaction_id}, amount={self.amount}, kind={self.kind})>"
