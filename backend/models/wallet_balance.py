"""Wallet balance model (materialized cache of the transaction log)."""
from sqlalchemy import Column, Integer, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, UTC
from backend.database import Base
from backend.models.base import get_uuid_column


class WalletBalance(Base):
    """Per-user running balances.

    Only the ledger writes these columns. Both values must always equal the sum
    of the user's transaction rows.
    """
    __tablename__ = "wallet_balances"

    user_id = get_uuid_column(ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True)
    total_balance = Column(Integer, nullable=False, default=0)
    withdrawable_balance = Column(Integer, nullable=False, default=0)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    user = relationship("User", back_populates="wallet")

    __table_args__ = (
        CheckConstraint("withdrawable_balance >= 0", name="ck_wallet_withdrawable_non_negative"),
        CheckConstraint("withdrawable_balance <= total_balance", name="ck_wallet_withdrawable_le_total"),
    )

    def __repr__(self):
        return (f"<WalletBalance(user_id={self.user_id}, total={self.total_balance}, "
                f"withdrawable={self.withdrawable_balance})>")
