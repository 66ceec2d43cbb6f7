"""User model.

Identity and onboarding live outside this service; the row only carries what
settlement needs (region for compliance, subscription tier for fees).
"""
from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship
import uuid
from datetime import datetime, UTC
from backend.database import Base
from backend.models.base import get_uuid_column, SubscriptionTier


class User(Base):
    """Platform user."""
    __tablename__ = "users"

    user_id = get_uuid_column(primary_key=True, default=uuid.uuid4)
    username = Column(String(80), unique=True, nullable=False)
    region = Column(String(32), nullable=False, default="US")
    subscription_tier = Column(String(20), nullable=False, default=SubscriptionTier.FREE.value)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)

    wallet = relationship("WalletBalance", back_populates="user", uselist=False)

    @property
    def tier(self) -> SubscriptionTier:
        return SubscriptionTier(self.subscription_tier)

    def __repr__(self):
        return f"<User(user_id={self.user_id}, username={self.username}, tier={self.subscription_tier})>"
