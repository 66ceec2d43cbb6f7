"""Wallet-related Pydantic schemas."""
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from uuid import UUID
from backend.schemas.base import BaseSchema


class WalletResponse(BaseSchema):
    """Balances in tokens."""
    user_id: UUID
    total_balance: int
    withdrawable_balance: int


class TransactionDetail(BaseSchema):
    transaction_id: UUID
    amount: int
    withdrawable_amount: int
    kind: str
    related_match_id: Optional[UUID] = None
    total_balance_after: int
    withdrawable_balance_after: int
    created_at: datetime


class TransactionListResponse(BaseModel):
    transactions: list[TransactionDetail]


class DepositRequest(BaseModel):
    amount: int = Field(..., gt=0)
    bonus_percent: int = Field(default=0, ge=0, le=100)


class PurchasePackageRequest(BaseModel):
    package_id: str


class WithdrawRequest(BaseModel):
    amount: int = Field(..., gt=0)


class DepositResponse(BaseModel):
    deposited: int
    bonus: int
    wallet: WalletResponse


class TokenPackageDetail(BaseModel):
    package_id: str
    base_tokens: int
    bonus_percent: int
    bonus_tokens: int
    total_tokens: int
    price_cents: int
    popular: bool


class TokenPackageListResponse(BaseModel):
    packages: list[TokenPackageDetail]
