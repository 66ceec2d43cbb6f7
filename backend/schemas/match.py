"""Match-related Pydantic schemas."""
from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Optional
from uuid import UUID
from backend.schemas.base import BaseSchema


class CreateMatchRequest(BaseModel):
    """Create match request."""
    activity_type: str = Field(..., min_length=1, max_length=100)
    stake_amount: int = Field(..., gt=0)
    is_premium_only: bool = False
    custom_rules: Optional[str] = Field(default=None, max_length=1000)

    @field_validator('activity_type')
    @classmethod
    def strip_activity(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('Activity type is required')
        return v


class SubmitVoteRequest(BaseModel):
    vote_for_user_id: UUID


class SubmitEvidenceRequest(BaseModel):
    reference: str = Field(..., min_length=1, max_length=500)


class ResolveDisputeRequest(BaseModel):
    """Winner chosen by evidence review."""
    winner_id: UUID


class ParticipantDetail(BaseSchema):
    user_id: UUID
    stake_amount: int
    subscription_tier: str
    has_voted: bool
    vote_for_user_id: Optional[UUID] = None
    is_winner: bool
    payout_amount: Optional[int] = None
    leave_requested: bool
    leave_approved_by: list[str] = []
    joined_at: datetime


class MatchDetail(BaseSchema):
    """Match with its participants."""
    match_id: UUID
    creator_id: UUID
    activity_type: str
    custom_rules: Optional[str] = None
    stake_amount: int
    total_pot: int
    is_premium_only: bool
    status: str
    participant_count: int
    created_at: datetime
    started_at: Optional[datetime] = None
    voting_deadline: Optional[datetime] = None
    dispute_deadline: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    payout_amount: Optional[int] = None
    fee_amount: Optional[int] = None
    dispute_evidence: list[str] = []
    participants: list[ParticipantDetail] = []


class MatchListResponse(BaseModel):
    matches: list[MatchDetail]


class TransitionResponse(BaseModel):
    """Result of a lifecycle operation that may be a no-op."""
    match_id: UUID
    applied: bool
    from_status: str
    to_status: Optional[str] = None
    detail: str = ""


class MatchActivityDetail(BaseSchema):
    activity_id: UUID
    activity_type: str
    message: str
    user_id: Optional[UUID] = None
    created_at: datetime


class MatchActivityResponse(BaseModel):
    activities: list[MatchActivityDetail]
