"""Matches API router."""
from fastapi import APIRouter, Depends, HTTPException, Query
from uuid import UUID
import logging

from backend.dependencies import get_current_user, get_match_service, require_dispute_reviewer
from backend.models.base import MatchStatus
from backend.models.match import Match
from backend.models.user import User
from backend.routers.errors import to_http_exception
from backend.schemas.match import (
    CreateMatchRequest,
    SubmitVoteRequest,
    SubmitEvidenceRequest,
    ResolveDisputeRequest,
    MatchDetail,
    MatchListResponse,
    TransitionResponse,
    MatchActivityDetail,
    MatchActivityResponse,
)
from backend.services.match_service import MatchService, TransitionResult
from backend.utils.exceptions import SettlementError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/matches", tags=["matches"])


def _match_detail(match: Match) -> MatchDetail:
    return MatchDetail.model_validate(match)


def _transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        match_id=result.match_id,
        applied=result.applied,
        from_status=result.from_status.value,
        to_status=result.to_status.value if result.to_status else None,
        detail=result.detail,
    )


@router.post("", response_model=MatchDetail)
async def create_match(
    request: CreateMatchRequest,
    user: User = Depends(get_current_user),
    service: MatchService = Depends(get_match_service),
):
    """Create a match and stake the creator's entry."""
    try:
        match = await service.create_match(
            user,
            activity_type=request.activity_type,
            stake_amount=request.stake_amount,
            is_premium_only=request.is_premium_only,
            custom_rules=request.custom_rules,
        )
    except SettlementError as e:
        raise to_http_exception(e)
    return _match_detail(match)


@router.get("", response_model=MatchListResponse)
async def list_matches(
    status: MatchStatus | None = None,
    mine: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(get_current_user),
    service: MatchService = Depends(get_match_service),
):
    """List matches, optionally only the caller's."""
    matches = await service.list_matches(
        status=status,
        user_id=user.user_id if mine else None,
        limit=limit,
        offset=offset,
    )
    return MatchListResponse(matches=[_match_detail(match) for match in matches])


@router.get("/{match_id}", response_model=MatchDetail)
async def get_match(
    match_id: UUID,
    user: User = Depends(get_current_user),
    service: MatchService = Depends(get_match_service),
):
    try:
        return _match_detail(await service.get_match(match_id))
    except SettlementError as e:
        raise to_http_exception(e)


@router.post("/{match_id}/join", response_model=MatchDetail)
async def join_match(
    match_id: UUID,
    user: User = Depends(get_current_user),
    service: MatchService = Depends(get_match_service),
):
    """Join a pending match and stake the entry."""
    try:
        return _match_detail(await service.join_match(match_id, user))
    except SettlementError as e:
        raise to_http_exception(e)


@router.post("/{match_id}/leave", response_model=MatchDetail)
async def request_leave(
    match_id: UUID,
    user: User = Depends(get_current_user),
    service: MatchService = Depends(get_match_service),
):
    try:
        return _match_detail(await service.request_leave(match_id, user.user_id))
    except SettlementError as e:
        raise to_http_exception(e)


@router.post("/{match_id}/leave/{requester_id}/approve", response_model=MatchDetail)
async def approve_leave(
    match_id: UUID,
    requester_id: UUID,
    user: User = Depends(get_current_user),
    service: MatchService = Depends(get_match_service),
):
    """Approve another participant's leave request."""
    try:
        return _match_detail(await service.approve_leave(match_id, requester_id, user.user_id))
    except SettlementError as e:
        raise to_http_exception(e)


@router.post("/{match_id}/voting", response_model=TransitionResponse)
async def begin_voting(
    match_id: UUID,
    user: User = Depends(get_current_user),
    service: MatchService = Depends(get_match_service),
):
    """Report that the activity is over and open voting."""
    try:
        result = await service.begin_voting(match_id, actor_id=user.user_id)
    except SettlementError as e:
        raise to_http_exception(e)
    return _transition_response(result)


@router.post("/{match_id}/vote", response_model=MatchDetail)
async def submit_vote(
    match_id: UUID,
    request: SubmitVoteRequest,
    user: User = Depends(get_current_user),
    service: MatchService = Depends(get_match_service),
):
    try:
        await service.submit_vote(match_id, user.user_id, request.vote_for_user_id)
        return _match_detail(await service.get_match(match_id))
    except SettlementError as e:
        raise to_http_exception(e)


@router.post("/{match_id}/evidence", response_model=MatchDetail)
async def submit_evidence(
    match_id: UUID,
    request: SubmitEvidenceRequest,
    user: User = Depends(get_current_user),
    service: MatchService = Depends(get_match_service),
):
    try:
        return _match_detail(await service.submit_dispute_evidence(match_id, user.user_id, request.reference))
    except SettlementError as e:
        raise to_http_exception(e)


@router.post("/{match_id}/resolve", response_model=TransitionResponse)
async def resolve_dispute(
    match_id: UUID,
    request: ResolveDisputeRequest,
    _: None = Depends(require_dispute_reviewer),
    service: MatchService = Depends(get_match_service),
):
    """Apply the evidence review decision to a disputed match. Reviewer only."""
    logger.info(f"Dispute resolution for {match_id}: winner {request.winner_id}")
    try:
        result = await service.resolve_dispute(match_id, request.winner_id)
    except SettlementError as e:
        raise to_http_exception(e)
    if not result.applied:
        raise HTTPException(status_code=409, detail="Match was already settled")
    return _transition_response(result)


@router.get("/{match_id}/activity", response_model=MatchActivityResponse)
async def get_activity(
    match_id: UUID,
    user: User = Depends(get_current_user),
    service: MatchService = Depends(get_match_service),
):
    try:
        await service.get_match(match_id)
    except SettlementError as e:
        raise to_http_exception(e)
    activities = await service.get_activity(match_id)
    return MatchActivityResponse(
        activities=[MatchActivityDetail.model_validate(activity) for activity in activities]
    )
