"""Wallet API router."""
from fastapi import APIRouter, Depends, Query
import logging

from backend.dependencies import get_current_user, get_wallet_service
from backend.models.user import User
from backend.routers.errors import to_http_exception
from backend.schemas.wallet import (
    WalletResponse,
    TransactionDetail,
    TransactionListResponse,
    DepositRequest,
    DepositResponse,
    PurchasePackageRequest,
    WithdrawRequest,
    TokenPackageDetail,
    TokenPackageListResponse,
)
from backend.services.wallet_service import DepositResult, TOKEN_PACKAGES, WalletService
from backend.utils.exceptions import SettlementError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wallet", tags=["wallet"])


def _deposit_response(result: DepositResult) -> DepositResponse:
    return DepositResponse(
        deposited=result.deposit.amount,
        bonus=result.bonus.amount if result.bonus else 0,
        wallet=WalletResponse.model_validate(result.wallet),
    )


@router.get("", response_model=WalletResponse)
async def get_wallet(
    user: User = Depends(get_current_user),
    service: WalletService = Depends(get_wallet_service),
):
    return WalletResponse.model_validate(await service.get_wallet(user))


@router.get("/transactions", response_model=TransactionListResponse)
async def get_transactions(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(get_current_user),
    service: WalletService = Depends(get_wallet_service),
):
    """Transaction history, newest first."""
    transactions = await service.get_transactions(user, limit=limit, offset=offset)
    return TransactionListResponse(
        transactions=[TransactionDetail.model_validate(txn) for txn in transactions]
    )


@router.get("/packages", response_model=TokenPackageListResponse)
async def list_packages():
    return TokenPackageListResponse(packages=[
        TokenPackageDetail(
            package_id=package.package_id,
            base_tokens=package.base_tokens,
            bonus_percent=package.bonus_percent,
            bonus_tokens=package.bonus_tokens,
            total_tokens=package.total_tokens,
            price_cents=package.price_cents,
            popular=package.popular,
        )
        for package in TOKEN_PACKAGES.values()
    ])


@router.post("/deposit", response_model=DepositResponse)
async def deposit(
    request: DepositRequest,
    user: User = Depends(get_current_user),
    service: WalletService = Depends(get_wallet_service),
):
    try:
        result = await service.deposit(user, request.amount, request.bonus_percent)
    except SettlementError as e:
        raise to_http_exception(e)
    return _deposit_response(result)


@router.post("/packages", response_model=DepositResponse)
async def purchase_package(
    request: PurchasePackageRequest,
    user: User = Depends(get_current_user),
    service: WalletService = Depends(get_wallet_service),
):
    """Buy a token package; bonus tokens are not withdrawable."""
    try:
        result = await service.purchase_package(user, request.package_id)
    except SettlementError as e:
        raise to_http_exception(e)
    return _deposit_response(result)


@router.post("/withdraw", response_model=WalletResponse)
async def withdraw(
    request: WithdrawRequest,
    user: User = Depends(get_current_user),
    service: WalletService = Depends(get_wallet_service),
):
    try:
        wallet = await service.withdraw(user, request.amount)
    except SettlementError as e:
        raise to_http_exception(e)
    return WalletResponse.model_validate(wallet)
