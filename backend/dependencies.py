"""FastAPI dependencies."""
import logging
import secrets
from uuid import UUID

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.config import Settings, get_settings
from backend.database import AsyncSessionLocal, get_db
from backend.models.user import User
from backend.services.compliance_service import ComplianceService, get_compliance_service
from backend.services.match_service import MatchService
from backend.services.notification_service import NotificationDispatcher, get_notification_dispatcher
from backend.services.payment_processor import PaymentProcessor, get_payment_processor
from backend.services.wallet_service import WalletService

logger = logging.getLogger(__name__)


def _mask_identifier(identifier: str) -> str:
    """Mask a caller identifier for logging."""
    if not identifier:
        return "<missing>"
    if len(identifier) <= 8:
        return f"{identifier[:2]}...{identifier[-2:]}"
    return f"{identifier[:4]}...{identifier[-4:]}"


async def get_current_user(
        x_user_id: str | None = Header(default=None, alias="X-User-Id"),
        db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the caller from the ``X-User-Id`` header set by the upstream gateway."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")

    try:
        user_id = UUID(x_user_id)
    except ValueError:
        logger.warning(f"Malformed caller id {_mask_identifier(x_user_id)}")
        raise HTTPException(status_code=401, detail="Invalid X-User-Id header")

    user = await db.get(User, user_id)
    if user is None:
        logger.warning(f"Unknown caller {_mask_identifier(x_user_id)}")
        raise HTTPException(status_code=401, detail="Unknown user")
    return user


async def require_dispute_reviewer(
        x_reviewer_token: str | None = Header(default=None, alias="X-Reviewer-Token"),
        settings: Settings = Depends(get_settings),
) -> None:
    """Verify that the caller is the evidence-review service, not a match participant.

    Raises:
        HTTPException: 403 if no token is configured or the header does not match
    """
    expected = settings.dispute_reviewer_token
    if not expected or not x_reviewer_token or not secrets.compare_digest(x_reviewer_token, expected):
        logger.warning("Access denied to dispute resolution: missing or wrong reviewer token")
        raise HTTPException(status_code=403, detail="dispute_reviewer_required")


def get_notifier() -> NotificationDispatcher:
    return get_notification_dispatcher()


def get_processor() -> PaymentProcessor:
    return get_payment_processor()


def get_compliance() -> ComplianceService:
    return get_compliance_service()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return AsyncSessionLocal


def get_match_service(
        db: AsyncSession = Depends(get_db),
        notifier: NotificationDispatcher = Depends(get_notifier),
) -> MatchService:
    return MatchService(db, notifier=notifier)


def get_wallet_service(
        db: AsyncSession = Depends(get_db),
        processor: PaymentProcessor = Depends(get_processor),
        compliance: ComplianceService = Depends(get_compliance),
) -> WalletService:
    return WalletService(db, processor=processor, compliance=compliance)
