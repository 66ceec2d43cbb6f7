"""Settlement sweep endpoint for external schedulers."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import logging

from backend.dependencies import get_notifier, get_session_factory
from backend.schemas.settlement import SettlementCycleResponse
from backend.services.notification_service import NotificationDispatcher
from backend.services.settlement_scheduler import SettlementScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settlement", tags=["settlement"])


@router.post("/run", response_model=SettlementCycleResponse)
async def run_settlement_cycle(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """Run one settlement sweep now. Overlapping calls are safe."""
    report = await SettlementScheduler(session_factory, notifier=notifier).run_cycle()
    return SettlementCycleResponse(**report.to_dict())
