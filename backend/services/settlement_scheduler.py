"""Periodic settlement sweep.

Finds matches whose time-based transition is due and hands each one to
MatchService in its own session. Safe to run from several processes at once:
the engine's status compare-and-update lets exactly one of them win.
"""
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable
from uuid import UUID

from sqlalchemy import exists, not_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.config import Settings, get_settings
from backend.models.base import MatchStatus
from backend.models.match import Match
from backend.models.match_participant import MatchParticipant
from backend.services.match_service import MatchService, TransitionResult
from backend.services.notification_service import NotificationDispatcher, get_notification_dispatcher
from backend.utils.datetime_helpers import ensure_utc, utc_now
from backend.utils.exceptions import InvariantViolationError

logger = logging.getLogger(__name__)


@dataclass
class SettlementCycleReport:
    """Counts of what one sweep did."""
    started: int = 0
    cancelled: int = 0
    voting_opened: int = 0
    reminders_sent: int = 0
    completed: int = 0
    disputed: int = 0
    disputes_expired: int = 0
    skipped: int = 0
    escalations: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class SettlementScheduler:
    """Runs the five time-driven scans of the match lifecycle."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: NotificationDispatcher | None = None,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.notifier = notifier or get_notification_dispatcher()
        self.settings = settings or get_settings()

    async def run_cycle(self, now: datetime | None = None) -> SettlementCycleReport:
        now = ensure_utc(now) or utc_now()
        report = SettlementCycleReport()
        batch = self.settings.settlement_batch_size

        # Escalated matches wait for manual review
        reviewable = not_(MatchService.escalated(Match.match_id))

        # 1. Pending matches: start or cancel
        stmt = select(Match.match_id).where(Match.status == MatchStatus.PENDING.value, reviewable)
        for match_id in await self._due(stmt, batch):
            result = await self._apply(match_id, report, lambda svc, mid: svc.check_start(mid, now))
            if result and result.applied:
                if result.to_status == MatchStatus.ACTIVE:
                    report.started += 1
                else:
                    report.cancelled += 1

        # 2. Active matches whose activity window elapsed
        activity_cutoff = now - timedelta(hours=self.settings.activity_timeout_hours)
        stmt = select(Match.match_id).where(
            Match.status == MatchStatus.ACTIVE.value,
            Match.started_at <= activity_cutoff,
        )
        for match_id in await self._due(stmt, batch):
            result = await self._apply(match_id, report, lambda svc, mid: svc.begin_voting(mid, now))
            if result and result.applied:
                report.voting_opened += 1

        # 3. Voting matches approaching the deadline
        reminder_cutoff = now + timedelta(minutes=self.settings.vote_reminder_lead_minutes)
        stmt = select(Match.match_id).where(
            Match.status == MatchStatus.VOTING.value,
            Match.vote_reminder_sent_at.is_(None),
            Match.voting_deadline > now,
            Match.voting_deadline <= reminder_cutoff,
        )
        for match_id in await self._due(stmt, batch):
            result = await self._apply(match_id, report, lambda svc, mid: svc.send_vote_reminder(mid, now))
            if result and result.applied:
                report.reminders_sent += 1

        # 4. Voting matches with every vote in or the deadline passed
        all_voted = not_(
            exists().where(
                MatchParticipant.match_id == Match.match_id,
                MatchParticipant.vote_for_user_id.is_(None),
            )
        )
        stmt = select(Match.match_id).where(
            Match.status == MatchStatus.VOTING.value,
            or_(Match.voting_deadline <= now, all_voted),
            reviewable,
        )
        for match_id in await self._due(stmt, batch):
            result = await self._apply(match_id, report, lambda svc, mid: svc.settle_voting(mid, now))
            if result and result.applied:
                if result.to_status == MatchStatus.COMPLETED:
                    report.completed += 1
                else:
                    report.disputed += 1

        # 5. Disputes nobody resolved in time
        stmt = select(Match.match_id).where(
            Match.status == MatchStatus.DISPUTED.value,
            Match.dispute_deadline <= now,
            reviewable,
        )
        for match_id in await self._due(stmt, batch):
            result = await self._apply(match_id, report, lambda svc, mid: svc.expire_dispute(mid, now))
            if result and result.applied:
                report.disputes_expired += 1

        logger.info(f"Settlement cycle finished: {report.to_dict()}")
        return report

    async def _due(self, stmt, batch_size: int) -> list[UUID]:
        async with self.session_factory() as db:
            result = await db.execute(stmt.order_by(Match.created_at).limit(batch_size))
            return list(result.scalars().all())

    async def _apply(
        self,
        match_id: UUID,
        report: SettlementCycleReport,
        operation: Callable[[MatchService, UUID], Awaitable[TransitionResult]],
    ) -> TransitionResult | None:
        """Run one match operation in a fresh session; failures are counted, not raised."""
        try:
            async with self.session_factory() as db:
                service = MatchService(db, notifier=self.notifier, settings=self.settings)
                result = await operation(service, match_id)
        except InvariantViolationError as e:
            report.escalations += 1
            logger.critical(f"Settlement escalated for match {match_id}: {e}")
            return None
        except Exception as e:
            report.errors += 1
            logger.error(f"Settlement error for match {match_id}: {e}", exc_info=True)
            return None

        if not result.applied:
            report.skipped += 1
        return result
