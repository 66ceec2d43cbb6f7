"""Match lifecycle engine.

Owns every match status change. Each transition is one database transaction
that starts with a compare-and-update on ``(match_id, status)``; a second
process racing on the same match sees zero affected rows, rolls back and
treats the call as a no-op. Notifications are sent only after commit.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable
from uuid import UUID

from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value

from backend.config import Settings, get_settings
from backend.models.base import MatchActivityType, MatchStatus, TransactionKind
from backend.models.match import Match
from backend.models.match_activity import MatchActivity
from backend.models.match_participant import MatchParticipant
from backend.models.user import User
from backend.services.ledger_service import LedgerEntry, LedgerService
from backend.services.match_state import LEAVABLE, assert_transition
from backend.services.notification_service import LoggingNotificationDispatcher, NotificationDispatcher
from backend.services.payout_calculator import assert_conserves, compute_payout, split_evenly
from backend.services.vote_tally import Ballot, TallyOutcome, TallyResult, tally
from backend.utils.datetime_helpers import ensure_utc, has_elapsed, utc_now
from backend.utils.exceptions import (
    ConcurrencyConflictError,
    InsufficientFundsError,
    InvalidTransitionError,
    InvalidVoteError,
    InvariantViolationError,
    MatchNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a lifecycle operation that may legitimately do nothing."""
    match_id: UUID
    applied: bool
    from_status: MatchStatus
    to_status: MatchStatus | None = None
    detail: str = ""


class MatchService:
    """Service for match creation, membership, voting and settlement."""

    def __init__(
        self,
        db: AsyncSession,
        ledger: LedgerService | None = None,
        notifier: NotificationDispatcher | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.ledger = ledger or LedgerService(db)
        self.notifier = notifier or LoggingNotificationDispatcher()
        self.settings = settings or get_settings()
        self._outbox: list[tuple[str, Callable[[], Awaitable[None]]]] = []

    # ===== Queries =====

    async def get_match(self, match_id: UUID) -> Match:
        """Load a match with fresh participant rows."""
        result = await self.db.execute(
            select(Match)
            .options(selectinload(Match.participants))
            .where(Match.match_id == match_id)
            .execution_options(populate_existing=True)
        )
        match = result.scalar_one_or_none()
        if match is None:
            raise MatchNotFoundError(f"Match not found: {match_id}")
        return match

    async def list_matches(
        self,
        status: MatchStatus | None = None,
        user_id: UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Match]:
        stmt = select(Match).options(selectinload(Match.participants))
        if status is not None:
            stmt = stmt.where(Match.status == MatchStatus(status).value)
        if user_id is not None:
            stmt = stmt.where(
                exists().where(
                    MatchParticipant.match_id == Match.match_id,
                    MatchParticipant.user_id == user_id,
                )
            )
        result = await self.db.execute(stmt.order_by(Match.created_at.desc()).limit(limit).offset(offset))
        return list(result.scalars().all())

    async def get_activity(self, match_id: UUID) -> list[MatchActivity]:
        result = await self.db.execute(
            select(MatchActivity)
            .where(MatchActivity.match_id == match_id)
            .order_by(MatchActivity.created_at)
        )
        return list(result.scalars().all())

    # ===== Membership =====

    async def create_match(
        self,
        creator: User,
        activity_type: str,
        stake_amount: int,
        is_premium_only: bool = False,
        custom_rules: str | None = None,
        now: datetime | None = None,
    ) -> Match:
        """
        Create a pending match and debit the creator's stake.

        Raises:
            ValidationError: Bad stake/activity or premium requirement not met
            InsufficientFundsError: Creator cannot cover the stake
        """
        now = ensure_utc(now) or utc_now()
        if not activity_type or not activity_type.strip():
            raise ValidationError("Activity type is required")
        if not isinstance(stake_amount, int) or stake_amount <= 0:
            raise ValidationError("Stake must be a positive number of tokens")
        if is_premium_only and not creator.tier.is_premium:
            raise ValidationError("Premium subscription required to create a premium-only match")

        match = Match(
            creator_id=creator.user_id,
            activity_type=activity_type.strip(),
            custom_rules=custom_rules,
            stake_amount=stake_amount,
            total_pot=stake_amount,
            is_premium_only=is_premium_only,
            status=MatchStatus.PENDING.value,
            created_at=now,
            dispute_evidence=[],
        )
        try:
            self.db.add(match)
            await self.db.flush()

            await self._debit_stake(creator.user_id, match)
            self.db.add(self._new_participant(match, creator, now))
            self._record_activity(match.match_id, MatchActivityType.CREATED,
                                  f"Match created with a stake of {stake_amount} tokens", creator.user_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Match created: {match.match_id} by {creator.user_id}, stake={stake_amount}")
        return await self.get_match(match.match_id)

    async def join_match(self, match_id: UUID, user: User, now: datetime | None = None) -> Match:
        """
        Add a participant and debit their stake.

        Joining never starts the match; the scheduler re-reads the participant
        count and performs the pending -> active transition exactly once.
        """
        now = ensure_utc(now) or utc_now()
        match = await self.get_match(match_id)

        if match.status != MatchStatus.PENDING.value:
            raise InvalidTransitionError("Match is no longer accepting participants")
        if match.get_participant(user.user_id) is not None:
            raise ValidationError("You have already joined this match")
        if match.is_premium_only and not user.tier.is_premium:
            raise ValidationError("This match is for premium members only")

        try:
            await self._debit_stake(user.user_id, match)

            # Pot grows in SQL so concurrent joins cannot lose an increment
            result = await self.db.execute(
                update(Match)
                .where(Match.match_id == match_id, Match.status == MatchStatus.PENDING.value)
                .values(total_pot=Match.total_pot + match.stake_amount)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidTransitionError("Match is no longer accepting participants")

            self.db.add(self._new_participant(match, user, now))
            await self.db.flush()
            self._record_activity(match_id, MatchActivityType.JOINED, "Joined the match", user.user_id)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ValidationError("You have already joined this match")
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"User {user.user_id} joined match {match_id}")
        return await self.get_match(match_id)

    async def request_leave(self, match_id: UUID, user_id: UUID, now: datetime | None = None) -> Match:
        """
        Ask to leave a pending/active match.

        A lone participant of a pending match leaves at once. The last
        participant of an active match cannot leave; the match settles at voting.
        """
        match = await self.get_match(match_id)
        status = MatchStatus(match.status)
        if status not in LEAVABLE:
            raise InvalidTransitionError("You can only leave a match before voting starts")
        participant = match.get_participant(user_id)
        if participant is None:
            raise ValidationError("You are not a participant in this match")
        alone = not self._others(match, user_id)
        if alone and status != MatchStatus.PENDING:
            raise InvalidTransitionError("The last participant cannot leave a match that has started")

        try:
            if alone:
                await self._remove_participant(match, participant, allowed=(MatchStatus.PENDING,))
            else:
                participant.leave_requested = True
                participant.leave_approved_by = []
                self._record_activity(match_id, MatchActivityType.LEFT, "Requested to leave the match", user_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return await self.get_match(match_id)

    async def approve_leave(self, match_id: UUID, requester_id: UUID, approver_id: UUID) -> Match:
        """
        Record one co-participant's approval of a leave request.

        Once every other participant has approved, the requester is removed and
        their stake refunded. Until then the match is unaffected.
        """
        match = await self.get_match(match_id)
        if MatchStatus(match.status) not in LEAVABLE:
            raise InvalidTransitionError("Leave requests close once voting starts")

        requester = match.get_participant(requester_id)
        if requester is None or not requester.leave_requested:
            raise ValidationError("No pending leave request for this participant")
        if approver_id == requester_id or match.get_participant(approver_id) is None:
            raise ValidationError("Only other participants can approve a leave request")

        approvals = set(requester.leave_approved_by or [])
        approvals.add(str(approver_id))
        required = {str(other.user_id) for other in self._others(match, requester_id)}

        try:
            requester.leave_approved_by = sorted(approvals)
            if required <= approvals:
                await self._remove_participant(match, requester)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return await self.get_match(match_id)

    # ===== Scheduler-driven transitions =====

    async def check_start(self, match_id: UUID, now: datetime | None = None) -> TransitionResult:
        """Start a pending match with enough players, or cancel it after the timeout."""
        now = ensure_utc(now) or utc_now()
        match = await self.get_match(match_id)
        status = MatchStatus(match.status)
        if status != MatchStatus.PENDING:
            return TransitionResult(match_id, False, status, detail="not pending")

        minimum = self.settings.min_participants

        if match.participant_count >= minimum:
            async def start() -> MatchStatus:
                await self._transition(match, MatchStatus.PENDING, MatchStatus.ACTIVE, started_at=now)
                _, participants = await self._current_state(match_id)
                if len(participants) < minimum:
                    raise ConcurrencyConflictError(f"Match {match_id} lost players before it could start")
                user_ids = [p.user_id for p in participants]
                self._record_activity(match_id, MatchActivityType.START, "Match has started!")
                self._queue("match_started", lambda: self.notifier.match_started(match_id, user_ids))
                return MatchStatus.ACTIVE

            return await self._run_transition(match, start)

        age_limit = timedelta(minutes=self.settings.pending_match_timeout_minutes)
        if now - ensure_utc(match.created_at) > age_limit:
            async def cancel() -> MatchStatus:
                await self._transition(match, MatchStatus.PENDING, MatchStatus.CANCELLED, completed_at=now)
                pot, participants = await self._current_state(match_id)
                if len(participants) >= minimum:
                    raise ConcurrencyConflictError(f"Match {match_id} filled up before it could be cancelled")
                refunds = sum(p.stake_amount for p in participants)
                if refunds != pot:
                    raise InvariantViolationError(
                        f"Refunds {refunds} do not add up to pot {pot} for match {match_id}"
                    )
                for participant in participants:
                    await self.ledger.refund_stake(participant.user_id, match_id, participant.stake_amount,
                                                   auto_commit=False)
                self._record_activity(match_id, MatchActivityType.CANCELLED,
                                      f"Cancelled: fewer than {minimum} players joined")
                return MatchStatus.CANCELLED

            return await self._run_transition(match, cancel)

        return TransitionResult(match_id, False, status, detail="waiting for players")

    async def begin_voting(
        self,
        match_id: UUID,
        now: datetime | None = None,
        actor_id: UUID | None = None,
    ) -> TransitionResult:
        """
        Move an active match to voting and open the voting window.

        With ``actor_id`` the call is a participant reporting that the activity
        concluded and an illegal status raises. Without it (scheduler) a match
        that has already moved on is a no-op.
        """
        now = ensure_utc(now) or utc_now()
        match = await self.get_match(match_id)
        status = MatchStatus(match.status)

        if actor_id is not None:
            if match.get_participant(actor_id) is None:
                raise ValidationError("Only participants can end the activity")
            assert_transition(status, MatchStatus.VOTING)
        elif status != MatchStatus.ACTIVE:
            return TransitionResult(match_id, False, status, detail="not active")

        deadline = now + timedelta(minutes=self.settings.voting_window_minutes)
        user_ids = self._user_ids(match)

        async def open_voting() -> MatchStatus:
            await self._transition(match, MatchStatus.ACTIVE, MatchStatus.VOTING, voting_deadline=deadline)
            self._record_activity(match_id, MatchActivityType.VOTING, "Voting is open", actor_id)
            self._queue("vote_reminder", lambda: self.notifier.vote_reminder(match_id, user_ids))
            return MatchStatus.VOTING

        return await self._run_transition(match, open_voting)

    async def submit_vote(
        self,
        match_id: UUID,
        voter_id: UUID,
        vote_for_user_id: UUID,
        now: datetime | None = None,
    ) -> MatchParticipant:
        """
        Record or overwrite a participant's vote.

        The match row is locked first and the write is a single-row update
        guarded on the match still being in voting, so a vote can never land
        after settlement has read the ballots.
        """
        now = ensure_utc(now) or utc_now()
        match = await self.get_match(match_id)

        if match.status != MatchStatus.VOTING.value:
            raise InvalidVoteError("Voting is not open for this match")
        if has_elapsed(match.voting_deadline, now):
            raise InvalidVoteError("The voting deadline has passed")
        if match.get_participant(voter_id) is None:
            raise InvalidVoteError("Only participants can vote")
        if match.get_participant(vote_for_user_id) is None:
            raise InvalidVoteError("Vote target must be a participant in this match")

        try:
            locked = await self.db.execute(
                select(Match.status).where(Match.match_id == match_id).with_for_update()
            )
            if locked.scalar_one() != MatchStatus.VOTING.value:
                raise InvalidVoteError("Voting is not open for this match")

            result = await self.db.execute(
                update(MatchParticipant)
                .where(
                    MatchParticipant.match_id == match_id,
                    MatchParticipant.user_id == voter_id,
                    exists().where(
                        Match.match_id == match_id,
                        Match.status == MatchStatus.VOTING.value,
                    ),
                )
                .values(vote_for_user_id=vote_for_user_id, voted_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidVoteError("Voting is not open for this match")
            self._record_activity(match_id, MatchActivityType.VOTE, "Vote submitted", voter_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Vote recorded: match={match_id} voter={voter_id} for={vote_for_user_id}")
        match = await self.get_match(match_id)
        return match.get_participant(voter_id)

    async def send_vote_reminder(self, match_id: UUID, now: datetime | None = None) -> TransitionResult:
        """Remind voters once as the deadline approaches."""
        now = ensure_utc(now) or utc_now()
        match = await self.get_match(match_id)
        status = MatchStatus(match.status)
        if status != MatchStatus.VOTING or match.vote_reminder_sent_at is not None:
            return TransitionResult(match_id, False, status, detail="no reminder due")

        result = await self.db.execute(
            update(Match)
            .where(
                Match.match_id == match_id,
                Match.status == MatchStatus.VOTING.value,
                Match.vote_reminder_sent_at.is_(None),
            )
            .values(vote_reminder_sent_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            return TransitionResult(match_id, False, status, detail="reminder already sent")
        await self.db.commit()

        pending_voters = [p.user_id for p in match.participants if not p.has_voted]
        self._queue("vote_reminder", lambda: self.notifier.vote_reminder(match_id, pending_voters))
        await self._dispatch()
        return TransitionResult(match_id, True, status, status, detail="reminder sent")

    async def settle_voting(self, match_id: UUID, now: datetime | None = None) -> TransitionResult:
        """
        Tally votes and settle or dispute the match.

        Acts only once everyone has voted or the deadline passed. A clear winner
        is paid in the same commit as the status change; a tie moves the match
        to disputed with no funds moving.
        """
        now = ensure_utc(now) or utc_now()
        match = await self.get_match(match_id)
        status = MatchStatus(match.status)
        if status != MatchStatus.VOTING:
            return TransitionResult(match_id, False, status, detail="not voting")

        deadline_passed = has_elapsed(match.voting_deadline, now)
        if self._tally(match.participants, deadline_passed).outcome == TallyOutcome.INCOMPLETE:
            return TransitionResult(match_id, False, status, detail="voting in progress")

        dispute_deadline = now + timedelta(hours=self.settings.dispute_window_hours)

        async def settle() -> MatchStatus:
            pot, participants = await self._claim(match, MatchStatus.VOTING)
            result = self._tally(participants, deadline_passed)
            if result.outcome == TallyOutcome.INCOMPLETE:
                raise ConcurrencyConflictError(f"Ballots for match {match_id} changed during settlement")

            if result.outcome == TallyOutcome.TIE:
                user_ids = [p.user_id for p in participants]
                await self._transition(match, MatchStatus.VOTING, MatchStatus.DISPUTED,
                                       dispute_deadline=dispute_deadline)
                self._record_activity(match_id, MatchActivityType.DISPUTED,
                                      f"Vote tied. Players have {self.settings.dispute_window_hours} hours "
                                      f"to submit evidence.")
                self._queue("match_disputed", lambda: self.notifier.match_disputed(match_id, user_ids))
                return MatchStatus.DISPUTED

            await self._pay_out(match, MatchStatus.VOTING, pot, participants, [result.winner_id], now)
            return MatchStatus.COMPLETED

        return await self._run_transition(match, settle)

    async def submit_dispute_evidence(self, match_id: UUID, user_id: UUID, reference: str) -> Match:
        """Attach an evidence reference to a disputed match."""
        match = await self.get_match(match_id)
        if match.status != MatchStatus.DISPUTED.value:
            raise InvalidTransitionError("Evidence can only be submitted while a match is disputed")
        if match.get_participant(user_id) is None:
            raise ValidationError("Only participants can submit evidence")
        if not reference or not reference.strip():
            raise ValidationError("Evidence reference is required")

        try:
            match.dispute_evidence = [*(match.dispute_evidence or []), reference.strip()]
            self._record_activity(match_id, MatchActivityType.EVIDENCE, "Evidence submitted", user_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return await self.get_match(match_id)

    async def resolve_dispute(self, match_id: UUID, winner_id: UUID, now: datetime | None = None) -> TransitionResult:
        """Settle a disputed match to the winner chosen by evidence review."""
        now = ensure_utc(now) or utc_now()
        match = await self.get_match(match_id)
        if match.status != MatchStatus.DISPUTED.value:
            raise InvalidTransitionError("Only disputed matches can be resolved")
        if match.get_participant(winner_id) is None:
            raise ValidationError("Winner must be a participant in this match")

        async def resolve() -> MatchStatus:
            pot, participants = await self._claim(match, MatchStatus.DISPUTED)
            await self._pay_out(match, MatchStatus.DISPUTED, pot, participants, [winner_id], now)
            return MatchStatus.COMPLETED

        return await self._run_transition(match, resolve)

    async def expire_dispute(self, match_id: UUID, now: datetime | None = None) -> TransitionResult:
        """
        Fall back to an even split once the dispute deadline passes.

        The fee is charged as for any settlement; the remaining payout is shared
        by the tied top-vote participants with the remainder going to the
        lexicographically first user id.
        """
        now = ensure_utc(now) or utc_now()
        match = await self.get_match(match_id)
        status = MatchStatus(match.status)
        if status != MatchStatus.DISPUTED:
            return TransitionResult(match_id, False, status, detail="not disputed")
        if not has_elapsed(match.dispute_deadline, now):
            return TransitionResult(match_id, False, status, detail="dispute window open")

        async def expire() -> MatchStatus:
            pot, participants = await self._claim(match, MatchStatus.DISPUTED)
            result = self._tally(participants, deadline_passed=True)
            recipients = [result.winner_id] if result.is_decided else list(result.tied_ids)
            await self._pay_out(match, MatchStatus.DISPUTED, pot, participants, recipients, now)
            return MatchStatus.COMPLETED

        return await self._run_transition(match, expire)

    # ===== Internals =====

    async def _pay_out(
        self,
        match: Match,
        expected: MatchStatus,
        pot: int,
        participants: list[MatchParticipant],
        recipients: list[UUID],
        now: datetime,
    ) -> None:
        """Complete the match and post payout and fee entries from freshly read rows."""
        match_id = match.match_id
        stakes = sum(p.stake_amount for p in participants)
        if stakes != pot:
            raise InvariantViolationError(f"Stakes {stakes} do not add up to pot {pot} for match {match_id}")
        if not recipients:
            raise InvariantViolationError(f"Match {match_id} has nobody to pay out")

        breakdown = compute_payout(
            pot,
            [p.subscription_tier for p in participants],
            recipients[0] if len(recipients) == 1 else None,
            self.settings.platform_fee_percent,
        )
        shares = split_evenly(breakdown.payout_amount, recipients)
        assert_conserves(pot, *shares.values(), breakdown.fee_amount)

        await self._transition(
            match, expected, MatchStatus.COMPLETED,
            completed_at=now,
            payout_amount=breakdown.payout_amount,
            fee_amount=breakdown.fee_amount,
        )

        entries = [
            LedgerEntry(user_id, amount, TransactionKind.PAYOUT, match_id, withdrawable=True)
            for user_id, amount in shares.items()
        ]
        entries.append(
            LedgerEntry(self.settings.fee_sink_user_id, breakdown.fee_amount, TransactionKind.FEE,
                        match_id, withdrawable=False)
        )
        await self.ledger.post_entries(entries)

        for participant in participants:
            if participant.user_id in shares:
                participant.is_winner = True
                participant.payout_amount = shares[participant.user_id]

        user_ids = [p.user_id for p in participants]
        summary = ", ".join(f"{user_id} won {amount}" for user_id, amount in shares.items())
        self._record_activity(match_id, MatchActivityType.PAYOUT,
                              f"{summary} tokens (fee {breakdown.fee_amount})")
        for user_id, amount in shares.items():
            self._queue("match_paid_out",
                        lambda user_id=user_id, amount=amount:
                        self.notifier.match_paid_out(match_id, user_id, amount, user_ids))

    async def _run_transition(
        self,
        match: Match,
        body: Callable[[], Awaitable[MatchStatus]],
    ) -> TransitionResult:
        """
        Run ``body`` as one unit of work, commit, then dispatch queued events.

        ``body`` returns the status it moved the match to. An invariant failure
        rolls the work back and is escalated before it propagates.
        """
        match_id = match.match_id
        from_status = MatchStatus(match.status)
        self._outbox.clear()
        try:
            target = await body()
            await self.db.commit()
        except ConcurrencyConflictError as exc:
            await self.db.rollback()
            self._outbox.clear()
            logger.info(f"Skipped {from_status.value} transition for {match_id}: {exc.reason}")
            return TransitionResult(match_id, False, from_status, detail="concurrent transition")
        except InvariantViolationError as exc:
            await self.db.rollback()
            self._outbox.clear()
            await self._escalate(match_id, exc)
            raise
        except Exception:
            await self.db.rollback()
            self._outbox.clear()
            raise

        logger.info(f"Match {match_id}: {from_status.value} -> {target.value}")
        await self._dispatch()
        return TransitionResult(match_id, True, from_status, target)

    async def _claim(self, match: Match, expected: MatchStatus) -> tuple[int, list[MatchParticipant]]:
        """
        Lock the match row while it still has ``expected`` status and re-read it.

        The same-value status write holds the row until commit, so votes and
        other transitions wait behind the settlement that follows.
        """
        result = await self.db.execute(
            update(Match)
            .where(Match.match_id == match.match_id, Match.status == expected.value)
            .values(status=expected.value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflictError(f"Match {match.match_id} is no longer {expected.value}")
        return await self._current_state(match.match_id)

    async def _current_state(self, match_id: UUID) -> tuple[int, list[MatchParticipant]]:
        """Pot and participants as committed, read inside the current transaction."""
        pot = await self.db.execute(select(Match.total_pot).where(Match.match_id == match_id))
        result = await self.db.execute(
            select(MatchParticipant)
            .where(MatchParticipant.match_id == match_id)
            .order_by(MatchParticipant.joined_at, MatchParticipant.user_id)
            .execution_options(populate_existing=True)
        )
        return pot.scalar_one(), list(result.scalars().all())

    async def _transition(self, match: Match, expected: MatchStatus, new: MatchStatus, **values) -> None:
        """Compare-and-update the status; raises ConcurrencyConflictError when it already moved."""
        assert_transition(expected, new)
        result = await self.db.execute(
            update(Match)
            .where(Match.match_id == match.match_id, Match.status == expected.value)
            .values(status=new.value, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflictError(f"Match {match.match_id} is no longer {expected.value}")

        set_committed_value(match, "status", new.value)
        for key, value in values.items():
            set_committed_value(match, key, value)

    async def _remove_participant(self, match: Match, participant: MatchParticipant, allowed=LEAVABLE) -> None:
        result = await self.db.execute(
            update(Match)
            .where(
                Match.match_id == match.match_id,
                Match.status.in_([status.value for status in allowed]),
            )
            .values(total_pot=Match.total_pot - participant.stake_amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError("You can only leave a match before voting starts")

        await self.ledger.refund_stake(participant.user_id, match.match_id, participant.stake_amount,
                                       auto_commit=False)
        await self.db.delete(participant)
        self._record_activity(match.match_id, MatchActivityType.LEFT,
                              "Left the match; stake refunded", participant.user_id)
        logger.info(f"User {participant.user_id} left match {match.match_id}, refunded {participant.stake_amount}")

    async def _debit_stake(self, user_id: UUID, match: Match) -> None:
        try:
            await self.ledger.debit(user_id, match.stake_amount, TransactionKind.STAKE, match.match_id,
                                    auto_commit=False)
        except InsufficientFundsError:
            raise InsufficientFundsError(f"Insufficient balance. You need {match.stake_amount} tokens.")

    async def _escalate(self, match_id: UUID, exc: Exception) -> None:
        """
        Log and record a settlement that needs manual review; the match keeps its status.

        Only the first escalation of a match is recorded. The scheduler stops
        picking the match up once that record exists.
        """
        logger.critical(f"Settlement escalated for match {match_id}: {exc}")
        try:
            if await self.db.scalar(select(self.escalated(match_id))):
                return
            self._record_activity(match_id, MatchActivityType.ESCALATION, f"Settlement halted: {exc}"[:500])
            await self.db.commit()
        except Exception as record_error:
            await self.db.rollback()
            logger.error(f"Failed to record escalation for match {match_id}: {record_error}")

    def _record_activity(self, match_id: UUID, activity_type: MatchActivityType, message: str,
                         user_id: UUID | None = None) -> None:
        self.db.add(MatchActivity(match_id=match_id, activity_type=activity_type.value,
                                  message=message, user_id=user_id))

    def _queue(self, name: str, send: Callable[[], Awaitable[None]]) -> None:
        self._outbox.append((name, send))

    async def _dispatch(self) -> None:
        events, self._outbox = self._outbox, []
        for name, send in events:
            try:
                await send()
            except Exception as e:
                logger.warning(f"Notification {name} failed: {e}")

    @staticmethod
    def escalated(match_id):
        """EXISTS clause for an escalation already recorded against ``match_id``."""
        return exists().where(
            MatchActivity.match_id == match_id,
            MatchActivity.activity_type == MatchActivityType.ESCALATION.value,
        )

    @staticmethod
    def _tally(participants: list[MatchParticipant], deadline_passed: bool) -> TallyResult:
        ballots = [Ballot(p.user_id, p.vote_for_user_id) for p in participants]
        return tally(ballots, deadline_passed)

    @staticmethod
    def _new_participant(match: Match, user: User, now: datetime) -> MatchParticipant:
        return MatchParticipant(
            match_id=match.match_id,
            user_id=user.user_id,
            stake_amount=match.stake_amount,
            subscription_tier=user.tier.value,
            leave_approved_by=[],
            joined_at=now,
        )

    @staticmethod
    def _others(match: Match, user_id: UUID) -> list[MatchParticipant]:
        return [p for p in match.participants if p.user_id != user_id]

    @staticmethod
    def _user_ids(match: Match) -> list[UUID]:
        return [p.user_id for p in match.participants]
