"""Fee and payout calculation.

Pure functions only: identical inputs always give identical outputs, so a
retried settlement recomputes exactly the same split.
"""
from dataclasses import dataclass
from typing import Iterable
from uuid import UUID

from backend.models.base import SubscriptionTier
from backend.utils.exceptions import InvariantViolationError, ValidationError

DEFAULT_FEE_PERCENT = 2


@dataclass(frozen=True)
class PayoutBreakdown:
    """Result of splitting a pot between the winner side and the fee sink."""
    payout_amount: int
    fee_amount: int

    @property
    def total(self) -> int:
        return self.payout_amount + self.fee_amount


def compute_payout(
    pot: int,
    participant_tiers: Iterable[SubscriptionTier | str],
    winner: UUID | None,
    fee_percent: int = DEFAULT_FEE_PERCENT,
) -> PayoutBreakdown:
    """Compute the payout and fee for a settled pot.

    The fee is waived when every participant holds a premium tier. Otherwise it
    is ``fee_percent`` of the pot floored to whole tokens.

    Args:
        pot: Total pot in whole tokens
        participant_tiers: Tier of each participant as frozen at join time
        winner: Winning user id (None only for an even split)
        fee_percent: Whole-percent platform fee

    Returns:
        PayoutBreakdown with payout_amount + fee_amount == pot

    Raises:
        ValidationError: Negative pot, out-of-range fee, or no participants
    """
    if pot < 0:
        raise ValidationError(f"Pot cannot be negative: {pot}")
    if fee_percent < 0 or fee_percent > 100:
        raise ValidationError(f"Fee percent out of range: {fee_percent}")

    tiers = [SubscriptionTier(tier) for tier in participant_tiers]
    if not tiers:
        raise ValidationError("Cannot compute a payout without participants")

    all_premium = all(tier.is_premium for tier in tiers)
    fee_amount = 0 if all_premium else (pot * fee_percent) // 100
    breakdown = PayoutBreakdown(payout_amount=pot - fee_amount, fee_amount=fee_amount)

    assert_conserves(pot, breakdown.payout_amount, breakdown.fee_amount)
    return breakdown


def split_evenly(amount: int, recipients: Iterable[UUID]) -> dict[UUID, int]:
    """Split ``amount`` evenly; the remainder goes to the lexicographically first id."""
    ordered = sorted(set(recipients), key=str)
    if not ordered:
        raise ValidationError("Cannot split a payout between zero recipients")
    if amount < 0:
        raise ValidationError(f"Cannot split a negative amount: {amount}")

    share, remainder = divmod(amount, len(ordered))
    shares = {user_id: share for user_id in ordered}
    shares[ordered[0]] += remainder
    return shares


def assert_conserves(pot: int, *amounts: int) -> None:
    """Raise InvariantViolationError unless the amounts are non-negative and sum to the pot."""
    if any(amount < 0 for amount in amounts):
        raise InvariantViolationError(f"Negative settlement amount in {amounts} for pot {pot}")
    if sum(amounts) != pot:
        raise InvariantViolationError(f"Settlement amounts {amounts} sum to {sum(amounts)}, pot is {pot}")
