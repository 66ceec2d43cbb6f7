"""Tests for fee and payout calculation."""
import uuid

import pytest

from backend.models.base import SubscriptionTier
from backend.services.payout_calculator import assert_conserves, compute_payout, split_evenly
from backend.utils.exceptions import InvariantViolationError, ValidationError

FREE = SubscriptionTier.FREE
PREMIUM = SubscriptionTier.PREMIUM
TRIAL = SubscriptionTier.PREMIUM_TRIAL


class TestComputePayout:
    """Fee rules and conservation."""

    def test_three_free_players_pay_two_percent(self):
        winner = uuid.uuid4()

        breakdown = compute_payout(300, [FREE, FREE, FREE], winner)

        assert breakdown.fee_amount == 6
        assert breakdown.payout_amount == 294

    def test_fee_is_floored(self):
        breakdown = compute_payout(149, [FREE, FREE], uuid.uuid4())

        assert breakdown.fee_amount == 2
        assert breakdown.payout_amount == 147

    def test_small_pot_has_zero_fee(self):
        breakdown = compute_payout(20, [FREE, FREE], uuid.uuid4())

        assert breakdown.fee_amount == 0
        assert breakdown.payout_amount == 20

    def test_all_premium_waives_fee(self):
        breakdown = compute_payout(1000, [PREMIUM, TRIAL], uuid.uuid4())

        assert breakdown.fee_amount == 0
        assert breakdown.payout_amount == 1000

    def test_one_free_participant_keeps_fee(self):
        breakdown = compute_payout(1000, [PREMIUM, PREMIUM, FREE], uuid.uuid4())

        assert breakdown.fee_amount == 20
        assert breakdown.payout_amount == 980

    def test_accepts_tier_strings(self):
        breakdown = compute_payout(500, ["premium", "free"], uuid.uuid4())

        assert breakdown.fee_amount == 10

    def test_custom_fee_percent(self):
        breakdown = compute_payout(1000, [FREE, FREE], uuid.uuid4(), fee_percent=5)

        assert breakdown.fee_amount == 50

    @pytest.mark.parametrize("pot", [0, 1, 2, 49, 50, 51, 99, 100, 101, 333, 1000, 12345, 999999])
    @pytest.mark.parametrize("tiers", [[FREE, FREE], [PREMIUM, PREMIUM], [FREE, PREMIUM, TRIAL]])
    def test_payout_plus_fee_equals_pot(self, pot, tiers):
        breakdown = compute_payout(pot, tiers, uuid.uuid4())

        assert breakdown.total == pot
        assert breakdown.fee_amount >= 0
        assert breakdown.payout_amount >= 0

    def test_deterministic(self):
        winner = uuid.uuid4()

        assert compute_payout(777, [FREE, PREMIUM], winner) == compute_payout(777, [FREE, PREMIUM], winner)

    def test_rejects_negative_pot(self):
        with pytest.raises(ValidationError):
            compute_payout(-1, [FREE], uuid.uuid4())

    def test_rejects_empty_participants(self):
        with pytest.raises(ValidationError):
            compute_payout(100, [], uuid.uuid4())

    def test_rejects_out_of_range_fee(self):
        with pytest.raises(ValidationError):
            compute_payout(100, [FREE], uuid.uuid4(), fee_percent=101)


class TestSplitEvenly:
    """Even split used when a dispute expires."""

    def test_remainder_goes_to_lexicographically_first_id(self):
        a = uuid.UUID("00000000-0000-0000-0000-00000000000a")
        b = uuid.UUID("00000000-0000-0000-0000-00000000000b")

        shares = split_evenly(295, [b, a])

        assert shares == {a: 148, b: 147}

    def test_exact_split(self):
        ids = [uuid.uuid4() for _ in range(3)]

        shares = split_evenly(300, ids)

        assert set(shares.values()) == {100}

    def test_single_recipient_gets_everything(self):
        winner = uuid.uuid4()

        assert split_evenly(294, [winner]) == {winner: 294}

    def test_duplicate_ids_count_once(self):
        winner = uuid.uuid4()

        assert split_evenly(10, [winner, winner]) == {winner: 10}

    def test_no_recipients_rejected(self):
        with pytest.raises(ValidationError):
            split_evenly(10, [])


class TestAssertConserves:

    def test_passes_when_amounts_sum_to_pot(self):
        assert_conserves(300, 294, 6)

    def test_detects_leak(self):
        with pytest.raises(InvariantViolationError):
            assert_conserves(300, 294, 5)

    def test_detects_negative_amount(self):
        with pytest.raises(InvariantViolationError):
            assert_conserves(300, 310, -10)
