"""Tests for vote tallying."""
import uuid

from backend.services.vote_tally import Ballot, TallyOutcome, tally


def _ids(n):
    return sorted((uuid.uuid4() for _ in range(n)), key=str)


class TestTally:
    """Winner, tie and incomplete classification."""

    def test_majority_wins(self):
        a, b, c = _ids(3)

        result = tally([Ballot(a, a), Ballot(b, a), Ballot(c, b)], deadline_passed=False)

        assert result.outcome == TallyOutcome.WINNER
        assert result.winner_id == a
        assert result.counts == {a: 2, b: 1}
        assert result.is_decided

    def test_incomplete_before_deadline(self):
        a, b, c = _ids(3)

        result = tally([Ballot(a, a), Ballot(b, a), Ballot(c, None)], deadline_passed=False)

        assert result.outcome == TallyOutcome.INCOMPLETE
        assert result.winner_id is None

    def test_missing_votes_ignored_after_deadline(self):
        a, b, c = _ids(3)

        result = tally([Ballot(a, b), Ballot(b, None), Ballot(c, None)], deadline_passed=True)

        assert result.outcome == TallyOutcome.WINNER
        assert result.winner_id == b

    def test_two_two_split_is_a_tie(self):
        a, b, c, d = _ids(4)

        result = tally(
            [Ballot(a, a), Ballot(b, a), Ballot(c, c), Ballot(d, c)],
            deadline_passed=False,
        )

        assert result.outcome == TallyOutcome.TIE
        assert result.tied_ids == (a, c)
        assert result.winner_id is None
        assert not result.is_decided

    def test_everyone_votes_for_themselves_is_a_tie(self):
        a, b = _ids(2)

        result = tally([Ballot(a, a), Ballot(b, b)], deadline_passed=False)

        assert result.outcome == TallyOutcome.TIE
        assert set(result.tied_ids) == {a, b}

    def test_no_votes_after_deadline_ties_everyone(self):
        a, b, c = _ids(3)

        result = tally([Ballot(a, None), Ballot(b, None), Ballot(c, None)], deadline_passed=True)

        assert result.outcome == TallyOutcome.TIE
        assert result.tied_ids == (a, b, c)

    def test_input_order_does_not_matter(self):
        a, b, c = _ids(3)
        ballots = [Ballot(a, a), Ballot(b, b), Ballot(c, a)]

        assert tally(ballots, True) == tally(list(reversed(ballots)), True)
