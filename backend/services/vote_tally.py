"""Vote tally and dispute detection."""
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable
from uuid import UUID


class TallyOutcome(str, Enum):
    WINNER = "winner"
    TIE = "tie"
    INCOMPLETE = "incomplete"


@dataclass(frozen=True)
class Ballot:
    """One participant's vote; ``vote_for`` is None until they vote."""
    voter_id: UUID
    vote_for: UUID | None


@dataclass(frozen=True)
class TallyResult:
    outcome: TallyOutcome
    winner_id: UUID | None = None
    tied_ids: tuple[UUID, ...] = ()
    counts: dict[UUID, int] = field(default_factory=dict)

    @property
    def is_decided(self) -> bool:
        return self.outcome == TallyOutcome.WINNER


def tally(ballots: Iterable[Ballot], deadline_passed: bool) -> TallyResult:
    """Count votes per candidate and classify the result.

    Incomplete while someone has not voted and the deadline is still open; the
    caller must not act on it. A shared top count is always a tie, never an
    automatic pick. With no votes at all after the deadline every participant
    is treated as tied.
    """
    ballots = list(ballots)
    votes = [ballot.vote_for for ballot in ballots if ballot.vote_for is not None]
    counts = dict(Counter(votes))

    if len(votes) < len(ballots) and not deadline_passed:
        return TallyResult(outcome=TallyOutcome.INCOMPLETE, counts=counts)

    if not counts:
        everyone = tuple(sorted({ballot.voter_id for ballot in ballots}, key=str))
        return TallyResult(outcome=TallyOutcome.TIE, tied_ids=everyone, counts=counts)

    top = max(counts.values())
    leaders = tuple(sorted((candidate for candidate, n in counts.items() if n == top), key=str))

    if len(leaders) > 1:
        return TallyResult(outcome=TallyOutcome.TIE, tied_ids=leaders, counts=counts)

    return TallyResult(outcome=TallyOutcome.WINNER, winner_id=leaders[0], counts=counts)
