"""Allowed match status transitions."""
from backend.models.base import MatchStatus
from backend.utils.exceptions import InvalidTransitionError


ALLOWED = {
    MatchStatus.PENDING: {MatchStatus.ACTIVE, MatchStatus.CANCELLED},
    MatchStatus.ACTIVE: {MatchStatus.VOTING},
    MatchStatus.VOTING: {MatchStatus.COMPLETED, MatchStatus.DISPUTED},
    MatchStatus.DISPUTED: {MatchStatus.COMPLETED},
    MatchStatus.COMPLETED: set(),
    MatchStatus.CANCELLED: set(),
}

TERMINAL = {MatchStatus.COMPLETED, MatchStatus.CANCELLED}

# Statuses in which a participant may ask to leave
LEAVABLE = {MatchStatus.PENDING, MatchStatus.ACTIVE}


def assert_transition(old: MatchStatus | str, new: MatchStatus | str) -> None:
    old, new = MatchStatus(old), MatchStatus(new)
    if new not in ALLOWED.get(old, set()):
        raise InvalidTransitionError(f"Illegal match transition: {old.value} -> {new.value}")


def is_terminal(status: MatchStatus | str) -> bool:
    return MatchStatus(status) in TERMINAL
