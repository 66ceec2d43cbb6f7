"""Settlement exception hierarchy.

ValidationError subclasses are rejected synchronously with no state change and
carry a user-facing reason. ConcurrencyConflictError is a no-op for callers.
ExternalServiceError means a collaborator was unreachable and nothing was
applied. InvariantViolationError aborts a settlement attempt and is escalated.
"""


class SettlementError(Exception):
    """Base exception for the settlement service."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ValidationError(SettlementError):
    """Request rejected before any state change."""


class MatchNotFoundError(ValidationError):
    """Match does not exist."""


class InsufficientFundsError(ValidationError):
    """Balance cannot cover a debit."""


class InvalidVoteError(ValidationError):
    """Vote target or voter is not a participant, or voting is closed."""


class InvalidTransitionError(ValidationError):
    """Requested status change is not allowed from the current status."""


class ComplianceDeniedError(ValidationError):
    """Compliance collaborator refused a deposit or withdrawal."""


class PaymentDeclinedError(ValidationError):
    """Payment processor answered with a failure."""


class ConcurrencyConflictError(SettlementError):
    """Another process already transitioned the match."""


class ExternalServiceError(SettlementError):
    """Payment processor or compliance collaborator unreachable."""


class InvariantViolationError(SettlementError):
    """Conservation or balance invariant would be broken."""
