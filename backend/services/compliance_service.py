"""Compliance collaborator contract.

Consulted before deposits and withdrawals only; in-match stake and payout
movements never call it. Regional rule content lives with the compliance team.
"""
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID


@dataclass(frozen=True)
class ComplianceDecision:
    allowed: bool
    reason: str | None = None

    @classmethod
    def allow(cls) -> "ComplianceDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> "ComplianceDecision":
        return cls(allowed=False, reason=reason)


class ComplianceService(Protocol):

    async def check_withdrawal(self, user_id: UUID, amount: int) -> ComplianceDecision: ...

    async def check_deposit(self, user_id: UUID, amount: int, region: str) -> ComplianceDecision: ...


class AllowAllComplianceService:
    """Default collaborator used until a compliance backend is wired in."""

    async def check_withdrawal(self, user_id: UUID, amount: int) -> ComplianceDecision:
        return ComplianceDecision.allow()

    async def check_deposit(self, user_id: UUID, amount: int, region: str) -> ComplianceDecision:
        return ComplianceDecision.allow()


def get_compliance_service() -> ComplianceService:
    return AllowAllComplianceService()
