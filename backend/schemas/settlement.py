"""Settlement sweep schemas."""
from pydantic import BaseModel


class SettlementCycleResponse(BaseModel):
    started: int
    cancelled: int
    voting_opened: int
    reminders_sent: int
    completed: int
    disputed: int
    disputes_expired: int
    skipped: int
    escalations: int
    errors: int
