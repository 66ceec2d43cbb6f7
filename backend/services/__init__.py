"""Service layer."""
from backend.services.ledger_service import LedgerService, LedgerEntry, BalanceReconciliation
from backend.services.payout_calculator import PayoutBreakdown, compute_payout, split_evenly
from backend.services.vote_tally import Ballot, TallyOutcome, TallyResult, tally
from backend.services.match_service import MatchService, TransitionResult
from backend.services.settlement_scheduler import SettlementScheduler, SettlementCycleReport
from backend.services.wallet_service import WalletService, TokenPackage, TOKEN_PACKAGES
from backend.services.notification_service import (
    NotificationDispatcher,
    LoggingNotificationDispatcher,
    WebhookNotificationDispatcher,
    get_notification_dispatcher,
)
from backend.services.payment_processor import (
    PaymentProcessor,
    SandboxPaymentProcessor,
    HttpPaymentProcessor,
    get_payment_processor,
)
from backend.services.compliance_service import (
    ComplianceDecision,
    ComplianceService,
    AllowAllComplianceService,
    get_compliance_service,
)

__all__ = [
    "LedgerService",
    "LedgerEntry",
    "BalanceReconciliation",
    "PayoutBreakdown",
    "compute_payout",
    "split_evenly",
    "Ballot",
    "TallyOutcome",
    "TallyResult",
    "tally",
    "MatchService",
    "TransitionResult",
    "SettlementScheduler",
    "SettlementCycleReport",
    "WalletService",
    "TokenPackage",
    "TOKEN_PACKAGES",
    "NotificationDispatcher",
    "LoggingNotificationDispatcher",
    "WebhookNotificationDispatcher",
    "get_notification_dispatcher",
    "PaymentProcessor",
    "SandboxPaymentProcessor",
    "HttpPaymentProcessor",
    "get_payment_processor",
    "ComplianceDecision",
    "ComplianceService",
    "AllowAllComplianceService",
    "get_compliance_service",
]
