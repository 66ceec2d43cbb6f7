"""Deposit and withdrawal flows around the ledger."""
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from backend.models.base import TransactionKind
from backend.models.transaction import Transaction
from backend.models.user import User
from backend.models.wallet_balance import WalletBalance
from backend.services.compliance_service import ComplianceService, get_compliance_service
from backend.services.ledger_service import LedgerService
from backend.services.payment_processor import PaymentProcessor, get_payment_processor
from backend.utils.exceptions import (
    ComplianceDeniedError,
    InsufficientFundsError,
    PaymentDeclinedError,
    ValidationError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPackage:
    package_id: str
    base_tokens: int
    bonus_percent: int
    price_cents: int
    popular: bool = False

    @property
    def bonus_tokens(self) -> int:
        return self.base_tokens * self.bonus_percent // 100

    @property
    def total_tokens(self) -> int:
        return self.base_tokens + self.bonus_tokens


# One token is one cent
TOKEN_PACKAGES: dict[str, TokenPackage] = {
    package.package_id: package
    for package in (
        TokenPackage("tokens_500", 500, 0, 500),
        TokenPackage("tokens_1000", 1000, 10, 1000),
        TokenPackage("tokens_2500", 2500, 12, 2500, popular=True),
        TokenPackage("tokens_5000", 5000, 20, 5000),
        TokenPackage("tokens_10000", 10000, 35, 10000),
    )
}


@dataclass(frozen=True)
class DepositResult:
    deposit: Transaction
    bonus: Transaction | None
    wallet: WalletBalance


class WalletService:
    """Moves money between the payment processor and a user's wallet."""

    def __init__(
        self,
        db: AsyncSession,
        ledger: LedgerService | None = None,
        processor: PaymentProcessor | None = None,
        compliance: ComplianceService | None = None,
    ):
        self.db = db
        self.ledger = ledger or LedgerService(db)
        self.processor = processor or get_payment_processor()
        self.compliance = compliance or get_compliance_service()

    async def get_wallet(self, user: User) -> WalletBalance:
        wallet = await self.ledger.get_balance(user.user_id)
        await self.db.commit()
        return wallet

    async def get_transactions(self, user: User, limit: int = 50, offset: int = 0) -> list[Transaction]:
        return await self.ledger.get_transactions(user.user_id, limit=limit, offset=offset)

    async def deposit(self, user: User, amount: int, bonus_percent: int = 0) -> DepositResult:
        """
        Charge the user and credit their wallet.

        The base amount becomes withdrawable; the bonus only counts toward the
        total balance. Both entries are committed together after a successful
        charge.

        Raises:
            ComplianceDeniedError: Deposit blocked for the user's region
            PaymentDeclinedError: Processor declined the charge
            ExternalServiceError: Processor unreachable
        """
        user_id = user.user_id
        if not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Deposit amount must be a positive number of tokens")
        if bonus_percent < 0 or bonus_percent > 100:
            raise ValidationError("Bonus percent must be between 0 and 100")

        decision = await self.compliance.check_deposit(user_id, amount, user.region)
        if not decision.allowed:
            logger.warning(f"Deposit blocked for user={user_id}: {decision.reason}")
            raise ComplianceDeniedError(decision.reason or "Deposits are not available in your region")

        if not await self.processor.charge(user_id, amount):
            logger.warning(f"Charge declined for user={user_id}, amount={amount}")
            raise PaymentDeclinedError("Payment was declined")

        bonus_amount = amount * bonus_percent // 100
        try:
            deposit_txn = await self.ledger.credit(
                user_id, amount, TransactionKind.DEPOSIT, withdrawable=True, auto_commit=False
            )
            bonus_txn = None
            if bonus_amount > 0:
                bonus_txn = await self.ledger.credit(
                    user_id, bonus_amount, TransactionKind.BONUS, withdrawable=False, auto_commit=False
                )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.critical(f"Charge succeeded but crediting failed for user={user_id}, amount={amount}")
            raise

        wallet = await self.ledger.get_balance(user_id)
        logger.info(f"Deposit complete: user={user_id}, amount={amount}, bonus={bonus_amount}")
        return DepositResult(deposit=deposit_txn, bonus=bonus_txn, wallet=wallet)

    async def purchase_package(self, user: User, package_id: str) -> DepositResult:
        package = TOKEN_PACKAGES.get(package_id)
        if package is None:
            raise ValidationError(f"Unknown token package: {package_id}")
        return await self.deposit(user, package.base_tokens, package.bonus_percent)

    async def withdraw(self, user: User, amount: int) -> WalletBalance:
        """
        Pay out withdrawable funds through the processor.

        The debit is written but left uncommitted while the processor call runs,
        so a decline or outage leaves the balance untouched.
        """
        user_id = user.user_id
        if not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Withdrawal amount must be a positive number of tokens")

        wallet = await self.ledger.get_balance(user_id)
        available = wallet.withdrawable_balance
        if amount > available:
            await self.db.rollback()
            raise InsufficientFundsError(f"Only {available} tokens are available to withdraw")

        decision = await self.compliance.check_withdrawal(user_id, amount)
        if not decision.allowed:
            await self.db.rollback()
            logger.warning(f"Withdrawal blocked for user={user_id}: {decision.reason}")
            raise ComplianceDeniedError(decision.reason or "Withdrawals are not available")

        try:
            await self.ledger.debit(user_id, amount, TransactionKind.WITHDRAWAL, auto_commit=False)
            if not await self.processor.payout(user_id, amount):
                raise PaymentDeclinedError("Withdrawal was declined by the payment processor")
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Withdrawal complete: user={user_id}, amount={amount}")
        return await self.ledger.get_balance(user_id)
