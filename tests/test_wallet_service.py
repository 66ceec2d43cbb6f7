"""Tests for deposits, packages and withdrawals."""
import pytest

from backend.models.base import TransactionKind
from backend.services.compliance_service import ComplianceDecision
from backend.services.ledger_service import LedgerService
from backend.services.payment_processor import SandboxPaymentProcessor
from backend.services.wallet_service import TOKEN_PACKAGES, WalletService
from backend.utils.exceptions import (
    ComplianceDeniedError,
    ExternalServiceError,
    InsufficientFundsError,
    PaymentDeclinedError,
    ValidationError,
)


@pytest.fixture
def wallet_service(db_session, processor, compliance):
    return WalletService(db_session, processor=processor, compliance=compliance)


class TestDeposits:

    @pytest.mark.asyncio
    async def test_deposit_credits_withdrawable_funds(self, wallet_service, user_factory, read_wallet, processor):
        user = await user_factory()

        result = await wallet_service.deposit(user, 1000)

        assert result.deposit.amount == 1000
        assert result.bonus is None
        assert (result.wallet.total_balance, result.wallet.withdrawable_balance) == (1000, 1000)
        assert await read_wallet(user.user_id) == (1000, 1000)
        assert processor.charges == [(user.user_id, 1000)]

    @pytest.mark.asyncio
    async def test_bonus_is_not_withdrawable(self, wallet_service, user_factory, read_wallet):
        user = await user_factory()

        result = await wallet_service.deposit(user, 1000, bonus_percent=10)

        assert result.bonus.amount == 100
        assert result.bonus.kind == TransactionKind.BONUS.value
        assert await read_wallet(user.user_id) == (1100, 1000)

    @pytest.mark.asyncio
    async def test_invalid_amount_rejected(self, wallet_service, user_factory, processor):
        user = await user_factory()

        with pytest.raises(ValidationError):
            await wallet_service.deposit(user, 0)
        assert processor.charges == []

    @pytest.mark.asyncio
    async def test_compliance_denial_blocks_charge(self, wallet_service, user_factory, compliance, processor,
                                                   read_wallet):
        user = await user_factory(region="XX")
        compliance.deposit_decision = ComplianceDecision.deny("Deposits are not offered in XX")

        with pytest.raises(ComplianceDeniedError) as exc_info:
            await wallet_service.deposit(user, 500)

        assert exc_info.value.reason == "Deposits are not offered in XX"
        assert compliance.checked == [("deposit", user.user_id, 500, "XX")]
        assert processor.charges == []
        assert await read_wallet(user.user_id) == (0, 0)

    @pytest.mark.asyncio
    async def test_declined_charge_credits_nothing(self, db_session, user_factory, compliance, read_wallet):
        service = WalletService(db_session, processor=SandboxPaymentProcessor(succeed=False), compliance=compliance)
        user = await user_factory()

        with pytest.raises(PaymentDeclinedError):
            await service.deposit(user, 500)

        assert await read_wallet(user.user_id) == (0, 0)

    @pytest.mark.asyncio
    async def test_unreachable_processor_credits_nothing(self, db_session, user_factory, compliance, read_wallet):
        service = WalletService(db_session, processor=SandboxPaymentProcessor(reachable=False), compliance=compliance)
        user = await user_factory()

        with pytest.raises(ExternalServiceError):
            await service.deposit(user, 500)

        assert await read_wallet(user.user_id) == (0, 0)


class TestPackages:

    def test_package_bonus_math(self):
        package = TOKEN_PACKAGES["tokens_2500"]

        assert package.bonus_tokens == 300
        assert package.total_tokens == 2800
        assert package.popular

    @pytest.mark.asyncio
    async def test_purchase_package(self, wallet_service, user_factory, read_wallet):
        user = await user_factory()

        result = await wallet_service.purchase_package(user, "tokens_10000")

        assert result.deposit.amount == 10000
        assert result.bonus.amount == 3500
        assert await read_wallet(user.user_id) == (13500, 10000)

    @pytest.mark.asyncio
    async def test_unknown_package_rejected(self, wallet_service, user_factory):
        user = await user_factory()

        with pytest.raises(ValidationError):
            await wallet_service.purchase_package(user, "tokens_1")


class TestWithdrawals:

    @pytest.mark.asyncio
    async def test_withdraw_pays_out(self, wallet_service, user_factory, read_wallet, processor):
        user = await user_factory(balance=500, bonus=50)

        wallet = await wallet_service.withdraw(user, 200)

        assert (wallet.total_balance, wallet.withdrawable_balance) == (350, 300)
        assert await read_wallet(user.user_id) == (350, 300)
        assert processor.payouts == [(user.user_id, 200)]

    @pytest.mark.asyncio
    async def test_bonus_funds_cannot_be_withdrawn(self, wallet_service, user_factory, read_wallet, processor):
        user = await user_factory(balance=100, bonus=400)

        with pytest.raises(InsufficientFundsError) as exc_info:
            await wallet_service.withdraw(user, 150)

        assert exc_info.value.reason == "Only 100 tokens are available to withdraw"
        assert processor.payouts == []
        assert await read_wallet(user.user_id) == (500, 100)

    @pytest.mark.asyncio
    async def test_compliance_denial_blocks_withdrawal(self, wallet_service, user_factory, compliance, read_wallet):
        user = await user_factory(balance=300)
        compliance.withdrawal_decision = ComplianceDecision.deny("Identity verification required")

        with pytest.raises(ComplianceDeniedError):
            await wallet_service.withdraw(user, 100)

        assert await read_wallet(user.user_id) == (300, 300)

    @pytest.mark.asyncio
    async def test_declined_payout_restores_balance(self, db_session, user_factory, compliance, read_wallet):
        service = WalletService(db_session, processor=SandboxPaymentProcessor(succeed=False), compliance=compliance)
        user = await user_factory(balance=300)

        with pytest.raises(PaymentDeclinedError):
            await service.withdraw(user, 100)

        assert await read_wallet(user.user_id) == (300, 300)
        history = await LedgerService(db_session).get_transactions(user.user_id)
        assert [txn.kind for txn in history] == [TransactionKind.DEPOSIT.value]

    @pytest.mark.asyncio
    async def test_unreachable_processor_restores_balance(self, db_session, user_factory, compliance, read_wallet):
        service = WalletService(db_session, processor=SandboxPaymentProcessor(reachable=False), compliance=compliance)
        user = await user_factory(balance=300)

        with pytest.raises(ExternalServiceError):
            await service.withdraw(user, 100)

        assert await read_wallet(user.user_id) == (300, 300)
