"""Ledger service for atomic balance updates."""
from dataclasses import dataclass
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import Sequence
from uuid import UUID
import uuid
import logging

from backend.models.base import TransactionKind
from backend.models.transaction import Transaction
from backend.models.wallet_balance import WalletBalance
from backend.utils.exceptions import (
    InsufficientFundsError,
    InvariantViolationError,
    ValidationError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerEntry:
    """A credit to be written as part of a batch (e.g. one match settlement)."""
    user_id: UUID
    amount: int
    kind: TransactionKind
    related_match_id: UUID | None = None
    withdrawable: bool = True


@dataclass(frozen=True)
class BalanceReconciliation:
    user_id: UUID
    cached_total: int
    cached_withdrawable: int
    derived_total: int
    derived_withdrawable: int

    @property
    def consistent(self) -> bool:
        return (self.cached_total == self.derived_total
                and self.cached_withdrawable == self.derived_withdrawable)


class LedgerService:
    """Append-only transaction log plus the materialized wallet balances."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_balance(self, user_id: UUID, for_update: bool = False) -> WalletBalance:
        """Load a user's balance row, creating an empty one on first use."""
        stmt = select(WalletBalance).where(WalletBalance.user_id == user_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        wallet = result.scalar_one_or_none()

        if wallet is None:
            wallet = WalletBalance(user_id=user_id, total_balance=0, withdrawable_balance=0)
            self.db.add(wallet)
            await self.db.flush()
            logger.info(f"Opened wallet for user={user_id}")

        return wallet

    async def debit(
        self,
        user_id: UUID,
        amount: int,
        kind: TransactionKind,
        related_match_id: UUID | None = None,
        external_reference: str | None = None,
        auto_commit: bool = True,
    ) -> Transaction:
        """
        Remove funds from a user's wallet.

        Withdrawals must be covered by the withdrawable balance. Every other
        debit is checked against the total balance and spends non-withdrawable
        (bonus) funds first.

        Args:
            user_id: User UUID
            amount: Positive amount to remove
            kind: Transaction kind (stake, withdrawal, ...)
            related_match_id: Optional match reference
            external_reference: Optional payment processor reference
            auto_commit: If True, commits immediately. If False, caller must commit.

        Returns:
            Created transaction

        Raises:
            InsufficientFundsError: If the relevant balance cannot cover the amount
        """
        self._check_amount(amount)
        kind = TransactionKind(kind)
        wallet = await self.get_balance(user_id, for_update=True)

        if kind == TransactionKind.WITHDRAWAL:
            if amount > wallet.withdrawable_balance:
                raise InsufficientFundsError(
                    f"Insufficient withdrawable balance: {wallet.withdrawable_balance} < {amount}"
                )
            from_withdrawable = amount
        else:
            if amount > wallet.total_balance:
                raise InsufficientFundsError(
                    f"Insufficient balance: {wallet.total_balance} < {amount}"
                )
            non_withdrawable = wallet.total_balance - wallet.withdrawable_balance
            from_withdrawable = amount - min(amount, non_withdrawable)

        return await self._append(
            wallet,
            amount=-amount,
            withdrawable_amount=-from_withdrawable,
            kind=kind,
            related_match_id=related_match_id,
            external_reference=external_reference,
            auto_commit=auto_commit,
        )

    async def credit(
        self,
        user_id: UUID,
        amount: int,
        kind: TransactionKind,
        related_match_id: UUID | None = None,
        withdrawable: bool = True,
        external_reference: str | None = None,
        auto_commit: bool = True,
        withdrawable_amount: int | None = None,
    ) -> Transaction:
        """
        Add funds to a user's wallet.

        Args:
            withdrawable: When False only the total balance grows (bonus, fee sink)
            withdrawable_amount: Explicit withdrawable portion (stake refunds)
            auto_commit: If True, commits immediately. If False, caller must commit.
        """
        self._check_amount(amount)
        if withdrawable_amount is None:
            withdrawable_amount = amount if withdrawable else 0
        if withdrawable_amount < 0 or withdrawable_amount > amount:
            raise InvariantViolationError(
                f"Withdrawable portion {withdrawable_amount} outside credit amount {amount}"
            )

        wallet = await self.get_balance(user_id, for_update=True)
        return await self._append(
            wallet,
            amount=amount,
            withdrawable_amount=withdrawable_amount,
            kind=TransactionKind(kind),
            related_match_id=related_match_id,
            external_reference=external_reference,
            auto_commit=auto_commit,
        )

    async def post_entries(self, entries: Sequence[LedgerEntry], auto_commit: bool = False) -> list[Transaction]:
        """Write a batch of credits as one unit of work.

        Nothing is committed unless ``auto_commit`` is set; a settlement commits
        the batch together with its status change so either all entries land or
        none do.
        """
        transactions = []
        for entry in entries:
            if entry.amount == 0:
                continue
            transactions.append(
                await self.credit(
                    user_id=entry.user_id,
                    amount=entry.amount,
                    kind=entry.kind,
                    related_match_id=entry.related_match_id,
                    withdrawable=entry.withdrawable,
                    auto_commit=False,
                )
            )

        if auto_commit:
            await self.db.commit()

        return transactions

    async def refund_stake(
        self,
        user_id: UUID,
        match_id: UUID,
        amount: int,
        auto_commit: bool = True,
    ) -> Transaction:
        """Return a stake, restoring the withdrawable portion the stake consumed."""
        result = await self.db.execute(
            select(Transaction)
            .where(
                Transaction.user_id == user_id,
                Transaction.related_match_id == match_id,
                Transaction.kind == TransactionKind.STAKE.value,
            )
            .order_by(Transaction.created_at.desc())
            .limit(1)
        )
        stake_txn = result.scalar_one_or_none()
        if stake_txn is None:
            raise InvariantViolationError(f"No stake recorded for user={user_id} match={match_id}")
        if -stake_txn.amount != amount:
            raise InvariantViolationError(
                f"Refund amount {amount} does not match stake {-stake_txn.amount} for user={user_id}"
            )

        return await self.credit(
            user_id=user_id,
            amount=amount,
            kind=TransactionKind.REFUND,
            related_match_id=match_id,
            withdrawable_amount=-stake_txn.withdrawable_amount,
            auto_commit=auto_commit,
        )

    async def get_transactions(
        self,
        user_id: UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        """Get user transaction history, newest first."""
        result = await self.db.execute(
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def get_match_transactions(self, match_id: UUID, kind: TransactionKind | None = None) -> list[Transaction]:
        stmt = select(Transaction).where(Transaction.related_match_id == match_id)
        if kind is not None:
            stmt = stmt.where(Transaction.kind == TransactionKind(kind).value)
        result = await self.db.execute(stmt.order_by(Transaction.created_at))
        return list(result.scalars().all())

    async def reconcile(self, user_id: UUID) -> BalanceReconciliation:
        """Re-derive both balances from the log and compare with the cached row."""
        result = await self.db.execute(
            select(
                func.coalesce(func.sum(Transaction.amount), 0),
                func.coalesce(func.sum(Transaction.withdrawable_amount), 0),
            ).where(Transaction.user_id == user_id)
        )
        derived_total, derived_withdrawable = result.one()
        wallet = await self.get_balance(user_id)

        reconciliation = BalanceReconciliation(
            user_id=user_id,
            cached_total=wallet.total_balance,
            cached_withdrawable=wallet.withdrawable_balance,
            derived_total=int(derived_total),
            derived_withdrawable=int(derived_withdrawable),
        )
        if not reconciliation.consistent:
            logger.critical(f"Wallet drift detected: {reconciliation}")
        return reconciliation

    async def _append(
        self,
        wallet: WalletBalance,
        amount: int,
        withdrawable_amount: int,
        kind: TransactionKind,
        related_match_id: UUID | None,
        external_reference: str | None,
        auto_commit: bool,
    ) -> Transaction:
        new_total = wallet.total_balance + amount
        new_withdrawable = wallet.withdrawable_balance + withdrawable_amount

        if new_total < 0 or new_withdrawable < 0 or new_withdrawable > new_total:
            raise InvariantViolationError(
                f"Balance invariant broken for user={wallet.user_id}: "
                f"total={new_total}, withdrawable={new_withdrawable}"
            )

        wallet.total_balance = new_total
        wallet.withdrawable_balance = new_withdrawable

        transaction = Transaction(
            transaction_id=uuid.uuid4(),
            user_id=wallet.user_id,
            amount=amount,
            withdrawable_amount=withdrawable_amount,
            kind=kind.value,
            related_match_id=related_match_id,
            external_reference=external_reference,
            total_balance_after=new_total,
            withdrawable_balance_after=new_withdrawable,
        )
        self.db.add(transaction)
        await self.db.flush()

        if auto_commit:
            await self.db.commit()
            await self.db.refresh(transaction)

        logger.info(
            f"Transaction created: user={wallet.user_id}, amount={amount}, kind={kind.value}, "
            f"match={related_match_id}, new_total={new_total}, new_withdrawable={new_withdrawable}, "
            f"auto_commit={auto_commit}"
        )

        return transaction

    @staticmethod
    def _check_amount(amount: int) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise ValidationError(f"Amount must be a positive whole number of tokens: {amount!r}")
