"""Pytest configuration and fixtures."""
import os
import uuid
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config as AlembicConfig
from httpx import AsyncClient, ASGITransport
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

BASE_DIR = Path(__file__).resolve().parent.parent
TEST_DB_PATH = BASE_DIR / "test_settlement.db"

# Ensure the application uses a dedicated SQLite database during tests
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ["SETTLEMENT_LOOP_ENABLED"] = "false"
os.environ["NOTIFICATION_WEBHOOK_URL"] = ""
os.environ["PAYMENT_PROCESSOR_MODE"] = "sandbox"

from backend.config import HOUSE_USER_ID, get_settings
from backend.models import Match, MatchActivity, MatchParticipant, Transaction, User, WalletBalance
from backend.models.base import SubscriptionTier, TransactionKind
from backend.services.compliance_service import ComplianceDecision
from backend.services.ledger_service import LedgerService
from backend.services.payment_processor import SandboxPaymentProcessor

settings = get_settings()


@pytest.fixture(scope="session", autouse=True)
def apply_migrations():
    """Apply database migrations against the test database."""
    if TEST_DB_PATH.exists():
        TEST_DB_PATH.unlink()

    alembic_cfg = AlembicConfig(str(BASE_DIR / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(BASE_DIR / "backend" / "migrations"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url)
    command.upgrade(alembic_cfg, "head")

    yield

    if TEST_DB_PATH.exists():
        try:
            TEST_DB_PATH.unlink()
        except PermissionError:
            # Still open on Windows; removed on the next run
            pass


@pytest.fixture
async def test_engine():
    """Engine bound to the migrated test database."""
    engine = create_async_engine(settings.database_url, echo=False)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture(autouse=True)
async def clean_database(session_factory):
    """Start every test from an empty schema (the house account stays)."""
    async with session_factory() as session:
        for model in (MatchActivity, Transaction, MatchParticipant, Match, WalletBalance):
            await session.execute(delete(model))
        await session.execute(delete(User).where(User.user_id != HOUSE_USER_ID))
        await session.commit()
    yield


@pytest.fixture
async def db_session(session_factory):
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


class RecordingNotifier:
    """Notification dispatcher that keeps every event in memory."""

    def __init__(self):
        self.events: list[tuple] = []

    async def match_started(self, match_id, user_ids):
        self.events.append(("match_started", match_id, list(user_ids)))

    async def vote_reminder(self, match_id, user_ids):
        self.events.append(("vote_reminder", match_id, list(user_ids)))

    async def match_disputed(self, match_id, user_ids):
        self.events.append(("match_disputed", match_id, list(user_ids)))

    async def match_paid_out(self, match_id, winner_id, amount, user_ids):
        self.events.append(("match_paid_out", match_id, winner_id, amount))

    def count(self, name: str, match_id=None) -> int:
        return sum(
            1 for event in self.events
            if event[0] == name and (match_id is None or event[1] == match_id)
        )


class StubCompliance:
    """Compliance collaborator whose answers tests can flip."""

    def __init__(self):
        self.deposit_decision = ComplianceDecision.allow()
        self.withdrawal_decision = ComplianceDecision.allow()
        self.checked: list[tuple] = []

    async def check_withdrawal(self, user_id, amount):
        self.checked.append(("withdrawal", user_id, amount))
        return self.withdrawal_decision

    async def check_deposit(self, user_id, amount, region):
        self.checked.append(("deposit", user_id, amount, region))
        return self.deposit_decision


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def processor():
    return SandboxPaymentProcessor()


@pytest.fixture
def compliance():
    return StubCompliance()


@pytest.fixture
async def user_factory(db_session):
    """Factory for users with an optional starting balance.

    ``balance`` is deposited as withdrawable funds and ``bonus`` as
    non-withdrawable funds.
    """
    ledger = LedgerService(db_session)

    async def _create_user(
        balance: int = 0,
        bonus: int = 0,
        tier: SubscriptionTier = SubscriptionTier.FREE,
        region: str = "US",
        username: str | None = None,
    ) -> User:
        unique_id = uuid.uuid4().hex[:8]
        user = User(
            user_id=uuid.uuid4(),
            username=username or f"user_{unique_id}",
            region=region,
            subscription_tier=SubscriptionTier(tier).value,
        )
        db_session.add(user)
        await db_session.commit()

        if balance:
            await ledger.credit(user.user_id, balance, TransactionKind.DEPOSIT)
        if bonus:
            await ledger.credit(user.user_id, bonus, TransactionKind.BONUS, withdrawable=False)
        # Detached so a rollback inside a service call does not expire it
        db_session.expunge(user)
        return user

    return _create_user


@pytest.fixture
def read_wallet(session_factory):
    """Read a wallet through a fresh session so no cached state leaks in."""

    async def _read(user_id) -> tuple[int, int]:
        async with session_factory() as session:
            wallet = await session.get(WalletBalance, user_id)
            if wallet is None:
                return 0, 0
            return wallet.total_balance, wallet.withdrawable_balance

    return _read


@pytest.fixture
async def test_app(session_factory, notifier, processor, compliance):
    """Create test app with database and collaborator overrides."""
    from backend.main import app
    from backend.database import get_db
    from backend.dependencies import get_compliance, get_notifier, get_processor, get_session_factory

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
            finally:
                await session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_processor] = lambda: processor
    app.dependency_overrides[get_compliance] = lambda: compliance
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def client(test_app):
    async with AsyncClient(transport=ASGITransport(app=test_app), base_url="http://test") as ac:
        yield ac
