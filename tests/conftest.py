"""Shared test fixtures and configuration."""

import os
import uuid
import pytest
from datetime import datetime
from unittest.mock import patch
from typing import Any, Dict, Optional

# Set up test environment variables before importing modules
os.environ.setdefault("STRIPE_API_KEY", "sk_test_dummy_key_for_testing")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from billing_recon.database import (
    StripeCustomer,
    StripeInvoice,
    StripeSubscription,
    ReportRepository,
    DiffRepository,
    create_async_engine,
    get_async_session_factory,
    create_tables,
)
from billing_recon.reconciliation import (
    BillingGatewayBase,
    BillingGatewayError,
    RemoteCustomer,
    RemoteInvoice,
    RemoteRecordNotFound,
    RemoteSubscription,
    SettingsManager,
)

WINDOW_START = datetime(2026, 1, 1)
WINDOW_END = datetime(2026, 1, 2)
IN_WINDOW = datetime(2026, 1, 1, 12, 0, 0)


class FakeGateway(BillingGatewayBase):
    """In-memory billing provider keyed by provider ID."""

    def __init__(self):
        self.subscriptions: Dict[str, RemoteSubscription] = {}
        self.invoices: Dict[str, RemoteInvoice] = {}
        self.customers: Dict[str, RemoteCustomer] = {}
        self.failing = set()
        self.calls = []

    def _lookup(self, records: Dict[str, Any], record_id: str):
        self.calls.append(record_id)
        if record_id in self.failing:
            raise BillingGatewayError(f"{record_id} lookup timed out")
        if record_id not in records:
            raise RemoteRecordNotFound(f"{record_id} not found")
        return records[record_id]

    def get_subscription(self, subscription_id: str) -> RemoteSubscription:
        return self._lookup(self.subscriptions, subscription_id)

    def get_invoice(self, invoice_id: str) -> RemoteInvoice:
        return self._lookup(self.invoices, invoice_id)

    def get_customer(self, customer_id: str) -> RemoteCustomer:
        return self._lookup(self.customers, customer_id)

    def verify_webhook_signature(self, payload: bytes, signature: str) -> Dict[str, Any]:
        raise ValueError("Invalid webhook signature")


class Seeder:
    """Writes fixture rows through short-lived sessions."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _add(self, row):
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
        return row

    async def subscription(
        self,
        subscription_id: str,
        status: str = "active",
        created_at: datetime = IN_WINDOW,
        user_id: str = "user_1",
    ) -> StripeSubscription:
        return await self._add(StripeSubscription(
            user_id=user_id,
            customer_id="cus_1",
            subscription_id=subscription_id,
            status=status,
            created_at=created_at,
            updated_at=created_at,
        ))

    async def invoice(
        self,
        invoice_id: str,
        amount: int = 1000,
        status: str = "paid",
        created_at: datetime = IN_WINDOW,
        user_id: str = "user_1",
    ) -> StripeInvoice:
        return await self._add(StripeInvoice(
            user_id=user_id,
            customer_id="cus_1",
            invoice_id=invoice_id,
            amount=amount,
            currency="usd",
            status=status,
            created_at=created_at,
            updated_at=created_at,
        ))

    async def customer(
        self,
        customer_id: str,
        email: str = "user@example.com",
        created_at: datetime = IN_WINDOW,
        user_id: str = "user_1",
    ) -> StripeCustomer:
        return await self._add(StripeCustomer(
            user_id=user_id,
            customer_id=customer_id,
            email=email,
            created_at=created_at,
            updated_at=created_at,
        ))

    async def report(self, report_id: Optional[str] = None, **values) -> str:
        report_id = report_id or str(uuid.uuid4())
        now = datetime.utcnow()
        row = {
            "id": report_id,
            "report_date": now,
            "start_date": WINDOW_START,
            "end_date": WINDOW_END,
            "status": "completed",
            "created_at": now,
            "updated_at": now,
        }
        row.update(values)
        async with self.session_factory() as session:
            await ReportRepository(session).create(row)
        return report_id

    async def diff(self, report_id: str, **values) -> str:
        now = datetime.utcnow()
        row = {
            "id": str(uuid.uuid4()),
            "report_id": report_id,
            "record_type": "subscription",
            "record_id": "sub_1",
            "user_id": "user_1",
            "diff_type": "mismatch",
            "field_name": "status",
            "local_value": "active",
            "remote_value": "canceled",
            "severity": "medium",
            "status": "pending",
            "auto_fixed": False,
            "created_at": now,
            "updated_at": now,
        }
        row.update(values)
        async with self.session_factory() as session:
            await DiffRepository(session).create(row)
        return row["id"]


@pytest.fixture
def mock_stripe_api_key():
    """Set up mock Stripe API key."""
    with patch.dict(os.environ, {"STRIPE_API_KEY": "sk_test_mock_key"}):
        yield "sk_test_mock_key"


@pytest.fixture
def mock_api_key():
    """Set up mock API key for authentication."""
    with patch.dict(os.environ, {"API_KEY": "test_api_key_12345"}):
        yield "test_api_key_12345"


@pytest.fixture
def auth_headers(mock_api_key):
    """Return headers with authentication."""
    return {"Authorization": f"Bearer {mock_api_key}"}


@pytest.fixture
def window():
    """Reconciliation window [2026-01-01, 2026-01-02)."""
    return WINDOW_START, WINDOW_END


@pytest.fixture
def fake_gateway():
    return FakeGateway()


# Database fixtures
@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return get_async_session_factory(db_engine)


@pytest.fixture
async def db_session(session_factory):
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest.fixture
async def settings_manager(session_factory):
    """Settings manager with the default configuration persisted."""
    manager = SettingsManager(session_factory)
    await manager.load()
    return manager
