"""
Pytest configuration and fixtures for testing
"""
from decimal import Decimal
from typing import Dict, List, Optional

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from crud.plan import PlanRepository
from crud.user import UserRepository
from services.exceptions import PaymentGatewayError

# Create in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Create test engine; one shared connection keeps the in-memory DB alive
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    future=True,
    poolclass=StaticPool,
)

# Create test session factory
TestAsyncSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class FakeGateway:
    """
    In-memory stand-in for MercadoPagoGateway.
    Preapprovals live in a dict; every call is recorded.
    """

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.preapprovals: Dict[str, dict] = {}
        self.created_payloads: List[dict] = []
        self.get_calls: List[str] = []
        self.fail_with: Optional[PaymentGatewayError] = None
        self._next_id = 1

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def create_subscription(self, payload: dict) -> dict:
        if self.fail_with:
            raise self.fail_with
        self.created_payloads.append(payload)
        preapproval_id = f"2c9380848{self._next_id:05d}"
        self._next_id += 1
        record = {
            "id": preapproval_id,
            "status": "pending",
            "external_reference": payload["external_reference"],
            "payer_email": payload["payer_email"],
            "init_point": f"https://www.mercadopago.com.br/subscriptions/checkout?preapproval_id={preapproval_id}",
            "auto_recurring": payload["auto_recurring"],
        }
        self.preapprovals[preapproval_id] = record
        return dict(record)

    async def get_subscription(self, preapproval_id: str) -> dict:
        self.get_calls.append(preapproval_id)
        if self.fail_with:
            raise self.fail_with
        if preapproval_id not in self.preapprovals:
            raise PaymentGatewayError("Preapproval not found", provider_status=404)
        return dict(self.preapprovals[preapproval_id])

    def set_status(self, preapproval_id: str, status: str) -> None:
        self.preapprovals[preapproval_id]["status"] = status


@pytest.fixture
async def test_db():
    """
    Fixture that provides an isolated, in-memory SQLite database connection for each test.

    This fixture:
    - Creates all tables before the test runs
    - Yields a clean AsyncSession for the test
    - Drops all tables after the test completes
    """
    async with test_engine.begin() as conn:
        # Import models to ensure they're registered with Base
        import database_models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)

    async with TestAsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
async def plan(test_db):
    plan = await PlanRepository(test_db).create_plan({
        "name": "Pro",
        "price": Decimal("29.90"),
        "duration_in_days": 30,
    })
    await test_db.commit()
    return plan


@pytest.fixture
async def other_plan(test_db):
    plan = await PlanRepository(test_db).create_plan({
        "name": "Business",
        "price": Decimal("99.90"),
        "duration_in_days": 30,
    })
    await test_db.commit()
    return plan


@pytest.fixture
async def user(test_db):
    user = await UserRepository(test_db).create_user({
        "email": "Ana@Example.com",
        "name": "Ana",
    })
    user = await UserRepository(test_db).update_user(user, {
        "transcriptions_used_count": 7,
        "transcription_minutes_used": 42,
        "agent_uses_used": 3,
        "assistant_uses_used": 5,
    })
    await test_db.commit()
    return user
