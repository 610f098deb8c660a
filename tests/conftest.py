"""
Test fixtures using a file-backed async SQLite database per test.
No PostgreSQL, Redis, Stripe or sibling services required.
"""
import json
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from coursepay.db.base import Base
from coursepay.accounts.models import StripeAccount
from coursepay.audit.models import AuditLog  # noqa: F401
from coursepay.config import CacheTTLs, CommissionConfig
from coursepay.core.security import AuthUser, Role
from coursepay.enrollments.models import Enrollment  # noqa: F401
from coursepay.gateway.mock import MockGateway
from coursepay.ledger.models import Invoice, Transaction  # noqa: F401
from coursepay.notifications.client import ServiceNotifier
from coursepay.notifications.dispatcher import OutboundDispatcher
from coursepay.payments.refunds import RefundService
from coursepay.payments.schemas import PaymentRequest
from coursepay.payments.service import PaymentService

EDUCATOR_ACCOUNT = "acct_mock_educator"


class FakeCache:
    """In-memory cache backend with call counters."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.gets = 0
        self.sets = 0
        self.deleted_patterns: list[str] = []

    async def get(self, key: str) -> str | None:
        self.gets += 1
        return self.store.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self.sets += 1
        self.store[key] = value
        self.ttls[key] = ttl_seconds

    async def delete_pattern(self, pattern: str) -> int:
        self.deleted_patterns.append(pattern)
        prefix = pattern.rstrip("*")
        keys = [k for k in self.store if k.startswith(prefix)]
        for key in keys:
            del self.store[key]
        return len(keys)

    async def ping(self) -> bool:
        return True


class RecordingServices:
    """httpx transport standing in for the user, course and progress services."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, str, dict | None]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.host, body))
        if request.method == "GET" and "/course/" in request.url.path:
            return httpx.Response(200, json={"data": {"title": "Python for Payments"}})
        if request.method == "GET":
            return httpx.Response(200, json={"data": {"name": "Jane Doe"}})
        return httpx.Response(200, json={"success": True})

    def actions(self) -> list[str]:
        return [(body or {}).get("action") or (body or {}).get("Action") for _, _, body in self.requests if body]

    def payloads(self, action: str) -> list[dict]:
        return [body for _, _, body in self.requests if body and action in (body.get("action"), body.get("Action"))]


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'coursepay.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway() -> MockGateway:
    return MockGateway()


@pytest.fixture
def cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def dispatcher() -> OutboundDispatcher:
    return OutboundDispatcher(synchronous=True)


@pytest.fixture
def services() -> RecordingServices:
    return RecordingServices()


@pytest_asyncio.fixture
async def notifier(services):
    notifier = ServiceNotifier(
        user_service_url="http://users.test",
        course_service_url="http://courses.test",
        progress_service_url="http://progress.test",
        internal_api_key="test-key",
        transport=httpx.MockTransport(services),
    )
    yield notifier
    await notifier.close()


@pytest.fixture
def commission_config() -> CommissionConfig:
    return CommissionConfig()


@pytest.fixture
def ttls() -> CacheTTLs:
    return CacheTTLs()


@pytest.fixture
def student() -> AuthUser:
    return AuthUser(id="student_1", role=Role.STUDENT, email="student@example.com", name="Sam Student")


@pytest.fixture
def other_student() -> AuthUser:
    return AuthUser(id="student_2", role=Role.STUDENT, email="other@example.com", name="Olive Other")


@pytest.fixture
def educator() -> AuthUser:
    return AuthUser(id="educator_1", role=Role.EDUCATOR, email="educator@example.com", name="Ed Educator")


@pytest.fixture
def admin() -> AuthUser:
    return AuthUser(id="admin_1", role=Role.ADMIN, email="admin@example.com", name="Ada Admin")


@pytest_asyncio.fixture
async def educator_account(db: AsyncSession, educator: AuthUser) -> StripeAccount:
    account = StripeAccount(educator_id=educator.id, email=educator.email, stripe_account_id=EDUCATOR_ACCOUNT)
    db.add(account)
    await db.commit()
    return account


@pytest.fixture
def payment_service(db, session_factory, gateway, dispatcher, notifier, cache, commission_config) -> PaymentService:
    return PaymentService(db, session_factory, gateway, dispatcher, notifier, cache, commission_config)


@pytest.fixture
def refund_service(db, session_factory, gateway, dispatcher, notifier, cache, commission_config) -> RefundService:
    return RefundService(db, session_factory, gateway, dispatcher, notifier, cache, commission_config)


@pytest.fixture
def payment_request():
    """Factory for purchase requests; defaults to a 99.00 USD course from educator_1."""
    def make(course_id: str = "course_1", amount: str = "99.00", educator_id: str = "educator_1") -> PaymentRequest:
        return PaymentRequest(
            course_id=course_id,
            amount=Decimal(amount),
            currency="USD",
            source="pm_card_visa",
            educator_id=educator_id,
            description=f"Purchase of {course_id}",
        )
    return make
