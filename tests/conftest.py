"""Shared test fixtures for the trial engine tests.

Uses an in-memory SQLite async engine so tests run without PostgreSQL.
Email and Telnyx are replaced by in-memory fakes, and time by a frozen clock.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import json
from datetime import datetime, timedelta

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from app.core.clock import Clock
from app.core.database import Base, get_db
from app.core.deps import get_clock, get_email_service, get_telnyx_client
from app.main import app

# Import all models to ensure they're registered with Base.metadata
from app.models.business import Business
from app.models.phone_number import PhoneNumber, PhoneNumberStatus
from app.models.trial_usage import TrialUsage
from app.models.activity_log import ActivityLog
from app.services.email_service import EmailService
from app.services.telnyx_blocking import TelnyxBlockingService
from app.services.telnyx_client import TelnyxClient
from app.services.trial_usage import TrialUsageService


# Use aiosqlite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine = create_async_engine(TEST_DATABASE_URL, echo=False)
TestSession = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

START = datetime(2026, 3, 1, 9, 0, 0)


class FrozenClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class RecordingEmailService(EmailService):
    """Keeps every email in memory instead of calling SendGrid."""

    def __init__(self):
        super().__init__(api_key="")
        self.sent = []
        self.failing = set()

    async def _record(self, kind, data) -> bool:
        if kind in self.failing:
            return False
        self.sent.append((kind, data))
        return True

    def count(self, kind: str) -> int:
        return sum(1 for k, _ in self.sent if k == kind)

    async def send_welcome_email(self, data):
        return await self._record("welcome", data)

    async def send_trial_warning_email(self, data):
        return await self._record("warning", data)

    async def send_trial_blocked_email(self, data):
        return await self._record("blocked", data)

    async def send_trial_deletion_warning_email(self, data):
        return await self._record("deletion_warning", data)

    async def send_account_deleted_email(self, data):
        return await self._record("deleted", data)


class FakeTelnyx:
    """Telnyx API served by httpx.MockTransport.

    Numbers whose Telnyx id is in `failing` get a 422 back.
    """

    def __init__(self):
        self.requests = []
        self.failing = set()
        self.client = TelnyxClient(
            api_key="test-telnyx-key",
            base_url="https://telnyx.test/v2",
            transport=httpx.MockTransport(self._handle),
        )

    def _handle(self, request: httpx.Request) -> httpx.Response:
        number_id = request.url.path.rsplit("/", 1)[-1]
        body = json.loads(request.content)
        self.requests.append({"method": request.method, "number_id": number_id, "body": body,
                              "auth": request.headers.get("Authorization")})
        if number_id in self.failing:
            return httpx.Response(422, json={"errors": [{"detail": "Number is not editable"}]})
        return httpx.Response(200, json={"data": {"id": number_id, **body}})

    def webhooks_for(self, number_id: str) -> list:
        return [r["body"]["webhook_url"] for r in self.requests if r["number_id"] == number_id]


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def override_get_db():
    async with TestSession() as session:
        yield session


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def emails():
    return RecordingEmailService()


@pytest.fixture
def telnyx():
    return FakeTelnyx()


@pytest.fixture(autouse=True)
def override_collaborators(clock, emails, telnyx):
    """Route the app's email, Telnyx and clock dependencies to the fakes."""
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_email_service] = lambda: emails
    app.dependency_overrides[get_telnyx_client] = lambda: telnyx.client
    yield
    for dep in (get_clock, get_email_service, get_telnyx_client):
        app.dependency_overrides.pop(dep, None)


@pytest_asyncio.fixture
async def client():
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def db():
    """Direct DB session for test setup/assertions."""
    async with TestSession() as session:
        yield session


@pytest.fixture
def blocking(db, telnyx, clock):
    return TelnyxBlockingService(db, telnyx=telnyx.client, clock=clock)


@pytest.fixture
def trials(db, emails, blocking, clock):
    return TrialUsageService(db, emails=emails, blocking=blocking, clock=clock)


@pytest_asyncio.fixture
async def business(db):
    """A restaurant with two active Telnyx numbers."""
    biz = Business(
        id="biz-1",
        name="Pizza Mario",
        owner_name="Mario Rossi",
        owner_email="mario@example.com",
        owner_phone="+33600000000",
        stripe_customer_id="cus_mario",
    )
    db.add(biz)
    db.add_all([
        PhoneNumber(
            id="num-1",
            business_id="biz-1",
            phone_number="+33100000001",
            telnyx_number_id="tx-1",
            status=PhoneNumberStatus.ACTIVE,
            number_metadata={
                "webhook_url": "https://voice.example.com/hook-1",
                "webhook_failover_url": "https://voice.example.com/failover-1",
                "greeting": "Bonjour, Pizza Mario",
            },
        ),
        PhoneNumber(
            id="num-2",
            business_id="biz-1",
            phone_number="+33100000002",
            telnyx_number_id="tx-2",
            status=PhoneNumberStatus.ACTIVE,
            number_metadata={"webhook_url": "https://voice.example.com/hook-2"},
        ),
    ])
    await db.commit()
    return biz
