"""
Centralized Test Configuration.
"""

import os
import tempfile

import pytest
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

from delivery_tracking.app.main import app
from delivery_tracking.app.db.session import get_db, Base
from delivery_tracking.app.core.config import Settings
from delivery_tracking.app.core.dependencies import get_tracking_service
from delivery_tracking.app.core.exceptions import UpstreamError
from delivery_tracking.app.core.jwt import create_access_token
from delivery_tracking.app.core.reliability import CircuitBreaker
from delivery_tracking.app.models.order import Order
from delivery_tracking.app.services.courier_client import CourierPort
from delivery_tracking.app.services.notification_service import NotificationSink
from delivery_tracking.app.services.stage_registry import DEFAULT_STAGES, StageRegistry, seed_default_stages
from delivery_tracking.app.services.tracking import build_tracking_service

# Setup file-backed Test Database; NullPool gives every session its own connection
_TEST_DB_DIR = tempfile.mkdtemp(prefix="delivery_tracking_tests_")
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}"

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=NullPool,
)


@event.listens_for(engine.sync_engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
)


# --- Test doubles ---

class FakeCourier(CourierPort):
    """
    Records pushes and created orders. Raises UpstreamError for the first
    `fail_times` pushes and the first `fail_create_times` creations.
    """

    def __init__(self, fail_times: int = 0, fail_create_times: int = 0):
        self.fail_times = fail_times
        self.fail_create_times = fail_create_times
        self.create_calls = 0
        self.created: List[Tuple[str, Dict[str, Any]]] = []
        self.calls: List[Tuple[str, str]] = []
        self.pushed: List[Tuple[str, str]] = []
        self.closed = False

    async def push_status(self, external_order_ref: str, external_status_code: str) -> None:
        self.calls.append((external_order_ref, external_status_code))
        if len(self.calls) <= self.fail_times:
            raise UpstreamError("Courier platform returned HTTP 503", details={"http_status": 503})
        self.pushed.append((external_order_ref, external_status_code))

    async def create_order(self, external_order_ref: str, order_payload: Dict[str, Any]) -> None:
        self.create_calls += 1
        if self.create_calls <= self.fail_create_times:
            raise UpstreamError("Courier platform returned HTTP 503", details={"http_status": 503})
        self.created.append((external_order_ref, order_payload))

    async def aclose(self) -> None:
        self.closed = True


class RecordingSink(NotificationSink):
    """Keeps every message it is given; optionally fails instead."""

    def __init__(self, name: str = "recording", error: Optional[Exception] = None):
        self.name = name
        self.error = error
        self.sent: List[Tuple[int, str, Dict[str, Any]]] = []

    async def send(self, user_id: int, template_kind: str, payload: Dict[str, Any]) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((user_id, template_kind, payload))


# --- Database ---

@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory():
    return TestingSessionLocal


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


# --- Tracking core ---

@pytest.fixture
def stage_catalogue():
    """Stages seeded for the test. Modules override this for other lifecycles."""
    return DEFAULT_STAGES


@pytest.fixture
async def registry(db_session, stage_catalogue):
    await seed_default_stages(db_session, stage_catalogue)
    loaded = StageRegistry()
    await loaded.load(db_session)
    return loaded


@pytest.fixture
def courier():
    return FakeCourier()


@pytest.fixture
def in_app_sink():
    return RecordingSink("in_app")


@pytest.fixture
def email_sink():
    return RecordingSink("email")


@pytest.fixture
def dispatcher():
    """None builds the real dispatcher over the recording sinks."""
    return None


@pytest.fixture
def test_settings():
    return Settings(
        courier_push_max_attempts=3,
        courier_push_backoff_seconds=0,
        transition_max_attempts=3,
        notification_timeout_seconds=1.0,
    )


@pytest.fixture
async def tracking_service(registry, courier, in_app_sink, email_sink, dispatcher, test_settings):
    service = build_tracking_service(
        session_factory=TestingSessionLocal,
        registry=registry,
        courier=courier,
        in_app_sink=in_app_sink,
        email_sink=email_sink,
        dispatcher=dispatcher,
        breaker=CircuitBreaker(failure_threshold=100, reset_timeout=60),
        config=test_settings,
    )
    yield service
    await service.authority.drain()


@pytest.fixture
def make_order(db_session):
    """Insert an order; sellers are user 10 and buyers user 20 unless given."""
    async def _make_order(
        buyer_id: int = 20,
        seller_id: int = 10,
        external_ref: Optional[str] = None,
        delivery_details: Optional[Dict[str, Any]] = None,
    ) -> Order:
        order = Order(
            buyer_id=buyer_id,
            seller_id=seller_id,
            product_id=501,
            amount=Decimal("49.90"),
            external_ref=external_ref,
            delivery_details=delivery_details or {"address": "12 Market Street", "contact": "+15550100"},
        )
        db_session.add(order)
        await db_session.commit()
        await db_session.refresh(order)
        return order

    return _make_order


# --- HTTP ---

@pytest.fixture
async def client(tracking_service):
    """Async client for testing."""
    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_tracking_service] = lambda: tracking_service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}


@pytest.fixture
def auth_headers():
    """Bearer headers for a marketplace user, as issued by the identity service."""
    def _headers(user_id: int, role: str) -> Dict[str, str]:
        token = create_access_token({"sub": f"user{user_id}@example.com", "user_id": user_id, "role": role})
        return {"Authorization": f"Bearer {token}"}

    return _headers
