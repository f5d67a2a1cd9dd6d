"""
Shared pytest fixtures.

Environment is pinned before any ``counselbook`` import so the settings
singleton picks it up. Each test gets a fresh in-memory SQLite database on a
single shared connection (StaticPool), which the API, the lifecycle and the
notification worker all see through the patched session factory.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ["EMAIL_PROVIDER"] = "console"
os.environ["JWT_SECRET"] = "test-jwt-secret-0123456789abcdef0123"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "test-razorpay-secret"
os.environ["APP_BASE_URL"] = "https://groom.test"

from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import counselbook.models  # noqa: F401  registers tables
from counselbook.lib import db as db_module
from counselbook.lib.errors import PaymentGatewayUnavailableException
from counselbook.lib.jwt import create_access_token
from counselbook.lib.meeting_links import MeetingIdGenerator
from counselbook.lib.payment_signature import compute_signature
from counselbook.services.booking_lifecycle import BookingLifecycle
from counselbook.services.booking_store import SQLAlchemyBookingStore
from counselbook.services.notification_service import (
    DeliveryResult,
    EmailProvider,
    NotificationDispatcher,
)
from counselbook.services.payment_gateway import PaymentGateway, PaymentOrder


PAYMENT_SECRET = "test-razorpay-secret"


class FakeGateway(PaymentGateway):
    """In-memory gateway recording created orders."""

    def __init__(self):
        self.orders: List[PaymentOrder] = []
        self.fail_with: Optional[Exception] = None

    def is_available(self) -> bool:
        return True

    def create_order(self, amount: int, currency: str, receipt: str) -> PaymentOrder:
        if self.fail_with is not None:
            raise self.fail_with
        order = PaymentOrder(
            id=f"order_test_{len(self.orders) + 1}",
            amount=amount,
            currency=currency,
            receipt=receipt,
            status="created",
        )
        self.orders.append(order)
        return order


class RecordingEmailProvider(EmailProvider):
    """Email provider that records sends and can be told to fail."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.failures_remaining = 0
        self.raise_error: Optional[Exception] = None

    def send(self, to, subject, template_name, template_data) -> DeliveryResult:
        if self.raise_error is not None:
            raise self.raise_error
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            return DeliveryResult(success=False, error="mailbox unavailable")
        self.sent.append({
            "to": to,
            "subject": subject,
            "template_name": template_name,
            "template_data": dict(template_data),
        })
        return DeliveryResult(success=True)


class SteppingClock:
    """Clock advancing one millisecond per call so meeting ids differ."""

    def __init__(self, start: float = 1_767_225_600.0):
        self.now = start

    def __call__(self) -> float:
        self.now += 0.001
        return self.now


@pytest.fixture
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    db_module.Base.metadata.create_all(bind=test_engine)
    yield test_engine
    db_module.Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def session_factory(engine, monkeypatch):
    """Session factory bound to the test engine, also used by get_db/get_db_context."""
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    monkeypatch.setattr(db_module, "SessionLocal", factory)
    return factory


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def email_provider():
    return RecordingEmailProvider()


@pytest.fixture
def meeting_ids():
    return MeetingIdGenerator(clock=SteppingClock())


@pytest.fixture
def store(db_session):
    return SQLAlchemyBookingStore(db_session)


@pytest.fixture
def dispatcher(db_session):
    return NotificationDispatcher(db_session)


@pytest.fixture
def lifecycle(store, gateway, dispatcher, meeting_ids):
    return BookingLifecycle(
        store=store,
        gateway=gateway,
        dispatcher=dispatcher,
        meeting_ids=meeting_ids,
        payment_secret=PAYMENT_SECRET,
    )


@pytest.fixture
def sign():
    """Sign an order/payment pair the way the gateway does."""
    def _sign(order_id: str, payment_id: str) -> str:
        return compute_signature(PAYMENT_SECRET, order_id, payment_id)
    return _sign


@pytest.fixture
def gateway_unavailable():
    return PaymentGatewayUnavailableException("Payment gateway timed out")


@pytest.fixture
def auth_headers():
    """Build an Authorization header for a caller."""
    def _headers(user_id: str = "user-1", email: Optional[str] = None, roles: Optional[List[str]] = None):
        token = create_access_token(user_id=user_id, email=email, roles=roles)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def admin_headers(auth_headers):
    return auth_headers(user_id="admin-1", email="admin@groom.test", roles=["ADMIN"])
