"""
Unit tests for email providers and the NotificationDispatcher.
"""
import smtplib
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest

from counselbook.models.bookings import Booking, BookingStatus
from counselbook.models.notification_tasks import NotificationKind, NotificationStatus
from counselbook.services.notification_service import (
    ConsoleEmailProvider,
    NotificationDispatcher,
    SMTPEmailProvider,
    get_email_provider,
    get_notification_dispatcher,
)


@pytest.fixture
def booking(store):
    return store.insert(Booking(
        name="Asha",
        email="asha@example.com",
        scheduled_at=datetime(2026, 11, 2, 10, 0, tzinfo=timezone.utc),
        reason="Test",
        status=BookingStatus.CONFIRMED,
        meeting_id="a1b2c3d4e5f6",
    ))


# ============================================================================
# Providers
# ============================================================================


@pytest.mark.unit
def test_console_provider_renders_and_succeeds():
    provider = ConsoleEmailProvider()

    result = provider.send(
        to="asha@example.com",
        subject="Session Cancelled - Groom",
        template_name="booking_cancellation",
        template_data={"name": "Asha", "original_time": "2026-11-02T10:00:00+00:00"},
    )

    assert result.success is True
    assert result.error is None


@pytest.mark.unit
def test_smtp_provider_requires_credentials():
    with patch("counselbook.services.notification_service.settings") as mock_settings:
        mock_settings.smtp_username = ""
        mock_settings.smtp_password = ""

        with pytest.raises(ValueError):
            SMTPEmailProvider()


@pytest.fixture
def smtp_settings():
    with patch("counselbook.services.notification_service.settings") as mock_settings:
        mock_settings.smtp_host = "smtp.example.com"
        mock_settings.smtp_port = 587
        mock_settings.smtp_username = "bot@example.com"
        mock_settings.smtp_password = "app-password"
        mock_settings.smtp_from_email = ""
        mock_settings.smtp_from_name = "Groom"
        yield mock_settings


@pytest.mark.unit
def test_smtp_provider_sends_multipart_over_starttls(smtp_settings):
    provider = SMTPEmailProvider()

    with patch("counselbook.services.notification_service.smtplib.SMTP") as mock_smtp:
        server = mock_smtp.return_value.__enter__.return_value
        result = provider.send(
            to="asha@example.com",
            subject="Session Cancelled - Groom",
            template_name="booking_cancellation",
            template_data={"name": "Asha", "original_time": "2026-11-02T10:00:00+00:00"},
        )

    assert result.success is True
    mock_smtp.assert_called_once_with("smtp.example.com", 587, timeout=10)
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("bot@example.com", "app-password")

    message = server.send_message.call_args[0][0]
    assert message["To"] == "asha@example.com"
    assert message["From"] == "Groom <bot@example.com>"
    assert message["Subject"] == "Session Cancelled - Groom"


@pytest.mark.unit
def test_smtp_provider_reports_failure(smtp_settings):
    provider = SMTPEmailProvider()

    with patch("counselbook.services.notification_service.smtplib.SMTP") as mock_smtp:
        server = mock_smtp.return_value.__enter__.return_value
        server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")
        result = provider.send(
            to="asha@example.com",
            subject="Session Cancelled - Groom",
            template_name="booking_cancellation",
            template_data={"name": "Asha", "original_time": "2026-11-02T10:00:00+00:00"},
        )

    assert result.success is False
    assert "bad credentials" in result.error


@pytest.mark.unit
def test_get_email_provider_falls_back_to_console():
    with patch("counselbook.services.notification_service.settings") as mock_settings:
        mock_settings.email_provider = "smtp"
        mock_settings.smtp_username = ""
        mock_settings.smtp_password = ""

        assert isinstance(get_email_provider(), ConsoleEmailProvider)


# ============================================================================
# Dispatcher
# ============================================================================


@pytest.mark.unit
def test_send_confirmation_queues_task(dispatcher, booking):
    task = dispatcher.send_confirmation(booking, booking.meeting_id)

    assert task.kind == NotificationKind.CONFIRMATION
    assert task.status == NotificationStatus.PENDING
    assert task.recipient == "asha@example.com"
    assert task.attempts == 0
    assert task.payload == {
        "name": "Asha",
        "scheduled_time": "2026-11-02T10:00:00+00:00",
        "meeting_id": "a1b2c3d4e5f6",
    }


@pytest.mark.unit
def test_send_reschedule_carries_new_time_and_meeting_id(dispatcher, booking):
    new_time = datetime(2026, 11, 3, 15, 30, tzinfo=timezone.utc)

    task = dispatcher.send_reschedule(booking, new_time)

    assert task.kind == NotificationKind.RESCHEDULE
    assert task.payload["new_time"] == "2026-11-03T15:30:00+00:00"
    assert task.payload["meeting_id"] == "a1b2c3d4e5f6"


@pytest.mark.unit
def test_send_cancellation_carries_original_time(dispatcher, booking):
    task = dispatcher.send_cancellation(booking)

    assert task.kind == NotificationKind.CANCELLATION
    assert task.payload["original_time"] == "2026-11-02T10:00:00+00:00"


@pytest.mark.unit
def test_enqueue_failure_is_swallowed():
    db = MagicMock()
    db.commit.side_effect = RuntimeError("database is locked")
    booking = Booking(
        id=uuid4(),
        name="Asha",
        email="asha@example.com",
        scheduled_at=datetime(2026, 11, 2, 10, 0, tzinfo=timezone.utc),
    )

    task = NotificationDispatcher(db).send_cancellation(booking)

    assert task is None
    db.rollback.assert_called_once()


@pytest.mark.unit
def test_factory_binds_session(db_session):
    assert get_notification_dispatcher(db_session).db is db_session
