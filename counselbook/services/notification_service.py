"""
Booking notification delivery.

The lifecycle never talks to an email server directly. ``NotificationDispatcher``
turns each transition into a queued ``NotificationTask`` row and returns
immediately; ``counselbook.jobs.notification_worker`` later renders and
delivers the task through an ``EmailProvider``. Enqueue and delivery failures
are logged, never raised to the lifecycle caller.
"""
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from counselbook.lib.logging import get_logger
from counselbook.lib.settings import settings
from counselbook.lib.template_loader import render_email
from counselbook.lib.timeutils import as_utc, utcnow
from counselbook.models.bookings import Booking
from counselbook.models.notification_tasks import (
    NotificationKind,
    NotificationStatus,
    NotificationTask,
)


logger = get_logger(__name__)


TEMPLATE_NAMES = {
    NotificationKind.CONFIRMATION: "booking_confirmation",
    NotificationKind.RESCHEDULE: "booking_reschedule",
    NotificationKind.CANCELLATION: "booking_cancellation",
}


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one send attempt."""
    success: bool
    error: Optional[str] = None


class EmailProvider(ABC):
    """
    Abstract base class for email delivery providers.
    """

    @abstractmethod
    def send(
        self,
        to: str,
        subject: str,
        template_name: str,
        template_data: Dict[str, Any],
    ) -> DeliveryResult:
        """
        Render a template and deliver it.

        Args:
            to: Recipient email address
            subject: Subject line
            template_name: Template file stem under counselbook/templates
            template_data: Template variables

        Returns:
            DeliveryResult with the failure reason when unsuccessful
        """


class ConsoleEmailProvider(EmailProvider):
    """
    Console email provider for development/testing.
    Logs rendered emails instead of sending them.
    """

    def send(
        self,
        to: str,
        subject: str,
        template_name: str,
        template_data: Dict[str, Any],
    ) -> DeliveryResult:
        rendered = render_email(template_name, template_data)
        logger.info(
            f"Email logged to console: {subject}",
            extra={"to": to, "template": template_name, "body": rendered.text},
        )
        return DeliveryResult(success=True)


class SMTPEmailProvider(EmailProvider):
    """
    SMTP email provider.

    Uses SMTP_SSL on port 465 and STARTTLS otherwise. Transient SMTP
    failures are retried a few times within one delivery attempt.
    """

    def __init__(self):
        """Initialize SMTP configuration."""
        if not settings.smtp_username or not settings.smtp_password:
            raise ValueError(
                "SMTP credentials not configured. "
                "Set SMTP_USERNAME and SMTP_PASSWORD environment variables."
            )

        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_username = settings.smtp_username
        self.smtp_password = settings.smtp_password
        self.from_email = settings.smtp_from_email or settings.smtp_username
        self.from_name = settings.smtp_from_name

    def _build_message(self, to: str, subject: str, text: str, html: str) -> MIMEMultipart:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = f'{self.from_name} <{self.from_email}>'
        msg['To'] = to
        msg.attach(MIMEText(text, 'plain'))
        msg.attach(MIMEText(html, 'html'))
        return msg

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type((smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError, TimeoutError)),
        reraise=True,
    )
    def _deliver(self, msg: MIMEMultipart) -> None:
        if self.smtp_port == 465:
            with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, timeout=10) as server:
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=10) as server:
                server.starttls()
                server.login(self.smtp_username, self.smtp_password)
                server.send_message(msg)

    def send(
        self,
        to: str,
        subject: str,
        template_name: str,
        template_data: Dict[str, Any],
    ) -> DeliveryResult:
        try:
            rendered = render_email(template_name, template_data)
            self._deliver(self._build_message(to, subject, rendered.text, rendered.html))
        except (smtplib.SMTPException, OSError, ValueError) as e:
            logger.error(f"Failed to send email via SMTP: {e}", extra={"to": to, "template": template_name})
            return DeliveryResult(success=False, error=str(e))

        logger.info("Email sent via SMTP", extra={"to": to, "template": template_name})
        return DeliveryResult(success=True)


def get_email_provider() -> EmailProvider:
    """
    Get the configured email provider.

    Falls back to the console provider when SMTP is selected but not configured.
    """
    if settings.email_provider == "smtp":
        try:
            return SMTPEmailProvider()
        except ValueError as e:
            logger.error(f"SMTP provider unavailable, using console: {e}")
    return ConsoleEmailProvider()


class NotificationDispatcher:
    """
    Queue booking emails for background delivery.

    Each ``send_*`` call writes one notification task and commits it. A
    failure to enqueue is logged and swallowed so the booking transition that
    triggered it stands.
    """

    def __init__(self, db: Session):
        """
        Args:
            db: Database session shared with the booking store
        """
        self.db = db

    def send_confirmation(self, booking: Booking, meeting_id: str) -> Optional[NotificationTask]:
        return self._enqueue(
            booking,
            NotificationKind.CONFIRMATION,
            {
                "name": booking.name,
                "scheduled_time": as_utc(booking.scheduled_at).isoformat(),
                "meeting_id": meeting_id,
            },
        )

    def send_reschedule(self, booking: Booking, new_time: datetime) -> Optional[NotificationTask]:
        return self._enqueue(
            booking,
            NotificationKind.RESCHEDULE,
            {
                "name": booking.name,
                "new_time": as_utc(new_time).isoformat(),
                "meeting_id": booking.meeting_id,
            },
        )

    def send_cancellation(self, booking: Booking) -> Optional[NotificationTask]:
        return self._enqueue(
            booking,
            NotificationKind.CANCELLATION,
            {
                "name": booking.name,
                "original_time": as_utc(booking.scheduled_at).isoformat(),
            },
        )

    def _enqueue(
        self,
        booking: Booking,
        kind: NotificationKind,
        payload: Dict[str, Any],
    ) -> Optional[NotificationTask]:
        task = NotificationTask(
            booking_id=booking.id,
            kind=kind,
            recipient=booking.email,
            payload=payload,
            status=NotificationStatus.PENDING,
            attempts=0,
            next_attempt_at=utcnow(),
        )

        try:
            self.db.add(task)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Failed to queue {kind.value} notification: {e}",
                extra={"booking_id": str(booking.id)},
                exc_info=True,
            )
            return None

        logger.info(
            "Queued booking notification",
            extra={
                "task_id": str(task.id),
                "booking_id": str(booking.id),
                "kind": kind.value,
            },
        )
        return task


# Factory function
def get_notification_dispatcher(db: Session) -> NotificationDispatcher:
    """Get NotificationDispatcher bound to a session."""
    return NotificationDispatcher(db)
