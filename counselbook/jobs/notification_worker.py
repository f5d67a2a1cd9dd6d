"""
Notification Worker Job - delivers queued booking emails.

Drains ``notification_tasks`` written by the NotificationDispatcher.

Execution flow:
1. Claim due pending tasks (conditional update, so two workers never send the same task)
2. Render and send each task through the configured EmailProvider
3. Mark sent, or schedule a retry with exponential backoff
4. Mark failed once the attempt budget is spent

Runs on an interval from the scheduler and once after each mutating API
request (as a FastAPI background task).
"""
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from counselbook.lib.db import get_db_context
from counselbook.lib.logging import get_logger
from counselbook.lib.settings import settings
from counselbook.lib.template_loader import SUBJECTS
from counselbook.lib.timeutils import utcnow
from counselbook.models.notification_tasks import NotificationStatus, NotificationTask
from counselbook.services.notification_service import (
    TEMPLATE_NAMES,
    EmailProvider,
    get_email_provider,
)

logger = get_logger(__name__)

# How long a claimed task is hidden from other workers
CLAIM_LEASE_SECONDS = 300


def compute_backoff(attempts: int, base_seconds: int, max_seconds: int) -> int:
    """
    Delay before the next attempt after ``attempts`` failures.

    >>> [compute_backoff(n, 30, 3600) for n in (1, 2, 3)]
    [30, 60, 120]
    """
    if attempts < 1:
        return 0
    return min(base_seconds * (2 ** (attempts - 1)), max_seconds)


class NotificationWorker:
    """
    Deliver due notification tasks.
    """

    def __init__(
        self,
        db: Session,
        provider: Optional[EmailProvider] = None,
        max_attempts: Optional[int] = None,
        retry_base_seconds: Optional[int] = None,
        retry_max_seconds: Optional[int] = None,
    ):
        self.db = db
        self.provider = provider or get_email_provider()
        self.max_attempts = max_attempts or settings.notification_max_attempts
        self.retry_base_seconds = (
            retry_base_seconds if retry_base_seconds is not None
            else settings.notification_retry_base_seconds
        )
        self.retry_max_seconds = (
            retry_max_seconds if retry_max_seconds is not None
            else settings.notification_retry_max_seconds
        )

    def claim_due(self, limit: int, now: Optional[datetime] = None) -> List[NotificationTask]:
        """Claim up to ``limit`` pending tasks whose retry time has come, oldest first."""
        now = now or utcnow()
        candidates = self.db.execute(
            select(NotificationTask.id)
            .where(
                NotificationTask.status == NotificationStatus.PENDING,
                NotificationTask.next_attempt_at <= now,
            )
            .order_by(NotificationTask.created_at.asc())
            .limit(limit)
        ).scalars().all()

        lease_until = now + timedelta(seconds=CLAIM_LEASE_SECONDS)
        claimed_ids = []
        for task_id in candidates:
            result = self.db.execute(
                update(NotificationTask)
                .where(
                    NotificationTask.id == task_id,
                    NotificationTask.status == NotificationStatus.PENDING,
                    NotificationTask.next_attempt_at <= now,
                )
                .values(next_attempt_at=lease_until)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                claimed_ids.append(task_id)
        self.db.commit()

        if not claimed_ids:
            return []

        return list(
            self.db.execute(
                select(NotificationTask)
                .where(NotificationTask.id.in_(claimed_ids))
                .order_by(NotificationTask.created_at.asc())
                .execution_options(populate_existing=True)
            ).scalars().all()
        )

    def process_task(self, task: NotificationTask) -> NotificationStatus:
        """Attempt delivery of one claimed task and record the outcome."""
        template_name = TEMPLATE_NAMES[task.kind]
        subject = SUBJECTS[template_name]

        try:
            result = self.provider.send(task.recipient, subject, template_name, task.payload or {})
            success, error = result.success, result.error
        except Exception as e:
            logger.error(
                f"Email provider raised: {e}",
                extra={"task_id": str(task.id)},
                exc_info=True,
            )
            success, error = False, str(e)

        now = utcnow()
        task.attempts += 1

        if success:
            task.status = NotificationStatus.SENT
            task.sent_at = now
            task.last_error = None
        elif task.attempts >= self.max_attempts:
            task.status = NotificationStatus.FAILED
            task.last_error = error
            logger.error(
                "Notification delivery failed permanently",
                extra={"task_id": str(task.id), "attempts": task.attempts, "error": error},
            )
        else:
            delay = compute_backoff(task.attempts, self.retry_base_seconds, self.retry_max_seconds)
            task.next_attempt_at = now + timedelta(seconds=delay)
            task.last_error = error
            logger.warning(
                "Notification delivery failed, will retry",
                extra={"task_id": str(task.id), "attempts": task.attempts, "retry_in_seconds": delay},
            )

        self.db.commit()
        return task.status

    def run_once(self, limit: Optional[int] = None) -> Dict[str, int]:
        """
        Claim and process one batch.

        Returns:
            Counts: claimed, sent, retrying, failed
        """
        tasks = self.claim_due(limit or settings.notification_batch_size)
        summary = {"claimed": len(tasks), "sent": 0, "retrying": 0, "failed": 0}

        for task in tasks:
            status = self.process_task(task)
            if status == NotificationStatus.SENT:
                summary["sent"] += 1
            elif status == NotificationStatus.FAILED:
                summary["failed"] += 1
            else:
                summary["retrying"] += 1

        return summary


def drain_notifications(limit: Optional[int] = None) -> Optional[Dict[str, int]]:
    """
    Run one worker pass with its own session.

    Entry point for the scheduler and for post-response background tasks.
    Errors are logged and swallowed; undelivered tasks stay queued.
    """
    run_id = uuid4()
    try:
        with get_db_context() as db:
            summary = NotificationWorker(db).run_once(limit)
    except Exception as e:
        logger.error(f"Notification worker pass failed (run_id: {run_id}): {e}", exc_info=True)
        return None

    if summary["claimed"]:
        logger.info(
            f"Notification worker pass finished (run_id: {run_id})",
            extra=summary,
        )
    return summary


# ============================================================================
# Scheduler Registration
# ============================================================================


def register_notification_jobs(scheduler_manager):
    """
    Register the notification drain job with the scheduler.

    Example:
        from counselbook.jobs.scheduler import get_scheduler
        from counselbook.jobs.notification_worker import register_notification_jobs

        scheduler = get_scheduler()
        register_notification_jobs(scheduler)
        scheduler.start()
    """
    scheduler_manager.add_interval_job(
        func=drain_notifications,
        job_id="notification_drain",
        seconds=settings.notification_worker_interval_seconds,
    )
    logger.info("Notification worker job registered")
