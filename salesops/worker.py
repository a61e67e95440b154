"""
ARQ Background Worker for Async Jobs
Delivers queued notification emails and runs the daily invoice status sweep
"""

import logging

from arq.cron import cron
from arq.worker import Retry

from . import config
from .config import get_redis_settings
from .database import SessionLocal
from .email_service import NotificationDispatcher, get_mail_transport
from .exceptions import DeliveryFailure
from .metrics import Metrics
from .notification_queue import (
    DeadLetterStore,
    NotificationJob,
    NotificationQueue,
)
from .rate_limiter import QueueRateLimiter

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

MAX_JOB_TRIES = config.EMAIL_MAX_RETRIES


def job_backoff(attempt: int) -> float:
    """Seconds to wait after failed try n: 1, 2, 4, ..."""
    return config.EMAIL_RETRY_DELAY * (2 ** (attempt - 1))


async def startup(ctx):
    """Build the worker's collaborators once per process"""
    metrics = Metrics(name="salesops-worker")
    ctx["metrics"] = metrics
    ctx["dispatcher"] = NotificationDispatcher(get_mail_transport(), metrics)
    ctx["rate_limiter"] = QueueRateLimiter(
        ctx["redis"],
        max_jobs=config.EMAIL_QUEUE_RATE_LIMIT,
        window_seconds=config.EMAIL_QUEUE_RATE_WINDOW,
    )
    ctx["dead_letters"] = DeadLetterStore(ctx["redis"])
    ctx["notification_queue"] = NotificationQueue(ctx["redis"], metrics)
    logger.info("🚀 ARQ Worker started")


async def shutdown(ctx):
    metrics = ctx.get("metrics")
    if metrics:
        logger.info(f"📊 Worker metrics at shutdown: {metrics.snapshot()}")
    logger.info("🔒 ARQ Worker stopped")


async def _dead_letter(ctx, job_id: str, job: NotificationJob, reason: str) -> None:
    failure = DeliveryFailure(
        f"Delivery failed after {job.attempt} attempts: {reason}", attempts=job.attempt
    )
    await ctx["dead_letters"].add(job_id, job, failure.message)
    ctx["metrics"].increment("email.dead_lettered")
    logger.error(f"❌ Email job {job_id} permanently failed: {failure.message}")


async def send_notification_task(ctx, payload: dict):
    """
    Deliver one queued notification email.

    One transport attempt per job try; failed tries are retried by ARQ with
    exponential backoff. The last failed try, whatever the cause, moves the
    job to the dead letter store.

    Args:
        ctx: ARQ context
        payload: NotificationJob.to_dict() output

    Returns:
        dict with status and attempt number
    """
    job = NotificationJob.from_dict(payload)
    job.attempt = ctx.get("job_try", 1)
    job_id = ctx.get("job_id", "unknown")
    metrics = ctx["metrics"]

    logger.info(f"📋 Processing email job {job_id} (try {job.attempt}/{MAX_JOB_TRIES}) -> {job.destination}")
    try:
        await ctx["rate_limiter"].acquire()
        delivered = await ctx["dispatcher"].send(
            destination=job.destination,
            subject=job.subject,
            text=job.text_body,
            html=job.html_body,
            attachments=job.attachments,
            max_attempts=1,
        )
    except Exception as e:
        if job.attempt >= MAX_JOB_TRIES:
            await _dead_letter(ctx, job_id, job, f"{type(e).__name__}: {e}")
            raise
        delay = job_backoff(job.attempt)
        metrics.increment("email.retried")
        logger.warning(f"⚠️ Email job {job_id} errored on try {job.attempt} ({e}), retrying in {delay}s")
        raise Retry(defer=delay) from e

    if delivered:
        logger.info(f"✅ Email job {job_id} completed on try {job.attempt}")
        return {"status": "sent", "attempt": job.attempt}

    if job.attempt < MAX_JOB_TRIES:
        delay = job_backoff(job.attempt)
        metrics.increment("email.retried")
        logger.warning(f"⚠️ Email job {job_id} failed on try {job.attempt}, retrying in {delay}s")
        raise Retry(defer=delay)

    await _dead_letter(ctx, job_id, job, "transport rejected the message")
    return {"status": "failed", "attempt": job.attempt}


async def mark_overdue_invoices_task(ctx):
    """
    Daily cron job moving PENDING invoices past their due date to OVERDUE.
    Each change queues the overdue reminder email.
    """
    from .domain.status.service import StatusChangeService

    logger.info("Starting daily overdue invoice sweep")

    db = SessionLocal()
    try:
        service = StatusChangeService(db, notifier=ctx["notification_queue"])
        summary = await service.mark_overdue_invoices()
        logger.info(f"Overdue invoice sweep complete: {summary}")
        return summary
    except Exception as e:
        logger.error(f"❌ Overdue invoice sweep failed: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()


class WorkerSettings:
    """ARQ Worker Settings"""

    functions = [send_notification_task, mark_overdue_invoices_task]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings()

    max_jobs = config.ARQ_MAX_JOBS
    job_timeout = config.ARQ_JOB_TIMEOUT
    keep_result = config.ARQ_KEEP_RESULT

    health_check_interval = 60

    # Queue-level retries for notification jobs
    max_tries = MAX_JOB_TRIES

    cron_jobs = [
        cron(mark_overdue_invoices_task, hour=0, minute=5),  # 12:05 AM UTC
    ]

