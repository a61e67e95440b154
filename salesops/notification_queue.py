"""
Durable notification queue on ARQ/Redis

Jobs are accepted here and processed by `send_notification_task` in the ARQ
worker (see worker.py). Jobs that exhaust their retries are kept in a Redis
dead-letter hash for inspection and manual requeue.
"""

import base64
import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

from arq import ArqRedis, create_pool
from arq.constants import default_queue_name

from .config import get_redis_settings
from .metrics import Metrics

logger = logging.getLogger(__name__)

SEND_NOTIFICATION_TASK = "send_notification_task"
DEAD_LETTER_KEY = "dlq:email_notifications"


@dataclass
class NotificationJob:
    """A queued email; `attempt` is only advanced by the worker"""

    destination: str
    subject: str
    text_body: str
    html_body: str
    attempt: int = 0
    created_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    # Each attachment: {"filename": str, "content": bytes, "content_type": str}
    attachments: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe form; attachment bytes are base64 encoded"""
        data = asdict(self)
        data["attachments"] = [
            {
                **attachment,
                "content": base64.b64encode(attachment["content"]).decode("ascii"),
            }
            for attachment in self.attachments
        ]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NotificationJob":
        attachments = [
            {**attachment, "content": base64.b64decode(attachment["content"])}
            for attachment in data.get("attachments") or []
        ]
        return cls(
            destination=data["destination"],
            subject=data["subject"],
            text_body=data["text_body"],
            html_body=data["html_body"],
            attempt=int(data.get("attempt", 0)),
            created_at=data.get("created_at") or datetime.utcnow().isoformat(),
            attachments=attachments,
        )


@dataclass
class DeadLetterEntry:
    job_id: str
    job: NotificationJob
    error: str
    failed_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "job": self.job.to_dict(),
            "error": self.error,
            "failed_at": self.failed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DeadLetterEntry":
        return cls(
            job_id=data["job_id"],
            job=NotificationJob.from_dict(data["job"]),
            error=data.get("error", ""),
            failed_at=data.get("failed_at", ""),
        )


def _decode(value: Union[bytes, str]) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class DeadLetterStore:
    """Permanently failed notification jobs, keyed by ARQ job id"""

    def __init__(self, redis, key: str = DEAD_LETTER_KEY):
        self.redis = redis
        self.key = key

    async def add(self, job_id: str, job: NotificationJob, error: str) -> DeadLetterEntry:
        entry = DeadLetterEntry(
            job_id=job_id, job=job, error=error, failed_at=datetime.utcnow().isoformat()
        )
        await self.redis.hset(self.key, job_id, json.dumps(entry.to_dict()))
        logger.warning(f"🪦 Notification job {job_id} moved to dead letter store: {error}")
        return entry

    async def get(self, job_id: str) -> Optional[DeadLetterEntry]:
        raw = await self.redis.hget(self.key, job_id)
        if raw is None:
            return None
        return DeadLetterEntry.from_dict(json.loads(_decode(raw)))

    async def entries(self) -> list[DeadLetterEntry]:
        raw_entries = await self.redis.hgetall(self.key)
        entries = [DeadLetterEntry.from_dict(json.loads(_decode(v))) for v in raw_entries.values()]
        return sorted(entries, key=lambda entry: entry.failed_at)

    async def remove(self, job_id: str) -> bool:
        return bool(await self.redis.hdel(self.key, job_id))


class NotificationQueue:
    """Enqueue side of the notification pipeline"""

    def __init__(self, pool: ArqRedis, metrics: Metrics):
        self.pool = pool
        self.metrics = metrics
        self.dead_letters = DeadLetterStore(pool)

    async def enqueue(self, payload: Union[NotificationJob, dict]) -> str:
        """
        Accept a notification for asynchronous delivery.

        Only durable acceptance is guaranteed; delivery happens in the worker.

        Returns:
            The ARQ job id
        """
        job = payload if isinstance(payload, NotificationJob) else NotificationJob.from_dict(payload)
        job_id = f"email:{uuid.uuid4().hex}"

        arq_job = await self.pool.enqueue_job(SEND_NOTIFICATION_TASK, job.to_dict(), _job_id=job_id)
        if arq_job is None:
            # ARQ returns None only when the id already exists
            raise RuntimeError(f"Notification job {job_id} already queued")

        logger.info(f"📋 Notification job queued: {arq_job.job_id} -> {job.destination}")
        await self.refresh_queue_size()
        return arq_job.job_id

    async def queue_size(self) -> int:
        return int(await self.pool.zcard(default_queue_name))

    async def refresh_queue_size(self) -> int:
        size = await self.queue_size()
        self.metrics.set_gauge("email.queue_size", size)
        return size

    async def failed_jobs(self) -> list[DeadLetterEntry]:
        return await self.dead_letters.entries()

    async def requeue_failed(self, job_id: str) -> Optional[str]:
        """Put a dead-lettered job back on the queue with a fresh attempt count"""
        entry = await self.dead_letters.get(job_id)
        if entry is None:
            return None

        entry.job.attempt = 0
        new_job_id = await self.enqueue(entry.job)
        await self.dead_letters.remove(job_id)
        logger.info(f"🔁 Requeued dead-lettered job {job_id} as {new_job_id}")
        return new_job_id

    async def close(self) -> None:
        await self.pool.close()


async def create_notification_queue(metrics: Metrics) -> NotificationQueue:
    """Open an ARQ pool using the configured Redis settings"""
    pool = await create_pool(get_redis_settings())
    return NotificationQueue(pool, metrics)
