"""Durable job queue backed by Redis.

Key layout for a queue named Q:

    Q:seq       INCR counter; every job id comes from it
    Q:jobs      hash    job id -> JSON job record
    Q:schedule  zset    job id -> next fire time (epoch ms)

A job is due when its schedule score is <= now. Claiming is a ZREM on the
schedule set, so exactly one worker wins each due run. Recurring jobs are
re-armed by writing a new score; one-shot jobs are deleted once handled.
"""

import logging
from typing import Any

from redis.asyncio import Redis

from prism.scheduling.types import JobKind, QueuedJob

logger = logging.getLogger(__name__)


class RedisJobQueue:
    """Thin data-access layer over the broker keys. No handler logic here."""

    def __init__(self, client: Redis, name: str):
        self._client = client
        self._name = name

    @property
    def _seq_key(self) -> str:
        return f"{self._name}:seq"

    @property
    def _jobs_key(self) -> str:
        return f"{self._name}:jobs"

    @property
    def _schedule_key(self) -> str:
        return f"{self._name}:schedule"

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def enqueue(
        self,
        name: str,
        kind: JobKind,
        fire_at: int,
        *,
        data: dict[str, Any] | None = None,
        every_ms: int | None = None,
        cron: str | None = None,
        timezone: str = "UTC",
    ) -> QueuedJob:
        """Store a job and schedule its first run at `fire_at` (epoch ms)."""
        job_id = str(await self._client.incr(self._seq_key))
        job = QueuedJob(
            id=job_id,
            name=name,
            kind=kind,
            fire_at=fire_at,
            data=dict(data or {}),
            every_ms=every_ms,
            cron=cron,
            timezone=timezone,
        )
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.hset(self._jobs_key, job_id, job.to_json())
            pipe.zadd(self._schedule_key, {job_id: fire_at})
            await pipe.execute()

        logger.debug(
            "job_enqueued",
            extra={"job.id": job_id, "job.name": name, "job.kind": kind.value},
        )
        return job

    async def get(self, job_id: str) -> QueuedJob | None:
        raw = await self._client.hget(self._jobs_key, job_id)
        if raw is None:
            return None
        return QueuedJob.from_json(raw)

    async def remove(self, job_id: str) -> bool:
        """Delete a job. Returns False if it was unknown or already consumed."""
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.hdel(self._jobs_key, job_id)
            pipe.zrem(self._schedule_key, job_id)
            deleted, _ = await pipe.execute()
        return bool(deleted)

    async def claim_due(self, now_ms: int, limit: int) -> list[QueuedJob]:
        """Claim up to `limit` jobs whose fire time has passed."""
        job_ids = await self._client.zrangebyscore(
            self._schedule_key, "-inf", now_ms, start=0, num=limit
        )
        claimed: list[QueuedJob] = []
        for job_id in job_ids:
            if not await self._client.zrem(self._schedule_key, job_id):
                continue  # Another worker got it first
            job = await self.get(job_id)
            if job is None:
                logger.warning("job_record_missing", extra={"job.id": job_id})
                await self._client.hdel(self._jobs_key, job_id)
                continue
            claimed.append(job)
        return claimed

    async def rearm(self, job: QueuedJob, fire_at: int) -> bool:
        """Schedule the next run of a recurring job.

        Returns False if the job was removed while it was claimed.
        """
        if not await self._client.hexists(self._jobs_key, job.id):
            return False
        job.fire_at = fire_at
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.hset(self._jobs_key, job.id, job.to_json())
            pipe.zadd(self._schedule_key, {job.id: fire_at})
            await pipe.execute()
        return True

    async def complete(self, job_id: str) -> None:
        """Drop the record of a consumed one-shot job."""
        await self._client.hdel(self._jobs_key, job_id)

    async def close(self) -> None:
        await self._client.aclose()
