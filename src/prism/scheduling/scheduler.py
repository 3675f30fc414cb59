"""Job scheduler on top of the durable Redis queue.

The scheduler owns the handler registry, the local job bookkeeping and the
worker loop that polls the broker for due jobs. Broker data access is
delegated to RedisJobQueue.

If the broker cannot be reached at startup the scheduler stays in a
degraded state instead of raising: cron registration becomes a logged
no-op, removal is a silent no-op, and operations that must return a job id
raise SchedulerUnavailable.
"""

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from prism.config.models import BrokerConfig
from prism.errors import InvalidSchedule, SchedulerUnavailable
from prism.scheduling.queue import RedisJobQueue
from prism.scheduling.types import (
    JobFn,
    JobKind,
    QueuedJob,
    ScheduledJob,
    next_cron_time,
    to_ms,
    validate_cron,
)

logger = logging.getLogger(__name__)

RedisFactory = Callable[[], Redis]

# Heartbeat every N polls
HEARTBEAT_INTERVAL = 120


def _now_ms() -> int:
    return int(time.time() * 1000)


class Scheduler:
    """Delayed, repeating and cron execution of named handlers.

    Example:
        scheduler = Scheduler(BrokerConfig(host="localhost"))
        await scheduler.start()

        async def remind(job_id, data):
            ...

        job_id = await scheduler.add_delayed("remind:u1", 60_000, remind)
        await scheduler.remove(job_id)
        await scheduler.close()
    """

    def __init__(
        self,
        connection: BrokerConfig,
        *,
        queue_name: str | None = None,
        poll_interval: float = 0.5,
        timezone: str = "UTC",
        batch_size: int = 50,
        concurrency: int = 4,
        redis_factory: RedisFactory | None = None,
    ):
        self._connection = connection
        self._queue_name = queue_name or connection.queue
        self._poll_interval = poll_interval
        self._timezone = timezone
        self._batch_size = batch_size
        self._concurrency = concurrency
        self._redis_factory = redis_factory or self._default_redis

        self._queue: RedisJobQueue | None = None
        self._ready = False
        self._lock = threading.Lock()
        self._jobs: dict[str, ScheduledJob] = {}
        self._handlers: dict[str, JobFn] = {}

        self._running = False
        self._worker: asyncio.Task[None] | None = None
        self._in_flight: set[asyncio.Task[None]] = set()
        self._background: set[asyncio.Task[None]] = set()
        self._poll_count = 0

    def _default_redis(self) -> Redis:
        password = self._connection.password
        return Redis(
            host=self._connection.host,
            port=self._connection.port,
            db=self._connection.db,
            password=password.get_secret_value() if password else None,
            decode_responses=True,
            socket_connect_timeout=self._connection.connect_timeout,
        )

    @property
    def ready(self) -> bool:
        return self._ready and self._queue is not None

    @property
    def queue_name(self) -> str:
        return self._queue_name

    async def start(self) -> bool:
        """Connect to the broker and start the worker loop.

        Never raises: on failure the scheduler stays degraded.

        Returns:
            True when connected, False when degraded.
        """
        if self.ready:
            return True

        client: Redis | None = None
        try:
            client = self._redis_factory()
            await asyncio.wait_for(
                client.ping(), timeout=self._connection.connect_timeout
            )
        except Exception as e:
            logger.warning(
                "scheduler_degraded",
                extra={
                    "broker.host": self._connection.host,
                    "broker.port": self._connection.port,
                    "error.message": str(e) or type(e).__name__,
                },
            )
            if client is not None:
                await self._close_client(client)
            self._ready = False
            return False

        self._queue = RedisJobQueue(client, self._queue_name)
        self._ready = True
        self._running = True
        self._worker = asyncio.create_task(self._poll_loop())
        logger.info(
            "scheduler_connected",
            extra={
                "broker.host": self._connection.host,
                "broker.port": self._connection.port,
                "scheduler.queue": self._queue_name,
            },
        )
        return True

    def add_cron(self, name: str, cron: str, fn: JobFn) -> None:
        """Register `fn` under `name` and enqueue a job firing on `cron`.

        Fire-and-forget: the broker write happens in the background and its
        failure is logged. In degraded state this logs and does nothing.

        Raises:
            InvalidSchedule: If `cron` is not a valid cron expression.
        """
        if not self.ready:
            logger.warning(
                "scheduler_cron_skipped",
                extra={"job.name": name, "reason": "broker unavailable"},
            )
            return

        validate_cron(cron)
        with self._lock:
            self._handlers[name] = fn

        task = asyncio.get_running_loop().create_task(self._enqueue_cron(name, cron))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _enqueue_cron(self, name: str, cron: str) -> None:
        assert self._queue is not None
        try:
            first = next_cron_time(cron, datetime.now(UTC), self._timezone)
            job = await self._queue.enqueue(
                name,
                JobKind.CRON,
                to_ms(first),
                cron=cron,
                timezone=self._timezone,
            )
        except Exception as e:
            logger.error(
                "scheduler_cron_add_failed",
                extra={"job.name": name, "error.message": str(e)},
            )
            return
        self._track(job)

    async def add_delayed(self, name: str, delay_ms: int, fn: JobFn) -> str:
        """Register `fn` and enqueue a one-shot job firing after `delay_ms`.

        Negative delays are clamped to zero (the next worker poll).

        Raises:
            SchedulerUnavailable: If the broker is not connected.
        """
        queue = self._require_queue()
        with self._lock:
            self._handlers[name] = fn
        job = await self._enqueue(
            queue, name, JobKind.DELAYED, _now_ms() + max(0, int(delay_ms))
        )
        return job.id

    async def add_repeating(self, name: str, interval_ms: int, fn: JobFn) -> str:
        """Register `fn` and enqueue a job firing every `interval_ms` until removed.

        Raises:
            SchedulerUnavailable: If the broker is not connected.
            InvalidSchedule: If `interval_ms` is not positive.
        """
        if interval_ms <= 0:
            raise InvalidSchedule(f"Repeat interval must be positive, got {interval_ms}")
        queue = self._require_queue()
        with self._lock:
            self._handlers[name] = fn
        job = await self._enqueue(
            queue,
            name,
            JobKind.REPEATING,
            _now_ms() + int(interval_ms),
            every_ms=int(interval_ms),
        )
        return job.id

    async def remove(self, job_id: str) -> bool:
        """Remove a job. Unknown or already executed ids are a no-op.

        Returns:
            True if a job was removed from the broker.
        """
        if not self.ready:
            return False
        assert self._queue is not None

        try:
            removed = await self._queue.remove(job_id)
        except RedisError as e:
            logger.warning(
                "scheduler_remove_failed",
                extra={"job.id": job_id, "error.message": str(e)},
            )
            removed = False

        self._forget(job_id)
        return removed

    async def remove_named(self, name: str) -> int:
        """Remove every locally known job registered under `name`.

        The handler is unregistered as well, so a run of the job that was
        already claimed is dropped instead of executed. Cron registrations
        still on their way to the broker are awaited first so their jobs
        are removed too.

        Returns:
            Number of jobs removed from the broker.
        """
        await self.settle()
        with self._lock:
            self._handlers.pop(name, None)
            job_ids = [job.id for job in self._jobs.values() if job.name == name]

        removed = 0
        for job_id in job_ids:
            if await self.remove(job_id):
                removed += 1
        return removed

    def list(self) -> list[ScheduledJob]:
        """Snapshot of jobs added through this process. Does not query the broker."""
        with self._lock:
            return list(self._jobs.values())

    def get(self, job_id: str) -> ScheduledJob | None:
        with self._lock:
            return self._jobs.get(job_id)

    async def settle(self) -> None:
        """Wait for in-flight cron registrations to reach the broker."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def ping(self) -> bool:
        if not self.ready:
            return False
        assert self._queue is not None
        try:
            return await self._queue.ping()
        except Exception:
            return False

    async def close(self) -> None:
        """Stop the worker, wait for running handlers and disconnect."""
        self._running = False
        if self._worker:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        await self.settle()
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

        if self._queue is not None:
            await self._close_queue(self._queue)
            self._queue = None
        self._ready = False

    # -- bookkeeping -------------------------------------------------------

    def _require_queue(self) -> RedisJobQueue:
        if not self.ready:
            raise SchedulerUnavailable()
        assert self._queue is not None
        return self._queue

    async def _enqueue(
        self,
        queue: RedisJobQueue,
        name: str,
        kind: JobKind,
        fire_at: int,
        **kwargs: Any,
    ) -> QueuedJob:
        try:
            job = await queue.enqueue(name, kind, fire_at, **kwargs)
        except (RedisError, OSError) as e:
            raise SchedulerUnavailable(f"Scheduler unavailable: {e}") from e
        self._track(job)
        return job

    def _track(self, job: QueuedJob) -> None:
        with self._lock:
            self._jobs[job.id] = ScheduledJob(id=job.id, name=job.name, kind=job.kind)
        logger.debug(
            "scheduler_job_added",
            extra={"job.id": job.id, "job.name": job.name, "job.kind": job.kind.value},
        )

    def _forget(self, job_id: str) -> None:
        with self._lock:
            job = self._jobs.pop(job_id, None)
            if job is None:
                return
            if not any(other.name == job.name for other in self._jobs.values()):
                self._handlers.pop(job.name, None)

    # -- worker ------------------------------------------------------------

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                self._poll_count += 1
                if self._poll_count % HEARTBEAT_INTERVAL == 0:
                    logger.debug(
                        "scheduler_heartbeat",
                        extra={
                            "poll.count": self._poll_count,
                            "scheduler.in_flight": len(self._in_flight),
                        },
                    )
                await self._process_due()
            except RedisError as e:
                logger.warning("scheduler_worker_error", extra={"error.message": str(e)})
            except Exception as e:
                logger.error(
                    "scheduler_worker_error",
                    extra={"error.message": str(e)},
                    exc_info=True,
                )
            await asyncio.sleep(self._poll_interval)

    async def _process_due(self) -> None:
        """Claim due jobs and start their handlers, up to the concurrency limit."""
        if self._queue is None:
            return
        available = self._concurrency - len(self._in_flight)
        if available <= 0:
            return

        jobs = await self._queue.claim_due(_now_ms(), min(self._batch_size, available))
        for job in jobs:
            task = asyncio.create_task(self._run_job(job))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    async def _run_job(self, job: QueuedJob) -> None:
        queue = self._queue
        if queue is None:
            return

        if job.is_recurring:
            next_fire = job.next_fire_at(_now_ms())
            if next_fire is None or not await queue.rearm(job, next_fire):
                logger.debug("scheduler_job_gone", extra={"job.id": job.id})
                return

        with self._lock:
            handler = self._handlers.get(job.name)

        try:
            if handler is None:
                # Typically a job that outlived the process that registered it
                logger.warning(
                    "scheduler_no_handler",
                    extra={"job.id": job.id, "job.name": job.name},
                )
                return

            logger.debug(
                "scheduler_job_running",
                extra={"job.id": job.id, "job.name": job.name, "job.kind": job.kind.value},
            )
            try:
                await handler(job.id, job.data)
            except Exception as e:
                logger.error(
                    "scheduler_job_failed",
                    extra={
                        "job.id": job.id,
                        "job.name": job.name,
                        "error.message": str(e),
                    },
                    exc_info=True,
                )
        finally:
            if not job.is_recurring:
                await self._complete(queue, job)

    async def _complete(self, queue: RedisJobQueue, job: QueuedJob) -> None:
        try:
            await queue.complete(job.id)
        except RedisError as e:
            logger.warning(
                "scheduler_complete_failed",
                extra={"job.id": job.id, "error.message": str(e)},
            )
        self._forget(job.id)

    async def _close_queue(self, queue: RedisJobQueue) -> None:
        try:
            await queue.close()
        except Exception as e:
            logger.debug("scheduler_close_error", extra={"error.message": str(e)})

    async def _close_client(self, client: Redis) -> None:
        try:
            await client.aclose()
        except Exception as e:
            logger.debug("scheduler_close_error", extra={"error.message": str(e)})
