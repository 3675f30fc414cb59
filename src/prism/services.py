"""Core services container.

`build_core_services` wires the process's single instances together once at
startup; consumers receive the container (or the individual services) as
arguments instead of looking them up globally.

Startup never blocks on external systems: an unreachable database or
broker is logged and the affected services run degraded.
"""

import logging
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from prism.clock import TimeService
from prism.config.models import PrismConfig
from prism.db import Database
from prism.events import EventBus
from prism.notifications import NotificationService, NotifyPayload, SessionHub
from prism.scheduling import Scheduler
from prism.scheduling.scheduler import RedisFactory
from prism.timers import TimerService

logger = logging.getLogger(__name__)

# Any feature can emit this to notify a user without importing the service
NOTIFY_EVENT = "notify"


@dataclass
class CoreServices:
    config: PrismConfig
    db: Database
    events: EventBus
    scheduler: Scheduler
    timer: TimerService
    notify: NotificationService
    time: TimeService
    realtime: SessionHub

    async def health(self) -> dict[str, str]:
        """Connectivity report for the database and the broker."""
        db_status = "connected" if await self.db.ping() else "disconnected"
        broker_status = "connected" if await self.scheduler.ping() else "disconnected"
        ok = db_status == "connected" and broker_status == "connected"
        return {
            "status": "ok" if ok else "degraded",
            "db": db_status,
            "broker": broker_status,
        }

    async def close(self) -> None:
        await self.scheduler.close()
        await self.events.drain()
        await self.db.disconnect()
        logger.info("core_services_closed")


def register_notify_bridge(events: EventBus, notify: NotificationService) -> None:
    """Deliver `notify` events through the notification service.

    The handler runs in its own task and owns its failures: an invalid
    payload or a persistence error is logged here, never raised to the
    emitter.
    """

    async def on_notify(payload: Any) -> None:
        try:
            if isinstance(payload, NotifyPayload):
                notify_payload = payload
            else:
                notify_payload = NotifyPayload.model_validate(payload)
            await notify.send(notify_payload)
        except ValidationError as e:
            logger.warning("notify_event_invalid", extra={"error.message": str(e)})
        except Exception as e:
            logger.error(
                "notify_event_failed",
                extra={"error.message": str(e)},
                exc_info=True,
            )

    events.on(NOTIFY_EVENT, on_notify)


async def _connect_database(config: PrismConfig) -> Database:
    if config.database.url:
        db = Database(database_url=config.database.url)
    else:
        db = Database(database_path=config.database.path)
    try:
        await db.connect()
        await db.create_tables()
        logger.info("database_connected")
    except Exception as e:
        logger.warning("database_connect_warning", extra={"error.message": str(e)})
    return db


async def build_core_services(
    config: PrismConfig, *, redis_factory: RedisFactory | None = None
) -> CoreServices:
    """Construct and start every core service.

    Args:
        config: Loaded configuration.
        redis_factory: Optional broker client factory (tests inject fakes).
    """
    db = await _connect_database(config)

    events = EventBus()

    scheduler = Scheduler(
        config.broker,
        poll_interval=config.scheduler.poll_interval,
        timezone=config.scheduler.timezone,
        batch_size=config.scheduler.batch_size,
        concurrency=config.scheduler.concurrency,
        redis_factory=redis_factory,
    )
    await scheduler.start()

    realtime = SessionHub(queue_size=config.notifications.session_queue_size)
    notify = NotificationService(
        db, scheduler, default_channel=config.notifications.default_channel
    )
    notify.attach_realtime(realtime)

    timer = TimerService(scheduler, events, notify)
    time = TimeService(db)

    register_notify_bridge(events, notify)

    logger.info("core_services_initialized", extra={"scheduler.ready": scheduler.ready})
    return CoreServices(
        config=config,
        db=db,
        events=events,
        scheduler=scheduler,
        timer=timer,
        notify=notify,
        time=time,
        realtime=realtime,
    )
