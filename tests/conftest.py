"""Shared test fixtures and factories."""

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path

import pytest
from fakeredis import FakeAsyncRedis, FakeServer
from typer.testing import CliRunner

from prism.config import BrokerConfig, PrismConfig
from prism.config.paths import get_prism_home
from prism.db import Database
from prism.events import EventBus
from prism.notifications import NotificationService, SessionHub
from prism.scheduling import Scheduler
from prism.timers import TimerService

# =============================================================================
# Environment
# =============================================================================


@pytest.fixture(autouse=True)
def prism_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point PRISM_HOME at a temp dir and keep broker env vars out."""
    home = tmp_path / "prism-home"
    monkeypatch.setenv("PRISM_HOME", str(home))
    for var in (
        "REDIS_HOST",
        "REDIS_PORT",
        "REDIS_PASSWORD",
        "SCHEDULER_QUEUE",
        "DATABASE_URL",
        "PRISM_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)
    get_prism_home.cache_clear()
    yield home
    get_prism_home.cache_clear()


# =============================================================================
# Broker Fixtures
# =============================================================================


@pytest.fixture
def redis_server() -> FakeServer:
    """Isolated in-memory broker shared by every client of one test."""
    return FakeServer()


@pytest.fixture
def redis_factory(redis_server: FakeServer) -> Callable[[], FakeAsyncRedis]:
    def factory() -> FakeAsyncRedis:
        return FakeAsyncRedis(server=redis_server, decode_responses=True)

    return factory


@pytest.fixture
def unreachable_broker() -> BrokerConfig:
    """A broker address nothing listens on."""
    return BrokerConfig(host="127.0.0.1", port=1, connect_timeout=0.2)


@pytest.fixture
async def scheduler(redis_factory) -> AsyncGenerator[Scheduler, None]:
    """A connected scheduler polling a fake broker."""
    sched = Scheduler(
        BrokerConfig(),
        poll_interval=0.01,
        redis_factory=redis_factory,
    )
    assert await sched.start()
    yield sched
    await sched.close()


@pytest.fixture
async def degraded_scheduler(
    unreachable_broker: BrokerConfig,
) -> AsyncGenerator[Scheduler, None]:
    sched = Scheduler(unreachable_broker, poll_interval=0.01)
    assert not await sched.start()
    yield sched
    await sched.close()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def database(tmp_path: Path) -> AsyncGenerator[Database, None]:
    """Create a temporary test database."""
    db = Database(database_path=tmp_path / "test.db")
    await db.connect()
    await db.create_tables()

    yield db

    await db.disconnect()


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
async def events() -> AsyncGenerator[EventBus, None]:
    bus = EventBus()
    yield bus
    await bus.drain()


@pytest.fixture
def realtime() -> SessionHub:
    return SessionHub(queue_size=10)


@pytest.fixture
def notify(
    database: Database, scheduler: Scheduler, realtime: SessionHub
) -> NotificationService:
    service = NotificationService(database, scheduler)
    service.attach_realtime(realtime)
    return service


@pytest.fixture
def timer(
    scheduler: Scheduler, events: EventBus, notify: NotificationService
) -> TimerService:
    return TimerService(scheduler, events, notify)


@pytest.fixture
def prism_config(tmp_path: Path) -> PrismConfig:
    """Configuration pointing at a temp SQLite file and a fast worker."""
    return PrismConfig.model_validate(
        {
            "database": {"path": str(tmp_path / "services.db")},
            "scheduler": {"poll_interval": 0.01},
        }
    )


# =============================================================================
# Helpers
# =============================================================================


@pytest.fixture
def wait_for() -> Callable[..., Awaitable[None]]:
    """Poll a predicate until it holds, failing the test after `timeout`."""

    async def _wait_for(
        predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.01
    ) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                pytest.fail("condition not met before timeout")
            await asyncio.sleep(interval)

    return _wait_for


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()
