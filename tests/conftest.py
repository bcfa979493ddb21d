"""Shared test fixtures."""

from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import sightline.database as db_module
import sightline.registry.models  # noqa: F401
from sightline.config import settings
from sightline.discovery.base import NetworkAdapter, RadioAdapter
from sightline.exceptions import AdapterUnavailableError
from sightline.main import app
from sightline.registry.memory import MemoryDeviceStore
from sightline.registry.store import DeviceStore, SqlDeviceStore


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created.

    StaticPool ensures every session uses the same connection,
    so the in-memory database is shared across the test.
    """
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(eng)
    return eng


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    with Session(engine) as s:
        yield s


@pytest.fixture(params=["memory", "sqlite"])
def store(request, engine) -> Generator[DeviceStore, None, None]:
    """Both DeviceStore backends; contract tests run against each."""
    backend: DeviceStore
    if request.param == "memory":
        backend = MemoryDeviceStore()
    else:
        backend = SqlDeviceStore(engine)
    yield backend
    backend.close()


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 10, 17, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return StepClock()


@pytest.fixture
def client(engine, monkeypatch) -> Generator[TestClient, None, None]:
    """FastAPI TestClient on the test engine with mock discovery backends."""
    # Patch the module-level engine so lifespan's init_db() and the
    # SQL store both use the test engine.
    monkeypatch.setattr(db_module, "engine", engine)
    monkeypatch.setattr(settings, "radio_mode", "mock")
    monkeypatch.setattr(settings, "network_mode", "mock")
    monkeypatch.setattr(settings, "store_backend", "sqlite")
    monkeypatch.setattr("sightline.main.load_config", lambda: settings)

    with TestClient(app) as c:
        yield c


class FakeRadio(RadioAdapter):
    """Radio adapter driven by hand: tests call ``_emit`` directly."""

    def __init__(self) -> None:
        super().__init__()
        self.fail = False
        self.starts = 0
        self.stops = 0

    async def _start_discovery(self) -> None:
        if self.fail:
            raise AdapterUnavailableError("adapter missing", transport="radio")
        self.starts += 1

    async def _stop_discovery(self) -> None:
        self.stops += 1


class FakeNetwork(NetworkAdapter):
    """Network adapter driven by hand via ``_peer_resolved`` / ``_peer_removed``."""

    async def _start_discovery(self) -> None:
        pass

    async def _stop_discovery(self) -> None:
        pass

    async def start_advertising(self, port: int = 0, name: str | None = None) -> bool:
        self.advertised_as = name
        self.advertising.send(True)
        return True

    async def stop_advertising(self) -> None:
        self.advertising.send(False)


@pytest.fixture
def fake_radio() -> FakeRadio:
    return FakeRadio()


@pytest.fixture
def fake_network() -> FakeNetwork:
    return FakeNetwork()
