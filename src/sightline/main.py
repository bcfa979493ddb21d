"""Sightline application entrypoint."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

import sightline.database as db_module
from sightline.config import Settings, load_config, settings
from sightline.discovery.base import NetworkAdapter, RadioAdapter
from sightline.discovery.coordinator import DiscoveryCoordinator
from sightline.history.service import HistoryQueryService
from sightline.registry.store import DeviceStore, SqlDeviceStore

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


def _create_store(cfg: Settings) -> DeviceStore:
    """Factory: instantiate the configured history backend."""
    if cfg.store_backend == "memory":
        from sightline.registry.memory import MemoryDeviceStore

        return MemoryDeviceStore()
    if cfg.store_backend != "sqlite":
        logger.warning("Unknown store backend '%s', using sqlite", cfg.store_backend)
    db_module.init_db()
    logger.info("Database initialized")
    return SqlDeviceStore(db_module.engine, max_workers=cfg.store_workers)


def _create_radio(mode: str) -> RadioAdapter | None:
    if mode == "bleak":
        from sightline.discovery.radio import BleakRadioAdapter

        return BleakRadioAdapter()
    if mode == "mock":
        from sightline.discovery.mock import MockRadioAdapter

        return MockRadioAdapter()
    if mode != "none":
        logger.warning("Unknown radio mode '%s', skipping", mode)
    return None


def _create_network(mode: str, cfg: Settings) -> NetworkAdapter | None:
    if mode == "zeroconf":
        from sightline.discovery.network import ZeroconfNetworkAdapter

        return ZeroconfNetworkAdapter(cfg.service_type, resolve_timeout=cfg.resolve_timeout)
    if mode == "mock":
        from sightline.discovery.mock import MockNetworkAdapter

        return MockNetworkAdapter(resolve_timeout=cfg.resolve_timeout)
    if mode != "none":
        logger.warning("Unknown network mode '%s', skipping", mode)
    return None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup/shutdown lifecycle."""
    cfg = load_config()
    store = _create_store(cfg)
    coordinator = DiscoveryCoordinator(
        store,
        radio=_create_radio(cfg.radio_mode),
        network=_create_network(cfg.network_mode, cfg),
        advertise_name=cfg.advertise_name,
        scan_timeout=cfg.scan_timeout,
    )
    history = HistoryQueryService(store, debounce=cfg.search_debounce)
    await history.reload()

    app.state.store = store
    app.state.coordinator = coordinator
    app.state.history = history
    logger.info("Discovery ready (radio=%s, network=%s)", cfg.radio_mode, cfg.network_mode)

    yield

    history.close()
    await coordinator.close()
    store.close()
    logger.info("Discovery shut down")


app = FastAPI(
    title="Sightline",
    description="Nearby device discovery over BLE and mDNS with device history",
    version="0.1.0",
    lifespan=lifespan,
)

# Register routers
from sightline.api.routes import router as api_router  # noqa: E402

app.include_router(api_router)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


def main() -> None:
    import uvicorn

    logger.info("Starting Sightline on %s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
