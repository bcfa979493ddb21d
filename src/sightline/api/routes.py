"""REST API endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from sightline.discovery.coordinator import DiscoveryCoordinator
from sightline.history.service import HistoryFilter, HistoryQueryService
from sightline.reconcile.reconciler import WorkingSetEntry
from sightline.registry.models import Device

router = APIRouter(prefix="/api")


def get_coordinator(request: Request) -> DiscoveryCoordinator:
    return request.app.state.coordinator


def get_history(request: Request) -> HistoryQueryService:
    return request.app.state.history


# Request models
class SessionRequest(BaseModel):
    timeout: float | None = None  # seconds; omitted = configured default


class AdvertiseRequest(BaseModel):
    port: int = 0


class HistoryFiltersRequest(BaseModel):
    search_text: str = ""
    transport: HistoryFilter = HistoryFilter.all
    date_from: datetime | None = None
    date_to: datetime | None = None


def _session_timeout(
    request: SessionRequest | None, coordinator: DiscoveryCoordinator
) -> float | None:
    if request is not None and request.timeout is not None:
        return request.timeout
    return coordinator.scan_timeout


@router.get("/status")
def status(
    coordinator: DiscoveryCoordinator = Depends(get_coordinator),
) -> dict[str, str | bool | int]:
    return {
        "radio_state": coordinator.radio_state.value,
        "radio_scanning": coordinator.radio_scanning,
        "radio_devices": len(coordinator.radio_devices.value),
        "network_status": coordinator.network_status.value,
        "network_browsing": coordinator.network_browsing,
        "network_advertising": coordinator.network_advertising,
        "network_peers": len(coordinator.network_peers.value),
    }


# --- Live working sets ---


@router.get("/live/radio")
def live_radio(
    coordinator: DiscoveryCoordinator = Depends(get_coordinator),
) -> list[WorkingSetEntry]:
    return coordinator.radio_devices.value


@router.get("/live/network")
def live_network(
    coordinator: DiscoveryCoordinator = Depends(get_coordinator),
) -> list[WorkingSetEntry]:
    return coordinator.network_peers.value


# --- Session controls ---


@router.post("/radio/scan")
async def start_radio_scan(
    request: SessionRequest | None = None,
    coordinator: DiscoveryCoordinator = Depends(get_coordinator),
) -> dict[str, bool]:
    timeout = _session_timeout(request, coordinator)
    if not await coordinator.start_radio_scan(timeout):
        raise HTTPException(status_code=409, detail="Radio scan unavailable")
    return {"scanning": True}


@router.delete("/radio/scan")
async def stop_radio_scan(
    coordinator: DiscoveryCoordinator = Depends(get_coordinator),
) -> dict[str, bool]:
    await coordinator.stop_radio_scan()
    return {"scanning": False}


@router.post("/network/browse")
async def start_network_browse(
    request: SessionRequest | None = None,
    coordinator: DiscoveryCoordinator = Depends(get_coordinator),
) -> dict[str, bool]:
    timeout = _session_timeout(request, coordinator)
    if not await coordinator.start_network_browse(timeout):
        raise HTTPException(status_code=409, detail="Network browse unavailable")
    return {"browsing": True}


@router.delete("/network/browse")
async def stop_network_browse(
    coordinator: DiscoveryCoordinator = Depends(get_coordinator),
) -> dict[str, bool]:
    await coordinator.stop_network_browse()
    return {"browsing": False}


@router.post("/network/advertise")
async def start_advertising(
    request: AdvertiseRequest | None = None,
    coordinator: DiscoveryCoordinator = Depends(get_coordinator),
) -> dict[str, bool]:
    port = request.port if request else 0
    if not await coordinator.start_advertising(port):
        raise HTTPException(status_code=409, detail="Advertising unavailable")
    return {"advertising": True}


@router.delete("/network/advertise")
async def stop_advertising(
    coordinator: DiscoveryCoordinator = Depends(get_coordinator),
) -> dict[str, bool]:
    await coordinator.stop_advertising()
    return {"advertising": False}


# --- History ---


@router.get("/history")
def history_items(
    history: HistoryQueryService = Depends(get_history),
) -> list[Device]:
    return history.items.value


@router.put("/history/filters")
async def set_history_filters(
    request: HistoryFiltersRequest,
    history: HistoryQueryService = Depends(get_history),
) -> list[Device]:
    return await history.apply_filters(
        request.search_text, request.transport, request.date_from, request.date_to
    )


@router.get("/devices/{identity}")
async def device_detail(
    identity: str,
    history: HistoryQueryService = Depends(get_history),
) -> Device:
    device = await history.store.get(identity)
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return device


@router.delete("/history/{identity}")
async def delete_history_item(
    identity: str,
    history: HistoryQueryService = Depends(get_history),
) -> dict[str, str]:
    await history.delete(identity)
    return {"status": "deleted"}


@router.delete("/history")
async def clear_history(
    transport: HistoryFilter = HistoryFilter.all,
    history: HistoryQueryService = Depends(get_history),
) -> dict[str, int]:
    removed = await history.delete_all(transport)
    return {"deleted": len(removed)}
