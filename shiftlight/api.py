from __future__ import annotations
import asyncio, logging, time
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from shiftlight.config import Settings
from shiftlight.device_client import DEFAULT_SCAN_WAIT, DeviceClient, connect_and_record, scan_devices
from shiftlight.errors import DeviceRequestError, StorageError
from shiftlight.history import HistoryStore
from shiftlight.metrics import EventLogger
from shiftlight.models import DeviceIdentity, SavedDevice
from shiftlight.monitor import LifecycleMonitor
from shiftlight.poller import StatusPoller
from shiftlight.storage import open_backend

logger = logging.getLogger("shiftlight.api")

app = FastAPI(title="ShiftLight BLE history API", version="0.1.0")

_settings: Optional[Settings] = None
_store: Optional[HistoryStore] = None
_monitor: Optional[LifecycleMonitor] = None
_client: Optional[DeviceClient] = None
_events: Optional[EventLogger] = None
_poller: Optional[StatusPoller] = None
_poll_task: Optional[asyncio.Task] = None


def configure(
    *,
    settings: Optional[Settings] = None,
    store: Optional[HistoryStore] = None,
    client: Optional[DeviceClient] = None,
    events: Optional[EventLogger] = None,
) -> None:
    """Replace the module level collaborators; unset ones are rebuilt lazily."""
    global _settings, _store, _monitor, _client, _events, _poller, _poll_task
    _stop_polling()
    _settings = settings
    _store = store
    _client = client
    _events = events
    _monitor = None
    _poller = None
    _poll_task = None


def _stop_polling() -> None:
    """Stop a poller started under the previous configuration."""
    if _poll_task is None or _poll_task.done():
        return
    loop = _poll_task.get_loop()
    if loop.is_closed():
        return
    if _poller is not None:
        loop.call_soon_threadsafe(_poller.request_stop)
    loop.call_soon_threadsafe(_poll_task.cancel)
    logger.info("Stopped status polling on reconfigure")


def _get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def _get_store() -> HistoryStore:
    global _store
    if _store is None:
        settings = _get_settings()
        _store = HistoryStore(open_backend(settings), key=settings.history_key)
    return _store


def _get_events() -> Optional[EventLogger]:
    global _events
    if _events is None and _get_settings().event_log:
        _events = EventLogger(_get_settings().event_log)
    return _events


def _get_monitor() -> LifecycleMonitor:
    global _monitor
    if _monitor is None:
        _monitor = LifecycleMonitor(_get_store(), events=_get_events())
    return _monitor


def _get_client() -> DeviceClient:
    global _client
    if _client is None:
        settings = _get_settings()
        _client = DeviceClient(settings.device_url, timeout=settings.request_timeout)
    return _client


def _device_payload(device: SavedDevice) -> Dict[str, Any]:
    payload = device.to_dict()
    payload["successRate"] = device.success_rate
    return payload


@app.exception_handler(StorageError)
async def _storage_error_handler(request: Request, exc: StorageError):
    logger.error("Storage failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": f"History storage unavailable: {exc}"})


@app.get("/health")
async def health():
    return {"status": "ok", "time": time.time()}


@app.get("/devices")
def list_devices():
    """Saved devices, favorites first then most recently connected."""
    return [_device_payload(device) for device in _get_store().list_sorted()]


@app.get("/devices/{address}")
def get_device(address: str):
    device = _get_store().get_device(address)
    if device is None:
        raise HTTPException(status_code=404, detail=f"Unknown device {address}")
    return _device_payload(device)


@app.post("/devices/{address}/favorite")
def toggle_favorite(address: str):
    device = _get_store().toggle_favorite(address)
    if device is None:
        return {"status": "unknown", "address": address}
    return {"status": "ok", "device": _device_payload(device)}


@app.delete("/devices/{address}")
def remove_device(address: str):
    removed = _get_store().remove_device(address)
    return {"status": "removed" if removed else "unknown", "address": address}


@app.delete("/devices/{address}/history")
def clear_history(address: str):
    device = _get_store().clear_history(address)
    if device is None:
        return {"status": "unknown", "address": address}
    return {"status": "cleared", "device": _device_payload(device)}


@app.post("/connect")
async def connect(
    address: str = Query(..., description="MAC address of the OBD-II adapter"),
    name: str = Query("", description="Display name of the adapter"),
):
    device = DeviceIdentity(address=address, name=name)
    ok = await asyncio.to_thread(connect_and_record, _get_client(), _get_monitor(), device)
    if not ok:
        raise HTTPException(status_code=502, detail=f"Controller refused connect to {address}")
    return {"status": "requested", "device": device.to_dict()}


@app.post("/scan")
async def scan(
    wait: float = Query(DEFAULT_SCAN_WAIT, ge=0, le=30, description="Seconds to let the controller scan"),
):
    """Start a controller scan and list the adapters it reports."""
    try:
        snapshot = await asyncio.to_thread(scan_devices, _get_client(), wait=wait)
    except DeviceRequestError as exc:
        logger.warning("Scan request failed: %s", exc)
        raise HTTPException(status_code=502, detail=f"Controller scan failed: {exc}")
    return {
        "scanning": snapshot.scanning,
        "devices": [device.to_dict() for device in snapshot.devices],
    }


@app.post("/monitor/start")
async def monitor_start(
    interval: Optional[float] = Query(None, ge=0.1, description="Polling interval seconds"),
    runtime: Optional[float] = Query(None, ge=0.1, description="Optional monitor duration"),
):
    global _poller, _poll_task
    if _poll_task and not _poll_task.done():
        return {"status": "already-running"}
    settings = _get_settings()
    client = _get_client()
    _poller = StatusPoller(
        client.fetch_status,
        _get_monitor(),
        interval=interval or settings.poll_interval,
        events=_get_events(),
    )
    _poll_task = asyncio.create_task(_poller.run(runtime=runtime))
    return {"status": "started", "interval": _poller.interval, "runtime": runtime}


@app.post("/monitor/stop")
async def monitor_stop():
    global _poll_task
    if _poll_task:
        if _poller:
            _poller.request_stop()
        try:
            await asyncio.wait_for(_poll_task, timeout=5.0)
        except asyncio.TimeoutError:
            _poll_task.cancel()
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("monitor stop encountered error")
        _poll_task = None
        return {"status": "stopped"}
    return {"status": "idle"}


@app.get("/monitor/status")
async def monitor_status():
    running = bool(_poll_task and not _poll_task.done())
    monitor = _monitor
    payload: Dict[str, Any] = {"status": "running" if running else "idle"}
    if monitor is not None:
        device = monitor.last_known_device
        payload.update(
            state=monitor.state.value,
            lastKnownDevice=device.to_dict() if device else None,
            droppedEvents=monitor.dropped_events,
        )
    if _poller is not None:
        payload.update(
            ticks=_poller.ticks,
            failedTicks=_poller.failed_ticks,
            skippedTicks=_poller.skipped_ticks,
        )
    return payload


__all__ = ["app", "configure"]
