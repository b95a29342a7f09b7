"""Connection lifecycle tracking over polled status snapshots.

The controller only reports its current state, so connects and disconnects
are inferred from the change between two consecutive snapshots.
"""
from __future__ import annotations

import enum
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from shiftlight.history import HistoryStore
from shiftlight.metrics import EventLogger
from shiftlight.models import DeviceIdentity, SavedDevice, StatusSnapshot

logger = logging.getLogger(__name__)

DISCONNECTED_REASON = "Disconnected"
CONNECT_FAILED_REASON = "Connection failed"


class LinkState(enum.Enum):
    IDLE = "idle"
    CONNECTED = "connected"


class LifecycleMonitor:
    """Turn status snapshots into connection attempts on a :class:`HistoryStore`.

    A rising edge (idle -> connected) records a successful attempt and starts
    a session clock. A falling edge records a failed attempt carrying the
    session length. Snapshots without a ``connected`` flag are ignored.

    Edges that fire before any device identity has been seen are dropped and
    counted in :attr:`dropped_events`; there is no address to file them under.
    """

    def __init__(
        self,
        history: HistoryStore,
        *,
        clock: Callable[[], datetime] | None = None,
        events: Optional[EventLogger] = None,
    ) -> None:
        self.history = history
        self.events = events
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.state = LinkState.IDLE
        self.session_started_at: Optional[datetime] = None
        self.last_known_device: Optional[DeviceIdentity] = None
        self.dropped_events = 0

    @property
    def connected(self) -> bool:
        return self.state is LinkState.CONNECTED

    def on_status_snapshot(self, snapshot: StatusSnapshot) -> Optional[SavedDevice]:
        if snapshot.current_device is not None:
            self.last_known_device = snapshot.current_device

        if snapshot.connected is None:
            logger.debug("Snapshot without connected flag ignored")
            return None

        now = self._clock()
        updated: Optional[SavedDevice] = None
        try:
            if snapshot.connected and self.state is LinkState.IDLE:
                updated = self._on_rising_edge(now)
            elif not snapshot.connected and self.state is LinkState.CONNECTED:
                updated = self._on_falling_edge(now)
        finally:
            self.state = LinkState.CONNECTED if snapshot.connected else LinkState.IDLE
        return updated

    def on_connect_result(self, device: DeviceIdentity, ok: bool) -> Optional[SavedDevice]:
        """Handle the outcome of a user-initiated connect request."""
        if ok:
            self.last_known_device = device
            self._event("connect_request", device, status="ok")
            return None
        self._event("connect_request", device, status="failed", message=CONNECT_FAILED_REASON)
        return self.history.record_attempt(device, False, None, CONNECT_FAILED_REASON)

    def _on_rising_edge(self, now: datetime) -> Optional[SavedDevice]:
        self.session_started_at = now
        device = self.last_known_device
        if device is None:
            self._drop("connected")
            return None
        logger.info("BLE connected: %s (%s)", device.name or "Unknown", device.address)
        self._event("connected", device, status="ok")
        return self.history.record_attempt(device, True)

    def _on_falling_edge(self, now: datetime) -> Optional[SavedDevice]:
        started = self.session_started_at
        if started is None:
            return None
        self.session_started_at = None
        duration = max(0, (now - started) // timedelta(milliseconds=1))
        device = self.last_known_device
        if device is None:
            self._drop("disconnected")
            return None
        logger.info(
            "BLE disconnected: %s (%s) after %d ms",
            device.name or "Unknown",
            device.address,
            duration,
        )
        self._event("disconnected", device, status="ended", duration_ms=duration, message=DISCONNECTED_REASON)
        return self.history.record_attempt(device, False, duration, DISCONNECTED_REASON)

    def _drop(self, edge: str) -> None:
        self.dropped_events += 1
        logger.warning("Dropped %s edge: no device identity reported yet", edge)
        self._event(edge, None, status="dropped")

    def _event(self, event: str, device: Optional[DeviceIdentity], **fields) -> None:
        if not self.events:
            return
        try:
            self.events.log(
                event,
                address=device.address if device else None,
                name=device.name if device else None,
                **fields,
            )
        except Exception:  # pragma: no cover - I/O failure safeguard
            logger.debug("Event logging failed for %s", event, exc_info=True)


__all__ = ["LifecycleMonitor", "LinkState", "DISCONNECTED_REASON", "CONNECT_FAILED_REASON"]
