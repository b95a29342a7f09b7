from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional
import logging

from .connection_entry import ConnectionHistoryEntry, from_epoch_ms, to_epoch_ms

logger = logging.getLogger(__name__)

MAX_HISTORY_ENTRIES = 50


def _non_negative_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


@dataclass
class SavedDevice:
    """Aggregate connection record for one adapter address.

    The counters are a lifetime ledger; ``history`` is only the most recent
    window (newest first, at most :data:`MAX_HISTORY_ENTRIES`). Trimming or
    clearing the window never touches the counters.
    """
    address: str
    name: str
    is_favorite: bool = False
    last_connected: Optional[datetime] = None
    total_connections: int = 0
    successful_connections: int = 0
    failed_connections: int = 0
    average_connection_duration: Optional[float] = None
    history: List[ConnectionHistoryEntry] = field(default_factory=list)

    def record(self, entry: ConnectionHistoryEntry) -> None:
        self.history = [entry, *self.history][:MAX_HISTORY_ENTRIES]
        self.total_connections += 1
        if entry.success:
            self.successful_connections += 1
            self.last_connected = entry.timestamp
        else:
            self.failed_connections += 1
        self.name = entry.name
        self.average_connection_duration = self._average_duration()

    def clear_history(self) -> None:
        self.history = []
        self.average_connection_duration = None

    @property
    def success_rate(self) -> int:
        """Successful attempts as a whole percentage of all attempts."""
        if self.total_connections == 0:
            return 0
        return round(self.successful_connections / self.total_connections * 100)

    def _average_duration(self) -> Optional[float]:
        durations = [
            entry.duration
            for entry in self.history
            if entry.success and entry.duration is not None
        ]
        if not durations:
            return None
        return sum(durations) / len(durations)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "address": self.address,
            "name": self.name,
            "isFavorite": self.is_favorite,
            "totalConnections": self.total_connections,
            "successfulConnections": self.successful_connections,
            "failedConnections": self.failed_connections,
            "history": [entry.to_dict() for entry in self.history],
        }
        if self.last_connected is not None:
            payload["lastConnected"] = to_epoch_ms(self.last_connected)
        if self.average_connection_duration is not None:
            payload["averageConnectionDuration"] = self.average_connection_duration
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SavedDevice":
        address = str(payload.get("address") or "").strip()
        if not address:
            raise ValueError("saved device has no address")

        history: List[ConnectionHistoryEntry] = []
        raw_history = payload.get("history")
        if not isinstance(raw_history, list):
            raw_history = []
        for raw in raw_history:
            try:
                history.append(ConnectionHistoryEntry.from_dict(raw))
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed history entry for %s: %s", address, exc)

        successful = _non_negative_int(payload.get("successfulConnections"))
        failed = _non_negative_int(payload.get("failedConnections"))
        device = cls(
            address=address,
            name=str(payload.get("name") or ""),
            is_favorite=bool(payload.get("isFavorite", False)),
            last_connected=from_epoch_ms(payload.get("lastConnected")),
            total_connections=successful + failed,
            successful_connections=successful,
            failed_connections=failed,
            history=history[:MAX_HISTORY_ENTRIES],
        )
        device.average_connection_duration = device._average_duration()
        return device
