from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping, Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, bool):
        return None
    try:
        millis = value if isinstance(value, int) else float(value)
        return EPOCH + timedelta(milliseconds=millis)
    except (TypeError, ValueError, OverflowError):
        return None


@dataclass(frozen=True)
class ConnectionHistoryEntry:
    """A single completed connection attempt."""
    address: str
    name: str
    timestamp: datetime
    success: bool
    duration: Optional[int] = None  # milliseconds
    disconnect_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "address": self.address,
            "name": self.name,
            "timestamp": to_epoch_ms(self.timestamp),
            "success": self.success,
        }
        if self.duration is not None:
            payload["duration"] = self.duration
        if self.disconnect_reason is not None:
            payload["disconnectReason"] = self.disconnect_reason
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ConnectionHistoryEntry":
        timestamp = from_epoch_ms(payload.get("timestamp"))
        if timestamp is None:
            raise ValueError(f"history entry has no usable timestamp: {payload!r}")
        duration = payload.get("duration")
        reason = payload.get("disconnectReason")
        return cls(
            address=str(payload["address"]),
            name=str(payload.get("name") or ""),
            timestamp=timestamp,
            success=bool(payload.get("success")),
            duration=int(duration) if isinstance(duration, (int, float)) and not isinstance(duration, bool) else None,
            disconnect_reason=str(reason) if reason is not None else None,
        )
