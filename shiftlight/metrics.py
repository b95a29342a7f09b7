"""CSV log of connection lifecycle events."""
from __future__ import annotations

import csv
import json
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence


EVENT_FIELDS: Sequence[str] = (
    "timestamp",
    "event",
    "address",
    "name",
    "status",
    "duration_ms",
    "message",
    "extra",
)


def _ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _normalize_extra(extra: Mapping[str, Any]) -> str:
    if not extra:
        return ""
    try:
        return json.dumps(extra, separators=(",", ":"), ensure_ascii=True, sort_keys=True)
    except (TypeError, ValueError):
        return repr(extra)


@dataclass(slots=True)
class EventRecord:
    timestamp: str
    event: str
    address: Optional[str] = None
    name: Optional[str] = None
    status: Optional[str] = None
    duration_ms: Optional[int] = None
    message: Optional[str] = None
    extra: str = ""

    def as_row(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "event": self.event,
            "address": self.address or "",
            "name": self.name or "",
            "status": self.status or "",
            "duration_ms": self.duration_ms if self.duration_ms is not None else "",
            "message": self.message or "",
            "extra": self.extra,
        }


class EventLogger:
    """Append-only CSV log of edges, attempts and poll failures.

    Each row is flushed as soon as it is written so the file can be tailed
    while the monitor runs.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        static_extra: Mapping[str, Any] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.path = Path(path)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._static_extra: Dict[str, Any] = dict(static_extra or {})
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._ensure_header()

    def _ensure_header(self) -> None:
        if self.path.exists() and self.path.stat().st_size > 0:
            return
        with self._lock:
            with self.path.open("w", newline="", encoding="utf-8") as handle:
                writer = csv.DictWriter(handle, fieldnames=EVENT_FIELDS, extrasaction="ignore")
                writer.writeheader()
                handle.flush()

    def log(
        self,
        event: str,
        *,
        address: Optional[str] = None,
        name: Optional[str] = None,
        status: Optional[str] = None,
        duration_ms: Optional[int] = None,
        message: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        payload = dict(self._static_extra)
        if extra:
            payload.update(extra)
        record = EventRecord(
            timestamp=self._timestamp(),
            event=event,
            address=address,
            name=name,
            status=status,
            duration_ms=duration_ms,
            message=message,
            extra=_normalize_extra(payload),
        )
        with self._lock:
            with self.path.open("a", newline="", encoding="utf-8") as handle:
                writer = csv.DictWriter(handle, fieldnames=EVENT_FIELDS, extrasaction="ignore")
                writer.writerow(record.as_row())
                handle.flush()

    def _timestamp(self) -> str:
        try:
            dt = self._clock()
        except Exception:  # pragma: no cover - guard against faulty clock
            dt = datetime.now(timezone.utc)
        return _ensure_utc(dt).isoformat(timespec="milliseconds")


__all__ = ["EventLogger", "EventRecord", "EVENT_FIELDS"]
