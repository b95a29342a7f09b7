"""Persisted per-device connection history."""
from __future__ import annotations

import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from shiftlight.config import DEFAULT_HISTORY_KEY
from shiftlight.errors import StorageError
from shiftlight.models import ConnectionHistoryEntry, DeviceIdentity, SavedDevice
from shiftlight.storage import KeyValueBackend

logger = logging.getLogger(__name__)

_NEVER = datetime.min.replace(tzinfo=timezone.utc)


def _clean_duration(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        duration = round(value)
    except (ValueError, OverflowError):
        return None
    return duration if duration >= 0 else None


class HistoryStore:
    """Keyed collection of :class:`SavedDevice` records.

    The collection is loaded once from ``backend`` and written back in full
    after every mutating call. If that write fails the in-memory state is
    rolled back and :class:`StorageError` is raised, so what the caller sees
    always matches what is on disk.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        *,
        key: str = DEFAULT_HISTORY_KEY,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.backend = backend
        self.key = key
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()
        self._devices: List[SavedDevice] = self._load()

    def _load(self) -> List[SavedDevice]:
        raw = self.backend.load(self.key)
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise StorageError(f"stored history under {self.key!r} is not a list")
        devices: List[SavedDevice] = []
        seen = set()
        for item in raw:
            try:
                device = SavedDevice.from_dict(item)
            except (AttributeError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed saved device: %s", exc)
                continue
            if device.address in seen:
                logger.warning("Skipping duplicate saved device %s", device.address)
                continue
            seen.add(device.address)
            devices.append(device)
        logger.debug("Loaded %d saved devices from %s", len(devices), self.key)
        return devices

    def _commit(self, previous: List[SavedDevice]) -> None:
        try:
            self.backend.save(self.key, [device.to_dict() for device in self._devices])
        except StorageError:
            self._devices = previous
            raise
        except Exception as exc:
            self._devices = previous
            raise StorageError(f"could not persist {self.key!r}: {exc}") from exc

    def _find(self, address: str) -> Optional[SavedDevice]:
        for device in self._devices:
            if device.address == address:
                return device
        return None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def record_attempt(
        self,
        device: DeviceIdentity,
        success: bool,
        duration: Optional[float] = None,
        disconnect_reason: Optional[str] = None,
    ) -> SavedDevice:
        """Record one connection attempt and return the updated record.

        Every call counts as a new attempt; identical calls are not merged.
        """
        entry = ConnectionHistoryEntry(
            address=device.address,
            name=device.name,
            timestamp=self._clock(),
            success=bool(success),
            duration=_clean_duration(duration),
            disconnect_reason=disconnect_reason,
        )
        with self._lock:
            previous = copy.deepcopy(self._devices)
            saved = self._find(device.address)
            if saved is None:
                saved = SavedDevice(address=device.address, name=device.name)
                self._devices.insert(0, saved)
            saved.record(entry)
            self._commit(previous)
            logger.debug(
                "record_attempt %s success=%s total=%d",
                device.address,
                entry.success,
                saved.total_connections,
            )
            return copy.deepcopy(saved)

    def toggle_favorite(self, address: str) -> Optional[SavedDevice]:
        with self._lock:
            if self._find(address) is None:
                return None
            previous = copy.deepcopy(self._devices)
            saved = self._find(address)
            saved.is_favorite = not saved.is_favorite
            self._commit(previous)
            return copy.deepcopy(saved)

    def remove_device(self, address: str) -> bool:
        with self._lock:
            if self._find(address) is None:
                return False
            previous = copy.deepcopy(self._devices)
            self._devices = [device for device in self._devices if device.address != address]
            self._commit(previous)
            logger.info("Removed saved device %s", address)
            return True

    def clear_history(self, address: str) -> Optional[SavedDevice]:
        """Empty the recent-history window; lifetime counters are kept."""
        with self._lock:
            if self._find(address) is None:
                return None
            previous = copy.deepcopy(self._devices)
            saved = self._find(address)
            saved.clear_history()
            self._commit(previous)
            return copy.deepcopy(saved)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_device(self, address: str) -> Optional[SavedDevice]:
        with self._lock:
            saved = self._find(address)
            return copy.deepcopy(saved) if saved is not None else None

    def list_devices(self) -> List[SavedDevice]:
        with self._lock:
            return copy.deepcopy(self._devices)

    def list_sorted(self) -> List[SavedDevice]:
        """Favorites first, then most recently connected; never-connected last."""
        devices = self.list_devices()
        devices.sort(key=lambda device: device.last_connected or _NEVER, reverse=True)
        devices.sort(key=lambda device: not device.is_favorite)
        return devices

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)


__all__ = ["HistoryStore"]
