"""ShiftLight BLE connection history.

Tracks connections between the shift-light controller and its OBD-II BLE
adapter by polling the controller's status endpoint, and keeps a persisted
per-adapter history of connection attempts.
"""
from shiftlight.history import HistoryStore
from shiftlight.models import ConnectionHistoryEntry, DeviceIdentity, SavedDevice, StatusSnapshot
from shiftlight.monitor import LifecycleMonitor, LinkState
from shiftlight.poller import StatusPoller

__version__ = "0.1.0"

__all__ = [
    "HistoryStore",
    "LifecycleMonitor",
    "LinkState",
    "StatusPoller",
    "DeviceIdentity",
    "ConnectionHistoryEntry",
    "SavedDevice",
    "StatusSnapshot",
]
