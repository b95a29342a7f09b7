"""Data model for the BLE connection ledger.

Plain dataclasses with ``to_dict``/``from_dict`` helpers; the persisted form
uses the camelCase keys the dashboard has always written.
"""
from .device_identity import DeviceIdentity
from .connection_entry import ConnectionHistoryEntry
from .saved_device import MAX_HISTORY_ENTRIES, SavedDevice
from .status_snapshot import StatusSnapshot

__all__ = [
    "DeviceIdentity",
    "ConnectionHistoryEntry",
    "SavedDevice",
    "StatusSnapshot",
    "MAX_HISTORY_ENTRIES",
]
