from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

from .device_identity import DeviceIdentity


@dataclass(frozen=True)
class StatusSnapshot:
    """Point-in-time view of the controller's ``/ble/status`` response.

    ``connected`` is ``None`` when the payload did not carry the flag at all.
    """
    connected: Optional[bool] = None
    current_device: Optional[DeviceIdentity] = None
    scanning: bool = False
    devices: Tuple[DeviceIdentity, ...] = ()

    @classmethod
    def from_payload(cls, payload: Any) -> "StatusSnapshot":
        if not isinstance(payload, Mapping):
            return cls()
        raw_connected = payload.get("connected")
        connected = raw_connected if isinstance(raw_connected, bool) else None
        raw_devices = payload.get("devices")
        if not isinstance(raw_devices, (list, tuple)):
            raw_devices = ()
        devices = tuple(
            device
            for device in (DeviceIdentity.from_payload(item) for item in raw_devices)
            if device is not None
        )
        return cls(
            connected=connected,
            current_device=DeviceIdentity.from_payload(payload.get("currentDevice")),
            scanning=bool(payload.get("scanning", False)),
            devices=devices,
        )
