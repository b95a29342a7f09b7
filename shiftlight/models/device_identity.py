from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class DeviceIdentity:
    """Address/name pair for a BLE adapter as reported by the controller.

    ``address`` is the stable key. ``name`` is only a display label and may
    change between attempts when the adapter firmware renames itself.
    """
    address: str
    name: str = ""

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["DeviceIdentity"]:
        if not isinstance(payload, Mapping):
            return None
        address = str(payload.get("address") or "").strip()
        if not address:
            return None
        name = payload.get("name")
        return cls(address=address, name=str(name).strip() if name is not None else "")

    def to_dict(self) -> dict:
        return {"address": self.address, "name": self.name}
