"""Tests for the controller HTTP client using a fake requests session."""
from __future__ import annotations

import unittest
from typing import Any, Dict, List, Optional

import requests

from shiftlight.device_client import DeviceClient, connect_and_record, scan_devices
from shiftlight.errors import DeviceRequestError
from shiftlight.history import HistoryStore
from shiftlight.models import DeviceIdentity
from shiftlight.monitor import LifecycleMonitor
from shiftlight.storage import MemoryBackend


class _FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.content = b"x" if payload is not None or text else b""

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)  # type: ignore[arg-type]

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class _FakeSession:
    def __init__(self, responses: List[Any]) -> None:
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def request(self, method: str, url: str, data: Optional[dict] = None, timeout: float = 0) -> _FakeResponse:
        self.calls.append({"method": method, "url": url, "data": data, "timeout": timeout})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        self.closed = True


class DeviceClientTest(unittest.TestCase):
    def test_fetch_status_parses_snapshot(self) -> None:
        session = _FakeSession([
            _FakeResponse(payload={"connected": True, "currentDevice": {"address": "AA:BB", "name": "OBD"}})
        ])
        client = DeviceClient("http://shift.local/", timeout=2.5, session=session)  # type: ignore[arg-type]

        snapshot = client.fetch_status()

        self.assertTrue(snapshot.connected)
        self.assertEqual(snapshot.current_device, DeviceIdentity("AA:BB", "OBD"))
        self.assertEqual(session.calls[0]["url"], "http://shift.local/ble/status")
        self.assertEqual(session.calls[0]["timeout"], 2.5)

    def test_connect_device_posts_form(self) -> None:
        session = _FakeSession([_FakeResponse()])
        client = DeviceClient("http://shift.local", session=session)  # type: ignore[arg-type]

        client.connect_device("AA:BB", "OBD")

        call = session.calls[0]
        self.assertEqual(call["method"], "POST")
        self.assertEqual(call["url"], "http://shift.local/ble/connect-device")
        self.assertEqual(call["data"], {"address": "AA:BB", "name": "OBD", "attempts": "3"})

    def test_transport_and_http_errors_raise(self) -> None:
        session = _FakeSession([requests.ConnectionError("unreachable"), _FakeResponse(status_code=500)])
        client = DeviceClient("http://shift.local", session=session)  # type: ignore[arg-type]

        with self.assertRaises(DeviceRequestError):
            client.scan()
        with self.assertRaises(DeviceRequestError) as ctx:
            client.fetch_status()
        self.assertEqual(ctx.exception.status_code, 500)

    def test_connect_and_record(self) -> None:
        store = HistoryStore(MemoryBackend())
        monitor = LifecycleMonitor(store)
        device = DeviceIdentity("AA:BB", "OBD")

        refused = DeviceClient(
            "http://shift.local",
            session=_FakeSession([requests.Timeout("slow")]),  # type: ignore[arg-type]
        )
        self.assertFalse(connect_and_record(refused, monitor, device))
        saved = store.get_device("AA:BB")
        assert saved is not None
        self.assertEqual(saved.failed_connections, 1)
        self.assertEqual(saved.history[0].disconnect_reason, "Connection failed")

        accepted = DeviceClient("http://shift.local", session=_FakeSession([_FakeResponse()]))  # type: ignore[arg-type]
        self.assertTrue(connect_and_record(accepted, monitor, device))
        self.assertEqual(store.get_device("AA:BB").total_connections, 1)
        self.assertEqual(monitor.last_known_device, device)

    def test_scan_devices_starts_scan_then_reads_status(self) -> None:
        session = _FakeSession([
            _FakeResponse(),
            _FakeResponse(payload={
                "scanning": True,
                "connected": False,
                "devices": [{"address": "AA:BB", "name": "OBD"}, {"address": "CC:DD", "name": "Vgate"}],
            }),
        ])
        client = DeviceClient("http://shift.local", session=session)  # type: ignore[arg-type]
        waits = []

        snapshot = scan_devices(client, wait=2.0, sleep=waits.append)

        self.assertEqual([call["method"] for call in session.calls], ["POST", "GET"])
        self.assertEqual(session.calls[0]["url"], "http://shift.local/ble/scan")
        self.assertEqual(waits, [2.0])
        self.assertTrue(snapshot.scanning)
        self.assertEqual([device.address for device in snapshot.devices], ["AA:BB", "CC:DD"])

    def test_status_with_malformed_device_list_still_parses(self) -> None:
        session = _FakeSession([_FakeResponse(payload={"connected": True, "devices": 5})])
        client = DeviceClient("http://shift.local", session=session)  # type: ignore[arg-type]

        snapshot = client.fetch_status()

        self.assertTrue(snapshot.connected)
        self.assertEqual(snapshot.devices, ())


if __name__ == "__main__":
    unittest.main()
