"""Integration-style tests for the FastAPI layer using fakes."""
from __future__ import annotations

import asyncio
import time
import unittest
from typing import Any, List

from fastapi.testclient import TestClient

import shiftlight.api as api_module
from shiftlight.config import Settings
from shiftlight.errors import DeviceRequestError, StorageError
from shiftlight.history import HistoryStore
from shiftlight.models import DeviceIdentity, StatusSnapshot
from shiftlight.storage import MemoryBackend


class _FakeDeviceClient:
    def __init__(self, snapshots: List[StatusSnapshot] | None = None, refuse: bool = False) -> None:
        self.snapshots = list(snapshots or [])
        self.refuse = refuse
        self.connect_calls: List[Any] = []
        self.scan_calls = 0
        self.fetch_calls = 0

    def fetch_status(self) -> StatusSnapshot:
        self.fetch_calls += 1
        if self.snapshots:
            return self.snapshots.pop(0)
        return StatusSnapshot(connected=True)

    def connect_device(self, address: str, name: str, attempts: int = 3) -> None:
        self.connect_calls.append((address, name, attempts))
        if self.refuse:
            raise DeviceRequestError("unreachable")

    def scan(self) -> None:
        self.scan_calls += 1
        if self.refuse:
            raise DeviceRequestError("unreachable")


class _ReadOnlyBackend(MemoryBackend):
    def save(self, key, value) -> None:
        raise StorageError("read-only")


class ApiSimulationTest(unittest.TestCase):
    def setUp(self) -> None:
        self.store = HistoryStore(MemoryBackend())
        self.device_client = _FakeDeviceClient()
        api_module.configure(
            settings=Settings(history_backend="memory", poll_interval=0.05),
            store=self.store,
            client=self.device_client,  # type: ignore[arg-type]
        )
        self.client = TestClient(api_module.app)

    def tearDown(self) -> None:
        if api_module._poll_task and not api_module._poll_task.done():
            self.client.post("/monitor/stop")
        self.client.close()
        api_module.configure()

    def test_health_endpoint_returns_ok(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")

    def test_devices_are_sorted_with_success_rate(self) -> None:
        self.store.record_attempt(DeviceIdentity("AA:BB", "OBD1"), True, 1000)
        self.store.record_attempt(DeviceIdentity("CC:DD", "OBD2"), True)
        self.store.record_attempt(DeviceIdentity("CC:DD", "OBD2"), False)
        self.store.toggle_favorite("AA:BB")

        response = self.client.get("/devices")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual([item["address"] for item in payload], ["AA:BB", "CC:DD"])
        self.assertTrue(payload[0]["isFavorite"])
        self.assertEqual(payload[0]["averageConnectionDuration"], 1000)
        self.assertEqual(payload[1]["successRate"], 50)

    def test_get_unknown_device_is_404(self) -> None:
        response = self.client.get("/devices/00:00")
        self.assertEqual(response.status_code, 404)

    def test_mutations_on_unknown_address_are_noops(self) -> None:
        self.assertEqual(self.client.post("/devices/00:00/favorite").json()["status"], "unknown")
        self.assertEqual(self.client.delete("/devices/00:00").json()["status"], "unknown")
        self.assertEqual(self.client.delete("/devices/00:00/history").json()["status"], "unknown")

    def test_favorite_clear_and_remove(self) -> None:
        self.store.record_attempt(DeviceIdentity("AA:BB", "OBD1"), True, 1000)

        favorite = self.client.post("/devices/AA:BB/favorite").json()
        self.assertTrue(favorite["device"]["isFavorite"])

        cleared = self.client.delete("/devices/AA:BB/history").json()
        self.assertEqual(cleared["device"]["history"], [])
        self.assertEqual(cleared["device"]["totalConnections"], 1)

        removed = self.client.delete("/devices/AA:BB").json()
        self.assertEqual(removed["status"], "removed")
        self.assertEqual(self.client.get("/devices").json(), [])

    def test_refused_connect_records_failure(self) -> None:
        self.device_client.refuse = True

        response = self.client.post("/connect", params={"address": "AA:BB", "name": "OBD1"})

        self.assertEqual(response.status_code, 502)
        saved = self.store.get_device("AA:BB")
        assert saved is not None
        self.assertEqual(saved.failed_connections, 1)
        self.assertEqual(saved.history[0].disconnect_reason, "Connection failed")

    def test_accepted_connect_does_not_record(self) -> None:
        response = self.client.post("/connect", params={"address": "AA:BB", "name": "OBD1"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "requested")
        self.assertEqual(self.device_client.connect_calls, [("AA:BB", "OBD1", 3)])
        self.assertIsNone(self.store.get_device("AA:BB"))

    def test_storage_failure_maps_to_503(self) -> None:
        api_module.configure(
            settings=Settings(history_backend="memory"),
            store=HistoryStore(_ReadOnlyBackend()),
            client=_FakeDeviceClient(refuse=True),  # type: ignore[arg-type]
        )
        response = self.client.post("/connect", params={"address": "AA:BB", "name": "OBD1"})
        self.assertEqual(response.status_code, 503)
        self.assertIn("History storage unavailable", response.json()["detail"])

    def test_scan_lists_reported_adapters(self) -> None:
        self.device_client.snapshots = [
            StatusSnapshot(
                connected=False,
                scanning=True,
                devices=(DeviceIdentity("AA:BB", "OBD1"), DeviceIdentity("CC:DD", "Vgate")),
            )
        ]

        response = self.client.post("/scan", params={"wait": 0})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.device_client.scan_calls, 1)
        payload = response.json()
        self.assertTrue(payload["scanning"])
        self.assertEqual(
            payload["devices"],
            [{"address": "AA:BB", "name": "OBD1"}, {"address": "CC:DD", "name": "Vgate"}],
        )

    def test_refused_scan_is_502(self) -> None:
        self.device_client.refuse = True
        response = self.client.post("/scan", params={"wait": 0})
        self.assertEqual(response.status_code, 502)
        self.assertEqual(self.device_client.fetch_calls, 0)

    def test_store_endpoints_run_outside_the_event_loop(self) -> None:
        on_loop: List[bool] = []

        class _LoopRecordingStore(HistoryStore):
            def list_sorted(self):
                try:
                    asyncio.get_running_loop()
                    on_loop.append(True)
                except RuntimeError:
                    on_loop.append(False)
                return super().list_sorted()

        api_module.configure(
            settings=Settings(history_backend="memory"),
            store=_LoopRecordingStore(MemoryBackend()),
            client=self.device_client,  # type: ignore[arg-type]
        )
        with self.client:
            self.assertEqual(self.client.get("/devices").status_code, 200)

        self.assertEqual(on_loop, [False])

    def test_reconfigure_stops_running_poller(self) -> None:
        with self.client:
            self.client.post("/monitor/start", params={"interval": 0.1})
            old_task = api_module._poll_task
            assert old_task is not None

            api_module.configure(
                settings=Settings(history_backend="memory"),
                store=HistoryStore(MemoryBackend()),
                client=_FakeDeviceClient(),  # type: ignore[arg-type]
            )

            deadline = time.monotonic() + 3.0
            while not old_task.done() and time.monotonic() < deadline:
                time.sleep(0.02)
            self.assertTrue(old_task.done())
            calls = self.device_client.fetch_calls
            time.sleep(0.3)
            self.assertEqual(self.device_client.fetch_calls, calls)
            self.assertEqual(self.client.get("/monitor/status").json()["status"], "idle")

    def test_monitor_status_returns_idle_when_not_running(self) -> None:
        response = self.client.get("/monitor/status")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "idle")
        self.assertEqual(self.client.post("/monitor/stop").json(), {"status": "idle"})

    def test_monitor_start_and_stop_records_connection(self) -> None:
        self.device_client.snapshots = [
            StatusSnapshot(connected=False),
            StatusSnapshot(connected=True, current_device=DeviceIdentity("AA:BB", "OBD1")),
        ]

        with self.client:
            started = self.client.post("/monitor/start", params={"interval": 0.1})
            self.assertEqual(started.status_code, 200)
            self.assertEqual(started.json()["status"], "started")
            self.assertEqual(self.client.post("/monitor/start").json()["status"], "already-running")

            deadline = time.monotonic() + 3.0
            while self.store.get_device("AA:BB") is None and time.monotonic() < deadline:
                time.sleep(0.05)

            status = self.client.get("/monitor/status").json()
            self.assertEqual(status["status"], "running")
            self.assertEqual(status["state"], "connected")
            self.assertEqual(status["lastKnownDevice"], {"address": "AA:BB", "name": "OBD1"})

            stopped = self.client.post("/monitor/stop")
            self.assertEqual(stopped.json(), {"status": "stopped"})

        saved = self.store.get_device("AA:BB")
        assert saved is not None
        self.assertEqual(saved.successful_connections, 1)


if __name__ == "__main__":
    unittest.main()
