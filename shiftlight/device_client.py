"""HTTP client for the shift-light controller's BLE endpoints."""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Optional

import requests
from requests import RequestException

from shiftlight.errors import DeviceRequestError
from shiftlight.models import DeviceIdentity, StatusSnapshot
from shiftlight.monitor import LifecycleMonitor

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_ATTEMPTS = 3
DEFAULT_SCAN_WAIT = 5.0


class DeviceClient:
	"""Thin wrapper around the controller's ``/ble/*`` REST endpoints."""

	def __init__(
		self,
		base_url: str,
		*,
		timeout: float = 5.0,
		session: Optional[requests.Session] = None,
	) -> None:
		self.base_url = base_url.rstrip("/")
		self.timeout = timeout
		self._session = session or requests.Session()

	def fetch_status(self) -> StatusSnapshot:
		payload = self._request("GET", "/ble/status")
		return StatusSnapshot.from_payload(payload)

	def scan(self) -> None:
		self._request("POST", "/ble/scan")

	def connect_device(self, address: str, name: str, attempts: int = DEFAULT_CONNECT_ATTEMPTS) -> None:
		self._request(
			"POST",
			"/ble/connect-device",
			data={"address": address, "name": name, "attempts": str(attempts)},
		)

	def close(self) -> None:
		self._session.close()

	def _request(self, method: str, path: str, *, data: Optional[Dict[str, Any]] = None) -> Any:
		url = f"{self.base_url}{path}"
		try:
			response = self._session.request(method, url, data=data, timeout=self.timeout)
			response.raise_for_status()
		except RequestException as exc:
			status_code = getattr(getattr(exc, "response", None), "status_code", None)
			raise DeviceRequestError(f"{method} {path} failed: {exc}", status_code=status_code) from exc

		if not response.content:
			return None
		try:
			return response.json()
		except ValueError:
			if response.text:
				try:
					return json.loads(response.text)
				except ValueError:
					return None
			return None


def connect_and_record(client: DeviceClient, monitor: LifecycleMonitor, device: DeviceIdentity) -> bool:
	"""Ask the controller to connect to ``device`` and record a failure if it refuses.

	Returns ``True`` when the request was accepted. A successful request is
	not recorded here; the next rising edge seen by the poller records it.
	"""
	try:
		client.connect_device(device.address, device.name)
	except DeviceRequestError as exc:
		logger.warning("Connect request for %s failed: %s", device.address, exc)
		monitor.on_connect_result(device, False)
		return False
	monitor.on_connect_result(device, True)
	return True


def scan_devices(
	client: DeviceClient,
	*,
	wait: float = DEFAULT_SCAN_WAIT,
	sleep: Callable[[float], None] = time.sleep,
) -> StatusSnapshot:
	"""Start a scan, give the controller ``wait`` seconds, then return its status."""
	client.scan()
	if wait > 0:
		sleep(wait)
	snapshot = client.fetch_status()
	logger.info("Scan found %d adapters", len(snapshot.devices))
	return snapshot


__all__ = ["DeviceClient", "connect_and_record", "scan_devices", "DEFAULT_CONNECT_ATTEMPTS", "DEFAULT_SCAN_WAIT"]
