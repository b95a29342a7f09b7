"""ShiftLight command-line interface."""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Any, List, Optional

from shiftlight.config import Settings
from shiftlight.device_client import DEFAULT_SCAN_WAIT, DeviceClient, connect_and_record, scan_devices
from shiftlight.errors import ShiftlightError
from shiftlight.formatting import format_duration, format_timestamp
from shiftlight.history import HistoryStore
from shiftlight.metrics import EventLogger
from shiftlight.models import DeviceIdentity, SavedDevice
from shiftlight.monitor import LifecycleMonitor
from shiftlight.poller import StatusPoller
from shiftlight.storage import open_backend

try:  # pragma: no cover - optional rich rendering
	from rich.console import Console
	from rich.table import Table
except Exception:  # pragma: no cover
	Console = None  # type: ignore
	Table = None  # type: ignore


def _open_store(settings: Settings) -> HistoryStore:
	return HistoryStore(open_backend(settings), key=settings.history_key)


def _device_row(device: SavedDevice) -> List[str]:
	return [
		"*" if device.is_favorite else "",
		device.address,
		device.name,
		format_timestamp(device.last_connected),
		str(device.total_connections),
		f"{device.success_rate}%",
		format_duration(device.average_connection_duration),
	]


def _emit_json(payload: Any) -> None:
	json.dump(payload, sys.stdout, indent=2)
	sys.stdout.write("\n")


def _cmd_devices(args: argparse.Namespace, settings: Settings) -> int:
	devices = _open_store(settings).list_sorted()
	if args.json:
		_emit_json([device.to_dict() for device in devices])
		return 0
	columns = ("fav", "address", "name", "last connected", "attempts", "success", "avg session")
	if Console and Table:
		table = Table(title="Saved BLE adapters", show_lines=False)
		for column in columns:
			table.add_column(column.upper())
		for device in devices:
			table.add_row(*_device_row(device))
		Console().print(table)
	else:
		for device in devices:
			sys.stdout.write("\t".join(_device_row(device)) + "\n")
	return 0


def _cmd_show(args: argparse.Namespace, settings: Settings) -> int:
	device = _open_store(settings).get_device(args.address)
	if device is None:
		sys.stderr.write(f"unknown device {args.address}\n")
		return 1
	if args.json:
		_emit_json(device.to_dict())
		return 0
	if Console and Table:
		table = Table(title=f"{device.name or 'Unknown'} ({device.address})")
		for column in ("TIME", "RESULT", "DURATION", "REASON"):
			table.add_column(column)
		for entry in device.history:
			table.add_row(
				format_timestamp(entry.timestamp),
				"ok" if entry.success else "failed",
				format_duration(entry.duration),
				entry.disconnect_reason or "",
			)
		Console().print(table)
	else:
		for entry in device.history:
			sys.stdout.write(
				f"{format_timestamp(entry.timestamp)}\t{'ok' if entry.success else 'failed'}\t"
				f"{format_duration(entry.duration)}\t{entry.disconnect_reason or ''}\n"
			)
	return 0


def _cmd_favorite(args: argparse.Namespace, settings: Settings) -> int:
	device = _open_store(settings).toggle_favorite(args.address)
	if device is None:
		sys.stderr.write(f"unknown device {args.address}\n")
		return 1
	sys.stdout.write(f"{device.address} favorite={'yes' if device.is_favorite else 'no'}\n")
	return 0


def _cmd_remove(args: argparse.Namespace, settings: Settings) -> int:
	if not _open_store(settings).remove_device(args.address):
		sys.stderr.write(f"unknown device {args.address}\n")
		return 1
	sys.stdout.write(f"removed {args.address}\n")
	return 0


def _cmd_clear(args: argparse.Namespace, settings: Settings) -> int:
	device = _open_store(settings).clear_history(args.address)
	if device is None:
		sys.stderr.write(f"unknown device {args.address}\n")
		return 1
	sys.stdout.write(f"cleared history for {device.address} ({device.total_connections} attempts kept)\n")
	return 0


def _cmd_connect(args: argparse.Namespace, settings: Settings) -> int:
	store = _open_store(settings)
	monitor = LifecycleMonitor(store, events=_open_events(settings))
	client = DeviceClient(settings.device_url, timeout=settings.request_timeout)
	try:
		ok = connect_and_record(client, monitor, DeviceIdentity(args.address, args.name))
	finally:
		client.close()
	if not ok:
		sys.stderr.write(f"controller refused connect to {args.address}\n")
		return 1
	sys.stdout.write(f"connecting to {args.name or args.address}\n")
	return 0


def _cmd_scan(args: argparse.Namespace, settings: Settings) -> int:
	client = DeviceClient(settings.device_url, timeout=settings.request_timeout)
	try:
		snapshot = scan_devices(client, wait=max(0.0, args.wait))
	finally:
		client.close()
	if args.json:
		_emit_json({"scanning": snapshot.scanning, "devices": [device.to_dict() for device in snapshot.devices]})
		return 0
	if Console and Table:
		table = Table(title="Adapters in range" + (" (still scanning)" if snapshot.scanning else ""))
		table.add_column("ADDRESS")
		table.add_column("NAME")
		for device in snapshot.devices:
			table.add_row(device.address, device.name or "Unknown")
		Console().print(table)
	else:
		for device in snapshot.devices:
			sys.stdout.write(f"{device.address}\t{device.name or 'Unknown'}\n")
	return 0


async def _monitor(settings: Settings, runtime: Optional[float]) -> int:
	events = _open_events(settings)
	monitor = LifecycleMonitor(_open_store(settings), events=events)
	client = DeviceClient(settings.device_url, timeout=settings.request_timeout)
	poller = StatusPoller(client.fetch_status, monitor, interval=settings.poll_interval, events=events)

	loop = asyncio.get_running_loop()
	for sig in (signal.SIGINT, signal.SIGTERM):
		with contextlib.suppress(NotImplementedError):
			loop.add_signal_handler(sig, poller.request_stop)

	try:
		await poller.run(runtime=runtime)
	finally:
		poller.request_stop()
		client.close()
	return 0


def _cmd_monitor(args: argparse.Namespace, settings: Settings) -> int:
	if args.interval:
		settings.poll_interval = args.interval
	return asyncio.run(_monitor(settings, args.runtime))


def _cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
	import uvicorn

	from shiftlight import api

	api.configure(settings=settings)
	uvicorn.run("shiftlight.api:app", host=args.host, port=args.port, reload=args.reload)
	return 0


def _open_events(settings: Settings) -> Optional[EventLogger]:
	if not settings.event_log:
		return None
	return EventLogger(settings.event_log)


def _build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="ShiftLight BLE connection history")
	parser.add_argument("--device-url", help="Base URL of the shift-light controller")
	parser.add_argument("--backend", choices=("memory", "json", "sql"), help="History storage backend")
	parser.add_argument("--history-path", help="JSON history file (json backend)")
	parser.add_argument("--database-url", help="SQLAlchemy URL (sql backend)")
	parser.add_argument("--event-log", help="Append lifecycle events to this CSV file")
	parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
	sub = parser.add_subparsers(dest="command", required=True)

	devices = sub.add_parser("devices", help="List saved adapters, favorites first")
	devices.add_argument("--json", action="store_true", help="Output JSON")
	devices.set_defaults(handler=_cmd_devices)

	show = sub.add_parser("show", help="Show one adapter and its recent attempts")
	show.add_argument("address")
	show.add_argument("--json", action="store_true", help="Output JSON")
	show.set_defaults(handler=_cmd_show)

	favorite = sub.add_parser("favorite", help="Toggle the favorite flag")
	favorite.add_argument("address")
	favorite.set_defaults(handler=_cmd_favorite)

	remove = sub.add_parser("remove", help="Forget an adapter entirely")
	remove.add_argument("address")
	remove.set_defaults(handler=_cmd_remove)

	clear = sub.add_parser("clear", help="Clear recent attempts, keep lifetime counters")
	clear.add_argument("address")
	clear.set_defaults(handler=_cmd_clear)

	connect = sub.add_parser("connect", help="Ask the controller to connect to an adapter")
	connect.add_argument("address")
	connect.add_argument("name", nargs="?", default="")
	connect.set_defaults(handler=_cmd_connect)

	scan = sub.add_parser("scan", help="Scan for adapters near the controller")
	scan.add_argument("--wait", type=float, default=DEFAULT_SCAN_WAIT, help="Seconds to let the scan run")
	scan.add_argument("--json", action="store_true", help="Output JSON")
	scan.set_defaults(handler=_cmd_scan)

	monitor = sub.add_parser("monitor", help="Poll the controller and record connection attempts")
	monitor.add_argument("--interval", type=float, help="Polling interval seconds")
	monitor.add_argument("--runtime", type=float, help="Optional monitor duration seconds")
	monitor.set_defaults(handler=_cmd_monitor)

	serve = sub.add_parser("serve", help="Run the HTTP API")
	serve.add_argument("--host", default="127.0.0.1")
	serve.add_argument("--port", type=int, default=8000)
	serve.add_argument("--reload", action="store_true", help="Reload on code changes")
	serve.set_defaults(handler=_cmd_serve)

	return parser


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
	if args.device_url:
		settings.device_url = args.device_url.rstrip("/")
	if args.backend:
		settings.history_backend = args.backend
	if args.history_path:
		settings.history_path = Path(args.history_path).expanduser()
	if args.database_url:
		settings.database_url = args.database_url
	if args.event_log:
		settings.event_log = Path(args.event_log).expanduser()
	return settings


def main(argv: Optional[List[str]] = None) -> int:
	parser = _build_parser()
	args = parser.parse_args(argv)
	try:
		settings = _apply_overrides(Settings.from_env(), args)
	except ValueError as exc:
		parser.error(str(exc))
	logging.basicConfig(
		level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level, logging.INFO),
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)
	try:
		return args.handler(args, settings)
	except ShiftlightError as exc:
		logging.getLogger("shiftlight.cli").error("%s", exc)
		return 2


if __name__ == "__main__":
	sys.exit(main())
