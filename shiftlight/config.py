"""Runtime settings read from ``SHIFTLIGHT_*`` environment variables."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

STATE_DIR = Path(os.path.expanduser("~")) / ".shiftlight"

DEFAULT_DEVICE_URL = "http://192.168.4.1"
DEFAULT_POLL_INTERVAL = 3.0
DEFAULT_REQUEST_TIMEOUT = 5.0
DEFAULT_HISTORY_KEY = "ble-device-history"
HISTORY_BACKENDS = ("memory", "json", "sql")


def _safe_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass(slots=True)
class Settings:
    device_url: str = DEFAULT_DEVICE_URL
    poll_interval: float = DEFAULT_POLL_INTERVAL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    history_backend: str = "json"
    history_path: Path = field(default_factory=lambda: STATE_DIR / "history.json")
    database_url: str = field(default_factory=lambda: f"sqlite:///{STATE_DIR / 'history.sqlite3'}")
    history_key: str = DEFAULT_HISTORY_KEY
    event_log: Optional[Path] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        defaults = cls()

        backend = env.get("SHIFTLIGHT_HISTORY_BACKEND", defaults.history_backend).strip().lower()
        if backend not in HISTORY_BACKENDS:
            raise ValueError(
                f"SHIFTLIGHT_HISTORY_BACKEND must be one of {', '.join(HISTORY_BACKENDS)}, got {backend!r}"
            )

        event_log = env.get("SHIFTLIGHT_EVENT_LOG")
        history_path = env.get("SHIFTLIGHT_HISTORY_PATH")

        return cls(
            device_url=(env.get("SHIFTLIGHT_DEVICE_URL") or defaults.device_url).rstrip("/"),
            poll_interval=max(0.1, _safe_float(env.get("SHIFTLIGHT_POLL_INTERVAL"), defaults.poll_interval)),
            request_timeout=max(0.5, _safe_float(env.get("SHIFTLIGHT_REQUEST_TIMEOUT"), defaults.request_timeout)),
            history_backend=backend,
            history_path=Path(history_path).expanduser() if history_path else defaults.history_path,
            database_url=env.get("SHIFTLIGHT_DATABASE_URL") or defaults.database_url,
            history_key=env.get("SHIFTLIGHT_HISTORY_KEY") or defaults.history_key,
            event_log=Path(event_log).expanduser() if event_log else None,
            log_level=(env.get("SHIFTLIGHT_LOG_LEVEL") or defaults.log_level).upper(),
        )


__all__ = ["Settings", "DEFAULT_HISTORY_KEY", "HISTORY_BACKENDS"]
