"""Presentation helpers shared by the CLI and the HTTP API."""
from __future__ import annotations

from datetime import datetime
from typing import Optional


def format_duration(ms: Optional[float]) -> str:
    """Render milliseconds as ``1h 5m``, ``2m 3s`` or ``45s``."""
    if ms is None:
        return "-"
    seconds = int(ms // 1000)
    minutes = seconds // 60
    hours = minutes // 60
    if hours > 0:
        return f"{hours}h {minutes % 60}m"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def format_timestamp(value: Optional[datetime]) -> str:
    if value is None:
        return "never"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")
