"""Exception hierarchy for shiftlight."""
from __future__ import annotations


class ShiftlightError(Exception):
    """Base class for all shiftlight errors."""


class StorageError(ShiftlightError):
    """The device history could not be loaded or written."""


class DeviceRequestError(ShiftlightError):
    """A request to the shift-light controller failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


__all__ = ["ShiftlightError", "StorageError", "DeviceRequestError"]
