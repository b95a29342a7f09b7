"""Key/value persistence backends for the device history.

Every backend stores the whole collection under one key; the history store
never writes individual devices.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, TYPE_CHECKING

from sqlalchemy import Column, DateTime, String, Text, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from shiftlight.errors import StorageError

if TYPE_CHECKING:  # pragma: no cover - typing only
    from shiftlight.config import Settings

logger = logging.getLogger(__name__)

Payload = List[Dict[str, Any]]


class KeyValueBackend(Protocol):
    def load(self, key: str) -> Optional[Payload]:
        ...

    def save(self, key: str, value: Payload) -> None:
        ...


class MemoryBackend:
    """Process-local backend; values are copied through JSON on the way in and out."""

    def __init__(self, initial: Optional[Dict[str, Payload]] = None) -> None:
        self._data: Dict[str, str] = {}
        for key, value in (initial or {}).items():
            self.save(key, value)

    def load(self, key: str) -> Optional[Payload]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def save(self, key: str, value: Payload) -> None:
        try:
            self._data[key] = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"value for {key!r} is not serializable: {exc}") from exc


class JsonFileBackend:
    """Single JSON document mapping keys to their payloads."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self, key: str) -> Optional[Payload]:
        document = self._read()
        return document.get(key)

    def save(self, key: str, value: Payload) -> None:
        with self._lock:
            document = self._read()
            document[key] = value
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(prefix=".history-", suffix=".json", dir=self.path.parent)
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as handle:
                        json.dump(document, handle, separators=(",", ":"))
                        handle.flush()
                        os.fsync(handle.fileno())
                    os.replace(tmp_name, self.path)
                except BaseException:
                    Path(tmp_name).unlink(missing_ok=True)
                    raise
            except (OSError, TypeError, ValueError) as exc:
                raise StorageError(f"could not write {self.path}: {exc}") from exc

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                document = json.load(handle)
        except (OSError, ValueError) as exc:
            raise StorageError(f"could not read {self.path}: {exc}") from exc
        if not isinstance(document, dict):
            raise StorageError(f"{self.path} does not contain a JSON object")
        return document


Base = declarative_base()


class KeyValueEntry(Base):  # type: ignore[misc, valid-type]
    __tablename__ = "kv_entries"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<KeyValueEntry {self.key} at {self.updated_at}>"


class SqlBackend:
    """SQLAlchemy backed store, one row per key."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        try:
            parsed = make_url(url)
            if parsed.drivername.startswith("sqlite") and parsed.database not in (None, "", ":memory:"):
                Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
            self._engine = create_engine(url, echo=echo, future=True)
            Base.metadata.create_all(self._engine)
        except (SQLAlchemyError, OSError) as exc:
            raise StorageError(f"could not open database {url}: {exc}") from exc
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

    def load(self, key: str) -> Optional[Payload]:
        try:
            with self._session_factory() as session:
                row = session.get(KeyValueEntry, key)
                raw = row.value if row is not None else None
        except SQLAlchemyError as exc:
            raise StorageError(f"could not read {key!r}: {exc}") from exc
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise StorageError(f"stored value for {key!r} is not valid JSON: {exc}") from exc

    def save(self, key: str, value: Payload) -> None:
        try:
            encoded = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            raise StorageError(f"value for {key!r} is not serializable: {exc}") from exc

        with self._session_factory() as session:
            try:
                row = session.get(KeyValueEntry, key)
                if row is None:
                    row = KeyValueEntry(key=key)
                    session.add(row)
                row.value = encoded
                row.updated_at = datetime.now(timezone.utc)
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                logger.exception("Failed to persist %s", key)
                raise StorageError(f"could not write {key!r}: {exc}") from exc

    def dispose(self) -> None:
        self._engine.dispose()


def open_backend(settings: "Settings") -> KeyValueBackend:
    if settings.history_backend == "memory":
        return MemoryBackend()
    if settings.history_backend == "sql":
        return SqlBackend(settings.database_url)
    return JsonFileBackend(settings.history_path)


__all__ = [
    "KeyValueBackend",
    "MemoryBackend",
    "JsonFileBackend",
    "SqlBackend",
    "KeyValueEntry",
    "open_backend",
]
