"""Key/value storage backends for durable snapshot envelopes."""

from __future__ import annotations

from typing import Protocol

from sqlalchemy import delete
from sqlalchemy.orm import Session, sessionmaker

from marketsync.db import session_scope
from marketsync.models import SnapshotRecord


class SnapshotStorage(Protocol):
    """Minimal string store with the semantics of browser local storage."""

    def get_item(self, key: str) -> str | None:
        """Return the stored payload for ``key`` or ``None``."""

    def set_item(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous payload."""

    def remove_item(self, key: str) -> None:
        """Forget ``key``; a missing key is not an error."""

    def clear(self) -> None:
        """Drop every stored payload."""


class MemorySnapshotStorage:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._items: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()

    def keys(self) -> list[str]:
        return sorted(self._items)


class SqlSnapshotStorage:
    """Snapshot storage persisted in the ``snapshots`` table.

    Calls are synchronous, like the browser storage this stands in for. Each
    one is a single-row SQLite statement and runs on the event loop.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get_item(self, key: str) -> str | None:
        with session_scope(self._session_factory) as session:
            record = session.get(SnapshotRecord, key)
            return record.payload if record is not None else None

    def set_item(self, key: str, value: str) -> None:
        with session_scope(self._session_factory) as session:
            record = session.get(SnapshotRecord, key)
            if record is None:
                session.add(SnapshotRecord(key=key, payload=value))
            else:
                record.payload = value

    def remove_item(self, key: str) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(delete(SnapshotRecord).where(SnapshotRecord.key == key))

    def clear(self) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(delete(SnapshotRecord))
