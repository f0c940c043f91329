"""Persistence backends for the environment registry.

The registry keeps its working set in memory; a store makes it survive a
restart. What matters most is ``Pruning``: an environment whose close was
accepted but whose resources are not yet confirmed gone must resume pruning
after a crash instead of leaking resources.

ARCHITECTURE
────────────
::

    RegistryStore (protocol)
      ├── MemoryRegistryStore   ─ tests, single-shot runs
      └── SqliteRegistryStore   ─ one row per canary id, JSON columns

    Table: prcanary_environments
      canary_id TEXT PRIMARY KEY
      desired   TEXT  (JSON, nullable)
      applied   TEXT  (JSON, nullable)
      updated_at TEXT (ISO-8601)
"""

from __future__ import annotations

import json
import sqlite3
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from prcanary.model.environments import AppliedEnvironment, DesiredEnvironment


@dataclass(frozen=True)
class RegistryEntry:
    """Latest desired and applied record for one canary id."""

    desired: DesiredEnvironment | None = None
    applied: AppliedEnvironment | None = None


@runtime_checkable
class RegistryStore(Protocol):
    """Durable backing for :class:`~prcanary.registry.EnvironmentRegistry`."""

    def load_all(self) -> dict[str, RegistryEntry]:
        ...

    def save(self, canary_id: str, entry: RegistryEntry) -> None:
        ...

    def delete(self, canary_id: str) -> None:
        ...


class MemoryRegistryStore:
    """Keeps entries in a dict; nothing survives the process."""

    def __init__(self) -> None:
        self._rows: dict[str, RegistryEntry] = {}

    def load_all(self) -> dict[str, RegistryEntry]:
        return dict(self._rows)

    def save(self, canary_id: str, entry: RegistryEntry) -> None:
        self._rows[canary_id] = entry

    def delete(self, canary_id: str) -> None:
        self._rows.pop(canary_id, None)


class SqliteRegistryStore:
    """SQLite-backed store.

    Args:
        path: Database file path, or ``":memory:"``
    """

    _SCHEMA = """
        CREATE TABLE IF NOT EXISTS prcanary_environments (
            canary_id  TEXT PRIMARY KEY,
            desired    TEXT,
            applied    TEXT,
            updated_at TEXT NOT NULL
        )
    """

    def __init__(self, path: str | Path):
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._lock = threading.Lock()
        with self._lock:
            self._conn.execute(self._SCHEMA)
            self._conn.commit()

    def load_all(self) -> dict[str, RegistryEntry]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT canary_id, desired, applied FROM prcanary_environments"
            ).fetchall()
        entries: dict[str, RegistryEntry] = {}
        for canary_id, desired, applied in rows:
            entries[canary_id] = RegistryEntry(
                desired=DesiredEnvironment.from_dict(json.loads(desired)) if desired else None,
                applied=AppliedEnvironment.from_dict(json.loads(applied)) if applied else None,
            )
        return entries

    def save(self, canary_id: str, entry: RegistryEntry) -> None:
        desired = json.dumps(entry.desired.to_dict()) if entry.desired else None
        applied = json.dumps(entry.applied.to_dict()) if entry.applied else None
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO prcanary_environments (canary_id, desired, applied, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(canary_id) DO UPDATE SET
                    desired = excluded.desired,
                    applied = excluded.applied,
                    updated_at = excluded.updated_at
                """,
                (canary_id, desired, applied, datetime.now(UTC).isoformat()),
            )
            self._conn.commit()

    def delete(self, canary_id: str) -> None:
        with self._lock:
            self._conn.execute(
                "DELETE FROM prcanary_environments WHERE canary_id = ?", (canary_id,)
            )
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()
