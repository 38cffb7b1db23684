"""SQLite-backed persistence for system descriptors."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Iterable

from .errors import PersistenceError
from .models import SystemDescriptor

_DB_SCHEMA = """
CREATE TABLE IF NOT EXISTS systems (
    system_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    path TEXT NOT NULL UNIQUE,
    type TEXT NOT NULL,
    status TEXT NOT NULL,
    technologies TEXT,
    details TEXT,
    registered_at TEXT NOT NULL,
    last_checked TEXT NOT NULL
);
"""

# Columns promoted out of the JSON "details" blob.
_COLUMNS = ("id", "name", "path", "type", "status", "technologies", "registered_at", "last_checked")


class DescriptorStore:
    def __init__(self, db_path: Path | str) -> None:
        self._db_path = db_path
        self._conn = sqlite3.connect(str(db_path))
        self._conn.row_factory = sqlite3.Row
        self._bootstrap()

    def close(self) -> None:
        self._conn.close()

    def _bootstrap(self) -> None:
        with self._conn:
            self._conn.executescript(_DB_SCHEMA)

    def save_all(self, descriptors: Iterable[SystemDescriptor]) -> None:
        """Replace the persisted set with ``descriptors`` in one transaction."""
        payloads = [self._descriptor_to_row(descriptor) for descriptor in descriptors]
        try:
            with self._conn:
                self._conn.execute("DELETE FROM systems")
                self._conn.executemany(
                    """
                    INSERT INTO systems (
                        system_id, name, path, type, status, technologies, details, registered_at, last_checked
                    )
                    VALUES (
                        :system_id, :name, :path, :type, :status, :technologies, :details, :registered_at, :last_checked
                    )
                    """,
                    payloads,
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"failed to persist {len(payloads)} system(s): {exc}") from exc

    def load_all(self) -> list[SystemDescriptor]:
        rows = self._conn.execute("SELECT * FROM systems ORDER BY datetime(registered_at) ASC").fetchall()
        return [self._row_to_descriptor(row) for row in rows]

    def _descriptor_to_row(self, descriptor: SystemDescriptor) -> dict[str, object]:
        data = descriptor.to_dict()
        details = {key: value for key, value in data.items() if key not in _COLUMNS}
        return {
            "system_id": data["id"],
            "name": data["name"],
            "path": data["path"],
            "type": data["type"],
            "status": data["status"],
            "technologies": json.dumps(data["technologies"]),
            "details": json.dumps(details),
            "registered_at": data["registered_at"],
            "last_checked": data["last_checked"],
        }

    def _row_to_descriptor(self, row: sqlite3.Row) -> SystemDescriptor:
        data: dict[str, object] = json.loads(row["details"]) if row["details"] else {}
        data.update(
            {
                "id": row["system_id"],
                "name": row["name"],
                "path": row["path"],
                "type": row["type"],
                "status": row["status"],
                "technologies": json.loads(row["technologies"]) if row["technologies"] else [],
                "registered_at": row["registered_at"],
                "last_checked": row["last_checked"],
            }
        )
        return SystemDescriptor.from_dict(data)


def init_store(db_path: str | Path) -> DescriptorStore:
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return DescriptorStore(path)
