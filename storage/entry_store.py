"""SQLite-backed entry store.

Durable record of every known file and folder. Rows are keyed by an
``AUTOINCREMENT`` integer id, so an id is never handed out twice even after
the row it belonged to is soft-deleted. ``(name, desc, type, parent_id)`` is
unique. Rows are never hard-deleted.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any, Iterator, List, Optional, Protocol

from core.errors import DuplicateKeyError
from schemas.entities import Entity, make_entity

SCHEMA_VERSION = 1

_COLUMNS = 'id, name, "desc", type, parent_id, size, date_added, downloads, is_deleted, extra_props'


class EntryStore(Protocol):
    """Capability interface shared by every entry store variant."""

    def get(self, entity_id: int) -> Optional[Entity]:  # pragma: no cover - Protocol only
        ...

    def find_by_key(self, name: str, desc: str, type_: str, parent_id: int) -> Optional[Entity]:  # pragma: no cover
        ...

    def upsert(self, entity: Entity) -> Entity:  # pragma: no cover
        ...

    def soft_delete(self, entity_id: int) -> bool:  # pragma: no cover
        ...

    def increment_downloads(self, entity_id: int, by: int = 1) -> None:  # pragma: no cover
        ...

    def list_by_parent(self, parent_id: int, *, include_deleted: bool = False) -> List[Entity]:  # pragma: no cover
        ...

    def list_all(self, *, include_deleted: bool = False) -> List[Entity]:  # pragma: no cover
        ...

    def transaction(self) -> Any:  # pragma: no cover
        ...

    def close(self) -> None:  # pragma: no cover
        ...


def _row_to_entity(r: tuple) -> Entity:
    return make_entity(
        id=int(r[0]),
        name=str(r[1]),
        desc=str(r[2]),
        type=str(r[3]),
        parent_id=int(r[4]),
        size=int(r[5]),
        date_added=date.fromisoformat(str(r[6])),
        downloads=int(r[7]),
        is_deleted=bool(r[8]),
        extra_props=json.loads(r[9] or "{}"),
    )


class SqliteEntryStore:
    """SQLite entry store.

    Creates the ``entry`` table if it does not exist. Uses WAL so readers on
    other connections are not blocked by a long rebuild.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode; transaction() issues BEGIN/COMMIT explicitly
        self._conn = sqlite3.connect(str(self._db_path), isolation_level=None)
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.execute(
            (
                "CREATE TABLE IF NOT EXISTS entry (\n"
                "  id INTEGER PRIMARY KEY AUTOINCREMENT,\n"
                "  name TEXT NOT NULL,\n"
                "  \"desc\" TEXT NOT NULL DEFAULT '',\n"
                "  type TEXT NOT NULL,\n"
                "  parent_id INTEGER NOT NULL DEFAULT 0,\n"
                "  size INTEGER NOT NULL DEFAULT 0,\n"
                "  date_added TEXT NOT NULL DEFAULT CURRENT_DATE,\n"
                "  downloads INTEGER NOT NULL DEFAULT 0,\n"
                "  is_deleted INTEGER NOT NULL DEFAULT 0,\n"
                "  extra_props TEXT NOT NULL DEFAULT '{}',\n"
                "  UNIQUE(name, \"desc\", type, parent_id)\n"
                ")"
            )
        )
        self._conn.execute("CREATE INDEX IF NOT EXISTS entry_parent ON entry(parent_id)")
        self._conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        self._in_tx = False

    @contextmanager
    def transaction(self) -> Iterator["SqliteEntryStore"]:
        """Run the enclosed mutations atomically; roll back on any exception."""
        if self._in_tx:
            yield self
            return
        self._conn.execute("BEGIN")
        self._in_tx = True
        try:
            yield self
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        else:
            self._conn.execute("COMMIT")
        finally:
            self._in_tx = False

    def get(self, entity_id: int) -> Optional[Entity]:
        cur = self._conn.execute(f"SELECT {_COLUMNS} FROM entry WHERE id = ?", (entity_id,))
        row = cur.fetchone()
        return _row_to_entity(row) if row else None

    def find_by_key(self, name: str, desc: str, type_: str, parent_id: int) -> Optional[Entity]:
        cur = self._conn.execute(
            f"SELECT {_COLUMNS} FROM entry WHERE name = ? AND \"desc\" = ? AND type = ? AND parent_id = ?",
            (name, desc, type_, parent_id),
        )
        row = cur.fetchone()
        return _row_to_entity(row) if row else None

    def upsert(self, entity: Entity) -> Entity:
        """Insert a new row (``id == 0``) or update the mutable fields of one.

        ``downloads`` is only written on insert; afterwards it moves solely via
        :meth:`increment_downloads`.

        Raises:
            DuplicateKeyError: another row already holds the sibling key.
        """
        extra = json.dumps(entity.extra_props, sort_keys=True)
        try:
            if entity.id == 0:
                cur = self._conn.execute(
                    "INSERT INTO entry (name, \"desc\", type, parent_id, size, date_added, downloads, is_deleted, extra_props) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        entity.name,
                        entity.desc,
                        entity.type,
                        entity.parent_id,
                        entity.size,
                        entity.date_added.isoformat(),
                        entity.downloads,
                        int(entity.is_deleted),
                        extra,
                    ),
                )
                return entity.model_copy(update={"id": int(cur.lastrowid)})
            self._conn.execute(
                "UPDATE entry SET name = ?, \"desc\" = ?, type = ?, parent_id = ?, size = ?, date_added = ?, "
                "is_deleted = ?, extra_props = ? WHERE id = ?",
                (
                    entity.name,
                    entity.desc,
                    entity.type,
                    entity.parent_id,
                    entity.size,
                    entity.date_added.isoformat(),
                    int(entity.is_deleted),
                    extra,
                    entity.id,
                ),
            )
        except sqlite3.IntegrityError as e:
            raise DuplicateKeyError(
                f"{entity.name!r} [{entity.desc}] .{entity.type} already exists in folder {entity.parent_id}"
            ) from e
        return self.get(entity.id) or entity

    def soft_delete(self, entity_id: int) -> bool:
        """Mark a row deleted. Returns True if a live row was changed."""
        cur = self._conn.execute("UPDATE entry SET is_deleted = 1 WHERE id = ? AND is_deleted = 0", (entity_id,))
        return cur.rowcount > 0

    def increment_downloads(self, entity_id: int, by: int = 1) -> None:
        if by <= 0:
            return
        self._conn.execute("UPDATE entry SET downloads = downloads + ? WHERE id = ?", (by, entity_id))

    def list_by_parent(self, parent_id: int, *, include_deleted: bool = False) -> List[Entity]:
        sql = f"SELECT {_COLUMNS} FROM entry WHERE parent_id = ?"
        if not include_deleted:
            sql += " AND is_deleted = 0"
        return [_row_to_entity(r) for r in self._conn.execute(sql + " ORDER BY id", (parent_id,))]

    def list_all(self, *, include_deleted: bool = False) -> List[Entity]:
        sql = f"SELECT {_COLUMNS} FROM entry"
        if not include_deleted:
            sql += " WHERE is_deleted = 0"
        return [_row_to_entity(r) for r in self._conn.execute(sql + " ORDER BY id")]

    def max_id(self) -> int:
        """Return the highest id ever allocated, or 0 if none."""
        cur = self._conn.execute("SELECT seq FROM sqlite_sequence WHERE name = 'entry'")
        row = cur.fetchone()
        return int(row[0]) if row else 0

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        self._conn.close()


__all__ = ["EntryStore", "SqliteEntryStore", "SCHEMA_VERSION"]
