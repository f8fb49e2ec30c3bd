"""JSON sidecar entry store.

The whole id-keyed map of entities lives in memory and is rewritten to a
pretty-printed JSON file after each committed mutation. Suited to small
deployments where a database file is unwanted. The file also records the id
high-water mark so ids are never reused.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import structlog

from core.errors import DuplicateKeyError
from schemas.entities import Entity, make_entity
from tools.file_ops import atomic_write_text

logger = structlog.get_logger(__name__)


class JsonEntryStore:
    """Entry store persisted as one JSON document.

    Args:
        path: Sidecar file; created on first write.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._rows: Dict[int, Entity] = {}
        self._next_id = 1
        self._tx_depth = 0
        if self._path.exists():
            self._load()

    def _load(self) -> None:
        data = json.loads(self._path.read_text(encoding="utf-8"))
        for raw in data.get("entries", {}).values():
            ent = make_entity(**raw)
            self._rows[ent.id] = ent
        self._next_id = max(int(data.get("next_id", 1)), max(self._rows, default=0) + 1)
        logger.debug("json_store_loaded", path=str(self._path), entries=len(self._rows))

    def _save(self) -> None:
        if self._tx_depth:
            return
        payload = {
            "next_id": self._next_id,
            "entries": {str(i): e.model_dump(mode="json") for i, e in sorted(self._rows.items())},
        }
        atomic_write_text(self._path, json.dumps(payload, indent=2, ensure_ascii=False))

    @contextmanager
    def transaction(self) -> Iterator["JsonEntryStore"]:
        """Apply the enclosed mutations all-or-nothing; write once at the end."""
        rows = dict(self._rows)
        next_id = self._next_id
        self._tx_depth += 1
        try:
            yield self
        except BaseException:
            self._rows = rows
            self._next_id = next_id
            raise
        finally:
            self._tx_depth -= 1
        self._save()

    def get(self, entity_id: int) -> Optional[Entity]:
        return self._rows.get(entity_id)

    def find_by_key(self, name: str, desc: str, type_: str, parent_id: int) -> Optional[Entity]:
        key = (name, desc, type_, parent_id)
        for ent in self._rows.values():
            if ent.key == key:
                return ent
        return None

    def upsert(self, entity: Entity) -> Entity:
        clash = self.find_by_key(*entity.key)
        if clash is not None and clash.id != entity.id:
            raise DuplicateKeyError(
                f"{entity.name!r} [{entity.desc}] .{entity.type} already exists in folder {entity.parent_id}"
            )
        if entity.id == 0:
            entity = entity.model_copy(update={"id": self._next_id})
            self._next_id += 1
        else:
            prev = self._rows.get(entity.id)
            if prev is None:
                return entity
            entity = entity.model_copy(update={"downloads": prev.downloads})
        self._rows[entity.id] = entity
        self._save()
        return entity

    def soft_delete(self, entity_id: int) -> bool:
        ent = self._rows.get(entity_id)
        if ent is None or ent.is_deleted:
            return False
        self._rows[entity_id] = ent.model_copy(update={"is_deleted": True})
        self._save()
        return True

    def increment_downloads(self, entity_id: int, by: int = 1) -> None:
        ent = self._rows.get(entity_id)
        if ent is None or by <= 0:
            return
        self._rows[entity_id] = ent.model_copy(update={"downloads": ent.downloads + by})
        self._save()

    def list_by_parent(self, parent_id: int, *, include_deleted: bool = False) -> List[Entity]:
        return [e for e in self.list_all(include_deleted=include_deleted) if e.parent_id == parent_id]

    def list_all(self, *, include_deleted: bool = False) -> List[Entity]:
        return [e for _, e in sorted(self._rows.items()) if include_deleted or not e.is_deleted]

    def close(self) -> None:
        self._save()


__all__ = ["JsonEntryStore"]
