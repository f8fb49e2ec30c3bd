"""Persisted counters file.

A pretty-printed JSON mapping of entity id to ``{"downloads", "dateAdded"}``,
rewritten in full on each flush. Writes go through a temp file so an
interrupted flush leaves the previous version intact; the last write wins.
"""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Dict, Iterable

from pydantic import BaseModel, ConfigDict, Field

from schemas.entities import EntityBase
from tools.file_ops import atomic_write_text


class CounterEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    downloads: int = Field(default=0, ge=0)
    date_added: date = Field(alias="dateAdded")


def read_counters(path: Path) -> Dict[int, CounterEntry]:
    """Load the counters file; a missing file yields an empty mapping."""
    p = Path(path)
    if not p.exists():
        return {}
    data = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise TypeError("counters file must be a mapping at top-level")
    return {int(k): CounterEntry.model_validate(v) for k, v in data.items()}


def write_counters(path: Path, entities: Iterable[EntityBase]) -> int:
    """Rewrite the counters file from ``entities``. Returns rows written."""
    out = {
        str(e.id): CounterEntry(downloads=e.downloads, date_added=e.date_added).model_dump(mode="json", by_alias=True)
        for e in sorted(entities, key=lambda e: e.id)
    }
    atomic_write_text(Path(path), json.dumps(out, indent=2))
    return len(out)


__all__ = ["CounterEntry", "read_counters", "write_counters"]
