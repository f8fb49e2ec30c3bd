"""Legacy stats dataset.

One-time import source of historical download counts and dates from the
previous hosting site. Books are listed with their files::

    [{"name": "Book", "files": [{"desc": "", "type": "pdf", "time": "2018-03-01",
                                 "downloads": 120, "url": "https://..."}]}]

Entries are keyed by ``(name, desc, type)``. Each entry can be consumed once;
whatever is left after a rebuild is reported as unused.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)

LegacyKey = Tuple[str, str, str]


class _LegacyFile(BaseModel):
    desc: str = ""
    type: str
    time: Union[datetime, date]
    downloads: int = Field(default=0, ge=0)
    url: Optional[str] = None


class _LegacyBook(BaseModel):
    name: str
    files: List[_LegacyFile] = Field(default_factory=list)


@dataclass(frozen=True)
class LegacyStat:
    date_added: date
    downloads: int
    old_url: Optional[str]


def format_key(key: LegacyKey) -> str:
    return "@".join(key)


class LegacyStats:
    """Consumable lookup of legacy stats by ``(name, desc, type)``."""

    def __init__(self, entries: Optional[Dict[LegacyKey, LegacyStat]] = None) -> None:
        self._entries: Dict[LegacyKey, LegacyStat] = dict(entries or {})

    @classmethod
    def load(cls, path: Path) -> "LegacyStats":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        entries: Dict[LegacyKey, LegacyStat] = {}
        for raw in data:
            book = _LegacyBook.model_validate(raw)
            for f in book.files:
                if f.type == "collection":
                    continue
                key = (book.name.strip(), f.desc, f.type)
                if key in entries:
                    logger.warning("legacy_duplicate_key", key=format_key(key))
                    continue
                added = f.time.date() if isinstance(f.time, datetime) else f.time
                entries[key] = LegacyStat(date_added=added, downloads=f.downloads, old_url=f.url)
        logger.info("legacy_stats_loaded", path=str(path), entries=len(entries))
        return cls(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def consume(self, name: str, desc: str, type_: str) -> Optional[LegacyStat]:
        """Return and remove the entry for a key, or None."""
        return self._entries.pop((name, desc, type_), None)

    def unused(self) -> List[str]:
        return sorted(format_key(k) for k in self._entries)


__all__ = ["LegacyStat", "LegacyStats", "format_key"]
