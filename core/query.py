"""Read-only queries over a hierarchy snapshot.

All operations work on one immutable :class:`HierarchySnapshot`, so a query
never sees a tree that is being rebuilt. Listings are returned in the
canonical order: folders first, then name ascending, then id.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, Iterable, List, Sequence

from core.errors import EntityNotFoundError, NotAFolderError
from projections.hierarchy import ROOT_ID, HierarchySnapshot
from schemas.entities import Entity

DEFAULT_BATCH_SIZE = 800

# Black box "query -> candidate terms" (e.g. a transliteration expander)
TermExpander = Callable[[str], List[str]]


def default_terms(query: str) -> List[str]:
    """Whitespace split; the fallback when no expander is configured."""
    return [t for t in query.split() if t]


def sort_key(ent: Entity) -> tuple:
    return (0 if ent.is_folder else 1, ent.name, ent.id)


def sort_entities(entities: Iterable[Entity]) -> List[Entity]:
    return sorted(entities, key=sort_key)


def batched(items: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


@dataclass
class EntityGroup:
    """Entries sharing one display name (e.g. the formats of one book)."""

    name: str
    entries: List[Entity] = field(default_factory=list)

    @property
    def downloads(self) -> int:
        return sum(e.downloads for e in self.entries)

    @property
    def is_folder(self) -> bool:
        return any(e.is_folder for e in self.entries)


def group_by_name(entities: Iterable[Entity]) -> List[EntityGroup]:
    """Collapse entries with the same name, keeping first-seen order."""
    groups: Dict[str, EntityGroup] = {}
    for ent in entities:
        groups.setdefault(ent.name, EntityGroup(name=ent.name)).entries.append(ent)
    return list(groups.values())


class QueryService:
    """Browse and search operations for one snapshot.

    Args:
        snapshot: Resolved hierarchy to query.
        batch_size: Maximum number of terms compiled into one search pattern.
    """

    def __init__(self, snapshot: HierarchySnapshot, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.snapshot = snapshot
        self.batch_size = batch_size

    def _require_folder(self, folder_id: int) -> None:
        if folder_id == ROOT_ID:
            return
        ent = self.snapshot.get(folder_id)
        if ent is None:
            raise EntityNotFoundError(f"folder {folder_id} does not exist")
        if not ent.is_folder:
            raise NotAFolderError(f"entity {folder_id} is a {ent.type!r}, not a folder")

    def _scope(self, folder_id: int) -> List[Entity]:
        self._require_folder(folder_id)
        ents = self.snapshot.entities
        return [ents[i] for i in self.snapshot.descendants(folder_id)]

    def get_entity(self, entity_id: int) -> Entity:
        return self.snapshot.require(entity_id)

    def get_children(self, folder_id: int = ROOT_ID) -> List[Entity]:
        """Immediate children of a folder."""
        self._require_folder(folder_id)
        ents = self.snapshot.entities
        return sort_entities(ents[i] for i in self.snapshot.children(folder_id))

    def get_all(self, folder_id: int = ROOT_ID) -> List[Entity]:
        """The folder itself plus everything below it; 0 means everything."""
        return sort_entities(self._scope(folder_id))

    def get_recently_added(self, folder_id: int, since: date) -> List[Entity]:
        return sort_entities(e for e in self._scope(folder_id) if e.date_added > since)

    def search(self, folder_id: int, terms: Sequence[str], *, case_sensitive: bool = False) -> List[Entity]:
        """Substring match of any term against entity names below ``folder_id``.

        Terms are compiled ``batch_size`` at a time and the hits unioned, so
        any number of terms gives the same result as one unbounded pattern.
        """
        scope = self._scope(folder_id)
        uniq = list(dict.fromkeys(t for t in terms if t))
        if not uniq:
            return []
        flags = 0 if case_sensitive else re.IGNORECASE
        hits: Dict[int, Entity] = {}
        for chunk in batched(uniq, self.batch_size):
            pattern = re.compile("|".join(re.escape(t) for t in chunk), flags)
            for ent in scope:
                if ent.id not in hits and pattern.search(ent.name):
                    hits[ent.id] = ent
        return sort_entities(hits.values())

    def search_query(
        self,
        folder_id: int,
        query: str,
        *,
        expander: TermExpander = default_terms,
        case_sensitive: bool = False,
    ) -> List[Entity]:
        return self.search(folder_id, expander(query), case_sensitive=case_sensitive)


__all__ = [
    "DEFAULT_BATCH_SIZE",
    "TermExpander",
    "default_terms",
    "sort_key",
    "sort_entities",
    "EntityGroup",
    "group_by_name",
    "QueryService",
]
