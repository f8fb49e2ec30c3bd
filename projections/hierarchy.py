"""Folder hierarchy projection.

Rebuilds, from the flat entity table, everything derived from parent
pointers: parent chains, immediate children, transitive descendants,
materialized storage paths and per-folder aggregates. The projection is
always computed from scratch into fresh containers and returned as an
immutable :class:`HierarchySnapshot`; callers publish a new snapshot by
swapping one reference, so readers never observe a half-built tree.

Entities whose chain reaches a parent that is missing, deleted or not a
folder are orphans: they are left out of the snapshot and listed in
``orphan_ids``. A chain longer than the number of entities can only be a
cycle and raises :class:`HierarchyCycleError`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import structlog

from core.errors import EntityNotFoundError, HierarchyCycleError
from schemas.entities import Entity
from tools.name_codec import encode

logger = structlog.get_logger(__name__)

ROOT_ID = 0


@dataclass(frozen=True)
class FolderStats:
    """File counts and byte sums below one folder.

    ``direct_*`` covers files whose parent is the folder; ``num_entries`` and
    ``total_size`` cover every file in the subtree.
    """

    direct_entries: int = 0
    direct_size: int = 0
    num_entries: int = 0
    total_size: int = 0


@dataclass(frozen=True)
class HierarchySnapshot:
    """Immutable view of the live hierarchy."""

    entities: Mapping[int, Entity] = field(default_factory=dict)
    parent_chain: Mapping[int, Tuple[int, ...]] = field(default_factory=dict)
    child_ids: Mapping[int, Tuple[int, ...]] = field(default_factory=dict)
    descendant_ids: Mapping[int, frozenset] = field(default_factory=dict)
    materialized_path: Mapping[int, str] = field(default_factory=dict)
    stats: Mapping[int, FolderStats] = field(default_factory=dict)
    orphan_ids: frozenset = frozenset()

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self.entities

    def __len__(self) -> int:
        return len(self.entities)

    def get(self, entity_id: int) -> Optional[Entity]:
        return self.entities.get(entity_id)

    def require(self, entity_id: int) -> Entity:
        ent = self.entities.get(entity_id)
        if ent is None:
            raise EntityNotFoundError(f"entity {entity_id} does not exist")
        return ent

    def is_folder(self, entity_id: int) -> bool:
        if entity_id == ROOT_ID:
            return True
        ent = self.entities.get(entity_id)
        return ent is not None and ent.is_folder

    def children(self, folder_id: int) -> Tuple[int, ...]:
        return self.child_ids.get(folder_id, ())

    def descendants(self, entity_id: int) -> frozenset:
        """The entity's own id plus every id below it (root: everything)."""
        if entity_id in self.descendant_ids:
            return self.descendant_ids[entity_id]
        return frozenset({entity_id}) if entity_id in self.entities else frozenset()

    def ancestors(self, entity_id: int) -> List[Entity]:
        """Folders above an entity, root-to-leaf order (entity excluded)."""
        chain = self.parent_chain.get(entity_id, ())
        return [self.entities[i] for i in reversed(chain[1:])]

    def folder_path(self, entity_id: int, *, encoded: bool = False) -> str:
        """``/``-joined names of the folders above ``entity_id``.

        Display names by default; ``encoded=True`` gives storage names.
        """
        if encoded:
            path = self.materialized_path.get(entity_id, "")
            return path.rsplit("/", 1)[0] if "/" in path else ""
        return "/".join(f.name for f in self.ancestors(entity_id))

    def folder_stats(self, folder_id: int) -> FolderStats:
        return self.stats.get(folder_id, FolderStats())


def resolve(entities: Iterable[Entity]) -> HierarchySnapshot:
    """Build a fresh snapshot from the entity rows.

    Deleted rows are ignored. Runs in O(n * depth).

    Raises:
        HierarchyCycleError: some parent chain never reaches the root.
    """
    by_id: Dict[int, Entity] = {e.id: e for e in entities if not e.is_deleted}
    max_depth = len(by_id) + 1

    chains: Dict[int, Tuple[int, ...]] = {}
    orphans: set[int] = set()

    for eid, ent in by_id.items():
        chain = [eid]
        parent = ent.parent_id
        ok = True
        while parent != ROOT_ID:
            if len(chain) > max_depth:
                raise HierarchyCycleError(eid, max_depth)
            pent = by_id.get(parent)
            if pent is None or not pent.is_folder:
                ok = False
                break
            chain.append(parent)
            parent = pent.parent_id
        if ok:
            chains[eid] = tuple(chain)
        else:
            orphans.add(eid)

    if orphans:
        logger.warning("orphan_entities", count=len(orphans), sample=sorted(orphans)[:10])

    live = {i: by_id[i] for i in chains}
    children: Dict[int, List[int]] = {ROOT_ID: []}
    descendants: Dict[int, set] = {ROOT_ID: set()}
    direct: Dict[int, List[int]] = {ROOT_ID: [0, 0]}
    totals: Dict[int, List[int]] = {ROOT_ID: [0, 0]}
    for eid, ent in live.items():
        if ent.is_folder:
            children.setdefault(eid, [])
            descendants.setdefault(eid, set()).add(eid)
            direct.setdefault(eid, [0, 0])
            totals.setdefault(eid, [0, 0])

    for eid, chain in chains.items():
        ent = live[eid]
        children[ent.parent_id].append(eid)
        descendants[ROOT_ID].add(eid)
        for anc in chain[1:]:
            descendants[anc].add(eid)
        if not ent.is_folder:
            direct[ent.parent_id][0] += 1
            direct[ent.parent_id][1] += ent.size
            for anc in (*chain[1:], ROOT_ID):
                totals[anc][0] += 1
                totals[anc][1] += ent.size

    paths: Dict[int, str] = {}
    for eid, chain in chains.items():
        paths[eid] = "/".join(
            encode(live[i].name, live[i].desc, live[i].id, live[i].type) for i in reversed(chain)
        )

    stats = {
        fid: FolderStats(
            direct_entries=direct[fid][0],
            direct_size=direct[fid][1],
            num_entries=totals[fid][0],
            total_size=totals[fid][1],
        )
        for fid in direct
    }

    return HierarchySnapshot(
        entities=MappingProxyType(live),
        parent_chain=MappingProxyType(chains),
        child_ids=MappingProxyType({k: tuple(sorted(v)) for k, v in children.items()}),
        descendant_ids=MappingProxyType({k: frozenset(v) for k, v in descendants.items()}),
        materialized_path=MappingProxyType(paths),
        stats=MappingProxyType(stats),
        orphan_ids=frozenset(orphans),
    )


__all__ = ["ROOT_ID", "FolderStats", "HierarchySnapshot", "resolve"]
