"""Index builder.

Makes the entry store consistent with what is currently in storage. One
``rebuild`` pass:

1. enumerates the scope (one level, or the whole subtree when recursive)
2. drops names listed in each directory's ignore file (and the file itself)
3. decodes every name; invalid names are reported and skipped with their
   subtree
4. refuses to continue if two objects carry the same id (storage corruption)
5. inserts, updates or restores rows inside one store transaction, parents
   first, seeding brand-new files from the legacy stats dataset when given
6. soft-deletes live rows of the enumerated folders that were not seen
7. renames storage objects so their names carry the assigned id, deepest
   path first so child paths stay valid while parents move
8. resolves the hierarchy and sweeps for broken links below the scope

The pass is designed to converge: once storage stops changing a repeated
rebuild reports no additions, updates, renames or deletions.
"""

from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Set

import structlog

from core.errors import DuplicateIdError, DuplicateKeyError, ErrorKind, InvalidNameError, StorageIoError
from projections.hierarchy import ROOT_ID, HierarchySnapshot, resolve
from schemas.entities import FOLDER_TYPE, Entity, make_entity
from schemas.report import RebuildReport
from storage.backend import StorageBackend, StorageItem, join_path
from storage.entry_store import EntryStore
from tools.legacy_stats import LegacyStats
from tools.name_codec import ParsedName, decode, encode

logger = structlog.get_logger(__name__)

DEFAULT_IGNORE_FILE = "ignore-files.txt"


@dataclass
class _Planned:
    item: StorageItem
    parsed: ParsedName


@dataclass
class RebuildResult:
    report: RebuildReport
    snapshot: HierarchySnapshot
    seen_ids: Set[int] = field(default_factory=set)


def _item_date(item: StorageItem) -> date:
    return datetime.fromtimestamp(item.mtime).date() if item.mtime > 0 else date.today()


def parse_ignore_list(text: str, ignore_file_name: str = DEFAULT_IGNORE_FILE) -> Set[str]:
    """Names listed one per line; the ignore file always ignores itself."""
    names = {line.strip() for line in text.splitlines() if line.strip()}
    names.add(ignore_file_name)
    return names


class IndexBuilder:
    """Reconciles a storage backend with an entry store.

    Args:
        store: Entry store to update.
        storage: Storage backend to enumerate and rename in.
        legacy: Optional legacy stats dataset for brand-new files.
        ignore_file_name: Name of the per-directory ignore control file.
    """

    def __init__(
        self,
        store: EntryStore,
        storage: StorageBackend,
        *,
        legacy: Optional[LegacyStats] = None,
        ignore_file_name: str = DEFAULT_IGNORE_FILE,
    ) -> None:
        self.store = store
        self.storage = storage
        self.legacy = legacy
        self.ignore_file_name = ignore_file_name

    async def rebuild(self, root: str = "", scope_folder_id: int = ROOT_ID, *, recursive: bool = True) -> RebuildResult:
        """Run one rebuild pass over ``root``.

        Args:
            root: Storage path of the scope folder (``""`` for the library root).
            scope_folder_id: Entity id that ``root`` corresponds to.
            recursive: Walk the whole subtree; otherwise only one level.

        Raises:
            DuplicateIdError: two objects carry the same id; nothing is changed.
            StorageIoError: storage transport failure.
            HierarchyCycleError: the stored parent graph has a cycle.
        """
        started = time.monotonic()
        root = root.strip("/")
        report = RebuildReport(root=root, scope_folder_id=scope_folder_id, recursive=recursive)
        logger.info("rebuild_started", root=root, scope=scope_folder_id, recursive=recursive)

        items = await self.storage.list(root, recursive)
        items = await self._drop_ignored(root, items, report)
        planned = self._decode_all(root, items, report)
        self._check_duplicate_ids(planned)

        seen: Set[int] = set()
        renames: List[tuple[str, str]] = []
        with self.store.transaction():
            folder_ids = self._reconcile_all(root, scope_folder_id, planned, seen, renames, report)
            enumerated = {scope_folder_id} | (set(folder_ids.values()) if recursive else set())
            self._mark_absent(enumerated, seen, report)

        for old, new in sorted(renames, key=lambda r: r[0].count("/"), reverse=True):
            try:
                await self.storage.rename(old, new)
            except StorageIoError as e:
                # The row is committed; the next rebuild retries the rename
                logger.error("rename_failed", src=old, dst=new, error=str(e))
                report.add_issue(ErrorKind.STORAGE_IO, path=old, message=str(e))
                continue
            report.renamed += 1

        snapshot = resolve(self.store.list_all())
        if await self._sweep_broken_links(snapshot, scope_folder_id, seen, report):
            snapshot = resolve(self.store.list_all())

        if self.legacy is not None:
            report.unused_legacy = self.legacy.unused()
            for key in report.unused_legacy:
                logger.debug("legacy_entry_unused", key=key)

        logger.info(
            "rebuild_finished",
            processed=report.entries_processed,
            added=report.added,
            updated=report.updated,
            deleted=report.marked_deleted,
            renamed=report.renamed,
            issues=len(report.issues),
            seconds=round(time.monotonic() - started, 3),
        )
        return RebuildResult(report=report, snapshot=snapshot, seen_ids=seen)

    # -----------------------------
    # Pre-pass: filter and decode
    # -----------------------------

    async def _drop_ignored(self, root: str, items: List[StorageItem], report: RebuildReport) -> List[StorageItem]:
        dirs = {root} | {it.path for it in items if it.is_dir}
        names_present = {it.path for it in items if not it.is_dir}
        ignored_by_dir: Dict[str, Set[str]] = {}
        for d in dirs:
            ignore_path = join_path(d, self.ignore_file_name)
            if ignore_path not in names_present:
                continue
            try:
                text = await self.storage.read_text(ignore_path)
            except StorageIoError as e:
                # Unreadable ignore list: only the control file itself is skipped
                logger.warning("ignore_list_unreadable", path=ignore_path, error=str(e))
                report.add_issue(ErrorKind.STORAGE_IO, path=ignore_path, message=str(e))
                text = ""
            if text is not None:
                ignored_by_dir[d] = parse_ignore_list(text, self.ignore_file_name)

        kept: List[StorageItem] = []
        dropped_dirs: Set[str] = set()
        for it in sorted(items, key=lambda i: i.path):
            parent = it.parent
            if parent in dropped_dirs or it.name in ignored_by_dir.get(parent, ()):
                if it.is_dir:
                    dropped_dirs.add(it.path)
                report.skipped += 1
                continue
            kept.append(it)
        return kept

    def _decode_all(self, root: str, items: List[StorageItem], report: RebuildReport) -> List[_Planned]:
        planned: List[_Planned] = []
        bad_dirs: Set[str] = set()
        for it in items:
            if it.parent in bad_dirs:
                if it.is_dir:
                    bad_dirs.add(it.path)
                report.skipped += 1
                continue
            try:
                parsed = decode(it.name, is_folder=it.is_dir)
                if not it.is_dir and parsed.is_folder:
                    raise InvalidNameError(f"file name {it.name!r} has no type suffix")
            except InvalidNameError as e:
                logger.warning("invalid_name", path=it.path, error=str(e))
                report.add_issue(ErrorKind.INVALID_NAME, path=it.path, message=str(e))
                if it.is_dir:
                    bad_dirs.add(it.path)
                continue
            planned.append(_Planned(item=it, parsed=parsed))
        # Parents before children; stable within a level
        planned.sort(key=lambda p: (p.item.depth, p.item.path))
        return planned

    def _check_duplicate_ids(self, planned: List[_Planned]) -> None:
        claims: Dict[int, List[str]] = defaultdict(list)
        for p in planned:
            if p.parsed.id:
                claims[p.parsed.id].append(p.item.path)
        for eid, paths in claims.items():
            if len(paths) > 1:
                logger.error("duplicate_id", entity_id=eid, paths=paths)
                raise DuplicateIdError(eid, paths)

    # -----------------------------
    # Reconciliation
    # -----------------------------

    def _reconcile_all(
        self,
        root: str,
        scope_folder_id: int,
        planned: List[_Planned],
        seen: Set[int],
        renames: List[tuple[str, str]],
        report: RebuildReport,
    ) -> Dict[str, int]:
        folder_ids: Dict[str, int] = {root: scope_folder_id}
        claimed = {p.parsed.id for p in planned if p.parsed.id}
        for p in planned:
            parent_id = folder_ids.get(p.item.parent)
            if parent_id is None:
                # Parent folder failed to reconcile; its subtree is skipped
                report.skipped += 1
                continue
            try:
                ent = self._reconcile(p, parent_id, claimed, report)
            except DuplicateKeyError as e:
                logger.warning("duplicate_key", path=p.item.path, error=str(e))
                report.add_issue(ErrorKind.DUPLICATE_KEY, path=p.item.path, entity_id=p.parsed.id or None, message=str(e))
                if p.parsed.id:
                    seen.add(p.parsed.id)
                continue
            seen.add(ent.id)
            report.entries_processed += 1
            if p.item.is_dir:
                folder_ids[p.item.path] = ent.id
            new_name = encode(ent.name, ent.desc, ent.id, ent.type)
            if new_name != p.item.name:
                renames.append((p.item.path, join_path(p.item.parent, new_name)))
        return folder_ids

    def _reconcile(self, p: _Planned, parent_id: int, claimed: Set[int], report: RebuildReport) -> Entity:
        parsed, item = p.parsed, p.item
        type_ = FOLDER_TYPE if item.is_dir else parsed.type
        size = 0 if item.is_dir else item.size

        existing: Optional[Entity] = None
        if parsed.id:
            existing = self.store.get(parsed.id)
            if existing is None:
                logger.info("stale_id", path=item.path, entity_id=parsed.id)
        if existing is None:
            existing = self.store.find_by_key(parsed.name, parsed.desc, type_, parent_id)
            if existing is not None and existing.id in claimed and existing.id != parsed.id:
                # Another object in this pass carries that row's id
                raise DuplicateKeyError(f"{item.name!r} clashes with the object holding id {existing.id}")

        if existing is not None:
            return self._update(existing, parsed, type_, parent_id, size, item, report)
        return self._insert(parsed, type_, parent_id, size, item, report)

    def _update(
        self,
        existing: Entity,
        parsed: ParsedName,
        type_: str,
        parent_id: int,
        size: int,
        item: StorageItem,
        report: RebuildReport,
    ) -> Entity:
        fields = {"name": parsed.name, "desc": parsed.desc, "type": type_, "parent_id": parent_id, "size": size}
        date_added = existing.date_added
        if type_ != FOLDER_TYPE and existing.size != size:
            # Content changed: a new version of the same entity
            date_added = _item_date(item)
        fields["date_added"] = date_added
        fields["is_deleted"] = False

        changed = any(getattr(existing, k) != v for k, v in fields.items())
        if not changed:
            report.unchanged += 1
            return existing

        data = existing.model_dump()
        data.update(fields)
        ent = self.store.upsert(make_entity(**data))
        if existing.is_deleted:
            report.restored += 1
            logger.info("entity_restored", entity_id=ent.id, path=item.path)
        if ent.is_folder:
            report.folders_updated += 1
        else:
            report.files_updated += 1
        return ent

    def _insert(
        self,
        parsed: ParsedName,
        type_: str,
        parent_id: int,
        size: int,
        item: StorageItem,
        report: RebuildReport,
    ) -> Entity:
        fields = dict(
            name=parsed.name,
            desc=parsed.desc,
            type=type_,
            parent_id=parent_id,
            size=size,
            date_added=_item_date(item),
        )
        if type_ != FOLDER_TYPE and self.legacy is not None:
            stat = self.legacy.consume(parsed.name, parsed.desc, type_)
            if stat is not None:
                fields.update(date_added=stat.date_added, downloads=stat.downloads)
                if stat.old_url:
                    fields["extra_props"] = {"oldUrl": stat.old_url}
                report.legacy_matched += 1
            else:
                logger.debug("legacy_entry_missing", path=item.path)
                report.legacy_unmatched += 1
        ent = self.store.upsert(make_entity(**fields))
        if ent.is_folder:
            report.folders_added += 1
        else:
            report.files_added += 1
        logger.debug("entity_added", entity_id=ent.id, path=item.path)
        return ent

    # -----------------------------
    # Deletion detection
    # -----------------------------

    def _mark_absent(self, enumerated: Set[int], seen: Set[int], report: RebuildReport) -> None:
        for folder_id in sorted(enumerated):
            for ent in self.store.list_by_parent(folder_id):
                if ent.id in seen or ent.is_link:
                    continue
                if self.store.soft_delete(ent.id):
                    logger.info("entity_missing", entity_id=ent.id, name=ent.name, parent_id=folder_id)
                    report.marked_deleted += 1
                    report.add_issue(
                        ErrorKind.MISSING_STORAGE_OBJECT,
                        entity_id=ent.id,
                        message=f"{ent.name!r} no longer present in folder {folder_id}",
                    )

    async def _sweep_broken_links(
        self, snapshot: HierarchySnapshot, scope_folder_id: int, seen: Set[int], report: RebuildReport
    ) -> int:
        swept = 0
        for eid in sorted(snapshot.descendants(scope_folder_id)):
            if eid in seen or eid == scope_folder_id:
                continue
            ent = snapshot.entities[eid]
            if ent.is_link:
                continue
            path = snapshot.materialized_path[eid]
            if await self.storage.exists(path):
                continue
            if self.store.soft_delete(eid):
                logger.warning("broken_link", entity_id=eid, path=path)
                swept += 1
                report.marked_deleted += 1
                report.add_issue(
                    ErrorKind.MISSING_STORAGE_OBJECT,
                    path=path,
                    entity_id=eid,
                    message="storage object does not exist",
                )
        return swept


__all__ = ["IndexBuilder", "RebuildResult", "parse_ignore_list", "DEFAULT_IGNORE_FILE"]
