"""Long-lived library service.

Owns the entry store, storage backend, index builder, download counter and
the currently published hierarchy snapshot. Readers always go through
``self.snapshot``; a rebuild computes a complete new snapshot and publishes
it with one attribute assignment, so concurrent reads see either the old or
the new tree and never a mix. A failed rebuild leaves the old one serving.

Lifecycle::

    svc = LibraryService.from_config(cfg)
    svc.init()
    report = await svc.refresh(secret)
    ...
    await svc.teardown()
"""

from __future__ import annotations

import asyncio
import hmac
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import List, Optional, Tuple

import structlog

from core.downloads import DEFAULT_FLUSH_INTERVAL_S, DownloadCounter
from core.errors import AccessDeniedError, EntityNotFoundError, NotAFileError, NotAFolderError
from core.index_builder import DEFAULT_IGNORE_FILE, IndexBuilder
from core.query import DEFAULT_BATCH_SIZE, QueryService, TermExpander, default_terms
from projections.hierarchy import ROOT_ID, HierarchySnapshot, resolve
from schemas.config import LibraryConfig
from schemas.entities import LINK_TYPE, Entity, make_entity
from schemas.report import RebuildReport
from storage.backend import StorageBackend
from storage.entry_store import EntryStore, SqliteEntryStore
from storage.filesystem import FilesystemStorage
from storage.json_store import JsonEntryStore
from storage.object_store import ObjectStorage, ObjectStoreClient
from tools.legacy_stats import LegacyStats
from tools.type_info import content_disposition, type_info

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DownloadInfo:
    """What a request handler needs to serve one download."""

    entity_id: int
    storage_path: str
    file_name: str
    mime_type: str
    disposition: str
    redirect_url: Optional[str] = None

    @property
    def is_redirect(self) -> bool:
        return self.redirect_url is not None


def open_store(config: LibraryConfig) -> EntryStore:
    if config.store == "json":
        return JsonEntryStore(config.db_path)
    return SqliteEntryStore(config.db_path)


def open_storage(config: LibraryConfig, object_client: Optional[ObjectStoreClient] = None) -> StorageBackend:
    if config.backend == "object":
        if object_client is None:
            raise ValueError("the object backend needs an object store client")
        return ObjectStorage(object_client, config.object_prefix)
    if config.files_root is None:
        raise ValueError("the filesystem backend needs files_root")
    return FilesystemStorage(config.files_root)


class LibraryService:
    """Index, browse and download facade over one library.

    Args:
        store: Entry store.
        storage: Storage backend holding the files.
        legacy: Optional legacy stats dataset consumed by rebuilds.
        refresh_secret: When set, ``refresh`` requires this secret.
        counters_path: Optional counters file kept in sync with downloads.
        flush_interval_s: Download flush interval.
        search_batch_size: Terms per compiled search pattern.
        recent_days: Default look-back for ``get_recently_added``.
        expander: Query to candidate search terms.
    """

    def __init__(
        self,
        store: EntryStore,
        storage: StorageBackend,
        *,
        legacy: Optional[LegacyStats] = None,
        refresh_secret: Optional[str] = None,
        counters_path: Optional[Path] = None,
        flush_interval_s: float = DEFAULT_FLUSH_INTERVAL_S,
        search_batch_size: int = DEFAULT_BATCH_SIZE,
        recent_days: int = 90,
        ignore_file_name: str = DEFAULT_IGNORE_FILE,
        expander: TermExpander = default_terms,
    ) -> None:
        self.store = store
        self.storage = storage
        self.builder = IndexBuilder(store, storage, legacy=legacy, ignore_file_name=ignore_file_name)
        self.downloads = DownloadCounter(store, interval_s=flush_interval_s, counters_path=counters_path)
        self.search_batch_size = search_batch_size
        self.recent_days = recent_days
        self.expander = expander
        self._secret = refresh_secret
        self._snapshot = HierarchySnapshot()
        self._lock = asyncio.Lock()
        self._stop = asyncio.Event()
        self._flush_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config: LibraryConfig, *, object_client: Optional[ObjectStoreClient] = None) -> "LibraryService":
        legacy = None
        if config.legacy_stats_path is not None and config.legacy_stats_path.exists():
            legacy = LegacyStats.load(config.legacy_stats_path)
        return cls(
            open_store(config),
            open_storage(config, object_client),
            legacy=legacy,
            refresh_secret=config.refresh_secret,
            counters_path=config.counters_path,
            flush_interval_s=config.flush_interval_s,
            search_batch_size=config.search_batch_size,
            recent_days=config.recent_days,
            ignore_file_name=config.ignore_file_name,
        )

    # -----------------------------
    # Lifecycle
    # -----------------------------

    @property
    def snapshot(self) -> HierarchySnapshot:
        return self._snapshot

    def init(self) -> HierarchySnapshot:
        """Merge persisted counters and publish the hierarchy from the store."""
        self.downloads.merge_counters_file()
        self._snapshot = resolve(self.store.list_all())
        logger.info("library_ready", entities=len(self._snapshot), orphans=len(self._snapshot.orphan_ids))
        return self._snapshot

    def start_background_flush(self) -> asyncio.Task:
        """Start the hourly download flush on the running loop."""
        if self._flush_task is None or self._flush_task.done():
            self._stop.clear()
            self._flush_task = asyncio.create_task(self.downloads.run_periodic_flush(self._stop))
        return self._flush_task

    async def teardown(self) -> None:
        self._stop.set()
        if self._flush_task is not None:
            await self._flush_task
            self._flush_task = None
        self.downloads.flush(force=True)
        self.store.close()
        logger.info("library_closed")

    def check_secret(self, secret: Optional[str]) -> None:
        if self._secret is None:
            return
        if secret is None or not hmac.compare_digest(secret.encode("utf-8"), self._secret.encode("utf-8")):
            logger.warning("refresh_denied")
            raise AccessDeniedError("refresh secret does not match")

    async def refresh(
        self,
        secret: Optional[str] = None,
        *,
        root: Optional[str] = None,
        scope_folder_id: int = ROOT_ID,
        recursive: bool = True,
    ) -> RebuildReport:
        """Rebuild the index and publish the new hierarchy.

        ``root`` defaults to the storage path of ``scope_folder_id``.

        Raises:
            AccessDeniedError: wrong or missing secret.
            NotAFolderError / EntityNotFoundError: bad scope folder.
            DuplicateIdError, HierarchyCycleError, StorageIoError: the rebuild
                aborted; the previous snapshot keeps serving.
        """
        self.check_secret(secret)
        async with self._lock:
            root, scope_folder_id = self._resolve_scope(root, scope_folder_id)
            # Persist counters before the builder reads the same rows
            self.downloads.flush(force=True)
            result = await self.builder.rebuild(root, scope_folder_id, recursive=recursive)
            self._snapshot = result.snapshot
        logger.info("library_refreshed", entities=len(self._snapshot), changed=result.report.has_changes)
        return result.report

    def _resolve_scope(self, root: Optional[str], scope_folder_id: int) -> Tuple[str, int]:
        """Pair the storage root with the folder id it belongs to.

        A root alone is looked up among the indexed folders; a root and a
        scope id must name the same folder.
        """
        snap = self._snapshot
        if root is not None:
            root = root.strip("/")
            if scope_folder_id == ROOT_ID:
                if not root:
                    return "", ROOT_ID
                for fid, path in snap.materialized_path.items():
                    if path == root and snap.is_folder(fid):
                        return root, fid
                raise EntityNotFoundError(f"no indexed folder lives at {root!r}")
        elif scope_folder_id == ROOT_ID:
            return "", ROOT_ID
        ent = snap.require(scope_folder_id)
        if not ent.is_folder:
            raise NotAFolderError(f"entity {scope_folder_id} is not a folder")
        path = snap.materialized_path[scope_folder_id]
        if root is not None and root != path:
            raise NotAFolderError(f"folder {scope_folder_id} lives at {path!r}, not {root!r}")
        return path, scope_folder_id

    # -----------------------------
    # Queries
    # -----------------------------

    def queries(self) -> QueryService:
        return QueryService(self._snapshot, batch_size=self.search_batch_size)

    def _overlay(self, entities: List[Entity]) -> List[Entity]:
        out = []
        for ent in entities:
            extra = self.downloads.pending(ent.id)
            out.append(ent.model_copy(update={"downloads": ent.downloads + extra}) if extra else ent)
        return out

    def get_entity(self, entity_id: int) -> Entity:
        """Live entity from the snapshot, or a soft-deleted row from the store."""
        ent = self._snapshot.get(entity_id) or self.store.get(entity_id)
        if ent is None:
            raise EntityNotFoundError(f"entity {entity_id} does not exist")
        return self._overlay([ent])[0]

    def get_children(self, folder_id: int = ROOT_ID) -> List[Entity]:
        return self._overlay(self.queries().get_children(folder_id))

    def get_all(self, folder_id: int = ROOT_ID) -> List[Entity]:
        return self._overlay(self.queries().get_all(folder_id))

    def get_recently_added(self, folder_id: int = ROOT_ID, since: Optional[date] = None) -> List[Entity]:
        if since is None:
            since = date.today() - timedelta(days=self.recent_days)
        return self._overlay(self.queries().get_recently_added(folder_id, since))

    def search(self, query: str, folder_id: int = ROOT_ID, *, case_sensitive: bool = False) -> List[Entity]:
        found = self.queries().search_query(folder_id, query, expander=self.expander, case_sensitive=case_sensitive)
        return self._overlay(found)

    # -----------------------------
    # Downloads and links
    # -----------------------------

    def record_download(self, entity_id: int) -> DownloadInfo:
        """Count one download and describe how to serve it."""
        ent = self._snapshot.require(entity_id)
        if ent.is_folder:
            raise NotAFileError(f"entity {entity_id} is a folder")
        path = self._snapshot.materialized_path[entity_id]
        info = type_info(ent.type)
        redirect = None
        if ent.is_link:
            redirect = ent.extra_props.get("url")
            if not redirect:
                raise EntityNotFoundError(f"link {entity_id} has no target url")
        self.downloads.increment(entity_id)
        self.downloads.flush()
        logger.debug("download_recorded", entity_id=entity_id, name=ent.name)
        return DownloadInfo(
            entity_id=entity_id,
            storage_path=path,
            file_name=path.rsplit("/", 1)[-1],
            mime_type=info.mime,
            disposition=content_disposition(ent.type),
            redirect_url=redirect,
        )

    def upsert_link(self, name: str, folder_id: int, url: str) -> Entity:
        """Insert or update a ``link`` entity pointing at ``url``.

        Links have no storage object; rebuilds never mark them deleted. The
        existing row (and its download count) is kept when the name repeats.
        """
        if not self._snapshot.is_folder(folder_id):
            raise NotAFolderError(f"entity {folder_id} is not a folder")
        with self.store.transaction():
            existing = self.store.find_by_key(name, "", LINK_TYPE, folder_id)
            if existing is not None:
                props = dict(existing.extra_props, url=url)
                ent = self.store.upsert(existing.model_copy(update={"extra_props": props, "is_deleted": False}))
            else:
                ent = self.store.upsert(make_entity(name=name, type=LINK_TYPE, parent_id=folder_id, extra_props={"url": url}))
        self._snapshot = resolve(self.store.list_all())
        logger.info("link_upserted", entity_id=ent.id, url=url)
        return ent


__all__ = ["DownloadInfo", "LibraryService", "open_store", "open_storage"]
