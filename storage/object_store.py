"""Object-store storage backend.

Adapts any key/value object store client (S3-compatible or otherwise) to the
``StorageBackend`` contract. Object stores have no real directories: folder
items are synthesized from the ``/``-separated key prefixes that are observed,
and keys ending with ``/`` are treated as folder markers rather than files.

The client itself is an external collaborator; only the small
``ObjectStoreClient`` protocol below is required of it. Listing pages are
followed through continuation tokens until exhausted and the caller receives
a fully materialized list.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

import structlog

from core.errors import StorageIoError
from storage.backend import StorageItem, join_path, parent_path

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ObjectInfo:
    key: str
    size: int
    last_modified: float


@dataclass
class ObjectPage:
    objects: list[ObjectInfo] = field(default_factory=list)
    common_prefixes: list[str] = field(default_factory=list)
    next_token: Optional[str] = None


class ObjectStoreClient(Protocol):
    """Minimal async client surface used by :class:`ObjectStorage`.

    Keys passed to and returned from the client are full keys (including any
    root prefix). ``delimiter`` follows S3 semantics: when set, keys below the
    next delimiter are rolled up into ``common_prefixes``.
    """

    async def list_objects(
        self, prefix: str, *, delimiter: Optional[str] = None, continuation_token: Optional[str] = None
    ) -> ObjectPage:  # pragma: no cover - Protocol only
        ...

    async def head_object(self, key: str) -> bool:  # pragma: no cover
        ...

    async def copy_object(self, src_key: str, dst_key: str) -> None:  # pragma: no cover
        ...

    async def delete_object(self, key: str) -> None:  # pragma: no cover
        ...

    async def get_object(self, key: str) -> bytes:  # pragma: no cover
        ...


class ObjectStorage:
    """Library rooted at ``root_prefix`` inside an object store bucket."""

    def __init__(self, client: ObjectStoreClient, root_prefix: str = "") -> None:
        self.client = client
        self.root_prefix = root_prefix.strip("/")

    def _key(self, path: str) -> str:
        return join_path(self.root_prefix, path)

    def _rel(self, key: str) -> str:
        key = key.strip("/")
        if self.root_prefix and key.startswith(self.root_prefix + "/"):
            return key[len(self.root_prefix) + 1 :]
        if key == self.root_prefix:
            return ""
        return key

    def _dir_prefix(self, path: str) -> str:
        key = self._key(path)
        return key + "/" if key else ""

    async def _list_pages(self, prefix: str, delimiter: Optional[str]) -> ObjectPage:
        out = ObjectPage()
        token: Optional[str] = None
        pages = 0
        try:
            while True:
                page = await self.client.list_objects(prefix, delimiter=delimiter, continuation_token=token)
                out.objects.extend(page.objects)
                out.common_prefixes.extend(page.common_prefixes)
                pages += 1
                token = page.next_token
                if not token:
                    break
        except StorageIoError:
            raise
        except Exception as e:
            raise StorageIoError(f"listing {prefix!r} failed: {e}") from e
        logger.debug("object_listing_complete", prefix=prefix, pages=pages, objects=len(out.objects))
        return out

    async def list(self, prefix: str, recursive: bool) -> list[StorageItem]:
        base = prefix.strip("/")
        page = await self._list_pages(self._dir_prefix(base), None if recursive else "/")

        items: dict[str, StorageItem] = {}

        def add_dirs_up_to(rel: str) -> None:
            # Synthesize every folder between ``base`` and ``rel`` (inclusive)
            cur = rel
            while cur and cur != base:
                if cur in items:
                    break
                items[cur] = StorageItem(path=cur, size=0, mtime=0.0, is_dir=True)
                cur = parent_path(cur)

        for obj in page.objects:
            rel = self._rel(obj.key)
            if not rel or rel == base:
                continue
            if obj.key.endswith("/"):
                add_dirs_up_to(rel)
                continue
            add_dirs_up_to(parent_path(rel))
            items[rel] = StorageItem(path=rel, size=int(obj.size), mtime=float(obj.last_modified), is_dir=False)
        for cp in page.common_prefixes:
            rel = self._rel(cp)
            if rel and rel != base:
                add_dirs_up_to(rel)
        return sorted(items.values(), key=lambda it: it.path)

    async def exists(self, path: str) -> bool:
        try:
            if await self.client.head_object(self._key(path)):
                return True
            page = await self.client.list_objects(self._dir_prefix(path), delimiter="/")
        except Exception as e:
            raise StorageIoError(f"exists check for {path!r} failed: {e}") from e
        return bool(page.objects or page.common_prefixes)

    async def rename(self, old_path: str, new_path: str) -> None:
        """Rename one object, or every object below a folder prefix."""
        logger.info("renaming", src=old_path, dst=new_path)
        old_key, new_key = self._key(old_path), self._key(new_path)
        try:
            if await self.client.head_object(old_key):
                await self.client.copy_object(old_key, new_key)
                await self.client.delete_object(old_key)
                return
        except Exception as e:
            raise StorageIoError(f"renaming {old_path!r} failed: {e}") from e
        page = await self._list_pages(old_key + "/", None)
        try:
            for obj in page.objects:
                dst = new_key + obj.key[len(old_key) :]
                await self.client.copy_object(obj.key, dst)
                await self.client.delete_object(obj.key)
        except Exception as e:
            raise StorageIoError(f"renaming folder {old_path!r} failed: {e}") from e

    async def read_text(self, path: str) -> str | None:
        key = self._key(path)
        try:
            if not await self.client.head_object(key):
                return None
            data = await self.client.get_object(key)
        except Exception as e:
            raise StorageIoError(f"reading {path!r} failed: {e}") from e
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise StorageIoError(f"{path!r} is not valid UTF-8: {e}") from e


__all__ = ["ObjectInfo", "ObjectPage", "ObjectStoreClient", "ObjectStorage"]
