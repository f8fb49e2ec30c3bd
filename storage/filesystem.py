"""Filesystem storage backend.

Walks a local library root and exposes it through the async
``StorageBackend`` contract. The walker is conservative:

- Does not follow symlinks (a linked folder could create a cycle)
- Skips hidden entries (names starting with a dot) by default
- Uses an explicit stack instead of recursion, depth-first, so pathological
  trees cannot exhaust the interpreter stack

Blocking calls run in the default executor to keep the event loop free on
large trees. ``OSError`` is surfaced as ``StorageIoError``.
"""

from __future__ import annotations

import asyncio
import functools
import os
from pathlib import Path
from typing import Callable, Iterable, TypeVar

import structlog

from core.errors import StorageIoError
from storage.backend import StorageItem, join_path
from tools.file_ops import rename_no_clobber

logger = structlog.get_logger(__name__)

R = TypeVar("R")


class FilesystemStorage:
    """Library root on a local filesystem.

    Args:
        root: Directory holding the library.
        exclude_hidden: Skip dot-files and dot-directories.
    """

    def __init__(self, root: Path, *, exclude_hidden: bool = True) -> None:
        self.root = Path(root)
        self.exclude_hidden = exclude_hidden

    def _abs(self, path: str) -> Path:
        return self.root.joinpath(*[p for p in path.split("/") if p]) if path else self.root

    async def _run(self, fn: Callable[..., R], *args) -> R:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(fn, *args))
        except OSError as e:
            raise StorageIoError(f"filesystem operation failed: {e}") from e

    async def list(self, prefix: str, recursive: bool) -> list[StorageItem]:
        return await self._run(lambda: list(self._walk(prefix, recursive)))

    def _walk(self, prefix: str, recursive: bool) -> Iterable[StorageItem]:
        """Synchronous depth-first walker yielding ``StorageItem`` entries."""
        stack = [prefix.strip("/")]
        while stack:
            rel_dir = stack.pop()
            with os.scandir(self._abs(rel_dir)) as it:
                entries = sorted(it, key=lambda e: e.name)
            subdirs: list[str] = []
            for entry in entries:
                if self.exclude_hidden and entry.name.startswith("."):
                    continue
                if entry.is_symlink():
                    logger.debug("symlink_skipped", path=entry.path)
                    continue
                st = entry.stat(follow_symlinks=False)
                rel = join_path(rel_dir, entry.name)
                if entry.is_dir(follow_symlinks=False):
                    yield StorageItem(path=rel, size=0, mtime=float(st.st_mtime), is_dir=True)
                    subdirs.append(rel)
                elif entry.is_file(follow_symlinks=False):
                    yield StorageItem(path=rel, size=int(st.st_size), mtime=float(st.st_mtime), is_dir=False)
            if recursive:
                # Reverse so the first subdirectory is popped (and walked) first
                stack.extend(reversed(subdirs))

    async def exists(self, path: str) -> bool:
        return await self._run(self._abs(path).exists)

    async def rename(self, old_path: str, new_path: str) -> None:
        logger.info("renaming", src=old_path, dst=new_path)
        await self._run(rename_no_clobber, self._abs(old_path), self._abs(new_path))

    async def read_text(self, path: str) -> str | None:
        p = self._abs(path)

        def _read() -> str | None:
            if not p.is_file():
                return None
            return p.read_text(encoding="utf-8")

        try:
            return await self._run(_read)
        except UnicodeDecodeError as e:
            raise StorageIoError(f"{path!r} is not valid UTF-8: {e}") from e


__all__ = ["FilesystemStorage"]
