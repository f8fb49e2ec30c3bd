"""Storage backend contract.

The index builder talks to storage only through this protocol. Paths are
``/``-separated and relative to the backend's root; ``""`` is the root itself.
Implementations live in ``storage.filesystem`` and ``storage.object_store``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class StorageItem:
    """Lightweight metadata for one enumerated file or folder."""

    path: str
    size: int
    mtime: float
    is_dir: bool

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def parent(self) -> str:
        return parent_path(self.path)

    @property
    def depth(self) -> int:
        return self.path.count("/")


def join_path(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


def parent_path(path: str) -> str:
    return path.rsplit("/", 1)[0] if "/" in path else ""


class StorageBackend(Protocol):
    async def list(self, prefix: str, recursive: bool) -> list[StorageItem]:  # pragma: no cover - Protocol only
        ...

    async def exists(self, path: str) -> bool:  # pragma: no cover
        ...

    async def rename(self, old_path: str, new_path: str) -> None:  # pragma: no cover
        ...

    async def read_text(self, path: str) -> str | None:  # pragma: no cover
        ...


__all__ = ["StorageItem", "StorageBackend", "join_path", "parent_path"]
