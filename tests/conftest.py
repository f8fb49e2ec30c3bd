"""Pytest configuration and shared fixtures.

Ensures the repository root is importable (so tests can import packages like
`cli`, `core`, `tools` without an editable install), and provides helpers for
temporary library trees, a store and an in-memory object store client.
"""

from __future__ import annotations

import sys
import time
from pathlib import Path
from typing import Dict, Optional, Tuple

import pytest

# Make repo root importable for tests (avoid requiring `pip install -e .`).
_REPO_ROOT = Path(__file__).resolve().parent.parent
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from storage.entry_store import SqliteEntryStore  # noqa: E402
from storage.object_store import ObjectInfo, ObjectPage  # noqa: E402


@pytest.fixture
def make_tree(tmp_path: Path):
    """Factory to create a file tree under ``tmp_path / "lib"``.

    Example:
        make_tree({"a/b.pdf": "hello", "empty/": None})
    """

    def _make(spec: dict[str, str | bytes | None], *, root: Path | None = None) -> Path:
        base = root or (tmp_path / "lib")
        base.mkdir(parents=True, exist_ok=True)
        for rel, content in spec.items():
            p = base / rel
            if rel.endswith("/"):
                p.mkdir(parents=True, exist_ok=True)
                continue
            p.parent.mkdir(parents=True, exist_ok=True)
            if content is None:
                p.touch()
            elif isinstance(content, bytes):
                p.write_bytes(content)
            else:
                p.write_text(content, encoding="utf-8")
        return base

    return _make


@pytest.fixture
def store(tmp_path: Path):
    s = SqliteEntryStore(tmp_path / "library.db")
    try:
        yield s
    finally:
        s.close()


class FakeObjectStoreClient:
    """In-memory object store with S3-like listing and tiny pages."""

    def __init__(self, page_size: int = 2) -> None:
        self.page_size = page_size
        self.objects: Dict[str, Tuple[bytes, float]] = {}
        self.list_calls = 0

    def put(self, key: str, data: bytes | str = b"", mtime: Optional[float] = None) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.objects[key] = (data, time.time() if mtime is None else mtime)

    async def list_objects(
        self, prefix: str, *, delimiter: Optional[str] = None, continuation_token: Optional[str] = None
    ) -> ObjectPage:
        self.list_calls += 1
        entries: list[tuple[str, bool]] = []
        seen_prefixes: set[str] = set()
        for key in sorted(self.objects):
            if not key.startswith(prefix):
                continue
            rest = key[len(prefix) :]
            if delimiter and delimiter in rest:
                cp = prefix + rest.split(delimiter, 1)[0] + delimiter
                if cp not in seen_prefixes:
                    seen_prefixes.add(cp)
                    entries.append((cp, True))
                continue
            entries.append((key, False))
        start = int(continuation_token or 0)
        chunk = entries[start : start + self.page_size]
        page = ObjectPage()
        for key, is_prefix in chunk:
            if is_prefix:
                page.common_prefixes.append(key)
            else:
                data, mtime = self.objects[key]
                page.objects.append(ObjectInfo(key=key, size=len(data), last_modified=mtime))
        end = start + self.page_size
        page.next_token = str(end) if end < len(entries) else None
        return page

    async def head_object(self, key: str) -> bool:
        return key in self.objects

    async def copy_object(self, src_key: str, dst_key: str) -> None:
        self.objects[dst_key] = self.objects[src_key]

    async def delete_object(self, key: str) -> None:
        del self.objects[key]

    async def get_object(self, key: str) -> bytes:
        return self.objects[key][0]


@pytest.fixture
def object_client() -> FakeObjectStoreClient:
    return FakeObjectStoreClient(page_size=2)
