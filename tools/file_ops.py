"""Small filesystem helpers shared by the stores and the filesystem backend.

- ``atomic_write_text``: temp file + ``os.replace`` so readers never see a
  partially written sidecar or counters file
- ``rename_no_clobber``: rename that refuses to overwrite an existing target
"""

from __future__ import annotations

import os
from pathlib import Path


def ensure_parent(dst: Path) -> None:
    Path(dst).parent.mkdir(parents=True, exist_ok=True)


def atomic_write_text(path: Path, data: str) -> None:
    """Write text to ``path`` atomically.

    Uses a sibling ``.tmp`` file and ``os.replace`` to ensure the file either
    exists entirely or not at all.
    """
    path = Path(path)
    tmp = path.with_suffix(path.suffix + ".tmp")
    ensure_parent(tmp)
    tmp.write_text(data, encoding="utf-8")
    os.replace(tmp, path)


def rename_no_clobber(src: Path, dst: Path) -> None:
    """Rename ``src`` to ``dst``; raise ``FileExistsError`` if ``dst`` exists.

    Case-only renames on case-insensitive filesystems are allowed.
    """
    src = Path(src)
    dst = Path(dst)
    if dst.exists() and not _same_file(src, dst):
        raise FileExistsError(f"rename target already exists: {dst}")
    os.rename(src, dst)


def _same_file(a: Path, b: Path) -> bool:
    try:
        return os.path.samefile(a, b)
    except OSError:
        return False


__all__ = ["ensure_parent", "atomic_write_text", "rename_no_clobber"]
