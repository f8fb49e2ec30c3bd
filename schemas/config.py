"""Library configuration schema and loader."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Literal, Optional, TypeVar

import yaml
from pydantic import BaseModel, Field, model_validator

T = TypeVar("T", bound="_JsonMixin")


class _JsonMixin(BaseModel):
    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls: type[T], data: str) -> T:
        return cls.model_validate_json(data)


class LibraryConfig(_JsonMixin):
    """Where the library lives and how the index is kept.

    ``files_root`` is required for the filesystem backend. The object backend
    takes its client from the caller; ``object_prefix`` scopes it to a key
    prefix.
    """

    backend: Literal["filesystem", "object"] = "filesystem"
    files_root: Optional[Path] = None
    object_prefix: str = ""

    store: Literal["sqlite", "json"] = "sqlite"
    db_path: Path = Path("library.db")
    counters_path: Optional[Path] = None
    legacy_stats_path: Optional[Path] = None

    refresh_secret: Optional[str] = None
    flush_interval_s: float = Field(default=3600.0, gt=0)
    recent_days: int = Field(default=90, ge=1)
    search_batch_size: int = Field(default=800, ge=1)
    ignore_file_name: str = "ignore-files.txt"

    @model_validator(mode="after")
    def _check_backend(self) -> "LibraryConfig":
        if self.backend == "filesystem" and self.files_root is None:
            raise ValueError("files_root is required for the filesystem backend")
        return self

    def resolve_paths(self, base: Path) -> "LibraryConfig":
        """Return a copy with relative paths anchored at ``base``."""
        updates = {}
        for name in ("files_root", "db_path", "counters_path", "legacy_stats_path"):
            value = getattr(self, name)
            if value is not None and not value.is_absolute():
                updates[name] = base / value
        return self.model_copy(update=updates)


def load_config(path: Path) -> LibraryConfig:
    """Load a config file (JSON or YAML).

    Relative paths inside the file are taken relative to the file's folder.
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise TypeError("config must be a mapping at top-level")
    return LibraryConfig.model_validate(data).resolve_paths(path.parent)


__all__ = ["LibraryConfig", "load_config"]
