from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from core.library import LibraryService, open_storage
from schemas.config import LibraryConfig, load_config
from storage.filesystem import FilesystemStorage
from storage.json_store import JsonEntryStore


def test_yaml_config_resolves_relative_paths(tmp_path: Path) -> None:
    cfg_file = tmp_path / "conf" / "library.yaml"
    cfg_file.parent.mkdir()
    cfg_file.write_text(
        yaml.safe_dump(
            {
                "files_root": "books",
                "store": "json",
                "db_path": "state/index.json",
                "refresh_secret": "pw",
                "search_batch_size": 100,
            }
        )
    )
    cfg = load_config(cfg_file)
    assert cfg.files_root == tmp_path / "conf" / "books"
    assert cfg.db_path == tmp_path / "conf" / "state" / "index.json"
    assert cfg.refresh_secret == "pw"
    assert cfg.search_batch_size == 100
    assert cfg.flush_interval_s == 3600
    assert cfg.recent_days == 90
    assert cfg.ignore_file_name == "ignore-files.txt"


def test_json_config(tmp_path: Path) -> None:
    cfg_file = tmp_path / "library.json"
    cfg_file.write_text(json.dumps({"files_root": str(tmp_path / "lib"), "db_path": str(tmp_path / "x.db")}))
    cfg = load_config(cfg_file)
    assert cfg.files_root == tmp_path / "lib"
    assert cfg.store == "sqlite"


def test_filesystem_backend_needs_root() -> None:
    with pytest.raises(ValidationError):
        LibraryConfig(backend="filesystem")


def test_object_backend_needs_client() -> None:
    cfg = LibraryConfig(backend="object", object_prefix="lib")
    with pytest.raises(ValueError):
        open_storage(cfg)


def test_service_from_config(tmp_path: Path) -> None:
    (tmp_path / "lib").mkdir()
    cfg = LibraryConfig(files_root=tmp_path / "lib", store="json", db_path=tmp_path / "index.json")
    svc = LibraryService.from_config(cfg)
    try:
        assert isinstance(svc.store, JsonEntryStore)
        assert isinstance(svc.storage, FilesystemStorage)
        assert svc.search_batch_size == 800
    finally:
        svc.store.close()


def test_filesystem_storage_without_root_is_rejected() -> None:
    cfg = LibraryConfig.model_construct(backend="filesystem", files_root=None)
    with pytest.raises(ValueError):
        open_storage(cfg)
