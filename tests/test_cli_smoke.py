from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from cli.main import app

runner = CliRunner()


def _write(p: Path, size: int = 1) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(b"x" * max(0, size))


def _args(tmp_path: Path) -> list[str]:
    return ["--db", str(tmp_path / "library.db"), "--files-root", str(tmp_path / "lib")]


def test_cli_rebuild_then_browse(tmp_path: Path) -> None:
    root = tmp_path / "lib"
    _write(root / "Poetry" / "Songs.pdf", 100)
    _write(root / "Readme.txt", 10)
    out = tmp_path / "report.json"

    res = runner.invoke(app, ["rebuild", "--out", str(out), *_args(tmp_path)])
    assert res.exit_code == 0, res.stdout
    assert "files_added" in res.stdout
    report = json.loads(out.read_text())
    assert report["files_added"] == 2
    assert report["folders_added"] == 1
    assert report["added"] == 3
    assert report["updated"] == 0
    assert (root / "Poetry{1}" / "Songs{3}.pdf").exists()

    res = runner.invoke(app, ["ls", *_args(tmp_path)])
    assert res.exit_code == 0
    assert "Poetry" in res.stdout
    assert "Readme" in res.stdout

    res = runner.invoke(app, ["search", "songs", *_args(tmp_path)])
    assert res.exit_code == 0
    assert "Songs" in res.stdout

    res = runner.invoke(app, ["recent", "--days", "7", "--folder", "1", *_args(tmp_path)])
    assert res.exit_code == 0
    assert "Songs" in res.stdout

    res = runner.invoke(app, ["show", "3", *_args(tmp_path)])
    assert res.exit_code == 0
    assert "Poetry" in res.stdout


def test_cli_reports_client_errors(tmp_path: Path) -> None:
    (tmp_path / "lib").mkdir()
    res = runner.invoke(app, ["ls", "404", *_args(tmp_path)])
    assert res.exit_code == 1
    assert "EntityNotFound" in res.stdout


def test_cli_uses_config_file(tmp_path: Path) -> None:
    _write(tmp_path / "lib" / "Book.pdf", 5)
    cfg = tmp_path / "library.yaml"
    cfg.write_text("files_root: lib\ndb_path: state/library.db\n")
    res = runner.invoke(app, ["rebuild", "--config", str(cfg)])
    assert res.exit_code == 0, res.stdout
    assert (tmp_path / "state" / "library.db").exists()
    assert (tmp_path / "lib" / "Book{1}.pdf").exists()
