"""libindex CLI entrypoint.

Commands:
- rebuild: reconcile the entry store with the files on disk
- ls: list the children of a folder
- search: substring search below a folder
- recent: recently added entries below a folder
- show: one entity with its folder path and stats

Every command takes ``--config`` (JSON or YAML) or ``--db``/``--files-root``.
"""

from __future__ import annotations

import asyncio
import sys
from datetime import date, timedelta
from pathlib import Path
from typing import List, NoReturn

import typer
from rich.console import Console
from rich.table import Table

from core.errors import LibraryError
from core.library import LibraryService
from schemas.config import LibraryConfig, load_config
from schemas.entities import Entity
from tools.type_info import readable_size, type_info

app = typer.Typer(add_completion=False, help="libindex: catalog and browse a file library")
console = Console()

_CONFIG_OPT = typer.Option(None, "--config", exists=True, readable=True, help="Config file (JSON or YAML)")
_DB_OPT = typer.Option(None, "--db", help="Path to the entry store")
_ROOT_OPT = typer.Option(None, "--files-root", help="Library root folder")


def default_db_path() -> Path:
    """Return the default path to the entry store.

    Returns:
        Path: Path to `~/.libindex/library.db`.
    """
    base = Path.home() / ".libindex"
    base.mkdir(parents=True, exist_ok=True)
    return base / "library.db"


def _load(config: Path | None, db: Path | None, files_root: Path | None) -> LibraryConfig:
    if config is not None:
        cfg = load_config(config)
        updates = {}
        if db is not None:
            updates["db_path"] = db
        if files_root is not None:
            updates["files_root"] = files_root
        return cfg.model_copy(update=updates)
    return LibraryConfig(db_path=db or default_db_path(), files_root=files_root or Path.cwd())


def _open(config: Path | None, db: Path | None, files_root: Path | None) -> LibraryService:
    svc = LibraryService.from_config(_load(config, db, files_root))
    svc.init()
    return svc


def _close(svc: LibraryService) -> None:
    asyncio.run(svc.teardown())


def _fail(err: LibraryError) -> NoReturn:
    console.print(f"[red]{err.kind.value}:[/red] {err}")
    raise typer.Exit(code=1)


def _entity_table(title: str, entities: List[Entity], svc: LibraryService) -> Table:
    table = Table(title=title)
    table.add_column("ID", justify="right")
    table.add_column("Type")
    table.add_column("Name")
    table.add_column("Desc")
    table.add_column("Size", justify="right")
    table.add_column("Added")
    table.add_column("Downloads", justify="right")
    for ent in entities:
        if ent.is_folder:
            size = readable_size(svc.snapshot.folder_stats(ent.id).total_size)
        else:
            size = readable_size(ent.size)
        table.add_row(
            str(ent.id),
            type_info(ent.type).label,
            ent.name,
            ent.desc,
            size,
            ent.date_added.isoformat(),
            str(ent.downloads),
        )
    return table


@app.command()
def rebuild(
    root: str = typer.Argument("", help="Storage path of the scope folder ('' for the library root)"),
    scope: int = typer.Option(0, "--scope", min=0, help="Entity id of the scope folder"),
    recursive: bool = typer.Option(True, "--recursive/--single-level", help="Walk the whole subtree"),
    legacy_stats: Path | None = typer.Option(None, "--legacy-stats", exists=True, help="Legacy stats JSON"),
    out: Path | None = typer.Option(None, "--out", help="Write the rebuild report JSON to file"),
    config: Path | None = _CONFIG_OPT,
    db: Path | None = _DB_OPT,
    files_root: Path | None = _ROOT_OPT,
) -> None:
    """Reconcile the entry store with storage and print the report."""
    cfg = _load(config, db, files_root)
    if legacy_stats is not None:
        cfg = cfg.model_copy(update={"legacy_stats_path": legacy_stats})
    svc = LibraryService.from_config(cfg)
    svc.init()
    console.log("Starting rebuild…")
    try:
        report = asyncio.run(
            svc.refresh(cfg.refresh_secret, root=root or None, scope_folder_id=scope, recursive=recursive)
        )
    except LibraryError as e:
        _close(svc)
        _fail(e)
    _close(svc)

    table = Table(title=f"Rebuild Report: {report.root or '/'}")
    table.add_column("Counter")
    table.add_column("Value", justify="right")
    for name in (
        "entries_processed",
        "files_added",
        "files_updated",
        "folders_added",
        "folders_updated",
        "restored",
        "unchanged",
        "renamed",
        "marked_deleted",
        "skipped",
        "legacy_matched",
        "legacy_unmatched",
    ):
        table.add_row(name, str(getattr(report, name)))
    console.print(table)

    if report.issues:
        issues = Table(title=f"Issues ({len(report.issues)})")
        issues.add_column("Kind")
        issues.add_column("Path")
        issues.add_column("Message")
        for issue in report.issues:
            issues.add_row(issue.kind.value, issue.path or str(issue.entity_id or ""), issue.message)
        console.print(issues)

    if out:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(report.model_dump_json(indent=2))
        console.log(f"Wrote report JSON to {out}")


@app.command("ls")
def list_folder(
    folder_id: int = typer.Argument(0, min=0, help="Folder id (0 = root)"),
    config: Path | None = _CONFIG_OPT,
    db: Path | None = _DB_OPT,
    files_root: Path | None = _ROOT_OPT,
) -> None:
    """List the children of a folder."""
    svc = _open(config, db, files_root)
    try:
        children = svc.get_children(folder_id)
        title = svc.snapshot.get(folder_id).name if folder_id else "/"
    except LibraryError as e:
        _close(svc)
        _fail(e)
    console.print(_entity_table(title, children, svc))
    _close(svc)


@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
    folder: int = typer.Option(0, "--folder", min=0, help="Limit to this folder"),
    case_sensitive: bool = typer.Option(False, "--case-sensitive", help="Match case"),
    config: Path | None = _CONFIG_OPT,
    db: Path | None = _DB_OPT,
    files_root: Path | None = _ROOT_OPT,
) -> None:
    """Search entity names below a folder."""
    svc = _open(config, db, files_root)
    try:
        found = svc.search(query, folder, case_sensitive=case_sensitive)
    except LibraryError as e:
        _close(svc)
        _fail(e)
    console.print(_entity_table(f"Search: {query} ({len(found)} hits)", found, svc))
    _close(svc)


@app.command()
def recent(
    days: int = typer.Option(90, "--days", min=1, help="Look-back window in days"),
    folder: int = typer.Option(0, "--folder", min=0, help="Limit to this folder"),
    config: Path | None = _CONFIG_OPT,
    db: Path | None = _DB_OPT,
    files_root: Path | None = _ROOT_OPT,
) -> None:
    """List entries added in the last DAYS days."""
    svc = _open(config, db, files_root)
    try:
        found = svc.get_recently_added(folder, date.today() - timedelta(days=days))
    except LibraryError as e:
        _close(svc)
        _fail(e)
    console.print(_entity_table(f"Added in the last {days} days", found, svc))
    _close(svc)


@app.command()
def show(
    entity_id: int = typer.Argument(..., min=1, help="Entity id"),
    config: Path | None = _CONFIG_OPT,
    db: Path | None = _DB_OPT,
    files_root: Path | None = _ROOT_OPT,
) -> None:
    """Show one entity, including soft-deleted ones."""
    svc = _open(config, db, files_root)
    try:
        ent = svc.get_entity(entity_id)
    except LibraryError as e:
        _close(svc)
        _fail(e)
    snap = svc.snapshot
    table = Table(title=f"Entity {ent.id}", show_header=False)
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("name", ent.name)
    table.add_row("desc", ent.desc)
    table.add_row("type", f"{ent.type} ({type_info(ent.type).label})")
    table.add_row("folder", snap.folder_path(ent.id) if ent.id in snap else "")
    table.add_row("storage path", snap.materialized_path.get(ent.id, ""))
    table.add_row("date added", ent.date_added.isoformat())
    table.add_row("downloads", str(ent.downloads))
    table.add_row("deleted", "yes" if ent.is_deleted else "no")
    if ent.is_folder:
        stats = snap.folder_stats(ent.id)
        table.add_row("entries", str(stats.num_entries))
        table.add_row("total size", readable_size(stats.total_size))
    else:
        table.add_row("size", readable_size(ent.size))
    console.print(table)
    _close(svc)


def main() -> int:
    """Entry point for `python -m cli.main`."""
    app()
    return 0


if __name__ == "__main__":
    sys.exit(main())
