from __future__ import annotations

import json
import sqlite3
from datetime import date
from pathlib import Path

import pytest

from core.downloads import DownloadCounter
from schemas.entities import make_entity
from storage.counters_file import CounterEntry, read_counters, write_counters


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_flush_waits_for_interval_unless_forced(store, tmp_path: Path) -> None:
    book = store.upsert(make_entity(name="Book", type="pdf"))
    clock = _Clock()
    counter = DownloadCounter(store, interval_s=60, counters_path=tmp_path / "c.json", clock=clock)

    counter.increment(book.id)
    counter.increment(book.id)
    assert counter.pending(book.id) == 2
    assert counter.flush() == 0
    assert store.get(book.id).downloads == 0

    clock.now += 61
    assert counter.flush() == 1
    assert store.get(book.id).downloads == 2
    assert counter.pending_total == 0
    assert read_counters(tmp_path / "c.json")[book.id].downloads == 2

    counter.increment(book.id, 5)
    assert counter.flush(force=True) == 1
    assert store.get(book.id).downloads == 7


def test_failed_flush_keeps_pending_increments(store, monkeypatch) -> None:
    book = store.upsert(make_entity(name="Book", type="pdf"))
    counter = DownloadCounter(store, interval_s=60)
    counter.increment(book.id, 3)

    def locked(entity_id: int, by: int = 1) -> None:
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(store, "increment_downloads", locked)
    with pytest.raises(sqlite3.OperationalError):
        counter.flush(force=True)
    assert counter.pending(book.id) == 3

    monkeypatch.undo()
    counter.increment(book.id)
    assert counter.flush(force=True) == 1
    assert store.get(book.id).downloads == 4
    assert counter.pending_total == 0


def test_merge_only_raises_counters(store, tmp_path: Path) -> None:
    a = store.upsert(make_entity(name="A", type="pdf", downloads=10))
    b = store.upsert(make_entity(name="B", type="pdf", downloads=10))
    path = tmp_path / "c.json"
    path.write_text(
        json.dumps(
            {
                str(a.id): {"downloads": 15, "dateAdded": "2021-05-05"},
                str(b.id): {"downloads": 3, "dateAdded": "2021-05-05"},
            }
        )
    )
    counter = DownloadCounter(store, counters_path=path)
    assert counter.merge_counters_file() == 1
    assert store.get(a.id).downloads == 15
    assert store.get(b.id).downloads == 10


def test_no_counters_file_configured(store) -> None:
    counter = DownloadCounter(store)
    assert counter.merge_counters_file() == 0
    assert counter.flush(force=True) == 0


def test_counters_file_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "counters.json"
    ents = [
        make_entity(id=2, name="B", type="pdf", downloads=4, date_added=date(2022, 2, 2)),
        make_entity(id=1, name="A", type="coll", date_added=date(2021, 1, 1)),
    ]
    assert write_counters(path, ents) == 2
    text = path.read_text()
    assert text.index('"1"') < text.index('"2"')
    assert '\n  "1": {' in text
    assert read_counters(path) == {
        1: CounterEntry(downloads=0, date_added=date(2021, 1, 1)),
        2: CounterEntry(downloads=4, date_added=date(2022, 2, 2)),
    }
    assert read_counters(tmp_path / "missing.json") == {}
