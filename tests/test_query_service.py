from __future__ import annotations

from datetime import date

import pytest

from core.errors import EntityNotFoundError, NotAFolderError
from core.query import QueryService, default_terms, group_by_name, sort_entities
from projections.hierarchy import resolve
from schemas.entities import make_entity


def _library():
    return resolve(
        [
            make_entity(id=1, type="coll", name="Poetry"),
            make_entity(id=2, type="coll", name="Fiction"),
            make_entity(id=3, type="pdf", name="zebra tales", size=10, date_added=date(2024, 1, 1)),
            make_entity(id=4, type="pdf", name="Apple Songs", size=20, date_added=date(2024, 6, 1)),
            make_entity(id=5, type="zip", name="mango", size=30, date_added=date(2023, 1, 1)),
            make_entity(id=6, parent_id=2, type="pdf", name="Deep Story", size=40, date_added=date(2024, 7, 1)),
            make_entity(id=7, parent_id=2, type="coll", name="Sub"),
            make_entity(id=8, parent_id=7, type="txt", name="story notes", size=5, date_added=date(2024, 8, 1)),
        ]
    )


def test_children_sorted_folders_first_then_name() -> None:
    q = QueryService(_library())
    assert [e.id for e in q.get_children(0)] == [2, 1, 4, 5, 3]


def test_sort_ties_broken_by_id() -> None:
    ents = [
        make_entity(id=9, type="pdf", name="Same"),
        make_entity(id=3, type="zip", name="Same"),
        make_entity(id=5, type="coll", name="Zed"),
    ]
    assert [e.id for e in sort_entities(ents)] == [5, 3, 9]


def test_get_all_includes_folder_itself() -> None:
    q = QueryService(_library())
    assert {e.id for e in q.get_all(2)} == {2, 6, 7, 8}
    assert len(q.get_all(0)) == 8


def test_query_errors() -> None:
    q = QueryService(_library())
    with pytest.raises(NotAFolderError):
        q.get_children(3)
    with pytest.raises(EntityNotFoundError):
        q.get_all(404)


def test_recently_added_is_strictly_after() -> None:
    q = QueryService(_library())
    assert [e.id for e in q.get_recently_added(0, date(2024, 6, 1))] == [6, 8]
    assert [e.id for e in q.get_recently_added(2, date(2024, 7, 15))] == [8]


def test_search_case_handling_and_scope() -> None:
    q = QueryService(_library())
    assert [e.id for e in q.search(0, ["story"])] == [6, 8]
    assert [e.id for e in q.search(0, ["story"], case_sensitive=True)] == [8]
    assert [e.id for e in q.search(7, ["story"])] == [8]
    assert q.search(0, []) == []
    # Regex metacharacters are literal
    assert q.search(0, [".*"]) == []


def test_search_batches_match_unbounded_query() -> None:
    snap = _library()
    terms = [f"nomatch{i}" for i in range(1995)] + ["zebra", "MANGO", "notes", "song", "zebra"]
    batched = QueryService(snap, batch_size=800).search(0, terms)
    unbounded = QueryService(snap, batch_size=len(terms)).search(0, terms)
    assert [e.id for e in batched] == [e.id for e in unbounded] == [4, 5, 8, 3]


def test_search_query_uses_expander() -> None:
    q = QueryService(_library())
    assert default_terms("  apple   mango ") == ["apple", "mango"]
    hits = q.search_query(0, "anything", expander=lambda s: ["deep"])
    assert [e.id for e in hits] == [6]


def test_group_by_name_sums_downloads() -> None:
    ents = [
        make_entity(id=1, type="pdf", name="Book", downloads=3),
        make_entity(id=2, type="zip", name="Book", downloads=4),
        make_entity(id=3, type="pdf", name="Other", downloads=1),
    ]
    groups = group_by_name(ents)
    assert [g.name for g in groups] == ["Book", "Other"]
    assert groups[0].downloads == 7
    assert not groups[0].is_folder
