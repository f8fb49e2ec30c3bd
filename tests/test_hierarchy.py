from __future__ import annotations

import pytest

from core.errors import EntityNotFoundError, HierarchyCycleError
from projections.hierarchy import ROOT_ID, resolve
from schemas.entities import make_entity


def _abc():
    return [
        make_entity(id=1, parent_id=0, type="coll", name="A"),
        make_entity(id=2, parent_id=1, type="coll", name="B"),
        make_entity(id=3, parent_id=2, type="pdf", name="C", size=100),
    ]


def test_chain_paths_and_totals() -> None:
    snap = resolve(_abc())
    assert snap.folder_path(3) == "A/B"
    assert snap.descendants(1) >= {1, 2, 3}
    assert snap.folder_stats(1).total_size == 100
    assert snap.folder_stats(1).num_entries == 1
    assert snap.folder_stats(1).direct_entries == 0
    assert snap.folder_stats(2).direct_size == 100
    assert snap.parent_chain[3] == (3, 2, 1)
    assert snap.materialized_path[3] == "A{1}/B{2}/C{3}.pdf"
    assert snap.folder_path(3, encoded=True) == "A{1}/B{2}"


def test_root_covers_everything() -> None:
    snap = resolve(_abc())
    assert snap.descendants(ROOT_ID) == {1, 2, 3}
    assert snap.children(ROOT_ID) == (1,)
    assert snap.folder_stats(ROOT_ID).total_size == 100
    assert snap.is_folder(ROOT_ID)
    assert [f.name for f in snap.ancestors(3)] == ["A", "B"]


def test_deleted_rows_are_ignored() -> None:
    ents = _abc() + [make_entity(id=4, parent_id=1, type="pdf", name="Gone", size=50, is_deleted=True)]
    snap = resolve(ents)
    assert 4 not in snap
    assert snap.folder_stats(1).total_size == 100


def test_orphans_are_excluded_not_fatal() -> None:
    ents = _abc() + [
        make_entity(id=5, parent_id=99, type="pdf", name="Lost"),
        make_entity(id=6, parent_id=3, type="pdf", name="UnderFile"),
    ]
    snap = resolve(ents)
    assert snap.orphan_ids == {5, 6}
    assert 5 not in snap and 6 not in snap
    assert len(snap) == 3


def test_cycle_raises() -> None:
    ents = [
        make_entity(id=1, parent_id=2, type="coll", name="X"),
        make_entity(id=2, parent_id=1, type="coll", name="Y"),
    ]
    with pytest.raises(HierarchyCycleError):
        resolve(ents)


def test_self_parent_is_a_cycle() -> None:
    with pytest.raises(HierarchyCycleError):
        resolve([make_entity(id=1, parent_id=1, type="coll", name="Loop")])


def test_snapshot_is_read_only() -> None:
    snap = resolve(_abc())
    with pytest.raises(TypeError):
        snap.entities[9] = snap.entities[1]  # type: ignore[index]
    with pytest.raises(EntityNotFoundError):
        snap.require(42)
