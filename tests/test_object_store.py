from __future__ import annotations

import asyncio

import pytest

from core.errors import StorageIoError
from core.index_builder import IndexBuilder
from storage.object_store import ObjectStorage


def _seed(client) -> None:
    client.put("lib/Novels/Book.pdf", "abc", mtime=1_700_000_000)
    client.put("lib/Novels/Old/Poem.txt", "xy", mtime=1_700_000_000)
    client.put("lib/top.zip", "zz", mtime=1_700_000_000)
    client.put("lib/Empty/")
    client.put("elsewhere/skip.pdf", "no")


def test_recursive_listing_follows_pages_and_synthesizes_folders(object_client) -> None:
    _seed(object_client)
    storage = ObjectStorage(object_client, "lib")
    items = asyncio.run(storage.list("", True))

    assert object_client.list_calls == 2
    assert [(i.path, i.is_dir) for i in items] == [
        ("Empty", True),
        ("Novels", True),
        ("Novels/Book.pdf", False),
        ("Novels/Old", True),
        ("Novels/Old/Poem.txt", False),
        ("top.zip", False),
    ]
    book = next(i for i in items if i.path == "Novels/Book.pdf")
    assert book.size == 3


def test_single_level_listing_uses_common_prefixes(object_client) -> None:
    _seed(object_client)
    storage = ObjectStorage(object_client, "lib")
    items = asyncio.run(storage.list("", False))
    assert [(i.path, i.is_dir) for i in items] == [("Empty", True), ("Novels", True), ("top.zip", False)]


def test_exists_and_read_text(object_client) -> None:
    _seed(object_client)
    object_client.put("lib/ignore-files.txt", "a\nb\n")
    storage = ObjectStorage(object_client, "lib")
    assert asyncio.run(storage.exists("Novels/Book.pdf"))
    assert asyncio.run(storage.exists("Novels"))
    assert asyncio.run(storage.exists("Empty"))
    assert not asyncio.run(storage.exists("Nope"))
    assert asyncio.run(storage.read_text("ignore-files.txt")) == "a\nb\n"
    assert asyncio.run(storage.read_text("missing.txt")) is None


def test_undecodable_text_is_storage_io_error(object_client) -> None:
    object_client.put("lib/ignore-files.txt", b"\xff\xfe bad\n")
    storage = ObjectStorage(object_client, "lib")
    with pytest.raises(StorageIoError):
        asyncio.run(storage.read_text("ignore-files.txt"))


def test_folder_rename_moves_every_key(object_client) -> None:
    _seed(object_client)
    storage = ObjectStorage(object_client, "lib")
    asyncio.run(storage.rename("Novels", "Novels{1}"))
    keys = sorted(k for k in object_client.objects if k.startswith("lib/"))
    assert keys == ["lib/Empty/", "lib/Novels{1}/Book.pdf", "lib/Novels{1}/Old/Poem.txt", "lib/top.zip"]


def test_transport_failure_is_storage_io_error(object_client) -> None:
    async def broken(*args, **kwargs):
        raise ConnectionError("network down")

    object_client.list_objects = broken
    storage = ObjectStorage(object_client, "lib")
    with pytest.raises(StorageIoError):
        asyncio.run(storage.list("", True))


def test_rebuild_over_object_storage(object_client, store) -> None:
    _seed(object_client)
    builder = IndexBuilder(store, ObjectStorage(object_client, "lib"))

    report = asyncio.run(builder.rebuild()).report
    assert report.folders_added == 3
    assert report.files_added == 3
    assert report.renamed == 6
    assert sorted(k for k in object_client.objects if k.startswith("lib/")) == [
        "lib/Empty{1}/",
        "lib/Novels{2}/Book{4}.pdf",
        "lib/Novels{2}/Old{5}/Poem{6}.txt",
        "lib/top{3}.zip",
    ]
    assert "elsewhere/skip.pdf" in object_client.objects

    again = asyncio.run(builder.rebuild()).report
    assert not again.has_changes
    assert again.unchanged == 6
    assert again.issues == []
