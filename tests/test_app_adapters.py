"""Tests for the filesystem adapters."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from docflow.app.adapters import (
    FileSystemBlobStore,
    FileSystemContentIndex,
    FileSystemObjectSource,
)
from docflow.errors import StoreAccessDenied, TransientStoreError


def test_blob_store_round_trip(temp_dir: Path) -> None:
    store = FileSystemBlobStore(temp_dir / "refs")

    assert store.get("missing") is None
    assert store.exists("missing") is False

    store.set("abc", "")
    store.set("nested/key.log", "boom")

    assert store.exists("abc") is True
    assert store.get("abc") == ""
    assert store.get("nested/key.log") == "boom"
    assert store.count() == 2


def test_blob_store_rejects_escaping_keys(temp_dir: Path) -> None:
    store = FileSystemBlobStore(temp_dir)

    with pytest.raises(ValueError):
        store.set("../outside", "x")
    with pytest.raises(ValueError):
        store.get("/etc/passwd")


@pytest.mark.skipif(os.name != "posix" or os.geteuid() == 0, reason="needs non-root POSIX")
def test_blob_store_maps_permission_errors(temp_dir: Path) -> None:
    root = temp_dir / "locked"
    root.mkdir()
    root.chmod(0o500)
    try:
        with pytest.raises(StoreAccessDenied):
            FileSystemBlobStore(root).set("abc", "")
    finally:
        root.chmod(0o700)


def test_blob_store_maps_other_os_errors(temp_dir: Path) -> None:
    blocker = temp_dir / "file"
    blocker.write_text("not a directory")

    with pytest.raises(TransientStoreError):
        FileSystemBlobStore(blocker).set("abc", "")


def test_index_orders_and_pages_by_identity(temp_dir: Path) -> None:
    index = FileSystemContentIndex(temp_dir / "index")
    for identity in ["c" * 64, "a" * 64, "b" * 64, "d" * 64]:
        index.put(identity, {"hash": identity})

    first = index.query(limit=2)
    second = index.query(start_after=first[-1][0], limit=2)
    third = index.query(start_after=second[-1][0], limit=2)

    assert [identity for identity, _ in first] == ["a" * 64, "b" * 64]
    assert [identity for identity, _ in second] == ["c" * 64, "d" * 64]
    assert third == []
    assert index.count() == 4
    assert index.get("a" * 64) == {"hash": "a" * 64}
    assert index.get("e" * 64) is None


def test_index_corrupt_document_surfaces_as_record(temp_dir: Path) -> None:
    index = FileSystemContentIndex(temp_dir / "index")
    index.put("a" * 64, {"hash": "a" * 64})
    (index.records_dir / f"{'b' * 64}.json").write_text("{not json", encoding="utf-8")

    results = index.query(limit=10)

    assert [identity for identity, _ in results] == ["a" * 64, "b" * 64]
    assert results[1][1] == {"hash": "b" * 64}


def test_index_processed_markers(temp_dir: Path) -> None:
    index = FileSystemContentIndex(temp_dir / "index")

    assert index.is_processed("scans/a b/1.jpg") is False
    index.mark_processed("scans/a b/1.jpg", "a" * 64)

    assert index.is_processed("scans/a b/1.jpg") is True
    assert index.is_processed("scans/a b/2.jpg") is False


def test_object_source_lists_sorted_relative_names(temp_dir: Path) -> None:
    (temp_dir / "b").mkdir()
    (temp_dir / "a").mkdir()
    (temp_dir / "b" / "2.jpg").write_bytes(b"22")
    (temp_dir / "a" / "1.jpg").write_bytes(b"1")
    (temp_dir / "a" / "notes.txt").write_bytes(b"ignored")

    source = FileSystemObjectSource(temp_dir)
    objects = list(source.list_objects("**/*.jpg"))

    assert [(obj.name, obj.size) for obj in objects] == [("a/1.jpg", 1), ("b/2.jpg", 2)]
    assert source.read_bytes("b/2.jpg") == b"22"


def test_object_source_missing_root(temp_dir: Path) -> None:
    with pytest.raises(FileNotFoundError):
        list(FileSystemObjectSource(temp_dir / "missing").list_objects("**/*.jpg"))
