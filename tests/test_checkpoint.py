"""Tests for the checkpoint cursor and skip-until-checkpoint gate."""

from __future__ import annotations

from fakes import MemoryBlobStore

from docflow.app.checkpoint import CheckpointCursor, CheckpointGate, should_skip


def test_read_initialises_empty_cursor() -> None:
    store = MemoryBlobStore()
    cursor = CheckpointCursor(store, stage="dispatch")

    assert cursor.read() == ""
    assert store.values == {"dispatch": ""}


def test_advance_persists_and_reports_change() -> None:
    store = MemoryBlobStore()
    cursor = CheckpointCursor(store, stage="dedupe")
    cursor.read()

    assert cursor.advance("img010.jpg") is True
    assert cursor.advance("img010.jpg") is False
    assert store.values["dedupe"] == "img010.jpg"
    assert CheckpointCursor(store, stage="dedupe").read() == "img010.jpg"


def test_reset_clears_cursor() -> None:
    store = MemoryBlobStore()
    cursor = CheckpointCursor(store, stage="dedupe")
    cursor.advance("img010.jpg")

    cursor.reset()

    assert store.values["dedupe"] == ""


def test_should_skip_contract() -> None:
    assert should_skip("a", "", False) is False
    assert should_skip("a", "b", False) is True
    assert should_skip("b", "b", False) is False
    assert should_skip("a", "b", True) is False


def test_resume_from_checkpoint_scenario() -> None:
    store = MemoryBlobStore()
    store.values["dedupe"] = "img042.jpg"
    gate = CheckpointCursor(store, stage="dedupe").gate()

    enumeration = ["img040.jpg", "img041.jpg", "img042.jpg", "img043.jpg"]
    processed = {name for name in enumeration if not gate.should_skip(name)}

    assert processed == {"img042.jpg", "img043.jpg"}
    assert gate.skipped == 2


def test_gate_never_skips_after_reaching_checkpoint() -> None:
    gate = CheckpointGate(cursor="b")

    results = [gate.should_skip(name) for name in ["a", "b", "a", "z", "b"]]

    assert results == [True, False, False, False, False]
    assert gate.reached is True


def test_empty_checkpoint_processes_everything() -> None:
    gate = CheckpointGate(cursor="")

    assert gate.reached is True
    assert not any(gate.should_skip(name) for name in ["a", "b", "c"])
    assert gate.skipped == 0
