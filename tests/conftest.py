"""Pytest configuration and fixtures."""

from __future__ import annotations

import gc
import logging
import os
import shutil
import tempfile
import time
from collections.abc import Generator
from pathlib import Path

import pytest
from fakes import MemoryBlobStore, MemoryIndex, MemoryQueue

from docflow.app.idempotency import IdempotencyGuard
from docflow.utils.logconfig import remove_handlers


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    try:
        yield Path(tmpdir)
    finally:
        gc.collect()
        time.sleep(0.05)
        shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep DOCFLOW_* variables and stray .env files out of every test."""
    for name in list(os.environ):
        if name.startswith("DOCFLOW_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def success_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def failure_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def guard(success_store: MemoryBlobStore, failure_store: MemoryBlobStore) -> IdempotencyGuard:
    return IdempotencyGuard(success_store, failure_store, retry_attempts=3, retry_wait=0)


@pytest.fixture
def memory_index() -> MemoryIndex:
    return MemoryIndex()


@pytest.fixture
def memory_queue() -> MemoryQueue:
    return MemoryQueue()


@pytest.fixture(autouse=True)
def reset_logging() -> Generator[None, None, None]:
    """Drop handlers installed by ``configure_logging`` during a test."""
    root = logging.getLogger()
    level = root.level
    yield
    remove_handlers(root)
    root.setLevel(level)
