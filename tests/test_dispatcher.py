"""Tests for the dispatcher loop."""

from __future__ import annotations

import pytest
from fakes import MemoryBlobStore, MemoryIndex, MemoryQueue

from docflow.app.batcher import BatchEnvelope, Batcher
from docflow.app.checkpoint import CheckpointCursor
from docflow.app.dispatcher import Dispatcher, DispatchState, IndexCandidateSource
from docflow.app.idempotency import IdempotencyGuard
from docflow.app.identity import ContentIdentity
from docflow.app.ports import ContentMetadata
from docflow.errors import CheckpointNotFoundError, TransientStoreError
from docflow.utils.shutdown import ShutdownSignal

PREFIX = "gs://bucket/"


def _populate(index: MemoryIndex, count: int) -> list[str]:
    """Register ``count`` distinct records and return their identities in index order."""
    registrar = ContentIdentity(index)
    identities = []
    for number in range(count):
        identity = registrar.identify(f"image-{number}".encode())
        registrar.register(
            identity,
            f"scans/img{number:03d}.jpg",
            ContentMetadata(mime_type="image/jpeg", width=10, height=10, size=100),
        )
        identities.append(identity)
    return sorted(identities)


def _dispatcher(
    index: MemoryIndex,
    queue: MemoryQueue,
    guard: IdempotencyGuard,
    checkpoints: MemoryBlobStore,
    *,
    batch_size: int = 2,
    marks: MemoryBlobStore | None = None,
    shutdown: ShutdownSignal | None = None,
    **kwargs,
) -> Dispatcher:
    return Dispatcher(
        source=IndexCandidateSource(index, uri_prefix=PREFIX, page_size=batch_size),
        cursor=CheckpointCursor(checkpoints, stage="dispatch"),
        batcher=Batcher(guard, max_size=batch_size),
        queue=queue,
        dispatch_marks=marks,
        retry_delay=0,
        shutdown=shutdown,
        **kwargs,
    )


def _published_keys(queue: MemoryQueue) -> list[list[str]]:
    return [BatchEnvelope.decode(data).keys for data in queue.published]


def test_publishes_full_batches_then_remainder(
    memory_index: MemoryIndex, memory_queue: MemoryQueue, guard: IdempotencyGuard
) -> None:
    identities = _populate(memory_index, 5)
    checkpoints = MemoryBlobStore()
    marks = MemoryBlobStore()

    dispatcher = _dispatcher(memory_index, memory_queue, guard, checkpoints, marks=marks)
    summary = dispatcher.run()

    assert _published_keys(memory_queue) == [identities[0:2], identities[2:4], identities[4:5]]
    assert summary.batches == 3
    assert summary.items_published == 5
    assert summary.stop_reason == "exhausted"
    assert checkpoints.values["dispatch"] == identities[-1]
    assert set(marks.values) == set(identities)
    assert dispatcher.state is DispatchState.DONE


def test_items_carry_uri_mime_and_size(
    memory_index: MemoryIndex, memory_queue: MemoryQueue, guard: IdempotencyGuard
) -> None:
    identities = _populate(memory_index, 1)

    _dispatcher(memory_index, memory_queue, guard, MemoryBlobStore()).run()

    item = BatchEnvelope.decode(memory_queue.published[0]).items[0]
    assert item.key == identities[0]
    assert item.uri.startswith(PREFIX + "scans/img")
    assert item.mime_type == "image/jpeg"
    assert item.size == 100


def test_skips_items_already_succeeded(
    memory_index: MemoryIndex, memory_queue: MemoryQueue, guard: IdempotencyGuard
) -> None:
    identities = _populate(memory_index, 4)
    guard.mark_success(identities[0])
    guard.mark_success(identities[3])

    summary = _dispatcher(memory_index, memory_queue, guard, MemoryBlobStore()).run()

    assert _published_keys(memory_queue) == [identities[1:3]]
    assert summary.skipped_done == 2


def test_publish_failure_keeps_checkpoint_and_reoffers_items(
    memory_index: MemoryIndex, memory_queue: MemoryQueue, guard: IdempotencyGuard
) -> None:
    identities = _populate(memory_index, 5)
    checkpoints = MemoryBlobStore()
    memory_queue.fail_publishes = 1

    summary = _dispatcher(
        memory_index, memory_queue, guard, checkpoints, batch_size=5, publish_attempts=1
    ).run()

    assert summary.stop_reason == "publish_failed"
    assert memory_queue.published == []
    assert checkpoints.values["dispatch"] == ""

    retry = _dispatcher(memory_index, memory_queue, guard, checkpoints, batch_size=5).run()

    assert _published_keys(memory_queue) == [identities]
    assert retry.batches == 1
    assert checkpoints.values["dispatch"] == identities[-1]


def test_publish_failure_retried_within_run(
    memory_index: MemoryIndex, memory_queue: MemoryQueue, guard: IdempotencyGuard
) -> None:
    identities = _populate(memory_index, 5)
    memory_queue.fail_publishes = 2

    summary = _dispatcher(
        memory_index, memory_queue, guard, MemoryBlobStore(), batch_size=5, publish_attempts=3
    ).run()

    assert memory_queue.publish_attempts == 3
    assert _published_keys(memory_queue) == [identities]
    assert summary.publish_failures == 2
    assert summary.admitted == 5
    assert summary.stop_reason == "exhausted"


def test_resume_is_inclusive_of_checkpoint(
    memory_index: MemoryIndex, memory_queue: MemoryQueue, guard: IdempotencyGuard
) -> None:
    identities = _populate(memory_index, 5)
    checkpoints = MemoryBlobStore()
    checkpoints.values["dispatch"] = identities[2]

    _dispatcher(memory_index, memory_queue, guard, checkpoints, batch_size=10).run()

    assert _published_keys(memory_queue) == [identities[2:]]


def test_crash_and_resume_never_dispatches_confirmed_items_twice(
    memory_index: MemoryIndex, memory_queue: MemoryQueue, guard: IdempotencyGuard
) -> None:
    identities = _populate(memory_index, 7)
    checkpoints = MemoryBlobStore()

    first = _dispatcher(memory_index, memory_queue, guard, checkpoints, max_batches=1).run()
    assert first.stop_reason == "max_batches"
    # The consumer confirms the first batch before the dispatcher restarts.
    for key in _published_keys(memory_queue)[0]:
        guard.mark_success(key)

    _dispatcher(memory_index, memory_queue, guard, checkpoints).run()

    published = [key for batch in _published_keys(memory_queue) for key in batch]
    assert sorted(published) == identities
    assert len(published) == len(set(published))


def test_missing_checkpoint_record_raises(
    memory_index: MemoryIndex, memory_queue: MemoryQueue, guard: IdempotencyGuard
) -> None:
    _populate(memory_index, 2)
    checkpoints = MemoryBlobStore()
    checkpoints.values["dispatch"] = "f" * 64

    with pytest.raises(CheckpointNotFoundError):
        _dispatcher(memory_index, memory_queue, guard, checkpoints).run()


def test_max_files_flushes_partial_batch(
    memory_index: MemoryIndex, memory_queue: MemoryQueue, guard: IdempotencyGuard
) -> None:
    identities = _populate(memory_index, 6)
    checkpoints = MemoryBlobStore()

    summary = _dispatcher(
        memory_index, memory_queue, guard, checkpoints, batch_size=4, max_files=3
    ).run()

    assert _published_keys(memory_queue) == [identities[:3]]
    assert summary.stop_reason == "max_files"
    assert checkpoints.values["dispatch"] == identities[2]


def test_undecodable_record_is_skipped(
    memory_index: MemoryIndex, memory_queue: MemoryQueue, guard: IdempotencyGuard
) -> None:
    identities = _populate(memory_index, 3)
    memory_index.documents[identities[1]] = {"hash": identities[1], "image_paths": []}

    summary = _dispatcher(memory_index, memory_queue, guard, MemoryBlobStore(), batch_size=5).run()

    assert _published_keys(memory_queue) == [[identities[0], identities[2]]]
    assert summary.decode_errors == 1


def test_dispatch_mark_failures_do_not_abort_batch(
    memory_index: MemoryIndex, memory_queue: MemoryQueue, guard: IdempotencyGuard
) -> None:
    identities = _populate(memory_index, 3)
    marks = MemoryBlobStore()
    marks.fail_keys.add(identities[1])
    checkpoints = MemoryBlobStore()

    summary = _dispatcher(
        memory_index, memory_queue, guard, checkpoints, batch_size=3, marks=marks
    ).run()

    assert summary.mark_errors == 1
    assert set(marks.values) == {identities[0], identities[2]}
    assert checkpoints.values["dispatch"] == identities[-1]


def test_all_done_source_still_advances_checkpoint(
    memory_index: MemoryIndex, memory_queue: MemoryQueue, guard: IdempotencyGuard
) -> None:
    identities = _populate(memory_index, 3)
    for identity in identities:
        guard.mark_success(identity)
    checkpoints = MemoryBlobStore()

    summary = _dispatcher(memory_index, memory_queue, guard, checkpoints).run()

    assert memory_queue.published == []
    assert summary.batches == 0
    assert checkpoints.values["dispatch"] == identities[-1]


def test_shutdown_stops_before_next_iteration(
    memory_index: MemoryIndex, memory_queue: MemoryQueue, guard: IdempotencyGuard
) -> None:
    _populate(memory_index, 3)
    shutdown = ShutdownSignal()
    shutdown.request("test")

    summary = _dispatcher(
        memory_index, memory_queue, guard, MemoryBlobStore(), shutdown=shutdown
    ).run()

    assert summary.stop_reason == "shutdown"
    assert memory_queue.published == []


def test_marker_read_timeout_pins_checkpoint_at_item(
    memory_index: MemoryIndex,
    memory_queue: MemoryQueue,
    guard: IdempotencyGuard,
    success_store: MemoryBlobStore,
) -> None:
    identities = _populate(memory_index, 3)
    checkpoints = MemoryBlobStore()
    success_store.exists_failures = 3

    summary = _dispatcher(memory_index, memory_queue, guard, checkpoints).run()

    assert summary.stop_reason == "exhausted"
    assert summary.transient_errors == 1
    assert _published_keys(memory_queue) == [identities[1:]]
    assert checkpoints.values["dispatch"] == identities[0]

    memory_queue.published.clear()
    resumed = _dispatcher(memory_index, memory_queue, guard, checkpoints).run()

    assert resumed.transient_errors == 0
    assert _published_keys(memory_queue) == [identities[:2], identities[2:]]
    assert checkpoints.values["dispatch"] == identities[-1]


class _PageTimeoutIndex(MemoryIndex):
    """Fails the ``fail_on``-th query once."""

    def __init__(self, fail_on: int) -> None:
        super().__init__()
        self.fail_on = fail_on
        self.queries = 0

    def query(self, *, start_after: str = "", limit: int):
        self.queries += 1
        if self.queries == self.fail_on:
            raise TransientStoreError("simulated page timeout")
        return super().query(start_after=start_after, limit=limit)


def test_index_page_timeout_resumes_after_last_record(
    memory_queue: MemoryQueue, guard: IdempotencyGuard
) -> None:
    index = _PageTimeoutIndex(fail_on=2)
    identities = _populate(index, 3)
    checkpoints = MemoryBlobStore()

    summary = _dispatcher(index, memory_queue, guard, checkpoints).run()

    assert summary.stop_reason == "exhausted"
    assert summary.transient_errors == 1
    assert _published_keys(memory_queue) == [identities[:2], identities[2:]]
    assert checkpoints.values["dispatch"] == identities[-1]


def test_persistent_index_timeout_stops_run(
    memory_index: MemoryIndex, memory_queue: MemoryQueue, guard: IdempotencyGuard
) -> None:
    _populate(memory_index, 3)
    checkpoints = MemoryBlobStore()
    memory_index.query_failures = 10

    summary = _dispatcher(
        memory_index, memory_queue, guard, checkpoints, read_attempts=2
    ).run()

    assert summary.stop_reason == "transient_error"
    assert summary.transient_errors == 2
    assert memory_queue.published == []
    assert checkpoints.values["dispatch"] == ""
