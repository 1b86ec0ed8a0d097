"""Dispatcher loop: index enumeration → admission → batch publish → checkpoint."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel

from docflow.app.batcher import DEFAULT_MIME_TYPE, BatchEnvelope, BatchItem, Batcher
from docflow.app.checkpoint import CheckpointCursor
from docflow.app.ports import BlobStorePort, ContentIndexPort, QueuePort, decode_record
from docflow.errors import CheckpointNotFoundError, PublishError, RecordDecodeError, TransientStoreError
from docflow.utils.paths import join_uri
from docflow.utils.shutdown import ShutdownSignal

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Candidate:
    """One enumerated position; ``item`` is None when the record failed to decode."""

    position: str
    item: BatchItem | None
    error: str | None = None


class IndexCandidateSource:
    """Enumerate the content index in identity order, one page at a time.

    When resuming, the checkpoint record is yielded first so the checkpoint
    gate sees it, then pages strictly after it follow. With ``inclusive``
    False only the records strictly after ``cursor`` are yielded.
    """

    def __init__(self, index: ContentIndexPort, *, uri_prefix: str, page_size: int) -> None:
        self._index = index
        self._uri_prefix = uri_prefix
        self._page_size = page_size

    def candidates(self, cursor: str, *, inclusive: bool = True) -> Iterator[Candidate]:
        if cursor and inclusive:
            try:
                document = self._index.get(cursor)
            except RecordDecodeError:
                document = {"hash": cursor}
            if document is None:
                raise CheckpointNotFoundError(
                    f"checkpoint {cursor} is not present in the content index; "
                    "reset the dispatch checkpoint to start over"
                )
            yield self._to_candidate(cursor, document)

        start_after = cursor
        while True:
            page = self._index.query(start_after=start_after, limit=self._page_size)
            if not page:
                return
            for identity, document in page:
                yield self._to_candidate(identity, document)
            start_after = page[-1][0]

    def _to_candidate(self, identity: str, document: dict) -> Candidate:
        try:
            record = decode_record(document)
        except RecordDecodeError as exc:
            return Candidate(position=identity, item=None, error=str(exc))
        item = BatchItem(
            key=record.hash,
            uri=join_uri(self._uri_prefix, record.image_paths[0]),
            mime_type=record.mime_type or DEFAULT_MIME_TYPE,
            size=record.size,
        )
        return Candidate(position=identity, item=item)


class DispatchState(str, Enum):
    ENUMERATING = "enumerating"
    ADMITTING = "admitting"
    FLUSHING = "flushing"
    CHECKPOINT_ADVANCING = "checkpoint_advancing"
    DONE = "done"


class DispatchSummary(BaseModel):
    """Counters reported at the end of a dispatch run."""

    files: int = 0
    skipped_to_checkpoint: int = 0
    admitted: int = 0
    skipped_done: int = 0
    skipped_invalid: int = 0
    decode_errors: int = 0
    batches: int = 0
    items_published: int = 0
    publish_failures: int = 0
    mark_errors: int = 0
    transient_errors: int = 0
    checkpoint: str = ""
    stop_reason: str = "exhausted"


class Dispatcher:
    """Single-instance dispatch loop.

    Batches are published strictly one at a time in enumeration order; the
    checkpoint advances only after a publish succeeds. A failed publish keeps
    the checkpoint and re-offers the same batch on the next cycle. After
    ``publish_attempts`` consecutive failures the run stops.

    A transient error while checking an item's markers leaves the item out of
    this run and pins the checkpoint at its position, so the next run offers
    it again. A transient error while reading the index reopens enumeration
    after the last record seen, up to ``read_attempts`` times in a row.
    """

    def __init__(
        self,
        *,
        source: IndexCandidateSource,
        cursor: CheckpointCursor,
        batcher: Batcher,
        queue: QueuePort,
        dispatch_marks: BlobStorePort | None = None,
        max_files: int = 0,
        max_batches: int = 0,
        publish_attempts: int = 3,
        read_attempts: int = 3,
        retry_delay: float = 1.0,
        progress_every: int = 1000,
        shutdown: ShutdownSignal | None = None,
    ) -> None:
        self._source = source
        self._cursor = cursor
        self._batcher = batcher
        self._queue = queue
        self._dispatch_marks = dispatch_marks
        self._max_files = max_files
        self._max_batches = max_batches
        self._publish_attempts = publish_attempts
        self._read_attempts = read_attempts
        self._retry_delay = retry_delay
        self._progress_every = progress_every
        self._shutdown = shutdown or ShutdownSignal()
        self.state = DispatchState.ENUMERATING

    def run(self) -> DispatchSummary:
        summary = DispatchSummary()
        gate = self._cursor.gate()
        summary.checkpoint = gate.cursor
        candidates = self._source.candidates(gate.cursor)

        pending: str | None = None
        hold: str | None = None
        last_seen = ""
        retrying = False
        failed_publishes = 0
        failed_reads = 0
        exhausted = False

        while True:
            if self._shutdown.is_set():
                summary.stop_reason = "shutdown"
                break

            if retrying:
                retrying = False
            elif not exhausted:
                self.state = DispatchState.ENUMERATING
                if self._max_files and summary.files >= self._max_files:
                    logger.info("MAX FILES REACHED: %d", self._max_files)
                    summary.stop_reason = "max_files"
                    exhausted = True
                else:
                    try:
                        candidate = next(candidates, None)
                    except TransientStoreError as exc:
                        failed_reads += 1
                        summary.transient_errors += 1
                        logger.error(
                            "failed to read content index after %s (attempt %d/%d): %s",
                            last_seen or "<start>",
                            failed_reads,
                            self._read_attempts,
                            exc,
                        )
                        if failed_reads >= self._read_attempts:
                            summary.stop_reason = "transient_error"
                            break
                        self._shutdown.wait(self._retry_delay * failed_reads)
                        candidates = self._reopen(gate.cursor, last_seen)
                        continue
                    failed_reads = 0

                    if candidate is None:
                        exhausted = True
                    else:
                        last_seen = candidate.position
                        if gate.should_skip(candidate.position):
                            continue
                        self.state = DispatchState.ADMITTING
                        summary.files += 1
                        pending = candidate.position
                        if not self._admit(candidate, summary) and hold is None:
                            hold = candidate.position
                        self._log_progress(summary, pending)

            if not self._batcher.should_flush(source_exhausted=exhausted):
                if exhausted:
                    if pending is not None and not len(self._batcher):
                        # Everything up to ``pending`` was skipped or already published.
                        self._advance(hold or pending, summary)
                    break
                continue

            self.state = DispatchState.FLUSHING
            envelope = self._batcher.take()
            try:
                message_id = self._queue.publish(envelope.encode())
            except PublishError as exc:
                failed_publishes += 1
                summary.publish_failures += 1
                logger.error(
                    "failed to publish batch of %d (attempt %d/%d): %s",
                    len(envelope),
                    failed_publishes,
                    self._publish_attempts,
                    exc,
                )
                if failed_publishes >= self._publish_attempts:
                    summary.stop_reason = "publish_failed"
                    break
                self._batcher.restore(envelope)
                retrying = True
                self._shutdown.wait(self._retry_delay * failed_publishes)
                continue

            failed_publishes = 0
            logger.info(
                "(batch) id: %d files: %d message: %s", summary.batches, len(envelope), message_id
            )

            self.state = DispatchState.CHECKPOINT_ADVANCING
            summary.mark_errors += self._write_dispatch_marks(envelope)
            if pending is not None:
                self._advance(hold or pending, summary)
                pending = None
            summary.batches += 1
            summary.items_published += len(envelope)

            if self._max_batches and summary.batches >= self._max_batches:
                logger.info("MAX BATCH REACHED: %d", self._max_batches)
                summary.stop_reason = "max_batches"
                break

        self.state = DispatchState.DONE
        summary.skipped_to_checkpoint = gate.skipped
        summary.admitted = self._batcher.accepted
        summary.skipped_done = self._batcher.skipped_done
        summary.skipped_invalid = self._batcher.skipped_invalid
        logger.info(
            "(metrics) batches: %d files: %d published: %d skipped: %d errors: %d stop: %s",
            summary.batches,
            summary.files,
            summary.items_published,
            summary.skipped_done + summary.skipped_invalid,
            summary.decode_errors + summary.transient_errors,
            summary.stop_reason,
        )
        return summary

    def _reopen(self, cursor: str, last_seen: str) -> Iterator[Candidate]:
        if last_seen:
            return self._source.candidates(last_seen, inclusive=False)
        return self._source.candidates(cursor)

    def _admit(self, candidate: Candidate, summary: DispatchSummary) -> bool:
        """Offer ``candidate`` to the batcher; False when it must be retried next run."""
        if candidate.item is None:
            summary.decode_errors += 1
            logger.error("skip undecodable record %s: %s", candidate.position, candidate.error)
            return True
        try:
            self._batcher.admit(candidate.item)
        except TransientStoreError as exc:
            summary.transient_errors += 1
            logger.error(
                "cannot check markers for %s, leaving it for the next run: %s",
                candidate.position,
                exc,
            )
            return False
        return True

    def _advance(self, position: str, summary: DispatchSummary) -> None:
        try:
            self._cursor.advance(position)
        except TransientStoreError as exc:
            summary.transient_errors += 1
            logger.error("failed to advance checkpoint to %s: %s", position, exc)
            return
        summary.checkpoint = position

    def _write_dispatch_marks(self, envelope: BatchEnvelope) -> int:
        """Best-effort publish-time pre-marks; failures are logged, never raised."""
        if self._dispatch_marks is None:
            return 0
        errors = 0
        for item in envelope.items:
            try:
                self._dispatch_marks.set(item.key, item.uri)
            except TransientStoreError as exc:
                errors += 1
                logger.warning("failed to write dispatch mark for %s: %s", item.key, exc)
        if errors:
            logger.warning("%d of %d dispatch marks failed", errors, len(envelope))
        return errors

    def _log_progress(self, summary: DispatchSummary, position: str) -> None:
        if summary.files % self._progress_every == 0:
            logger.info(
                "%d files processed (%d skipped) : (checkpoint) pending: %s",
                summary.files,
                self._batcher.skipped_done + self._batcher.skipped_invalid,
                position,
            )
