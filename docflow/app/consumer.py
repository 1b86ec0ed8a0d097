"""Rate-limited batch consumer: decode → filter → bulk call → mark → throttle."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel

from docflow.app.batcher import DEFAULT_MIME_TYPE, BatchEnvelope, BatchItem
from docflow.app.idempotency import IdempotencyGuard
from docflow.app.ports import BulkDocument, BulkOperationPort, ItemStatus, QueueMessage, QueuePort
from docflow.errors import BulkOperationError, EnvelopeDecodeError, TransientStoreError
from docflow.utils.shutdown import ShutdownSignal

logger = logging.getLogger(__name__)


class HandleOutcome(str, Enum):
    """What happened to one inbound message."""

    NACKED = "nacked"
    ALREADY_DONE = "already_done"
    PROCESSED = "processed"


class BatchReport(BaseModel):
    """Result of handling one batch message."""

    outcome: HandleOutcome
    submitted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped_done: int = 0
    mark_errors: int = 0
    transient_errors: int = 0
    elapsed: float = 0.0
    slept: float = 0.0


class ConsumeSummary(BaseModel):
    """Totals across one consumer run."""

    messages: int = 0
    nacked: int = 0
    submitted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped_done: int = 0
    mark_errors: int = 0
    transient_errors: int = 0


def throttle_delay(elapsed: float, minimum: float) -> float:
    """Seconds to sleep so a cycle lasts at least ``minimum``."""
    if elapsed >= minimum:
        return 0.0
    return minimum - elapsed


class RateLimitedConsumer:
    """Blocking receive loop feeding batches to a bulk remote operation.

    Messages are handled one at a time. A message is acknowledged as soon as
    its envelope decodes, before the remote call, so queue redelivery never
    duplicates the call; undecodable messages are nacked. Every cycle lasts at
    least ``min_seconds_per_batch`` seconds so a single instance stays within
    the provider quota. Running several instances divides that quota among
    them; nothing here coordinates across instances.
    """

    def __init__(
        self,
        *,
        queue: QueuePort,
        bulk: BulkOperationPort,
        guard: IdempotencyGuard,
        output_uri: str,
        min_seconds_per_batch: float = 60.0,
        receive_timeout: float = 5.0,
        max_messages: int = 0,
        shutdown: ShutdownSignal | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], object] | None = None,
    ) -> None:
        self._queue = queue
        self._bulk = bulk
        self._guard = guard
        self._output_uri = output_uri
        self._min_seconds = min_seconds_per_batch
        self._receive_timeout = receive_timeout
        self._max_messages = max_messages
        self._shutdown = shutdown or ShutdownSignal()
        self._clock = clock
        self._sleep = sleep or self._shutdown.wait

    def stop(self) -> None:
        self._shutdown.request("consumer stop")

    def run(self, *, drain: bool = False) -> ConsumeSummary:
        """Receive and handle messages until stopped.

        With ``drain`` the loop also exits the first time the queue is idle
        for ``receive_timeout`` seconds.
        """
        summary = ConsumeSummary()
        while not self._shutdown.is_set():
            if self._max_messages and summary.messages >= self._max_messages:
                logger.info("MAX MESSAGES REACHED: %d", self._max_messages)
                break

            try:
                message = self._queue.receive(self._receive_timeout)
            except TransientStoreError as exc:
                summary.transient_errors += 1
                logger.error("failed to receive from queue: %s", exc)
                self._shutdown.wait(self._receive_timeout)
                continue
            if message is None:
                if drain:
                    logger.info("queue drained")
                    break
                continue

            try:
                report = self.handle(message)
            except TransientStoreError as exc:
                # Unacked messages are redelivered after the visibility timeout.
                summary.messages += 1
                summary.transient_errors += 1
                logger.error("failed to handle message %s: %s", message.message_id, exc)
                continue
            summary.messages += 1
            if report.outcome is HandleOutcome.NACKED:
                summary.nacked += 1
            summary.submitted += report.submitted
            summary.succeeded += report.succeeded
            summary.failed += report.failed
            summary.skipped_done += report.skipped_done
            summary.mark_errors += report.mark_errors
            summary.transient_errors += report.transient_errors

        logger.info(
            "(metrics) messages: %d submitted: %d succeeded: %d failed: %d nacked: %d",
            summary.messages,
            summary.submitted,
            summary.succeeded,
            summary.failed,
            summary.nacked,
        )
        return summary

    def handle(self, message: QueueMessage) -> BatchReport:
        """Process one message end to end, including the throttle sleep."""
        started = self._clock()
        try:
            envelope = BatchEnvelope.decode(message.data)
        except EnvelopeDecodeError as exc:
            logger.error("nack message %s: %s", message.message_id, exc)
            message.nack()
            return BatchReport(outcome=HandleOutcome.NACKED)

        message.ack()

        pending: list[BatchItem] = []
        skipped = 0
        unknown = 0
        for item in envelope.items:
            try:
                done = self._guard.exists(item.key)
            except TransientStoreError as exc:
                # Already acked: an unreadable marker counts as not done.
                logger.warning("cannot check marker for %s, submitting it: %s", item.key, exc)
                unknown += 1
                done = False
            if done:
                skipped += 1
            else:
                pending.append(item)

        if not pending:
            logger.info(
                "message %s: all %d files already processed", message.message_id, len(envelope)
            )
            return BatchReport(outcome=HandleOutcome.ALREADY_DONE, skipped_done=skipped)

        statuses = self._call_bulk(pending)
        successes, failures = _partition(pending, statuses)

        mark_errors = self._guard.mark_successes(item.key for item in successes)
        mark_errors += self._guard.mark_failures(failures)

        elapsed = self._clock() - started
        log = logger.error if failures else logger.info
        log("processed %d/%d files in %f seconds", len(successes), len(pending), elapsed)

        delay = throttle_delay(elapsed, self._min_seconds)
        if delay > 0:
            logger.debug("throttle: sleeping %.3f seconds", delay)
            self._sleep(delay)

        return BatchReport(
            outcome=HandleOutcome.PROCESSED,
            submitted=len(pending),
            succeeded=len(successes),
            failed=len(failures),
            skipped_done=skipped,
            mark_errors=len(mark_errors),
            transient_errors=unknown,
            elapsed=elapsed,
            slept=delay,
        )

    def _call_bulk(self, items: list[BatchItem]) -> list[ItemStatus]:
        documents = [
            BulkDocument(uri=item.uri, mime_type=item.mime_type or DEFAULT_MIME_TYPE)
            for item in items
        ]
        try:
            return self._bulk.process(documents, self._output_uri)
        except BulkOperationError as exc:
            logger.error("bulk operation failed for %d files: %s", len(items), exc)
            if exc.statuses:
                return list(exc.statuses)
            return [ItemStatus(uri=item.uri, code=-1, message=str(exc)) for item in items]


def _partition(
    items: list[BatchItem], statuses: list[ItemStatus]
) -> tuple[list[BatchItem], list[tuple[str, str]]]:
    """Split ``items`` by their provider status.

    Statuses are matched by URI. An item without any status counts as a
    failure.
    """
    by_uri = {status.uri: status for status in statuses}
    successes: list[BatchItem] = []
    failures: list[tuple[str, str]] = []
    for item in items:
        status = by_uri.get(item.uri)
        if status is None:
            failures.append((item.key, "no status returned for item"))
        elif status.ok:
            successes.append(item)
        else:
            failures.append((item.key, status.message or f"status code {status.code}"))
    return successes, failures
