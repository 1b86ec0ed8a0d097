"""Dedupe stage: enumerate source objects and register them by content identity."""

from __future__ import annotations

import io
import logging

from PIL import Image, UnidentifiedImageError  # type: ignore[import]
from pydantic import BaseModel

from docflow.app.checkpoint import CheckpointCursor
from docflow.app.identity import ContentIdentity, RegisterOutcome
from docflow.app.ports import ContentIndexPort, ContentMetadata, ObjectAttrs, ObjectSourcePort
from docflow.errors import RecordDecodeError, TransientStoreError
from docflow.utils.paths import mime_type_from_name
from docflow.utils.shutdown import ShutdownSignal

logger = logging.getLogger(__name__)

DEFAULT_PATTERN = "**/*.jpg"


class ItemError(ValueError):
    """Per-object problem that skips the object but not the run."""


class DedupeSummary(BaseModel):
    """Counters reported at the end of a dedupe run."""

    files: int = 0
    skipped_to_checkpoint: int = 0
    skipped_processed: int = 0
    skipped_empty: int = 0
    created: int = 0
    merged: int = 0
    unchanged: int = 0
    errors: int = 0
    transient_errors: int = 0
    checkpoint: str = ""
    stop_reason: str = "exhausted"


def image_dimensions(content: bytes) -> tuple[int, int]:
    """Return ``(width, height)`` of an encoded image.

    Raises:
        ItemError: If Pillow cannot identify the image.
    """
    try:
        with Image.open(io.BytesIO(content)) as image:
            width, height = image.size
    except (UnidentifiedImageError, OSError) as exc:
        raise ItemError(f"cannot decode image: {exc}") from exc
    return width, height


class DedupeService:
    """Walk the source in stable order and merge duplicates in the content index.

    The checkpoint is advanced to the current object name every
    ``progress_every`` objects, after that object is registered, and once
    more when the run ends. After a transient store error the checkpoint
    stays pinned at the failed object for the rest of the run, so the next
    run picks it up again. A ProcessedMarker is written after each object is
    registered so re-scans skip it cheaply.
    """

    def __init__(
        self,
        *,
        source: ObjectSourcePort,
        index: ContentIndexPort,
        cursor: CheckpointCursor,
        pattern: str = DEFAULT_PATTERN,
        max_files: int = 0,
        progress_every: int = 1000,
        shutdown: ShutdownSignal | None = None,
    ) -> None:
        self._source = source
        self._index = index
        self._identity = ContentIdentity(index)
        self._cursor = cursor
        self._pattern = pattern
        self._max_files = max_files
        self._progress_every = progress_every
        self._shutdown = shutdown or ShutdownSignal()

    def run(self) -> DedupeSummary:
        summary = DedupeSummary()
        gate = self._cursor.gate()
        summary.checkpoint = gate.cursor
        last_name: str | None = None
        hold: str | None = None

        for attrs in self._source.list_objects(self._pattern):
            if self._shutdown.is_set():
                summary.stop_reason = "shutdown"
                break
            if self._max_files and summary.files >= self._max_files:
                logger.info("MAX FILES REACHED: %d", self._max_files)
                summary.stop_reason = "max_files"
                break
            if gate.should_skip(attrs.name):
                continue

            summary.files += 1
            if not self._process(attrs, summary) and hold is None:
                hold = attrs.name
            last_name = attrs.name

            if summary.files % self._progress_every == 0:
                logger.info(
                    "%d files processed (%d created, %d merged, %d errors) : (checkpoint) %s",
                    summary.files,
                    summary.created,
                    summary.merged,
                    summary.errors,
                    attrs.name,
                )
                self._advance(hold or attrs.name, summary)

        if last_name is not None:
            self._advance(hold or last_name, summary)

        summary.skipped_to_checkpoint = gate.skipped
        logger.info(
            "(metrics) files: %d created: %d merged: %d skipped: %d errors: %d stop: %s",
            summary.files,
            summary.created,
            summary.merged,
            summary.skipped_processed + summary.skipped_empty + summary.unchanged,
            summary.errors,
            summary.stop_reason,
        )
        return summary

    def _advance(self, name: str, summary: DedupeSummary) -> None:
        try:
            self._cursor.advance(name)
        except TransientStoreError as exc:
            summary.transient_errors += 1
            logger.error("failed to advance checkpoint to %s: %s", name, exc)
            return
        summary.checkpoint = name

    def _process(self, attrs: ObjectAttrs, summary: DedupeSummary) -> bool:
        """Register one object; False when a transient error left it unregistered."""
        try:
            outcome = self._register(attrs, summary)
        except TransientStoreError as exc:
            summary.errors += 1
            summary.transient_errors += 1
            logger.error("retry %s next run: %s", attrs.name, exc)
            return False
        except (ItemError, RecordDecodeError) as exc:
            summary.errors += 1
            logger.error("skip %s: %s", attrs.name, exc)
            return True

        if outcome is RegisterOutcome.CREATED:
            summary.created += 1
        elif outcome is RegisterOutcome.MERGED:
            summary.merged += 1
        elif outcome is RegisterOutcome.UNCHANGED:
            summary.unchanged += 1
        return True

    def _register(self, attrs: ObjectAttrs, summary: DedupeSummary) -> RegisterOutcome | None:
        if self._index.is_processed(attrs.name):
            summary.skipped_processed += 1
            return None
        if attrs.size == 0:
            summary.skipped_empty += 1
            return None

        mime_type = mime_type_from_name(attrs.name)
        if mime_type is None:
            raise ItemError("unknown mime type")

        content = self._source.read_bytes(attrs.name)
        if not content:
            summary.skipped_empty += 1
            return None
        width, height = image_dimensions(content)

        identity = self._identity.identify(content)
        metadata = ContentMetadata(
            mime_type=mime_type, width=width, height=height, size=len(content)
        )
        outcome = self._identity.register(identity, attrs.name, metadata)
        self._index.mark_processed(attrs.name, identity)
        return outcome
