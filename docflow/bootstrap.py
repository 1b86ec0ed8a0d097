"""Application bootstrap wiring ports, adapters, and stage services."""

from __future__ import annotations

from dataclasses import dataclass, field

from docflow.app import (
    Batcher,
    CheckpointCursor,
    DedupeService,
    Dispatcher,
    IdempotencyGuard,
    IndexCandidateSource,
    RateLimitedConsumer,
)
from docflow.app.adapters import (
    DirectoryQueue,
    FileSystemBlobStore,
    FileSystemContentIndex,
    FileSystemObjectSource,
    TesseractBulkOCRAdapter,
)
from docflow.app.ports import BulkOperationPort
from docflow.config import CommonSettings, ConsumerSettings, DedupeSettings, DispatchSettings
from docflow.utils.shutdown import ShutdownSignal

CHECKPOINT_STAGES = ("dedupe", "dispatch")


@dataclass(slots=True)
class ApplicationContainer:
    """Durable collaborators shared by every stage, built once per process."""

    settings: CommonSettings
    checkpoint_store: FileSystemBlobStore
    index: FileSystemContentIndex
    success_store: FileSystemBlobStore
    failure_store: FileSystemBlobStore
    dispatch_marks: FileSystemBlobStore
    queue: DirectoryQueue
    guard: IdempotencyGuard
    shutdown: ShutdownSignal = field(default_factory=ShutdownSignal)

    def cursor(self, stage: str) -> CheckpointCursor:
        if stage not in CHECKPOINT_STAGES:
            raise ValueError(
                f"Unknown checkpoint stage: {stage}. Expected one of {', '.join(CHECKPOINT_STAGES)}"
            )
        return CheckpointCursor(self.checkpoint_store, stage=stage)


def bootstrap_application(
    settings: CommonSettings,
    *,
    visibility_timeout: float = 600.0,
    max_delivery_attempts: int = 5,
    nack_backoff: float = 1.0,
) -> ApplicationContainer:
    """Instantiate the local adapters rooted at ``settings.get_data_dir()``."""

    success_store = FileSystemBlobStore(settings.get_refs_dir())
    failure_store = FileSystemBlobStore(settings.get_errors_dir())

    return ApplicationContainer(
        settings=settings,
        checkpoint_store=FileSystemBlobStore(settings.get_checkpoint_dir()),
        index=FileSystemContentIndex(settings.get_index_dir()),
        success_store=success_store,
        failure_store=failure_store,
        dispatch_marks=FileSystemBlobStore(settings.get_dispatched_dir()),
        queue=DirectoryQueue(
            settings.get_queue_dir(),
            visibility_timeout=visibility_timeout,
            max_delivery_attempts=max_delivery_attempts,
            nack_backoff=nack_backoff,
        ),
        guard=IdempotencyGuard(success_store, failure_store),
    )


def create_dedupe_service(
    container: ApplicationContainer, settings: DedupeSettings
) -> DedupeService:
    return DedupeService(
        source=FileSystemObjectSource(settings.source_dir),
        index=container.index,
        cursor=container.cursor("dedupe"),
        pattern=settings.pattern,
        max_files=settings.max_files,
        progress_every=settings.progress_every,
        shutdown=container.shutdown,
    )


def create_dispatcher(container: ApplicationContainer, settings: DispatchSettings) -> Dispatcher:
    batcher = Batcher(
        container.guard,
        max_size=settings.batch_size,
        dispatch_marks=container.dispatch_marks if settings.trust_dispatch_marks else None,
    )
    source = IndexCandidateSource(
        container.index,
        uri_prefix=settings.source_uri_prefix,
        page_size=settings.get_page_size(),
    )
    return Dispatcher(
        source=source,
        cursor=container.cursor("dispatch"),
        batcher=batcher,
        queue=container.queue,
        dispatch_marks=container.dispatch_marks,
        max_files=settings.max_files,
        max_batches=settings.max_batches,
        publish_attempts=settings.publish_attempts,
        progress_every=settings.progress_every,
        shutdown=container.shutdown,
    )


def create_consumer(
    container: ApplicationContainer,
    settings: ConsumerSettings,
    *,
    bulk: BulkOperationPort | None = None,
) -> RateLimitedConsumer:
    """Wire the consumer; ``bulk`` defaults to the local Tesseract adapter."""

    bulk_port = bulk if bulk is not None else TesseractBulkOCRAdapter(lang=settings.ocr_language)
    return RateLimitedConsumer(
        queue=container.queue,
        bulk=bulk_port,
        guard=container.guard,
        output_uri=f"file://{settings.get_output_dir().resolve()}",
        min_seconds_per_batch=settings.min_seconds_per_batch,
        receive_timeout=settings.receive_timeout,
        max_messages=settings.max_messages,
        shutdown=container.shutdown,
    )
