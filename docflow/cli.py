"""docflow CLI application with Typer."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, NoReturn

import typer

from docflow import __version__
from docflow.bootstrap import (
    CHECKPOINT_STAGES,
    ApplicationContainer,
    bootstrap_application,
    create_consumer,
    create_dedupe_service,
    create_dispatcher,
)
from docflow.config import (
    CommonSettings,
    ConsumerSettings,
    DedupeSettings,
    DispatchSettings,
    SettingsT,
    load_settings,
)
from docflow.errors import CheckpointNotFoundError, DocflowError, FATAL_ERRORS
from docflow.utils.cli_output import json_response
from docflow.utils.logconfig import configure_logging

app = typer.Typer(
    name="docflow",
    help="Resumable, idempotent batch pipeline for bulk document OCR",
    add_completion=True,
    no_args_is_help=True,
)


@dataclass
class CliState:
    data_dir: Path | None = None
    log_level: str | None = None


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"docflow version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
    data_dir: Annotated[
        Path | None,
        typer.Option("--data-dir", help="Override data directory"),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)"),
    ] = None,
) -> None:
    """docflow - dedupe, dispatch and consume document batches."""
    ctx.obj = CliState(data_dir=data_dir, log_level=log_level)


def _fail(message: str, *, code: int = 1) -> NoReturn:
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj if isinstance(ctx.obj, CliState) else CliState()


def _load(ctx: typer.Context, settings_cls: type[SettingsT], **overrides: object) -> SettingsT:
    state = _state(ctx)
    try:
        settings = load_settings(
            settings_cls, data_dir=state.data_dir, log_level=state.log_level, **overrides
        )
    except DocflowError as exc:
        _fail(str(exc))
    try:
        configure_logging(settings.log_level)
    except ValueError as exc:
        _fail(str(exc))
    return settings


def _container(settings: CommonSettings, **kwargs: float | int) -> ApplicationContainer:
    try:
        return bootstrap_application(settings, **kwargs)
    except OSError as exc:
        _fail(f"cannot prepare data directory: {exc}")


# Dedupe subcommand
dedupe_app = typer.Typer(help="Content-identity deduplication of the source store")
app.add_typer(dedupe_app, name="dedupe")


@dedupe_app.command("run")
def dedupe_run(
    ctx: typer.Context,
    source_dir: Annotated[
        Path | None,
        typer.Option("--source-dir", "-s", help="Root of the source images (DOCFLOW_SOURCE_DIR)"),
    ] = None,
    pattern: Annotated[
        str | None,
        typer.Option("--pattern", "-p", help="Glob selecting objects (default **/*.jpg)"),
    ] = None,
    max_files: Annotated[
        int | None,
        typer.Option("--max-files", help="Stop after this many objects (0 = no limit)"),
    ] = None,
    progress_every: Annotated[
        int | None,
        typer.Option("--progress-every", help="Objects between progress logs and checkpoints"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output summary as JSON"),
    ] = False,
) -> None:
    """Register every source object in the content index."""
    settings = _load(
        ctx,
        DedupeSettings,
        source_dir=source_dir,
        pattern=pattern,
        max_files=max_files,
        progress_every=progress_every,
    )
    if not settings.source_dir.is_dir():
        _fail(f"Path not found: {settings.source_dir}")

    container = _container(settings)
    container.shutdown.install()
    service = create_dedupe_service(container, settings)

    try:
        summary = service.run()
    except FATAL_ERRORS as exc:
        _fail(str(exc))

    if json_output:
        typer.echo(json_response("dedupe_summary", 1, **summary.model_dump(mode="json")))
        return

    typer.secho(
        f"Processed {summary.files} files: {summary.created} new, {summary.merged} merged, "
        f"{summary.errors} errors",
        fg=typer.colors.RED if summary.errors else typer.colors.GREEN,
    )
    typer.secho(f"Checkpoint: {summary.checkpoint or '<start>'}", fg=typer.colors.BLUE)


# Dispatch subcommand
dispatch_app = typer.Typer(help="Batch indexed content onto the queue")
app.add_typer(dispatch_app, name="dispatch")


@dispatch_app.command("run")
def dispatch_run(
    ctx: typer.Context,
    source_uri_prefix: Annotated[
        str | None,
        typer.Option(
            "--source-uri-prefix",
            help="URI prefix joined with each source path (DOCFLOW_SOURCE_URI_PREFIX)",
        ),
    ] = None,
    batch_size: Annotated[
        int | None,
        typer.Option("--batch-size", "-b", help="Maximum items per batch"),
    ] = None,
    max_files: Annotated[
        int | None,
        typer.Option("--max-files", help="Stop after this many index records (0 = no limit)"),
    ] = None,
    max_batches: Annotated[
        int | None,
        typer.Option("--max-batches", help="Stop after this many batches (0 = no limit)"),
    ] = None,
    trust_dispatch_marks: Annotated[
        bool | None,
        typer.Option(
            "--trust-dispatch-marks/--ignore-dispatch-marks",
            help="Also skip items already pre-marked at publish time",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output summary as JSON"),
    ] = False,
) -> None:
    """Publish batches of not-yet-processed content to the queue."""
    settings = _load(
        ctx,
        DispatchSettings,
        source_uri_prefix=source_uri_prefix,
        batch_size=batch_size,
        max_files=max_files,
        max_batches=max_batches,
        trust_dispatch_marks=trust_dispatch_marks,
    )
    container = _container(settings)
    container.shutdown.install()
    dispatcher = create_dispatcher(container, settings)

    try:
        summary = dispatcher.run()
    except CheckpointNotFoundError as exc:
        _fail(f"{exc} (docflow checkpoint reset dispatch)")
    except FATAL_ERRORS as exc:
        _fail(str(exc))

    if json_output:
        typer.echo(json_response("dispatch_summary", 1, **summary.model_dump(mode="json")))
    else:
        typer.secho(
            f"Published {summary.batches} batches ({summary.items_published} items); "
            f"skipped {summary.skipped_done} done, {summary.skipped_invalid} invalid",
            fg=typer.colors.GREEN,
        )
        typer.secho(f"Checkpoint: {summary.checkpoint or '<start>'}", fg=typer.colors.BLUE)

    if summary.stop_reason == "publish_failed":
        _fail("publish failed repeatedly; checkpoint not advanced")
    if summary.stop_reason == "transient_error":
        _fail("content index unavailable; rerun to resume from the checkpoint")


# Consume subcommand
consume_app = typer.Typer(help="Rate-limited bulk OCR consumer")
app.add_typer(consume_app, name="consume")


@consume_app.command("run")
def consume_run(
    ctx: typer.Context,
    output_dir: Annotated[
        Path | None,
        typer.Option("--output-dir", "-o", help="Directory receiving OCR results"),
    ] = None,
    min_seconds: Annotated[
        float | None,
        typer.Option("--min-seconds", help="Minimum seconds per batch cycle"),
    ] = None,
    max_messages: Annotated[
        int | None,
        typer.Option("--max-messages", help="Stop after this many messages (0 = no limit)"),
    ] = None,
    drain: Annotated[
        bool,
        typer.Option("--drain", help="Exit once the queue is idle"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output summary as JSON"),
    ] = False,
) -> None:
    """Receive batches and run the bulk OCR operation on them."""
    settings = _load(
        ctx,
        ConsumerSettings,
        output_dir=output_dir,
        min_seconds_per_batch=min_seconds,
        max_messages=max_messages,
    )
    container = _container(
        settings,
        visibility_timeout=settings.visibility_timeout,
        max_delivery_attempts=settings.max_delivery_attempts,
        nack_backoff=settings.nack_backoff,
    )
    container.shutdown.install()

    try:
        consumer = create_consumer(container, settings)
    except RuntimeError as exc:
        _fail(str(exc))

    try:
        summary = consumer.run(drain=drain)
    except FATAL_ERRORS as exc:
        _fail(str(exc))

    if json_output:
        typer.echo(json_response("consume_summary", 1, **summary.model_dump(mode="json")))
        return

    typer.secho(
        f"Handled {summary.messages} messages: {summary.succeeded}/{summary.submitted} "
        f"files succeeded, {summary.nacked} nacked",
        fg=typer.colors.RED if summary.failed else typer.colors.GREEN,
    )


# Checkpoint subcommand
checkpoint_app = typer.Typer(help="Inspect or reset stage checkpoints")
app.add_typer(checkpoint_app, name="checkpoint")


def _checkpoint_stage(stage: str) -> str:
    if stage not in CHECKPOINT_STAGES:
        _fail(f"Unknown stage: {stage}. Expected one of {', '.join(CHECKPOINT_STAGES)}", code=2)
    return stage


@checkpoint_app.command("show")
def checkpoint_show(
    ctx: typer.Context,
    stage: Annotated[str, typer.Argument(help="Stage name (dedupe or dispatch)")],
) -> None:
    """Print the stored checkpoint for a stage."""
    _checkpoint_stage(stage)
    container = _container(_load(ctx, CommonSettings))
    value = container.checkpoint_store.get(stage)
    typer.echo(value or "<start>")


@checkpoint_app.command("reset")
def checkpoint_reset(
    ctx: typer.Context,
    stage: Annotated[str, typer.Argument(help="Stage name (dedupe or dispatch)")],
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Do not ask for confirmation"),
    ] = False,
) -> None:
    """Clear a stage checkpoint so its next run starts from the beginning."""
    _checkpoint_stage(stage)
    if not yes:
        typer.confirm(f"Reset the {stage} checkpoint?", abort=True)
    container = _container(_load(ctx, CommonSettings))
    container.cursor(stage).reset()
    typer.secho(f"{stage} checkpoint reset", fg=typer.colors.GREEN)


@app.command("status")
def status(
    ctx: typer.Context,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output status as JSON"),
    ] = False,
) -> None:
    """Show checkpoints, index size, marker counts and queue depth."""
    container = _container(_load(ctx, CommonSettings))

    data = {
        "data_dir": str(container.settings.get_data_dir()),
        "checkpoints": {
            stage: container.checkpoint_store.get(stage) or "" for stage in CHECKPOINT_STAGES
        },
        "index_records": container.index.count(),
        "succeeded": container.success_store.count(),
        "failed": container.failure_store.count(),
        "dispatched": container.dispatch_marks.count(),
        "queue_ready": container.queue.pending(),
        "queue_inflight": container.queue.in_flight(),
        "queue_dead": container.queue.dead(),
    }

    if json_output:
        typer.echo(json_response("pipeline_status", 1, **data))
        return

    typer.secho(f"Data directory: {data['data_dir']}", fg=typer.colors.BLUE)
    for stage, value in data["checkpoints"].items():
        typer.echo(f"  {stage} checkpoint: {value or '<start>'}")
    typer.echo(f"  index records: {data['index_records']}")
    typer.echo(f"  succeeded: {data['succeeded']}  failed: {data['failed']}")
    typer.echo(f"  dispatched: {data['dispatched']}")
    typer.echo(
        f"  queue: {data['queue_ready']} ready, {data['queue_inflight']} in flight, "
        f"{data['queue_dead']} dead"
    )


if __name__ == "__main__":
    app()
