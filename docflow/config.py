"""Configuration management with Pydantic settings, one class per stage."""

import os
from pathlib import Path
from typing import Any, ClassVar, TypeVar

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from docflow.errors import ConfigurationError

ENV_PREFIX = "DOCFLOW_"


def get_xdg_data_home() -> Path:
    """Get XDG_DATA_HOME directory, defaulting to ~/.local/share."""
    xdg_data = os.getenv("XDG_DATA_HOME")
    if xdg_data:
        return Path(xdg_data)
    return Path.home() / ".local" / "share"


class CommonSettings(BaseSettings):
    """Settings shared by every stage.

    Precedence: CLI flag > environment variable > .env file > defaults.
    All durable locations (checkpoints, refs, index, queue) derive from
    ``data_dir`` unless overridden.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    stage: ClassVar[str] = "common"

    data_dir: Path | None = Field(
        default=None,
        description="Root for durable state (defaults to XDG_DATA_HOME/docflow)",
    )

    log_level: str = Field(
        default="INFO",
        description="Root log level (DEBUG, INFO, WARNING, ERROR)",
    )

    progress_every: int = Field(
        default=1000,
        ge=1,
        description="Items between progress log lines",
    )

    def get_data_dir(self) -> Path:
        """Get the data directory, creating if necessary."""
        data_dir = self.data_dir if self.data_dir else get_xdg_data_home() / "docflow"
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir

    def _subdir(self, name: str) -> Path:
        path = self.get_data_dir() / name
        path.mkdir(parents=True, exist_ok=True)
        return path

    def get_checkpoint_dir(self) -> Path:
        """Directory holding one checkpoint value per stage."""
        return self._subdir("checkpoints")

    def get_index_dir(self) -> Path:
        """Directory holding the content index and processed markers."""
        return self._subdir("index")

    def get_refs_dir(self) -> Path:
        """Directory holding confirmed-success idempotency markers."""
        return self._subdir("refs")

    def get_errors_dir(self) -> Path:
        """Directory holding per-item failure markers."""
        return self._subdir("errors")

    def get_dispatched_dir(self) -> Path:
        """Directory holding advisory publish-time pre-marks."""
        return self._subdir("dispatched")

    def get_queue_dir(self) -> Path:
        """Spool directory used by the local batch queue."""
        return self._subdir("queue")


class DedupeSettings(CommonSettings):
    """Settings for the deduplication stage."""

    stage: ClassVar[str] = "dedupe"

    source_dir: Path = Field(
        ...,
        description="Root of the object store to deduplicate (required)",
    )

    pattern: str = Field(
        default="**/*.jpg",
        description="Glob selecting objects to process; allows smaller targeted runs",
    )

    max_files: int = Field(
        default=0,
        ge=0,
        description="Stop after enumerating this many objects (0 = no limit)",
    )


class DispatchSettings(CommonSettings):
    """Settings for the dispatcher stage."""

    stage: ClassVar[str] = "dispatch"

    source_uri_prefix: str = Field(
        ...,
        min_length=1,
        description=(
            "Prefix joined with a record's first source path to form its URI, "
            "e.g. gs://bucket/ or file:///srv/images/ (required)"
        ),
    )

    batch_size: int = Field(
        default=100,
        ge=1,
        description="Maximum number of items per published batch",
    )

    page_size: int | None = Field(
        default=None,
        ge=1,
        description="Index query page size (defaults to batch_size)",
    )

    max_files: int = Field(
        default=0,
        ge=0,
        description="Stop after enumerating this many index records (0 = no limit)",
    )

    max_batches: int = Field(
        default=0,
        ge=0,
        description="Stop after publishing this many batches (0 = no limit)",
    )

    publish_attempts: int = Field(
        default=3,
        ge=1,
        description="Publish cycles attempted for one batch before the run stops",
    )

    trust_dispatch_marks: bool = Field(
        default=False,
        description="Also skip items pre-marked at publish time (advisory marks)",
    )

    def get_page_size(self) -> int:
        return self.page_size or self.batch_size


class ConsumerSettings(CommonSettings):
    """Settings for the rate-limited consumer stage."""

    stage: ClassVar[str] = "consume"

    output_dir: Path | None = Field(
        default=None,
        description="Output location handed to the bulk operation (defaults to data_dir/ocr)",
    )

    min_seconds_per_batch: float = Field(
        default=60.0,
        ge=0.0,
        description=(
            "Minimum wall-clock seconds per batch cycle. Enforced per consumer "
            "instance; divide the provider quota across instances."
        ),
    )

    receive_timeout: float = Field(
        default=5.0,
        gt=0.0,
        description="Seconds a single receive call waits for a message",
    )

    visibility_timeout: float = Field(
        default=600.0,
        gt=0.0,
        description="Seconds before an unacknowledged message is redelivered",
    )

    max_delivery_attempts: int = Field(
        default=5,
        ge=0,
        description="Deliveries before a message is moved to the dead-letter directory (0 = no limit)",
    )

    nack_backoff: float = Field(
        default=1.0,
        ge=0.0,
        description="Seconds before a nacked message is redelivered, doubled per attempt",
    )

    max_messages: int = Field(
        default=0,
        ge=0,
        description="Stop after handling this many messages (0 = no limit)",
    )

    ocr_language: str = Field(
        default="eng",
        description="Tesseract language code used by the local bulk OCR adapter",
    )

    def get_output_dir(self) -> Path:
        """Directory receiving bulk operation output, creating if necessary."""
        output = self.output_dir if self.output_dir else self.get_data_dir() / "ocr"
        output.mkdir(parents=True, exist_ok=True)
        return output


SettingsT = TypeVar("SettingsT", bound=CommonSettings)


def load_settings(settings_cls: type[SettingsT], **overrides: Any) -> SettingsT:
    """Build ``settings_cls`` from the environment, failing fast on bad config.

    Raises:
        ConfigurationError: If a required value is absent or a value is invalid.
            ``missing`` lists the environment variable names to set.
    """
    values = {key: value for key, value in overrides.items() if value is not None}
    try:
        return settings_cls(**values)
    except ValidationError as exc:
        missing: list[str] = []
        problems: list[str] = []
        for error in exc.errors():
            field_name = ".".join(str(part) for part in error.get("loc", ()))
            env_name = f"{ENV_PREFIX}{field_name.upper()}"
            if error.get("type") == "missing":
                missing.append(env_name)
            else:
                problems.append(f"{env_name}: {error.get('msg')}")

        parts: list[str] = []
        if missing:
            parts.append(f"missing required configuration: {', '.join(missing)}")
        if problems:
            parts.append(f"invalid configuration: {'; '.join(problems)}")
        raise ConfigurationError(
            f"[{settings_cls.stage}] " + " | ".join(parts), missing=missing
        ) from exc
