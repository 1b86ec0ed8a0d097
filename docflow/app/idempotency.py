"""Durable idempotency guard keyed by item identity."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from docflow.app.ports import BlobStorePort
from docflow.errors import TransientStoreError

logger = logging.getLogger(__name__)

SUCCESS_SENTINEL = ""
FAILURE_SUFFIX = ".log"


@dataclass(frozen=True, slots=True)
class MarkError:
    """A marker write that still failed after retries."""

    key: str
    error: str


class IdempotencyGuard:
    """Existence markers that keep confirmed items from being resubmitted.

    Success markers (empty value) live in ``success_store`` and are the only
    thing :meth:`exists` consults. Failure markers live in ``failure_store``
    under ``<key>.log`` with the provider's diagnostic message; they are
    informational and never block resubmission.

    Transient read and write failures are retried with exponential backoff.
    The batch helpers collect final write failures instead of raising, so one
    bad key never aborts a batch.
    """

    def __init__(
        self,
        success_store: BlobStorePort,
        failure_store: BlobStorePort,
        *,
        retry_attempts: int = 3,
        retry_wait: float = 0.5,
    ) -> None:
        self._success = success_store
        self._failure = failure_store
        self._retrying = Retrying(
            stop=stop_after_attempt(retry_attempts),
            wait=wait_exponential(multiplier=retry_wait, max=10),
            retry=retry_if_exception_type(TransientStoreError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def exists(self, key: str) -> bool:
        """Return True when ``key`` has a confirmed-success marker.

        Raises:
            TransientStoreError: If the store still fails after retries.
        """
        return self._retrying(self._success.exists, key)

    def mark_success(self, key: str) -> None:
        self._retrying(self._success.set, key, SUCCESS_SENTINEL)

    def mark_failure(self, key: str, message: str) -> None:
        self._retrying(self._failure.set, failure_key(key), message)

    def mark_successes(self, keys: Iterable[str]) -> list[MarkError]:
        errors: list[MarkError] = []
        for key in keys:
            try:
                self.mark_success(key)
            except TransientStoreError as exc:
                logger.error("failed to write success marker for %s: %s", key, exc)
                errors.append(MarkError(key=key, error=str(exc)))
        return errors

    def mark_failures(self, failures: Iterable[tuple[str, str]]) -> list[MarkError]:
        errors: list[MarkError] = []
        for key, message in failures:
            try:
                self.mark_failure(key, message)
            except TransientStoreError as exc:
                logger.error("failed to write failure marker for %s: %s", key, exc)
                errors.append(MarkError(key=key, error=str(exc)))
        return errors


def failure_key(key: str) -> str:
    return f"{key}{FAILURE_SUFFIX}"
