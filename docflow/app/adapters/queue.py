"""Spool-directory message queue with at-least-once delivery."""

from __future__ import annotations

import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from docflow.app.ports import QueuePort
from docflow.errors import PublishError
from docflow.utils.fsio import atomic_write_bytes, store_errors

logger = logging.getLogger(__name__)

MESSAGE_SUFFIX = ".msg"
ATTEMPT_SEPARATOR = "~"


def _split_name(filename: str) -> tuple[str, int]:
    stem = filename[: -len(MESSAGE_SUFFIX)]
    message_id, _, attempt = stem.rpartition(ATTEMPT_SEPARATOR)
    return message_id, int(attempt or 0)


def _message_name(message_id: str, attempt: int) -> str:
    return f"{message_id}{ATTEMPT_SEPARATOR}{attempt}{MESSAGE_SUFFIX}"


@dataclass
class DirectoryMessage:
    """A claimed message; the file stays in ``inflight/`` until acked or nacked."""

    message_id: str
    data: bytes
    delivery_attempt: int
    _queue: DirectoryQueue = field(repr=False)
    _path: Path = field(repr=False)

    def ack(self) -> None:
        with store_errors("ack", self._path):
            self._path.unlink(missing_ok=True)

    def nack(self) -> None:
        self._queue._release(self._path, delay=self._queue.backoff(self.delivery_attempt))


class DirectoryQueue(QueuePort):
    """Queue backed by ``ready/``, ``inflight/`` and ``dead/`` spool directories.

    ``receive`` claims the oldest eligible ready message by renaming it into
    ``inflight/``. Messages left in flight longer than ``visibility_timeout``
    seconds (consumer crashed before ack/nack) are moved back to ``ready/``.
    The delivery attempt count is carried in the file name.

    A nacked message becomes eligible again after ``nack_backoff`` seconds,
    doubling per attempt up to ``max_backoff``; its ready file's mtime holds
    the not-before time. A message released after ``max_delivery_attempts``
    deliveries is moved to ``dead/`` instead (0 disables the limit).
    """

    def __init__(
        self,
        root: Path,
        *,
        visibility_timeout: float = 600.0,
        poll_interval: float = 0.2,
        max_delivery_attempts: int = 5,
        nack_backoff: float = 1.0,
        max_backoff: float = 60.0,
    ) -> None:
        self.root = Path(root)
        self.ready_dir = self.root / "ready"
        self.inflight_dir = self.root / "inflight"
        self.dead_dir = self.root / "dead"
        self.visibility_timeout = visibility_timeout
        self.poll_interval = poll_interval
        self.max_delivery_attempts = max_delivery_attempts
        self.nack_backoff = nack_backoff
        self.max_backoff = max_backoff

    def publish(self, data: bytes) -> str:
        message_id = f"{time.time_ns():020d}-{uuid.uuid4().hex[:8]}"
        path = self.ready_dir / _message_name(message_id, 0)
        try:
            atomic_write_bytes(path, data)
        except OSError as exc:
            raise PublishError(f"failed to publish message: {exc}") from exc
        logger.debug("published message %s (%d bytes)", message_id, len(data))
        return message_id

    def receive(self, timeout: float) -> DirectoryMessage | None:
        deadline = time.monotonic() + max(timeout, 0.0)
        while True:
            self.requeue_expired()
            message = self._claim_next()
            if message is not None:
                return message
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            time.sleep(min(self.poll_interval, remaining))

    def pending(self) -> int:
        """Number of messages waiting in ``ready/``."""
        return len(self._ready_names())

    def in_flight(self) -> int:
        with store_errors("list", self.inflight_dir):
            if not self.inflight_dir.is_dir():
                return 0
            return sum(1 for entry in self.inflight_dir.iterdir() if entry.name.endswith(MESSAGE_SUFFIX))

    def dead(self) -> int:
        """Number of messages moved to ``dead/``."""
        with store_errors("list", self.dead_dir):
            if not self.dead_dir.is_dir():
                return 0
            return sum(1 for entry in self.dead_dir.iterdir() if entry.name.endswith(MESSAGE_SUFFIX))

    def backoff(self, attempt: int) -> float:
        """Seconds a message nacked on delivery ``attempt`` waits before redelivery."""
        if self.nack_backoff <= 0:
            return 0.0
        return min(self.nack_backoff * 2 ** max(attempt - 1, 0), self.max_backoff)

    def requeue_expired(self) -> int:
        """Move in-flight messages past their visibility timeout back to ``ready/``."""
        if not self.inflight_dir.is_dir():
            return 0
        now = time.time()
        moved = 0
        with store_errors("list", self.inflight_dir):
            entries = [e for e in self.inflight_dir.iterdir() if e.name.endswith(MESSAGE_SUFFIX)]
        for entry in entries:
            try:
                claimed_at = entry.stat().st_mtime
            except FileNotFoundError:
                continue
            if now - claimed_at < self.visibility_timeout:
                continue
            message_id, _ = _split_name(entry.name)
            logger.warning("message %s exceeded visibility timeout; redelivering", message_id)
            self._release(entry)
            moved += 1
        return moved

    def _ready_names(self) -> list[str]:
        with store_errors("list", self.ready_dir):
            if not self.ready_dir.is_dir():
                return []
            return sorted(
                entry.name for entry in self.ready_dir.iterdir() if entry.name.endswith(MESSAGE_SUFFIX)
            )

    def _claim_next(self) -> DirectoryMessage | None:
        now = time.time()
        for name in self._ready_names():
            message_id, attempt = _split_name(name)
            source = self.ready_dir / name
            target = self.inflight_dir / _message_name(message_id, attempt + 1)
            try:
                if source.stat().st_mtime > now:
                    continue
                self.inflight_dir.mkdir(parents=True, exist_ok=True)
                os.utime(source)
                os.replace(source, target)
            except FileNotFoundError:
                # Claimed by another consumer.
                continue
            with store_errors("claim", target):
                data = target.read_bytes()
            return DirectoryMessage(
                message_id=message_id,
                data=data,
                delivery_attempt=attempt + 1,
                _queue=self,
                _path=target,
            )
        return None

    def _release(self, inflight_path: Path, *, delay: float = 0.0) -> None:
        message_id, attempt = _split_name(inflight_path.name)
        if self.max_delivery_attempts and attempt >= self.max_delivery_attempts:
            self._move(inflight_path, self.dead_dir / inflight_path.name)
            logger.error(
                "message %s dead-lettered after %d delivery attempts", message_id, attempt
            )
            return

        target = self.ready_dir / _message_name(message_id, attempt)
        if self._move(inflight_path, target) and delay > 0:
            not_before = time.time() + delay
            with store_errors("release", target):
                os.utime(target, (not_before, not_before))
            logger.debug("message %s redelivery delayed %.1f seconds", message_id, delay)

    def _move(self, source: Path, target: Path) -> bool:
        target.parent.mkdir(parents=True, exist_ok=True)
        with store_errors("release", source):
            try:
                os.replace(source, target)
            except FileNotFoundError:
                logger.debug("message %s already released", source.name)
                return False
        return True
