"""Message queue port."""

from __future__ import annotations

from typing import Protocol


class QueueMessage(Protocol):
    """A received message awaiting acknowledgement."""

    message_id: str
    data: bytes
    delivery_attempt: int

    def ack(self) -> None:
        """Remove the message permanently."""
        ...

    def nack(self) -> None:
        """Release the message for redelivery."""
        ...


class QueuePort(Protocol):
    """Port interface for an at-least-once message queue.

    No ordering guarantee is assumed by the pipeline.
    """

    def publish(self, data: bytes) -> str:
        """Publish ``data`` and block until the queue returns a message id.

        Raises:
            PublishError: If the queue rejected the message.
        """
        ...

    def receive(self, timeout: float) -> QueueMessage | None:
        """Wait up to ``timeout`` seconds for one message; ``None`` when idle."""
        ...
