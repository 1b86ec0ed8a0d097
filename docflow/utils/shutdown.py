"""Cooperative shutdown for the long-running stage loops."""

from __future__ import annotations

import logging
import signal
import threading
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class ShutdownSignal:
    """Run-level stop flag checked by loops before each iteration.

    Setting the flag never interrupts an in-flight batch; loops finish the
    current publish/ack and then exit.
    """

    _event: threading.Event = field(default_factory=threading.Event, repr=False)

    def request(self, reason: str = "requested") -> None:
        if not self._event.is_set():
            logger.info("shutdown requested (%s); finishing current batch", reason)
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds, returning early when shutdown is requested."""
        return self._event.wait(timeout)

    def install(self) -> None:
        """Register SIGINT/SIGTERM handlers that set the flag (main thread only)."""

        def _handler(signum: int, _frame: object) -> None:
            self.request(signal.Signals(signum).name)

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
