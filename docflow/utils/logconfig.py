"""Root logger configuration for CLI entrypoints."""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
HANDLER_NAME = "docflow"


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger once for a stage process."""
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level}")

    root = logging.getLogger()
    root.setLevel(numeric)
    remove_handlers(root)

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)


def remove_handlers(logger: logging.Logger) -> None:
    """Detach handlers previously installed by :func:`configure_logging`."""
    for handler in list(logger.handlers):
        if handler.get_name() == HANDLER_NAME:
            logger.removeHandler(handler)
