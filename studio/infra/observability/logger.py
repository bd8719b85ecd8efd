"""Observability layer: centralized logger setup for the API and the stream core."""

from __future__ import annotations

import logging

_ROUTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def setup_logging(level: str = "INFO", *, quiet: tuple[str, ...] = ()) -> None:
    """Configure root logger once for single-line console output.

    Server loggers are re-routed through the root handler so access lines and
    core lines share one format. Names in `quiet` are capped at WARNING.
    """
    normalized = level.upper()
    logging.basicConfig(
        level=normalized,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        force=True,
    )
    for name in _ROUTED_LOGGERS:
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.setLevel(normalized)
        logger.propagate = True
    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return a module-level logger instance."""
    return logging.getLogger(name)
