"""Logging helpers for rtscribe."""

from __future__ import annotations

import logging
from typing import Optional

_LOGGER_CONFIGURED = False

# websockets logs every frame at DEBUG; keep it one notch quieter than ours.
_NOISY_LOGGERS = ("websockets",)


def level_for_verbosity(verbose: int = 0, quiet: bool = False) -> int:
    """Map ``-v`` counts from the command line onto a logging level."""

    if quiet:
        return logging.ERROR
    if verbose >= 1:
        return logging.DEBUG
    return logging.WARNING


def configure_logging(level: int = logging.INFO, *, force: bool = False) -> None:
    """Configure root logging once; ``force`` lets the CLI override the level."""

    global _LOGGER_CONFIGURED
    if _LOGGER_CONFIGURED and not force:
        return

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        force=force,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))
    _LOGGER_CONFIGURED = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name or "rtscribe")


__all__ = ["configure_logging", "get_logger", "level_for_verbosity"]
