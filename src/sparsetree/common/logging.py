"""Shared logging helpers for sparsetree."""

from __future__ import annotations

import logging

NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


def configure_logging(*, level: int = logging.INFO, force: bool = False) -> None:
    """Initialise the root logger once with sensible defaults.

    Parameters mirror ``logging.basicConfig`` with a simplified contract: INFO level and a
    terse format suitable for long crawls on a terminal. Pass ``force=True`` to reconfigure
    during tests or specialised entry points. Chatty third-party loggers are capped at
    WARNING unless DEBUG output was requested.
    """

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
    if level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
