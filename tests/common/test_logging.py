from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest

from sparsetree.common.logging import NOISY_LOGGERS, configure_logging

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture(autouse=True)
def restore_logger_levels() -> Iterator[None]:
    names = ("", *NOISY_LOGGERS)
    levels = {name: logging.getLogger(name).level for name in names}
    yield
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)


def test_configure_logging_quiets_third_party_loggers() -> None:
    configure_logging(level=logging.INFO, force=True)

    assert logging.getLogger().level == logging.INFO
    assert all(logging.getLogger(name).level == logging.WARNING for name in NOISY_LOGGERS)


def test_debug_logging_keeps_third_party_levels() -> None:
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET)

    configure_logging(level=logging.DEBUG, force=True)

    assert logging.getLogger().level == logging.DEBUG
    assert all(logging.getLogger(name).level == logging.NOTSET for name in NOISY_LOGGERS)
