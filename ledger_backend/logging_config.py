"""Logging configuration for the ledger backend."""

from __future__ import annotations

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_LEVEL = os.getenv("LEDGER_LOG_LEVEL", "INFO")

NOISY_LOGGERS = [
    "sqlalchemy.engine",
    "passlib",
    "httpx",
    "httpcore",
]


def setup_logging(level: str = LOG_LEVEL) -> logging.Logger:
    """Install a single stdout handler on the root logger.

    Existing handlers are removed so repeated calls (reloads, tests) do not
    duplicate output.
    """
    log_level = getattr(logging, (level or "INFO").upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    root_logger.addHandler(console_handler)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    root_logger.info("Logging initialised at %s", logging.getLevelName(log_level))
    return root_logger
