"""Central logging configuration used across modules."""

from __future__ import annotations

import logging

LOGGER_NAME = "barvault"


def setup_logger(log_level: str = "INFO", log_file: str | None = None) -> logging.Logger:
    """Configure and return the package logger.

    Modules log through children of this logger: `barvault.data.tiingo` and
    `barvault.data.polygon` for vendor fetches, rate-limit waits and range
    narrowing, `barvault.data.csv` and `barvault.data.cache` for local files,
    and `barvault.coverage` for coverage hits and vendor fallbacks. All of them
    reach the handlers installed here.

    Logs are written to stderr, plus an optional file if `log_file` is set.
    Calling it again only updates the level.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    logger.propagate = False

    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
