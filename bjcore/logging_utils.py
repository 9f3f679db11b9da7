"""Logging setup for hosts embedding the table core."""

import logging
import sys

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(level: int | str = logging.WARNING, logger_name: str | None = None) -> logging.Logger:
    """
    Configure the root (or named) logger.

    Idempotent: won't add duplicate handlers if called again.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING

    logger = logging.getLogger(logger_name or "")
    logger.setLevel(level)

    already_configured = any(getattr(h, "_bjcore_handler", False) for h in logger.handlers)
    if not already_configured:
        handler = logging.StreamHandler(stream=sys.stderr)
        handler._bjcore_handler = True  # type: ignore[attr-defined]
        handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt="%H:%M:%S"))
        logger.addHandler(handler)

    # Keep noisy third-party libs calm unless explicitly DEBUG
    if level > logging.DEBUG:
        for noisy in ("asyncio", "transitions", "httpx"):
            logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger
