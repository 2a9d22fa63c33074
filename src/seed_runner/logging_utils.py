"""Logging setup helpers."""

import logging


_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: str = "INFO") -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, format=_LOG_FORMAT, force=True)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))
