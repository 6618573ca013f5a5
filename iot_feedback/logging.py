"""Logging configuration helpers."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

TEXT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_NOISY_LOGGERS = (
    "aiohttp.access",
    "urllib3",
    "paho",
    "botocore",
    "boto3",
    "s3transfer",
)


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(
    level: str = "INFO",
    *,
    log_path: Optional[Path] = None,
    log_network: bool = False,
    json_format: bool = False,
) -> None:
    """Configure root logging handlers.

    Parameters
    ----------
    level:
        Log level name, e.g. "INFO". Unknown names fall back to INFO.
    log_path:
        Optional filesystem path for a file handler. When absent, only console logging is configured.
    log_network:
        When true, keep verbose third-party libraries (paho, botocore) at the root level to aid diagnostics.
    json_format:
        Emit one JSON object per line instead of the pipe-separated text format.
    """

    logging.captureWarnings(True)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter: logging.Formatter = (
        JsonFormatter() if json_format else logging.Formatter(TEXT_FORMAT)
    )

    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO))
    for handler in root.handlers:
        handler.setFormatter(formatter)

    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    if not log_network:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
