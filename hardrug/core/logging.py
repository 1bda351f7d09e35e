"""Structured logging configuration.

Provides:
  - JSON-formatted log output for staging/production
  - Human-readable colored output for development
  - Transaction / contract correlation fields on every record
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

_CONTEXT_FIELDS = ("tx_hash", "contract_address", "network", "technique", "queue_length")


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter for production."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.pathname:
            log_entry["module"] = record.module
            log_entry["function"] = record.funcName
            log_entry["line"] = record.lineno

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else "Unknown",
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        for key in _CONTEXT_FIELDS:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, default=str)


class DevFormatter(logging.Formatter):
    """Colored human-readable formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now(timezone.utc).strftime("%H:%M:%S")
        prefix = f"{color}{ts} [{record.levelname:>8s}]{self.RESET}"
        msg = record.getMessage()

        tags = [
            value[:10]
            for value in (getattr(record, "tx_hash", None), getattr(record, "contract_address", None))
            if value
        ]
        technique = getattr(record, "technique", None)
        if technique:
            tags.append(technique)
        if tags:
            msg = f"[{' '.join(tags)}] {msg}"

        base = f"{prefix} {record.name}: {msg}"
        if record.exc_info and record.exc_info[1]:
            base += "\n" + self.formatException(record.exc_info)
        return base


def setup_logging(
    env: str = "development",
    log_level: str = "INFO",
    stream: TextIO | None = None,
) -> None:
    """Configure logging for the application.

    Args:
        env: Application environment (development/staging/production)
        log_level: Minimum log level
        stream: Output stream (default: stdout)
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    root.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    if env in ("staging", "production"):
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(DevFormatter())

    root.addHandler(handler)

    # Quiet noisy libraries
    for noisy in ("httpcore", "httpx", "urllib3", "asyncio", "web3", "solcx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def task_context(event: Any, contract_address: str | None = None) -> dict[str, Any]:
    """Build the ``extra`` mapping used to correlate log lines with a task."""
    return {
        "tx_hash": getattr(event, "tx_hash", ""),
        "network": getattr(event, "network", ""),
        "contract_address": contract_address or getattr(event, "contract_address", "") or "",
    }
