"""Shared logging helpers for the git watcher."""

from __future__ import annotations

import os
from typing import Optional

from managed_index.logger import ContextLogger, get_logger


def json_logging_enabled() -> bool:
    return os.environ.get("LOG_FORMAT", "").strip().lower() == "json"


def build_logger(name: str = "managed_index.git_watcher", json_format: Optional[bool] = None):
    """Create a logger, falling back to logging.getLogger when the main logger fails.

    ``LOG_FORMAT=json`` switches the logger to one JSON object per line on stderr.
    """
    if json_format is None:
        json_format = json_logging_enabled()
    try:
        return get_logger(name, json_format=json_format)
    except Exception:  # pragma: no cover - fallback for logger import issues
        import logging

        return logging.getLogger(name)


LOGGER = build_logger()


def workspace_logger(workspace_path: str) -> ContextLogger:
    """Logger that tags every record with the watched workspace."""
    return ContextLogger(LOGGER, workspace=workspace_path)
