"""Environment-based configuration for managed indexing."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from managed_index.logger import ConfigurationError, get_logger, safe_bool, safe_float, safe_int

logger = get_logger(__name__)

DEFAULT_ENDPOINT = "http://localhost:8080"
DEFAULT_POLL_SECS = 3.0
DEFAULT_CHUNK_LINES = 120
DEFAULT_CHUNK_OVERLAP = 20


def _resolve_workspace_root() -> str:
    return os.environ.get("WATCH_ROOT") or os.environ.get("WORKSPACE_PATH") or os.getcwd()


def _split_patterns(raw: str | None) -> List[str]:
    if not raw:
        return []
    return [p.strip() for p in raw.split(",") if p.strip()]


@dataclass
class ManagedIndexingConfig:
    """Settings for one watched workspace and its remote manifest service."""

    workspace_path: str
    organization_id: str = ""
    project_id: str = ""
    token: str = ""
    api_base_url: str = DEFAULT_ENDPOINT
    poll_interval: float = DEFAULT_POLL_SECS
    use_polling_observer: bool = False
    initial_sync: bool = False
    catchup_recheck: bool = True
    # None means no timeout on manifest requests
    http_timeout: Optional[float] = None
    max_retries: int = 3
    chunk_lines: int = DEFAULT_CHUNK_LINES
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP
    extra_excludes: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.workspace_path:
            raise ConfigurationError("workspace_path is required")
        self.workspace_path = str(Path(self.workspace_path).expanduser().resolve())
        if self.poll_interval <= 0:
            raise ConfigurationError(f"poll_interval must be positive, got {self.poll_interval}")
        if self.chunk_lines <= 0:
            raise ConfigurationError(f"chunk_lines must be positive, got {self.chunk_lines}")
        if not 0 <= self.chunk_overlap < self.chunk_lines:
            raise ConfigurationError(
                f"chunk_overlap must be in [0, {self.chunk_lines}), got {self.chunk_overlap}"
            )
        self.api_base_url = (self.api_base_url or DEFAULT_ENDPOINT).rstrip("/")

    @property
    def workspace(self) -> Path:
        return Path(self.workspace_path)

    @classmethod
    def from_env(cls, workspace_path: Optional[str] = None, **overrides: Any) -> "ManagedIndexingConfig":
        """Build a config from environment variables; explicit overrides win.

        Overrides set to None are ignored so CLI flags that were not passed
        fall through to the environment.
        """
        env = os.environ
        values: Dict[str, Any] = {
            "workspace_path": workspace_path or _resolve_workspace_root(),
            "organization_id": env.get("MANAGED_INDEX_ORG_ID", ""),
            "project_id": env.get("MANAGED_INDEX_PROJECT_ID", ""),
            "token": env.get("MANAGED_INDEX_TOKEN", ""),
            "api_base_url": env.get("MANAGED_INDEX_ENDPOINT", DEFAULT_ENDPOINT),
            "poll_interval": safe_float(
                env.get("MANAGED_INDEX_POLL_SECS"), DEFAULT_POLL_SECS, logger, "MANAGED_INDEX_POLL_SECS"
            ),
            "use_polling_observer": safe_bool(
                env.get("WATCH_USE_POLLING"), False, logger, "WATCH_USE_POLLING"
            ),
            "initial_sync": safe_bool(
                env.get("MANAGED_INDEX_INITIAL_SYNC"), False, logger, "MANAGED_INDEX_INITIAL_SYNC"
            ),
            "catchup_recheck": safe_bool(
                env.get("MANAGED_INDEX_CATCHUP_RECHECK"), True, logger, "MANAGED_INDEX_CATCHUP_RECHECK"
            ),
            "http_timeout": safe_float(
                env.get("MANAGED_INDEX_HTTP_TIMEOUT"), None, logger, "MANAGED_INDEX_HTTP_TIMEOUT"
            ),
            "max_retries": safe_int(
                env.get("MANAGED_INDEX_MAX_RETRIES"), 3, logger, "MANAGED_INDEX_MAX_RETRIES"
            ),
            "chunk_lines": safe_int(
                env.get("MANAGED_INDEX_CHUNK_LINES"), DEFAULT_CHUNK_LINES, logger, "MANAGED_INDEX_CHUNK_LINES"
            ),
            "chunk_overlap": safe_int(
                env.get("MANAGED_INDEX_CHUNK_OVERLAP"), DEFAULT_CHUNK_OVERLAP, logger, "MANAGED_INDEX_CHUNK_OVERLAP"
            ),
            "extra_excludes": _split_patterns(env.get("MANAGED_INDEX_EXCLUDES")),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> "ManagedIndexingConfig":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def get_mapping_summary(self) -> Dict[str, Any]:
        """Return the non-secret settings for display."""
        return {
            "workspace_path": self.workspace_path,
            "organization_id": self.organization_id,
            "project_id": self.project_id,
            "api_base_url": self.api_base_url,
            "poll_interval": self.poll_interval,
            "use_polling_observer": self.use_polling_observer,
            "has_token": bool(self.token),
        }


__all__ = ["ManagedIndexingConfig", "DEFAULT_POLL_SECS"]
