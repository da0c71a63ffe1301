"""
Remote manifest client for managed indexing.

The manifest service keeps, per organization/project/branch, a summary of what
has already been indexed. The watcher only reads it: a manifest lets the scan
skip files whose content is already known, and its absence simply means a full
scan.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from managed_index.config import DEFAULT_ENDPOINT, ManagedIndexingConfig
from managed_index.logger import ManifestUnavailableError, get_logger

logger = get_logger(__name__)

MANIFEST_PATH = "/api/code-indexing/manifest"


def _parse_timestamp(raw: Any) -> datetime:
    """Accept epoch milliseconds or ISO-8601; fall back to now."""
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return datetime.fromtimestamp(float(raw) / 1000.0, tz=timezone.utc)
    if isinstance(raw, str) and raw.strip():
        text = raw.strip()
        if text.isdigit():
            return datetime.fromtimestamp(int(text) / 1000.0, tz=timezone.utc)
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"[manifest] Unparseable lastUpdated value: {raw!r}")
        else:
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ManifestSummary:
    """Server-side summary of what is indexed for one branch."""

    total_files: int
    total_chunks: int
    last_updated: datetime
    # relative path -> content hash; may be empty when the server omits it
    files: Dict[str, str] = field(default_factory=dict, compare=False)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ManifestSummary":
        if not isinstance(payload, dict):
            raise ManifestUnavailableError("Manifest payload is not an object")
        try:
            total_files = int(payload["totalFiles"])
            total_chunks = int(payload["totalChunks"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ManifestUnavailableError(f"Manifest payload missing counts: {exc}") from exc

        files: Dict[str, str] = {}
        raw_files = payload.get("files") or []
        if isinstance(raw_files, dict):
            files = {str(k): str(v) for k, v in raw_files.items()}
        elif isinstance(raw_files, list):
            for entry in raw_files:
                if isinstance(entry, dict) and entry.get("filePath") and entry.get("fileHash"):
                    files[str(entry["filePath"])] = str(entry["fileHash"])
        return cls(
            total_files=total_files,
            total_chunks=total_chunks,
            last_updated=_parse_timestamp(payload.get("lastUpdated")),
            files=files,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_files": self.total_files,
            "total_chunks": self.total_chunks,
            "last_updated": self.last_updated.isoformat(),
        }


class ManifestClient:
    """HTTP client for the manifest endpoint."""

    def __init__(self, base_url: str, token: str = "", max_retries: int = 3,
                 timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout

        if session is not None:
            self.session = session
        else:
            self.session = requests.Session()
            retry_strategy = Retry(total=max_retries, backoff_factor=1, status_forcelist=[429, 500, 502, 503, 504])
            adapter = HTTPAdapter(max_retries=retry_strategy)
            self.session.mount("http://", adapter)
            self.session.mount("https://", adapter)

    @classmethod
    def from_config(cls, config: ManagedIndexingConfig) -> "ManifestClient":
        return cls(
            config.api_base_url,
            token=config.token,
            max_retries=config.max_retries,
            timeout=config.http_timeout,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        try:
            self.session.close()
        except Exception as e:
            logger.debug(f"[manifest] Error closing HTTP session: {e}")

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self.token if token is None else token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def get_manifest(self, organization_id: str, project_id: str, branch: str,
                     token: Optional[str] = None) -> ManifestSummary:
        """Fetch the manifest for ``branch``; ``token`` overrides the client token.

        Raises:
            ManifestUnavailableError: no manifest exists, the server errored,
                or the request could not be completed.
        """
        params = {
            "organizationId": organization_id,
            "projectId": project_id,
            "gitBranch": branch,
        }
        try:
            response = self.session.get(
                f"{self.base_url}{MANIFEST_PATH}",
                params=params,
                headers=self._headers(token),
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise ManifestUnavailableError(f"Manifest request timed out for {branch}") from e
        except requests.exceptions.ConnectionError as e:
            raise ManifestUnavailableError(f"Cannot connect to manifest service at {self.base_url}") from e
        except requests.exceptions.RequestException as e:
            raise ManifestUnavailableError(f"Manifest request failed for {branch}: {e}") from e

        if response.status_code == 404:
            raise ManifestUnavailableError(f"No manifest found for branch {branch}")
        if response.status_code != 200:
            error_msg = f"Manifest request failed with HTTP {response.status_code}"
            try:
                detail = response.json()
                if isinstance(detail, dict):
                    error_msg += f": {detail.get('error') or detail.get('message') or 'Unknown error'}"
            except ValueError:
                error_msg += f": {response.text[:100]}"
            raise ManifestUnavailableError(error_msg)

        try:
            payload = response.json()
        except ValueError as e:
            raise ManifestUnavailableError(f"Manifest response for {branch} is not JSON") from e
        return ManifestSummary.from_payload(payload)


def get_server_manifest(organization_id: str, project_id: str, branch: str, token: str,
                        *, config: Optional[ManagedIndexingConfig] = None,
                        base_url: Optional[str] = None) -> ManifestSummary:
    """One-shot manifest fetch; builds a client per call."""
    if config is not None:
        client = ManifestClient.from_config(config)
        if token:
            client.token = token
    else:
        client = ManifestClient(base_url or DEFAULT_ENDPOINT, token=token)
    with client:
        return client.get_manifest(organization_id, project_id, branch)


__all__ = ["ManifestClient", "ManifestSummary", "get_server_manifest"]
