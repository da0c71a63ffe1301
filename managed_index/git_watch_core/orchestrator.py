"""Single-flight reconciliation of git state changes with the index."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from managed_index.api_client import ManifestClient, ManifestSummary
from managed_index.config import ManagedIndexingConfig
from managed_index.logger import (
    ManifestUnavailableError,
    NotARepositoryError,
    ScanFailureError,
    error_message,
)
from managed_index.scanner import ScanPipeline, ScanProgress, scan_directory

from .config import workspace_logger
from .state import Snapshot, read_snapshot
from .status import Error, Idle, Scanning, StatusReporter, SyncSummary, Watching, now_ms
from .transitions import (
    BranchSwitch,
    DetachedEntered,
    DetachedRecovered,
    NoChange,
    RevisionAdvance,
    Transition,
    classify,
)

# (organization_id, project_id, branch, token) -> manifest
ManifestFetcher = Callable[[str, str, str, str], ManifestSummary]
SnapshotReader = Callable[[str], Snapshot]

DETACHED_MESSAGE = "Detached HEAD state - indexing disabled"


@dataclass(frozen=True)
class TriggerOutcome:
    """What one trigger did: the transition acted on, or why nothing happened."""

    transition: Optional[Transition] = None
    dropped: bool = False
    error: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.transition is not None and not isinstance(self.transition, NoChange)


@dataclass(frozen=True)
class _Messages:
    started: str
    scanning: Optional[str]
    progress: str
    done: str
    failed: str


def _branch_messages(branch: str) -> _Messages:
    return _Messages(
        started=f"Branch changed to {branch}, fetching manifest...",
        scanning=f"Scanning branch {branch}...",
        progress="Scanning: {processed}/{total} files ({chunks} chunks)",
        done=f"Branch {branch} indexed successfully",
        failed=f"Failed to index branch {branch}",
    )


_COMMIT_MESSAGES = _Messages(
    started="New commit detected, updating index...",
    scanning=None,
    progress="Updating: {processed}/{total} files ({chunks} chunks)",
    done="Index updated after commit",
    failed="Failed to update index after commit",
)


class SyncOrchestrator:
    """Owns the last-known snapshot and the in-flight flag for one watcher.

    ``handle_trigger`` is the only entry point. It never raises; every outcome
    is reported through the StatusReporter and the returned TriggerOutcome.
    """

    def __init__(
        self,
        config: ManagedIndexingConfig,
        reporter: StatusReporter,
        *,
        context: Any = None,
        scan_pipeline: ScanPipeline = scan_directory,
        manifest_fetcher: Optional[ManifestFetcher] = None,
        snapshot_reader: SnapshotReader = read_snapshot,
    ):
        self.config = config
        self.reporter = reporter
        self.context = context
        self._scan = scan_pipeline
        self._fetch = manifest_fetcher
        self._read_snapshot = snapshot_reader
        self._client: Optional[ManifestClient] = None
        self._last_snapshot: Optional[Snapshot] = None
        self._in_flight = threading.Lock()
        self.log = workspace_logger(config.workspace_path)

    @property
    def last_snapshot(self) -> Optional[Snapshot]:
        return self._last_snapshot

    @property
    def in_flight(self) -> bool:
        return self._in_flight.locked()

    def seed(self, snapshot: Optional[Snapshot]) -> None:
        """Set the starting snapshot without reconciling."""
        self._last_snapshot = snapshot

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def handle_trigger(self, source: str = "manual") -> TriggerOutcome:
        if not self._in_flight.acquire(blocking=False):
            self.log.info("[git_watcher] Already processing, skipping", source=source)
            return TriggerOutcome(dropped=True)
        try:
            return self._handle(source)
        except Exception as exc:
            self.log.exception("[git_watcher] Error handling git change", source=source)
            return TriggerOutcome(error=error_message(exc))
        finally:
            self._in_flight.release()

    def _handle(self, source: str) -> TriggerOutcome:
        try:
            current = self._read_snapshot(self.config.workspace_path)
        except NotARepositoryError as exc:
            self.log.warning(f"[git_watcher] Could not determine git state: {exc}", source=source)
            return TriggerOutcome(error=error_message(exc))

        previous = self._last_snapshot
        transition = classify(previous, current)
        if isinstance(transition, NoChange):
            self.log.debug("[git_watcher] No git state change detected", source=source)
            self._last_snapshot = current
            return TriggerOutcome(transition=transition)

        self.log.info(
            f"[git_watcher] Git state changed: "
            f"{previous.label() if previous else '(none)'} -> {current.label()} ({transition.describe()})",
            source=source,
        )
        self._apply(transition, current)
        # stored after the reconciliation so the next trigger compares against it
        self._last_snapshot = current
        return TriggerOutcome(transition=transition)

    def _apply(self, transition: Transition, current: Snapshot) -> None:
        if isinstance(transition, DetachedEntered):
            self.log.info("[git_watcher] Detached HEAD detected - disabling indexing")
            self.reporter.emit(Idle(message=DETACHED_MESSAGE, branch=None))
        elif isinstance(transition, BranchSwitch):
            self._reconcile(transition.to_branch, _branch_messages(transition.to_branch))
        elif isinstance(transition, DetachedRecovered):
            self._reconcile(transition.branch, _branch_messages(transition.branch))
        elif isinstance(transition, RevisionAdvance):
            self._reconcile(current.branch, _COMMIT_MESSAGES)

    def _reconcile(self, branch: str, messages: _Messages) -> None:
        emit = self.reporter.emit
        log = self.log.bind(branch=branch)
        try:
            emit(Scanning(progress=ScanProgress(), message=messages.started, branch=branch))
            manifest = self._fetch_manifest(branch)
            if manifest is not None:
                log.info(
                    f"[git_watcher] Fetched manifest for {branch}: "
                    f"{manifest.total_files} files, {manifest.total_chunks} chunks"
                )
            else:
                log.warning(f"[git_watcher] No manifest found for {branch}, will perform full scan")

            if messages.scanning:
                emit(Scanning(progress=ScanProgress(), message=messages.scanning, branch=branch))

            def on_progress(progress: ScanProgress) -> None:
                emit(Scanning(
                    progress=progress,
                    message=messages.progress.format(
                        processed=progress.files_processed,
                        total=progress.files_total,
                        chunks=progress.chunks_indexed,
                    ),
                    branch=branch,
                ))

            result = self._scan(self.config, self.context, manifest, on_progress)
            if not result.success:
                raise ScanFailureError(f"Scan failed with {len(result.errors)} errors")

            updated = self._fetch_manifest(branch)
            if updated is None:
                log.warning("[git_watcher] Failed to fetch updated manifest after scan")
            emit(Watching(
                summary=SyncSummary(
                    branch=branch,
                    last_sync_time=now_ms(),
                    total_files=result.files_processed,
                    total_chunks=result.chunks_indexed,
                    manifest=updated,
                ),
                message=messages.done,
            ))
        except Exception as exc:
            cause = error_message(exc)
            log.error(f"[git_watcher] {messages.failed}: {cause}", exc_info=exc)
            emit(Error(message=f"{messages.failed}: {cause}", error=cause, branch=branch))

    def _fetch_manifest(self, branch: str) -> Optional[ManifestSummary]:
        """Best-effort manifest fetch; any failure means no manifest."""
        cfg = self.config
        fetch = self._fetch
        if fetch is None:
            if not cfg.organization_id or not cfg.project_id:
                self.log.debug("[git_watcher] Manifest service not configured; skipping fetch")
                return None
            fetch = self._default_fetch
        try:
            return fetch(cfg.organization_id, cfg.project_id, branch, cfg.token)
        except ManifestUnavailableError as exc:
            self.log.debug(f"[git_watcher] Manifest unavailable for {branch}: {exc}")
        except Exception as exc:
            self.log.warning(f"[git_watcher] Manifest fetch failed for {branch}: {error_message(exc)}")
        return None

    def _default_fetch(self, organization_id: str, project_id: str, branch: str, token: str) -> ManifestSummary:
        if self._client is None:
            self._client = ManifestClient.from_config(self.config)
        return self._client.get_manifest(organization_id, project_id, branch, token=token)


__all__ = ["ManifestFetcher", "SyncOrchestrator", "TriggerOutcome", "DETACHED_MESSAGE"]
