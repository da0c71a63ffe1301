"""Git watcher entrypoint: wires triggers, orchestrator and status reporting.

All triggers land on one queue drained by a single consumer thread, so the
orchestrator is never entered concurrently from the watcher itself.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from managed_index.config import ManagedIndexingConfig
from managed_index.logger import NotARepositoryError, SetupFailureError, error_message
from managed_index.scanner import ScanPipeline, scan_directory

from .config import LOGGER, workspace_logger
from .orchestrator import DETACHED_MESSAGE, ManifestFetcher, SnapshotReader, SyncOrchestrator
from .state import GitPaths, Snapshot, read_snapshot, resolve_git_dir
from .status import Idle, StateChangeCallback, StatusReporter, StatusStream, SyncStatus
from .triggers import Trigger, TriggerSource

CATCHUP = "catchup"
INITIAL = "initial"


@dataclass
class WatcherDiagnostics:
    """Setup outcome: which channels run and which could not be established."""

    git_dir: Optional[str] = None
    channels: List[str] = field(default_factory=list)
    failures: List[SetupFailureError] = field(default_factory=list)
    initial_snapshot: Optional[Snapshot] = None
    initial_error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return bool(self.failures)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "git_dir": self.git_dir,
            "channels": list(self.channels),
            "failures": [{"channel": f.channel, "error": str(f)} for f in self.failures],
            "initial_snapshot": self.initial_snapshot.to_dict() if self.initial_snapshot else None,
            "initial_error": self.initial_error,
        }


class GitWatcher:
    def __init__(
        self,
        config: ManagedIndexingConfig,
        *,
        context: Any = None,
        scan_pipeline: ScanPipeline = scan_directory,
        manifest_fetcher: Optional[ManifestFetcher] = None,
        snapshot_reader: SnapshotReader = read_snapshot,
        observer_factory: Optional[Callable[[], Any]] = None,
    ):
        self.config = config
        self.reporter = StatusReporter()
        self.orchestrator = SyncOrchestrator(
            config,
            self.reporter,
            context=context,
            scan_pipeline=scan_pipeline,
            manifest_fetcher=manifest_fetcher,
            snapshot_reader=snapshot_reader,
        )
        self.diagnostics = WatcherDiagnostics()
        self._read_snapshot = snapshot_reader
        self._observer_factory = observer_factory
        self._triggers: "queue.Queue[Optional[Trigger]]" = queue.Queue()
        self._source: Optional[TriggerSource] = None
        self._consumer: Optional[threading.Thread] = None
        self._disposed = threading.Event()
        self._dispose_lock = threading.Lock()
        self.log = workspace_logger(config.workspace_path)

    # -- public surface -------------------------------------------------

    @property
    def status(self) -> SyncStatus:
        return self.reporter.current

    @property
    def disposed(self) -> bool:
        return self._disposed.is_set()

    def on_state_change(self, callback: StateChangeCallback) -> Callable[[], None]:
        return self.reporter.subscribe(callback)

    def open_stream(self, maxsize: int = 0) -> StatusStream:
        return self.reporter.open_stream(maxsize=maxsize)

    def submit(self, trigger: Trigger) -> None:
        """Enqueue a trigger; ignored once disposed."""
        if self._disposed.is_set():
            return
        self._triggers.put(trigger)

    def check_now(self) -> None:
        self.submit(Trigger("manual"))

    # -- lifecycle ------------------------------------------------------

    def start(self, start_channels: bool = True) -> WatcherDiagnostics:
        if self._consumer is not None:
            return self.diagnostics
        self._seed()
        self._consumer = threading.Thread(target=self._run, name="git-watch-consumer", daemon=True)
        self._consumer.start()

        if start_channels:
            self._start_channels()
        if self.config.initial_sync:
            self.submit(Trigger(INITIAL))
        return self.diagnostics

    def _seed(self) -> None:
        try:
            snapshot = self._read_snapshot(self.config.workspace_path)
        except NotARepositoryError as exc:
            self.diagnostics.initial_error = error_message(exc)
            self.log.error(f"[git_watcher] Could not read initial git state: {exc}")
            self.reporter.emit(Idle(message=f"Not a git repository: {error_message(exc)}"))
            return

        self.diagnostics.initial_snapshot = snapshot
        if not self.config.initial_sync:
            self.orchestrator.seed(snapshot)
        self.log.info(f"[git_watcher] Initial state: {snapshot.label()}")
        if snapshot.detached:
            self.reporter.emit(Idle(message=DETACHED_MESSAGE))
        else:
            self.reporter.emit(Idle(message=f"Watching {snapshot.branch}", branch=snapshot.branch))

    def _start_channels(self) -> None:
        paths: Optional[GitPaths] = None
        try:
            paths = resolve_git_dir(self.config.workspace_path)
            self.diagnostics.git_dir = str(paths.git_dir)
        except NotARepositoryError as exc:
            failure = SetupFailureError("push", error_message(exc))
            self.diagnostics.failures.append(failure)
            self.log.error(f"[git_watcher] Push notifications unavailable: {exc}")

        self._source = TriggerSource(
            paths,
            self.submit,
            poll_interval=self.config.poll_interval,
            use_polling_observer=self.config.use_polling_observer,
            observer_factory=self._observer_factory,
        )
        self.diagnostics.failures.extend(self._source.start())
        self.diagnostics.channels = list(self._source.channels)
        self.log.info(
            f"[git_watcher] Git watcher setup complete with {len(self.diagnostics.channels)} channels",
            channels=self.diagnostics.channels,
            failures=len(self.diagnostics.failures),
        )

    def _run(self) -> None:
        try:
            while True:
                trigger = self._triggers.get()
                if trigger is None or self._disposed.is_set():
                    break
                outcome = self.orchestrator.handle_trigger(trigger.source)
                if not outcome.changed:
                    continue
                dropped, stop = self._drain()
                if stop:
                    break
                if dropped:
                    self.log.debug(f"[git_watcher] Dropped {dropped} triggers raised during sync")
                    if self.config.catchup_recheck and not self._disposed.is_set():
                        self.orchestrator.handle_trigger(CATCHUP)
        finally:
            self.orchestrator.close()

    def _drain(self) -> "tuple[int, bool]":
        """Discard queued triggers. Returns (count, sentinel_seen)."""
        dropped = 0
        while True:
            try:
                item = self._triggers.get_nowait()
            except queue.Empty:
                return dropped, False
            if item is None:
                return dropped, True
            dropped += 1

    def dispose(self, timeout: Optional[float] = 5.0) -> None:
        """Stop both channels and detach listeners. Safe to call more than once.

        An in-flight reconciliation is left to finish; its status updates are
        discarded.
        """
        with self._dispose_lock:
            if self._disposed.is_set():
                return
            self._disposed.set()
        if self._source is not None:
            self._source.stop()
        self.reporter.close()
        self._triggers.put(None)
        consumer = self._consumer
        if consumer is not None and consumer is not threading.current_thread():
            consumer.join(timeout)
        elif consumer is None:
            self.orchestrator.close()
        LOGGER.info(f"[git_watcher] Watcher disposed for {self.config.workspace_path}")

    close = dispose

    def __enter__(self) -> "GitWatcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()


def create_git_watcher(
    config: ManagedIndexingConfig,
    context: Any = None,
    on_state_change: Optional[StateChangeCallback] = None,
    *,
    scan_pipeline: ScanPipeline = scan_directory,
    manifest_fetcher: Optional[ManifestFetcher] = None,
    snapshot_reader: SnapshotReader = read_snapshot,
    observer_factory: Optional[Callable[[], Any]] = None,
    start_channels: bool = True,
) -> GitWatcher:
    """Create and start a watcher for ``config.workspace_path``.

    Setup failures do not raise; they are recorded on ``watcher.diagnostics``.
    """
    watcher = GitWatcher(
        config,
        context=context,
        scan_pipeline=scan_pipeline,
        manifest_fetcher=manifest_fetcher,
        snapshot_reader=snapshot_reader,
        observer_factory=observer_factory,
    )
    if on_state_change is not None:
        watcher.on_state_change(on_state_change)
    watcher.start(start_channels=start_channels)
    return watcher


__all__ = ["GitWatcher", "WatcherDiagnostics", "create_git_watcher"]
