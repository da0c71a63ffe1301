"""Push and poll trigger channels feeding one sink."""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Type

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from managed_index.logger import SetupFailureError, error_message

from .config import LOGGER
from .state import GitPaths

PUSH = "push"
POLL = "poll"


@dataclass(frozen=True)
class Trigger:
    source: str
    path: Optional[str] = None
    at: float = field(default_factory=time.monotonic)


TriggerSink = Callable[[Trigger], None]


def create_observer(use_polling: bool, observer_cls: Type[Observer] = Observer) -> Observer:
    """Create a watchdog observer based on configuration."""
    if use_polling:
        try:
            from watchdog.observers.polling import PollingObserver  # type: ignore

            LOGGER.info("[watch_mode] Using polling observer for git metadata events")
            return PollingObserver()
        except Exception as exc:
            LOGGER.warning(
                "[watch_mode] Polling observer unavailable, falling back to default Observer: %s", exc
            )
    return observer_cls()


def _norm(path: str) -> str:
    return os.path.normcase(os.path.realpath(path))


class GitRefsHandler(FileSystemEventHandler):
    """Forwards events on HEAD, branch refs and packed-refs; ignores the rest."""

    def __init__(self, paths: GitPaths, sink: TriggerSink, *, watch_packed_refs: bool):
        super().__init__()
        self.sink = sink
        self._head = _norm(str(paths.head))
        self._refs_heads = _norm(str(paths.refs_heads))
        self._packed_refs = _norm(str(paths.packed_refs)) if watch_packed_refs else None

    def is_relevant(self, path: str) -> bool:
        if not path:
            return False
        p = _norm(path)
        if p.endswith(".lock"):
            return False
        if p == self._head:
            return True
        if self._packed_refs is not None and p == self._packed_refs:
            return True
        return p.startswith(self._refs_heads + os.sep)

    def _maybe_emit(self, path) -> None:
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        if self.is_relevant(path):
            LOGGER.debug("[git_watcher] git metadata changed: %s", path)
            self.sink(Trigger(PUSH, path))

    def on_modified(self, event):
        if not event.is_directory:
            self._maybe_emit(event.src_path)

    def on_created(self, event):
        if not event.is_directory:
            self._maybe_emit(event.src_path)

    def on_deleted(self, event):
        if not event.is_directory:
            self._maybe_emit(event.src_path)

    def on_moved(self, event):
        # git writes <ref>.lock and renames it into place
        if not event.is_directory:
            self._maybe_emit(event.dest_path)


class PollTicker:
    """Fires a poll trigger every ``interval`` seconds until stopped."""

    def __init__(self, interval: float, sink: TriggerSink):
        self.interval = interval
        self.sink = sink
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="git-watch-poll", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.sink(Trigger(POLL))
            except Exception as exc:
                LOGGER.error("Poll trigger failed", extra={"error": str(exc)}, exc_info=True)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


class TriggerSource:
    """Owns both channels. Performs no deduplication of its own.

    ``start`` sets up each channel independently and returns the failures;
    whatever succeeded keeps running.
    """

    def __init__(
        self,
        paths: Optional[GitPaths],
        sink: TriggerSink,
        *,
        poll_interval: float,
        use_polling_observer: bool = False,
        observer_factory: Optional[Callable[[], Observer]] = None,
    ):
        self.paths = paths
        self.sink = sink
        self.poll_interval = poll_interval
        self.use_polling_observer = use_polling_observer
        self._observer_factory = observer_factory
        self._observer: Optional[Observer] = None
        self._ticker: Optional[PollTicker] = None
        self.channels: List[str] = []
        self.failures: List[SetupFailureError] = []

    def _fail(self, channel: str, exc: BaseException) -> None:
        failure = SetupFailureError(channel, error_message(exc))
        self.failures.append(failure)
        LOGGER.error(
            f"[git_watcher] Could not watch {channel}",
            extra={"error": error_message(exc), "channel": channel, "location": "TriggerSource.start"},
        )

    def start(self) -> List[SetupFailureError]:
        if self.paths is not None:
            self._start_push(self.paths)
        self._start_poll()
        return list(self.failures)

    def _start_push(self, paths: GitPaths) -> None:
        watch_packed_refs = paths.packed_refs.is_file()
        if not watch_packed_refs:
            LOGGER.info("[git_watcher] No packed-refs file found (normal for most repos)")
        try:
            observer = (
                self._observer_factory()
                if self._observer_factory is not None
                else create_observer(self.use_polling_observer)
            )
            observer.start()
        except Exception as exc:
            self._fail("observer", exc)
            return
        self._observer = observer
        handler = GitRefsHandler(paths, self.sink, watch_packed_refs=watch_packed_refs)

        # observer is already running, so each schedule() starts its emitter and fails on its own
        try:
            observer.schedule(handler, str(paths.git_dir), recursive=False)
            self.channels.append("head")
        except Exception as exc:
            self._fail("head", exc)

        try:
            observer.schedule(handler, str(paths.refs_heads), recursive=True)
            self.channels.append("refs")
        except Exception as exc:
            self._fail("refs", exc)

        if watch_packed_refs:
            try:
                if paths.common_dir != paths.git_dir:
                    observer.schedule(handler, str(paths.common_dir), recursive=False)
                self.channels.append("packed-refs")
            except Exception as exc:
                self._fail("packed-refs", exc)

    def _start_poll(self) -> None:
        try:
            ticker = PollTicker(self.poll_interval, self.sink)
            ticker.start()
        except Exception as exc:
            self._fail("poll", exc)
            return
        self._ticker = ticker
        self.channels.append("poll")
        LOGGER.info(f"[git_watcher] Polling fallback every {self.poll_interval:g} seconds")

    def stop(self) -> None:
        if self._ticker is not None:
            self._ticker.stop()
            self._ticker = None
        observer, self._observer = self._observer, None
        if observer is not None:
            try:
                observer.stop()
                if observer.is_alive():
                    observer.join()
            except Exception as exc:
                LOGGER.warning("[git_watcher] Error stopping observer: %s", exc)


__all__ = [
    "GitRefsHandler",
    "POLL",
    "PUSH",
    "PollTicker",
    "Trigger",
    "TriggerSink",
    "TriggerSource",
    "create_observer",
]
