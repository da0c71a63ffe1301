"""Sync status values and their delivery to the owning caller."""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from managed_index.api_client import ManifestSummary
from managed_index.scanner import ScanProgress

from .config import LOGGER


@dataclass(frozen=True)
class SyncSummary:
    branch: str
    last_sync_time: float
    total_files: int
    total_chunks: int
    manifest: Optional[ManifestSummary] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "branch": self.branch,
            "last_sync_time": self.last_sync_time,
            "total_files": self.total_files,
            "total_chunks": self.total_chunks,
            "manifest": self.manifest.to_dict() if self.manifest is not None else None,
        }


@dataclass(frozen=True)
class Idle:
    message: str = ""
    branch: Optional[str] = None
    status = "idle"

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "message": self.message, "git_branch": self.branch}


@dataclass(frozen=True)
class Scanning:
    progress: ScanProgress = field(default_factory=ScanProgress)
    message: str = ""
    branch: Optional[str] = None
    status = "scanning"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "git_branch": self.branch,
            "progress": self.progress.to_dict(),
        }


@dataclass(frozen=True)
class Watching:
    summary: SyncSummary
    message: str = ""
    status = "watching"

    @property
    def branch(self) -> str:
        return self.summary.branch

    def to_dict(self) -> Dict[str, Any]:
        data = {"status": self.status, "message": self.message, "git_branch": self.branch}
        data.update(self.summary.to_dict())
        return data


@dataclass(frozen=True)
class Error:
    message: str
    error: str = ""
    branch: Optional[str] = None
    status = "error"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "error": self.error,
            "git_branch": self.branch,
        }


SyncStatus = Union[Idle, Scanning, Watching, Error]
StateChangeCallback = Callable[[SyncStatus], None]

_CLOSED = object()


class StatusStream:
    """Iterable channel of status updates; iteration stops once closed.

    Closing never blocks: on a full bounded stream the oldest pending updates
    are discarded to make room for the end marker.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def put(self, status: SyncStatus) -> None:
        if self._closed.is_set():
            return
        try:
            self._queue.put_nowait(status)
        except queue.Full:
            LOGGER.warning("[git_watcher] Status stream full; dropping update")

    def _put_end_marker(self) -> None:
        while True:
            try:
                self._queue.put_nowait(_CLOSED)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._put_end_marker()

    def get(self, timeout: Optional[float] = None) -> Optional[SyncStatus]:
        """Next status, or None when closed or on timeout."""
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            # leave the marker for any other consumer
            self._put_end_marker()
            return None
        return item  # type: ignore[return-value]

    def __iter__(self) -> Iterator[SyncStatus]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                self._put_end_marker()
                return
            yield item  # type: ignore[misc]


class StatusReporter:
    """Delivers status updates to listeners and open streams until closed."""

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: List[StateChangeCallback] = []
        self._streams: List[StatusStream] = []
        self._closed = False
        self.current: SyncStatus = Idle(message="Watcher starting")

    def subscribe(self, callback: StateChangeCallback) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        with self._lock:
            self._listeners.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return _unsubscribe

    def open_stream(self, maxsize: int = 0) -> StatusStream:
        """Attach a new stream that receives every later update."""
        stream = StatusStream(maxsize=maxsize)
        with self._lock:
            if self._closed:
                stream.close()
            else:
                self._streams.append(stream)
        return stream

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, status: SyncStatus) -> None:
        with self._lock:
            if self._closed:
                LOGGER.debug("[git_watcher] Reporter closed; discarding %s update", status.status)
                return
            self.current = status
            listeners = list(self._listeners)
            streams = list(self._streams)
        for stream in streams:
            stream.put(status)
        for listener in listeners:
            try:
                listener(status)
            except Exception as exc:
                LOGGER.error(
                    "State change listener failed",
                    extra={"error": str(exc), "status": status.status},
                    exc_info=True,
                )

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._listeners.clear()
            streams, self._streams = self._streams, []
        for stream in streams:
            stream.close()


def now_ms() -> float:
    return time.time() * 1000.0


__all__ = [
    "Error",
    "Idle",
    "Scanning",
    "StateChangeCallback",
    "StatusReporter",
    "StatusStream",
    "SyncStatus",
    "SyncSummary",
    "Watching",
    "now_ms",
]
