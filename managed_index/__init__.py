"""Keep a code index in step with the checked-out git branch and commit."""

from managed_index.git_watch_core.watcher import GitWatcher, WatcherDiagnostics, create_git_watcher

__all__ = ["GitWatcher", "WatcherDiagnostics", "create_git_watcher"]
