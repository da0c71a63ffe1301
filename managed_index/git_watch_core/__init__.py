"""Core building blocks for the git watcher.

Modules:
    config: shared logger for watcher modules
    state: head pointer -> Snapshot reader
    transitions: snapshot pair -> Transition classifier
    status: SyncStatus values, reporter and event stream
    orchestrator: single-flight reconciliation
    triggers: push (watchdog) and poll channels
    watcher: GitWatcher lifecycle and create_git_watcher
"""

from . import config, state, transitions, status, orchestrator, triggers, watcher

__all__ = [
    "config",
    "state",
    "transitions",
    "status",
    "orchestrator",
    "triggers",
    "watcher",
]
