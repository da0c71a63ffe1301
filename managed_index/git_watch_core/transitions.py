"""Classify the difference between two head snapshots."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from .state import Snapshot


@dataclass(frozen=True)
class NoChange:
    requires_sync = False

    def describe(self) -> str:
        return "no git state change"


@dataclass(frozen=True)
class BranchSwitch:
    """Checked-out branch changed. ``from_branch`` is None for the initial establish event."""

    from_branch: Optional[str]
    to_branch: str
    requires_sync = True

    @property
    def establishing(self) -> bool:
        return self.from_branch is None

    def describe(self) -> str:
        if self.establishing:
            return f"git state established on {self.to_branch}"
        return f"branch changed: {self.from_branch} -> {self.to_branch}"


@dataclass(frozen=True)
class RevisionAdvance:
    from_revision: str
    to_revision: str
    requires_sync = True

    def describe(self) -> str:
        return f"commit changed: {self.from_revision[:7]} -> {self.to_revision[:7]}"


@dataclass(frozen=True)
class DetachedEntered:
    requires_sync = False

    def describe(self) -> str:
        return "detached HEAD entered"


@dataclass(frozen=True)
class DetachedRecovered:
    branch: str
    requires_sync = True

    def describe(self) -> str:
        return f"recovered from detached HEAD onto {self.branch}"


Transition = Union[NoChange, BranchSwitch, RevisionAdvance, DetachedEntered, DetachedRecovered]


def classify(previous: Optional[Snapshot], current: Snapshot) -> Transition:
    """Return exactly one transition from ``previous`` to ``current``.

    A branch difference wins over a simultaneous revision difference: the
    switch already implies new tree content, so one reconciliation covers both.
    """
    if previous is None:
        if current.detached:
            return DetachedEntered()
        return BranchSwitch(None, current.branch)
    if current.detached and not previous.detached:
        return DetachedEntered()
    if not current.detached and previous.detached:
        return DetachedRecovered(current.branch)
    if current.detached and previous.detached:
        # indexing is suspended; revision moves while detached are not signals
        return NoChange()
    if current.branch != previous.branch:
        return BranchSwitch(previous.branch, current.branch)
    if current.revision != previous.revision:
        return RevisionAdvance(previous.revision, current.revision)
    return NoChange()


__all__ = [
    "BranchSwitch",
    "DetachedEntered",
    "DetachedRecovered",
    "NoChange",
    "RevisionAdvance",
    "Transition",
    "classify",
]
