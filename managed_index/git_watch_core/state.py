"""Read the repository head pointer into a normalized snapshot.

Only plain files under the git metadata directory are consulted: ``HEAD``,
loose refs under ``refs/`` and the ``packed-refs`` file. Object and pack
formats are never parsed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

from managed_index.logger import NotARepositoryError

BRANCH_PREFIX = "refs/heads/"
_SYMREF_PREFIX = "ref:"
_GITDIR_PREFIX = "gitdir:"
_MAX_SYMREF_DEPTH = 5
_OBJECT_ID_RE = re.compile(r"^(?:[0-9a-f]{40}|[0-9a-f]{64})$")

PathLike = Union[str, Path]


@dataclass(frozen=True)
class Snapshot:
    """Head state at one instant. ``detached`` is true iff ``branch`` is None."""

    branch: Optional[str]
    revision: str
    detached: bool

    def __post_init__(self) -> None:
        if not self.revision:
            raise ValueError("snapshot revision must be non-empty")
        if self.detached != (self.branch is None):
            raise ValueError(
                f"detached={self.detached} inconsistent with branch={self.branch!r}"
            )

    @classmethod
    def on_branch(cls, branch: str, revision: str) -> "Snapshot":
        return cls(branch=branch, revision=revision, detached=False)

    @classmethod
    def detached_at(cls, revision: str) -> "Snapshot":
        return cls(branch=None, revision=revision, detached=True)

    @property
    def short_revision(self) -> str:
        return self.revision[:7]

    def label(self) -> str:
        if self.detached:
            return f"(detached)@{self.short_revision}"
        return f"{self.branch}@{self.short_revision}"

    def to_dict(self) -> Dict[str, object]:
        return {"branch": self.branch, "revision": self.revision, "detached": self.detached}


@dataclass(frozen=True)
class GitPaths:
    """Metadata locations for one working tree."""

    git_dir: Path
    common_dir: Path

    @property
    def head(self) -> Path:
        return self.git_dir / "HEAD"

    @property
    def refs_heads(self) -> Path:
        return self.common_dir / "refs" / "heads"

    @property
    def packed_refs(self) -> Path:
        return self.common_dir / "packed-refs"


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace").strip()


def resolve_git_dir(repo_root: PathLike) -> GitPaths:
    """Locate the metadata directory, following ``gitdir:`` and ``commondir`` files."""
    root = Path(repo_root)
    dot_git = root / ".git"
    if dot_git.is_dir():
        git_dir = dot_git
    elif dot_git.is_file():
        try:
            content = _read_text(dot_git)
        except OSError as exc:
            raise NotARepositoryError(f"Cannot read {dot_git}: {exc}") from exc
        if not content.startswith(_GITDIR_PREFIX):
            raise NotARepositoryError(f"Malformed .git file in {root}")
        git_dir = Path(content[len(_GITDIR_PREFIX):].strip())
        if not git_dir.is_absolute():
            git_dir = root / git_dir
        if not git_dir.is_dir():
            raise NotARepositoryError(f"gitdir {git_dir} referenced by {dot_git} does not exist")
    else:
        raise NotARepositoryError(f"No git metadata directory in {root}")

    common_dir = git_dir
    commondir_file = git_dir / "commondir"
    if commondir_file.is_file():
        try:
            raw = _read_text(commondir_file)
        except OSError:
            raw = ""
        if raw:
            candidate = Path(raw)
            if not candidate.is_absolute():
                candidate = git_dir / candidate
            if candidate.is_dir():
                common_dir = candidate
    return GitPaths(git_dir=git_dir, common_dir=common_dir)


def watch_paths(repo_root: PathLike) -> Dict[str, Path]:
    """Paths whose changes can move the head: pointer, branch refs, packed refs."""
    paths = resolve_git_dir(repo_root)
    return {"head": paths.head, "refs": paths.refs_heads, "packed_refs": paths.packed_refs}


def _lookup_packed_ref(packed_refs: Path, ref: str) -> Optional[str]:
    if not packed_refs.is_file():
        return None
    try:
        lines = packed_refs.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError:
        return None
    for raw in lines:
        line = raw.strip()
        # header comments and peeled tag lines
        if not line or line.startswith("#") or line.startswith("^"):
            continue
        parts = line.split(None, 1)
        if len(parts) == 2 and parts[1] == ref:
            return parts[0]
    return None


def _resolve_ref(paths: GitPaths, ref: str) -> str:
    seen = 0
    current = ref
    while seen < _MAX_SYMREF_DEPTH:
        seen += 1
        # per-worktree refs (e.g. bisect) live in git_dir; shared refs in common_dir
        value = None
        for base in (paths.git_dir, paths.common_dir):
            loose = base / current
            if loose.is_file():
                try:
                    value = _read_text(loose)
                except OSError:
                    value = None
                if value:
                    break
        if not value:
            value = _lookup_packed_ref(paths.packed_refs, current)
        if not value:
            raise NotARepositoryError(f"Reference {current} has no revision yet")
        if value.startswith(_SYMREF_PREFIX):
            current = value[len(_SYMREF_PREFIX):].strip()
            continue
        if not _OBJECT_ID_RE.match(value):
            raise NotARepositoryError(f"Reference {current} holds a malformed id: {value[:80]!r}")
        return value
    raise NotARepositoryError(f"Symbolic reference chain too deep starting at {ref}")


def read_snapshot(repo_root: PathLike) -> Snapshot:
    """Derive the current Snapshot for ``repo_root``.

    Raises:
        NotARepositoryError: metadata directory or head pointer missing,
            malformed, or pointing at a branch with no commits.
    """
    paths = resolve_git_dir(repo_root)
    head = paths.head
    try:
        content = _read_text(head)
    except FileNotFoundError as exc:
        raise NotARepositoryError(f"Missing head pointer {head}") from exc
    except OSError as exc:
        raise NotARepositoryError(f"Cannot read head pointer {head}: {exc}") from exc
    if not content:
        raise NotARepositoryError(f"Empty head pointer {head}")

    if content.startswith(_SYMREF_PREFIX):
        ref = content[len(_SYMREF_PREFIX):].strip()
        revision = _resolve_ref(paths, ref)
        branch = ref[len(BRANCH_PREFIX):] if ref.startswith(BRANCH_PREFIX) else ref
        return Snapshot.on_branch(branch, revision)

    if _OBJECT_ID_RE.match(content):
        return Snapshot.detached_at(content)
    raise NotARepositoryError(f"Malformed head pointer {head}: {content[:80]!r}")


__all__ = [
    "BRANCH_PREFIX",
    "GitPaths",
    "Snapshot",
    "read_snapshot",
    "resolve_git_dir",
    "watch_paths",
]
