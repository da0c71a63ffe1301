#!/usr/bin/env python3
"""
scanner.py - Default local scan pipeline for managed indexing.

Walks the workspace, splits changed files into line-window chunks and hands
them to an optional sink. Files whose content hash matches the branch manifest
are skipped. Embedding and storage belong to whatever sink the host provides.
"""
from __future__ import annotations

import fnmatch
import hashlib
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from managed_index.api_client import ManifestSummary
from managed_index.config import ManagedIndexingConfig
from managed_index.logger import get_logger

logger = get_logger(__name__)

IGNORE_FILE = ".managedignore"

CODE_EXTS = {
    ".py", ".js", ".ts", ".tsx", ".jsx", ".mjs", ".cjs", ".java", ".kt", ".go",
    ".rs", ".rb", ".php", ".c", ".h", ".cc", ".cpp", ".hpp", ".cs", ".swift",
    ".scala", ".sh", ".bash", ".sql", ".md", ".rst", ".yaml", ".yml", ".toml",
    ".json", ".html", ".css", ".scss", ".vue", ".svelte", ".lua", ".dart",
}

EXTENSIONLESS_FILES = {
    "dockerfile", "makefile", "gemfile", "rakefile", "procfile", "jenkinsfile",
}

# directory names skipped wherever they appear in the tree
_SKIP_DIR_NAMES = frozenset({".git", "node_modules", "__pycache__"})
# directories skipped only directly under the workspace root
_SKIP_ROOT_DIRS = ("dist", "build", ".venv", "venv", ".cache", ".vscode", "site-packages")
_SKIP_DIR_GLOBS = (".venv*",)
_SKIP_FILE_GLOBS = ("*.min.js", "*.lock", "package-lock.json")


@dataclass
class ScanProgress:
    files_processed: int = 0
    files_total: int = 0
    chunks_indexed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "files_processed": self.files_processed,
            "files_total": self.files_total,
            "chunks_indexed": self.chunks_indexed,
        }


@dataclass
class ScanResult:
    success: bool
    files_processed: int = 0
    chunks_indexed: int = 0
    errors: List[str] = field(default_factory=list)
    files_skipped: int = 0


ProgressCallback = Callable[[ScanProgress], None]
ScanPipeline = Callable[
    [ManagedIndexingConfig, Any, Optional[ManifestSummary], Optional[ProgressCallback]],
    ScanResult,
]


def _has_wildcard(pattern: str) -> bool:
    return any(ch in pattern for ch in "*?[")


class ExcludeRules:
    """Which paths a scan skips. Paths are workspace-relative with ``/`` separators.

    Pattern forms, from ``.managedignore`` or the extra excludes:
    ``/dir`` skips that directory under the root, ``name`` skips a directory or
    file with that name at any depth, anything else is a glob tested against the
    relative path and the basename.
    """

    def __init__(self, patterns: Iterable[str] = ()):
        self.root_dirs = set(_SKIP_ROOT_DIRS)
        self.dir_names = set(_SKIP_DIR_NAMES)
        self.globs = list(_SKIP_FILE_GLOBS)
        for pattern in patterns:
            self.add(pattern)

    @classmethod
    def for_root(cls, root: Path, extra_patterns: Iterable[str] = ()) -> "ExcludeRules":
        patterns: List[str] = []
        ignore = root / IGNORE_FILE
        if ignore.is_file():
            for line in ignore.read_text(encoding="utf-8", errors="ignore").splitlines():
                line = line.strip()
                if line and not line.startswith("#"):
                    patterns.append(line)
        return cls([*patterns, *extra_patterns])

    def add(self, pattern: str) -> None:
        pattern = pattern.rstrip("/")
        if not pattern:
            return
        if _has_wildcard(pattern):
            self.globs.append(pattern.lstrip("/"))
        elif pattern.startswith("/"):
            self.root_dirs.add(pattern.lstrip("/"))
        else:
            self.dir_names.add(pattern)
            self.globs.append(pattern)

    def skip_dir(self, rel: str) -> bool:
        name = rel.rpartition("/")[2]
        if name in self.dir_names or rel in self.root_dirs:
            return True
        return any(fnmatch.fnmatch(name, g) for g in _SKIP_DIR_GLOBS)

    def skip_file(self, rel: str) -> bool:
        name = rel.rpartition("/")[2]
        return any(fnmatch.fnmatch(rel, g) or fnmatch.fnmatch(name, g) for g in self.globs)


def is_indexable_file(p: Path) -> bool:
    """Check if a file should be indexed (by extension or name pattern)."""
    if p.suffix.lower() in CODE_EXTS:
        return True
    fname_lower = p.name.lower()
    if fname_lower in EXTENSIONLESS_FILES:
        return True
    return fname_lower.startswith("dockerfile")


def iter_files(root: Path, extra_patterns: Iterable[str] = ()) -> Iterable[Path]:
    """Yield indexable files under ``root`` in sorted walk order."""
    rules = ExcludeRules.for_root(root, extra_patterns)
    root_abs = os.path.abspath(str(root))

    for dirpath, dirnames, filenames in os.walk(root_abs):
        rel_dir = os.path.relpath(dirpath, root_abs).replace(os.sep, "/")
        prefix = "" if rel_dir == "." else rel_dir + "/"
        # pruned in place so os.walk never descends into skipped trees
        dirnames[:] = sorted(d for d in dirnames if not rules.skip_dir(prefix + d))
        for name in sorted(filenames):
            path = Path(dirpath, name)
            if is_indexable_file(path) and not rules.skip_file(prefix + name):
                yield path


def chunk_lines(text: str, max_lines: int = 120, overlap: int = 20) -> List[Dict]:
    """Split text into windows of ``max_lines`` lines sharing ``overlap`` lines with the previous window."""
    lines = text.splitlines()
    step = max(1, max_lines - overlap)
    chunks: List[Dict] = []
    for start in range(0, len(lines), step):
        end = min(len(lines), start + max_lines)
        chunks.append({"text": "\n".join(lines[start:end]), "start": start + 1, "end": end})
        if end == len(lines):
            break
    return chunks


def _read_text_and_sha1(path: Path) -> tuple[str, str]:
    data = path.read_bytes()
    return data.decode("utf-8", errors="ignore"), hashlib.sha1(data).hexdigest()


def scan_directory(
    config: ManagedIndexingConfig,
    context: Any = None,
    manifest: Optional[ManifestSummary] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> ScanResult:
    """Scan ``config.workspace_path`` and report progress after every file.

    ``context`` may expose ``chunk_sink(rel_path, chunks)``; chunks of each
    changed file are delivered there. Per-file failures are collected and make
    the result unsuccessful without stopping the walk.
    """
    root = config.workspace
    sink = getattr(context, "chunk_sink", None)
    known = manifest.files if manifest is not None else {}

    files = list(iter_files(root, config.extra_excludes))
    progress = ScanProgress(files_total=len(files))
    result = ScanResult(success=False)
    logger.info(
        f"[scan] Scanning {len(files)} files under {root} "
        f"({'with' if manifest is not None else 'without'} manifest)"
    )

    for path in files:
        rel = path.relative_to(root).as_posix()
        try:
            text, digest = _read_text_and_sha1(path)
            if known.get(rel) == digest:
                result.files_skipped += 1
            else:
                chunks = chunk_lines(text, config.chunk_lines, config.chunk_overlap)
                if sink is not None and chunks:
                    sink(rel, chunks)
                progress.chunks_indexed += len(chunks)
        except Exception as e:
            logger.warning(f"[scan] Error indexing {rel}: {e}")
            result.errors.append(f"{rel}: {e}")
        progress.files_processed += 1
        if on_progress is not None:
            on_progress(ScanProgress(**progress.to_dict()))

    result.files_processed = progress.files_processed
    result.chunks_indexed = progress.chunks_indexed
    result.success = not result.errors
    logger.info(
        f"[scan] Done: {result.files_processed} files, {result.chunks_indexed} chunks, "
        f"{result.files_skipped} unchanged, {len(result.errors)} errors"
    )
    return result


__all__ = [
    "ExcludeRules",
    "ProgressCallback",
    "ScanPipeline",
    "ScanProgress",
    "ScanResult",
    "chunk_lines",
    "is_indexable_file",
    "iter_files",
    "scan_directory",
]
