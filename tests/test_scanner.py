import hashlib
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from managed_index.api_client import ManifestSummary
from managed_index.config import ManagedIndexingConfig
from managed_index.scanner import ExcludeRules, chunk_lines, iter_files, scan_directory

pytestmark = pytest.mark.unit


def _sha1(text):
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def _workspace(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "a.py").write_text("print('a')\n")
    (tmp_path / "src" / "b.ts").write_text("export const b = 1;\n")
    (tmp_path / "Dockerfile").write_text("FROM python:3.12\n")
    (tmp_path / "notes.bin").write_bytes(b"\x00\x01")
    (tmp_path / "node_modules" / "dep").mkdir(parents=True)
    (tmp_path / "node_modules" / "dep" / "index.js").write_text("x\n")
    (tmp_path / ".git").mkdir()
    (tmp_path / ".git" / "config.json").write_text("{}\n")
    return tmp_path


def test_iter_files_filters_and_excludes(tmp_path):
    root = _workspace(tmp_path)
    rels = [p.relative_to(root).as_posix() for p in iter_files(root)]
    assert rels == ["Dockerfile", "src/a.py", "src/b.ts"]


def test_ignore_file_and_extra_patterns(tmp_path):
    root = _workspace(tmp_path)
    (root / ".managedignore").write_text("# generated\n*.ts\n")
    rels = [p.relative_to(root).as_posix() for p in iter_files(root, ["/src"])]
    assert rels == ["Dockerfile"]


def test_root_only_dirs_are_kept_when_nested(tmp_path):
    (tmp_path / "build").mkdir()
    (tmp_path / "build" / "out.js").write_text("x\n")
    (tmp_path / "src" / "build").mkdir(parents=True)
    (tmp_path / "src" / "build" / "steps.py").write_text("x\n")
    (tmp_path / "src" / "pkg" / "node_modules").mkdir(parents=True)
    (tmp_path / "src" / "pkg" / "node_modules" / "m.js").write_text("x\n")

    rels = [p.relative_to(tmp_path).as_posix() for p in iter_files(tmp_path)]

    assert rels == ["src/build/steps.py"]


def test_exclude_pattern_forms():
    rules = ExcludeRules(["/src/gen", "fixtures/", "docs/*.md"])

    assert rules.skip_dir("src/gen")
    assert not rules.skip_dir("lib/src/gen")
    assert rules.skip_dir("a/b/fixtures")
    assert rules.skip_file("fixtures")
    assert rules.skip_file("docs/intro.md")
    assert not rules.skip_file("README.md")
    assert rules.skip_dir(".venv-3.12")
    assert rules.skip_file("web/app.min.js")


def test_chunk_lines_overlap():
    text = "\n".join(f"line {i}" for i in range(1, 11))
    chunks = chunk_lines(text, max_lines=4, overlap=1)
    assert [(c["start"], c["end"]) for c in chunks] == [(1, 4), (4, 7), (7, 10)]
    assert chunk_lines("") == []


def test_chunk_lines_short_text_and_full_overlap():
    assert [(c["start"], c["end"]) for c in chunk_lines("a\nb", max_lines=4, overlap=1)] == [(1, 2)]
    # overlap at least the window still advances one line at a time
    chunks = chunk_lines("a\nb\nc", max_lines=2, overlap=2)
    assert [(c["start"], c["end"]) for c in chunks] == [(1, 2), (2, 3)]
    assert chunks[1]["text"] == "b\nc"


def test_scan_reports_progress_and_feeds_sink(tmp_path):
    root = _workspace(tmp_path)
    delivered = {}
    context = SimpleNamespace(chunk_sink=lambda rel, chunks: delivered.setdefault(rel, chunks))
    progress = []

    result = scan_directory(ManagedIndexingConfig(workspace_path=str(root)), context, None, progress.append)

    assert result.success
    assert result.files_processed == 3
    assert result.chunks_indexed == 3
    assert sorted(delivered) == ["Dockerfile", "src/a.py", "src/b.ts"]
    assert [p.files_processed for p in progress] == [1, 2, 3]
    assert all(p.files_total == 3 for p in progress)


def test_scan_skips_files_unchanged_in_manifest(tmp_path):
    root = _workspace(tmp_path)
    manifest = ManifestSummary(
        total_files=1,
        total_chunks=1,
        last_updated=datetime.now(timezone.utc),
        files={"src/a.py": _sha1("print('a')\n"), "src/b.ts": "stale"},
    )
    delivered = []
    context = SimpleNamespace(chunk_sink=lambda rel, chunks: delivered.append(rel))

    result = scan_directory(ManagedIndexingConfig(workspace_path=str(root)), context, manifest)

    assert result.files_skipped == 1
    assert sorted(delivered) == ["Dockerfile", "src/b.ts"]


def test_sink_errors_fail_the_scan_without_stopping_it(tmp_path):
    root = _workspace(tmp_path)

    def sink(rel, chunks):
        if rel == "src/a.py":
            raise RuntimeError("embedder offline")

    result = scan_directory(ManagedIndexingConfig(workspace_path=str(root)), SimpleNamespace(chunk_sink=sink))

    assert not result.success
    assert result.files_processed == 3
    assert len(result.errors) == 1
    assert "src/a.py" in result.errors[0]
