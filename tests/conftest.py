import sys
from pathlib import Path

import pytest

# Ensure repository root is on sys.path so `import managed_index...` works locally
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

SHA_A = "a" * 40
SHA_B = "b" * 40
SHA_C = "c" * 40
SHA_D = "d" * 40


class FakeRepo:
    """Minimal on-disk git metadata: HEAD, loose refs, optional packed-refs."""

    def __init__(self, root: Path):
        self.root = root
        self.git_dir = root / ".git"
        (self.git_dir / "refs" / "heads").mkdir(parents=True, exist_ok=True)

    def set_ref(self, branch: str, revision: str) -> None:
        ref = self.git_dir / "refs" / "heads" / branch
        ref.parent.mkdir(parents=True, exist_ok=True)
        ref.write_text(revision + "\n")

    def checkout(self, branch: str, revision: str = None) -> None:
        if revision is not None:
            self.set_ref(branch, revision)
        (self.git_dir / "HEAD").write_text(f"ref: refs/heads/{branch}\n")

    def commit(self, branch: str, revision: str) -> None:
        self.set_ref(branch, revision)

    def detach(self, revision: str) -> None:
        (self.git_dir / "HEAD").write_text(revision + "\n")

    def pack(self, refs: dict) -> None:
        lines = ["# pack-refs with: peeled fully-peeled sorted"]
        for name, revision in refs.items():
            lines.append(f"{revision} refs/heads/{name}")
        (self.git_dir / "packed-refs").write_text("\n".join(lines) + "\n")


@pytest.fixture
def fake_repo(tmp_path):
    repo = FakeRepo(tmp_path / "repo")
    repo.checkout("main", SHA_A)
    return repo


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep developer environment settings out of config built in tests."""
    for name in (
        "WATCH_ROOT",
        "WORKSPACE_PATH",
        "MANAGED_INDEX_ORG_ID",
        "MANAGED_INDEX_PROJECT_ID",
        "MANAGED_INDEX_TOKEN",
        "MANAGED_INDEX_ENDPOINT",
        "MANAGED_INDEX_POLL_SECS",
        "WATCH_USE_POLLING",
        "MANAGED_INDEX_INITIAL_SYNC",
        "MANAGED_INDEX_CATCHUP_RECHECK",
        "MANAGED_INDEX_HTTP_TIMEOUT",
        "MANAGED_INDEX_MAX_RETRIES",
        "MANAGED_INDEX_CHUNK_LINES",
        "MANAGED_INDEX_CHUNK_OVERLAP",
        "MANAGED_INDEX_EXCLUDES",
        "LOG_FORMAT",
    ):
        monkeypatch.delenv(name, raising=False)
