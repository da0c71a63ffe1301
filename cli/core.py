"""Shared helpers for CLI commands."""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

# Ensure project root is on sys.path (fallback for development mode)
try:
    import managed_index
except ImportError:
    ROOT_DIR = Path(__file__).resolve().parent.parent
    if str(ROOT_DIR) not in sys.path:
        sys.path.insert(0, str(ROOT_DIR))


def build_config(args: argparse.Namespace):
    """Environment config for ``args.path`` with any flags that were passed applied on top."""
    from managed_index.config import ManagedIndexingConfig

    path = getattr(args, "path", None)
    return ManagedIndexingConfig.from_env(
        workspace_path=str(Path(path).resolve()) if path else None,
        poll_interval=getattr(args, "poll_interval", None),
        initial_sync=True if getattr(args, "initial_sync", False) else None,
        use_polling_observer=True if getattr(args, "use_polling", False) else None,
    )


def output_json(data: Any) -> None:
    """Write JSON to stdout; single place for all commands."""
    json.dump(data, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")


def output_json_line(data: Any) -> None:
    """Write one compact JSON object per line and flush, for streaming output."""
    sys.stdout.write(json.dumps(data, default=str))
    sys.stdout.write("\n")
    sys.stdout.flush()
