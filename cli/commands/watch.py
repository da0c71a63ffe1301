"""Watch command: follow branch and commit changes and keep the index in step."""
from __future__ import annotations

import argparse
import sys
import time

from cli.core import build_config, output_json, output_json_line


def cmd_watch(args: argparse.Namespace) -> None:
    """Run the git watcher until interrupted, printing each status as a JSON line."""
    from managed_index.git_watch_core.watcher import create_git_watcher

    config = build_config(args)
    print(f"Watching {config.workspace_path} (poll every {config.poll_interval:g}s)", file=sys.stderr)

    watcher = create_git_watcher(config, on_state_change=lambda status: output_json_line(status.to_dict()))
    diagnostics = watcher.diagnostics
    if diagnostics.failures:
        output_json({"ok": True, "degraded": True, **diagnostics.to_dict()})

    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        print("\nStopping watcher...", file=sys.stderr)
    finally:
        watcher.dispose()
