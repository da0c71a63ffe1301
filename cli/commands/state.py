"""Inspection commands: git-state, manifest."""
from __future__ import annotations

import argparse
import sys

from cli.core import build_config, output_json


def cmd_git_state(args: argparse.Namespace) -> None:
    """Print the current head snapshot."""
    from managed_index.git_watch_core.state import read_snapshot, watch_paths

    config = build_config(args)
    snapshot = read_snapshot(config.workspace_path)
    output_json({
        "ok": True,
        "workspace_path": config.workspace_path,
        **snapshot.to_dict(),
        "watch_paths": {k: str(v) for k, v in watch_paths(config.workspace_path).items()},
    })


def cmd_manifest(args: argparse.Namespace) -> None:
    """Fetch the server manifest for a branch (defaults to the checked-out one)."""
    from managed_index.api_client import ManifestClient
    from managed_index.git_watch_core.state import read_snapshot
    from managed_index.logger import ConfigurationError

    config = build_config(args)
    if not config.organization_id or not config.project_id:
        raise ConfigurationError("MANAGED_INDEX_ORG_ID and MANAGED_INDEX_PROJECT_ID must be set")

    branch = getattr(args, "branch", None)
    if not branch:
        snapshot = read_snapshot(config.workspace_path)
        if snapshot.detached:
            raise ValueError("HEAD is detached; pass --branch")
        branch = snapshot.branch

    print(f"Fetching manifest for {branch} from {config.api_base_url}", file=sys.stderr)
    with ManifestClient.from_config(config) as client:
        manifest = client.get_manifest(config.organization_id, config.project_id, branch)
    output_json({"ok": True, "branch": branch, **manifest.to_dict()})
