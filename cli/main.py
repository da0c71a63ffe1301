"""CLI entry point: argparse dispatcher for all subcommands."""
from __future__ import annotations

import argparse
import json
import sys
import traceback


# ---------------------------------------------------------------------------
# Command registry: command name → (module_path, function_name)
# Lazy-imported at dispatch time to keep startup fast.
# ---------------------------------------------------------------------------
COMMANDS = {
    "watch":     ("cli.commands.watch", "cmd_watch"),
    "git-state": ("cli.commands.state", "cmd_git_state"),
    "manifest":  ("cli.commands.state", "cmd_manifest"),
}


def _add_path_arg(p: argparse.ArgumentParser) -> None:
    p.add_argument("path", nargs="?", default=None,
                   help="Repository working tree (default: WATCH_ROOT or current directory)")


# ---------------------------------------------------------------------------
# Parser builder
# ---------------------------------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    from cli._version import __version__

    parser = argparse.ArgumentParser(
        prog="managed-index",
        description="Keep a managed code index in step with the checked-out git branch",
    )
    parser.add_argument("--debug", action="store_true", help="Show stack traces on error")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    # watch
    p = sub.add_parser("watch", help="Re-index on branch switches and new commits (daemon)")
    _add_path_arg(p)
    p.add_argument("--poll-interval", type=float, default=None, help="Polling fallback interval in seconds")
    p.add_argument("--initial-sync", action="store_true", help="Index the current branch at startup")
    p.add_argument("--use-polling", action="store_true", help="Use the polling filesystem observer")

    # git-state
    p = sub.add_parser("git-state", help="Show the current branch and commit")
    _add_path_arg(p)

    # manifest
    p = sub.add_parser("manifest", help="Fetch the server manifest for a branch")
    _add_path_arg(p)
    p.add_argument("-b", "--branch", help="Branch name (default: checked-out branch)")

    return parser


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------
def main(argv=None) -> None:
    parser = build_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)

    entry = COMMANDS.get(args.command)
    if not entry:
        parser.print_help()
        sys.exit(1)

    mod_path, fn_name = entry
    try:
        import importlib
        mod = importlib.import_module(mod_path)
        fn = getattr(mod, fn_name)
        fn(args)
    except KeyboardInterrupt:
        sys.exit(130)
    except Exception as exc:
        json.dump({"ok": False, "error": str(exc)}, sys.stdout, default=str)
        sys.stdout.write("\n")
        if args.debug:
            traceback.print_exc(file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
