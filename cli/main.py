"""CLI entry point: argparse dispatcher for the indexer subcommands."""
from __future__ import annotations

import argparse
import json
import sys
import traceback


# ---------------------------------------------------------------------------
# Command registry: command name → (module_path, function_name)
# Lazy-imported at dispatch time so `--help` never loads the embedder stack.
# ---------------------------------------------------------------------------
COMMANDS = {
    "index":  ("cli.commands.index", "cmd_index"),
    "status": ("cli.commands.index", "cmd_status"),
    "watch":  ("cli.commands.watch", "cmd_watch"),
}


def _add_target_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("-r", "--root", help="Repository root (default: $REPO_ROOT or cwd)")
    p.add_argument("-c", "--collection", help="Qdrant collection name")


# ---------------------------------------------------------------------------
# Parser builder
# ---------------------------------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    from cli._version import __version__

    parser = argparse.ArgumentParser(
        prog="codesync",
        description="Keep a vector index of a source tree in sync with the filesystem",
    )
    parser.add_argument("--debug", action="store_true", help="Show stack traces and debug logs")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    # index
    p = sub.add_parser("index", help="Rebuild the index for the whole tree once")
    _add_target_args(p)

    # watch
    p = sub.add_parser("watch", help="Initial rebuild, then reindex on file changes (daemon)")
    _add_target_args(p)

    # status
    p = sub.add_parser("status", help="Collection stats and recent operations")
    p.add_argument("-c", "--collection", help="Qdrant collection name")
    p.add_argument("-l", "--limit", type=int, default=5, help="Max recent operations")

    return parser


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    argv = list(sys.argv[1:] if argv is None else argv)
    debug = "--debug" in argv
    if debug:
        argv = [arg for arg in argv if arg != "--debug"]
    args = parser.parse_args(argv)
    args.debug = bool(debug or getattr(args, "debug", False))

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
