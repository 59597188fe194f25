#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
CLI interface for contextlinter.

Mines Claude Code session transcripts for recurring corrections and
proposes edits to the project's CLAUDE.md rules files.

Usage:
    contextlinter run [--limit N] [--dry-run] [--no-cross]
    contextlinter apply [--yes | --min-confidence 0.8 | --dry-run]
    contextlinter watch [--interval 300] [--cooldown 60] [--no-suggest]
    contextlinter rules | status | history | review-tui
"""

import argparse
import os
import sys
from pathlib import Path

from contextlinter._version import __version__
from contextlinter.commands import LinterContext, dispatch_command
from contextlinter.config import load_config
from contextlinter.debug_logger import get_logger
from contextlinter.llm_client import MODEL_MAP
from contextlinter.paths import PathResolver, find_project_root


def _confidence(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value}")
    if not 0 <= parsed <= 1:
        raise argparse.ArgumentTypeError("must be between 0 and 1")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contextlinter",
        description="contextlinter - keep CLAUDE.md in step with how you actually work",
    )
    parser.add_argument(
        "--version", action="version", version=f"contextlinter {__version__}"
    )
    parser.add_argument("--project", "-p", help="Project root (default: search up from cwd)")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # run command
    run_parser = subparsers.add_parser("run", help="Analyze new sessions and generate suggestions")
    run_parser.add_argument("--limit", "-n", type=int, help="Process at most N sessions (newest first)")
    run_parser.add_argument("--force", action="store_true", help="Re-analyze already analyzed sessions")
    run_parser.add_argument(
        "--resuggest", action="store_true",
        help="Also generate suggestions from stored analysis of unchanged sessions",
    )
    run_parser.add_argument("--min-messages", type=int, default=2, help="Minimum user messages per session")
    run_parser.add_argument("--dry-run", action="store_true", help="Show what would be analyzed")
    run_parser.add_argument("--no-cross", action="store_true", help="Skip cross-session synthesis")
    run_parser.add_argument("--model", choices=sorted(MODEL_MAP), help="Model to use")
    run_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose progress")

    # apply command
    apply_parser = subparsers.add_parser("apply", help="Review and apply the latest suggestions")
    mode = apply_parser.add_mutually_exclusive_group()
    mode.add_argument("--yes", "-y", action="store_true", help="Apply all without asking")
    mode.add_argument("--dry-run", action="store_true", help="Preview only")
    mode.add_argument(
        "--min-confidence", type=_confidence,
        help="Apply suggestions at or above this confidence, skip the rest",
    )
    apply_parser.add_argument("--limit", "-n", type=int, help="Review at most N suggestions")

    # watch command
    watch_parser = subparsers.add_parser("watch", help="Analyze new sessions as they appear")
    watch_parser.add_argument("--interval", type=int, help="Seconds between polls (default: 300)")
    watch_parser.add_argument(
        "--cooldown", type=int, help="Seconds a session must stay unchanged before analysis (default: 60)"
    )
    watch_parser.add_argument("--no-suggest", action="store_true", help="Analyze only, no suggestions")
    watch_parser.add_argument("--max-polls", type=int, help="Stop after N polls")
    watch_parser.add_argument("--model", choices=sorted(MODEL_MAP), help="Model to use")
    watch_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose progress")

    # reporting commands
    subparsers.add_parser("rules", help="Show rules files and counts")
    subparsers.add_parser("status", help="Show analysis and suggestion status")
    history_parser = subparsers.add_parser("history", help="Show applied changes")
    history_parser.add_argument("--limit", "-n", type=int, default=20, help="Number of entries")
    subparsers.add_parser("review-tui", help="Review suggestions in a terminal UI")

    return parser


def resolve_project_root(explicit: str = None) -> Path:
    """--project, then PROJECT_DIR, then the nearest marked ancestor of cwd."""
    if explicit:
        return Path(explicit).expanduser().resolve()
    env_root = os.environ.get("PROJECT_DIR")
    if env_root:
        return Path(env_root).resolve()
    return find_project_root(Path.cwd()) or Path.cwd().resolve()


def main(argv=None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    project_root = resolve_project_root(args.project)
    ctx = LinterContext(
        project_root=project_root,
        store_dir=PathResolver.store_dir(project_root),
        config=load_config(),
    )

    try:
        return dispatch_command(args, ctx)
    except (OSError, ValueError) as e:
        get_logger().error(args.command, str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
