#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Command pattern implementation for the CLI.

Each command is a class that implements the Command interface:
- execute(args, ctx) -> int

Commands are registered in COMMAND_REGISTRY and dispatched via dispatch_command().
"""

import asyncio
import sys
from abc import ABC, abstractmethod
from argparse import Namespace
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple, Type

from contextlinter.config import LinterConfig
from contextlinter.dedup import DedupThresholds
from contextlinter.history import history_path, read_history
from contextlinter.llm_client import check_cli_available, prompt_version
from contextlinter.models import AnalysisResult, SessionInfo, SuggestionStatus
from contextlinter.pipeline import (
    PipelineCallbacks,
    PipelineOptions,
    SessionPipelineResult,
    run_per_session_pipeline,
)
from contextlinter.preparer import is_session_analyzable
from contextlinter.review import ReviewOptions, review_statuses, run_review
from contextlinter.rules_reader import load_rules_snapshot
from contextlinter.session_reader import discover_project_sessions, load_session
from contextlinter.store import (
    init_store_dir,
    latest_suggestion_set_path,
    load_analysis_result,
    load_audit_log,
    load_latest_suggestion_set,
    mark_session_parsed,
    needs_analysis,
    save_audit_log,
    update_suggestion_statuses,
)
from contextlinter.watcher import SessionWatcher, WatchOptions


@dataclass
class LinterContext:
    """What every command needs: where the project is and how it is configured."""
    project_root: Path
    store_dir: Path
    config: LinterConfig


class Command(ABC):
    """Abstract base class for all CLI commands."""

    @abstractmethod
    def execute(self, args: Namespace, ctx: LinterContext) -> int:
        """Execute the command.

        Args:
            args: Parsed command-line arguments
            ctx: Project paths and configuration

        Returns:
            Exit code (0 for success, non-zero for errors)
        """
        pass


def _error(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return 1


# =============================================================================
# Pipeline Commands
# =============================================================================


def select_sessions(
    args: Namespace, ctx: LinterContext
) -> Tuple[List[SessionInfo], List[AnalysisResult]]:
    """Split discovered sessions into those needing analysis and reusable results.

    Parsed sessions are recorded in the audit log so a later analysis can
    mark them analyzed.
    """
    version = prompt_version("session-analysis")
    audit = load_audit_log(ctx.store_dir)
    force = getattr(args, "force", False)
    limit = getattr(args, "limit", None)
    min_messages = getattr(args, "min_messages", 2)

    to_analyze: List[SessionInfo] = []
    existing: List[AnalysisResult] = []
    for file_info in discover_project_sessions(ctx.project_root):
        if limit is not None and len(to_analyze) + len(existing) >= limit:
            break
        if not force and not needs_analysis(audit, file_info.session_id, version, file_info.modified_at):
            if getattr(args, "resuggest", False):
                stored = load_analysis_result(ctx.store_dir, file_info.session_id)
                if stored is not None:
                    existing.append(stored)
            continue

        session = load_session(file_info, ctx.project_root)
        if not is_session_analyzable(session, min_messages):
            continue
        mark_session_parsed(audit, session.session_id, file_info.modified_at)
        to_analyze.append(session)

    save_audit_log(ctx.store_dir, audit)
    return to_analyze, existing


class RunCommand(Command):
    """Analyze new sessions and generate rule suggestions."""

    def execute(self, args: Namespace, ctx: LinterContext) -> int:
        dry_run = getattr(args, "dry_run", False)
        if not dry_run and not check_cli_available():
            return _error("claude CLI not found on PATH")

        init_store_dir(ctx.project_root)
        sessions, existing = select_sessions(args, ctx)
        if not sessions and not existing:
            print("No new sessions to analyze.")
            return 0

        snapshot = load_rules_snapshot(ctx.project_root, ctx.store_dir)
        options = PipelineOptions(
            dry_run=dry_run,
            no_cross=getattr(args, "no_cross", False),
            verbose=getattr(args, "verbose", False),
            model=getattr(args, "model", None) or ctx.config.model,
            concurrency=ctx.config.analysis_concurrency,
            thresholds=DedupThresholds.from_config(ctx.config),
        )

        def on_complete(result: SessionPipelineResult) -> None:
            print(
                f"  {result.session_id[:8]}  {len(result.insights)} insights, "
                f"{len(result.suggestions)} new suggestions"
            )

        def on_analyzing(session_id: str, user_messages: int) -> None:
            if options.verbose:
                print(f"  Analyzing {session_id[:8]} ({user_messages} user messages)...")

        callbacks = PipelineCallbacks(
            on_session_analyzing=on_analyzing,
            on_session_complete=on_complete,
            on_cross_session_complete=lambda patterns, new: print(
                f"  Cross-session: {len(patterns)} patterns, {len(new)} new suggestions"
            ),
        )

        print(f"Processing {len(sessions)} new and {len(existing)} analyzed session(s)...")
        result = asyncio.run(run_per_session_pipeline(
            sessions, ctx.store_dir, str(ctx.project_root), snapshot, options, callbacks, existing,
        ))

        if dry_run:
            print(f"[DRY RUN] {len(sessions)} session(s) would be analyzed.")
            return 0

        stats = result.stats
        print(
            f"Analyzed {stats.sessions_analyzed} session(s): {stats.insights_found} insights, "
            f"{stats.cross_patterns_found} cross-session patterns, "
            f"{stats.suggestions_generated} suggestions."
        )
        if stats.suggestions_generated:
            print("Review them with: contextlinter apply")
        return 0


class ApplyCommand(Command):
    """Review and apply the latest suggestion set."""

    def execute(self, args: Namespace, ctx: LinterContext) -> int:
        suggestion_set = load_latest_suggestion_set(ctx.store_dir)
        if suggestion_set is None:
            return _error("No suggestions found. Run 'contextlinter run' first.")

        pending = [s for s in suggestion_set.suggestions if s.status == SuggestionStatus.PENDING]
        limit = getattr(args, "limit", None)
        if limit is not None:
            pending = pending[:limit]

        options = ReviewOptions(
            dry_run=getattr(args, "dry_run", False),
            yes=getattr(args, "yes", False),
            min_confidence=getattr(args, "min_confidence", None),
            already_present_threshold=ctx.config.already_present_threshold,
        )
        summary = run_review(pending, ctx.project_root, ctx.store_dir, options)

        statuses = review_statuses(summary)
        if statuses and not options.dry_run:
            update_suggestion_statuses(ctx.store_dir, statuses)
        if summary.results:
            print(summary.format())
        return 0


class WatchCommand(Command):
    """Poll for new sessions and analyze them as they finish."""

    def execute(self, args: Namespace, ctx: LinterContext) -> int:
        if not check_cli_available():
            return _error("claude CLI not found on PATH")

        init_store_dir(ctx.project_root)
        interval = getattr(args, "interval", None)
        cooldown = getattr(args, "cooldown", None)
        options = WatchOptions(
            interval=ctx.config.watch_interval if interval is None else interval,
            cooldown=ctx.config.watch_cooldown if cooldown is None else cooldown,
            model=getattr(args, "model", None) or ctx.config.model,
            suggest=not getattr(args, "no_suggest", False),
            verbose=getattr(args, "verbose", False),
            thresholds=DedupThresholds.from_config(ctx.config),
        )
        watcher = SessionWatcher(ctx.project_root, ctx.store_dir, options)
        existing = watcher.seed()
        print(f"Watching {ctx.project_root} ({existing} existing sessions, model {options.model})")
        if options.verbose:
            print(f"  Poll interval: {options.interval}s, cooldown: {options.cooldown}s")

        try:
            asyncio.run(watcher.run(getattr(args, "max_polls", None)))
        except KeyboardInterrupt:
            pass
        print(watcher.stats.format())
        return 0


# =============================================================================
# Reporting Commands
# =============================================================================


class RulesCommand(Command):
    """Show the project's rules files and counts."""

    def execute(self, args: Namespace, ctx: LinterContext) -> int:
        init_store_dir(ctx.project_root)
        snapshot = load_rules_snapshot(ctx.project_root, ctx.store_dir)
        stats = snapshot.stats
        if not snapshot.files:
            print("No rules files found.")
            return 0

        print(f"Rules files: {stats.total_files}  Rules: {stats.total_rules}  Lines: {stats.total_lines}")
        for f in snapshot.files:
            print(f"  [{f.scope.value}] {f.relative_path}: {len(f.rules)} rules, {f.line_count} lines")
        by_format = ", ".join(f"{k}={v}" for k, v in stats.by_format.items() if v)
        if by_format:
            print(f"By format: {by_format}")
        if stats.import_count:
            print(f"Imports: {stats.import_count}")
        return 0


class StatusCommand(Command):
    """Summarize analysis state and pending suggestions."""

    def execute(self, args: Namespace, ctx: LinterContext) -> int:
        audit = load_audit_log(ctx.store_dir)
        analyzed = [e for e in audit.sessions.values() if e.analyzed_at]
        insights = sum(e.insight_count for e in analyzed)
        print(f"Store: {ctx.store_dir}")
        print(f"Sessions tracked: {len(audit.sessions)}  analyzed: {len(analyzed)}  insights: {insights}")
        print(f"Last cross-session synthesis: {audit.last_cross_session_at or 'never'}")

        suggestion_set = load_latest_suggestion_set(ctx.store_dir)
        if suggestion_set is None:
            print("Suggestions: none")
            return 0
        counts: Dict[str, int] = {}
        for s in suggestion_set.suggestions:
            counts[s.status.value] = counts.get(s.status.value, 0) + 1
        summary = ", ".join(f"{v} {k}" for k, v in sorted(counts.items()))
        print(f"Suggestions ({latest_suggestion_set_path(ctx.store_dir).name}): {summary}")
        return 0


class HistoryCommand(Command):
    """Show recently applied rule changes."""

    def execute(self, args: Namespace, ctx: LinterContext) -> int:
        entries = read_history(history_path(ctx.store_dir), getattr(args, "limit", 20))
        if not entries:
            print("No changes applied yet.")
            return 0
        for entry in entries:
            section = f' § "{entry.section}"' if entry.section else ""
            print(f"{entry.timestamp}  {entry.action.value:<11} {entry.file}{section}")
            first_line = entry.content.split("\n", 1)[0]
            if first_line:
                print(f"    {first_line}")
        return 0


class ReviewTuiCommand(Command):
    """Review pending suggestions in the Textual UI."""

    def execute(self, args: Namespace, ctx: LinterContext) -> int:
        suggestion_set = load_latest_suggestion_set(ctx.store_dir)
        if suggestion_set is None:
            return _error("No suggestions found. Run 'contextlinter run' first.")

        from contextlinter.tui.app import ReviewApp

        app = ReviewApp(
            suggestion_set.suggestions,
            ctx.project_root,
            ctx.store_dir,
            already_present_threshold=ctx.config.already_present_threshold,
        )
        app.run()
        if app.statuses:
            update_suggestion_statuses(ctx.store_dir, app.statuses)
        return 0


# =============================================================================
# Command Registry
# =============================================================================


COMMAND_REGISTRY: Dict[str, Type[Command]] = {
    "run": RunCommand,
    "apply": ApplyCommand,
    "watch": WatchCommand,
    "rules": RulesCommand,
    "status": StatusCommand,
    "history": HistoryCommand,
    "review-tui": ReviewTuiCommand,
}


# =============================================================================
# Dispatch Function
# =============================================================================


def dispatch_command(args: Namespace, ctx: LinterContext) -> int:
    """Dispatch to appropriate command handler.

    Args:
        args: Parsed arguments with 'command' attribute
        ctx: Project paths and configuration

    Returns:
        Exit code (0 for success, 1 for unknown command)
    """
    command_name = args.command
    if command_name not in COMMAND_REGISTRY:
        print(f"Unknown command: {command_name}")
        return 1

    command_class = COMMAND_REGISTRY[command_name]
    command = command_class()
    return command.execute(args, ctx)
