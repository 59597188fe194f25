#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Watch mode: poll the project's transcript directory and analyze new sessions.

Sessions present at startup are seeded as seen. Each poll picks up new
sessions, and unanalyzed ones that grew by more than GROWTH_THRESHOLD
bytes, waits for the file to settle and analyzes it. With suggestions
enabled, the session's insights go through batched suggestion generation,
reusing a stored suggestion set when the inputs are unchanged.

Candidates are processed one at a time. A failure in one candidate is
reported as a warning and the loop carries on.
"""

import asyncio
import os
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

from contextlinter.analyzer import analyze_session
from contextlinter.config import DEFAULT_WATCH_COOLDOWN, DEFAULT_WATCH_INTERVAL
from contextlinter.debug_logger import get_logger
from contextlinter.dedup import DedupThresholds, dedup_and_rank
from contextlinter.generator import compute_suggestion_cache_key, generate_suggestions
from contextlinter.llm_client import LlmError, prompt_version
from contextlinter.models import Insight, SessionFileInfo, SessionInfo, SuggestionSet
from contextlinter.pipeline import build_suggestion_stats
from contextlinter.preparer import is_session_analyzable
from contextlinter.rules_reader import load_rules_snapshot
from contextlinter.session_reader import discover_project_sessions, load_session, wait_for_stable
from contextlinter.store import (
    find_suggestion_set_by_cache_key,
    load_audit_log,
    load_latest_cross_session_patterns,
    mark_session_analyzed,
    mark_session_parsed,
    save_analysis_result,
    save_audit_log,
    save_suggestion_set,
)

GROWTH_THRESHOLD = 5120
SELF_SESSION_WINDOW = 5
SELF_SESSION_VERBS = ("analyze", "suggest", "apply", "watch", "run")


@dataclass
class TrackedSession:
    size: int
    modified_at: float
    analyzed: bool = False


@dataclass
class WatchOptions:
    interval: float = DEFAULT_WATCH_INTERVAL
    cooldown: float = DEFAULT_WATCH_COOLDOWN
    model: Optional[str] = None
    suggest: bool = True
    verbose: bool = False
    min_messages: int = 2
    thresholds: DedupThresholds = field(default_factory=DedupThresholds)


@dataclass
class WatchStats:
    started_at: float = field(default_factory=time.time)
    sessions_analyzed: int = 0
    insights_found: int = 0
    suggestions_generated: int = 0

    def format(self) -> str:
        elapsed = int(time.time() - self.started_at)
        hours, minutes = elapsed // 3600, (elapsed % 3600) // 60
        duration = f"{hours}h {minutes}m" if hours else f"{minutes}m"
        lines = [
            "Watch summary:",
            f"  Duration: {duration}",
            f"  Sessions analyzed: {self.sessions_analyzed}",
            f"  Insights found: {self.insights_found}",
            f"  Suggestions generated: {self.suggestions_generated}",
        ]
        if self.suggestions_generated:
            lines.append("Review them with: contextlinter apply")
        return "\n".join(lines)


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def is_contextlinter_session(session: SessionInfo) -> bool:
    """True if the session looks like someone running contextlinter itself.

    Only the first few messages are checked: a user message naming the tool
    together with one of its verbs, or a Bash call that invokes it.
    """
    for msg in session.messages[:SELF_SESSION_WINDOW]:
        if msg.role == "user":
            text = msg.text_content.lower()
            if "contextlinter" in text and any(verb in text for verb in SELF_SESSION_VERBS):
                return True
        elif msg.role == "assistant":
            for tool in msg.tool_uses:
                command = tool.input.get("command") if isinstance(tool.input, dict) else None
                if tool.name == "Bash" and isinstance(command, str) and "contextlinter" in command:
                    return True
    return False


class SessionWatcher:
    """Tracks the transcripts of one project between polls.

    Args:
        project_root: Project whose Claude Code sessions are watched
        store_dir: The project's .contextlinter directory
        options: Polling and generation settings
        out: Where progress lines go
    """

    def __init__(
        self,
        project_root: Path,
        store_dir: Path,
        options: Optional[WatchOptions] = None,
        out: Callable[[str], None] = print,
    ) -> None:
        self.project_root = Path(project_root)
        self.store_dir = Path(store_dir)
        self.options = options or WatchOptions()
        self.out = out
        self.seen: Dict[str, TrackedSession] = {}
        self.stats = WatchStats()

    def _warn(self, message: str) -> None:
        print(f"Warning: {message}", file=sys.stderr)
        get_logger().warning(message)

    def _verbose(self, message: str) -> None:
        if self.options.verbose:
            self.out(f"  {message}")

    # =========================================================================
    # Tracking
    # =========================================================================

    def seed(self) -> int:
        """Record every existing session as seen. Returns how many there are."""
        audit = load_audit_log(self.store_dir)
        for info in discover_project_sessions(self.project_root):
            entry = audit.sessions.get(info.session_id)
            self.seen[info.session_id] = TrackedSession(
                size=info.file_size,
                modified_at=info.modified_at,
                analyzed=bool(entry and entry.analyzed_at),
            )
        return len(self.seen)

    def find_candidates(self) -> List[SessionFileInfo]:
        """New sessions, plus unanalyzed ones that grew past GROWTH_THRESHOLD."""
        candidates: List[SessionFileInfo] = []
        for info in discover_project_sessions(self.project_root):
            tracked = self.seen.get(info.session_id)
            if tracked is None or (
                not tracked.analyzed and info.file_size - tracked.size > GROWTH_THRESHOLD
            ):
                candidates.append(info)
                self.seen[info.session_id] = TrackedSession(info.file_size, info.modified_at)
            else:
                tracked.size = info.file_size
                tracked.modified_at = info.modified_at
        return candidates

    def _mark_analyzed(self, session_id: str) -> None:
        tracked = self.seen.get(session_id)
        if tracked is not None:
            tracked.analyzed = True

    # =========================================================================
    # Processing
    # =========================================================================

    async def poll_once(self) -> int:
        """Run one poll. Returns the number of candidates found."""
        candidates = self.find_candidates()
        for info in candidates:
            await self.process_candidate(info)
        return len(candidates)

    async def process_candidate(self, info: SessionFileInfo) -> bool:
        """Analyze one candidate once its file has settled.

        Returns:
            True if the session was analyzed.
        """
        self._verbose(f"Waiting {self.options.cooldown}s for {info.session_id[:8]} to settle...")
        if not await wait_for_stable(Path(info.file_path), self.options.cooldown):
            self._verbose(f"{info.session_id[:8]} still changing, deferring to next poll.")
            return False

        audit = load_audit_log(self.store_dir)
        entry = audit.sessions.get(info.session_id)
        if entry is not None and entry.analyzed_at:
            self._mark_analyzed(info.session_id)
            return False

        short_id = info.session_id[:8]
        try:
            session = load_session(info, self.project_root)
            mtime = os.stat(info.file_path).st_mtime
        except OSError as e:
            self._verbose(f"Failed to parse session {short_id}: {e}")
            return False
        mark_session_parsed(audit, info.session_id, mtime)
        save_audit_log(self.store_dir, audit)

        if not is_session_analyzable(session, self.options.min_messages):
            self._verbose(f"Skipping {short_id}: too short ({session.user_message_count} user messages)")
            return False
        if is_contextlinter_session(session):
            self._verbose(f"Skipping {short_id}: contextlinter's own session")
            return False

        self.out(f"Session {short_id} ({session.message_count} messages)")
        try:
            result = await analyze_session(session, self.options.model)
        except LlmError as e:
            self._warn(f"Analysis failed for {short_id}: {e}")
            return False

        save_analysis_result(self.store_dir, result)
        audit = load_audit_log(self.store_dir)
        mark_session_analyzed(audit, info.session_id, prompt_version("session-analysis"), len(result.insights))
        save_audit_log(self.store_dir, audit)
        self._mark_analyzed(info.session_id)

        self.stats.sessions_analyzed += 1
        self.stats.insights_found += len(result.insights)
        self.out(f"  {_plural(len(result.insights), 'insight')} found")

        if self.options.suggest and result.insights:
            generated = await self.scoped_suggest(result.insights)
            self.stats.suggestions_generated += generated
            if generated:
                self.out(f"  {_plural(generated, 'suggestion')} generated")
        return True

    async def scoped_suggest(self, insights: List[Insight]) -> int:
        """Generate a suggestion set from one session's insights.

        Cross-session patterns whose ids are among the insights' ids are
        included. Returns the number of suggestions in the resulting set,
        which is the stored one when the cache key matches.
        """
        ids = {i.id for i in insights}
        patterns = [p for p in load_latest_cross_session_patterns(self.store_dir) if p.id in ids]
        snapshot = load_rules_snapshot(self.project_root, self.store_dir)

        cache_key = compute_suggestion_cache_key(
            [i.id for i in insights],
            [p.id for p in patterns],
            snapshot,
            prompt_version("suggestion-generation"),
        )
        cached = find_suggestion_set_by_cache_key(self.store_dir, cache_key)
        if cached is not None:
            self._verbose("Suggestions unchanged since last generation.")
            return len(cached.suggestions)

        try:
            generated = await generate_suggestions(insights, patterns, snapshot, self.options.model)
        except LlmError as e:
            self._warn(f"Suggestion generation failed: {e}")
            return 0

        ranked = dedup_and_rank(generated.suggestions, self.options.thresholds)
        if not ranked:
            return 0

        stats = build_suggestion_stats(ranked, snapshot)
        stats.insights_used = len(insights) + len(patterns) - len(generated.skipped)
        stats.insights_skipped = len(generated.skipped)
        save_suggestion_set(self.store_dir, SuggestionSet(
            project_path=str(self.project_root),
            generated_at=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            suggestions=ranked,
            stats=stats,
            cache_key=cache_key,
        ))
        return len(ranked)

    async def run(self, max_polls: Optional[int] = None) -> WatchStats:
        """Poll every interval seconds until cancelled or max_polls is reached."""
        polls = 0
        while max_polls is None or polls < max_polls:
            await asyncio.sleep(self.options.interval)
            try:
                await self.poll_once()
            except OSError as e:
                self._warn(f"Poll error: {e}")
            polls += 1
        return self.stats
