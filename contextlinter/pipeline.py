#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Per-session pipeline: analyze sessions concurrently, dedup as they land.

Each new session gets one combined analyze+suggest call, at most
ANALYSIS_CONCURRENCY at a time. Results are consumed in session order so
the accumulated suggestion list grows deterministically, while later
sessions keep running in the background. Already-analyzed sessions get a
suggestion-only call. Cross-session synthesis runs last.

A failure in one session (or in synthesis) is reported through the
warning callback and never aborts the run.
"""

import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from contextlinter.analyzer import analyze_and_suggest, synthesize_cross_sessions
from contextlinter.concurrency import start_with_concurrency
from contextlinter.debug_logger import get_logger
from contextlinter.dedup import DedupThresholds, merge_new
from contextlinter.generator import build_insight_session_map, build_suggestions, generate_session_suggestions
from contextlinter.llm_client import prompt_version
from contextlinter.models import (
    AnalysisResult,
    CrossSessionPattern,
    Insight,
    LlmSuggestion,
    Priority,
    RulesSnapshot,
    SessionInfo,
    Suggestion,
    SuggestionSet,
    SuggestionStats,
    SuggestionType,
)
from contextlinter.store import (
    load_audit_log,
    mark_cross_session_done,
    mark_session_analyzed,
    save_analysis_result,
    save_audit_log,
    save_cross_session_patterns,
    save_suggestion_set,
)

ANALYSIS_CONCURRENCY = 3


@dataclass
class PipelineOptions:
    dry_run: bool = False
    no_cross: bool = False
    verbose: bool = False
    model: Optional[str] = None
    concurrency: int = ANALYSIS_CONCURRENCY
    thresholds: Optional[DedupThresholds] = None


@dataclass
class SessionPipelineResult:
    session_id: str
    insights: List[Insight] = field(default_factory=list)
    # Suggestions this session added to the accumulated set
    suggestions: List[Suggestion] = field(default_factory=list)
    analysis_time_ms: int = 0
    suggest_time_ms: int = 0


@dataclass
class PipelineCallbacks:
    """Optional progress hooks. Any of them may be None."""
    on_session_analyzing: Optional[Callable[[str, int], None]] = None
    on_session_analyzed: Optional[Callable[[str, int, int], None]] = None
    on_session_complete: Optional[Callable[[SessionPipelineResult], None]] = None
    on_cross_session_complete: Optional[Callable[[List[CrossSessionPattern], List[Suggestion]], None]] = None
    on_warning: Optional[Callable[[str], None]] = None


@dataclass
class PipelineAccumulator:
    """Running state for one pipeline run."""
    analysis_results: List[AnalysisResult] = field(default_factory=list)
    suggestions: List[Suggestion] = field(default_factory=list)
    insight_ids: List[str] = field(default_factory=list)
    cross_pattern_ids: List[str] = field(default_factory=list)

    def add_result(self, result: AnalysisResult) -> None:
        self.analysis_results.append(result)
        self.insight_ids.extend(i.id for i in result.insights)


@dataclass
class PipelineStats:
    sessions_analyzed: int = 0
    insights_found: int = 0
    cross_patterns_found: int = 0
    suggestions_generated: int = 0
    total_analysis_time_ms: int = 0
    total_suggest_time_ms: int = 0


@dataclass
class PipelineResult:
    session_results: List[SessionPipelineResult] = field(default_factory=list)
    cross_patterns: List[CrossSessionPattern] = field(default_factory=list)
    cross_suggestions: List[Suggestion] = field(default_factory=list)
    # Final deduped set across all sessions and the cross-session pass
    all_suggestions: List[Suggestion] = field(default_factory=list)
    stats: PipelineStats = field(default_factory=PipelineStats)


# =============================================================================
# Helpers
# =============================================================================


def _callback(callbacks: Optional[PipelineCallbacks], name: str) -> Optional[Callable]:
    return getattr(callbacks, name) if callbacks is not None else None


def _warn(callbacks: Optional[PipelineCallbacks], message: str) -> None:
    handler = _callback(callbacks, "on_warning")
    if handler is not None:
        handler(message)
        return
    print(f"Warning: {message}", file=sys.stderr)
    get_logger().warning(message)


def _notify(callbacks: Optional[PipelineCallbacks], name: str, *args) -> None:
    handler = _callback(callbacks, name)
    if handler is not None:
        handler(*args)


def build_suggestion_stats(suggestions: List[Suggestion], snapshot: RulesSnapshot) -> SuggestionStats:
    adds = sum(1 for s in suggestions if s.type == SuggestionType.ADD)
    return SuggestionStats(
        total=len(suggestions),
        by_type={t.value: sum(1 for s in suggestions if s.type == t) for t in SuggestionType},
        by_priority={p.value: sum(1 for s in suggestions if s.priority == p) for p in Priority},
        insights_used=len(suggestions),
        insights_skipped=0,
        estimated_rules_after=snapshot.stats.total_rules + adds,
    )


def patterns_to_insights(patterns: List[CrossSessionPattern]) -> List[Insight]:
    """Present cross-session patterns as insights for suggestion generation.

    Each pseudo-insight is attributed to the pattern's first occurrence.
    """
    return [
        Insight(
            id=p.id,
            category=p.category,
            confidence=p.confidence,
            title=p.title,
            description=p.description,
            evidence=[],
            suggested_rule=p.suggested_rule,
            action_hint=p.action_hint,
            session_id=p.occurrences[0].session_id if p.occurrences else "",
            project_path=p.project_path,
        )
        for p in patterns
    ]


def _empty_session(session_id: str) -> SessionPipelineResult:
    return SessionPipelineResult(session_id=session_id)


# =============================================================================
# Phases
# =============================================================================


def _make_combined_task(
    session: SessionInfo,
    store_dir: Path,
    snapshot: RulesSnapshot,
    options: PipelineOptions,
    callbacks: Optional[PipelineCallbacks],
    version: str,
):
    async def task() -> Optional[Tuple[AnalysisResult, List[LlmSuggestion]]]:
        _notify(callbacks, "on_session_analyzing", session.session_id, session.user_message_count)
        try:
            analysis, raw_suggestions = await analyze_and_suggest(session, snapshot, options.model)
            save_analysis_result(store_dir, analysis)
            audit = load_audit_log(store_dir)
            save_audit_log(
                store_dir,
                mark_session_analyzed(audit, session.session_id, version, len(analysis.insights)),
            )
        except Exception as e:
            _warn(callbacks, f"Analysis failed for {session.session_id[:8]}: {e}")
            get_logger().error("analyze_session", str(e), {"session_id": session.session_id})
            return None

        get_logger().session_analyzed(
            session.session_id, len(analysis.insights), len(raw_suggestions), analysis.stats.analysis_time_ms
        )
        _notify(
            callbacks, "on_session_analyzed",
            session.session_id, len(analysis.insights), analysis.stats.analysis_time_ms,
        )
        return analysis, raw_suggestions

    return task


async def _suggest_for_existing(
    existing: AnalysisResult,
    snapshot: RulesSnapshot,
    accumulator: PipelineAccumulator,
    options: PipelineOptions,
    callbacks: Optional[PipelineCallbacks],
) -> SessionPipelineResult:
    result = SessionPipelineResult(
        session_id=existing.session_id,
        insights=existing.insights,
        analysis_time_ms=existing.stats.analysis_time_ms,
    )
    if not existing.insights:
        return result

    start = time.time()
    try:
        generated = await generate_session_suggestions(
            existing.insights, snapshot, accumulator.suggestions, options.model
        )
    except Exception as e:
        _warn(callbacks, f"Suggestion generation failed for {existing.session_id[:8]}: {e}")
        return result
    result.suggest_time_ms = int((time.time() - start) * 1000)

    accumulator.suggestions, result.suggestions = merge_new(
        accumulator.suggestions, generated.suggestions, options.thresholds
    )
    return result


def _admit_combined(
    raw_suggestions: List[LlmSuggestion],
    analysis: AnalysisResult,
    snapshot: RulesSnapshot,
    accumulator: PipelineAccumulator,
    options: PipelineOptions,
) -> List[Suggestion]:
    if not raw_suggestions:
        return []
    built = build_suggestions(raw_suggestions, snapshot, build_insight_session_map(analysis.insights), "combined")
    if not built.suggestions:
        return []
    accumulator.suggestions, admitted = merge_new(accumulator.suggestions, built.suggestions, options.thresholds)
    return admitted


async def _cross_session(
    store_dir: Path,
    project_root: str,
    snapshot: RulesSnapshot,
    accumulator: PipelineAccumulator,
    options: PipelineOptions,
    callbacks: Optional[PipelineCallbacks],
) -> Tuple[List[CrossSessionPattern], List[Suggestion], int]:
    patterns: List[CrossSessionPattern] = []
    admitted: List[Suggestion] = []
    suggest_ms = 0
    try:
        patterns = await synthesize_cross_sessions(accumulator.analysis_results, project_root, options.model)
        if patterns:
            save_cross_session_patterns(store_dir, patterns)
            save_audit_log(store_dir, mark_cross_session_done(load_audit_log(store_dir)))
            accumulator.cross_pattern_ids.extend(p.id for p in patterns)

            generated = await generate_session_suggestions(
                patterns_to_insights(patterns), snapshot, accumulator.suggestions, options.model
            )
            accumulator.suggestions, admitted = merge_new(
                accumulator.suggestions, generated.suggestions, options.thresholds
            )
            suggest_ms = generated.duration_ms
        _notify(callbacks, "on_cross_session_complete", patterns, admitted)
    except Exception as e:
        _warn(callbacks, f"Cross-session synthesis failed: {e}")
    return patterns, admitted, suggest_ms


def _build_result(
    session_results: List[SessionPipelineResult],
    patterns: List[CrossSessionPattern],
    cross_suggestions: List[Suggestion],
    accumulator: PipelineAccumulator,
    analysis_ms: int,
    suggest_ms: int,
) -> PipelineResult:
    return PipelineResult(
        session_results=session_results,
        cross_patterns=patterns,
        cross_suggestions=cross_suggestions,
        all_suggestions=accumulator.suggestions,
        stats=PipelineStats(
            sessions_analyzed=len(accumulator.analysis_results),
            insights_found=len(accumulator.insight_ids),
            cross_patterns_found=len(accumulator.cross_pattern_ids),
            suggestions_generated=len(accumulator.suggestions),
            total_analysis_time_ms=analysis_ms,
            total_suggest_time_ms=suggest_ms,
        ),
    )


# =============================================================================
# Entry point
# =============================================================================


async def run_per_session_pipeline(
    sessions: List[SessionInfo],
    store_dir: Path,
    project_root: str,
    snapshot: RulesSnapshot,
    options: PipelineOptions,
    callbacks: Optional[PipelineCallbacks] = None,
    existing_results: Optional[List[AnalysisResult]] = None,
) -> PipelineResult:
    """Analyze sessions, generate and dedup suggestions, persist the final set.

    Args:
        sessions: Sessions needing a fresh combined analyze+suggest call
        store_dir: The project's .contextlinter directory
        project_root: Project root path
        snapshot: Current rules snapshot
        options: Pipeline options
        callbacks: Optional progress hooks
        existing_results: Already-analyzed sessions needing suggestions only

    Returns:
        PipelineResult with per-session results and the final suggestion set.
    """
    existing_results = existing_results or []
    accumulator = PipelineAccumulator()
    session_results: List[SessionPipelineResult] = []
    analysis_ms = 0
    suggest_ms = 0

    if not sessions and not existing_results:
        return _build_result(session_results, [], [], accumulator, 0, 0)

    if options.dry_run:
        for session in sessions:
            placeholder = _empty_session(session.session_id)
            session_results.append(placeholder)
            _notify(callbacks, "on_session_complete", placeholder)
        return _build_result(session_results, [], [], accumulator, 0, 0)

    logger = get_logger()
    run_start = logger.pipeline_start(project_root, len(sessions), len(existing_results))
    version = prompt_version("session-analysis")

    futures = start_with_concurrency(
        [_make_combined_task(s, store_dir, snapshot, options, callbacks, version) for s in sessions],
        options.concurrency,
    )

    # Suggest-only calls need no waiting on the combined tasks
    for existing in existing_results:
        accumulator.add_result(existing)
        result = await _suggest_for_existing(existing, snapshot, accumulator, options, callbacks)
        suggest_ms += result.suggest_time_ms
        session_results.append(result)
        _notify(callbacks, "on_session_complete", result)

    phase_start = time.time()
    for session, future in zip(sessions, futures):
        outcome = await future
        if outcome is None or isinstance(outcome, Exception):
            empty = _empty_session(session.session_id)
            session_results.append(empty)
            _notify(callbacks, "on_session_complete", empty)
            continue

        analysis, raw_suggestions = outcome
        analysis_ms += analysis.stats.analysis_time_ms
        accumulator.add_result(analysis)
        result = SessionPipelineResult(
            session_id=analysis.session_id,
            insights=analysis.insights,
            suggestions=_admit_combined(raw_suggestions, analysis, snapshot, accumulator, options),
            analysis_time_ms=analysis.stats.analysis_time_ms,
        )
        session_results.append(result)
        _notify(callbacks, "on_session_complete", result)
    logger.phase("consume_sessions", (time.time() - phase_start) * 1000, {"sessions": len(sessions)})

    patterns: List[CrossSessionPattern] = []
    cross_suggestions: List[Suggestion] = []
    if not options.no_cross and len(accumulator.analysis_results) >= 2 and accumulator.insight_ids:
        patterns, cross_suggestions, cross_ms = await _cross_session(
            store_dir, project_root, snapshot, accumulator, options, callbacks
        )
        suggest_ms += cross_ms

    if accumulator.suggestions:
        save_suggestion_set(store_dir, SuggestionSet(
            project_path=project_root,
            generated_at=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            suggestions=accumulator.suggestions,
            stats=build_suggestion_stats(accumulator.suggestions, snapshot),
        ))

    result = _build_result(session_results, patterns, cross_suggestions, accumulator, analysis_ms, suggest_ms)
    logger.pipeline_end(run_start, {
        "sessions_analyzed": result.stats.sessions_analyzed,
        "insights": result.stats.insights_found,
        "cross_patterns": result.stats.cross_patterns_found,
        "suggestions": result.stats.suggestions_generated,
    })
    return result
