#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
LLM-backed session analysis.

analyze_and_suggest() is the per-session call used by the pipeline: one
prompt returns both insights and raw suggestions. LLM failures raise
LlmError; the pipeline catches them per session.
"""

import json
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from contextlinter.generator import (
    build_rules_stats_for_prompt,
    format_rules_for_prompt,
    parse_llm_suggestions,
)
from contextlinter.llm_client import COMBINED_TIMEOUT, call_claude_async, fill_template
from contextlinter.models import (
    ActionHint,
    AnalysisResult,
    AnalysisStats,
    CrossSessionPattern,
    Evidence,
    Insight,
    InsightCategory,
    LlmSuggestion,
    PatternOccurrence,
    RulesSnapshot,
    SessionInfo,
)
from contextlinter.preparer import (
    format_conversation,
    format_tool_usage_summary,
    is_session_analyzable,
    prepare_session,
)
from contextlinter.prompts import (
    CROSS_SESSION_SYNTHESIS,
    SESSION_ANALYSIS,
    SESSION_ANALYSIS_AND_SUGGEST,
)

MAX_EVIDENCE = 3
MAX_EVIDENCE_CHARS = 300
INSIGHT_DEFAULT_CONFIDENCE = 0.5
PATTERN_DEFAULT_CONFIDENCE = 0.6
CORRECTION_CATEGORIES = {InsightCategory.REPEATED_CORRECTION, InsightCategory.REJECTED_APPROACH}
POSITIONAL_ID_RE = re.compile(r"^insight-(\d+)$")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# =============================================================================
# Normalizers
# =============================================================================


def normalize_confidence(value: Any, default: float) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and 0 <= value <= 1:
        return float(value)
    return default


def normalize_evidence(value: Any) -> List[Evidence]:
    if not isinstance(value, list):
        return []
    evidence = []
    for item in value:
        if not isinstance(item, dict):
            continue
        index = item.get("messageIndex")
        evidence.append(Evidence(
            role="user" if item.get("role") == "user" else "assistant",
            text=str(item.get("text") or "")[:MAX_EVIDENCE_CHARS],
            message_index=index if isinstance(index, int) and not isinstance(index, bool) else 0,
        ))
    return evidence[:MAX_EVIDENCE]


def _valid_items(value: Any) -> List[Dict[str, Any]]:
    """Dicts that carry a string category and title."""
    if not isinstance(value, list):
        return []
    return [
        item for item in value
        if isinstance(item, dict)
        and isinstance(item.get("category"), str)
        and isinstance(item.get("title"), str)
    ]


def normalize_insight(raw: Dict[str, Any], session_id: str, project_path: str) -> Insight:
    suggested = raw.get("suggestedRule")
    return Insight(
        id=str(uuid.uuid4()),
        category=InsightCategory.parse(raw.get("category")),
        confidence=normalize_confidence(raw.get("confidence"), INSIGHT_DEFAULT_CONFIDENCE),
        title=str(raw.get("title") or ""),
        description=str(raw.get("description") or ""),
        evidence=normalize_evidence(raw.get("evidence")),
        suggested_rule=str(suggested) if suggested is not None else None,
        action_hint=ActionHint.parse(raw.get("actionHint")),
        session_id=session_id,
        project_path=project_path,
    )


def normalize_pattern(raw: Dict[str, Any], project_path: str) -> CrossSessionPattern:
    suggested = raw.get("suggestedRule")
    occurrences = raw.get("occurrences")
    return CrossSessionPattern(
        id=str(uuid.uuid4()),
        category=InsightCategory.parse(raw.get("category")),
        confidence=normalize_confidence(raw.get("confidence"), PATTERN_DEFAULT_CONFIDENCE),
        title=str(raw.get("title") or ""),
        description=str(raw.get("description") or ""),
        occurrences=[
            PatternOccurrence(
                session_id=str(o.get("sessionId") or ""),
                insight_id=str(o.get("insightId") or ""),
            )
            for o in (occurrences if isinstance(occurrences, list) else [])
            if isinstance(o, dict)
        ],
        suggested_rule=str(suggested) if suggested is not None else None,
        action_hint=ActionHint.parse(raw.get("actionHint")),
        project_path=project_path,
    )


def _empty_result(session: SessionInfo, elapsed_ms: int) -> AnalysisResult:
    return AnalysisResult(
        session_id=session.session_id,
        project_path=session.project_path,
        analyzed_at=_now_iso(),
        stats=AnalysisStats(
            total_messages=session.message_count,
            user_messages=session.user_message_count,
            analysis_time_ms=elapsed_ms,
        ),
    )


def _build_result(
    session: SessionInfo, insights: List[Insight], total_messages: int, start: float, tokens: Optional[int]
) -> AnalysisResult:
    return AnalysisResult(
        session_id=session.session_id,
        project_path=session.project_path,
        analyzed_at=_now_iso(),
        insights=insights,
        stats=AnalysisStats(
            total_messages=total_messages,
            user_messages=session.user_message_count,
            corrections_detected=sum(1 for i in insights if i.category in CORRECTION_CATEGORIES),
            insights_generated=len(insights),
            analysis_time_ms=int((time.time() - start) * 1000),
            tokens_used=tokens,
        ),
    )


def _resolve_positional_ids(suggestions: List[LlmSuggestion], insights: List[Insight]) -> None:
    """Rewrite "insight-N" references to the id generated for insight N."""
    for suggestion in suggestions:
        resolved = []
        for ref in suggestion.insight_ids:
            m = POSITIONAL_ID_RE.match(ref)
            if m and int(m.group(1)) < len(insights):
                resolved.append(insights[int(m.group(1))].id)
            else:
                resolved.append(ref)
        suggestion.insight_ids = resolved


# =============================================================================
# LLM calls
# =============================================================================


async def analyze_session(session: SessionInfo, model: Optional[str] = None) -> AnalysisResult:
    """Extract insights from one session.

    Raises:
        LlmError: If the claude call fails.
    """
    start = time.time()
    if not is_session_analyzable(session):
        return _empty_result(session, int((time.time() - start) * 1000))

    prepared = prepare_session(session)
    prompt = fill_template(SESSION_ANALYSIS, {
        "tool_usage_summary": format_tool_usage_summary(prepared.tool_usage_summary),
        "conversation": format_conversation(prepared.messages),
    })
    result = await call_claude_async(prompt, model)
    insights = [
        normalize_insight(raw, session.session_id, session.project_path)
        for raw in _valid_items(result.parsed)
    ]
    return _build_result(session, insights, prepared.total_messages_before_filter, start, result.estimated_tokens)


async def analyze_and_suggest(
    session: SessionInfo, snapshot: RulesSnapshot, model: Optional[str] = None
) -> Tuple[AnalysisResult, List[LlmSuggestion]]:
    """Analyze a session and propose rule edits in a single call.

    Returns:
        (analysis result, raw suggestions)

    Raises:
        LlmError: If the claude call fails.
    """
    start = time.time()
    if not is_session_analyzable(session):
        return _empty_result(session, int((time.time() - start) * 1000)), []

    prepared = prepare_session(session)
    prompt = fill_template(SESSION_ANALYSIS_AND_SUGGEST, {
        "tool_usage_summary": format_tool_usage_summary(prepared.tool_usage_summary),
        "conversation": format_conversation(prepared.messages),
        "rules_content": format_rules_for_prompt(snapshot),
        "rules_stats": build_rules_stats_for_prompt(snapshot),
    })
    result = await call_claude_async(prompt, model, COMBINED_TIMEOUT)

    parsed = result.parsed
    suggestions: List[LlmSuggestion] = []
    if isinstance(parsed, dict):
        raw_insights = _valid_items(parsed.get("insights"))
        suggestions = parse_llm_suggestions(parsed.get("suggestions"))
    else:
        # Older prompt format: a bare insights array
        raw_insights = _valid_items(parsed)

    insights = [normalize_insight(raw, session.session_id, session.project_path) for raw in raw_insights]
    _resolve_positional_ids(suggestions, insights)
    analysis = _build_result(session, insights, prepared.total_messages_before_filter, start, result.estimated_tokens)
    return analysis, suggestions


async def synthesize_cross_sessions(
    results: List[AnalysisResult], project_root: str, model: Optional[str] = None
) -> List[CrossSessionPattern]:
    """Find patterns recurring across sessions. Needs 2+ sessions and 1+ insight.

    Raises:
        LlmError: If the claude call fails.
    """
    insights = [i for r in results for i in r.insights]
    if not insights or len(results) < 2:
        return []

    summary = [
        {
            "id": i.id,
            "sessionId": i.session_id,
            "category": i.category.value,
            "confidence": i.confidence,
            "title": i.title,
            "description": i.description,
            "suggestedRule": i.suggested_rule,
        }
        for i in insights
    ]
    prompt = fill_template(CROSS_SESSION_SYNTHESIS, {"insights_json": json.dumps(summary, indent=2)})
    result = await call_claude_async(prompt, model)
    return [normalize_pattern(raw, project_root) for raw in _valid_items(result.parsed)]
