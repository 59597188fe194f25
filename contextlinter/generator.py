#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Suggestion generation: the trust boundary between LLM output and diffs.

parse_llm_suggestions() turns whatever JSON the model returned into typed
LlmSuggestion values. build_suggestion() turns one of those into an
addressable Suggestion with a diff against the rules snapshot.
"""

import hashlib
import json
import sys
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from contextlinter.debug_logger import get_logger
from contextlinter.diff_builder import build_diff, normalize_to_string, normalize_to_string_list
from contextlinter.llm_client import (
    CLI_TIMEOUT,
    SUGGEST_TIMEOUT,
    call_claude_async,
    fill_template,
)
from contextlinter.models import (
    DEFAULT_TARGET_FILE,
    ActionHint,
    CrossSessionPattern,
    Insight,
    LlmSuggestion,
    Priority,
    RulesSnapshot,
    Suggestion,
    SuggestionContent,
    SuggestionType,
)
from contextlinter.prompts import SUGGESTION_GENERATION

BATCH_SIZE = 15
MAX_CONTENT_LINES = 5
SPLIT_CONFIDENCE = 0.85
NO_INSIGHT_CONFIDENCE = 0.6


@dataclass
class GenerateResult:
    suggestions: List[Suggestion] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)  # (title, reason)
    duration_ms: int = 0
    batch_count: int = 0


def _warn(message: str) -> None:
    print(f"Warning: {message}", file=sys.stderr)
    get_logger().warning(message)


# =============================================================================
# Parsing untrusted LLM output
# =============================================================================


def _content_field(value: Any) -> Any:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return [v for v in value if isinstance(v, str)]
    return None


def _parse_content(value: Any) -> SuggestionContent:
    if isinstance(value, dict):
        return SuggestionContent(add=_content_field(value.get("add")), remove=_content_field(value.get("remove")))
    if isinstance(value, str):
        return SuggestionContent(add=value)
    return SuggestionContent()


def parse_llm_suggestion(item: Dict[str, Any]) -> LlmSuggestion:
    """Normalize one suggestion object field by field."""
    insight_ids = item.get("insightIds")
    return LlmSuggestion(
        type=SuggestionType.parse(item.get("type")),
        title=str(item["title"]),
        target_file=item["targetFile"] if isinstance(item.get("targetFile"), str) else DEFAULT_TARGET_FILE,
        target_section=item["targetSection"] if isinstance(item.get("targetSection"), str) else None,
        rationale=item["rationale"] if isinstance(item.get("rationale"), str) else "",
        priority=Priority.parse(item.get("priority")),
        content=_parse_content(item.get("content")),
        insight_ids=[i for i in insight_ids if isinstance(i, str)] if isinstance(insight_ids, list) else [],
        skipped=bool(item.get("skipped")),
        skip_reason=item["skipReason"] if isinstance(item.get("skipReason"), str) else None,
    )


def parse_llm_suggestions(value: Any) -> List[LlmSuggestion]:
    """Keep every dict with a string title; anything else is dropped."""
    if not isinstance(value, list):
        return []
    return [
        parse_llm_suggestion(item)
        for item in value
        if isinstance(item, dict) and isinstance(item.get("title"), str)
    ]


# =============================================================================
# Building suggestions
# =============================================================================


def build_insight_session_map(
    insights: List[Insight], patterns: Optional[List[CrossSessionPattern]] = None
) -> Dict[str, List[str]]:
    """Map each insight/pattern id to the session ids behind it."""
    mapping = {insight.id: [insight.session_id] for insight in insights}
    for pattern in patterns or []:
        mapping[pattern.id] = [o.session_id for o in pattern.occurrences]
    return mapping


def _backing_sessions(insight_ids: List[str], insight_session_map: Dict[str, List[str]]) -> List[str]:
    sessions: List[str] = []
    for insight_id in insight_ids:
        for session_id in insight_session_map.get(insight_id, []):
            if session_id not in sessions:
                sessions.append(session_id)
    return sessions


def estimate_confidence(raw: LlmSuggestion, insight_session_map: Dict[str, List[str]]) -> float:
    """More backing sessions means higher confidence."""
    if raw.type == SuggestionType.SPLIT:
        return SPLIT_CONFIDENCE
    if not raw.insight_ids:
        return NO_INSIGHT_CONFIDENCE
    count = len(_backing_sessions(raw.insight_ids, insight_session_map))
    if count >= 3:
        return 0.95
    if count >= 2:
        return 0.85
    return 0.7


def build_suggestion(
    raw: LlmSuggestion,
    snapshot: RulesSnapshot,
    insight_session_map: Dict[str, List[str]],
) -> Optional[Suggestion]:
    """Build an addressable Suggestion, or None when no diff can be built."""
    diff = build_diff(raw, snapshot, raw.target_file, raw.target_section)
    if diff is None:
        return None

    if raw.type not in (SuggestionType.SPLIT, SuggestionType.CONSOLIDATE):
        add_text = normalize_to_string(raw.content.add) or ""
        line_count = sum(1 for line in add_text.split("\n") if line.strip())
        if line_count > MAX_CONTENT_LINES:
            _warn(
                f'Suggestion "{raw.title}" has {line_count} content lines '
                f"(max {MAX_CONTENT_LINES}). Consider making it more concise."
            )

    split_target = None
    if raw.type == SuggestionType.SPLIT:
        targets = normalize_to_string_list(raw.content.add)
        split_target = targets[0] if targets else None

    return Suggestion(
        id=str(uuid.uuid4()),
        type=raw.type,
        priority=raw.priority,
        confidence=estimate_confidence(raw, insight_session_map),
        title=raw.title or "Untitled suggestion",
        rationale=raw.rationale,
        target_file=raw.target_file,
        target_section=raw.target_section,
        diff=diff,
        source_insight_ids=list(raw.insight_ids),
        source_session_ids=_backing_sessions(raw.insight_ids, insight_session_map),
        split_target=split_target,
    )


def build_suggestions(
    raws: List[LlmSuggestion],
    snapshot: RulesSnapshot,
    insight_session_map: Dict[str, List[str]],
    source: str = "session",
) -> GenerateResult:
    """Build every non-skipped raw suggestion; skipped ones are reported."""
    result = GenerateResult()
    dropped = 0
    for raw in raws:
        if raw.skipped:
            result.skipped.append((raw.title or "Unknown", raw.skip_reason or "already covered"))
            continue
        suggestion = build_suggestion(raw, snapshot, insight_session_map)
        if suggestion is None:
            dropped += 1
        else:
            result.suggestions.append(suggestion)
    get_logger().suggestions_built(source, len(result.suggestions), dropped)
    return result


# =============================================================================
# Prompt helpers
# =============================================================================


def format_rules_for_prompt(snapshot: RulesSnapshot) -> str:
    if not snapshot.files:
        return "(No rules files exist yet. CLAUDE.md has not been created.)"
    parts = [
        f"### File: {f.relative_path} ({f.scope.value} scope, {len(f.rules)} rules)\n\n{f.content}"
        for f in snapshot.files
    ]
    return "\n\n---\n\n".join(parts)


def build_rules_stats_for_prompt(snapshot: RulesSnapshot) -> str:
    """Per-file, per-section rule counts so the model can judge when to split."""
    if not snapshot.files:
        return "(No rules files exist yet.)"

    parts = [f"Total rules across all files: {snapshot.stats.total_rules}", ""]
    for f in snapshot.files:
        parts.append(f"### {f.relative_path}: {len(f.rules)} rules")
        sections: Dict[str, list] = {}
        for rule in f.rules:
            sections.setdefault(rule.section or "(no section)", []).append(rule)
        for name, rules in sorted(sections.items(), key=lambda item: -len(item[1])):
            parts.append(
                f"  - {name}: {len(rules)} rules (lines {rules[0].line_start}-{rules[-1].line_end})"
            )
        parts.append("")
    return "\n".join(parts)


def build_insights_payload(
    insights: List[Insight], patterns: Optional[List[CrossSessionPattern]] = None
) -> List[Dict[str, Any]]:
    """JSON-ready insight list, sorted by confidence, minus prompt-only findings."""
    payload: List[Dict[str, Any]] = []
    for insight in insights:
        if not insight.suggested_rule and insight.action_hint == ActionHint.PROMPT_IMPROVEMENT:
            continue
        payload.append({
            "id": insight.id,
            "source": "single-session",
            "category": insight.category.value,
            "confidence": insight.confidence,
            "title": insight.title,
            "description": insight.description,
            "suggestedRule": insight.suggested_rule,
            "actionHint": insight.action_hint.value,
            "sessionId": insight.session_id,
        })
    for pattern in patterns or []:
        if not pattern.suggested_rule and pattern.action_hint == ActionHint.PROMPT_IMPROVEMENT:
            continue
        payload.append({
            "id": pattern.id,
            "source": "cross-session",
            "category": pattern.category.value,
            "confidence": pattern.confidence,
            "title": pattern.title,
            "description": pattern.description,
            "suggestedRule": pattern.suggested_rule,
            "actionHint": pattern.action_hint.value,
            "sessionCount": len(pattern.occurrences),
        })
    payload.sort(key=lambda item: -item["confidence"])
    return payload


def format_existing_suggestions(suggestions: List[Suggestion]) -> str:
    if not suggestions:
        return ""
    summary = [
        {
            "title": s.title,
            "type": s.type.value,
            "targetFile": s.target_file,
            "targetSection": s.target_section,
        }
        for s in suggestions
    ]
    return (
        "## Already generated suggestions (from earlier sessions in this run)\n\n"
        "<existing_suggestions>\n"
        f"{json.dumps(summary, indent=2)}\n"
        "</existing_suggestions>"
    )


def compute_suggestion_cache_key(
    insight_ids: List[str],
    pattern_ids: List[str],
    snapshot: RulesSnapshot,
    prompt_version: str,
) -> str:
    """Stable key over inputs; any change to ids, rules or prompt changes it."""
    h = hashlib.sha256()
    h.update("\n".join(sorted(insight_ids + pattern_ids)).encode("utf-8"))
    h.update(b"\x00")
    for f in snapshot.files:
        h.update(f.relative_path.encode("utf-8"))
        h.update(b"\x00")
        h.update(f.content.encode("utf-8"))
        h.update(b"\x00")
    h.update(b"\x00prompt:")
    h.update(prompt_version.encode("utf-8"))
    return h.hexdigest()[:16]


def _build_prompt(snapshot: RulesSnapshot, batch: List[Dict[str, Any]], existing: str) -> str:
    return fill_template(SUGGESTION_GENERATION, {
        "rules_content": format_rules_for_prompt(snapshot),
        "rules_stats": build_rules_stats_for_prompt(snapshot),
        "insights_json": json.dumps(batch, indent=2),
        "existing_suggestions_summary": existing,
    })


# =============================================================================
# LLM-backed generation
# =============================================================================


async def generate_suggestions(
    insights: List[Insight],
    patterns: List[CrossSessionPattern],
    snapshot: RulesSnapshot,
    model: Optional[str] = None,
) -> GenerateResult:
    """Generate suggestions in batches of BATCH_SIZE insights, highest confidence first.

    Raises:
        LlmError: If any batch call fails.
    """
    if not insights and not patterns:
        return GenerateResult()

    insight_session_map = build_insight_session_map(insights, patterns)
    payload = build_insights_payload(insights, patterns)
    batches = [payload[i:i + BATCH_SIZE] for i in range(0, len(payload), BATCH_SIZE)]
    batched = len(batches) > 1

    total = GenerateResult(batch_count=len(batches))
    for batch in batches:
        result = await call_claude_async(
            _build_prompt(snapshot, batch, ""),
            model,
            SUGGEST_TIMEOUT if batched else CLI_TIMEOUT,
        )
        total.duration_ms += result.duration_ms
        built = build_suggestions(parse_llm_suggestions(result.parsed), snapshot, insight_session_map, "batch")
        total.suggestions.extend(built.suggestions)
        total.skipped.extend(built.skipped)

    if not total.suggestions and not total.skipped:
        _warn("LLM returned no valid suggestions.")
    return total


async def generate_session_suggestions(
    insights: List[Insight],
    snapshot: RulesSnapshot,
    existing: List[Suggestion],
    model: Optional[str] = None,
) -> GenerateResult:
    """Single-call generation that shows the model what was already suggested.

    Raises:
        LlmError: If the call fails.
    """
    if not insights:
        return GenerateResult()

    insight_session_map = build_insight_session_map(insights)
    prompt = _build_prompt(snapshot, build_insights_payload(insights), format_existing_suggestions(existing))
    result = await call_claude_async(prompt, model, SUGGEST_TIMEOUT)

    built = build_suggestions(parse_llm_suggestions(result.parsed), snapshot, insight_session_map, "session")
    built.duration_ms = result.duration_ms
    built.batch_count = 1
    return built
