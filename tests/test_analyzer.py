#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""Tests for LLM-backed session analysis with the CLI call stubbed out."""
import pytest

from contextlinter import analyzer
from contextlinter.analyzer import (
    analyze_and_suggest,
    analyze_session,
    normalize_confidence,
    normalize_evidence,
    normalize_insight,
    synthesize_cross_sessions,
)
from contextlinter.llm_client import COMBINED_TIMEOUT, LlmCallResult, LlmError
from contextlinter.models import (
    ActionHint,
    AnalysisResult,
    Insight,
    InsightCategory,
    NormalizedMessage,
    RulesSnapshot,
    SessionInfo,
    SuggestionType,
)


def _session(user_messages: int = 2) -> SessionInfo:
    messages = []
    for i in range(user_messages):
        messages.append(NormalizedMessage("user", None, f"use pnpm please ({i})", raw_type="user"))
        messages.append(NormalizedMessage("assistant", None, "ok", raw_type="assistant"))
    return SessionInfo(
        session_id="s1",
        project_path="/repo",
        project_path_encoded="-repo",
        file_path="/tmp/s1.jsonl",
        message_count=len(messages),
        user_message_count=user_messages,
        messages=messages,
    )


@pytest.fixture
def fake_llm(monkeypatch):
    """Stub call_claude_async; set `state["parsed"]` to control the reply."""
    state = {"parsed": None, "prompts": [], "timeouts": [], "error": None}

    async def _call(prompt, model=None, timeout=None):
        if state["error"]:
            raise state["error"]
        state["prompts"].append(prompt)
        state["timeouts"].append(timeout)
        return LlmCallResult(raw="", parsed=state["parsed"], duration_ms=5, estimated_tokens=42)

    monkeypatch.setattr(analyzer, "call_claude_async", _call)
    return state


RAW_INSIGHT = {
    "category": "repeated_correction",
    "confidence": 0.9,
    "title": "Use pnpm",
    "description": "npm was corrected to pnpm",
    "evidence": [{"role": "user", "text": "use pnpm", "messageIndex": 0}],
    "suggestedRule": "- Use pnpm",
    "actionHint": "add_to_rules",
}


class TestNormalizers:
    @pytest.mark.parametrize("value,expected", [
        (0.7, 0.7),
        (1, 1.0),
        (1.5, 0.4),
        (-0.1, 0.4),
        ("0.9", 0.4),
        (True, 0.4),
    ])
    def test_confidence(self, value, expected):
        assert normalize_confidence(value, 0.4) == expected

    def test_evidence_truncated_and_capped(self):
        raw = [{"role": "user", "text": "x" * 400, "messageIndex": i} for i in range(5)] + ["junk"]
        evidence = normalize_evidence(raw)
        assert len(evidence) == 3
        assert len(evidence[0].text) == 300
        assert evidence[2].message_index == 2

    def test_evidence_defaults(self):
        [ev] = normalize_evidence([{"role": "system", "messageIndex": "3"}])
        assert (ev.role, ev.text, ev.message_index) == ("assistant", "", 0)

    def test_insight_defaults_for_bad_values(self):
        insight = normalize_insight(
            {"category": "bogus", "title": "t", "actionHint": "nope", "confidence": 7},
            "s1",
            "/repo",
        )
        assert insight.category == InsightCategory.MISSING_PROJECT_KNOWLEDGE
        assert insight.action_hint == ActionHint.UNCLEAR
        assert insight.confidence == 0.5
        assert insight.suggested_rule is None
        assert insight.session_id == "s1"


class TestAnalyzeSession:
    @pytest.mark.asyncio
    async def test_short_session_skips_llm(self, fake_llm):
        result = await analyze_session(_session(user_messages=1))
        assert result.insights == []
        assert fake_llm["prompts"] == []

    @pytest.mark.asyncio
    async def test_insights_from_array(self, fake_llm):
        fake_llm["parsed"] = [RAW_INSIGHT, {"title": "missing category"}, "junk"]
        result = await analyze_session(_session())
        assert [i.title for i in result.insights] == ["Use pnpm"]
        assert result.stats.corrections_detected == 1
        assert result.stats.tokens_used == 42
        assert "use pnpm please (0)" in fake_llm["prompts"][0]


class TestAnalyzeAndSuggest:
    @pytest.mark.asyncio
    async def test_combined_reply(self, fake_llm):
        fake_llm["parsed"] = {
            "insights": [RAW_INSIGHT],
            "suggestions": [{
                "type": "add",
                "title": "Use pnpm",
                "content": {"add": "- Use pnpm"},
                "insightIds": ["insight-0", "insight-9", "custom"],
            }],
        }
        snapshot = RulesSnapshot(project_root="/repo", snapshot_at="")
        analysis, suggestions = await analyze_and_suggest(_session(), snapshot, "haiku")

        assert fake_llm["timeouts"] == [COMBINED_TIMEOUT]
        assert analysis.stats.insights_generated == 1
        [raw] = suggestions
        assert raw.type == SuggestionType.ADD
        # positional ids resolve to generated ids; others pass through
        assert raw.insight_ids == [analysis.insights[0].id, "insight-9", "custom"]

    @pytest.mark.asyncio
    async def test_bare_insights_array(self, fake_llm):
        fake_llm["parsed"] = [RAW_INSIGHT]
        analysis, suggestions = await analyze_and_suggest(_session(), RulesSnapshot("/repo", ""))
        assert len(analysis.insights) == 1
        assert suggestions == []

    @pytest.mark.asyncio
    async def test_llm_error_propagates(self, fake_llm):
        fake_llm["error"] = LlmError("boom")
        with pytest.raises(LlmError):
            await analyze_and_suggest(_session(), RulesSnapshot("/repo", ""))


class TestCrossSession:
    def _result(self, session_id):
        insight = Insight(
            id=f"i-{session_id}",
            category=InsightCategory.REPEATED_CORRECTION,
            confidence=0.8,
            title="Use pnpm",
            description="",
            session_id=session_id,
        )
        return AnalysisResult(session_id=session_id, project_path="/repo", analyzed_at="", insights=[insight])

    @pytest.mark.asyncio
    async def test_needs_two_sessions(self, fake_llm):
        assert await synthesize_cross_sessions([self._result("a")], "/repo") == []
        assert fake_llm["prompts"] == []

    @pytest.mark.asyncio
    async def test_patterns(self, fake_llm):
        fake_llm["parsed"] = [{
            "category": "repeated_correction",
            "title": "pnpm everywhere",
            "occurrences": [{"sessionId": "a", "insightId": "i-a"}, {"sessionId": "b", "insightId": "i-b"}],
        }]
        [pattern] = await synthesize_cross_sessions([self._result("a"), self._result("b")], "/repo")
        assert pattern.confidence == 0.6
        assert [o.session_id for o in pattern.occurrences] == ["a", "b"]
        assert pattern.project_path == "/repo"
        assert '"sessionId": "b"' in fake_llm["prompts"][0]
