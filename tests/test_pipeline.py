#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""Tests for the per-session pipeline with the LLM layer stubbed out."""
import asyncio

import pytest

from contextlinter import pipeline
from contextlinter.generator import GenerateResult
from contextlinter.llm_client import LlmError
from contextlinter.models import (
    AnalysisResult,
    CrossSessionPattern,
    Insight,
    InsightCategory,
    LlmSuggestion,
    PatternOccurrence,
    RulesSnapshot,
    SessionInfo,
    SuggestionContent,
    SuggestionType,
)
from contextlinter.pipeline import PipelineCallbacks, PipelineOptions, run_per_session_pipeline
from contextlinter.store import init_store_dir, load_analysis_result, load_latest_suggestion_set

SNAPSHOT = RulesSnapshot(project_root="/repo", snapshot_at="")


def _session(session_id: str) -> SessionInfo:
    return SessionInfo(
        session_id=session_id,
        project_path="/repo",
        project_path_encoded="-repo",
        file_path=f"/tmp/{session_id}.jsonl",
        user_message_count=3,
    )


def _analysis(session_id: str) -> AnalysisResult:
    insight = Insight(
        id=f"insight-of-{session_id}",
        category=InsightCategory.REPEATED_CORRECTION,
        confidence=0.8,
        title=f"finding in {session_id}",
        description="",
        session_id=session_id,
    )
    return AnalysisResult(session_id=session_id, project_path="/repo", analyzed_at="", insights=[insight])


def _raw(title: str, text: str, session_id: str) -> LlmSuggestion:
    return LlmSuggestion(
        type=SuggestionType.ADD,
        title=title,
        content=SuggestionContent(add=text),
        insight_ids=[f"insight-of-{session_id}"],
    )


REPLIES = {
    "s1": [("Use pnpm for installs", "- Use pnpm, not npm")],
    "s3": [("Run make lint before commits", "- Run `make lint` before committing")],
}


class Recorder:
    def __init__(self):
        self.completed = []
        self.warnings = []
        self.analyzing = []
        self.cross = None

    def callbacks(self) -> PipelineCallbacks:
        return PipelineCallbacks(
            on_session_analyzing=lambda sid, count: self.analyzing.append(sid),
            on_session_complete=lambda result: self.completed.append(result),
            on_cross_session_complete=lambda patterns, admitted: setattr(self, "cross", (patterns, admitted)),
            on_warning=self.warnings.append,
        )


@pytest.fixture
def store(project):
    return init_store_dir(project)


@pytest.fixture
def fake_analysis(monkeypatch):
    """s2 fails; s1 and s3 reply with one suggestion each."""
    calls = []

    async def _analyze(session, snapshot, model=None):
        calls.append(session.session_id)
        if session.session_id == "s2":
            raise LlmError("Claude CLI exited with code 1")
        raws = [_raw(title, text, session.session_id) for title, text in REPLIES.get(session.session_id, [])]
        return _analysis(session.session_id), raws

    async def _no_patterns(results, project_root, model=None):
        return []

    monkeypatch.setattr(pipeline, "analyze_and_suggest", _analyze)
    monkeypatch.setattr(pipeline, "synthesize_cross_sessions", _no_patterns)
    return calls


class TestPerSessionPipeline:
    @pytest.mark.asyncio
    async def test_results_consumed_in_session_order(self, store, monkeypatch):
        delays = {"s1": 0.1, "s2": 0.0, "s3": 0.02}
        rules = {
            "s1": ("Use pnpm for installs", "- Use pnpm, not npm"),
            "s2": ("Prefer pathlib over os.path", "- Prefer pathlib for filesystem paths"),
            "s3": ("Run make lint before commits", "- Run `make lint` before committing"),
        }
        finished = []

        async def _slow(session, snapshot, model=None):
            await asyncio.sleep(delays[session.session_id])
            finished.append(session.session_id)
            title, text = rules[session.session_id]
            return _analysis(session.session_id), [_raw(title, text, session.session_id)]

        async def _no_patterns(results, project_root, model=None):
            return []

        monkeypatch.setattr(pipeline, "analyze_and_suggest", _slow)
        monkeypatch.setattr(pipeline, "synthesize_cross_sessions", _no_patterns)

        recorder = Recorder()
        result = await run_per_session_pipeline(
            [_session("s1"), _session("s2"), _session("s3")],
            store, "/repo", SNAPSHOT, PipelineOptions(concurrency=3), recorder.callbacks(),
        )

        assert finished == ["s2", "s3", "s1"]
        assert [r.session_id for r in recorder.completed] == ["s1", "s2", "s3"]
        assert [s.title for s in result.all_suggestions] == [rules[sid][0] for sid in ("s1", "s2", "s3")]

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, store, fake_analysis):
        recorder = Recorder()
        result = await run_per_session_pipeline(
            [_session("s1"), _session("s2"), _session("s3")],
            store, "/repo", SNAPSHOT, PipelineOptions(concurrency=2), recorder.callbacks(),
        )

        assert [r.session_id for r in recorder.completed] == ["s1", "s2", "s3"]
        assert recorder.completed[1].insights == []
        assert recorder.warnings == ["Analysis failed for s2: Claude CLI exited with code 1"]
        assert [s.title for s in result.all_suggestions] == [
            "Use pnpm for installs",
            "Run make lint before commits",
        ]
        assert result.stats.sessions_analyzed == 2
        assert result.stats.insights_found == 2

    @pytest.mark.asyncio
    async def test_results_persisted(self, store, fake_analysis):
        await run_per_session_pipeline([_session("s1"), _session("s3")], store, "/repo", SNAPSHOT, PipelineOptions())
        assert load_analysis_result(store, "s1").insights[0].title == "finding in s1"
        saved = load_latest_suggestion_set(store)
        assert len(saved.suggestions) == 2
        assert saved.stats.by_type["add"] == 2

    @pytest.mark.asyncio
    async def test_duplicates_across_sessions_dropped(self, store, monkeypatch, fake_analysis):
        monkeypatch.setitem(REPLIES, "s3", [("Use pnpm for installs", "- Use pnpm, not npm")])
        recorder = Recorder()
        result = await run_per_session_pipeline(
            [_session("s1"), _session("s3")], store, "/repo", SNAPSHOT, PipelineOptions(), recorder.callbacks()
        )
        assert len(result.all_suggestions) == 1
        assert len(recorder.completed[0].suggestions) == 1
        assert recorder.completed[1].suggestions == []

    @pytest.mark.asyncio
    async def test_dry_run_makes_no_calls(self, store, fake_analysis):
        recorder = Recorder()
        result = await run_per_session_pipeline(
            [_session("s1")], store, "/repo", SNAPSHOT, PipelineOptions(dry_run=True), recorder.callbacks()
        )
        assert fake_analysis == []
        assert [r.session_id for r in recorder.completed] == ["s1"]
        assert result.all_suggestions == []
        assert load_latest_suggestion_set(store) is None

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, store, fake_analysis):
        result = await run_per_session_pipeline([], store, "/repo", SNAPSHOT, PipelineOptions())
        assert result.session_results == []


class TestExistingAndCrossSession:
    @pytest.mark.asyncio
    async def test_existing_results_get_suggestions_only(self, store, monkeypatch, fake_analysis, make_suggestion):
        seen = []

        async def _generate(insights, snapshot, existing, model=None):
            seen.append([i.id for i in insights])
            return GenerateResult(suggestions=[make_suggestion(title="Document the deploy flow", added="- Deploy via make")])

        monkeypatch.setattr(pipeline, "generate_session_suggestions", _generate)
        result = await run_per_session_pipeline(
            [], store, "/repo", SNAPSHOT, PipelineOptions(no_cross=True), existing_results=[_analysis("old")]
        )
        assert fake_analysis == []
        assert seen == [["insight-of-old"]]
        assert [s.title for s in result.all_suggestions] == ["Document the deploy flow"]

    @pytest.mark.asyncio
    async def test_cross_session_patterns(self, store, monkeypatch, fake_analysis, make_suggestion):
        pattern = CrossSessionPattern(
            id="p1",
            category=InsightCategory.REPEATED_CORRECTION,
            confidence=0.9,
            title="Lint is always forgotten",
            description="",
            occurrences=[PatternOccurrence("s1", "insight-of-s1"), PatternOccurrence("s3", "insight-of-s3")],
        )

        async def _patterns(results, project_root, model=None):
            return [pattern]

        async def _generate(insights, snapshot, existing, model=None):
            assert insights[0].session_id == "s1"
            assert len(existing) == 2
            return GenerateResult(suggestions=[make_suggestion(title="Keep a changelog", added="- Update CHANGELOG.md")])

        monkeypatch.setattr(pipeline, "synthesize_cross_sessions", _patterns)
        monkeypatch.setattr(pipeline, "generate_session_suggestions", _generate)
        recorder = Recorder()
        result = await run_per_session_pipeline(
            [_session("s1"), _session("s3")], store, "/repo", SNAPSHOT, PipelineOptions(), recorder.callbacks()
        )
        assert result.stats.cross_patterns_found == 1
        assert [s.title for s in result.cross_suggestions] == ["Keep a changelog"]
        assert len(result.all_suggestions) == 3
        assert recorder.cross[0] == [pattern]

    @pytest.mark.asyncio
    async def test_cross_session_failure_warns(self, store, monkeypatch, fake_analysis):
        async def _boom(results, project_root, model=None):
            raise LlmError("timed out")

        monkeypatch.setattr(pipeline, "synthesize_cross_sessions", _boom)
        recorder = Recorder()
        result = await run_per_session_pipeline(
            [_session("s1"), _session("s3")], store, "/repo", SNAPSHOT, PipelineOptions(), recorder.callbacks()
        )
        assert recorder.warnings == ["Cross-session synthesis failed: timed out"]
        assert len(result.all_suggestions) == 2
        assert load_latest_suggestion_set(store) is not None
