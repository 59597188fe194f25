#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""Tests for contextlinter/models.py - JSON round-trips, enums and result formatting."""

import json
from abc import ABC

import pytest

from contextlinter.models import (
    DiffLine,
    DiffType,
    FormattableResult,
    Priority,
    ReviewAction,
    ReviewResult,
    ReviewSummary,
    SuggestionDiff,
    SuggestionSet,
    SuggestionStats,
    SuggestionStatus,
    SuggestionType,
    WriteAction,
    WriteResult,
)


class TestEnums:
    @pytest.mark.parametrize("value,expected", [
        ("split", SuggestionType.SPLIT),
        ("rewrite", SuggestionType.ADD),
        (None, SuggestionType.ADD),
    ])
    def test_suggestion_type_parse(self, value, expected):
        assert SuggestionType.parse(value) == expected

    def test_priority_parse_and_rank(self):
        assert Priority.parse("urgent") == Priority.MEDIUM
        assert sorted([Priority.LOW, Priority.HIGH, Priority.MEDIUM], key=lambda p: p.rank) == [
            Priority.HIGH, Priority.MEDIUM, Priority.LOW,
        ]


class TestSerialization:
    def test_suggestion_set_round_trip(self, make_suggestion):
        part = SuggestionDiff(type=DiffType.REMOVE, removed_lines=[DiffLine(3, "- old")])
        s = make_suggestion(type=SuggestionType.CONSOLIDATE, added=None, parts=[part], target_section="Testing")
        s.diff.degraded_to_append = True
        original = SuggestionSet(
            project_path="/repo",
            generated_at="2026-01-01T00:00:00Z",
            suggestions=[s],
            stats=SuggestionStats(total=1, by_type={"consolidate": 1}),
            cache_key="abc",
        )
        data = json.loads(json.dumps(original.to_dict()))
        assert data["suggestions"][0]["targetSection"] == "Testing"
        assert data["suggestions"][0]["diff"]["parts"][0]["removedLines"] == [{"lineNumber": 3, "content": "- old"}]
        assert data["cacheKey"] == "abc"

        loaded = SuggestionSet.from_dict(data)
        [copy] = loaded.suggestions
        assert copy.type == SuggestionType.CONSOLIDATE
        assert copy.status == SuggestionStatus.PENDING
        assert copy.diff.degraded_to_append
        assert copy.diff.all_removed_lines()[0].line_number == 3
        assert loaded.stats.by_type == {"consolidate": 1}

    def test_plain_dict_keys_kept(self):
        stats = SuggestionStats(by_priority={"high_pri": 1})
        assert stats.to_dict()["byPriority"] == {"high_pri": 1}


class TestFormattableResult:
    def test_is_abstract(self):
        assert issubclass(FormattableResult, ABC)
        with pytest.raises(TypeError):
            FormattableResult()

    def test_write_result(self):
        ok = WriteResult(success=True, file_path="/repo/CLAUDE.md", action=WriteAction.CREATED)
        assert ok.format() == "Created /repo/CLAUDE.md"
        failed = WriteResult(success=False, action=WriteAction.MODIFIED, file_path="/repo/CLAUDE.md", error="File not found: CLAUDE.md")
        assert failed.format() == "File not found: CLAUDE.md"

    def test_review_summary(self):
        empty = ReviewSummary(started_at="", completed_at="", project_path="/repo")
        assert empty.format() == "No changes applied."
        summary = ReviewSummary(
            started_at="",
            completed_at="",
            project_path="/repo",
            results=[
                ReviewResult("a", ReviewAction.ACCEPT, applied_at="2026-01-01T00:00:00Z"),
                ReviewResult("b", ReviewAction.REJECT),
            ],
            files_modified=["/repo/CLAUDE.md"],
            rules_added=1,
        )
        assert summary.format() == "Applied 1/2 suggestions (1 added) across 1 file(s)."
