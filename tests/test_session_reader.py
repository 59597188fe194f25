#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""Tests for Claude Code transcript reading and discovery."""
import json
import os

import pytest

from contextlinter.paths import encode_project_path
from contextlinter.session_reader import (
    TOOL_RESULT_MAX_LENGTH,
    discover_project_sessions,
    discover_sessions_in_dir,
    extract_text_content,
    extract_tool_results,
    load_session,
    normalize_line,
    parse_json_line,
    parse_session_file,
    project_sessions_dir,
    read_first_timestamp,
    wait_for_stable,
)


class TestLineParsing:
    def test_parse_json_line_requires_typed_object(self):
        assert parse_json_line('{"type": "user"}') == {"type": "user"}
        assert parse_json_line("[1, 2]") is None
        assert parse_json_line('{"no": "type"}') is None
        assert parse_json_line("{broken") is None
        assert parse_json_line("   ") is None

    def test_text_content_from_blocks(self):
        content = [
            {"type": "text", "text": "one"},
            {"type": "tool_use", "name": "Bash"},
            {"type": "text", "text": "two"},
        ]
        assert extract_text_content(content) == "one\ntwo"
        assert extract_text_content("plain") == "plain"

    def test_tool_results_truncated(self):
        results = extract_tool_results([
            {"type": "tool_result", "tool_use_id": "t1", "content": "x" * (TOOL_RESULT_MAX_LENGTH + 10)},
            {"type": "tool_result", "tool_use_id": "t2", "content": [{"type": "text", "text": "ok"}]},
        ])
        assert results[0].content == "x" * TOOL_RESULT_MAX_LENGTH + "..."
        assert json.loads(results[1].content) == [{"type": "text", "text": "ok"}]

    def test_normalize_line(self):
        msg = normalize_line({
            "type": "assistant",
            "timestamp": "2026-01-05T10:00:00Z",
            "message": {"role": "assistant", "content": [
                {"type": "thinking", "thinking": "hmm"},
                {"type": "tool_use", "id": "t1", "name": "Edit", "input": {"file_path": "a.py"}},
            ]},
        })
        assert msg.role == "assistant"
        assert msg.has_thinking
        assert msg.tool_uses[0].name == "Edit"

    def test_summary_and_unknown_roles(self):
        assert normalize_line({"type": "summary", "summary": "x"}) is None
        assert normalize_line({"type": "progress"}).role == "unknown"


class TestParseSessionFile:
    def test_warnings_for_bad_lines(self, tmp_path):
        path = tmp_path / "s.jsonl"
        path.write_text(
            '{"type": "summary", "summary": "Fix the build"}\n'
            '{broken json\n'
            '\n'
            '{"type": "user", "message": {"role": "user", "content": "hi"}}\n'
        )
        result = parse_session_file(path)
        assert result.summary == "Fix the build"
        assert len(result.messages) == 1
        assert [(w.line_number, w.error) for w in result.warnings] == [(2, "Invalid JSON")]
        assert result.line_count == 4


class TestDiscovery:
    def test_sessions_dir_uses_encoded_path(self, project, claude_home):
        expected = claude_home / "projects" / encode_project_path(str(project.resolve()))
        assert project_sessions_dir(project) == expected

    def test_small_files_skipped(self, tmp_path):
        (tmp_path / "tiny.jsonl").write_text("{}\n")
        (tmp_path / "notes.txt").write_text("x" * 200)
        assert discover_sessions_in_dir(tmp_path) == []

    def test_missing_dir(self, tmp_path):
        assert discover_sessions_in_dir(tmp_path / "nope") == []

    def test_newest_first_by_first_timestamp(self, write_session):
        old = write_session("old", start_minute=0)
        new = write_session("new", start_minute=30)
        # mtimes point the other way; the first timestamp wins
        os.utime(new, (1_000, 1_000))
        os.utime(old, (2_000, 2_000))
        sessions = discover_sessions_in_dir(old.parent)
        assert [s.session_id for s in sessions] == ["new", "old"]

    def test_mtime_fallback(self, tmp_path):
        for name, mtime in (("a", 1_000), ("b", 3_000), ("c", 2_000)):
            path = tmp_path / f"{name}.jsonl"
            path.write_text(json.dumps({"type": "user", "message": {"content": "x" * 120}}) + "\n")
            os.utime(path, (mtime, mtime))
        assert [s.session_id for s in discover_sessions_in_dir(tmp_path)] == ["b", "c", "a"]

    def test_read_first_timestamp(self, tmp_path):
        path = tmp_path / "s.jsonl"
        path.write_text('{"type": "x"}\n{"timestamp": "2026-01-05T10:00:00Z"}\n')
        assert read_first_timestamp(path) == pytest.approx(1767607200.0)


class TestLoadSession:
    def test_counts_and_duration(self, project, write_session):
        write_session("abc")
        [info] = discover_project_sessions(project)
        session = load_session(info, project)
        assert session.session_id == "abc"
        assert session.project_path == str(project.resolve())
        assert session.message_count == 4
        assert session.user_message_count == 2
        assert session.assistant_message_count == 2
        assert session.tool_use_count == 2
        assert session.first_timestamp == "2026-01-05T10:00:00Z"
        assert session.duration_minutes == 3


class TestWaitForStable:
    @pytest.mark.asyncio
    async def test_stable_file(self, tmp_path):
        path = tmp_path / "s.jsonl"
        path.write_text("x")
        assert await wait_for_stable(path, 0.01)

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        assert not await wait_for_stable(tmp_path / "gone.jsonl", 0.01)
