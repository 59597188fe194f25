#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""Tests for the applied-changes history log."""
import json

from contextlinter.history import append_history, build_history_entry, history_path, read_history
from contextlinter.models import SuggestionType


def _entry(content: str):
    return build_history_entry(
        SuggestionType.ADD, "CLAUDE.md", "Testing", content, None,
        "seen twice", ["i1"], ["s1"], 0.85,
    )


class TestHistory:
    def test_entry_fields(self):
        entry = _entry("- Use pnpm")
        assert entry.timestamp.endswith("Z")
        assert entry.action == SuggestionType.ADD
        assert entry.section == "Testing"
        assert entry.confidence == 0.85

    def test_append_only_jsonl(self, store_dir):
        path = history_path(store_dir)
        append_history(path, _entry("- one"))
        append_history(path, _entry("- two"))
        lines = path.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["content"] == "- one"
        assert json.loads(lines[1])["sourceInsightIds"] == ["i1"]

    def test_read_skips_corrupt_lines(self, store_dir):
        path = history_path(store_dir)
        append_history(path, _entry("- one"))
        with open(path, "a") as f:
            f.write("{broken\n\n")
        append_history(path, _entry("- two"))
        assert [e.content for e in read_history(path)] == ["- one", "- two"]

    def test_read_limit_keeps_most_recent(self, store_dir):
        path = history_path(store_dir)
        for i in range(5):
            append_history(path, _entry(f"- rule {i}"))
        assert [e.content for e in read_history(path, 2)] == ["- rule 3", "- rule 4"]
        assert read_history(path, 0) == []

    def test_missing_file(self, tmp_path):
        assert read_history(tmp_path / "history.jsonl") == []
