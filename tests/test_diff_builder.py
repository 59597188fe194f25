#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""Tests for mapping LLM edit proposals onto rules-file lines."""
import pytest

from contextlinter.diff_builder import (
    build_diff,
    find_target_file,
    find_text_in_file,
    line_matches,
    normalize_to_string,
    normalize_to_string_list,
)
from contextlinter.models import (
    DiffType,
    LlmSuggestion,
    RuleScope,
    RulesFile,
    RulesSnapshot,
    SuggestionContent,
    SuggestionType,
)
from contextlinter.rules_reader import parse_markdown

CLAUDE_MD = """# Project

## Architecture

- Services live in src/services

## Testing

- Use jest for unit tests
- Mock the network layer

## Deployment

- Deploy with make release
"""


def _snapshot(content: str = CLAUDE_MD, relative_path: str = "CLAUDE.md") -> RulesSnapshot:
    path = f"/repo/{relative_path}"
    file = RulesFile(
        path=path,
        scope=RuleScope.PROJECT,
        relative_path=relative_path,
        content=content,
        rules=parse_markdown(content, path, RuleScope.PROJECT),
    )
    return RulesSnapshot(project_root="/repo", snapshot_at="2026-01-01T00:00:00Z", files=[file])


def _raw(type: SuggestionType, add=None, remove=None, section=None, target="CLAUDE.md") -> LlmSuggestion:
    return LlmSuggestion(
        type=type,
        title="t",
        target_file=target,
        target_section=section,
        content=SuggestionContent(add=add, remove=remove),
    )


class TestLineMatching:
    def test_whitespace_and_case_insensitive(self):
        assert line_matches("-   Use  JEST for unit tests", "- use jest for unit tests")

    def test_containment_either_way(self):
        assert line_matches("- Use jest for unit tests", "Use jest")
        assert line_matches("jest", "- Use jest for unit tests")

    def test_blank_only_matches_blank(self):
        assert line_matches("", "   ")
        assert not line_matches("", "- Use jest")
        assert not line_matches("- Use jest", "")


class TestFindText:
    def test_contiguous_block_has_real_line_numbers(self):
        file = _snapshot().files[0]
        found = find_text_in_file(file, "Use jest for unit tests\nMock the network layer")
        assert [line.line_number for line in found] == [9, 10]

    def test_falls_back_to_individual_lines(self):
        file = _snapshot().files[0]
        found = find_text_in_file(file, "Deploy with make release\nnonexistent rule\nServices live")
        assert [line.line_number for line in found] == [14, 5]

    def test_nothing_found(self):
        file = _snapshot().files[0]
        assert find_text_in_file(file, "completely unrelated") is None


class TestTargetFile:
    def test_exact_then_suffix_match(self):
        snapshot = _snapshot(relative_path="docs/CLAUDE.md")
        assert find_target_file(snapshot, "docs/CLAUDE.md") is snapshot.files[0]
        assert find_target_file(snapshot, "CLAUDE.md") is snapshot.files[0]

    def test_unknown_file(self):
        assert find_target_file(_snapshot(), "OTHER.md") is None


class TestAddDiff:
    def test_add_into_section(self):
        diff = build_diff(_raw(SuggestionType.ADD, add="- Run tests in CI"), _snapshot(), "CLAUDE.md", "Testing")
        assert diff.type == DiffType.ADD
        assert diff.in_section == "Testing"
        assert diff.after_line == 10
        assert [line.content for line in diff.added_lines] == ["- Run tests in CI"]
        assert all(line.line_number is None for line in diff.added_lines)

    def test_add_to_new_file_has_no_anchor(self):
        diff = build_diff(_raw(SuggestionType.ADD, add="- rule"), _snapshot(), "NEW.md", None)
        assert diff.after_line is None

    def test_add_list_content_is_joined(self):
        diff = build_diff(_raw(SuggestionType.ADD, add=["- one", "- two"]), _snapshot(), "CLAUDE.md", None)
        assert [line.content for line in diff.added_lines] == ["- one", "- two"]

    def test_add_without_content(self):
        assert build_diff(_raw(SuggestionType.ADD, add=None), _snapshot(), "CLAUDE.md", None) is None


class TestUpdateDiff:
    def test_section_update_replaces_whole_section(self):
        raw = _raw(SuggestionType.UPDATE, add="## Testing\n\n- Run tests with vitest", remove="invented", section="testing")
        diff = build_diff(raw, _snapshot(), "CLAUDE.md", "testing")
        assert diff.type == DiffType.REPLACE
        assert [line.content for line in diff.removed_lines] == [
            "## Testing", "", "- Use jest for unit tests", "- Mock the network layer",
        ]
        assert diff.removed_lines[0].line_number == 7
        assert diff.after_line == 7

    def test_section_update_adds_only_proposed_text(self):
        raw = _raw(SuggestionType.UPDATE, add="- Run tests with vitest", section="Testing")
        diff = build_diff(raw, _snapshot(), "CLAUDE.md", "Testing")
        assert [line.content for line in diff.added_lines] == ["- Run tests with vitest"]
        assert diff.removed_lines[0].content == "## Testing"

    def test_falls_back_to_located_remove_text(self):
        raw = _raw(SuggestionType.UPDATE, add="- Deploy with make ship", remove="Deploy with make release")
        diff = build_diff(raw, _snapshot(), "CLAUDE.md", None)
        assert diff.type == DiffType.REPLACE
        assert diff.removed_lines[0].line_number == 14

    def test_degrades_to_append(self):
        raw = _raw(SuggestionType.UPDATE, add="- Something new", section="Missing")
        diff = build_diff(raw, _snapshot(), "CLAUDE.md", "Missing")
        assert diff.type == DiffType.ADD
        assert diff.degraded_to_append
        assert diff.after_line == len(CLAUDE_MD.split("\n"))

    def test_update_of_new_file_is_add(self):
        diff = build_diff(_raw(SuggestionType.UPDATE, add="- rule"), _snapshot(), "NEW.md", None)
        assert diff.type == DiffType.ADD
        assert not diff.degraded_to_append


class TestRemoveDiff:
    def test_remove_located(self):
        diff = build_diff(_raw(SuggestionType.REMOVE, remove="Mock the network layer"), _snapshot(), "CLAUDE.md", None)
        assert diff.type == DiffType.REMOVE
        assert diff.removed_lines[0].line_number == 10

    def test_remove_unlocated_keeps_raw_text(self):
        diff = build_diff(_raw(SuggestionType.REMOVE, remove="gone rule"), _snapshot(), "CLAUDE.md", None)
        assert diff.removed_lines[0].line_number is None
        assert diff.removed_lines[0].content == "gone rule"

    @pytest.mark.parametrize("remove,target", [(None, "CLAUDE.md"), ("rule", "NEW.md")])
    def test_remove_needs_text_and_file(self, remove, target):
        assert build_diff(_raw(SuggestionType.REMOVE, remove=remove), _snapshot(), target, None) is None


class TestConsolidateDiff:
    def test_parts(self):
        raw = _raw(
            SuggestionType.CONSOLIDATE,
            add="- Use jest and mock the network",
            remove=["Use jest for unit tests", "Mock the network layer"],
            section="Testing",
        )
        diff = build_diff(raw, _snapshot(), "CLAUDE.md", "Testing")
        assert diff.type == DiffType.REPLACE
        assert diff.removed_lines is None and diff.added_lines is None
        assert [p.type for p in diff.parts] == [DiffType.REMOVE, DiffType.REMOVE, DiffType.ADD]
        assert diff.parts[0].removed_lines[0].line_number == 9
        assert diff.parts[-1].after_line == 10


class TestSplitDiff:
    def test_split(self):
        raw = _raw(SuggestionType.SPLIT, add=".claude/rules/testing.md", section="Testing")
        diff = build_diff(raw, _snapshot(), "CLAUDE.md", "Testing")
        remove, add = diff.parts
        assert remove.type == DiffType.REMOVE
        assert remove.removed_lines[0].content == "## Testing"
        assert [line.content for line in add.added_lines] == ["# Testing", "(2 rules moved)"]

    @pytest.mark.parametrize("add,section", [(None, "Testing"), ("x.md", None), ("x.md", "Missing")])
    def test_split_needs_target_and_section(self, add, section):
        assert build_diff(_raw(SuggestionType.SPLIT, add=add, section=section), _snapshot(), "CLAUDE.md", section) is None


class TestCoercion:
    def test_normalize_to_string(self):
        assert normalize_to_string("a") == "a"
        assert normalize_to_string(["a", "b"]) == "a\nb"
        assert normalize_to_string(None) is None
        assert normalize_to_string(3) is None

    def test_normalize_to_string_list(self):
        assert normalize_to_string_list("a") == ["a"]
        assert normalize_to_string_list(["a", 1]) == ["a", "1"]
        assert normalize_to_string_list(None) == []
