#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Diff builder: maps an LLM edit proposal onto real lines of a rules file.

The builder never touches the filesystem. It reads the file content held
in the RulesSnapshot, so line numbers reflect the snapshot; the applier
re-locates text in the live file at apply time.
"""

import re
from typing import Any, List, Optional, assert_never

from contextlinter.markdown_sections import (
    extract_section,
    find_insertion_point,
)
from contextlinter.models import (
    DiffLine,
    DiffType,
    LlmSuggestion,
    RulesFile,
    RulesSnapshot,
    SuggestionDiff,
    SuggestionType,
)

WHITESPACE_RE = re.compile(r"\s+")


# =============================================================================
# Public entry point
# =============================================================================


def build_diff(
    raw: LlmSuggestion,
    snapshot: RulesSnapshot,
    target_file: str,
    target_section: Optional[str],
) -> Optional[SuggestionDiff]:
    """Build a SuggestionDiff for a raw suggestion.

    Args:
        raw: Normalized LLM suggestion
        snapshot: Rules snapshot used to locate sections and text
        target_file: Relative path of the file being edited
        target_section: Section name the edit is scoped to, if any

    Returns:
        The diff, or None when the suggestion carries no usable content.
    """
    file = find_target_file(snapshot, target_file)

    match raw.type:
        case SuggestionType.ADD:
            return _build_add_diff(raw, file, target_section)
        case SuggestionType.UPDATE:
            return _build_update_diff(raw, file, target_section)
        case SuggestionType.REMOVE:
            return _build_remove_diff(raw, file)
        case SuggestionType.CONSOLIDATE:
            return _build_consolidate_diff(raw, file, target_section)
        case SuggestionType.SPLIT:
            return _build_split_diff(raw, file, target_section)
        case _:
            assert_never(raw.type)


def find_target_file(snapshot: RulesSnapshot, target_file: str) -> Optional[RulesFile]:
    """Find the snapshot file a suggestion targets, or None for a new file."""
    for f in snapshot.files:
        if f.relative_path == target_file:
            return f
    for f in snapshot.files:
        if f.relative_path.endswith(target_file):
            return f
    if "~" in target_file or target_file.startswith(".claude/"):
        normalized = target_file.replace("~/", "", 1)
        for f in snapshot.files:
            if f.path.endswith(normalized):
                return f
    return None


# =============================================================================
# Per-type builders
# =============================================================================


def _build_add_diff(
    raw: LlmSuggestion, file: Optional[RulesFile], target_section: Optional[str]
) -> Optional[SuggestionDiff]:
    add_text = normalize_to_string(raw.content.add)
    if not add_text:
        return None

    after_line = None if file is None else find_insertion_point(file.content, target_section)
    return SuggestionDiff(
        type=DiffType.ADD,
        after_line=after_line,
        in_section=target_section,
        added_lines=text_to_diff_lines(add_text),
    )


def _build_update_diff(
    raw: LlmSuggestion, file: Optional[RulesFile], target_section: Optional[str]
) -> Optional[SuggestionDiff]:
    # The LLM's "remove" text is often empty or invented, so the live section
    # content is preferred over it.
    add_text = normalize_to_string(raw.content.add)
    if not add_text:
        return None
    added_lines = text_to_diff_lines(add_text)

    if file is None:
        return SuggestionDiff(type=DiffType.ADD, in_section=target_section, added_lines=added_lines)

    if target_section:
        lines = file.content.split("\n")
        section = extract_section(lines, target_section)
        if section is not None:
            removed = [
                DiffLine(line_number=section.start + i + 1, content=line)
                for i, line in enumerate(section.lines)
            ]
            return SuggestionDiff(
                type=DiffType.REPLACE,
                after_line=section.start + 1,
                in_section=target_section,
                removed_lines=removed,
                added_lines=added_lines,
            )

    remove_text = normalize_to_string(raw.content.remove)
    if remove_text:
        found = find_text_in_file(file, remove_text)
        return SuggestionDiff(
            type=DiffType.REPLACE,
            after_line=found[0].line_number if found else None,
            in_section=target_section,
            removed_lines=found or text_to_diff_lines(remove_text),
            added_lines=added_lines,
        )

    return SuggestionDiff(
        type=DiffType.ADD,
        after_line=len(file.content.split("\n")),
        in_section=target_section,
        added_lines=added_lines,
        degraded_to_append=True,
    )


def _build_remove_diff(raw: LlmSuggestion, file: Optional[RulesFile]) -> Optional[SuggestionDiff]:
    remove_text = normalize_to_string(raw.content.remove)
    if not remove_text or file is None:
        return None
    found = find_text_in_file(file, remove_text)
    return SuggestionDiff(
        type=DiffType.REMOVE,
        removed_lines=found or text_to_diff_lines(remove_text),
    )


def _build_consolidate_diff(
    raw: LlmSuggestion, file: Optional[RulesFile], target_section: Optional[str]
) -> Optional[SuggestionDiff]:
    add_text = normalize_to_string(raw.content.add)
    if not add_text:
        return None

    parts: List[SuggestionDiff] = []
    if file is not None:
        for text in normalize_to_string_list(raw.content.remove):
            found = find_text_in_file(file, text)
            parts.append(SuggestionDiff(
                type=DiffType.REMOVE,
                removed_lines=found or text_to_diff_lines(text),
            ))

    parts.append(SuggestionDiff(
        type=DiffType.ADD,
        after_line=None if file is None else find_insertion_point(file.content, target_section),
        in_section=target_section,
        added_lines=text_to_diff_lines(add_text),
    ))
    return SuggestionDiff(type=DiffType.REPLACE, in_section=target_section, parts=parts)


def _build_split_diff(
    raw: LlmSuggestion, file: Optional[RulesFile], target_section: Optional[str]
) -> Optional[SuggestionDiff]:
    if file is None or not target_section:
        return None
    if not normalize_to_string(raw.content.add):
        return None

    section = extract_section(file.content.split("\n"), target_section)
    if section is None:
        return None

    removed = [
        DiffLine(line_number=section.start + i + 1, content=line)
        for i, line in enumerate(section.lines)
    ]
    moved = sum(1 for rule in file.rules if rule.section == target_section)
    summary = [
        DiffLine(line_number=None, content=f"# {target_section}"),
        DiffLine(line_number=None, content=f"({moved} rules moved)"),
    ]
    return SuggestionDiff(
        type=DiffType.REPLACE,
        after_line=section.start + 1,
        in_section=target_section,
        parts=[
            SuggestionDiff(type=DiffType.REMOVE, in_section=target_section, removed_lines=removed),
            SuggestionDiff(type=DiffType.ADD, added_lines=summary),
        ],
    )


# =============================================================================
# Text location
# =============================================================================


def normalize_line(line: str) -> str:
    """Trim, collapse whitespace runs and lowercase a line for comparison."""
    return WHITESPACE_RE.sub(" ", line.strip()).lower()


def line_matches(file_line: str, search_line: str) -> bool:
    """Fuzzy line comparison tolerant of bullet markers and spacing.

    Blank lines only match blank lines; otherwise either normalized line
    containing the other is a match.
    """
    a = normalize_line(file_line)
    b = normalize_line(search_line)
    if a == b:
        return True
    if not a or not b:
        return False
    return b in a or a in b


def find_text_in_file(file: RulesFile, search_text: str) -> Optional[List[DiffLine]]:
    """Locate search_text in a rules file.

    A contiguous block match is tried first. Failing that, each search
    line is located independently and whatever is found is returned.

    Returns:
        Matched lines with 1-based line numbers, or None if nothing matched.
    """
    file_lines = file.content.split("\n")
    search_lines = [line.strip() for line in search_text.split("\n") if line.strip()]
    if not search_lines:
        return None

    span = len(search_lines)
    for i in range(len(file_lines) - span + 1):
        if all(line_matches(file_lines[i + j], search_lines[j]) for j in range(span)):
            return [
                DiffLine(line_number=i + j + 1, content=file_lines[i + j])
                for j in range(span)
            ]

    found = []
    for search_line in search_lines:
        for i, file_line in enumerate(file_lines):
            if line_matches(file_line, search_line):
                found.append(DiffLine(line_number=i + 1, content=file_line))
                break
    return found or None


# =============================================================================
# Content coercion
# =============================================================================


def text_to_diff_lines(text: str) -> List[DiffLine]:
    return [DiffLine(line_number=None, content=line) for line in text.split("\n")]


def normalize_to_string(value: Any) -> Optional[str]:
    """Coerce a string-or-list payload into one newline-joined string."""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "\n".join(str(v) for v in value)
    return None


def normalize_to_string_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(v) for v in value]
    return []
