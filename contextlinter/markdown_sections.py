#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Heading-based section helpers for markdown rules files.

Both the diff builder and the applier locate sections through these
functions, so the heading regex and the level-shift logic live only here.
A section runs from its heading line up to (not including) the next
heading whose level is less than or equal to its own.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*$")
ANY_HEADING_RE = re.compile(r"^#{1,6}\s")
EXCESS_BLANK_RE = re.compile(r"\n{3,}")


@dataclass
class Section:
    """A located section. `start` is the heading index, `end` is exclusive."""
    name: str
    level: int
    start: int
    end: int
    lines: List[str]


def heading_level(line: str) -> Optional[int]:
    """Return the heading level (1-6) of a line, or None if it is not a heading."""
    m = HEADING_RE.match(line)
    if m is None:
        return None
    return len(m.group(1))


def find_heading(lines: List[str], name: str) -> Optional[Tuple[int, int]]:
    """Find a heading whose whole text equals name, case-insensitively.

    Returns:
        (index, level) of the first matching heading, or None.
    """
    pattern = re.compile(r"^(#{1,6})\s+" + re.escape(name) + r"\s*$", re.IGNORECASE)
    for i, line in enumerate(lines):
        m = pattern.match(line)
        if m:
            return i, len(m.group(1))
    return None


def find_section_end(lines: List[str], start: int, level: int) -> int:
    """Index of the next heading at `level` or shallower after start, else len(lines)."""
    for i in range(start + 1, len(lines)):
        found = heading_level(lines[i])
        if found is not None and found <= level:
            return i
    return len(lines)


def extract_section(
    lines: List[str], name: str, trim_trailing_blank: bool = True
) -> Optional[Section]:
    """Locate a section by heading name and return its line range."""
    found = find_heading(lines, name)
    if found is None:
        return None
    start, level = found
    end = find_section_end(lines, start, level)
    if trim_trailing_blank:
        while end > start + 1 and lines[end - 1].strip() == "":
            end -= 1
    return Section(name=name, level=level, start=start, end=end, lines=lines[start:end])


def shift_heading_levels(lines: List[str], delta: int) -> List[str]:
    """Shift every heading by delta levels, never going above level 1 or below 6."""
    shifted = []
    for line in lines:
        m = HEADING_RE.match(line)
        if m is None:
            shifted.append(line)
            continue
        level = min(6, max(1, len(m.group(1)) + delta))
        shifted.append("#" * level + line[len(m.group(1)):])
    return shifted


def find_insertion_point(content: str, section: Optional[str]) -> int:
    """Line index at which new content for `section` should be inserted.

    With no section (or an unknown one) the answer is the end of the file.
    Inside a known section it is the section end, walked back over blank
    lines but never above the line after the heading.
    """
    lines = content.split("\n")
    if not section:
        return len(lines)
    found = find_heading(lines, section)
    if found is None:
        return len(lines)
    start, level = found
    end = find_section_end(lines, start, level)
    while end > start + 1 and lines[end - 1].strip() == "":
        end -= 1
    return end


def insert_in_section(content: str, section: str, new_content: str) -> str:
    """Insert new_content at the end of a section, creating the section if missing."""
    lines = content.split("\n")
    found = find_heading(lines, section)
    if found is None:
        return content.rstrip() + "\n\n## " + section + "\n\n" + new_content + "\n"

    start, level = found
    end = find_section_end(lines, start, level)
    before = lines[:end]
    after = lines[end:]
    while len(before) > start + 1 and before[-1].strip() == "":
        before.pop()
    return "\n".join(before + ["", new_content, ""] + after)


def collapse_blank_lines(text: str) -> str:
    """Collapse runs of three or more newlines to exactly two."""
    return EXCESS_BLANK_RE.sub("\n\n", text)
