#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Deduplication and ranking of suggestions.

Suggestions from independent LLM calls often overlap. A single
left-to-right scan keeps the first of each similar group, swapping it
for a later one only when that one outranks it. Suggestions are never
edited or merged, only selected.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Set, Tuple

from contextlinter.config import (
    DEFAULT_CONTENT_THRESHOLD,
    DEFAULT_SAME_TARGET_TITLE_THRESHOLD,
    DEFAULT_TITLE_THRESHOLD,
    LinterConfig,
)
from contextlinter.debug_logger import get_logger
from contextlinter.models import Suggestion

TITLE_STRIP_RE = re.compile(r"[^a-z0-9\s]")
# Keeps Latin-1 Supplement and Latin Extended-A/B letters
CONTENT_STRIP_RE = re.compile(r"[^a-z0-9\u00c0-\u024f\s]")
HEADING_MARKER_RE = re.compile(r"^#+\s*", re.MULTILINE)
MIN_WORD_LEN = 3


@dataclass
class DedupThresholds:
    """Jaccard thresholds; a pair is similar when overlap is strictly greater."""
    same_target_title: float = DEFAULT_SAME_TARGET_TITLE_THRESHOLD
    title: float = DEFAULT_TITLE_THRESHOLD
    content: float = DEFAULT_CONTENT_THRESHOLD

    @classmethod
    def from_config(cls, config: LinterConfig) -> "DedupThresholds":
        return cls(
            same_target_title=config.same_target_title_threshold,
            title=config.title_threshold,
            content=config.content_threshold,
        )


# =============================================================================
# Word sets
# =============================================================================


def title_words(title: str) -> Set[str]:
    words = TITLE_STRIP_RE.sub("", title.lower()).split()
    return {w for w in words if len(w) >= MIN_WORD_LEN}


def content_words(text: str) -> Set[str]:
    """Like title_words, but drops heading markers and keeps accented letters."""
    text = HEADING_MARKER_RE.sub("", text.lower())
    words = CONTENT_STRIP_RE.sub("", text).split()
    return {w for w in words if len(w) >= MIN_WORD_LEN}


def jaccard(a: Set[str], b: Set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def added_text(suggestion: Suggestion) -> str:
    return "\n".join(line.content for line in suggestion.diff.all_added_lines())


# =============================================================================
# Comparison
# =============================================================================


def is_similar(a: Suggestion, b: Suggestion, thresholds: Optional[DedupThresholds] = None) -> bool:
    """True if two suggestions are about the same thing."""
    t = thresholds or DedupThresholds()
    title_overlap = jaccard(title_words(a.title), title_words(b.title))

    if (
        a.target_file == b.target_file
        and a.target_section == b.target_section
        and title_overlap > t.same_target_title
    ):
        return True
    if set(a.source_insight_ids) & set(b.source_insight_ids):
        return True
    if title_overlap > t.title:
        return True
    return jaccard(content_words(added_text(a)), content_words(added_text(b))) > t.content


def should_replace(existing: Suggestion, candidate: Suggestion) -> bool:
    """Higher priority wins; on a tie, strictly higher confidence wins."""
    if candidate.priority.rank != existing.priority.rank:
        return candidate.priority.rank < existing.priority.rank
    return candidate.confidence > existing.confidence


def _dedup(suggestions: List[Suggestion], thresholds: Optional[DedupThresholds]) -> List[Suggestion]:
    kept: List[Suggestion] = []
    for suggestion in suggestions:
        for i, existing in enumerate(kept):
            if is_similar(existing, suggestion, thresholds):
                if should_replace(existing, suggestion):
                    kept[i] = suggestion
                break
        else:
            kept.append(suggestion)
    return kept


def rank_suggestions(suggestions: List[Suggestion]) -> List[Suggestion]:
    """Stable sort: high priority first, then by confidence descending."""
    return sorted(suggestions, key=lambda s: (s.priority.rank, -s.confidence))


def dedup_and_rank(
    suggestions: List[Suggestion], thresholds: Optional[DedupThresholds] = None
) -> List[Suggestion]:
    return rank_suggestions(_dedup(suggestions, thresholds))


def merge_new(
    accumulated: List[Suggestion],
    new: List[Suggestion],
    thresholds: Optional[DedupThresholds] = None,
) -> Tuple[List[Suggestion], List[Suggestion]]:
    """Dedup accumulated + new together.

    Returns:
        (merged, admitted) where admitted are the survivors that were not
        already in the accumulated set.
    """
    previous = {s.id for s in accumulated}
    merged = dedup_and_rank(accumulated + new, thresholds)
    admitted = [s for s in merged if s.id not in previous]
    get_logger().dedup(len(accumulated) + len(new), len(merged), len(admitted))
    return merged, admitted
