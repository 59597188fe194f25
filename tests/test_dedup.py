#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""Tests for suggestion deduplication and ranking."""
import pytest

from contextlinter.config import LinterConfig
from contextlinter.dedup import (
    DedupThresholds,
    content_words,
    dedup_and_rank,
    is_similar,
    jaccard,
    merge_new,
    rank_suggestions,
    title_words,
)
from contextlinter.models import Priority


def _titles(shared: int, only_a: int, only_b: int):
    """Two titles whose word-set Jaccard overlap is shared / (shared + only_a + only_b)."""
    common = [f"common{i}" for i in range(shared)]
    a = common + [f"left{i}" for i in range(only_a)]
    b = common + [f"right{i}" for i in range(only_b)]
    return " ".join(a), " ".join(b)


class TestWordSets:
    def test_title_words_drop_short_and_punctuation(self):
        assert title_words("Use pnpm, not npm! (ok)") == {"use", "pnpm", "not", "npm"}

    def test_content_words_strip_headings_keep_accents(self):
        assert content_words("## Café rules\n- Naïve approach") == {"café", "rules", "naïve", "approach"}

    def test_jaccard_empty(self):
        assert jaccard(set(), {"a"}) == 0.0

    def test_jaccard(self):
        assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)


class TestSimilarity:
    def test_same_target_title_overlap_just_above(self, make_suggestion):
        title_a, title_b = _titles(11, 4, 3)  # 11/18
        a = make_suggestion(title=title_a, added="- alpha beta gamma", target_section="Testing",
                            priority=Priority.LOW, confidence=0.9)
        b = make_suggestion(title=title_b, added="- delta epsilon zeta", target_section="Testing",
                            priority=Priority.HIGH, confidence=0.5)
        result = dedup_and_rank([a, b])
        assert result == [b]

    def test_overlap_just_below_on_different_sections(self, make_suggestion):
        title_a, title_b = _titles(10, 4, 3)  # 10/17
        a = make_suggestion(title=title_a, added="- alpha beta gamma", target_section="Testing")
        b = make_suggestion(title=title_b, added="- delta epsilon zeta", target_section="Deployment")
        assert len(dedup_and_rank([a, b])) == 2

    def test_high_title_overlap_any_target(self, make_suggestion):
        a = make_suggestion(title="Always run database migrations before tests", added="- one two three",
                            target_file="A.md")
        b = make_suggestion(title="Always run database migrations before tests please", added="- four five six",
                            target_file="B.md")
        assert is_similar(a, b)

    def test_shared_insight_id(self, make_suggestion):
        a = make_suggestion(title="first totally different", added="- one", insight_ids=["i1"])
        b = make_suggestion(title="second unrelated words", added="- two", insight_ids=["i1", "i2"])
        assert is_similar(a, b)

    def test_similar_content(self, make_suggestion):
        a = make_suggestion(title="aaa bbb", added="- Use pnpm for installing packages always")
        b = make_suggestion(title="ccc ddd", added="- Use pnpm for installing packages", target_file="B.md")
        assert is_similar(a, b)

    def test_thresholds_from_config(self, make_suggestion):
        config = LinterConfig(title_threshold=0.1, same_target_title_threshold=0.1, content_threshold=0.9)
        thresholds = DedupThresholds.from_config(config)
        title_a, title_b = _titles(2, 3, 3)
        a = make_suggestion(title=title_a, added="- x1x", target_file="A.md")
        b = make_suggestion(title=title_b, added="- y1y", target_file="B.md")
        assert not is_similar(a, b)
        assert is_similar(a, b, thresholds)


class TestReplacement:
    def test_equal_rank_keeps_first(self, make_suggestion):
        a = make_suggestion(title="Use pnpm everywhere", confidence=0.8)
        b = make_suggestion(title="Use pnpm everywhere", confidence=0.8)
        assert dedup_and_rank([a, b]) == [a]

    def test_higher_confidence_replaces(self, make_suggestion):
        a = make_suggestion(title="Use pnpm everywhere", confidence=0.7)
        b = make_suggestion(title="Use pnpm everywhere", confidence=0.9)
        assert dedup_and_rank([a, b]) == [b]

    def test_priority_beats_confidence(self, make_suggestion):
        a = make_suggestion(title="Use pnpm everywhere", priority=Priority.MEDIUM, confidence=0.95)
        b = make_suggestion(title="Use pnpm everywhere", priority=Priority.HIGH, confidence=0.6)
        assert dedup_and_rank([a, b]) == [b]


class TestRanking:
    def test_total_order(self, make_suggestion):
        specs = [(Priority.LOW, 0.9), (Priority.HIGH, 0.6), (Priority.HIGH, 0.9), (Priority.MEDIUM, 0.8)]
        suggestions = [
            make_suggestion(title=f"unique{i} title{i}", added=f"- content{i}", priority=p, confidence=c)
            for i, (p, c) in enumerate(specs)
        ]
        ranked = rank_suggestions(suggestions)
        assert [(s.priority, s.confidence) for s in ranked] == [
            (Priority.HIGH, 0.9), (Priority.HIGH, 0.6), (Priority.MEDIUM, 0.8), (Priority.LOW, 0.9),
        ]


class TestMergeNew:
    def test_admitted_excludes_existing(self, make_suggestion):
        old = make_suggestion(title="Use pnpm everywhere", added="- pnpm")
        duplicate = make_suggestion(title="Use pnpm everywhere", added="- pnpm")
        fresh = make_suggestion(title="Document release tagging", added="- tag releases")
        merged, admitted = merge_new([old], [duplicate, fresh])
        assert merged == [old, fresh]
        assert admitted == [fresh]

    def test_better_duplicate_displaces_existing(self, make_suggestion):
        old = make_suggestion(title="Use pnpm everywhere", priority=Priority.LOW)
        better = make_suggestion(title="Use pnpm everywhere", priority=Priority.HIGH)
        merged, admitted = merge_new([old], [better])
        assert merged == [better]
        assert admitted == [better]
