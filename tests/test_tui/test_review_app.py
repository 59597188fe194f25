#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Tests for the Textual review app.

Key presses go through the same recorder as the line-based review, so
these check both the table state and the files on disk.
"""

import pytest

pytest.importorskip("textual")

from textual.widgets import DataTable

from contextlinter.history import history_path, read_history
from contextlinter.models import SuggestionStatus, SuggestionType
from contextlinter.tui.app import ReviewApp


# --- Fixtures ---


@pytest.fixture
def rules(project):
    path = project / "CLAUDE.md"
    path.write_text("# Rules\n\n- existing\n")
    return path


@pytest.fixture
def suggestions(make_suggestion):
    done = make_suggestion(title="Already handled", added="- handled")
    done.status = SuggestionStatus.REJECTED
    return [
        done,
        make_suggestion(title="Use pnpm", added="- Use pnpm"),
        make_suggestion(title="Run lint", added="- Run `make lint`"),
    ]


def _status(app, suggestion_id):
    return app.query_one("#suggestion-list", DataTable).get_cell(suggestion_id, "status")


# --- Tests ---


@pytest.mark.tui
class TestReviewApp:
    @pytest.mark.asyncio
    async def test_lists_only_pending(self, project, store_dir, suggestions):
        app = ReviewApp(suggestions, project, store_dir)
        async with app.run_test() as pilot:
            await pilot.pause()
            table = app.query_one("#suggestion-list", DataTable)
            assert table.row_count == 2
            assert _status(app, suggestions[1].id) == "pending"
            assert app._current_id == suggestions[1].id

    @pytest.mark.asyncio
    async def test_apply_writes_file_and_advances(self, project, store_dir, rules, suggestions):
        app = ReviewApp(suggestions, project, store_dir)
        async with app.run_test() as pilot:
            await pilot.press("a")
            await pilot.pause()
            assert _status(app, suggestions[1].id) == "applied"
            assert app._current_id == suggestions[2].id
            assert app.query_one("#suggestion-list", DataTable).cursor_row == 1

        assert rules.read_text() == "# Rules\n\n- existing\n\n- Use pnpm\n"
        assert [e.content for e in read_history(history_path(store_dir))] == ["- Use pnpm"]

    @pytest.mark.asyncio
    async def test_reject_then_quit_reports_statuses(self, project, store_dir, rules, suggestions):
        app = ReviewApp(suggestions, project, store_dir)
        async with app.run_test() as pilot:
            await pilot.press("a")
            await pilot.press("r")
            await pilot.pause()
            assert _status(app, suggestions[2].id) == "rejected"
            await pilot.press("q")

        assert app.statuses == {
            suggestions[1].id: SuggestionStatus.APPLIED,
            suggestions[2].id: SuggestionStatus.REJECTED,
        }
        assert "make lint" not in rules.read_text()

    @pytest.mark.asyncio
    async def test_decided_rows_are_not_applied_twice(self, project, store_dir, rules, make_suggestion):
        only = make_suggestion(title="Use pnpm", added="- Use pnpm")
        app = ReviewApp([only], project, store_dir)
        async with app.run_test() as pilot:
            await pilot.press("a")
            await pilot.press("a")
            await pilot.pause()
        assert len(app.summary.results) == 1
        assert rules.read_text().count("- Use pnpm") == 1

    @pytest.mark.asyncio
    async def test_failed_apply_is_not_persisted(self, project, store_dir, make_suggestion):
        broken = make_suggestion(type=SuggestionType.REMOVE, added=None, removed="- not there")
        app = ReviewApp([broken], project, store_dir)
        async with app.run_test() as pilot:
            await pilot.press("a")
            await pilot.pause()
            assert _status(app, broken.id) == "failed"
        assert app.statuses == {}

    @pytest.mark.asyncio
    async def test_empty_set(self, project, store_dir):
        app = ReviewApp([], project, store_dir)
        async with app.run_test() as pilot:
            await pilot.press("a")
            await pilot.pause()
            assert app.query_one("#suggestion-list", DataTable).row_count == 0
        assert app.statuses == {}
