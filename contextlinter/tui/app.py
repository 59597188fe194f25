#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Textual review app for pending suggestions.

Lists the pending suggestions of the latest set; the highlighted one is
rendered as a card below the table. Apply and reject go through the same
ReviewRecorder as `contextlinter apply`, so backups, history and the rules
cache behave identically.
"""

from pathlib import Path
from typing import Dict, List, Optional

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.css.query import NoMatches
from textual.widgets import DataTable, Footer, Header, RichLog, Static

from contextlinter.config import DEFAULT_ALREADY_PRESENT_THRESHOLD
from contextlinter.file_writer import Applier
from contextlinter.models import ReviewAction, ReviewSummary, Suggestion, SuggestionStatus
from contextlinter.review import (
    PRIORITY_LABELS,
    ReviewRecorder,
    format_card,
    review_statuses,
)

STATUS_LABELS = {
    ReviewAction.ACCEPT: "applied",
    ReviewAction.REJECT: "rejected",
    ReviewAction.SKIP: "failed",
}


class ReviewApp(App):
    """Accept or reject pending suggestions one row at a time."""

    TITLE = "contextlinter review"

    CSS = """
    #suggestion-list {
        height: 40%;
    }
    #suggestion-preview {
        height: 1fr;
        padding: 0 1;
        overflow-y: auto;
    }
    #review-log {
        height: 6;
    }
    .section-title {
        text-style: bold;
    }
    """

    BINDINGS = [
        Binding("a", "apply", "Apply"),
        Binding("r", "reject", "Reject"),
        Binding("q", "quit", "Quit"),
    ]

    def __init__(
        self,
        suggestions: List[Suggestion],
        project_root: Path,
        store_dir: Path,
        already_present_threshold: float = DEFAULT_ALREADY_PRESENT_THRESHOLD,
    ) -> None:
        """
        Initialize the app.

        Args:
            suggestions: Suggestion set contents; only pending ones are listed
            project_root: Project the suggestions target
            store_dir: The project's .contextlinter directory
            already_present_threshold: Similarity above which an add is a no-op
        """
        super().__init__()
        self.suggestions = [s for s in suggestions if s.status == SuggestionStatus.PENDING]
        self._by_id: Dict[str, Suggestion] = {s.id: s for s in self.suggestions}
        self._decided: Dict[str, ReviewAction] = {}
        self._current_id: Optional[str] = None
        self._summary: Optional[ReviewSummary] = None
        self._pending_log: List[str] = []
        self.recorder = ReviewRecorder(
            project_root,
            store_dir,
            applier=Applier(project_root, store_dir, already_present_threshold),
            out=self._log,
        )

    def compose(self) -> ComposeResult:
        """Compose the app layout."""
        yield Header()
        yield Vertical(
            Static(f"Pending suggestions ({len(self.suggestions)})", classes="section-title"),
            DataTable(id="suggestion-list"),
            Static("", id="suggestion-preview", markup=False),
            RichLog(id="review-log", markup=False, wrap=True),
        )
        yield Footer()

    def on_mount(self) -> None:
        table = self.query_one("#suggestion-list", DataTable)
        table.cursor_type = "row"
        # Add columns with keys so cells can be updated by name
        for label, key in (
            ("#", "index"), ("Type", "type"), ("Pri", "priority"), ("Conf", "confidence"),
            ("Target", "target"), ("Title", "title"), ("Status", "status"),
        ):
            table.add_column(label, key=key)
        for index, s in enumerate(self.suggestions):
            table.add_row(
                str(index + 1),
                s.type.value,
                PRIORITY_LABELS.get(s.priority.value, ""),
                f"{round(s.confidence * 100)}%",
                s.target_file,
                s.title,
                "pending",
                key=s.id,
            )
        if self.suggestions:
            self._show_preview(self.suggestions[0].id)
        else:
            self.query_one("#suggestion-preview", Static).update("No pending suggestions.")

    # =========================================================================
    # Selection
    # =========================================================================

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        if event.row_key is None or not event.row_key.value:
            return
        self._show_preview(event.row_key.value)

    def _show_preview(self, suggestion_id: str) -> None:
        suggestion = self._by_id.get(suggestion_id)
        if suggestion is None:
            return
        self._current_id = suggestion_id
        index = self.suggestions.index(suggestion)
        self.query_one("#suggestion-preview", Static).update(
            format_card(suggestion, index, len(self.suggestions))
        )

    def _log(self, message: str) -> None:
        # Recorder output can arrive before the log widget is mounted
        try:
            log = self.query_one("#review-log", RichLog)
        except NoMatches:
            self._pending_log.append(message)
            return
        for line in self._pending_log:
            log.write(line)
        self._pending_log.clear()
        log.write(message.strip())

    # =========================================================================
    # Actions
    # =========================================================================

    def _current(self) -> Optional[Suggestion]:
        if self._current_id is None:
            return None
        if self._current_id in self._decided:
            self.notify("Already reviewed", severity="warning")
            return None
        return self._by_id.get(self._current_id)

    def _mark(self, suggestion: Suggestion, action: ReviewAction) -> None:
        self._decided[suggestion.id] = action
        table = self.query_one("#suggestion-list", DataTable)
        table.update_cell(suggestion.id, "status", STATUS_LABELS[action])
        self._advance()

    def _advance(self) -> None:
        """Move the cursor to the next undecided suggestion, if any."""
        table = self.query_one("#suggestion-list", DataTable)
        for idx, s in enumerate(self.suggestions):
            if s.id not in self._decided:
                table.move_cursor(row=idx)
                self._show_preview(s.id)
                return

    def action_apply(self) -> None:
        suggestion = self._current()
        if suggestion is None:
            return
        if self.recorder.apply(suggestion):
            self._mark(suggestion, ReviewAction.ACCEPT)
        else:
            self._mark(suggestion, ReviewAction.SKIP)

    def action_reject(self) -> None:
        suggestion = self._current()
        if suggestion is None:
            return
        self.recorder.record(suggestion, ReviewAction.REJECT)
        self._log(f"Rejected: {suggestion.title}")
        self._mark(suggestion, ReviewAction.REJECT)

    async def action_quit(self) -> None:
        self._summary = self.recorder.summary()
        self.exit()

    @property
    def summary(self) -> ReviewSummary:
        if self._summary is None:
            self._summary = self.recorder.summary()
        return self._summary

    @property
    def statuses(self) -> Dict[str, SuggestionStatus]:
        """Statuses to persist for the suggestions applied or rejected here."""
        return review_statuses(self.summary)
