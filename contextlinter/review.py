#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Suggestion review and apply driver.

run_review() walks a suggestion list in one of four modes:

    dry-run          print every card, touch nothing
    yes              apply everything
    min-confidence   apply at/above the threshold, skip the rest
    interactive      [a]ccept [r]eject [e]dit [s]kip [q]uit per card

All modes share one Applier, so each rules file is backed up at most once
per run. ReviewRecorder holds the bookkeeping done after every apply and
is reused by the Textual review app.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from contextlinter.config import DEFAULT_ALREADY_PRESENT_THRESHOLD
from contextlinter.debug_logger import get_logger
from contextlinter.file_writer import Applier, WriteValidationError, get_content_preview, get_removed_content
from contextlinter.history import append_history, build_history_entry, history_path
from contextlinter.models import (
    DiffType,
    ReviewAction,
    ReviewResult,
    ReviewSummary,
    Suggestion,
    SuggestionStatus,
    SuggestionType,
    WriteAction,
)
from contextlinter.store import invalidate_rules_cache

EDIT_TERMINATOR = "."
EDIT_CANCEL = "cancel"

TYPE_LABELS = {
    SuggestionType.ADD: "Add rule to",
    SuggestionType.UPDATE: "Update rule in",
    SuggestionType.REMOVE: "Remove rule from",
    SuggestionType.CONSOLIDATE: "Consolidate rules in",
    SuggestionType.SPLIT: "Split section from",
}
PRIORITY_LABELS = {"high": "HIGH", "medium": "MED", "low": "LOW"}
ACTION_KEYS = {
    "a": ReviewAction.ACCEPT, "accept": ReviewAction.ACCEPT,
    "r": ReviewAction.REJECT, "reject": ReviewAction.REJECT,
    "e": ReviewAction.EDIT, "edit": ReviewAction.EDIT,
    "s": ReviewAction.SKIP, "skip": ReviewAction.SKIP,
    "q": ReviewAction.QUIT, "quit": ReviewAction.QUIT,
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class ReviewOptions:
    dry_run: bool = False
    yes: bool = False
    min_confidence: Optional[float] = None
    already_present_threshold: float = DEFAULT_ALREADY_PRESENT_THRESHOLD


# =============================================================================
# Bookkeeping
# =============================================================================


class ReviewRecorder:
    """Applies suggestions and records everything a review run reports.

    Args:
        project_root: Project the suggestions target
        store_dir: The project's .contextlinter directory
        applier: Applier to use; a fresh one (new backup session) by default
        out: Line printer for progress messages
    """

    def __init__(
        self,
        project_root: Path,
        store_dir: Path,
        applier: Optional[Applier] = None,
        out: Callable[[str], None] = print,
    ) -> None:
        self.project_root = Path(project_root)
        self.store_dir = Path(store_dir)
        self.applier = applier or Applier(self.project_root, self.store_dir)
        self.out = out
        self.started_at = _now_iso()
        self.results: List[ReviewResult] = []
        self.files_created: Set[str] = set()
        self.files_modified: Set[str] = set()
        self.rules_added = 0
        self.rules_updated = 0
        self.rules_removed = 0
        self.rules_split = 0

    def record(self, suggestion: Suggestion, action: ReviewAction) -> None:
        """Record a decision that did not touch the filesystem."""
        self.results.append(ReviewResult(suggestion_id=suggestion.id, action=action))

    def apply(self, suggestion: Suggestion, edited_content: Optional[str] = None) -> bool:
        """Apply one suggestion; returns True if the file was written.

        Failures (including post-write validation and I/O errors) are
        reported as a warning and recorded as a skip.
        """
        try:
            result = self.applier.apply_suggestion(suggestion, edited_content)
        except (WriteValidationError, OSError) as e:
            get_logger().error("apply_suggestion", str(e), {"suggestion_id": suggestion.id})
            self.out(f"  Warning: {e}")
            self.record(suggestion, ReviewAction.SKIP)
            return False

        if not result.success:
            self.out(f"  Warning: {result.error}")
            self.record(suggestion, ReviewAction.SKIP)
            return False

        if result.action == WriteAction.CREATED:
            self.files_created.add(result.file_path)
            self.out(f"  Created {suggestion.target_file}")
        else:
            self.files_modified.add(result.file_path)
            self.out(f"  Updated {suggestion.target_file}")

        self._count(suggestion)
        invalidate_rules_cache(self.store_dir)
        append_history(history_path(self.store_dir), build_history_entry(
            suggestion.type,
            suggestion.target_file,
            suggestion.target_section,
            edited_content if edited_content is not None else get_content_preview(suggestion),
            get_removed_content(suggestion.diff),
            suggestion.rationale,
            suggestion.source_insight_ids,
            suggestion.source_session_ids,
            suggestion.confidence,
        ))
        self.results.append(ReviewResult(
            suggestion_id=suggestion.id,
            action=ReviewAction.ACCEPT,
            edited_content=edited_content,
            applied_at=_now_iso(),
        ))
        return True

    def _count(self, suggestion: Suggestion) -> None:
        match suggestion.type:
            case SuggestionType.ADD:
                self.rules_added += 1
            case SuggestionType.UPDATE:
                self.rules_updated += 1
            case SuggestionType.REMOVE:
                self.rules_removed += 1
            case SuggestionType.CONSOLIDATE:
                self.rules_removed += 1
                self.rules_added += 1
            case SuggestionType.SPLIT:
                self.rules_split += 1
                if suggestion.split_target:
                    self.files_created.add(str(self.project_root / suggestion.split_target))

        # Several bullets in one flat add count as several rules
        bullets = [
            line for line in suggestion.diff.added_lines or []
            if line.content.startswith(("- ", "* "))
        ]
        if len(bullets) > 1:
            self.rules_added += len(bullets) - 1

    def summary(self) -> ReviewSummary:
        summary = ReviewSummary(
            started_at=self.started_at,
            completed_at=_now_iso(),
            project_path=str(self.project_root),
            results=list(self.results),
            files_modified=sorted(self.files_modified),
            files_created=sorted(self.files_created),
            rules_added=self.rules_added,
            rules_updated=self.rules_updated,
            rules_removed=self.rules_removed,
            rules_split=self.rules_split,
        )
        get_logger().review_summary(
            summary.applied_count,
            len(summary.results) - summary.applied_count,
            summary.files_modified + summary.files_created,
        )
        return summary


def review_statuses(summary: ReviewSummary) -> Dict[str, SuggestionStatus]:
    """Statuses to persist for the suggestions a run applied or rejected."""
    statuses = {}
    for r in summary.results:
        if r.applied_at is not None:
            statuses[r.suggestion_id] = SuggestionStatus.APPLIED
        elif r.action == ReviewAction.REJECT:
            statuses[r.suggestion_id] = SuggestionStatus.REJECTED
    return statuses


# =============================================================================
# Display
# =============================================================================


def format_diff_lines(suggestion: Suggestion) -> List[str]:
    """Render the diff as +/- lines; split shows what moves where."""
    diff = suggestion.diff
    lines: List[str] = []

    if suggestion.type == SuggestionType.SPLIT and diff.parts:
        remove = next((p for p in diff.parts if p.type == DiffType.REMOVE), None)
        add = next((p for p in diff.parts if p.type == DiffType.ADD), None)
        if remove is not None and remove.removed_lines:
            first, last = remove.removed_lines[0], remove.removed_lines[-1]
            span = ""
            if first.line_number and last.line_number:
                span = f" (lines {first.line_number}-{last.line_number})"
            lines.append(f"Removes from {suggestion.target_file}:")
            lines.append(f"- {first.content}{span}")
        if add is not None and add.added_lines and suggestion.split_target:
            lines.append(f"Creates {suggestion.split_target}:")
            lines.extend(f"+ {line.content}" for line in add.added_lines)
        return lines

    for part in diff.parts or [diff]:
        lines.extend(f"- {line.content}" for line in part.removed_lines or [])
        lines.extend(f"+ {line.content}" for line in part.added_lines or [])
    return lines


def format_card(suggestion: Suggestion, index: int, total: int) -> str:
    header = f"==> Suggestion {index + 1}/{total}"
    priority = PRIORITY_LABELS.get(suggestion.priority.value, "")
    lines = [f"{header:<40}{priority}  {round(suggestion.confidence * 100)}%", ""]

    target = f"{TYPE_LABELS[suggestion.type]} {suggestion.target_file}"
    if suggestion.target_section:
        target += f' § "{suggestion.target_section}"'
    if suggestion.type == SuggestionType.SPLIT and suggestion.split_target:
        target += f" -> {suggestion.split_target}"
    lines.append(f"    {target}")
    if suggestion.diff.degraded_to_append:
        lines.append("    (no matching text found; will be appended to the end of the file)")
    lines.append("")
    lines.extend(f"    {line}" for line in format_diff_lines(suggestion))
    lines.append("")
    lines.append(f"    Rationale: {suggestion.rationale}")
    return "\n".join(lines)


def format_summary(recorder: ReviewRecorder) -> str:
    accepted = sum(1 for r in recorder.results if r.action == ReviewAction.ACCEPT)
    rejected = sum(1 for r in recorder.results if r.action == ReviewAction.REJECT)
    skipped = sum(1 for r in recorder.results if r.action == ReviewAction.SKIP)

    def rel(paths: Set[str]) -> str:
        root = str(recorder.project_root)
        return ", ".join(sorted(p[len(root) + 1:] if p.startswith(root + "/") else p for p in paths))

    lines = ["", "==> Summary", "", f"    Accepted: {accepted}", f"    Rejected: {rejected}"]
    if skipped:
        lines.append(f"    Skipped:  {skipped}")
    if recorder.files_created:
        lines.append(f"    Files created: {len(recorder.files_created)} ({rel(recorder.files_created)})")
    if recorder.files_modified:
        lines.append(f"    Files modified: {len(recorder.files_modified)} ({rel(recorder.files_modified)})")
    for label, count in (
        ("Rules added", recorder.rules_added),
        ("Rules updated", recorder.rules_updated),
        ("Rules removed", recorder.rules_removed),
        ("Sections split", recorder.rules_split),
    ):
        if count:
            lines.append(f"    {label}: {count}")
    if accepted:
        lines.append("")
        lines.append("    History saved to .contextlinter/history.jsonl")
        lines.append("    Review changes with: git diff")
    return "\n".join(lines)


# =============================================================================
# Prompts
# =============================================================================


def prompt_action(prompt: Callable[[str], str], out: Callable[[str], None]) -> ReviewAction:
    """Ask until a valid key is given. End of input means quit."""
    while True:
        try:
            key = prompt("[a]ccept  [r]eject  [e]dit  [s]kip  [q]uit all\n> ").strip().lower()
        except EOFError:
            return ReviewAction.QUIT
        action = ACTION_KEYS.get(key)
        if action is not None:
            return action
        out("  Invalid choice. Use: a/r/e/s/q")


def prompt_edit(
    suggestion: Suggestion, prompt: Callable[[str], str], out: Callable[[str], None]
) -> Optional[str]:
    """Read replacement content until a line holding only ".".

    Returns:
        The new content, or None if cancelled or left empty.
    """
    out("  Current content:")
    for line in get_content_preview(suggestion).split("\n"):
        out(f"    {line}")
    out(f'  Enter new content (a line with "{EDIT_TERMINATOR}" to finish, "{EDIT_CANCEL}" to skip):')

    lines: List[str] = []
    while True:
        try:
            line = prompt("  > ")
        except EOFError:
            break
        if line.strip() == EDIT_TERMINATOR:
            break
        if line.strip().lower() == EDIT_CANCEL:
            return None
        lines.append(line)
    content = "\n".join(lines)
    return content if content.strip() else None


# =============================================================================
# Driver
# =============================================================================


def run_review(
    suggestions: List[Suggestion],
    project_root: Path,
    store_dir: Path,
    options: ReviewOptions,
    prompt: Callable[[str], str] = input,
    out: Callable[[str], None] = print,
) -> ReviewSummary:
    """Review and apply suggestions.

    Args:
        suggestions: Suggestions in review order
        project_root: Project the suggestions target
        store_dir: The project's .contextlinter directory
        options: Review mode
        prompt: Reads one line of user input (interactive mode)
        out: Prints one line of output

    Returns:
        ReviewSummary of the run.
    """
    applier = Applier(project_root, store_dir, options.already_present_threshold)
    recorder = ReviewRecorder(project_root, store_dir, applier, out)
    total = len(suggestions)

    if not suggestions:
        out("Your rules are up to date! Nothing to change.")
        return recorder.summary()

    if options.dry_run:
        out("[DRY RUN] Preview only. No files will be modified.\n")
        for i, suggestion in enumerate(suggestions):
            out(format_card(suggestion, i, total))
            out("")
        plural = "" if total == 1 else "s"
        out(f"[DRY RUN] {total} suggestion{plural} would be applied. Run without --dry-run to apply.")
        return recorder.summary()

    if options.yes:
        out("Auto-accepting all suggestions (--yes)\n")
        for suggestion in suggestions:
            recorder.apply(suggestion)
        out(format_summary(recorder))
        return recorder.summary()

    if options.min_confidence is not None:
        threshold = options.min_confidence
        out(f"Auto-accepting suggestions with confidence >= {round(threshold * 100)}%\n")
        for i, suggestion in enumerate(suggestions):
            out(format_card(suggestion, i, total))
            pct, limit = round(suggestion.confidence * 100), round(threshold * 100)
            if suggestion.confidence >= threshold:
                out(f"  Auto-accepting (confidence {pct}% >= {limit}%)")
                recorder.apply(suggestion)
            else:
                out(f"  Skipping (confidence {pct}% < {limit}%)")
                recorder.record(suggestion, ReviewAction.SKIP)
        out(format_summary(recorder))
        return recorder.summary()

    out("==> Review Suggestions\n")
    try:
        for i, suggestion in enumerate(suggestions):
            out(format_card(suggestion, i, total))
            action = prompt_action(prompt, out)
            match action:
                case ReviewAction.QUIT:
                    recorder.record(suggestion, ReviewAction.QUIT)
                    break
                case ReviewAction.ACCEPT:
                    recorder.apply(suggestion)
                case ReviewAction.EDIT:
                    edited = prompt_edit(suggestion, prompt, out)
                    if edited is None:
                        recorder.record(suggestion, ReviewAction.SKIP)
                    else:
                        recorder.apply(suggestion, edited)
                case _:
                    recorder.record(suggestion, action)
            out("")
    except KeyboardInterrupt:
        out("\nInterrupted. Accepted changes were saved.")

    out(format_summary(recorder))
    return recorder.summary()
