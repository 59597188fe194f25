#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Applies suggestions to rules files on disk.

Every mutation is:
- backed up once per file per Applier (the backup holds the file as it was
  before the first edit of the run),
- written atomically through a temp file in the target directory,
- re-read and checked for the intended content.

Expected failures (missing file, text not found) come back as
WriteResult(success=False). A write that does not take effect raises
WriteValidationError.
"""

import os
import re
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Union, assert_never

from contextlinter.config import DEFAULT_ALREADY_PRESENT_THRESHOLD
from contextlinter.debug_logger import get_logger
from contextlinter.diff_builder import normalize_line
from contextlinter.markdown_sections import (
    collapse_blank_lines,
    find_heading,
    find_section_end,
    heading_level,
    insert_in_section,
    shift_heading_levels,
)
from contextlinter.models import (
    Suggestion,
    SuggestionDiff,
    SuggestionType,
    WriteAction,
    WriteResult,
)

TEMP_PREFIX = ".tmp-"
BACKUP_STAMP_RE = re.compile(r"[:.]")


class WriteValidationError(RuntimeError):
    """Raised when written content cannot be found in the file afterwards."""


# =============================================================================
# Diff content helpers
# =============================================================================


def get_added_content(diff: SuggestionDiff) -> Optional[str]:
    lines = diff.all_added_lines()
    if not lines:
        return None
    return "\n".join(line.content for line in lines)


def get_removed_content(diff: SuggestionDiff) -> Optional[str]:
    """Flat removed lines only; multi-part diffs are handled part by part."""
    if not diff.removed_lines:
        return None
    return "\n".join(line.content for line in diff.removed_lines)


def first_heading(text: str) -> Optional[str]:
    """The first non-blank line of text if it is a heading, else None."""
    for line in text.split("\n"):
        if line.strip():
            return line.strip() if heading_level(line.strip()) is not None else None
    return None


def get_content_preview(suggestion: Suggestion, edited_content: Optional[str] = None) -> str:
    """Text shown to the user for a suggestion."""
    if edited_content:
        return edited_content
    return get_added_content(suggestion.diff) or get_removed_content(suggestion.diff) or ""


def relative_path(file_path: Union[str, Path], project_root: Union[str, Path]) -> str:
    try:
        return str(Path(file_path).relative_to(project_root))
    except ValueError:
        return str(file_path)


# =============================================================================
# Text replacement
# =============================================================================


def try_replace(content: str, old_text: str, new_text: str) -> Optional[str]:
    """Exact replacement of the first occurrence, or None if old_text is absent."""
    if old_text not in content:
        return None
    return content.replace(old_text, new_text, 1)


def try_fuzzy_replace(content: str, old_text: str, new_text: str) -> Optional[str]:
    """Replace the first block of lines equal to old_text after normalization.

    An empty new_text deletes the block.
    """
    content_lines = content.split("\n")
    old_lines = [line.strip() for line in old_text.split("\n") if line.strip()]
    if not old_lines:
        return None

    wanted = [normalize_line(line) for line in old_lines]
    span = len(old_lines)
    for i in range(len(content_lines) - span + 1):
        if all(normalize_line(content_lines[i + j]) == wanted[j] for j in range(span)):
            replacement = [new_text] if new_text else []
            return "\n".join(content_lines[:i] + replacement + content_lines[i + span:])
    return None


def content_already_present(
    existing: str, new_content: str, threshold: float = DEFAULT_ALREADY_PRESENT_THRESHOLD
) -> bool:
    """True if more than `threshold` of new_content's non-blank lines already exist."""
    new_lines = [normalize_line(line) for line in new_content.split("\n") if line.strip()]
    if not new_lines:
        return False
    existing_lines = {normalize_line(line) for line in existing.split("\n")}
    matched = sum(1 for line in new_lines if line in existing_lines)
    return matched / len(new_lines) > threshold


# =============================================================================
# Filesystem primitives
# =============================================================================


def atomic_write(path: Path, content: str) -> None:
    """Write via a uniquely named temp file in the same directory, then rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp = path.parent / f"{TEMP_PREFIX}{uuid.uuid4()}"
    try:
        temp.write_text(content, encoding="utf-8")
        os.replace(temp, path)
    except OSError:
        temp.unlink(missing_ok=True)
        raise


def validate_write(path: Path, expected: str) -> None:
    """Check the first non-blank line of expected is present in the file.

    Raises:
        WriteValidationError: If it is not.
    """
    actual = path.read_text(encoding="utf-8")
    first = next((line.strip() for line in expected.split("\n") if line.strip()), None)
    if first and first not in actual:
        raise WriteValidationError(f"Validation failed: written content not found in {path}")


def backup_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, safe for file names."""
    stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return BACKUP_STAMP_RE.sub("-", stamp)


# =============================================================================
# Applier
# =============================================================================


class Applier:
    """One apply session.

    Owns the set of files already backed up, so each file is copied at
    most once per Applier. Create a new Applier for each review/apply run.
    """

    def __init__(
        self,
        project_root: Union[str, Path],
        store_dir: Union[str, Path],
        already_present_threshold: float = DEFAULT_ALREADY_PRESENT_THRESHOLD,
    ) -> None:
        self.project_root = Path(project_root)
        self.store_dir = Path(store_dir)
        self.already_present_threshold = already_present_threshold
        self._backups: Dict[Path, Path] = {}

    @property
    def backed_up_files(self) -> Dict[Path, Path]:
        return dict(self._backups)

    def backup_file(self, path: Path) -> Path:
        """Copy path into <store>/backups on first touch; later calls reuse that copy."""
        if path in self._backups:
            return self._backups[path]
        base = self.store_dir / "backups" / f"{path.name}.{backup_timestamp()}"
        base.parent.mkdir(parents=True, exist_ok=True)
        # Same basename in the same millisecond: CLAUDE.md and .claude/CLAUDE.md
        backup, n = base, 0
        while backup.exists():
            n += 1
            backup = base.with_name(f"{base.name}-{n}")
        shutil.copy2(path, backup)
        self._backups[path] = backup
        return backup

    # =========================================================================
    # Dispatch
    # =========================================================================

    def apply_suggestion(self, suggestion: Suggestion, edited_content: Optional[str] = None) -> WriteResult:
        """Apply one suggestion to the filesystem.

        Args:
            suggestion: The suggestion to apply
            edited_content: User-edited replacement for the suggestion's added text

        Returns:
            WriteResult describing what happened.

        Raises:
            WriteValidationError: If a write did not take effect.
            OSError: On filesystem failures.
        """
        target = self.project_root / suggestion.target_file
        exists = target.is_file()

        match suggestion.type:
            case SuggestionType.ADD:
                result = self._apply_add(suggestion, target, edited_content)
            case SuggestionType.UPDATE | SuggestionType.CONSOLIDATE if not exists:
                result = self._apply_add(suggestion, target, edited_content)
            case SuggestionType.REMOVE | SuggestionType.SPLIT if not exists:
                result = WriteResult(
                    success=False,
                    action=WriteAction.MODIFIED,
                    file_path=str(target),
                    error=f"File not found: {suggestion.target_file}",
                )
            case SuggestionType.UPDATE:
                result = self._apply_update(suggestion, target, edited_content)
            case SuggestionType.REMOVE:
                result = self._apply_remove(suggestion, target)
            case SuggestionType.CONSOLIDATE:
                result = self._apply_consolidate(suggestion, target, edited_content)
            case SuggestionType.SPLIT:
                result = self._apply_split(suggestion, target)
            case _:
                assert_never(suggestion.type)

        if result.success:
            get_logger().mutation(
                suggestion.type.value,
                relative_path(result.file_path, self.project_root),
                {"action": result.action.value, "backup": result.backup_path},
            )
        return result

    # =========================================================================
    # Per-type handlers
    # =========================================================================

    def _append_or_insert(self, existing: str, section: Optional[str], new_content: str) -> str:
        if section:
            return insert_in_section(existing, section, new_content)
        return existing.rstrip() + "\n\n" + new_content + "\n"

    def _fail(self, target: Path, error: str, backup: Optional[Path] = None,
              action: WriteAction = WriteAction.MODIFIED) -> WriteResult:
        return WriteResult(
            success=False,
            action=action,
            file_path=str(target),
            backup_path=str(backup) if backup else None,
            error=error,
        )

    def _ok(self, target: Path, backup: Optional[Path], action: WriteAction = WriteAction.MODIFIED) -> WriteResult:
        return WriteResult(
            success=True,
            action=action,
            file_path=str(target),
            backup_path=str(backup) if backup else None,
        )

    def _apply_add(self, suggestion: Suggestion, target: Path, edited_content: Optional[str]) -> WriteResult:
        new_content = edited_content or get_added_content(suggestion.diff)
        if not new_content:
            return self._fail(target, "No content to add", action=WriteAction.CREATED)

        if target.is_file():
            existing = target.read_text(encoding="utf-8")
            if content_already_present(existing, new_content, self.already_present_threshold):
                return self._ok(target, None)

            backup = self.backup_file(target)
            atomic_write(target, self._append_or_insert(existing, suggestion.target_section, new_content))
            validate_write(target, new_content)
            return self._ok(target, backup)

        target.parent.mkdir(parents=True, exist_ok=True)
        atomic_write(target, new_content + "\n")
        validate_write(target, new_content)
        return self._ok(target, None, action=WriteAction.CREATED)

    def _apply_update(self, suggestion: Suggestion, target: Path, edited_content: Optional[str]) -> WriteResult:
        backup = self.backup_file(target)
        existing = target.read_text(encoding="utf-8")

        old_text = get_removed_content(suggestion.diff)
        new_text = edited_content or get_added_content(suggestion.diff)
        if not new_text:
            return self._fail(target, "No replacement text", backup)

        # A whole-section replacement keeps the section heading
        heading = first_heading(old_text) if old_text else None
        if heading and first_heading(new_text) is None:
            new_text = f"{heading}\n\n{new_text}"

        if not old_text:
            updated = self._append_or_insert(existing, suggestion.target_section, new_text)
        else:
            updated = try_replace(existing, old_text, new_text)
            if updated is None:
                updated = try_fuzzy_replace(existing, old_text, new_text)
            if updated is None:
                return self._fail(
                    target,
                    f"Could not find text to replace in {target.name}. Skipping this suggestion.",
                    backup,
                )

        atomic_write(target, updated)
        validate_write(target, new_text)
        return self._ok(target, backup)

    def _apply_remove(self, suggestion: Suggestion, target: Path) -> WriteResult:
        backup = self.backup_file(target)
        existing = target.read_text(encoding="utf-8")

        old_text = get_removed_content(suggestion.diff)
        if not old_text:
            return self._fail(target, "No text to remove", backup)

        updated = try_replace(existing, old_text, "")
        if updated is None:
            updated = try_fuzzy_replace(existing, old_text, "")
        if updated is None:
            return self._fail(
                target,
                f"Could not find text to remove in {target.name}. Skipping this suggestion.",
                backup,
            )

        atomic_write(target, collapse_blank_lines(updated))
        return self._ok(target, backup)

    def _apply_consolidate(
        self, suggestion: Suggestion, target: Path, edited_content: Optional[str]
    ) -> WriteResult:
        backup = self.backup_file(target)
        content = target.read_text(encoding="utf-8")

        # Best effort: a part whose text is gone is skipped
        for part in suggestion.diff.parts:
            old_text = get_removed_content(part)
            if not old_text:
                continue
            updated = try_replace(content, old_text, "")
            if updated is None:
                updated = try_fuzzy_replace(content, old_text, "")
            if updated is not None:
                content = updated

        content = collapse_blank_lines(content)
        new_content = edited_content or get_added_content(suggestion.diff)
        if new_content:
            content = self._append_or_insert(content, suggestion.target_section, new_content)

        atomic_write(target, content)
        if new_content:
            validate_write(target, new_content)
        return self._ok(target, backup)

    def _apply_split(self, suggestion: Suggestion, target: Path) -> WriteResult:
        if not suggestion.split_target:
            return self._fail(target, "No split target file specified")
        section_name = suggestion.target_section
        if not section_name:
            return self._fail(target, "No section specified for split")

        backup = self.backup_file(target)
        lines = target.read_text(encoding="utf-8").split("\n")

        found = find_heading(lines, section_name)
        if found is None:
            return self._fail(target, f'Section "{section_name}" not found in {target.name}', backup)
        start, level = found
        end = find_section_end(lines, start, level)

        section_lines = shift_heading_levels(lines[start:end], -(level - 1))
        remaining = collapse_blank_lines("\n".join(lines[:start] + lines[end:]))
        atomic_write(target, remaining)

        new_file = self.project_root / suggestion.split_target
        new_file.parent.mkdir(parents=True, exist_ok=True)
        atomic_write(new_file, "\n".join(section_lines).rstrip() + "\n")
        validate_write(new_file, section_lines[0])
        return self._ok(target, backup)


def apply_suggestion(
    suggestion: Suggestion,
    project_root: Union[str, Path],
    store_dir: Union[str, Path],
    edited_content: Optional[str] = None,
) -> WriteResult:
    """Apply a single suggestion in its own apply session."""
    return Applier(project_root, store_dir).apply_suggestion(suggestion, edited_content)
