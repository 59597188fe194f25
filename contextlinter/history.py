#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Append-only log of applied rule changes (<store>/history.jsonl).
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from contextlinter.models import HistoryEntry, SuggestionType

HISTORY_FILE = "history.jsonl"


def history_path(store_dir: Path) -> Path:
    return Path(store_dir) / HISTORY_FILE


def build_history_entry(
    action: SuggestionType,
    file: str,
    section: Optional[str],
    content: str,
    previous_content: Optional[str],
    reason: str,
    source_insight_ids: List[str],
    source_session_ids: List[str],
    confidence: float,
) -> HistoryEntry:
    """Build a history entry stamped with the current UTC time."""
    return HistoryEntry(
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        action=action,
        file=file,
        section=section,
        content=content,
        previous_content=previous_content,
        reason=reason,
        source_insight_ids=list(source_insight_ids),
        source_session_ids=list(source_session_ids),
        confidence=confidence,
    )


def append_history(path: Path, entry: HistoryEntry) -> None:
    """Append one JSON line. The file is never rewritten."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(entry.to_dict()) + "\n")


def read_history(path: Path, limit: Optional[int] = None) -> List[HistoryEntry]:
    """Read history entries, oldest first. Corrupt lines are skipped.

    Args:
        path: history.jsonl path
        limit: If given, only the most recent `limit` entries are returned
    """
    path = Path(path)
    if not path.exists():
        return []

    entries = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict):
                entries.append(HistoryEntry.from_dict(data))

    if limit is not None:
        return entries[-limit:] if limit > 0 else []
    return entries
