#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Project-local persistence under <project>/.contextlinter/.

Layout:
    audit.json                        which sessions were parsed/analyzed
    analysis/sessions/<id>.json       per-session AnalysisResult
    analysis/cross-session/<ts>.json  cross-session patterns
    suggestions/<ts>.json             SuggestionSet batches
    cache/rules-snapshot.json         mtime-keyed RulesSnapshot cache
    backups/                          pre-edit copies of rules files
    history.jsonl                     applied changes (see history.py)

Reads return None (or empty) on missing/corrupt files; write errors propagate.
"""

import json
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from contextlinter.models import (
    AUDIT_VERSION,
    AnalysisResult,
    AuditEntry,
    AuditLog,
    CrossSessionPattern,
    RulesSnapshot,
    SuggestionSet,
    SuggestionStatus,
)
from contextlinter.paths import PathResolver

RULES_CACHE_FILE = "rules-snapshot.json"
STORE_SUBDIRS = (
    ("cache", "sessions"),
    ("analysis", "sessions"),
    ("analysis", "cross-session"),
    ("suggestions",),
    ("backups",),
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def file_timestamp() -> str:
    """UTC timestamp safe for filenames; sorts chronologically."""
    return _now_iso().replace(":", "-").replace(".", "-")


# =============================================================================
# JSON I/O
# =============================================================================


def read_json(path: Path) -> Optional[Any]:
    """Parse a JSON file, or None if it is missing or corrupt."""
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError):
        return None


def write_json(path: Path, data: Any) -> None:
    """Atomically write JSON via a temp file in the same directory."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.parent / f".tmp-{uuid.uuid4()}.json"
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(temp_path, path)
    except OSError:
        temp_path.unlink(missing_ok=True)
        raise


def init_store_dir(project_root: Path) -> Path:
    """Create the store layout and its catch-all .gitignore; return the store dir."""
    store_dir = PathResolver.store_dir(project_root)
    for parts in STORE_SUBDIRS:
        store_dir.joinpath(*parts).mkdir(parents=True, exist_ok=True)

    gitignore = store_dir / ".gitignore"
    if not gitignore.exists():
        gitignore.write_text("*\n", encoding="utf-8")
    return store_dir


def _latest_json(directory: Path) -> Optional[Path]:
    try:
        names = sorted(
            p.name for p in directory.iterdir()
            if p.suffix == ".json" and not p.name.startswith(".")
        )
    except OSError:
        return None
    return directory / names[-1] if names else None


# =============================================================================
# Analysis results
# =============================================================================


def _analysis_path(store_dir: Path, session_id: str) -> Path:
    return Path(store_dir) / "analysis" / "sessions" / f"{session_id}.json"


def save_analysis_result(store_dir: Path, result: AnalysisResult) -> None:
    write_json(_analysis_path(store_dir, result.session_id), result.to_dict())


def load_analysis_result(store_dir: Path, session_id: str) -> Optional[AnalysisResult]:
    data = read_json(_analysis_path(store_dir, session_id))
    if not isinstance(data, dict):
        return None
    try:
        return AnalysisResult.from_dict(data)
    except (KeyError, TypeError, ValueError):
        return None


def load_analysis_results(store_dir: Path, session_ids: Iterable[str]) -> List[AnalysisResult]:
    """Load stored results for the given sessions, skipping any that are missing."""
    results = []
    for session_id in session_ids:
        result = load_analysis_result(store_dir, session_id)
        if result is not None:
            results.append(result)
    return results


def save_cross_session_patterns(store_dir: Path, patterns: List[CrossSessionPattern]) -> Path:
    path = Path(store_dir) / "analysis" / "cross-session" / f"{file_timestamp()}.json"
    write_json(path, [p.to_dict() for p in patterns])
    return path


def load_latest_cross_session_patterns(store_dir: Path) -> List[CrossSessionPattern]:
    latest = _latest_json(Path(store_dir) / "analysis" / "cross-session")
    if latest is None:
        return []
    data = read_json(latest)
    if not isinstance(data, list):
        return []
    return [CrossSessionPattern.from_dict(p) for p in data if isinstance(p, dict)]


# =============================================================================
# Suggestion sets
# =============================================================================


def save_suggestion_set(store_dir: Path, suggestion_set: SuggestionSet) -> Path:
    path = Path(store_dir) / "suggestions" / f"{file_timestamp()}.json"
    write_json(path, suggestion_set.to_dict())
    return path


def latest_suggestion_set_path(store_dir: Path) -> Optional[Path]:
    return _latest_json(Path(store_dir) / "suggestions")


def load_latest_suggestion_set(store_dir: Path) -> Optional[SuggestionSet]:
    latest = latest_suggestion_set_path(store_dir)
    if latest is None:
        return None
    data = read_json(latest)
    if not isinstance(data, dict):
        return None
    return SuggestionSet.from_dict(data)


def find_suggestion_set_by_cache_key(store_dir: Path, cache_key: str) -> Optional[SuggestionSet]:
    """Most recent suggestion set generated from the same inputs, if any."""
    directory = Path(store_dir) / "suggestions"
    try:
        names = sorted((p.name for p in directory.glob("*.json") if not p.name.startswith(".")), reverse=True)
    except OSError:
        return None
    for name in names:
        data = read_json(directory / name)
        if isinstance(data, dict) and data.get("cacheKey") == cache_key:
            return SuggestionSet.from_dict(data)
    return None


def update_suggestion_statuses(store_dir: Path, statuses: Dict[str, SuggestionStatus]) -> bool:
    """Rewrite the latest suggestion set with new statuses.

    Returns:
        False if there is no suggestion set to update.
    """
    latest = latest_suggestion_set_path(store_dir)
    if latest is None:
        return False
    data = read_json(latest)
    if not isinstance(data, dict):
        return False

    suggestion_set = SuggestionSet.from_dict(data)
    for suggestion in suggestion_set.suggestions:
        if suggestion.id in statuses:
            suggestion.status = statuses[suggestion.id]
    write_json(latest, suggestion_set.to_dict())
    return True


# =============================================================================
# Audit log
# =============================================================================


def _audit_path(store_dir: Path) -> Path:
    return Path(store_dir) / "audit.json"


def load_audit_log(store_dir: Path) -> AuditLog:
    """Load audit.json; a missing file or other version yields an empty log."""
    data = read_json(_audit_path(store_dir))
    if not isinstance(data, dict) or data.get("version") != AUDIT_VERSION:
        return AuditLog()
    return AuditLog.from_dict(data)


def save_audit_log(store_dir: Path, audit: AuditLog) -> None:
    write_json(_audit_path(store_dir), audit.to_dict())


def mark_session_parsed(audit: AuditLog, session_id: str, session_mtime: float) -> AuditLog:
    existing = audit.sessions.get(session_id)
    audit.sessions[session_id] = AuditEntry(
        parsed_at=_now_iso(),
        analyzed_at=existing.analyzed_at if existing else None,
        analysis_prompt_version=existing.analysis_prompt_version if existing else "",
        insight_count=existing.insight_count if existing else 0,
        session_mtime=session_mtime,
    )
    return audit


def mark_session_analyzed(audit: AuditLog, session_id: str, prompt_version: str, insight_count: int) -> AuditLog:
    """Record analysis of a parsed session. Unknown sessions are left alone."""
    entry = audit.sessions.get(session_id)
    if entry is None:
        return audit
    entry.analyzed_at = _now_iso()
    entry.analysis_prompt_version = prompt_version
    entry.insight_count = insight_count
    return audit


def mark_cross_session_done(audit: AuditLog) -> AuditLog:
    audit.last_cross_session_at = _now_iso()
    return audit


def needs_analysis(audit: AuditLog, session_id: str, prompt_version: str, mtime: float) -> bool:
    """True if never analyzed, analyzed with another prompt, or changed since."""
    entry = audit.sessions.get(session_id)
    if entry is None or not entry.analyzed_at:
        return True
    if entry.analysis_prompt_version != prompt_version:
        return True
    return entry.session_mtime != mtime


# =============================================================================
# Rules snapshot cache
# =============================================================================


def _rules_cache_path(store_dir: Path) -> Path:
    return Path(store_dir) / "cache" / RULES_CACHE_FILE


def get_cached_rules_snapshot(store_dir: Path, current_mtimes: Dict[str, float]) -> Optional[RulesSnapshot]:
    """Return the cached snapshot if the same files exist and none changed."""
    data = read_json(_rules_cache_path(store_dir))
    if not isinstance(data, dict):
        return None

    cached_mtimes = data.get("_fileMtimes")
    if not isinstance(cached_mtimes, dict):
        return None
    if sorted(cached_mtimes) != sorted(current_mtimes):
        return None
    for path, mtime in current_mtimes.items():
        if mtime > cached_mtimes[path]:
            return None

    try:
        return RulesSnapshot.from_dict(data)
    except (KeyError, TypeError, ValueError):
        return None


def cache_rules_snapshot(store_dir: Path, snapshot: RulesSnapshot) -> None:
    data = snapshot.to_dict()
    data["_cachedAt"] = datetime.now(timezone.utc).timestamp()
    data["_fileMtimes"] = {f.path: f.last_modified for f in snapshot.files}
    write_json(_rules_cache_path(store_dir), data)


def invalidate_rules_cache(store_dir: Path) -> None:
    """Drop the cached snapshot; call after any rules file is modified."""
    _rules_cache_path(store_dir).unlink(missing_ok=True)
