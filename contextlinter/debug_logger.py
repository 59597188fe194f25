#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Structured JSON-lines debug logger for contextlinter.

Each event is written as one JSON object per line to <state_dir>/debug.log:

    {"event": "mutation", "level": "info", "timestamp": "...", "pid": 123, ...}

Debug level comes from CONTEXTLINTER_DEBUG:
    0 - logging disabled
    1 - lifecycle events, mutations, warnings, errors (default)
    2 - adds per-call detail (LLM calls, dedup decisions)
    3 - adds phase timings
"""

import json
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from contextlinter.paths import PathResolver

MAX_ERROR_LEN = 500
MAX_LOG_BYTES = 5 * 1024 * 1024


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class DebugLogger:
    """Append-only JSON-lines event logger."""

    def __init__(self, log_path: Optional[Path] = None) -> None:
        raw_level = os.environ.get("CONTEXTLINTER_DEBUG", "1")
        try:
            self.level = int(raw_level)
        except ValueError:
            self.level = 1
        self.log_path = log_path or (PathResolver.state_dir() / "debug.log")
        self.project = os.environ.get("PROJECT_DIR", os.getcwd())

    # =========================================================================
    # Core writer
    # =========================================================================

    def _write(self, event: Dict[str, Any]) -> None:
        """Write a single event, filling in common fields.

        Logging must never break the caller, so filesystem errors are dropped.
        """
        record = {
            "event": event.get("event", "unknown"),
            "level": event.get("level", "info"),
            "timestamp": _now_iso(),
            "pid": os.getpid(),
            "project": Path(self.project).name,
        }
        record.update({k: v for k, v in event.items() if k not in ("event", "level")})
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            if self.log_path.exists() and self.log_path.stat().st_size > MAX_LOG_BYTES:
                self.log_path.replace(self.log_path.with_suffix(".log.1"))
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, default=str) + "\n")
        except OSError:
            pass

    # =========================================================================
    # Pipeline events
    # =========================================================================

    def pipeline_start(self, project_root: str, session_count: int, existing_count: int = 0) -> float:
        """Log the start of a pipeline run and return the start time."""
        start = time.time()
        if self.level >= 1:
            self._write({
                "event": "pipeline_start",
                "project_root": project_root,
                "sessions": session_count,
                "existing_results": existing_count,
            })
        return start

    def pipeline_end(self, start_time: float, stats: Dict[str, Any]) -> None:
        if self.level >= 1:
            self._write({
                "event": "pipeline_end",
                "total_ms": round((time.time() - start_time) * 1000, 2),
                "stats": stats,
            })

    def session_analyzed(self, session_id: str, insight_count: int, suggestion_count: int, ms: float) -> None:
        if self.level >= 1:
            self._write({
                "event": "session_analyzed",
                "session_id": session_id,
                "insights": insight_count,
                "raw_suggestions": suggestion_count,
                "ms": round(ms, 2),
            })

    def llm_call(self, model: str, prompt_chars: int, duration_ms: float, error: Optional[str] = None) -> None:
        """Log one `claude -p` invocation (level 2, errors at level 1)."""
        if error is not None and self.level >= 1:
            self._write({
                "event": "llm_call",
                "level": "error",
                "model": model,
                "prompt_chars": prompt_chars,
                "ms": round(duration_ms, 2),
                "error": error[:MAX_ERROR_LEN],
            })
        elif self.level >= 2:
            self._write({
                "event": "llm_call",
                "level": "debug",
                "model": model,
                "prompt_chars": prompt_chars,
                "ms": round(duration_ms, 2),
            })

    def suggestions_built(self, source: str, built: int, dropped: int) -> None:
        if self.level >= 2:
            self._write({
                "event": "suggestions_built",
                "level": "debug",
                "source": source,
                "built": built,
                "dropped": dropped,
            })

    def dedup(self, before: int, after: int, admitted: int) -> None:
        if self.level >= 2:
            self._write({
                "event": "dedup",
                "level": "debug",
                "before": before,
                "after": after,
                "admitted": admitted,
            })

    def phase(self, name: str, ms: float, details: Optional[Dict[str, Any]] = None) -> None:
        if self.level >= 3:
            event = {"event": "phase", "level": "debug", "phase": name, "ms": round(ms, 2)}
            if details:
                event["details"] = details
            self._write(event)

    # =========================================================================
    # Mutations and problems
    # =========================================================================

    def mutation(self, op: str, target: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Log a change to a rules file."""
        if self.level >= 1:
            event = {"event": "mutation", "op": op, "target": target}
            if details:
                event["details"] = details
            self._write(event)

    def warning(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        if self.level >= 1:
            event = {"event": "warning", "level": "warn", "message": message[:MAX_ERROR_LEN]}
            if context:
                event["context"] = context
            self._write(event)

    def error(self, operation: str, error: str, context: Optional[Dict[str, Any]] = None) -> None:
        if self.level >= 1:
            event = {
                "event": "error",
                "level": "error",
                "op": operation,
                "err": error[:MAX_ERROR_LEN],
            }
            if context:
                event["context"] = context
            self._write(event)

    def review_summary(self, applied: int, skipped: int, files: List[str]) -> None:
        if self.level >= 1:
            self._write({
                "event": "review_summary",
                "applied": applied,
                "skipped": skipped,
                "files": files,
            })


_logger: Optional[DebugLogger] = None


def get_logger() -> DebugLogger:
    """Return the process-wide logger, creating it on first use."""
    global _logger
    if _logger is None:
        _logger = DebugLogger()
    return _logger


def reset_logger() -> None:
    """Drop the cached logger so the next get_logger() re-reads env vars."""
    global _logger
    _logger = None
