#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Claude Code transcript reading.

Transcripts live under ~/.claude/projects/<encoded-project-path>/<session>.jsonl,
one JSON object per line. Files are streamed line by line; a corrupt line
becomes a warning, never an exception.
"""

import asyncio
import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

from contextlinter.models import (
    NormalizedMessage,
    SessionFileInfo,
    SessionInfo,
    ToolResultInfo,
    ToolUseInfo,
)
from contextlinter.paths import (
    PathResolver,
    encode_project_path,
    extract_session_id,
)

TOOL_RESULT_MAX_LENGTH = 500
MIN_SESSION_FILE_SIZE = 100
TIMESTAMP_SCAN_LINES = 5


@dataclass
class ParseWarning:
    line_number: int
    error: str


@dataclass
class ParseResult:
    messages: List[NormalizedMessage] = field(default_factory=list)
    summary: Optional[str] = None
    warnings: List[ParseWarning] = field(default_factory=list)
    line_count: int = 0


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


# =============================================================================
# Line parsing
# =============================================================================


def parse_json_line(line: str) -> Optional[dict]:
    """Parse one transcript line; None unless it is an object with a string type."""
    stripped = line.strip()
    if not stripped:
        return None
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict) or not isinstance(parsed.get("type"), str):
        return None
    return parsed


def _normalize_role(raw_type: str, role: Optional[str]) -> str:
    for known in ("user", "assistant", "system"):
        if raw_type == known or role == known:
            return known
    return "unknown"


def _blocks(content: Any) -> List[dict]:
    if not isinstance(content, list):
        return []
    return [b for b in content if isinstance(b, dict)]


def extract_text_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    return "\n".join(
        b["text"] for b in _blocks(content)
        if b.get("type") == "text" and isinstance(b.get("text"), str)
    )


def extract_tool_uses(content: Any) -> List[ToolUseInfo]:
    return [
        ToolUseInfo(id=str(b.get("id") or ""), name=b["name"], input=b.get("input"))
        for b in _blocks(content)
        if b.get("type") == "tool_use" and isinstance(b.get("name"), str)
    ]


def _truncate_result(content: Any) -> str:
    text = content if isinstance(content, str) else json.dumps(content)
    if len(text) <= TOOL_RESULT_MAX_LENGTH:
        return text
    return text[:TOOL_RESULT_MAX_LENGTH] + "..."


def extract_tool_results(content: Any) -> List[ToolResultInfo]:
    return [
        ToolResultInfo(
            tool_use_id=str(b.get("tool_use_id") or ""),
            content=_truncate_result(b.get("content")),
        )
        for b in _blocks(content)
        if b.get("type") == "tool_result"
    ]


def has_thinking_block(content: Any) -> bool:
    return any(b.get("type") == "thinking" for b in _blocks(content))


def normalize_line(raw: dict) -> Optional[NormalizedMessage]:
    """Reduce a raw line to a NormalizedMessage; summary lines yield None."""
    raw_type = raw["type"]
    if raw_type == "summary":
        return None

    message = raw.get("message")
    if not isinstance(message, dict):
        message = {}
    content = message.get("content", "")
    if content is None:
        content = ""
    timestamp = raw.get("timestamp")

    return NormalizedMessage(
        role=_normalize_role(raw_type, message.get("role")),
        timestamp=timestamp if isinstance(timestamp, str) else None,
        text_content=extract_text_content(content),
        tool_uses=extract_tool_uses(content),
        tool_results=extract_tool_results(content),
        has_thinking=has_thinking_block(content),
        raw_type=raw_type,
    )


# =============================================================================
# File parsing
# =============================================================================


def parse_session_file(file_path: Path) -> ParseResult:
    """Stream a transcript file line by line."""
    result = ParseResult()
    with open(file_path, encoding="utf-8", errors="replace") as f:
        for line_number, line in enumerate(f, start=1):
            result.line_count = line_number
            raw = parse_json_line(line)
            if raw is None:
                if line.strip():
                    result.warnings.append(ParseWarning(line_number, "Invalid JSON"))
                continue

            if raw["type"] == "summary" and isinstance(raw.get("summary"), str):
                result.summary = raw["summary"]

            normalized = normalize_line(raw)
            if normalized is not None:
                result.messages.append(normalized)
    return result


def build_session_info(
    session_file: SessionFileInfo, project_path: str, project_path_encoded: str
) -> SessionInfo:
    """Parse a discovered transcript into a SessionInfo.

    message_count is the raw line count of the file, matching what the
    audit log records for a session.
    """
    parsed = parse_session_file(Path(session_file.file_path))
    messages = parsed.messages

    timestamps = sorted(m.timestamp for m in messages if m.timestamp is not None)
    first = timestamps[0] if timestamps else None
    last = timestamps[-1] if timestamps else None

    duration = None
    start, end = _parse_timestamp(first), _parse_timestamp(last)
    if start is not None and end is not None:
        try:
            duration = round((end - start).total_seconds() / 60)
        except TypeError:
            # naive vs aware timestamps
            duration = None

    return SessionInfo(
        session_id=session_file.session_id,
        project_path=project_path,
        project_path_encoded=project_path_encoded,
        file_path=session_file.file_path,
        file_size=session_file.file_size,
        message_count=parsed.line_count,
        user_message_count=sum(1 for m in messages if m.role == "user"),
        assistant_message_count=sum(1 for m in messages if m.role == "assistant"),
        tool_use_count=sum(len(m.tool_uses) for m in messages),
        first_timestamp=first,
        last_timestamp=last,
        duration_minutes=duration,
        summary=parsed.summary,
        messages=messages,
    )


# =============================================================================
# Discovery
# =============================================================================


def read_first_timestamp(file_path: Path) -> Optional[float]:
    """First parseable timestamp within the first few lines, as epoch seconds."""
    try:
        with open(file_path, encoding="utf-8", errors="replace") as f:
            for index, line in enumerate(f):
                if index >= TIMESTAMP_SCAN_LINES:
                    break
                if not line.strip():
                    continue
                try:
                    parsed = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(parsed, dict):
                    ts = _parse_timestamp(parsed.get("timestamp"))
                    if ts is not None:
                        return ts.timestamp()
    except OSError:
        return None
    return None


def discover_sessions_in_dir(dir_path: Path) -> List[SessionFileInfo]:
    """List transcripts in a project dir, newest first.

    Files under 100 bytes are skipped. Sessions are ordered by their first
    message timestamp, falling back to file mtime.
    """
    dir_path = Path(dir_path)
    try:
        entries = sorted(dir_path.iterdir())
    except OSError:
        return []

    sessions = []
    for entry in entries:
        if not entry.name.endswith(".jsonl"):
            continue
        try:
            st = entry.stat()
        except OSError:
            continue
        if not entry.is_file() or st.st_size < MIN_SESSION_FILE_SIZE:
            continue
        sessions.append(SessionFileInfo(
            session_id=extract_session_id(entry.name),
            file_path=str(entry),
            file_size=st.st_size,
            modified_at=st.st_mtime,
            created_at=read_first_timestamp(entry),
        ))

    sessions.sort(
        key=lambda s: s.created_at if s.created_at is not None else s.modified_at,
        reverse=True,
    )
    return sessions


def project_sessions_dir(project_root: Path) -> Path:
    encoded = encode_project_path(str(Path(project_root).resolve()))
    return PathResolver.claude_projects_dir() / encoded


def discover_project_sessions(project_root: Path) -> List[SessionFileInfo]:
    """Transcripts Claude Code recorded for this project, newest first."""
    return discover_sessions_in_dir(project_sessions_dir(project_root))


def load_session(session_file: SessionFileInfo, project_root: Path) -> SessionInfo:
    resolved = str(Path(project_root).resolve())
    return build_session_info(session_file, resolved, encode_project_path(resolved))


# =============================================================================
# File stability
# =============================================================================


def _mtime(path: Path) -> Optional[float]:
    try:
        return os.stat(path).st_mtime
    except OSError:
        return None


async def wait_for_stable(path: Path, cooldown: float) -> bool:
    """Wait until a transcript stops changing.

    Checks the mtime, sleeps `cooldown` seconds and checks again. One more
    cycle is allowed if it moved; a file still changing after that is
    reported as not stable so a later poll can pick it up.
    """
    before = _mtime(path)
    if before is None:
        return False

    await asyncio.sleep(cooldown)
    after = _mtime(path)
    if after is None:
        return False
    if after == before:
        return True

    await asyncio.sleep(cooldown)
    final = _mtime(path)
    return final is not None and final == after
