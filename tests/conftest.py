"""
Pytest configuration and fixtures for contextlinter tests.
"""

import sys
from pathlib import Path

# Ensure project root is in sys.path for 'contextlinter' module imports
# This must happen before any imports from contextlinter
_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import json
import uuid
from typing import List, Optional

import pytest

from contextlinter.models import (
    DiffLine,
    DiffType,
    Priority,
    Suggestion,
    SuggestionDiff,
    SuggestionType,
)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks integration tests")
    config.addinivalue_line("markers", "tui: marks TUI tests")


@pytest.fixture
def temp_state_dir(tmp_path: Path, monkeypatch) -> Path:
    """Create and return a temporary state directory.

    Sets CONTEXTLINTER_STATE env var and resets debug logger.
    This is available for tests that need explicit access to the state dir.
    """
    state_dir = tmp_path / ".local" / "state" / "contextlinter"
    state_dir.mkdir(parents=True)
    monkeypatch.setenv("CONTEXTLINTER_STATE", str(state_dir))

    # Reset the debug logger so it picks up the new path
    from contextlinter.debug_logger import reset_logger
    reset_logger()

    return state_dir


@pytest.fixture(autouse=True)
def isolate_state_dir(temp_state_dir: Path, tmp_path: Path, monkeypatch):
    """Autouse fixture that keeps tests away from the real ~/.claude and state dirs.

    Claude home and settings.json are pointed into tmp_path so discovery
    and config never read the developer's real files.
    """
    claude_home = tmp_path / "claude-home"
    claude_home.mkdir()
    monkeypatch.setenv("CLAUDE_HOME", str(claude_home))
    monkeypatch.setenv("CLAUDE_CODE_SETTINGS", str(claude_home / "settings.json"))
    monkeypatch.delenv("CONTEXTLINTER_MODEL", raising=False)
    monkeypatch.delenv("PROJECT_DIR", raising=False)

    yield temp_state_dir

    # Reset logger after test
    from contextlinter.debug_logger import reset_logger
    reset_logger()


@pytest.fixture
def claude_home(isolate_state_dir, tmp_path: Path) -> Path:
    """The isolated Claude home directory (CLAUDE_HOME)."""
    return tmp_path / "claude-home"


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A project root with a .git marker and an empty store directory."""
    root = tmp_path / "project"
    root.mkdir()
    (root / ".git").mkdir()
    (root / ".contextlinter").mkdir()
    return root


@pytest.fixture
def store_dir(project: Path) -> Path:
    return project / ".contextlinter"


@pytest.fixture
def make_suggestion():
    """Factory for Suggestion objects with sensible defaults.

    `added` / `removed` are newline-separated text turned into a flat diff.
    """

    def _make(
        type: SuggestionType = SuggestionType.ADD,
        title: str = "Use pnpm for installs",
        added: Optional[str] = "- Use pnpm, not npm",
        removed: Optional[str] = None,
        target_file: str = "CLAUDE.md",
        target_section: Optional[str] = None,
        priority: Priority = Priority.MEDIUM,
        confidence: float = 0.8,
        parts: Optional[List[SuggestionDiff]] = None,
        split_target: Optional[str] = None,
        insight_ids: Optional[List[str]] = None,
        id: Optional[str] = None,
    ) -> Suggestion:
        diff_type = {
            SuggestionType.ADD: DiffType.ADD,
            SuggestionType.REMOVE: DiffType.REMOVE,
        }.get(type, DiffType.REPLACE)
        diff = SuggestionDiff(
            type=diff_type,
            in_section=target_section,
            added_lines=[DiffLine(None, line) for line in added.split("\n")] if added else None,
            removed_lines=[DiffLine(None, line) for line in removed.split("\n")] if removed else None,
            parts=parts or [],
        )
        return Suggestion(
            id=id or str(uuid.uuid4()),
            type=type,
            priority=priority,
            confidence=confidence,
            title=title,
            rationale="Seen in several sessions",
            target_file=target_file,
            target_section=target_section,
            diff=diff,
            source_insight_ids=list(insight_ids or []),
            source_session_ids=["session-1"],
            split_target=split_target,
        )

    return _make


def transcript_lines(exchanges: int = 2, start_minute: int = 0) -> List[dict]:
    """A small user/assistant transcript as raw JSON-line objects."""
    lines: List[dict] = []
    for i in range(exchanges):
        minute = start_minute + i * 2
        lines.append({
            "type": "user",
            "timestamp": f"2026-01-05T10:{minute:02d}:00Z",
            "message": {"role": "user", "content": f"Please use pnpm instead of npm ({i})"},
        })
        lines.append({
            "type": "assistant",
            "timestamp": f"2026-01-05T10:{minute + 1:02d}:00Z",
            "message": {
                "role": "assistant",
                "content": [
                    {"type": "text", "text": f"Switching to pnpm ({i})"},
                    {"type": "tool_use", "id": f"tool-{i}", "name": "Bash", "input": {"command": "pnpm install"}},
                ],
            },
        })
    return lines


@pytest.fixture
def write_session(project: Path, claude_home: Path):
    """Write a transcript where Claude Code keeps this project's sessions."""
    from contextlinter.session_reader import project_sessions_dir

    def _write(session_id: str, lines: Optional[List[dict]] = None, start_minute: int = 0) -> Path:
        directory = project_sessions_dir(project)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{session_id}.jsonl"
        rows = transcript_lines(start_minute=start_minute) if lines is None else lines
        path.write_text("".join(json.dumps(row) + "\n" for row in rows))
        return path

    return _write
