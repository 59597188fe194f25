#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""Centralized path resolution for contextlinter.

All path resolution should go through this module to ensure consistency.
"""
import os
from pathlib import Path
from typing import Optional

PROJECT_ROOT_MARKERS = (".git", "package.json", "CLAUDE.md", ".contextlinter")
STORE_DIR_NAME = ".contextlinter"


class PathResolver:
    """Resolves paths for contextlinter components."""

    @staticmethod
    def state_dir() -> Path:
        """Get the state directory for mutable data (debug log).

        Resolution order:
        1. CONTEXTLINTER_STATE env var
        2. XDG_STATE_HOME/contextlinter
        3. ~/.local/state/contextlinter
        """
        state = os.environ.get("CONTEXTLINTER_STATE")
        if state:
            return Path(state)
        xdg_state = os.environ.get("XDG_STATE_HOME")
        if xdg_state:
            return Path(xdg_state) / "contextlinter"
        return Path.home() / ".local" / "state" / "contextlinter"

    @staticmethod
    def claude_home() -> Path:
        """Get the Claude Code home directory.

        Resolution order:
        1. CLAUDE_HOME env var
        2. ~/.claude
        """
        custom = os.environ.get("CLAUDE_HOME")
        if custom:
            return Path(custom)
        return Path.home() / ".claude"

    @staticmethod
    def claude_projects_dir() -> Path:
        """Directory where Claude Code keeps per-project session transcripts."""
        return PathResolver.claude_home() / "projects"

    @staticmethod
    def store_dir(project_root: Path) -> Path:
        """Get the project-specific store directory.

        Args:
            project_root: The project root directory

        Returns:
            Path to <project_root>/.contextlinter
        """
        return Path(project_root) / STORE_DIR_NAME


def encode_project_path(fs_path: str) -> str:
    """Encode a filesystem path the way Claude Code names project dirs.

    /Users/john/myproject -> -Users-john-myproject
    """
    return fs_path.replace("/", "-")


def decode_project_path(encoded: str) -> str:
    """Decode a Claude Code project directory name back to a path.

    The encoding is lossy: dashes that were part of a directory name
    decode to slashes as well.
    """
    return encoded.replace("-", "/")


def extract_session_id(filename: str) -> str:
    """Strip the .jsonl suffix from a transcript filename."""
    if filename.endswith(".jsonl"):
        return filename[: -len(".jsonl")]
    return filename


def find_project_root(start_dir: Path) -> Optional[Path]:
    """Walk up from start_dir looking for a project marker.

    Stops at the home directory; $HOME itself is never a project root.

    Args:
        start_dir: Directory to start from

    Returns:
        The first directory containing a marker, or None.
    """
    current = Path(start_dir).resolve()
    home = Path.home().resolve()

    while True:
        if current == home:
            return None
        for marker in PROJECT_ROOT_MARKERS:
            if (current / marker).exists():
                return current
        parent = current.parent
        if parent == current:
            return None
        current = parent
