#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""Configuration reader for contextlinter.

Settings live in Claude Code's settings.json under the "contextLinter"
namespace, e.g.:

    {"contextLinter": {"model": "haiku", "dedup": {"titleThreshold": 0.85}}}
"""
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_MODEL = "sonnet"
DEFAULT_ANALYSIS_CONCURRENCY = 3
DEFAULT_MIN_CONFIDENCE = 0.5
DEFAULT_SAME_TARGET_TITLE_THRESHOLD = 0.6
DEFAULT_TITLE_THRESHOLD = 0.8
DEFAULT_CONTENT_THRESHOLD = 0.6
DEFAULT_ALREADY_PRESENT_THRESHOLD = 0.8
DEFAULT_WATCH_INTERVAL = 300
DEFAULT_WATCH_COOLDOWN = 60


def get_settings_path() -> Path:
    """Get path to Claude Code settings.json.

    Returns:
        Path to settings.json, respecting CLAUDE_CODE_SETTINGS env var.
    """
    custom = os.environ.get("CLAUDE_CODE_SETTINGS")
    if custom:
        return Path(custom)
    return Path.home() / ".claude" / "settings.json"


def get_setting(key: str, default: Any = None) -> Any:
    """Get a setting value by dot-notation key.

    Args:
        key: Dot-notation key like "contextLinter.model"
        default: Default value if key not found

    Returns:
        Setting value or default
    """
    settings_path = get_settings_path()

    if not settings_path.exists():
        return default

    try:
        with open(settings_path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, IOError):
        return default

    current = data
    for part in key.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]

    return current


def get_bool_setting(key: str, default: bool = False) -> bool:
    """Get a boolean setting.

    Args:
        key: Dot-notation key
        default: Default value if key not found

    Returns:
        Boolean value. Converts string "true", "1", "yes" to True.
    """
    value = get_setting(key, default)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ("true", "1", "yes")
    return bool(value)


def get_int_setting(key: str, default: int = 0) -> int:
    """Get an integer setting.

    Args:
        key: Dot-notation key
        default: Default value if key not found or invalid

    Returns:
        Integer value or default if conversion fails.
    """
    value = get_setting(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def get_float_setting(key: str, default: float = 0.0) -> float:
    """Get a float setting.

    Booleans are rejected (json true would otherwise become 1.0).

    Args:
        key: Dot-notation key
        default: Default value if key not found or invalid

    Returns:
        Float value or default if conversion fails.
    """
    value = get_setting(key, default)
    if isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass
class LinterConfig:
    """Resolved contextlinter settings."""
    model: str = DEFAULT_MODEL
    analysis_concurrency: int = DEFAULT_ANALYSIS_CONCURRENCY
    min_confidence: float = DEFAULT_MIN_CONFIDENCE
    same_target_title_threshold: float = DEFAULT_SAME_TARGET_TITLE_THRESHOLD
    title_threshold: float = DEFAULT_TITLE_THRESHOLD
    content_threshold: float = DEFAULT_CONTENT_THRESHOLD
    already_present_threshold: float = DEFAULT_ALREADY_PRESENT_THRESHOLD
    watch_interval: int = DEFAULT_WATCH_INTERVAL
    watch_cooldown: int = DEFAULT_WATCH_COOLDOWN


def load_config() -> LinterConfig:
    """Read the contextLinter.* settings, falling back to defaults.

    CONTEXTLINTER_MODEL overrides the configured model.
    """
    model = os.environ.get("CONTEXTLINTER_MODEL") or get_setting(
        "contextLinter.model", DEFAULT_MODEL
    )
    return LinterConfig(
        model=str(model),
        analysis_concurrency=max(
            1,
            get_int_setting(
                "contextLinter.analysisConcurrency", DEFAULT_ANALYSIS_CONCURRENCY
            ),
        ),
        min_confidence=get_float_setting(
            "contextLinter.minConfidence", DEFAULT_MIN_CONFIDENCE
        ),
        same_target_title_threshold=get_float_setting(
            "contextLinter.dedup.sameTargetTitleThreshold",
            DEFAULT_SAME_TARGET_TITLE_THRESHOLD,
        ),
        title_threshold=get_float_setting(
            "contextLinter.dedup.titleThreshold", DEFAULT_TITLE_THRESHOLD
        ),
        content_threshold=get_float_setting(
            "contextLinter.dedup.contentThreshold", DEFAULT_CONTENT_THRESHOLD
        ),
        already_present_threshold=get_float_setting(
            "contextLinter.alreadyPresentThreshold", DEFAULT_ALREADY_PRESENT_THRESHOLD
        ),
        watch_interval=max(
            1, get_int_setting("contextLinter.watch.interval", DEFAULT_WATCH_INTERVAL)
        ),
        watch_cooldown=max(
            0, get_int_setting("contextLinter.watch.cooldown", DEFAULT_WATCH_COOLDOWN)
        ),
    )
