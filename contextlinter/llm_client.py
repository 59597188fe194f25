#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Thin wrapper around the `claude -p` CLI.

Prompts are piped on stdin (no argument length limits) and the CLI runs
from a scratch directory so these calls do not show up in the user's own
project session history.
"""

import asyncio
import hashlib
import json
import os
import re
import shutil
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from contextlinter.debug_logger import get_logger
from contextlinter.prompts import PROMPT_TEMPLATES

MODEL_MAP = {
    "opus": "claude-opus-4-6",
    "sonnet": "claude-sonnet-4-5-20250929",
    "haiku": "claude-haiku-4-5-20251001",
}
DEFAULT_MODEL = "sonnet"

# Timeouts (seconds)
CLI_TIMEOUT = 120
COMBINED_TIMEOUT = 180
SUGGEST_TIMEOUT = 300

SANDBOX_DIR = Path(tempfile.gettempdir()) / "contextlinter"

# Set in the child environment so hooks do not re-enter contextlinter
RECURSION_GUARD_ENV = "CONTEXTLINTER_ACTIVE"

FENCE_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?\s*```")
ARRAY_RE = re.compile(r"\[[\s\S]*\]")
OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class LlmError(RuntimeError):
    """Raised when the claude CLI is missing, fails or times out."""


@dataclass
class LlmCallResult:
    raw: str
    parsed: Any
    duration_ms: int
    estimated_tokens: int


def resolve_model(model: Optional[str]) -> str:
    """Map a short model name to a full model id. Unknown names pass through."""
    name = model or DEFAULT_MODEL
    return MODEL_MAP.get(name, name)


def check_cli_available() -> bool:
    """Return True if the `claude` CLI is on PATH."""
    return shutil.which("claude") is not None


def fill_template(template: str, values: Dict[str, str]) -> str:
    """Replace every {{key}} placeholder with its value."""
    result = template
    for key, value in values.items():
        result = result.replace("{{" + key + "}}", value)
    return result


def prompt_version(name: str) -> str:
    """Short content hash of a prompt template, used to invalidate caches."""
    template = PROMPT_TEMPLATES[name]
    return hashlib.sha256(template.encode("utf-8")).hexdigest()[:12]


def extract_json_from_text(text: str) -> Any:
    """Pull a JSON value out of model output that may be wrapped in prose or fences.

    Tries, in order: the whole text, the first fenced block, the widest
    [...] span and the widest {...} span.

    Returns:
        The parsed value, or None if nothing parses.
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    candidates = []
    fence = FENCE_RE.search(text)
    if fence:
        candidates.append(fence.group(1))
    for pattern in (ARRAY_RE, OBJECT_RE):
        m = pattern.search(text)
        if m:
            candidates.append(m.group(0))

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    return None


def parse_cli_response(raw: str) -> Any:
    """Parse `claude --output-format json` output, reading its "result" field."""
    trimmed = raw.strip()
    try:
        envelope = json.loads(trimmed)
    except json.JSONDecodeError:
        envelope = None
    if isinstance(envelope, dict) and "result" in envelope:
        return extract_json_from_text(str(envelope["result"]))
    return extract_json_from_text(trimmed)


def call_claude(prompt: str, model: Optional[str] = None, timeout: int = CLI_TIMEOUT) -> LlmCallResult:
    """Run one prompt through the claude CLI.

    Args:
        prompt: Full prompt text, sent on stdin
        model: Short model name (opus/sonnet/haiku) or a full model id
        timeout: Seconds before the call is abandoned

    Returns:
        LlmCallResult with the raw stdout and the parsed JSON payload.

    Raises:
        LlmError: If the CLI cannot be run, exits non-zero or times out.
    """
    model_id = resolve_model(model)
    SANDBOX_DIR.mkdir(parents=True, exist_ok=True)

    env = os.environ.copy()
    env[RECURSION_GUARD_ENV] = "1"

    start = time.time()
    try:
        result = subprocess.run(
            ["claude", "-p", "--model", model_id, "--output-format", "json"],
            input=prompt,
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
            cwd=SANDBOX_DIR,
        )
    except subprocess.TimeoutExpired as e:
        _log_failure(model_id, prompt, start, f"timed out after {timeout}s")
        raise LlmError(f"Claude CLI timed out after {timeout}s") from e
    except (FileNotFoundError, OSError) as e:
        _log_failure(model_id, prompt, start, str(e))
        raise LlmError(f"Failed to spawn claude: {e}") from e

    if result.returncode != 0:
        detail = f" - {result.stderr.strip()}" if result.stderr.strip() else ""
        message = f"Claude CLI exited with code {result.returncode}{detail}"
        _log_failure(model_id, prompt, start, message)
        raise LlmError(message)

    duration_ms = int((time.time() - start) * 1000)
    get_logger().llm_call(model_id, len(prompt), duration_ms)

    raw = result.stdout
    return LlmCallResult(
        raw=raw,
        parsed=parse_cli_response(raw),
        duration_ms=duration_ms,
        estimated_tokens=-(-len(prompt) // 4) + -(-len(raw) // 4),
    )


async def call_claude_async(
    prompt: str, model: Optional[str] = None, timeout: int = CLI_TIMEOUT
) -> LlmCallResult:
    """call_claude on a worker thread so several calls can be in flight at once."""
    return await asyncio.to_thread(call_claude, prompt, model, timeout)


def _log_failure(model_id: str, prompt: str, start: float, error: str) -> None:
    get_logger().llm_call(model_id, len(prompt), (time.time() - start) * 1000, error=error)
