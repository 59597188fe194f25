#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Turns a parsed session into a compact conversation for the analysis prompt.

Only user/assistant messages are kept, each truncated; long sessions are
sampled by exchange (a user turn plus the assistant turns answering it)
so the prompt keeps whole back-and-forths.
"""

import json
import math
import random
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

from contextlinter.models import NormalizedMessage, SessionInfo

MAX_MESSAGE_LENGTH = 500
MAX_MESSAGES_BEFORE_SAMPLING = 150
SAMPLE_HEAD_EXCHANGES = 10
SAMPLE_TAIL_EXCHANGES = 10
SAMPLE_MIDDLE_EXCHANGES = 10
PROMPT_TEMPLATE_OVERHEAD_CHARS = 3000
CHARS_PER_TOKEN = 4
REPEATED_FILE_THRESHOLD = 5

FILTERED_TYPES = {"file-history-snapshot", "queue-operation", "pr-link", "progress"}
CONVERSATION_ROLES = {"user", "assistant"}
FILE_TOOLS = {"Read", "Write", "Edit"}
FAILURE_MARKERS = ("exit code", "Error", "error:")


@dataclass
class PreparedMessage:
    role: str
    text: str
    tool_names: List[str] = field(default_factory=list)
    timestamp: Optional[str] = None
    original_index: int = 0


@dataclass
class ToolStats:
    count: int = 0
    failures: int = 0


@dataclass
class FileAccess:
    file_path: str
    read_count: int = 0
    write_count: int = 0

    @property
    def total(self) -> int:
        return self.read_count + self.write_count


@dataclass
class ToolUsageSummary:
    total_tool_calls: int = 0
    by_tool: Dict[str, ToolStats] = field(default_factory=dict)
    repeated_file_access: List[FileAccess] = field(default_factory=list)
    bash_failure_rate: float = 0.0


@dataclass
class PreparedSession:
    session_id: str
    project_path: str
    tool_usage_summary: ToolUsageSummary
    messages: List[PreparedMessage]
    total_messages_before_filter: int
    total_messages_after_filter: int
    was_sampled: bool
    estimated_tokens: int


def truncate_text(text: str, limit: int = MAX_MESSAGE_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def prepare_session(session: SessionInfo, rng: Optional[random.Random] = None) -> PreparedSession:
    """Filter, truncate and (for long sessions) sample a session's messages."""
    usage = aggregate_tool_usage(session.messages)

    conversation = [
        m for m in session.messages
        if m.role in CONVERSATION_ROLES and m.raw_type not in FILTERED_TYPES
    ]
    prepared = [
        PreparedMessage(
            role=m.role,
            text=truncate_text(m.text_content),
            tool_names=[t.name for t in m.tool_uses],
            timestamp=m.timestamp,
            original_index=i,
        )
        for i, m in enumerate(conversation)
    ]
    prepared = [m for m in prepared if m.text or m.tool_names]
    after_filter = len(prepared)

    was_sampled = False
    if len(prepared) > MAX_MESSAGES_BEFORE_SAMPLING:
        prepared = sample_messages(prepared, rng)
        was_sampled = True

    return PreparedSession(
        session_id=session.session_id,
        project_path=session.project_path,
        tool_usage_summary=usage,
        messages=prepared,
        total_messages_before_filter=len(session.messages),
        total_messages_after_filter=after_filter,
        was_sampled=was_sampled,
        estimated_tokens=estimate_tokens(prepared, usage),
    )


# =============================================================================
# Sampling
# =============================================================================


def group_into_exchanges(messages: List[PreparedMessage]) -> List[List[PreparedMessage]]:
    """A new exchange starts at each user message that follows an assistant one."""
    exchanges: List[List[PreparedMessage]] = []
    current: List[PreparedMessage] = []
    for msg in messages:
        if current and msg.role == "user" and current[-1].role == "assistant":
            exchanges.append(current)
            current = []
        current.append(msg)
    if current:
        exchanges.append(current)
    return exchanges


def sample_messages(messages: List[PreparedMessage], rng: Optional[random.Random] = None) -> List[PreparedMessage]:
    """Keep the first and last exchanges plus a random handful from the middle."""
    exchanges = group_into_exchanges(messages)
    if len(exchanges) <= SAMPLE_HEAD_EXCHANGES + SAMPLE_TAIL_EXCHANGES + SAMPLE_MIDDLE_EXCHANGES:
        return messages

    head = exchanges[:SAMPLE_HEAD_EXCHANGES]
    tail = exchanges[-SAMPLE_TAIL_EXCHANGES:]
    middle = exchanges[SAMPLE_HEAD_EXCHANGES:-SAMPLE_TAIL_EXCHANGES]

    picked = sorted((rng or random).sample(range(len(middle)), SAMPLE_MIDDLE_EXCHANGES))
    picked_set = set(picked)
    skipped = [ex for i, ex in enumerate(middle) if i not in picked_set]
    marker = PreparedMessage(
        role="assistant",
        text=f"[...skipped {sum(len(ex) for ex in skipped)} messages from {len(skipped)} exchanges...]",
        original_index=-1,
    )

    result: List[PreparedMessage] = [m for ex in head for m in ex]
    result.append(marker)
    result.extend(m for i in picked for m in middle[i])
    result.append(marker)
    result.extend(m for ex in tail for m in ex)
    return result


# =============================================================================
# Tool usage
# =============================================================================


def aggregate_tool_usage(messages: List[NormalizedMessage]) -> ToolUsageSummary:
    """Count tool calls, failures and frequently touched files across a session."""
    summary = ToolUsageSummary()
    files: Dict[str, FileAccess] = {}
    tool_names_by_id: Dict[str, str] = {}
    bash_total = 0
    bash_failures = 0

    for msg in messages:
        for tool in msg.tool_uses:
            summary.total_tool_calls += 1
            summary.by_tool.setdefault(tool.name, ToolStats()).count += 1
            tool_names_by_id[tool.id] = tool.name
            if tool.name == "Bash":
                bash_total += 1
            if tool.name in FILE_TOOLS and isinstance(tool.input, dict):
                path = tool.input.get("file_path")
                if isinstance(path, str) and path:
                    access = files.setdefault(path, FileAccess(file_path=path))
                    if tool.name == "Read":
                        access.read_count += 1
                    else:
                        access.write_count += 1

        # Results usually arrive in the next (user) message, so match by id
        for result in msg.tool_results:
            if not any(marker in result.content for marker in FAILURE_MARKERS):
                continue
            name = tool_names_by_id.get(result.tool_use_id)
            if name is None:
                continue
            summary.by_tool[name].failures += 1
            if name == "Bash":
                bash_failures += 1

    summary.repeated_file_access = sorted(
        (f for f in files.values() if f.total >= REPEATED_FILE_THRESHOLD),
        key=lambda f: -f.total,
    )
    summary.bash_failure_rate = bash_failures / bash_total if bash_total else 0.0
    return summary


def estimate_tokens(messages: List[PreparedMessage], usage: ToolUsageSummary) -> int:
    """Rough prompt size at four characters per token."""
    chars = PROMPT_TEMPLATE_OVERHEAD_CHARS
    chars += len(json.dumps(asdict(usage), separators=(",", ":")))
    for m in messages:
        chars += len(m.text) + len(", ".join(m.tool_names)) + 20
    return math.ceil(chars / CHARS_PER_TOKEN)


# =============================================================================
# Prompt formatting
# =============================================================================


def format_tool_usage_summary(summary: ToolUsageSummary) -> str:
    lines = [f"Total tool calls: {summary.total_tool_calls}"]
    for name, stats in sorted(summary.by_tool.items(), key=lambda item: -item[1].count):
        fail = f" ({stats.failures} failures)" if stats.failures else ""
        lines.append(f"  {name}: {stats.count}{fail}")

    if summary.bash_failure_rate > 0:
        lines.append(f"Bash failure rate: {summary.bash_failure_rate * 100:.0f}%")

    if summary.repeated_file_access:
        lines.append("")
        lines.append("Frequently accessed files:")
        for f in summary.repeated_file_access:
            lines.append(f"  {f.file_path}: {f.read_count} reads, {f.write_count} writes")
    return "\n".join(lines)


def format_conversation(messages: List[PreparedMessage]) -> str:
    blocks = []
    for m in messages:
        tools = f" [tools: {', '.join(m.tool_names)}]" if m.tool_names else ""
        blocks.append(f"[{m.role.upper()}]{tools}\n{m.text}")
    return "\n\n".join(blocks)


def is_session_analyzable(session: SessionInfo, min_messages: int = 2) -> bool:
    """A session needs at least `min_messages` user messages to be worth analyzing."""
    return session.user_message_count >= min_messages
