#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Rules file discovery and parsing.

Discovery order:
    1. ~/.claude/CLAUDE.md            global
    2. <root>/CLAUDE.md               project
    3. <root>/CLAUDE.local.md         project_local
    4. <root>/.claude/CLAUDE.md       project
    5. <root>/.claude/rules/*.md      project (sorted)
    6. <sub>/CLAUDE.md to depth 3     subdirectory

Each file is split into rules: top-level bullet blocks (with nested bullets
and continuation lines) and paragraphs, tagged with their heading path.
"""

import hashlib
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from contextlinter.markdown_sections import HEADING_RE
from contextlinter.models import (
    ImportReference,
    ParsedRule,
    RuleEmphasis,
    RuleFormat,
    RulesFile,
    RulesSnapshot,
    RulesStats,
    RuleScope,
)
from contextlinter.paths import PathResolver
from contextlinter.store import cache_rules_snapshot, get_cached_rules_snapshot

IGNORED_DIRS = {
    "node_modules", ".git", ".hg", ".svn", "dist", "build", ".next", ".nuxt",
    ".output", "vendor", "__pycache__", ".venv", "venv", ".contextlinter",
}
MAX_SUBDIR_DEPTH = 3

EMPHASIS_PATTERNS = [
    re.compile(r"\bIMPORTANT\b", re.I),
    re.compile(r"\bMUST\b"),
    re.compile(r"\bNEVER\b", re.I),
    re.compile(r"\bDO NOT\b", re.I),
    re.compile(r"\bDON'T\b", re.I),
    re.compile(r"\bYOU MUST\b", re.I),
    re.compile(r"\bREQUIRED\b", re.I),
    re.compile(r"\bCRITICAL\b", re.I),
]
NEGATIVE_PATTERNS = [
    re.compile(r"\bnever\b", re.I),
    re.compile(r"\bdo not\b", re.I),
    re.compile(r"\bdon't\b", re.I),
    re.compile(r"\bavoid\b", re.I),
]

IMPORT_RE = re.compile(r"(?:^|\s)@([\w./-]+\.\w+)")
CODE_SPAN_RE = re.compile(r"`[^`]+`")
BULLET_RE = re.compile(r"^(\s*)[*-]\s+(.+)$")
LEADING_BULLET_RE = re.compile(r"^[*-]\s+")
FENCE_OPEN_RE = re.compile(r"^(`{3,}|~{3,})")
HRULE_RE = re.compile(r"^[-*_]{3,}\s*$")
EMPHATIC_START_RE = re.compile(r"^(IMPORTANT|CRITICAL|YOU MUST|NEVER)\b", re.I)
COMMAND_START_RE = re.compile(r"^`[^`]+`")


# =============================================================================
# Discovery
# =============================================================================


def _relative_or_absolute(path: Path, project_root: Path) -> str:
    try:
        return str(path.relative_to(project_root)) or str(path)
    except ValueError:
        return str(path)


def _try_add(files: List[RulesFile], path: Path, scope: RuleScope, project_root: Path) -> None:
    try:
        resolved = path.resolve(strict=True)
        if not resolved.is_file():
            return
        st = resolved.stat()
    except OSError:
        return
    if any(f.path == str(resolved) for f in files):
        return
    files.append(RulesFile(
        path=str(resolved),
        scope=scope,
        relative_path=_relative_or_absolute(resolved, project_root),
        content="",
        last_modified=st.st_mtime,
        size_bytes=st.st_size,
    ))


def _discover_subdirs(files: List[RulesFile], project_root: Path, current: Path, depth: int) -> None:
    if depth >= MAX_SUBDIR_DEPTH:
        return
    try:
        entries = sorted(current.iterdir())
    except OSError:
        return
    for entry in entries:
        if entry.name in IGNORED_DIRS or entry.name.startswith("."):
            continue
        if not entry.is_dir():
            continue
        _try_add(files, entry / "CLAUDE.md", RuleScope.SUBDIRECTORY, project_root)
        _discover_subdirs(files, project_root, entry, depth + 1)


def discover_rules_files(project_root: Path) -> List[RulesFile]:
    """Find rules files for a project. Returned entries carry no content yet."""
    project_root = Path(project_root).resolve()
    files: List[RulesFile] = []

    _try_add(files, PathResolver.claude_home() / "CLAUDE.md", RuleScope.GLOBAL, project_root)
    _try_add(files, project_root / "CLAUDE.md", RuleScope.PROJECT, project_root)
    _try_add(files, project_root / "CLAUDE.local.md", RuleScope.PROJECT_LOCAL, project_root)
    _try_add(files, project_root / ".claude" / "CLAUDE.md", RuleScope.PROJECT, project_root)

    rules_dir = project_root / ".claude" / "rules"
    if rules_dir.is_dir():
        for entry in sorted(rules_dir.glob("*.md")):
            _try_add(files, entry, RuleScope.PROJECT, project_root)

    _discover_subdirs(files, project_root, project_root, 0)
    return files


# =============================================================================
# Markdown parsing
# =============================================================================


def _is_closing_fence(line: str, fence: str) -> bool:
    stripped = line.strip()
    char = re.escape(fence[0])
    return re.match(rf"^{char}{{{len(fence)},}}\s*$", stripped) is not None


def detect_format(text: str) -> RuleFormat:
    stripped = LEADING_BULLET_RE.sub("", text, count=1)
    if EMPHATIC_START_RE.match(stripped):
        return RuleFormat.EMPHATIC
    if COMMAND_START_RE.match(stripped):
        return RuleFormat.COMMAND
    if LEADING_BULLET_RE.match(text):
        return RuleFormat.BULLET_POINT
    return RuleFormat.PARAGRAPH


def detect_emphasis(text: str) -> RuleEmphasis:
    if any(p.search(text) for p in EMPHASIS_PATTERNS):
        return RuleEmphasis.IMPORTANT
    if any(p.search(text) for p in NEGATIVE_PATTERNS):
        return RuleEmphasis.NEGATIVE
    return RuleEmphasis.NORMAL


def extract_inline_imports(text: str) -> List[str]:
    """@path/to/file references outside backtick spans."""
    return IMPORT_RE.findall(CODE_SPAN_RE.sub("", text))


def generate_rule_id(text: str, source_file: str, line_start: int) -> str:
    return hashlib.sha256(f"{source_file}:{line_start}:{text}".encode()).hexdigest()[:16]


def _collect_bullet_block(lines: List[str], start: int):
    base_indent = len(BULLET_RE.match(lines[start]).group(1))
    collected = [lines[start].strip()]
    end = start

    for j in range(start + 1, len(lines)):
        line = lines[j]
        if not line.strip() or HEADING_RE.match(line) or FENCE_OPEN_RE.match(line):
            break
        nested = BULLET_RE.match(line)
        if nested:
            if len(nested.group(1)) <= base_indent:
                break
            collected.append(line.strip())
            end = j
            continue
        if line.startswith((" ", "\t")):
            collected.append(line.strip())
            end = j
            continue
        break
    return "\n".join(collected), end


def _collect_paragraph(lines: List[str], start: int):
    collected = []
    end = start
    for j in range(start, len(lines)):
        line = lines[j]
        stripped = line.strip()
        if (
            not stripped
            or HRULE_RE.match(stripped)
            or HEADING_RE.match(line)
            or BULLET_RE.match(line)
            or FENCE_OPEN_RE.match(line)
        ):
            break
        collected.append(stripped)
        end = j
    return "\n".join(collected), end


def _build_rule(
    text: str, source_file: str, scope: RuleScope, stack: List[tuple], line_start: int, line_end: int
) -> ParsedRule:
    return ParsedRule(
        id=generate_rule_id(text, source_file, line_start),
        text=LEADING_BULLET_RE.sub("", text, count=1),
        section=stack[-1][1] if stack else None,
        section_hierarchy=[title for _, title in stack],
        source_file=source_file,
        source_scope=scope,
        line_start=line_start,
        line_end=line_end,
        format=detect_format(text),
        emphasis=detect_emphasis(text),
        imports=extract_inline_imports(text),
    )


def parse_markdown(content: str, source_file: str, scope: RuleScope) -> List[ParsedRule]:
    """Split markdown into rules. Fenced code, HTML comments and horizontal rules are skipped."""
    lines = content.split("\n")
    rules: List[ParsedRule] = []
    stack: List[tuple] = []  # (level, title)
    fence: Optional[str] = None

    i = 0
    while i < len(lines):
        line = lines[i]

        if fence is not None:
            if _is_closing_fence(line, fence):
                fence = None
            i += 1
            continue

        m = FENCE_OPEN_RE.match(line)
        if m:
            fence = m.group(1)
            i += 1
            continue

        stripped = line.strip()
        if not stripped or stripped.startswith("<!--") or HRULE_RE.match(stripped):
            i += 1
            continue

        m = HEADING_RE.match(line)
        if m:
            level = len(m.group(1))
            while stack and stack[-1][0] >= level:
                stack.pop()
            stack.append((level, m.group(2).strip()))
            i += 1
            continue

        if BULLET_RE.match(line):
            text, end = _collect_bullet_block(lines, i)
        else:
            text, end = _collect_paragraph(lines, i)
        if text.strip():
            rules.append(_build_rule(text, source_file, scope, stack, i + 1, end + 1))
        i = end + 1

    return rules


def extract_file_imports(content: str, source_file: str) -> List[ImportReference]:
    """All @imports in a file, outside fenced blocks and code spans."""
    imports = []
    base_dir = Path(source_file).parent
    fence: Optional[str] = None

    for index, line in enumerate(content.split("\n")):
        if fence is not None:
            if _is_closing_fence(line, fence):
                fence = None
            continue
        m = FENCE_OPEN_RE.match(line)
        if m:
            fence = m.group(1)
            continue

        for path in IMPORT_RE.findall(CODE_SPAN_RE.sub("", line)):
            imports.append(ImportReference(
                path=path,
                resolved_path=os.path.normpath(str(base_dir / path)),
                line_number=index + 1,
            ))
    return imports


def parse_rules_file(discovered: RulesFile) -> RulesFile:
    """Read a discovered file and fill in its content, rules and imports."""
    try:
        content = Path(discovered.path).read_text(encoding="utf-8")
    except UnicodeDecodeError:
        content = Path(discovered.path).read_bytes().decode("latin-1")
    except OSError:
        content = ""
    content = content.replace("\r\n", "\n")

    return RulesFile(
        path=discovered.path,
        scope=discovered.scope,
        relative_path=discovered.relative_path,
        content=content,
        rules=parse_markdown(content, discovered.path, discovered.scope),
        imports=extract_file_imports(content, discovered.path),
        last_modified=discovered.last_modified,
        size_bytes=discovered.size_bytes,
    )


# =============================================================================
# Snapshot
# =============================================================================


def compute_stats(files: List[RulesFile], all_rules: List[ParsedRule]) -> RulesStats:
    stats = RulesStats(total_files=len(files), total_rules=len(all_rules))
    for rule in all_rules:
        stats.by_scope[rule.source_scope.value] += 1
        stats.by_format[rule.format.value] += 1

    stats.total_lines = sum(f.line_count for f in files)
    stats.total_size_bytes = sum(f.size_bytes for f in files)
    stats.import_count = sum(len(f.imports) for f in files)
    stats.has_global_rules = stats.by_scope[RuleScope.GLOBAL.value] > 0
    stats.has_local_rules = stats.by_scope[RuleScope.PROJECT_LOCAL.value] > 0
    stats.has_modular_rules = any(f.relative_path.startswith(".claude/rules/") for f in files)
    return stats


def build_rules_snapshot(project_root: Path) -> RulesSnapshot:
    files = [parse_rules_file(f) for f in discover_rules_files(project_root)]
    all_rules = [rule for f in files for rule in f.rules]
    return RulesSnapshot(
        project_root=str(Path(project_root).resolve()),
        snapshot_at=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        files=files,
        all_rules=all_rules,
        stats=compute_stats(files, all_rules),
    )


def load_rules_snapshot(project_root: Path, store_dir: Path) -> RulesSnapshot:
    """Snapshot from the store cache when no rules file changed, else rebuilt."""
    mtimes: Dict[str, float] = {f.path: f.last_modified for f in discover_rules_files(project_root)}
    cached = get_cached_rules_snapshot(store_dir, mtimes)
    if cached is not None:
        return cached

    snapshot = build_rules_snapshot(project_root)
    cache_rules_snapshot(store_dir, snapshot)
    return snapshot
