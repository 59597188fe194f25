#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Data models for contextlinter.

Contains the dataclasses and enums shared by the rules reader, the
suggestion builder, the applier and the pipeline. Persisted types
serialize to camelCase JSON (the same keys the LLM is asked to emit).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union


# =============================================================================
# Constants
# =============================================================================

DEFAULT_TARGET_FILE = "CLAUDE.md"
AUDIT_VERSION = 1

ContentValue = Union[str, List[str], None]


# =============================================================================
# Enums
# =============================================================================


class SuggestionType(str, Enum):
    """Kind of edit proposed for a rules file."""
    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"
    CONSOLIDATE = "consolidate"
    SPLIT = "split"

    @classmethod
    def parse(cls, value: Any) -> "SuggestionType":
        """Whitelist an untrusted value, defaulting to ADD."""
        try:
            return cls(value)
        except ValueError:
            return cls.ADD


class DiffType(str, Enum):
    """Structural shape of a SuggestionDiff."""
    ADD = "add"
    REPLACE = "replace"
    REMOVE = "remove"


class Priority(str, Enum):
    """Suggestion priority."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort key: high first."""
        return _PRIORITY_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> "Priority":
        """Whitelist an untrusted value, defaulting to MEDIUM."""
        try:
            return cls(value)
        except ValueError:
            return cls.MEDIUM


_PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    APPLIED = "applied"


class RuleScope(str, Enum):
    """Where a rules file lives."""
    GLOBAL = "global"
    PROJECT = "project"
    PROJECT_LOCAL = "project_local"
    SUBDIRECTORY = "subdirectory"


class RuleFormat(str, Enum):
    HEADING_SECTION = "heading_section"
    BULLET_POINT = "bullet_point"
    PARAGRAPH = "paragraph"
    COMMAND = "command"
    EMPHATIC = "emphatic"


class RuleEmphasis(str, Enum):
    NORMAL = "normal"
    IMPORTANT = "important"
    NEGATIVE = "negative"


class InsightCategory(str, Enum):
    """What kind of friction an insight describes."""
    MISSING_PROJECT_KNOWLEDGE = "missing_project_knowledge"
    REPEATED_CORRECTION = "repeated_correction"
    REJECTED_APPROACH = "rejected_approach"
    INTENT_CLARIFICATION = "intent_clarification"
    CONVENTION_ESTABLISHMENT = "convention_establishment"
    TOOL_COMMAND_CORRECTION = "tool_command_correction"
    TOOL_USAGE_PATTERN = "tool_usage_pattern"

    @classmethod
    def parse(cls, value: Any) -> "InsightCategory":
        try:
            return cls(value)
        except ValueError:
            return cls.MISSING_PROJECT_KNOWLEDGE


class ActionHint(str, Enum):
    ADD_TO_RULES = "add_to_rules"
    UPDATE_RULES = "update_rules"
    ADD_TO_GLOBAL_RULES = "add_to_global_rules"
    PROMPT_IMPROVEMENT = "prompt_improvement"
    UNCLEAR = "unclear"

    @classmethod
    def parse(cls, value: Any) -> "ActionHint":
        try:
            return cls(value)
        except ValueError:
            return cls.UNCLEAR


class WriteAction(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"


class ReviewAction(str, Enum):
    """User decision for one suggestion during review."""
    ACCEPT = "accept"
    REJECT = "reject"
    EDIT = "edit"
    SKIP = "skip"
    QUIT = "quit"


# =============================================================================
# Serialization helpers
# =============================================================================


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def to_json_value(value: Any) -> Any:
    """Convert dataclasses/enums/lists into JSON-ready values.

    Dataclass field names become camelCase; plain dict keys are kept.
    """
    if is_dataclass(value) and not isinstance(value, type):
        return {_camel(f.name): to_json_value(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    if isinstance(value, dict):
        return {k: to_json_value(v) for k, v in value.items()}
    return value


class JsonModel:
    """Mixin giving dataclasses a camelCase to_dict()."""

    def to_dict(self) -> Dict[str, Any]:
        return to_json_value(self)


# =============================================================================
# Abstract Base Classes
# =============================================================================


class FormattableResult(ABC):
    """Base class for all result types that can be formatted for display."""

    @abstractmethod
    def format(self) -> str:
        """Format the result for display.

        Returns:
            Human-readable string representation of the result.
        """
        pass


# =============================================================================
# Rules model
# =============================================================================


@dataclass
class ImportReference(JsonModel):
    """An @path reference found in a rules file."""
    path: str
    resolved_path: Optional[str]
    line_number: int

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ImportReference":
        return cls(path=d["path"], resolved_path=d.get("resolvedPath"), line_number=d.get("lineNumber", 0))


@dataclass
class ParsedRule(JsonModel):
    """A single rule (bullet block or paragraph) extracted from a rules file."""
    id: str
    text: str
    section: Optional[str]
    section_hierarchy: List[str]
    source_file: str
    source_scope: RuleScope
    line_start: int  # 1-based
    line_end: int
    format: RuleFormat
    emphasis: RuleEmphasis
    imports: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ParsedRule":
        return cls(
            id=d["id"],
            text=d["text"],
            section=d.get("section"),
            section_hierarchy=list(d.get("sectionHierarchy", [])),
            source_file=d["sourceFile"],
            source_scope=RuleScope(d["sourceScope"]),
            line_start=d["lineStart"],
            line_end=d["lineEnd"],
            format=RuleFormat(d["format"]),
            emphasis=RuleEmphasis(d["emphasis"]),
            imports=list(d.get("imports", [])),
        )


@dataclass
class RulesFile(JsonModel):
    """A parsed markdown rules document."""
    path: str  # absolute
    scope: RuleScope
    relative_path: str
    content: str
    rules: List[ParsedRule] = field(default_factory=list)
    imports: List[ImportReference] = field(default_factory=list)
    last_modified: float = 0.0
    size_bytes: int = 0

    @property
    def line_count(self) -> int:
        return len(self.content.split("\n"))

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RulesFile":
        return cls(
            path=d["path"],
            scope=RuleScope(d["scope"]),
            relative_path=d["relativePath"],
            content=d.get("content", ""),
            rules=[ParsedRule.from_dict(r) for r in d.get("rules", [])],
            imports=[ImportReference.from_dict(i) for i in d.get("imports", [])],
            last_modified=d.get("lastModified", 0.0),
            size_bytes=d.get("sizeBytes", 0),
        )


@dataclass
class RulesStats(JsonModel):
    """Summary counts over a rules snapshot."""
    total_files: int = 0
    total_rules: int = 0
    by_scope: Dict[str, int] = field(default_factory=lambda: {s.value: 0 for s in RuleScope})
    by_format: Dict[str, int] = field(default_factory=lambda: {f.value: 0 for f in RuleFormat})
    total_lines: int = 0
    total_size_bytes: int = 0
    has_global_rules: bool = False
    has_local_rules: bool = False
    has_modular_rules: bool = False
    import_count: int = 0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RulesStats":
        return cls(
            total_files=d.get("totalFiles", 0),
            total_rules=d.get("totalRules", 0),
            by_scope=dict(d.get("byScope", {})),
            by_format=dict(d.get("byFormat", {})),
            total_lines=d.get("totalLines", 0),
            total_size_bytes=d.get("totalSizeBytes", 0),
            has_global_rules=d.get("hasGlobalRules", False),
            has_local_rules=d.get("hasLocalRules", False),
            has_modular_rules=d.get("hasModularRules", False),
            import_count=d.get("importCount", 0),
        )


@dataclass
class RulesSnapshot(JsonModel):
    """Immutable-for-the-run view of every rules file in a project."""
    project_root: str
    snapshot_at: str
    files: List[RulesFile] = field(default_factory=list)
    all_rules: List[ParsedRule] = field(default_factory=list)
    stats: RulesStats = field(default_factory=RulesStats)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RulesSnapshot":
        return cls(
            project_root=d["projectRoot"],
            snapshot_at=d.get("snapshotAt", ""),
            files=[RulesFile.from_dict(f) for f in d.get("files", [])],
            all_rules=[ParsedRule.from_dict(r) for r in d.get("allRules", [])],
            stats=RulesStats.from_dict(d.get("stats", {})),
        )


# =============================================================================
# Suggestions and diffs
# =============================================================================


@dataclass
class DiffLine(JsonModel):
    """One line of a diff. line_number is 1-based and set only for real file lines."""
    line_number: Optional[int]
    content: str

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DiffLine":
        return cls(line_number=d.get("lineNumber"), content=d.get("content", ""))


@dataclass
class SuggestionDiff(JsonModel):
    """Structural edit. Either flat removed/added lines or non-empty parts carry content."""
    type: DiffType
    after_line: Optional[int] = None
    in_section: Optional[str] = None
    removed_lines: Optional[List[DiffLine]] = None
    added_lines: Optional[List[DiffLine]] = None
    parts: List["SuggestionDiff"] = field(default_factory=list)
    # An update with no locatable old text that became an end-of-file append
    degraded_to_append: bool = False

    def all_added_lines(self) -> List[DiffLine]:
        """Flat added lines, or the added lines of every part."""
        if self.added_lines:
            return list(self.added_lines)
        return [line for part in self.parts for line in part.added_lines or []]

    def all_removed_lines(self) -> List[DiffLine]:
        if self.removed_lines:
            return list(self.removed_lines)
        return [line for part in self.parts for line in part.removed_lines or []]

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SuggestionDiff":
        def lines(value: Optional[List[Dict[str, Any]]]) -> Optional[List[DiffLine]]:
            if value is None:
                return None
            return [DiffLine.from_dict(line) for line in value]

        return cls(
            type=DiffType(d["type"]),
            after_line=d.get("afterLine"),
            in_section=d.get("inSection"),
            removed_lines=lines(d.get("removedLines")),
            added_lines=lines(d.get("addedLines")),
            parts=[cls.from_dict(p) for p in d.get("parts") or []],
            degraded_to_append=d.get("degradedToAppend", False),
        )


@dataclass
class SuggestionContent:
    """Loosely typed add/remove payload of an LLM suggestion."""
    add: ContentValue = None
    remove: ContentValue = None


@dataclass
class LlmSuggestion:
    """A raw edit proposal after field-by-field normalization."""
    type: SuggestionType
    title: str
    target_file: str = DEFAULT_TARGET_FILE
    target_section: Optional[str] = None
    rationale: str = ""
    priority: Priority = Priority.MEDIUM
    content: SuggestionContent = field(default_factory=SuggestionContent)
    insight_ids: List[str] = field(default_factory=list)
    skipped: bool = False
    skip_reason: Optional[str] = None


@dataclass
class Suggestion(JsonModel):
    """A validated, addressable edit unit."""
    id: str
    type: SuggestionType
    priority: Priority
    confidence: float
    title: str
    rationale: str
    target_file: str
    target_section: Optional[str]
    diff: SuggestionDiff
    source_insight_ids: List[str] = field(default_factory=list)
    source_session_ids: List[str] = field(default_factory=list)
    split_target: Optional[str] = None
    status: SuggestionStatus = SuggestionStatus.PENDING

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Suggestion":
        return cls(
            id=d["id"],
            type=SuggestionType(d["type"]),
            priority=Priority(d["priority"]),
            confidence=float(d.get("confidence", 0.0)),
            title=d.get("title", ""),
            rationale=d.get("rationale", ""),
            target_file=d.get("targetFile", DEFAULT_TARGET_FILE),
            target_section=d.get("targetSection"),
            diff=SuggestionDiff.from_dict(d["diff"]),
            source_insight_ids=list(d.get("sourceInsightIds", [])),
            source_session_ids=list(d.get("sourceSessionIds", [])),
            split_target=d.get("splitTarget"),
            status=SuggestionStatus(d.get("status", "pending")),
        )


@dataclass
class SuggestionStats(JsonModel):
    total: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    by_priority: Dict[str, int] = field(default_factory=dict)
    insights_used: int = 0
    insights_skipped: int = 0
    estimated_rules_after: int = 0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SuggestionStats":
        return cls(
            total=d.get("total", 0),
            by_type=dict(d.get("byType", {})),
            by_priority=dict(d.get("byPriority", {})),
            insights_used=d.get("insightsUsed", 0),
            insights_skipped=d.get("insightsSkipped", 0),
            estimated_rules_after=d.get("estimatedRulesAfter", 0),
        )


@dataclass
class SuggestionSet(JsonModel):
    """A persisted batch of suggestions for one project."""
    project_path: str
    generated_at: str
    suggestions: List[Suggestion]
    stats: SuggestionStats
    cache_key: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SuggestionSet":
        return cls(
            project_path=d.get("projectPath", ""),
            generated_at=d.get("generatedAt", ""),
            suggestions=[Suggestion.from_dict(s) for s in d.get("suggestions", [])],
            stats=SuggestionStats.from_dict(d.get("stats", {})),
            cache_key=d.get("cacheKey"),
        )


@dataclass
class WriteResult(FormattableResult):
    """Outcome of applying one suggestion."""
    success: bool
    action: WriteAction
    file_path: str
    backup_path: Optional[str] = None
    error: Optional[str] = None

    def format(self) -> str:
        if not self.success:
            return self.error or f"Failed to write {self.file_path}"
        verb = "Created" if self.action == WriteAction.CREATED else "Updated"
        return f"{verb} {self.file_path}"


# =============================================================================
# Analysis model
# =============================================================================


@dataclass
class Evidence(JsonModel):
    role: str  # user|assistant
    text: str
    timestamp: Optional[str] = None
    message_index: int = 0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Evidence":
        return cls(
            role=d.get("role", "assistant"),
            text=d.get("text", ""),
            timestamp=d.get("timestamp"),
            message_index=d.get("messageIndex", 0),
        )


@dataclass
class Insight(JsonModel):
    """One finding extracted from a session transcript."""
    id: str
    category: InsightCategory
    confidence: float
    title: str
    description: str
    evidence: List[Evidence] = field(default_factory=list)
    suggested_rule: Optional[str] = None
    action_hint: ActionHint = ActionHint.UNCLEAR
    session_id: str = ""
    project_path: str = ""

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Insight":
        return cls(
            id=d["id"],
            category=InsightCategory.parse(d.get("category")),
            confidence=float(d.get("confidence", 0.5)),
            title=d.get("title", ""),
            description=d.get("description", ""),
            evidence=[Evidence.from_dict(e) for e in d.get("evidence", [])],
            suggested_rule=d.get("suggestedRule"),
            action_hint=ActionHint.parse(d.get("actionHint")),
            session_id=d.get("sessionId", ""),
            project_path=d.get("projectPath", ""),
        )


@dataclass
class AnalysisStats(JsonModel):
    total_messages: int = 0
    user_messages: int = 0
    corrections_detected: int = 0
    insights_generated: int = 0
    analysis_time_ms: int = 0
    tokens_used: Optional[int] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AnalysisStats":
        return cls(
            total_messages=d.get("totalMessages", 0),
            user_messages=d.get("userMessages", 0),
            corrections_detected=d.get("correctionsDetected", 0),
            insights_generated=d.get("insightsGenerated", 0),
            analysis_time_ms=d.get("analysisTimeMs", 0),
            tokens_used=d.get("tokensUsed"),
        )


@dataclass
class AnalysisResult(JsonModel):
    session_id: str
    project_path: str
    analyzed_at: str
    insights: List[Insight] = field(default_factory=list)
    stats: AnalysisStats = field(default_factory=AnalysisStats)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AnalysisResult":
        return cls(
            session_id=d["sessionId"],
            project_path=d.get("projectPath", ""),
            analyzed_at=d.get("analyzedAt", ""),
            insights=[Insight.from_dict(i) for i in d.get("insights", [])],
            stats=AnalysisStats.from_dict(d.get("stats", {})),
        )


@dataclass
class PatternOccurrence(JsonModel):
    session_id: str
    insight_id: str
    timestamp: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PatternOccurrence":
        return cls(
            session_id=d.get("sessionId", ""),
            insight_id=d.get("insightId", ""),
            timestamp=d.get("timestamp"),
        )


@dataclass
class CrossSessionPattern(JsonModel):
    """A recurring finding seen across several sessions."""
    id: str
    category: InsightCategory
    confidence: float
    title: str
    description: str
    occurrences: List[PatternOccurrence] = field(default_factory=list)
    suggested_rule: Optional[str] = None
    action_hint: ActionHint = ActionHint.UNCLEAR
    project_path: str = ""

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CrossSessionPattern":
        return cls(
            id=d["id"],
            category=InsightCategory.parse(d.get("category")),
            confidence=float(d.get("confidence", 0.6)),
            title=d.get("title", ""),
            description=d.get("description", ""),
            occurrences=[PatternOccurrence.from_dict(o) for o in d.get("occurrences", [])],
            suggested_rule=d.get("suggestedRule"),
            action_hint=ActionHint.parse(d.get("actionHint")),
            project_path=d.get("projectPath", ""),
        )


@dataclass
class AuditEntry(JsonModel):
    parsed_at: str
    analyzed_at: Optional[str] = None
    analysis_prompt_version: str = ""
    insight_count: int = 0
    session_mtime: float = 0.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AuditEntry":
        return cls(
            parsed_at=d.get("parsedAt", ""),
            analyzed_at=d.get("analyzedAt"),
            analysis_prompt_version=d.get("analysisPromptVersion", ""),
            insight_count=d.get("insightCount", 0),
            session_mtime=d.get("sessionMtime", 0.0),
        )


@dataclass
class AuditLog(JsonModel):
    """Which sessions were parsed/analyzed, and when cross-session last ran."""
    sessions: Dict[str, AuditEntry] = field(default_factory=dict)
    last_cross_session_at: Optional[str] = None
    version: int = AUDIT_VERSION

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AuditLog":
        return cls(
            sessions={k: AuditEntry.from_dict(v) for k, v in d.get("sessions", {}).items()},
            last_cross_session_at=d.get("lastCrossSessionAt"),
            version=d.get("version", AUDIT_VERSION),
        )


# =============================================================================
# Apply / review model
# =============================================================================


@dataclass
class HistoryEntry(JsonModel):
    """One applied change, as written to history.jsonl."""
    timestamp: str
    action: SuggestionType
    file: str
    section: Optional[str]
    content: str
    previous_content: Optional[str]
    reason: str
    source_insight_ids: List[str] = field(default_factory=list)
    source_session_ids: List[str] = field(default_factory=list)
    confidence: float = 0.0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "HistoryEntry":
        return cls(
            timestamp=d.get("timestamp", ""),
            action=SuggestionType.parse(d.get("action")),
            file=d.get("file", ""),
            section=d.get("section"),
            content=d.get("content", ""),
            previous_content=d.get("previousContent"),
            reason=d.get("reason", ""),
            source_insight_ids=list(d.get("sourceInsightIds", [])),
            source_session_ids=list(d.get("sourceSessionIds", [])),
            confidence=float(d.get("confidence", 0.0)),
        )


@dataclass
class ReviewResult(JsonModel):
    suggestion_id: str
    action: ReviewAction
    edited_content: Optional[str] = None
    applied_at: Optional[str] = None


@dataclass
class ReviewSummary(FormattableResult):
    """Outcome of one review/apply run."""
    started_at: str
    completed_at: str
    project_path: str
    results: List[ReviewResult] = field(default_factory=list)
    files_modified: List[str] = field(default_factory=list)
    files_created: List[str] = field(default_factory=list)
    rules_added: int = 0
    rules_updated: int = 0
    rules_removed: int = 0
    rules_split: int = 0

    @property
    def applied_count(self) -> int:
        return sum(1 for r in self.results if r.applied_at is not None)

    def format(self) -> str:
        if not self.results:
            return "No changes applied."
        parts = []
        if self.rules_added:
            parts.append(f"{self.rules_added} added")
        if self.rules_updated:
            parts.append(f"{self.rules_updated} updated")
        if self.rules_removed:
            parts.append(f"{self.rules_removed} removed")
        if self.rules_split:
            parts.append(f"{self.rules_split} split")
        changes = ", ".join(parts) if parts else "no rule changes"
        files = len(self.files_modified) + len(self.files_created)
        return f"Applied {self.applied_count}/{len(self.results)} suggestions ({changes}) across {files} file(s)."


# =============================================================================
# Session transcripts
# =============================================================================


@dataclass
class ToolUseInfo:
    id: str
    name: str
    input: Any = None


@dataclass
class ToolResultInfo:
    tool_use_id: str
    content: str


@dataclass
class NormalizedMessage:
    """One transcript line reduced to what analysis needs."""
    role: str  # user|assistant|system|unknown
    timestamp: Optional[str]
    text_content: str
    tool_uses: List[ToolUseInfo] = field(default_factory=list)
    tool_results: List[ToolResultInfo] = field(default_factory=list)
    has_thinking: bool = False
    raw_type: str = ""


@dataclass
class SessionFileInfo:
    session_id: str
    file_path: str
    file_size: int
    modified_at: float
    created_at: Optional[float] = None


@dataclass
class SessionInfo:
    """A parsed transcript ready for analysis."""
    session_id: str
    project_path: str
    project_path_encoded: str
    file_path: str
    file_size: int = 0
    message_count: int = 0
    user_message_count: int = 0
    assistant_message_count: int = 0
    tool_use_count: int = 0
    first_timestamp: Optional[str] = None
    last_timestamp: Optional[str] = None
    duration_minutes: Optional[int] = None
    summary: Optional[str] = None
    messages: List[NormalizedMessage] = field(default_factory=list)
