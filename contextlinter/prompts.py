#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""
Prompt templates sent to the claude CLI.

Placeholders use {{name}} and are filled by llm_client.fill_template().
Editing a template changes its prompt_version() hash, which invalidates
cached analysis results and suggestion sets built with the old text.
"""

_INSIGHT_SCHEMA = """Each insight is a JSON object:
{
  "category": "missing_project_knowledge" | "repeated_correction" | "rejected_approach" |
              "intent_clarification" | "convention_establishment" |
              "tool_command_correction" | "tool_usage_pattern",
  "confidence": 0.0-1.0,
  "title": "short imperative summary",
  "description": "what happened and why it matters for future sessions",
  "evidence": [{"role": "user" | "assistant", "text": "quote", "messageIndex": 0}],
  "suggestedRule": "the rule text that would have prevented this, or null",
  "actionHint": "add_to_rules" | "update_rules" | "add_to_global_rules" |
                "prompt_improvement" | "unclear"
}"""

_SUGGESTION_SCHEMA = """Each suggestion is a JSON object:
{
  "type": "add" | "update" | "remove" | "consolidate" | "split",
  "targetFile": "relative path, e.g. CLAUDE.md or .claude/rules/testing.md",
  "targetSection": "exact heading text of the section to edit, or null",
  "title": "short summary of the change",
  "rationale": "why this change helps, citing the insights",
  "priority": "high" | "medium" | "low",
  "content": {"add": "new rule text", "remove": "existing text to replace or delete"},
  "insightIds": ["ids of the insights this addresses"],
  "skipped": false,
  "skipReason": null
}

Rules for suggestions:
- Keep "add" content to at most 5 lines. Rules are terse bullets, not essays.
- For "update", targetSection must name an existing heading; content.add is the
  full new body of that section.
- For "consolidate", content.remove is a list of the existing rules being merged
  and content.add is the single merged rule.
- For "split", targetSection is the section to move and content.add is the
  destination file path (for example .claude/rules/testing.md).
- If an insight is already covered by the existing rules, emit it with
  "skipped": true and a short skipReason instead of proposing a change."""


SESSION_ANALYSIS = """You are reviewing a transcript of a coding session between a developer and an AI assistant.
Find moments where the assistant lacked project knowledge, was corrected, had an
approach rejected, or where a convention was established that future sessions
should follow.

## Tool usage

{{tool_usage_summary}}

## Conversation

<conversation>
{{conversation}}
</conversation>

""" + _INSIGHT_SCHEMA + """

Respond with a JSON array of insights only. Respond with [] if there is nothing worth keeping.
"""


SESSION_ANALYSIS_AND_SUGGEST = """You are reviewing a transcript of a coding session between a developer and an AI assistant,
together with the project's current rules files (CLAUDE.md and friends).

First extract insights: moments where the assistant lacked project knowledge,
was corrected, had an approach rejected, or where a convention was established.
Then propose concrete edits to the rules files that would prevent the same
friction in future sessions.

## Current rules

{{rules_content}}

## Rules statistics

{{rules_stats}}

## Tool usage

{{tool_usage_summary}}

## Conversation

<conversation>
{{conversation}}
</conversation>

""" + _INSIGHT_SCHEMA + """

""" + _SUGGESTION_SCHEMA + """

Suggestions may reference insights by their position as "insight-0", "insight-1", ...

Respond with a single JSON object: {"insights": [...], "suggestions": [...]}
"""


SUGGESTION_GENERATION = """You maintain the rules files that brief an AI coding assistant about a project.
Turn the insights below into concrete edits of those files.

## Current rules

{{rules_content}}

## Rules statistics

{{rules_stats}}

Sections with many rules are candidates for "split" into a file under .claude/rules/.

## Insights

<insights>
{{insights_json}}
</insights>

{{existing_suggestions_summary}}

Do not repeat a suggestion that is already listed above.

""" + _SUGGESTION_SCHEMA + """

Respond with a JSON array of suggestions only.
"""


CROSS_SESSION_SYNTHESIS = """Below are insights extracted from several coding sessions in the same project.
Find patterns that recur across two or more sessions. A recurring pattern is
stronger evidence than any single insight.

<insights>
{{insights_json}}
</insights>

Each pattern is a JSON object:
{
  "category": one of the insight categories,
  "confidence": 0.0-1.0,
  "title": "short summary",
  "description": "what keeps happening",
  "occurrences": [{"sessionId": "...", "insightId": "..."}],
  "suggestedRule": "rule text or null",
  "actionHint": "add_to_rules" | "update_rules" | "add_to_global_rules" |
                "prompt_improvement" | "unclear"
}

Respond with a JSON array of patterns only. Respond with [] if nothing recurs.
"""


PROMPT_TEMPLATES = {
    "session-analysis": SESSION_ANALYSIS,
    "session-analysis-and-suggest": SESSION_ANALYSIS_AND_SUGGEST,
    "suggestion-generation": SUGGESTION_GENERATION,
    "cross-session-synthesis": CROSS_SESSION_SYNTHESIS,
}
