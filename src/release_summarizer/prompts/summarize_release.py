"""Prompt templates and the tool definition for release summarization.

The model sees:
1. A system prompt describing the task and the one tool it may use
2. A user message with the repository, the release name and its notes

Release notes usually reference issues and pull requests by number
("Fixes #7"). The notes alone rarely say what changed for users, so the
model is allowed to look those items up before writing the summary.
"""

from __future__ import annotations

import json
from typing import Any

from release_summarizer.schemas import IssueOrPRDetail, Release, RepositoryIdentifier

DETAIL_TOOL_NAME = "get_issue_or_pull_request"

# Notes beyond this are cut; the tail of huge changelogs is mostly contributor lists
MAX_NOTES_CHARS = 20_000
MAX_DETAIL_BODY_CHARS = 4_000

# ---------------------------------------------------------------------------
# System Prompt
# ---------------------------------------------------------------------------

SYSTEM_PROMPT = """You are a release notes summarizer. You receive the name and the
notes of a newly published release of a GitHub repository and write a short,
accurate summary for the people who use the project.

## Tool
You can call `get_issue_or_pull_request` with the number of an issue or pull
request from the same repository to read its title and description. Use it
when the notes only reference an item by number (for example "Fixes #123")
and the item matters for understanding the release. Do not look up more
items than you need. If a lookup returns an error, continue without it.

## Summary
- Start with one sentence describing the release as a whole
- Then list the most important changes: new features, behavior changes,
  breaking changes, notable fixes
- Call out anything users must do when upgrading
- Do not invent changes that are not in the notes or the looked-up items
- Plain text or simple Markdown, at most about 200 words

Answer with the summary only."""


USER_PROMPT_TEMPLATE = """Summarize the latest release of {repository}.

## Release
Name: {release_name}

## Release Notes
{notes}"""


# ---------------------------------------------------------------------------
# Tool definition
# ---------------------------------------------------------------------------

DETAIL_TOOL: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": DETAIL_TOOL_NAME,
        "description": (
            "Fetch the title and description of an issue or pull request "
            "in the repository being summarized, by its number."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "id": {
                    "type": "integer",
                    "description": "Issue or pull request number, without the '#'",
                },
            },
            "required": ["id"],
        },
    },
}

TOOLS: list[dict[str, Any]] = [DETAIL_TOOL]


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def build_system_prompt() -> str:
    return SYSTEM_PROMPT


def build_user_prompt(repository: RepositoryIdentifier, release: Release) -> str:
    """Format the release into the first user message.

    Args:
        repository: The repository the release belongs to
        release: The release to summarize

    Returns:
        The formatted user prompt string
    """
    notes = release.notes_text.strip()
    if not notes:
        notes = "No release notes provided."
    elif len(notes) > MAX_NOTES_CHARS:
        notes = notes[:MAX_NOTES_CHARS] + "\n\n[notes truncated]"

    return USER_PROMPT_TEMPLATE.format(
        repository=repository,
        release_name=release.name,
        notes=notes,
    )


def format_detail_result(detail: IssueOrPRDetail) -> str:
    """Serialize a looked-up issue or pull request as a tool result."""
    body = detail.body_text
    if len(body) > MAX_DETAIL_BODY_CHARS:
        body = body[:MAX_DETAIL_BODY_CHARS] + " [truncated]"
    return json.dumps(
        {
            "id": detail.id,
            "kind": detail.kind.value,
            "title": detail.title,
            "body": body,
        }
    )


def format_error_result(error: str, detail_id: int | None = None, message: str = "") -> str:
    """Serialize a failed lookup so the model can continue without it."""
    payload: dict[str, Any] = {"error": error}
    if detail_id is not None:
        payload["id"] = detail_id
    if message:
        payload["message"] = message
    return json.dumps(payload)
