"""Pydantic models shared by the watcher, the session, the store and the API.

These schemas are the single source of truth for the data that flows
between components:
- Values fetched from GitHub (Release, IssueOrPRDetail)
- Durable facts recorded per repository (ReleaseSummary)
- Request/response bodies of the HTTP API

Key design decisions:
- Value objects are frozen so they can be shared between concurrent checks
- RepositoryIdentifier doubles as the aggregate key and the scheduler key,
  so its string form ("owner/repo") is stable and round-trips via parse()
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class DetailKind(str, Enum):
    """What kind of GitHub item an IssueOrPRDetail describes."""

    ISSUE = "issue"
    PULL_REQUEST = "pull_request"


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


class RepositoryIdentifier(BaseModel):
    """Identifies one tracked GitHub repository.

    Attributes:
        owner: User or organization that owns the repository
        repo: Repository name
    """

    model_config = ConfigDict(frozen=True)

    owner: str = Field(..., min_length=1, description="Repository owner")
    repo: str = Field(..., min_length=1, description="Repository name")

    @field_validator("owner", "repo")
    @classmethod
    def check_path_segment(cls, value: str) -> str:
        value = value.strip()
        if not value or "/" in value or value in (".", ".."):
            raise ValueError(f"'{value}' is not a valid owner or repository name")
        return value

    @field_validator("owner")
    @classmethod
    def check_owner(cls, value: str) -> str:
        # GitHub logins never contain "_"; the file store relies on it
        if "_" in value:
            raise ValueError(f"'{value}' is not a valid GitHub owner")
        return value

    @classmethod
    def parse(cls, value: str) -> RepositoryIdentifier:
        """Build an identifier from its "owner/repo" string form.

        Raises:
            ValueError: If the value is not exactly two non-empty parts
        """
        parts = value.strip().split("/")
        if len(parts) != 2 or not all(parts):
            raise ValueError(f"Expected 'owner/repo', got '{value}'")
        return cls(owner=parts[0], repo=parts[1])

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}"


# ---------------------------------------------------------------------------
# Fetched from GitHub
# ---------------------------------------------------------------------------


class Release(BaseModel):
    """The latest published release of a repository, fetched on every check."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="GitHub release id")
    name: str = Field(..., description="Release name (tag name if unnamed)")
    notes_text: str = Field("", description="Release notes body")


class IssueOrPRDetail(BaseModel):
    """An issue or pull request looked up on behalf of the LLM."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Issue or pull request number")
    title: str
    body_text: str = ""
    kind: DetailKind = DetailKind.ISSUE


# ---------------------------------------------------------------------------
# Durable facts
# ---------------------------------------------------------------------------


class ReleaseSummary(BaseModel):
    """A finished summary of one release. Immutable once recorded.

    Attributes:
        release_name: Name of the summarized release
        release_id: GitHub id of the summarized release
        completed_at: When the summarization session finished
        text: The summary produced by the LLM
    """

    model_config = ConfigDict(frozen=True)

    release_name: str
    release_id: int
    completed_at: datetime
    text: str = Field(..., min_length=1)


class LatestSeenRelease(BaseModel):
    """Read-only projection used by the watcher at the start of a check."""

    model_config = ConfigDict(frozen=True)

    release_id: int | None = None
    api_token: str | None = None


# ---------------------------------------------------------------------------
# API Schemas
# ---------------------------------------------------------------------------


class TrackRepositoryRequest(BaseModel):
    """Body of POST /repositories."""

    owner: str = Field(..., min_length=1)
    repo: str = Field(..., min_length=1)
    github_api_token: str | None = Field(
        None, description="Token used for this repository's GitHub calls"
    )

    def identifier(self) -> RepositoryIdentifier:
        return RepositoryIdentifier(owner=self.owner, repo=self.repo)


class TrackRepositoryResponse(BaseModel):
    repository: str
    created: bool


class SummaryResponse(BaseModel):
    """Body of POST /repositories/{owner}/{repo}/summarize-now."""

    repository: str
    release_id: int
    release_name: str
    text: str
