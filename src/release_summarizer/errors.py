"""Exception taxonomy for the release summarizer.

How each error propagates:
- FetchFailed (NotFound, Unavailable): caught by the watcher, logged, the
  check is retried on the next timer fire
- DetailLookupFailed: never fatal, turned into a tool-result error so the
  LLM can carry on without that detail
- SessionAborted / UpstreamUnavailable: caught by the watcher like
  FetchFailed; propagated to the caller of the manual summarize path
- CommitConflict: a duplicate or stale command; the store treats it as a
  no-op and never surfaces it as a failure
"""

from __future__ import annotations


class ReleaseSummarizerError(Exception):
    """Base class for all errors raised by this package."""


class FetchFailed(ReleaseSummarizerError):
    """GitHub could not be reached or answered with an error."""

    def __init__(self, message: str, *, repository: str | None = None) -> None:
        super().__init__(message)
        self.repository = repository


class NotFound(FetchFailed):
    """The requested repository, release, issue or pull request does not exist."""


class Unavailable(FetchFailed):
    """GitHub timed out, refused the connection or returned a server error."""


class DetailLookupFailed(ReleaseSummarizerError):
    """An issue/PR lookup requested by the LLM failed."""

    def __init__(self, detail_id: int, reason: str) -> None:
        super().__init__(f"Lookup of #{detail_id} failed: {reason}")
        self.detail_id = detail_id
        self.reason = reason


class SessionAborted(ReleaseSummarizerError):
    """The summarization session hit its round limit without a final answer."""

    def __init__(self, repository: str, release_id: int, rounds: int) -> None:
        super().__init__(
            f"Summarization of release {release_id} in {repository} "
            f"aborted after {rounds} rounds"
        )
        self.repository = repository
        self.release_id = release_id
        self.rounds = rounds


class UpstreamUnavailable(ReleaseSummarizerError):
    """The LLM could not be reached after exhausting its retry budget."""


class CommitConflict(ReleaseSummarizerError):
    """A command was rejected because its effect is already recorded."""
