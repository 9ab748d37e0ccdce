"""GitHub API client for release and issue/PR lookups.

Two reads are needed:
- GET /repos/{owner}/{repo}/releases/latest on every check
- GET /repos/{owner}/{repo}/issues/{number} whenever the LLM asks for the
  detail behind a "#123" in the release notes (GitHub serves pull requests
  through the issues endpoint as well)

Design notes:
- Uses one long-lived httpx.AsyncClient shared by all repository checks;
  with_api_token() returns a view that sends a different Authorization
  header over the same connection pool
- Every request carries a timeout
- HTTP errors are translated into NotFound / Unavailable / FetchFailed so
  callers never deal with httpx exceptions
- Uses a Protocol so the watcher and session don't depend on the concrete
  implementation (makes testing with fakes easy)

GitHub API docs: https://docs.github.com/en/rest
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from release_summarizer.errors import FetchFailed, NotFound, Unavailable
from release_summarizer.schemas import DetailKind, IssueOrPRDetail, Release

# ---------------------------------------------------------------------------
# Protocol (Interface)
# ---------------------------------------------------------------------------


class ReleaseFetcher(Protocol):
    """Interface for fetching release metadata from a repository host."""

    async def get_latest_release(self, owner: str, repo: str) -> Release:
        """Fetch the latest published release.

        Raises:
            NotFound: If the repository has no releases or does not exist
            Unavailable: If the host could not be reached
        """
        ...

    async def get_detail(self, owner: str, repo: str, detail_id: int) -> IssueOrPRDetail:
        """Fetch an issue or pull request by number.

        Raises:
            NotFound: If no such issue or pull request exists
            Unavailable: If the host could not be reached
        """
        ...

    def with_api_token(self, token: str) -> ReleaseFetcher:
        """Return a fetcher that authenticates with the given token."""
        ...


# ---------------------------------------------------------------------------
# Concrete Implementation
# ---------------------------------------------------------------------------


class GitHubClient:
    """Real GitHub API client using httpx.

    Usage:
        client = GitHubClient(token="ghp_...")
        release = await client.get_latest_release("octo", "demo")
        await client.aclose()
    """

    BASE_URL = "https://api.github.com"

    def __init__(
        self,
        token: str | None = None,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the GitHub client.

        Args:
            token: GitHub token. Requests are unauthenticated when None.
            timeout: Per-request timeout in seconds.
            http_client: Shared httpx client. One is created when omitted.
        """
        self._token = token
        self._timeout = timeout
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=self.BASE_URL,
            timeout=timeout,
        )

    @property
    def authenticated(self) -> bool:
        return bool(self._token)

    def with_api_token(self, token: str) -> GitHubClient:
        """Return a client for the same connection pool with another token."""
        return GitHubClient(token=token, timeout=self._timeout, http_client=self._client)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_latest_release(self, owner: str, repo: str) -> Release:
        data = await self._get_json(f"/repos/{owner}/{repo}/releases/latest", owner, repo)
        return Release(
            id=data["id"],
            name=data.get("name") or data.get("tag_name") or str(data["id"]),
            notes_text=data.get("body") or "",
        )

    async def get_detail(self, owner: str, repo: str, detail_id: int) -> IssueOrPRDetail:
        data = await self._get_json(f"/repos/{owner}/{repo}/issues/{detail_id}", owner, repo)
        kind = DetailKind.PULL_REQUEST if "pull_request" in data else DetailKind.ISSUE
        return IssueOrPRDetail(
            id=data.get("number", detail_id),
            title=data.get("title") or "",
            body_text=data.get("body") or "",
            kind=kind,
        )

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _get_json(self, path: str, owner: str, repo: str) -> dict[str, Any]:
        """GET a path and translate transport and status errors.

        Raises:
            NotFound: On HTTP 404
            Unavailable: On timeouts, connection errors, rate limiting, 5xx
            FetchFailed: On any other error status
        """
        repository = f"{owner}/{repo}"
        try:
            resp = await self._client.get(path, headers=self._headers(), timeout=self._timeout)
        except httpx.TimeoutException as exc:
            raise Unavailable(f"GitHub timed out on {path}", repository=repository) from exc
        except httpx.TransportError as exc:
            raise Unavailable(f"GitHub unreachable on {path}: {exc}", repository=repository) from exc

        if resp.status_code == 404:
            raise NotFound(f"{path} not found", repository=repository)
        if resp.status_code in (403, 429) or resp.status_code >= 500:
            raise Unavailable(
                f"GitHub returned {resp.status_code} for {path}", repository=repository
            )
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise FetchFailed(
                f"GitHub returned {resp.status_code} for {path}", repository=repository
            ) from exc
        return resp.json()


# ---------------------------------------------------------------------------
# Mock Implementation (for testing)
# ---------------------------------------------------------------------------


class MockGitHubClient:
    """Fetcher that serves predefined data without touching GitHub.

    Use this in tests and local development.

    Usage:
        client = MockGitHubClient(
            releases={"octo/demo": Release(id=42, name="v1.0", notes_text="...")},
            details={"octo/demo": {7: IssueOrPRDetail(id=7, title="Crash")}},
        )
    """

    def __init__(
        self,
        releases: dict[str, Release | Exception] | None = None,
        details: dict[str, dict[int, IssueOrPRDetail | Exception]] | None = None,
        token: str | None = None,
    ) -> None:
        self.releases = releases if releases is not None else {}
        self.details = details if details is not None else {}
        self.token = token
        # (method, repository, token) for every call, shared with token views
        self.calls: list[tuple[str, str, str | None]] = []

    def with_api_token(self, token: str) -> MockGitHubClient:
        view = MockGitHubClient(self.releases, self.details, token=token)
        view.calls = self.calls
        return view

    async def get_latest_release(self, owner: str, repo: str) -> Release:
        key = f"{owner}/{repo}"
        self.calls.append(("get_latest_release", key, self.token))
        value = self.releases.get(key)
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise NotFound(f"No release for {key}", repository=key)
        return value

    async def get_detail(self, owner: str, repo: str, detail_id: int) -> IssueOrPRDetail:
        key = f"{owner}/{repo}"
        self.calls.append(("get_detail", key, self.token))
        value = self.details.get(key, {}).get(detail_id)
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise NotFound(f"No issue or pull request #{detail_id} in {key}", repository=key)
        return value
