"""Tests for the GitHub client.

Uses httpx.MockTransport so no request leaves the process.

Run with: pytest tests/test_github.py -v
"""

from __future__ import annotations

import httpx
import pytest

from release_summarizer.errors import FetchFailed, NotFound, Unavailable
from release_summarizer.github import GitHubClient, MockGitHubClient
from release_summarizer.schemas import DetailKind, IssueOrPRDetail, Release

RELEASE_JSON = {"id": 42, "name": "v1.0", "tag_name": "v1.0.0", "body": "Fixes #7"}


def make_client(handler, token: str | None = None) -> GitHubClient:
    http = httpx.AsyncClient(
        base_url=GitHubClient.BASE_URL,
        transport=httpx.MockTransport(handler),
    )
    return GitHubClient(token=token, http_client=http)


class TestGetLatestRelease:
    @pytest.mark.asyncio
    async def test_parses_release(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=RELEASE_JSON)

        release = await make_client(handler).get_latest_release("octo", "demo")

        assert release == Release(id=42, name="v1.0", notes_text="Fixes #7")
        assert seen[0].url.path == "/repos/octo/demo/releases/latest"
        assert "authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_falls_back_to_tag_name_and_empty_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"id": 3, "name": "", "tag_name": "v3", "body": None})

        release = await make_client(handler).get_latest_release("octo", "demo")
        assert release.name == "v3"
        assert release.notes_text == ""

    @pytest.mark.asyncio
    async def test_sends_bearer_token(self) -> None:
        headers: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            headers.append(request.headers.get("authorization", ""))
            return httpx.Response(200, json=RELEASE_JSON)

        client = make_client(handler)
        await client.with_api_token("ghp_repo").get_latest_release("octo", "demo")
        await client.get_latest_release("octo", "demo")

        assert headers == ["Bearer ghp_repo", ""]

    @pytest.mark.asyncio
    async def test_404_is_not_found(self) -> None:
        client = make_client(lambda request: httpx.Response(404, json={"message": "Not Found"}))
        with pytest.raises(NotFound):
            await client.get_latest_release("octo", "demo")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [403, 429, 500, 503])
    async def test_server_errors_and_rate_limits_are_unavailable(self, status_code: int) -> None:
        client = make_client(lambda request: httpx.Response(status_code))
        with pytest.raises(Unavailable):
            await client.get_latest_release("octo", "demo")

    @pytest.mark.asyncio
    async def test_other_client_errors_are_fetch_failed(self) -> None:
        client = make_client(lambda request: httpx.Response(401))
        with pytest.raises(FetchFailed) as exc_info:
            await client.get_latest_release("octo", "demo")
        assert not isinstance(exc_info.value, (NotFound, Unavailable))
        assert exc_info.value.repository == "octo/demo"

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(Unavailable):
            await make_client(handler).get_latest_release("octo", "demo")


class TestGetDetail:
    @pytest.mark.asyncio
    async def test_issue(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/repos/octo/demo/issues/7"
            return httpx.Response(200, json={"number": 7, "title": "Crash", "body": "Stack trace"})

        detail = await make_client(handler).get_detail("octo", "demo", 7)
        assert detail == IssueOrPRDetail(id=7, title="Crash", body_text="Stack trace", kind=DetailKind.ISSUE)

    @pytest.mark.asyncio
    async def test_pull_request(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"number": 8, "title": "Fix crash", "body": None, "pull_request": {"url": "..."}},
            )

        detail = await make_client(handler).get_detail("octo", "demo", 8)
        assert detail.kind == DetailKind.PULL_REQUEST
        assert detail.body_text == ""


class TestMockGitHubClient:
    @pytest.mark.asyncio
    async def test_serves_data_and_records_token(self) -> None:
        client = MockGitHubClient(releases={"octo/demo": Release(id=1, name="v1")})
        await client.with_api_token("ghp_x").get_latest_release("octo", "demo")
        assert client.calls == [("get_latest_release", "octo/demo", "ghp_x")]

    @pytest.mark.asyncio
    async def test_missing_data_is_not_found(self) -> None:
        with pytest.raises(NotFound):
            await MockGitHubClient().get_detail("octo", "demo", 1)
