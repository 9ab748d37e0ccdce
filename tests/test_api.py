"""Tests for the HTTP API.

The service runs in memory with a MockGitHubClient and a mocked LLM, so the
lifespan (timer restore, immediate first check) runs without network access.

Run with: pytest tests/test_api.py -v
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from release_summarizer.config import AppConfig
from release_summarizer.errors import NotFound, SessionAborted
from release_summarizer.github import MockGitHubClient
from release_summarizer.llm import FinalAnswer, LLMClient
from release_summarizer.main import create_app
from release_summarizer.schemas import Release, RepositoryIdentifier
from release_summarizer.service import ReleaseSummarizerService

DEMO = RepositoryIdentifier(owner="octo", repo="demo")


@pytest.fixture
def fetcher() -> MockGitHubClient:
    return MockGitHubClient(releases={"octo/demo": Release(id=42, name="v1.0", notes_text="Fixes #7")})


@pytest.fixture
def reasoning() -> AsyncMock:
    mock = AsyncMock(spec=LLMClient)
    mock.run_round.return_value = FinalAnswer(text="Release v1.0 fixes a crash.")
    return mock


@pytest.fixture
def service(fetcher, reasoning) -> ReleaseSummarizerService:
    return ReleaseSummarizerService(AppConfig(), fetcher=fetcher, reasoning=reasoning, in_memory=True)


@pytest.fixture
def client(service):
    with TestClient(create_app(service=service)) as test_client:
        yield test_client


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


class TestTrackRepository:
    def test_track_then_track_again(self, client):
        first = client.post("/repositories", json={"owner": "octo", "repo": "demo"})
        assert first.status_code == 201
        assert first.json() == {"repository": "octo/demo", "created": True}

        second = client.post(
            "/repositories",
            json={"owner": "octo", "repo": "demo", "github_api_token": "ghp_other"},
        )
        assert second.status_code == 201
        assert second.json()["created"] is False

        assert client.get("/repositories").json() == ["octo/demo"]

    def test_invalid_input(self, client):
        response = client.post("/repositories", json={"owner": "octo"})
        assert response.status_code == 422

    def test_invalid_identifier(self, client):
        response = client.post("/repositories", json={"owner": "octo/evil", "repo": "demo"})
        assert response.status_code == 422


class TestSummaries:
    def test_untracked_repository_is_404(self, client):
        response = client.get("/repositories/octo/unknown/summaries")
        assert response.status_code == 404

    def test_lists_recorded_summaries(self, service):
        asyncio.run(
            service.store.record_seen_release_and_maybe_summary(
                DEMO, release_id=42, release_name="v1.0", summary_text="Release v1.0 fixes a crash."
            )
        )

        with TestClient(create_app(service=service)) as client:
            response = client.get("/repositories/octo/demo/summaries")

        assert response.status_code == 200
        body = response.json()
        assert [(s["release_id"], s["release_name"]) for s in body] == [(42, "v1.0")]
        assert body[0]["text"] == "Release v1.0 fixes a crash."


class TestSummarizeNow:
    def test_returns_summary_without_recording(self, client, service):
        response = client.post("/repositories/octo/demo/summarize-now")

        assert response.status_code == 200
        assert response.json() == {
            "repository": "octo/demo",
            "release_id": 42,
            "release_name": "v1.0",
            "text": "Release v1.0 fixes a crash.",
        }
        assert client.get("/repositories").json() == []

    def test_aborted_session_is_502(self, client, reasoning):
        reasoning.run_round.side_effect = SessionAborted("octo/demo", 42, 8)
        response = client.post("/repositories/octo/demo/summarize-now")
        assert response.status_code == 502
        assert response.json()["error"] == "session_aborted"

    def test_missing_release_is_404(self, client, fetcher):
        fetcher.releases["octo/demo"] = NotFound("no releases", repository="octo/demo")
        response = client.post("/repositories/octo/demo/summarize-now")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"
