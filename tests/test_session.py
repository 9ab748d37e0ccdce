"""Tests for the bounded tool-use summarization session.

The LLM is an AsyncMock scripted round by round; GitHub is the in-memory
MockGitHubClient.

Run with: pytest tests/test_session.py -v
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from release_summarizer.errors import SessionAborted, Unavailable, UpstreamUnavailable
from release_summarizer.github import MockGitHubClient
from release_summarizer.llm import FinalAnswer, LLMClient, ToolCall, ToolCalls
from release_summarizer.prompts.summarize_release import DETAIL_TOOL_NAME, TOOLS
from release_summarizer.schemas import DetailKind, IssueOrPRDetail, Release, RepositoryIdentifier
from release_summarizer.session import SummarizationSession

DEMO = RepositoryIdentifier(owner="octo", repo="demo")
RELEASE = Release(id=42, name="v1.0", notes_text="Fixes #7")


def tool_calls(*ids: object, name: str = DETAIL_TOOL_NAME) -> ToolCalls:
    calls = [
        ToolCall(call_id=f"call_{i}", name=name, arguments={"id": detail_id}, raw_arguments="")
        for i, detail_id in enumerate(ids)
    ]
    return ToolCalls(
        calls=calls,
        assistant_message={"role": "assistant", "content": None, "tool_calls": []},
    )


def tool_results(session: SummarizationSession) -> list[dict]:
    return [json.loads(m["content"]) for m in session.transcript if m["role"] == "tool"]


@pytest.fixture
def fetcher() -> MockGitHubClient:
    return MockGitHubClient(
        details={
            "octo/demo": {
                7: IssueOrPRDetail(
                    id=7, title="Crash on empty config", body_text="...", kind=DetailKind.ISSUE
                )
            }
        }
    )


@pytest.fixture
def reasoning() -> AsyncMock:
    return AsyncMock(spec=LLMClient)


def make_session(fetcher, reasoning, max_rounds: int = 4) -> SummarizationSession:
    return SummarizationSession(fetcher, reasoning, DEMO, RELEASE, max_rounds=max_rounds)


class TestSessionStart:
    def test_transcript_is_seeded_with_release(self, fetcher, reasoning) -> None:
        session = make_session(fetcher, reasoning)
        assert [m["role"] for m in session.transcript] == ["system", "user"]
        assert DETAIL_TOOL_NAME in session.transcript[0]["content"]
        assert "v1.0" in session.transcript[1]["content"]
        assert "Fixes #7" in session.transcript[1]["content"]
        assert "octo/demo" in session.transcript[1]["content"]

    def test_rejects_non_positive_round_bound(self, fetcher, reasoning) -> None:
        with pytest.raises(ValueError):
            make_session(fetcher, reasoning, max_rounds=0)


class TestSessionDone:
    @pytest.mark.asyncio
    async def test_immediate_answer(self, fetcher, reasoning) -> None:
        reasoning.run_round.return_value = FinalAnswer(text="  Release v1.0 fixes a crash.  ")
        session = make_session(fetcher, reasoning)

        assert await session.summarize() == "Release v1.0 fixes a crash."
        assert session.rounds == 1
        reasoning.run_round.assert_awaited_once()
        assert reasoning.run_round.call_args.args[1] == TOOLS

    @pytest.mark.asyncio
    async def test_tool_call_then_answer(self, fetcher, reasoning) -> None:
        reasoning.run_round.side_effect = [
            tool_calls(7),
            FinalAnswer(text="Release v1.0 fixes issue #7: crash on empty config."),
        ]
        session = make_session(fetcher, reasoning)

        text = await session.summarize()

        assert text.startswith("Release v1.0 fixes issue #7")
        assert session.rounds == 2
        assert tool_results(session) == [
            {"id": 7, "kind": "issue", "title": "Crash on empty config", "body": "..."}
        ]
        tool_message = next(m for m in session.transcript if m["role"] == "tool")
        assert tool_message["tool_call_id"] == "call_0"

    @pytest.mark.asyncio
    async def test_failed_lookup_is_reported_and_session_continues(self, fetcher, reasoning) -> None:
        fetcher.details["octo/demo"][9] = Unavailable("GitHub down")
        reasoning.run_round.side_effect = [
            tool_calls(404, 9),
            FinalAnswer(text="Release v1.0 fixes a crash."),
        ]
        session = make_session(fetcher, reasoning)

        assert await session.summarize() == "Release v1.0 fixes a crash."
        assert tool_results(session) == [
            {"error": "not_found", "id": 404},
            {"error": "unavailable", "id": 9},
        ]

    @pytest.mark.asyncio
    async def test_invalid_arguments_and_unknown_tools_get_error_results(self, fetcher, reasoning) -> None:
        reasoning.run_round.side_effect = [
            tool_calls("seven"),
            tool_calls(7, name="delete_repository"),
            FinalAnswer(text="Summary."),
        ]
        session = make_session(fetcher, reasoning)

        await session.summarize()

        errors = [r["error"] for r in tool_results(session)]
        assert errors == ["invalid_arguments", "unknown_tool"]
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_hash_prefixed_string_ids_are_accepted(self, fetcher, reasoning) -> None:
        reasoning.run_round.side_effect = [tool_calls("#7"), FinalAnswer(text="Summary.")]
        session = make_session(fetcher, reasoning)
        await session.summarize()
        assert tool_results(session)[0]["id"] == 7

    @pytest.mark.asyncio
    async def test_repeated_lookup_hits_github_once(self, fetcher, reasoning) -> None:
        reasoning.run_round.side_effect = [tool_calls(7), tool_calls(7), FinalAnswer(text="Summary.")]
        session = make_session(fetcher, reasoning)
        await session.summarize()
        assert fetcher.calls == [("get_detail", "octo/demo", None)]


class TestSessionAborted:
    @pytest.mark.asyncio
    async def test_endless_tool_calls_stop_at_round_bound(self, fetcher, reasoning) -> None:
        reasoning.run_round.return_value = tool_calls(7)
        session = make_session(fetcher, reasoning, max_rounds=5)

        with pytest.raises(SessionAborted) as exc_info:
            await session.summarize()

        assert reasoning.run_round.await_count == 5
        assert exc_info.value.rounds == 5
        assert exc_info.value.release_id == 42

    @pytest.mark.asyncio
    async def test_upstream_failure_propagates(self, fetcher, reasoning) -> None:
        reasoning.run_round.side_effect = UpstreamUnavailable("LLM down")
        with pytest.raises(UpstreamUnavailable):
            await make_session(fetcher, reasoning).summarize()

    @pytest.mark.asyncio
    async def test_empty_answer_is_not_a_summary(self, fetcher, reasoning) -> None:
        reasoning.run_round.return_value = FinalAnswer(text="   ")
        with pytest.raises(UpstreamUnavailable):
            await make_session(fetcher, reasoning).summarize()

    @pytest.mark.asyncio
    async def test_session_runs_only_once(self, fetcher, reasoning) -> None:
        reasoning.run_round.return_value = FinalAnswer(text="Summary.")
        session = make_session(fetcher, reasoning)
        await session.summarize()
        with pytest.raises(RuntimeError):
            await session.summarize()
