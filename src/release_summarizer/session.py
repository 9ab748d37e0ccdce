"""Bounded tool-use session that turns release notes into a summary.

The session is a small state machine driven by an external, non-deterministic
decision maker (the LLM):

    Start -> Round -> (FinalAnswer) -> Done
               ^   \\-> (ToolCalls) -> ToolResolution -+
               +-------------------------------------+

- Start: the transcript is seeded with the system prompt and the release
- Round: the transcript is sent to the ReasoningClient
- ToolResolution: every requested issue/PR is looked up through the
  ReleaseFetcher and its result (or an error marker) is appended
- Done: the final answer is the summary
- Aborted: the model is still asking for tools after max_rounds rounds
  (SessionAborted), or the LLM is unreachable (UpstreamUnavailable)

A failed lookup is never fatal: the model gets an error tool result and can
finish without that detail.
"""

from __future__ import annotations

from release_summarizer.errors import (
    DetailLookupFailed,
    FetchFailed,
    NotFound,
    SessionAborted,
    UpstreamUnavailable,
)
from release_summarizer.github import ReleaseFetcher
from release_summarizer.llm import FinalAnswer, Message, ReasoningClient, ToolCall
from release_summarizer.logging_config import get_logger
from release_summarizer.prompts.summarize_release import (
    DETAIL_TOOL_NAME,
    TOOLS,
    build_system_prompt,
    build_user_prompt,
    format_detail_result,
    format_error_result,
)
from release_summarizer.schemas import IssueOrPRDetail, Release, RepositoryIdentifier

logger = get_logger(__name__)

DEFAULT_MAX_ROUNDS = 8


class SummarizationSession:
    """One summarization of one release. Not reusable.

    Usage:
        session = SummarizationSession(fetcher, llm, repository, release)
        text = await session.summarize()
    """

    def __init__(
        self,
        fetcher: ReleaseFetcher,
        reasoning: ReasoningClient,
        repository: RepositoryIdentifier,
        release: Release,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
    ) -> None:
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        self.fetcher = fetcher
        self.reasoning = reasoning
        self.repository = repository
        self.release = release
        self.max_rounds = max_rounds
        self.rounds = 0
        self.transcript: list[Message] = [
            {"role": "system", "content": build_system_prompt()},
            {"role": "user", "content": build_user_prompt(repository, release)},
        ]
        self._details: dict[int, IssueOrPRDetail] = {}
        self._started = False

    async def summarize(self) -> str:
        """Run rounds until the model answers or the round limit is hit.

        Returns:
            The summary text

        Raises:
            SessionAborted: If max_rounds rounds pass without a final answer
            UpstreamUnavailable: If the LLM is unreachable or answers with
                an empty text
        """
        if self._started:
            raise RuntimeError("A SummarizationSession can only be run once")
        self._started = True

        while self.rounds < self.max_rounds:
            self.rounds += 1
            result = await self.reasoning.run_round(self.transcript, TOOLS)

            if isinstance(result, FinalAnswer):
                text = result.text.strip()
                if not text:
                    raise UpstreamUnavailable(
                        f"LLM returned an empty summary for release {self.release.id}"
                    )
                logger.info(
                    "session_completed",
                    repository=str(self.repository),
                    release_id=self.release.id,
                    rounds=self.rounds,
                    lookups=len(self._details),
                )
                self.transcript.append({"role": "assistant", "content": text})
                return text

            self.transcript.append(result.assistant_message)
            for call in result.calls:
                content = await self._resolve(call)
                self.transcript.append(
                    {"role": "tool", "tool_call_id": call.call_id, "content": content}
                )

        logger.warning(
            "session_aborted",
            repository=str(self.repository),
            release_id=self.release.id,
            rounds=self.rounds,
        )
        raise SessionAborted(str(self.repository), self.release.id, self.rounds)

    async def _resolve(self, call: ToolCall) -> str:
        """Answer one tool call with a JSON tool-result string."""
        if call.name != DETAIL_TOOL_NAME:
            return format_error_result("unknown_tool", message=f"No tool named '{call.name}'")

        detail_id = call.arguments.get("id")
        if isinstance(detail_id, str) and detail_id.lstrip("#").isdigit():
            detail_id = int(detail_id.lstrip("#"))
        if not isinstance(detail_id, int) or isinstance(detail_id, bool):
            return format_error_result(
                "invalid_arguments", message="'id' must be an integer issue or pull request number"
            )

        try:
            detail = await self._lookup(detail_id)
        except DetailLookupFailed as exc:
            logger.info(
                "tool_call_failed",
                repository=str(self.repository),
                detail_id=detail_id,
                reason=exc.reason,
            )
            return format_error_result(exc.reason, detail_id)

        logger.debug(
            "tool_call_resolved",
            repository=str(self.repository),
            detail_id=detail_id,
            kind=detail.kind.value,
        )
        return format_detail_result(detail)

    async def _lookup(self, detail_id: int) -> IssueOrPRDetail:
        if detail_id in self._details:
            return self._details[detail_id]
        try:
            detail = await self.fetcher.get_detail(
                self.repository.owner, self.repository.repo, detail_id
            )
        except NotFound as exc:
            raise DetailLookupFailed(detail_id, "not_found") from exc
        except FetchFailed as exc:
            raise DetailLookupFailed(detail_id, "unavailable") from exc
        self._details[detail_id] = detail
        return detail
