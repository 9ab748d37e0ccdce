"""OpenAI LLM client for the summarization session.

This module encapsulates all interaction with the OpenAI API. One call to
run_round() is one round-trip of a tool-augmented conversation: the model
either answers with text or asks for one or more tool calls.

Design notes:
- The OpenAI SDK's own retries are disabled; transient failures (rate
  limits, timeouts, connection errors, 5xx) are retried here with tenacity
  so the retry budget is explicit and configurable
- Once the budget is exhausted the failure surfaces as UpstreamUnavailable;
  callers never see openai exceptions
- The transcript is a plain list of chat messages in OpenAI's format, so
  the session can append tool results without knowing about the SDK
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol

import openai
from openai import AsyncOpenAI
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from release_summarizer.config import LLMConfig
from release_summarizer.errors import UpstreamUnavailable
from release_summarizer.logging_config import get_logger

logger = get_logger(__name__)

Message = dict[str, Any]

TRANSIENT_ERRORS = (
    openai.APIConnectionError,  # includes APITimeoutError
    openai.RateLimitError,
    openai.InternalServerError,
)


# ---------------------------------------------------------------------------
# Round results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FinalAnswer:
    """The model finished with a text answer."""

    text: str


@dataclass(frozen=True)
class ToolCall:
    """One tool invocation requested by the model.

    Attributes:
        call_id: Id the tool result must be sent back under
        name: Name of the requested tool
        arguments: Decoded JSON arguments (empty if they were not valid JSON)
        raw_arguments: Arguments exactly as the model produced them
    """

    call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    raw_arguments: str = ""


@dataclass(frozen=True)
class ToolCalls:
    """The model asked for tool calls before it can answer.

    assistant_message must be appended to the transcript ahead of the tool
    results; the API rejects tool results without it.
    """

    calls: list[ToolCall]
    assistant_message: Message


RoundResult = FinalAnswer | ToolCalls


# ---------------------------------------------------------------------------
# Protocol (Interface)
# ---------------------------------------------------------------------------


class ReasoningClient(Protocol):
    """Interface for one round of a tool-augmented conversation."""

    async def run_round(
        self, transcript: list[Message], tools: list[dict[str, Any]]
    ) -> RoundResult:
        """Send the transcript and return the model's answer or tool calls.

        Raises:
            UpstreamUnavailable: If the service can't be reached after retries
        """
        ...


# ---------------------------------------------------------------------------
# OpenAI Implementation
# ---------------------------------------------------------------------------


class LLMClient:
    """Async wrapper around the OpenAI chat completions API with tool calling.

    Usage:
        client = LLMClient(config=LLMConfig())
        result = await client.run_round(transcript, TOOLS)
    """

    def __init__(
        self,
        config: LLMConfig | None = None,
        client: AsyncOpenAI | None = None,
        retry_wait: wait_base | None = None,
    ) -> None:
        """Initialize the LLM client.

        Args:
            config: LLM configuration. Uses defaults if not provided.
            client: Preconfigured AsyncOpenAI client (mostly for tests).
            retry_wait: tenacity wait strategy between attempts.
        """
        self.config = config or LLMConfig()
        # api_key=None makes the SDK read OPENAI_API_KEY
        self._client = client or AsyncOpenAI(
            api_key=self.config.api_key,
            timeout=self.config.timeout_seconds,
            max_retries=0,
        )
        self._retry_wait = retry_wait or wait_exponential(multiplier=1, min=2, max=30)

    async def run_round(
        self, transcript: list[Message], tools: list[dict[str, Any]]
    ) -> RoundResult:
        """Run one round-trip with the model.

        Args:
            transcript: The conversation so far
            tools: Tool definitions in OpenAI's function-calling format

        Returns:
            FinalAnswer if the model answered, ToolCalls if it asked for tools

        Raises:
            UpstreamUnavailable: If the API call fails after retries
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.config.max_attempts),
                wait=self._retry_wait,
                retry=retry_if_exception_type(TRANSIENT_ERRORS),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            "llm_round_retry",
                            attempt=attempt.retry_state.attempt_number,
                            model=self.config.model,
                        )
                    response = await self._client.chat.completions.create(
                        model=self.config.model,
                        messages=transcript,
                        tools=tools,
                        temperature=self.config.temperature,
                        max_tokens=self.config.max_tokens,
                        timeout=self.config.timeout_seconds,
                    )
        except openai.APIError as exc:
            raise UpstreamUnavailable(f"LLM request failed: {exc}") from exc

        if not response.choices:
            raise UpstreamUnavailable("LLM returned no choices")
        return parse_message(response.choices[0].message)


def parse_message(message: Any) -> RoundResult:
    """Convert an OpenAI ChatCompletionMessage into a round result."""
    if not message.tool_calls:
        return FinalAnswer(text=message.content or "")

    calls = []
    for tc in message.tool_calls:
        raw = tc.function.arguments or ""
        try:
            arguments = json.loads(raw) if raw else {}
        except json.JSONDecodeError:
            arguments = {}
        if not isinstance(arguments, dict):
            arguments = {}
        calls.append(
            ToolCall(call_id=tc.id, name=tc.function.name, arguments=arguments, raw_arguments=raw)
        )

    assistant_message: Message = {
        "role": "assistant",
        "content": message.content,
        "tool_calls": [
            {
                "id": call.call_id,
                "type": "function",
                "function": {"name": call.name, "arguments": call.raw_arguments},
            }
            for call in calls
        ],
    }
    return ToolCalls(calls=calls, assistant_message=assistant_message)
