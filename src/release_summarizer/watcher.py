"""Per-repository release check: detect, summarize, record, reschedule.

One call to check_and_advance() is one cycle for one repository:

1. Read the latest seen release id and the repository's API token
2. Fetch the latest release from GitHub (with that token, if any)
3. A release is new iff nothing was seen yet or its id is strictly greater
   than the latest seen id; equal or smaller ids are treated as already
   processed
4. For a new release: run a SummarizationSession and record the seen id and
   the summary in ONE commit, then publish the summary
5. Always re-arm the scheduler for this repository, whatever happened above.
   The one exception is a cycle cancelled by shutdown: its persisted timer
   is left as it was, so the check runs again after a restart

Fetch and session failures are logged and swallowed here; the next timer
fire retries the check. There is no other retry or backoff.

Known limitation: step 3 assumes GitHub release ids grow in publication
order. A release that ends up with a smaller id than one already seen is
never summarized.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from enum import StrEnum
from typing import Protocol

from release_summarizer.errors import FetchFailed, SessionAborted, UpstreamUnavailable
from release_summarizer.github import ReleaseFetcher
from release_summarizer.llm import ReasoningClient
from release_summarizer.logging_config import get_logger, repository_context
from release_summarizer.notifications import SummaryNotifier
from release_summarizer.schemas import Release, RepositoryIdentifier
from release_summarizer.session import DEFAULT_MAX_ROUNDS, SummarizationSession
from release_summarizer.store import AggregateStore

logger = get_logger(__name__)


class CheckOutcome(StrEnum):
    """Result of one check cycle.

    - SUMMARIZED: a new release was found and its summary recorded
    - UP_TO_DATE: the latest release was already seen; nothing was written
    - FAILED: fetching or summarizing failed; the next cycle retries
    """

    SUMMARIZED = "summarized"
    UP_TO_DATE = "up_to_date"
    FAILED = "failed"


class TimerArmer(Protocol):
    async def arm(self, key: str, delay: timedelta | float, payload: dict | None = None) -> object:
        ...


class ReleaseWatcher:
    """Runs release checks and keeps each repository's timer armed.

    Usage:
        watcher = ReleaseWatcher(store, fetcher, llm, scheduler, check_interval=timedelta(hours=1))
        await watcher.check_and_advance(RepositoryIdentifier(owner="octo", repo="demo"))
    """

    def __init__(
        self,
        store: AggregateStore,
        fetcher: ReleaseFetcher,
        reasoning: ReasoningClient,
        scheduler: TimerArmer,
        check_interval: timedelta,
        max_session_rounds: int = DEFAULT_MAX_ROUNDS,
        notifier: SummaryNotifier | None = None,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.reasoning = reasoning
        self.scheduler = scheduler
        self.check_interval = check_interval
        self.max_session_rounds = max_session_rounds
        self.notifier = notifier or SummaryNotifier()

    async def check_and_advance(self, repository: RepositoryIdentifier) -> CheckOutcome:
        """Run one check cycle for a repository and re-arm its timer.

        Returns:
            What the cycle did. Failures are reported as FAILED, not raised.
        """
        interrupted = False
        with repository_context(repository):
            try:
                return await self._check(repository)
            except asyncio.CancelledError:
                # Shutdown: leave the persisted timer so the check is redelivered
                interrupted = True
                logger.info("release_check_interrupted")
                raise
            except (FetchFailed, SessionAborted, UpstreamUnavailable) as exc:
                logger.warning(
                    "release_check_failed",
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                return CheckOutcome.FAILED
            except Exception as exc:
                logger.error("release_check_crashed", error=str(exc), exc_info=True)
                return CheckOutcome.FAILED
            finally:
                if not interrupted:
                    await self.schedule_next(repository)

    async def schedule_next(self, repository: RepositoryIdentifier, delay: timedelta | None = None) -> None:
        """Arm (or re-arm) the check timer for a repository."""
        delay = self.check_interval if delay is None else delay
        await self.scheduler.arm(str(repository), delay, repository.model_dump())
        logger.debug("next_release_check_scheduled", delay_seconds=delay.total_seconds())

    async def _check(self, repository: RepositoryIdentifier) -> CheckOutcome:
        logger.info("release_check_started")
        latest_seen = await self.store.get_latest_seen_release(repository)
        fetcher = self.fetcher_for(latest_seen.api_token)

        release = await fetcher.get_latest_release(repository.owner, repository.repo)
        if latest_seen.release_id is not None and release.id <= latest_seen.release_id:
            logger.debug(
                "no_new_release",
                release_id=release.id,
                latest_seen_release_id=latest_seen.release_id,
            )
            return CheckOutcome.UP_TO_DATE

        logger.info("new_release_found", release_id=release.id, release_name=release.name)
        text = await self.summarize(repository, release, fetcher)

        result = await self.store.record_seen_release_and_maybe_summary(
            repository,
            release_id=release.id,
            release_name=release.name,
            summary_text=text,
        )
        if result.appended_summary is not None:
            await self.notifier.publish(repository, result.appended_summary)
        logger.info("release_summarized", release_id=release.id, recorded=result.changed)
        return CheckOutcome.SUMMARIZED

    async def summarize(
        self,
        repository: RepositoryIdentifier,
        release: Release,
        fetcher: ReleaseFetcher | None = None,
    ) -> str:
        """Run a summarization session for a release (no state is read or written)."""
        session = SummarizationSession(
            fetcher or self.fetcher,
            self.reasoning,
            repository,
            release,
            max_rounds=self.max_session_rounds,
        )
        return await session.summarize()

    async def summarize_latest_now(
        self, repository: RepositoryIdentifier, api_token: str | None = None
    ) -> tuple[Release, str]:
        """Summarize the current latest release, bypassing dedup.

        Neither reads nor updates the latest seen release. Errors propagate
        to the caller.

        Raises:
            FetchFailed: If the latest release can't be fetched
            SessionAborted: If the session hits its round limit
            UpstreamUnavailable: If the LLM is unreachable
        """
        fetcher = self.fetcher_for(api_token)
        release = await fetcher.get_latest_release(repository.owner, repository.repo)
        text = await self.summarize(repository, release, fetcher)
        return release, text

    def fetcher_for(self, api_token: str | None) -> ReleaseFetcher:
        return self.fetcher.with_api_token(api_token) if api_token else self.fetcher
