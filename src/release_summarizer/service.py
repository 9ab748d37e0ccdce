"""Service wiring and command-line entry point.

ReleaseSummarizerService builds every component from an AppConfig and owns
their lifecycle:
- the event store (release/summary facts per repository)
- the shared GitHub and OpenAI clients
- the scheduler, whose timers call back into the watcher
- the watcher itself

It is used by the HTTP API (main.py) and by the CLI below.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import timedelta
from typing import Any

from release_summarizer.config import AppConfig, load_config
from release_summarizer.errors import FetchFailed, SessionAborted, UpstreamUnavailable
from release_summarizer.github import GitHubClient, ReleaseFetcher
from release_summarizer.llm import LLMClient, ReasoningClient
from release_summarizer.logging_config import get_logger, setup_logging
from release_summarizer.notifications import SummaryNotifier
from release_summarizer.repository import RepositoryState
from release_summarizer.scheduler import Scheduler
from release_summarizer.schemas import Release, RepositoryIdentifier
from release_summarizer.store import AggregateStore, FileEventStore, InMemoryEventStore
from release_summarizer.watcher import CheckOutcome, ReleaseWatcher

logger = get_logger(__name__)


class ReleaseSummarizerService:
    """Owns the components of a running release summarizer.

    Usage:
        service = ReleaseSummarizerService(load_config())
        await service.start()
        await service.track_repository(RepositoryIdentifier(owner="octo", repo="demo"))
        ...
        await service.stop()
    """

    def __init__(
        self,
        config: AppConfig,
        store: AggregateStore | None = None,
        fetcher: ReleaseFetcher | None = None,
        reasoning: ReasoningClient | None = None,
        notifier: SummaryNotifier | None = None,
        in_memory: bool = False,
    ) -> None:
        """Initialize the service.

        Args:
            config: Service configuration
            store: Aggregate store. A FileEventStore under config.data_dir
                   (or an InMemoryEventStore with in_memory=True) by default.
            fetcher: GitHub client. Built from config by default.
            reasoning: LLM client. Built from config by default.
            notifier: Summary notifier. Logs summaries by default.
            in_memory: Keep events and timers in memory only
        """
        self.config = config
        if store is None:
            store = InMemoryEventStore() if in_memory else FileEventStore(config.data_dir / "repositories")
        self.store = store
        self.fetcher = fetcher or GitHubClient(
            token=config.github_api_token,
            timeout=config.github_timeout_seconds,
        )
        self.reasoning = reasoning or LLMClient(config.llm)
        self.scheduler = Scheduler(
            self._on_timer,
            timer_file=None if in_memory else config.data_dir / "timers.json",
        )
        self.watcher = ReleaseWatcher(
            store=self.store,
            fetcher=self.fetcher,
            reasoning=self.reasoning,
            scheduler=self.scheduler,
            check_interval=config.check_interval,
            max_session_rounds=config.max_session_rounds,
            notifier=notifier,
        )

    async def start(self) -> None:
        """Restore persisted timers and arm any tracked repository that has none."""
        await self.scheduler.restore()
        pending = self.scheduler.pending()
        for repository in await self.store.list_repositories():
            if str(repository) not in pending:
                logger.info("timer_missing_rearmed", repository=str(repository))
                await self.watcher.schedule_next(repository, delay=timedelta(0))

    async def stop(self) -> None:
        await self.scheduler.shutdown()
        if isinstance(self.fetcher, GitHubClient):
            await self.fetcher.aclose()

    async def track_repository(
        self, repository: RepositoryIdentifier, api_token: str | None = None
    ) -> bool:
        """Start tracking a repository and check it right away.

        Returns:
            False if the repository was already tracked (nothing changes)
        """
        created = await self.store.track(repository, api_token)
        if created:
            await self.watcher.schedule_next(repository, delay=timedelta(0))
        return created

    async def get_repository(self, repository: RepositoryIdentifier) -> RepositoryState:
        return await self.store.get_state(repository)

    async def list_repositories(self) -> list[RepositoryIdentifier]:
        return await self.store.list_repositories()

    async def check_now(self, repository: RepositoryIdentifier) -> CheckOutcome:
        return await self.watcher.check_and_advance(repository)

    async def summarize_now(
        self, repository: RepositoryIdentifier, api_token: str | None = None
    ) -> tuple[Release, str]:
        """Summarize the latest release without touching the seen-release state."""
        if api_token is None:
            api_token = (await self.store.get_latest_seen_release(repository)).api_token
        return await self.watcher.summarize_latest_now(repository, api_token)

    async def _on_timer(self, key: str, payload: dict[str, Any]) -> None:
        if payload:
            repository = RepositoryIdentifier.model_validate(payload)
        else:
            repository = RepositoryIdentifier.parse(key)
        await self.watcher.check_and_advance(repository)


# ---------------------------------------------------------------------------
# CLI Entry Point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="release-summarizer",
        description="Watch GitHub repositories and summarize new releases",
    )
    parser.add_argument("--config", "-c", help="Path to the YAML config file")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API and the release checks")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    summarize = sub.add_parser("summarize", help="Summarize the latest release now and print it")
    summarize.add_argument("repository", help="owner/repo")
    summarize.add_argument("--token", help="GitHub token for this repository")

    check = sub.add_parser("check", help="Run one release check and record the result")
    check.add_argument("repository", help="owner/repo")
    return parser


async def _summarize(config: AppConfig, repository: RepositoryIdentifier, token: str | None) -> str:
    service = ReleaseSummarizerService(config, in_memory=True)
    try:
        release, text = await service.summarize_now(repository, token)
    finally:
        await service.stop()
    return f"{release.name}\n\n{text}"


async def _check(config: AppConfig, repository: RepositoryIdentifier) -> CheckOutcome:
    service = ReleaseSummarizerService(config)
    try:
        return await service.check_now(repository)
    finally:
        # The re-armed timer stays in the timer file for the next "serve"
        await service.stop()


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.

    Usage:
        release-summarizer serve --port 8000
        release-summarizer summarize octo/demo
        release-summarizer check octo/demo
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_usage()
        return 2

    setup_logging()
    try:
        config = load_config(args.config)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    if args.command == "serve":
        import uvicorn

        from release_summarizer.main import create_app

        uvicorn.run(create_app(config=config), host=args.host, port=args.port)
        return 0

    try:
        repository = RepositoryIdentifier.parse(args.repository)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    if args.command == "summarize":
        try:
            print(asyncio.run(_summarize(config, repository, args.token)))
        except (FetchFailed, SessionAborted, UpstreamUnavailable) as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 1
        return 0

    outcome = asyncio.run(_check(config, repository))
    print(outcome.value)
    return 1 if outcome is CheckOutcome.FAILED else 0


if __name__ == "__main__":
    sys.exit(main())
