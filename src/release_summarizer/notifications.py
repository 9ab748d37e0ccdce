"""Fan-out of "summary appended" notifications to downstream sinks.

The watcher publishes every summary it records. Sinks are plain callables
(sync or async) taking (repository, summary); a sink that raises is logged
and skipped so it can neither block other sinks nor undo the commit.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable

from release_summarizer.logging_config import get_logger
from release_summarizer.schemas import ReleaseSummary, RepositoryIdentifier

logger = get_logger(__name__)

SummarySink = Callable[[RepositoryIdentifier, ReleaseSummary], Awaitable[None] | None]


def log_summary_sink(repository: RepositoryIdentifier, summary: ReleaseSummary) -> None:
    """Default sink: one structured log line per published summary."""
    logger.info(
        "summary_published",
        repository=str(repository),
        release_id=summary.release_id,
        release_name=summary.release_name,
        completed_at=summary.completed_at.isoformat(),
        text=summary.text,
    )


class SummaryNotifier:
    """Delivers each recorded summary to every registered sink."""

    def __init__(self, sinks: list[SummarySink] | None = None) -> None:
        self._sinks: list[SummarySink] = list(sinks) if sinks is not None else [log_summary_sink]

    def subscribe(self, sink: SummarySink) -> None:
        self._sinks.append(sink)

    async def publish(self, repository: RepositoryIdentifier, summary: ReleaseSummary) -> int:
        """Send the summary to all sinks.

        Returns:
            Number of sinks that accepted it
        """
        delivered = 0
        for sink in self._sinks:
            try:
                result = sink(repository, summary)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error(
                    "summary_sink_failed",
                    repository=str(repository),
                    release_id=summary.release_id,
                    sink=getattr(sink, "__name__", repr(sink)),
                    error=str(exc),
                    exc_info=True,
                )
                continue
            delivered += 1
        return delivered
