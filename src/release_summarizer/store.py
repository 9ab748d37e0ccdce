"""Durable event store for RepositoryState aggregates.

Every repository has its own append-only event log. Commands against one
repository are serialized by a per-repository asyncio.Lock (single writer
per key); commands against different repositories never contend.

Two backends share the command logic in EventStore:
- InMemoryEventStore: for tests and throwaway runs
- FileEventStore: one JSON-lines file per repository under a data
  directory. Each line is one commit holding every event produced by one
  command, so "release seen" and "summary added" land together or not at
  all. A torn last line left by a crash mid-write is dropped whole on load.
"""

from __future__ import annotations

import asyncio
import os
from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ValidationError

from release_summarizer.errors import CommitConflict
from release_summarizer.logging_config import get_logger
from release_summarizer.repository import Event, RepositoryState, SummaryAdded
from release_summarizer.schemas import LatestSeenRelease, ReleaseSummary, RepositoryIdentifier

logger = get_logger(__name__)


@dataclass(frozen=True)
class CommitResult:
    """Outcome of record_seen_release_and_maybe_summary.

    Attributes:
        changed: False when the command was a duplicate and nothing was written
        state: Aggregate state after the command
        appended_summary: The summary recorded by this command, if any
    """

    changed: bool
    state: RepositoryState
    appended_summary: ReleaseSummary | None = None


class CommitRecord(BaseModel):
    """One line of a file event log: the events of a single command."""

    events: list[Event]


class AggregateStore(Protocol):
    """Command and query surface of the repository aggregates."""

    async def track(self, repository: RepositoryIdentifier, api_token: str | None = None) -> bool:
        ...

    async def record_seen_release_and_maybe_summary(
        self,
        repository: RepositoryIdentifier,
        release_id: int,
        release_name: str,
        summary_text: str | None = None,
        completed_at: datetime | None = None,
    ) -> CommitResult:
        ...

    async def get_latest_seen_release(self, repository: RepositoryIdentifier) -> LatestSeenRelease:
        ...

    async def get_state(self, repository: RepositoryIdentifier) -> RepositoryState:
        ...

    async def list_repositories(self) -> list[RepositoryIdentifier]:
        ...


# ---------------------------------------------------------------------------
# Shared command logic
# ---------------------------------------------------------------------------


class EventStore:
    """Base class implementing the aggregate commands over an event log.

    Subclasses provide _load_events, _append_events and _keys.
    """

    def __init__(self) -> None:
        self._locks: defaultdict[RepositoryIdentifier, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._states: dict[RepositoryIdentifier, RepositoryState] = {}

    async def track(self, repository: RepositoryIdentifier, api_token: str | None = None) -> bool:
        """Start tracking a repository.

        Returns:
            True if the repository was newly tracked, False if it already was
            (the stored token is left unchanged)
        """
        async with self._locks[repository]:
            state = await self._current(repository)
            try:
                events = state.decide_track(api_token, _now())
            except CommitConflict:
                logger.debug("track_ignored", repository=str(repository))
                return False
            await self._commit(repository, state, events)
            logger.info("repository_tracked", repository=str(repository), authenticated=bool(api_token))
            return True

    async def record_seen_release_and_maybe_summary(
        self,
        repository: RepositoryIdentifier,
        release_id: int,
        release_name: str,
        summary_text: str | None = None,
        completed_at: datetime | None = None,
    ) -> CommitResult:
        """Advance the latest seen release and optionally record its summary.

        Duplicate or stale commands are no-ops and return changed=False.
        """
        async with self._locks[repository]:
            state = await self._current(repository)
            try:
                events = state.decide_record(
                    release_id, release_name, summary_text, completed_at or _now()
                )
            except CommitConflict as exc:
                # Expected under redelivery
                logger.debug("commit_ignored", repository=str(repository), reason=str(exc))
                return CommitResult(changed=False, state=state)

            new_state = await self._commit(repository, state, events)
            appended = next((e.summary for e in events if isinstance(e, SummaryAdded)), None)
            return CommitResult(changed=True, state=new_state, appended_summary=appended)

    async def get_latest_seen_release(self, repository: RepositoryIdentifier) -> LatestSeenRelease:
        return (await self.get_state(repository)).latest_seen()

    async def get_state(self, repository: RepositoryIdentifier) -> RepositoryState:
        async with self._locks[repository]:
            return await self._current(repository)

    async def list_repositories(self) -> list[RepositoryIdentifier]:
        return sorted(await self._keys(), key=str)

    async def _current(self, repository: RepositoryIdentifier) -> RepositoryState:
        if repository not in self._states:
            events = await self._load_events(repository)
            self._states[repository] = RepositoryState.replay(events)
        return self._states[repository]

    async def _commit(
        self, repository: RepositoryIdentifier, state: RepositoryState, events: list[Event]
    ) -> RepositoryState:
        await self._append_events(repository, events)
        for event in events:
            state = state.apply(event)
        self._states[repository] = state
        return state

    async def _load_events(self, repository: RepositoryIdentifier) -> list[Event]:
        raise NotImplementedError

    async def _append_events(self, repository: RepositoryIdentifier, events: list[Event]) -> None:
        raise NotImplementedError

    async def _keys(self) -> list[RepositoryIdentifier]:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class InMemoryEventStore(EventStore):
    """Keeps event logs in a dict. Lost when the process exits."""

    def __init__(self) -> None:
        super().__init__()
        self.logs: dict[RepositoryIdentifier, list[Event]] = {}

    async def _load_events(self, repository: RepositoryIdentifier) -> list[Event]:
        return list(self.logs.get(repository, []))

    async def _append_events(self, repository: RepositoryIdentifier, events: list[Event]) -> None:
        self.logs.setdefault(repository, []).extend(events)

    async def _keys(self) -> list[RepositoryIdentifier]:
        return list(self.logs)


class FileEventStore(EventStore):
    """Keeps one JSON-lines event log per repository under data_dir.

    Usage:
        store = FileEventStore("data/repositories")
        await store.track(RepositoryIdentifier(owner="octo", repo="demo"))
    """

    SUFFIX = ".jsonl"

    def __init__(self, data_dir: str | Path) -> None:
        super().__init__()
        self._dir = Path(data_dir)
        self._dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, repository: RepositoryIdentifier) -> Path:
        # GitHub owners cannot contain "_", so the first "__" separates the parts
        return self._dir / f"{repository.owner}__{repository.repo}{self.SUFFIX}"

    async def _load_events(self, repository: RepositoryIdentifier) -> list[Event]:
        return await asyncio.to_thread(self._read, self.path_for(repository))

    async def _append_events(self, repository: RepositoryIdentifier, events: list[Event]) -> None:
        blob = CommitRecord(events=events).model_dump_json() + "\n"
        await asyncio.to_thread(self._write, self.path_for(repository), blob)

    async def _keys(self) -> list[RepositoryIdentifier]:
        keys = []
        for path in self._dir.glob(f"*{self.SUFFIX}"):
            owner, sep, repo = path.stem.partition("__")
            if sep and owner and repo:
                keys.append(RepositoryIdentifier(owner=owner, repo=repo))
        return keys

    @staticmethod
    def _read(path: Path) -> list[Event]:
        if not path.exists():
            return []

        data = path.read_bytes()
        events: list[Event] = []
        valid_length = 0
        lines = data.split(b"\n")
        for index, line in enumerate(lines):
            is_last = index == len(lines) - 1
            if not line.strip():
                if not is_last:
                    valid_length += len(line) + 1
                continue
            try:
                events.extend(CommitRecord.model_validate_json(line).events)
            except ValidationError as exc:
                # Only an unterminated final line can come from an interrupted write
                if is_last:
                    logger.warning("event_log_torn_tail_dropped", path=str(path), size=len(line))
                    break
                raise ValueError(f"Corrupt event log {path} at line {index + 1}: {exc}") from exc
            if is_last:
                # Parsed but unterminated: keep it and restore the newline
                with path.open("ab") as f:
                    f.write(b"\n")
            valid_length += len(line) + 1

        if valid_length < len(data):
            with path.open("r+b") as f:
                f.truncate(valid_length)
                f.flush()
                os.fsync(f.fileno())
        return events

    @staticmethod
    def _write(path: Path, blob: str) -> None:
        with path.open("a", encoding="utf-8") as f:
            f.write(blob)
            f.flush()
            os.fsync(f.fileno())


def _now() -> datetime:
    return datetime.now(UTC)
