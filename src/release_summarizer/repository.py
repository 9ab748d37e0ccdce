"""Event-sourced aggregate recording what has been seen for one repository.

RepositoryState is never written directly. Commands are turned into events
(decide_*), events are appended to the repository's log, and the state is
the fold of that log (apply). Replaying the same log always yields the same
state, which is what makes the store crash-safe.

Invariants:
- latest_seen_release_id never decreases
- there is at most one summary per release id
- the API token is fixed when the repository is first tracked

All three are also enforced in apply(), so a log that contains a
redelivered event (written twice before a crash was noticed) still folds
into a valid state.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from release_summarizer.errors import CommitConflict
from release_summarizer.schemas import LatestSeenRelease, ReleaseSummary

# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class RepositoryTracked(BaseModel):
    """The repository was added to tracking."""

    model_config = ConfigDict(frozen=True)

    type: Literal["repository_tracked"] = "repository_tracked"
    api_token: str | None = None
    occurred_at: datetime


class ReleaseSeen(BaseModel):
    """A release was processed by a check."""

    model_config = ConfigDict(frozen=True)

    type: Literal["release_seen"] = "release_seen"
    release_id: int
    occurred_at: datetime


class SummaryAdded(BaseModel):
    """A finished summary was recorded."""

    model_config = ConfigDict(frozen=True)

    type: Literal["summary_added"] = "summary_added"
    summary: ReleaseSummary


Event = Annotated[
    Union[RepositoryTracked, ReleaseSeen, SummaryAdded],
    Field(discriminator="type"),
]

event_adapter: TypeAdapter[Event] = TypeAdapter(Event)


# ---------------------------------------------------------------------------
# Aggregate
# ---------------------------------------------------------------------------


class RepositoryState(BaseModel):
    """Current state of one tracked repository.

    Attributes:
        tracked: False until the first event has been applied
        latest_seen_release_id: Id of the most recent processed release
        api_token: GitHub token to use for this repository
        summaries: Recorded summaries in completion order
    """

    model_config = ConfigDict(frozen=True)

    tracked: bool = False
    latest_seen_release_id: int | None = None
    api_token: str | None = None
    summaries: tuple[ReleaseSummary, ...] = ()

    @classmethod
    def replay(cls, events: list[Event]) -> RepositoryState:
        state = cls()
        for event in events:
            state = state.apply(event)
        return state

    def has_summary_for(self, release_id: int) -> bool:
        return any(s.release_id == release_id for s in self.summaries)

    def latest_seen(self) -> LatestSeenRelease:
        return LatestSeenRelease(release_id=self.latest_seen_release_id, api_token=self.api_token)

    # -- events -> state ---------------------------------------------------

    def apply(self, event: Event) -> RepositoryState:
        if isinstance(event, RepositoryTracked):
            if self.tracked:
                return self
            return self.model_copy(update={"tracked": True, "api_token": event.api_token})

        if isinstance(event, ReleaseSeen):
            current = self.latest_seen_release_id
            if current is not None and event.release_id <= current:
                return self.model_copy(update={"tracked": True})
            return self.model_copy(
                update={"tracked": True, "latest_seen_release_id": event.release_id}
            )

        if isinstance(event, SummaryAdded):
            if self.has_summary_for(event.summary.release_id):
                return self
            return self.model_copy(
                update={"tracked": True, "summaries": (*self.summaries, event.summary)}
            )

        raise TypeError(f"Unknown event type: {type(event).__name__}")

    # -- commands -> events ------------------------------------------------

    def decide_track(self, api_token: str | None, now: datetime) -> list[Event]:
        """Events for "track repository".

        Raises:
            CommitConflict: If the repository is already tracked
        """
        if self.tracked:
            raise CommitConflict("Repository is already tracked")
        return [RepositoryTracked(api_token=api_token, occurred_at=now)]

    def decide_record(
        self,
        release_id: int,
        release_name: str,
        summary_text: str | None,
        completed_at: datetime,
    ) -> list[Event]:
        """Events for "record seen release and maybe summary".

        Advances the latest seen release to max(current, release_id) and
        appends a summary unless one already exists for that release. A
        repository checked before it was tracked is tracked implicitly,
        without a token.

        Raises:
            CommitConflict: If the command would change nothing
        """
        events: list[Event] = []
        current = self.latest_seen_release_id
        if current is None or release_id > current:
            events.append(ReleaseSeen(release_id=release_id, occurred_at=completed_at))
        if summary_text and not self.has_summary_for(release_id):
            events.append(
                SummaryAdded(
                    summary=ReleaseSummary(
                        release_name=release_name,
                        release_id=release_id,
                        completed_at=completed_at,
                        text=summary_text,
                    )
                )
            )
        if not events:
            raise CommitConflict(f"Release {release_id} is already recorded")
        if not self.tracked:
            events.insert(0, RepositoryTracked(api_token=None, occurred_at=completed_at))
        return events
