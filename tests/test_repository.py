"""Tests for the RepositoryState aggregate.

The aggregate is pure (no I/O), so these tests fold events directly.

Run with: pytest tests/test_repository.py -v
"""

from __future__ import annotations

import itertools
from datetime import UTC, datetime

import pytest

from release_summarizer.errors import CommitConflict
from release_summarizer.repository import (
    ReleaseSeen,
    RepositoryState,
    RepositoryTracked,
    SummaryAdded,
    event_adapter,
)
from release_summarizer.schemas import ReleaseSummary

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


def record(state: RepositoryState, release_id: int, text: str | None = None) -> RepositoryState:
    """Apply the record command, treating a conflict as a no-op."""
    try:
        events = state.decide_record(release_id, f"v{release_id}", text, NOW)
    except CommitConflict:
        return state
    for event in events:
        state = state.apply(event)
    return state


class TestLatestSeenRelease:
    @pytest.mark.parametrize("order", sorted(set(itertools.permutations([3, 9, 1, 9]))))
    def test_ends_at_maximum_regardless_of_order(self, order: tuple[int, ...]) -> None:
        state = RepositoryState()
        for release_id in order:
            state = record(state, release_id)
        assert state.latest_seen_release_id == 9

    def test_never_decreases(self) -> None:
        state = record(RepositoryState(), 10)
        state = record(state, 4)
        assert state.latest_seen_release_id == 10

    def test_stale_seen_event_is_ignored_on_replay(self) -> None:
        state = RepositoryState.replay(
            [
                ReleaseSeen(release_id=8, occurred_at=NOW),
                ReleaseSeen(release_id=2, occurred_at=NOW),
            ]
        )
        assert state.latest_seen_release_id == 8

    def test_starts_empty(self) -> None:
        assert RepositoryState().latest_seen().release_id is None


class TestSummaryDedup:
    def test_same_release_summarized_twice_is_stored_once(self) -> None:
        state = record(RepositoryState(), 42, "first")
        state = record(state, 42, "second")
        assert [s.release_id for s in state.summaries] == [42]
        assert state.summaries[0].text == "first"

    def test_duplicate_command_raises_conflict(self) -> None:
        state = record(RepositoryState(), 42, "first")
        with pytest.raises(CommitConflict):
            state.decide_record(42, "v42", "again", NOW)

    def test_duplicate_event_in_log_is_ignored_on_replay(self) -> None:
        summary = ReleaseSummary(release_name="v1", release_id=1, completed_at=NOW, text="x")
        state = RepositoryState.replay([SummaryAdded(summary=summary), SummaryAdded(summary=summary)])
        assert len(state.summaries) == 1

    def test_older_release_can_still_get_its_summary(self) -> None:
        state = record(RepositoryState(), 10)
        state = record(state, 7, "late summary")
        assert state.latest_seen_release_id == 10
        assert [s.release_id for s in state.summaries] == [7]

    def test_summaries_keep_completion_order(self) -> None:
        state = record(RepositoryState(), 1, "one")
        state = record(state, 3, "three")
        state = record(state, 2, "two")
        assert [s.release_id for s in state.summaries] == [1, 3, 2]

    def test_seen_and_summary_are_one_decision(self) -> None:
        events = RepositoryState(tracked=True).decide_record(5, "v5", "text", NOW)
        assert [type(e) for e in events] == [ReleaseSeen, SummaryAdded]


class TestTracking:
    def test_track_sets_token(self) -> None:
        state = RepositoryState()
        for event in state.decide_track("ghp_x", NOW):
            state = state.apply(event)
        assert state.tracked
        assert state.api_token == "ghp_x"

    def test_track_twice_conflicts(self) -> None:
        state = RepositoryState().apply(RepositoryTracked(api_token="a", occurred_at=NOW))
        with pytest.raises(CommitConflict):
            state.decide_track("b", NOW)

    def test_token_cannot_be_replaced_by_a_later_event(self) -> None:
        state = RepositoryState.replay(
            [
                RepositoryTracked(api_token="a", occurred_at=NOW),
                RepositoryTracked(api_token="b", occurred_at=NOW),
            ]
        )
        assert state.api_token == "a"

    def test_first_check_tracks_implicitly(self) -> None:
        events = RepositoryState().decide_record(1, "v1", None, NOW)
        assert isinstance(events[0], RepositoryTracked)
        assert events[0].api_token is None


class TestEventSerialization:
    def test_events_round_trip_through_json(self) -> None:
        summary = ReleaseSummary(release_name="v1", release_id=1, completed_at=NOW, text="x")
        for event in [
            RepositoryTracked(api_token=None, occurred_at=NOW),
            ReleaseSeen(release_id=1, occurred_at=NOW),
            SummaryAdded(summary=summary),
        ]:
            assert event_adapter.validate_json(event_adapter.dump_json(event)) == event
