"""Durable one-shot timers keyed by repository.

The polling cadence is the only thing that keeps release detection alive,
so timers must survive a restart:

- arm(key, delay, payload) records {fire_at, payload} in a JSON timer file
  (written to a temp file and swapped in with os.replace) before the
  asyncio task is started
- arming a key again replaces its pending timer; a displaced arming never
  fires
- a fired arming is removed from the file only after its handler returns,
  so a crash mid-handler re-delivers it on the next start (at-least-once;
  the watcher's dedup absorbs the duplicate)
- handlers for the same key never overlap: a timer that fires while the
  previous handler for its key is still running waits for it
- restore() re-schedules everything in the file; overdue timers fire at once

Usage:
    scheduler = Scheduler(handler, timer_file=Path("data/timers.json"))
    await scheduler.restore()
    await scheduler.arm("octo/demo", timedelta(hours=1), {"owner": "octo", "repo": "demo"})
"""

from __future__ import annotations

import asyncio
import json
import os
import uuid
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from release_summarizer.logging_config import get_logger

logger = get_logger(__name__)

TimerHandler = Callable[[str, dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class Arming:
    """One pending wakeup."""

    key: str
    fire_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)
    arming_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_json(self) -> dict[str, Any]:
        return {
            "fire_at": self.fire_at.isoformat(),
            "payload": self.payload,
            "arming_id": self.arming_id,
        }

    @classmethod
    def from_json(cls, key: str, data: dict[str, Any]) -> Arming:
        return cls(
            key=key,
            fire_at=datetime.fromisoformat(data["fire_at"]),
            payload=data.get("payload") or {},
            arming_id=data.get("arming_id") or uuid.uuid4().hex,
        )


class Scheduler:
    """Process-wide timer facility with one pending wakeup per key."""

    def __init__(self, handler: TimerHandler, timer_file: str | Path | None = None) -> None:
        """Initialize the scheduler.

        Args:
            handler: Coroutine called with (key, payload) when a timer fires
            timer_file: JSON file the pending timers are persisted to.
                        Timers are kept in memory only when None.
        """
        self._handler = handler
        self._timer_file = Path(timer_file) if timer_file else None
        self._armings: dict[str, Arming] = {}
        self._waiting: dict[str, asyncio.Task[None]] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._run_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._file_lock = asyncio.Lock()

    def pending(self) -> dict[str, datetime]:
        """Fire time of every pending (or running) arming, by key."""
        return {key: arming.fire_at for key, arming in self._armings.items()}

    async def arm(
        self,
        key: str,
        delay: timedelta | float,
        payload: dict[str, Any] | None = None,
    ) -> datetime:
        """Fire the handler for key after delay, replacing any pending timer.

        Args:
            key: Timer key (one pending wakeup per key)
            delay: timedelta or seconds from now
            payload: JSON-serializable data passed to the handler

        Returns:
            When the timer will fire
        """
        if not isinstance(delay, timedelta):
            delay = timedelta(seconds=delay)
        arming = Arming(key=key, fire_at=_now() + max(delay, timedelta(0)), payload=payload or {})

        async with self._file_lock:
            self._armings[key] = arming
            await self._save()
        self._schedule(arming)
        logger.debug("timer_armed", key=key, fire_at=arming.fire_at.isoformat())
        return arming.fire_at

    async def cancel(self, key: str) -> bool:
        """Drop the pending timer for key. Returns False if there was none."""
        async with self._file_lock:
            arming = self._armings.pop(key, None)
            if arming is None:
                return False
            await self._save()
        waiting = self._waiting.pop(key, None)
        if waiting is not None:
            waiting.cancel()
        return True

    async def restore(self) -> int:
        """Schedule every timer persisted in the timer file.

        Returns:
            Number of timers restored

        Raises:
            ValueError: If the timer file is not valid JSON
        """
        if self._timer_file is None or not self._timer_file.exists():
            return 0
        try:
            raw = json.loads(await asyncio.to_thread(self._timer_file.read_text))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid timer file {self._timer_file}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ValueError(f"Invalid timer file {self._timer_file}: expected an object")

        async with self._file_lock:
            for key, data in raw.items():
                if key not in self._armings:
                    self._armings[key] = Arming.from_json(key, data)
        for arming in list(self._armings.values()):
            if arming.key not in self._waiting:
                self._schedule(arming)
        logger.info("timers_restored", count=len(raw))
        return len(raw)

    async def shutdown(self) -> None:
        """Stop all timers. Persisted armings are kept for the next restore()."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._waiting.clear()

    # -- internals ---------------------------------------------------------

    def _schedule(self, arming: Arming) -> None:
        previous = self._waiting.pop(arming.key, None)
        if previous is not None:
            previous.cancel()
        task = asyncio.create_task(self._fire_later(arming), name=f"timer:{arming.key}")
        self._waiting[arming.key] = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _fire_later(self, arming: Arming) -> None:
        delay = (arming.fire_at - _now()).total_seconds()
        if delay > 0:
            await asyncio.sleep(delay)

        # From here on this arming can no longer be displaced by arm()
        if self._waiting.get(arming.key) is asyncio.current_task():
            del self._waiting[arming.key]

        async with self._run_locks[arming.key]:
            if self._armings.get(arming.key) is not arming:
                return
            try:
                await self._handler(arming.key, arming.payload)
            except Exception:
                logger.exception("timer_handler_failed", key=arming.key)
            await self._clear(arming)

    async def _clear(self, arming: Arming) -> None:
        async with self._file_lock:
            # The handler may have re-armed its own key; keep that arming
            if self._armings.get(arming.key) is arming:
                del self._armings[arming.key]
                await self._save()

    async def _save(self) -> None:
        if self._timer_file is None:
            return
        data = {key: arming.to_json() for key, arming in self._armings.items()}
        await asyncio.to_thread(_write_atomic, self._timer_file, data)


def _write_atomic(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


def _now() -> datetime:
    return datetime.now(UTC)
