"""
cadence.services.activity_service — Streak → Rank Orchestration
================================================================

Recording practice is an explicit two-step flow, never a side effect of
saving a translation or a post:

    result = await recorder.record(user_id, "translation")

1. The streak update runs (and commits) on a worker thread.
2. A rank sync for the same ``(user, kind)`` is queued and the call
   returns without waiting for it.

:class:`RankSyncQueue` keeps syncs for one ``(user, kind)`` strictly in
submission order, while different users proceed in parallel.  Each sync
re-reads the streak's current count inside its own transaction, so even a
late sync writes the newest count, never a stale one.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import TYPE_CHECKING

from cadence.constants import DEFAULT_TIMEZONE
from cadence.database.engine import run_db
from cadence.database.models import ActivityKind
from cadence.engine.streak import Transition
from cadence.services.rank_service import RankChangeResult, sync_rank_from_streak
from cadence.services.streak_service import StreakResult, parse_activity_kind, record_activity

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from cadence.engine.tiers import TierCatalog

logger = logging.getLogger(__name__)


class RankSyncQueue:
    """Per-key ordered, fire-and-forget rank syncs."""

    def __init__(self, engine: Engine, catalog: TierCatalog | None = None) -> None:
        self.engine = engine
        self.catalog = catalog
        self._locks: dict[tuple[int, str], asyncio.Lock] = {}
        self._users: dict[tuple[int, str], int] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, user_id: int, kind: str | ActivityKind) -> asyncio.Task:
        """Queue a sync; must be called from inside the event loop."""
        kind = parse_activity_kind(kind)
        task = asyncio.get_running_loop().create_task(
            self._run(user_id, kind), name=f"rank-sync-{user_id}-{kind}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, user_id: int, kind: ActivityKind) -> RankChangeResult | None:
        key = (user_id, kind.value)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                return await self._sync(user_id, kind)
        finally:
            # Drop the lock once no task holds or awaits it.
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    async def _sync(self, user_id: int, kind: ActivityKind) -> RankChangeResult | None:
        try:
            return await run_db(
                sync_rank_from_streak, self.engine, user_id, kind, catalog=self.catalog,
            )
        except Exception:
            logger.exception(
                "Rank sync failed for user=%s kind=%s", user_id, kind,
                extra={"task": "rank_sync"},
            )
            return None

    async def drain(self) -> None:
        """Wait for every queued sync to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class ActivityRecorder:
    """Entry point for callers that credit practice.

    *default_timezone* decides the local day for users with no stored zone.
    """

    def __init__(
        self,
        engine: Engine,
        rank_queue: RankSyncQueue,
        *,
        default_timezone: str = DEFAULT_TIMEZONE,
    ) -> None:
        self.engine = engine
        self.rank_queue = rank_queue
        self.default_timezone = default_timezone

    async def record(
        self,
        user_id: int,
        kind: str | ActivityKind,
        today: date | None = None,
        *,
        reference_id: str | None = None,
        now: datetime | None = None,
    ) -> StreakResult:
        """Credit the streak, then queue the rank sync when state moved."""
        result = await run_db(
            record_activity, self.engine, user_id, kind, today,
            reference_id=reference_id, now=now, default_timezone=self.default_timezone,
        )
        if not result.already_recorded and result.transition is not Transition.IGNORED:
            self.rank_queue.submit(user_id, result.kind)
        return result
