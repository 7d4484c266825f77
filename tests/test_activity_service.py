"""
tests/test_activity_service.py — Streak → Rank Orchestration Tests
===================================================================
ActivityRecorder credits the streak, then queues the rank sync on the
per-(user, kind) ordered RankSyncQueue.
"""

from __future__ import annotations

import logging
from datetime import date
from unittest.mock import MagicMock, patch

import pytest
from conftest import make_user, run_async, utc
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from cadence.database.models import Rank, RankHistory
from cadence.services.activity_service import ActivityRecorder, RankSyncQueue


@pytest.fixture
def engine(seeded_engine):
    return seeded_engine


def _rank_days(engine, user_id: int = 1, kind: str = "writing") -> int | None:
    with Session(engine) as session:
        return session.scalar(
            select(Rank.days_count).where(Rank.user_id == user_id, Rank.kind == kind)
        )


class TestActivityRecorder:
    def test_record_then_sync(self, engine):
        async def _inner():
            queue = RankSyncQueue(engine)
            recorder = ActivityRecorder(engine, queue)
            for day in (1, 2, 3):
                result = await recorder.record(1, "writing", date(2024, 1, day))
                await queue.drain()
            return result, queue

        result, queue = run_async(_inner())
        assert result.current_count == 3
        assert queue.pending == 0
        assert _rank_days(engine) == 3
        with Session(engine) as session:
            assert session.scalar(select(func.count(RankHistory.id))) == 3

    def test_duplicate_day_does_not_queue_sync(self, engine):
        queue = MagicMock(spec=RankSyncQueue)
        recorder = ActivityRecorder(engine, queue)

        async def _inner():
            await recorder.record(1, "translation", date(2024, 1, 1))
            await recorder.record(1, "translation", date(2024, 1, 1))

        run_async(_inner())
        queue.submit.assert_called_once()

    def test_backdated_does_not_queue_sync(self, engine):
        queue = MagicMock(spec=RankSyncQueue)
        recorder = ActivityRecorder(engine, queue)

        async def _inner():
            await recorder.record(1, "translation", date(2024, 1, 5))
            await recorder.record(1, "translation", date(2024, 1, 2))

        run_async(_inner())
        assert queue.submit.call_count == 1

    def test_configured_zone_decides_day_for_users_without_one(self, engine):
        make_user(engine, 7, timezone="")
        queue = MagicMock(spec=RankSyncQueue)
        recorder = ActivityRecorder(engine, queue, default_timezone="Asia/Ho_Chi_Minh")

        # 18:30 UTC on the 14th is already 01:30 on the 15th in Hanoi.
        result = run_async(recorder.record(7, "translation", now=utc(2024, 1, 14, 18, 30)))

        assert result.last_date == date(2024, 1, 15)
        queue.submit.assert_called_once_with(7, result.kind)

    def test_stored_zone_beats_configured_default(self, engine):
        make_user(engine, 8, timezone="UTC")
        recorder = ActivityRecorder(
            engine, MagicMock(spec=RankSyncQueue), default_timezone="Asia/Ho_Chi_Minh"
        )
        result = run_async(recorder.record(8, "translation", now=utc(2024, 1, 14, 18, 30)))
        assert result.last_date == date(2024, 1, 14)



class TestRankSyncQueue:
    def test_syncs_for_one_key_run_in_order(self, engine):
        from cadence.services.streak_service import record_activity

        record_activity(engine, 1, "writing", date(2024, 1, 1))
        record_activity(engine, 1, "writing", date(2024, 1, 2))

        async def _inner():
            queue = RankSyncQueue(engine)
            tasks = [queue.submit(1, "writing") for _ in range(3)]
            await queue.drain()
            return [t.result() for t in tasks]

        results = run_async(_inner())
        assert [r.days_count for r in results] == [2, 2, 2]
        assert [r.changed for r in results] == [True, False, False]

    def test_failure_is_logged_not_raised(self, db_engine, caplog):
        async def _inner():
            queue = RankSyncQueue(db_engine)
            task = queue.submit(1, "writing")
            await queue.drain()
            return task.result()

        with caplog.at_level(logging.ERROR):
            assert run_async(_inner()) is None
        assert "Rank sync failed" in caplog.text

    def test_submit_requires_running_loop(self, engine):
        with pytest.raises(RuntimeError):
            RankSyncQueue(engine).submit(1, "writing")

    def test_locks_released_after_drain(self, engine):
        async def _inner():
            queue = RankSyncQueue(engine)
            for user_id in range(1, 41):
                queue.submit(user_id, "writing")
                queue.submit(user_id, "translation")
            queue.submit(1, "writing")
            await queue.drain()
            return queue

        with patch("cadence.services.activity_service.sync_rank_from_streak") as sync:
            queue = run_async(_inner())
        assert sync.call_count == 81
        assert queue.pending == 0
        assert queue._locks == {}
        assert queue._users == {}
