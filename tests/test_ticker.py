"""
tests/test_ticker.py — Scheduler Ticker & Worker Wiring Tests
==============================================================
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

from conftest import make_community, run_async, utc

from cadence.config import CadenceConfig
from cadence.services.scheduler_service import TickResult
from cadence.services.schedule_service import upsert_schedule
from cadence.services.text_generator import GeminiTextGenerator
from cadence.worker.ticker import ScheduleTicker


def _config(**overrides) -> CadenceConfig:
    values = dict(
        platform_name="Cadence",
        default_timezone="UTC",
        tick_seconds=60,
        fire_tolerance_seconds=90,
        max_concurrent_jobs=2,
        generator_model="gemini-pro",
        generator_base_url="https://generativelanguage.example/v1beta/models",
        generator_timeout_seconds=12.5,
    )
    values.update(overrides)
    return CadenceConfig(**values)


class TestScheduleTicker:
    def test_tick_once_creates_due_block(self, seeded_engine):
        community_id = make_community(seeded_engine)
        upsert_schedule(seeded_engine, community_id, local_time="06:00", timezone="UTC")

        ticker = ScheduleTicker(seeded_engine, None, concurrency=1)
        result = run_async(ticker.tick_once(utc(2024, 1, 15, 6, 0)))
        assert result.created == 1
        assert ticker._inflight == set()

    def test_start_and_stop(self):
        fake_tick = AsyncMock(return_value=TickResult())

        async def _inner():
            ticker = ScheduleTicker(MagicMock(), None, interval=0.01)
            ticker.start(asyncio.get_running_loop())
            assert ticker.running
            await asyncio.sleep(0.05)
            ticker.stop()
            await asyncio.sleep(0)
            return ticker

        with patch("cadence.worker.ticker.run_tick", new=fake_tick):
            ticker = run_async(_inner())
        assert not ticker.running
        assert fake_tick.await_count >= 2

    def test_start_is_idempotent(self):
        async def _inner():
            ticker = ScheduleTicker(MagicMock(), None, interval=10)
            loop = asyncio.get_running_loop()
            ticker.start(loop)
            first = ticker._task
            ticker.start(loop)
            same = ticker._task is first
            ticker.stop()
            return same

        with patch("cadence.worker.ticker.run_tick", new=AsyncMock(return_value=TickResult())):
            assert run_async(_inner())

    def test_failed_tick_is_swallowed_and_logged(self, caplog):
        failing = AsyncMock(side_effect=RuntimeError("db down"))

        async def _inner():
            ticker = ScheduleTicker(MagicMock(), None)
            await ticker._guarded_tick()

        with patch("cadence.worker.ticker.run_tick", new=failing):
            run_async(_inner())
        assert "Scheduler tick failed" in caplog.text


class TestWorkerWiring:
    def test_no_api_key_means_no_generator(self, monkeypatch):
        from cadence.worker.__main__ import build_generator

        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        assert build_generator(_config()) is None

    def test_placeholder_key_means_no_generator(self, monkeypatch):
        from cadence.worker.__main__ import build_generator

        monkeypatch.setenv("GEMINI_API_KEY", "your-gemini-api-key-here")
        assert build_generator(_config()) is None

    def test_generator_built_from_key(self, monkeypatch):
        from cadence.worker.__main__ import build_generator

        monkeypatch.setenv("GEMINI_API_KEY", "real-key")
        assert isinstance(build_generator(_config()), GeminiTextGenerator)

    def test_ticker_takes_config_values(self):
        from cadence.worker.__main__ import build_ticker

        ticker = build_ticker(MagicMock(), _config(title_master_prompt="M"), None)
        assert ticker.interval == 60
        assert ticker.concurrency == 2
        assert ticker.options.generator_timeout == 12.5
        assert ticker.options.tolerance.total_seconds() == 90
        assert ticker.options.title_master_prompt == "M"

    def test_recorder_takes_configured_timezone(self):
        from cadence.worker.__main__ import build_recorder

        engine = MagicMock()
        recorder = build_recorder(engine, _config(default_timezone="Asia/Ho_Chi_Minh"))
        assert recorder.default_timezone == "Asia/Ho_Chi_Minh"
        assert recorder.rank_queue.engine is engine
