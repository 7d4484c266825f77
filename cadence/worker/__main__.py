"""
cadence.worker.__main__ — Entry point for ``python -m cadence.worker``
======================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (infrastructure settings).
3. Create the SQLAlchemy engine, ensure tables exist, seed catalogs.
4. Build the text generator client (if an API key is configured).
5. Start the scheduler ticker and run until interrupted.

Run with::

    uv run python -m cadence.worker
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from datetime import timedelta

from dotenv import load_dotenv

from cadence.config import CadenceConfig, load_config
from cadence.database.engine import create_db_engine, init_db
from cadence.errors import CadenceError
from cadence.services.activity_service import ActivityRecorder, RankSyncQueue
from cadence.services.scheduler_service import JobOptions
from cadence.services.text_generator import GeminiTextGenerator, TextGenerator
from cadence.worker.ticker import ScheduleTicker

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("cadence")


def build_generator(cfg: CadenceConfig) -> TextGenerator | None:
    """The Gemini client, or ``None`` when no API key is configured."""
    api_key = os.getenv("GEMINI_API_KEY")
    if not api_key or api_key == "your-gemini-api-key-here":
        logger.warning(
            "GEMINI_API_KEY is not set; generated titles fall back to dates "
            "and generated posts are skipped."
        )
        return None
    return GeminiTextGenerator(
        api_key,
        model=cfg.generator_model,
        base_url=cfg.generator_base_url,
        timeout=cfg.generator_timeout_seconds,
    )


def build_ticker(engine, cfg: CadenceConfig, generator: TextGenerator | None) -> ScheduleTicker:
    options = JobOptions(
        generator_timeout=cfg.generator_timeout_seconds,
        tolerance=timedelta(seconds=cfg.fire_tolerance_seconds),
        title_master_prompt=cfg.title_master_prompt,
        content_master_prompt=cfg.content_master_prompt,
    )
    return ScheduleTicker(
        engine,
        generator,
        interval=cfg.tick_seconds,
        options=options,
        concurrency=cfg.max_concurrent_jobs,
    )


def build_recorder(engine, cfg: CadenceConfig) -> ActivityRecorder:
    """The practice recorder for processes that credit streaks."""
    return ActivityRecorder(
        engine, RankSyncQueue(engine), default_timezone=cfg.default_timezone
    )


async def _serve(ticker: ScheduleTicker) -> None:
    ticker.start(asyncio.get_running_loop())
    try:
        await asyncio.Event().wait()
    finally:
        ticker.stop()


def main() -> None:
    """Bootstrap and run the scheduler worker."""

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Infrastructure configuration.
    try:
        cfg = load_config()
    except (FileNotFoundError, KeyError, CadenceError) as exc:
        logger.critical("Invalid configuration: %s", exc)
        sys.exit(1)
    logger.info("Loaded config for %s", cfg.platform_name)

    # 3. Database.
    try:
        engine = create_db_engine()
    except RuntimeError as exc:
        logger.critical("%s", exc)
        sys.exit(1)
    init_db(engine)

    # 4. Collaborators.
    generator = build_generator(cfg)
    ticker = build_ticker(engine, cfg, generator)

    # 5. Run.
    try:
        asyncio.run(_serve(ticker))
    except KeyboardInterrupt:
        logger.info("Scheduler worker stopped.")


if __name__ == "__main__":
    main()
