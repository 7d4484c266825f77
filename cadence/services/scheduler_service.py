"""
cadence.services.scheduler_service — Scheduled Block Generation
================================================================

One tick enumerates every active schedule and, for each one the matcher
says should fire, runs the job:

  1. Resolve the block title.  With ``auto_gen_title`` the text generator
     is asked; any failure falls back to ``DD-MM-YYYY`` in the schedule's
     timezone.
  2. Create the block for the period bucket.  The insert is conditional
     on the ``(community_id, bucket_key)`` unique key, so two ticks or
     two worker processes racing for the same bucket produce one block;
     the loser sees :class:`~cadence.errors.IdempotencyConflict` and
     stops quietly.
  3. With ``auto_gen_content``, generate the post.  A failure here skips
     the post only; the block is already committed and stays.

Each schedule runs inside its own ``try`` so one broken community never
stops the rest of the tick.  DB work goes through ``run_db``; generator
calls are bounded by ``asyncio.wait_for``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cadence.constants import AUTO_POST_TITLE
from cadence.database.engine import run_db
from cadence.database.models import Block, Community, CommunitySchedule, Post
from cadence.engine.clock import to_local
from cadence.engine.schedule import (
    DEFAULT_TOLERANCE,
    Recurrence,
    fallback_title,
    period_bucket_key,
    scheduled_occurrence,
)
from cadence.errors import ExternalServiceError, IdempotencyConflict, ValidationError
from cadence.services.text_generator import (
    TextGenerator,
    build_content_prompt,
    build_title_prompt,
    clean_title,
    content_constraints,
    count_words,
    fit_word_limit,
    title_constraints,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ScheduleSnapshot:
    """Detached copy of one schedule row plus its community owner."""

    id: int
    community_id: int
    owner_id: int | None
    recurrence: Recurrence
    auto_gen_title: bool
    title_prompt: str | None
    auto_gen_content: bool
    content_prompt: str | None
    word_min: int
    word_max: int


@dataclass(frozen=True, slots=True)
class JobOptions:
    """Per-tick knobs, normally taken from :class:`~cadence.config.CadenceConfig`."""

    generator_timeout: float = 30.0
    tolerance: timedelta = DEFAULT_TOLERANCE
    title_master_prompt: str | None = None
    content_master_prompt: str | None = None


@dataclass(slots=True)
class ScheduleRunResult:
    schedule_id: int
    community_id: int
    status: str  # skipped | created | duplicate | failed
    bucket_key: str | None = None
    block_id: int | None = None
    post_id: int | None = None
    title_fallback: bool = False
    error: str | None = None


@dataclass(slots=True)
class TickResult:
    checked: int = 0
    results: list[ScheduleRunResult] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def created(self) -> int:
        return self.count("created")

    @property
    def failed(self) -> int:
        return self.count("failed")


# ---------------------------------------------------------------------------
# Synchronous DB steps (called through run_db)
# ---------------------------------------------------------------------------
def _snapshot(schedule: CommunitySchedule, owner_id: int | None) -> ScheduleSnapshot | None:
    try:
        recurrence = Recurrence.build(schedule.local_time, schedule.timezone, schedule.period)
    except ValidationError:
        logger.error(
            "Schedule %s has an invalid recurrence (%r %r %r); skipping",
            schedule.id, schedule.local_time, schedule.timezone, schedule.period,
        )
        return None
    return ScheduleSnapshot(
        id=schedule.id,
        community_id=schedule.community_id,
        owner_id=owner_id,
        recurrence=recurrence,
        auto_gen_title=bool(schedule.auto_gen_title),
        title_prompt=schedule.title_prompt,
        auto_gen_content=bool(schedule.auto_gen_content),
        content_prompt=schedule.content_prompt,
        word_min=schedule.word_min,
        word_max=schedule.word_max,
    )


def load_active_schedules(engine: Engine) -> list[ScheduleSnapshot]:
    """Active, non-deleted schedules of active communities."""
    stmt = (
        select(CommunitySchedule, Community.owner_id)
        .join(Community, CommunitySchedule.community_id == Community.id)
        .where(
            CommunitySchedule.active.is_(True),
            CommunitySchedule.deleted.is_(False),
            Community.is_active.is_(True),
            Community.deleted.is_(False),
        )
        .order_by(CommunitySchedule.id)
    )
    with Session(engine) as session:
        snapshots = [_snapshot(s, owner_id) for s, owner_id in session.execute(stmt)]
    return [s for s in snapshots if s is not None]


def load_schedule(engine: Engine, community_id: int) -> ScheduleSnapshot | None:
    """One community's live schedule, regardless of the ``active`` flag."""
    stmt = (
        select(CommunitySchedule, Community.owner_id)
        .join(Community, CommunitySchedule.community_id == Community.id)
        .where(
            CommunitySchedule.community_id == community_id,
            CommunitySchedule.deleted.is_(False),
        )
    )
    with Session(engine) as session:
        row = session.execute(stmt).first()
        return _snapshot(row[0], row[1]) if row is not None else None


def get_latest_bucket_key(engine: Engine, community_id: int) -> str | None:
    """Bucket key of the community's most recent auto-generated block."""
    with Session(engine) as session:
        return session.scalar(
            select(Block.bucket_key)
            .where(
                Block.community_id == community_id,
                Block.is_auto_generated.is_(True),
                Block.bucket_key.is_not(None),
            )
            .order_by(Block.id.desc())
            .limit(1)
        )


def create_block_for_bucket(
    engine: Engine,
    schedule: ScheduleSnapshot,
    bucket_key: str,
    title: str,
    block_date: date,
    now: datetime,
) -> int:
    """Atomically create the bucket's block and stamp ``last_execution``.

    Raises
    ------
    IdempotencyConflict
        If a block for ``(community_id, bucket_key)`` already exists.
    """
    with Session(engine) as session:
        block = Block(
            community_id=schedule.community_id,
            schedule_id=schedule.id,
            title=title,
            block_date=block_date,
            bucket_key=bucket_key,
            is_auto_generated=True,
        )
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(block)
                session.flush()
        except IntegrityError as exc:
            session.rollback()
            raise IdempotencyConflict(
                "Block already exists for this period",
                details={"community_id": schedule.community_id, "bucket_key": bucket_key},
            ) from exc

        row = session.get(CommunitySchedule, schedule.id)
        if row is not None:
            row.last_execution = now
        session.commit()
        return block.id


def create_auto_post(
    engine: Engine,
    block_id: int,
    author_id: int | None,
    block_title: str,
    content: str,
) -> int:
    with Session(engine) as session:
        post = Post(
            block_id=block_id,
            author_id=author_id,
            title=AUTO_POST_TITLE.format(block_title=block_title),
            content=content,
            word_count=count_words(content),
            is_auto_generated=True,
        )
        session.add(post)
        session.commit()
        return post.id


# ---------------------------------------------------------------------------
# Async job steps
# ---------------------------------------------------------------------------
async def _generate(
    generator: TextGenerator, prompt: str, constraints, timeout: float
) -> str:
    try:
        return await asyncio.wait_for(generator.generate(prompt, constraints), timeout)
    except TimeoutError as exc:
        raise ExternalServiceError(f"Text generator timed out after {timeout}s") from exc


async def resolve_title(
    generator: TextGenerator | None,
    schedule: ScheduleSnapshot,
    now: datetime,
    options: JobOptions,
) -> tuple[str, bool]:
    """Return ``(title, used_fallback)``.  Never raises for generator errors."""
    fallback = fallback_title(schedule.recurrence, now)
    if not schedule.auto_gen_title or not schedule.title_prompt or generator is None:
        return fallback, False

    local_day = to_local(now, schedule.recurrence.timezone).date()
    prompt = build_title_prompt(schedule.title_prompt, local_day, options.title_master_prompt)
    try:
        raw = await _generate(generator, prompt, title_constraints(), options.generator_timeout)
        return clean_title(raw), False
    except ExternalServiceError as exc:
        logger.warning(
            "Title generation failed for schedule %s, using %r: %s",
            schedule.id, fallback, exc,
        )
        return fallback, True


async def generate_content(
    generator: TextGenerator, schedule: ScheduleSnapshot, options: JobOptions
) -> str:
    prompt = build_content_prompt(
        schedule.content_prompt or "", schedule.word_min, schedule.word_max,
        options.content_master_prompt,
    )
    raw = await _generate(
        generator,
        prompt,
        content_constraints(schedule.word_min, schedule.word_max),
        options.generator_timeout,
    )
    return fit_word_limit(raw, schedule.word_max)


async def execute_schedule(
    engine: Engine,
    generator: TextGenerator | None,
    schedule: ScheduleSnapshot,
    now: datetime,
    bucket_key: str,
    options: JobOptions,
    *,
    occurrence: datetime | None = None,
) -> ScheduleRunResult:
    """Run title → block → post for one bucket.  Callers decide *whether*.

    *occurrence* is the scheduled moment the run belongs to; the block date
    and fallback title follow it.  Defaults to *now*.
    """
    result = ScheduleRunResult(
        schedule_id=schedule.id, community_id=schedule.community_id,
        status="created", bucket_key=bucket_key,
    )

    occurrence = occurrence or now
    title, result.title_fallback = await resolve_title(generator, schedule, occurrence, options)
    local_day = to_local(occurrence, schedule.recurrence.timezone).date()

    try:
        result.block_id = await run_db(
            create_block_for_bucket, engine, schedule, bucket_key, title, local_day, now,
        )
    except IdempotencyConflict:
        logger.debug(
            "Bucket %s for community %s already serviced",
            bucket_key, schedule.community_id,
        )
        result.status = "duplicate"
        return result

    logger.info(
        "Created block %s %r for community %s (bucket %s)",
        result.block_id, title, schedule.community_id, bucket_key,
    )

    if schedule.auto_gen_content and schedule.content_prompt and generator is not None:
        try:
            content = await generate_content(generator, schedule, options)
        except ExternalServiceError as exc:
            logger.warning(
                "Content generation failed for schedule %s; block %s kept without a post: %s",
                schedule.id, result.block_id, exc,
            )
            return result
        result.post_id = await run_db(
            create_auto_post, engine, result.block_id, schedule.owner_id, title, content,
        )
        logger.info("Created post %s in block %s", result.post_id, result.block_id)

    return result


async def run_schedule(
    engine: Engine,
    generator: TextGenerator | None,
    schedule: ScheduleSnapshot,
    now: datetime,
    options: JobOptions,
    *,
    force: bool = False,
) -> ScheduleRunResult:
    """Evaluate and (maybe) execute one schedule, never raising.

    ``force`` skips the time-of-day and weekday checks but still honours
    the period bucket.
    """
    try:
        if force:
            occurrence = now
        else:
            occurrence = scheduled_occurrence(schedule.recurrence, now, options.tolerance)
            if occurrence is None:
                return ScheduleRunResult(schedule.id, schedule.community_id, "skipped")

        bucket_key = period_bucket_key(schedule.recurrence, occurrence)
        latest = await run_db(get_latest_bucket_key, engine, schedule.community_id)
        if latest == bucket_key:
            return ScheduleRunResult(
                schedule.id, schedule.community_id, "skipped", bucket_key=bucket_key
            )

        return await execute_schedule(
            engine, generator, schedule, now, bucket_key, options, occurrence=occurrence,
        )
    except Exception as exc:
        logger.exception(
            "Scheduled job failed for schedule %s", schedule.id,
            extra={"schedule_id": schedule.id, "community_id": schedule.community_id},
        )
        return ScheduleRunResult(
            schedule.id, schedule.community_id, "failed", error=str(exc) or type(exc).__name__
        )


async def run_tick(
    engine: Engine,
    generator: TextGenerator | None,
    now: datetime | None = None,
    *,
    options: JobOptions | None = None,
    concurrency: int = 4,
    inflight: set[int] | None = None,
) -> TickResult:
    """One pass over all active schedules.

    Schedules run concurrently, at most *concurrency* at a time.  When an
    *inflight* set is shared between overlapping ticks, ids already in it
    are skipped and each schedule holds its id there while it runs.
    """
    now = now or datetime.now(UTC)
    options = options or JobOptions()
    inflight = inflight if inflight is not None else set()
    schedules = await run_db(load_active_schedules, engine)
    schedules = [s for s in schedules if s.id not in inflight]
    inflight.update(s.id for s in schedules)

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _bounded(schedule: ScheduleSnapshot) -> ScheduleRunResult:
        try:
            async with semaphore:
                return await run_schedule(engine, generator, schedule, now, options)
        finally:
            inflight.discard(schedule.id)

    results = await asyncio.gather(*(_bounded(s) for s in schedules))
    tick = TickResult(checked=len(schedules), results=list(results))
    if tick.created or tick.failed:
        logger.info(
            "Scheduler tick: checked=%d created=%d failed=%d",
            tick.checked, tick.created, tick.failed,
        )
    return tick


async def run_schedule_now(
    engine: Engine,
    generator: TextGenerator | None,
    community_id: int,
    *,
    now: datetime | None = None,
    options: JobOptions | None = None,
) -> ScheduleRunResult:
    """Admin "execute now" for one community.

    Raises
    ------
    ValidationError
        If the community has no live schedule.
    """
    schedule = await run_db(load_schedule, engine, community_id)
    if schedule is None:
        raise ValidationError(
            "Community has no schedule", details={"community_id": community_id}
        )
    return await run_schedule(
        engine, generator, schedule, now or datetime.now(UTC), options or JobOptions(),
        force=True,
    )
