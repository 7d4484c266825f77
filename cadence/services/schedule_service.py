"""
cadence.services.schedule_service — Community Schedule Management
==================================================================

Admin-facing create/update/delete for the single recurrence config each
community owns.  Creation is an idempotent upsert keyed on
``community_id``; deletion is a soft delete so the scheduler simply stops
seeing the row.

Validation happens before any state is touched and raises
:class:`~cadence.errors.ValidationError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cadence.constants import DEFAULT_TIMEZONE, DEFAULT_WORD_MAX, DEFAULT_WORD_MIN, WORD_LIMIT_CEILING
from cadence.database.models import AdminActionType, Community, CommunitySchedule, SchedulePeriod
from cadence.engine.schedule import Recurrence
from cadence.errors import ValidationError
from cadence.services.admin_service import _log_admin_action, _row_to_dict

logger = logging.getLogger(__name__)

EDITABLE_FIELDS: tuple[str, ...] = (
    "local_time", "timezone", "period",
    "auto_gen_title", "title_prompt",
    "auto_gen_content", "content_prompt",
    "word_min", "word_max", "active",
)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ScheduleFields:
    """A validated, normalised schedule payload."""

    local_time: str
    timezone: str
    period: SchedulePeriod
    auto_gen_title: bool
    title_prompt: str | None
    auto_gen_content: bool
    content_prompt: str | None
    word_min: int
    word_max: int
    active: bool

    def as_columns(self) -> dict[str, Any]:
        return {
            "local_time": self.local_time,
            "timezone": self.timezone,
            "period": self.period.value,
            "auto_gen_title": self.auto_gen_title,
            "title_prompt": self.title_prompt,
            "auto_gen_content": self.auto_gen_content,
            "content_prompt": self.content_prompt,
            "word_min": self.word_min,
            "word_max": self.word_max,
            "active": self.active,
        }


def _clean_prompt(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_bool(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{name} must be true or false", details={name: value})
    return value


def _as_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer", details={name: value})
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be an integer", details={name: value}) from exc


def validate_schedule(payload: dict[str, Any]) -> ScheduleFields:
    """Validate a full schedule payload, filling defaults for absent keys.

    Raises
    ------
    ValidationError
        Malformed time, unknown timezone or period, a missing prompt for an
        enabled generator, or word limits out of range.
    """
    unknown = set(payload) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(
            f"Unknown schedule fields: {', '.join(sorted(unknown))}",
            details={"fields": sorted(unknown)},
        )
    if not payload.get("local_time"):
        raise ValidationError("Schedule time is required", details={"field": "local_time"})

    recurrence = Recurrence.build(
        payload["local_time"],
        payload.get("timezone") or DEFAULT_TIMEZONE,
        payload.get("period") or SchedulePeriod.DAILY.value,
    )

    auto_gen_title = _as_bool("auto_gen_title", payload.get("auto_gen_title", False))
    auto_gen_content = _as_bool("auto_gen_content", payload.get("auto_gen_content", False))
    active = _as_bool("active", payload.get("active", True))
    title_prompt = _clean_prompt(payload.get("title_prompt"))
    content_prompt = _clean_prompt(payload.get("content_prompt"))

    if auto_gen_title and not title_prompt:
        raise ValidationError(
            "Title prompt is required when auto-generating titles",
            details={"field": "title_prompt"},
        )
    if auto_gen_content and not content_prompt:
        raise ValidationError(
            "Content prompt is required when auto-generating content",
            details={"field": "content_prompt"},
        )

    word_min = _as_int("word_min", payload.get("word_min", DEFAULT_WORD_MIN))
    word_max = _as_int("word_max", payload.get("word_max", DEFAULT_WORD_MAX))
    if word_min < 1 or word_max > WORD_LIMIT_CEILING:
        raise ValidationError(
            f"Word limits must lie within 1..{WORD_LIMIT_CEILING}",
            details={"word_min": word_min, "word_max": word_max},
        )
    if word_min > word_max:
        raise ValidationError(
            "Minimum word limit cannot exceed maximum",
            details={"word_min": word_min, "word_max": word_max},
        )

    return ScheduleFields(
        local_time=recurrence.local_time.strftime("%H:%M"),
        timezone=recurrence.timezone,
        period=recurrence.period,
        auto_gen_title=auto_gen_title,
        title_prompt=title_prompt,
        auto_gen_content=auto_gen_content,
        content_prompt=content_prompt,
        word_min=word_min,
        word_max=word_max,
        active=active,
    )


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------
def _find(
    session: Session, community_id: int, *, lock: bool = False
) -> CommunitySchedule | None:
    stmt = select(CommunitySchedule).where(CommunitySchedule.community_id == community_id)
    if lock:
        stmt = stmt.with_for_update()
    return session.scalar(stmt)


def _insert(
    session: Session, community_id: int, fields: ScheduleFields
) -> CommunitySchedule | None:
    """Insert the first schedule row; ``None`` if a concurrent upsert won."""
    schedule = CommunitySchedule(community_id=community_id, **fields.as_columns())
    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(schedule)
            session.flush()
    except IntegrityError:
        logger.debug("Schedule for community=%s created concurrently", community_id)
        return None
    return schedule


def upsert_schedule(
    engine,
    community_id: int,
    *,
    actor_id: int | None = None,
    **payload: Any,
) -> CommunitySchedule:
    """Create or replace *community_id*'s schedule.

    Missing fields take their defaults, so the payload always describes the
    whole schedule.  Upserting over a soft-deleted row revives it.

    Raises
    ------
    ValidationError
        If the payload is invalid or the community does not exist.
    """
    fields = validate_schedule(payload)

    with Session(engine, expire_on_commit=False) as session:
        community = session.get(Community, community_id)
        if community is None or community.deleted:
            raise ValidationError(
                "Community not found", details={"community_id": community_id}
            )

        created = None
        schedule = _find(session, community_id, lock=True)
        if schedule is None:
            created = _insert(session, community_id, fields)
            if created is None:
                schedule = _find(session, community_id, lock=True)

        if created is not None:
            schedule, before, action = created, None, AdminActionType.CREATE
        else:
            before = _row_to_dict(schedule)
            for key, value in fields.as_columns().items():
                setattr(schedule, key, value)
            schedule.deleted = False
            action = AdminActionType.UPDATE
            session.flush()

        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=action,
            target_table="community_schedules",
            target_id=str(schedule.id),
            before=before,
            after=_row_to_dict(schedule),
        )
        session.commit()
        session.refresh(schedule)
        session.expunge(schedule)

    logger.info(
        "Schedule %s for community=%s: %s %s %s",
        action.value.lower(), community_id, fields.period, fields.local_time, fields.timezone,
    )
    return schedule


def get_schedule(engine, community_id: int) -> CommunitySchedule | None:
    """The community's schedule, or ``None`` if absent or soft-deleted."""
    with Session(engine, expire_on_commit=False) as session:
        schedule = _find(session, community_id)
        if schedule is None or schedule.deleted:
            return None
        session.expunge(schedule)
        return schedule


def delete_schedule(engine, community_id: int, *, actor_id: int | None = None) -> bool:
    """Soft-delete the schedule.  Returns ``True`` if a live row was found."""
    with Session(engine) as session:
        schedule = _find(session, community_id)
        if schedule is None or schedule.deleted:
            return False
        before = _row_to_dict(schedule)
        schedule.deleted = True
        schedule.active = False
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.DELETE,
            target_table="community_schedules",
            target_id=str(schedule.id),
            before=before,
            after=_row_to_dict(schedule),
        )
        session.commit()

    logger.info("Schedule for community=%s deleted by actor=%s", community_id, actor_id)
    return True
