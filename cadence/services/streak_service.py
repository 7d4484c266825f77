"""
cadence.services.streak_service — Atomic Activity Recording
============================================================

Credits one practice day to a ``(user, kind)`` streak.

The whole read-modify-write is one transaction:

1. Lock (or lazily create) the streak row.
2. Insert the day's ``user_activities`` row inside a SAVEPOINT; the
   unique ``(user, kind, day)`` key makes a concurrent duplicate fail
   with ``IntegrityError`` instead of double-incrementing.
3. Run the pure transition from :mod:`cadence.engine.streak`.
4. Commit.

Rank syncing is **not** done here.  Callers (see
:mod:`cadence.services.activity_service`) trigger it as a separate,
explicit step once this commit has landed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cadence.constants import DEFAULT_TIMEZONE
from cadence.database.models import ActivityKind, Rank, Streak, User, UserActivity
from cadence.engine.clock import local_today
from cadence.engine.rank import format_rank
from cadence.engine.streak import FreezeStatus, StreakState, Transition, advance_streak
from cadence.errors import ValidationError

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class StreakResult:
    """Outcome of :func:`record_activity`."""

    user_id: int
    kind: ActivityKind
    current_count: int
    max_count: int
    last_date: date | None
    freeze_status: FreezeStatus | None
    transition: Transition
    already_recorded: bool = False

    def to_dict(self) -> dict:
        return {
            "current_streak": self.current_count,
            "max_streak": self.max_count,
            "last_date": self.last_date.isoformat() if self.last_date else None,
            "freeze_status": (
                self.freeze_status.to_dict() if self.freeze_status else {"active": False}
            ),
        }


@dataclass(frozen=True, slots=True)
class StreakSnapshot:
    """Read-side view of one streak plus its current rank label."""

    kind: ActivityKind
    current_count: int
    max_count: int
    last_date: date | None
    freeze_status: FreezeStatus | None
    rank_display: str | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def parse_activity_kind(kind: str | ActivityKind) -> ActivityKind:
    """Normalise *kind* or raise :class:`ValidationError`."""
    try:
        return ActivityKind(str(kind).lower())
    except ValueError as exc:
        raise ValidationError(
            f"Unknown activity kind: {kind!r}",
            details={"kind": kind, "allowed": [k.value for k in ActivityKind]},
        ) from exc


def state_of(streak: Streak) -> StreakState:
    return StreakState(
        current_count=streak.current_count or 0,
        max_count=streak.max_count or 0,
        last_date=streak.last_date,
        freeze_until=streak.freeze_until,
        recovery_tasks_completed=streak.recovery_tasks_completed or 0,
    )


def _apply_state(streak: Streak, state: StreakState) -> None:
    streak.current_count = state.current_count
    streak.max_count = state.max_count
    streak.last_date = state.last_date
    streak.freeze_until = state.freeze_until
    streak.recovery_tasks_completed = state.recovery_tasks_completed


def _select_streak(user_id: int, kind: ActivityKind):
    return (
        select(Streak)
        .where(Streak.user_id == user_id, Streak.kind == kind.value)
        .with_for_update()
    )


def get_or_create_streak(session: Session, user_id: int, kind: ActivityKind) -> Streak:
    """Fetch the streak row locked ``FOR UPDATE``, creating it if missing.

    Two first-ever activities racing each other both try the insert; the
    loser's SAVEPOINT rolls back on the unique key and it re-reads the
    winner's row under the lock.
    """
    streak = session.scalar(_select_streak(user_id, kind))
    if streak is not None:
        return streak

    try:
        with session.begin_nested():   # SAVEPOINT
            streak = Streak(
                user_id=user_id, kind=kind.value,
                current_count=0, max_count=0, recovery_tasks_completed=0,
            )
            session.add(streak)
            session.flush()
        return streak
    except IntegrityError:
        logger.debug("Streak row for user=%s kind=%s created concurrently", user_id, kind)
        return session.scalars(_select_streak(user_id, kind)).one()


def _result(
    user_id: int,
    kind: ActivityKind,
    state: StreakState,
    transition: Transition,
    already_recorded: bool = False,
) -> StreakResult:
    return StreakResult(
        user_id=user_id,
        kind=kind,
        current_count=state.current_count,
        max_count=state.max_count,
        last_date=state.last_date,
        freeze_status=state.freeze_status,
        transition=transition,
        already_recorded=already_recorded,
    )


def _resolve_today(
    session: Session, user_id: int, now: datetime | None, default_timezone: str
) -> date:
    user = session.get(User, user_id)
    tz_name = (user.timezone if user is not None else None) or default_timezone
    return local_today(tz_name, now)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def record_activity(
    engine: Engine,
    user_id: int,
    kind: str | ActivityKind,
    today: date | None = None,
    *,
    reference_id: str | None = None,
    now: datetime | None = None,
    default_timezone: str = DEFAULT_TIMEZONE,
) -> StreakResult:
    """Credit *user_id*'s *kind* streak for the local day *today*.

    Idempotent per calendar day: a second call for the same day returns the
    unchanged state with ``already_recorded=True``.

    Parameters
    ----------
    today:
        The user's local civil date.  When omitted it is derived from the
        user's stored timezone (falling back to *default_timezone*) at
        *now*.
    reference_id:
        Optional id of the translation/post that earned the credit.

    Raises
    ------
    ValidationError
        If *kind* is not a known activity kind.
    """
    kind = parse_activity_kind(kind)

    with Session(engine, expire_on_commit=False) as session:
        if today is None:
            today = _resolve_today(session, user_id, now, default_timezone)

        streak = get_or_create_streak(session, user_id, kind)

        already = session.scalar(
            select(UserActivity.id).where(
                UserActivity.user_id == user_id,
                UserActivity.kind == kind.value,
                UserActivity.activity_date == today,
            )
        )
        if already is not None:
            session.commit()
            return _result(
                user_id, kind, state_of(streak), Transition.ALREADY_RECORDED, True
            )

        new_state, transition = advance_streak(state_of(streak), today)
        if transition in (Transition.ALREADY_RECORDED, Transition.IGNORED):
            session.commit()
            if transition is Transition.IGNORED:
                logger.warning(
                    "Ignoring back-dated activity user=%s kind=%s day=%s (last=%s)",
                    user_id, kind, today, streak.last_date,
                )
            return _result(
                user_id, kind, new_state, transition,
                already_recorded=transition is Transition.ALREADY_RECORDED,
            )

        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(UserActivity(
                    user_id=user_id, kind=kind.value,
                    activity_date=today, reference_id=reference_id,
                ))
                session.flush()
        except IntegrityError:
            # A concurrent request credited the same day first.
            session.commit()
            return _result(
                user_id, kind, state_of(streak), Transition.ALREADY_RECORDED, True
            )

        _apply_state(streak, new_state)
        session.commit()

    logger.info(
        "Streak %s user=%s kind=%s day=%s → current=%d max=%d",
        transition, user_id, kind, today, new_state.current_count, new_state.max_count,
    )
    return _result(user_id, kind, new_state, transition)


def get_streak_state(engine: Engine, user_id: int, kind: str | ActivityKind) -> StreakState:
    """Current state for one ``(user, kind)``; the zero state if none exists."""
    kind = parse_activity_kind(kind)
    with Session(engine) as session:
        streak = session.scalar(
            select(Streak).where(Streak.user_id == user_id, Streak.kind == kind.value)
        )
        return state_of(streak) if streak is not None else StreakState()


def get_user_streaks(engine: Engine, user_id: int) -> dict[ActivityKind, StreakSnapshot]:
    """Every activity kind's streak for *user_id*, with the current rank label.

    Kinds without a streak row are reported in the zero state.
    """
    with Session(engine) as session:
        streaks = {
            s.kind: s
            for s in session.scalars(select(Streak).where(Streak.user_id == user_id))
        }
        ranks = {
            r.kind: r
            for r in session.scalars(select(Rank).where(Rank.user_id == user_id))
        }

        snapshots: dict[ActivityKind, StreakSnapshot] = {}
        for kind in ActivityKind:
            streak = streaks.get(kind.value)
            state = state_of(streak) if streak is not None else StreakState()
            rank = ranks.get(kind.value)
            display = (
                format_rank(rank.major_tier.name, rank.sub_major_tier.name, rank.minor_tier.name)
                if rank is not None else None
            )
            snapshots[kind] = StreakSnapshot(
                kind=kind,
                current_count=state.current_count,
                max_count=state.max_count,
                last_date=state.last_date,
                freeze_status=state.freeze_status,
                rank_display=display,
            )
        return snapshots
