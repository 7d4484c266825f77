"""
cadence.engine.streak — Streak Continuity State Machine
========================================================

Pure transition logic for one ``(user, activity kind)`` streak, driven by
whole calendar days in the user's local timezone.  The service layer owns
persistence and the same-day idempotency check; this module only answers
"given this state and this day, what is the next state?".

Rules, evaluated in order (first match wins):

1. ``today == last_date``                → already credited, unchanged.
2. ``today < last_date``                 → back-dated, unchanged.
3. ``last_date is None``                 → first activity, count = 1.
4. freeze active, ``today <= freeze_until`` → recovery credit; the third
   credit restores continuity without touching the count.
5. ``gap == 1``                          → count += 1, clears any stale freeze.
6. freeze active, ``today > freeze_until`` → freeze expired, reset to 1.
7. ``gap in {2, 3}``                     → open a freeze until ``today + 2``,
   the day itself is the first recovery credit.
8. otherwise                             → reset to 1.

``max_count`` is a high-water mark and never decreases.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from datetime import date, timedelta

FREEZE_DAYS = 2
RECOVERY_TASKS_REQUIRED = 3
MAX_FREEZABLE_GAP = 3


class Transition(enum.StrEnum):
    """Which rule fired for a single activity."""
    ALREADY_RECORDED = "already_recorded"
    IGNORED = "ignored"
    STARTED = "started"
    CONTINUED = "continued"
    FROZEN = "frozen"
    RECOVERY_CREDIT = "recovery_credit"
    RECOVERED = "recovered"
    RESET = "reset"


@dataclass(frozen=True, slots=True)
class FreezeStatus:
    """Public view of an open freeze."""

    until: date
    recovery_tasks_completed: int
    remaining_tasks: int

    def to_dict(self) -> dict:
        return {
            "active": True,
            "until": self.until.isoformat(),
            "recovery_tasks_completed": self.recovery_tasks_completed,
            "remaining_tasks": self.remaining_tasks,
        }


@dataclass(frozen=True, slots=True)
class StreakState:
    """Snapshot of one streak row."""

    current_count: int = 0
    max_count: int = 0
    last_date: date | None = None
    freeze_until: date | None = None
    recovery_tasks_completed: int = 0

    @property
    def freeze_active(self) -> bool:
        return self.freeze_until is not None

    @property
    def freeze_status(self) -> FreezeStatus | None:
        if self.freeze_until is None:
            return None
        return FreezeStatus(
            until=self.freeze_until,
            recovery_tasks_completed=self.recovery_tasks_completed,
            remaining_tasks=max(0, RECOVERY_TASKS_REQUIRED - self.recovery_tasks_completed),
        )

    def _thawed(self, **changes) -> StreakState:
        return replace(self, freeze_until=None, recovery_tasks_completed=0, **changes)


def advance_streak(state: StreakState, today: date) -> tuple[StreakState, Transition]:
    """Apply one credited activity on *today* to *state*.

    Returns the new state and the rule that produced it.  The input is
    never mutated.
    """
    last = state.last_date

    if last is not None and today == last:
        return state, Transition.ALREADY_RECORDED
    if last is not None and today < last:
        return state, Transition.IGNORED

    if last is None:
        return (
            state._thawed(current_count=1, max_count=max(state.max_count, 1), last_date=today),
            Transition.STARTED,
        )

    gap = (today - last).days

    if state.freeze_active and today <= state.freeze_until:
        credits = state.recovery_tasks_completed + 1
        if credits >= RECOVERY_TASKS_REQUIRED:
            return state._thawed(last_date=today), Transition.RECOVERED
        return (
            replace(state, recovery_tasks_completed=credits, last_date=today),
            Transition.RECOVERY_CREDIT,
        )

    if gap == 1:
        count = state.current_count + 1
        return (
            state._thawed(
                current_count=count,
                max_count=max(state.max_count, count),
                last_date=today,
            ),
            Transition.CONTINUED,
        )

    if not state.freeze_active and 2 <= gap <= MAX_FREEZABLE_GAP:
        return (
            replace(
                state,
                freeze_until=today + timedelta(days=FREEZE_DAYS),
                recovery_tasks_completed=1,
                last_date=today,
            ),
            Transition.FROZEN,
        )

    return (
        state._thawed(current_count=1, max_count=max(state.max_count, 1), last_date=today),
        Transition.RESET,
    )
