"""
cadence.services.rank_service — Rank Ledger
============================================

Keeps the current and highest-ever tier triple per ``(user, kind)`` and
appends a :class:`~cadence.database.models.RankHistory` row whenever the
resolved triple changes.

Direction is decided on each catalog's ``order`` field, compared
lexicographically as ``(major, sub_major, minor)``, never on raw list
indices.  The ``highest_*`` triple only ever moves up.

Read side: :func:`get_leaderboard`, :func:`get_rank_history`,
:func:`get_rank_statistics` and :func:`get_user_ranks`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from cadence.constants import DEFAULT_HISTORY_LIMIT, DEFAULT_LEADERBOARD_LIMIT
from cadence.database.models import (
    ActivityKind,
    Rank,
    RankChangeType,
    RankConstant,
    RankHistory,
    Streak,
    Tier,
    TierCategory,
    User,
)
from cadence.engine.rank import ResolvedRank, format_rank, resolve_rank
from cadence.engine.tiers import TierCatalog, TierRef
from cadence.errors import ConfigurationError, ValidationError
from cadence.services.streak_service import parse_activity_kind

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RankChangeResult:
    """Outcome of one :func:`sync_rank`."""

    user_id: int
    kind: ActivityKind
    days_count: int
    rank: ResolvedRank
    changed: bool
    change_type: RankChangeType | None = None
    highest_raised: bool = False

    @property
    def display(self) -> str:
        return self.rank.display


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    position: int
    user_id: int
    username: str | None
    days_count: int
    rank_display: str
    rank_color: str | None


@dataclass(frozen=True, slots=True)
class RankHistoryEntry:
    kind: ActivityKind
    days_count: int
    rank_display: str
    change_type: RankChangeType
    changed_at: datetime


@dataclass(frozen=True, slots=True)
class MajorTierCount:
    name: str
    color_code: str | None
    order: int
    users: int


@dataclass(frozen=True, slots=True)
class KindStatistics:
    """Population of one activity kind's ladder."""

    kind: ActivityKind
    ranked_users: int
    major_tiers: list[MajorTierCount]
    top: LeaderboardEntry | None


@dataclass(frozen=True, slots=True)
class RankStatistics:
    total_users: int
    by_kind: dict[ActivityKind, KindStatistics]


@dataclass(frozen=True, slots=True)
class UserRank:
    """A user's current and best-ever rank for one kind."""

    kind: ActivityKind
    days_count: int
    rank_display: str
    rank_color: str | None
    highest_days_count: int
    highest_display: str
    highest_color: str | None
    last_update: datetime


# ---------------------------------------------------------------------------
# Catalog & constants
# ---------------------------------------------------------------------------
def _tier_ref(tier: Tier) -> TierRef:
    return TierRef(
        id=tier.id, name=tier.name, order=tier.order,
        color_code=tier.color_code, color_name=tier.color_name,
    )


def load_tier_catalog(session: Session) -> TierCatalog:
    """Build a :class:`TierCatalog` from the ``tiers`` table.

    Raises
    ------
    ConfigurationError
        If any of the three ladders has no rows.
    """
    ladders: dict[str, list[TierRef]] = {c.value: [] for c in TierCategory}
    for tier in session.scalars(select(Tier)):
        if tier.category in ladders:
            ladders[tier.category].append(_tier_ref(tier))
    try:
        return TierCatalog(
            minor=tuple(ladders[TierCategory.MINOR.value]),
            sub_major=tuple(ladders[TierCategory.SUB_MAJOR.value]),
            major=tuple(ladders[TierCategory.MAJOR.value]),
        )
    except ConfigurationError:
        logger.error("Tier catalog is incomplete; rank resolution is disabled")
        raise


def get_rank_constant(session: Session, kind: ActivityKind) -> float:
    """The rank scalar for *kind*.

    Raises
    ------
    ConfigurationError
        If no constant is configured, or it is not positive.
    """
    constant = session.get(RankConstant, kind.value)
    if constant is None or constant.value is None or constant.value <= 0:
        logger.error("Rank constant for %r is missing or invalid", kind.value)
        raise ConfigurationError(
            f"Rank constant for '{kind.value}' is missing or not positive",
            details={"kind": kind.value},
        )
    return float(constant.value)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------
def _select_rank(user_id: int, kind: ActivityKind):
    return (
        select(Rank)
        .where(Rank.user_id == user_id, Rank.kind == kind.value)
        .with_for_update()
    )


def _append_history(
    session: Session,
    user_id: int,
    kind: ActivityKind,
    resolved: ResolvedRank,
    days: int,
    change_type: RankChangeType,
    now: datetime,
) -> None:
    minor_id, sub_major_id, major_id = resolved.ids
    session.add(RankHistory(
        user_id=user_id,
        kind=kind.value,
        minor_tier_id=minor_id,
        sub_major_tier_id=sub_major_id,
        major_tier_id=major_id,
        days_count=days,
        change_type=change_type.value,
        changed_at=now,
    ))


def _create_rank(
    session: Session,
    user_id: int,
    kind: ActivityKind,
    resolved: ResolvedRank,
    days: int,
    now: datetime,
) -> Rank | None:
    """Insert the first Rank row; ``None`` if a concurrent sync won."""
    minor_id, sub_major_id, major_id = resolved.ids
    rank = Rank(
        user_id=user_id,
        kind=kind.value,
        minor_tier_id=minor_id,
        sub_major_tier_id=sub_major_id,
        major_tier_id=major_id,
        days_count=days,
        highest_minor_tier_id=minor_id,
        highest_sub_major_tier_id=sub_major_id,
        highest_major_tier_id=major_id,
        highest_days_count=days,
        last_update=now,
    )
    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(rank)
            session.flush()
    except IntegrityError:
        return None
    return rank


def _sync_in_session(
    session: Session,
    user_id: int,
    kind: ActivityKind,
    days: int,
    catalog: TierCatalog,
    now: datetime,
) -> RankChangeResult:
    constant = get_rank_constant(session, kind)
    resolved = resolve_rank(days, constant, catalog)

    rank = session.scalar(_select_rank(user_id, kind))
    if rank is None:
        rank = _create_rank(session, user_id, kind, resolved, days, now)
        if rank is not None:
            _append_history(session, user_id, kind, resolved, days, RankChangeType.INCREASE, now)
            return RankChangeResult(
                user_id=user_id, kind=kind, days_count=days, rank=resolved,
                changed=True, change_type=RankChangeType.INCREASE, highest_raised=True,
            )
        rank = session.scalars(_select_rank(user_id, kind)).one()

    current_key = catalog.order_key(
        rank.minor_tier_id, rank.sub_major_tier_id, rank.major_tier_id
    )
    new_key = resolved.order_key

    if current_key == new_key:
        if rank.days_count != days:
            rank.days_count = days
            rank.last_update = now
        return RankChangeResult(
            user_id=user_id, kind=kind, days_count=days, rank=resolved, changed=False,
        )

    # A stored tier that vanished from the catalog orders below everything.
    change_type = (
        RankChangeType.INCREASE
        if current_key is None or new_key > current_key
        else RankChangeType.DECREASE
    )
    rank.minor_tier_id, rank.sub_major_tier_id, rank.major_tier_id = resolved.ids
    rank.days_count = days
    rank.last_update = now

    highest_key = catalog.order_key(
        rank.highest_minor_tier_id, rank.highest_sub_major_tier_id, rank.highest_major_tier_id
    )
    highest_raised = highest_key is None or new_key > highest_key
    if highest_raised:
        (
            rank.highest_minor_tier_id,
            rank.highest_sub_major_tier_id,
            rank.highest_major_tier_id,
        ) = resolved.ids
        rank.highest_days_count = days

    _append_history(session, user_id, kind, resolved, days, change_type, now)
    return RankChangeResult(
        user_id=user_id, kind=kind, days_count=days, rank=resolved,
        changed=True, change_type=change_type, highest_raised=highest_raised,
    )


def sync_rank(
    engine: Engine,
    user_id: int,
    kind: str | ActivityKind,
    days: int,
    *,
    catalog: TierCatalog | None = None,
    now: datetime | None = None,
) -> RankChangeResult:
    """Resolve *days* to a tier triple and reconcile the stored rank.

    Parameters
    ----------
    catalog:
        A preloaded catalog.  Loaded from the database when omitted.
    now:
        Timestamp for ``last_update`` and history rows (defaults to now).

    Raises
    ------
    ValidationError
        Unknown *kind* or negative *days*.
    ConfigurationError
        Empty tier ladder or missing rank constant.
    """
    kind = parse_activity_kind(kind)
    if days < 0:
        raise ValidationError("Day count cannot be negative", details={"days": days})
    now = now or datetime.now(UTC)

    with Session(engine, expire_on_commit=False) as session:
        catalog = catalog or load_tier_catalog(session)
        result = _sync_in_session(session, user_id, kind, days, catalog, now)
        session.commit()

    if result.changed:
        logger.info(
            "Rank %s user=%s kind=%s days=%d → %s",
            result.change_type, user_id, kind, days, result.display,
        )
    return result


def sync_rank_from_streak(
    engine: Engine,
    user_id: int,
    kind: str | ActivityKind,
    *,
    catalog: TierCatalog | None = None,
    now: datetime | None = None,
) -> RankChangeResult:
    """Sync the rank against the streak's **current** count.

    Reading the count inside the same transaction as the rank write means
    a delayed sync can never store an older count over a newer one.
    """
    kind = parse_activity_kind(kind)
    now = now or datetime.now(UTC)

    with Session(engine, expire_on_commit=False) as session:
        catalog = catalog or load_tier_catalog(session)
        days = session.scalar(
            select(Streak.current_count).where(
                Streak.user_id == user_id, Streak.kind == kind.value
            )
        ) or 0
        result = _sync_in_session(session, user_id, kind, days, catalog, now)
        session.commit()

    if result.changed:
        logger.info(
            "Rank %s user=%s kind=%s days=%d → %s",
            result.change_type, user_id, kind, days, result.display,
        )
    return result


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------
def get_leaderboard(
    engine: Engine,
    kind: str | ActivityKind,
    limit: int = DEFAULT_LEADERBOARD_LIMIT,
) -> list[LeaderboardEntry]:
    """Top *limit* ranks for *kind*.

    Ordered by the ``(major, sub_major, minor)`` order tuple descending,
    then ``days_count`` descending.  Ties go to whoever reached that count
    first (earliest ``last_update``), then to the lower ``user_id``.
    """
    kind = parse_activity_kind(kind)
    if limit < 1:
        raise ValidationError("Leaderboard limit must be positive", details={"limit": limit})

    minor = aliased(Tier)
    sub_major = aliased(Tier)
    major = aliased(Tier)

    stmt = (
        select(Rank, User.username, minor, sub_major, major)
        .join(minor, Rank.minor_tier_id == minor.id)
        .join(sub_major, Rank.sub_major_tier_id == sub_major.id)
        .join(major, Rank.major_tier_id == major.id)
        .outerjoin(User, Rank.user_id == User.id)
        .where(Rank.kind == kind.value)
        .order_by(
            major.order.desc(),
            sub_major.order.desc(),
            minor.order.desc(),
            Rank.days_count.desc(),
            Rank.last_update.asc(),
            Rank.user_id.asc(),
        )
        .limit(limit)
    )

    with Session(engine) as session:
        rows = session.execute(stmt).all()
        return [
            LeaderboardEntry(
                position=position,
                user_id=rank.user_id,
                username=username,
                days_count=rank.days_count,
                rank_display=format_rank(major_tier.name, sub_tier.name, minor_tier.name),
                rank_color=major_tier.color_code,
            )
            for position, (rank, username, minor_tier, sub_tier, major_tier)
            in enumerate(rows, start=1)
        ]


def get_rank_history(
    engine: Engine,
    user_id: int,
    kind: str | ActivityKind,
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> list[RankHistoryEntry]:
    """Most recent tier changes first."""
    kind = parse_activity_kind(kind)

    minor = aliased(Tier)
    sub_major = aliased(Tier)
    major = aliased(Tier)

    stmt = (
        select(RankHistory, minor.name, sub_major.name, major.name)
        .join(minor, RankHistory.minor_tier_id == minor.id)
        .join(sub_major, RankHistory.sub_major_tier_id == sub_major.id)
        .join(major, RankHistory.major_tier_id == major.id)
        .where(RankHistory.user_id == user_id, RankHistory.kind == kind.value)
        .order_by(RankHistory.changed_at.desc(), RankHistory.id.desc())
        .limit(limit)
    )

    with Session(engine) as session:
        return [
            RankHistoryEntry(
                kind=kind,
                days_count=entry.days_count,
                rank_display=format_rank(major_name, sub_name, minor_name),
                change_type=RankChangeType(entry.change_type),
                changed_at=entry.changed_at,
            )
            for entry, minor_name, sub_name, major_name in session.execute(stmt)
        ]


def get_rank_statistics(engine: Engine) -> RankStatistics:
    """User totals, per-kind major tier populations and each kind's leader.

    Major tiers are listed most populated first; only tiers holding at
    least one rank appear.
    """
    stmt = (
        select(Rank.kind, Tier.name, Tier.color_code, Tier.order, func.count(Rank.id))
        .join(Tier, Rank.major_tier_id == Tier.id)
        .group_by(Rank.kind, Tier.id, Tier.name, Tier.color_code, Tier.order)
        .order_by(Rank.kind, func.count(Rank.id).desc(), Tier.order.desc())
    )

    with Session(engine) as session:
        total_users = session.scalar(select(func.count(User.id))) or 0
        counts: dict[str, list[MajorTierCount]] = {k.value: [] for k in ActivityKind}
        for kind, name, color_code, order, users in session.execute(stmt):
            if kind in counts:
                counts[kind].append(MajorTierCount(name, color_code, order, users))

    by_kind = {}
    for kind in ActivityKind:
        tiers = counts[kind.value]
        leaders = get_leaderboard(engine, kind, limit=1) if tiers else []
        by_kind[kind] = KindStatistics(
            kind=kind,
            ranked_users=sum(t.users for t in tiers),
            major_tiers=tiers,
            top=leaders[0] if leaders else None,
        )
    return RankStatistics(total_users=total_users, by_kind=by_kind)


def get_user_ranks(engine: Engine, user_id: int) -> list[UserRank]:
    """Every rank *user_id* holds, current and highest, ordered by kind."""
    with Session(engine) as session:
        ranks = session.scalars(
            select(Rank).where(Rank.user_id == user_id).order_by(Rank.kind)
        ).all()

        def _display(minor_id: int, sub_major_id: int, major_id: int) -> tuple[str, str | None]:
            minor = session.get(Tier, minor_id)
            sub_major = session.get(Tier, sub_major_id)
            major = session.get(Tier, major_id)
            return format_rank(major.name, sub_major.name, minor.name), major.color_code

        entries = []
        for rank in ranks:
            current, color = _display(
                rank.minor_tier_id, rank.sub_major_tier_id, rank.major_tier_id
            )
            highest, highest_color = _display(
                rank.highest_minor_tier_id,
                rank.highest_sub_major_tier_id,
                rank.highest_major_tier_id,
            )
            entries.append(UserRank(
                kind=ActivityKind(rank.kind),
                days_count=rank.days_count,
                rank_display=current,
                rank_color=color,
                highest_days_count=rank.highest_days_count,
                highest_display=highest,
                highest_color=highest_color,
                last_update=rank.last_update,
            ))
        return entries
