"""
cadence.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- users               — Minimal mirror of platform accounts (name, timezone)
- communities         — Minimal mirror of communities (owner, active flag)
- tiers               — The three rank ladders (minor / sub_major / major)
- rank_constants      — One rank scalar per activity kind
- user_activities     — One row per credited (user, kind, local day)
- streaks             — Continuity state per (user, kind)
- ranks               — Current + highest tier triple per (user, kind)
- rank_history        — Append-only tier changes
- community_schedules — One recurrence config per community
- blocks              — Per-period containers, unique per (community, bucket)
- posts               — Content placed in a block
- admin_log           — Append-only audit trail
"""

from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Cadence ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ActivityKind(enum.StrEnum):
    """Practice kinds that feed a streak and a rank."""
    TRANSLATION = "translation"
    WRITING = "writing"


class TierCategory(enum.StrEnum):
    """The three independent rank ladders."""
    MINOR = "minor"
    SUB_MAJOR = "sub_major"
    MAJOR = "major"


class RankChangeType(enum.StrEnum):
    """Direction of a recorded tier change."""
    INCREASE = "increase"
    DECREASE = "decrease"


class SchedulePeriod(enum.StrEnum):
    """How often a community schedule recurs."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


# ---------------------------------------------------------------------------
# Users — accounts are owned elsewhere; only what the core reads
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.username!r} tz={self.timezone!r}>"


# ---------------------------------------------------------------------------
# Communities — owned by the community CRUD layer
# ---------------------------------------------------------------------------
class Community(Base):
    __tablename__ = "communities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    owner_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    schedule: Mapped[CommunitySchedule | None] = relationship(
        back_populates="community", uselist=False
    )

    def __repr__(self) -> str:
        return f"<Community id={self.id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# Tier — one rung on one of the three ladders
# ---------------------------------------------------------------------------
class Tier(Base):
    """A named, ordered rung.  Only major tiers carry a display colour."""
    __tablename__ = "tiers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    category: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    order: Mapped[int] = mapped_column("tier_order", Integer, nullable=False)
    color_code: Mapped[str | None] = mapped_column(String(7), default=None)
    color_name: Mapped[str | None] = mapped_column(String(50), default=None)

    __table_args__ = (
        UniqueConstraint("category", "tier_order", name="uq_tiers_category_order"),
    )

    def __repr__(self) -> str:
        return f"<Tier id={self.id} {self.category}#{self.order} {self.name!r}>"


# ---------------------------------------------------------------------------
# RankConstant — admin-tunable scalar per activity kind
# ---------------------------------------------------------------------------
class RankConstant(Base):
    __tablename__ = "rank_constants"

    kind: Mapped[str] = mapped_column(String(20), primary_key=True)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("value > 0", name="ck_rank_constants_positive"),
    )

    def __repr__(self) -> str:
        return f"<RankConstant kind={self.kind!r} value={self.value}>"


# ---------------------------------------------------------------------------
# UserActivity — the per-day credit ledger
# ---------------------------------------------------------------------------
class UserActivity(Base):
    """One credited practice day.

    The unique key is the day-scoped "already recorded" guard: a second
    credit for the same local day cannot be inserted.
    """
    __tablename__ = "user_activities"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    activity_date: Mapped[date] = mapped_column(Date, nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(100), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "kind", "activity_date", name="uq_user_activities_user_kind_day",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<UserActivity user={self.user_id} kind={self.kind!r} "
            f"day={self.activity_date}>"
        )


# ---------------------------------------------------------------------------
# Streak — continuity state per (user, kind)
# ---------------------------------------------------------------------------
class Streak(Base):
    __tablename__ = "streaks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    current_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_date: Mapped[date | None] = mapped_column(Date, default=None)
    freeze_until: Mapped[date | None] = mapped_column(Date, default=None)
    recovery_tasks_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "kind", name="uq_streaks_user_kind"),
        CheckConstraint("current_count >= 0", name="ck_streaks_current_nonneg"),
        CheckConstraint("max_count >= current_count", name="ck_streaks_max_ge_current"),
        CheckConstraint(
            "recovery_tasks_completed BETWEEN 0 AND 3", name="ck_streaks_recovery_range",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Streak user={self.user_id} kind={self.kind!r} "
            f"current={self.current_count} max={self.max_count}>"
        )


# ---------------------------------------------------------------------------
# Rank — current and highest tier triple per (user, kind)
# ---------------------------------------------------------------------------
class Rank(Base):
    __tablename__ = "ranks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    minor_tier_id: Mapped[int] = mapped_column(Integer, ForeignKey("tiers.id"), nullable=False)
    sub_major_tier_id: Mapped[int] = mapped_column(Integer, ForeignKey("tiers.id"), nullable=False)
    major_tier_id: Mapped[int] = mapped_column(Integer, ForeignKey("tiers.id"), nullable=False)
    days_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    highest_minor_tier_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tiers.id"), nullable=False
    )
    highest_sub_major_tier_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tiers.id"), nullable=False
    )
    highest_major_tier_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tiers.id"), nullable=False
    )
    highest_days_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_update: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    minor_tier: Mapped[Tier] = relationship(foreign_keys=[minor_tier_id])
    sub_major_tier: Mapped[Tier] = relationship(foreign_keys=[sub_major_tier_id])
    major_tier: Mapped[Tier] = relationship(foreign_keys=[major_tier_id])

    __table_args__ = (
        UniqueConstraint("user_id", "kind", name="uq_ranks_user_kind"),
        Index("ix_ranks_kind_days", "kind", "days_count"),
    )

    def __repr__(self) -> str:
        return f"<Rank user={self.user_id} kind={self.kind!r} days={self.days_count}>"


# ---------------------------------------------------------------------------
# RankHistory — immutable record of each tier change
# ---------------------------------------------------------------------------
class RankHistory(Base):
    __tablename__ = "rank_history"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    minor_tier_id: Mapped[int] = mapped_column(Integer, ForeignKey("tiers.id"), nullable=False)
    sub_major_tier_id: Mapped[int] = mapped_column(Integer, ForeignKey("tiers.id"), nullable=False)
    major_tier_id: Mapped[int] = mapped_column(Integer, ForeignKey("tiers.id"), nullable=False)
    days_count: Mapped[int] = mapped_column(Integer, nullable=False)
    change_type: Mapped[str] = mapped_column(String(10), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_rank_history_user_kind_time", "user_id", "kind", "changed_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<RankHistory user={self.user_id} kind={self.kind!r} "
            f"{self.change_type} days={self.days_count}>"
        )


# ---------------------------------------------------------------------------
# CommunitySchedule — one recurrence config per community
# ---------------------------------------------------------------------------
class CommunitySchedule(Base):
    __tablename__ = "community_schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    community_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("communities.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    local_time: Mapped[str] = mapped_column(String(5), nullable=False)  # HH:MM
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    period: Mapped[str] = mapped_column(
        String(10), nullable=False, default=SchedulePeriod.DAILY.value
    )
    auto_gen_title: Mapped[bool] = mapped_column(Boolean, default=False)
    title_prompt: Mapped[str | None] = mapped_column(Text, default=None)
    auto_gen_content: Mapped[bool] = mapped_column(Boolean, default=False)
    content_prompt: Mapped[str | None] = mapped_column(Text, default=None)
    word_min: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    word_max: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    last_execution: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    community: Mapped[Community] = relationship(back_populates="schedule")

    __table_args__ = (
        CheckConstraint("word_min <= word_max", name="ck_schedules_word_range"),
    )

    def __repr__(self) -> str:
        return (
            f"<CommunitySchedule community={self.community_id} "
            f"{self.period} {self.local_time} {self.timezone}>"
        )


# ---------------------------------------------------------------------------
# Block — per-period container
# ---------------------------------------------------------------------------
class Block(Base):
    """A period container.

    ``bucket_key`` is set only on scheduler-created blocks; the unique
    constraint makes the scheduler's check-then-create a single atomic
    conditional insert.
    """
    __tablename__ = "blocks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    community_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("communities.id", ondelete="CASCADE"), nullable=False
    )
    schedule_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("community_schedules.id", ondelete="SET NULL"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    block_date: Mapped[date] = mapped_column(Date, nullable=False)
    bucket_key: Mapped[str | None] = mapped_column(String(16), nullable=True)
    is_auto_generated: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    posts: Mapped[list[Post]] = relationship(back_populates="block")

    __table_args__ = (
        UniqueConstraint("community_id", "bucket_key", name="uq_blocks_community_bucket"),
        Index("ix_blocks_community_auto", "community_id", "is_auto_generated"),
    )

    def __repr__(self) -> str:
        return f"<Block id={self.id} community={self.community_id} bucket={self.bucket_key!r}>"


# ---------------------------------------------------------------------------
# Post — content inside a block
# ---------------------------------------------------------------------------
class Post(Base):
    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    block_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("blocks.id", ondelete="CASCADE"), nullable=False
    )
    author_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    word_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_auto_generated: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    block: Mapped[Block] = relationship(back_populates="posts")

    def __repr__(self) -> str:
        return f"<Post id={self.id} block={self.block_id} words={self.word_count}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"
