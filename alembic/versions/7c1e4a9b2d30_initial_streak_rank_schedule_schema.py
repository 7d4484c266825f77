"""Initial streak, rank and schedule schema

Revision ID: 7c1e4a9b2d30
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "7c1e4a9b2d30"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str, **kw) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.now(), **kw)


def upgrade() -> None:
    """Create every table owned by the streak/rank/scheduler core."""
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        _timestamp("created_at"),
    )

    op.create_table(
        "communities",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column(
            "owner_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("deleted", sa.Boolean(), server_default=sa.false()),
        _timestamp("created_at"),
    )

    op.create_table(
        "tiers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("tier_order", sa.Integer(), nullable=False),
        sa.Column("color_code", sa.String(7), nullable=True),
        sa.Column("color_name", sa.String(50), nullable=True),
        sa.UniqueConstraint("category", "tier_order", name="uq_tiers_category_order"),
    )

    op.create_table(
        "rank_constants",
        sa.Column("kind", sa.String(20), primary_key=True),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _timestamp("updated_at"),
        sa.CheckConstraint("value > 0", name="ck_rank_constants_positive"),
    )

    op.create_table(
        "user_activities",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("activity_date", sa.Date(), nullable=False),
        sa.Column("reference_id", sa.String(100), nullable=True),
        _timestamp("created_at"),
        sa.UniqueConstraint(
            "user_id", "kind", "activity_date", name="uq_user_activities_user_kind_day",
        ),
    )

    op.create_table(
        "streaks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("current_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_date", sa.Date(), nullable=True),
        sa.Column("freeze_until", sa.Date(), nullable=True),
        sa.Column("recovery_tasks_completed", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("user_id", "kind", name="uq_streaks_user_kind"),
        sa.CheckConstraint("current_count >= 0", name="ck_streaks_current_nonneg"),
        sa.CheckConstraint("max_count >= current_count", name="ck_streaks_max_ge_current"),
        sa.CheckConstraint(
            "recovery_tasks_completed BETWEEN 0 AND 3", name="ck_streaks_recovery_range",
        ),
    )

    tier_fk = lambda name: sa.Column(  # noqa: E731
        name, sa.Integer(), sa.ForeignKey("tiers.id"), nullable=False
    )

    op.create_table(
        "ranks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("kind", sa.String(20), nullable=False),
        tier_fk("minor_tier_id"),
        tier_fk("sub_major_tier_id"),
        tier_fk("major_tier_id"),
        sa.Column("days_count", sa.Integer(), nullable=False, server_default="0"),
        tier_fk("highest_minor_tier_id"),
        tier_fk("highest_sub_major_tier_id"),
        tier_fk("highest_major_tier_id"),
        sa.Column("highest_days_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_update", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "kind", name="uq_ranks_user_kind"),
    )
    op.create_index("ix_ranks_kind_days", "ranks", ["kind", "days_count"])

    op.create_table(
        "rank_history",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "user_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("kind", sa.String(20), nullable=False),
        tier_fk("minor_tier_id"),
        tier_fk("sub_major_tier_id"),
        tier_fk("major_tier_id"),
        sa.Column("days_count", sa.Integer(), nullable=False),
        sa.Column("change_type", sa.String(10), nullable=False),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_rank_history_user_kind_time", "rank_history", ["user_id", "kind", "changed_at"],
    )

    op.create_table(
        "community_schedules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "community_id", sa.Integer(),
            sa.ForeignKey("communities.id", ondelete="CASCADE"),
            nullable=False, unique=True,
        ),
        sa.Column("local_time", sa.String(5), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("period", sa.String(10), nullable=False, server_default="daily"),
        sa.Column("auto_gen_title", sa.Boolean(), server_default=sa.false()),
        sa.Column("title_prompt", sa.Text(), nullable=True),
        sa.Column("auto_gen_content", sa.Boolean(), server_default=sa.false()),
        sa.Column("content_prompt", sa.Text(), nullable=True),
        sa.Column("word_min", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("word_max", sa.Integer(), nullable=False, server_default="1000"),
        sa.Column("active", sa.Boolean(), server_default=sa.true()),
        sa.Column("deleted", sa.Boolean(), server_default=sa.false()),
        sa.Column("last_execution", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("word_min <= word_max", name="ck_schedules_word_range"),
    )

    op.create_table(
        "blocks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "community_id", sa.Integer(),
            sa.ForeignKey("communities.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "schedule_id", sa.Integer(),
            sa.ForeignKey("community_schedules.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("block_date", sa.Date(), nullable=False),
        sa.Column("bucket_key", sa.String(16), nullable=True),
        sa.Column("is_auto_generated", sa.Boolean(), server_default=sa.false()),
        _timestamp("created_at"),
        sa.UniqueConstraint("community_id", "bucket_key", name="uq_blocks_community_bucket"),
    )
    op.create_index(
        "ix_blocks_community_auto", "blocks", ["community_id", "is_auto_generated"],
    )

    op.create_table(
        "posts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "block_id", sa.Integer(),
            sa.ForeignKey("blocks.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "author_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("word_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_auto_generated", sa.Boolean(), server_default=sa.false()),
        _timestamp("created_at"),
    )

    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.BigInteger(), nullable=True),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        _timestamp("timestamp"),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"],
    )


def downgrade() -> None:
    """Drop the core schema in reverse dependency order."""
    op.drop_index("ix_admin_log_target", table_name="admin_log")
    op.drop_index("ix_admin_log_actor_time", table_name="admin_log")
    op.drop_table("admin_log")
    op.drop_table("posts")
    op.drop_index("ix_blocks_community_auto", table_name="blocks")
    op.drop_table("blocks")
    op.drop_table("community_schedules")
    op.drop_index("ix_rank_history_user_kind_time", table_name="rank_history")
    op.drop_table("rank_history")
    op.drop_index("ix_ranks_kind_days", table_name="ranks")
    op.drop_table("ranks")
    op.drop_table("streaks")
    op.drop_table("user_activities")
    op.drop_table("rank_constants")
    op.drop_table("tiers")
    op.drop_table("communities")
    op.drop_table("users")
