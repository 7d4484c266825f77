"""
tests/test_rank_service.py — Rank Ledger Integration Tests
===========================================================
Covers rank_service.sync_rank() direction/highest bookkeeping, the
leaderboard ordering and the rank history view, on seeded default
catalogs (3 minor × 9 sub-major × 9 major, constant 3.0).
"""

from __future__ import annotations

from datetime import date, timedelta

import pytest
from conftest import make_user, utc
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from cadence.database.models import ActivityKind, Rank, RankChangeType, RankConstant, RankHistory
from cadence.errors import ConfigurationError, ValidationError
from cadence.services import rank_service
from cadence.services.admin_service import update_rank_constant
from cadence.services.streak_service import record_activity

T0 = utc(2024, 1, 1, 12, 0)


@pytest.fixture
def engine(seeded_engine):
    return seeded_engine


def _history_count(engine) -> int:
    with Session(engine) as session:
        return session.scalar(select(func.count(RankHistory.id)))


def _rank(engine, user_id: int = 1, kind: str = "writing") -> Rank:
    with Session(engine) as session:
        return session.scalars(
            select(Rank).where(Rank.user_id == user_id, Rank.kind == kind)
        ).one()


class TestSyncRank:
    def test_first_sync_creates_rank_and_history(self, engine):
        result = rank_service.sync_rank(engine, 1, "writing", 1, now=T0)
        assert result.changed
        assert result.change_type is RankChangeType.INCREASE
        assert result.highest_raised
        assert result.display == "✥ Võ Sĩ Nhị Tinh Trung Cấp"
        assert _history_count(engine) == 1

        rank = _rank(engine)
        assert rank.days_count == 1
        assert rank.highest_days_count == 1

    def test_unchanged_triple_is_noop(self, engine):
        rank_service.sync_rank(engine, 1, "writing", 1, now=T0)
        result = rank_service.sync_rank(engine, 1, "writing", 1, now=T0 + timedelta(days=1))
        assert not result.changed
        assert result.change_type is None
        assert _history_count(engine) == 1

    def test_same_triple_still_mirrors_days(self, engine):
        update_rank_constant(engine, "writing", 30.0)
        rank_service.sync_rank(engine, 1, "writing", 1, now=T0)
        result = rank_service.sync_rank(engine, 1, "writing", 2, now=T0)
        assert not result.changed
        assert _rank(engine).days_count == 2
        assert _history_count(engine) == 1

    def test_increase(self, engine):
        rank_service.sync_rank(engine, 1, "writing", 1, now=T0)
        result = rank_service.sync_rank(engine, 1, "writing", 2, now=T0)
        assert result.change_type is RankChangeType.INCREASE
        assert result.highest_raised
        assert _rank(engine).highest_days_count == 2

    def test_wraparound_is_decrease_and_keeps_highest(self, engine):
        rank_service.sync_rank(engine, 1, "writing", 8, now=T0)
        high = _rank(engine)

        result = rank_service.sync_rank(engine, 1, "writing", 9, now=T0)
        assert result.change_type is RankChangeType.DECREASE
        assert not result.highest_raised

        rank = _rank(engine)
        assert rank.days_count == 9
        assert rank.highest_days_count == 8
        assert rank.highest_minor_tier_id == high.minor_tier_id
        assert rank.highest_sub_major_tier_id == high.sub_major_tier_id
        assert rank.highest_major_tier_id == high.major_tier_id

    def test_negative_days_rejected(self, engine):
        with pytest.raises(ValidationError):
            rank_service.sync_rank(engine, 1, "writing", -1)

    def test_unknown_kind_rejected(self, engine):
        with pytest.raises(ValidationError):
            rank_service.sync_rank(engine, 1, "poetry", 1)

    def test_missing_constant_is_configuration_error(self, engine):
        with Session(engine) as session:
            session.execute(delete(RankConstant).where(RankConstant.kind == "writing"))
            session.commit()
        with pytest.raises(ConfigurationError):
            rank_service.sync_rank(engine, 1, "writing", 3)

    def test_empty_catalog_is_configuration_error(self, db_engine):
        with pytest.raises(ConfigurationError):
            rank_service.sync_rank(db_engine, 1, "writing", 3)

    def test_sync_from_streak_uses_current_count(self, engine):
        record_activity(engine, 1, "translation", date(2024, 1, 1))
        record_activity(engine, 1, "translation", date(2024, 1, 2))
        result = rank_service.sync_rank_from_streak(engine, 1, "translation", now=T0)
        assert result.days_count == 2
        assert _rank(engine, kind="translation").days_count == 2

    def test_sync_from_missing_streak_places_at_bottom(self, engine):
        result = rank_service.sync_rank_from_streak(engine, 1, "translation", now=T0)
        assert result.days_count == 0
        assert result.rank.order_key == (1, 1, 1)


class TestLeaderboard:
    def test_orders_by_tier_then_days_then_earliest(self, engine):
        make_user(engine, 1, "Lan")
        rank_service.sync_rank(engine, 1, "writing", 5, now=T0 + timedelta(hours=2))
        rank_service.sync_rank(engine, 2, "writing", 5, now=T0)
        rank_service.sync_rank(engine, 3, "writing", 2, now=T0)
        # 8 days sits on a higher tier than 9 days (the ladder wraps).
        rank_service.sync_rank(engine, 4, "writing", 9, now=T0)
        rank_service.sync_rank(engine, 5, "writing", 8, now=T0)

        board = rank_service.get_leaderboard(engine, "writing")
        assert [e.user_id for e in board] == [5, 2, 1, 3, 4]
        assert [e.position for e in board] == [1, 2, 3, 4, 5]
        assert board[2].username == "Lan"
        assert board[1].username is None
        assert board[0].rank_color == "#C8A250"

    def test_equal_update_falls_back_to_user_id(self, engine):
        rank_service.sync_rank(engine, 9, "writing", 4, now=T0)
        rank_service.sync_rank(engine, 3, "writing", 4, now=T0)
        board = rank_service.get_leaderboard(engine, "writing")
        assert [e.user_id for e in board] == [3, 9]

    def test_limit_and_kind_filter(self, engine):
        for user_id in range(1, 6):
            rank_service.sync_rank(engine, user_id, "writing", user_id, now=T0)
        rank_service.sync_rank(engine, 42, "translation", 7, now=T0)

        assert len(rank_service.get_leaderboard(engine, "writing", limit=3)) == 3
        translation = rank_service.get_leaderboard(engine, "translation")
        assert [e.user_id for e in translation] == [42]

    def test_bad_limit(self, engine):
        with pytest.raises(ValidationError):
            rank_service.get_leaderboard(engine, "writing", limit=0)


class TestRankHistory:
    def test_reverse_chronological(self, engine):
        rank_service.sync_rank(engine, 1, "writing", 1, now=T0)
        rank_service.sync_rank(engine, 1, "writing", 2, now=T0 + timedelta(days=1))
        rank_service.sync_rank(engine, 1, "writing", 9, now=T0 + timedelta(days=2))

        history = rank_service.get_rank_history(engine, 1, "writing")
        assert [h.days_count for h in history] == [9, 2, 1]
        assert [h.change_type for h in history] == [
            RankChangeType.DECREASE, RankChangeType.INCREASE, RankChangeType.INCREASE,
        ]
        assert history[-1].rank_display == "✥ Võ Sĩ Nhị Tinh Trung Cấp"

    def test_limit(self, engine):
        for day in range(1, 6):
            rank_service.sync_rank(engine, 1, "writing", day, now=T0 + timedelta(days=day))
        assert len(rank_service.get_rank_history(engine, 1, "writing", limit=2)) == 2


class TestRankStatistics:
    def test_major_tier_counts_and_leaders(self, engine):
        make_user(engine, 1, "Lan")
        make_user(engine, 2, "Minh")
        rank_service.sync_rank(engine, 1, "writing", 5, now=T0)
        rank_service.sync_rank(engine, 2, "writing", 7, now=T0)
        # 243 days is one full major period at constant 3.0.
        rank_service.sync_rank(engine, 3, "writing", 250, now=T0)
        rank_service.sync_rank(engine, 4, "translation", 3, now=T0)

        stats = rank_service.get_rank_statistics(engine)
        assert stats.total_users == 2

        writing = stats.by_kind[ActivityKind.WRITING]
        assert writing.ranked_users == 3
        assert [(t.name, t.color_code, t.users) for t in writing.major_tiers] == [
            ("✥ Võ Sĩ", "#C8A250", 2),
            ("✯ Võ Sư", "#B0C4DE", 1),
        ]
        assert writing.top.user_id == 3
        assert writing.top.days_count == 250

        translation = stats.by_kind[ActivityKind.TRANSLATION]
        assert translation.ranked_users == 1
        assert translation.top.user_id == 4

    def test_no_ranks(self, engine):
        stats = rank_service.get_rank_statistics(engine)
        assert stats.total_users == 0
        for kind in ActivityKind:
            assert stats.by_kind[kind].ranked_users == 0
            assert stats.by_kind[kind].major_tiers == []
            assert stats.by_kind[kind].top is None


class TestUserRanks:
    def test_current_and_highest(self, engine):
        best = rank_service.sync_rank(engine, 1, "writing", 8, now=T0)
        now = rank_service.sync_rank(engine, 1, "writing", 9, now=T0 + timedelta(days=1))
        rank_service.sync_rank(engine, 1, "translation", 2, now=T0)

        ranks = rank_service.get_user_ranks(engine, 1)
        assert [r.kind for r in ranks] == [ActivityKind.TRANSLATION, ActivityKind.WRITING]

        writing = ranks[1]
        assert writing.days_count == 9
        assert writing.rank_display == now.display
        assert writing.highest_days_count == 8
        assert writing.highest_display == best.display
        assert writing.highest_display != writing.rank_display
        assert writing.highest_color == "#C8A250"

    def test_unranked_user(self, engine):
        assert rank_service.get_user_ranks(engine, 77) == []


class TestCatalogLoading:
    def test_load_default_catalog(self, engine):
        with Session(engine) as session:
            catalog = rank_service.load_tier_catalog(session)
        assert catalog.sizes == (3, 9, 9)
        assert catalog.major[0].color_code == "#C8A250"

    def test_seed_is_idempotent(self, engine):
        from cadence.database.seed import seed_defaults

        update_rank_constant(engine, "writing", 5.0)
        assert seed_defaults(engine) == 0
        with Session(engine) as session:
            assert session.get(RankConstant, "writing").value == 5.0
