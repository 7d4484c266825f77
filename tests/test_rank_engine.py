"""
tests/test_rank_engine.py — Rank Calculator & Tier Catalog Tests
=================================================================
"""

from __future__ import annotations

import pytest

from cadence.engine.rank import format_rank, resolve_rank, resolve_tier
from cadence.engine.tiers import TierCatalog, TierRef
from cadence.errors import ConfigurationError, ValidationError


def _catalog(minor: int = 3, sub_major: int = 9, major: int = 9) -> TierCatalog:
    next_id = iter(range(1, 1000))
    return TierCatalog(
        minor=tuple(TierRef(next(next_id), f"m{i}", i) for i in range(1, minor + 1)),
        sub_major=tuple(TierRef(next(next_id), f"s{i}", i) for i in range(1, sub_major + 1)),
        major=tuple(
            TierRef(next(next_id), f"M{i}", i, color_code=f"#00000{i % 10}")
            for i in range(1, major + 1)
        ),
    )


class TestResolveTier:
    @pytest.mark.parametrize("days", [0, 1, 2, 5, 8, 9, 26, 27, 80, 243, 244, 5000, 123457])
    @pytest.mark.parametrize("constant", [0.5, 1.0, 3.0, 7.25, 30.0])
    def test_indices_within_bounds(self, days, constant):
        for sizes in ((3, 9, 9), (1, 1, 1), (2, 5, 4)):
            minor, sub, major = resolve_tier(days, constant, *sizes)
            assert 0 <= minor < sizes[0]
            assert 0 <= sub < sizes[1]
            assert 0 <= major < sizes[2]

    def test_zero_days_is_bottom(self):
        assert resolve_tier(0, 3.0, 3, 9, 9) == (0, 0, 0)

    @pytest.mark.parametrize(
        ("days", "expected"),
        [
            (1, (1, 1, 0)),
            (2, (2, 2, 0)),
            (3, (0, 3, 0)),
            (8, (2, 8, 0)),
            (243, (0, 0, 1)),
        ],
    )
    def test_known_values(self, days, expected):
        assert resolve_tier(days, 3.0, 3, 9, 9) == expected

    def test_indices_wrap_around(self):
        # 9 days with constant 3 completes a full sub-major cycle.
        assert resolve_tier(9, 3.0, 3, 9, 9) == (0, 0, 0)

    def test_negative_days_rejected(self):
        with pytest.raises(ValidationError):
            resolve_tier(-1, 3.0, 3, 9, 9)

    @pytest.mark.parametrize("constant", [0, -1.0, float("inf"), float("nan")])
    def test_bad_constant_is_configuration_error(self, constant):
        with pytest.raises(ConfigurationError):
            resolve_tier(5, constant, 3, 9, 9)

    def test_empty_ladder_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            resolve_tier(5, 3.0, 0, 9, 9)


class TestTierCatalog:
    def test_empty_ladder_rejected(self):
        with pytest.raises(ConfigurationError):
            TierCatalog(minor=(), sub_major=(TierRef(1, "s", 1),), major=(TierRef(2, "M", 1),))

    def test_ladders_sorted_by_order(self):
        catalog = TierCatalog(
            minor=(TierRef(3, "high", 2), TierRef(4, "low", 1)),
            sub_major=(TierRef(5, "s", 1),),
            major=(TierRef(6, "M", 1),),
        )
        assert [t.name for t in catalog.minor] == ["low", "high"]

    def test_order_key_uses_order_not_position(self):
        catalog = TierCatalog(
            minor=(TierRef(1, "a", 10), TierRef(2, "b", 20)),
            sub_major=(TierRef(3, "s", 5),),
            major=(TierRef(4, "M", 7),),
        )
        assert catalog.order_key(2, 3, 4) == (7, 5, 20)

    def test_order_key_none_for_unknown_id(self):
        assert _catalog().order_key(1, 999, 20) is None

    def test_sizes(self):
        assert _catalog(2, 4, 6).sizes == (2, 4, 6)


class TestResolveRank:
    def test_display_and_color(self):
        resolved = resolve_rank(1, 3.0, _catalog())
        assert resolved.display == "M1 s2 m2"
        assert resolved.color == "#000001"
        assert resolved.order_key == (1, 2, 2)

    def test_format_rank(self):
        assert format_rank("✥ Võ Sĩ", "Nhất Tinh", "Sơ Cấp") == "✥ Võ Sĩ Nhất Tinh Sơ Cấp"
