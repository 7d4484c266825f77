"""
cadence.engine.rank — Rank Calculator
======================================

Pure calculation.  No DB I/O inside the engine.

Maps an accumulated continuous-activity day count onto the three tier
ladders::

    step       = days / (constant / minor_count)
    minor      = floor(step) mod minor_count
    sub_major  = floor(step) mod sub_major_count
    major      = floor(days / (constant * major_count * sub_major_count)) mod major_count

The mapping is cyclic: indices wrap once ``days`` passes a multiple of
each ladder's period, so a longer streak can display a lower tier.  That
behaviour is load-bearing for existing leaderboards and is kept as is.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

from cadence.errors import ConfigurationError, ValidationError

if TYPE_CHECKING:
    from cadence.engine.tiers import TierCatalog, TierRef


def resolve_tier(
    days: int,
    constant: float,
    minor_count: int,
    sub_major_count: int,
    major_count: int,
) -> tuple[int, int, int]:
    """Return zero-based ``(minor_idx, sub_major_idx, major_idx)``.

    Every index is within ``[0, count - 1]`` for any ``days >= 0``.

    Raises
    ------
    ValidationError
        If *days* is negative.
    ConfigurationError
        If *constant* is not positive or any ladder size is below 1.
    """
    if days < 0:
        raise ValidationError("Day count cannot be negative", details={"days": days})
    if not constant or constant <= 0 or not math.isfinite(constant):
        raise ConfigurationError(
            "Rank constant must be a positive number", details={"constant": constant}
        )
    if min(minor_count, sub_major_count, major_count) < 1:
        raise ConfigurationError(
            "Tier catalogs must each contain at least one tier",
            details={
                "minor": minor_count,
                "sub_major": sub_major_count,
                "major": major_count,
            },
        )

    step = math.floor(days * minor_count / constant)
    minor_idx = step % minor_count
    sub_major_idx = step % sub_major_count
    major_idx = math.floor(days / (constant * major_count * sub_major_count)) % major_count
    return minor_idx, sub_major_idx, major_idx


@dataclass(frozen=True, slots=True)
class ResolvedRank:
    """A tier triple picked from a catalog."""

    minor: TierRef
    sub_major: TierRef
    major: TierRef

    @property
    def order_key(self) -> tuple[int, int, int]:
        return self.major.order, self.sub_major.order, self.minor.order

    @property
    def ids(self) -> tuple[int, int, int]:
        return self.minor.id, self.sub_major.id, self.major.id

    @property
    def display(self) -> str:
        return format_rank(self.major.name, self.sub_major.name, self.minor.name)

    @property
    def color(self) -> str | None:
        return self.major.color_code


def resolve_rank(days: int, constant: float, catalog: TierCatalog) -> ResolvedRank:
    """Resolve *days* straight to catalog tiers."""
    minor_count, sub_major_count, major_count = catalog.sizes
    indices = resolve_tier(days, constant, minor_count, sub_major_count, major_count)
    return ResolvedRank(*catalog.pick(*indices))


def format_rank(major: str, sub_major: str, minor: str) -> str:
    """Composite display string, e.g. ``"✥ Võ Sĩ Nhất Tinh Sơ Cấp"``."""
    return f"{major} {sub_major} {minor}"
