"""
cadence.engine.tiers — Tier Catalog
====================================

Three independent, ordered ladders (minor, sub-major, major) combined
into a composite rank.  The catalog is plain data: it is loaded once from
the ``tiers`` table and handed to the rank calculator and the ledger.

Catalog sizes are arbitrary.  Nothing here assumes 3 or 9.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from cadence.errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class TierRef:
    """One rung of a ladder."""

    id: int
    name: str
    order: int
    color_code: str | None = None
    color_name: str | None = None


def _sorted(tiers) -> tuple[TierRef, ...]:
    return tuple(sorted(tiers, key=lambda t: (t.order, t.id)))


@dataclass(frozen=True)
class TierCatalog:
    """The three ordered ladders, each sorted ascending by ``order``.

    Raises
    ------
    ConfigurationError
        If any ladder is empty.
    """

    minor: tuple[TierRef, ...]
    sub_major: tuple[TierRef, ...]
    major: tuple[TierRef, ...]
    _by_id: dict[int, TierRef] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        for label, ladder in (
            ("minor", self.minor),
            ("sub_major", self.sub_major),
            ("major", self.major),
        ):
            if not ladder:
                raise ConfigurationError(
                    f"Tier catalog '{label}' is empty", details={"category": label}
                )
        object.__setattr__(self, "minor", _sorted(self.minor))
        object.__setattr__(self, "sub_major", _sorted(self.sub_major))
        object.__setattr__(self, "major", _sorted(self.major))
        by_id = {t.id: t for t in (*self.minor, *self.sub_major, *self.major)}
        object.__setattr__(self, "_by_id", by_id)

    @property
    def sizes(self) -> tuple[int, int, int]:
        """``(minor_count, sub_major_count, major_count)``."""
        return len(self.minor), len(self.sub_major), len(self.major)

    def pick(
        self, minor_idx: int, sub_major_idx: int, major_idx: int
    ) -> tuple[TierRef, TierRef, TierRef]:
        """Map zero-based indices to ``(minor, sub_major, major)`` tiers."""
        return self.minor[minor_idx], self.sub_major[sub_major_idx], self.major[major_idx]

    def get(self, tier_id: int | None) -> TierRef | None:
        if tier_id is None:
            return None
        return self._by_id.get(tier_id)

    def order_key(
        self, minor_id: int | None, sub_major_id: int | None, major_id: int | None
    ) -> tuple[int, int, int] | None:
        """Lexicographic ``(major, sub_major, minor)`` order tuple, or ``None``
        if any id is unset or no longer in the catalog."""
        minor, sub, major = self.get(minor_id), self.get(sub_major_id), self.get(major_id)
        if minor is None or sub is None or major is None:
            return None
        return major.order, sub.order, minor.order
