"""
cadence.database.seed — Default Catalog Seeder
===============================================

Baseline tier ladders and rank constants seeded on first startup so rank
resolution works out of the box.

Idempotent: only inserts rows that don't already exist.  Tiers renamed
or recoloured by an admin, and constants tuned by an admin, are never
overwritten.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select

from cadence.database.engine import get_session
from cadence.database.models import ActivityKind, RankConstant, Tier, TierCategory

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default catalogs
# ---------------------------------------------------------------------------
DEFAULT_MAJOR_TIERS: list[tuple[str, str, str]] = [
    ("✥ Võ Sĩ", "#C8A250", "Nâu vàng"),
    ("✯ Võ Sư", "#B0C4DE", "Bạc xanh biển trắng"),
    ("✯✯ Đại Võ Sư", "#FFA500", "Cam"),
    ("✪ Võ Quân", "#FFD700", "Vàng"),
    ("♕ Võ Vương", "#0000CD", "Xanh biển"),
    ("❂ Võ Tông", "#800080", "Tím"),
    ("߷ Võ Hoàng", "#FF0000", "Đỏ"),
    ("༒ Võ Tôn", "#A52A2A", "Đỏ nâu vàng"),
    ("☭ Võ Đế", "#008000", "Xanh lá"),
]
"""``(name, color_code, color_name)`` in ascending order."""

DEFAULT_SUB_MAJOR_TIERS: list[str] = [
    "Nhất Tinh", "Nhị Tinh", "Tam Tinh", "Tứ Tinh", "Ngũ Tinh",
    "Lục Tinh", "Thất Tinh", "Bát Tinh", "Cửu Tinh",
]

DEFAULT_MINOR_TIERS: list[str] = ["Sơ Cấp", "Trung Cấp", "Đỉnh Cấp"]

DEFAULT_RANK_CONSTANTS: dict[str, tuple[float, str]] = {
    ActivityKind.TRANSLATION.value: (3.0, "Rank constant X for translation streaks"),
    ActivityKind.WRITING.value: (3.0, "Rank constant Y for writing streaks"),
}


def _default_tiers() -> list[Tier]:
    tiers = [
        Tier(category=TierCategory.MAJOR.value, name=name, order=i,
             color_code=code, color_name=color)
        for i, (name, code, color) in enumerate(DEFAULT_MAJOR_TIERS, start=1)
    ]
    tiers += [
        Tier(category=TierCategory.SUB_MAJOR.value, name=name, order=i)
        for i, name in enumerate(DEFAULT_SUB_MAJOR_TIERS, start=1)
    ]
    tiers += [
        Tier(category=TierCategory.MINOR.value, name=name, order=i)
        for i, name in enumerate(DEFAULT_MINOR_TIERS, start=1)
    ]
    return tiers


def seed_defaults(engine: Engine) -> int:
    """Insert missing default tiers and rank constants.

    Tiers are matched on ``(category, order)``; constants on ``kind``.

    Returns
    -------
    int
        Number of rows inserted (0 when everything already exists).
    """
    inserted = 0
    with get_session(engine) as session:
        existing_tiers = {
            (category, order)
            for category, order in session.execute(select(Tier.category, Tier.order))
        }
        for tier in _default_tiers():
            if (tier.category, tier.order) not in existing_tiers:
                session.add(tier)
                inserted += 1

        existing_kinds = set(session.scalars(select(RankConstant.kind)).all())
        for kind, (value, description) in DEFAULT_RANK_CONSTANTS.items():
            if kind not in existing_kinds:
                session.add(RankConstant(kind=kind, value=value, description=description))
                inserted += 1

        if inserted:
            logger.info("Seeded %d default catalog rows", inserted)
        else:
            logger.debug("All default catalog rows already present")

    return inserted
