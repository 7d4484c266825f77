"""
Cadence — Streaks, Ranks & Scheduled Community Content
=======================================================
Turns daily translation and writing practice into a game: every credited
day advances a streak, every streak length resolves to a tiered rank, and
each community receives an automatically generated block of content on
its own local schedule.

Package layout::

    cadence/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Labels, defaults, limits
    ├── errors.py          # Error hierarchy shared by every layer
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # Tier catalogs + rank constants seeder
    ├── engine/
    │   ├── clock.py       # Timezone resolution, local dates
    │   ├── tiers.py       # In-memory tier catalog
    │   ├── rank.py        # Pure rank calculator
    │   ├── streak.py      # Streak continuity state machine
    │   └── schedule.py    # Schedule matcher + bucket keys
    ├── services/
    │   ├── streak_service.py     # Atomic activity recording
    │   ├── rank_service.py       # Rank ledger, leaderboard, history
    │   ├── activity_service.py   # Streak → rank orchestration
    │   ├── admin_service.py      # Audit-logged admin mutations
    │   ├── schedule_service.py   # Community schedule management
    │   ├── scheduler_service.py  # Per-schedule job + tick driver
    │   └── text_generator.py     # External text generator client
    └── worker/
        ├── ticker.py      # Recurring scheduler tick
        └── __main__.py    # ``python -m cadence.worker``
"""

__version__ = "0.1.0"
