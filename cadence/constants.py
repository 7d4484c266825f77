"""
cadence.constants — Shared Constants
=====================================

Single source of truth for the default limits shared by the schedule
validator, the rank read side and the text generator.
"""

from __future__ import annotations

DEFAULT_TIMEZONE = "UTC"

DEFAULT_LEADERBOARD_LIMIT = 10
DEFAULT_HISTORY_LIMIT = 30

# ---------------------------------------------------------------------------
# Schedule defaults and bounds
# ---------------------------------------------------------------------------
DEFAULT_WORD_MIN = 50
DEFAULT_WORD_MAX = 1000
WORD_LIMIT_CEILING = 5000

# ---------------------------------------------------------------------------
# Generated text shaping
# ---------------------------------------------------------------------------
TITLE_MAX_CHARS = 100
FALLBACK_TITLE_FORMAT = "%d-%m-%Y"
AUTO_POST_TITLE = "Auto-generated post for {block_title}"

DEFAULT_TITLE_MASTER_PROMPT = (
    "Generate a creative title for a daily writing block. The title should "
    "be concise (5-10 words) and inspiring for writers."
)
DEFAULT_CONTENT_MASTER_PROMPT = (
    "Generate creative writing content that would be interesting to translate."
)
