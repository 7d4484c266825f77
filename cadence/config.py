"""
cadence.config — YAML Configuration Loader
===========================================

Reads ``config.yaml`` for **infrastructure-only** settings (tick cadence,
text generator endpoint, fallback timezone).  Gameplay data (tier
catalogs, rank constants) lives in the database and is editable by
administrators; secrets (``DATABASE_URL``, ``GEMINI_API_KEY``) come from
the environment via ``.env``.

Usage::

    from cadence.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.tick_seconds)      # 60
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from cadence.engine.clock import resolve_timezone


# ---------------------------------------------------------------------------
# Typed settings object
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class CadenceConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    platform_name: str

    # Clock
    default_timezone: str

    # Scheduler
    tick_seconds: int
    fire_tolerance_seconds: int
    max_concurrent_jobs: int

    # Text generator
    generator_model: str
    generator_base_url: str
    generator_timeout_seconds: float

    # Optional prompt prefixes
    title_master_prompt: str | None = None
    content_master_prompt: str | None = None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> CadenceConfig:
    """Read *path* and return a :class:`CadenceConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    cadence.errors.ValidationError
        If ``default_timezone`` is not a known IANA zone.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh)

    default_timezone = raw["default_timezone"]
    resolve_timezone(default_timezone)

    return CadenceConfig(
        platform_name=raw["platform_name"],
        default_timezone=default_timezone,
        tick_seconds=int(raw["tick_seconds"]),
        fire_tolerance_seconds=int(raw["fire_tolerance_seconds"]),
        max_concurrent_jobs=int(raw["max_concurrent_jobs"]),
        generator_model=raw["generator_model"],
        generator_base_url=raw["generator_base_url"].rstrip("/"),
        generator_timeout_seconds=float(raw["generator_timeout_seconds"]),
        title_master_prompt=raw.get("title_master_prompt") or None,
        content_master_prompt=raw.get("content_master_prompt") or None,
    )
