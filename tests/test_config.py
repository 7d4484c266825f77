"""
tests/test_config.py — YAML Configuration Loader Tests
=======================================================
"""

from __future__ import annotations

import pytest

from cadence.config import load_config
from cadence.errors import ValidationError

VALID_YAML = """\
platform_name: "Cadence"
default_timezone: "Asia/Ho_Chi_Minh"
tick_seconds: 60
fire_tolerance_seconds: 60
max_concurrent_jobs: 4
generator_model: "gemini-pro"
generator_base_url: "https://generativelanguage.googleapis.com/v1beta/models/"
generator_timeout_seconds: 30
title_master_prompt: ""
"""


def _write(tmp_path, text: str):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_valid_file(self, tmp_path):
        cfg = load_config(_write(tmp_path, VALID_YAML))
        assert cfg.platform_name == "Cadence"
        assert cfg.default_timezone == "Asia/Ho_Chi_Minh"
        assert cfg.tick_seconds == 60
        assert cfg.generator_timeout_seconds == 30.0
        assert cfg.generator_base_url.endswith("/models")
        assert cfg.title_master_prompt is None
        assert cfg.content_master_prompt is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.yaml.example"):
            load_config(tmp_path / "nope.yaml")

    def test_missing_key(self, tmp_path):
        text = VALID_YAML.replace("tick_seconds: 60\n", "")
        with pytest.raises(KeyError):
            load_config(_write(tmp_path, text))

    def test_unknown_timezone(self, tmp_path):
        text = VALID_YAML.replace("Asia/Ho_Chi_Minh", "Moon/Tranquility")
        with pytest.raises(ValidationError):
            load_config(_write(tmp_path, text))

    def test_config_is_frozen(self, tmp_path):
        cfg = load_config(_write(tmp_path, VALID_YAML))
        with pytest.raises(AttributeError):
            cfg.tick_seconds = 5


class TestDatabaseBootstrap:
    def test_missing_database_url(self, monkeypatch):
        from cadence.database.engine import create_db_engine

        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            create_db_engine()

    def test_init_db_seeds_once(self, db_engine):
        from sqlalchemy import func, select
        from sqlalchemy.orm import Session

        from cadence.database.engine import init_db
        from cadence.database.models import RankConstant, Tier

        init_db(db_engine)
        init_db(db_engine)
        with Session(db_engine) as session:
            assert session.scalar(select(func.count(Tier.id))) == 21
            assert session.scalar(select(func.count()).select_from(RankConstant)) == 2
