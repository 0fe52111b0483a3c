"""
tests/test_cli.py — ``python -m mealdrop`` Entry Point
=======================================================
"""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from mealdrop.__main__ import main
from mealdrop.database.models import GlobalStats


class TestInitDb:

    def test_creates_schema_and_seeds_goal(self, tmp_path, monkeypatch):
        db = tmp_path / "cli.db"
        cfg = tmp_path / "config.yaml"
        cfg.write_text("global_goal_target: 5000\n", encoding="utf-8")
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db}")

        assert main(["--config", str(cfg), "init-db"]) == 0
        # Running again leaves the seeded row alone.
        assert main(["--config", str(cfg), "init-db"]) == 0

        engine = create_engine(f"sqlite:///{db}")
        with Session(engine) as session:
            stats = session.get(GlobalStats, "global")
            assert stats.goal_target == 5000
            assert stats.total_meals_donated == 0
        engine.dispose()

    def test_missing_config_fails(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
        assert main(["--config", str(tmp_path / "nope.yaml"), "init-db"]) == 1

    def test_missing_database_url_fails(self, tmp_path, monkeypatch):
        cfg = tmp_path / "config.yaml"
        cfg.write_text("", encoding="utf-8")
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.chdir(tmp_path)
        assert main(["--config", str(cfg), "init-db"]) == 1
