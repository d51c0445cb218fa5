"""Unit tests for init_db functionality."""

from sqlalchemy import create_engine

from init_db import _ensure_sqlite_directory, init_db


class TestInitDb:
    """Tests for init_db function."""

    def test_creates_all_case_tables(self):
        """Every case kind and the transition history get a table."""
        tables = init_db(bind=create_engine("sqlite:///:memory:"))

        assert tables == [
            "case_transitions",
            "fraud_reports",
            "suspicious_activities",
            "ticket_verifications",
            "user_suspensions",
        ]

    def test_is_idempotent(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'ts.db'}")

        first = init_db(bind=engine)
        second = init_db(bind=engine)

        assert first == second


class TestEnsureSqliteDirectory:
    """Tests for _ensure_sqlite_directory."""

    def test_creates_parent_directory(self, tmp_path):
        target = tmp_path / "nested" / "data" / "ts.db"

        _ensure_sqlite_directory(f"sqlite:///{target}")

        assert target.parent.is_dir()
        assert not target.exists()

    def test_ignores_memory_and_other_backends(self, tmp_path):
        _ensure_sqlite_directory("sqlite:///:memory:")
        _ensure_sqlite_directory("postgresql://ts:ts@localhost/ts")

        assert list(tmp_path.iterdir()) == []
