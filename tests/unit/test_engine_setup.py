"""
Tests for the module-level engine and transactional scope helpers.
"""

import pytest
from sqlalchemy import func, select, text

from ledger_kernel.db import engine as db_engine_module
from ledger_kernel.db.engine import (
    build_engine,
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
    session_scope,
)
from ledger_kernel.models.account import Account
from ledger_kernel.services.account_registry import AccountRegistry


@pytest.fixture
def global_engine():
    engine = init_engine_from_url("sqlite:///:memory:")
    create_tables()
    yield engine
    reset_engine()


class TestUninitialized:
    def test_accessors_raise_before_init(self):
        reset_engine()

        with pytest.raises(RuntimeError, match="not initialized"):
            get_engine()
        with pytest.raises(RuntimeError, match="not initialized"):
            get_session_factory()
        with pytest.raises(RuntimeError):
            get_session()

    def test_is_postgres_false_without_engine(self):
        reset_engine()
        assert is_postgres() is False


class TestGlobalEngine:
    def test_init_sets_module_engine(self, global_engine):
        assert get_engine() is global_engine
        assert not is_postgres()

    def test_sessions_share_in_memory_database(self, global_engine):
        with session_scope() as session:
            AccountRegistry(session).get_or_create("1000", "Cash", "Asset")

        with get_session() as session:
            count = session.execute(select(func.count()).select_from(Account)).scalar_one()
        assert count == 1

    def test_reinit_replaces_engine(self, global_engine):
        replacement = init_engine_from_url("sqlite:///:memory:")
        assert get_engine() is replacement
        assert replacement is not global_engine

    def test_reset_forgets_engine(self, global_engine):
        reset_engine()
        assert db_engine_module._engine is None
        with pytest.raises(RuntimeError):
            get_engine()


class TestSessionScope:
    def test_commits_on_success(self, global_engine):
        with session_scope() as session:
            AccountRegistry(session).get_or_create("4000", "Rental Income", "Income")

        with session_scope() as session:
            assert AccountRegistry(session).resolve("4000").name == "Rental Income"

    def test_rolls_back_and_reraises(self, global_engine, captured_logs):
        with pytest.raises(ZeroDivisionError):
            with session_scope() as session:
                AccountRegistry(session).get_or_create("4000", "Rental Income", "Income")
                1 / 0

        with session_scope() as session:
            assert AccountRegistry(session).resolve("4000", strict=False) is None
        assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())

    def test_explicit_factory(self, db_engine):
        from sqlalchemy.orm import sessionmaker

        factory = sessionmaker(bind=db_engine)
        with session_scope(factory) as session:
            assert session.execute(text("SELECT 1")).scalar_one() == 1


class TestSqliteConfiguration:
    def test_file_database_enforces_foreign_keys(self, tmp_path):
        engine = build_engine(f"sqlite:///{tmp_path / 'fk.db'}")
        try:
            with engine.connect() as conn:
                assert conn.exec_driver_sql("PRAGMA foreign_keys").scalar_one() == 1
                assert conn.exec_driver_sql("PRAGMA busy_timeout").scalar_one() == 30000
        finally:
            engine.dispose()
