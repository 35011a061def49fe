"""
Tests for the shared database connection: recovery, transactions and clearing.
"""
import logging
import sqlite3
from pathlib import Path

import pytest

from scalelog.database import PracticeDatabase
from scalelog.sessions import SessionStore
from tests.utils.helpers import make_session


def _count(db, table):
    return db.conn.execute(f'SELECT COUNT(*) FROM {table}').fetchone()[0]


class TestInitialization:

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "scales.db"

        database = PracticeDatabase(str(path))
        try:
            assert path.exists()
        finally:
            database.close()

    def test_creates_all_tables(self, db):
        tables = {row[0] for row in db.conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}

        assert {'practice_sessions', 'daily_practice', 'scale_collection'} <= tables

    def test_reopening_keeps_data(self, db_path):
        first = PracticeDatabase(db_path)
        SessionStore(first).insert(make_session())
        first.close()

        second = PracticeDatabase(db_path)
        try:
            assert len(SessionStore(second).recent()) == 1
        finally:
            second.close()

    def test_unreadable_file_is_replaced(self, db_path, caplog):
        Path(db_path).parent.mkdir(parents=True)
        Path(db_path).write_bytes(b'this is not a sqlite database' * 200)

        with caplog.at_level(logging.CRITICAL, logger='scalelog.database'):
            database = PracticeDatabase(db_path)
        try:
            assert any(r.levelno == logging.CRITICAL for r in caplog.records)
            assert _count(database, 'practice_sessions') == 0
            assert SessionStore(database).insert(make_session()) is not None
        finally:
            database.close()


class TestTransactions:

    def test_rollback_on_error(self, db):
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                conn.execute("INSERT INTO daily_practice (date, total_time_seconds, last_updated) "
                             "VALUES ('2026-10-19', 5, 'now')")
                raise RuntimeError("boom")

        assert _count(db, 'daily_practice') == 0
        assert not db.conn.in_transaction

    def test_nested_blocks_share_one_transaction(self, db):
        with pytest.raises(RuntimeError):
            with db.transaction() as outer:
                outer.execute("INSERT INTO scale_collection (name, level) VALUES ('C Major', 'Easy')")
                with db.transaction() as inner:
                    inner.execute("INSERT INTO scale_collection (name, level) VALUES ('G Major', 'Easy')")
                raise RuntimeError("boom")

        assert _count(db, 'scale_collection') == 0

    def test_nested_blocks_commit_together(self, db):
        with db.transaction() as outer:
            outer.execute("INSERT INTO scale_collection (name, level) VALUES ('C Major', 'Easy')")
            with db.transaction() as inner:
                inner.execute("INSERT INTO scale_collection (name, level) VALUES ('G Major', 'Easy')")
            assert db.conn.in_transaction

        assert not db.conn.in_transaction
        assert _count(db, 'scale_collection') == 2

    def test_constraint_violation_rolls_back(self, db):
        with pytest.raises(sqlite3.IntegrityError):
            with db.transaction() as conn:
                conn.execute("INSERT INTO scale_collection (name, level) VALUES ('C Major', 'Easy')")
                conn.execute("INSERT INTO scale_collection (name, level) VALUES ('C Major', 'Easy')")

        assert _count(db, 'scale_collection') == 0

    def test_usable_after_failed_transaction(self, db):
        with pytest.raises(RuntimeError):
            with db.transaction():
                raise RuntimeError("boom")

        with db.transaction() as conn:
            conn.execute("INSERT INTO scale_collection (name, level) VALUES ('C Major', 'Easy')")

        assert _count(db, 'scale_collection') == 1


class TestClearAll:

    def test_clears_every_table(self, db, sessions, ledger, collection):
        sessions.insert(make_session())
        ledger.save({'date': '2026-10-19', 'total_time_seconds': 60})
        collection.seed_defaults()

        db.clear_all()

        assert _count(db, 'practice_sessions') == 0
        assert _count(db, 'daily_practice') == 0
        assert _count(db, 'scale_collection') == 0
