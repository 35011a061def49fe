"""
Database module for storing practice sessions, daily totals and the scale collection.
"""
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional
import logging

import scalelog.config as config

logger = logging.getLogger(__name__)


SCHEMA = [
    # No uniqueness on the exercise columns: the unique write path enforces it
    '''
    CREATE TABLE IF NOT EXISTS practice_sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        scale TEXT NOT NULL,
        practice_type TEXT NOT NULL,
        octaves INTEGER NOT NULL,
        bpm INTEGER NOT NULL,
        duration INTEGER NOT NULL,
        timestamp TEXT NOT NULL,
        date TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS daily_practice (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        date TEXT NOT NULL UNIQUE,
        total_time_seconds INTEGER NOT NULL DEFAULT 0,
        last_updated TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS scale_collection (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        level TEXT NOT NULL,
        sharps INTEGER NOT NULL DEFAULT 0,
        flats INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    '''
    CREATE INDEX IF NOT EXISTS idx_sessions_exercise
    ON practice_sessions(scale, practice_type, octaves)
    ''',
    '''
    CREATE INDEX IF NOT EXISTS idx_sessions_date
    ON practice_sessions(date)
    ''',
    '''
    CREATE INDEX IF NOT EXISTS idx_sessions_timestamp
    ON practice_sessions(timestamp DESC)
    ''',
]


class DatabaseCorrupted(sqlite3.DatabaseError):
    """Raised when the integrity check reports a damaged database file."""


class PracticeDatabase:
    """
    Owns the SQLite connection shared by the session, ledger and collection stores.

    The connection runs in autocommit mode; multi-statement work goes through
    transaction(), which is re-entrant so callers can group store operations
    into one atomic unit.
    """

    def __init__(self, db_path: str = config.DATABASE_PATH):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._depth = 0
        self._init_database()

    def _init_database(self):
        """Open the database, recreating it empty if the file is unusable."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._open()
        except sqlite3.DatabaseError as e:
            logger.critical("Database at %s is unusable (%s); removing it and starting empty. "
                            "Stored practice history has been lost.", self.db_path, e)
            self._discard()
            self._open()

        logger.info(f"Database initialized at {self.db_path}")

    def _open(self):
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        try:
            self.conn.execute('PRAGMA journal_mode = WAL')
            result = self.conn.execute('PRAGMA integrity_check').fetchone()
            if result[0] != 'ok':
                raise DatabaseCorrupted(f"integrity check failed: {result[0]}")
            for statement in SCHEMA:
                self.conn.execute(statement)
        except sqlite3.DatabaseError:
            self.conn.close()
            self.conn = None
            raise

    def _discard(self):
        """Delete the database file along with its WAL and shared-memory files."""
        for suffix in ('', '-wal', '-shm'):
            path = Path(self.db_path + suffix)
            if path.exists():
                path.unlink()
                logger.warning("Removed %s", path)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block of statements atomically.

        Nested uses join the outermost transaction. The outermost block
        commits on success and rolls back if the block raises.
        """
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self.conn.execute('BEGIN IMMEDIATE')
            self._depth += 1
            try:
                yield self.conn
            except BaseException:
                self._depth -= 1
                # Some engine errors have already rolled the transaction back
                if outermost and self.conn.in_transaction:
                    self.conn.execute('ROLLBACK')
                raise
            self._depth -= 1
            if outermost:
                self.conn.execute('COMMIT')

    @contextmanager
    def reading(self) -> Iterator[sqlite3.Connection]:
        """Serialize a read against writes issued from other threads."""
        with self._lock:
            yield self.conn

    def clear_all(self):
        """Delete every session, daily record and collection entry in one transaction."""
        with self.transaction() as conn:
            conn.execute('DELETE FROM practice_sessions')
            conn.execute('DELETE FROM daily_practice')
            conn.execute('DELETE FROM scale_collection')
        logger.info("Cleared all practice data")

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Database connection closed")
