"""
Session store: persistence and queries for recorded practice attempts.
"""
import sqlite3
from typing import Any, Dict, List, Optional, Set
import logging

import scalelog.config as config
from scalelog.database import PracticeDatabase
from scalelog.exercise import ExerciseKey, empty_stats, normalize_session, today

logger = logging.getLogger(__name__)

INSERT_SESSION = '''
    INSERT INTO practice_sessions
    (scale, practice_type, octaves, bpm, duration, timestamp, date)
    VALUES (:scale, :practice_type, :octaves, :bpm, :duration, :timestamp, :date)
'''

DELETE_EXERCISE = '''
    DELETE FROM practice_sessions
    WHERE scale = ? AND practice_type = ? AND octaves = ?
'''

SESSION_COLUMNS = 'id, scale, practice_type, octaves, bpm, duration, timestamp, date'


class SessionStore:
    """
    Stores practice sessions and answers per-exercise questions about them.

    Storage errors never escape: reads return an empty/default result and
    writes return None, which callers must treat as "not persisted".
    """

    def __init__(self, db: PracticeDatabase):
        self.db = db

    def insert(self, session: Dict[str, Any]) -> Optional[Dict]:
        """
        Append a session without checking for an existing one for the same exercise.

        Used for bulk migration; interactive practice goes through insert_unique().

        Args:
            session: Session payload (timestamp and date are filled in if absent)

        Returns:
            The stored session, or None if it could not be persisted

        Raises:
            InvalidPayload: If the payload is malformed
        """
        record = normalize_session(session)
        try:
            with self.db.transaction() as conn:
                cursor = conn.execute(INSERT_SESSION, record)
                stored = self._fetch(conn, cursor.lastrowid)
        except sqlite3.Error as e:
            logger.error("Error saving session: %s", e, exc_info=True)
            return None

        logger.info("Saved session %s: %s / %s / %s octave(s) at %s bpm",
                    stored['id'], stored['scale'], stored['practice_type'],
                    stored['octaves'], stored['bpm'])
        return stored

    def insert_unique(self, session: Dict[str, Any]) -> Optional[Dict]:
        """
        Store a session as the only one for its exercise.

        Any existing session for the same (scale, practice_type, octaves) is
        replaced inside a single transaction, so readers see either the old
        row or the new one.

        Returns:
            The stored session, or None if it could not be persisted

        Raises:
            InvalidPayload: If the payload is malformed
        """
        record = normalize_session(session)
        key = ExerciseKey.from_session(record)
        try:
            with self.db.transaction() as conn:
                replaced = conn.execute(DELETE_EXERCISE, key).rowcount
                cursor = conn.execute(INSERT_SESSION, record)
                stored = self._fetch(conn, cursor.lastrowid)
        except sqlite3.Error as e:
            logger.error("Error saving unique session: %s", e, exc_info=True)
            return None

        logger.info("Saved session %s for %s at %s bpm (replaced %d)",
                    stored['id'], '/'.join(str(part) for part in key), stored['bpm'], replaced)
        return stored

    @staticmethod
    def _fetch(conn: sqlite3.Connection, session_id: int) -> Dict:
        row = conn.execute(f'SELECT {SESSION_COLUMNS} FROM practice_sessions WHERE id = ?',
                           (session_id,)).fetchone()
        return dict(row)

    def _select(self, where: str = '', params: tuple = (), limit: Optional[int] = None,
                action: str = 'sessions') -> List[Dict]:
        query = f'SELECT {SESSION_COLUMNS} FROM practice_sessions {where} ORDER BY timestamp DESC, id DESC'
        if limit is not None:
            query += ' LIMIT ?'
            params = params + (limit,)
        try:
            with self.db.reading() as conn:
                return [dict(row) for row in conn.execute(query, params).fetchall()]
        except sqlite3.Error as e:
            logger.error("Error getting %s: %s", action, e, exc_info=True)
            return []

    def recent(self, limit: int = config.RECENT_SESSIONS_LIMIT) -> List[Dict]:
        """Most recent sessions, newest first."""
        return self._select(limit=max(0, limit), action='recent sessions')

    def all(self) -> List[Dict]:
        """Every session newest first, capped at config.ALL_SESSIONS_CAP."""
        return self._select(limit=config.ALL_SESSIONS_CAP, action='all sessions')

    def for_scale(self, scale: str) -> List[Dict]:
        return self._select('WHERE scale = ?', (scale,), action='sessions for scale')

    def last_for_scale(self, scale: str, limit: int = config.LAST_FOR_SCALE_LIMIT) -> List[Dict]:
        return self._select('WHERE scale = ?', (scale,), limit=max(0, limit),
                            action='last sessions for scale')

    def best_bpm(self, key: ExerciseKey) -> Optional[int]:
        """
        Highest tempo recorded for an exercise.

        Computed as an aggregate so rows stored through insert() are still
        taken into account.

        Returns:
            The best bpm, or None if the exercise has never been recorded
        """
        try:
            with self.db.reading() as conn:
                row = conn.execute('''
                    SELECT MAX(bpm) AS best_bpm
                    FROM practice_sessions
                    WHERE scale = ? AND practice_type = ? AND octaves = ?
                ''', key).fetchone()
        except sqlite3.Error as e:
            logger.error("Error getting best BPM: %s", e, exc_info=True)
            return None
        return row['best_bpm']

    def has_been_practiced(self, scale: str, practice_type: str) -> bool:
        """True if any session exists for the scale and practice type, at any octave count."""
        try:
            with self.db.reading() as conn:
                row = conn.execute('''
                    SELECT COUNT(*) AS count
                    FROM practice_sessions
                    WHERE scale = ? AND practice_type = ?
                ''', (scale, practice_type)).fetchone()
        except sqlite3.Error as e:
            logger.error("Error checking if exercise practiced: %s", e, exc_info=True)
            return False
        return row['count'] > 0

    def practiced_types_for_scale(self, scale: str) -> Set[str]:
        try:
            with self.db.reading() as conn:
                rows = conn.execute('''
                    SELECT DISTINCT practice_type
                    FROM practice_sessions
                    WHERE scale = ?
                ''', (scale,)).fetchall()
        except sqlite3.Error as e:
            logger.error("Error getting practiced exercises: %s", e, exc_info=True)
            return set()
        return {row['practice_type'] for row in rows}

    def describe_scale(self, scale: str) -> List[str]:
        """Human-readable list of the exercises stored for a scale."""
        try:
            with self.db.reading() as conn:
                rows = conn.execute('''
                    SELECT practice_type, octaves, bpm
                    FROM practice_sessions
                    WHERE scale = ?
                    ORDER BY id
                ''', (scale,)).fetchall()
        except sqlite3.Error as e:
            logger.error("Error describing practice types: %s", e, exc_info=True)
            return []
        return [f'"{row["practice_type"]}" (octaves: {row["octaves"]}, bpm: {row["bpm"]})'
                for row in rows]

    def stats(self, on_date: Optional[str] = None) -> Dict[str, Any]:
        """
        Summary figures across all stored sessions.

        Args:
            on_date: Day counted as "today" (defaults to the local date)

        Returns:
            Dict with total_sessions, today_sessions, total_practice_time_seconds
            and favorite_scale (most sessions, earliest-recorded scale on ties)
        """
        on_date = on_date or today()
        try:
            with self.db.reading() as conn:
                totals = conn.execute('''
                    SELECT
                        COUNT(*) AS total_sessions,
                        COALESCE(SUM(CASE WHEN date = ? THEN 1 ELSE 0 END), 0) AS today_sessions,
                        COALESCE(SUM(duration), 0) AS total_practice_time_seconds
                    FROM practice_sessions
                ''', (on_date,)).fetchone()
                favorite = conn.execute('''
                    SELECT scale, COUNT(*) AS session_count
                    FROM practice_sessions
                    GROUP BY scale
                    ORDER BY session_count DESC, MIN(id) ASC
                    LIMIT 1
                ''').fetchone()
        except sqlite3.Error as e:
            logger.error("Error getting practice stats: %s", e, exc_info=True)
            return empty_stats()

        stats = dict(totals)
        stats['favorite_scale'] = favorite['scale'] if favorite else None
        return stats

    def clear_all(self) -> bool:
        """Delete every stored session."""
        try:
            with self.db.transaction() as conn:
                conn.execute('DELETE FROM practice_sessions')
        except sqlite3.Error as e:
            logger.error("Error clearing sessions: %s", e, exc_info=True)
            return False
        logger.info("All sessions cleared")
        return True
