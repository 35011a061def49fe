"""
Daily practice ledger: total seconds practiced per calendar day.
"""
import sqlite3
from typing import Any, Dict, Optional
import logging

from scalelog.database import PracticeDatabase
from scalelog.exercise import InvalidPayload, now_timestamp, parse_int, today

logger = logging.getLogger(__name__)


def normalize_daily_record(data: Any) -> Dict[str, Any]:
    """
    Validate a daily practice payload.

    Raises:
        InvalidPayload: If date is missing or total_time_seconds is not a
                        non-negative integer
    """
    if not isinstance(data, dict):
        raise InvalidPayload("practice data must be an object")
    date = data.get('date')
    if not isinstance(date, str) or not date.strip():
        raise InvalidPayload("date is required")
    return {
        'date': date,
        'total_time_seconds': parse_int(data.get('total_time_seconds'), 'total_time_seconds', minimum=0),
        'last_updated': data.get('last_updated') or now_timestamp(),
    }


class DailyPracticeLedger:
    """
    One record per calendar day holding the seconds practiced that day.

    Counted independently of sessions, so attempts too short to be stored
    still add to the daily total.
    """

    def __init__(self, db: PracticeDatabase):
        self.db = db

    def get(self, date: Optional[str] = None) -> Optional[Dict]:
        """
        Get the record for a day.

        Args:
            date: Calendar day (defaults to today in local time)

        Returns:
            Record dict, or None if nothing was practiced that day
        """
        target_date = date or today()
        try:
            with self.db.reading() as conn:
                row = conn.execute('''
                    SELECT date, total_time_seconds, last_updated
                    FROM daily_practice WHERE date = ?
                ''', (target_date,)).fetchone()
        except sqlite3.Error as e:
            logger.error("Error getting daily practice data: %s", e, exc_info=True)
            return None
        return dict(row) if row else None

    def save(self, record: Dict[str, Any]) -> bool:
        """
        Insert or replace the record for record['date'].

        Called every second while practicing with a growing total.

        Returns:
            True if persisted

        Raises:
            InvalidPayload: If the record is malformed
        """
        data = normalize_daily_record(record)
        try:
            with self.db.transaction() as conn:
                conn.execute('''
                    INSERT INTO daily_practice (date, total_time_seconds, last_updated)
                    VALUES (:date, :total_time_seconds, :last_updated)
                    ON CONFLICT(date) DO UPDATE SET
                        total_time_seconds = excluded.total_time_seconds,
                        last_updated = excluded.last_updated
                ''', data)
        except sqlite3.Error as e:
            logger.error("Error saving daily practice data: %s", e, exc_info=True)
            return False

        logger.debug("Daily practice for %s: %ss", data['date'], data['total_time_seconds'])
        return True

    def merge(self, record: Dict[str, Any]) -> bool:
        """
        Save a record unless the stored total for that day is already larger.

        Used when uploading totals that were accumulated offline.
        """
        data = normalize_daily_record(record)
        try:
            with self.db.transaction() as conn:
                conn.execute('''
                    INSERT INTO daily_practice (date, total_time_seconds, last_updated)
                    VALUES (:date, :total_time_seconds, :last_updated)
                    ON CONFLICT(date) DO UPDATE SET
                        total_time_seconds = excluded.total_time_seconds,
                        last_updated = excluded.last_updated
                    WHERE excluded.total_time_seconds > daily_practice.total_time_seconds
                ''', data)
        except sqlite3.Error as e:
            logger.error("Error merging daily practice data: %s", e, exc_info=True)
            return False
        return True

    def clear_all(self) -> bool:
        try:
            with self.db.transaction() as conn:
                conn.execute('DELETE FROM daily_practice')
        except sqlite3.Error as e:
            logger.error("Error clearing daily practice data: %s", e, exc_info=True)
            return False
        logger.info("Daily practice data cleared")
        return True
