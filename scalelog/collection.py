"""
Scale collection store: the scales a user has chosen to practice.
"""
import sqlite3
from typing import Any, Dict, Iterable, List, Optional
import logging

from scalelog.catalog import default_scales, normalize_scale
from scalelog.database import PracticeDatabase

logger = logging.getLogger(__name__)

ENTRY_COLUMNS = 'id, name, level, sharps, flats, created_at'


class ScaleCollection:
    """
    Collection of scales keyed by unique name, listed in insertion order.

    Adding a name that is already present is not an error: add() returns
    None so callers can tell the user the scale is already collected.
    """

    def __init__(self, db: PracticeDatabase):
        self.db = db

    def list(self) -> List[Dict]:
        """All entries, oldest first."""
        try:
            with self.db.reading() as conn:
                rows = conn.execute(f'SELECT {ENTRY_COLUMNS} FROM scale_collection ORDER BY id').fetchall()
        except sqlite3.Error as e:
            logger.error("Error getting scale collection: %s", e, exc_info=True)
            return []
        return [dict(row) for row in rows]

    @staticmethod
    def _insert(conn: sqlite3.Connection, entry: Dict[str, Any]) -> Optional[Dict]:
        cursor = conn.execute('''
            INSERT INTO scale_collection (name, level, sharps, flats)
            VALUES (:name, :level, :sharps, :flats)
            ON CONFLICT(name) DO NOTHING
        ''', entry)
        if cursor.rowcount == 0:
            return None
        row = conn.execute(f'SELECT {ENTRY_COLUMNS} FROM scale_collection WHERE id = ?',
                           (cursor.lastrowid,)).fetchone()
        return dict(row)

    def add(self, scale: Dict[str, Any]) -> Optional[Dict]:
        """
        Add a scale to the collection.

        Args:
            scale: Mapping with name, level, sharps and flats

        Returns:
            The created entry, or None if the name is already collected or
            the entry could not be persisted

        Raises:
            InvalidPayload: If the payload is malformed
        """
        entry = normalize_scale(scale)
        try:
            with self.db.transaction() as conn:
                created = self._insert(conn, entry)
        except sqlite3.Error as e:
            logger.error("Error adding scale %s: %s", entry['name'], e, exc_info=True)
            return None

        if created:
            logger.info(f"Added scale {created['id']}: {created['name']} ({created['level']})")
        else:
            logger.info(f"Scale {entry['name']} already in collection, skipping")
        return created

    def add_many(self, scales: Iterable[Dict[str, Any]]) -> Dict[str, List]:
        """
        Add several scales in one transaction.

        Returns:
            Dict with 'added' (created entries) and 'skipped' (names already
            collected); both empty if the batch could not be persisted
        """
        entries = [normalize_scale(scale) for scale in scales]
        added, skipped = [], []
        try:
            with self.db.transaction() as conn:
                for entry in entries:
                    created = self._insert(conn, entry)
                    if created:
                        added.append(created)
                    else:
                        skipped.append(entry['name'])
        except sqlite3.Error as e:
            logger.error("Error adding scales: %s", e, exc_info=True)
            return {'added': [], 'skipped': []}

        logger.info("Added %d scale(s), skipped %d already collected", len(added), len(skipped))
        return {'added': added, 'skipped': skipped}

    def remove(self, scale_id: int) -> bool:
        """Remove an entry by id; True only if a row was deleted."""
        try:
            with self.db.transaction() as conn:
                removed = conn.execute('DELETE FROM scale_collection WHERE id = ?', (scale_id,)).rowcount
        except sqlite3.Error as e:
            logger.error("Error removing scale %s: %s", scale_id, e, exc_info=True)
            return False
        if removed:
            logger.info(f"Removed scale {scale_id}")
        return removed > 0

    @classmethod
    def insert_defaults(cls, conn: sqlite3.Connection) -> List[Dict]:
        """
        Insert the default scales not yet collected, on a connection already in a transaction.

        Storage errors propagate so the enclosing transaction rolls back.

        Returns:
            The entries that were created
        """
        return [entry for entry in (cls._insert(conn, scale) for scale in default_scales()) if entry]

    def seed_defaults(self) -> List[Dict]:
        """Ensure the default scales are collected; safe to call on every startup."""
        try:
            with self.db.transaction() as conn:
                seeded = self.insert_defaults(conn)
        except sqlite3.Error as e:
            logger.error("Error initializing default scales: %s", e, exc_info=True)
            return self.list()

        if seeded:
            logger.info("Seeded %d default scale(s)", len(seeded))
        return self.list()

    def reset_to_defaults(self) -> List[Dict]:
        """Replace the whole collection with the default scales."""
        try:
            with self.db.transaction() as conn:
                conn.execute('DELETE FROM scale_collection')
                self.insert_defaults(conn)
        except sqlite3.Error as e:
            logger.error("Error resetting scales: %s", e, exc_info=True)
            return self.list()

        logger.info("Scale collection reset to defaults")
        return self.list()

    def clear_all(self) -> bool:
        """Empty the collection without reseeding."""
        try:
            with self.db.transaction() as conn:
                conn.execute('DELETE FROM scale_collection')
        except sqlite3.Error as e:
            logger.error("Error clearing scales: %s", e, exc_info=True)
            return False
        logger.info("All scales cleared")
        return True
