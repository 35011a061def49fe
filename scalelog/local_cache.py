"""
Local JSON cache used when the practice server cannot be reached.

The cache exposes the same operations as the server-side stores and
enforces the same rules (one session per exercise on the unique path,
one record per day, unique scale names), so results look the same no
matter which side served them.
"""
from __future__ import annotations

import copy
import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set

import scalelog.config as config
from scalelog.catalog import default_scales, normalize_scale
from scalelog.exercise import (
    ExerciseKey,
    best_bpm,
    empty_stats,
    newest_first,
    normalize_session,
    now_timestamp,
    practice_stats,
    practiced_types,
    today,
)
from scalelog.ledger import normalize_daily_record

logger = logging.getLogger(__name__)


class CacheError(Exception):
    """Raised when the cache file cannot be written."""


def _empty() -> Dict[str, Any]:
    return {
        'sessions': [],
        'next_session_id': 1,
        'daily_practice': {},
        'scales': [],
        'next_scale_id': 1,
    }


class LocalCache:
    """JSON file holding sessions, daily totals and the scale collection."""

    def __init__(self, path: str = config.LOCAL_CACHE_PATH):
        self.path = Path(path).expanduser()
        self._lock = threading.RLock()
        self._data = self._load()

        self.sessions = CachedSessions(self)
        self.ledger = CachedLedger(self)
        self.collection = CachedCollection(self)

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return _empty()
        try:
            data = json.loads(self.path.read_text(encoding='utf-8'))
            if not isinstance(data, dict):
                raise ValueError("cache root is not an object")
        except (OSError, ValueError) as e:
            corrupt = self.path.with_name(self.path.name + '.corrupt')
            logger.critical("Local cache %s is unreadable (%s); moving it to %s and starting empty",
                            self.path, e, corrupt)
            try:
                os.replace(self.path, corrupt)
            except OSError as move_error:
                logger.error("Could not move corrupt cache aside: %s", move_error)
            return _empty()

        merged = _empty()
        merged.update(data)
        return merged

    def _persist(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + '.tmp')
        tmp.write_text(json.dumps(self._data, indent=2), encoding='utf-8')
        os.replace(tmp, self.path)

    @contextmanager
    def transaction(self) -> Iterator[Dict[str, Any]]:
        """
        Apply a change to the cached data and write it to disk.

        The in-memory copy is restored if the block raises or the file
        cannot be written.

        Raises:
            CacheError: If the cache file could not be written
        """
        with self._lock:
            snapshot = copy.deepcopy(self._data)
            try:
                yield self._data
                self._persist()
            except OSError as e:
                self._data = snapshot
                raise CacheError(f"could not write {self.path}: {e}") from e
            except BaseException:
                self._data = snapshot
                raise

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._data)

    def clear_all(self) -> bool:
        try:
            with self.transaction() as data:
                data.clear()
                data.update(_empty())
        except CacheError as e:
            logger.error("Error clearing local cache: %s", e)
            return False
        logger.info("Local cache cleared")
        return True


class CachedSessions:
    """Session operations over the local cache, mirroring SessionStore."""

    def __init__(self, cache: LocalCache):
        self.cache = cache

    def _rows(self) -> List[Dict]:
        return self.cache.snapshot()['sessions']

    def _append(self, session: Dict[str, Any], unique: bool) -> Optional[Dict]:
        record = normalize_session(session)
        try:
            with self.cache.transaction() as data:
                if unique:
                    key = ExerciseKey.from_session(record)
                    data['sessions'] = [s for s in data['sessions'] if not key.matches(s)]
                stored = {'id': data['next_session_id'], **record}
                data['next_session_id'] += 1
                data['sessions'].append(stored)
        except CacheError as e:
            logger.error("Error saving session locally: %s", e)
            return None
        return dict(stored)

    def insert(self, session: Dict[str, Any]) -> Optional[Dict]:
        return self._append(session, unique=False)

    def insert_unique(self, session: Dict[str, Any]) -> Optional[Dict]:
        return self._append(session, unique=True)

    def recent(self, limit: int = config.RECENT_SESSIONS_LIMIT) -> List[Dict]:
        return newest_first(self._rows())[:max(0, limit)]

    def all(self) -> List[Dict]:
        return newest_first(self._rows())[:config.ALL_SESSIONS_CAP]

    def for_scale(self, scale: str) -> List[Dict]:
        return newest_first(s for s in self._rows() if s['scale'] == scale)

    def last_for_scale(self, scale: str, limit: int = config.LAST_FOR_SCALE_LIMIT) -> List[Dict]:
        return self.for_scale(scale)[:max(0, limit)]

    def best_bpm(self, key: ExerciseKey) -> Optional[int]:
        return best_bpm(self._rows(), key)

    def has_been_practiced(self, scale: str, practice_type: str) -> bool:
        return any(s['scale'] == scale and s['practice_type'] == practice_type for s in self._rows())

    def practiced_types_for_scale(self, scale: str) -> Set[str]:
        return practiced_types(self._rows(), scale)

    def describe_scale(self, scale: str) -> List[str]:
        rows = sorted((s for s in self._rows() if s['scale'] == scale), key=lambda s: s['id'])
        return [f'"{s["practice_type"]}" (octaves: {s["octaves"]}, bpm: {s["bpm"]})' for s in rows]

    def stats(self, on_date: Optional[str] = None) -> Dict[str, Any]:
        rows = self._rows()
        return practice_stats(rows, on_date) if rows else empty_stats()

    def clear_all(self) -> bool:
        try:
            with self.cache.transaction() as data:
                data['sessions'] = []
        except CacheError as e:
            logger.error("Error clearing local sessions: %s", e)
            return False
        return True


class CachedLedger:
    """Daily practice operations over the local cache, mirroring DailyPracticeLedger."""

    def __init__(self, cache: LocalCache):
        self.cache = cache

    def get(self, date: Optional[str] = None) -> Optional[Dict]:
        record = self.cache.snapshot()['daily_practice'].get(date or today())
        return dict(record) if record else None

    def save(self, record: Dict[str, Any]) -> bool:
        data = normalize_daily_record(record)
        try:
            with self.cache.transaction() as cached:
                cached['daily_practice'][data['date']] = data
        except CacheError as e:
            logger.error("Error saving daily practice locally: %s", e)
            return False
        return True

    def records(self) -> List[Dict]:
        return [dict(r) for _, r in sorted(self.cache.snapshot()['daily_practice'].items())]

    def clear_all(self) -> bool:
        try:
            with self.cache.transaction() as data:
                data['daily_practice'] = {}
        except CacheError as e:
            logger.error("Error clearing local daily practice: %s", e)
            return False
        return True


class CachedCollection:
    """Scale collection operations over the local cache, mirroring ScaleCollection."""

    def __init__(self, cache: LocalCache):
        self.cache = cache

    def list(self) -> List[Dict]:
        return self.cache.snapshot()['scales']

    @staticmethod
    def _insert(data: Dict[str, Any], entry: Dict[str, Any]) -> Optional[Dict]:
        if any(s['name'] == entry['name'] for s in data['scales']):
            return None
        created = {'id': data['next_scale_id'], **entry, 'created_at': now_timestamp()}
        data['next_scale_id'] += 1
        data['scales'].append(created)
        return dict(created)

    def add(self, scale: Dict[str, Any]) -> Optional[Dict]:
        entry = normalize_scale(scale)
        try:
            with self.cache.transaction() as data:
                return self._insert(data, entry)
        except CacheError as e:
            logger.error("Error adding scale locally: %s", e)
            return None

    def add_many(self, scales: Iterable[Dict[str, Any]]) -> Dict[str, List]:
        entries = [normalize_scale(scale) for scale in scales]
        added, skipped = [], []
        try:
            with self.cache.transaction() as data:
                for entry in entries:
                    created = self._insert(data, entry)
                    if created:
                        added.append(created)
                    else:
                        skipped.append(entry['name'])
        except CacheError as e:
            logger.error("Error adding scales locally: %s", e)
            return {'added': [], 'skipped': []}
        return {'added': added, 'skipped': skipped}

    def remove(self, scale_id: int) -> bool:
        try:
            with self.cache.transaction() as data:
                before = len(data['scales'])
                data['scales'] = [s for s in data['scales'] if s['id'] != scale_id]
                return len(data['scales']) < before
        except CacheError as e:
            logger.error("Error removing scale locally: %s", e)
            return False

    def seed_defaults(self) -> List[Dict]:
        try:
            with self.cache.transaction() as data:
                for scale in default_scales():
                    self._insert(data, scale)
        except CacheError as e:
            logger.error("Error seeding local scales: %s", e)
        return self.list()

    def reset_to_defaults(self) -> List[Dict]:
        try:
            with self.cache.transaction() as data:
                data['scales'] = []
                for scale in default_scales():
                    self._insert(data, scale)
        except CacheError as e:
            logger.error("Error resetting local scales: %s", e)
        return self.list()

    def clear_all(self) -> bool:
        try:
            with self.cache.transaction() as data:
                data['scales'] = []
        except CacheError as e:
            logger.error("Error clearing local scales: %s", e)
            return False
        return True
