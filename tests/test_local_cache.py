"""
Tests for the local JSON cache file itself.

Per-operation rules are covered against both backends in test_sessions,
test_ledger and test_collection.
"""
import json
import logging
from pathlib import Path

from scalelog.exercise import ExerciseKey
from scalelog.local_cache import LocalCache
from tests.utils.helpers import make_session


class TestPersistence:

    def test_survives_reopen(self, cache):
        cache.sessions.insert_unique(make_session(bpm=88))
        cache.ledger.save({'date': '2026-10-19', 'total_time_seconds': 30})
        cache.collection.seed_defaults()

        reopened = LocalCache(str(cache.path))

        assert reopened.sessions.best_bpm(ExerciseKey('C Major', 'Right Hand', 2)) == 88
        assert reopened.ledger.get('2026-10-19')['total_time_seconds'] == 30
        assert len(reopened.collection.list()) == 6

    def test_ids_continue_after_reopen(self, cache):
        first = cache.sessions.insert(make_session())

        second = LocalCache(str(cache.path)).sessions.insert(make_session())

        assert second['id'] == first['id'] + 1

    def test_file_is_json(self, cache):
        cache.sessions.insert(make_session())

        data = json.loads(Path(cache.path).read_text(encoding='utf-8'))

        assert data['sessions'][0]['scale'] == 'C Major'
        assert data['next_session_id'] == 2

    def test_missing_file_starts_empty(self, tmp_path):
        cache = LocalCache(str(tmp_path / "absent.json"))

        assert cache.sessions.recent() == []
        assert cache.collection.list() == []
        assert not (tmp_path / "absent.json").exists()


class TestCorruption:

    def test_corrupt_file_moved_aside(self, tmp_path, caplog):
        path = tmp_path / "local_cache.json"
        path.write_text("{not json", encoding='utf-8')

        with caplog.at_level(logging.CRITICAL, logger='scalelog.local_cache'):
            cache = LocalCache(str(path))

        assert cache.sessions.recent() == []
        assert (tmp_path / "local_cache.json.corrupt").read_text(encoding='utf-8') == "{not json"
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)

    def test_non_object_root_treated_as_corrupt(self, tmp_path):
        path = tmp_path / "local_cache.json"
        path.write_text("[1, 2, 3]", encoding='utf-8')

        cache = LocalCache(str(path))

        assert cache.snapshot()['sessions'] == []
        assert (tmp_path / "local_cache.json.corrupt").exists()

    def test_usable_after_recovery(self, tmp_path):
        path = tmp_path / "local_cache.json"
        path.write_text("garbage", encoding='utf-8')

        cache = LocalCache(str(path))
        cache.sessions.insert(make_session())

        assert len(LocalCache(str(path)).sessions.recent()) == 1


class TestTransactions:

    def test_failed_change_restores_memory(self, cache):
        cache.sessions.insert(make_session())

        try:
            with cache.transaction() as data:
                data['sessions'] = []
                raise RuntimeError("boom")
        except RuntimeError:
            pass

        assert len(cache.sessions.recent()) == 1

    def test_snapshot_is_a_copy(self, cache):
        cache.sessions.insert(make_session())

        cache.snapshot()['sessions'].clear()

        assert len(cache.sessions.recent()) == 1


class TestClearAll:

    def test_clears_everything_and_resets_ids(self, cache):
        cache.sessions.insert(make_session())
        cache.ledger.save({'date': '2026-10-19', 'total_time_seconds': 30})
        cache.collection.seed_defaults()

        assert cache.clear_all() is True

        assert cache.sessions.recent() == []
        assert cache.ledger.records() == []
        assert cache.collection.list() == []
        assert cache.sessions.insert(make_session())['id'] == 1

    def test_ledger_records_sorted_by_date(self, cache):
        cache.ledger.save({'date': '2026-10-19', 'total_time_seconds': 1})
        cache.ledger.save({'date': '2026-10-17', 'total_time_seconds': 2})

        assert [r['date'] for r in cache.ledger.records()] == ['2026-10-17', '2026-10-19']
