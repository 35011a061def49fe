"""
Tests for the daily practice ledger and its local-cache mirror.
"""
import pytest

from scalelog.exercise import InvalidPayload, today


@pytest.fixture(params=["database", "local_cache"])
def any_ledger(request, ledger, cache):
    return ledger if request.param == "database" else cache.ledger


def _record(date, seconds, last_updated='2026-10-19T10:00:00.000Z'):
    return {'date': date, 'total_time_seconds': seconds, 'last_updated': last_updated}


class TestDailyPracticeLedger:

    def test_missing_day_returns_none(self, any_ledger):
        assert any_ledger.get('2026-10-19') is None

    def test_save_then_get(self, any_ledger):
        assert any_ledger.save(_record('2026-10-19', 42)) is True

        assert any_ledger.get('2026-10-19') == _record('2026-10-19', 42)

    def test_repeated_saves_keep_one_record_per_day(self, any_ledger):
        for seconds in range(1, 6):
            any_ledger.save(_record('2026-10-19', seconds, f'2026-10-19T10:00:0{seconds}.000Z'))

        record = any_ledger.get('2026-10-19')
        assert record['total_time_seconds'] == 5
        assert record['last_updated'] == '2026-10-19T10:00:05.000Z'

    def test_days_are_independent(self, any_ledger):
        any_ledger.save(_record('2026-10-18', 300))
        any_ledger.save(_record('2026-10-19', 0))

        assert any_ledger.get('2026-10-18')['total_time_seconds'] == 300
        assert any_ledger.get('2026-10-19')['total_time_seconds'] == 0

    def test_date_defaults_to_today(self, any_ledger):
        any_ledger.save(_record(today(), 12))

        assert any_ledger.get()['total_time_seconds'] == 12

    def test_last_updated_filled_in(self, any_ledger):
        any_ledger.save({'date': '2026-10-19', 'total_time_seconds': 3})

        assert any_ledger.get('2026-10-19')['last_updated'].endswith('Z')

    @pytest.mark.parametrize("record", [
        {'total_time_seconds': 5},
        {'date': '2026-10-19', 'total_time_seconds': -1},
        {'date': '2026-10-19'},
        'not a record',
    ])
    def test_malformed_record_rejected(self, any_ledger, record):
        with pytest.raises(InvalidPayload):
            any_ledger.save(record)

    def test_clear_all(self, any_ledger):
        any_ledger.save(_record('2026-10-18', 10))
        any_ledger.save(_record('2026-10-19', 20))

        assert any_ledger.clear_all() is True
        assert any_ledger.get('2026-10-18') is None
        assert any_ledger.get('2026-10-19') is None


class TestMerge:

    def test_merge_keeps_larger_total(self, ledger):
        ledger.save(_record('2026-10-19', 100))

        ledger.merge(_record('2026-10-19', 40))
        assert ledger.get('2026-10-19')['total_time_seconds'] == 100

        ledger.merge(_record('2026-10-19', 140))
        assert ledger.get('2026-10-19')['total_time_seconds'] == 140

    def test_merge_inserts_new_day(self, ledger):
        assert ledger.merge(_record('2026-10-17', 75)) is True

        assert ledger.get('2026-10-17')['total_time_seconds'] == 75

    def test_unique_date_in_table(self, ledger, db):
        ledger.save(_record('2026-10-19', 1))
        ledger.save(_record('2026-10-19', 2))
        ledger.merge(_record('2026-10-19', 3))

        count = db.conn.execute("SELECT COUNT(*) FROM daily_practice WHERE date = '2026-10-19'").fetchone()[0]
        assert count == 1
