"""
Tests for the scale collection and its local-cache mirror.
"""
import pytest

from scalelog.catalog import DEFAULT_SCALE_NAMES, find_scale
from scalelog.exercise import InvalidPayload

G_MAJOR = {'name': 'G Major', 'level': 'Easy', 'sharps': 1, 'flats': 0}


class TestScaleCollection:

    def test_add_assigns_id(self, any_collection):
        entry = any_collection.add(G_MAJOR)

        assert entry['id'] is not None
        assert {k: entry[k] for k in G_MAJOR} == G_MAJOR

    def test_duplicate_name_returns_none(self, any_collection):
        any_collection.add(G_MAJOR)

        assert any_collection.add(G_MAJOR) is None
        assert any_collection.add({**G_MAJOR, 'level': 'Advanced'}) is None
        assert [s['name'] for s in any_collection.list()] == ['G Major']

    def test_list_in_insertion_order(self, any_collection):
        for name in ('F Major', 'A Minor', 'C Major'):
            any_collection.add(find_scale(name))

        assert [s['name'] for s in any_collection.list()] == ['F Major', 'A Minor', 'C Major']

    def test_remove(self, any_collection):
        entry = any_collection.add(G_MAJOR)

        assert any_collection.remove(entry['id']) is True
        assert any_collection.remove(entry['id']) is False
        assert any_collection.list() == []

    def test_removed_name_can_be_added_again(self, any_collection):
        entry = any_collection.add(G_MAJOR)
        any_collection.remove(entry['id'])

        again = any_collection.add(G_MAJOR)
        assert again is not None
        assert again['id'] != entry['id']

    def test_seed_defaults_is_idempotent(self, any_collection):
        any_collection.seed_defaults()
        scales = any_collection.seed_defaults()

        assert [s['name'] for s in scales] == DEFAULT_SCALE_NAMES

    def test_seed_defaults_keeps_user_scales(self, any_collection):
        any_collection.add(find_scale('B Minor'))
        any_collection.add(find_scale('C Major'))

        names = [s['name'] for s in any_collection.seed_defaults()]

        assert names[:2] == ['B Minor', 'C Major']
        assert sorted(names) == sorted(set(DEFAULT_SCALE_NAMES) | {'B Minor'})

    def test_reset_to_defaults_drops_user_scales(self, any_collection):
        any_collection.add(find_scale('B Minor'))

        scales = any_collection.reset_to_defaults()

        assert [s['name'] for s in scales] == DEFAULT_SCALE_NAMES

    def test_clear_all_does_not_reseed(self, any_collection):
        any_collection.seed_defaults()

        assert any_collection.clear_all() is True
        assert any_collection.list() == []

    def test_add_many_reports_added_and_skipped(self, any_collection):
        any_collection.add(G_MAJOR)

        result = any_collection.add_many([find_scale('D Major'), G_MAJOR, find_scale('E Minor')])

        assert [s['name'] for s in result['added']] == ['D Major', 'E Minor']
        assert result['skipped'] == ['G Major']
        assert len(any_collection.list()) == 3

    def test_catalog_fills_missing_fields(self, any_collection):
        entry = any_collection.add({'name': 'D Major'})

        assert (entry['level'], entry['sharps'], entry['flats']) == ('Intermediate', 2, 0)

    @pytest.mark.parametrize("scale", [
        {'level': 'Easy'},
        {'name': 'Lydian Dominant'},
        {'name': 'Odd', 'level': 'Easy', 'sharps': 1, 'flats': 2},
        {'name': 'Odd', 'level': 'Easy', 'sharps': -1},
    ])
    def test_malformed_entry_rejected(self, any_collection, scale):
        with pytest.raises(InvalidPayload):
            any_collection.add(scale)


class TestUniqueNameConstraint:

    def test_name_unique_in_table(self, collection, db):
        collection.add(G_MAJOR)
        collection.add(G_MAJOR)
        collection.add_many([G_MAJOR, G_MAJOR])

        count = db.conn.execute("SELECT COUNT(*) FROM scale_collection WHERE name = 'G Major'").fetchone()[0]
        assert count == 1
