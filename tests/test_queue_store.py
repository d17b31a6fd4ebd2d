"""
Tests for the in-memory and PostgreSQL queue stores.
"""
from unittest.mock import patch

import pytest
from psycopg.types.json import Jsonb

import db_utils
from conftest import make_entry, track_match
from queue_models import EntryState
from queue_store import COLUMNS, InMemoryQueueStore, PostgresQueueStore


class TestInMemoryQueueStore:
    """Process-local store."""

    def test_lists_in_creation_order(self):
        store = InMemoryQueueStore([make_entry('b', 2.0), make_entry('a', 1.0), make_entry('c', 2.0)])
        assert [e.id for e in store.list_entries()] == ['a', 'b', 'c']

    def test_returns_copies(self, store):
        store.add(make_entry('a', 1.0))

        fetched = store.get('a')
        fetched.state = EntryState.PLAYED

        assert store.get('a').state == EntryState.PENDING

    def test_duplicate_add_rejected(self, store):
        store.add(make_entry('a', 1.0))
        with pytest.raises(ValueError):
            store.add(make_entry('a', 1.0))

    def test_save_unknown_entry(self, store):
        with pytest.raises(KeyError):
            store.save(make_entry('missing', 1.0))

    def test_get_unknown_entry(self, store):
        assert store.get('missing') is None


class TestPostgresQueueStore:
    """PostgreSQL store with db_utils mocked out."""

    @pytest.fixture
    def pg_store(self):
        return PostgresQueueStore()

    def test_list_entries_maps_rows(self, pg_store):
        row = make_entry('a', 1.0, EntryState.TRACK_MATCH, track_match()).to_dict()

        with patch.object(db_utils, 'execute_query', return_value=[row]) as mock_query:
            entries = pg_store.list_entries()

        assert entries[0].id == 'a'
        assert entries[0].match == track_match()
        assert 'ORDER BY created_at, id' in mock_query.call_args[0][0]

    def test_get_missing(self, pg_store):
        with patch.object(db_utils, 'execute_query', return_value=None):
            assert pg_store.get('missing') is None

    def test_add_wraps_match_as_jsonb(self, pg_store):
        entry = make_entry('a', 1.0, EntryState.TRACK_MATCH, track_match())

        with patch.object(db_utils, 'execute_update', return_value=1) as mock_update:
            pg_store.add(entry)

        query, params = mock_update.call_args[0]
        assert query.startswith('INSERT INTO queue_entries')
        assert len(params) == len(COLUMNS)
        assert params[0] == 'a'
        assert params[5] == 'track_match'
        assert isinstance(params[6], Jsonb)

    def test_save_updates_by_id(self, pg_store):
        entry = make_entry('a', 1.0)

        with patch.object(db_utils, 'execute_update', return_value=1) as mock_update:
            pg_store.save(entry)

        query, params = mock_update.call_args[0]
        assert query.startswith('UPDATE queue_entries SET')
        assert params[-1] == 'a'
        assert params[5] is None

    def test_save_unknown_entry(self, pg_store):
        with patch.object(db_utils, 'execute_update', return_value=0):
            with pytest.raises(KeyError):
                pg_store.save(make_entry('missing', 1.0))

    def test_ping(self, pg_store):
        with patch.object(db_utils, 'execute_query', return_value={'ok': 1}):
            assert pg_store.ping() is True
        with patch.object(db_utils, 'execute_query', side_effect=RuntimeError('pool exhausted')):
            assert pg_store.ping() is False

    def test_ensure_schema(self, pg_store):
        with patch.object(db_utils, 'execute_update', return_value=0) as mock_update:
            pg_store.ensure_schema()
        assert 'CREATE TABLE IF NOT EXISTS queue_entries' in mock_update.call_args[0][0]


class TestDelete:
    """Removing entries from either store."""

    def test_in_memory_delete(self, store):
        store.add(make_entry('a', 1.0))

        assert store.delete('a') is True
        assert store.delete('a') is False
        assert store.get('a') is None

    def test_postgres_delete(self):
        with patch.object(db_utils, 'execute_update', return_value=1) as mock_update:
            assert PostgresQueueStore().delete('a') is True

        query, params = mock_update.call_args[0]
        assert query.startswith('DELETE FROM queue_entries')
        assert params == ('a',)

    def test_postgres_delete_missing(self):
        with patch.object(db_utils, 'execute_update', return_value=0):
            assert PostgresQueueStore().delete('missing') is False

    def test_priority_columns_round_trip(self):
        entry = make_entry('a', 1.0, priority=2, bumped_at=5.0)

        with patch.object(db_utils, 'execute_update', return_value=1) as mock_update:
            PostgresQueueStore().add(entry)
        params = mock_update.call_args[0][1]
        row = dict(zip(COLUMNS, params))

        assert row['priority'] == 2
        assert row['bumped_at'] == 5.0
        with patch.object(db_utils, 'execute_query', return_value=entry.to_dict()):
            assert PostgresQueueStore().get('a') == entry
