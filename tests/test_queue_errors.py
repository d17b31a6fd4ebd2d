"""
Tests for error kinds and the display-side error filter.
"""
from queue_errors import (
    MAX_ERROR_LENGTH,
    RETRIES_EXHAUSTED_MESSAGE,
    CatalogTransportError,
    EntryNotFoundError,
    InvalidEntryError,
    RetriesExhaustedError,
    safe_error_message,
    visible_error,
)


class TestVisibleError:
    """What the UI is allowed to show."""

    def test_retries_exhausted_hidden(self):
        assert visible_error('retries_exhausted', RETRIES_EXHAUSTED_MESSAGE) is None

    def test_retries_exhausted_hidden_whatever_the_message(self):
        assert visible_error('retries_exhausted', 'anything') is None

    def test_transport_error_shown(self):
        assert visible_error('transport_error', 'connection refused') == 'connection refused'

    def test_database_overload_rewritten(self):
        message = visible_error('queue_error', 'FATAL: MaxClientsInSessionMode: max clients reached')
        assert message == "Database is temporarily overloaded. Reload the queue to retry."

    def test_failed_query_rewritten(self):
        message = visible_error('queue_error', 'Failed query: select ...')
        assert message == "Temporary database failure. Reload the queue to retry."

    def test_no_message(self):
        assert visible_error(None, None) is None


class TestErrorKinds:
    """Exception hierarchy."""

    def test_codes(self):
        assert RetriesExhaustedError.code == 'retries_exhausted'
        assert CatalogTransportError.code == 'transport_error'
        assert EntryNotFoundError.code == 'entry_not_found'
        assert InvalidEntryError.code == 'invalid_entry'

    def test_default_messages(self):
        assert str(RetriesExhaustedError()) == RETRIES_EXHAUSTED_MESSAGE
        assert str(EntryNotFoundError('abc')) == 'Queue entry not found: abc'

    def test_transport_error_carries_detail(self):
        error = CatalogTransportError('timeout after 15s', status_code=None)
        assert error.detail == 'timeout after 15s'
        assert 'timeout after 15s' in str(error)

    def test_safe_error_message_truncates(self):
        assert len(safe_error_message('x' * 5000)) == MAX_ERROR_LENGTH
