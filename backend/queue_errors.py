"""
Queue Errors
Error kinds raised at the queue boundaries and the display-side error filter
"""

from typing import Optional

RETRIES_EXHAUSTED_MESSAGE = "Discogs rate limit retries exhausted."

MAX_ERROR_LENGTH = 1200


def safe_error_message(error) -> str:
    """Stringify an error, truncated for storage"""
    return str(error)[:MAX_ERROR_LENGTH]


class QueueError(Exception):
    """Base class for digging queue errors"""
    code = 'queue_error'

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message())

    def default_message(self) -> str:
        return "Queue error"


class RetriesExhaustedError(QueueError):
    """External rate limit still in effect after all retries; self-healing"""
    code = 'retries_exhausted'

    def default_message(self) -> str:
        return RETRIES_EXHAUSTED_MESSAGE


class CatalogTransportError(QueueError):
    """The catalog service could not be reached or answered garbage"""
    code = 'transport_error'

    def __init__(self, detail: str = None, status_code: int = None):
        self.detail = detail or ''
        self.status_code = status_code
        super().__init__(f"Discogs transport error: {detail}" if detail else None)

    def default_message(self) -> str:
        return "Discogs transport error"


class EntryNotFoundError(QueueError):
    """No queue entry with the given ID"""
    code = 'entry_not_found'

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Queue entry not found: {entry_id}")


class EntryAlreadyPlayedError(QueueError):
    """Played entries stay in the queue history and cannot be removed"""
    code = 'entry_played'

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Queue entry already played: {entry_id}")


class InvalidEntryError(QueueError):
    """Enqueue request without identifying text"""
    code = 'invalid_entry'

    def default_message(self) -> str:
        return "An artist or title is required"


def visible_error(code: Optional[str], message: Optional[str]) -> Optional[str]:
    """
    Map a stored error to what the user should see

    Retries exhausted is an expected condition the queue recovers from on
    its own, so it is never shown.

    Args:
        code: Error code stored on the entry (e.g. 'retries_exhausted')
        message: Raw error message

    Returns:
        Message to display, or None to hide it
    """
    if code == RetriesExhaustedError.code:
        return None
    if not message:
        return None

    normalized = message.lower()
    if 'maxclientsinsessionmode' in normalized:
        return "Database is temporarily overloaded. Reload the queue to retry."
    if 'failed query:' in normalized:
        return "Temporary database failure. Reload the queue to retry."
    return message
