"""
Match Resolver

Folds a lookup outcome into a queue entry: classifies catalog matches as
track-level hits or full-release fallbacks, and schedules later retries for
entries the catalog could not answer for.
"""

import logging
from typing import Optional

from catalog_outcomes import (
    RateLimited,
    Resolved,
    RetriesExhausted,
    TransportError,
    Unresolved,
)
from queue_errors import RETRIES_EXHAUSTED_MESSAGE, RetriesExhaustedError, CatalogTransportError, safe_error_message
from queue_models import CatalogMatch, EntryState, MatchKind, QueueEntry

logger = logging.getLogger(__name__)


class MatchResolver:
    """Turns lookup outcomes into entry state"""

    def __init__(self, track_threshold: float = 0.75, retry_cooldown: float = 300,
                 retry_cooldown_max: float = 3600, unresolved_recheck: float = 86400):
        """
        Args:
            track_threshold: Minimum confidence for a track-level match
            retry_cooldown: Delay before an exhausted or failed entry is due again
            retry_cooldown_max: Ceiling for repeated cooldowns
            unresolved_recheck: Delay before a no-match entry is looked up again
        """
        self.track_threshold = track_threshold
        self.retry_cooldown = retry_cooldown
        self.retry_cooldown_max = max(retry_cooldown, retry_cooldown_max)
        self.unresolved_recheck = unresolved_recheck

    def classify(self, outcome: Resolved) -> Optional[CatalogMatch]:
        """
        Pick the match an entry should be queued with

        A track match at or above the threshold wins; otherwise any release
        match is used as a full-release fallback.
        """
        track = outcome.best(MatchKind.TRACK)
        if track is not None and track.confidence >= self.track_threshold:
            return track
        return outcome.best(MatchKind.RELEASE)

    def cooldown(self, exhausted_count: int) -> float:
        """Cooldown after the n-th consecutive failed sequence (1-based)"""
        exponent = max(0, exhausted_count - 1)
        return min(self.retry_cooldown_max, self.retry_cooldown * (2 ** exponent))

    def resolve(self, entry: QueueEntry, outcome, now: float, attempts: int = 0) -> QueueEntry:
        """
        Fold an outcome into a copy of the entry

        Args:
            entry: Entry as read from the store
            outcome: Terminal outcome from the retry governor
            now: Time of the resolution
            attempts: Attempts spent in this sequence

        Returns:
            Updated entry (the input is not modified)
        """
        common = {
            'last_attempt_at': now,
            'attempt_count': attempts,
            'updated_at': now,
        }

        if isinstance(outcome, Resolved):
            match = self.classify(outcome)
            if match is None:
                logger.info(f"Entry {entry.id}: track match below threshold and no release fallback")
                return self._unresolved(entry, now, common)
            state = EntryState.TRACK_MATCH if match.kind == MatchKind.TRACK else EntryState.RELEASE_FALLBACK
            return entry.copy(
                state=state,
                match=match,
                next_attempt_at=None,
                exhausted_count=0,
                last_error_code=None,
                last_error=None,
                **common,
            )

        if isinstance(outcome, Unresolved):
            return self._unresolved(entry, now, common)

        if isinstance(outcome, RetriesExhausted):
            exhausted = entry.exhausted_count + 1
            return entry.copy(
                state=EntryState.RETRY_SCHEDULED,
                next_attempt_at=now + self.cooldown(exhausted),
                exhausted_count=exhausted,
                last_error_code=RetriesExhaustedError.code,
                last_error=RETRIES_EXHAUSTED_MESSAGE,
                **common,
            )

        if isinstance(outcome, TransportError):
            exhausted = entry.exhausted_count + 1
            return entry.copy(
                state=EntryState.TRANSPORT_ERROR,
                next_attempt_at=now + self.cooldown(exhausted),
                exhausted_count=exhausted,
                last_error_code=CatalogTransportError.code,
                last_error=safe_error_message(outcome.detail or 'transport error'),
                **common,
            )

        if isinstance(outcome, RateLimited):
            raise TypeError("RateLimited is not terminal; resolve through the retry governor")
        raise TypeError(f"Unknown outcome: {outcome!r}")

    def _unresolved(self, entry: QueueEntry, now: float, common: dict) -> QueueEntry:
        return entry.copy(
            state=EntryState.UNRESOLVED,
            match=None,
            next_attempt_at=now + self.unresolved_recheck,
            exhausted_count=0,
            last_error_code=None,
            last_error=None,
            **common,
        )
