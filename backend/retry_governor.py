"""
Retry Governor

Wraps the catalog client with bounded retry and exponential backoff.

Each resolution sequence is driven by a RetryBudget, a small state machine
holding the attempt count and the next time a call is allowed. The governor
loop asks the budget what to do after every outcome, so the same logic runs
under real threads or under a simulated clock in tests.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from catalog_matching import parse_release_id
from catalog_outcomes import (
    RateLimited,
    Resolved,
    RetriesExhausted,
    TransportError,
    Unresolved,
    describe,
)
from queue_models import CatalogQuery, QueueEntry
from rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def build_query(entry: QueueEntry) -> CatalogQuery:
    """Normalize an entry's descriptive fields into a catalog query"""
    catalog_text = ' '.join((entry.catalog_text or '').split())
    release_id = parse_release_id(catalog_text)
    return CatalogQuery(
        artist=' '.join((entry.artist or '').split()),
        title=' '.join((entry.title or '').split()),
        catalog_text='' if release_id else catalog_text,
        release_id=release_id,
    )


class BackoffPolicy:
    """
    Exponential backoff with bounded jitter

    delay(n) = base * 2**(n-1) * (1 + jitter * u), u in [0, 1), capped at
    max_delay. With jitter <= 1 the sequence never decreases.
    """

    def __init__(self, base_delay: float = 1.25, max_delay: float = 30.0,
                 jitter: float = 0.5, rng: random.Random = None):
        self.base_delay = max(0.0, float(base_delay))
        self.max_delay = max(self.base_delay, float(max_delay))
        self.jitter = min(1.0, max(0.0, float(jitter)))
        self.rng = rng or random.Random()

    def delay(self, attempt: int, previous: float = 0.0, retry_after: Optional[float] = None) -> float:
        """
        Delay before the next call after `attempt` rate-limited attempts

        Args:
            attempt: Number of rate-limited attempts so far (1-based)
            previous: Delay used before the previous retry
            retry_after: Server-requested wait, honored up to max_delay
        """
        exponent = max(0, attempt - 1)
        computed = self.base_delay * (2 ** exponent) * (1 + self.jitter * self.rng.random())
        if retry_after is not None:
            computed = max(computed, retry_after)
        return max(previous, min(self.max_delay, computed))

    def __repr__(self) -> str:
        return f"BackoffPolicy(base={self.base_delay}, max={self.max_delay}, jitter={self.jitter})"


@dataclass(frozen=True)
class Step:
    """What the governor loop does next"""
    outcome: Optional[object] = None
    delay: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.outcome is not None


@dataclass
class RetryBudget:
    """
    Attempt bookkeeping for one resolution sequence

    Discarded once the sequence reaches a terminal outcome.
    """
    max_attempts: int
    attempts: int = 0
    rate_limited: int = 0
    transport_retries: int = 0
    next_allowed_at: float = 0.0
    last_delay: float = 0.0
    last_retry_after: Optional[float] = None

    def can_attempt(self) -> bool:
        return self.attempts < self.max_attempts

    def record_attempt(self) -> None:
        if not self.can_attempt():
            raise RuntimeError(f"Retry budget spent ({self.attempts}/{self.max_attempts})")
        self.attempts += 1

    def advance(self, outcome, now: float, policy: BackoffPolicy) -> Step:
        """
        Fold one client outcome into the budget

        Returns:
            A terminal Step carrying the outcome to report, or a Step with
            the delay to wait before calling again
        """
        if isinstance(outcome, (Resolved, Unresolved)):
            return Step(outcome=outcome)

        if isinstance(outcome, RateLimited):
            self.rate_limited += 1
            self.last_retry_after = outcome.retry_after
            if not self.can_attempt():
                return Step(outcome=RetriesExhausted(attempts=self.attempts,
                                                     last_retry_after=outcome.retry_after))
            self.last_delay = policy.delay(self.rate_limited, self.last_delay, outcome.retry_after)
            self.next_allowed_at = now + self.last_delay
            return Step(delay=self.last_delay)

        if isinstance(outcome, TransportError):
            # One immediate retry, never past the attempt ceiling
            if self.transport_retries == 0 and self.can_attempt():
                self.transport_retries += 1
                self.next_allowed_at = now
                return Step(delay=0.0)
            return Step(outcome=outcome)

        if isinstance(outcome, RetriesExhausted):
            raise TypeError("The catalog client never reports RetriesExhausted")
        raise TypeError(f"Unknown outcome: {outcome!r}")


class RetryGovernor:
    """
    Bounded retry around catalog lookups

    All calls go through the shared rate limiter. Backoff waits block only
    the thread resolving the entry at hand.
    """

    def __init__(self, client, limiter: RateLimiter, policy: BackoffPolicy = None,
                 max_attempts: int = 4, clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            client: Catalog client exposing lookup(CatalogQuery)
            limiter: Shared permit pool for the external service
            policy: Backoff policy for rate-limited attempts
            max_attempts: Attempt ceiling per resolution sequence
            clock: Time source
            sleep: Sleep function (a fake clock's sleep in tests)
        """
        self.client = client
        self.limiter = limiter
        self.policy = policy or BackoffPolicy()
        self.max_attempts = max(1, int(max_attempts))
        self.clock = clock
        self.sleep = sleep

    def resolve_with_retry(self, entry: QueueEntry):
        """
        Resolve one entry against the catalog

        Returns:
            Resolved, Unresolved, RetriesExhausted or TransportError
        """
        outcome, _ = self.run(entry)
        return outcome

    def run(self, entry: QueueEntry) -> Tuple[object, RetryBudget]:
        """Resolve one entry, also returning the spent budget"""
        query = build_query(entry)
        budget = RetryBudget(max_attempts=self.max_attempts)

        if query.is_empty():
            return Unresolved(reason='no identifying text'), budget

        while True:
            self.limiter.acquire(sleep=self.sleep)
            try:
                budget.record_attempt()
                outcome = self.client.lookup(query)
            finally:
                self.limiter.release()

            step = budget.advance(outcome, self.clock(), self.policy)
            if step.is_terminal:
                self._log_terminal(entry, step.outcome, budget)
                return step.outcome, budget

            if isinstance(outcome, RateLimited):
                logger.warning(f"Rate limit hit for entry {entry.id} "
                               f"(attempt {budget.attempts}/{budget.max_attempts}). "
                               f"Backing off {step.delay:.2f}s")
            else:
                logger.info(f"Retrying entry {entry.id} once after {describe(outcome)}")

            if step.delay > 0:
                self.sleep(step.delay)

    def _log_terminal(self, entry: QueueEntry, outcome, budget: RetryBudget) -> None:
        if isinstance(outcome, RetriesExhausted):
            logger.warning(f"Entry {entry.id}: {describe(outcome)}; scheduling a later retry")
        elif isinstance(outcome, TransportError):
            logger.error(f"Entry {entry.id}: {describe(outcome)} "
                         f"(attempts {budget.attempts}/{budget.max_attempts})")
        else:
            logger.debug(f"Entry {entry.id}: {describe(outcome)} after {budget.attempts} attempt(s)")
