"""
Shared fixtures for the dig queue tests.
"""
import threading

import pytest

from catalog_outcomes import Resolved, Unresolved
from match_resolver import MatchResolver
from queue_models import CatalogMatch, EntryState, MatchKind, QueueEntry
from queue_ranker import QueueRanker
from queue_service import QueueService
from queue_store import InMemoryQueueStore
from rate_limiter import RateLimiter
from retry_governor import BackoffPolicy, RetryGovernor


class FakeClock:
    """Simulated time; sleep() advances it instead of blocking."""

    def __init__(self, start=1_700_000_000.0):
        self._now = float(start)
        self._lock = threading.Lock()
        self.sleeps = []

    def __call__(self):
        with self._lock:
            return self._now

    def advance(self, seconds):
        with self._lock:
            self._now += seconds

    def sleep(self, seconds):
        with self._lock:
            self.sleeps.append(seconds)
            self._now += max(0.0, seconds)


class StubCatalogClient:
    """Catalog client returning scripted outcomes, then a default one."""

    def __init__(self, outcomes=None, default=None, clock=None):
        self.outcomes = list(outcomes or [])
        self.default = default if default is not None else Unresolved()
        self.clock = clock
        self.queries = []
        self.call_times = []
        self._lock = threading.Lock()

    @property
    def calls(self):
        return len(self.queries)

    def lookup(self, query):
        with self._lock:
            self.queries.append(query)
            if self.clock is not None:
                self.call_times.append(self.clock())
            if self.outcomes:
                return self.outcomes.pop(0)
            return self.default


def track_match(release_id=1049470, position='A1', confidence=0.95, **payload):
    return CatalogMatch(
        entity_id=f"{release_id}:{position}",
        kind=MatchKind.TRACK,
        confidence=confidence,
        release_id=release_id,
        payload={'release_id': release_id, 'track_position': position, **payload},
    )


def release_match(release_id=1049470, confidence=0.9, **payload):
    return CatalogMatch(
        entity_id=str(release_id),
        kind=MatchKind.RELEASE,
        confidence=confidence,
        release_id=release_id,
        payload={'release_id': release_id, **payload},
    )


def resolved(*matches):
    return Resolved(matches=tuple(matches))


def make_entry(entry_id, created_at=0.0, state=EntryState.PENDING, match=None,
               artist='Shari Vari', title='A Number Of Names', catalog_text='', **fields):
    return QueueEntry(
        id=entry_id,
        artist=artist,
        title=title,
        catalog_text=catalog_text,
        created_at=created_at,
        state=state,
        match=match,
        updated_at=created_at,
        **fields,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryQueueStore()


@pytest.fixture
def stub_client(clock):
    return StubCatalogClient(clock=clock)


@pytest.fixture
def no_jitter_policy():
    return BackoffPolicy(base_delay=1.25, max_delay=30.0, jitter=0.0)


@pytest.fixture
def limiter(clock):
    return RateLimiter(min_interval=0.0, max_concurrent=1, clock=clock)


@pytest.fixture
def governor(stub_client, limiter, no_jitter_policy, clock):
    return RetryGovernor(stub_client, limiter, policy=no_jitter_policy,
                         max_attempts=4, clock=clock, sleep=clock.sleep)


@pytest.fixture
def service(store, governor, clock):
    svc = QueueService(
        store=store,
        governor=governor,
        resolver=MatchResolver(),
        ranker=QueueRanker(),
        batch_size=24,
        request_timeout=5.0,
        max_concurrency=1,
        clock=clock,
    )
    yield svc
    svc.shutdown(wait_for_lookups=True)
