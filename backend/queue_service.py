"""
Queue Service

Root of the queue engine. Each up_next call resolves the entries that are due
for a catalog lookup (concurrently, bounded by a worker pool and the shared
rate limiter), then ranks the current snapshot into the "up next" list.

Usage:
    from queue_service import build_queue_service

    service = build_queue_service()
    service.enqueue('Shari Vari', 'A Number Of Names', '1049470')
    page = service.up_next(limit=10)
"""

import logging
import threading
import time
import zlib
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from catalog_outcomes import TransportError
from config import QueueSettings
from discogs_client import DiscogsClient
from match_resolver import MatchResolver
from queue_errors import (
    CatalogTransportError,
    EntryAlreadyPlayedError,
    EntryNotFoundError,
    InvalidEntryError,
    safe_error_message,
    visible_error,
)
from queue_models import EntryState, QueueEntry, RankedQueueItem, make_entry_id, utc_timestamp
from queue_ranker import PLAY_MODES, QueueRanker, filter_by_mode
from queue_store import InMemoryQueueStore, PostgresQueueStore, QueueStore
from rate_limiter import RateLimiter
from retry_governor import BackoffPolicy, RetryGovernor
from utils.helpers import clamp_limit, safe_strip

logger = logging.getLogger(__name__)

# Fixed pool of per-entry locks; entries hash onto one of them
ENTRY_LOCK_STRIPES = 64


@dataclass
class UpNextPage:
    """Result of one up_next call"""
    items: List[RankedQueueItem]
    total: int
    playable: int
    pending: List[str] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'items': [item.to_dict() for item in self.items],
            'total': self.total,
            'playable': self.playable,
            'pending': list(self.pending),
            'errors': list(self.errors),
        }


class QueueService:
    """
    Orchestrates enrichment and ranking of the digging queue
    """

    def __init__(self, store: QueueStore, governor: RetryGovernor, resolver: MatchResolver,
                 ranker: QueueRanker = None, batch_size: int = 24, request_timeout: float = 20.0,
                 max_concurrency: int = 4, clock: Callable[[], float] = time.time,
                 executor: ThreadPoolExecutor = None):
        """
        Args:
            store: Persistence boundary for entries
            governor: Retry governor wrapping the catalog client
            resolver: Folds outcomes into entry state
            ranker: Orders playable entries
            batch_size: Max due entries resolved per up_next call
            request_timeout: Seconds up_next waits for lookups before answering
            max_concurrency: Worker threads when no executor is given
            clock: Time source
            executor: Optional executor (owned by the service otherwise)
        """
        self.store = store
        self.governor = governor
        self.resolver = resolver
        self.ranker = ranker or QueueRanker()
        self.batch_size = max(1, batch_size)
        self.request_timeout = request_timeout
        self.clock = clock
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=max(1, max_concurrency),
            thread_name_prefix='QueueResolver',
        )

        self._entry_locks = [threading.Lock() for _ in range(ENTRY_LOCK_STRIPES)]
        self._enqueue_lock = threading.Lock()
        self._in_flight = set()
        self._in_flight_lock = threading.Lock()

    # ==================== Read paths ====================

    def up_next(self, limit=None) -> UpNextPage:
        """
        Resolve due entries, then return the top of the ranked queue

        Args:
            limit: Page size; clamped to 1-100, default 24

        Returns:
            UpNextPage with the ranked items, entries still resolving and
            errors hit during this call (transport errors and failed workers;
            neither fails the page)
        """
        limit = clamp_limit(limit)
        now = self.clock()

        due = [entry for entry in self.store.list_entries() if entry.is_due(now)][:self.batch_size]
        futures = {}
        for entry in due:
            future = self._submit(entry.id)
            if future is not None:
                futures[future] = entry.id

        errors = []
        pending = []
        if futures:
            done, not_done = wait(futures, timeout=self.request_timeout)
            pending = sorted(futures[f] for f in not_done)
            for future in sorted(done, key=lambda f: futures[f]):
                error = future.exception()
                if error is not None:
                    errors.append({
                        'entry_id': futures[future],
                        'kind': getattr(error, 'code', 'internal_error'),
                        'detail': safe_error_message(error),
                    })
                    continue
                updated = future.result()
                if updated is not None and updated.state == EntryState.TRANSPORT_ERROR:
                    errors.append({
                        'entry_id': updated.id,
                        'kind': CatalogTransportError.code,
                        'detail': updated.last_error,
                    })
            logger.info(f"up_next: {len(due)} due, {len(done)} resolved, "
                        f"{len(pending)} still pending, {len(errors)} errors")

        snapshot = self.store.list_entries()
        ranked = self.ranker.rank(snapshot)
        return UpNextPage(
            items=ranked[:limit],
            total=len(snapshot),
            playable=len(ranked),
            pending=pending,
            errors=errors,
        )

    def export_all(self) -> List[Dict[str, Any]]:
        """
        Every entry in creation order, regardless of state

        Read-only: never triggers catalog lookups and never truncates.
        """
        rows = []
        for entry in self.store.list_entries():
            row = entry.to_dict()
            row['added_at'] = utc_timestamp(entry.created_at)
            row['visible_error'] = visible_error(entry.last_error_code, entry.last_error)
            rows.append(row)
        return rows

    def next_item(self, mode: str = 'hybrid', current_id: str = None) -> Optional[RankedQueueItem]:
        """
        Mark the current entry played and return the next playable one

        Reads the current snapshot only; no catalog lookups. Entries queued
        with "play next" come first (highest priority, then latest bump);
        otherwise the top of the ranking is returned.

        Args:
            mode: 'track', 'release' or 'hybrid' (anything else means hybrid)
            current_id: Entry that just finished playing
        """
        if current_id:
            try:
                self.mark_played(current_id)
            except EntryNotFoundError:
                logger.warning(f"next_item: current entry {current_id} not found")

        if mode not in PLAY_MODES:
            mode = 'hybrid'
        items = filter_by_mode(self.ranker.rank(self.store.list_entries()), mode)
        if not items:
            return None

        bumped = [item for item in items if item.user_priority > 0]
        if bumped:
            return min(bumped, key=lambda item: (-item.user_priority, -(item.bumped_at or 0.0), item.position))
        return items[0]

    def get_statistics(self) -> Dict[str, Any]:
        """Entry counts by state"""
        counts = {state.value: 0 for state in EntryState}
        for entry in self.store.list_entries():
            counts[entry.state.value] += 1

        return {
            'total': sum(counts.values()),
            'counts': counts,
            'pending': counts[EntryState.PENDING.value],
            'playable': counts[EntryState.TRACK_MATCH.value] + counts[EntryState.RELEASE_FALLBACK.value],
            'awaiting_retry': (
                counts[EntryState.RETRY_SCHEDULED.value] +
                counts[EntryState.TRANSPORT_ERROR.value]
            ),
            'unresolved': counts[EntryState.UNRESOLVED.value],
            'played': counts[EntryState.PLAYED.value],
            'in_flight': len(self._in_flight),
        }

    # ==================== Write paths ====================

    def enqueue(self, artist: str = None, title: str = None, catalog_text: str = None,
                play_next: bool = False) -> QueueEntry:
        """Add an item to the digging queue (the existing entry when already queued)"""
        entry, _ = self.add_entry(artist, title, catalog_text, play_next=play_next)
        return entry

    def add_entry(self, artist: str = None, title: str = None, catalog_text: str = None,
                  play_next: bool = False) -> Tuple[QueueEntry, bool]:
        """
        Add an item to the digging queue

        Args:
            artist: Artist name
            title: Track or release title
            catalog_text: Free catalog text (catalog number, Discogs release URL)
            play_next: Give the entry a priority above every other queued
                entry; an already queued entry is bumped instead

        Returns:
            (entry, created); created is False when the same item was already queued

        Raises:
            InvalidEntryError: Neither artist nor title given
        """
        artist = safe_strip(artist) or ''
        title = safe_strip(title) or ''
        catalog_text = safe_strip(catalog_text) or ''
        if not artist and not title:
            raise InvalidEntryError()

        now = self.clock()
        candidate = QueueEntry(
            id=make_entry_id(artist, title, catalog_text, now),
            artist=artist,
            title=title,
            catalog_text=catalog_text,
            created_at=now,
            updated_at=now,
        )

        with self._enqueue_lock:
            queued = [e for e in self.store.list_entries() if e.state != EntryState.PLAYED]
            next_priority = max((e.priority for e in queued), default=0) + 1

            for existing in queued:
                if existing.dedupe_key() == candidate.dedupe_key():
                    logger.info(f"Already queued: {existing.id} / {artist} - {title}")
                    if play_next:
                        existing = self._bump(existing.id, next_priority)
                    return existing, False

            if play_next:
                candidate = candidate.copy(priority=next_priority, bumped_at=now)
            self.store.add(candidate)

        logger.info(f"Queued entry {candidate.id}: {artist} - {title} [{catalog_text}]"
                    f"{' (play next)' if play_next else ''}")
        return candidate, True

    def _bump(self, entry_id: str, priority: int) -> QueueEntry:
        """Move a queued entry to the front of the play order"""
        with self._entry_lock(entry_id):
            entry = self.store.get(entry_id)
            if entry is None:
                raise EntryNotFoundError(entry_id)
            bumped = entry.copy(priority=priority, bumped_at=self.clock())
            self.store.save(bumped)
        logger.info(f"Bumped entry {entry_id} to priority {priority}")
        return bumped

    def remove_entry(self, entry_id: str) -> QueueEntry:
        """
        Drop an unplayed entry from the queue

        A lookup still running for the entry finds it gone and discards its
        result.

        Returns:
            The removed entry

        Raises:
            EntryNotFoundError: Unknown entry
            EntryAlreadyPlayedError: Played entries are kept as history
        """
        with self._entry_lock(entry_id):
            entry = self.store.get(entry_id)
            if entry is None:
                raise EntryNotFoundError(entry_id)
            if entry.state == EntryState.PLAYED:
                raise EntryAlreadyPlayedError(entry_id)
            if not self.store.delete(entry_id):
                raise EntryNotFoundError(entry_id)
        logger.info(f"Removed entry {entry_id} ({entry.state.value})")
        return entry

    def mark_played(self, entry_id: str) -> QueueEntry:
        """
        Take an entry out of the playable ranking

        Raises:
            EntryNotFoundError: Unknown entry
        """
        with self._entry_lock(entry_id):
            entry = self.store.get(entry_id)
            if entry is None:
                raise EntryNotFoundError(entry_id)
            now = self.clock()
            played = entry.copy(state=EntryState.PLAYED, next_attempt_at=None, updated_at=now)
            self.store.save(played)
        logger.info(f"Marked entry {entry_id} as played")
        return played

    def shutdown(self, wait_for_lookups: bool = False) -> None:
        """Stop the worker pool (only when the service created it)"""
        if self._owns_executor:
            self.executor.shutdown(wait=wait_for_lookups)

    # ==================== Resolution ====================

    def _entry_lock(self, entry_id: str) -> threading.Lock:
        stripe = zlib.crc32(entry_id.encode('utf-8')) % len(self._entry_locks)
        return self._entry_locks[stripe]

    def _submit(self, entry_id: str):
        """Schedule a resolution unless one is already running for this entry"""
        with self._in_flight_lock:
            if entry_id in self._in_flight:
                logger.debug(f"Entry {entry_id} already resolving, not resubmitting")
                return None
            self._in_flight.add(entry_id)
        try:
            return self.executor.submit(self._resolve_entry, entry_id)
        except RuntimeError:
            with self._in_flight_lock:
                self._in_flight.discard(entry_id)
            raise

    def _resolve_entry(self, entry_id: str) -> Optional[QueueEntry]:
        """
        Run one entry through governor and resolver, then persist the result

        Keeps running when the caller has stopped waiting, so the attempt
        bookkeeping is always written back.
        """
        try:
            entry = self.store.get(entry_id)
            if entry is None or not entry.is_due(self.clock()):
                return None

            try:
                outcome, budget = self.governor.run(entry)
                attempts = budget.attempts
            except Exception as e:
                # Folded as a transport error so the entry gets a cooldown
                logger.error(f"Lookup for entry {entry_id} failed: {e}", exc_info=True)
                outcome = TransportError(detail=f"{type(e).__name__}: {e}")
                attempts = 1
            updated = self.resolver.resolve(entry, outcome, self.clock(), attempts=attempts)

            with self._entry_lock(entry_id):
                current = self.store.get(entry_id)
                if current is None:
                    logger.warning(f"Entry {entry_id} disappeared during resolution")
                    return None
                if current.state != entry.state or current.updated_at != entry.updated_at:
                    logger.info(f"Entry {entry_id} changed during resolution "
                                f"({entry.state.value} -> {current.state.value}); result discarded")
                    return None
                # A "play next" bump may have landed while the lookup ran
                updated = updated.copy(priority=current.priority, bumped_at=current.bumped_at)
                self.store.save(updated)

            logger.debug(f"Entry {entry_id} -> {updated.state.value}")
            return updated
        except Exception as e:
            logger.error(f"Error resolving entry {entry_id}: {e}", exc_info=True)
            raise
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(entry_id)


def build_store(settings: QueueSettings) -> QueueStore:
    """Store selected by QUEUE_STORE"""
    if settings.store == 'postgres':
        store = PostgresQueueStore()
        store.ensure_schema()
        return store
    if settings.store != 'memory':
        logger.warning(f"Unknown QUEUE_STORE {settings.store!r}, using in-memory store")
    return InMemoryQueueStore()


def build_queue_service(settings: QueueSettings = None, store: QueueStore = None,
                        client=None, clock: Callable[[], float] = time.time,
                        sleep: Callable[[float], None] = time.sleep) -> QueueService:
    """
    Wire the queue engine from settings

    Args:
        settings: Engine settings (read from the environment when None)
        store: Store override (selected from settings otherwise)
        client: Catalog client override (Discogs otherwise)
        clock: Time source shared by every component
        sleep: Sleep function shared by limiter and governor
    """
    settings = settings or QueueSettings.from_env()
    client = client or DiscogsClient(
        token=settings.discogs_token,
        user_agent=settings.discogs_user_agent,
        base_url=settings.discogs_api_url,
        timeout=settings.discogs_timeout,
    )
    limiter = RateLimiter(min_interval=settings.discogs_min_call_gap, clock=clock)
    governor = RetryGovernor(
        client,
        limiter,
        policy=BackoffPolicy(settings.backoff_base, settings.backoff_max, settings.backoff_jitter),
        max_attempts=settings.max_attempts,
        clock=clock,
        sleep=sleep,
    )
    resolver = MatchResolver(
        track_threshold=settings.track_threshold,
        retry_cooldown=settings.retry_cooldown,
        retry_cooldown_max=settings.retry_cooldown_max,
        unresolved_recheck=settings.unresolved_recheck,
    )
    return QueueService(
        store=store or build_store(settings),
        governor=governor,
        resolver=resolver,
        ranker=QueueRanker(track_bonus=settings.track_priority_bonus),
        batch_size=settings.batch_size,
        request_timeout=settings.request_timeout,
        max_concurrency=settings.max_concurrency,
        clock=clock,
    )
