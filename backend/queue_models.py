"""
Queue Models
Data model for the digging queue: entries, catalog matches and ranked items
"""

import hashlib
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class EntryState(str, Enum):
    """Resolution state of a queue entry"""
    PENDING = 'pending'
    TRACK_MATCH = 'track_match'
    RELEASE_FALLBACK = 'release_fallback'
    UNRESOLVED = 'unresolved'
    RETRY_SCHEDULED = 'retry_scheduled'
    TRANSPORT_ERROR = 'transport_error'
    PLAYED = 'played'


class MatchKind(str, Enum):
    """Granularity of a catalog match"""
    TRACK = 'track'
    RELEASE = 'release'


# States that are looked up again once next_attempt_at has passed
RECHECK_STATES = frozenset({
    EntryState.UNRESOLVED,
    EntryState.RETRY_SCHEDULED,
    EntryState.TRANSPORT_ERROR,
})

# States that sit in the playable ranking
PLAYABLE_STATES = frozenset({
    EntryState.TRACK_MATCH,
    EntryState.RELEASE_FALLBACK,
})


def utc_timestamp(value: float) -> str:
    """Format a unix timestamp as an ISO-8601 UTC string"""
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class CatalogQuery:
    """Normalized lookup fields sent to the catalog"""
    artist: str = ''
    title: str = ''
    catalog_text: str = ''
    release_id: Optional[int] = None

    def is_empty(self) -> bool:
        return not (self.artist or self.title or self.catalog_text or self.release_id)


@dataclass(frozen=True)
class CatalogMatch:
    """
    Result of a successful catalog lookup

    entity_id identifies the matched thing: "<release_id>:<position>" for a
    track, the release id for a release.
    """
    entity_id: str
    kind: MatchKind
    confidence: float
    release_id: Optional[int] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Confidence is bounded to [0, 1]
        bounded = max(0.0, min(1.0, float(self.confidence)))
        object.__setattr__(self, 'confidence', round(bounded, 4))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entity_id': self.entity_id,
            'kind': self.kind.value,
            'confidence': self.confidence,
            'release_id': self.release_id,
            'payload': dict(self.payload),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['CatalogMatch']:
        if not data:
            return None
        return cls(
            entity_id=str(data['entity_id']),
            kind=MatchKind(data['kind']),
            confidence=data.get('confidence', 0.0),
            release_id=data.get('release_id'),
            payload=dict(data.get('payload') or {}),
        )


def make_entry_id(artist: str, title: str, catalog_text: str, created_at: float) -> str:
    """Generate a stable entry ID from its descriptive fields and creation time"""
    key = f"{artist}||{title}||{catalog_text}||{created_at:.6f}"
    return hashlib.md5(key.encode('utf-8')).hexdigest()[:16]


@dataclass
class QueueEntry:
    """
    A pending item in the digging queue

    Owned by the queue service; only the resolution pipeline changes
    state, match and the attempt bookkeeping. priority and bumped_at are
    set when the user asks for an entry to be played next.
    """
    id: str
    artist: str
    title: str
    catalog_text: str
    created_at: float
    state: EntryState = EntryState.PENDING
    match: Optional[CatalogMatch] = None
    last_attempt_at: Optional[float] = None
    next_attempt_at: Optional[float] = None
    attempt_count: int = 0
    exhausted_count: int = 0
    last_error_code: Optional[str] = None
    last_error: Optional[str] = None
    updated_at: Optional[float] = None
    priority: int = 0
    bumped_at: Optional[float] = None

    def is_due(self, now: float) -> bool:
        """Whether the entry should be (re)submitted to the catalog at `now`"""
        if self.state == EntryState.PENDING:
            return True
        if self.state in RECHECK_STATES:
            return self.next_attempt_at is None or self.next_attempt_at <= now
        return False

    @property
    def is_playable(self) -> bool:
        return self.state in PLAYABLE_STATES and self.match is not None

    def copy(self, **changes) -> 'QueueEntry':
        return replace(self, **changes)

    def dedupe_key(self) -> str:
        return '||'.join(
            ' '.join(value.lower().split())
            for value in (self.artist, self.title, self.catalog_text)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'artist': self.artist,
            'title': self.title,
            'catalog_text': self.catalog_text,
            'created_at': self.created_at,
            'state': self.state.value,
            'match': self.match.to_dict() if self.match else None,
            'last_attempt_at': self.last_attempt_at,
            'next_attempt_at': self.next_attempt_at,
            'attempt_count': self.attempt_count,
            'exhausted_count': self.exhausted_count,
            'last_error_code': self.last_error_code,
            'last_error': self.last_error,
            'updated_at': self.updated_at,
            'priority': self.priority,
            'bumped_at': self.bumped_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'QueueEntry':
        return cls(
            id=str(data['id']),
            artist=data.get('artist') or '',
            title=data.get('title') or '',
            catalog_text=data.get('catalog_text') or '',
            created_at=float(data['created_at']),
            state=EntryState(data.get('state') or EntryState.PENDING.value),
            match=CatalogMatch.from_dict(data.get('match')),
            last_attempt_at=data.get('last_attempt_at'),
            next_attempt_at=data.get('next_attempt_at'),
            attempt_count=int(data.get('attempt_count') or 0),
            exhausted_count=int(data.get('exhausted_count') or 0),
            last_error_code=data.get('last_error_code'),
            last_error=data.get('last_error'),
            updated_at=data.get('updated_at'),
            priority=int(data.get('priority') or 0),
            bumped_at=data.get('bumped_at'),
        )


@dataclass(frozen=True)
class RankedQueueItem:
    """Externally visible shape of a playable queue entry"""
    entry_id: str
    artist: str
    title: str
    catalog_text: str
    match_kind: MatchKind
    confidence: float
    priority_score: float
    position: int
    created_at: float
    match_payload: Dict[str, Any] = field(default_factory=dict)
    user_priority: int = 0
    bumped_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.entry_id,
            'position': self.position,
            'artist': self.artist,
            'title': self.title,
            'catalog_text': self.catalog_text,
            'match_kind': self.match_kind.value,
            'confidence': self.confidence,
            'priority_score': self.priority_score,
            'user_priority': self.user_priority,
            'bumped_at': utc_timestamp(self.bumped_at) if self.bumped_at is not None else None,
            'added_at': utc_timestamp(self.created_at),
            'release_id': self.match_payload.get('release_id'),
            'release_title': self.match_payload.get('release_title'),
            'track_position': self.match_payload.get('track_position'),
            'youtube_video_id': self.match_payload.get('youtube_video_id'),
            'discogs_url': self.match_payload.get('discogs_url'),
            'thumb_url': self.match_payload.get('thumb_url'),
        }
