"""
Queue Ranker

Merges track-level matches and full-release fallbacks into one ordered
"up next" sequence. Pure computation over a snapshot of entries.
"""

from typing import Dict, Iterable, List, Tuple

from queue_models import MatchKind, QueueEntry, RankedQueueItem

KIND_ORDER = {
    MatchKind.TRACK: 0,
    MatchKind.RELEASE: 1,
}

PLAY_MODES = ('track', 'release', 'hybrid')


class QueueRanker:
    """
    Orders playable entries

    Priority score is the match confidence plus `track_bonus` for track-level
    matches. With the default bonus of 1.0 (confidence is bounded to [0, 1])
    every track match sorts ahead of every release fallback; a smaller bonus
    lets a much more confident fallback overtake a weak track match. Ties
    go to track matches, then to the higher user priority and the more
    recent "play next" bump, then to the earlier entry.
    """

    def __init__(self, track_bonus: float = 1.0):
        self.track_bonus = max(0.0, float(track_bonus))

    def priority_score(self, entry: QueueEntry) -> float:
        bonus = self.track_bonus if entry.match.kind == MatchKind.TRACK else 0.0
        return round(entry.match.confidence + bonus, 4)

    def sort_key(self, entry: QueueEntry) -> Tuple:
        return (
            -self.priority_score(entry),
            KIND_ORDER[entry.match.kind],
            -entry.match.confidence,
            -entry.priority,
            -(entry.bumped_at or 0.0),
            entry.created_at,
            entry.id,
        )

    def dedupe(self, entries: Iterable[QueueEntry]) -> List[QueueEntry]:
        """Keep one playable entry per ID, the most confident one"""
        best: Dict[str, QueueEntry] = {}
        for entry in entries:
            if not entry.is_playable:
                continue
            current = best.get(entry.id)
            if current is None or self._beats(entry, current):
                best[entry.id] = entry
        return list(best.values())

    def _beats(self, candidate: QueueEntry, current: QueueEntry) -> bool:
        candidate_key = (candidate.match.confidence, -KIND_ORDER[candidate.match.kind],
                         candidate.updated_at or 0.0)
        current_key = (current.match.confidence, -KIND_ORDER[current.match.kind],
                       current.updated_at or 0.0)
        return candidate_key > current_key

    def rank(self, entries: Iterable[QueueEntry]) -> List[RankedQueueItem]:
        """
        Produce the ranked, de-duplicated list of playable entries

        Args:
            entries: Snapshot of queue entries in any state

        Returns:
            RankedQueueItem list with 1-based positions
        """
        playable = sorted(self.dedupe(entries), key=self.sort_key)
        return [
            RankedQueueItem(
                entry_id=entry.id,
                artist=entry.artist,
                title=entry.title,
                catalog_text=entry.catalog_text,
                match_kind=entry.match.kind,
                confidence=entry.match.confidence,
                priority_score=self.priority_score(entry),
                position=position,
                created_at=entry.created_at,
                match_payload=dict(entry.match.payload),
                user_priority=entry.priority,
                bumped_at=entry.bumped_at,
            )
            for position, entry in enumerate(playable, 1)
        ]


def filter_by_mode(items: List[RankedQueueItem], mode: str) -> List[RankedQueueItem]:
    """Restrict a ranking to track matches, release fallbacks, or both"""
    if mode == 'track':
        return [item for item in items if item.match_kind == MatchKind.TRACK]
    if mode == 'release':
        return [item for item in items if item.match_kind == MatchKind.RELEASE]
    return list(items)
