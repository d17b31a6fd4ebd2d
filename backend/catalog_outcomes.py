"""
Catalog Outcomes

Closed set of results a catalog lookup can produce. The client produces
Resolved, Unresolved, RateLimited and TransportError; only the retry
governor produces RetriesExhausted.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

from queue_models import CatalogMatch, MatchKind


@dataclass(frozen=True)
class Resolved:
    """The catalog answered with at least one usable match"""
    matches: Tuple[CatalogMatch, ...] = field(default_factory=tuple)

    def best(self, kind: MatchKind) -> Optional[CatalogMatch]:
        """Highest-confidence match of the given kind"""
        candidates = [m for m in self.matches if m.kind == kind]
        if not candidates:
            return None
        return max(candidates, key=lambda m: m.confidence)


@dataclass(frozen=True)
class Unresolved:
    """The catalog answered, nothing matched"""
    reason: str = 'no match'


@dataclass(frozen=True)
class RateLimited:
    """The catalog refused the request (HTTP 429)"""
    retry_after: Optional[float] = None


@dataclass(frozen=True)
class RetriesExhausted:
    """Still rate limited after the configured number of attempts"""
    attempts: int = 0
    last_retry_after: Optional[float] = None


@dataclass(frozen=True)
class TransportError:
    """No usable answer: network failure, unexpected status or bad payload"""
    detail: str = ''
    status_code: Optional[int] = None


ResolutionOutcome = Union[Resolved, Unresolved, RateLimited, RetriesExhausted, TransportError]

# Terminal for one resolution sequence
TERMINAL_OUTCOMES = (Resolved, Unresolved, RetriesExhausted, TransportError)


def describe(outcome: ResolutionOutcome) -> str:
    """Short human-readable label used in log lines"""
    if isinstance(outcome, Resolved):
        kinds = ','.join(sorted({m.kind.value for m in outcome.matches}))
        return f"resolved[{kinds}]"
    if isinstance(outcome, Unresolved):
        return f"unresolved ({outcome.reason})"
    if isinstance(outcome, RateLimited):
        return f"rate limited (retry_after={outcome.retry_after})"
    if isinstance(outcome, RetriesExhausted):
        return f"retries exhausted after {outcome.attempts} attempts"
    if isinstance(outcome, TransportError):
        return f"transport error: {outcome.detail}"
    raise TypeError(f"Unknown outcome: {outcome!r}")
