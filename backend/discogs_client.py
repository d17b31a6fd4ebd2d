"""
Discogs API Client

Handles the low-level Discogs API concerns for queue enrichment:
- Authenticated requests (personal access token)
- Translating HTTP answers into lookup outcomes
- Scoring releases and tracklists against the queued entry

Rate limiting and retries are not handled here: the retry governor owns the
shared limiter and decides when to call again.
"""

import logging
import time
from typing import List, Optional

import requests

from catalog_matching import (
    artist_similarity,
    best_track_in_tracklist,
    best_video_for_title,
    calculate_similarity,
    first_video_id,
    split_release_title,
)
from catalog_outcomes import RateLimited, Resolved, TransportError, Unresolved
from queue_models import CatalogMatch, CatalogQuery, MatchKind

logger = logging.getLogger(__name__)

DISCOGS_API = 'https://api.discogs.com'
DEFAULT_USER_AGENT = 'DigQueue/1.0'

SEARCH_PAGE_SIZE = 10

# Raised while walking a payload whose fields have unexpected types
MALFORMED_PAYLOAD_ERRORS = (TypeError, ValueError, AttributeError, KeyError)


class DiscogsClient:
    """
    Discogs catalog client returning typed lookup outcomes
    """

    def __init__(self, token: str = None, user_agent: str = DEFAULT_USER_AGENT,
                 base_url: str = DISCOGS_API, timeout: float = 15,
                 session: requests.Session = None, logger=None):
        """
        Initialize Discogs client

        Args:
            token: Discogs personal access token (unauthenticated when None)
            user_agent: User-Agent header; Discogs rejects requests without one
            base_url: API root
            timeout: Per-request timeout in seconds
            session: Optional requests session (a new one is created otherwise)
            logger: Optional logger instance (uses module logger if not provided)
        """
        self.logger = logger or logging.getLogger(__name__)
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': user_agent,
            'Accept': 'application/json',
        })
        if token:
            self.session.headers['Authorization'] = f"Discogs token={token}"

        self.stats = {
            'api_calls': 0,
            'rate_limit_hits': 0,
            'transport_errors': 0,
        }

    # ========================================================================
    # LOOKUP
    # ========================================================================

    def lookup(self, query: CatalogQuery):
        """
        Look up a queue entry in the catalog with exactly one API call

        Args:
            query: Normalized lookup fields (must not be empty)

        Returns:
            Resolved, Unresolved, RateLimited or TransportError
        """
        if query.release_id:
            return self._lookup_release(query)
        return self._search_releases(query)

    def _lookup_release(self, query: CatalogQuery):
        response = self._get(f"/releases/{query.release_id}")
        if not isinstance(response, requests.Response):
            return response
        if response.status_code == 404:
            return Unresolved(reason=f"release {query.release_id} not found")

        release = self._parse_json(response)
        if isinstance(release, TransportError):
            return release
        if not isinstance(release, dict) or 'id' not in release:
            return TransportError(detail='release payload missing id', status_code=response.status_code)

        try:
            matches = self._matches_from_release(query, release)
        except MALFORMED_PAYLOAD_ERRORS as e:
            return self._malformed('release', e, response.status_code)
        if not matches:
            return Unresolved(reason='release has no matching track')
        return Resolved(matches=tuple(matches))

    def _search_releases(self, query: CatalogQuery):
        params = {'type': 'release', 'per_page': SEARCH_PAGE_SIZE}
        if query.artist:
            params['artist'] = query.artist
        if query.title:
            params['track'] = query.title
        if query.catalog_text:
            params['q'] = query.catalog_text

        response = self._get('/database/search', params=params)
        if not isinstance(response, requests.Response):
            return response
        if response.status_code == 404:
            return Unresolved(reason='search endpoint returned 404')

        data = self._parse_json(response)
        if isinstance(data, TransportError):
            return data
        if not isinstance(data, dict):
            return TransportError(detail='search payload is not an object', status_code=response.status_code)

        try:
            best = self._best_search_result(query, data.get('results') or [])
        except MALFORMED_PAYLOAD_ERRORS as e:
            return self._malformed('search', e, response.status_code)
        if best is None:
            return Unresolved(reason='no search results')
        return Resolved(matches=(best,))

    # ========================================================================
    # HTTP
    # ========================================================================

    def _get(self, path: str, params: dict = None):
        """
        Perform one GET against the API

        Returns:
            The response for 2xx / 404, otherwise a RateLimited or
            TransportError outcome
        """
        url = f"{self.base_url}{path}"
        self.stats['api_calls'] += 1
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout:
            self.stats['transport_errors'] += 1
            self.logger.error(f"Discogs request timed out: {path}")
            return TransportError(detail=f"timeout after {self.timeout}s")
        except requests.exceptions.RequestException as e:
            self.stats['transport_errors'] += 1
            self.logger.error(f"Discogs request failed: {path}: {e}")
            return TransportError(detail=str(e))

        if response.status_code == 429:
            self.stats['rate_limit_hits'] += 1
            retry_after = self._retry_after(response)
            self.logger.warning(f"Discogs rate limit hit on {path} (retry_after={retry_after})")
            return RateLimited(retry_after=retry_after)

        if response.ok or response.status_code == 404:
            return response

        self.stats['transport_errors'] += 1
        body = (response.text or '')[:200]
        self.logger.error(f"Discogs error {response.status_code} on {path}: {body}")
        return TransportError(detail=f"Discogs error {response.status_code}: {body}",
                              status_code=response.status_code)

    def _retry_after(self, response: requests.Response) -> Optional[float]:
        """
        Extract the server's requested wait from a 429 response

        Returns:
            Seconds to wait, or None when the response carries no hint
        """
        retry_after = response.headers.get('Retry-After')
        if retry_after:
            try:
                return max(0.0, float(retry_after))
            except ValueError:
                self.logger.warning(f"Invalid Retry-After header: {retry_after}")

        reset = response.headers.get('X-RateLimit-Reset')
        if reset:
            try:
                return max(0.0, float(reset) - time.time())
            except ValueError:
                self.logger.warning(f"Invalid X-RateLimit-Reset header: {reset}")

        return None

    def _parse_json(self, response: requests.Response):
        try:
            return response.json()
        except ValueError as e:
            self.stats['transport_errors'] += 1
            self.logger.error(f"Malformed JSON from Discogs: {e}")
            return TransportError(detail='malformed JSON response', status_code=response.status_code)

    def _malformed(self, kind: str, error: Exception, status_code: int) -> TransportError:
        """JSON that parsed but does not have the shape Discogs documents"""
        self.stats['transport_errors'] += 1
        self.logger.error(f"Malformed {kind} payload from Discogs: {type(error).__name__}: {error}")
        return TransportError(detail=f"malformed {kind} payload", status_code=status_code)

    # ========================================================================
    # SCORING
    # ========================================================================

    def _matches_from_release(self, query: CatalogQuery, release: dict) -> List[CatalogMatch]:
        """Build the track and release matches offered by one release"""
        release_id = int(release['id'])
        artist_names = [a.get('name', '') for a in release.get('artists') or []]
        release_artist = release.get('artists_sort') or (artist_names[0] if artist_names else 'Unknown Artist')
        videos = release.get('videos') or []

        base_payload = {
            'release_id': release_id,
            'release_title': release.get('title'),
            'release_artist': release_artist,
            'year': release.get('year'),
            'discogs_url': release.get('uri') or f"https://www.discogs.com/release/{release_id}",
            'thumb_url': release.get('thumb') or None,
        }

        artist_score = artist_similarity(query.artist, artist_names + [release_artist])
        matches = []

        if query.title:
            track, track_score = best_track_in_tracklist(query.title, release.get('tracklist') or [])
            if track is not None:
                track_artists = [a.get('name', '') for a in track.get('artists') or []]
                if track_artists and query.artist:
                    artist_score = max(artist_score, artist_similarity(query.artist, track_artists))
                video_id, _ = best_video_for_title(track.get('title', ''), videos)
                position = track.get('position') or ''
                matches.append(CatalogMatch(
                    entity_id=f"{release_id}:{position}",
                    kind=MatchKind.TRACK,
                    confidence=(track_score / 100) * (0.5 + 0.5 * artist_score),
                    release_id=release_id,
                    payload={
                        **base_payload,
                        'track_title': track.get('title'),
                        'track_position': position,
                        'duration': track.get('duration') or None,
                        'youtube_video_id': video_id,
                    },
                ))

        matches.append(CatalogMatch(
            entity_id=str(release_id),
            kind=MatchKind.RELEASE,
            confidence=artist_score,
            release_id=release_id,
            payload={**base_payload, 'youtube_video_id': first_video_id(videos)},
        ))
        return matches

    def _best_search_result(self, query: CatalogQuery, results: List[dict]) -> Optional[CatalogMatch]:
        """Score search results and keep the best release"""
        best = None
        for result in results:
            if result.get('type') not in (None, 'release', 'master'):
                continue
            release_id = result.get('id')
            if not isinstance(release_id, int) or release_id <= 0:
                continue

            artist, title = split_release_title(result.get('title', ''))
            score = artist_similarity(query.artist, [artist])
            if query.catalog_text:
                catno = result.get('catno') or ''
                text_score = max(calculate_similarity(query.catalog_text, title),
                                 calculate_similarity(query.catalog_text, catno)) / 100
                score = (score + text_score) / 2

            candidate = CatalogMatch(
                entity_id=str(release_id),
                kind=MatchKind.RELEASE,
                confidence=score,
                release_id=release_id,
                payload={
                    'release_id': release_id,
                    'release_title': title,
                    'release_artist': artist,
                    'year': result.get('year'),
                    'catno': result.get('catno'),
                    'discogs_url': f"https://www.discogs.com{result['uri']}" if result.get('uri')
                    else f"https://www.discogs.com/release/{release_id}",
                    'thumb_url': result.get('thumb') or result.get('cover_image') or None,
                    'youtube_video_id': None,
                },
            )
            # Earlier results win ties: Discogs orders by relevance
            if best is None or candidate.confidence > best.confidence:
                best = candidate
        return best
