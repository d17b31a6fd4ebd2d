"""
Tests for the Discogs client, with HTTP stubbed by responses.
"""
import pytest
import requests
import responses

from catalog_outcomes import RateLimited, Resolved, TransportError, Unresolved
from discogs_client import DISCOGS_API, DiscogsClient
from queue_models import CatalogQuery, MatchKind

RELEASE_URL = f"{DISCOGS_API}/releases/1049470"
SEARCH_URL = f"{DISCOGS_API}/database/search"

RELEASE_PAYLOAD = {
    'id': 1049470,
    'title': 'A Number Of Names',
    'year': 1981,
    'uri': 'https://www.discogs.com/release/1049470-A-Number-Of-Names-Shari-Vari',
    'thumb': 'https://i.discogs.com/thumb.jpg',
    'artists': [{'name': 'A Number Of Names'}],
    'tracklist': [
        {'type_': 'heading', 'title': 'Side A', 'position': ''},
        {'type_': 'track', 'position': 'A', 'title': 'Shari Vari', 'duration': '6:47'},
        {'type_': 'track', 'position': 'B', 'title': 'Shari Vari (Instrumental)', 'duration': '6:20'},
    ],
    'videos': [
        {'uri': 'https://www.youtube.com/watch?v=abcdefghijk', 'title': 'A Number Of Names - Shari Vari'},
    ],
}


@pytest.fixture
def client():
    return DiscogsClient(token='secret-token', timeout=5)


@pytest.fixture
def release_query():
    return CatalogQuery(artist='A Number Of Names', title='Shari Vari', release_id=1049470)


class TestReleaseLookup:
    """Lookups by release id."""

    @responses.activate
    def test_track_and_release_matches(self, client, release_query):
        responses.add(responses.GET, RELEASE_URL, json=RELEASE_PAYLOAD, status=200)

        outcome = client.lookup(release_query)

        assert isinstance(outcome, Resolved)
        track = outcome.best(MatchKind.TRACK)
        release = outcome.best(MatchKind.RELEASE)
        assert track.entity_id == '1049470:A'
        assert track.confidence == 1.0
        assert track.payload['youtube_video_id'] == 'abcdefghijk'
        assert track.payload['track_title'] == 'Shari Vari'
        assert release.entity_id == '1049470'
        assert release.confidence == 1.0
        assert release.payload['discogs_url'] == RELEASE_PAYLOAD['uri']
        assert len(responses.calls) == 1

    @responses.activate
    def test_sends_token_and_user_agent(self, client, release_query):
        responses.add(responses.GET, RELEASE_URL, json=RELEASE_PAYLOAD, status=200)

        client.lookup(release_query)

        headers = responses.calls[0].request.headers
        assert headers['Authorization'] == 'Discogs token=secret-token'
        assert headers['User-Agent'] == 'DigQueue/1.0'

    @responses.activate
    def test_title_not_on_release_gives_release_only(self, client):
        responses.add(responses.GET, RELEASE_URL, json=RELEASE_PAYLOAD, status=200)
        query = CatalogQuery(artist='A Number Of Names', title='Blue Monday', release_id=1049470)

        outcome = client.lookup(query)

        assert isinstance(outcome, Resolved)
        assert outcome.best(MatchKind.TRACK) is None
        assert outcome.best(MatchKind.RELEASE) is not None

    @responses.activate
    def test_not_found_is_unresolved(self, client, release_query):
        responses.add(responses.GET, RELEASE_URL, json={'message': 'Release not found.'}, status=404)

        assert isinstance(client.lookup(release_query), Unresolved)


class TestTrackConfidence:
    """Track confidence is title similarity scaled by the artist match."""

    @responses.activate
    def test_title_hit_on_wrong_artist_stays_below_threshold(self, client):
        responses.add(responses.GET, RELEASE_URL, json=RELEASE_PAYLOAD, status=200)

        outcome = client.lookup(CatalogQuery(artist='Cybotron', title='Shari Vari', release_id=1049470))

        track = outcome.best(MatchKind.TRACK)
        release = outcome.best(MatchKind.RELEASE)
        assert release.confidence < 0.5
        assert track.confidence == pytest.approx(0.5 + 0.5 * release.confidence, abs=1e-3)
        assert track.confidence < 0.75


class TestSearch:
    """Lookups through the database search endpoint."""

    @responses.activate
    def test_best_result_wins(self, client):
        responses.add(responses.GET, SEARCH_URL, json={'results': [
            {'id': 1, 'type': 'release', 'title': 'New Order - Blue Monday', 'uri': '/release/1'},
            {'id': 1049470, 'type': 'release', 'title': 'A Number Of Names - Shari Vari',
             'uri': '/release/1049470', 'catno': 'CAP 001'},
            {'id': 7, 'type': 'artist', 'title': 'A Number Of Names'},
        ]}, status=200)
        query = CatalogQuery(artist='A Number Of Names', title='Shari Vari')

        outcome = client.lookup(query)

        assert isinstance(outcome, Resolved)
        best = outcome.best(MatchKind.RELEASE)
        assert best.release_id == 1049470
        assert best.payload['discogs_url'] == 'https://www.discogs.com/release/1049470'
        url = responses.calls[0].request.url
        assert 'type=release' in url
        assert 'track=Shari+Vari' in url

    @responses.activate
    def test_empty_results_are_unresolved(self, client):
        responses.add(responses.GET, SEARCH_URL, json={'results': []}, status=200)

        assert isinstance(client.lookup(CatalogQuery(artist='Nobody')), Unresolved)


class TestFailures:
    """HTTP failures map to typed outcomes."""

    @responses.activate
    def test_rate_limited_with_retry_after(self, client, release_query):
        responses.add(responses.GET, RELEASE_URL, status=429, headers={'Retry-After': '7'})

        outcome = client.lookup(release_query)

        assert outcome == RateLimited(retry_after=7.0)
        assert client.stats['rate_limit_hits'] == 1

    @responses.activate
    def test_rate_limited_without_hint(self, client, release_query):
        responses.add(responses.GET, RELEASE_URL, status=429)

        assert client.lookup(release_query) == RateLimited(retry_after=None)

    @responses.activate
    def test_server_error_is_transport_error(self, client, release_query):
        responses.add(responses.GET, RELEASE_URL, body='upstream exploded', status=502)

        outcome = client.lookup(release_query)

        assert isinstance(outcome, TransportError)
        assert outcome.status_code == 502
        assert 'upstream exploded' in outcome.detail

    @responses.activate
    def test_connection_error_is_transport_error(self, client, release_query):
        responses.add(responses.GET, RELEASE_URL, body=requests.exceptions.ConnectionError('connection refused'))

        outcome = client.lookup(release_query)

        assert isinstance(outcome, TransportError)
        assert 'connection refused' in outcome.detail

    @responses.activate
    def test_timeout_is_transport_error(self, client, release_query):
        responses.add(responses.GET, RELEASE_URL, body=requests.exceptions.ReadTimeout())

        outcome = client.lookup(release_query)

        assert isinstance(outcome, TransportError)
        assert 'timeout' in outcome.detail

    @responses.activate
    def test_malformed_json_is_transport_error(self, client, release_query):
        responses.add(responses.GET, RELEASE_URL, body='<html>not json</html>', status=200)

        outcome = client.lookup(release_query)

        assert isinstance(outcome, TransportError)
        assert outcome.detail == 'malformed JSON response'


class TestMalformedPayloads:
    """Parseable JSON with the wrong structure never escapes lookup()."""

    @pytest.mark.parametrize('payload', [
        {'id': 'not-a-number', 'title': 'A Number Of Names'},
        {'id': 1049470, 'artists': ['A Number Of Names']},
        {'id': 1049470, 'tracklist': 5},
        {'id': 1049470, 'tracklist': [{'type_': 'track', 'position': 'A', 'title': 7}]},
        {'id': 1049470, 'tracklist': [{'position': 'A', 'title': 'Shari Vari', 'artists': [None]}]},
        {'id': 1049470, 'videos': 3},
    ])
    @responses.activate
    def test_bad_release_shapes_are_transport_errors(self, client, release_query, payload):
        responses.add(responses.GET, RELEASE_URL, json=payload, status=200)

        outcome = client.lookup(release_query)

        assert isinstance(outcome, TransportError)
        assert outcome.detail == 'malformed release payload'
        assert outcome.status_code == 200
        assert client.stats['transport_errors'] == 1

    @responses.activate
    def test_null_tracklist_rows_are_skipped(self, client, release_query):
        responses.add(responses.GET, RELEASE_URL, json={
            'id': 1049470,
            'artists': [{'name': 'A Number Of Names'}],
            'tracklist': [None, {'type_': 'track', 'position': 'A', 'title': 'Shari Vari'}],
            'videos': [None, 'https://www.youtube.com/watch?v=abcdefghijk'],
        }, status=200)

        outcome = client.lookup(release_query)

        assert isinstance(outcome, Resolved)
        assert outcome.best(MatchKind.TRACK).entity_id == '1049470:A'
        assert outcome.best(MatchKind.RELEASE).payload['youtube_video_id'] is None

    @pytest.mark.parametrize('payload', [
        {'results': [None]},
        {'results': ['A Number Of Names - Shari Vari']},
        {'results': 42},
        {'results': [{'id': 1049470, 'type': 'release', 'title': ['A Number Of Names']}]},
    ])
    @responses.activate
    def test_bad_search_shapes_are_transport_errors(self, client, payload):
        responses.add(responses.GET, SEARCH_URL, json=payload, status=200)

        outcome = client.lookup(CatalogQuery(artist='A Number Of Names', title='Shari Vari'))

        assert isinstance(outcome, TransportError)
        assert outcome.detail == 'malformed search payload'
