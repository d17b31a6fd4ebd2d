"""
Catalog Matching Utilities

Text normalization and fuzzy scoring used to compare queue entries with
Discogs releases and tracklists.

Functions in this module are stateless and can be used independently.
"""

import re
import logging
from typing import List, Optional, Tuple
from urllib.parse import urlparse, parse_qs

from rapidfuzz import fuzz

logger = logging.getLogger(__name__)

# Below this similarity (0-100) a tracklist title is not considered the same track
MIN_TRACK_SIMILARITY = 50

# Discogs suffixes duplicate artist names with a number: "Prince (2)"
DISCOGS_NAME_INDEX = re.compile(r'\s*\(\d+\)$')

RELEASE_URL_PATTERN = re.compile(r'/releases?/(\d+)', re.IGNORECASE)

YOUTUBE_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]{11}$')


def normalize_for_comparison(text: str) -> str:
    """
    Normalize text for fuzzy comparison
    Removes variations that shouldn't affect matching
    """
    if not text:
        return ""

    text = text.lower()

    # Apostrophes become spaces so "don't" and "don t" compare equal
    for quote in ("'", "’", "‘", "`"):
        text = text.replace(quote, " ")
    for quote in ('"', "“", "”"):
        text = text.replace(quote, "")

    text = DISCOGS_NAME_INDEX.sub('', text)

    # Remix/edit annotations common on dance records
    text = re.sub(r'\s*\((original|extended|radio|club)\s+(mix|version|edit)\)', '', text)
    text = re.sub(r'\s*-\s*remaster(ed)?(\s+\d{4})?.*$', '', text)
    text = re.sub(r'\s*\(remaster(ed)?(\s+\d{4})?\)', '', text)
    text = re.sub(r'\s*\(feat\.?\s+[^)]+\)', '', text)
    text = re.sub(r'\s*\(featuring\s+[^)]+\)', '', text)
    text = re.sub(r'\s*\(ft\.?\s+[^)]+\)', '', text)

    text = text.replace(' & ', ' and ')

    for dash in ('–', '—', '‐', '−'):
        text = text.replace(dash, '-')
    text = re.sub(r'\s*/\s*', ' ', text)
    text = re.sub(r'\s*-\s*', '-', text)

    return ' '.join(text.split())


def calculate_similarity(text1: str, text2: str) -> float:
    """
    Calculate similarity between two strings using fuzzy matching.

    Falls back to comparing without parenthetical content, which handles
    "Shari Vari" vs "Shari Vari (Vocal)".

    Returns a score from 0-100
    """
    if not text1 or not text2:
        return 0

    norm1 = normalize_for_comparison(text1)
    norm2 = normalize_for_comparison(text2)

    score = fuzz.token_sort_ratio(norm1, norm2)

    if score < 80:
        stripped1 = re.sub(r'\s*\([^)]*\)\s*', ' ', norm1).strip()
        stripped2 = re.sub(r'\s*\([^)]*\)\s*', ' ', norm2).strip()

        if stripped1 != norm1 or stripped2 != norm2:
            stripped_score = fuzz.token_sort_ratio(stripped1, stripped2)
            if stripped_score > score:
                logger.debug(f"      Parenthetical fallback: {score}% -> {stripped_score}%")
                score = stripped_score

    return score


def split_release_title(raw_title: str) -> Tuple[str, str]:
    """
    Split a Discogs search title ("Artist - Release") into its parts

    Returns:
        (artist, title); artist is "Unknown Artist" when there is no separator
    """
    raw_title = (raw_title or '').strip()
    parts = raw_title.split(' - ')
    if len(parts) > 1:
        return parts[0].strip(), ' - '.join(parts[1:]).strip()
    return 'Unknown Artist', raw_title


def parse_release_id(text: Optional[str]) -> Optional[int]:
    """
    Extract a Discogs release ID from free catalog text

    Accepts a bare number ("12345") or a release URL
    ("https://www.discogs.com/release/12345-Some-Title").
    """
    if not text:
        return None
    trimmed = text.strip()
    if trimmed.isdigit():
        value = int(trimmed)
        return value if value > 0 else None
    match = RELEASE_URL_PATTERN.search(trimmed)
    return int(match.group(1)) if match else None


def extract_youtube_video_id(url: str) -> Optional[str]:
    """Extract the video ID from a youtube.com / youtu.be URL"""
    if not url or not url.strip():
        return None
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None

    host = (parsed.hostname or '').lower()
    candidate = None
    if 'youtu.be' in host:
        candidate = parsed.path.lstrip('/').split('/')[0]
    elif 'youtube.com' in host:
        candidate = (parse_qs(parsed.query).get('v') or [None])[0]
        if not candidate:
            parts = [p for p in parsed.path.split('/') if p]
            for marker in ('embed', 'shorts'):
                if marker in parts and parts.index(marker) + 1 < len(parts):
                    candidate = parts[parts.index(marker) + 1]
                    break

    if candidate and YOUTUBE_ID_PATTERN.match(candidate):
        return candidate
    return None


def best_track_in_tracklist(title: str, tracklist: List[dict]) -> Tuple[Optional[dict], float]:
    """
    Find the tracklist row that best matches a track title

    Headings and index rows (type_ != 'track') are skipped.

    Returns:
        (track row, similarity 0-100); (None, 0) when nothing clears
        MIN_TRACK_SIMILARITY
    """
    best_row = None
    best_score = 0
    for row in tracklist or []:
        if not isinstance(row, dict):
            continue
        if row.get('type_', 'track') != 'track':
            continue
        score = calculate_similarity(title, row.get('title', ''))
        if score > best_score:
            best_row, best_score = row, score

    if best_score < MIN_TRACK_SIMILARITY:
        return None, 0
    return best_row, best_score


def best_video_for_title(title: str, videos: List[dict]) -> Tuple[Optional[str], float]:
    """
    Pick the release video whose title best matches a track title

    Returns:
        (youtube video ID, similarity 0-100)
    """
    best_id = None
    best_score = 0
    for video in videos or []:
        if not isinstance(video, dict):
            continue
        video_id = extract_youtube_video_id(video.get('uri', ''))
        if not video_id:
            continue
        score = fuzz.partial_ratio(
            normalize_for_comparison(title),
            normalize_for_comparison(video.get('title', '')),
        )
        if score > best_score:
            best_id, best_score = video_id, score
    return best_id, best_score


def first_video_id(videos: List[dict]) -> Optional[str]:
    """First playable YouTube video on a release"""
    for video in videos or []:
        if not isinstance(video, dict):
            continue
        video_id = extract_youtube_video_id(video.get('uri', ''))
        if video_id:
            return video_id
    return None


def artist_similarity(expected: str, candidates: List[str]) -> float:
    """
    Best similarity (0-1) between the expected artist and any candidate

    An entry without an artist is treated as a full match.
    """
    if not expected:
        return 1.0
    scores = [calculate_similarity(expected, name) for name in candidates if name]
    return max(scores) / 100 if scores else 0.0
