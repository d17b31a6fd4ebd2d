"""
Tests for settings and input helpers.
"""
import pytest

from config import QueueSettings
from utils.helpers import clamp_limit, safe_strip


class TestQueueSettings:
    """Environment-driven settings."""

    def test_defaults(self, monkeypatch):
        for name in ('DISCOGS_TOKEN', 'QUEUE_MAX_ATTEMPTS', 'QUEUE_STORE', 'QUEUE_BACKOFF_JITTER'):
            monkeypatch.delenv(name, raising=False)

        settings = QueueSettings.from_env()

        assert settings.discogs_token is None
        assert settings.max_attempts == 4
        assert settings.discogs_min_call_gap == 1.2
        assert settings.track_threshold == 0.75
        assert settings.store == 'memory'

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv('DISCOGS_TOKEN', 'abc')
        monkeypatch.setenv('QUEUE_MAX_ATTEMPTS', '6')
        monkeypatch.setenv('QUEUE_RETRY_COOLDOWN', '60')
        monkeypatch.setenv('QUEUE_STORE', 'Postgres')

        settings = QueueSettings.from_env()

        assert settings.discogs_token == 'abc'
        assert settings.max_attempts == 6
        assert settings.retry_cooldown == 60.0
        assert settings.store == 'postgres'

    def test_bad_values_fall_back(self, monkeypatch):
        monkeypatch.setenv('QUEUE_MAX_ATTEMPTS', 'lots')
        monkeypatch.setenv('QUEUE_BACKOFF_BASE', 'soon')

        settings = QueueSettings.from_env()

        assert settings.max_attempts == 4
        assert settings.backoff_base == 1.25

    def test_jitter_clamped(self, monkeypatch):
        monkeypatch.setenv('QUEUE_BACKOFF_JITTER', '3')
        assert QueueSettings.from_env().backoff_jitter == 1.0


class TestHelpers:
    """Input helpers."""

    @pytest.mark.parametrize("raw, expected", [
        (None, 24),
        ('', 24),
        ('  ', 24),
        (0, 24),
        ('0', 24),
        (-1, 24),
        ('nan', 24),
        ('inf', 100),
        (True, 24),
        (1, 1),
        ('7', 7),
        ('7.9', 7),
        (100, 100),
        (101, 100),
    ])
    def test_clamp_limit(self, raw, expected):
        assert clamp_limit(raw) == expected

    def test_safe_strip(self):
        assert safe_strip('  x ') == 'x'
        assert safe_strip('   ') is None
        assert safe_strip(None) is None
        assert safe_strip(5) == 5
