"""
Configuration Module for the Dig Queue API
Handles logging setup, engine settings and Flask app initialization
"""

import os
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


def configure_logging():
    """
    Configure application logging with standard format

    Returns:
        Logger instance for the config module
    """
    level_name = os.environ.get('LOG_LEVEL', 'INFO').upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    return logging.getLogger(__name__)


def init_app_config(app):
    """
    Initialize Flask app configuration

    This sets up:
    - Custom JSON provider for timestamp formatting

    Args:
        app: Flask application instance
    """
    from utils.json_provider import CustomJSONProvider
    app.json = CustomJSONProvider(app)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Invalid value for {name}: {raw!r}, using {default}")
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Invalid value for {name}: {raw!r}, using {default}")
        return default


@dataclass(frozen=True)
class QueueSettings:
    """Tunable constants of the queue engine"""
    discogs_token: str = None
    discogs_user_agent: str = 'DigQueue/1.0'
    discogs_api_url: str = 'https://api.discogs.com'
    discogs_min_call_gap: float = 1.2
    discogs_timeout: float = 15.0
    max_attempts: int = 4
    backoff_base: float = 1.25
    backoff_max: float = 30.0
    backoff_jitter: float = 0.5
    retry_cooldown: float = 300.0
    retry_cooldown_max: float = 3600.0
    unresolved_recheck: float = 86400.0
    track_threshold: float = 0.75
    track_priority_bonus: float = 1.0
    max_concurrency: int = 4
    batch_size: int = 24
    request_timeout: float = 20.0
    store: str = 'memory'

    @classmethod
    def from_env(cls) -> 'QueueSettings':
        """Read settings from the environment (call load_dotenv() first)"""
        defaults = cls()
        return cls(
            discogs_token=os.environ.get('DISCOGS_TOKEN') or None,
            discogs_user_agent=os.environ.get('DISCOGS_USER_AGENT', defaults.discogs_user_agent),
            discogs_api_url=os.environ.get('DISCOGS_API_URL', defaults.discogs_api_url),
            discogs_min_call_gap=_env_float('DISCOGS_MIN_CALL_GAP', defaults.discogs_min_call_gap),
            discogs_timeout=_env_float('DISCOGS_TIMEOUT', defaults.discogs_timeout),
            max_attempts=max(1, _env_int('QUEUE_MAX_ATTEMPTS', defaults.max_attempts)),
            backoff_base=_env_float('QUEUE_BACKOFF_BASE', defaults.backoff_base),
            backoff_max=_env_float('QUEUE_BACKOFF_MAX', defaults.backoff_max),
            backoff_jitter=min(1.0, max(0.0, _env_float('QUEUE_BACKOFF_JITTER', defaults.backoff_jitter))),
            retry_cooldown=_env_float('QUEUE_RETRY_COOLDOWN', defaults.retry_cooldown),
            retry_cooldown_max=_env_float('QUEUE_RETRY_COOLDOWN_MAX', defaults.retry_cooldown_max),
            unresolved_recheck=_env_float('QUEUE_UNRESOLVED_RECHECK', defaults.unresolved_recheck),
            track_threshold=_env_float('QUEUE_TRACK_THRESHOLD', defaults.track_threshold),
            track_priority_bonus=_env_float('QUEUE_TRACK_PRIORITY_BONUS', defaults.track_priority_bonus),
            max_concurrency=max(1, _env_int('QUEUE_MAX_CONCURRENCY', defaults.max_concurrency)),
            batch_size=max(1, _env_int('QUEUE_BATCH_SIZE', defaults.batch_size)),
            request_timeout=_env_float('QUEUE_REQUEST_TIMEOUT', defaults.request_timeout),
            store=os.environ.get('QUEUE_STORE', defaults.store).lower(),
        )
