# utils/helpers.py
import math

DEFAULT_LIMIT = 24
MAX_LIMIT = 100


def safe_strip(value):
    """Safely strip a string value, handling None"""
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    return value


def clamp_limit(raw, default=DEFAULT_LIMIT, maximum=MAX_LIMIT):
    """
    Turn a user-supplied page size into a usable one

    Missing, non-numeric and non-positive values fall back to the default;
    large values are capped at the maximum. Never raises.
    """
    if raw is None or isinstance(raw, bool):
        return default
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw:
            return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(value):
        return default if value != math.inf else maximum
    value = math.floor(value)
    if value < 1:
        return default
    return min(maximum, int(value))
