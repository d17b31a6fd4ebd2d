# utils/json_provider.py
from datetime import date, datetime, timezone
from enum import Enum
from flask.json.provider import DefaultJSONProvider

class CustomJSONProvider(DefaultJSONProvider):
    """Custom JSON provider: datetimes as ISO-8601 UTC, dates as YYYY-MM-DD, enums by value"""
    def default(self, obj):
        if isinstance(obj, datetime):
            if obj.tzinfo is None:
                obj = obj.replace(tzinfo=timezone.utc)
            return obj.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')
        if isinstance(obj, date):
            return obj.strftime('%Y-%m-%d')
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)
