import os
from datetime import datetime

import pytz

APP_TZ = pytz.timezone(os.getenv("APP_TIMEZONE", "UTC"))


def now_local() -> datetime:
    """Get current datetime in the application timezone."""
    return datetime.now(APP_TZ)


def ensure_app_tz(value: datetime) -> datetime:
    """Ensure a datetime is timezone-aware in the application timezone."""
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return APP_TZ.localize(value)
    return value.astimezone(APP_TZ)
