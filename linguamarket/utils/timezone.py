import zoneinfo

from datetime import datetime
from datetime import timezone as datetime_timezone

from linguamarket.core.conf import settings


class TimeZone:
    def __init__(self) -> None:
        self.tz_info = zoneinfo.ZoneInfo(settings.DATETIME_TIMEZONE)

    def now(self) -> datetime:
        """Current time in the configured timezone"""
        return datetime.now(self.tz_info)

    def from_datetime(self, t: datetime) -> datetime:
        """Convert a datetime to the configured timezone"""
        return t.astimezone(self.tz_info)

    def to_str(self, t: datetime, format_str: str | None = None) -> str:
        """Format a datetime as a string"""
        return self.from_datetime(t).strftime(format_str or settings.DATETIME_FORMAT)

    @staticmethod
    def to_utc(t: datetime) -> datetime:
        """Convert a datetime to UTC, treating naive values as UTC"""
        if t.tzinfo is None:
            return t.replace(tzinfo=datetime_timezone.utc)
        return t.astimezone(datetime_timezone.utc)


timezone: TimeZone = TimeZone()
