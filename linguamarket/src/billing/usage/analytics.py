"""
Usage Analytics

Read-only views over monthly usage: percentages of each cap, the alert
threshold, days until the monthly reset and a per-month history.
"""

import math
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from linguamarket.app.marketplace.crud.crud_session import session_attendance_dao
from linguamarket.src.billing.shared.config import USAGE_ALERT_THRESHOLD_PERCENT, Entitlement, SessionFormat
from linguamarket.src.billing.shared.exceptions import ValidationError
from linguamarket.src.billing.subscriptions.tiers import is_unlimited
from linguamarket.utils.timezone import timezone

from .tracker import UsageTotals, month_key, usage_quota_tracker, usage_payload

MAX_HISTORY_MONTHS = 24


def _percent(cap: Optional[int], used: int) -> Optional[float]:
    if is_unlimited(cap):
        return None
    if cap <= 0:
        return 100.0
    return round(min(used / cap * 100, 100.0), 1)


def usage_percentages(entitlement: Entitlement, used: UsageTotals) -> Dict[str, Optional[float]]:
    """Share of each cap consumed; unlimited dimensions report None."""
    return {
        'group': _percent(entitlement.group_sessions, used.group),
        'oneToOne': _percent(entitlement.one_to_one_sessions, used.one_to_one),
        'minutes': _percent(entitlement.minutes, used.minutes),
    }


def is_approaching_limit(percentages: Dict[str, Optional[float]]) -> bool:
    return any(p is not None and p >= USAGE_ALERT_THRESHOLD_PERCENT for p in percentages.values())


def next_month_start(now: datetime) -> datetime:
    now = timezone.to_utc(now)
    if now.month == 12:
        return now.replace(year=now.year + 1, month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return now.replace(month=now.month + 1, day=1, hour=0, minute=0, second=0, microsecond=0)


def days_until_reset(now: datetime) -> int:
    """Whole days, rounded up, until the next calendar month starts (UTC)."""
    delta = next_month_start(now) - timezone.to_utc(now)
    return math.ceil(delta / timedelta(days=1))


def previous_month_keys(now: datetime, months: int) -> List[str]:
    """Month keys from ``months - 1`` months ago up to the current month."""
    current = timezone.to_utc(now)
    year, month = current.year, current.month
    keys = []
    for _ in range(months):
        keys.append(f'{year:04d}-{month:02d}')
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


async def get_usage_history(
    db: AsyncSession,
    user_id: int,
    months: int = 6,
    now: Optional[datetime] = None,
) -> List[Dict]:
    """
    Per-month usage, oldest month first; months without attendance are zeros.

    Raises:
        ValidationError: ``months`` outside 1..24
    """
    if months < 1 or months > MAX_HISTORY_MONTHS:
        raise ValidationError(
            f"months must be between 1 and {MAX_HISTORY_MONTHS}",
            code="INVALID_HISTORY_RANGE",
            field='months'
        )
    keys = previous_month_keys(now or timezone.now(), months)
    history = {key: UsageTotals() for key in keys}
    for attendance in await session_attendance_dao.get_by_month_keys(db, user_id, keys):
        totals = history[attendance.month_key]
        if attendance.session_format == SessionFormat.GROUP:
            totals.group += 1
        elif attendance.session_format == SessionFormat.ONE_TO_ONE:
            totals.one_to_one += 1
        totals.minutes += attendance.minutes
    return [
        {'month': key, 'group': t.group, 'oneToOne': t.one_to_one, 'minutes': t.minutes}
        for key, t in history.items()
    ]


async def get_usage_analytics(db: AsyncSession, user_id: int, now: Optional[datetime] = None) -> Dict:
    """Current usage with percentages, the alert flag and the reset countdown."""
    now = now or timezone.now()
    tier, entitlement = await usage_quota_tracker.get_entitlement(db, user_id, now)
    used = await usage_quota_tracker.get_totals(db, user_id, now)
    percentages = usage_percentages(entitlement, used)
    return {
        'usage': usage_payload(entitlement, used, month_key(now)),
        'tier': tier,
        'percentages': percentages,
        'isApproachingLimit': is_approaching_limit(percentages),
        'daysUntilReset': days_until_reset(now),
    }
