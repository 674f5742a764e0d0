"""
Usage Quota Tracker

Monthly live-session usage against tier entitlements.

Usage is keyed by (user, YYYY-MM) in UTC; a new calendar month starts from
zero. Counts come from SessionAttendance rows, one per (session, user), so
recording the same attendance twice never counts twice.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncSession

from linguamarket.app.marketplace.crud.crud_session import session_attendance_dao
from linguamarket.app.marketplace.crud.crud_subscription import student_subscription_dao
from linguamarket.app.marketplace.model import SessionAttendance
from linguamarket.src.billing.domain.trial import effective_subscription_status
from linguamarket.src.billing.shared.config import (
    ACTIVE_SUBSCRIPTION_STATUSES,
    NO_ENTITLEMENT,
    Entitlement,
    SessionFormat,
)
from linguamarket.src.billing.shared.exceptions import ValidationError
from linguamarket.src.billing.subscriptions.tiers import entitlement_for, remaining
from linguamarket.utils.timezone import timezone

logger = logging.getLogger(__name__)


class QuotaReason:
    GROUP_SESSIONS_EXHAUSTED = 'GROUP_SESSIONS_EXHAUSTED'
    ONE_TO_ONE_SESSIONS_EXHAUSTED = 'ONE_TO_ONE_SESSIONS_EXHAUSTED'
    MINUTES_EXHAUSTED = 'MINUTES_EXHAUSTED'


QUOTA_MESSAGES = {
    QuotaReason.GROUP_SESSIONS_EXHAUSTED: "You have used all group sessions included in your plan this month.",
    QuotaReason.ONE_TO_ONE_SESSIONS_EXHAUSTED: "You have used all one-to-one sessions included in your plan this month.",
    QuotaReason.MINUTES_EXHAUSTED: "You have used all live minutes included in your plan this month.",
}


def month_key(now: datetime) -> str:
    """Calendar month key ``YYYY-MM`` in UTC."""
    return timezone.to_utc(now).strftime('%Y-%m')


def _finite(value: Union[int, float]) -> Optional[int]:
    return None if value == math.inf else int(value)


@dataclass
class UsageTotals:
    """What a user consumed in one month."""
    group: int = 0
    one_to_one: int = 0
    minutes: int = 0

    @classmethod
    def from_month_totals(cls, totals: Dict[str, int]) -> 'UsageTotals':
        return cls(
            group=totals.get(SessionFormat.GROUP, 0),
            one_to_one=totals.get(SessionFormat.ONE_TO_ONE, 0),
            minutes=totals.get('minutes', 0),
        )

    def remaining(self, entitlement: Entitlement) -> Dict[str, Union[int, float]]:
        return {
            'group': remaining(entitlement.group_sessions, self.group),
            'oneToOne': remaining(entitlement.one_to_one_sessions, self.one_to_one),
            'minutes': remaining(entitlement.minutes, self.minutes),
        }


@dataclass
class QuotaCheck:
    """Outcome of a booking quota check; every exhausted dimension is listed."""
    allowed: bool
    session_format: str
    reasons: List[str] = field(default_factory=list)
    remaining: Dict[str, Union[int, float]] = field(default_factory=dict)

    @property
    def reason(self) -> Optional[str]:
        return self.reasons[0] if self.reasons else None

    def to_dict(self) -> dict:
        return {
            'allowed': self.allowed,
            'sessionFormat': self.session_format,
            'reasons': list(self.reasons),
            'messages': [QUOTA_MESSAGES[r] for r in self.reasons],
            'remaining': {k: _finite(v) for k, v in self.remaining.items()},
        }


def evaluate_quota(entitlement: Entitlement, used: UsageTotals, session_format: str) -> QuotaCheck:
    """
    Decide whether one more session of ``session_format`` fits the caps.

    The count dimension of the format and the minutes dimension are both
    checked; a dimension blocks when its remaining allowance is <= 0.

    Raises:
        ValidationError: Unknown session format
    """
    if session_format not in (SessionFormat.GROUP, SessionFormat.ONE_TO_ONE):
        raise ValidationError(
            f"Unknown session format: {session_format}",
            code="INVALID_SESSION_FORMAT",
            field='session_format'
        )
    left = used.remaining(entitlement)
    reasons = []
    if session_format == SessionFormat.GROUP and left['group'] <= 0:
        reasons.append(QuotaReason.GROUP_SESSIONS_EXHAUSTED)
    if session_format == SessionFormat.ONE_TO_ONE and left['oneToOne'] <= 0:
        reasons.append(QuotaReason.ONE_TO_ONE_SESSIONS_EXHAUSTED)
    if left['minutes'] <= 0:
        reasons.append(QuotaReason.MINUTES_EXHAUSTED)
    return QuotaCheck(allowed=not reasons, session_format=session_format, reasons=reasons, remaining=left)


def usage_payload(entitlement: Entitlement, used: UsageTotals, month: str) -> Dict:
    """Caller-facing usage document."""
    return {
        'group': used.group,
        'oneToOne': used.one_to_one,
        'minutes': used.minutes,
        'entitlement': {
            'groupCap': entitlement.group_sessions,
            'oneToOneCap': entitlement.one_to_one_sessions,
            'minutesCap': entitlement.minutes,
        },
        'remaining': {k: _finite(v) for k, v in used.remaining(entitlement).items()},
        'month': month,
    }


class UsageQuotaTracker:
    """
    Usage accounting for live sessions.

    Usage:
        from linguamarket.src.billing.usage import usage_quota_tracker

        check = await usage_quota_tracker.check_quota(db, user_id, SessionFormat.GROUP)
        if check.allowed:
            await usage_quota_tracker.record_attendance(db, user_id, ...)
    """

    async def get_entitlement(
        self,
        db: AsyncSession,
        user_id: int,
        now: Optional[datetime] = None,
    ) -> Tuple[Optional[str], Entitlement]:
        """
        Tier name and caps currently granted to a user.

        No subscription, or one that is not active once the trial window
        is applied, grants nothing.
        """
        now = now or timezone.now()
        subscription = await student_subscription_dao.get_by_student(db, user_id)
        if subscription is None:
            return None, NO_ENTITLEMENT
        status = effective_subscription_status(
            subscription.status, subscription.trial_start, subscription.trial_end, now
        )
        if status not in ACTIVE_SUBSCRIPTION_STATUSES:
            return subscription.tier, NO_ENTITLEMENT
        return subscription.tier, entitlement_for(subscription.tier)

    async def get_totals(self, db: AsyncSession, user_id: int, now: Optional[datetime] = None) -> UsageTotals:
        totals = await session_attendance_dao.get_month_totals(db, user_id, month_key(now or timezone.now()))
        return UsageTotals.from_month_totals(totals)

    async def get_usage(self, db: AsyncSession, user_id: int, now: Optional[datetime] = None) -> Dict:
        """Usage of the current month with the caps that apply."""
        now = now or timezone.now()
        tier, entitlement = await self.get_entitlement(db, user_id, now)
        payload = usage_payload(entitlement, await self.get_totals(db, user_id, now), month_key(now))
        payload['tier'] = tier
        return payload

    async def check_quota(
        self,
        db: AsyncSession,
        user_id: int,
        session_format: str,
        now: Optional[datetime] = None,
    ) -> QuotaCheck:
        """Whether the user may book one more session of ``session_format`` this month."""
        now = now or timezone.now()
        _, entitlement = await self.get_entitlement(db, user_id, now)
        check = evaluate_quota(entitlement, await self.get_totals(db, user_id, now), session_format)
        if not check.allowed:
            logger.info(f"[USAGE] User {user_id} blocked for {session_format}: {', '.join(check.reasons)}")
        return check

    async def record_attendance(
        self,
        db: AsyncSession,
        user_id: int,
        session_type: str,
        session_id: int,
        session_format: str,
        minutes: int,
        now: Optional[datetime] = None,
    ) -> SessionAttendance:
        """
        Record one attendance event; the caller owns the transaction.

        A second call for the same (session, user) returns the first row.
        """
        if minutes < 0:
            raise ValidationError("Minutes must not be negative", code="NEGATIVE_MINUTES", field='minutes')
        existing = await session_attendance_dao.get_by_user(db, session_type, session_id, user_id)
        if existing is not None:
            logger.debug(f"[USAGE] Attendance of user {user_id} in {session_type} {session_id} already recorded")
            return existing

        now = now or timezone.now()
        attendance = SessionAttendance(
            user_id=user_id,
            session_type=session_type,
            session_id=session_id,
            session_format=session_format,
            minutes=minutes,
            month_key=month_key(now),
            attended_at=now,
        )
        db.add(attendance)
        await db.flush()
        logger.info(
            f"[USAGE] User {user_id} attended {session_type} {session_id} "
            f"({session_format}, {minutes} min, {attendance.month_key})"
        )
        return attendance


usage_quota_tracker = UsageQuotaTracker()
