"""
Trial Domain

Pure trial-window rules. Nothing here touches the database: callers pass
the stored timestamps and whether a post-trial payment has landed.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from linguamarket.src.billing.shared.config import SubscriptionStatus


class TrialStatus(Enum):
    """Outcome of evaluating a trial window."""
    TRIALING = "trialing"
    ACTIVE = "active"
    EXPIRED = "expired"


def trial_end_for(start: datetime, trial_days: int) -> datetime:
    """End of a trial that starts at ``start``."""
    return start + timedelta(days=trial_days)


def resolve_trial_status(
    now: datetime,
    start: Optional[datetime],
    end: datetime,
    has_post_trial_payment: bool,
) -> TrialStatus:
    """
    Resolve where a trial stands at ``now``.

    A landed post-trial payment wins; otherwise the trial runs while
    ``now < end`` and is expired from ``end`` on.

    Args:
        now: Reference time
        start: Trial start (informational, a trial is never "not started")
        end: Trial end
        has_post_trial_payment: Whether the first paid charge succeeded
    """
    if has_post_trial_payment:
        return TrialStatus.ACTIVE
    if now < end:
        return TrialStatus.TRIALING
    return TrialStatus.EXPIRED


def days_remaining(now: datetime, end: Optional[datetime]) -> int:
    """Whole days left in a window, never negative."""
    if end is None:
        return 0
    return max(0, (end - now).days)


def effective_subscription_status(
    status: str,
    trial_start: Optional[datetime],
    trial_end: Optional[datetime],
    now: datetime,
    has_post_trial_payment: bool = False,
) -> str:
    """
    Stored subscription status with the trial window applied lazily.

    A TRIAL or PAYMENT_REQUIRED row whose window has closed reads as
    EXPIRED even if no job has touched it yet.
    """
    if status not in (SubscriptionStatus.TRIAL, SubscriptionStatus.PAYMENT_REQUIRED) or trial_end is None:
        return status
    resolved = resolve_trial_status(now, trial_start, trial_end, has_post_trial_payment)
    if resolved is TrialStatus.ACTIVE:
        return SubscriptionStatus.ACTIVE
    if resolved is TrialStatus.TRIALING:
        return status
    return SubscriptionStatus.EXPIRED
