"""
Usage Endpoints

Monthly live-session usage, history and quota checks for the caller.
"""

from typing import Dict, List

from fastapi import APIRouter, Depends, Query

from linguamarket.database.db import CurrentSession
from linguamarket.src.billing.shared.config import SessionFormat
from linguamarket.src.billing.usage import get_usage_analytics, get_usage_history, usage_quota_tracker

from .dependencies import AuthUser, verify_billing_enabled

router = APIRouter(tags=["billing-usage"], dependencies=[Depends(verify_billing_enabled)])


@router.get("/usage")
async def get_usage(db: CurrentSession, user: AuthUser) -> Dict:
    """Current month usage with caps, percentages and the reset countdown."""
    analytics = await get_usage_analytics(db, user.id)
    usage = analytics.pop('usage')
    usage.update(analytics)
    return usage


@router.get("/usage/history")
async def usage_history(
    db: CurrentSession,
    user: AuthUser,
    months: int = Query(6, description="Number of months, current month included"),
) -> List[Dict]:
    """Per-month usage, oldest first."""
    return await get_usage_history(db, user.id, months=months)


@router.get("/usage/check")
async def check_quota(
    db: CurrentSession,
    user: AuthUser,
    session_format: str = Query(SessionFormat.GROUP, description="GROUP or ONE_TO_ONE"),
) -> Dict:
    """Whether one more session of the given format fits this month's caps."""
    check = await usage_quota_tracker.check_quota(db, user.id, session_format.upper())
    return check.to_dict()
