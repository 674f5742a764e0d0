"""
Admin and Cron Endpoints

Payment approval settings, and the scheduler-triggered maintenance jobs.
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from linguamarket.app.marketplace.crud.crud_admin import admin_settings_dao
from linguamarket.database.db import CurrentSession, atomic
from linguamarket.src.billing.enrollments import enrollment_service
from linguamarket.src.billing.shared.settings_cache import PaymentApprovalSettings
from linguamarket.src.billing.subscriptions import TrialService

from .dependencies import AdminUser, SettingsCache, verify_cron_secret

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing-admin"])


class PaymentApprovalUpdate(BaseModel):
    """Partial update of the payment approval policy."""
    allow_institution_payment_approval: Optional[bool] = None
    show_institution_approval_buttons: Optional[bool] = None
    default_payment_status: Optional[str] = Field(None, max_length=32)
    institution_approvable_methods: Optional[List[str]] = None
    admin_only_methods: Optional[List[str]] = None
    institution_payment_approval_exemptions: Optional[List[int]] = None


@router.get("/admin/settings/payment-approval")
async def get_payment_approval_settings(db: CurrentSession, admin: AdminUser, cache: SettingsCache) -> Dict:
    policy = await cache.get(db)
    return policy.to_dict()


@router.put("/admin/settings/payment-approval")
async def update_payment_approval_settings(
    request: PaymentApprovalUpdate,
    db: CurrentSession,
    admin: AdminUser,
    cache: SettingsCache,
) -> Dict:
    """Update the policy; other processes pick it up when their snapshot expires."""
    changes = request.model_dump(exclude_unset=True, exclude_none=True)
    for key in ('institution_approvable_methods', 'admin_only_methods'):
        if key in changes:
            changes[key] = [m.upper() for m in changes[key]]

    async with atomic(db):
        row = await admin_settings_dao.get_or_create(db)
        for key, value in changes.items():
            setattr(row, key, value)
        await db.flush()
        policy = PaymentApprovalSettings.from_model(row)

    await cache.invalidate()
    logger.info(f"[SETTINGS] Admin {admin.id} updated payment approval settings: {sorted(changes)}")
    return policy.to_dict()


@router.post("/cron/trial-expiration", dependencies=[Depends(verify_cron_secret)])
async def process_trial_expiration(db: CurrentSession) -> Dict:
    """Move lapsed trials to PAYMENT_REQUIRED and apply fallbacks once collection gives up."""
    counts = await TrialService.process_expired_trials(db)
    return {'status': 'success', 'processed': counts}


@router.post("/cron/release-abandoned-enrollments", dependencies=[Depends(verify_cron_secret)])
async def release_abandoned_enrollments(db: CurrentSession) -> Dict:
    """Release unpaid enrollments older than PENDING_ENROLLMENT_TTL_HOURS; a no-op while unset."""
    released = await enrollment_service.release_abandoned_enrollments(db)
    return {'status': 'success', 'released': released}
