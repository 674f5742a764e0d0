"""
Billing Endpoints Module

API routes for billing operations.

Routers:
- enrollments: Eligibility, enrollment and course payments
- usage: Monthly session usage and quota checks
- subscriptions: Student trials, post-trial payments and institution plans
- sessions: Live sessions and leader commissions
- admin: Payment approval settings and cron jobs
- webhooks: Stripe webhook processing

Usage:
    from linguamarket.src.billing.endpoints import billing_router

    app.include_router(billing_router, prefix="/billing")
"""

from fastapi import APIRouter

from .admin import router as admin_router
from .dependencies import CurrentUser, get_current_user, require_role, verify_billing_enabled, verify_cron_secret
from .enrollments import router as enrollments_router
from .sessions import router as sessions_router
from .subscriptions import router as subscriptions_router
from .usage import router as usage_router
from .webhooks import router as webhooks_router

# Create main billing router
billing_router = APIRouter()

# Include all sub-routers
billing_router.include_router(enrollments_router)
billing_router.include_router(usage_router)
billing_router.include_router(subscriptions_router)
billing_router.include_router(sessions_router)
billing_router.include_router(admin_router)
billing_router.include_router(webhooks_router)

__all__ = [
    'billing_router',
    'admin_router',
    'enrollments_router',
    'sessions_router',
    'subscriptions_router',
    'usage_router',
    'webhooks_router',
    'CurrentUser',
    'get_current_user',
    'require_role',
    'verify_billing_enabled',
    'verify_cron_secret',
]
