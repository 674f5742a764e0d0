"""
Webhook Endpoints

Stripe webhook endpoint for processing billing events.
"""

import logging

from fastapi import APIRouter, Request

from linguamarket.database.db import CurrentSession
from linguamarket.src.billing.external.stripe import webhook_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing-webhooks"])


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request, db: CurrentSession):
    """
    Process Stripe webhook events.

    Handles:
    - payment_intent.succeeded
    - payment_intent.payment_failed
    - charge.refunded
    """
    return await webhook_service.process_stripe_webhook(request, db)
