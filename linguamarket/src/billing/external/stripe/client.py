"""
Stripe API Client Wrapper

Single entry point for Stripe API calls. Provider failures surface as
``PaymentError`` carrying Stripe's user-facing message; the caller's UI
decides whether to retry.
"""

import logging
from typing import Any, Callable, Optional

import stripe

from linguamarket.core.conf import settings
from linguamarket.src.billing.shared.exceptions import ConflictError, PaymentError

logger = logging.getLogger(__name__)

# Intents the customer can still complete
OPEN_INTENT_STATUSES = frozenset({'requires_payment_method', 'requires_confirmation', 'requires_action'})

# Intents whose money is captured or on its way
SETTLING_INTENT_STATUSES = frozenset({'processing', 'requires_capture', 'succeeded'})

stripe.api_key = settings.STRIPE_SECRET_KEY


class StripeAPIWrapper:
    """
    Async wrapper over the Stripe SDK.

    All methods are async class methods that can be called directly:
        intent = await StripeAPIWrapper.create_payment_intent(amount=1299, currency='usd')
    """

    @classmethod
    def _ensure_stripe_configured(cls):
        """Raise PaymentError if no secret key is configured."""
        if not settings.STRIPE_SECRET_KEY:
            raise PaymentError(code="STRIPE_NOT_CONFIGURED", message="Payment provider is not configured")

    @classmethod
    async def safe_stripe_call(cls, func: Callable, *args, **kwargs) -> Any:
        """
        Execute a Stripe API call, translating SDK errors.

        Args:
            func: Async Stripe API function
            *args: Positional arguments
            **kwargs: Keyword arguments

        Returns:
            Result from Stripe API

        Raises:
            PaymentError: The provider rejected the call or was unreachable
        """
        cls._ensure_stripe_configured()
        try:
            return await func(*args, **kwargs)
        except stripe.StripeError as e:
            message = getattr(e, 'user_message', None) or str(e) or "Payment processing error"
            logger.error(f"[STRIPE CLIENT] {type(e).__name__}: {e}")
            raise PaymentError(
                message=message,
                code="STRIPE_ERROR",
                stripe_error=type(e).__name__
            ) from e

    # -------------------------------------------------------------------------
    # Payment Intent Operations
    # -------------------------------------------------------------------------

    @classmethod
    async def create_payment_intent(cls, **kwargs) -> 'stripe.PaymentIntent':
        """
        Create a PaymentIntent.

        Args:
            amount: Amount in minor units
            currency: ISO currency code
            metadata: String-valued metadata
            automatic_payment_methods: {'enabled': True}
            idempotency_key: Deterministic request key

        Returns:
            Stripe PaymentIntent object
        """
        return await cls.safe_stripe_call(stripe.PaymentIntent.create_async, **kwargs)

    @classmethod
    async def retrieve_payment_intent(cls, payment_intent_id: str) -> 'stripe.PaymentIntent':
        """Retrieve a payment intent by ID."""
        return await cls.safe_stripe_call(stripe.PaymentIntent.retrieve_async, payment_intent_id)

    @classmethod
    async def cancel_payment_intent(cls, payment_intent_id: str) -> 'stripe.PaymentIntent':
        """Cancel a payment intent the customer has not completed."""
        return await cls.safe_stripe_call(stripe.PaymentIntent.cancel_async, payment_intent_id)

    @classmethod
    async def reusable_payment_intent(
        cls,
        payment_intent_id: Optional[str],
        amount_minor: int,
        currency: str,
    ) -> Optional['stripe.PaymentIntent']:
        """
        Previously created intent to hand out again instead of a new one.

        A charge owns at most one live intent: an open intent for the same
        amount and currency is returned as is, an open intent for different
        terms is cancelled first.

        Args:
            payment_intent_id: Intent recorded on the charge, if any
            amount_minor: Amount the new intent would carry
            currency: Currency the new intent would carry

        Returns:
            The reusable intent, or None when a new intent is needed

        Raises:
            ConflictError: The recorded intent is processing or already succeeded
            PaymentError: Stripe could not be reached
        """
        if not payment_intent_id:
            return None
        try:
            intent = await cls.retrieve_payment_intent(payment_intent_id)
        except PaymentError as e:
            if e.details.get('stripe_error') == 'InvalidRequestError':
                logger.warning(f"[STRIPE CLIENT] Recorded intent {payment_intent_id} not found, creating a new one")
                return None
            raise

        status = getattr(intent, 'status', None)
        if status in SETTLING_INTENT_STATUSES:
            raise ConflictError(
                "A payment for this charge is already in progress",
                code="PAYMENT_IN_PROGRESS",
                details={'paymentIntentId': payment_intent_id, 'status': status},
            )
        if status not in OPEN_INTENT_STATUSES:
            return None
        same_terms = (
            getattr(intent, 'amount', None) == amount_minor
            and (getattr(intent, 'currency', None) or '').lower() == currency.lower()
        )
        if same_terms:
            return intent
        await cls.cancel_payment_intent(payment_intent_id)
        logger.info(f"[STRIPE CLIENT] Cancelled intent {payment_intent_id}, terms changed")
        return None

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    @staticmethod
    def construct_event(payload: bytes, sig_header: str) -> 'stripe.Event':
        """
        Verify a webhook signature and build the event.

        Raises:
            stripe.SignatureVerificationError: Signature mismatch
            ValueError: Payload is not valid JSON
        """
        return stripe.Webhook.construct_event(
            payload,
            sig_header,
            settings.STRIPE_WEBHOOK_SECRET,
            tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS
        )
