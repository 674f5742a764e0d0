"""
Stripe Idempotency Key Generation

Deterministic idempotency keys for Stripe API calls, so a retried request
inside the same time bucket never creates a second charge.
"""

import hashlib
from datetime import datetime, timezone
from typing import Optional


class StripeIdempotencyManager:
    """
    Generates deterministic idempotency keys for Stripe operations.

    Keys are:
    - Unique per operation + subject + parameters
    - Stable within a time bucket so client retries reuse them

    Usage:
        key = stripe_idempotency_manager.generate_payment_intent_key(enrollment_id, 1299, 'usd')
        intent = await StripeAPIWrapper.create_payment_intent(idempotency_key=key, ...)
    """

    def generate_key(
        self,
        operation: str,
        subject_id: str,
        *args,
        time_bucket_minutes: int = 5,
        now: Optional[datetime] = None,
        **kwargs
    ) -> str:
        """
        Generate an idempotency key.

        Args:
            operation: Operation type (e.g., 'enrollment_payment')
            subject_id: Enrollment or subscription identifier
            *args: Additional positional arguments to include in key
            time_bucket_minutes: Time window for key reuse
            now: Reference time, defaults to the current UTC time
            **kwargs: Additional keyword arguments to include in key

        Returns:
            40-character hex idempotency key
        """
        now = now or datetime.now(timezone.utc)
        timestamp_bucket = int(now.timestamp() // (time_bucket_minutes * 60))

        components = [
            operation,
            str(subject_id),
            *[str(arg) for arg in args],
            *[f"{k}={v}" for k, v in sorted(kwargs.items())],
            str(timestamp_bucket),
        ]

        idempotency_base = "_".join(components)
        return hashlib.sha256(idempotency_base.encode()).hexdigest()[:40]

    def generate_payment_intent_key(
        self,
        enrollment_id: int,
        amount_minor: int,
        currency: str,
        now: Optional[datetime] = None
    ) -> str:
        """Generate idempotency key for an enrollment payment intent."""
        return self.generate_key('enrollment_payment', enrollment_id, amount_minor, currency.lower(), now=now)

    def generate_post_trial_key(
        self,
        subscriber_type: str,
        subscription_id: int,
        attempt_number: int,
        now: Optional[datetime] = None
    ) -> str:
        """Generate idempotency key for a post-trial payment attempt."""
        return self.generate_key(
            'post_trial_payment',
            subscription_id,
            subscriber_type,
            attempt=attempt_number,
            time_bucket_minutes=60,
            now=now
        )


# Global instance
stripe_idempotency_manager = StripeIdempotencyManager()
