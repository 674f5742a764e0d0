"""
Billing Exceptions

Custom exception classes for billing-related errors.
These provide structured error handling across the billing module.

Every exception carries an HTTP ``status_code`` so the application-level
handler can render ``to_dict()`` without a lookup table.
"""

from typing import Optional


class BillingError(Exception):
    """
    Base exception for all billing-related errors.

    All billing exceptions inherit from this class, allowing for
    broad exception handling when needed.
    """

    status_code: int = 400

    def __init__(self, message: str, code: str = "BILLING_ERROR", details: dict = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for API responses."""
        return {
            'error': self.code,
            'message': self.message,
            'details': self.details
        }


class NotFoundError(BillingError):
    """
    Raised when a referenced record does not exist.

    Examples:
        - Course, enrollment or institution missing
        - Live session missing
    """

    status_code = 404

    def __init__(
        self,
        resource: str,
        resource_id=None,
        code: Optional[str] = None,
        message: Optional[str] = None
    ):
        super().__init__(
            message=message or f"{resource} not found",
            code=code or f"{resource.upper().replace(' ', '_')}_NOT_FOUND",
            details={'resource': resource, 'id': resource_id}
        )
        self.resource = resource
        self.resource_id = resource_id


class AuthorizationError(BillingError):
    """Raised when the caller is not authenticated."""

    status_code = 401

    def __init__(self, message: str = "Authentication required", code: str = "UNAUTHORIZED"):
        super().__init__(message=message, code=code)


class ForbiddenError(BillingError):
    """Raised when the caller's role or ownership does not allow the operation."""

    status_code = 403

    def __init__(self, message: str = "Operation not permitted", code: str = "FORBIDDEN", details: dict = None):
        super().__init__(message=message, code=code, details=details)


class ValidationError(BillingError):
    """
    Raised when input is rejected before any write.

    Examples:
        - Negative price
        - Malformed date range
        - Commission rate outside 0-100
    """

    status_code = 422

    def __init__(self, message: str, code: str = "VALIDATION_ERROR", field: Optional[str] = None):
        super().__init__(
            message=message,
            code=code,
            details={'field': field} if field else {}
        )
        self.field = field


class ConflictError(BillingError):
    """
    Raised when the request conflicts with existing state.

    Examples:
        - Student already enrolled
        - Course full
        - Enrollment already paid
    """

    status_code = 409

    def __init__(self, message: str, code: str = "CONFLICT", details: dict = None):
        super().__init__(message=message, code=code, details=details)


class PolicyBlockedError(BillingError):
    """
    Raised when a subscription policy blocks the action.

    Unlike ValidationError this carries a remediation hint
    (where to subscribe or upgrade).
    """

    status_code = 402

    def __init__(
        self,
        message: str,
        code: str = "POLICY_BLOCKED",
        redirect_url: Optional[str] = None,
        details: dict = None
    ):
        details = dict(details or {})
        if redirect_url:
            details['redirect_url'] = redirect_url
        super().__init__(message=message, code=code, details=details)
        self.redirect_url = redirect_url


class SubscriptionError(BillingError):
    """
    Raised when there's an issue with subscription management.

    Examples:
        - Subscription not found
        - Cannot upgrade/downgrade
        - Subscription already cancelled
    """

    def __init__(
        self,
        message: str = "Subscription error",
        code: str = "SUBSCRIPTION_ERROR",
        subscription_id=None
    ):
        super().__init__(
            message=message,
            code=code,
            details={'subscription_id': subscription_id} if subscription_id else {}
        )
        self.subscription_id = subscription_id


class PaymentError(BillingError):
    """
    Raised when the payment provider call fails.

    The provider's message is surfaced; callers retry from the UI.
    """

    status_code = 502

    def __init__(
        self,
        message: str = "Payment processing error",
        code: str = "PAYMENT_ERROR",
        payment_intent_id: str = None,
        stripe_error: str = None
    ):
        details = {}
        if payment_intent_id:
            details['payment_intent_id'] = payment_intent_id
        if stripe_error:
            details['stripe_error'] = stripe_error

        super().__init__(
            message=message,
            code=code,
            details=details
        )
        self.payment_intent_id = payment_intent_id
        self.stripe_error = stripe_error


class WebhookError(BillingError):
    """
    Raised when there's an issue processing a webhook.

    Examples:
        - Invalid signature
        - Malformed payload
    """

    def __init__(
        self,
        message: str = "Webhook processing error",
        code: str = "WEBHOOK_ERROR",
        event_id: str = None,
        event_type: str = None
    ):
        details = {}
        if event_id:
            details['event_id'] = event_id
        if event_type:
            details['event_type'] = event_type

        super().__init__(
            message=message,
            code=code,
            details=details
        )
        self.event_id = event_id
        self.event_type = event_type


class TierNotFoundError(BillingError):
    """Raised when a requested tier or plan doesn't exist."""

    status_code = 404

    def __init__(self, tier_name: str):
        super().__init__(
            message=f"Tier '{tier_name}' not found",
            code="TIER_NOT_FOUND",
            details={'tier_name': tier_name}
        )
        self.tier_name = tier_name


class TrialError(BillingError):
    """
    Raised when there's an issue with trial management.

    Examples:
        - Trial already used
        - Post-trial payment attempts exhausted
    """

    def __init__(
        self,
        message: str = "Trial error",
        code: str = "TRIAL_ERROR",
        subscription_id=None
    ):
        super().__init__(
            message=message,
            code=code,
            details={'subscription_id': subscription_id} if subscription_id else {}
        )
        self.subscription_id = subscription_id


class ReconciliationError(BillingError):
    """Raised when payment reconciliation cannot keep records consistent."""

    status_code = 500

    def __init__(
        self,
        message: str = "Reconciliation error",
        payment_id=None
    ):
        super().__init__(
            message=message,
            code="RECONCILIATION_ERROR",
            details={'payment_id': payment_id} if payment_id else {}
        )
        self.payment_id = payment_id
