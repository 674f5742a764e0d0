"""
Billing Configuration

This module defines subscription tiers, institution plans, commission
defaults and the status groupings the billing core reasons about.

Usage:
    from linguamarket.src.billing.shared.config import STUDENT_TIERS, get_student_tier

    tier = get_student_tier('PREMIUM')
    print(tier.entitlement.minutes)  # 480
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, FrozenSet, Optional


# =============================================================================
# SENTINELS
# =============================================================================
# Cap value meaning "no limit" for every entitlement dimension
UNLIMITED: int = -1


# =============================================================================
# TRIAL CONFIGURATION
# =============================================================================
STUDENT_TRIAL_DAYS: int = 7
INSTITUTION_TRIAL_DAYS: int = 14
DEFAULT_TRIAL_TIER: str = 'BASIC'

# Post-trial payment collection
MAX_PAYMENT_ATTEMPTS: int = 3
DAYS_BETWEEN_ATTEMPTS: int = 3


# =============================================================================
# COMMISSION CONSTANTS
# =============================================================================
# Institution context: the rate is the PLATFORM's cut of the payment.
DEFAULT_INSTITUTION_COMMISSION_RATE: Decimal = Decimal('20')
# Applied when an institution cancels its plan (STARTER rate)
CANCELLED_INSTITUTION_COMMISSION_RATE: Decimal = Decimal('25')

# Instructor/host context: the rate is the LEADER's share of session revenue,
# the platform keeps the rest.
DEFAULT_LEADER_COMMISSION_RATE: Decimal = Decimal('70')
DEFAULT_LEADER_TIER_NAME: str = 'DEFAULT'

# 1 credit = $1
CREDIT_TO_CURRENCY: Decimal = Decimal('1')
VIDEO_SESSION_CREDIT_PRICE: Decimal = Decimal('30')
CONVERSATION_CREDIT_PRICE: Decimal = Decimal('25')


# =============================================================================
# USAGE CONSTANTS
# =============================================================================
USAGE_ALERT_THRESHOLD_PERCENT: int = 80
DEFAULT_SESSION_MINUTES: int = 60


# =============================================================================
# STATUS GROUPINGS
# =============================================================================
class EnrollmentStatus:
    """Enrollment lifecycle states."""
    PENDING_PAYMENT = 'PENDING_PAYMENT'
    ENROLLED = 'ENROLLED'
    ACTIVE = 'ACTIVE'
    IN_PROGRESS = 'IN_PROGRESS'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'
    ABANDONED = 'ABANDONED'


class EnrollmentPaymentStatus:
    """Payment state recorded on an enrollment."""
    PENDING = 'PENDING'
    PAID = 'PAID'
    FAILED = 'FAILED'
    REFUNDED = 'REFUNDED'
    NOT_REQUIRED = 'NOT_REQUIRED'


class PaymentStatus:
    """Payment ledger row states."""
    COMPLETED = 'COMPLETED'
    REFUNDED = 'REFUNDED'
    # Money captured but not applied to the enrollment; refund or settle by hand
    REQUIRES_REVIEW = 'REQUIRES_REVIEW'


class PaymentReviewReason:
    """Why a captured charge was held back from its enrollment."""
    DUPLICATE_CHARGE = 'DUPLICATE_CHARGE'
    NO_SEAT = 'NO_SEAT'
    ENROLLMENT_SUPERSEDED = 'ENROLLMENT_SUPERSEDED'
    UNDERPAID = 'UNDERPAID'
    CURRENCY_MISMATCH = 'CURRENCY_MISMATCH'


class PayoutStatus:
    PENDING = 'PENDING'
    COMPLETED = 'COMPLETED'


class BookingStatus:
    PENDING = 'PENDING'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'
    CONFIRMED = 'CONFIRMED'


class SubscriptionStatus:
    """Stored subscription states (students and institutions)."""
    TRIAL = 'TRIAL'
    ACTIVE = 'ACTIVE'
    PAST_DUE = 'PAST_DUE'
    PAYMENT_REQUIRED = 'PAYMENT_REQUIRED'
    CANCELLED = 'CANCELLED'
    EXPIRED = 'EXPIRED'


class CourseStatus:
    DRAFT = 'DRAFT'
    PUBLISHED = 'PUBLISHED'
    ARCHIVED = 'ARCHIVED'


class MarketingType:
    SELF_PACED = 'SELF_PACED'
    IN_PERSON = 'IN_PERSON'
    LIVE_ONLINE = 'LIVE_ONLINE'
    BLENDED = 'BLENDED'


class SessionType:
    VIDEO_SESSION = 'VIDEO_SESSION'
    LIVE_CONVERSATION = 'LIVE_CONVERSATION'


class SessionFormat:
    GROUP = 'GROUP'
    ONE_TO_ONE = 'ONE_TO_ONE'


class LeaderRole:
    INSTRUCTOR = 'INSTRUCTOR'
    HOST = 'HOST'


class CommissionStatus:
    PENDING = 'PENDING'
    PAID = 'PAID'


class SubscriberType:
    STUDENT = 'STUDENT'
    INSTITUTION = 'INSTITUTION'


class BillingRecordStatus:
    PENDING = 'PENDING'
    PAID = 'PAID'
    FAILED = 'FAILED'
    REQUIRES_REVIEW = 'REQUIRES_REVIEW'


class BillingCycle:
    MONTHLY = 'MONTHLY'
    ANNUAL = 'ANNUAL'


class UserRole:
    ADMIN = 'ADMIN'
    INSTITUTION = 'INSTITUTION'
    INSTRUCTOR = 'INSTRUCTOR'
    STUDENT = 'STUDENT'


# Enrollments holding a seat in a course
SEAT_OCCUPYING_STATUSES: FrozenSet[str] = frozenset({
    EnrollmentStatus.PENDING_PAYMENT,
    EnrollmentStatus.ACTIVE,
    EnrollmentStatus.IN_PROGRESS,
    EnrollmentStatus.ENROLLED,
})

# Enrollments that block a second enrollment for the same (student, course)
OPEN_ENROLLMENT_STATUSES: FrozenSet[str] = SEAT_OCCUPYING_STATUSES | {EnrollmentStatus.COMPLETED}

# Subscriptions that grant access to gated courses
ACTIVE_SUBSCRIPTION_STATUSES: FrozenSet[str] = frozenset({
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIAL,
    SubscriptionStatus.PAST_DUE,
})

# Marketing types that imply a subscription even when the flag is unset
SUBSCRIPTION_MARKETING_TYPES: FrozenSet[str] = frozenset({
    MarketingType.LIVE_ONLINE,
    MarketingType.BLENDED,
})

SUBSCRIPTION_SIGNUP_URL: str = '/subscription-signup'
SUBSCRIPTION_UPGRADE_URL: str = '/subscription-upgrade'


# =============================================================================
# TIER DEFINITION
# =============================================================================
@dataclass(frozen=True)
class Entitlement:
    """
    Monthly caps granted by a tier.

    Attributes:
        max_courses: Concurrent subscription-covered course enrollments
        group_sessions: Group live sessions per calendar month
        one_to_one_sessions: One-to-one live sessions per calendar month
        minutes: Live minutes per calendar month

    UNLIMITED (-1) on any field means no cap.
    """
    max_courses: int = 0
    group_sessions: int = 0
    one_to_one_sessions: int = 0
    minutes: int = 0

    def to_dict(self) -> dict:
        return {
            'maxCourses': self.max_courses,
            'groupCap': self.group_sessions,
            'oneToOneCap': self.one_to_one_sessions,
            'minutesCap': self.minutes,
        }


# Unknown or missing tiers resolve to this: every cap exhausted
NO_ENTITLEMENT = Entitlement()


@dataclass(frozen=True)
class StudentTier:
    """
    Student subscription tier.

    Attributes:
        name: Tier identifier (e.g., 'PREMIUM')
        display_name: Human-readable name
        rank: Position in the tier hierarchy (0 = satisfies nothing)
        monthly_price: Price charged per month after the trial
        entitlement: Monthly caps
    """
    name: str
    display_name: str
    rank: int
    monthly_price: Decimal
    entitlement: Entitlement = field(default_factory=Entitlement)


@dataclass(frozen=True)
class InstitutionPlan:
    """
    Institution subscription plan.

    Attributes:
        name: Plan identifier (e.g., 'PROFESSIONAL')
        display_name: Human-readable name
        rank: Position in the plan hierarchy
        monthly_price: Monthly billing amount
        annual_price: Annual billing amount
        commission_rate: Platform cut applied to the institution's payments
    """
    name: str
    display_name: str
    rank: int
    monthly_price: Decimal
    annual_price: Decimal
    commission_rate: Decimal


# =============================================================================
# TIER DEFINITIONS
# =============================================================================
STUDENT_TIERS: Dict[str, StudentTier] = {
    # Fallback after an unpaid trial; ranks below every gated course
    'FREE': StudentTier(
        name='FREE',
        display_name='Free',
        rank=0,
        monthly_price=Decimal('0.00'),
        entitlement=Entitlement(max_courses=2, group_sessions=0, one_to_one_sessions=0, minutes=0),
    ),
    'BASIC': StudentTier(
        name='BASIC',
        display_name='Basic',
        rank=1,
        monthly_price=Decimal('12.99'),
        entitlement=Entitlement(max_courses=5, group_sessions=4, one_to_one_sessions=1, minutes=240),
    ),
    'PREMIUM': StudentTier(
        name='PREMIUM',
        display_name='Premium',
        rank=2,
        monthly_price=Decimal('24.99'),
        entitlement=Entitlement(max_courses=15, group_sessions=8, one_to_one_sessions=4, minutes=480),
    ),
    'PRO': StudentTier(
        name='PRO',
        display_name='Pro',
        rank=3,
        monthly_price=Decimal('49.99'),
        entitlement=Entitlement(
            max_courses=UNLIMITED,
            group_sessions=UNLIMITED,
            one_to_one_sessions=8,
            minutes=UNLIMITED,
        ),
    ),
}

INSTITUTION_PLANS: Dict[str, InstitutionPlan] = {
    'STARTER': InstitutionPlan(
        name='STARTER',
        display_name='Starter',
        rank=1,
        monthly_price=Decimal('99.00'),
        annual_price=Decimal('990.00'),
        commission_rate=Decimal('25'),
    ),
    'PROFESSIONAL': InstitutionPlan(
        name='PROFESSIONAL',
        display_name='Professional',
        rank=2,
        monthly_price=Decimal('299.00'),
        annual_price=Decimal('2990.00'),
        commission_rate=Decimal('15'),
    ),
    'ENTERPRISE': InstitutionPlan(
        name='ENTERPRISE',
        display_name='Enterprise',
        rank=3,
        monthly_price=Decimal('799.00'),
        annual_price=Decimal('7990.00'),
        commission_rate=Decimal('10'),
    ),
}

# Applied after an institution trial lapses without payment
FALLBACK_INSTITUTION_PLAN = InstitutionPlan(
    name='DEFAULT',
    display_name='Default',
    rank=0,
    monthly_price=Decimal('0.00'),
    annual_price=Decimal('0.00'),
    commission_rate=DEFAULT_INSTITUTION_COMMISSION_RATE,
)
FALLBACK_STUDENT_TIER: str = 'FREE'


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_student_tier(tier_name: Optional[str]) -> Optional[StudentTier]:
    """
    Look up a student tier by name (case-insensitive).

    Args:
        tier_name: Tier identifier (e.g., 'basic', 'PRO')

    Returns:
        StudentTier or None
    """
    if not tier_name:
        return None
    return STUDENT_TIERS.get(tier_name.strip().upper())


def get_institution_plan(plan_name: Optional[str]) -> Optional[InstitutionPlan]:
    """Look up an institution plan by name (case-insensitive)."""
    if not plan_name:
        return None
    return INSTITUTION_PLANS.get(plan_name.strip().upper())


def get_plan_price(plan: InstitutionPlan, billing_cycle: str) -> Decimal:
    """Price for a billing cycle ('MONTHLY' or 'ANNUAL')."""
    return plan.annual_price if billing_cycle == 'ANNUAL' else plan.monthly_price
