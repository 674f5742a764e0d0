"""
Commission Calculator

Pure revenue-split arithmetic. Two rate conventions live side by side and
are deliberately named apart:

- Institution payments: the rate is the PLATFORM's cut
  (``institution_split(amount, platform_rate)``).
- Instructor/host sessions: the rate is the LEADER's share, the platform
  keeps the rest (``leader_split(revenue, leader_rate)``).

In both cases ``commission_amount = total_revenue * rate / 100`` rounded
half-up to cents and ``remainder_amount = total_revenue - commission_amount``,
so the two parts always add back to the total exactly.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from linguamarket.src.billing.shared.config import (
    CONVERSATION_CREDIT_PRICE,
    CREDIT_TO_CURRENCY,
    SessionType,
    VIDEO_SESSION_CREDIT_PRICE,
)
from linguamarket.src.billing.shared.exceptions import ValidationError
from linguamarket.src.billing.shared.money import Number, to_money

logger = logging.getLogger(__name__)

HUNDRED = Decimal('100')


@dataclass(frozen=True)
class CommissionSplit:
    """
    Result of splitting revenue at a rate.

    Attributes:
        total_revenue: Amount being split
        commission_amount: total_revenue * rate / 100 (cents, half-up)
        remainder_amount: total_revenue - commission_amount
        commission_rate: Rate applied (percent)
    """
    total_revenue: Decimal
    commission_amount: Decimal
    remainder_amount: Decimal
    commission_rate: Decimal

    def to_dict(self) -> dict:
        return {
            'totalRevenue': float(self.total_revenue),
            'commissionAmount': float(self.commission_amount),
            'remainderAmount': float(self.remainder_amount),
            'commissionRate': float(self.commission_rate),
        }


def _validate_rate(rate: Number) -> Decimal:
    rate = Decimal(str(rate))
    if rate < 0 or rate > HUNDRED:
        raise ValidationError(
            f"Commission rate must be between 0 and 100, got {rate}",
            code="INVALID_COMMISSION_RATE",
            field='commission_rate'
        )
    return rate


def _validate_amount(amount: Number, field: str) -> Decimal:
    amount = to_money(amount)
    if amount < 0:
        raise ValidationError(f"{field} must not be negative", code="NEGATIVE_AMOUNT", field=field)
    return amount


def split_revenue(total_revenue: Number, rate: Number) -> CommissionSplit:
    """
    Split ``total_revenue`` at ``rate`` percent.

    Raises:
        ValidationError: Rate outside 0-100 or negative revenue
    """
    rate = _validate_rate(rate)
    total = _validate_amount(total_revenue, 'total_revenue')
    commission = to_money(total * rate / HUNDRED)
    return CommissionSplit(
        total_revenue=total,
        commission_amount=commission,
        remainder_amount=total - commission,
        commission_rate=rate,
    )


def institution_split(amount: Number, platform_rate: Number) -> CommissionSplit:
    """
    Split a course payment between platform and institution.

    ``commission_amount`` is the platform's cut, ``remainder_amount`` the
    institution's payout.
    """
    return split_revenue(amount, platform_rate)


def leader_split(revenue: Number, leader_rate: Number) -> CommissionSplit:
    """
    Split session revenue between its leader and the platform.

    ``commission_amount`` is the instructor's or host's share,
    ``remainder_amount`` what the platform keeps.
    """
    return split_revenue(revenue, leader_rate)


def refund_split(payment_amount: Number, payment_commission: Number, refund_amount: Number) -> CommissionSplit:
    """
    Split a refund using the original payment's frozen proportion.

    The institution's current rate is never consulted: the refunded
    commission is ``refund_amount * payment_commission / payment_amount``.

    Args:
        payment_amount: Original payment amount
        payment_commission: Commission frozen on the original payment
        refund_amount: Amount refunded now

    Returns:
        CommissionSplit where commission_amount is the platform's refunded
        cut and remainder_amount the institution's refunded share
    """
    payment_amount = _validate_amount(payment_amount, 'payment_amount')
    payment_commission = _validate_amount(payment_commission, 'payment_commission')
    refund_amount = _validate_amount(refund_amount, 'refund_amount')
    if refund_amount > payment_amount:
        raise ValidationError(
            f"Refund {refund_amount} exceeds payment {payment_amount}",
            code="REFUND_EXCEEDS_PAYMENT",
            field='refund_amount'
        )
    if payment_amount == 0:
        return CommissionSplit(refund_amount, Decimal('0.00'), refund_amount, Decimal('0'))

    refunded_commission = to_money(refund_amount * payment_commission / payment_amount)
    return CommissionSplit(
        total_revenue=refund_amount,
        commission_amount=refunded_commission,
        remainder_amount=refund_amount - refunded_commission,
        commission_rate=payment_commission * HUNDRED / payment_amount,
    )


def default_credit_price(session_type: str) -> Decimal:
    """Default credit price per participant for a session type."""
    if session_type == SessionType.LIVE_CONVERSATION:
        return CONVERSATION_CREDIT_PRICE
    return VIDEO_SESSION_CREDIT_PRICE


def session_revenue(
    is_credit_based: bool,
    count: int,
    price: Optional[Number] = None,
    credit_price: Optional[Number] = None,
    session_type: str = SessionType.VIDEO_SESSION,
) -> Decimal:
    """
    Total revenue of a live session.

    Credit-based: ``count * credit_price`` (1 credit = $1).
    Price-based: ``price * count``, where count is attendance for video
    sessions and confirmed bookings for conversations.

    Raises:
        ValidationError: Negative count or price
    """
    if count < 0:
        raise ValidationError("Participant count must not be negative", code="NEGATIVE_COUNT", field='count')
    if is_credit_based:
        credits = Decimal(str(credit_price)) if credit_price is not None else default_credit_price(session_type)
        credits = _validate_amount(credits, 'credit_price')
        return to_money(credits * count * CREDIT_TO_CURRENCY)
    unit_price = _validate_amount(price or 0, 'price')
    return to_money(unit_price * count)


class CommissionCalculator:
    """
    Facade over the split functions for callers holding a session record.

    Usage:
        calculator = CommissionCalculator()
        split = calculator.calculate_session_commission(
            session_type=SessionType.VIDEO_SESSION,
            is_credit_based=False,
            price=Decimal('20'),
            count=5,
            leader_rate=Decimal('70'),
        )
        # split.commission_amount == Decimal('70.00')
    """

    def calculate_session_commission(
        self,
        session_type: str,
        is_credit_based: bool,
        count: int,
        leader_rate: Number,
        price: Optional[Number] = None,
        credit_price: Optional[Number] = None,
    ) -> CommissionSplit:
        revenue = session_revenue(
            is_credit_based=is_credit_based,
            count=count,
            price=price,
            credit_price=credit_price,
            session_type=session_type,
        )
        split = leader_split(revenue, leader_rate)
        logger.debug(
            f"[COMMISSION] {session_type} revenue={revenue} leader_rate={split.commission_rate} "
            f"leader={split.commission_amount} platform={split.remainder_amount}"
        )
        return split

    def calculate_institution_commission(self, amount: Number, platform_rate: Number) -> CommissionSplit:
        return institution_split(amount, platform_rate)

    def calculate_refund_commission(
        self, payment_amount: Number, payment_commission: Number, refund_amount: Number
    ) -> CommissionSplit:
        return refund_split(payment_amount, payment_commission, refund_amount)


commission_calculator = CommissionCalculator()
