"""Payment ledger and institution payout models."""

from datetime import datetime
from decimal import Decimal
from typing import Any

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from linguamarket.common.model import Base, JSONDocument, TimeZone, id_key


class Payment(Base):
    """Settled course payment.

    Monetary columns are frozen at creation; only status and refund columns
    move afterwards. amount == commission_amount + institution_amount.
    """

    __tablename__ = 'payment'

    id: Mapped[id_key] = mapped_column(init=False)
    enrollment_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey('student_course_enrollment.id', ondelete='CASCADE'), index=True
    )
    student_id: Mapped[int] = mapped_column(sa.Integer, index=True)
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2))
    commission_rate: Mapped[Decimal] = mapped_column(sa.Numeric(5, 2), comment='Platform cut (percent)')
    commission_amount: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2))
    institution_amount: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2))
    payment_method: Mapped[str] = mapped_column(sa.String(32))
    # Stripe payment intent id or MANUAL_<ts>
    provider_reference: Mapped[str] = mapped_column(sa.String(128), unique=True, index=True)
    institution_id: Mapped[int | None] = mapped_column(
        sa.Integer, sa.ForeignKey('institution.id', ondelete='SET NULL'), default=None, index=True
    )
    currency: Mapped[str] = mapped_column(sa.String(8), default='usd')
    status: Mapped[str] = mapped_column(sa.String(32), default='COMPLETED')
    refund_amount: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2), default=Decimal('0.00'))
    refunded_at: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    # {"checkout": {...}, "refund": {...}}, see billing.domain.metadata
    metadata_json: Mapped[dict[str, Any]] = mapped_column(JSONDocument, default_factory=dict)


class InstitutionPayout(Base):
    """Append-only payout ledger; refunds add negative rows"""

    __tablename__ = 'institution_payout'

    id: Mapped[id_key] = mapped_column(init=False)
    institution_id: Mapped[int] = mapped_column(
        sa.Integer, sa.ForeignKey('institution.id', ondelete='CASCADE'), index=True
    )
    amount: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2))
    enrollment_id: Mapped[int | None] = mapped_column(sa.Integer, default=None, index=True)
    payment_id: Mapped[int | None] = mapped_column(
        sa.Integer, sa.ForeignKey('payment.id', ondelete='SET NULL'), default=None, index=True
    )
    status: Mapped[str] = mapped_column(sa.String(32), default='PENDING')
    metadata_json: Mapped[dict[str, Any]] = mapped_column(JSONDocument, default_factory=dict)
