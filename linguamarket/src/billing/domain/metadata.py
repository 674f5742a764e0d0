"""
Ledger Metadata

Typed shapes for the JSON metadata stored on payments, payouts and session
commissions. Every shape carries a ``kind`` tag; ``parse_metadata`` rebuilds
the right class from a stored dict.

Decimals are serialized as strings so JSON round trips never lose cents.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Union

from linguamarket.src.billing.shared.exceptions import ValidationError


def _dec(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(str(value))


def _dec_str(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _dt_str(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class CheckoutMetadata:
    """How a payment was settled and the split frozen at that moment."""
    commission_rate: Decimal
    commission_amount: Decimal
    institution_amount: Decimal
    source: str = 'manual'  # manual / webhook
    processed_by: Optional[int] = None
    notes: Optional[str] = None
    booking_id: Optional[int] = None

    kind = 'checkout'

    def to_dict(self) -> dict:
        return {
            'kind': self.kind,
            'commission_rate': _dec_str(self.commission_rate),
            'commission_amount': _dec_str(self.commission_amount),
            'institution_amount': _dec_str(self.institution_amount),
            'source': self.source,
            'processed_by': self.processed_by,
            'notes': self.notes,
            'booking_id': self.booking_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'CheckoutMetadata':
        return cls(
            commission_rate=_dec(data.get('commission_rate')),
            commission_amount=_dec(data.get('commission_amount')),
            institution_amount=_dec(data.get('institution_amount')),
            source=data.get('source', 'manual'),
            processed_by=data.get('processed_by'),
            notes=data.get('notes'),
            booking_id=data.get('booking_id'),
        )


@dataclass
class RefundMetadata:
    """Cumulative refund state of a payment."""
    refund_amount: Decimal
    refund_commission_amount: Decimal
    refund_institution_amount: Decimal
    refunded_at: datetime
    charge_id: Optional[str] = None

    kind = 'refund'

    def to_dict(self) -> dict:
        return {
            'kind': self.kind,
            'refund_amount': _dec_str(self.refund_amount),
            'refund_commission_amount': _dec_str(self.refund_commission_amount),
            'refund_institution_amount': _dec_str(self.refund_institution_amount),
            'refunded_at': _dt_str(self.refunded_at),
            'charge_id': self.charge_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'RefundMetadata':
        return cls(
            refund_amount=_dec(data.get('refund_amount')),
            refund_commission_amount=_dec(data.get('refund_commission_amount')),
            refund_institution_amount=_dec(data.get('refund_institution_amount')),
            refunded_at=_dt(data.get('refunded_at')),
            charge_id=data.get('charge_id'),
        )


@dataclass
class ReviewMetadata:
    """Why a captured charge was held back and what the enrollment expected."""
    reason: str
    expected_amount: Optional[Decimal] = None
    expected_currency: Optional[str] = None
    enrollment_status: Optional[str] = None

    kind = 'review'

    def to_dict(self) -> dict:
        return {
            'kind': self.kind,
            'reason': self.reason,
            'expected_amount': _dec_str(self.expected_amount),
            'expected_currency': self.expected_currency,
            'enrollment_status': self.enrollment_status,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ReviewMetadata':
        return cls(
            reason=data.get('reason'),
            expected_amount=_dec(data.get('expected_amount')),
            expected_currency=data.get('expected_currency'),
            enrollment_status=data.get('enrollment_status'),
        )


@dataclass
class SettlementPayoutMetadata:
    payment_id: int
    payment_method: str

    kind = 'settlement'

    def to_dict(self) -> dict:
        return {'kind': self.kind, 'payment_id': self.payment_id, 'payment_method': self.payment_method}

    @classmethod
    def from_dict(cls, data: dict) -> 'SettlementPayoutMetadata':
        return cls(payment_id=data.get('payment_id'), payment_method=data.get('payment_method'))


@dataclass
class RefundPayoutMetadata:
    payment_id: int
    refund_amount: Decimal

    kind = 'refund_adjustment'

    def to_dict(self) -> dict:
        return {'kind': self.kind, 'payment_id': self.payment_id, 'refund_amount': _dec_str(self.refund_amount)}

    @classmethod
    def from_dict(cls, data: dict) -> 'RefundPayoutMetadata':
        return cls(payment_id=data.get('payment_id'), refund_amount=_dec(data.get('refund_amount')))


@dataclass
class SessionCommissionMetadata:
    participant_count: int
    is_credit_based: bool
    calculated_at: datetime

    kind = 'session_commission'

    def to_dict(self) -> dict:
        return {
            'kind': self.kind,
            'participant_count': self.participant_count,
            'is_credit_based': self.is_credit_based,
            'calculated_at': _dt_str(self.calculated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'SessionCommissionMetadata':
        return cls(
            participant_count=int(data.get('participant_count', 0)),
            is_credit_based=bool(data.get('is_credit_based', False)),
            calculated_at=_dt(data.get('calculated_at')),
        )


LedgerMetadata = Union[
    CheckoutMetadata,
    RefundMetadata,
    ReviewMetadata,
    SettlementPayoutMetadata,
    RefundPayoutMetadata,
    SessionCommissionMetadata,
]

_METADATA_KINDS: Dict[str, type] = {
    cls.kind: cls
    for cls in (
        CheckoutMetadata,
        RefundMetadata,
        ReviewMetadata,
        SettlementPayoutMetadata,
        RefundPayoutMetadata,
        SessionCommissionMetadata,
    )
}


def parse_metadata(data: dict) -> LedgerMetadata:
    """
    Rebuild a typed metadata object from its stored dict.

    Raises:
        ValidationError: If the dict has no known ``kind``
    """
    kind = (data or {}).get('kind')
    metadata_cls = _METADATA_KINDS.get(kind)
    if metadata_cls is None:
        raise ValidationError(f"Unknown metadata kind: {kind!r}", code="INVALID_METADATA", field='kind')
    return metadata_cls.from_dict(data)


def payment_metadata(
    checkout: CheckoutMetadata,
    refund: Optional[RefundMetadata] = None,
    review: Optional[ReviewMetadata] = None,
) -> dict:
    """Document stored on Payment.metadata_json."""
    doc = {'checkout': checkout.to_dict()}
    if refund is not None:
        doc['refund'] = refund.to_dict()
    if review is not None:
        doc['review'] = review.to_dict()
    return doc


def read_payment_metadata(doc: Optional[dict]) -> tuple:
    """(CheckoutMetadata | None, RefundMetadata | None) from Payment.metadata_json."""
    doc = doc or {}
    checkout = parse_metadata(doc['checkout']) if doc.get('checkout') else None
    refund = parse_metadata(doc['refund']) if doc.get('refund') else None
    return checkout, refund


def read_review_metadata(doc: Optional[dict]) -> Optional[ReviewMetadata]:
    """ReviewMetadata of a held payment, None for one applied normally."""
    doc = doc or {}
    return parse_metadata(doc['review']) if doc.get('review') else None
