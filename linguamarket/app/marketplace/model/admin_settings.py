"""Admin payment-approval settings model."""

from typing import Any

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from linguamarket.common.model import Base, JSONDocument

# The table holds a single row with this id
ADMIN_SETTINGS_ID = 1


def _institution_approvable_methods() -> list[str]:
    return ['MANUAL', 'BANK_TRANSFER', 'CASH']


def _admin_only_methods() -> list[str]:
    return ['CREDIT_CARD', 'PAYPAL', 'STRIPE']


class AdminSettings(Base):
    """Platform-wide payment approval policy"""

    __tablename__ = 'admin_settings'

    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, default=ADMIN_SETTINGS_ID)
    allow_institution_payment_approval: Mapped[bool] = mapped_column(default=False)
    show_institution_approval_buttons: Mapped[bool] = mapped_column(default=False)
    default_payment_status: Mapped[str] = mapped_column(sa.String(32), default='PENDING')
    institution_approvable_methods: Mapped[list[Any]] = mapped_column(
        JSONDocument, default_factory=_institution_approvable_methods
    )
    admin_only_methods: Mapped[list[Any]] = mapped_column(JSONDocument, default_factory=_admin_only_methods)
    # Institution ids that may never approve payments themselves
    institution_payment_approval_exemptions: Mapped[list[Any]] = mapped_column(JSONDocument, default_factory=list)
