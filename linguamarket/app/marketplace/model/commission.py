"""Instructor and host commission models."""

from datetime import datetime
from decimal import Decimal
from typing import Any

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from linguamarket.common.model import Base, JSONDocument, TimeZone, id_key


class SessionCommission(Base):
    """Commission owed to the leader (instructor or host) of a session"""

    __tablename__ = 'session_commission'

    id: Mapped[id_key] = mapped_column(init=False)
    leader_id: Mapped[int] = mapped_column(sa.Integer, index=True)
    leader_role: Mapped[str] = mapped_column(sa.String(16), comment='INSTRUCTOR / HOST')
    session_type: Mapped[str] = mapped_column(sa.String(32))
    session_id: Mapped[int] = mapped_column(sa.Integer)
    total_revenue: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2))
    # Leader's share (percent), the platform keeps the remainder
    commission_rate: Mapped[Decimal] = mapped_column(sa.Numeric(5, 2))
    commission_amount: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2))
    platform_amount: Mapped[Decimal] = mapped_column(sa.Numeric(10, 2))
    session_price: Mapped[Decimal | None] = mapped_column(sa.Numeric(10, 2), default=None)
    credit_price: Mapped[Decimal | None] = mapped_column(sa.Numeric(10, 2), default=None)
    tier_name: Mapped[str | None] = mapped_column(sa.String(32), default=None)
    status: Mapped[str] = mapped_column(sa.String(16), default='PENDING', index=True)
    metadata_json: Mapped[dict[str, Any]] = mapped_column(JSONDocument, default_factory=dict)

    __table_args__ = (
        sa.UniqueConstraint('session_type', 'session_id', 'leader_id', name='uq_session_commission_leader'),
        {'comment': 'Instructor and host session commissions'},
    )


class LeaderCommissionTier(Base):
    """Time-bounded commission rate for a leader role"""

    __tablename__ = 'leader_commission_tier'

    id: Mapped[id_key] = mapped_column(init=False)
    leader_role: Mapped[str] = mapped_column(sa.String(16), index=True)
    tier_name: Mapped[str] = mapped_column(sa.String(32))
    commission_rate: Mapped[Decimal] = mapped_column(sa.Numeric(5, 2))
    effective_date: Mapped[datetime] = mapped_column(TimeZone)
    end_date: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
