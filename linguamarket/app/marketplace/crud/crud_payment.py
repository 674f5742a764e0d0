"""CRUD operations for payments and institution payouts."""

from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from linguamarket.app.marketplace.model import InstitutionPayout, Payment


class CRUDPayment(CRUDPlus[Payment]):
    """CRUD operations for Payment model."""

    async def get_by_reference(self, db: AsyncSession, provider_reference: str) -> Optional[Payment]:
        """
        Get a payment by its provider reference.

        :param db: Database session
        :param provider_reference: Stripe payment intent id or MANUAL_<ts>
        :return: Payment or None
        """
        return await self.select_model_by_column(db, provider_reference=provider_reference)

    async def get_by_enrollment(self, db: AsyncSession, enrollment_id: int) -> Sequence[Payment]:
        result = await db.execute(
            select(Payment).where(Payment.enrollment_id == enrollment_id).order_by(Payment.id)
        )
        return result.scalars().all()


class CRUDInstitutionPayout(CRUDPlus[InstitutionPayout]):
    """CRUD operations for InstitutionPayout model."""

    async def get_by_payment(self, db: AsyncSession, payment_id: int) -> Sequence[InstitutionPayout]:
        """
        Get payout rows written for a payment, oldest first.

        :param db: Database session
        :param payment_id: Payment ID
        :return: Payout rows
        """
        result = await db.execute(
            select(InstitutionPayout).where(InstitutionPayout.payment_id == payment_id).order_by(InstitutionPayout.id)
        )
        return result.scalars().all()

    async def get_balance(self, db: AsyncSession, institution_id: int) -> Decimal:
        """
        Sum of all payout rows of an institution.

        :param db: Database session
        :param institution_id: Institution ID
        :return: Net payout amount
        """
        result = await db.execute(
            select(func.coalesce(func.sum(InstitutionPayout.amount), 0)).where(
                InstitutionPayout.institution_id == institution_id
            )
        )
        return Decimal(str(result.scalar_one())).quantize(Decimal('0.01'))


# Singleton instances
payment_dao: CRUDPayment = CRUDPayment(Payment)
institution_payout_dao: CRUDInstitutionPayout = CRUDInstitutionPayout(InstitutionPayout)
