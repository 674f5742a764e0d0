"""CRUD operations for student subscriptions and billing records."""

from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from linguamarket.app.marketplace.model import StudentSubscription, SubscriptionBillingRecord


class CRUDStudentSubscription(CRUDPlus[StudentSubscription]):
    """CRUD operations for StudentSubscription model."""

    async def get_by_student(self, db: AsyncSession, student_id: int) -> Optional[StudentSubscription]:
        """
        Get the subscription row of a student.

        :param db: Database session
        :param student_id: Student ID
        :return: Subscription or None
        """
        return await self.select_model_by_column(db, student_id=student_id)

    async def get_by_statuses(self, db: AsyncSession, statuses: Iterable[str]) -> Sequence[StudentSubscription]:
        result = await db.execute(select(StudentSubscription).where(StudentSubscription.status.in_(list(statuses))))
        return result.scalars().all()


class CRUDSubscriptionBillingRecord(CRUDPlus[SubscriptionBillingRecord]):
    """CRUD operations for SubscriptionBillingRecord model."""

    async def get_attempts(
        self, db: AsyncSession, subscription_id: int, subscriber_type: str
    ) -> Sequence[SubscriptionBillingRecord]:
        """
        Get billing records of a subscription, oldest attempt first.

        :param db: Database session
        :param subscription_id: Subscription ID
        :param subscriber_type: STUDENT or INSTITUTION
        :return: Billing records
        """
        result = await db.execute(
            select(SubscriptionBillingRecord)
            .where(
                SubscriptionBillingRecord.subscription_id == subscription_id,
                SubscriptionBillingRecord.subscriber_type == subscriber_type,
            )
            .order_by(SubscriptionBillingRecord.attempt_number, SubscriptionBillingRecord.id)
        )
        return result.scalars().all()

    async def get_by_payment_intent(self, db: AsyncSession, payment_intent_id: str) -> Optional[SubscriptionBillingRecord]:
        return await self.select_model_by_column(db, payment_intent_id=payment_intent_id)


# Singleton instances
student_subscription_dao: CRUDStudentSubscription = CRUDStudentSubscription(StudentSubscription)
billing_record_dao: CRUDSubscriptionBillingRecord = CRUDSubscriptionBillingRecord(SubscriptionBillingRecord)
