"""
Payment Interfaces

Protocol definitions for payment reconciliation services.
"""

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession


class PaymentReconcilerInterface(ABC):
    """Interface for course payment reconciliation."""

    @abstractmethod
    async def create_payment_intent(self, db: AsyncSession, enrollment_id: int):
        """Create or reuse the provider payment intent of a pending enrollment."""
        pass

    @abstractmethod
    async def mark_paid(
        self,
        db: AsyncSession,
        enrollment_id: int,
        payment_method: str,
        processed_by: int,
        actor_role: str,
        notes: Optional[str] = None,
        reference: Optional[str] = None
    ):
        """Settle an enrollment by hand (cash, bank transfer, ...)."""
        pass

    @abstractmethod
    async def handle_payment_succeeded(self, db: AsyncSession, intent: Mapping[str, Any]):
        """Settle an enrollment from a provider success event."""
        pass

    @abstractmethod
    async def handle_payment_failed(self, db: AsyncSession, intent: Mapping[str, Any]):
        """Record a provider failure on an enrollment."""
        pass

    @abstractmethod
    async def handle_refund(self, db: AsyncSession, charge: Mapping[str, Any]):
        """Apply a provider refund to the payment ledger."""
        pass
