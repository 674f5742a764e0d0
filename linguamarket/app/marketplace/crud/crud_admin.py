"""CRUD operations for admin settings and webhook events."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy_crud_plus import CRUDPlus

from linguamarket.app.marketplace.model import AdminSettings, WebhookEvent
from linguamarket.app.marketplace.model.admin_settings import ADMIN_SETTINGS_ID


class CRUDAdminSettings(CRUDPlus[AdminSettings]):
    """CRUD operations for the AdminSettings singleton row."""

    async def get_current(self, db: AsyncSession) -> Optional[AdminSettings]:
        return await self.select_model(db, ADMIN_SETTINGS_ID)

    async def get_or_create(self, db: AsyncSession) -> AdminSettings:
        """
        Get the settings row, adding a default one to the session if missing.

        The caller commits.

        :param db: Database session
        :return: Settings row
        """
        current = await self.get_current(db)
        if current is None:
            current = AdminSettings()
            db.add(current)
            await db.flush()
        return current


class CRUDWebhookEvent(CRUDPlus[WebhookEvent]):
    """CRUD operations for WebhookEvent model."""

    async def get(self, db: AsyncSession, event_id: str) -> Optional[WebhookEvent]:
        return await self.select_model(db, event_id)


# Singleton instances
admin_settings_dao: CRUDAdminSettings = CRUDAdminSettings(AdminSettings)
webhook_event_dao: CRUDWebhookEvent = CRUDWebhookEvent(WebhookEvent)
