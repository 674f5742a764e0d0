"""
Admin Settings Cache

Read-through cache for the platform's payment approval policy.

Two layers:
- a per-process snapshot kept for ``ttl_seconds``
- a shared Redis copy, read before the database when a snapshot expires

``invalidate()`` drops the calling process's snapshot and the shared copy.
Other processes keep their own snapshot until it expires, so an update is
seen everywhere within ``ttl_seconds``.

Redis is optional. When it is unavailable the cache degrades to the local
snapshot plus the database loader.

Usage:
    from linguamarket.src.billing.shared.settings_cache import admin_settings_cache

    policy = await admin_settings_cache.get(db)
    if policy.can_institution_approve(institution_id, 'CASH'):
        ...
"""

import json
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from linguamarket.core.conf import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentApprovalSettings:
    """
    Snapshot of the admin payment approval policy.

    Attributes:
        allow_institution_payment_approval: Institutions may mark their own enrollments paid
        show_institution_approval_buttons: UI hint for institution dashboards
        default_payment_status: Payment status new manual payments start in
        institution_approvable_methods: Methods an institution may approve
        admin_only_methods: Methods only an admin may approve
        institution_payment_approval_exemptions: Institution ids never allowed to approve
    """
    allow_institution_payment_approval: bool = False
    show_institution_approval_buttons: bool = False
    default_payment_status: str = 'PENDING'
    institution_approvable_methods: Tuple[str, ...] = ('MANUAL', 'BANK_TRANSFER', 'CASH')
    admin_only_methods: Tuple[str, ...] = ('CREDIT_CARD', 'PAYPAL', 'STRIPE')
    institution_payment_approval_exemptions: Tuple[int, ...] = ()

    def can_institution_approve(self, institution_id: Optional[int], payment_method: str) -> bool:
        """Whether an institution may approve a payment made with ``payment_method``."""
        if not self.allow_institution_payment_approval or institution_id is None:
            return False
        if institution_id in self.institution_payment_approval_exemptions:
            return False
        method = (payment_method or '').upper()
        if method in self.admin_only_methods:
            return False
        return method in self.institution_approvable_methods

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PaymentApprovalSettings':
        defaults = cls()
        return cls(
            allow_institution_payment_approval=bool(
                data.get('allow_institution_payment_approval', defaults.allow_institution_payment_approval)
            ),
            show_institution_approval_buttons=bool(
                data.get('show_institution_approval_buttons', defaults.show_institution_approval_buttons)
            ),
            default_payment_status=data.get('default_payment_status') or defaults.default_payment_status,
            institution_approvable_methods=tuple(
                str(m).upper() for m in data.get('institution_approvable_methods', defaults.institution_approvable_methods)
            ),
            admin_only_methods=tuple(
                str(m).upper() for m in data.get('admin_only_methods', defaults.admin_only_methods)
            ),
            institution_payment_approval_exemptions=tuple(
                int(i) for i in data.get('institution_payment_approval_exemptions') or ()
            ),
        )

    @classmethod
    def from_model(cls, row) -> 'PaymentApprovalSettings':
        return cls.from_dict({
            'allow_institution_payment_approval': row.allow_institution_payment_approval,
            'show_institution_approval_buttons': row.show_institution_approval_buttons,
            'default_payment_status': row.default_payment_status,
            'institution_approvable_methods': row.institution_approvable_methods or [],
            'admin_only_methods': row.admin_only_methods or [],
            'institution_payment_approval_exemptions': row.institution_payment_approval_exemptions or [],
        })

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ('institution_approvable_methods', 'admin_only_methods', 'institution_payment_approval_exemptions'):
            data[key] = list(data[key])
        return data


SettingsLoader = Callable[[AsyncSession], Awaitable[PaymentApprovalSettings]]


async def load_settings_from_db(db: AsyncSession) -> PaymentApprovalSettings:
    """Read the settings row; a missing row yields the defaults."""
    from linguamarket.app.marketplace.crud.crud_admin import admin_settings_dao

    row = await admin_settings_dao.get_current(db)
    if row is None:
        return PaymentApprovalSettings()
    return PaymentApprovalSettings.from_model(row)


class AdminSettingsCache:
    """
    Injectable read-through cache for PaymentApprovalSettings.

    Args:
        loader: Coroutine reading the settings from the database
        ttl_seconds: Lifetime of the local snapshot and the Redis copy
        redis: Optional ``redis.asyncio`` client for the shared copy
        redis_key: Key of the shared copy
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        loader: SettingsLoader = load_settings_from_db,
        ttl_seconds: Optional[int] = None,
        redis: Any = None,
        redis_key: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = settings.ADMIN_SETTINGS_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._redis = redis
        self._redis_key = redis_key or settings.ADMIN_SETTINGS_REDIS_KEY
        self._clock = clock
        self._snapshot: Optional[PaymentApprovalSettings] = None
        self._expires_at: float = 0.0

    async def get(self, db: AsyncSession) -> PaymentApprovalSettings:
        """
        Current settings: local snapshot, then Redis, then the database.

        Args:
            db: Database session used on a full miss
        """
        now = self._clock()
        if self._snapshot is not None and now < self._expires_at:
            return self._snapshot

        shared = await self._read_shared()
        if shared is None:
            shared = await self._loader(db)
            await self._write_shared(shared)
            logger.debug("[SETTINGS] Loaded payment approval settings from database")

        self._snapshot = shared
        self._expires_at = now + self._ttl
        return shared

    async def invalidate(self) -> None:
        """
        Drop this process's snapshot and the shared copy.

        Other instances keep serving their snapshot until its TTL runs out,
        then reload from the shared copy or the database.
        """
        self._snapshot = None
        self._expires_at = 0.0
        if self._redis is None:
            return
        try:
            await self._redis.delete(self._redis_key)
            logger.info("[SETTINGS] Invalidated shared payment approval settings")
        except Exception as e:
            logger.warning(f"[SETTINGS] Failed to invalidate shared settings: {e}")

    async def _read_shared(self) -> Optional[PaymentApprovalSettings]:
        if self._redis is None:
            return None
        try:
            cached = await self._redis.get(self._redis_key)
        except Exception as e:
            logger.warning(f"[SETTINGS] Failed to read shared settings: {e}")
            return None
        if not cached:
            return None
        return PaymentApprovalSettings.from_dict(json.loads(cached))

    async def _write_shared(self, value: PaymentApprovalSettings) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.setex(self._redis_key, max(self._ttl, 1), json.dumps(value.to_dict()))
        except Exception as e:
            logger.warning(f"[SETTINGS] Failed to write shared settings: {e}")


def _build_default_cache() -> AdminSettingsCache:
    from linguamarket.database.redis import redis_client

    return AdminSettingsCache(redis=redis_client)


admin_settings_cache: AdminSettingsCache = _build_default_cache()


def get_admin_settings_cache() -> AdminSettingsCache:
    """FastAPI dependency returning the process-wide cache."""
    return admin_settings_cache
