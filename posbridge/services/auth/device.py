"""
Device-level API key authentication (current scheme).
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from posbridge.models import Tenant
from posbridge.services.auth.base import BaseAuthenticator, Principal
from posbridge.services.devices import DeviceRegistry

logger = logging.getLogger(__name__)


class DeviceKeyAuthenticator(BaseAuthenticator):
    """Matches an active device key; a successful match counts as a heartbeat."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.registry = DeviceRegistry(db)

    @property
    def scheme(self) -> str:
        return "device"

    async def authenticate(
        self,
        api_key: str,
        tenant_slug: Optional[str] = None,
    ) -> Optional[Principal]:
        device = await self.registry.authenticate(api_key, tenant_slug)
        if device is None:
            return None

        result = await self.db.execute(select(Tenant).where(Tenant.id == device.tenant_id))
        tenant = result.scalar_one()

        logger.info(f"Device authenticated: {device.device_id}")
        return Principal(
            tenant_id=tenant.id,
            tenant_name=tenant.name,
            tenant_slug=tenant.slug,
            scheme=self.scheme,
            device_id=device.device_id,
        )
