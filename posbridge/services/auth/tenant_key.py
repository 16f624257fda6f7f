"""
Tenant-level API key authentication (legacy scheme).

Kept for integrations that predate per-device keys.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from posbridge.models import Tenant
from posbridge.services.auth.base import BaseAuthenticator, Principal

logger = logging.getLogger(__name__)


class TenantKeyAuthenticator(BaseAuthenticator):

    def __init__(self, db: AsyncSession):
        self.db = db

    @property
    def scheme(self) -> str:
        return "tenant"

    async def authenticate(
        self,
        api_key: str,
        tenant_slug: Optional[str] = None,
    ) -> Optional[Principal]:
        if not api_key:
            return None

        query = select(Tenant).where(Tenant.pos_api_key == api_key)
        if tenant_slug is not None:
            query = query.where(Tenant.slug == tenant_slug)

        result = await self.db.execute(query)
        tenant = result.scalar_one_or_none()
        if tenant is None:
            return None

        logger.info(f"Tenant authenticated (legacy): {tenant.name}")
        return Principal(
            tenant_id=tenant.id,
            tenant_name=tenant.name,
            tenant_slug=tenant.slug,
            scheme=self.scheme,
        )
