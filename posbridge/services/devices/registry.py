"""
POS Device Registry

Tracks the POS terminals of each tenant: identity, API key, active flag and
liveness timestamps. Keys are generated here and returned exactly once; list
views only ever expose a short prefix.
"""

import json
import logging
import re
import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from urllib.parse import urlparse

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from posbridge.core.exceptions import ConflictError, NotFoundError, PersistenceError, ValidationError
from posbridge.database import utcnow
from posbridge.models import PosDevice, PosSyncLog, SyncLogStatus, Tenant

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "pos_"
API_KEY_PREVIEW_LENGTH = 8

_BASE36_DIGITS = string.digits + string.ascii_lowercase
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Z0-9]")


def generate_api_key() -> str:
    """32 random bytes, hex encoded, with the ``pos_`` prefix."""
    return f"{API_KEY_PREFIX}{secrets.token_hex(32)}"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def generate_device_id(device_name: str, now: Optional[datetime] = None) -> str:
    """
    Derive a device id from the device name and the creation time.

    "Front Counter #1" becomes ``POS_FRONT_COUNTER__1_<base36 epoch millis>``.
    """
    now = now or utcnow()
    sanitized = _UNSAFE_NAME_CHARS.sub("_", device_name.upper())
    epoch = datetime(1970, 1, 1)
    millis = int((now - epoch).total_seconds() * 1000)
    return f"POS_{sanitized}_{_to_base36(millis)}"


def api_key_preview(api_key: str) -> str:
    return api_key[:API_KEY_PREVIEW_LENGTH]


@dataclass
class GeneratedDevice:
    """A new device together with the only copy of its plaintext key."""
    device: PosDevice
    tenant: Tenant
    api_key: str


class DeviceRegistry:
    """Data access for POS devices."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_tenant_by_slug(self, tenant_slug: str) -> Tenant:
        result = await self.db.execute(select(Tenant).where(Tenant.slug == tenant_slug))
        tenant = result.scalar_one_or_none()
        if tenant is None:
            raise NotFoundError("Tenant not found", {"tenant": tenant_slug})
        return tenant

    async def generate_device(self, tenant_slug: str, device_name: str) -> GeneratedDevice:
        """
        Register a new device for a tenant.

        A clash on ``device_id`` or ``api_key`` is reported as a persistence
        failure and not retried.

        Raises:
            NotFoundError: unknown tenant
            PersistenceError: unique constraint violation
        """
        tenant = await self.get_tenant_by_slug(tenant_slug)

        now = utcnow()
        api_key = generate_api_key()
        device = PosDevice(
            tenant_id=tenant.id,
            device_id=generate_device_id(device_name, now),
            device_name=device_name,
            api_key=api_key,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        self.db.add(device)

        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(f"Device id or key collision for tenant {tenant_slug}: {e}")
            raise PersistenceError(
                "Failed to generate API key: unique constraint violated",
                {"code": "DUPLICATE_KEY"},
            ) from e

        await self.db.refresh(device)
        logger.info(f"POS device created: {device.device_id} for tenant {tenant.name}")
        return GeneratedDevice(device=device, tenant=tenant, api_key=api_key)

    async def authenticate(
        self,
        api_key: str,
        tenant_slug: Optional[str] = None,
    ) -> Optional[PosDevice]:
        """
        Resolve an active device by exact key match.

        On success the device's ``last_seen_at`` and ``last_heartbeat_at`` are
        set to now and committed, independent of what the caller does next.
        """
        if not api_key:
            return None

        query = (
            select(PosDevice)
            .join(Tenant, PosDevice.tenant_id == Tenant.id)
            .where(PosDevice.api_key == api_key, PosDevice.is_active.is_(True))
        )
        if tenant_slug is not None:
            query = query.where(Tenant.slug == tenant_slug)

        result = await self.db.execute(query)
        device = result.scalar_one_or_none()
        if device is None:
            return None

        await self.touch(device)
        return device

    async def touch(self, device: PosDevice) -> None:
        """Record a heartbeat for ``device``."""
        now = utcnow()
        device.last_seen_at = now
        device.last_heartbeat_at = now
        await self.db.commit()

    async def record_heartbeat(self, device_id: str) -> bool:
        """Heartbeat by device id; False when the device is unknown or inactive."""
        now = utcnow()
        result = await self.db.execute(
            update(PosDevice)
            .where(PosDevice.device_id == device_id, PosDevice.is_active.is_(True))
            .values(last_seen_at=now, last_heartbeat_at=now)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def set_active(self, device_id: str, is_active: bool) -> None:
        """
        Enable or disable a device without touching its history.

        Raises:
            NotFoundError: no device with that id
        """
        result = await self.db.execute(
            update(PosDevice)
            .where(PosDevice.device_id == device_id)
            .values(is_active=is_active, updated_at=utcnow())
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise NotFoundError("Device not found", {"device_id": device_id})

        await self.db.commit()
        logger.info(f"Device {device_id} {'activated' if is_active else 'deactivated'}")

    async def deactivate(self, device_id: str) -> None:
        """Soft delete."""
        await self.set_active(device_id, False)

    async def list_devices(self, tenant_slug: str) -> tuple[Tenant, list[PosDevice]]:
        tenant = await self.get_tenant_by_slug(tenant_slug)
        result = await self.db.execute(
            select(PosDevice)
            .where(PosDevice.tenant_id == tenant.id)
            .order_by(PosDevice.created_at.desc(), PosDevice.id.desc())
        )
        return tenant, list(result.scalars().all())

    # =========================================================================
    # WEBHOOK CONFIGURATION
    # =========================================================================

    async def set_webhook_url(self, tenant_slug: str, webhook_url: Optional[str]) -> Tenant:
        """
        Set the tenant's push target; None removes it, which makes delivery
        fall back to broadcasting.

        Raises:
            ValidationError: not an absolute http(s) URL
            NotFoundError: unknown tenant
        """
        if webhook_url is not None:
            parsed = urlparse(webhook_url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ValidationError("Invalid webhook URL format", {"webhook_url": webhook_url})

        tenant = await self.get_tenant_by_slug(tenant_slug)
        tenant.pos_webhook_url = webhook_url
        tenant.updated_at = utcnow()
        await self.db.commit()

        logger.info(
            f"POS webhook for tenant {tenant_slug} "
            + (f"set to {webhook_url}" if webhook_url else "removed")
        )
        return tenant

    # =========================================================================
    # LEGACY TENANT KEY
    # =========================================================================

    async def get_tenant(self, tenant_id: int) -> Tenant:
        result = await self.db.execute(select(Tenant).where(Tenant.id == tenant_id))
        tenant = result.scalar_one_or_none()
        if tenant is None:
            raise NotFoundError("Tenant not found", {"tenant_id": tenant_id})
        return tenant

    async def issue_tenant_key(
        self,
        tenant_id: int,
        regenerate: bool = False,
        description: Optional[str] = None,
    ) -> tuple[Tenant, str]:
        """
        Create (or replace, with ``regenerate``) the tenant-wide POS key.

        Raises:
            NotFoundError: unknown tenant
            ConflictError: a key exists and ``regenerate`` is false
            PersistenceError: unique constraint violation
        """
        tenant = await self.get_tenant(tenant_id)
        if tenant.pos_api_key and not regenerate:
            raise ConflictError(
                "POS API key already exists for this tenant",
                {"message": "Use regenerate=true to create a new key", "current_key_exists": True},
            )

        api_key = generate_api_key()
        now = utcnow()
        tenant.pos_api_key = api_key
        tenant.updated_at = now
        self.db.add(PosSyncLog(
            tenant_id=tenant.id,
            event_type="pos_api_key_generated",
            event_data=json.dumps({
                "tenant_id": tenant.id,
                "tenant_slug": tenant.slug,
                "regenerated": regenerate,
                "description": description,
                "generated_at": now.isoformat(),
            }),
            status=SyncLogStatus.SUCCESS,
            created_at=now,
        ))

        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(f"Tenant key collision for tenant {tenant_id}: {e}")
            raise PersistenceError(
                "Failed to generate unique API key. Please try again.",
                {"code": "DUPLICATE_KEY"},
            ) from e

        logger.info(f"POS API key {'regenerated' if regenerate else 'generated'} for tenant {tenant.slug}")
        return tenant, api_key
