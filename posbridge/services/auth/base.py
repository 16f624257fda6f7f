"""
POS Authenticator Abstract Base Class

Two credential schemes coexist while integrations migrate from the legacy
tenant-wide key to per-device keys. Each scheme is a strategy implementing
the same ``authenticate`` capability; the chain tries them in a fixed order.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class Principal:
    """
    Identity resolved from a POS API key.

    Attributes:
        tenant_id: Tenant primary key
        tenant_name: Tenant display name
        tenant_slug: Tenant slug used in URLs and request bodies
        scheme: Name of the authenticator that accepted the key
        device_id: Device identity when authenticated with a device key
    """
    tenant_id: int
    tenant_name: str
    tenant_slug: str
    scheme: str
    device_id: Optional[str] = None

    @property
    def is_device(self) -> bool:
        return self.device_id is not None


class BaseAuthenticator(ABC):
    """Abstract base class for POS credential schemes."""

    @property
    @abstractmethod
    def scheme(self) -> str:
        """Return the scheme name (e.g. "device", "tenant")."""
        pass

    @abstractmethod
    async def authenticate(
        self,
        api_key: str,
        tenant_slug: Optional[str] = None,
    ) -> Optional[Principal]:
        """
        Resolve ``api_key`` to a principal.

        Args:
            api_key: Key presented by the POS client
            tenant_slug: Tenant the request names; when given, keys of other
                tenants must not match

        Returns:
            Principal if the key is valid for this scheme, None otherwise
        """
        pass
