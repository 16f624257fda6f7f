"""
POS Authentication

Provides the ordered authenticator chain used by every POS-facing endpoint
plus the bearer helpers shared with the admin endpoints.

Usage:
    from posbridge.services.auth import get_authenticator_chain

    chain = get_authenticator_chain(db)
    principal = await chain.authenticate(api_key, tenant_slug="kitchen")

Order:
    1. DeviceKeyAuthenticator (per-device keys)
    2. TenantKeyAuthenticator (legacy tenant-wide key)
"""

import logging
import secrets
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from posbridge.core.config import get_settings
from posbridge.core.exceptions import AuthenticationError
from posbridge.services.auth.base import BaseAuthenticator, Principal
from posbridge.services.auth.device import DeviceKeyAuthenticator
from posbridge.services.auth.tenant_key import TenantKeyAuthenticator

logger = logging.getLogger(__name__)


class AuthenticatorChain:
    """Tries each authenticator in order; the first principal wins."""

    def __init__(self, authenticators: Sequence[BaseAuthenticator]):
        self.authenticators = list(authenticators)

    async def resolve(
        self,
        api_key: Optional[str],
        tenant_slug: Optional[str] = None,
    ) -> Optional[Principal]:
        if not api_key:
            return None
        for authenticator in self.authenticators:
            principal = await authenticator.authenticate(api_key, tenant_slug)
            if principal is None:
                continue
            if tenant_slug is not None and principal.tenant_slug != tenant_slug:
                logger.warning(
                    f"{authenticator.scheme} key resolved to tenant "
                    f"{principal.tenant_slug}, request named {tenant_slug}"
                )
                return None
            return principal
        return None

    async def authenticate(
        self,
        api_key: Optional[str],
        tenant_slug: Optional[str] = None,
    ) -> Principal:
        """
        Like ``resolve`` but raises instead of returning None.

        Raises:
            AuthenticationError: no key, or no scheme accepted it for the tenant
        """
        if not api_key:
            raise AuthenticationError("Missing or invalid authorization header")

        principal = await self.resolve(api_key, tenant_slug)
        if principal is None:
            raise AuthenticationError("Invalid tenant or API key")
        return principal


def get_authenticator_chain(db: AsyncSession) -> AuthenticatorChain:
    """Build the chain for a request-scoped session."""
    return AuthenticatorChain([
        DeviceKeyAuthenticator(db),
        TenantKeyAuthenticator(db),
    ])


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    """Return the token of an ``Authorization: Bearer <token>`` header."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


def verify_admin_token(authorization: Optional[str]) -> None:
    """
    Check the admin bearer token.

    Raises:
        AuthenticationError: header missing, token not configured or wrong
    """
    token = extract_bearer(authorization)
    if token is None:
        raise AuthenticationError("Unauthorized - Admin access required")

    expected = get_settings().admin_api_token
    if not expected or not secrets.compare_digest(token, expected):
        raise AuthenticationError("Unauthorized - Admin access required")


__all__ = [
    "AuthenticatorChain",
    "BaseAuthenticator",
    "DeviceKeyAuthenticator",
    "Principal",
    "TenantKeyAuthenticator",
    "extract_bearer",
    "get_authenticator_chain",
    "verify_admin_token",
]
