"""
Tests for the authenticator chain and bearer helpers.
"""

import pytest

from posbridge.core.exceptions import AuthenticationError
from posbridge.services.auth import (
    extract_bearer,
    get_authenticator_chain,
    verify_admin_token,
)
from tests.conftest import TENANT_KEY


class TestAuthenticatorChain:

    async def test_device_key(self, db, tenant, make_device):
        device = await make_device(tenant)

        principal = await get_authenticator_chain(db).authenticate(device.api_key, "kitchen")

        assert principal.scheme == "device"
        assert principal.device_id == device.device_id
        assert principal.is_device
        assert principal.tenant_slug == "kitchen"
        assert principal.tenant_name == "Kitchen Bistro"

    async def test_legacy_tenant_key(self, db, tenant):
        principal = await get_authenticator_chain(db).authenticate(TENANT_KEY, "kitchen")

        assert principal.scheme == "tenant"
        assert principal.device_id is None
        assert principal.tenant_id == tenant.id

    async def test_tenant_slug_is_optional(self, db, tenant):
        principal = await get_authenticator_chain(db).resolve(TENANT_KEY)

        assert principal is not None
        assert principal.tenant_slug == "kitchen"

    async def test_device_scheme_is_tried_first(self, db, tenant, make_device):
        device = await make_device(tenant)
        tenant.pos_api_key = device.api_key
        await db.commit()

        principal = await get_authenticator_chain(db).authenticate(device.api_key, "kitchen")

        assert principal.scheme == "device"

    async def test_key_of_another_tenant(self, db, tenant, other_tenant, make_device):
        device = await make_device(tenant)
        chain = get_authenticator_chain(db)

        with pytest.raises(AuthenticationError, match="Invalid tenant or API key"):
            await chain.authenticate(device.api_key, "harbor")
        with pytest.raises(AuthenticationError, match="Invalid tenant or API key"):
            await chain.authenticate(TENANT_KEY, "harbor")

    async def test_unknown_key(self, db, tenant):
        with pytest.raises(AuthenticationError, match="Invalid tenant or API key"):
            await get_authenticator_chain(db).authenticate("pos_nope", "kitchen")

    async def test_missing_key(self, db, tenant):
        chain = get_authenticator_chain(db)

        assert await chain.resolve(None, "kitchen") is None
        with pytest.raises(AuthenticationError, match="Missing or invalid authorization header"):
            await chain.authenticate("", "kitchen")


class TestBearerHelpers:

    @pytest.mark.parametrize("header, expected", [
        ("Bearer abc123", "abc123"),
        ("Bearer   spaced  ", "spaced"),
        ("Basic abc123", None),
        ("Bearer ", None),
        (None, None),
    ])
    def test_extract_bearer(self, header, expected):
        assert extract_bearer(header) == expected

    def test_admin_token_accepted(self):
        verify_admin_token("Bearer test-admin-token")

    @pytest.mark.parametrize("header", [None, "Bearer wrong", "test-admin-token"])
    def test_admin_token_rejected(self, header):
        with pytest.raises(AuthenticationError, match="Admin access required"):
            verify_admin_token(header)
