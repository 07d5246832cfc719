"""Tests for token handling and permission resolution."""

from datetime import timedelta

import pytest
from fastapi import HTTPException

from carebase.auth.deps import get_current_actor, require_permission
from carebase.auth.jwt import create_access_token, decode_token
from carebase.auth.permissions import permission_for_status, resolve_permissions
from carebase.tenancy import validate_schema_name


@pytest.mark.auth
class TestTokens:
    def test_round_trip(self):
        token = create_access_token("user-1", "carer", ["care_plan.read"], tenant_schema="tenant_abc123")
        payload = decode_token(token)
        assert payload["sub"] == "user-1"
        assert payload["type"] == "access"
        assert payload["tenant_schema"] == "tenant_abc123"

    def test_expired_token_decodes_empty(self):
        token = create_access_token("user-1", "carer", [], expires_delta=timedelta(seconds=-5))
        assert decode_token(token) == {}

    def test_garbage_decodes_empty(self):
        assert decode_token("not-a-jwt") == {}


@pytest.mark.auth
class TestPermissions:
    def test_role_defaults(self):
        assert "care_plan.approve" in resolve_permissions("administrator")
        assert "care_plan.approve" not in resolve_permissions("carer")
        assert resolve_permissions("unknown") == []

    def test_overrides(self):
        perms = resolve_permissions("carer", {"care_plan.approve": True, "care_plan.write": False, "bogus": True})
        assert perms == ["care_plan.approve", "care_plan.read", "client.read"]

    def test_schema_names(self):
        assert validate_schema_name("tenant_abc123") == "tenant_abc123"
        with pytest.raises(ValueError):
            validate_schema_name('tenant_x"; DROP SCHEMA public')


@pytest.mark.auth
@pytest.mark.asyncio
class TestDependencies:
    async def test_actor_from_token(self):
        token = create_access_token("user-1", "branch_admin", ["care_plan.read"], tenant_schema="tenant_abc123")
        actor = await get_current_actor(token)
        assert actor.user_id == "user-1"
        assert actor.role == "branch_admin"
        assert actor.permissions == ("care_plan.read",)
        assert actor.tenant_schema == "tenant_abc123"

    async def test_bad_token_is_401(self):
        with pytest.raises(HTTPException) as exc:
            await get_current_actor("not-a-jwt")
        assert exc.value.status_code == 401

    async def test_missing_permission_is_403(self, carer):
        check = require_permission("care_plan.write", "care_plan.approve")
        with pytest.raises(HTTPException) as exc:
            await check(carer)
        assert exc.value.status_code == 403
        assert "care_plan.approve" in exc.value.detail

    async def test_permission_granted(self, admin):
        assert await require_permission("care_plan.approve")(admin) is admin


@pytest.mark.auth
class TestFinalizePermissions:
    def test_status_permissions(self):
        assert permission_for_status("pending_approval") == "care_plan.write"
        assert permission_for_status("approved") == "care_plan.approve"
        assert permission_for_status("active") == "care_plan.approve"
