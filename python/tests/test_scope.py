"""
Unit tests for tenant scope resolution.

Pure functions only; no database needed.
"""

import uuid
from types import SimpleNamespace

import pytest

from database.models import Role
from database.scope import (
    NO_MATCH,
    SELF_FIELD,
    Analyst,
    SuperAdmin,
    TenantAdmin,
    can_access_tenant,
    principal_from_user,
    require_role,
    resolve_scope,
)
from errors import ForbiddenError


class TestResolveScope:
    """Tests for resolve_scope across every principal variant."""

    def test_super_admin_returns_base_filter_unchanged(self):
        base = {"result_label": "FORGED"}
        assert resolve_scope(SuperAdmin(), base, "tenant_id") is base

    def test_super_admin_without_filter_is_unrestricted(self):
        assert resolve_scope(SuperAdmin()) == {}

    def test_tenant_admin_pins_tenant_field(self):
        tenant_id = uuid.uuid4()
        scope = resolve_scope(TenantAdmin(tenant_id=tenant_id), {"geo_country": "TN"}, "owner_id")
        assert scope == {"geo_country": "TN", "owner_id": tenant_id}

    def test_tenant_admin_overrides_caller_tenant(self):
        own, other = uuid.uuid4(), uuid.uuid4()
        scope = resolve_scope(TenantAdmin(tenant_id=own), {"tenant_id": other})
        assert scope["tenant_id"] == own

    def test_tenant_admin_does_not_mutate_base_filter(self):
        base = {"status": "OPEN"}
        resolve_scope(TenantAdmin(tenant_id=uuid.uuid4()), base)
        assert base == {"status": "OPEN"}

    def test_self_field_uses_identity(self):
        tenant_id = uuid.uuid4()
        scope = resolve_scope(TenantAdmin(tenant_id=tenant_id), {}, SELF_FIELD)
        assert scope == {"id": tenant_id}

    @pytest.mark.parametrize("base", [None, {}, {"tenant_id": "anything"}, {"$or": []}])
    def test_tenant_admin_without_tenant_matches_nothing(self, base):
        scope = resolve_scope(TenantAdmin(tenant_id=None), base)
        assert scope[NO_MATCH] is True

    def test_analyst_matches_nothing(self):
        scope = resolve_scope(Analyst(tenant_id=uuid.uuid4()), {"geo_city": "Tunis"})
        assert scope == {"geo_city": "Tunis", NO_MATCH: True}

    def test_unknown_principal_matches_nothing(self):
        stranger = SimpleNamespace(role="AUDITOR", tenant_id=uuid.uuid4())
        assert resolve_scope(stranger, {})[NO_MATCH] is True

    def test_deterministic(self):
        principal = TenantAdmin(tenant_id=uuid.uuid4())
        assert resolve_scope(principal, {"a": 1}) == resolve_scope(principal, {"a": 1})


class TestAccessHelpers:
    """Tests for can_access_tenant, require_role and principal_from_user."""

    def test_can_access_tenant(self):
        tenant_id = uuid.uuid4()
        assert can_access_tenant(SuperAdmin(), uuid.uuid4())
        assert can_access_tenant(TenantAdmin(tenant_id=tenant_id), tenant_id)
        assert not can_access_tenant(TenantAdmin(tenant_id=tenant_id), uuid.uuid4())
        assert not can_access_tenant(TenantAdmin(tenant_id=None), None)
        assert not can_access_tenant(Analyst(tenant_id=tenant_id), tenant_id)

    def test_require_role_super_admin_always_passes(self):
        require_role(SuperAdmin())

    def test_require_role_accepts_listed_role(self):
        require_role(TenantAdmin(tenant_id=uuid.uuid4()), Role.TENANT_ADMIN)

    def test_require_role_rejects_other_roles(self):
        with pytest.raises(ForbiddenError):
            require_role(Analyst(), Role.TENANT_ADMIN)
        with pytest.raises(ForbiddenError):
            require_role(TenantAdmin(tenant_id=uuid.uuid4()))

    def test_principal_from_user(self):
        user_id, tenant_id = uuid.uuid4(), uuid.uuid4()
        admin = principal_from_user(SimpleNamespace(id=user_id, role=Role.TENANT_ADMIN, tenant_id=tenant_id))
        assert admin == TenantAdmin(tenant_id=tenant_id, user_id=user_id)

        root = principal_from_user(SimpleNamespace(id=user_id, role="SUPER_ADMIN", tenant_id=None))
        assert isinstance(root, SuperAdmin)

        reader = principal_from_user(SimpleNamespace(id=user_id, role=Role.ANALYST, tenant_id=tenant_id))
        assert isinstance(reader, Analyst)
