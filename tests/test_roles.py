"""Unit tests for filegate.engine.roles — role normalization and capability bundles."""

import pytest

from filegate.engine.errors import FileGateInvalidRoleError
from filegate.engine.roles import (
    ROLE_CAPABILITIES,
    Capability,
    Role,
    capabilities_for,
    has_capability,
    is_admin_class,
    is_auditor,
    normalize_role,
)


class TestNormalizeRole:

    @pytest.mark.parametrize("raw", ["admin", "ADMIN", "ROLE_ADMIN", " Role_Admin ", Role.ADMIN])
    def test_admin_spellings(self, raw):
        assert normalize_role(raw) is Role.ADMIN

    def test_super_admin(self):
        assert normalize_role("ROLE_SUPER_ADMIN") is Role.SUPER_ADMIN

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_blank_is_user(self, raw):
        assert normalize_role(raw) is Role.USER

    def test_unknown_raises(self):
        with pytest.raises(FileGateInvalidRoleError, match="Unknown role"):
            normalize_role("ROLE_ROOT")


class TestCapabilities:

    def test_super_admin_is_strict_superset_of_admin(self):
        assert ROLE_CAPABILITIES[Role.ADMIN] < ROLE_CAPABILITIES[Role.SUPER_ADMIN]
        assert ROLE_CAPABILITIES[Role.SUPER_ADMIN] - ROLE_CAPABILITIES[Role.ADMIN] == {Capability.ROLE_MANAGEMENT}

    def test_admin_extends_user(self):
        assert ROLE_CAPABILITIES[Role.USER] < ROLE_CAPABILITIES[Role.ADMIN]

    def test_auditor_reads_only(self):
        assert capabilities_for(Role.AUDITOR) == {Capability.VIEW_AUDIT_LOGS, Capability.VIEW_AUDIT_METADATA}

    def test_user_cannot_request_cross_owner_access(self):
        assert not has_capability(Role.USER, Capability.REQUEST_CROSS_OWNER_ACCESS)
        assert has_capability(Role.USER, Capability.DECIDE_ACCESS_REQUESTS)

    def test_auditor_cannot_download_or_decide(self):
        assert not has_capability("auditor", Capability.FILE_DOWNLOAD)
        assert not has_capability("auditor", Capability.DECIDE_ACCESS_REQUESTS)

    def test_has_capability_accepts_strings(self):
        assert has_capability("ROLE_SUPER_ADMIN", Capability.ROLE_MANAGEMENT)

    def test_every_role_has_a_bundle(self):
        assert set(ROLE_CAPABILITIES) == set(Role)


class TestRolePredicates:

    def test_admin_class(self):
        assert is_admin_class(Role.ADMIN)
        assert is_admin_class(Role.SUPER_ADMIN)
        assert not is_admin_class(Role.USER)
        assert not is_admin_class(Role.AUDITOR)

    def test_auditor(self):
        assert is_auditor(Role.AUDITOR)
        assert not is_auditor(Role.ADMIN)
