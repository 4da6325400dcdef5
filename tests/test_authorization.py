"""Unit tests for filegate.engine.authorization — the three decision functions."""

from datetime import timedelta

import pytest
from unittest.mock import MagicMock

from filegate.db.models import Visibility
from filegate.engine.authorization import AuthorizationDecisionEngine
from filegate.engine.config import SecurityConfig


class TestNullInputs:

    def test_none_principal_or_file(self, engine, make_file, owner):
        file = make_file(owner)
        assert engine.can_view_metadata(None, file) is False
        assert engine.can_view_metadata(owner, None) is False
        assert engine.can_view_sensitive_metadata(None, file) is False
        assert engine.can_download_content(owner, None) is False
        assert engine.can_view_audit_metadata(None) is False


class TestOwnerAndVisibility:

    @pytest.mark.parametrize("visibility", list(Visibility))
    def test_owner_always_allowed(self, engine, make_file, owner, visibility):
        file = make_file(owner, visibility)
        assert engine.can_view_metadata(owner, file)
        assert engine.can_view_sensitive_metadata(owner, file)
        assert engine.can_download_content(owner, file)

    def test_private_denied_to_other_user(self, engine, make_file, owner, other_user):
        file = make_file(owner, Visibility.PRIVATE)
        assert not engine.can_view_metadata(other_user, file)
        assert not engine.can_download_content(other_user, file)

    def test_public_open_to_non_auditors(self, engine, make_file, owner, other_user):
        file = make_file(owner, Visibility.PUBLIC)
        assert engine.can_view_metadata(other_user, file)
        assert engine.can_download_content(other_user, file)
        # purpose/category stay hidden from a plain USER on a PUBLIC file
        assert not engine.can_view_sensitive_metadata(other_user, file)

    def test_protected_without_grant(self, engine, make_file, owner, other_user):
        file = make_file(owner, Visibility.PROTECTED)
        assert not engine.can_view_metadata(other_user, file)
        assert not engine.can_download_content(other_user, file)

    def test_soft_delete_not_special_cased(self, engine, make_file, owner):
        file = make_file(owner, Visibility.PRIVATE)
        file.is_deleted = True
        assert engine.can_download_content(owner, file)


class TestAuditor:

    @pytest.mark.parametrize("visibility", list(Visibility))
    def test_auditor_never_downloads_or_lists(self, engine, make_file, owner, auditor, visibility):
        file = make_file(owner, visibility)
        assert not engine.can_download_content(auditor, file)
        assert not engine.can_view_metadata(auditor, file)
        assert not engine.can_view_sensitive_metadata(auditor, file)

    def test_auditor_owning_a_file_still_cannot_download(self, engine, make_file, auditor):
        file = make_file(auditor, Visibility.PUBLIC)
        assert not engine.can_download_content(auditor, file)

    def test_audit_metadata_path(self, engine, auditor, admin, owner):
        assert engine.can_view_audit_metadata(auditor)
        assert engine.can_view_audit_metadata(admin)
        assert not engine.can_view_audit_metadata(owner)


class TestAdminOverride:

    @pytest.mark.parametrize("visibility", list(Visibility))
    def test_admin_bypasses_visibility(self, engine, make_file, owner, admin, visibility):
        file = make_file(owner, visibility)
        assert engine.can_view_metadata(admin, file)
        assert engine.can_download_content(admin, file)

    def test_admin_sensitive_only_on_public(self, engine, make_file, owner, super_admin):
        assert engine.can_view_sensitive_metadata(super_admin, make_file(owner, Visibility.PUBLIC))
        assert not engine.can_view_sensitive_metadata(super_admin, make_file(owner, Visibility.PRIVATE))
        assert not engine.can_view_sensitive_metadata(super_admin, make_file(owner, Visibility.PROTECTED))

    def test_override_skips_grant_lookup(self, make_file, owner, admin):
        workflow = MagicMock()
        engine = AuthorizationDecisionEngine(workflow)
        assert engine.can_download_content(admin, make_file(owner, Visibility.PROTECTED))
        workflow.active_grant.assert_not_called()

    def test_from_config(self):
        engine = AuthorizationDecisionEngine.from_config(MagicMock(), SecurityConfig(admin_override=False))
        assert engine.admin_override is False


class TestGrants:
    """PROTECTED access through the workflow, with the override switched off."""

    def test_admin_without_override_needs_grant(self, strict_engine, make_file, owner, admin):
        file = make_file(owner, Visibility.PROTECTED)
        assert not strict_engine.can_view_metadata(admin, file)
        assert not strict_engine.can_download_content(admin, file)

    def test_download_grant(self, strict_engine, approved_grant, make_file, owner, admin):
        file = make_file(owner, Visibility.PROTECTED)
        approved_grant(file, admin, owner, kind="DOWNLOAD")
        assert strict_engine.can_view_metadata(admin, file)
        assert strict_engine.can_view_sensitive_metadata(admin, file)
        assert strict_engine.can_download_content(admin, file)

    def test_view_grant_never_allows_download(self, strict_engine, approved_grant, make_file, owner, admin):
        file = make_file(owner, Visibility.PROTECTED)
        approved_grant(file, admin, owner, kind="VIEW")
        assert strict_engine.can_view_metadata(admin, file)
        assert strict_engine.can_view_sensitive_metadata(admin, file)
        assert not strict_engine.can_download_content(admin, file)

    def test_grant_expires(self, strict_engine, approved_grant, make_file, owner, admin, clock):
        file = make_file(owner, Visibility.PROTECTED)
        grant = approved_grant(file, admin, owner)
        assert strict_engine.can_download_content(admin, file, grant.expires_at - timedelta(seconds=1))
        assert not strict_engine.can_download_content(admin, file, grant.expires_at)

    def test_rejected_request_grants_nothing(self, strict_engine, workflow, make_file, owner, admin):
        file = make_file(owner, Visibility.PROTECTED)
        request = workflow.create(file.id, admin, "DOWNLOAD", "review")
        workflow.reject(request.id, owner)
        assert not strict_engine.can_download_content(admin, file)

    def test_grant_is_per_principal(self, strict_engine, approved_grant, make_file, owner, admin, super_admin):
        file = make_file(owner, Visibility.PROTECTED)
        approved_grant(file, admin, owner)
        assert not strict_engine.can_download_content(super_admin, file)
