"""
FileGate Authorization Decision Engine.

Three decisions over (principal, file, now):

    can_view_metadata            — may the principal see the file in a listing?
    can_view_sensitive_metadata  — may they also see purpose / category?
    can_download_content         — may they receive the decrypted bytes?

Evaluation order for each is fixed: auditor exclusion, then ownership, then
administrative override (security.admin_override), then visibility and, for
PROTECTED files, an active grant from the access-request workflow. The engine
holds no state and writes nothing; callers audit the outcome.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from filegate.db.base import utcnow
from filegate.db.models import AccessKind, StoredFile, Visibility
from filegate.engine.access_requests import AccessRequestWorkflow
from filegate.engine.config import SecurityConfig
from filegate.engine.roles import Capability, Role, has_capability, is_admin_class, is_auditor, normalize_role

logger = logging.getLogger("filegate.engine.authorization")


class AuthorizationDecisionEngine:
    """
    Usage:
        engine = AuthorizationDecisionEngine(workflow)
        if engine.can_download_content(principal, file):
            ...
    """

    def __init__(
        self,
        workflow: AccessRequestWorkflow,
        admin_override: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._workflow = workflow
        self._admin_override = admin_override
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        workflow: AccessRequestWorkflow,
        config: SecurityConfig,
        **kwargs: Any,
    ) -> "AuthorizationDecisionEngine":
        return cls(workflow, admin_override=config.admin_override, **kwargs)

    @property
    def admin_override(self) -> bool:
        return self._admin_override

    def _overrides(self, role: Role) -> bool:
        return self._admin_override and has_capability(role, Capability.ADMIN_OVERRIDE)

    def _has_grant(self, principal: Any, file: StoredFile, now: Optional[datetime], needed: AccessKind) -> bool:
        grant = self._workflow.active_grant(
            file.id, principal.id, now or self._clock(), needed=needed,
        )
        return grant is not None and grant.access_kind.satisfies(needed)

    def can_view_metadata(self, principal: Any, file: Optional[StoredFile], now: Optional[datetime] = None) -> bool:
        if principal is None or file is None:
            return False
        role = normalize_role(principal.role)
        if is_auditor(role):
            # Auditors use the metadata-only path (can_view_audit_metadata)
            return False
        if file.is_owned_by(principal.id):
            return True
        if self._overrides(role):
            return True
        if file.visibility is Visibility.PUBLIC:
            return True
        if file.visibility is Visibility.PROTECTED:
            return self._has_grant(principal, file, now, AccessKind.VIEW)
        return False

    def can_view_sensitive_metadata(
        self,
        principal: Any,
        file: Optional[StoredFile],
        now: Optional[datetime] = None,
    ) -> bool:
        if not self.can_view_metadata(principal, file, now):
            return False
        if file.is_owned_by(principal.id):
            return True
        role = normalize_role(principal.role)
        if file.visibility is Visibility.PUBLIC and is_admin_class(role):
            return True
        return self._has_grant(principal, file, now, AccessKind.VIEW)

    def can_download_content(
        self,
        principal: Any,
        file: Optional[StoredFile],
        now: Optional[datetime] = None,
    ) -> bool:
        if principal is None or file is None:
            return False
        role = normalize_role(principal.role)
        if is_auditor(role):
            return False
        if file.is_owned_by(principal.id):
            return True
        if self._overrides(role):
            return True
        if file.visibility is Visibility.PUBLIC:
            return True
        if file.visibility is Visibility.PROTECTED:
            return self._has_grant(principal, file, now, AccessKind.DOWNLOAD)
        return False

    def can_view_audit_metadata(self, principal: Any) -> bool:
        """Basic-fields-only file listing for compliance review."""
        if principal is None:
            return False
        return has_capability(principal.role, Capability.VIEW_AUDIT_METADATA)
