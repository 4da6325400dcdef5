"""
FileGate Admin Service — principal management and the admin dashboard.

Operations:
    change_role()       — ROLE_MANAGEMENT (SUPER_ADMIN)
    set_active()        — USER_MANAGEMENT (ADMIN, SUPER_ADMIN)
    dashboard_summary() — counts for the admin landing page
    file_overview()     — every file with its owner and approved-grant count
    delete_file()       — admin soft delete of any file
    audit_user_*()      — VIEW_AUDIT_METADATA (AUDITOR, ADMIN, SUPER_ADMIN); emails masked

Every refusal is audited as FAILURE before FileGateForbiddenError propagates.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, List, Optional, Union

from pydantic import BaseModel
from sqlalchemy import func

from filegate.db.base import utcnow
from filegate.db.models import (
    AccessGrantRequest,
    AccessStatus,
    AuditAction,
    AuditOutcome,
    Principal,
    ResourceType,
    StoredFile,
)
from filegate.db.session import SessionFactory, session_scope
from filegate.engine.access_requests import AccessRequestWorkflow
from filegate.engine.audit import AuditTrail
from filegate.engine.errors import (
    FileGateForbiddenError,
    FileGateInvalidRoleError,
    FileGateNotFoundError,
    FileGateValidationError,
)
from filegate.engine.roles import Capability, Role, has_capability, normalize_role

logger = logging.getLogger("filegate.admin.service")


class DashboardSummary(BaseModel):
    total_principals: int
    active_principals: int
    total_files: int
    admin_file_access_count: int
    total_audit_entries: int


class FileOverviewRow(BaseModel):
    id: int
    file_name: str
    owner_username: Optional[str] = None
    size_bytes: int
    uploaded_at: datetime
    is_deleted: bool
    shared_count: int


class PrincipalView(BaseModel):
    id: int
    username: str
    email: Optional[str] = None
    role: Role
    is_active: bool


class AuditUserMetadata(BaseModel):
    """Principal row for the auditor path; the email is masked."""

    id: int
    username: str
    role: Role
    account_status: str
    created_at: Optional[datetime] = None
    email: Optional[str] = None

    @classmethod
    def from_record(cls, principal: Principal) -> "AuditUserMetadata":
        return cls(
            id=principal.id,
            username=principal.username,
            role=principal.role,
            account_status="ACTIVE" if principal.is_active else "INACTIVE",
            created_at=principal.created_at,
            email=mask_email(principal.email),
        )


class UserStats(BaseModel):
    total_users: int
    active_users: int
    inactive_users: int


def mask_email(email: Optional[str]) -> Optional[str]:
    """john.doe@example.com -> jo***@example.com; short local parts become ***@domain."""
    if not email:
        return None
    at = email.find("@")
    if at < 0:
        return "***"
    if at <= 2:
        return "***" + email[at:]
    return email[:2] + "***" + email[at:]


class AdminService:

    def __init__(
        self,
        session_factory: SessionFactory,
        audit: AuditTrail,
        workflow: AccessRequestWorkflow,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._audit = audit
        self._workflow = workflow
        self._clock = clock

    def _require(
        self,
        actor: Any,
        capability: Capability,
        action: AuditAction,
        resource_type: ResourceType,
        resource_id: Optional[int] = None,
    ) -> None:
        if actor is not None and has_capability(actor.role, capability):
            return
        self._audit.record(
            actor, action, resource_type, resource_id,
            details=f"Requires {capability.value}",
            outcome=AuditOutcome.FAILURE,
        )
        role = getattr(actor, "role", None)
        raise FileGateForbiddenError(
            f"{capability.value} required",
            principal_id=getattr(actor, "id", None),
            role=getattr(role, "value", role),
            required_capability=capability.value,
        )

    @staticmethod
    def _get_principal(session: Any, principal_id: int) -> Principal:
        principal = session.get(Principal, principal_id)
        if principal is None:
            raise FileGateNotFoundError(
                f"Principal {principal_id} not found",
                resource_type="USER",
                principal_id=principal_id,
            )
        return principal

    # -----------------------------------------------------------------------
    # Principal management
    # -----------------------------------------------------------------------

    def list_principals(self, actor: Any) -> List[PrincipalView]:
        self._require(actor, Capability.USER_MANAGEMENT, AuditAction.VIEW_USER_METADATA, ResourceType.USER)
        with session_scope(self._session_factory) as session:
            principals = session.query(Principal).order_by(Principal.id).all()
        self._audit.record(
            actor, AuditAction.VIEW_USER_METADATA, ResourceType.USER,
            details=f"Listed {len(principals)} principals",
        )
        return [
            PrincipalView(id=p.id, username=p.username, email=p.email, role=p.role, is_active=p.is_active)
            for p in principals
        ]

    def change_role(self, actor: Any, principal_id: int, new_role: Union[Role, str]) -> Principal:
        """
        Assign a new role. The target re-authenticates to pick it up.

        Raises:
            FileGateForbiddenError: Actor lacks ROLE_MANAGEMENT.
            FileGateInvalidRoleError: new_role is outside the closed role set.
            FileGateValidationError: Actor tried to change their own role.
        """
        self._require(actor, Capability.ROLE_MANAGEMENT, AuditAction.ROLE_UPDATE, ResourceType.USER, principal_id)
        try:
            role = normalize_role(new_role)
        except FileGateInvalidRoleError:
            self._audit.record(
                actor, AuditAction.ROLE_UPDATE, ResourceType.USER, principal_id,
                details=f"Unknown role '{new_role}'",
                outcome=AuditOutcome.FAILURE,
            )
            raise
        if actor.id == principal_id:
            raise FileGateValidationError(
                "You cannot change your own role", field="principal_id", principal_id=principal_id,
            )

        with session_scope(self._session_factory) as session:
            principal = self._get_principal(session, principal_id)
            old_role = principal.role
            principal.role = role

        logger.info("Role of principal %s changed %s -> %s by %s", principal_id, old_role.value, role.value, actor.id)
        self._audit.record(
            actor, AuditAction.ROLE_UPDATE, ResourceType.USER, principal_id,
            details=f"Role changed from {old_role.value} to {role.value}",
        )
        return principal

    def set_active(self, actor: Any, principal_id: int, active: bool) -> Principal:
        """Enable or disable a principal. Disabled principals fail PrincipalDirectory.resolve()."""
        action = AuditAction.USER_ENABLED if active else AuditAction.USER_DISABLED
        self._require(actor, Capability.USER_MANAGEMENT, action, ResourceType.USER, principal_id)
        if actor.id == principal_id and not active:
            raise FileGateValidationError(
                "You cannot disable your own account", field="principal_id", principal_id=principal_id,
            )

        with session_scope(self._session_factory) as session:
            principal = self._get_principal(session, principal_id)
            principal.is_active = active

        self._audit.record(
            actor, action, ResourceType.USER, principal_id,
            details=f"Principal {principal.username} {'enabled' if active else 'disabled'}",
        )
        return principal

    # -----------------------------------------------------------------------
    # Auditor view of principals (VIEW_AUDIT_METADATA)
    # -----------------------------------------------------------------------

    def audit_user_metadata(
        self,
        actor: Any,
        page: int = 0,
        page_size: Optional[int] = None,
    ) -> List[AuditUserMetadata]:
        self._require(actor, Capability.VIEW_AUDIT_METADATA, AuditAction.VIEW_USER_METADATA, ResourceType.USER)
        page = max(page, 0)
        size = self._audit.clamp_page_size(page_size)
        with session_scope(self._session_factory) as session:
            principals = (
                session.query(Principal)
                .order_by(Principal.id)
                .offset(page * size)
                .limit(size)
                .all()
            )
        self._audit.record(
            actor, AuditAction.VIEW_USER_METADATA, ResourceType.USER,
            details=f"Viewed user metadata page={page}",
        )
        return [AuditUserMetadata.from_record(p) for p in principals]

    def audit_user_detail(self, actor: Any, principal_id: int) -> AuditUserMetadata:
        self._require(
            actor, Capability.VIEW_AUDIT_METADATA, AuditAction.VIEW_USER_METADATA, ResourceType.USER, principal_id,
        )
        with session_scope(self._session_factory) as session:
            principal = self._get_principal(session, principal_id)
        self._audit.record(
            actor, AuditAction.VIEW_USER_METADATA, ResourceType.USER, principal_id,
            details="Viewed user metadata detail",
        )
        return AuditUserMetadata.from_record(principal)

    def audit_user_stats(self, actor: Any) -> UserStats:
        self._require(actor, Capability.VIEW_AUDIT_METADATA, AuditAction.VIEW_USER_METADATA, ResourceType.USER)
        with session_scope(self._session_factory) as session:
            total = session.query(func.count(Principal.id)).scalar() or 0
            active = (
                session.query(func.count(Principal.id)).filter(Principal.is_active.is_(True)).scalar()
            ) or 0
        self._audit.record(
            actor, AuditAction.VIEW_USER_METADATA, ResourceType.USER,
            details="Viewed user statistics",
        )
        return UserStats(total_users=total, active_users=active, inactive_users=total - active)

    # -----------------------------------------------------------------------
    # Dashboard
    # -----------------------------------------------------------------------

    def dashboard_summary(self, actor: Any) -> DashboardSummary:
        self._require(actor, Capability.USER_MANAGEMENT, AuditAction.VIEW_AUDIT_STATS, ResourceType.SYSTEM)
        with session_scope(self._session_factory) as session:
            total_principals = session.query(func.count(Principal.id)).scalar() or 0
            active_principals = (
                session.query(func.count(Principal.id)).filter(Principal.is_active.is_(True)).scalar()
            ) or 0
            total_files = session.query(func.count(StoredFile.id)).scalar() or 0

        return DashboardSummary(
            total_principals=total_principals,
            active_principals=active_principals,
            total_files=total_files,
            admin_file_access_count=self._audit.count_by_action(AuditAction.ADMIN_FILE_ACCESS),
            total_audit_entries=self._audit.count(),
        )

    def file_overview(self, actor: Any) -> List[FileOverviewRow]:
        """Every file, deleted ones included, with its count of APPROVED requests."""
        self._require(actor, Capability.USER_MANAGEMENT, AuditAction.VIEW_FILE_METADATA, ResourceType.FILE)
        with session_scope(self._session_factory) as session:
            shared = dict(
                session.query(AccessGrantRequest.file_id, func.count(AccessGrantRequest.id))
                .filter(AccessGrantRequest.status == AccessStatus.APPROVED)
                .group_by(AccessGrantRequest.file_id)
                .all()
            )
            files = session.query(StoredFile).order_by(StoredFile.uploaded_at.desc(), StoredFile.id.desc()).all()

        self._audit.record(
            actor, AuditAction.VIEW_FILE_METADATA, ResourceType.FILE,
            details=f"Viewed file overview ({len(files)} files)",
        )
        return [
            FileOverviewRow(
                id=f.id,
                file_name=f.file_name,
                owner_username=f.owner.username if f.owner else None,
                size_bytes=f.size_bytes,
                uploaded_at=f.uploaded_at,
                is_deleted=f.is_deleted,
                shared_count=shared.get(f.id, 0),
            )
            for f in files
        ]

    def delete_file(self, actor: Any, file_id: int) -> None:
        """Administrative soft delete; clears the file's access requests."""
        self._require(actor, Capability.ADMIN_OVERRIDE, AuditAction.DELETE, ResourceType.FILE, file_id)
        now = self._clock()
        with session_scope(self._session_factory) as session:
            file = session.get(StoredFile, file_id)
            if file is None or file.is_deleted:
                raise FileGateNotFoundError(
                    f"File {file_id} not found", resource_type="FILE", file_id=file_id,
                )
            cleared = self._workflow.cascade_clear(file_id, session=session)
            file.is_deleted = True
            file.deleted_at = now
            file.deleted_by = actor.id
            file_name = file.file_name

        self._audit.record(
            actor, AuditAction.DELETE, ResourceType.FILE, file_id,
            file_name=file_name,
            details=f"Admin soft-deleted file; cleared {cleared} access request(s)",
        )
