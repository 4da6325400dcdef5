"""
FileGate Access Request Workflow — Time-bounded grants on PROTECTED files.

State machine:
    PENDING ──approve──▶ APPROVED (expires_at = decided_at + TTL)
       └─────reject───▶ REJECTED (expires_at = None)

Both decided states are terminal. A grant is active while
expires_at > now; expired grants are never purged, only ignored.

Transitions commit through a compare-and-swap UPDATE on (id, status, version):
of two approvers racing on the same request, exactly one commits and the
other gets FileGateInvalidStateError.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Union

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from filegate.db.base import utcnow
from filegate.db.models import (
    AccessGrantRequest,
    AccessKind,
    AccessStatus,
    AuditAction,
    AuditOutcome,
    ResourceType,
    StoredFile,
    Visibility,
)
from filegate.db.session import SessionFactory, session_scope
from filegate.engine.audit import AuditTrail
from filegate.engine.config import SecurityConfig
from filegate.engine.errors import (
    FileGateForbiddenError,
    FileGateInvalidRoleError,
    FileGateInvalidStateError,
    FileGateNotFoundError,
    FileGateSelfRequestError,
    FileGateValidationError,
)
from filegate.engine.logging import log, log_workflow_transition
from filegate.engine.roles import Capability, has_capability, is_admin_class, is_auditor, normalize_role

logger = logging.getLogger("filegate.engine.access_requests")


def parse_access_kind(value: Union[AccessKind, str, None]) -> AccessKind:
    """Accept an AccessKind or its name in any case."""
    if isinstance(value, AccessKind):
        return value
    try:
        return AccessKind(str(value).strip().upper())
    except ValueError:
        raise FileGateValidationError(
            f"Unsupported access kind '{value}'; expected VIEW or DOWNLOAD",
            field="access_kind",
        )


class AccessRequestWorkflow:
    """
    Creates and decides access requests, and answers "is there an active grant?".

    Usage:
        workflow = AccessRequestWorkflow(session_factory, trail)
        req = workflow.create(file_id, admin, AccessKind.DOWNLOAD, "Quarterly review")
        workflow.approve(req.id, owner)
        workflow.active_grant(file_id, admin.id, now)
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        audit: AuditTrail,
        config: Optional[SecurityConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._audit = audit
        self._config = config or SecurityConfig()
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self._config.effective_ttl_seconds)

    # -----------------------------------------------------------------------
    # Create
    # -----------------------------------------------------------------------

    def create(
        self,
        file_id: int,
        requester: Any,
        kind: Union[AccessKind, str],
        purpose: Optional[str],
    ) -> AccessGrantRequest:
        """
        Open a PENDING request for *requester* on a PROTECTED file.

        Raises:
            FileGateInvalidRoleError: Requester lacks REQUEST_CROSS_OWNER_ACCESS.
            FileGateValidationError: Bad access kind or blank purpose.
            FileGateNotFoundError: File does not exist (or is deleted).
            FileGateInvalidStateError: File is not PROTECTED.
            FileGateSelfRequestError: Requester owns the file.
        """
        role = normalize_role(requester.role)
        if not has_capability(role, Capability.REQUEST_CROSS_OWNER_ACCESS):
            self._audit.record(
                requester, AuditAction.ACCESS_REQUEST, ResourceType.FILE, file_id,
                details=f"Access request rejected: role {role.value} may not request access",
                outcome=AuditOutcome.FAILURE,
            )
            raise FileGateInvalidRoleError(
                "Only admins can request access to another owner's files",
                principal_id=requester.id,
                file_id=file_id,
                role=role.value,
                required_capability=Capability.REQUEST_CROSS_OWNER_ACCESS.value,
            )

        access_kind = parse_access_kind(kind)
        purpose = (purpose or "").strip()
        if not purpose:
            raise FileGateValidationError("Purpose is required", field="purpose", file_id=file_id)

        now = self._clock()
        with session_scope(self._session_factory) as session:
            file = session.get(StoredFile, file_id)
            if file is None or file.is_deleted:
                raise FileGateNotFoundError(
                    f"File {file_id} not found", resource_type="FILE", file_id=file_id,
                )
            if file.visibility is not Visibility.PROTECTED:
                raise FileGateInvalidStateError(
                    "Access requests are only allowed for PROTECTED files",
                    file_id=file_id,
                    current_state=file.visibility.value,
                )
            if file.is_owned_by(requester.id):
                raise FileGateSelfRequestError(
                    "You already own this file",
                    file_id=file_id,
                    principal_id=requester.id,
                )

            request = AccessGrantRequest(
                file_id=file.id,
                requester_id=requester.id,
                access_kind=access_kind,
                status=AccessStatus.PENDING,
                purpose=purpose,
                created_at=now,
                version=1,
            )
            session.add(request)
            session.flush()
            session.refresh(request)
            file_name = file.file_name

        logger.info(
            "Access request %s created: file=%s requester=%s kind=%s",
            request.id, file_id, requester.id, access_kind.value,
        )
        log(log_workflow_transition(request.id, file_id, None, AccessStatus.PENDING.value, requester.id))
        self._audit.record(
            requester, AuditAction.ACCESS_REQUEST, ResourceType.ACCESS_REQUEST, request.id,
            file_name=file_name,
            details=f"Requested {access_kind.value} access. Purpose: {purpose}",
        )
        return request

    # -----------------------------------------------------------------------
    # Decide
    # -----------------------------------------------------------------------

    def approve(self, request_id: int, approver: Any) -> AccessGrantRequest:
        """Approve a PENDING request. Only the file owner may decide."""
        return self._decide(request_id, approver, AccessStatus.APPROVED)

    def reject(self, request_id: int, approver: Any) -> AccessGrantRequest:
        """Reject a PENDING request. Only the file owner may decide."""
        return self._decide(request_id, approver, AccessStatus.REJECTED)

    def _decide(self, request_id: int, approver: Any, to_status: AccessStatus) -> AccessGrantRequest:
        action = AuditAction.ACCESS_GRANT if to_status is AccessStatus.APPROVED else AuditAction.ACCESS_DENY
        now = self._clock()
        expires_at = now + self.ttl if to_status is AccessStatus.APPROVED else None

        with session_scope(self._session_factory) as session:
            request = session.get(AccessGrantRequest, request_id)
            if request is None:
                raise FileGateNotFoundError(
                    f"Access request {request_id} not found",
                    resource_type="ACCESS_REQUEST",
                    request_id=request_id,
                )

            role = normalize_role(approver.role)
            file_name = request.file.file_name
            if not has_capability(role, Capability.DECIDE_ACCESS_REQUESTS) or not request.file.is_owned_by(approver.id):
                self._audit.record(
                    approver, action, ResourceType.ACCESS_REQUEST, request_id,
                    file_name=file_name,
                    details="Only the file owner can decide access requests",
                    outcome=AuditOutcome.FAILURE,
                )
                raise FileGateForbiddenError(
                    "Only the file owner can approve or reject access requests",
                    principal_id=approver.id,
                    request_id=request_id,
                    file_id=request.file_id,
                    role=role.value,
                )

            if not request.is_pending:
                raise FileGateInvalidStateError(
                    "Request already processed",
                    request_id=request_id,
                    current_state=request.status.value,
                )

            self.compare_and_swap(
                session, request_id, request.version, to_status,
                decided_at=now, decided_by=approver.id, expires_at=expires_at,
            )
            session.refresh(request)

        logger.info(
            "Access request %s %s by %s (expires_at=%s)",
            request_id, to_status.value.lower(), approver.id, expires_at,
        )
        log(log_workflow_transition(
            request_id, request.file_id, AccessStatus.PENDING.value, to_status.value,
            approver.id, expires_at,
        ))
        if to_status is AccessStatus.APPROVED:
            details = f"Granted {request.access_kind.value} access until {expires_at.isoformat()}"
        else:
            details = f"Rejected {request.access_kind.value} access request"
        self._audit.record(
            approver, action, ResourceType.ACCESS_REQUEST, request_id,
            file_name=file_name,
            details=details,
        )
        return request

    def compare_and_swap(
        self,
        session: Session,
        request_id: int,
        expected_version: int,
        to_status: AccessStatus,
        decided_at: datetime,
        decided_by: Optional[int],
        expires_at: Optional[datetime],
    ) -> None:
        """
        Move a PENDING request at *expected_version* to *to_status*.

        Raises:
            FileGateInvalidStateError: The row was no longer PENDING at that
                version, i.e. a concurrent decision committed first.
        """
        result = session.execute(
            update(AccessGrantRequest)
            .where(
                AccessGrantRequest.id == request_id,
                AccessGrantRequest.status == AccessStatus.PENDING,
                AccessGrantRequest.version == expected_version,
            )
            .values(
                status=to_status,
                decided_at=decided_at,
                decided_by=decided_by,
                expires_at=expires_at,
                version=expected_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise FileGateInvalidStateError(
                "Request already processed",
                request_id=request_id,
                current_state="DECIDED",
            )

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def active_grant(
        self,
        file_id: int,
        requester_id: int,
        now: Optional[datetime] = None,
        needed: Optional[AccessKind] = None,
        session: Optional[Session] = None,
    ) -> Optional[AccessGrantRequest]:
        """
        Most recently decided APPROVED request for (file, requester) whose
        expires_at is strictly after *now*.

        With needed=DOWNLOAD only DOWNLOAD grants count; VIEW is satisfied by
        either kind.
        """
        if now is None:
            now = self._clock()

        def _query(s: Session) -> Optional[AccessGrantRequest]:
            query = s.query(AccessGrantRequest).filter(
                AccessGrantRequest.file_id == file_id,
                AccessGrantRequest.requester_id == requester_id,
                AccessGrantRequest.status == AccessStatus.APPROVED,
                AccessGrantRequest.expires_at > now,
            )
            if needed is AccessKind.DOWNLOAD:
                query = query.filter(AccessGrantRequest.access_kind == AccessKind.DOWNLOAD)
            return query.order_by(AccessGrantRequest.decided_at.desc()).first()

        if session is not None:
            return _query(session)
        with session_scope(self._session_factory) as s:
            return _query(s)

    def get(self, request_id: int) -> AccessGrantRequest:
        with session_scope(self._session_factory) as session:
            request = session.get(AccessGrantRequest, request_id)
        if request is None:
            raise FileGateNotFoundError(
                f"Access request {request_id} not found",
                resource_type="ACCESS_REQUEST",
                request_id=request_id,
            )
        return request

    def inbox(self, owner: Any) -> List[AccessGrantRequest]:
        """PENDING requests on files *owner* owns, newest first."""
        if is_auditor(normalize_role(owner.role)):
            return []
        with session_scope(self._session_factory) as session:
            return (
                session.query(AccessGrantRequest)
                .join(StoredFile, StoredFile.id == AccessGrantRequest.file_id)
                .filter(
                    StoredFile.owner_id == owner.id,
                    AccessGrantRequest.status == AccessStatus.PENDING,
                )
                .order_by(AccessGrantRequest.created_at.desc(), AccessGrantRequest.id.desc())
                .all()
            )

    def my_requests(self, requester: Any) -> List[AccessGrantRequest]:
        """Every request *requester* has made, newest first."""
        if is_auditor(normalize_role(requester.role)):
            return []
        with session_scope(self._session_factory) as session:
            return (
                session.query(AccessGrantRequest)
                .filter(AccessGrantRequest.requester_id == requester.id)
                .order_by(AccessGrantRequest.created_at.desc(), AccessGrantRequest.id.desc())
                .all()
            )

    def count_by_status(self, file_id: int, status: AccessStatus) -> int:
        with session_scope(self._session_factory) as session:
            return (
                session.query(AccessGrantRequest)
                .filter(
                    AccessGrantRequest.file_id == file_id,
                    AccessGrantRequest.status == status,
                )
                .count()
            )

    # -----------------------------------------------------------------------
    # Clearing
    # -----------------------------------------------------------------------

    def cascade_clear(self, file_id: int, session: Optional[Session] = None) -> int:
        """
        Delete every request for *file_id*. Not audited here; the caller's
        visibility change or delete is the audited event.

        Pass *session* to run inside the caller's transaction.
        """
        stmt = (
            delete(AccessGrantRequest)
            .where(AccessGrantRequest.file_id == file_id)
            .execution_options(synchronize_session=False)
        )
        if session is not None:
            removed = session.execute(stmt).rowcount
        else:
            with session_scope(self._session_factory) as s:
                removed = s.execute(stmt).rowcount
        if removed:
            logger.info("Cleared %d access request(s) for file %s", removed, file_id)
        return removed

    def revoke_all(self, file_id: int, actor: Any) -> int:
        """Owner or ADMIN-class principal drops every request on a file."""
        role = normalize_role(actor.role)
        with session_scope(self._session_factory) as session:
            file = session.get(StoredFile, file_id)
            if file is None or file.is_deleted:
                raise FileGateNotFoundError(
                    f"File {file_id} not found", resource_type="FILE", file_id=file_id,
                )
            file_name = file.file_name
            if not (file.is_owned_by(actor.id) or is_admin_class(role)):
                self._audit.record(
                    actor, AuditAction.ACCESS_REVOKE, ResourceType.FILE, file_id,
                    file_name=file_name,
                    details="Only the owner or an admin can revoke access",
                    outcome=AuditOutcome.FAILURE,
                )
                raise FileGateForbiddenError(
                    "Only the owner or an admin can revoke access",
                    principal_id=actor.id,
                    file_id=file_id,
                    role=role.value,
                )
            removed = self.cascade_clear(file_id, session=session)

        self._audit.record(
            actor, AuditAction.ACCESS_REVOKE, ResourceType.FILE, file_id,
            file_name=file_name,
            details=f"Revoked {removed} access request(s)",
        )
        return removed
