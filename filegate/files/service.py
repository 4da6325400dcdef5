"""
FileGate File Service — upload, download, listing and owner operations.

Every entry point takes the already-resolved principal, asks the
AuthorizationDecisionEngine, and records exactly one audit entry for the
decision or mutation (two for an admin download of someone else's file:
DOWNLOAD plus ADMIN_FILE_ACCESS).

Soft-deleted files are hidden from listings and look absent to non-owners.
The auditor views (audit_file_*) are the exception and include them.
rotate_keys() moves stored bytes onto the active storage key.
"""

from __future__ import annotations

import logging
import mimetypes
from datetime import datetime
from typing import Any, Callable, List, Optional, Union

from sqlalchemy import func

from filegate.db.base import utcnow
from filegate.db.models import (
    AuditAction,
    AuditOutcome,
    ResourceType,
    StoredFile,
    Visibility,
)
from filegate.db.session import SessionFactory, session_scope
from filegate.engine.access_requests import AccessRequestWorkflow
from filegate.engine.audit import AuditTrail
from filegate.engine.authorization import AuthorizationDecisionEngine
from filegate.engine.config import StorageConfig
from filegate.engine.errors import (
    FileGateForbiddenError,
    FileGateNotFoundError,
    FileGateValidationError,
)
from filegate.engine.logging import log, log_decision
from filegate.engine.roles import Capability, has_capability, is_admin_class, is_auditor, normalize_role
from filegate.files.schemas import AccessRequestView, AuditFileMetadata, FileMetadata, FileStats
from filegate.files.storage import ByteStore

logger = logging.getLogger("filegate.files.service")

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def parse_visibility(value: Union[Visibility, str, None]) -> Visibility:
    if isinstance(value, Visibility):
        return value
    try:
        return Visibility(str(value).strip().upper())
    except ValueError:
        raise FileGateValidationError(
            f"Invalid visibility '{value}'; expected PRIVATE, PUBLIC or PROTECTED",
            field="visibility",
        )


class FileService:
    """
    Usage:
        service = FileService(session_factory, store, trail, workflow, engine)
        meta = service.upload(owner, "report.pdf", data, visibility=Visibility.PROTECTED)
        data = service.download(principal, meta.id)
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        store: ByteStore,
        audit: AuditTrail,
        workflow: AccessRequestWorkflow,
        engine: AuthorizationDecisionEngine,
        config: Optional[StorageConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._store = store
        self._audit = audit
        self._workflow = workflow
        self._engine = engine
        self._config = config or StorageConfig()
        self._clock = clock

    @property
    def max_upload_bytes(self) -> int:
        return self._config.max_upload_size_mb * 1024 * 1024

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _load_file(self, session: Any, file_id: int, principal: Any) -> StoredFile:
        file = session.get(StoredFile, file_id)
        if file is None or (file.is_deleted and not file.is_owned_by(principal.id)):
            raise FileGateNotFoundError(
                f"File {file_id} not found",
                resource_type="FILE",
                file_id=file_id,
            )
        return file

    def _forbid(
        self,
        principal: Any,
        action: AuditAction,
        file: Optional[StoredFile],
        file_id: Optional[int],
        message: str,
        capability: Optional[Capability] = None,
    ) -> FileGateForbiddenError:
        """Record the FAILURE entry and build the error for the caller to raise."""
        self._audit.record(
            principal, action, ResourceType.FILE, file_id,
            file_name=file.file_name if file else None,
            details=message,
            outcome=AuditOutcome.FAILURE,
        )
        role = getattr(principal, "role", None)
        return FileGateForbiddenError(
            message,
            principal_id=getattr(principal, "id", None),
            file_id=file_id,
            role=getattr(role, "value", role),
            required_capability=capability.value if capability else None,
        )

    def _to_metadata(self, principal: Any, file: StoredFile, now: datetime) -> FileMetadata:
        return FileMetadata.from_record(
            file,
            viewer_id=principal.id,
            sensitive=self._engine.can_view_sensitive_metadata(principal, file, now),
            can_download=self._engine.can_download_content(principal, file, now),
        )

    # -----------------------------------------------------------------------
    # Upload / Download
    # -----------------------------------------------------------------------

    def upload(
        self,
        owner: Any,
        file_name: str,
        data: bytes,
        visibility: Union[Visibility, str] = Visibility.PRIVATE,
        purpose: Optional[str] = None,
        category: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> FileMetadata:
        """
        Encrypt and store a new file owned by *owner*.

        Raises:
            FileGateForbiddenError: Role lacks FILE_UPLOAD (auditors).
            FileGateValidationError: Empty name, empty data, too large, bad visibility.
        """
        if not has_capability(owner.role, Capability.FILE_UPLOAD):
            raise self._forbid(
                owner, AuditAction.UPLOAD, None, None,
                "Role may not upload files", Capability.FILE_UPLOAD,
            )

        file_name = (file_name or "").strip()
        if not file_name:
            raise FileGateValidationError("File name is required", field="file_name")
        if not data:
            raise FileGateValidationError("File is empty", field="data")
        if len(data) > self.max_upload_bytes:
            raise FileGateValidationError(
                f"File size ({len(data) / (1024 * 1024):.1f}MB) exceeds limit "
                f"({self._config.max_upload_size_mb}MB)",
                field="data",
            )
        visibility = parse_visibility(visibility)
        if not content_type:
            guessed, _ = mimetypes.guess_type(file_name)
            content_type = guessed or DEFAULT_CONTENT_TYPE

        storage_key, key_id = self._store.put(data, file_name)
        now = self._clock()
        try:
            with session_scope(self._session_factory) as session:
                file = StoredFile(
                    file_name=file_name,
                    storage_key=storage_key,
                    key_id=key_id,
                    owner_id=owner.id,
                    visibility=visibility,
                    size_bytes=len(data),
                    content_type=content_type,
                    purpose=(purpose or "").strip() or None,
                    category=(category or "").strip() or None,
                    uploaded_at=now,
                )
                session.add(file)
                session.flush()
                session.refresh(file)
        except Exception:
            self._store.delete(storage_key)
            raise

        logger.info("Uploaded file %s (%s, %d bytes) for %s", file.id, file_name, len(data), owner.id)
        self._audit.record(
            owner, AuditAction.UPLOAD, ResourceType.FILE, file.id,
            file_name=file_name,
            details=f"Uploaded {len(data)} bytes as {visibility.value}",
        )
        return self._to_metadata(owner, file, now)

    def download(self, principal: Any, file_id: int) -> bytes:
        """
        Return the decrypted bytes of a file.

        Raises:
            FileGateNotFoundError: Missing, or soft-deleted and not owned by principal.
            FileGateForbiddenError: can_download_content is false (audited DOWNLOAD_DENIED).
        """
        now = self._clock()
        with session_scope(self._session_factory) as session:
            file = self._load_file(session, file_id, principal)

        allowed = self._engine.can_download_content(principal, file, now)
        role = normalize_role(principal.role)
        log(log_decision(
            "can_download_content", allowed, principal.id, role.value, file_id,
            reason="allowed" if allowed else f"{file.visibility.value} file without download rights",
        ))
        if not allowed:
            self._audit.record(
                principal, AuditAction.DOWNLOAD_DENIED, ResourceType.FILE, file_id,
                file_name=file.file_name,
                details=f"Download denied ({file.visibility.value})",
                outcome=AuditOutcome.FAILURE,
            )
            raise FileGateForbiddenError(
                "You do not have permission to download this file",
                principal_id=principal.id,
                file_id=file_id,
                role=role.value,
                required_capability=Capability.FILE_DOWNLOAD.value,
            )

        data = self._store.get(file.storage_key)
        self._audit.record(
            principal, AuditAction.DOWNLOAD, ResourceType.FILE, file_id,
            file_name=file.file_name,
            details=f"Downloaded {len(data)} bytes",
        )
        if is_admin_class(role) and not file.is_owned_by(principal.id):
            self._audit.record(
                principal, AuditAction.ADMIN_FILE_ACCESS, ResourceType.FILE, file_id,
                file_name=file.file_name,
                details=f"Admin accessed file owned by principal {file.owner_id}",
            )
        return data

    # -----------------------------------------------------------------------
    # Metadata
    # -----------------------------------------------------------------------

    def list_visible(self, principal: Any) -> List[FileMetadata]:
        """
        Files the principal sees in the ordinary listing, newest first.

        USER: own files. ADMIN-class: every non-deleted file. AUDITOR: nothing
        (see audit_file_metadata).
        """
        role = normalize_role(principal.role)
        if is_auditor(role):
            return []

        now = self._clock()
        with session_scope(self._session_factory) as session:
            query = session.query(StoredFile).filter(StoredFile.is_deleted.is_(False))
            if not is_admin_class(role):
                query = query.filter(StoredFile.owner_id == principal.id)
            files = query.order_by(StoredFile.uploaded_at.desc(), StoredFile.id.desc()).all()

        visible = [
            self._to_metadata(principal, f, now)
            for f in files
            if self._engine.can_view_metadata(principal, f, now)
        ]
        if is_admin_class(role):
            self._audit.record(
                principal, AuditAction.VIEW_FILE_METADATA, ResourceType.FILE,
                details=f"Listed {len(visible)} files",
            )
        return visible

    def get_metadata(self, principal: Any, file_id: int) -> FileMetadata:
        now = self._clock()
        with session_scope(self._session_factory) as session:
            file = self._load_file(session, file_id, principal)
        if not self._engine.can_view_metadata(principal, file, now):
            raise self._forbid(
                principal, AuditAction.VIEW_FILE_METADATA, file, file_id,
                "You do not have permission to view this file",
            )
        return self._to_metadata(principal, file, now)

    def audit_file_metadata(
        self,
        principal: Any,
        page: int = 0,
        page_size: Optional[int] = None,
        search: Optional[str] = None,
    ) -> List[AuditFileMetadata]:
        """
        Metadata-only file listing for compliance review. Includes soft-deleted
        files; never exposes purpose, category or content.
        """
        self._require_audit_metadata(principal)

        page = max(page, 0)
        size = self._audit.clamp_page_size(page_size)
        term = (search or "").strip().lower()
        with session_scope(self._session_factory) as session:
            query = session.query(StoredFile)
            if term:
                query = query.filter(func.lower(StoredFile.file_name).contains(term))
            files = (
                query.order_by(StoredFile.uploaded_at.desc(), StoredFile.id.desc())
                .offset(page * size)
                .limit(size)
                .all()
            )

        self._audit.record(
            principal, AuditAction.VIEW_FILE_METADATA, ResourceType.FILE,
            details=f"Viewed file metadata page={page}" + (f" search='{term}'" if term else ""),
        )
        return [AuditFileMetadata.from_record(f) for f in files]

    def audit_file_detail(self, principal: Any, file_id: int) -> AuditFileMetadata:
        """Basic fields of one file, soft-deleted or not."""
        self._require_audit_metadata(principal, file_id)
        with session_scope(self._session_factory) as session:
            file = session.get(StoredFile, file_id)
        if file is None:
            raise FileGateNotFoundError(
                f"File {file_id} not found", resource_type="FILE", file_id=file_id,
            )
        self._audit.record(
            principal, AuditAction.VIEW_FILE_METADATA, ResourceType.FILE, file_id,
            file_name=file.file_name,
            details="Viewed file metadata detail",
        )
        return AuditFileMetadata.from_record(file)

    def audit_file_stats(self, principal: Any) -> FileStats:
        self._require_audit_metadata(principal)
        with session_scope(self._session_factory) as session:
            total, total_size = session.query(
                func.count(StoredFile.id), func.coalesce(func.sum(StoredFile.size_bytes), 0),
            ).one()
            deleted = (
                session.query(func.count(StoredFile.id))
                .filter(StoredFile.is_deleted.is_(True))
                .scalar()
            ) or 0
        self._audit.record(
            principal, AuditAction.VIEW_FILE_METADATA, ResourceType.FILE,
            details="Viewed file statistics",
        )
        return FileStats(total_files=total, total_size_bytes=total_size, deleted_files=deleted)

    def _require_audit_metadata(self, principal: Any, file_id: Optional[int] = None) -> None:
        if not self._engine.can_view_audit_metadata(principal):
            raise self._forbid(
                principal, AuditAction.VIEW_FILE_METADATA, None, file_id,
                "File metadata review requires VIEW_AUDIT_METADATA",
                Capability.VIEW_AUDIT_METADATA,
            )

    # -----------------------------------------------------------------------
    # Access requests
    # -----------------------------------------------------------------------

    def inbox(self, owner: Any) -> List[AccessRequestView]:
        """PENDING requests on the owner's files, newest first."""
        now = self._clock()
        return [AccessRequestView.from_record(r, now) for r in self._workflow.inbox(owner)]

    def my_requests(self, requester: Any) -> List[AccessRequestView]:
        """The requester's own requests with their current is_active flag, newest first."""
        now = self._clock()
        return [AccessRequestView.from_record(r, now) for r in self._workflow.my_requests(requester)]

    # -----------------------------------------------------------------------
    # Owner operations
    # -----------------------------------------------------------------------

    def update_visibility(
        self,
        principal: Any,
        file_id: int,
        visibility: Union[Visibility, str],
    ) -> FileMetadata:
        """
        Change a file's visibility. Owner only.

        Leaving PROTECTED clears every access request for the file in the same
        transaction, so no grant survives the change.
        """
        new_visibility = parse_visibility(visibility)
        now = self._clock()
        with session_scope(self._session_factory) as session:
            file = self._load_file(session, file_id, principal)
            if not file.is_owned_by(principal.id):
                raise self._forbid(
                    principal, AuditAction.VISIBILITY_UPDATE, file, file_id,
                    "Only the owner can change visibility",
                )
            old_visibility = file.visibility
            cleared = 0
            if old_visibility is Visibility.PROTECTED and new_visibility is not Visibility.PROTECTED:
                cleared = self._workflow.cascade_clear(file_id, session=session)
            file.visibility = new_visibility

        details = f"Visibility {old_visibility.value} -> {new_visibility.value}"
        if cleared:
            details += f"; cleared {cleared} access request(s)"
        self._audit.record(
            principal, AuditAction.VISIBILITY_UPDATE, ResourceType.FILE, file_id,
            file_name=file.file_name,
            details=details,
        )
        return self._to_metadata(principal, file, now)

    def delete(self, principal: Any, file_id: int) -> None:
        """Soft-delete a file and clear its access requests. Owner only."""
        now = self._clock()
        with session_scope(self._session_factory) as session:
            file = self._load_file(session, file_id, principal)
            if not file.is_owned_by(principal.id):
                raise self._forbid(
                    principal, AuditAction.DELETE, file, file_id,
                    "Only the owner can delete this file",
                )
            if file.is_deleted:
                raise FileGateNotFoundError(
                    f"File {file_id} not found", resource_type="FILE", file_id=file_id,
                )
            cleared = self._workflow.cascade_clear(file_id, session=session)
            file.is_deleted = True
            file.deleted_at = now
            file.deleted_by = principal.id
            file_name = file.file_name

        self._audit.record(
            principal, AuditAction.DELETE, ResourceType.FILE, file_id,
            file_name=file_name,
            details=f"Deleted file; cleared {cleared} access request(s)",
        )

    # -----------------------------------------------------------------------
    # Key rotation
    # -----------------------------------------------------------------------

    def rotate_keys(self, actor: Any) -> int:
        """
        Re-seal every stored file not yet under the active key and record the
        new key_id on its row. Soft-deleted files are rotated too; their
        bytes stay on disk. Returns the number of files rotated.

        Raises:
            FileGateForbiddenError: Actor lacks ADMIN_OVERRIDE.
            FileGateStorageError: A file's bytes are missing or unreadable.
                Files rotated before the failure keep their new key_id.
        """
        if not has_capability(actor.role, Capability.ADMIN_OVERRIDE):
            self._audit.record(
                actor, AuditAction.KEY_ROTATION, ResourceType.SYSTEM,
                details="Key rotation requires ADMIN_OVERRIDE",
                outcome=AuditOutcome.FAILURE,
            )
            raise FileGateForbiddenError(
                "ADMIN_OVERRIDE required",
                principal_id=actor.id,
                role=normalize_role(actor.role).value,
                required_capability=Capability.ADMIN_OVERRIDE.value,
            )

        active = self._store.active_key_id
        with session_scope(self._session_factory) as session:
            file_ids = [
                row[0]
                for row in session.query(StoredFile.id)
                .filter(StoredFile.key_id != active)
                .order_by(StoredFile.id)
                .all()
            ]

        for file_id in file_ids:
            with session_scope(self._session_factory) as session:
                file = session.get(StoredFile, file_id)
                file.key_id = self._store.rotate(file.storage_key)

        logger.info("Rotated %d file(s) to key %s", len(file_ids), active)
        self._audit.record(
            actor, AuditAction.KEY_ROTATION, ResourceType.SYSTEM,
            details=f"Rotated {len(file_ids)} file(s) to key {active}",
        )
        return len(file_ids)
