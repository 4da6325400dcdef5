"""
FileGate response models.

Pydantic DTOs handed to the transport layer. None of them carries the
storage key, the encryption key id or any credential.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from filegate.db.models import AccessGrantRequest, AccessKind, AccessStatus, StoredFile, Visibility


class FileMetadata(BaseModel):
    """Ordinary file listing row. purpose/category are None unless the viewer may see them."""

    id: int
    file_name: str
    owner_id: int
    owner_username: Optional[str] = None
    visibility: Visibility
    size_bytes: int
    content_type: Optional[str] = None
    uploaded_at: datetime
    is_owner: bool = False
    is_deleted: bool = False
    can_download: bool = False
    purpose: Optional[str] = None
    category: Optional[str] = None

    @classmethod
    def from_record(
        cls,
        file: StoredFile,
        viewer_id: Optional[int],
        sensitive: bool,
        can_download: bool,
    ) -> "FileMetadata":
        return cls(
            id=file.id,
            file_name=file.file_name,
            owner_id=file.owner_id,
            owner_username=file.owner.username if file.owner else None,
            visibility=file.visibility,
            size_bytes=file.size_bytes,
            content_type=file.content_type,
            uploaded_at=file.uploaded_at,
            is_owner=file.is_owned_by(viewer_id),
            is_deleted=file.is_deleted,
            can_download=can_download,
            purpose=file.purpose if sensitive else None,
            category=file.category if sensitive else None,
        )


class AuditFileMetadata(BaseModel):
    """Basic fields only, for the auditor metadata path."""

    id: int
    file_name: str
    owner_username: Optional[str] = None
    visibility: Visibility
    size_bytes: int
    content_type: Optional[str] = None
    uploaded_at: datetime
    is_deleted: bool = False

    @classmethod
    def from_record(cls, file: StoredFile) -> "AuditFileMetadata":
        return cls(
            id=file.id,
            file_name=file.file_name,
            owner_username=file.owner.username if file.owner else None,
            visibility=file.visibility,
            size_bytes=file.size_bytes,
            content_type=file.content_type,
            uploaded_at=file.uploaded_at,
            is_deleted=file.is_deleted,
        )


class FileStats(BaseModel):
    total_files: int
    total_size_bytes: int
    deleted_files: int


class AccessRequestView(BaseModel):
    id: int
    file_id: int
    file_name: Optional[str] = None
    requester_id: int
    requester_username: Optional[str] = None
    access_kind: AccessKind
    status: AccessStatus
    purpose: str
    created_at: datetime
    decided_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: bool = False

    @classmethod
    def from_record(cls, request: AccessGrantRequest, now: datetime) -> "AccessRequestView":
        return cls(
            id=request.id,
            file_id=request.file_id,
            file_name=request.file.file_name if request.file else None,
            requester_id=request.requester_id,
            requester_username=request.requester.username if request.requester else None,
            access_kind=request.access_kind,
            status=request.status,
            purpose=request.purpose,
            created_at=request.created_at,
            decided_at=request.decided_at,
            expires_at=request.expires_at,
            is_active=(
                request.status is AccessStatus.APPROVED
                and request.expires_at is not None
                and request.expires_at > now
            ),
        )
