"""
FileGate Models — SQLAlchemy models for the four persisted record types.

Tables:
1. principals       — Authenticated actors (supplied by the identity collaborator)
2. stored_files     — File metadata; bytes live in the byte store under storage_key
3. access_requests  — Time-bounded grant requests on PROTECTED files
4. audit_entries    — Write-once audit trail (no FK to principals)

Enumerations used by the columns live here as well so every layer shares
one definition.
"""

from __future__ import annotations

import enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    event,
)
from sqlalchemy.orm import relationship

from filegate.db.base import Base, SoftDeleteMixin, TimestampMixin, UTCDateTime, utcnow
from filegate.engine.errors import FileGateAuditError
from filegate.engine.roles import Role


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Visibility(str, enum.Enum):
    PRIVATE = "PRIVATE"
    PUBLIC = "PUBLIC"
    PROTECTED = "PROTECTED"


class AccessKind(str, enum.Enum):
    VIEW = "VIEW"
    DOWNLOAD = "DOWNLOAD"

    def satisfies(self, needed: "AccessKind") -> bool:
        """DOWNLOAD implies VIEW; VIEW does not imply DOWNLOAD."""
        if needed is AccessKind.VIEW:
            return True
        return self is AccessKind.DOWNLOAD


class AccessStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AuditOutcome(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class ResourceType(str, enum.Enum):
    FILE = "FILE"
    USER = "USER"
    ACCESS_REQUEST = "ACCESS_REQUEST"
    AUDIT_LOG = "AUDIT_LOG"
    SYSTEM = "SYSTEM"


class AuditAction(str, enum.Enum):
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    SIGNUP = "SIGNUP"
    UPLOAD = "UPLOAD"
    DOWNLOAD = "DOWNLOAD"
    DOWNLOAD_DENIED = "DOWNLOAD_DENIED"
    DELETE = "DELETE"
    SHARE = "SHARE"
    PERMISSION_UPDATE = "PERMISSION_UPDATE"
    ROLE_UPDATE = "ROLE_UPDATE"
    ACCESS_REQUEST = "ACCESS_REQUEST"
    ACCESS_GRANT = "ACCESS_GRANT"
    ACCESS_DENY = "ACCESS_DENY"
    ACCESS_REVOKE = "ACCESS_REVOKE"
    VIEW_AUDIT_LOGS = "VIEW_AUDIT_LOGS"
    EXPORT_AUDIT_LOGS = "EXPORT_AUDIT_LOGS"
    VIEW_AUDIT_STATS = "VIEW_AUDIT_STATS"
    VIEW_FILE_METADATA = "VIEW_FILE_METADATA"
    VIEW_USER_METADATA = "VIEW_USER_METADATA"
    VISIBILITY_UPDATE = "VISIBILITY_UPDATE"
    USER_DISABLED = "USER_DISABLED"
    USER_ENABLED = "USER_ENABLED"
    ADMIN_FILE_ACCESS = "ADMIN_FILE_ACCESS"
    KEY_ROTATION = "KEY_ROTATION"


def _enum(enum_cls: type, length: int = 30) -> Enum:
    return Enum(enum_cls, native_enum=False, length=length, validate_strings=True)


# ---------------------------------------------------------------------------
# 1. Principals
# ---------------------------------------------------------------------------

class Principal(Base, TimestampMixin):
    __tablename__ = "principals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=True)
    role = Column(_enum(Role, 20), default=Role.USER, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Principal(id={self.id}, username='{self.username}', role='{self.role}')>"


# ---------------------------------------------------------------------------
# 2. Stored Files
# ---------------------------------------------------------------------------

class StoredFile(Base, SoftDeleteMixin):
    __tablename__ = "stored_files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_name = Column(String(512), nullable=False, index=True)
    storage_key = Column(String(500), nullable=False)
    key_id = Column(String(50), nullable=False)
    owner_id = Column(Integer, ForeignKey("principals.id"), nullable=False, index=True)
    visibility = Column(_enum(Visibility, 20), default=Visibility.PRIVATE, nullable=False, index=True)
    size_bytes = Column(Integer, default=0, nullable=False)
    content_type = Column(String(100), nullable=True)
    purpose = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    uploaded_at = Column(UTCDateTime, default=utcnow, nullable=False, index=True)

    owner = relationship("Principal", lazy="joined")

    def is_owned_by(self, principal_id: Optional[int]) -> bool:
        return principal_id is not None and self.owner_id == principal_id

    def __repr__(self) -> str:
        return f"<StoredFile(id={self.id}, name='{self.file_name}', visibility='{self.visibility}')>"


# ---------------------------------------------------------------------------
# 3. Access Requests
# ---------------------------------------------------------------------------

class AccessGrantRequest(Base):
    __tablename__ = "access_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(Integer, ForeignKey("stored_files.id", ondelete="CASCADE"), nullable=False)
    requester_id = Column(Integer, ForeignKey("principals.id"), nullable=False, index=True)
    access_kind = Column(_enum(AccessKind, 20), nullable=False)
    status = Column(_enum(AccessStatus, 20), default=AccessStatus.PENDING, nullable=False, index=True)
    purpose = Column(Text, nullable=False)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False, index=True)
    decided_at = Column(UTCDateTime, nullable=True)
    decided_by = Column(Integer, nullable=True)
    expires_at = Column(UTCDateTime, nullable=True)
    # Bumped on every transition; the compare-and-swap guard matches on it.
    version = Column(Integer, default=1, nullable=False)

    file = relationship("StoredFile", lazy="joined")
    requester = relationship("Principal", lazy="joined")

    __table_args__ = (
        Index("idx_ar_grant_lookup", "file_id", "requester_id", "status", "expires_at"),
    )

    @property
    def is_pending(self) -> bool:
        return self.status is AccessStatus.PENDING

    def __repr__(self) -> str:
        return (
            f"<AccessGrantRequest(id={self.id}, file_id={self.file_id}, "
            f"kind='{self.access_kind}', status='{self.status}')>"
        )


# ---------------------------------------------------------------------------
# 4. Audit Entries
# ---------------------------------------------------------------------------

class AuditEntry(Base):
    """
    One immutable record of a security-relevant decision or mutation.

    actor_* columns are copied, not referenced, so entries survive principal
    changes. All three null means system / anonymous.
    """
    __tablename__ = "audit_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_id = Column(Integer, nullable=True, index=True)
    actor_username = Column(String(100), nullable=True, index=True)
    actor_role = Column(String(20), nullable=True)
    action = Column(_enum(AuditAction, 40), nullable=False, index=True)
    resource_type = Column(_enum(ResourceType, 20), nullable=False, index=True)
    resource_id = Column(Integer, nullable=True)
    outcome = Column(_enum(AuditOutcome, 10), nullable=False, index=True)
    details = Column(Text, nullable=True)
    file_name = Column(String(512), nullable=True, index=True)
    ip_address = Column(String(45), nullable=True)  # IPv6 max
    user_agent = Column(Text, nullable=True)
    timestamp = Column(UTCDateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<AuditEntry(id={self.id}, action='{self.action}', outcome='{self.outcome}')>"


@event.listens_for(AuditEntry, "before_update")
def _reject_audit_update(mapper, connection, target) -> None:
    raise FileGateAuditError("Audit entries are append-only", entry_id=target.id)


@event.listens_for(AuditEntry, "before_delete")
def _reject_audit_delete(mapper, connection, target) -> None:
    raise FileGateAuditError("Audit entries are append-only", entry_id=target.id)
