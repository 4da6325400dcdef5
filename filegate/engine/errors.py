"""
FileGate Error Hierarchy — Structured exceptions for every engine decision.

Every error carries a message plus free-form context (file_id, request_id,
principal_id, ...) and serializes to JSON so a transport layer can map it to a
response body without inspecting internals.

Hierarchy:
    FileGateError
    ├── FileGateNotFoundError       — File / request / principal absent
    ├── FileGateForbiddenError      — Role or ownership check failed
    │   └── FileGateInvalidRoleError
    ├── FileGateInvalidStateError   — Wrong workflow status or visibility
    │   └── FileGateSelfRequestError
    ├── FileGateValidationError     — Missing purpose, bad access kind, bad upload
    ├── FileGateAuditError          — Audit persistence / append-only violation
    ├── FileGateStorageError        — Byte store failure
    └── FileGateConfigError         — Invalid filegate.yaml

Transport mapping (outside this package):
    NotFound → 404, Forbidden → 403, InvalidState / Validation → 400.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class FileGateError(Exception):
    """
    Base error for all FileGate failures.
    All context is kept as a dict so it can be logged or returned as-is.
    """

    status_code: int = 500

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.principal_id: Optional[int] = context.get("principal_id")
        self.file_id: Optional[int] = context.get("file_id")
        self.request_id: Optional[int] = context.get("request_id")
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "status_code": self.status_code,
            "principal_id": self.principal_id,
            "file_id": self.file_id,
            "request_id": self.request_id,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("principal_id", "file_id", "request_id")
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.file_id is not None:
            parts.append(f"file_id={self.file_id}")
        if self.request_id is not None:
            parts.append(f"request_id={self.request_id}")
        if self.principal_id is not None:
            parts.append(f"principal_id={self.principal_id}")
        return " | ".join(parts)


class FileGateNotFoundError(FileGateError):
    """File, access request or principal does not exist."""

    status_code = 404

    def __init__(self, message: str, **context: Any):
        self.resource_type: Optional[str] = context.get("resource_type")
        super().__init__(message, **context)


class FileGateForbiddenError(FileGateError):
    """
    Role or ownership check failed.
    Raised only after a FAILURE audit entry has been recorded.
    """

    status_code = 403

    def __init__(self, message: str, **context: Any):
        self.role: Optional[str] = context.get("role")
        self.required_capability: Optional[str] = context.get("required_capability")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["role"] = self.role
        d["required_capability"] = self.required_capability
        return d


class FileGateInvalidRoleError(FileGateForbiddenError):
    """Role is unknown, or lacks the capability the operation needs."""
    pass


class FileGateInvalidStateError(FileGateError):
    """Workflow status or file visibility does not allow the operation."""

    status_code = 400

    def __init__(self, message: str, **context: Any):
        self.current_state: Optional[str] = context.get("current_state")
        super().__init__(message, **context)


class FileGateSelfRequestError(FileGateInvalidStateError):
    """The owner tried to request access to their own file."""
    pass


class FileGateValidationError(FileGateError):
    """Input validation failed (blank purpose, unsupported access kind, empty upload)."""

    status_code = 400

    def __init__(self, message: str, **context: Any):
        self.field: Optional[str] = context.get("field")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["field"] = self.field
        return d


class FileGateAuditError(FileGateError):
    """Audit entry could not be persisted, or an append-only rule was violated."""
    pass


class FileGateStorageError(FileGateError):
    """Byte store read/write/decrypt failed."""

    def __init__(self, message: str, **context: Any):
        self.storage_key: Optional[str] = context.get("storage_key")
        super().__init__(message, **context)


class FileGateConfigError(FileGateError):
    """Configuration error — invalid filegate.yaml."""
    pass
