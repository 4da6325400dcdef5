"""
FileGate Audit Trail — Append-only record of every security decision and mutation.

Implements:
- AuditTrail.record(): best-effort write in its own session; never raises
- Filtered, paginated search (newest first) with a hard page-size ceiling
- CSV export bounded by a hard row cap
- Filter-option discovery and outcome/action counts for summary views
- AuditReader: the privileged read surface, which audits its own reads

Audit writes run outside the business transaction. The operation that
triggered the audit call has already committed (or is about to raise), and a
failed audit write is reported through the local log channel and an
AuditWriteResult instead of an exception.
"""

from __future__ import annotations

import csv
import enum
import io
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from filegate.db.base import utcnow
from filegate.db.models import AuditAction, AuditEntry, AuditOutcome, ResourceType
from filegate.db.session import SessionFactory, session_scope
from filegate.engine.config import AuditConfig
from filegate.engine.context import Origin, current_origin
from filegate.engine.errors import (
    FileGateForbiddenError,
    FileGateNotFoundError,
    FileGateValidationError,
)
from filegate.engine.logging import log, log_audit_failure
from filegate.engine.roles import Capability, has_capability

logger = logging.getLogger("filegate.engine.audit")

CSV_HEADER = [
    "ID", "Timestamp", "Username", "Action", "Status",
    "File Name", "Entity ID", "IP Address", "User Agent", "Details",
]
CSV_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

E = TypeVar("E", bound=enum.Enum)


def _coerce(enum_cls: Type[E], value: Union[E, str, None], field_name: str) -> Optional[E]:
    """Accept an enum member or its string value; blank strings mean 'no filter'."""
    if value is None or isinstance(value, enum_cls):
        return value
    text = str(value).strip().upper()
    if not text:
        return None
    try:
        return enum_cls(text)
    except ValueError:
        raise FileGateValidationError(
            f"Unknown {field_name} '{value}'",
            field=field_name,
        )


def _clip(value: Optional[str], column: str) -> Optional[str]:
    """Cut *value* to the VARCHAR width of an audit_entries column."""
    if value is None:
        return None
    length = AuditEntry.__table__.c[column].type.length
    return value[:length] if length else value


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class AuditWriteResult:
    """Outcome of one audit write. Callers inspect it for logging only."""

    ok: bool
    entry_id: Optional[int] = None
    error: Optional[str] = None


@dataclass
class AuditFilters:
    """Search / export filters. Every field is optional; None means 'any'."""

    actor_id: Optional[int] = None
    actor_username: Optional[str] = None      # substring, case-insensitive
    action: Union[AuditAction, str, None] = None
    outcome: Union[AuditOutcome, str, None] = None
    resource_type: Union[ResourceType, str, None] = None
    file_name: Optional[str] = None           # substring, case-insensitive
    start: Optional[datetime] = None          # inclusive
    end: Optional[datetime] = None            # inclusive

    def describe(self) -> str:
        parts = [
            f"{name}={value.value if isinstance(value, enum.Enum) else value}"
            for name, value in vars(self).items()
            if value not in (None, "")
        ]
        return ", ".join(parts) or "none"


@dataclass
class AuditPage:
    entries: List[AuditEntry]
    page: int
    page_size: int
    total_items: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return math.ceil(self.total_items / self.page_size)


class AuditTrail:
    """
    Append-only audit trail.

    Usage:
        trail = AuditTrail(session_factory)
        trail.record(principal, AuditAction.UPLOAD, ResourceType.FILE, file.id,
                     file_name=file.file_name, details="Uploaded file")
        page = trail.search(AuditFilters(action=AuditAction.DOWNLOAD_DENIED))
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        config: Optional[AuditConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._config = config or AuditConfig()
        self._clock = clock

    @property
    def config(self) -> AuditConfig:
        return self._config

    # -----------------------------------------------------------------------
    # Write
    # -----------------------------------------------------------------------

    def record(
        self,
        actor: Optional[Any],
        action: AuditAction,
        resource_type: ResourceType,
        resource_id: Optional[int] = None,
        file_name: Optional[str] = None,
        details: Optional[str] = None,
        outcome: AuditOutcome = AuditOutcome.SUCCESS,
        origin: Optional[Origin] = None,
    ) -> AuditWriteResult:
        """
        Append one audit entry. Never raises.

        Args:
            actor: The acting principal, or None for system/anonymous events.
            origin: Client IP / user agent. Defaults to the current RequestContext.
        """
        if origin is None:
            origin = current_origin() or Origin()

        actor_id = getattr(actor, "id", None)
        role = getattr(actor, "role", None)
        try:
            entry = AuditEntry(
                actor_id=actor_id,
                actor_username=_clip(getattr(actor, "username", None), "actor_username"),
                actor_role=_clip(role.value if isinstance(role, enum.Enum) else role, "actor_role"),
                action=action,
                resource_type=resource_type,
                resource_id=resource_id,
                outcome=outcome,
                details=details,
                file_name=_clip(file_name, "file_name"),
                ip_address=_clip(origin.ip_address, "ip_address"),
                user_agent=origin.user_agent,
                timestamp=self._clock(),
            )
            with session_scope(self._session_factory) as session:
                session.add(entry)
                session.flush()
                entry_id = entry.id
            return AuditWriteResult(ok=True, entry_id=entry_id)
        except Exception as e:
            # The only place the core absorbs an error; see module docstring.
            logger.error(
                "Audit write failed: action=%s resource=%s:%s actor=%s error=%s",
                getattr(action, "value", action), getattr(resource_type, "value", resource_type),
                resource_id, actor_id, e,
            )
            log(log_audit_failure(
                action=str(getattr(action, "value", action)),
                resource_type=str(getattr(resource_type, "value", resource_type)),
                resource_id=resource_id,
                actor_id=actor_id,
                outcome=str(getattr(outcome, "value", outcome)),
                error=str(e),
            ))
            return AuditWriteResult(ok=False, error=str(e))

    # -----------------------------------------------------------------------
    # Read
    # -----------------------------------------------------------------------

    def _filtered_query(self, session: Session, filters: Optional[AuditFilters]) -> Query:
        query = session.query(AuditEntry)
        if filters is None:
            return query.order_by(AuditEntry.timestamp.desc(), AuditEntry.id.desc())

        action = _coerce(AuditAction, filters.action, "action")
        outcome = _coerce(AuditOutcome, filters.outcome, "outcome")
        resource_type = _coerce(ResourceType, filters.resource_type, "resource_type")
        username = _blank_to_none(filters.actor_username)
        file_name = _blank_to_none(filters.file_name)

        if filters.actor_id is not None:
            query = query.filter(AuditEntry.actor_id == filters.actor_id)
        if username:
            query = query.filter(func.lower(AuditEntry.actor_username).contains(username.lower()))
        if action is not None:
            query = query.filter(AuditEntry.action == action)
        if outcome is not None:
            query = query.filter(AuditEntry.outcome == outcome)
        if resource_type is not None:
            query = query.filter(AuditEntry.resource_type == resource_type)
        if file_name:
            query = query.filter(func.lower(AuditEntry.file_name).contains(file_name.lower()))
        if filters.start is not None:
            query = query.filter(AuditEntry.timestamp >= filters.start)
        if filters.end is not None:
            query = query.filter(AuditEntry.timestamp <= filters.end)

        return query.order_by(AuditEntry.timestamp.desc(), AuditEntry.id.desc())

    def clamp_page_size(self, page_size: Optional[int]) -> int:
        if page_size is None or page_size < 1:
            page_size = self._config.default_page_size
        return min(page_size, self._config.max_page_size)

    def search(
        self,
        filters: Optional[AuditFilters] = None,
        page: int = 0,
        page_size: Optional[int] = None,
    ) -> AuditPage:
        """Return one page of matching entries, newest first."""
        page = max(page, 0)
        size = self.clamp_page_size(page_size)
        with session_scope(self._session_factory) as session:
            query = self._filtered_query(session, filters)
            total = query.order_by(None).count()
            entries = query.offset(page * size).limit(size).all()
        return AuditPage(entries=entries, page=page, page_size=size, total_items=total)

    def export_csv(
        self,
        filters: Optional[AuditFilters] = None,
        row_cap: Optional[int] = None,
    ) -> str:
        """Render matching entries as CSV, capped at the configured export row limit."""
        cap = self._config.export_row_cap
        if row_cap is not None:
            cap = max(0, min(row_cap, cap))
        width = self._config.user_agent_export_width

        with session_scope(self._session_factory) as session:
            entries = self._filtered_query(session, filters).limit(cap).all()

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for entry in entries:
            writer.writerow([
                entry.id,
                entry.timestamp.strftime(CSV_TIMESTAMP_FORMAT) if entry.timestamp else "",
                entry.actor_username or "",
                entry.action.value,
                entry.outcome.value,
                entry.file_name or "",
                "" if entry.resource_id is None else entry.resource_id,
                entry.ip_address or "",
                (entry.user_agent or "")[:width],
                entry.details or "",
            ])
        return buffer.getvalue()

    def get(self, entry_id: int) -> AuditEntry:
        with session_scope(self._session_factory) as session:
            entry = session.get(AuditEntry, entry_id)
        if entry is None:
            raise FileGateNotFoundError(
                f"Audit entry {entry_id} not found",
                resource_type="AUDIT_LOG",
                entry_id=entry_id,
            )
        return entry

    def distinct_actions(self) -> List[str]:
        with session_scope(self._session_factory) as session:
            rows = session.query(AuditEntry.action).distinct().all()
        return sorted(row[0].value for row in rows if row[0] is not None)

    def distinct_actors(self) -> List[str]:
        with session_scope(self._session_factory) as session:
            rows = (
                session.query(AuditEntry.actor_username)
                .filter(AuditEntry.actor_username.isnot(None))
                .distinct()
                .all()
            )
        return sorted(row[0] for row in rows)

    def count(self) -> int:
        with session_scope(self._session_factory) as session:
            return session.query(func.count(AuditEntry.id)).scalar() or 0

    def count_by_outcome(self, outcome: Union[AuditOutcome, str]) -> int:
        value = _coerce(AuditOutcome, outcome, "outcome")
        with session_scope(self._session_factory) as session:
            return (
                session.query(func.count(AuditEntry.id))
                .filter(AuditEntry.outcome == value)
                .scalar()
            ) or 0

    def count_by_action(self, action: Union[AuditAction, str]) -> int:
        value = _coerce(AuditAction, action, "action")
        with session_scope(self._session_factory) as session:
            return (
                session.query(func.count(AuditEntry.id))
                .filter(AuditEntry.action == value)
                .scalar()
            ) or 0


class AuditReader:
    """
    Privileged read surface over the trail (auditor console / admin dashboard).

    Every call requires VIEW_AUDIT_LOGS. Denials are audited as FAILURE and
    raise; successful reads are themselves audited.
    """

    def __init__(self, trail: AuditTrail):
        self._trail = trail

    def _authorize(self, principal: Any, action: AuditAction) -> None:
        role = getattr(principal, "role", None)
        if principal is not None and has_capability(role, Capability.VIEW_AUDIT_LOGS):
            return
        self._trail.record(
            principal, action, ResourceType.AUDIT_LOG,
            details="Audit log access denied",
            outcome=AuditOutcome.FAILURE,
        )
        raise FileGateForbiddenError(
            "Audit log access requires VIEW_AUDIT_LOGS",
            principal_id=getattr(principal, "id", None),
            role=getattr(role, "value", role),
            required_capability=Capability.VIEW_AUDIT_LOGS.value,
        )

    def search(
        self,
        principal: Any,
        filters: Optional[AuditFilters] = None,
        page: int = 0,
        page_size: Optional[int] = None,
    ) -> AuditPage:
        self._authorize(principal, AuditAction.VIEW_AUDIT_LOGS)
        result = self._trail.search(filters, page=page, page_size=page_size)
        self._trail.record(
            principal, AuditAction.VIEW_AUDIT_LOGS, ResourceType.AUDIT_LOG,
            details=f"Viewed audit logs page={result.page} filters: {(filters or AuditFilters()).describe()}",
        )
        return result

    def detail(self, principal: Any, entry_id: int) -> AuditEntry:
        self._authorize(principal, AuditAction.VIEW_AUDIT_LOGS)
        entry = self._trail.get(entry_id)
        self._trail.record(
            principal, AuditAction.VIEW_AUDIT_LOGS, ResourceType.AUDIT_LOG, entry_id,
            details="Viewed audit log detail",
        )
        return entry

    def export_csv(
        self,
        principal: Any,
        filters: Optional[AuditFilters] = None,
        row_cap: Optional[int] = None,
    ) -> str:
        self._authorize(principal, AuditAction.EXPORT_AUDIT_LOGS)
        text = self._trail.export_csv(filters, row_cap=row_cap)
        rows = max(text.count("\n") - 1, 0)
        self._trail.record(
            principal, AuditAction.EXPORT_AUDIT_LOGS, ResourceType.AUDIT_LOG,
            details=f"Exported {rows} audit rows; filters: {(filters or AuditFilters()).describe()}",
        )
        return text

    def stats(self, principal: Any) -> Dict[str, int]:
        self._authorize(principal, AuditAction.VIEW_AUDIT_STATS)
        stats = {
            "total": self._trail.count(),
            "success": self._trail.count_by_outcome(AuditOutcome.SUCCESS),
            "failure": self._trail.count_by_outcome(AuditOutcome.FAILURE),
        }
        self._trail.record(principal, AuditAction.VIEW_AUDIT_STATS, ResourceType.AUDIT_LOG)
        return stats

    def filter_options(self, principal: Any) -> Dict[str, List[str]]:
        self._authorize(principal, AuditAction.VIEW_AUDIT_LOGS)
        return {
            "actions": self._trail.distinct_actions(),
            "actors": self._trail.distinct_actors(),
            "outcomes": [o.value for o in AuditOutcome],
        }
