"""
FileGate Request Context — per-request principal and network origin.

The transport layer sets a RequestContext once per request; the audit trail
reads the client IP / user agent from it when a caller does not pass an
explicit origin.

Usage:
    from filegate.engine.context import RequestContext, request_context

    with request_context(RequestContext(principal_id=7, ip_address="10.0.0.1")):
        service.download(principal, file_id)
"""

from __future__ import annotations

import ipaddress
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, Mapping, Optional

current_request_context: ContextVar[Optional["RequestContext"]] = ContextVar(
    "filegate_request_context", default=None
)


def _valid_ip(value: Optional[str]) -> Optional[str]:
    """Return *value* as a normalized IP address, or None if it is not one."""
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


@dataclass(frozen=True)
class Origin:
    """Network origin of a request, as recorded on audit entries."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], remote_addr: Optional[str] = None) -> "Origin":
        """
        Resolve the client IP with proxy support.

        X-Forwarded-For (first hop) wins, then X-Real-IP, then the socket
        address. Client-supplied headers that do not parse as an IP address
        are skipped.
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        forwarded = lowered.get("x-forwarded-for") or ""
        ip = (
            _valid_ip(forwarded.split(",")[0])
            or _valid_ip(lowered.get("x-real-ip"))
            or _valid_ip(remote_addr)
        )
        return cls(ip_address=ip, user_agent=lowered.get("user-agent"))


@dataclass
class RequestContext:
    """Per-request state carried through one call into the services."""

    principal_id: Optional[int] = None
    username: Optional[str] = None
    role: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: str = field(default_factory=lambda: f"req_{uuid.uuid4().hex[:12]}")

    @property
    def origin(self) -> Origin:
        return Origin(ip_address=self.ip_address, user_agent=self.user_agent)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logging."""
        return {
            "principal_id": self.principal_id,
            "username": self.username,
            "role": self.role,
            "ip_address": self.ip_address,
            "request_id": self.request_id,
        }


def set_request_context(ctx: Optional[RequestContext]) -> None:
    current_request_context.set(ctx)


def get_request_context() -> Optional[RequestContext]:
    return current_request_context.get()


def clear_request_context() -> None:
    current_request_context.set(None)


@contextmanager
def request_context(ctx: RequestContext) -> Generator[RequestContext, None, None]:
    """Install *ctx* for the duration of the block, restoring the previous one after."""
    token = current_request_context.set(ctx)
    try:
        yield ctx
    finally:
        current_request_context.reset(token)


def current_origin() -> Optional[Origin]:
    ctx = get_request_context()
    return ctx.origin if ctx is not None else None
