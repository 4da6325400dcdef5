"""FileGate Engine — roles, decisions, access-request workflow, audit trail, logging."""

from filegate.engine.errors import (  # noqa: F401
    FileGateError,
    FileGateForbiddenError,
    FileGateInvalidRoleError,
    FileGateInvalidStateError,
    FileGateNotFoundError,
    FileGateSelfRequestError,
    FileGateValidationError,
)
from filegate.engine.roles import Capability, Role, normalize_role  # noqa: F401

__all__ = [
    "FileGateError",
    "FileGateForbiddenError",
    "FileGateInvalidRoleError",
    "FileGateInvalidStateError",
    "FileGateNotFoundError",
    "FileGateSelfRequestError",
    "FileGateValidationError",
    "Capability",
    "Role",
    "normalize_role",
]
