"""
FileGate Role Catalog — Closed role set and the capability bundle of each role.

Roles arrive from the authentication collaborator as strings ("admin",
"ROLE_ADMIN", ...). normalize_role() is the one place those strings become a
Role; everything past that boundary compares enum members.

SUPER_ADMIN carries every ADMIN capability plus role management.
"""

from __future__ import annotations

import enum
from typing import Dict, FrozenSet, Optional, Union

from filegate.engine.errors import FileGateInvalidRoleError

ROLE_PREFIX = "ROLE_"


class Role(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"
    AUDITOR = "AUDITOR"


class Capability(str, enum.Enum):
    FILE_UPLOAD = "FILE_UPLOAD"
    FILE_DOWNLOAD = "FILE_DOWNLOAD"
    FILE_SHARE = "FILE_SHARE"
    REQUEST_CROSS_OWNER_ACCESS = "REQUEST_CROSS_OWNER_ACCESS"
    DECIDE_ACCESS_REQUESTS = "DECIDE_ACCESS_REQUESTS"
    ADMIN_OVERRIDE = "ADMIN_OVERRIDE"
    VIEW_AUDIT_LOGS = "VIEW_AUDIT_LOGS"
    VIEW_AUDIT_METADATA = "VIEW_AUDIT_METADATA"
    USER_MANAGEMENT = "USER_MANAGEMENT"
    ROLE_MANAGEMENT = "ROLE_MANAGEMENT"


_USER_CAPABILITIES = frozenset({
    Capability.FILE_UPLOAD,
    Capability.FILE_DOWNLOAD,
    Capability.FILE_SHARE,
    Capability.DECIDE_ACCESS_REQUESTS,
})

_ADMIN_CAPABILITIES = _USER_CAPABILITIES | {
    Capability.REQUEST_CROSS_OWNER_ACCESS,
    Capability.ADMIN_OVERRIDE,
    Capability.VIEW_AUDIT_LOGS,
    Capability.VIEW_AUDIT_METADATA,
    Capability.USER_MANAGEMENT,
}

ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.USER: _USER_CAPABILITIES,
    Role.ADMIN: frozenset(_ADMIN_CAPABILITIES),
    Role.SUPER_ADMIN: frozenset(_ADMIN_CAPABILITIES | {Capability.ROLE_MANAGEMENT}),
    Role.AUDITOR: frozenset({
        Capability.VIEW_AUDIT_LOGS,
        Capability.VIEW_AUDIT_METADATA,
    }),
}

ADMIN_CLASS_ROLES: FrozenSet[Role] = frozenset({Role.ADMIN, Role.SUPER_ADMIN})


def normalize_role(value: Union[Role, str, None]) -> Role:
    """
    Convert an external role representation into a Role.

    "admin", "ROLE_ADMIN" and " Role_Admin " all map to Role.ADMIN.
    Blank or missing values map to Role.USER.

    Raises:
        FileGateInvalidRoleError: For any value outside the closed set.
    """
    if isinstance(value, Role):
        return value
    if value is None or not str(value).strip():
        return Role.USER

    name = str(value).strip().upper()
    if name.startswith(ROLE_PREFIX):
        name = name[len(ROLE_PREFIX):]
    try:
        return Role(name)
    except ValueError:
        raise FileGateInvalidRoleError(f"Unknown role '{value}'", role=str(value))


def capabilities_for(role: Union[Role, str, None]) -> FrozenSet[Capability]:
    return ROLE_CAPABILITIES[normalize_role(role)]


def has_capability(role: Union[Role, str, None], capability: Capability) -> bool:
    return capability in capabilities_for(role)


def is_admin_class(role: Optional[Role]) -> bool:
    return role in ADMIN_CLASS_ROLES


def is_auditor(role: Optional[Role]) -> bool:
    return role is Role.AUDITOR
