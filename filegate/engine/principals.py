"""
FileGate Principal Directory — resolves the authenticated principal for a call.

Principals are created by the identity collaborator; this module only loads
them and refuses inactive accounts. A refusal is recorded on the audit trail
as LOGIN_FAILED before the error propagates.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from filegate.db.models import AuditAction, AuditOutcome, Principal, ResourceType
from filegate.db.session import SessionFactory, session_scope
from filegate.engine.audit import AuditTrail
from filegate.engine.errors import FileGateForbiddenError, FileGateNotFoundError

logger = logging.getLogger("filegate.engine.principals")


class PrincipalDirectory:

    def __init__(self, session_factory: SessionFactory, audit: AuditTrail):
        self._session_factory = session_factory
        self._audit = audit

    def get(self, principal_id: int) -> Optional[Principal]:
        with session_scope(self._session_factory) as session:
            return session.get(Principal, principal_id)

    def resolve(self, principal_id: int) -> Principal:
        """
        Load an active principal.

        Raises:
            FileGateNotFoundError: No such principal.
            FileGateForbiddenError: The account is disabled (audited FAILURE).
        """
        principal = self.get(principal_id)
        if principal is None:
            raise FileGateNotFoundError(
                f"Principal {principal_id} not found",
                resource_type="USER",
                principal_id=principal_id,
            )
        if not principal.is_active:
            logger.warning("Inactive principal %s refused", principal_id)
            self._audit.record(
                principal, AuditAction.LOGIN_FAILED, ResourceType.USER, principal_id,
                details="Account is disabled",
                outcome=AuditOutcome.FAILURE,
            )
            raise FileGateForbiddenError(
                "Account is disabled",
                principal_id=principal_id,
                role=principal.role.value,
            )
        return principal

    def by_username(self, username: str) -> Optional[Principal]:
        with session_scope(self._session_factory) as session:
            return (
                session.query(Principal)
                .filter(Principal.username == username)
                .first()
            )

    def list_all(self) -> List[Principal]:
        with session_scope(self._session_factory) as session:
            return session.query(Principal).order_by(Principal.id).all()
