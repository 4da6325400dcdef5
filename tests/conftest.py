"""
FileGate Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from filegate.db.models import Principal, StoredFile, Visibility
from filegate.db.session import dispose_db, init_db, session_scope
from filegate.engine.access_requests import AccessRequestWorkflow
from filegate.engine.audit import AuditTrail
from filegate.engine.authorization import AuthorizationDecisionEngine
from filegate.engine.principals import PrincipalDirectory
from filegate.engine.roles import Role
from filegate.files.service import FileService
from filegate.files.storage import EncryptedFileStore, KeyRing


class FixedClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


# ---------------------------------------------------------------------------
# Global singletons
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_globals():
    """Reset module-level config and log queue between tests."""
    import filegate.engine.config as cfg_mod
    import filegate.engine.logging as log_mod

    cfg_mod._config = None
    yield
    cfg_mod._config = None
    log_mod.shutdown_logging()


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
def session_factory():
    """In-memory SQLite database with every table created."""
    factory = init_db("sqlite://", create_tables=True)
    yield factory
    dispose_db()


@pytest.fixture
def make_principal(session_factory):
    def _make(username: str, role: Role = Role.USER, active: bool = True) -> Principal:
        with session_scope(session_factory) as session:
            principal = Principal(
                username=username,
                email=f"{username}@example.com",
                role=role,
                is_active=active,
            )
            session.add(principal)
            session.flush()
        return principal
    return _make


@pytest.fixture
def owner(make_principal):
    return make_principal("alice")


@pytest.fixture
def other_user(make_principal):
    return make_principal("bob")


@pytest.fixture
def admin(make_principal):
    return make_principal("carol_admin", Role.ADMIN)


@pytest.fixture
def super_admin(make_principal):
    return make_principal("dave_super", Role.SUPER_ADMIN)


@pytest.fixture
def auditor(make_principal):
    return make_principal("erin_auditor", Role.AUDITOR)


@pytest.fixture
def make_file(session_factory, clock):
    """Insert a StoredFile row directly (no bytes behind it)."""
    def _make(
        owner: Principal,
        visibility: Visibility = Visibility.PRIVATE,
        file_name: str = "report.pdf",
        purpose: str = "quarterly numbers",
        category: str = "finance",
    ) -> StoredFile:
        with session_scope(session_factory) as session:
            file = StoredFile(
                file_name=file_name,
                storage_key=f"missing_{file_name}.enc",
                key_id="k1",
                owner_id=owner.id,
                visibility=visibility,
                size_bytes=42,
                content_type="application/pdf",
                purpose=purpose,
                category=category,
                uploaded_at=clock(),
            )
            session.add(file)
            session.flush()
            session.refresh(file)
        return file
    return _make


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture
def audit(session_factory, clock):
    return AuditTrail(session_factory, clock=clock)


@pytest.fixture
def workflow(session_factory, audit, clock):
    return AccessRequestWorkflow(session_factory, audit, clock=clock)


@pytest.fixture
def directory(session_factory, audit):
    return PrincipalDirectory(session_factory, audit)


@pytest.fixture
def engine(workflow, clock):
    return AuthorizationDecisionEngine(workflow, clock=clock)


@pytest.fixture
def strict_engine(workflow, clock):
    """Engine with the administrative override switched off."""
    return AuthorizationDecisionEngine(workflow, admin_override=False, clock=clock)


@pytest.fixture
def keyring():
    return KeyRing({"k1": "test-secret-one"}, active_key_id="k1")


@pytest.fixture
def store(tmp_path, keyring):
    return EncryptedFileStore(str(tmp_path / "store"), keyring)


@pytest.fixture
def file_service(session_factory, store, audit, workflow, engine, clock):
    return FileService(session_factory, store, audit, workflow, engine, clock=clock)


@pytest.fixture
def strict_file_service(session_factory, store, audit, workflow, strict_engine, clock):
    return FileService(session_factory, store, audit, workflow, strict_engine, clock=clock)


@pytest.fixture
def approved_grant(workflow):
    """Create and approve a request; returns the decided request."""
    def _grant(file: StoredFile, requester: Principal, owner: Principal, kind: str = "DOWNLOAD"):
        request = workflow.create(file.id, requester, kind, "compliance review")
        return workflow.approve(request.id, owner)
    return _grant
