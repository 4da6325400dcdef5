"""
FileGate Runtime — wires the services together from a FileGateConfig.

Ties together:
- Database engine + session factory
- AsyncLogQueue (structured JSONL logs)
- AuditTrail / AuditReader
- AccessRequestWorkflow + AuthorizationDecisionEngine
- EncryptedFileStore, FileService, AdminService, PrincipalDirectory

Lifecycle:
    runtime = init_runtime(config)
    runtime.startup()
    runtime.files.upload(owner, "a.txt", b"...")
    runtime.shutdown()
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from filegate.db.base import utcnow
from filegate.db.session import SessionFactory, dispose_db, init_db_from_config
from filegate.engine.access_requests import AccessRequestWorkflow
from filegate.engine.audit import AuditReader, AuditTrail
from filegate.engine.authorization import AuthorizationDecisionEngine
from filegate.engine.config import FileGateConfig, get_config
from filegate.engine.logging import AsyncLogQueue, init_logging_from_config, log, log_system_event, shutdown_logging
from filegate.engine.principals import PrincipalDirectory

logger = logging.getLogger("filegate.engine.runtime")


class FileGateRuntime:
    """
    Holds one instance of every service, built in startup().

    Pass session_factory / store to reuse existing ones (tests); otherwise
    both are built from config.
    """

    def __init__(
        self,
        config: Optional[FileGateConfig] = None,
        session_factory: Optional[SessionFactory] = None,
        store: Any = None,
        create_tables: bool = False,
        enable_file_logging: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or get_config()
        self._session_factory = session_factory
        self._store = store
        self._create_tables = create_tables
        self._enable_file_logging = enable_file_logging
        self._owns_db = session_factory is None
        self._clock = clock

        self.log_queue: Optional[AsyncLogQueue] = None
        self.audit: Optional[AuditTrail] = None
        self.audit_reader: Optional[AuditReader] = None
        self.workflow: Optional[AccessRequestWorkflow] = None
        self.engine: Optional[AuthorizationDecisionEngine] = None
        self.principals: Optional[PrincipalDirectory] = None
        self.files = None   # FileService, set in startup()
        self.admin = None   # AdminService, set in startup()

        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def startup(self) -> None:
        if self._started:
            logger.warning("Runtime already started")
            return

        logger.info("Starting FileGate runtime (%s)", self.config.environment)

        # 1. Logging
        if self._enable_file_logging:
            self.log_queue = init_logging_from_config(self.config)

        # 2. Database
        if self._session_factory is None:
            self._session_factory = init_db_from_config(self.config, create_tables=self._create_tables)

        # 3. Core services
        self.audit = AuditTrail(self._session_factory, self.config.audit, clock=self._clock)
        self.audit_reader = AuditReader(self.audit)
        self.workflow = AccessRequestWorkflow(
            self._session_factory, self.audit, self.config.security, clock=self._clock,
        )
        self.engine = AuthorizationDecisionEngine.from_config(
            self.workflow, self.config.security, clock=self._clock,
        )
        self.principals = PrincipalDirectory(self._session_factory, self.audit)

        # 4. Files + admin
        from filegate.admin.service import AdminService
        from filegate.files.service import FileService
        from filegate.files.storage import EncryptedFileStore

        if self._store is None:
            self._store = EncryptedFileStore.from_config(self.config.storage)
        self.files = FileService(
            self._session_factory,
            self._store,
            self.audit,
            self.workflow,
            self.engine,
            config=self.config.storage,
            clock=self._clock,
        )
        self.admin = AdminService(self._session_factory, self.audit, self.workflow, clock=self._clock)

        self._started = True
        log(log_system_event("filegate_started", details={"environment": self.config.environment}))
        logger.info("FileGate runtime started")

    def shutdown(self) -> None:
        if not self._started:
            return
        log(log_system_event("filegate_shutdown"))
        shutdown_logging()
        self.log_queue = None
        if self._owns_db:
            dispose_db()
        self._started = False
        logger.info("FileGate runtime shut down")


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

_runtime: Optional[FileGateRuntime] = None


def get_runtime() -> FileGateRuntime:
    if _runtime is None:
        raise RuntimeError("FileGate runtime not initialized. Call init_runtime() first.")
    return _runtime


def init_runtime(config: Optional[FileGateConfig] = None, **kwargs: Any) -> FileGateRuntime:
    """Create the global runtime. Call startup() on the result."""
    global _runtime
    _runtime = FileGateRuntime(config, **kwargs)
    return _runtime
