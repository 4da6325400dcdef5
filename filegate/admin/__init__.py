"""Administrative operations: principal management, dashboard and auditor user views."""

from filegate.admin.service import (  # noqa: F401
    AdminService,
    AuditUserMetadata,
    DashboardSummary,
    FileOverviewRow,
    PrincipalView,
    UserStats,
    mask_email,
)
