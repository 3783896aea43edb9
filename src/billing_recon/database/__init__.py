"""Database module for billing reconciliation persistence."""

from .models import (
    Base,
    StripeCustomer,
    StripeSubscription,
    StripeInvoice,
    ReconciliationReport,
    ReconciliationDiff,
    ReconciliationAuditLog,
    ReconciliationConfig,
    RecordType,
    ReportStatus,
    DiffType,
    Severity,
    DiffStatus,
    AuditAction,
)
from .session import (
    get_db,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    get_async_session_factory,
    create_tables,
)
from .repository import (
    StoreError,
    RecordNotFoundError,
    SubscriptionRepository,
    InvoiceRepository,
    CustomerRepository,
    ReportRepository,
    DiffRepository,
    AuditLogRepository,
    ConfigRepository,
)

__all__ = [
    # Models
    "Base",
    "StripeCustomer",
    "StripeSubscription",
    "StripeInvoice",
    "ReconciliationReport",
    "ReconciliationDiff",
    "ReconciliationAuditLog",
    "ReconciliationConfig",
    "RecordType",
    "ReportStatus",
    "DiffType",
    "Severity",
    "DiffStatus",
    "AuditAction",
    # Session management
    "get_db",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "get_async_session_factory",
    "create_tables",
    # Repositories
    "StoreError",
    "RecordNotFoundError",
    "SubscriptionRepository",
    "InvoiceRepository",
    "CustomerRepository",
    "ReportRepository",
    "DiffRepository",
    "AuditLogRepository",
    "ConfigRepository",
]
