"""Billing reconciliation core.

Compares locally stored subscriptions, invoices and customers against the
billing provider, records discrepancies as diffs, optionally repairs local
state under a severity policy, and runs on a cron schedule.

Features:
- Per-entity comparison over a [start, end) creation window
- Severity-gated auto-fix with manual fix and ignore for the rest
- Reports with statistics and an audit trail
- Cron scheduling with runtime reconfiguration
"""

from .models import (
    RecordType,
    ReportStatus,
    DiffType,
    Severity,
    DiffStatus,
    AuditAction,
    ReconciliationError,
    RemoteRecordNotFound,
    BillingGatewayError,
    LocalFetchError,
    UnsupportedFieldError,
    InvalidTransitionError,
    DiffNotFoundError,
    InvalidScheduleError,
    ReportCreationError,
    RemoteSubscription,
    RemoteInvoice,
    RemoteCustomer,
    DiffRecord,
    ReportRecord,
    AuditEntry,
    ReconciliationSettings,
)
from .gateway import (
    BillingGatewayBase,
    StripeGateway,
    get_billing_gateway,
)
from .comparator import Comparator, ComparisonSpec, ComparisonResult, COMPARISON_SPECS
from .autofix import AutoFixEngine, is_eligible
from .cron import build_cron_trigger
from .settings import SettingsManager
from .notifier import ReconciliationNotifier
from .service import ReconciliationService
from .scheduler import ReconciliationScheduler, previous_day_window
from .report import ReportGenerator, render_report

__all__ = [
    # Models
    "RecordType",
    "ReportStatus",
    "DiffType",
    "Severity",
    "DiffStatus",
    "AuditAction",
    "RemoteSubscription",
    "RemoteInvoice",
    "RemoteCustomer",
    "DiffRecord",
    "ReportRecord",
    "AuditEntry",
    "ReconciliationSettings",
    # Errors
    "ReconciliationError",
    "RemoteRecordNotFound",
    "BillingGatewayError",
    "LocalFetchError",
    "UnsupportedFieldError",
    "InvalidTransitionError",
    "DiffNotFoundError",
    "InvalidScheduleError",
    "ReportCreationError",
    # Gateways
    "BillingGatewayBase",
    "StripeGateway",
    "get_billing_gateway",
    # Core Components
    "Comparator",
    "ComparisonSpec",
    "ComparisonResult",
    "COMPARISON_SPECS",
    "AutoFixEngine",
    "is_eligible",
    "build_cron_trigger",
    "SettingsManager",
    "ReconciliationNotifier",
    "ReconciliationService",
    "ReconciliationScheduler",
    "previous_day_window",
    "ReportGenerator",
    "render_report",
]
