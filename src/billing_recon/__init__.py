# billing_recon package
__version__ = "0.1.0"

from .database import (
    StripeSubscription,
    StripeInvoice,
    StripeCustomer,
    ReconciliationReport,
    ReconciliationDiff,
    ReconciliationAuditLog,
    ReconciliationConfig,
    init_db,
    close_db,
    get_db,
)

# Reconciliation exports
from .reconciliation import (
    ReconciliationService,
    ReconciliationScheduler,
    SettingsManager,
    StripeGateway,
    ReportRecord,
    DiffRecord,
    ReportGenerator,
    get_billing_gateway,
)
