"""Models for billing reconciliation."""

from datetime import datetime
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, ConfigDict, Field

from ..database.models import (
    RecordType,
    ReportStatus,
    DiffType,
    Severity,
    DiffStatus,
    AuditAction,
)


class ReconciliationError(Exception):
    """Base class for reconciliation failures."""


class RemoteRecordNotFound(ReconciliationError):
    """The billing provider has no record with the requested identifier."""


class BillingGatewayError(ReconciliationError):
    """The billing provider lookup failed for a reason other than not-found."""


class LocalFetchError(ReconciliationError):
    """Fetching the local batch for one entity type failed."""

    def __init__(self, record_type: str, message: str):
        self.record_type = record_type
        super().__init__(f"Failed to fetch local {record_type} records: {message}")


class UnsupportedFieldError(ReconciliationError):
    """No repair routine exists for an (entity type, field) pair."""

    def __init__(self, record_type: str, field_name: str):
        self.record_type = record_type
        self.field_name = field_name
        super().__init__(f"Unsupported field for fix: {record_type}.{field_name}")


class InvalidTransitionError(ReconciliationError):
    """A diff status change other than pending -> resolved was requested."""


class DiffNotFoundError(ReconciliationError):
    """The requested diff does not exist."""


class InvalidScheduleError(ValueError):
    """A cron expression could not be parsed."""


class ReportCreationError(ReconciliationError):
    """The report row for a run could not be created."""


class RemoteSubscription(BaseModel):
    """Provider-side subscription state relevant to reconciliation."""
    id: str = Field(..., description="Provider subscription ID")
    status: str = Field(..., description="Subscription status")
    customer: Optional[str] = Field(None, description="Provider customer ID")


class RemoteInvoice(BaseModel):
    """Provider-side invoice state relevant to reconciliation."""
    id: str = Field(..., description="Provider invoice ID")
    amount_paid: int = Field(..., description="Amount paid in minor units")
    status: Optional[str] = Field(None, description="Invoice status")
    currency: Optional[str] = Field(None, description="Three-letter currency code")


class RemoteCustomer(BaseModel):
    """Provider-side customer state relevant to reconciliation."""
    id: str = Field(..., description="Provider customer ID")
    email: str = Field(default="", description="Customer email")


class DiffRecord(BaseModel):
    """A single discrepancy for one field of one record."""
    model_config = ConfigDict(from_attributes=True, use_enum_values=True, validate_default=True)

    id: str
    report_id: str
    record_type: RecordType
    record_id: str
    user_id: Optional[str] = None
    diff_type: DiffType
    field_name: str
    local_value: Optional[str] = None
    remote_value: Optional[str] = None
    severity: Severity
    status: DiffStatus = DiffStatus.PENDING
    auto_fixed: bool = False
    fixed_at: Optional[datetime] = None
    fixed_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def to_row(self) -> Dict[str, Any]:
        """Return column values for persisting this diff."""
        row = self.model_dump()
        row["updated_at"] = row["created_at"]
        return row


class ReportRecord(BaseModel):
    """Snapshot of a reconciliation report."""
    model_config = ConfigDict(from_attributes=True, use_enum_values=True, validate_default=True)

    id: str
    report_date: datetime
    start_date: datetime
    end_date: datetime
    status: ReportStatus = ReportStatus.PENDING

    total_records: int = 0
    matched_records: int = 0
    mismatched_records: int = 0
    missing_records: int = 0
    subscription_diffs: int = 0
    invoice_diffs: int = 0
    customer_diffs: int = 0

    error_message: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    diffs: List[DiffRecord] = Field(default_factory=list)

    def to_summary_dict(self) -> Dict[str, Any]:
        """Return the report without its diff list."""
        return {
            "id": self.id,
            "status": self.status,
            "report_date": self.report_date.isoformat(),
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "statistics": {
                "total_records": self.total_records,
                "matched_records": self.matched_records,
                "mismatched_records": self.mismatched_records,
                "missing_records": self.missing_records,
                "subscription_diffs": self.subscription_diffs,
                "invoice_diffs": self.invoice_diffs,
                "customer_diffs": self.customer_diffs,
                "match_rate": (
                    f"{(self.matched_records / self.total_records * 100):.2f}%"
                    if self.total_records > 0 else "N/A"
                ),
            },
            "error_message": self.error_message,
        }

    def to_full_dict(self) -> Dict[str, Any]:
        """Return the report including every diff."""
        result = self.to_summary_dict()
        result["diffs"] = [d.model_dump(mode="json") for d in self.diffs]
        return result


class AuditEntry(BaseModel):
    """A single audit log entry."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    report_id: Optional[str] = None
    action: str
    record_type: Optional[str] = None
    record_id: Optional[str] = None
    user_id: Optional[str] = None
    details: Optional[str] = None
    performed_by: str = "system"
    created_at: datetime


class ReconciliationSettings(BaseModel):
    """In-memory copy of the persisted reconciliation configuration."""
    model_config = ConfigDict(from_attributes=True, use_enum_values=True, validate_default=True)

    enabled: bool = True
    schedule: str = "0 2 * * *"
    auto_fix_enabled: bool = True
    auto_fix_severity: Severity = Severity.MEDIUM
    notification_enabled: bool = True
    notification_email: Optional[str] = "admin@example.com"
    retention_days: int = Field(default=30, ge=1)
    updated_at: Optional[datetime] = None


class ManualRunRequest(BaseModel):
    """Request body for a manual reconciliation run."""
    start_date: str = Field(..., description="Window start, YYYY-MM-DD")
    end_date: str = Field(..., description="Window end, YYYY-MM-DD")


class ScheduleUpdateRequest(BaseModel):
    """Request body for replacing the cron schedule."""
    schedule: str = Field(..., description="Cron expression")


class DiffActionRequest(BaseModel):
    """Request body for fixing or ignoring a diff."""
    notes: Optional[str] = Field(None, description="Free-text operator notes")


class ConfigUpdateRequest(BaseModel):
    """Partial update of the reconciliation configuration."""
    enabled: Optional[bool] = None
    schedule: Optional[str] = None
    auto_fix_enabled: Optional[bool] = None
    auto_fix_severity: Optional[Severity] = None
    notification_enabled: Optional[bool] = None
    notification_email: Optional[str] = None
    retention_days: Optional[int] = Field(None, ge=1)


__all__ = [
    "RecordType",
    "ReportStatus",
    "DiffType",
    "Severity",
    "DiffStatus",
    "AuditAction",
    "ReconciliationError",
    "RemoteRecordNotFound",
    "BillingGatewayError",
    "LocalFetchError",
    "UnsupportedFieldError",
    "InvalidTransitionError",
    "DiffNotFoundError",
    "InvalidScheduleError",
    "ReportCreationError",
    "RemoteSubscription",
    "RemoteInvoice",
    "RemoteCustomer",
    "DiffRecord",
    "ReportRecord",
    "AuditEntry",
    "ReconciliationSettings",
    "ManualRunRequest",
    "ScheduleUpdateRequest",
    "DiffActionRequest",
    "ConfigUpdateRequest",
]
