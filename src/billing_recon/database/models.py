"""SQLAlchemy models for local billing records and reconciliation artifacts."""

import uuid
import enum
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy import (
    String,
    Integer,
    Boolean,
    DateTime,
    ForeignKey,
    Text,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class RecordType(str, enum.Enum):
    """Billing entity types compared during reconciliation."""
    SUBSCRIPTION = "subscription"
    INVOICE = "invoice"
    CUSTOMER = "customer"


class ReportStatus(str, enum.Enum):
    """Lifecycle of a reconciliation report."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class DiffType(str, enum.Enum):
    """Kind of discrepancy."""
    MISSING = "missing"
    MISMATCH = "mismatch"
    EXTRA = "extra"


class Severity(str, enum.Enum):
    """Ordinal severity, low < medium < high < critical."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class DiffStatus(str, enum.Enum):
    """Resolution state of a diff."""
    PENDING = "pending"
    AUTO_FIXED = "auto_fixed"
    MANUAL_FIXED = "manual_fixed"
    IGNORED = "ignored"


class AuditAction(str, enum.Enum):
    """Actions recorded in the reconciliation audit log."""
    RECONCILIATION_STARTED = "reconciliation_started"
    RECONCILIATION_COMPLETED = "reconciliation_completed"
    DIFF_FOUND = "diff_found"
    AUTO_FIX = "auto_fix"
    MANUAL_FIX = "manual_fix"
    DIFF_IGNORED = "diff_ignored"


def _uuid() -> str:
    return str(uuid.uuid4())


class StripeCustomer(Base):
    """Local copy of a billing-provider customer."""
    __tablename__ = "stripe_customers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_stripe_customers_created_at", "created_at"),
        Index("ix_stripe_customers_user_id", "user_id"),
    )


class StripeSubscription(Base):
    """Local copy of a billing-provider subscription."""
    __tablename__ = "stripe_subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    subscription_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    # active, canceled, past_due, ...
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    plan_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    current_period_start: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    current_period_end: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_stripe_subscriptions_created_at", "created_at"),
        Index("ix_stripe_subscriptions_user_id", "user_id"),
    )


class StripeInvoice(Base):
    """Local copy of a billing-provider invoice."""
    __tablename__ = "stripe_invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    invoice_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    subscription_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # Amount paid, minor units
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    # paid, open, void, ...
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    invoice_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    invoice_pdf: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_stripe_invoices_created_at", "created_at"),
        Index("ix_stripe_invoices_user_id", "user_id"),
    )


class ReconciliationReport(Base):
    """One row per reconciliation run."""
    __tablename__ = "reconciliation_reports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    report_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ReportStatus.PENDING.value)

    total_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    matched_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    mismatched_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    missing_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Per-entity breakdown
    subscription_diffs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    invoice_diffs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    customer_diffs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_reconciliation_reports_status", "status"),
        Index("ix_reconciliation_reports_report_date", "report_date"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary representation."""
        return {
            "id": self.id,
            "report_date": self.report_date.isoformat() if self.report_date else None,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "status": self.status,
            "total_records": self.total_records,
            "matched_records": self.matched_records,
            "mismatched_records": self.mismatched_records,
            "missing_records": self.missing_records,
            "subscription_diffs": self.subscription_diffs,
            "invoice_diffs": self.invoice_diffs,
            "customer_diffs": self.customer_diffs,
            "error_message": self.error_message,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ReconciliationDiff(Base):
    """A single discrepancy for one field of one record."""
    __tablename__ = "reconciliation_diffs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    report_id: Mapped[str] = mapped_column(String(36), ForeignKey("reconciliation_reports.id"), nullable=False, index=True)
    record_type: Mapped[str] = mapped_column(String(20), nullable=False)
    record_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    diff_type: Mapped[str] = mapped_column(String(20), nullable=False)
    field_name: Mapped[str] = mapped_column(String(50), nullable=False)

    # Both sides stored as strings so the schema stays entity-agnostic
    local_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    remote_value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=DiffStatus.PENDING.value)
    auto_fixed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    fixed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    fixed_by: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_reconciliation_diffs_status", "status"),
        Index("ix_reconciliation_diffs_severity", "severity"),
        Index("ix_reconciliation_diffs_record_type", "record_type"),
        Index("ix_reconciliation_diffs_created_at", "created_at"),
    )


class ReconciliationAuditLog(Base):
    """Append-only audit trail of reconciliation actions."""
    __tablename__ = "reconciliation_audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    report_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    record_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    record_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    performed_by: Mapped[str] = mapped_column(String(50), nullable=False, default="system")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_reconciliation_audit_logs_action", "action"),
        Index("ix_reconciliation_audit_logs_created_at", "created_at"),
    )


class ReconciliationConfig(Base):
    """Singleton reconciliation configuration (row id 'default')."""
    __tablename__ = "reconciliation_config"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default="default")
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    schedule: Mapped[str] = mapped_column(String(100), nullable=False, default="0 2 * * *")
    auto_fix_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_fix_severity: Mapped[str] = mapped_column(String(20), nullable=False, default=Severity.MEDIUM.value)
    notification_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notification_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    retention_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
