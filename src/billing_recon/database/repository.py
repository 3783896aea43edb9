"""Repository layer: typed access to local billing records and reconciliation artifacts."""

import logging
import uuid
from datetime import datetime
from typing import Optional, Dict, Any, List, Type

from sqlalchemy import select, insert, update, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    Base,
    StripeSubscription,
    StripeInvoice,
    StripeCustomer,
    ReconciliationReport,
    ReconciliationDiff,
    ReconciliationAuditLog,
    ReconciliationConfig,
    DiffStatus,
)

logger = logging.getLogger(__name__)

CONFIG_ID = "default"


class StoreError(Exception):
    """A read or write against the local store failed."""


class RecordNotFoundError(StoreError):
    """An update by identifier matched no rows."""


class _Repository:
    """Shared plumbing: every write is committed immediately."""

    def __init__(self, session: AsyncSession):
        """Initialize the repository with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def _write(self, statement) -> int:
        """Execute and commit a write statement.

        Returns:
            Number of rows affected.

        Raises:
            StoreError: If the statement or the commit fails.
        """
        try:
            result = await self.session.execute(statement)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StoreError(f"Write failed: {e}") from e
        return result.rowcount

    async def _update_required(self, statement, what: str) -> None:
        if await self._write(statement) == 0:
            raise RecordNotFoundError(f"{what} not found")

    async def _fetch_all(self, statement) -> List[Any]:
        """Run a select and detach the results.

        Detached rows keep their loaded attributes even if a later write
        in the same session rolls back.
        """
        try:
            result = await self.session.execute(statement)
            rows = list(result.scalars().all())
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise StoreError(f"Read failed: {e}") from e
        for row in rows:
            self.session.expunge(row)
        return rows

    async def _fetch_one(self, statement) -> Optional[Any]:
        rows = await self._fetch_all(statement)
        return rows[0] if rows else None

    @staticmethod
    def _paginate(statement, page: int, limit: int):
        return statement.limit(limit).offset((page - 1) * limit)


class _LocalRecordRepository(_Repository):
    """Window selection over one local billing collection."""

    model: Type[Base]

    async def list_created_between(self, start: datetime, end: datetime) -> List[Any]:
        """List records created within [start, end).

        Args:
            start: Window start (inclusive).
            end: Window end (exclusive).

        Returns:
            Detached model instances ordered by creation time.
        """
        model = self.model
        rows = await self._fetch_all(
            select(model)
            .where(
                and_(
                    model.created_at >= start,
                    model.created_at < end,
                )
            )
            .order_by(model.created_at)
        )
        logger.info(f"Fetched {len(rows)} local rows from {model.__tablename__}")
        return rows


class SubscriptionRepository(_LocalRecordRepository):
    """Local subscriptions."""

    model = StripeSubscription

    async def get_by_subscription_id(self, subscription_id: str) -> Optional[StripeSubscription]:
        return await self._fetch_one(
            select(StripeSubscription).where(StripeSubscription.subscription_id == subscription_id)
        )

    async def update_status(self, subscription_id: str, status: str) -> None:
        await self._update_required(
            update(StripeSubscription)
            .where(StripeSubscription.subscription_id == subscription_id)
            .values(status=status, updated_at=datetime.utcnow()),
            f"Subscription {subscription_id}",
        )
        logger.info(f"Updated subscription {subscription_id} status to {status}")


class InvoiceRepository(_LocalRecordRepository):
    """Local invoices."""

    model = StripeInvoice

    async def get_by_invoice_id(self, invoice_id: str) -> Optional[StripeInvoice]:
        return await self._fetch_one(
            select(StripeInvoice).where(StripeInvoice.invoice_id == invoice_id)
        )

    async def update_amount(self, invoice_id: str, amount: int) -> None:
        await self._update_required(
            update(StripeInvoice)
            .where(StripeInvoice.invoice_id == invoice_id)
            .values(amount=amount, updated_at=datetime.utcnow()),
            f"Invoice {invoice_id}",
        )
        logger.info(f"Updated invoice {invoice_id} amount to {amount}")

    async def update_status(self, invoice_id: str, status: str) -> None:
        await self._update_required(
            update(StripeInvoice)
            .where(StripeInvoice.invoice_id == invoice_id)
            .values(status=status, updated_at=datetime.utcnow()),
            f"Invoice {invoice_id}",
        )
        logger.info(f"Updated invoice {invoice_id} status to {status}")


class CustomerRepository(_LocalRecordRepository):
    """Local customers."""

    model = StripeCustomer

    async def get_by_customer_id(self, customer_id: str) -> Optional[StripeCustomer]:
        return await self._fetch_one(
            select(StripeCustomer).where(StripeCustomer.customer_id == customer_id)
        )

    async def update_email(self, customer_id: str, email: str) -> None:
        await self._update_required(
            update(StripeCustomer)
            .where(StripeCustomer.customer_id == customer_id)
            .values(email=email, updated_at=datetime.utcnow()),
            f"Customer {customer_id}",
        )
        logger.info(f"Updated customer {customer_id} email")


class ReportRepository(_Repository):
    """Repository for reconciliation reports."""

    async def create(self, report: Dict[str, Any]) -> None:
        """Insert a report row.

        Args:
            report: Column values; must include id, start_date and end_date.
        """
        await self._write(insert(ReconciliationReport).values(**report))
        logger.debug(f"Created reconciliation report {report['id']}")

    async def update_status(self, report_id: str, status: str) -> None:
        await self._update_required(
            update(ReconciliationReport)
            .where(ReconciliationReport.id == report_id)
            .values(status=status, updated_at=datetime.utcnow()),
            f"Report {report_id}",
        )

    async def update_stats(self, report_id: str, **stats: Any) -> None:
        """Write counters and terminal fields for a report.

        Args:
            report_id: Report to update.
            **stats: Column values (status, counters, completed_at, ...).
        """
        await self._update_required(
            update(ReconciliationReport)
            .where(ReconciliationReport.id == report_id)
            .values(updated_at=datetime.utcnow(), **stats),
            f"Report {report_id}",
        )

    async def get_by_id(self, report_id: str) -> Optional[ReconciliationReport]:
        return await self._fetch_one(
            select(ReconciliationReport).where(ReconciliationReport.id == report_id)
        )

    async def list(
        self,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> List[ReconciliationReport]:
        """List reports newest first, filtered by status and report date."""
        statement = select(ReconciliationReport)
        if status:
            statement = statement.where(ReconciliationReport.status == status)
        if start_date:
            statement = statement.where(ReconciliationReport.report_date >= start_date)
        if end_date:
            statement = statement.where(ReconciliationReport.report_date <= end_date)
        statement = statement.order_by(ReconciliationReport.created_at.desc())
        return await self._fetch_all(self._paginate(statement, page, limit))


class DiffRepository(_Repository):
    """Repository for reconciliation diffs."""

    async def create(self, diff: Dict[str, Any]) -> None:
        await self._write(insert(ReconciliationDiff).values(**diff))
        logger.debug(f"Saved diff {diff['id']} for {diff['record_type']} {diff['record_id']}")

    async def get_by_id(self, diff_id: str) -> Optional[ReconciliationDiff]:
        return await self._fetch_one(
            select(ReconciliationDiff).where(ReconciliationDiff.id == diff_id)
        )

    async def resolve(
        self,
        diff_id: str,
        status: str,
        fixed_by: Optional[str] = None,
        fixed_at: Optional[datetime] = None,
        auto_fixed: bool = False,
        notes: Optional[str] = None,
    ) -> bool:
        """Move a pending diff to a resolved status.

        The update only matches while the stored status is still pending.

        Returns:
            True if the diff was transitioned, False if it was not pending
            (or does not exist).
        """
        values: Dict[str, Any] = {
            "status": status,
            "auto_fixed": auto_fixed,
            "updated_at": datetime.utcnow(),
        }
        if fixed_by is not None:
            values["fixed_by"] = fixed_by
        if fixed_at is not None:
            values["fixed_at"] = fixed_at
        if notes is not None:
            values["notes"] = notes

        rowcount = await self._write(
            update(ReconciliationDiff)
            .where(
                and_(
                    ReconciliationDiff.id == diff_id,
                    ReconciliationDiff.status == DiffStatus.PENDING.value,
                )
            )
            .values(**values)
        )
        return rowcount > 0

    async def list_for_report(self, report_id: str) -> List[ReconciliationDiff]:
        """List every diff of a report in detection order."""
        return await self._fetch_all(
            select(ReconciliationDiff)
            .where(ReconciliationDiff.report_id == report_id)
            .order_by(ReconciliationDiff.created_at)
        )

    async def list(
        self,
        report_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        severity: Optional[str] = None,
        record_type: Optional[str] = None,
    ) -> List[ReconciliationDiff]:
        """List diffs newest first with optional equality filters."""
        statement = select(ReconciliationDiff)
        if report_id:
            statement = statement.where(ReconciliationDiff.report_id == report_id)
        if status:
            statement = statement.where(ReconciliationDiff.status == status)
        if severity:
            statement = statement.where(ReconciliationDiff.severity == severity)
        if record_type:
            statement = statement.where(ReconciliationDiff.record_type == record_type)
        statement = statement.order_by(ReconciliationDiff.created_at.desc())
        return await self._fetch_all(self._paginate(statement, page, limit))


class AuditLogRepository(_Repository):
    """Append-only repository for audit entries."""

    async def create(
        self,
        action: str,
        report_id: Optional[str] = None,
        record_type: Optional[str] = None,
        record_id: Optional[str] = None,
        user_id: Optional[str] = None,
        details: Optional[str] = None,
        performed_by: str = "system",
    ) -> str:
        """Append an audit entry.

        Returns:
            The new entry's identifier.
        """
        entry_id = str(uuid.uuid4())
        await self._write(
            insert(ReconciliationAuditLog).values(
                id=entry_id,
                report_id=report_id,
                action=action,
                record_type=record_type,
                record_id=record_id,
                user_id=user_id,
                details=details,
                performed_by=performed_by,
                created_at=datetime.utcnow(),
            )
        )
        return entry_id

    async def list_for_report(
        self,
        report_id: str,
        page: int = 1,
        limit: int = 20,
    ) -> List[ReconciliationAuditLog]:
        statement = (
            select(ReconciliationAuditLog)
            .where(ReconciliationAuditLog.report_id == report_id)
            .order_by(ReconciliationAuditLog.created_at.desc())
        )
        return await self._fetch_all(self._paginate(statement, page, limit))


class ConfigRepository(_Repository):
    """Repository for the singleton configuration row."""

    async def get(self) -> Optional[ReconciliationConfig]:
        return await self._fetch_one(
            select(ReconciliationConfig).where(ReconciliationConfig.id == CONFIG_ID)
        )

    async def create(self, values: Dict[str, Any]) -> None:
        await self._write(insert(ReconciliationConfig).values(id=CONFIG_ID, **values))
        logger.info("Created default reconciliation config")

    async def update(self, values: Dict[str, Any]) -> None:
        await self._update_required(
            update(ReconciliationConfig)
            .where(ReconciliationConfig.id == CONFIG_ID)
            .values(**values),
            "Reconciliation config",
        )
