"""Service layer for reconciliation runs and diff resolution."""

import asyncio
import uuid
import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.repository import (
    StoreError,
    AuditLogRepository,
    DiffRepository,
    ReportRepository,
)
from .autofix import AutoFixEngine
from .comparator import COMPARISON_SPECS, Comparator, ComparisonResult
from .gateway import BillingGatewayBase, get_billing_gateway
from .models import (
    AuditAction,
    DiffNotFoundError,
    DiffRecord,
    DiffStatus,
    DiffType,
    InvalidTransitionError,
    LocalFetchError,
    ReconciliationSettings,
    RecordType,
    ReportCreationError,
    ReportRecord,
    ReportStatus,
)
from .notifier import ReconciliationNotifier
from .report import render_report

logger = logging.getLogger(__name__)

ADMIN_ACTOR = "admin"


class ReconciliationService:
    """Service for executing reconciliation runs and resolving diffs."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: Optional[BillingGatewayBase] = None,
        settings: Optional[ReconciliationSettings] = None,
        notifier: Optional[ReconciliationNotifier] = None,
    ):
        """Initialize the reconciliation service.

        Args:
            session: Async database session.
            gateway: Billing gateway. Will create the default Stripe gateway if not provided.
            settings: Settings snapshot for this run. Defaults apply if not provided.
            notifier: Optional notification sink.
        """
        self.session = session
        self.settings = settings or ReconciliationSettings()
        self.notifier = notifier
        self.report_repo = ReportRepository(session)
        self.diff_repo = DiffRepository(session)
        self.audit_repo = AuditLogRepository(session)
        self._gateway = gateway

    def _get_gateway(self) -> BillingGatewayBase:
        if self._gateway is None:
            self._gateway = get_billing_gateway()
        return self._gateway

    async def _audit(self, action: AuditAction, report_id: Optional[str] = None, **fields) -> None:
        """Append an audit entry; failures are logged only."""
        try:
            await self.audit_repo.create(action=action.value, report_id=report_id, **fields)
        except StoreError as e:
            logger.error(f"Failed to write {action.value} audit entry: {e}")

    async def run_reconciliation(self, start: datetime, end: datetime) -> ReportRecord:
        """Execute one reconciliation run over [start, end).

        Args:
            start: Window start (inclusive).
            end: Window end (exclusive).

        Returns:
            ReportRecord with statistics and the diffs found.

        Raises:
            ReportCreationError: If the report row cannot be created.
        """
        now = datetime.utcnow()
        report = ReportRecord(
            id=str(uuid.uuid4()),
            report_date=now,
            start_date=start,
            end_date=end,
            status=ReportStatus.PENDING,
            created_at=now,
            updated_at=now,
        )

        logger.info(f"Starting reconciliation {report.id} from {start} to {end}")

        try:
            await self.report_repo.create(
                report.model_dump(include={
                    "id", "report_date", "start_date", "end_date", "status", "created_at", "updated_at",
                })
            )
        except StoreError as e:
            logger.error(f"Failed to create reconciliation report: {e}")
            raise ReportCreationError(str(e)) from e

        await self._audit(
            AuditAction.RECONCILIATION_STARTED,
            report.id,
            details=f"Window {start.isoformat()} - {end.isoformat()}",
        )

        try:
            await self.report_repo.update_status(report.id, ReportStatus.RUNNING.value)
        except StoreError as e:
            logger.error(f"Failed to mark report {report.id} running: {e}")
        report.status = ReportStatus.RUNNING.value

        results: List[ComparisonResult] = []
        errors: List[str] = []
        comparator = Comparator(self.session, self._get_gateway())
        for spec in COMPARISON_SPECS:
            try:
                results.append(await comparator.compare(spec, report.id, start, end))
            except (LocalFetchError, StoreError) as e:
                logger.error(f"Reconciliation {report.id}: {spec.record_type.value} comparison failed: {e}")
                errors.append(str(e))

        diffs = [diff for result in results for diff in result.diffs]
        report.diffs = diffs
        self._apply_stats(report, results)
        if errors:
            report.error_message = "; ".join(errors)

        if self.settings.auto_fix_enabled and diffs:
            await AutoFixEngine(self.session).run(
                diffs,
                threshold=self.settings.auto_fix_severity,
                enabled=self.settings.auto_fix_enabled,
            )

        final_status = ReportStatus.FAILED if len(errors) == len(COMPARISON_SPECS) else ReportStatus.COMPLETED
        completed_at = datetime.utcnow()
        try:
            await self.report_repo.update_stats(
                report.id,
                status=final_status.value,
                completed_at=completed_at,
                error_message=report.error_message,
                **self._stat_columns(report),
            )
        except StoreError as e:
            # The stored report stays "running"; it is never reported as completed
            logger.error(f"Failed to finalize report {report.id}: {e}")
            return report

        report.status = final_status.value
        report.completed_at = completed_at

        if self.settings.notification_enabled and diffs:
            await self._notify(report)

        await self._audit(
            AuditAction.RECONCILIATION_COMPLETED,
            report.id,
            details=f"Found {len(diffs)} diffs",
        )

        logger.info(
            f"Reconciliation {report.id} {report.status}: "
            f"{report.total_records} records, {report.matched_records} matched, "
            f"{report.mismatched_records} mismatched, {report.missing_records} missing"
        )
        return report

    @staticmethod
    def _apply_stats(report: ReportRecord, results: List[ComparisonResult]) -> None:
        per_type: Dict[str, int] = {record_type.value: 0 for record_type in RecordType}
        missing = 0
        for result in results:
            per_type[result.record_type.value] += len(result.diffs)
            missing += sum(1 for d in result.diffs if d.diff_type == DiffType.MISSING.value)

        report.total_records = sum(result.compared for result in results)
        report.mismatched_records = sum(per_type.values())
        report.matched_records = max(report.total_records - report.mismatched_records, 0)
        report.missing_records = missing
        report.subscription_diffs = per_type[RecordType.SUBSCRIPTION.value]
        report.invoice_diffs = per_type[RecordType.INVOICE.value]
        report.customer_diffs = per_type[RecordType.CUSTOMER.value]

    @staticmethod
    def _stat_columns(report: ReportRecord) -> Dict[str, int]:
        return report.model_dump(include={
            "total_records",
            "matched_records",
            "mismatched_records",
            "missing_records",
            "subscription_diffs",
            "invoice_diffs",
            "customer_diffs",
        })

    async def _notify(self, report: ReportRecord) -> None:
        if self.notifier is None:
            logger.warning(f"No notifier configured - skipping summary for report {report.id}")
            return
        try:
            await asyncio.to_thread(
                self.notifier.send_summary,
                report.id,
                len(report.diffs),
                self.settings.notification_email,
            )
        except Exception as e:
            logger.error(f"Notification for report {report.id} failed: {e}")

    async def get_report(self, report_id: str, include_diffs: bool = False) -> Optional[ReportRecord]:
        """Load a report, optionally with all of its diffs."""
        row = await self.report_repo.get_by_id(report_id)
        if row is None:
            return None
        report = ReportRecord.model_validate(row)
        if include_diffs:
            rows = await self.diff_repo.list_for_report(report_id)
            report.diffs = [DiffRecord.model_validate(r) for r in rows]
        return report

    async def _get_pending_diff(self, diff_id: str) -> DiffRecord:
        row = await self.diff_repo.get_by_id(diff_id)
        if row is None:
            raise DiffNotFoundError(f"Diff {diff_id} not found")
        diff = DiffRecord.model_validate(row)
        if diff.status != DiffStatus.PENDING.value:
            raise InvalidTransitionError(f"Diff {diff_id} is {diff.status}, not pending")
        return diff

    async def _resolve(self, diff: DiffRecord, status: DiffStatus, notes: Optional[str], actor: str) -> DiffRecord:
        fixed_at = datetime.utcnow()
        transitioned = await self.diff_repo.resolve(
            diff.id,
            status.value,
            fixed_by=actor,
            fixed_at=fixed_at,
            notes=notes,
        )
        if not transitioned:
            raise InvalidTransitionError(f"Diff {diff.id} was resolved concurrently")
        return diff.model_copy(update={
            "status": status.value,
            "fixed_by": actor,
            "fixed_at": fixed_at,
            "notes": notes if notes is not None else diff.notes,
        })

    async def fix_diff_manually(self, diff_id: str, notes: Optional[str] = None, actor: str = ADMIN_ACTOR) -> DiffRecord:
        """Repair the local record behind a diff and mark it manually fixed.

        Raises:
            DiffNotFoundError: If the diff does not exist.
            InvalidTransitionError: If the diff is not pending.
            UnsupportedFieldError: If no repair exists for the diff's field.
            StoreError: If a write fails.
        """
        diff = await self._get_pending_diff(diff_id)
        await AutoFixEngine(self.session).apply_repair(diff)
        fixed = await self._resolve(diff, DiffStatus.MANUAL_FIXED, notes, actor)

        await self._audit(
            AuditAction.MANUAL_FIX,
            diff.report_id,
            record_type=diff.record_type,
            record_id=diff.record_id,
            user_id=diff.user_id,
            details=f"Manually fixed {diff.field_name}: {diff.local_value} -> {diff.remote_value}",
            performed_by=actor,
        )
        logger.info(f"Diff {diff_id} manually fixed by {actor}")
        return fixed

    async def ignore_diff(self, diff_id: str, notes: Optional[str] = None, actor: str = ADMIN_ACTOR) -> DiffRecord:
        """Mark a pending diff as ignored.

        Raises:
            DiffNotFoundError: If the diff does not exist.
            InvalidTransitionError: If the diff is not pending.
        """
        diff = await self._get_pending_diff(diff_id)
        ignored = await self._resolve(diff, DiffStatus.IGNORED, notes, actor)

        await self._audit(
            AuditAction.DIFF_IGNORED,
            diff.report_id,
            record_type=diff.record_type,
            record_id=diff.record_id,
            user_id=diff.user_id,
            details=notes,
            performed_by=actor,
        )
        logger.info(f"Diff {diff_id} ignored by {actor}")
        return ignored

    def generate_report(
        self,
        report: ReportRecord,
        format: str = "json",
        include_details: bool = True,
    ) -> str:
        """Generate a formatted report.

        Args:
            report: ReportRecord to format.
            format: Output format ('json', 'csv', 'text', 'detailed_text').
            include_details: Include diffs (for JSON format).

        Returns:
            Formatted report string.
        """
        return render_report(report, format=format, include_details=include_details)
