"""Comparison of local billing records against the billing provider."""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Tuple, Type

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.repository import (
    StoreError,
    AuditLogRepository,
    DiffRepository,
    SubscriptionRepository,
    InvoiceRepository,
    CustomerRepository,
)
from .gateway import BillingGatewayBase
from .models import (
    AuditAction,
    DiffRecord,
    DiffType,
    LocalFetchError,
    RecordType,
    Severity,
)

logger = logging.getLogger(__name__)

LOCAL_PRESENT = "exists"
REMOTE_ABSENT = "not_found"


@dataclass(frozen=True)
class ComparisonSpec:
    """How one entity type is compared.

    Each entity type is compared on a single field. A record whose remote
    lookup fails yields a ``missing`` diff with ``missing_severity``; a
    differing field yields a ``mismatch`` diff with ``mismatch_severity``.
    """
    record_type: RecordType
    repository: Type[Any]
    remote_method: str
    record_id: Callable[[Any], str]
    missing_severity: Severity
    field_name: str
    mismatch_severity: Severity
    local_value: Callable[[Any], Any]
    remote_value: Callable[[Any], Any]


SUBSCRIPTION_SPEC = ComparisonSpec(
    record_type=RecordType.SUBSCRIPTION,
    repository=SubscriptionRepository,
    remote_method="get_subscription",
    record_id=lambda row: row.subscription_id,
    missing_severity=Severity.HIGH,
    field_name="status",
    mismatch_severity=Severity.MEDIUM,
    local_value=lambda row: row.status,
    remote_value=lambda remote: remote.status,
)

INVOICE_SPEC = ComparisonSpec(
    record_type=RecordType.INVOICE,
    repository=InvoiceRepository,
    remote_method="get_invoice",
    record_id=lambda row: row.invoice_id,
    missing_severity=Severity.MEDIUM,
    field_name="amount",
    mismatch_severity=Severity.HIGH,
    local_value=lambda row: row.amount,
    remote_value=lambda remote: remote.amount_paid,
)

CUSTOMER_SPEC = ComparisonSpec(
    record_type=RecordType.CUSTOMER,
    repository=CustomerRepository,
    remote_method="get_customer",
    record_id=lambda row: row.customer_id,
    missing_severity=Severity.HIGH,
    field_name="email",
    mismatch_severity=Severity.LOW,
    local_value=lambda row: row.email,
    remote_value=lambda remote: remote.email,
)

# Comparison order within a run
COMPARISON_SPECS: Tuple[ComparisonSpec, ...] = (SUBSCRIPTION_SPEC, INVOICE_SPEC, CUSTOMER_SPEC)


@dataclass
class ComparisonResult:
    """Outcome of comparing one entity type."""
    record_type: RecordType
    compared: int = 0
    diffs: List[DiffRecord] = field(default_factory=list)


class Comparator:
    """Produces and persists diffs between local and remote billing state."""

    def __init__(self, session: AsyncSession, gateway: BillingGatewayBase):
        """Initialize the comparator.

        Args:
            session: Database session for local reads and diff writes.
            gateway: Billing provider gateway for remote lookups.
        """
        self.session = session
        self.gateway = gateway
        self.diff_repo = DiffRepository(session)
        self.audit_repo = AuditLogRepository(session)

    async def compare(
        self,
        spec: ComparisonSpec,
        report_id: str,
        start: datetime,
        end: datetime,
    ) -> ComparisonResult:
        """Compare every local record of one entity type created in [start, end).

        Args:
            spec: Comparison descriptor for the entity type.
            report_id: Report the diffs belong to.
            start: Window start (inclusive).
            end: Window end (exclusive).

        Returns:
            ComparisonResult with the compared count and the persisted diffs.

        Raises:
            LocalFetchError: If the local batch cannot be read.
        """
        try:
            rows = await spec.repository(self.session).list_created_between(start, end)
        except StoreError as e:
            raise LocalFetchError(spec.record_type.value, str(e)) from e

        result = ComparisonResult(record_type=spec.record_type, compared=len(rows))
        lookup = getattr(self.gateway, spec.remote_method)

        for row in rows:
            record_id = spec.record_id(row)
            diff = await self._compare_record(spec, lookup, report_id, row, record_id)
            if diff is None:
                continue
            if await self._persist(diff):
                result.diffs.append(diff)

        logger.info(
            f"Compared {result.compared} {spec.record_type.value} records: "
            f"{len(result.diffs)} diffs"
        )
        return result

    async def _compare_record(self, spec, lookup, report_id, row, record_id):
        try:
            remote = await asyncio.to_thread(lookup, record_id)
        except Exception as e:
            logger.warning(
                f"Remote {spec.record_type.value} {record_id} unavailable: {e}"
            )
            return self._new_diff(
                spec,
                report_id,
                row,
                record_id,
                diff_type=DiffType.MISSING,
                field_name=spec.record_type.value,
                local_value=LOCAL_PRESENT,
                remote_value=REMOTE_ABSENT,
                severity=spec.missing_severity,
            )

        local_value = spec.local_value(row)
        remote_value = spec.remote_value(remote)
        if local_value == remote_value:
            return None

        return self._new_diff(
            spec,
            report_id,
            row,
            record_id,
            diff_type=DiffType.MISMATCH,
            field_name=spec.field_name,
            local_value=str(local_value),
            remote_value=str(remote_value),
            severity=spec.mismatch_severity,
        )

    @staticmethod
    def _new_diff(spec, report_id, row, record_id, **values) -> DiffRecord:
        return DiffRecord(
            id=str(uuid.uuid4()),
            report_id=report_id,
            record_type=spec.record_type,
            record_id=record_id,
            user_id=row.user_id,
            **values,
        )

    async def _persist(self, diff: DiffRecord) -> bool:
        """Save a diff and append its diff_found audit entry.

        Returns:
            False if the diff could not be saved.
        """
        try:
            await self.diff_repo.create(diff.to_row())
        except StoreError as e:
            logger.error(f"Failed to save diff for {diff.record_type} {diff.record_id}: {e}")
            return False

        try:
            await self.audit_repo.create(
                action=AuditAction.DIFF_FOUND.value,
                report_id=diff.report_id,
                record_type=diff.record_type,
                record_id=diff.record_id,
                user_id=diff.user_id,
                details=(
                    f"{diff.diff_type} on {diff.field_name}: "
                    f"local={diff.local_value} remote={diff.remote_value}"
                ),
            )
        except StoreError as e:
            logger.error(f"Failed to write audit entry for diff {diff.id}: {e}")
        return True
