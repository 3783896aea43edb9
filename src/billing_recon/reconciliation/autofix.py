"""Auto-fix policy: eligibility by severity and field-level repair of local records."""

import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, Iterable, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.repository import (
    StoreError,
    AuditLogRepository,
    DiffRepository,
    SubscriptionRepository,
    InvoiceRepository,
    CustomerRepository,
)
from .models import (
    AuditAction,
    DiffRecord,
    DiffStatus,
    InvalidTransitionError,
    RecordType,
    Severity,
    UnsupportedFieldError,
)

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

SEVERITY_ORDER: Dict[str, int] = {
    Severity.LOW.value: 0,
    Severity.MEDIUM.value: 1,
    Severity.HIGH.value: 2,
    Severity.CRITICAL.value: 3,
}


def is_eligible(severity: str, threshold: str, enabled: bool = True) -> bool:
    """Decide whether a diff of the given severity may be auto-fixed.

    Args:
        severity: Diff severity.
        threshold: Highest severity that may be fixed automatically.
        enabled: Global auto-fix flag.

    Returns:
        True if auto-fix is enabled and severity <= threshold. A critical
        threshold accepts every diff; unknown values are never eligible.
    """
    if not enabled:
        return False
    if threshold == Severity.CRITICAL.value:
        return True
    if severity not in SEVERITY_ORDER or threshold not in SEVERITY_ORDER:
        return False
    return SEVERITY_ORDER[severity] <= SEVERITY_ORDER[threshold]


def parse_amount(value: str) -> int:
    """Parse a stored amount string; unparseable input becomes 0."""
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Could not parse invoice amount {value!r}, using 0")
        return 0


class AutoFixEngine:
    """Repairs local records so they match the billing provider."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.diff_repo = DiffRepository(session)
        self.audit_repo = AuditLogRepository(session)
        self.subscriptions = SubscriptionRepository(session)
        self.invoices = InvoiceRepository(session)
        self.customers = CustomerRepository(session)

        self._repairs: Dict[Tuple[str, str], Callable[[DiffRecord], Awaitable[None]]] = {
            (RecordType.SUBSCRIPTION.value, "status"): self._fix_subscription_status,
            (RecordType.INVOICE.value, "amount"): self._fix_invoice_amount,
            (RecordType.INVOICE.value, "status"): self._fix_invoice_status,
            (RecordType.CUSTOMER.value, "email"): self._fix_customer_email,
        }

    async def _fix_subscription_status(self, diff: DiffRecord) -> None:
        await self.subscriptions.update_status(diff.record_id, diff.remote_value)

    async def _fix_invoice_amount(self, diff: DiffRecord) -> None:
        await self.invoices.update_amount(diff.record_id, parse_amount(diff.remote_value))

    async def _fix_invoice_status(self, diff: DiffRecord) -> None:
        await self.invoices.update_status(diff.record_id, diff.remote_value)

    async def _fix_customer_email(self, diff: DiffRecord) -> None:
        await self.customers.update_email(diff.record_id, diff.remote_value)

    async def apply_repair(self, diff: DiffRecord) -> None:
        """Overwrite the local field named by the diff with the remote value.

        Raises:
            UnsupportedFieldError: If no repair exists for the diff's field.
            StoreError: If the local write fails.
        """
        repair = self._repairs.get((diff.record_type, diff.field_name))
        if repair is None:
            raise UnsupportedFieldError(diff.record_type, diff.field_name)
        await repair(diff)

    async def fix(self, diff: DiffRecord) -> None:
        """Repair one diff and mark it auto-fixed.

        Raises:
            InvalidTransitionError: If the diff is no longer pending.
            UnsupportedFieldError: If no repair exists for the diff's field.
            StoreError: If a write fails.
        """
        if diff.status != DiffStatus.PENDING.value:
            raise InvalidTransitionError(f"Diff {diff.id} is {diff.status}, not pending")

        await self.apply_repair(diff)

        fixed_at = datetime.utcnow()
        transitioned = await self.diff_repo.resolve(
            diff.id,
            DiffStatus.AUTO_FIXED.value,
            fixed_by=SYSTEM_ACTOR,
            fixed_at=fixed_at,
            auto_fixed=True,
        )
        if not transitioned:
            raise InvalidTransitionError(f"Diff {diff.id} was resolved concurrently")

        diff.status = DiffStatus.AUTO_FIXED.value
        diff.auto_fixed = True
        diff.fixed_at = fixed_at
        diff.fixed_by = SYSTEM_ACTOR

        try:
            await self.audit_repo.create(
                action=AuditAction.AUTO_FIX.value,
                report_id=diff.report_id,
                record_type=diff.record_type,
                record_id=diff.record_id,
                user_id=diff.user_id,
                details=f"Auto-fixed {diff.field_name}: {diff.local_value} -> {diff.remote_value}",
                performed_by=SYSTEM_ACTOR,
            )
        except StoreError as e:
            logger.error(f"Failed to write auto-fix audit entry for diff {diff.id}: {e}")

    async def run(self, diffs: Iterable[DiffRecord], threshold: str, enabled: bool = True) -> int:
        """Auto-fix every eligible diff.

        A failed repair is logged and the diff stays pending.

        Returns:
            Number of diffs fixed.
        """
        fixed = 0
        for diff in diffs:
            if not is_eligible(diff.severity, threshold, enabled):
                continue
            try:
                await self.fix(diff)
            except (UnsupportedFieldError, InvalidTransitionError, StoreError) as e:
                logger.error(f"Auto-fix failed for diff {diff.id}: {e}")
                continue
            fixed += 1

        logger.info(f"Auto-fixed {fixed} diffs")
        return fixed
