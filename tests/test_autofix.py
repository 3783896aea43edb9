"""Tests for the auto-fix policy and repairs."""

import pytest
from datetime import datetime

from billing_recon.database import (
    AuditLogRepository,
    CustomerRepository,
    DiffRepository,
    InvoiceRepository,
    SubscriptionRepository,
)
from billing_recon.reconciliation import (
    AutoFixEngine,
    DiffRecord,
    InvalidTransitionError,
    UnsupportedFieldError,
    is_eligible,
)
from billing_recon.reconciliation.autofix import parse_amount

SEVERITIES = ["low", "medium", "high", "critical"]


def make_diff(report_id: str, **values) -> DiffRecord:
    fields = {
        "id": "diff_1",
        "report_id": report_id,
        "record_type": "subscription",
        "record_id": "sub_1",
        "user_id": "user_1",
        "diff_type": "mismatch",
        "field_name": "status",
        "local_value": "active",
        "remote_value": "canceled",
        "severity": "medium",
        "created_at": datetime.utcnow(),
    }
    fields.update(values)
    return DiffRecord(**fields)


async def persist(session, diff: DiffRecord) -> DiffRecord:
    await DiffRepository(session).create(diff.to_row())
    return diff


class TestEligibility:
    """Tests for is_eligible."""

    @pytest.mark.parametrize("threshold", SEVERITIES)
    def test_monotonic_in_severity(self, threshold):
        """If a severity is eligible, every lower severity is too."""
        results = [is_eligible(s, threshold) for s in SEVERITIES]
        first_rejected = results.index(False) if False in results else len(results)
        assert all(results[:first_rejected])
        assert not any(results[first_rejected:])

    def test_threshold_medium(self):
        assert is_eligible("low", "medium") is True
        assert is_eligible("medium", "medium") is True
        assert is_eligible("high", "medium") is False
        assert is_eligible("critical", "medium") is False

    def test_critical_threshold_accepts_everything(self):
        for severity in SEVERITIES + ["bogus"]:
            assert is_eligible(severity, "critical") is True

    def test_unknown_values_not_eligible(self):
        assert is_eligible("bogus", "high") is False
        assert is_eligible("low", "bogus") is False

    def test_disabled(self):
        assert is_eligible("low", "critical", enabled=False) is False


class TestParseAmount:
    """Tests for amount parsing."""

    def test_valid(self):
        assert parse_amount("1500") == 1500

    def test_invalid_becomes_zero(self):
        assert parse_amount("12.50abc") == 0
        assert parse_amount(None) == 0


class TestAutoFixEngine:
    """Tests for AutoFixEngine."""

    @pytest.fixture
    async def report_id(self, seed):
        return await seed.report(status="running")

    async def test_fix_subscription_status(self, db_session, seed, report_id):
        await seed.subscription("sub_1", status="active")
        diff = await persist(db_session, make_diff(report_id))

        await AutoFixEngine(db_session).fix(diff)

        row = await SubscriptionRepository(db_session).get_by_subscription_id("sub_1")
        assert row.status == "canceled"
        stored = await DiffRepository(db_session).get_by_id(diff.id)
        assert stored.status == "auto_fixed"
        assert stored.auto_fixed is True
        assert stored.fixed_by == "system"
        assert stored.fixed_at is not None
        assert diff.status == "auto_fixed"

        audit = await AuditLogRepository(db_session).list_for_report(report_id)
        assert [a.action for a in audit] == ["auto_fix"]

    async def test_fix_invoice_amount(self, db_session, seed, report_id):
        await seed.invoice("in_1", amount=1000)
        diff = await persist(db_session, make_diff(
            report_id,
            record_type="invoice",
            record_id="in_1",
            field_name="amount",
            local_value="1000",
            remote_value="1500",
            severity="high",
        ))

        await AutoFixEngine(db_session).fix(diff)

        row = await InvoiceRepository(db_session).get_by_invoice_id("in_1")
        assert row.amount == 1500

    async def test_fix_invoice_amount_unparseable(self, db_session, seed, report_id):
        """An unparseable remote amount is written as 0."""
        await seed.invoice("in_1", amount=1000)
        diff = await persist(db_session, make_diff(
            report_id,
            record_type="invoice",
            record_id="in_1",
            field_name="amount",
            remote_value="n/a",
        ))

        await AutoFixEngine(db_session).fix(diff)

        row = await InvoiceRepository(db_session).get_by_invoice_id("in_1")
        assert row.amount == 0

    async def test_fix_invoice_status(self, db_session, seed, report_id):
        await seed.invoice("in_1", status="open")
        diff = await persist(db_session, make_diff(
            report_id,
            record_type="invoice",
            record_id="in_1",
            field_name="status",
            local_value="open",
            remote_value="paid",
        ))

        await AutoFixEngine(db_session).fix(diff)

        row = await InvoiceRepository(db_session).get_by_invoice_id("in_1")
        assert row.status == "paid"

    async def test_fix_customer_email(self, db_session, seed, report_id):
        await seed.customer("cus_1", email="old@example.com")
        diff = await persist(db_session, make_diff(
            report_id,
            record_type="customer",
            record_id="cus_1",
            field_name="email",
            local_value="old@example.com",
            remote_value="new@example.com",
            severity="low",
        ))

        await AutoFixEngine(db_session).fix(diff)

        row = await CustomerRepository(db_session).get_by_customer_id("cus_1")
        assert row.email == "new@example.com"

    async def test_missing_diff_is_unsupported(self, db_session, seed, report_id):
        """Missing diffs name the entity, which has no repair."""
        await seed.subscription("sub_1")
        diff = await persist(db_session, make_diff(
            report_id,
            diff_type="missing",
            field_name="subscription",
            local_value="exists",
            remote_value="not_found",
            severity="high",
        ))

        with pytest.raises(UnsupportedFieldError):
            await AutoFixEngine(db_session).fix(diff)

        stored = await DiffRepository(db_session).get_by_id(diff.id)
        assert stored.status == "pending"

    async def test_fix_requires_pending(self, db_session, seed, report_id):
        diff = make_diff(report_id, status="ignored")

        with pytest.raises(InvalidTransitionError):
            await AutoFixEngine(db_session).fix(diff)

    async def test_fix_rejects_already_resolved_row(self, db_session, seed, report_id):
        """A diff resolved elsewhere is not transitioned again."""
        await seed.subscription("sub_1")
        diff = await persist(db_session, make_diff(report_id))
        await DiffRepository(db_session).resolve(diff.id, "ignored", fixed_by="admin")

        with pytest.raises(InvalidTransitionError):
            await AutoFixEngine(db_session).fix(diff)

        stored = await DiffRepository(db_session).get_by_id(diff.id)
        assert stored.status == "ignored"

    async def test_run_respects_threshold(self, db_session, seed, report_id):
        """Only diffs at or below the threshold are fixed."""
        await seed.subscription("sub_1", status="active")
        await seed.invoice("in_1", amount=1000)
        status_diff = await persist(db_session, make_diff(report_id, id="diff_status"))
        amount_diff = await persist(db_session, make_diff(
            report_id,
            id="diff_amount",
            record_type="invoice",
            record_id="in_1",
            field_name="amount",
            local_value="1000",
            remote_value="1500",
            severity="high",
        ))

        fixed = await AutoFixEngine(db_session).run([status_diff, amount_diff], threshold="medium")

        assert fixed == 1
        repo = DiffRepository(db_session)
        assert (await repo.get_by_id("diff_status")).status == "auto_fixed"
        assert (await repo.get_by_id("diff_amount")).status == "pending"
        invoice = await InvoiceRepository(db_session).get_by_invoice_id("in_1")
        assert invoice.amount == 1000

    async def test_run_continues_after_failure(self, db_session, seed, report_id):
        """A failing repair leaves the diff pending and the batch continues."""
        await seed.customer("cus_1", email="old@example.com")
        missing = await persist(db_session, make_diff(
            report_id,
            id="diff_missing",
            diff_type="missing",
            field_name="subscription",
            severity="low",
        ))
        email = await persist(db_session, make_diff(
            report_id,
            id="diff_email",
            record_type="customer",
            record_id="cus_1",
            field_name="email",
            local_value="old@example.com",
            remote_value="new@example.com",
            severity="low",
        ))

        fixed = await AutoFixEngine(db_session).run([missing, email], threshold="critical")

        assert fixed == 1
        assert missing.status == "pending"
        assert email.status == "auto_fixed"

    async def test_run_disabled(self, db_session, seed, report_id):
        await seed.subscription("sub_1")
        diff = await persist(db_session, make_diff(report_id, severity="low"))

        fixed = await AutoFixEngine(db_session).run([diff], threshold="critical", enabled=False)

        assert fixed == 0
        assert (await DiffRepository(db_session).get_by_id(diff.id)).status == "pending"
