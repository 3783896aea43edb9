"""Tests for report rendering."""

import csv
import io
import json
import pytest
from datetime import datetime

from billing_recon.reconciliation import DiffRecord, ReportGenerator, ReportRecord, render_report
from billing_recon.reconciliation.report import CSV_COLUMNS


@pytest.fixture
def report():
    now = datetime(2026, 1, 2, 2, 0, 0)
    return ReportRecord(
        id="rpt_1",
        report_date=now,
        start_date=datetime(2026, 1, 1),
        end_date=datetime(2026, 1, 2),
        status="completed",
        total_records=4,
        matched_records=2,
        mismatched_records=2,
        missing_records=1,
        subscription_diffs=1,
        invoice_diffs=1,
        completed_at=now,
        diffs=[
            DiffRecord(
                id="diff_1",
                report_id="rpt_1",
                record_type="subscription",
                record_id="sub_1",
                user_id="user_1",
                diff_type="mismatch",
                field_name="status",
                local_value="active",
                remote_value="canceled",
                severity="medium",
                status="auto_fixed",
                auto_fixed=True,
                fixed_by="system",
                fixed_at=now,
                created_at=now,
            ),
            DiffRecord(
                id="diff_2",
                report_id="rpt_1",
                record_type="invoice",
                record_id="in_1",
                diff_type="missing",
                field_name="invoice",
                local_value="exists",
                remote_value="not_found",
                severity="medium",
                created_at=now,
            ),
        ],
    )


class TestReportRecord:
    """Tests for report dictionaries."""

    def test_summary_statistics(self, report):
        summary = report.to_summary_dict()

        assert summary["status"] == "completed"
        assert summary["statistics"]["total_records"] == 4
        assert summary["statistics"]["match_rate"] == "50.00%"
        assert "diffs" not in summary

    def test_full_dict_includes_diffs(self, report):
        full = report.to_full_dict()

        assert [d["id"] for d in full["diffs"]] == ["diff_1", "diff_2"]
        assert full["diffs"][0]["fixed_at"] == "2026-01-02T02:00:00"

    def test_enum_values_are_strings(self, report):
        assert report.diffs[1].status == "pending"
        assert isinstance(report.diffs[1].status, str)


class TestReportGenerator:
    """Tests for ReportGenerator."""

    def test_to_json(self, report):
        data = json.loads(ReportGenerator(report).to_json())

        assert data["id"] == "rpt_1"
        assert len(data["diffs"]) == 2

    def test_to_json_summary_only(self, report):
        data = json.loads(ReportGenerator(report).to_json(include_details=False))

        assert "diffs" not in data
        assert data["statistics"]["missing_records"] == 1

    def test_to_csv(self, report):
        rows = list(csv.reader(io.StringIO(ReportGenerator(report).to_csv())))

        assert rows[0] == CSV_COLUMNS
        assert len(rows) == 3
        first = dict(zip(CSV_COLUMNS, rows[1]))
        assert first["record_id"] == "sub_1"
        assert first["status"] == "auto_fixed"
        second = dict(zip(CSV_COLUMNS, rows[2]))
        assert second["user_id"] == ""
        assert second["fixed_by"] == ""

    def test_to_summary_text(self, report):
        text = ReportGenerator(report).to_summary_text()

        assert "RECONCILIATION REPORT SUMMARY" in text
        assert "Report ID: rpt_1" in text
        assert "Match Rate: 50.00%" in text

    def test_summary_text_shows_error(self, report):
        report.error_message = "Failed to fetch local invoice records: timeout"

        assert "Failed to fetch local invoice records" in ReportGenerator(report).to_summary_text()

    def test_to_detailed_text(self, report):
        text = ReportGenerator(report).to_detailed_text()

        assert "MISSING AT PROVIDER (1)" in text
        assert "MISMATCHES (1)" in text
        assert "Remote Value: canceled" in text


class TestRenderReport:
    """Tests for render_report."""

    @pytest.mark.parametrize("fmt", ["json", "csv", "text", "detailed_text"])
    def test_supported_formats(self, report, fmt):
        assert render_report(report, format=fmt).strip()

    def test_unsupported_format(self, report):
        with pytest.raises(ValueError, match="Unsupported report format"):
            render_report(report, format="xml")
