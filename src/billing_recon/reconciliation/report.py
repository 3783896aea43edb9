"""Report rendering for reconciliation results."""

import json
import csv
import io
from datetime import datetime

from .models import ReportRecord, DiffType

CSV_COLUMNS = [
    "id", "record_type", "record_id", "user_id", "diff_type", "field_name",
    "local_value", "remote_value", "severity", "status", "auto_fixed",
    "fixed_by", "fixed_at", "created_at",
]


class ReportGenerator:
    """Generator for reconciliation reports in various formats."""

    def __init__(self, report: ReportRecord):
        """Initialize the report generator.

        Args:
            report: The reconciliation report to generate output from.
        """
        self.report = report

    def to_json(self, include_details: bool = True, indent: int = 2) -> str:
        """Generate JSON representation of the report.

        Args:
            include_details: If True, include every diff. If False, only summary.
            indent: JSON indentation level.

        Returns:
            JSON string representation of the report.
        """
        if include_details:
            data = self.report.to_full_dict()
        else:
            data = self.report.to_summary_dict()

        def json_serializer(obj):
            if isinstance(obj, datetime):
                return obj.isoformat()
            raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

        return json.dumps(data, indent=indent, default=json_serializer)

    def to_csv(self) -> str:
        """Generate CSV with one row per diff.

        Returns:
            CSV string with a header row.
        """
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(CSV_COLUMNS)
        for diff in self.report.diffs:
            row = diff.model_dump(mode="json")
            writer.writerow(["" if row[column] is None else row[column] for column in CSV_COLUMNS])
        return output.getvalue()

    def to_summary_text(self) -> str:
        """Generate a human-readable text summary of the report.

        Returns:
            Formatted text summary of the reconciliation report.
        """
        summary = self.report.to_summary_dict()
        stats = summary["statistics"]

        lines = [
            "=" * 60,
            "RECONCILIATION REPORT SUMMARY",
            "=" * 60,
            f"Report ID: {summary['id']}",
            f"Status: {summary['status']}",
            "",
            "Window:",
            f"  Start: {summary['start_date']}",
            f"  End: {summary['end_date']}",
            "",
            "Statistics:",
            f"  Total Records: {stats['total_records']}",
            f"  Matched Records: {stats['matched_records']}",
            f"  Mismatched Records: {stats['mismatched_records']}",
            f"  Missing Records: {stats['missing_records']}",
            f"  Subscription Diffs: {stats['subscription_diffs']}",
            f"  Invoice Diffs: {stats['invoice_diffs']}",
            f"  Customer Diffs: {stats['customer_diffs']}",
            f"  Match Rate: {stats['match_rate']}",
            "",
            f"Report Date: {summary['report_date']}",
            f"Completed At: {summary['completed_at'] or 'N/A'}",
        ]

        if summary.get("error_message"):
            lines.extend([
                "",
                "Error:",
                f"  {summary['error_message']}",
            ])

        lines.append("=" * 60)

        return "\n".join(lines)

    def to_detailed_text(self) -> str:
        """Generate the summary followed by every diff.

        Returns:
            Formatted text with summary and diffs.
        """
        lines = [self.to_summary_text(), ""]

        missing = [d for d in self.report.diffs if d.diff_type == DiffType.MISSING.value]
        mismatched = [d for d in self.report.diffs if d.diff_type != DiffType.MISSING.value]

        if missing:
            lines.extend([
                f"MISSING AT PROVIDER ({len(missing)})",
                "-" * 40,
            ])
            for d in missing:
                lines.append(f"  {d.record_type} {d.record_id} [{d.severity}] status={d.status}")
            lines.append("")

        if mismatched:
            lines.extend([
                f"MISMATCHES ({len(mismatched)})",
                "-" * 40,
            ])
            for d in mismatched:
                lines.extend([
                    f"\n{d.record_type} {d.record_id} [{d.severity}] status={d.status}",
                    f"  Field: {d.field_name}",
                    f"  Local Value: {d.local_value}",
                    f"  Remote Value: {d.remote_value}",
                ])
            lines.append("")

        return "\n".join(lines)


def render_report(report: ReportRecord, format: str = "json", include_details: bool = True) -> str:
    """Render a report in the requested format.

    Args:
        report: ReportRecord to format.
        format: Output format ('json', 'csv', 'text', 'detailed_text').
        include_details: Include diffs (for JSON format).

    Returns:
        Formatted report string.

    Raises:
        ValueError: If the format is not supported.
    """
    generator = ReportGenerator(report)

    if format == "json":
        return generator.to_json(include_details=include_details)
    elif format == "csv":
        return generator.to_csv()
    elif format == "text":
        return generator.to_summary_text()
    elif format == "detailed_text":
        return generator.to_detailed_text()
    else:
        raise ValueError(f"Unsupported report format: {format}")
