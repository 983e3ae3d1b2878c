"""Export alignment reports as JSON, CSV or HTML."""

import csv
import io
import json
from html import escape

from spec_companion.errors import ValidationError
from spec_companion.models import AlignmentReportWithMismatches, ExportFormat

CSV_HEADER = [
    "row_type",
    "requirement_id",
    "spec_section",
    "mismatch_type",
    "code_element",
    "details",
    "coverage_percent",
    "total_requirements",
    "covered_requirements",
]

MEDIA_TYPES = {
    ExportFormat.JSON: "application/json",
    ExportFormat.CSV: "text/csv",
    ExportFormat.HTML: "text/html",
}

HTML_STYLE = """
body { font-family: -apple-system, sans-serif; margin: 2em; background: #1e1e2e; color: #e4e4f0; }
table { border-collapse: collapse; width: 100%; }
th, td { border: 1px solid #333348; padding: 8px 12px; text-align: left; }
th { background: #252538; }
.badge { padding: 2px 8px; border-radius: 4px; font-size: 0.85em; }
.no_test_generated { background: #eab308; color: #000; }
.test_failing { background: #ef4444; color: #fff; }
.not_implemented { background: #6366f1; color: #fff; }
.partial_coverage { background: #f97316; color: #fff; }
"""


def parse_format(value: str) -> ExportFormat:
    try:
        return ExportFormat((value or "").strip().lower())
    except ValueError:
        raise ValidationError(f"Unsupported format: {value}") from None


def export_report(report: AlignmentReportWithMismatches, export_format: ExportFormat | str) -> str:
    """Render ``report`` in the requested format."""
    export_format = parse_format(export_format) if not isinstance(export_format, ExportFormat) else export_format
    if export_format == ExportFormat.JSON:
        return to_json(report)
    if export_format == ExportFormat.CSV:
        return to_csv(report)
    return to_html(report)


def to_json(report: AlignmentReportWithMismatches) -> str:
    """Canonical export; parses back into AlignmentReportWithMismatches."""
    return json.dumps(report.model_dump(mode="json"), indent=2)


def to_csv(report: AlignmentReportWithMismatches) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for mismatch in report.mismatches:
        writer.writerow(
            [
                "mismatch",
                mismatch.requirement_id,
                mismatch.spec_section,
                mismatch.mismatch_type.value,
                mismatch.code_element or "",
                mismatch.details,
                "",
                "",
                "",
            ]
        )
    writer.writerow(
        [
            "summary",
            "",
            "",
            "",
            "",
            "",
            f"{report.coverage_percent:.1f}",
            report.total_requirements,
            report.covered_requirements,
        ]
    )
    return buffer.getvalue()


def to_html(report: AlignmentReportWithMismatches) -> str:
    parts = [
        '<!DOCTYPE html><html><head><meta charset="utf-8"><title>Alignment Report</title>',
        f"<style>{HTML_STYLE}</style></head><body>",
        "<h1>Alignment Report</h1>",
        f"<p>Generated: {escape(report.generated_at.isoformat())}</p>",
        (
            f"<p>Coverage: <strong>{report.coverage_percent:.1f}%</strong> "
            f"({report.covered_requirements}/{report.total_requirements} requirements)</p>"
        ),
    ]

    if not report.mismatches:
        parts.append("<p>No mismatches found.</p>")
    else:
        parts.append(
            "<table><thead><tr><th>Section</th><th>Type</th><th>Code element</th><th>Details</th></tr></thead><tbody>"
        )
        for mismatch in report.mismatches:
            kind = mismatch.mismatch_type.value
            parts.append(
                f"<tr><td>{escape(mismatch.spec_section)}</td>"
                f'<td><span class="badge {kind}">{kind.replace("_", " ")}</span></td>'
                f"<td>{escape(mismatch.code_element or '')}</td>"
                f"<td>{escape(mismatch.details)}</td></tr>"
            )
        parts.append("</tbody></table>")

    parts.append("</body></html>")
    return "\n".join(parts)
