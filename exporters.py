from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

from models import BatchResult, DiffReport, DifferenceType, JobOutcome, PropertyDifference
from report_service import format_elapsed

DIFF_RULE = "=" * 63


def _outcome_entry(outcome: JobOutcome) -> dict[str, Any]:
    return {
        "name": outcome.name,
        "source_path": str(outcome.item.source_path),
        "status": outcome.status.value,
        "elapsed_seconds": round(outcome.elapsed_seconds, 4),
        "detail": outcome.detail,
        "output_path": outcome.output_path,
        "exit_code": outcome.exit_code,
    }


def build_report_payload(result: BatchResult) -> dict[str, Any]:
    return {
        "state": result.state.value,
        "total_items": result.total_items,
        "success_count": result.success_count,
        "failure_count": result.failure_count,
        "total_seconds": result.total_seconds,
        "output_dir": result.output_dir,
        "succeeded": list(result.succeeded),
        "failed": [
            {"name": entry.name, "status": entry.status.value, "reason": entry.reason}
            for entry in result.failed
        ],
        "not_attempted": list(result.not_attempted),
        "outcomes": [_outcome_entry(outcome) for outcome in result.outcomes],
    }


def export_json(result: BatchResult, output_path: Path) -> None:
    output_path.write_text(
        json.dumps(build_report_payload(result), ensure_ascii=False, indent=2),
        encoding="utf-8",
    )


def export_txt(result: BatchResult, output_path: Path) -> None:
    lines = [
        f"State: {result.state.value}",
        f"Succeeded: {result.success_count} | Failed: {result.failure_count} | Total: {result.total_items}",
        f"Duration: {format_elapsed(result.total_seconds)}",
    ]
    if result.failed:
        lines.append("")
        lines.append("Failed:")
        for entry in result.failed:
            reason = f": {entry.reason}" if entry.reason else ""
            lines.append(f"{entry.name} [{entry.status.value}]{reason}")
    if result.not_attempted:
        lines.append("")
        lines.append("Not attempted:")
        lines.extend(result.not_attempted)
    output_path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _md_cell(value: Any) -> str:
    return str(value if value is not None else "").replace("|", "\\|").replace("\n", " ")


def export_md(result: BatchResult, output_path: Path) -> None:
    lines: list[str] = [
        "# Batch Report",
        "",
        f"- State: `{result.state.value}`",
        f"- Succeeded: `{result.success_count}`",
        f"- Failed: `{result.failure_count}`",
        f"- Total: `{result.total_items}`",
        f"- Duration: `{format_elapsed(result.total_seconds)}`",
    ]
    if result.output_dir:
        lines.append(f"- Output folder: `{result.output_dir}`")

    lines.extend(
        [
            "",
            "## Drawings",
            "",
            "| Drawing | Status | Elapsed | Detail |",
            "| --- | --- | --- | --- |",
        ]
    )
    for outcome in result.outcomes:
        lines.append(
            f"| {_md_cell(outcome.name)} | {outcome.status.value} "
            f"| {format_elapsed(outcome.elapsed_seconds)} | {_md_cell(outcome.detail)} |"
        )

    if result.not_attempted:
        lines.extend(["", "## Not Attempted", ""])
        lines.extend(f"- {name}" for name in result.not_attempted)

    output_path.write_text("\n".join(lines) + "\n", encoding="utf-8")


REPORT_EXPORTERS: dict[str, Callable[[BatchResult, Path], None]] = {
    ".json": export_json,
    ".txt": export_txt,
    ".md": export_md,
}


def export_report(result: BatchResult, output_path: str | Path) -> Path:
    path = Path(output_path)
    exporter = REPORT_EXPORTERS.get(path.suffix.lower())
    if exporter is None:
        supported = ", ".join(sorted(REPORT_EXPORTERS))
        raise ValueError(f"Unsupported report format '{path.suffix}'. Use one of: {supported}")
    path.parent.mkdir(parents=True, exist_ok=True)
    exporter(result, path)
    return path


def _difference_entry(difference: PropertyDifference) -> dict[str, Any]:
    return {
        "path": difference.path,
        "type": difference.kind.value,
        "reference_value": difference.reference_value,
        "latest_value": difference.latest_value,
        "reference_type": difference.reference_type,
        "latest_type": difference.latest_type,
    }


def build_diff_payload(report: DiffReport) -> dict[str, Any]:
    return {
        "reference_folder": report.reference_folder,
        "latest_folder": report.latest_folder,
        "comparison_date": report.compared_at.isoformat(timespec="seconds"),
        "total_files": report.total_files,
        "matching_files": report.matching_files,
        "different_files": report.different_files,
        "missing_in_latest": report.missing_in_latest,
        "missing_in_reference": report.missing_in_reference,
        "file_results": [
            {
                "file_name": result.file_name,
                "files_match": result.files_match,
                "missing_in_latest": result.missing_in_latest,
                "missing_in_reference": result.missing_in_reference,
                "error": result.error,
                "differences": [_difference_entry(item) for item in result.differences],
            }
            for result in report.file_results
        ],
    }


def export_diff_json(report: DiffReport, output_path: Path) -> None:
    output_path.write_text(
        json.dumps(build_diff_payload(report), ensure_ascii=False, indent=2),
        encoding="utf-8",
    )


def format_diff_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return f"{value:.2f}"
    if isinstance(value, str) and value not in ("[Object]", "[Array]"):
        return f'"{value}"'
    return str(value)


def _diff_section(title: str) -> list[str]:
    return [DIFF_RULE, title, DIFF_RULE]


def export_diff_txt(report: DiffReport, output_path: Path) -> None:
    lines = _diff_section("JSON Diff Comparison Report")
    lines.extend(
        [
            "",
            f"Comparison Date: {report.compared_at:%Y-%m-%d %H:%M:%S}",
            f"Reference Folder: {report.reference_folder}",
            f"Latest Folder: {report.latest_folder}",
            "",
            "Summary:",
            f"  Total Files: {report.total_files}",
            f"  Matching Files: {report.matching_files}",
            f"  Different Files: {report.different_files}",
            f"  Missing in Latest: {report.missing_in_latest}",
            f"  Missing in Reference: {report.missing_in_reference}",
            "",
        ]
    )

    changed = [
        result
        for result in report.file_results
        if not result.files_match and not result.is_missing and result.error is None
    ]
    if changed:
        lines.extend(_diff_section("DIFFERENCES FOUND"))
        lines.append("")
        for result in changed:
            lines.append(result.file_name)
            lines.append("-" * len(DIFF_RULE))
            for difference in result.differences:
                reference = format_diff_value(difference.reference_value)
                latest = format_diff_value(difference.latest_value)
                lines.append(f"  {difference.kind.value.upper()}: {difference.path or '(root)'}")
                if difference.kind is DifferenceType.TYPE_CHANGED:
                    lines.append(f"    Reference ({difference.reference_type}): {reference}")
                    lines.append(f"    Latest ({difference.latest_type}):    {latest}")
                elif difference.kind is DifferenceType.MODIFIED:
                    lines.append(f"    Reference: {reference}")
                    lines.append(f"    Latest:    {latest}")
                elif difference.kind is DifferenceType.ADDED:
                    lines.append(f"    Latest: {latest}")
                else:
                    lines.append(f"    Reference: {reference}")
                lines.append("")

    for title, selected in (
        ("FILES MISSING IN LATEST", [r for r in report.file_results if r.missing_in_latest]),
        ("FILES MISSING IN REFERENCE", [r for r in report.file_results if r.missing_in_reference]),
    ):
        if selected:
            lines.extend(_diff_section(title))
            lines.extend(f"  - {result.file_name}" for result in selected)
            lines.append("")

    errored = [result for result in report.file_results if result.error]
    if errored:
        lines.extend(_diff_section("FILES WITH ERRORS"))
        lines.extend(f"  - {result.file_name}: {result.error}" for result in errored)
        lines.append("")

    if not report.has_differences:
        lines.extend(_diff_section("NO DIFFERENCES FOUND - All files match!"))

    output_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
