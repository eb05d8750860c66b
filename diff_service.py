from __future__ import annotations

import json
import re
from datetime import datetime
from pathlib import Path
from typing import Any

from config import DIFF_REPORT_PREFIX, DIFF_TIMESTAMP_FORMAT, OUTPUT_ARTIFACT_SUFFIX
from errors import ConfigurationError
from exporters import export_diff_json, export_diff_txt
from models import DiffReport, DifferenceType, FileDiffResult, PropertyDifference

# DrawingName_YYYYMMDD_HHMMSS_fff (or microseconds) -> DrawingName
_TIMESTAMP_SUFFIX = re.compile(r"^(.+?)_\d{8}_\d{6}_\d{3,6}$")


def base_artifact_name(path: str | Path) -> str:
    stem = Path(path).stem
    match = _TIMESTAMP_SUFFIX.match(stem)
    return match.group(1) if match else stem


def json_kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "array"
    return type(value).__name__


def summarize_value(value: Any) -> Any:
    kind = json_kind(value)
    if kind == "object":
        return "[Object]"
    if kind == "array":
        return "[Array]"
    return value


def _child_path(parent: str, key: str) -> str:
    return f"{parent}.{key}" if parent else key


def compare_values(
    reference: Any,
    latest: Any,
    path: str = "",
    differences: list[PropertyDifference] | None = None,
) -> list[PropertyDifference]:
    """Walk two parsed JSON values and collect where they disagree.

    Object keys are compared by name. Array elements are compared by index,
    so an insertion shows up as a change at every later index. Numbers
    compare by value, which makes ``1`` and ``1.0`` equal.
    """
    found = differences if differences is not None else []
    reference_kind = json_kind(reference)
    latest_kind = json_kind(latest)

    if reference_kind != latest_kind:
        found.append(
            PropertyDifference(
                path=path,
                kind=DifferenceType.TYPE_CHANGED,
                reference_value=summarize_value(reference),
                latest_value=summarize_value(latest),
                reference_type=reference_kind,
                latest_type=latest_kind,
            )
        )
        return found

    if reference_kind == "object":
        for key, value in reference.items():
            if key not in latest:
                found.append(
                    PropertyDifference(
                        path=_child_path(path, key),
                        kind=DifferenceType.REMOVED,
                        reference_value=summarize_value(value),
                        reference_type=json_kind(value),
                    )
                )
        for key, value in latest.items():
            if key not in reference:
                found.append(
                    PropertyDifference(
                        path=_child_path(path, key),
                        kind=DifferenceType.ADDED,
                        latest_value=summarize_value(value),
                        latest_type=json_kind(value),
                    )
                )
        for key, value in reference.items():
            if key in latest:
                compare_values(value, latest[key], _child_path(path, key), found)
        return found

    if reference_kind == "array":
        for index in range(max(len(reference), len(latest))):
            item_path = f"{path}[{index}]"
            if index >= len(reference):
                found.append(
                    PropertyDifference(
                        path=item_path,
                        kind=DifferenceType.ADDED,
                        latest_value=summarize_value(latest[index]),
                        latest_type=json_kind(latest[index]),
                    )
                )
            elif index >= len(latest):
                found.append(
                    PropertyDifference(
                        path=item_path,
                        kind=DifferenceType.REMOVED,
                        reference_value=summarize_value(reference[index]),
                        reference_type=json_kind(reference[index]),
                    )
                )
            else:
                compare_values(reference[index], latest[index], item_path, found)
        return found

    if reference != latest:
        found.append(
            PropertyDifference(
                path=path,
                kind=DifferenceType.MODIFIED,
                reference_value=reference,
                latest_value=latest,
                reference_type=reference_kind,
                latest_type=latest_kind,
            )
        )
    return found


def compare_files(
    reference_path: str | Path,
    latest_path: str | Path,
    file_name: str | None = None,
) -> FileDiffResult:
    reference_path = Path(reference_path)
    name = file_name or reference_path.name
    try:
        reference = json.loads(reference_path.read_text(encoding="utf-8"))
        latest = json.loads(Path(latest_path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        return FileDiffResult(file_name=name, files_match=False, error=str(exc))

    differences = compare_values(reference, latest)
    return FileDiffResult(
        file_name=name,
        files_match=not differences,
        differences=tuple(differences),
    )


def _artifacts_by_name(folder: Path) -> dict[str, Path]:
    found: dict[str, Path] = {}
    for path in sorted(folder.glob(f"*{OUTPUT_ARTIFACT_SUFFIX}"), key=lambda entry: entry.name.lower()):
        if path.is_file() and not path.name.startswith(DIFF_REPORT_PREFIX):
            # Keep the first match when timestamps collapse two names into one.
            found.setdefault(base_artifact_name(path).lower(), path)
    return found


def compare_folders(
    reference_folder: str | Path,
    latest_folder: str | Path,
) -> DiffReport:
    """Pair the JSON artifacts of two output folders by drawing name and diff each pair.

    Names are matched case-insensitively after dropping a trailing batch
    timestamp, so ``A_20250101_120000_123.json`` pairs with ``A.json``.
    """
    reference_dir = Path(reference_folder).expanduser()
    latest_dir = Path(latest_folder).expanduser()
    if not reference_dir.is_dir():
        raise ConfigurationError(f"Reference folder not found: {reference_dir}")
    if not latest_dir.is_dir():
        raise ConfigurationError(f"Latest folder not found: {latest_dir}")

    reference_files = _artifacts_by_name(reference_dir)
    latest_files = _artifacts_by_name(latest_dir)
    results: list[FileDiffResult] = []

    for key in sorted(set(reference_files) | set(latest_files)):
        reference_path = reference_files.get(key)
        latest_path = latest_files.get(key)
        source = reference_path or latest_path
        assert source is not None
        file_name = base_artifact_name(source) + OUTPUT_ARTIFACT_SUFFIX

        if reference_path is None:
            results.append(FileDiffResult(file_name, files_match=False, missing_in_reference=True))
        elif latest_path is None:
            results.append(FileDiffResult(file_name, files_match=False, missing_in_latest=True))
        else:
            results.append(compare_files(reference_path, latest_path, file_name))

    return DiffReport(
        reference_folder=str(reference_dir),
        latest_folder=str(latest_dir),
        compared_at=datetime.now(),
        file_results=tuple(results),
    )


def save_diff_report(
    report: DiffReport,
    output_folder: str | Path,
    only_if_different: bool = True,
) -> Path | None:
    """Write ``diff_report_<timestamp>.json`` and ``.txt``; return the JSON path.

    Returns None without writing anything when ``only_if_different`` is set
    and every file matched.
    """
    if only_if_different and not report.has_differences:
        return None

    folder = Path(output_folder).expanduser()
    folder.mkdir(parents=True, exist_ok=True)
    base_name = DIFF_REPORT_PREFIX + report.compared_at.strftime(DIFF_TIMESTAMP_FORMAT)
    json_path = folder / f"{base_name}.json"
    export_diff_json(report, json_path)
    export_diff_txt(report, folder / f"{base_name}.txt")
    return json_path
