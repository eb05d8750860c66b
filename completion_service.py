from __future__ import annotations

import json
import os
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from config import (
    DEFAULT_ARTIFACT_GRACE_SECONDS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    VALIDATION_FAILURE_KEYS,
)
from errors import OutputDirectoryUnavailable
from models import ExitSignal, InputItem, JobOutcome, JobStatus

GENERIC_OUTPUT_DETAIL = "Failures recorded in output artifact"


def artifact_signals_failure(path: str | Path) -> bool:
    """The host writes its artifact only when it has failures to report.

    A missing artifact after a clean exit is the success signal; any file at
    the expected path is a failure, whatever its contents.
    """
    return Path(path).is_file()


def write_error_artifact(
    path: str | Path,
    item_name: str,
    message: str,
    timestamp: str | None = None,
) -> bool:
    """Write the error-shaped payload unless an artifact is already there."""
    artifact = Path(path)
    if artifact.exists():
        return False
    payload = {
        "Error": True,
        "ErrorMessage": message,
        "DrawingName": item_name,
        "Timestamp": timestamp or datetime.now().isoformat(),
    }
    try:
        artifact.parent.mkdir(parents=True, exist_ok=True)
        artifact.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    except OSError:
        return False
    return True


def check_output_directory(output_dir: str | Path) -> None:
    path = Path(output_dir)
    try:
        if not path.is_dir():
            raise OutputDirectoryUnavailable(f"Output directory is missing: {path}")
        if not os.access(path, os.W_OK | os.X_OK):
            raise OutputDirectoryUnavailable(f"Output directory is not writable: {path}")
        # Listing proves the directory is still readable.
        next(path.iterdir(), None)
    except OSError as exc:
        raise OutputDirectoryUnavailable(f"Output directory is not accessible: {path} ({exc})") from exc


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    return bool(value)


def _get_ci(payload: dict[str, Any], key: str) -> Any:
    lowered = key.lower()
    for name, value in payload.items():
        if str(name).lower() == lowered:
            return value
    return None


def _describe_failure_entry(entry: Any) -> str:
    if isinstance(entry, dict):
        for key in ("Message", "ErrorMessage", "Description", "Rule", "Name"):
            value = _get_ci(entry, key)
            if value:
                return str(value)
        return json.dumps(entry, ensure_ascii=False)
    return str(entry)


def _collect_validation_failures(payload: Any) -> list[str]:
    failures: list[str] = []
    if isinstance(payload, list):
        for entry in payload:
            failures.extend(_collect_validation_failures(entry))
        return failures
    if not isinstance(payload, dict):
        return failures

    is_valid = _get_ci(payload, "IsValid")
    status = _get_ci(payload, "Status")
    if (is_valid is not None and not _truthy(is_valid)) or (
        isinstance(status, str) and status.strip().lower() in {"failed", "fail", "error"}
    ):
        failures.append(_describe_failure_entry(payload))

    for key in VALIDATION_FAILURE_KEYS:
        value = _get_ci(payload, key)
        if isinstance(value, list):
            failures.extend(_describe_failure_entry(entry) for entry in value)
        elif isinstance(value, dict):
            failures.extend(f"{name}: {entry}" for name, entry in value.items())
    return failures


def read_artifact_detail(path: str | Path) -> str:
    """Summarize what an output artifact reports.

    Two shapes are understood: the error payload the host writes when its
    command faults (``{"Error": true, "ErrorMessage": ...}``) and a domain
    result carrying validation failures. Anything else, including a file
    that does not parse, gets the generic detail.
    """
    artifact = Path(path)
    try:
        payload = json.loads(artifact.read_text(encoding="utf-8-sig"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError):
        return GENERIC_OUTPUT_DETAIL

    if isinstance(payload, dict) and _truthy(_get_ci(payload, "Error")):
        message = _get_ci(payload, "ErrorMessage") or _get_ci(payload, "Message")
        return str(message).strip() if message else "Host reported an error"

    failures = _collect_validation_failures(payload)
    if failures:
        shown = "; ".join(failures[:5])
        if len(failures) > 5:
            shown += f" (+{len(failures) - 5} more)"
        return f"{len(failures)} validation failure(s): {shown}"
    return GENERIC_OUTPUT_DETAIL


class CompletionDetector:
    def __init__(
        self,
        artifact_grace_seconds: float = DEFAULT_ARTIFACT_GRACE_SECONDS,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self.artifact_grace_seconds = max(0.0, artifact_grace_seconds)
        self.poll_interval_seconds = max(0.01, poll_interval_seconds)

    def wait_for_artifact(self, path: Path) -> bool:
        # The host may flush its artifact after the process has exited.
        deadline = time.monotonic() + self.artifact_grace_seconds
        while True:
            if artifact_signals_failure(path):
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            time.sleep(min(self.poll_interval_seconds, remaining))

    def classify(
        self,
        item: InputItem,
        expected_output_path: str | Path,
        signal: ExitSignal,
        elapsed_seconds: float,
    ) -> JobOutcome:
        path = Path(expected_output_path)

        def outcome(status: JobStatus, detail: str | None = None, output: str | None = None) -> JobOutcome:
            return JobOutcome(
                item=item,
                status=status,
                elapsed_seconds=elapsed_seconds,
                detail=detail,
                output_path=output,
                exit_code=signal.exit_code,
            )

        if signal.cancelled:
            return outcome(JobStatus.CANCELLED, "Cancelled while the host was running")

        if signal.timed_out:
            limit = signal.timeout_seconds or 0
            return outcome(
                JobStatus.FAILED_EXCEPTION,
                f"Process timed out after {limit:g} seconds",
            )

        if signal.faulted and not artifact_signals_failure(path):
            return outcome(JobStatus.FAILED_EXCEPTION, signal.diagnostic())

        if self.wait_for_artifact(path):
            return outcome(
                JobStatus.FAILED_WITH_OUTPUT,
                read_artifact_detail(path),
                str(path),
            )

        try:
            check_output_directory(path.parent)
        except OutputDirectoryUnavailable as exc:
            return outcome(JobStatus.FAILED_EXCEPTION, str(exc))

        return outcome(JobStatus.SUCCEEDED)
