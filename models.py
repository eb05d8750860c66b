from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from config import (
    DEFAULT_ARTIFACT_GRACE_SECONDS,
    DEFAULT_FILE_PATTERN,
    DEFAULT_HOST_COMMAND,
    DEFAULT_HOST_PATH,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
)


class JobStatus(str, Enum):
    SUCCEEDED = "Succeeded"
    FAILED_WITH_OUTPUT = "FailedWithOutput"
    FAILED_NO_OUTPUT = "FailedNoOutput"
    FAILED_EXCEPTION = "FailedException"
    CANCELLED = "Cancelled"

    @property
    def is_failure(self) -> bool:
        return self not in (JobStatus.SUCCEEDED, JobStatus.CANCELLED)


class BatchState(str, Enum):
    IDLE = "Idle"
    RUNNING = "Running"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    FAULTED = "Faulted"


@dataclass(frozen=True)
class InputItem:
    source_path: Path
    # Set when another item in the batch shares this file's stem.
    alias: str | None = None

    @classmethod
    def from_path(cls, path: str | Path) -> "InputItem":
        return cls(source_path=Path(path).expanduser())

    @property
    def display_name(self) -> str:
        return self.alias or self.source_path.stem


@dataclass(frozen=True)
class ExitSignal:
    exit_code: int | None
    cancelled: bool = False
    timed_out: bool = False
    timeout_seconds: float | None = None
    output_lines: tuple[str, ...] = ()
    command_not_found: str | None = None
    plugin_errors: tuple[str, ...] = ()

    @property
    def faulted(self) -> bool:
        if self.command_not_found is not None:
            return True
        return self.exit_code is not None and self.exit_code != 0

    def diagnostic(self) -> str:
        if self.command_not_found is not None:
            return f"Command not found: {self.command_not_found}"
        parts = [f"Host exited with code {self.exit_code}"]
        if self.plugin_errors:
            parts.append("plugin load errors: " + "; ".join(self.plugin_errors))
        return ", ".join(parts)


@dataclass(frozen=True)
class JobOutcome:
    item: InputItem
    status: JobStatus
    elapsed_seconds: float
    detail: str | None = None
    output_path: str | None = None
    exit_code: int | None = None

    @property
    def name(self) -> str:
        return self.item.display_name


@dataclass(frozen=True)
class FailedItem:
    name: str
    status: JobStatus
    reason: str | None = None


@dataclass(frozen=True)
class BatchSnapshot:
    total_items: int
    completed_items: int
    success_items: int
    failed_items: int


@dataclass(frozen=True)
class BatchResult:
    state: BatchState
    total_items: int
    succeeded: tuple[str, ...] = ()
    failed: tuple[FailedItem, ...] = ()
    not_attempted: tuple[str, ...] = ()
    outcomes: tuple[JobOutcome, ...] = ()
    total_seconds: float = 0.0
    output_dir: str | None = None

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def attempted_count(self) -> int:
        return len(self.outcomes)

    @property
    def cancelled(self) -> bool:
        return self.state is BatchState.CANCELLED

    @property
    def failed_names(self) -> list[str]:
        return [entry.name for entry in self.failed]


class DifferenceType(str, Enum):
    ADDED = "Added"
    REMOVED = "Removed"
    MODIFIED = "Modified"
    TYPE_CHANGED = "TypeChanged"


@dataclass(frozen=True)
class PropertyDifference:
    path: str
    kind: DifferenceType
    reference_value: Any = None
    latest_value: Any = None
    reference_type: str | None = None
    latest_type: str | None = None


@dataclass(frozen=True)
class FileDiffResult:
    file_name: str
    files_match: bool
    differences: tuple[PropertyDifference, ...] = ()
    error: str | None = None
    missing_in_latest: bool = False
    missing_in_reference: bool = False

    @property
    def is_missing(self) -> bool:
        return self.missing_in_latest or self.missing_in_reference


@dataclass(frozen=True)
class DiffReport:
    reference_folder: str
    latest_folder: str
    compared_at: datetime
    file_results: tuple[FileDiffResult, ...] = ()

    @property
    def total_files(self) -> int:
        return len(self.file_results)

    @property
    def matching_files(self) -> int:
        return sum(1 for result in self.file_results if result.files_match)

    @property
    def different_files(self) -> int:
        return sum(
            1 for result in self.file_results if not result.files_match and not result.is_missing
        )

    @property
    def missing_in_latest(self) -> int:
        return sum(1 for result in self.file_results if result.missing_in_latest)

    @property
    def missing_in_reference(self) -> int:
        return sum(1 for result in self.file_results if result.missing_in_reference)

    @property
    def has_differences(self) -> bool:
        return self.matching_files < self.total_files


def _as_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"true", "1", "yes", "on"}:
            return True
        if normalized in {"false", "0", "no", "off"}:
            return False
    return default


def _as_float(value: Any, default: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= 0 else default


@dataclass
class BatchSettings:
    host_path: str = DEFAULT_HOST_PATH
    plugin_paths: list[str] = field(default_factory=list)
    host_command: str = DEFAULT_HOST_COMMAND
    output_dir: str = str(DEFAULT_OUTPUT_DIR)
    script_dir: str = ""
    file_pattern: str = DEFAULT_FILE_PATTERN
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    artifact_grace_seconds: float = DEFAULT_ARTIFACT_GRACE_SECONDS
    use_batch_subfolder: bool = False
    verbose: bool = False

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "BatchSettings":
        defaults = cls()
        known = {item.name for item in fields(cls)}
        payload: dict[str, Any] = {}
        for key, value in values.items():
            if key not in known or value is None:
                continue
            current = getattr(defaults, key)
            if isinstance(current, bool):
                payload[key] = _as_bool(value, current)
            elif isinstance(current, float):
                payload[key] = _as_float(value, current)
            elif isinstance(current, list):
                if isinstance(value, str):
                    value = [part for part in value.split(";") if part.strip()]
                payload[key] = [str(part).strip() for part in value if str(part).strip()]
            else:
                payload[key] = str(value).strip()
        return cls(**payload)

    def to_mapping(self) -> dict[str, Any]:
        return {item.name: getattr(self, item.name) for item in fields(self)}
