from __future__ import annotations

import threading
from typing import Iterable

import ui_strings as ui
from models import BatchResult, BatchSnapshot, BatchState, FailedItem, JobOutcome, JobStatus


def format_elapsed(seconds: float) -> str:
    bounded = max(0.0, seconds)
    if bounded < 60:
        return f"{bounded:.1f}s"
    minutes, secs = divmod(int(round(bounded)), 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    return f"{minutes}m {secs:02d}s"


class ResultReporter:
    """Ordered record of job outcomes for one batch run.

    The orchestrator is the only writer. Progress readers get snapshots; the
    final ``BatchResult`` is built once and never changes afterwards.
    """

    def __init__(self, total_items: int) -> None:
        self._total_items = total_items
        self._lock = threading.Lock()
        self._outcomes: list[JobOutcome] = []
        self._succeeded: list[str] = []
        self._failed: list[FailedItem] = []
        self._result: BatchResult | None = None

    def record(self, outcome: JobOutcome) -> None:
        if outcome.status is JobStatus.CANCELLED:
            # Abandoned work is reported as not attempted.
            return
        with self._lock:
            if self._result is not None:
                raise RuntimeError("Cannot record outcomes after the batch was finalized.")
            self._outcomes.append(outcome)
            if outcome.status is JobStatus.SUCCEEDED:
                self._succeeded.append(outcome.name)
            else:
                self._failed.append(
                    FailedItem(name=outcome.name, status=outcome.status, reason=outcome.detail)
                )

    def snapshot(self) -> BatchSnapshot:
        with self._lock:
            return BatchSnapshot(
                total_items=self._total_items,
                completed_items=len(self._outcomes),
                success_items=len(self._succeeded),
                failed_items=len(self._failed),
            )

    def finalize(
        self,
        state: BatchState,
        not_attempted: Iterable[str] = (),
        total_seconds: float = 0.0,
        output_dir: str | None = None,
    ) -> BatchResult:
        with self._lock:
            if self._result is None:
                self._result = BatchResult(
                    state=state,
                    total_items=self._total_items,
                    succeeded=tuple(self._succeeded),
                    failed=tuple(self._failed),
                    not_attempted=tuple(not_attempted),
                    outcomes=tuple(self._outcomes),
                    total_seconds=round(max(0.0, total_seconds), 4),
                    output_dir=output_dir,
                )
            return self._result


def format_outcome_line(outcome: JobOutcome, index: int, total: int) -> str:
    values = {
        "index": index,
        "total": total,
        "label": outcome.name,
        "elapsed": format_elapsed(outcome.elapsed_seconds),
        "detail": outcome.detail or outcome.status.value,
    }
    if outcome.status is JobStatus.SUCCEEDED:
        return ui.LOG_ITEM_SUCCEEDED.format(**values)
    if outcome.status is JobStatus.FAILED_WITH_OUTPUT:
        return ui.LOG_ITEM_FAILED_OUTPUT.format(**values)
    return ui.LOG_ITEM_FAILED.format(**values)


def format_summary_lines(result: BatchResult) -> list[str]:
    if result.state is BatchState.CANCELLED:
        title = ui.SUMMARY_CANCELLED_TITLE
    elif result.state is BatchState.FAULTED:
        title = ui.SUMMARY_FAULTED_TITLE
    else:
        title = ui.SUMMARY_TITLE

    lines = [
        ui.SEPARATOR,
        title,
        ui.SUMMARY_COUNTS.format(
            success=result.success_count,
            failed=result.failure_count,
            total=result.total_items,
        ),
        ui.SUMMARY_DURATION.format(elapsed=format_elapsed(result.total_seconds)),
    ]
    if result.output_dir:
        lines.append(ui.LOG_BATCH_OUTPUT_DIR.format(path=result.output_dir))

    if result.failed:
        lines.append(ui.SUMMARY_FAILED_HEADER)
        for entry in result.failed:
            template = ui.SUMMARY_FAILED_REASON if entry.reason else ui.SUMMARY_FAILED_ENTRY
            lines.append(
                template.format(name=entry.name, status=entry.status.value, reason=entry.reason)
            )

    if result.cancelled:
        lines.append(
            ui.SUMMARY_COMPLETED_BEFORE_CANCEL.format(
                count=result.attempted_count,
                total=result.total_items,
            )
        )
        if result.not_attempted:
            lines.append(ui.SUMMARY_NOT_ATTEMPTED_HEADER)
            lines.extend(
                ui.SUMMARY_NOT_ATTEMPTED_ENTRY.format(name=name) for name in result.not_attempted
            )

    lines.append(ui.SEPARATOR)
    return lines
