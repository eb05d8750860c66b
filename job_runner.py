from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Any, Callable, Mapping

import ui_strings as ui
from completion_service import CompletionDetector, write_error_artifact
from config import DEFAULT_TIMEOUT_SECONDS
from csv_service import ParameterTable
from errors import BatchAlreadyRunning, ConfigurationError, InvocationFailure
from logging_service import SessionLogger
from models import (
    BatchResult,
    BatchSettings,
    BatchSnapshot,
    BatchState,
    InputItem,
    JobOutcome,
    JobStatus,
)
from parameter_service import materialize
from queue_service import ItemSource, collect_items
from report_service import ResultReporter, format_outcome_line, format_summary_lines
from transport_service import (
    HostProcess,
    Invocation,
    InvocationTransport,
    SubprocessHost,
    new_timestamp,
)

LogCallback = Callable[[str], None]
ProgressCallback = Callable[[int, int, str], None]
HostFactory = Callable[[], HostProcess]


def estimate_eta_seconds(elapsed_seconds: float, progress_percent: float) -> float | None:
    bounded_progress = max(0.0, min(100.0, progress_percent))
    if bounded_progress <= 0:
        return None
    return (elapsed_seconds / bounded_progress) * (100.0 - bounded_progress)


def format_eta(seconds: float | None) -> str:
    if seconds is None:
        return "--:--"
    bounded = max(0, int(round(seconds)))
    hours, remainder = divmod(bounded, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


class BatchOrchestrator:
    """Runs drawings through the host one at a time.

    ``process_all`` is single-flight per instance. Per-item failures are
    recorded and the batch moves on; only cancellation ends a run early.
    """

    def __init__(
        self,
        settings: BatchSettings | None = None,
        transport: InvocationTransport | None = None,
        detector: CompletionDetector | None = None,
        host_factory: HostFactory | None = None,
        session_logger: SessionLogger | None = None,
    ) -> None:
        self.settings = settings or BatchSettings()
        self.transport = transport or InvocationTransport.from_settings(self.settings)
        self.detector = detector or CompletionDetector(
            artifact_grace_seconds=self.settings.artifact_grace_seconds,
            poll_interval_seconds=self.settings.poll_interval_seconds,
        )
        self.session_logger = session_logger
        self._host_factory = host_factory
        self._state = BatchState.IDLE
        self._state_lock = threading.Lock()
        self._reporter: ResultReporter | None = None

    @property
    def state(self) -> BatchState:
        with self._state_lock:
            return self._state

    def snapshot(self) -> BatchSnapshot | None:
        reporter = self._reporter
        return reporter.snapshot() if reporter is not None else None

    def _set_state(self, state: BatchState) -> None:
        with self._state_lock:
            self._state = state

    def process_all(
        self,
        items: ItemSource,
        cancel_event: threading.Event | None = None,
        on_log: LogCallback | None = None,
        on_progress: ProgressCallback | None = None,
        base_config: Mapping[str, Any] | None = None,
        parameter_table: ParameterTable | None = None,
    ) -> BatchResult:
        with self._state_lock:
            if self._state is BatchState.RUNNING:
                raise BatchAlreadyRunning("A batch is already running on this orchestrator.")
            self._state = BatchState.RUNNING

        try:
            result = self._run(
                items,
                cancel_event or threading.Event(),
                on_log,
                on_progress,
                base_config,
                parameter_table,
            )
        except Exception:
            self._set_state(BatchState.FAULTED)
            raise

        self._set_state(result.state)
        return result

    def run_in_background(
        self,
        items: ItemSource,
        cancel_event: threading.Event,
        on_done: Callable[[BatchResult], None],
        on_error: Callable[[Exception], None] | None = None,
        **kwargs: Any,
    ) -> threading.Thread:
        def worker() -> None:
            try:
                result = self.process_all(items, cancel_event, **kwargs)
            except Exception as exc:
                if on_error is None:
                    raise
                on_error(exc)
                return
            on_done(result)

        thread = threading.Thread(target=worker, name="drawbatch-worker", daemon=True)
        thread.start()
        return thread

    def _emit(self, on_log: LogCallback | None, message: str, level: str = "INFO", **context: Any) -> None:
        if on_log is not None:
            on_log(message)
        if self.session_logger is not None:
            self.session_logger.log(level, message, context)

    def _resolve_output_dir(self) -> Path | None:
        raw = (self.settings.output_dir or "").strip()
        if not raw:
            return None
        base = Path(raw).expanduser()
        if self.settings.use_batch_subfolder:
            return base / new_timestamp()
        return base

    def _timeout_seconds(self) -> float:
        if self.settings.timeout_seconds > 0:
            return self.settings.timeout_seconds
        return DEFAULT_TIMEOUT_SECONDS

    def _run(
        self,
        items: ItemSource,
        cancel_event: threading.Event,
        on_log: LogCallback | None,
        on_progress: ProgressCallback | None,
        base_config: Mapping[str, Any] | None,
        parameter_table: ParameterTable | None,
    ) -> BatchResult:
        batch_items = collect_items(items, self.settings.file_pattern)
        total = len(batch_items)
        reporter = ResultReporter(total)
        self._reporter = reporter
        batch_started_at = time.perf_counter()
        output_dir = self._resolve_output_dir()
        output_dir_text = str(output_dir) if output_dir is not None else None

        def log(message: str, level: str = "INFO", **context: Any) -> None:
            self._emit(on_log, message, level, **context)

        if total == 0:
            log(ui.LOG_NO_ITEMS, "WARNING")
            return reporter.finalize(BatchState.COMPLETED, output_dir=output_dir_text)

        log(ui.LOG_BATCH_STARTED.format(count=total), total=total)
        if output_dir_text:
            log(ui.LOG_BATCH_OUTPUT_DIR.format(path=output_dir_text))
        for missing in self.transport.missing_plugins():
            log(ui.LOG_MISSING_PLUGINS.format(path=missing), "WARNING")

        state = BatchState.COMPLETED
        not_attempted: list[str] = []

        for index, item in enumerate(batch_items, start=1):
            label = item.display_name
            if cancel_event.is_set():
                log(ui.LOG_CANCELLED_BEFORE_ITEM.format(label=label), "WARNING")
                not_attempted = [entry.display_name for entry in batch_items[index - 1:]]
                state = BatchState.CANCELLED
                break

            if on_progress is not None:
                on_progress(index - 1, total, label)
            log(ui.SEPARATOR)
            log(ui.LOG_PROCESSING_ITEM.format(index=index, total=total, label=label), item=str(item.source_path))

            outcome = self._run_item(
                item,
                output_dir,
                cancel_event,
                log,
                base_config,
                parameter_table,
            )

            if outcome.status is JobStatus.CANCELLED:
                log(ui.LOG_CANCELLED_DURING_ITEM.format(label=label), "WARNING")
                not_attempted = [entry.display_name for entry in batch_items[index - 1:]]
                state = BatchState.CANCELLED
                break

            reporter.record(outcome)
            log(
                format_outcome_line(outcome, index, total),
                "ERROR" if outcome.status.is_failure else "INFO",
                status=outcome.status.value,
                elapsed_seconds=round(outcome.elapsed_seconds, 4),
                detail=outcome.detail,
                output_path=outcome.output_path,
            )
            if index < total:
                batch_elapsed = max(0.0, time.perf_counter() - batch_started_at)
                eta = estimate_eta_seconds(batch_elapsed, index * 100.0 / total)
                log(ui.LOG_ITEM_ETA.format(eta=format_eta(eta)))
            if on_progress is not None:
                on_progress(index, total, label)

        result = reporter.finalize(
            state,
            not_attempted=not_attempted,
            total_seconds=time.perf_counter() - batch_started_at,
            output_dir=output_dir_text,
        )
        for line in format_summary_lines(result):
            log(line)
        return result

    def _new_host(self, label: str, log: Callable[..., None]) -> HostProcess:
        if self._host_factory is not None:
            return self._host_factory()
        if self.settings.verbose:
            return SubprocessHost(
                on_output=lambda line: log(ui.LOG_HOST_OUTPUT.format(label=label, line=line), "DEBUG")
            )
        return SubprocessHost()

    def _materialize(
        self,
        item: InputItem,
        base_config: Mapping[str, Any] | None,
        parameter_table: ParameterTable | None,
        log: Callable[..., None],
    ) -> str:
        if parameter_table is None:
            return materialize(None, base_config)

        row = parameter_table.row_for(item)
        if row is not None:
            note = " + base configuration" if base_config is not None else ""
            log(ui.LOG_CONFIG_FROM_CSV.format(label=item.display_name, template_note=note))
            return materialize(row, base_config)

        if base_config is None:
            raise ConfigurationError(ui.DETAIL_NO_CONFIG)
        log(ui.LOG_CONFIG_TEMPLATE_ONLY.format(label=item.display_name), "WARNING")
        return materialize(None, base_config)

    def _run_item(
        self,
        item: InputItem,
        output_dir: Path | None,
        cancel_event: threading.Event,
        log: Callable[..., None],
        base_config: Mapping[str, Any] | None,
        parameter_table: ParameterTable | None,
    ) -> JobOutcome:
        item_started_at = time.perf_counter()
        invocation: Invocation | None = None
        host: HostProcess | None = None

        def failed(status: JobStatus, detail: str) -> JobOutcome:
            return JobOutcome(
                item=item,
                status=status,
                elapsed_seconds=max(0.0, time.perf_counter() - item_started_at),
                detail=detail,
            )

        try:
            if not item.source_path.is_file():
                return failed(
                    JobStatus.FAILED_NO_OUTPUT,
                    ui.DETAIL_DRAWING_MISSING.format(path=item.source_path),
                )

            payload = self._materialize(item, base_config, parameter_table, log)
            invocation = self.transport.prepare(item, payload, output_dir)
            if self.settings.verbose:
                log(ui.LOG_SCRIPT_TEXT.format(label=item.display_name, script=invocation.script_text), "DEBUG")
            log(
                ui.LOG_LAUNCHING_HOST.format(label=item.display_name, command=" ".join(invocation.command)),
                "DEBUG",
                expected_output=str(invocation.expected_output_path),
                timestamp=invocation.timestamp,
            )

            host = self._new_host(item.display_name, log)
            signal = self.transport.invoke(
                invocation,
                host,
                cancel_event=cancel_event,
                timeout_seconds=self._timeout_seconds(),
            )
            elapsed = max(0.0, time.perf_counter() - item_started_at)
            return self.detector.classify(item, invocation.expected_output_path, signal, elapsed)
        except ConfigurationError as exc:
            return failed(JobStatus.FAILED_NO_OUTPUT, str(exc))
        except InvocationFailure as exc:
            return failed(JobStatus.FAILED_EXCEPTION, str(exc))
        except Exception as exc:
            outcome = failed(JobStatus.FAILED_EXCEPTION, ui.DETAIL_UNEXPECTED.format(error=exc))
            if invocation is not None:
                # Keep the output folder in step with the failed list.
                write_error_artifact(
                    invocation.expected_output_path,
                    item.display_name,
                    outcome.detail or "",
                    invocation.timestamp,
                )
            return outcome
        finally:
            if host is not None and host.is_running:
                host.force_terminate()
            if invocation is not None:
                self.transport.cleanup(invocation)
