from __future__ import annotations

import argparse
import sys
import threading
from pathlib import Path
from typing import Any, Callable

import ui_strings as ui
from config import APP_TITLE
from csv_service import ParameterTable
from diff_service import compare_folders, save_diff_report
from errors import ConfigurationError
from exporters import export_report
from job_runner import BatchOrchestrator
from logging_service import SessionLogger
from models import BatchResult, BatchState
from parameter_service import load_base_config, mapping_summary, validate_required_columns
from queue_service import QueueService
from settings_service import get_settings_path, load_batch_settings, save_batch_settings

EXIT_OK = 0
EXIT_ITEMS_FAILED = 1
EXIT_CONFIGURATION = 2
EXIT_CANCELLED = 130

JOIN_POLL_SECONDS = 0.5


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=APP_TITLE.lower(), description=ui.CLI_DESCRIPTION)
    parser.add_argument(
        "inputs",
        nargs="*",
        help="Drawing files or folders (folders are scanned without recursion).",
    )
    parser.add_argument(
        "--diff",
        nargs=2,
        metavar=("REFERENCE", "LATEST"),
        help="Compare the JSON artifacts of two output folders instead of running a batch.",
    )
    parser.add_argument(
        "--diff-output",
        help="Folder for the diff report (defaults to the LATEST folder).",
    )
    parser.add_argument(
        "--diff-always",
        action="store_true",
        help="Write the diff report even when every file matches.",
    )
    parser.add_argument("-o", "--output", dest="output_dir", help="Folder for output artifacts.")
    parser.add_argument("--csv", help="CSV file with one parameter row per drawing.")
    parser.add_argument(
        "--csv-only",
        action="store_true",
        help="Process only drawings that have a row in the CSV file.",
    )
    parser.add_argument(
        "--strict-columns",
        action="store_true",
        help="Stop before processing when the CSV lacks a required column.",
    )
    parser.add_argument("--config", dest="base_config", help="Base configuration JSON file.")
    parser.add_argument("--host", dest="host_path", help="Path to the host console executable.")
    parser.add_argument(
        "--plugin",
        dest="plugin_paths",
        action="append",
        help="Plugin assembly to load before the command (repeatable, loaded in order).",
    )
    parser.add_argument("--command", dest="host_command", help="Host command to run per drawing.")
    parser.add_argument("--pattern", dest="file_pattern", help="File pattern used for folders.")
    parser.add_argument(
        "--timeout",
        dest="timeout_seconds",
        type=float,
        help="Seconds before a drawing's host process is terminated.",
    )
    parser.add_argument(
        "--batch-subfolder",
        dest="use_batch_subfolder",
        action="store_true",
        default=None,
        help="Write artifacts into a timestamped subfolder of the output folder.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=None,
        help="Log the host script and console output.",
    )
    parser.add_argument("--report", help="Write a batch report (.json, .txt or .md).")
    parser.add_argument("--settings-file", help="Settings file to use instead of the per-user one.")
    parser.add_argument(
        "--save-settings",
        action="store_true",
        help="Store the effective settings for later runs.",
    )
    return parser


def _settings_overrides(args: argparse.Namespace) -> dict[str, Any]:
    keys = (
        "output_dir",
        "host_path",
        "plugin_paths",
        "host_command",
        "file_pattern",
        "timeout_seconds",
        "use_batch_subfolder",
        "verbose",
    )
    return {key: getattr(args, key) for key in keys}


def _print(message: str) -> None:
    print(message, flush=True)


def _print_error(message: str) -> None:
    print(ui.CLI_ERROR.format(error=message), file=sys.stderr, flush=True)


def _build_queue(inputs: list[str], pattern: str) -> QueueService:
    queue = QueueService()
    for raw in inputs:
        path = Path(raw).expanduser()
        if path.is_dir():
            queue.enqueue_folder(path, pattern)
        else:
            queue.enqueue_paths([path])
    return queue


def _wait_for_batch(
    orchestrator: BatchOrchestrator,
    queue: QueueService,
    cancel_event: threading.Event,
    **kwargs: Any,
) -> BatchResult:
    outcome: dict[str, Any] = {}

    thread = orchestrator.run_in_background(
        queue.to_items(),
        cancel_event,
        on_done=lambda result: outcome.__setitem__("result", result),
        on_error=lambda exc: outcome.__setitem__("error", exc),
        **kwargs,
    )

    while thread.is_alive():
        try:
            thread.join(JOIN_POLL_SECONDS)
        except KeyboardInterrupt:
            if not cancel_event.is_set():
                _print(ui.CLI_INTERRUPTED)
                cancel_event.set()

    if "error" in outcome:
        raise outcome["error"]
    return outcome["result"]


def _exit_code(result: BatchResult) -> int:
    if result.state is BatchState.CANCELLED:
        return EXIT_CANCELLED
    if result.failure_count > 0:
        return EXIT_ITEMS_FAILED
    return EXIT_OK


def _run_diff(args: argparse.Namespace) -> int:
    reference_folder, latest_folder = args.diff
    try:
        report = compare_folders(reference_folder, latest_folder)
    except ConfigurationError as exc:
        _print_error(str(exc))
        return EXIT_CONFIGURATION

    _print(
        ui.DIFF_SUMMARY.format(
            total=report.total_files,
            matching=report.matching_files,
            different=report.different_files,
            missing_latest=report.missing_in_latest,
            missing_reference=report.missing_in_reference,
        )
    )
    for result in report.file_results:
        if result.error:
            _print(ui.DIFF_ERROR_FILE.format(name=result.file_name, error=result.error))
        elif result.differences:
            _print(ui.DIFF_CHANGED_FILE.format(name=result.file_name, count=len(result.differences)))
    if not report.has_differences:
        _print(ui.DIFF_NO_DIFFERENCES)

    try:
        report_path = save_diff_report(
            report,
            args.diff_output or latest_folder,
            only_if_different=not args.diff_always,
        )
    except OSError as exc:
        _print_error(str(exc))
        return EXIT_CONFIGURATION
    if report_path is not None:
        _print(ui.DIFF_REPORT_WRITTEN.format(path=report_path))

    return EXIT_ITEMS_FAILED if report.has_differences else EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.diff:
        return _run_diff(args)
    if not args.inputs:
        parser.error(ui.CLI_INPUTS_REQUIRED)

    settings_path = Path(args.settings_file) if args.settings_file else None
    settings = load_batch_settings(_settings_overrides(args), settings_path)

    if args.save_settings:
        if save_batch_settings(settings, settings_path):
            _print(ui.CLI_SETTINGS_SAVED.format(path=settings_path or get_settings_path()))

    session_logger = SessionLogger(settings.output_dir)
    if session_logger.log_path is not None:
        _print(ui.LOG_SESSION_FILE.format(path=session_logger.log_path))

    def warn(template: str) -> Callable[[str], None]:
        def emit(message: str) -> None:
            line = template.format(message=message)
            _print(line)
            session_logger.warning(line)

        return emit

    try:
        base_config = None
        if args.base_config:
            base_config = load_base_config(args.base_config, warn(ui.LOG_TEMPLATE_WARNING))

        parameter_table = None
        if args.csv:
            parameter_table = ParameterTable.load(args.csv, warn(ui.LOG_CSV_WARNING))
            _print(ui.LOG_CSV_LOADED.format(statistics=parameter_table.statistics()))
            if settings.verbose:
                _print(mapping_summary())
            missing = validate_required_columns(parameter_table.headers)
            if missing and args.strict_columns:
                raise ConfigurationError(ui.CLI_MISSING_COLUMNS.format(columns=", ".join(missing)))
    except ConfigurationError as exc:
        _print_error(str(exc))
        session_logger.error(str(exc))
        return EXIT_CONFIGURATION

    queue = _build_queue(args.inputs, settings.file_pattern)
    if args.csv_only and parameter_table is not None:
        queue.retain_names(Path(name).stem for name in parameter_table.drawing_names())

    orchestrator = BatchOrchestrator(settings, session_logger=session_logger)
    cancel_event = threading.Event()
    try:
        result = _wait_for_batch(
            orchestrator,
            queue,
            cancel_event,
            on_log=_print,
            base_config=base_config,
            parameter_table=parameter_table,
        )
    except ConfigurationError as exc:
        _print_error(str(exc))
        return EXIT_CONFIGURATION
    except Exception as exc:
        _print_error(str(exc))
        session_logger.error(str(exc), error_type=type(exc).__name__)
        return EXIT_ITEMS_FAILED

    if args.report:
        try:
            report_path = export_report(result, args.report)
        except (OSError, ValueError) as exc:
            _print_error(str(exc))
        else:
            _print(ui.CLI_REPORT_WRITTEN.format(path=report_path))

    return _exit_code(result)


if __name__ == "__main__":
    sys.exit(main())
