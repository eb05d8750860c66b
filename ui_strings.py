from __future__ import annotations

APP_TITLE = "Drawbatch"

SEPARATOR = "-" * 64

# Batch lifecycle
LOG_SESSION_FILE = "Session log: {path}"
LOG_NO_ITEMS = "No drawing files to process."
LOG_BATCH_STARTED = "Processing {count} drawing(s) one at a time."
LOG_BATCH_OUTPUT_DIR = "Output folder: {path}"
LOG_CSV_LOADED = "Loaded parameters from CSV. {statistics}"
LOG_CSV_WARNING = "CSV warning: {message}"
LOG_TEMPLATE_WARNING = "Base configuration warning: {message}"
LOG_MISSING_PLUGINS = "Plugin not found: {path}"
LOG_CANCELLED_BEFORE_ITEM = "Processing was cancelled before {label}."
LOG_CANCELLED_DURING_ITEM = "Processing was cancelled while {label} was running."

# Per item
LOG_PROCESSING_ITEM = "Processing file {index}/{total}: {label}"
LOG_CONFIG_FROM_CSV = "[{label}] Generated config from CSV{template_note}."
LOG_CONFIG_TEMPLATE_ONLY = "[{label}] No CSV row found; using base configuration."
LOG_LAUNCHING_HOST = "[{label}] Launching host: {command}"
LOG_SCRIPT_TEXT = "[{label}] Host script:\n{script}"
LOG_HOST_OUTPUT = "[{label}] {line}"
LOG_ITEM_SUCCEEDED = "[{index}/{total}] {label}: succeeded in {elapsed} - all validations passed"
LOG_ITEM_FAILED_OUTPUT = "[{index}/{total}] {label}: failed in {elapsed} - {detail}"
LOG_ITEM_FAILED = "[{index}/{total}] {label}: not processed after {elapsed} - {detail}"
LOG_ITEM_ETA = "Batch ETA: {eta}"

# Item failure details
DETAIL_DRAWING_MISSING = "Drawing file was not found: {path}"
DETAIL_NO_CONFIG = "No configuration available (not in CSV and no base config)"
DETAIL_UNEXPECTED = "Unexpected error: {error}"

# Summary
SUMMARY_TITLE = "Batch processing complete"
SUMMARY_CANCELLED_TITLE = "Batch processing cancelled"
SUMMARY_FAULTED_TITLE = "Batch processing stopped on an internal error"
SUMMARY_COUNTS = "Succeeded: {success} | Failed: {failed} | Total: {total}"
SUMMARY_DURATION = "Duration: {elapsed}"
SUMMARY_FAILED_HEADER = "Failed drawings:"
SUMMARY_FAILED_ENTRY = "  - {name} [{status}]"
SUMMARY_FAILED_REASON = "  - {name} [{status}]: {reason}"
SUMMARY_COMPLETED_BEFORE_CANCEL = "Completed before cancellation: {count} of {total}"
SUMMARY_NOT_ATTEMPTED_HEADER = "Not attempted:"
SUMMARY_NOT_ATTEMPTED_ENTRY = "  - {name}"

# Command line
CLI_DESCRIPTION = "Run a CAD host over a batch of drawings and report which ones failed."
CLI_INTERRUPTED = "Interrupt received; stopping after the current drawing is abandoned."
CLI_MISSING_COLUMNS = "CSV is missing required column(s): {columns}"
CLI_REPORT_WRITTEN = "Report written: {path}"
CLI_SETTINGS_SAVED = "Settings saved: {path}"
CLI_ERROR = "Error: {error}"
CLI_INPUTS_REQUIRED = "at least one drawing file or folder is required unless --diff is given"

# Output comparison
DIFF_SUMMARY = (
    "Compared {total} file(s): {matching} matching, {different} different, "
    "{missing_latest} missing in latest, {missing_reference} missing in reference"
)
DIFF_CHANGED_FILE = "  - {name}: {count} difference(s)"
DIFF_ERROR_FILE = "  - {name}: {error}"
DIFF_NO_DIFFERENCES = "No differences found; all files match."
DIFF_REPORT_WRITTEN = "Diff report written: {path}"
