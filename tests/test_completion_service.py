from __future__ import annotations

import json
import os
import tempfile
import threading
import time
import unittest
from pathlib import Path

from completion_service import (
    GENERIC_OUTPUT_DETAIL,
    CompletionDetector,
    artifact_signals_failure,
    read_artifact_detail,
    write_error_artifact,
)
from models import ExitSignal, InputItem, JobStatus


class CompletionDetectorTests(unittest.TestCase):
    def setUp(self) -> None:
        self._temp = tempfile.TemporaryDirectory()
        self.out = Path(self._temp.name)
        self.item = InputItem.from_path(self.out / "A-101.dwg")
        self.expected = self.out / "A-101.json"
        self.detector = CompletionDetector(artifact_grace_seconds=0.0, poll_interval_seconds=0.01)

    def tearDown(self) -> None:
        self._temp.cleanup()

    def test_clean_exit_without_artifact_succeeds(self) -> None:
        outcome = self.detector.classify(self.item, self.expected, ExitSignal(exit_code=0), 1.5)
        self.assertEqual(JobStatus.SUCCEEDED, outcome.status)
        self.assertIsNone(outcome.output_path)
        self.assertEqual(1.5, outcome.elapsed_seconds)

    def test_error_artifact_is_failed_with_output(self) -> None:
        self.expected.write_text(
            json.dumps({"Error": True, "ErrorMessage": "Layer 'PLOT' missing"}),
            encoding="utf-8",
        )
        outcome = self.detector.classify(self.item, self.expected, ExitSignal(exit_code=0), 1.0)
        self.assertEqual(JobStatus.FAILED_WITH_OUTPUT, outcome.status)
        self.assertEqual("Layer 'PLOT' missing", outcome.detail)
        self.assertEqual(str(self.expected), outcome.output_path)

    def test_any_artifact_is_a_failure(self) -> None:
        self.expected.write_text(json.dumps({"Summary": "nothing wrong"}), encoding="utf-8")
        outcome = self.detector.classify(self.item, self.expected, ExitSignal(exit_code=0), 1.0)
        self.assertEqual(JobStatus.FAILED_WITH_OUTPUT, outcome.status)
        self.assertEqual(GENERIC_OUTPUT_DETAIL, outcome.detail)

    def test_crash_without_artifact_is_failed_exception(self) -> None:
        outcome = self.detector.classify(self.item, self.expected, ExitSignal(exit_code=-1073741819), 2.0)
        self.assertEqual(JobStatus.FAILED_EXCEPTION, outcome.status)
        self.assertIn("-1073741819", outcome.detail or "")

    def test_crash_with_artifact_reports_artifact(self) -> None:
        self.expected.write_text(json.dumps({"Error": True, "ErrorMessage": "boom"}), encoding="utf-8")
        outcome = self.detector.classify(self.item, self.expected, ExitSignal(exit_code=1), 2.0)
        self.assertEqual(JobStatus.FAILED_WITH_OUTPUT, outcome.status)
        self.assertEqual("boom", outcome.detail)

    def test_command_not_found_is_failed_exception(self) -> None:
        signal = ExitSignal(exit_code=0, command_not_found='Unknown command "X"')
        outcome = self.detector.classify(self.item, self.expected, signal, 1.0)
        self.assertEqual(JobStatus.FAILED_EXCEPTION, outcome.status)
        self.assertIn("Command not found", outcome.detail or "")

    def test_timeout_detail(self) -> None:
        signal = ExitSignal(exit_code=None, timed_out=True, timeout_seconds=360.0)
        outcome = self.detector.classify(self.item, self.expected, signal, 360.2)
        self.assertEqual(JobStatus.FAILED_EXCEPTION, outcome.status)
        self.assertEqual("Process timed out after 360 seconds", outcome.detail)

    def test_cancelled_signal(self) -> None:
        outcome = self.detector.classify(self.item, self.expected, ExitSignal(exit_code=None, cancelled=True), 0.3)
        self.assertEqual(JobStatus.CANCELLED, outcome.status)

    def test_missing_output_directory_is_failed_exception(self) -> None:
        expected = self.out / "gone" / "A-101.json"
        outcome = self.detector.classify(self.item, expected, ExitSignal(exit_code=0), 1.0)
        self.assertEqual(JobStatus.FAILED_EXCEPTION, outcome.status)
        self.assertIn("missing", outcome.detail or "")

    @unittest.skipIf(os.name == "nt" or getattr(os, "geteuid", lambda: 0)() == 0, "permission bits not enforced")
    def test_unwritable_output_directory_is_failed_exception(self) -> None:
        locked = self.out / "locked"
        locked.mkdir()
        locked.chmod(0o500)
        try:
            outcome = self.detector.classify(self.item, locked / "A-101.json", ExitSignal(exit_code=0), 1.0)
        finally:
            locked.chmod(0o700)
        self.assertEqual(JobStatus.FAILED_EXCEPTION, outcome.status)

    def test_late_artifact_within_grace_period(self) -> None:
        detector = CompletionDetector(artifact_grace_seconds=2.0, poll_interval_seconds=0.01)

        def write_late() -> None:
            time.sleep(0.1)
            self.expected.write_text(json.dumps({"Error": True, "ErrorMessage": "late"}), encoding="utf-8")

        writer = threading.Thread(target=write_late)
        writer.start()
        try:
            outcome = detector.classify(self.item, self.expected, ExitSignal(exit_code=0), 1.0)
        finally:
            writer.join()
        self.assertEqual(JobStatus.FAILED_WITH_OUTPUT, outcome.status)
        self.assertEqual("late", outcome.detail)


class ArtifactTests(unittest.TestCase):
    def test_artifact_presence(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "A.json"
            self.assertFalse(artifact_signals_failure(path))
            path.write_text("", encoding="utf-8")
            self.assertTrue(artifact_signals_failure(path))

    def test_validation_failures_summary(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "A.json"
            payload = {
                "DrawingName": "A",
                "Failures": [{"Rule": "Setback"}, {"Message": "Parking short by 2"}],
            }
            path.write_text(json.dumps(payload), encoding="utf-8")
            detail = read_artifact_detail(path)
        self.assertEqual("2 validation failure(s): Setback; Parking short by 2", detail)

    def test_unparseable_artifact_gets_generic_detail(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "A.json"
            path.write_text("not json", encoding="utf-8")
            self.assertEqual(GENERIC_OUTPUT_DETAIL, read_artifact_detail(path))

    def test_write_error_artifact_keeps_existing_file(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "A.json"
            self.assertTrue(write_error_artifact(path, "A", "Unexpected error: boom", "20250101_000000_000000"))
            payload = json.loads(path.read_text(encoding="utf-8"))
            self.assertIs(True, payload["Error"])
            self.assertEqual("Unexpected error: boom", payload["ErrorMessage"])
            self.assertEqual("A", payload["DrawingName"])

            self.assertFalse(write_error_artifact(path, "A", "second"))
            self.assertEqual("Unexpected error: boom", json.loads(path.read_text(encoding="utf-8"))["ErrorMessage"])


if __name__ == "__main__":
    unittest.main()
