from __future__ import annotations

import tempfile
import threading
import time
import unittest
from pathlib import Path
from typing import Callable, Mapping

from errors import ConfigurationError, InvocationFailure
from models import InputItem
from transport_service import (
    HostProcess,
    InvocationTransport,
    ensure_output_dir,
    expected_output_path,
    scan_host_output,
)


class _FakeHost(HostProcess):
    def __init__(
        self,
        exit_code: int | None = 0,
        lines: tuple[str, ...] = (),
        on_start: Callable[[dict[str, str]], None] | None = None,
        start_error: Exception | None = None,
    ) -> None:
        self.exit_code = exit_code
        self.lines = list(lines)
        self.on_start = on_start
        self.start_error = start_error
        self.command: list[str] = []
        self.env: dict[str, str] = {}
        self.running = False
        self.terminated = False

    def start(self, command: list[str], env: Mapping[str, str], cwd: str | Path | None = None) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.command = list(command)
        self.env = dict(env)
        self.running = True
        if self.on_start is not None:
            self.on_start(self.env)

    def await_exit(self, timeout: float | None) -> int | None:
        if self.exit_code is None:
            time.sleep(min(timeout or 0.01, 0.01))
            return None
        self.running = False
        return self.exit_code

    def force_terminate(self) -> None:
        self.terminated = True
        self.running = False

    @property
    def is_running(self) -> bool:
        return self.running

    @property
    def output_lines(self) -> list[str]:
        return list(self.lines)


class TransportTests(unittest.TestCase):
    def setUp(self) -> None:
        self._temp = tempfile.TemporaryDirectory()
        self.base = Path(self._temp.name)
        self.drawing = self.base / "A-101.dwg"
        self.drawing.write_text("dwg", encoding="utf-8")
        self.item = InputItem.from_path(self.drawing)
        self.transport = InvocationTransport(
            host_path="accoreconsole.exe",
            plugin_paths=["C:/plugins/Common.dll", "C:/plugins/Rules.dll"],
            host_command="ProcessWithJsonBatch",
            script_dir=self.base / "scripts",
            poll_interval_seconds=0.01,
            base_env={"PATH": "/usr/bin"},
        )

    def tearDown(self) -> None:
        self._temp.cleanup()

    def test_prepare_builds_environment_channel(self) -> None:
        output_dir = self.base / "out" / "nested"
        invocation = self.transport.prepare(self.item, '{"ProjectType": "Residential"}', output_dir)

        self.assertTrue(output_dir.is_dir())
        self.assertEqual(output_dir / "A-101.json", invocation.expected_output_path)
        env = invocation.env
        self.assertEqual("", env["INPUT_JSON_PATH"])
        self.assertEqual('{"ProjectType": "Residential"}', env["INPUT_JSON_CONTENT"])
        self.assertEqual(str(output_dir), env["OUTPUT_FOLDER"])
        self.assertEqual("A-101.json", env["OUTPUT_FILENAME"])
        self.assertEqual("A-101", env["DRAWING_NAME"])
        self.assertEqual(invocation.timestamp, env["TIMESTAMP"])
        self.assertEqual("/usr/bin", env["PATH"])
        self.assertEqual(6, len(invocation.channel))

    def test_prepare_writes_script_and_cleanup_removes_it(self) -> None:
        invocation = self.transport.prepare(self.item, "{}", self.base / "out")
        script_path = invocation.script_path
        assert script_path is not None

        lines = script_path.read_text(encoding="utf-8").splitlines()
        self.assertEqual(
            [
                'NETLOAD "C:/plugins/Common.dll"',
                'NETLOAD "C:/plugins/Rules.dll"',
                "ProcessWithJsonBatch",
                "QUIT",
            ],
            lines,
        )
        self.assertEqual(
            ["accoreconsole.exe", "/i", str(self.drawing), "/s", str(script_path)],
            invocation.command,
        )

        self.transport.cleanup(invocation)
        self.assertFalse(script_path.exists())

    def test_prepare_removes_artifact_left_by_earlier_run(self) -> None:
        output_dir = self.base / "out"
        output_dir.mkdir()
        stale = output_dir / "A-101.json"
        stale.write_text('{"Error": true, "ErrorMessage": "old"}', encoding="utf-8")

        invocation = self.transport.prepare(self.item, "{}", output_dir)

        self.assertEqual(stale, invocation.expected_output_path)
        self.assertFalse(stale.exists())

    def test_prepare_fails_when_stale_artifact_cannot_be_removed(self) -> None:
        output_dir = self.base / "out"
        # A directory in the artifact's place cannot be unlinked.
        (output_dir / "A-101.json").mkdir(parents=True)

        with self.assertRaises(ConfigurationError):
            self.transport.prepare(self.item, "{}", output_dir)

    def test_missing_plugins(self) -> None:
        self.assertEqual(self.transport.plugin_paths, self.transport.missing_plugins())

    def test_invoke_passes_exit_code_and_channel(self) -> None:
        invocation = self.transport.prepare(self.item, '{"a": 1}', self.base / "out")
        host = _FakeHost(exit_code=3, lines=("NETLOAD failed: cannot load assembly",))

        signal = self.transport.invoke(invocation, host, timeout_seconds=5)

        self.assertEqual(3, signal.exit_code)
        self.assertFalse(signal.cancelled)
        self.assertFalse(signal.timed_out)
        self.assertTrue(signal.faulted)
        self.assertEqual(1, len(signal.plugin_errors))
        self.assertEqual('{"a": 1}', host.env["INPUT_JSON_CONTENT"])

    def test_invoke_cancel_terminates_host(self) -> None:
        invocation = self.transport.prepare(self.item, "{}", self.base / "out")
        host = _FakeHost(exit_code=None)
        cancel_event = threading.Event()
        cancel_event.set()

        signal = self.transport.invoke(invocation, host, cancel_event=cancel_event, timeout_seconds=5)

        self.assertTrue(signal.cancelled)
        self.assertIsNone(signal.exit_code)
        self.assertTrue(host.terminated)

    def test_invoke_timeout_terminates_host(self) -> None:
        invocation = self.transport.prepare(self.item, "{}", self.base / "out")
        host = _FakeHost(exit_code=None)

        signal = self.transport.invoke(invocation, host, timeout_seconds=0.05)

        self.assertTrue(signal.timed_out)
        self.assertEqual(0.05, signal.timeout_seconds)
        self.assertTrue(host.terminated)

    def test_invoke_start_failure(self) -> None:
        invocation = self.transport.prepare(self.item, "{}", self.base / "out")
        host = _FakeHost(start_error=FileNotFoundError("no such host"))
        with self.assertRaises(InvocationFailure):
            self.transport.invoke(invocation, host)


class HelperTests(unittest.TestCase):
    def test_ensure_output_dir_rejects_blank(self) -> None:
        with self.assertRaises(ConfigurationError):
            ensure_output_dir("  ")
        with self.assertRaises(ConfigurationError):
            ensure_output_dir(None)

    def test_ensure_output_dir_rejects_file(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "occupied"
            path.write_text("x", encoding="utf-8")
            with self.assertRaises(ConfigurationError):
                ensure_output_dir(path)

    def test_expected_output_path_override(self) -> None:
        item = InputItem.from_path("plans/B-7.dwg")
        self.assertEqual(Path("out") / "B-7.json", expected_output_path("out", item))
        self.assertEqual(Path("out") / "custom.json", expected_output_path("out", item, "custom.json"))

    def test_scan_host_output(self) -> None:
        missing, plugin_errors = scan_host_output(
            [
                "Command: PROCESSWITHJSONBATCH",
                'Unknown command "PROCESSWITHJSONBATCH".  Press F1 for help.',
                "NETLOAD: assembly loaded",
            ],
            "ProcessWithJsonBatch",
        )
        self.assertIsNotNone(missing)
        self.assertEqual((), plugin_errors)

        missing, plugin_errors = scan_host_output(["Regenerating model.", "Command: QUIT"])
        self.assertIsNone(missing)
        self.assertEqual((), plugin_errors)


if __name__ == "__main__":
    unittest.main()
