from __future__ import annotations

import os
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Mapping

from config import (
    BATCH_TIMESTAMP_FORMAT,
    COMMAND_NOT_FOUND_MARKERS,
    DEFAULT_HOST_COMMAND,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_TERMINATE_WAIT_SECONDS,
    ENV_DRAWING_NAME,
    ENV_INPUT_JSON_CONTENT,
    ENV_INPUT_JSON_PATH,
    ENV_OUTPUT_FILENAME,
    ENV_OUTPUT_FOLDER,
    ENV_TIMESTAMP,
    OUTPUT_ARTIFACT_SUFFIX,
    PLUGIN_LOAD_ERROR_MARKERS,
    PLUGIN_LOAD_KEYWORDS,
    SCRIPT_SUFFIX,
)
from errors import ConfigurationError, InvocationFailure
from models import BatchSettings, ExitSignal, InputItem

OutputCallback = Callable[[str], None]


class HostProcess:
    """Handle on one run of the external host.

    The orchestrator owns the handle for the duration of a job; nothing
    else starts or signals it.
    """

    def start(
        self,
        command: list[str],
        env: Mapping[str, str],
        cwd: str | Path | None = None,
    ) -> None:
        raise NotImplementedError

    def await_exit(self, timeout: float | None) -> int | None:
        """Return the exit code, or None if still running after ``timeout``."""
        raise NotImplementedError

    def force_terminate(self) -> None:
        raise NotImplementedError

    @property
    def is_running(self) -> bool:
        raise NotImplementedError

    @property
    def output_lines(self) -> list[str]:
        return []


class SubprocessHost(HostProcess):
    def __init__(
        self,
        on_output: OutputCallback | None = None,
        terminate_wait_seconds: float = DEFAULT_TERMINATE_WAIT_SECONDS,
    ) -> None:
        self._process: subprocess.Popen[str] | None = None
        self._reader: threading.Thread | None = None
        self._lines: list[str] = []
        self._lock = threading.Lock()
        self._on_output = on_output
        self._terminate_wait_seconds = terminate_wait_seconds

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None

    @property
    def output_lines(self) -> list[str]:
        with self._lock:
            return list(self._lines)

    def start(
        self,
        command: list[str],
        env: Mapping[str, str],
        cwd: str | Path | None = None,
    ) -> None:
        if self._process is not None:
            raise InvocationFailure("Host process was already started.")

        creationflags = 0
        if os.name == "nt":
            creationflags = getattr(subprocess, "CREATE_NO_WINDOW", 0)

        self._process = subprocess.Popen(
            command,
            env=dict(env),
            cwd=str(cwd) if cwd is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding="utf-8",
            errors="replace",
            creationflags=creationflags,
        )
        self._reader = threading.Thread(target=self._read_output, daemon=True)
        self._reader.start()

    def _read_output(self) -> None:
        process = self._process
        if process is None or process.stdout is None:
            return
        try:
            for raw_line in process.stdout:
                # The core console pads its output with NUL characters.
                line = raw_line.replace("\x00", "").rstrip()
                if not line:
                    continue
                with self._lock:
                    self._lines.append(line)
                if self._on_output is not None:
                    self._on_output(line)
        except (OSError, ValueError):
            # force_terminate closed the pipe under us.
            return

    def await_exit(self, timeout: float | None) -> int | None:
        if self._process is None:
            raise InvocationFailure("Host process was not started.")
        try:
            exit_code = self._process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None
        if self._reader is not None:
            self._reader.join(timeout=1.0)
        return exit_code

    def force_terminate(self) -> None:
        process = self._process
        if process is None or process.poll() is not None:
            return

        if os.name == "nt":
            # The host spawns helpers; take down the whole tree.
            try:
                subprocess.run(
                    ["taskkill", "/F", "/T", "/PID", str(process.pid)],
                    capture_output=True,
                    timeout=self._terminate_wait_seconds,
                )
            except (OSError, subprocess.SubprocessError):
                pass
        else:
            process.terminate()

        try:
            process.wait(timeout=self._terminate_wait_seconds)
        except subprocess.TimeoutExpired:
            process.kill()
            try:
                process.wait(timeout=self._terminate_wait_seconds)
            except subprocess.TimeoutExpired:
                pass

        if self._reader is not None:
            self._reader.join(timeout=1.0)
        if process.stdout is not None:
            try:
                process.stdout.close()
            except OSError:
                pass


@dataclass(frozen=True)
class Invocation:
    item: InputItem
    command: list[str]
    env: dict[str, str]
    output_dir: Path
    expected_output_path: Path
    timestamp: str
    config_payload: str
    script_path: Path | None = None
    script_text: str = ""
    channel: dict[str, str] = field(default_factory=dict)


def ensure_output_dir(output_dir: str | Path | None) -> Path:
    if output_dir is None or not str(output_dir).strip():
        raise ConfigurationError("Output directory is not set.")
    path = Path(output_dir).expanduser()
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigurationError(f"Could not create output directory {path}: {exc}") from exc
    if not path.is_dir():
        raise ConfigurationError(f"Output path is not a directory: {path}")
    return path


def expected_output_path(
    output_dir: str | Path,
    item: InputItem,
    output_file_name: str | None = None,
) -> Path:
    name = (output_file_name or "").strip()
    if not name:
        name = f"{item.display_name}{OUTPUT_ARTIFACT_SUFFIX}"
    return Path(output_dir) / name


def clear_stale_artifact(path: Path) -> None:
    # A file left by an earlier run would read as this run's failure.
    if not path.exists():
        return
    try:
        path.unlink()
    except OSError as exc:
        raise ConfigurationError(f"Could not remove previous artifact {path}: {exc}") from exc


def new_timestamp() -> str:
    return datetime.now().strftime(BATCH_TIMESTAMP_FORMAT)


def scan_host_output(
    lines: Iterable[str],
    host_command: str = DEFAULT_HOST_COMMAND,
) -> tuple[str | None, tuple[str, ...]]:
    command_not_found: str | None = None
    plugin_errors: list[str] = []
    command_lower = host_command.strip().lower()

    for raw_line in lines:
        line = raw_line.strip()
        lower = line.lower()
        if not lower:
            continue

        if command_not_found is None:
            if any(marker in lower for marker in COMMAND_NOT_FOUND_MARKERS):
                command_not_found = line
            elif command_lower and command_lower in lower and (
                "not found" in lower or "not recognized" in lower
            ):
                command_not_found = line

        if any(keyword in lower for keyword in PLUGIN_LOAD_KEYWORDS) and any(
            marker in lower for marker in PLUGIN_LOAD_ERROR_MARKERS
        ):
            plugin_errors.append(line)

    return command_not_found, tuple(plugin_errors)


class InvocationTransport:
    """Builds and runs one host invocation.

    The materialized configuration travels in the environment rather than a
    temporary file. The host reads ``INPUT_JSON_CONTENT`` when
    ``INPUT_JSON_PATH`` is empty, and writes its result artifact to
    ``OUTPUT_FOLDER/OUTPUT_FILENAME`` only when it has failures to report.
    """

    def __init__(
        self,
        host_path: str,
        plugin_paths: Iterable[str] = (),
        host_command: str = DEFAULT_HOST_COMMAND,
        script_dir: str | Path | None = None,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self.host_path = host_path
        self.plugin_paths = [str(path) for path in plugin_paths]
        self.host_command = host_command.strip() or DEFAULT_HOST_COMMAND
        self.script_dir = Path(script_dir) if script_dir else Path(tempfile.gettempdir())
        self.poll_interval_seconds = max(0.01, poll_interval_seconds)
        self._base_env = dict(base_env) if base_env is not None else None

    @classmethod
    def from_settings(cls, settings: BatchSettings) -> "InvocationTransport":
        return cls(
            host_path=settings.host_path,
            plugin_paths=settings.plugin_paths,
            host_command=settings.host_command,
            script_dir=settings.script_dir or None,
            poll_interval_seconds=settings.poll_interval_seconds,
        )

    def missing_plugins(self) -> list[str]:
        return [path for path in self.plugin_paths if not Path(path).is_file()]

    def build_channel(
        self,
        item: InputItem,
        config_payload: str,
        output_dir: Path,
        output_file_name: str,
        timestamp: str,
    ) -> dict[str, str]:
        return {
            ENV_INPUT_JSON_PATH: "",
            ENV_INPUT_JSON_CONTENT: config_payload,
            ENV_OUTPUT_FOLDER: str(output_dir),
            ENV_OUTPUT_FILENAME: output_file_name,
            ENV_TIMESTAMP: timestamp,
            ENV_DRAWING_NAME: item.display_name,
        }

    def build_script(self, item: InputItem) -> str:
        lines = [f'NETLOAD "{path}"' for path in self.plugin_paths]
        lines.append(self.host_command)
        lines.append("QUIT")
        return "\n".join(lines) + "\n"

    def build_command(self, item: InputItem, script_path: Path | None) -> list[str]:
        command = [self.host_path, "/i", str(item.source_path)]
        if script_path is not None:
            command.extend(["/s", str(script_path)])
        return command

    def prepare(
        self,
        item: InputItem,
        config_payload: str,
        output_dir: str | Path | None,
        output_file_name: str | None = None,
    ) -> Invocation:
        resolved_dir = ensure_output_dir(output_dir)
        expected = expected_output_path(resolved_dir, item, output_file_name)
        clear_stale_artifact(expected)
        timestamp = new_timestamp()
        channel = self.build_channel(
            item,
            config_payload,
            resolved_dir,
            expected.name,
            timestamp,
        )

        script_text = self.build_script(item)
        script_path = self._write_script(item, timestamp, script_text)

        env = dict(self._base_env if self._base_env is not None else os.environ)
        env.update(channel)
        return Invocation(
            item=item,
            command=self.build_command(item, script_path),
            env=env,
            output_dir=resolved_dir,
            expected_output_path=expected,
            timestamp=timestamp,
            config_payload=config_payload,
            script_path=script_path,
            script_text=script_text,
            channel=channel,
        )

    def _write_script(self, item: InputItem, timestamp: str, script_text: str) -> Path:
        try:
            self.script_dir.mkdir(parents=True, exist_ok=True)
            script_path = self.script_dir / f"drawbatch_{timestamp}_{item.display_name}{SCRIPT_SUFFIX}"
            script_path.write_text(script_text, encoding="utf-8")
        except OSError as exc:
            raise InvocationFailure(f"Could not write host script: {exc}") from exc
        return script_path

    def invoke(
        self,
        invocation: Invocation,
        host: HostProcess,
        cancel_event: threading.Event | None = None,
        timeout_seconds: float | None = None,
    ) -> ExitSignal:
        try:
            host.start(invocation.command, invocation.env, cwd=invocation.output_dir)
        except OSError as exc:
            raise InvocationFailure(f"Could not start host '{self.host_path}': {exc}") from exc

        deadline = None
        if timeout_seconds is not None and timeout_seconds > 0:
            deadline = time.monotonic() + timeout_seconds

        while True:
            if cancel_event is not None and cancel_event.is_set():
                host.force_terminate()
                return self._signal(host, None, cancelled=True)

            wait_seconds = self.poll_interval_seconds
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    host.force_terminate()
                    return self._signal(
                        host,
                        None,
                        timed_out=True,
                        timeout_seconds=timeout_seconds,
                    )
                wait_seconds = min(wait_seconds, remaining)

            exit_code = host.await_exit(wait_seconds)
            if exit_code is not None:
                return self._signal(host, exit_code)

    def _signal(
        self,
        host: HostProcess,
        exit_code: int | None,
        cancelled: bool = False,
        timed_out: bool = False,
        timeout_seconds: float | None = None,
    ) -> ExitSignal:
        lines = tuple(host.output_lines)
        command_not_found, plugin_errors = scan_host_output(lines, self.host_command)
        return ExitSignal(
            exit_code=exit_code,
            cancelled=cancelled,
            timed_out=timed_out,
            timeout_seconds=timeout_seconds,
            output_lines=lines,
            command_not_found=command_not_found,
            plugin_errors=plugin_errors,
        )

    def cleanup(self, invocation: Invocation) -> None:
        if invocation.script_path is None:
            return
        try:
            invocation.script_path.unlink(missing_ok=True)
        except OSError:
            pass
