from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import settings_service
from models import BatchSettings


class SettingsServiceTests(unittest.TestCase):
    def test_save_and_load_settings(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            settings_path = Path(temp_dir) / "settings.json"
            payload = {
                "output_dir": "C:/tmp/out",
                "host_command": "ValidateDrawing",
                "verbose": True,
            }
            with patch.object(settings_service, "get_settings_path", return_value=settings_path):
                self.assertTrue(settings_service.save_app_settings(payload))
                loaded = settings_service.load_app_settings(defaults={"host_command": "X", "timeout_seconds": 60})
            self.assertEqual("C:/tmp/out", loaded["output_dir"])
            self.assertEqual("ValidateDrawing", loaded["host_command"])
            self.assertTrue(loaded["verbose"])
            self.assertEqual(60, loaded["timeout_seconds"])
            self.assertEqual(1, json.loads(settings_path.read_text(encoding="utf-8"))["version"])

    def test_unreadable_file_falls_back_to_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            settings_path = Path(temp_dir) / "settings.json"
            settings_path.write_text("{broken", encoding="utf-8")
            loaded = settings_service.load_app_settings({"output_dir": "out"}, settings_path)
        self.assertEqual({"output_dir": "out"}, loaded)

    def test_batch_settings_round_trip_with_overrides(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            settings_path = Path(temp_dir) / "nested" / "settings.json"
            saved = BatchSettings(
                host_path="C:/CAD/accoreconsole.exe",
                plugin_paths=["C:/p/Common.dll"],
                timeout_seconds=120.0,
            )
            self.assertTrue(settings_service.save_batch_settings(saved, settings_path))

            loaded = settings_service.load_batch_settings(
                {"timeout_seconds": 30, "output_dir": None, "verbose": "true"},
                settings_path,
            )
        self.assertEqual("C:/CAD/accoreconsole.exe", loaded.host_path)
        self.assertEqual(["C:/p/Common.dll"], loaded.plugin_paths)
        self.assertEqual(30.0, loaded.timeout_seconds)
        self.assertTrue(loaded.verbose)
        self.assertEqual(BatchSettings().output_dir, loaded.output_dir)

    def test_unenveloped_settings_are_accepted(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            settings_path = Path(temp_dir) / "settings.json"
            settings_path.write_text(
                json.dumps({"version": 1, "plugin_paths": "a.dll; b.dll", "timeout_seconds": -5}),
                encoding="utf-8",
            )
            loaded = settings_service.load_batch_settings(settings_path=settings_path)
        self.assertEqual(["a.dll", "b.dll"], loaded.plugin_paths)
        self.assertEqual(BatchSettings().timeout_seconds, loaded.timeout_seconds)

    def test_settings_dir_follows_xdg(self) -> None:
        with patch.object(settings_service.os, "name", "posix"), patch.dict(
            settings_service.os.environ, {"XDG_CONFIG_HOME": "/cfg"}
        ):
            self.assertEqual(Path("/cfg/drawbatch/settings.json"), settings_service.get_settings_path())


if __name__ == "__main__":
    unittest.main()
