from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from logging_service import SessionLogger


class SessionLoggerTests(unittest.TestCase):
    def test_writes_json_lines(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            logger = SessionLogger(temp_dir, session_id="s1")
            logger.info("started", total=2)
            logger.error("failed", item=Path("A.dwg"))

            assert logger.log_path is not None
            self.assertEqual(Path(temp_dir).resolve() / "logs" / "session_s1.jsonl", logger.log_path)
            records = [json.loads(line) for line in logger.log_path.read_text(encoding="utf-8").splitlines()]

        self.assertEqual(["INFO", "ERROR"], [record["level"] for record in records])
        self.assertEqual({"total": 2}, records[0]["context"])
        self.assertEqual("A.dwg", records[1]["context"]["item"])
        self.assertEqual("s1", records[1]["session"])

    def test_without_output_dir_drops_records(self) -> None:
        logger = SessionLogger(None)
        logger.warning("nothing to write to")
        self.assertIsNone(logger.log_path)

    def test_unusable_output_dir_is_ignored(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            blocker = Path(temp_dir) / "file"
            blocker.write_text("x", encoding="utf-8")
            logger = SessionLogger(blocker)
            logger.info("dropped")
        self.assertIsNone(logger.log_path)


if __name__ == "__main__":
    unittest.main()
