from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from models import InputItem
from queue_service import QueueService, assign_unique_names, collect_items, list_folder


class QueueServiceTests(unittest.TestCase):
    def test_enqueue_paths_skips_duplicates_and_blank(self) -> None:
        service = QueueService()
        with tempfile.TemporaryDirectory() as temp_dir:
            base = Path(temp_dir)
            file_a = base / "a.dwg"
            file_b = base / "b.dwg"
            file_a.write_text("x", encoding="utf-8")
            file_b.write_text("y", encoding="utf-8")

            added, skipped = service.enqueue_paths([str(file_a), str(file_b), str(file_a), "  "])

            self.assertEqual(2, added)
            self.assertEqual(2, skipped)
            self.assertEqual(2, len(service.items))

    def test_enqueue_folder_uses_pattern(self) -> None:
        service = QueueService()
        with tempfile.TemporaryDirectory() as temp_dir:
            base = Path(temp_dir)
            for name in ("b.dwg", "A.dwg", "notes.txt"):
                (base / name).write_text("x", encoding="utf-8")

            added, _ = service.enqueue_folder(base, "*.dwg")

        self.assertEqual(2, added)
        self.assertEqual(["A", "b"], [item.display_name for item in service.to_items()])

    def test_retain_names(self) -> None:
        service = QueueService()
        service.items.extend(["/d/A.dwg", "/d/B.dwg", "/d/C.dwg"])
        service.retain_names({"a", "C"})
        self.assertEqual(["/d/A.dwg", "/d/C.dwg"], service.items)


class CollectItemsTests(unittest.TestCase):
    def test_folder_is_not_recursive(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            base = Path(temp_dir)
            (base / "sub").mkdir()
            (base / "sub" / "deep.dwg").write_text("x", encoding="utf-8")
            (base / "top.dwg").write_text("x", encoding="utf-8")

            items = collect_items(base)

        self.assertEqual(["top"], [item.display_name for item in items])

    def test_missing_folder_lists_nothing(self) -> None:
        self.assertEqual([], list_folder("/definitely/not/here"))

    def test_mixed_iterable_keeps_order(self) -> None:
        existing = InputItem.from_path("z.dwg")
        items = collect_items(["b.dwg", existing, Path("a.dwg")])
        self.assertEqual(["b", "z", "a"], [item.display_name for item in items])

    def test_single_item(self) -> None:
        item = InputItem.from_path("one.dwg")
        self.assertEqual([item], collect_items(item))

    def test_same_stem_in_different_folders_gets_distinct_names(self) -> None:
        items = collect_items([Path("x/A.dwg"), Path("y/A.dwg"), Path("z/a.dwg"), Path("A_2.dwg")])

        self.assertEqual(["A", "A_3", "a_4", "A_2"], [item.display_name for item in items])
        self.assertEqual(Path("y/A.dwg"), items[1].source_path)


class AssignUniqueNamesTests(unittest.TestCase):
    def test_unique_names_are_untouched(self) -> None:
        items = [InputItem.from_path("x/A.dwg"), InputItem.from_path("x/B.dwg")]
        self.assertEqual(items, assign_unique_names(items))

    def test_existing_alias_counts_as_taken(self) -> None:
        items = assign_unique_names(
            [InputItem.from_path("x/A.dwg"), InputItem(Path("y/B.dwg"), alias="A_2"), InputItem.from_path("z/A.dwg")]
        )
        self.assertEqual(["A", "A_2", "A_3"], [item.display_name for item in items])


if __name__ == "__main__":
    unittest.main()
