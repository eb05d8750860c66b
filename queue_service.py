from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Iterable

from config import DEFAULT_FILE_PATTERN
from models import InputItem

ItemSource = str | Path | InputItem | Iterable[str | Path | InputItem]


class QueueService:
    def __init__(self) -> None:
        self._items: list[str] = []

    @property
    def items(self) -> list[str]:
        return self._items

    def enqueue_paths(self, paths: Iterable[str | Path]) -> tuple[int, int]:
        added = 0
        skipped = 0
        existing = {item.lower() for item in self._items}

        for raw_path in paths:
            if not str(raw_path).strip():
                skipped += 1
                continue

            normalized = str(Path(raw_path).expanduser().resolve())
            if normalized.lower() in existing:
                skipped += 1
                continue

            self._items.append(normalized)
            existing.add(normalized.lower())
            added += 1

        return added, skipped

    def enqueue_folder(
        self,
        folder: str | Path,
        pattern: str = DEFAULT_FILE_PATTERN,
    ) -> tuple[int, int]:
        return self.enqueue_paths(list_folder(folder, pattern))

    def retain_names(self, names: Iterable[str]) -> None:
        allowed = {name.lower() for name in names}
        self._items[:] = [
            item for item in self._items if Path(item).stem.lower() in allowed
        ]

    def to_items(self) -> list[InputItem]:
        return [InputItem.from_path(item) for item in self._items]


def list_folder(folder: str | Path, pattern: str = DEFAULT_FILE_PATTERN) -> list[Path]:
    base = Path(folder).expanduser()
    if not base.is_dir():
        return []
    # Top directory only; sorted so the batch order is reproducible.
    return sorted(
        (path for path in base.glob(pattern) if path.is_file()),
        key=lambda path: path.name.lower(),
    )


def assign_unique_names(items: list[InputItem]) -> list[InputItem]:
    """Give every item a display name no other item in the batch uses.

    The display name keys the artifact path and the environment channel, so
    two drawings with the same stem in different folders would otherwise
    read each other's results. The first keeps its stem; later ones get
    ``_2``, ``_3`` and so on. Names compare case-insensitively.
    """
    taken = {item.display_name.lower() for item in items}
    seen: set[str] = set()
    unique: list[InputItem] = []

    for item in items:
        name = item.display_name
        if name.lower() not in seen:
            seen.add(name.lower())
            unique.append(item)
            continue

        counter = 2
        candidate = f"{name}_{counter}"
        while candidate.lower() in taken or candidate.lower() in seen:
            counter += 1
            candidate = f"{name}_{counter}"
        seen.add(candidate.lower())
        unique.append(replace(item, alias=candidate))

    return unique


def collect_items(source: ItemSource, pattern: str = DEFAULT_FILE_PATTERN) -> list[InputItem]:
    if isinstance(source, InputItem):
        return [source]
    if isinstance(source, (str, Path)):
        path = Path(source).expanduser()
        if path.is_dir():
            return assign_unique_names([InputItem.from_path(entry) for entry in list_folder(path, pattern)])
        return [InputItem.from_path(path)]

    items: list[InputItem] = []
    for entry in source:
        if isinstance(entry, InputItem):
            items.append(entry)
        else:
            items.append(InputItem.from_path(entry))
    return assign_unique_names(items)
