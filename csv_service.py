from __future__ import annotations

from pathlib import Path
from typing import Callable

import pandas as pd

from config import FILENAME_COLUMNS
from errors import ConfigurationError
from models import InputItem
from parameter_service import validate_required_columns

RowOverrides = dict[str, str]


def _find_filename_column(headers: list[str]) -> tuple[int, bool]:
    lowered = [header.strip().lower() for header in headers]
    for candidate in FILENAME_COLUMNS:
        if candidate.lower() in lowered:
            return lowered.index(candidate.lower()), True
    return 0, False


class ParameterTable:
    """Per-drawing parameter rows read from a CSV file.

    Rows are keyed by the drawing's file name and by its stem, both
    case-insensitive, so a row written as ``A-101.dwg`` also matches an
    item enumerated as ``a-101``.
    """

    def __init__(
        self,
        headers: list[str],
        rows: list[RowOverrides],
        filename_column: str,
        source_path: Path | None = None,
    ) -> None:
        self._headers = list(headers)
        self._rows = list(rows)
        self._filename_column = filename_column
        self._source_path = source_path
        self._index: dict[str, RowOverrides] = {}
        for row in self._rows:
            name = row.get(filename_column, "").strip()
            if not name:
                continue
            self._index[name.lower()] = row
            self._index[Path(name).stem.lower()] = row

    @classmethod
    def load(
        cls,
        csv_path: str | Path,
        warn: Callable[[str], None] | None = None,
    ) -> "ParameterTable":
        path = Path(csv_path).expanduser()
        if not path.is_file():
            raise ConfigurationError(f"CSV file was not found: {path}")

        try:
            frame = pd.read_csv(
                path,
                dtype=str,
                keep_default_na=False,
                skipinitialspace=True,
                encoding="utf-8-sig",
            )
        except (OSError, ValueError, pd.errors.ParserError) as exc:
            raise ConfigurationError(f"Could not read CSV file {path.name}: {exc}") from exc

        headers = [str(column).strip() for column in frame.columns]
        if not headers or frame.empty:
            raise ConfigurationError(
                "CSV file must have a header row and at least one data row."
            )
        frame.columns = headers

        column_index, found = _find_filename_column(headers)
        if not found and warn is not None:
            warn(f"No 'Filename' column found; using first column '{headers[0]}'.")
        filename_column = headers[column_index]

        rows: list[RowOverrides] = []
        for record in frame.to_dict(orient="records"):
            row = {str(key): str(value).strip() for key, value in record.items()}
            if not row.get(filename_column, ""):
                continue
            rows.append(row)

        table = cls(headers, rows, filename_column, source_path=path)
        missing = validate_required_columns(headers)
        if missing and warn is not None:
            warn(f"Missing recommended columns: {', '.join(missing)}")
        return table

    @property
    def headers(self) -> list[str]:
        return list(self._headers)

    @property
    def row_count(self) -> int:
        return len(self._rows)

    @property
    def filename_column(self) -> str:
        return self._filename_column

    def row_for(self, item: InputItem | str | Path) -> RowOverrides | None:
        path = item.source_path if isinstance(item, InputItem) else Path(item)
        for key in (path.name.lower(), path.stem.lower()):
            row = self._index.get(key)
            if row is not None:
                return dict(row)
        return None

    def has_item(self, item: InputItem | str | Path) -> bool:
        return self.row_for(item) is not None

    def drawing_names(self) -> list[str]:
        return [row[self._filename_column] for row in self._rows]

    def statistics(self) -> str:
        source = self._source_path.name if self._source_path is not None else "-"
        return (
            f"CSV {source}: {self.row_count} drawing row(s), "
            f"{len(self._headers)} column(s)"
        )
