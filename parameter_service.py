from __future__ import annotations

import copy
import json
import math
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from config import (
    BOOLEAN_PROPERTIES,
    COLUMN_ALIASES,
    ENGINE_DEFAULTS,
    LIST_PROPERTIES,
    NUMERIC_PROPERTIES,
    REQUIRED_COLUMNS,
    STRING_PROPERTIES,
)
from errors import ConfigurationError

ConfigValue = Any
MaterializedConfig = dict[str, ConfigValue]


class ValueType(str, Enum):
    BOOLEAN = "boolean"
    LIST = "list"
    NUMERIC = "numeric"
    STRING = "string"


@dataclass(frozen=True)
class SchemaEntry:
    column: str
    property_name: str
    value_type: ValueType
    default: ConfigValue = None


def _build_schema() -> tuple[SchemaEntry, ...]:
    column_by_property = {prop: column for column, prop in COLUMN_ALIASES.items()}
    typed: list[tuple[str, ValueType]] = []
    typed.extend((name, ValueType.BOOLEAN) for name in BOOLEAN_PROPERTIES)
    typed.extend((name, ValueType.LIST) for name in LIST_PROPERTIES)
    typed.extend((name, ValueType.NUMERIC) for name in NUMERIC_PROPERTIES)
    typed.extend((name, ValueType.STRING) for name in STRING_PROPERTIES)
    return tuple(
        SchemaEntry(
            column=column_by_property.get(name, name),
            property_name=name,
            value_type=value_type,
            default=copy.deepcopy(ENGINE_DEFAULTS.get(name)),
        )
        for name, value_type in typed
    )


PARAMETER_SCHEMA: tuple[SchemaEntry, ...] = _build_schema()

_ENTRY_BY_COLUMN = {entry.column.lower(): entry for entry in PARAMETER_SCHEMA}
_ENTRY_BY_PROPERTY = {entry.property_name.lower(): entry for entry in PARAMETER_SCHEMA}


def resolve_entry(column: str) -> SchemaEntry | None:
    key = column.strip().lower()
    if not key:
        return None
    entry = _ENTRY_BY_COLUMN.get(key)
    if entry is not None:
        return entry
    return _ENTRY_BY_PROPERTY.get(key)


def coerce_boolean(value: str) -> bool:
    # Anything ambiguous degrades to False.
    return value.strip().lower() in {"true", "1"}


def coerce_list(value: str) -> list[str]:
    text = value.strip()
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            return []
        if not isinstance(parsed, list) or not all(isinstance(part, str) for part in parsed):
            return []
        return parsed

    if "," in text:
        parts = [part.strip().strip('"').strip() for part in text.split(",")]
        return [part for part in parts if part]

    return [text]


def coerce_numeric(value: str) -> float | str:
    text = value.strip()
    try:
        number = float(text)
    except ValueError:
        return text
    # NaN and Infinity have no JSON spelling; keep the cell text instead.
    if not math.isfinite(number):
        return text
    return number


def coerce_string(value: str) -> str:
    return value.strip()


_COERCERS: dict[ValueType, Callable[[str], ConfigValue]] = {
    ValueType.BOOLEAN: coerce_boolean,
    ValueType.LIST: coerce_list,
    ValueType.NUMERIC: coerce_numeric,
    ValueType.STRING: coerce_string,
}


def coerce_value(entry: SchemaEntry, value: str) -> ConfigValue:
    return _COERCERS[entry.value_type](value)


def build_config(
    row_overrides: Mapping[str, str] | None,
    base_config: Mapping[str, ConfigValue] | None = None,
) -> MaterializedConfig:
    """Merge one CSV row over the base configuration.

    The base configuration is deep-copied so callers can reuse it across
    items. Engine defaults only fill keys the base configuration leaves
    unset. Columns that do not resolve to a schema property are ignored.
    """
    config: MaterializedConfig = copy.deepcopy(dict(base_config or {}))

    for key, default in ENGINE_DEFAULTS.items():
        if key not in config:
            config[key] = copy.deepcopy(default)

    for column, raw_value in (row_overrides or {}).items():
        if raw_value is None:
            continue
        text = str(raw_value)
        if not text.strip():
            continue

        entry = resolve_entry(str(column))
        if entry is None:
            continue
        config[entry.property_name] = coerce_value(entry, text)

    return config


def serialize_config(config: Mapping[str, ConfigValue]) -> str:
    return json.dumps(config, ensure_ascii=False, indent=2, sort_keys=True)


def materialize(
    row_overrides: Mapping[str, str] | None,
    base_config: Mapping[str, ConfigValue] | None = None,
) -> str:
    return serialize_config(build_config(row_overrides, base_config))


def validate_required_columns(headers: Iterable[str]) -> list[str]:
    present = {str(header).strip().lower() for header in headers}
    return [name for name in REQUIRED_COLUMNS if name.lower() not in present]


def load_base_config(
    template_path: str | Path | None,
    warn: Callable[[str], None] | None = None,
) -> MaterializedConfig:
    if template_path is None or not str(template_path).strip():
        return {}

    path = Path(template_path).expanduser()
    if not path.is_file():
        raise ConfigurationError(f"Base configuration file was not found: {path}")

    try:
        payload = json.loads(path.read_text(encoding="utf-8-sig"))
    except (OSError, json.JSONDecodeError) as exc:
        if warn is not None:
            warn(f"Could not load base configuration {path.name}: {exc}")
        return {}

    if not isinstance(payload, dict):
        if warn is not None:
            warn(f"Base configuration {path.name} is not a JSON object; ignoring it.")
        return {}
    return payload


def mapping_summary() -> str:
    counts = {value_type: 0 for value_type in ValueType}
    for entry in PARAMETER_SCHEMA:
        counts[entry.value_type] += 1
    return (
        "CSV to parameters mapping: "
        f"{counts[ValueType.BOOLEAN]} boolean, "
        f"{counts[ValueType.LIST]} list, "
        f"{counts[ValueType.STRING]} string, "
        f"{counts[ValueType.NUMERIC]} numeric "
        f"({len(PARAMETER_SCHEMA)} properties)"
    )
