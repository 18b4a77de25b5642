"""Schema resolution for exported tables.

A table's schema is resolved once, from the first non-empty batch read from
its source, and then frozen. Declared column types (for example the column
definitions of a ``CREATE TABLE`` statement in a dump) take precedence over
inference for the columns they name.

Inference looks at every value of a column in the first batch, ignoring null
markers, and picks the first type that all values fit, in this order:
integer, decimal/float, boolean, date, timestamp, string. A column made only
of null markers is a string column.

Later batches are converted with :meth:`ColumnSchema.coerce_batch`, which
raises :class:`SchemaConflictError` rather than coercing a value with loss.
Numeric and timestamp text is parsed by a safe ``pyarrow.compute.cast``;
null markers, MySQL zero dates, booleans and dates are handled first.
"""

import logging
import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pyarrow as pa
import pyarrow.compute as pc

from columnar_export.errors import SchemaConflictError
from .models import RowBatch

log = logging.getLogger(__name__)


class ColumnType(Enum):
    """Portable column types understood by the columnar codec."""

    INTEGER = "integer"
    FLOAT = "float"
    DECIMAL = "decimal"
    STRING = "string"
    DATE = "date"
    TIMESTAMP = "timestamp"
    BOOLEAN = "boolean"


MAX_DECIMAL_PRECISION = 38
INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1

NULL_MARKERS = frozenset({"", "NULL", "null", "\\N"})

_INT_RE = re.compile(r"^[+-]?\d+$")
_NUMBER_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIMESTAMP_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})[ T](\d{2}:\d{2}:\d{2})(?:\.(\d{1,6}))?$")
_ZERO_DATE_RE = re.compile(r"^0000-00-00([ T]00:00:00(\.0+)?)?$")
_BOOL_TEXT = {"true": True, "false": False, "t": True, "f": False}


@dataclass(frozen=True)
class ColumnSpec:
    """One column of a resolved schema."""

    name: str
    type: ColumnType
    precision: Optional[int] = None
    scale: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        entry: Dict[str, Any] = {"name": self.name, "type": self.type.value}
        if self.type is ColumnType.DECIMAL:
            entry["precision"] = self.precision
            entry["scale"] = self.scale
        return entry


@dataclass(frozen=True)
class ColumnSchema:
    """Ordered, frozen column list of one table.

    ``source_columns`` keeps the column names as the source reported them;
    ``columns`` carries the de-duplicated output names and types.
    """

    columns: Tuple[ColumnSpec, ...]
    source_columns: Tuple[str, ...]

    def __len__(self) -> int:
        return len(self.columns)

    @property
    def names(self) -> List[str]:
        return [col.name for col in self.columns]

    def to_dict(self) -> List[Dict[str, Any]]:
        return [col.to_dict() for col in self.columns]

    def describe(self) -> str:
        return ", ".join(f"{col.name}:{col.type.value}" for col in self.columns)

    def coerce_batch(self, batch: RowBatch) -> List[pa.Array]:
        """Convert a batch into typed Arrow columns.

        Args:
            batch: Rows read from the source.

        Returns:
            One Arrow array per column.

        Raises:
            SchemaConflictError: If the batch's columns differ from the
                frozen ones, a row has the wrong width, or a value cannot be
                represented in its column's type without loss.
        """
        if tuple(batch.columns) != self.source_columns:
            raise SchemaConflictError(
                f"Batch columns {list(batch.columns)} do not match schema columns "
                f"{list(self.source_columns)}"
            )

        width = len(self.columns)
        for row_index, row in enumerate(batch.rows):
            if len(row) != width:
                raise SchemaConflictError(
                    f"Row {row_index} has {len(row)} values, expected {width}",
                    context={"row": row_index},
                )
        return [
            convert_column(spec, [row[index] for row in batch.rows])
            for index, spec in enumerate(self.columns)
        ]


def is_null(value: Any) -> bool:
    """Return True for values treated as missing."""
    if value is None:
        return True
    if isinstance(value, float):
        return math.isnan(value)
    if isinstance(value, str):
        return value.strip() in NULL_MARKERS
    return False


def _value_kind(value: Any) -> str:
    """Classify a non-null value for inference."""
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int" if INT64_MIN <= value <= INT64_MAX else "decimal"
    if isinstance(value, float):
        return "float"
    if isinstance(value, Decimal):
        return "decimal" if value.is_finite() else "string"
    if isinstance(value, datetime):
        return "timestamp"
    if isinstance(value, date):
        return "date"
    if not isinstance(value, str):
        return "string"

    text = value.strip()
    if _INT_RE.match(text):
        return "int" if INT64_MIN <= int(text) <= INT64_MAX else "string"
    if _NUMBER_RE.match(text):
        return "float"
    if text.lower() in ("true", "false"):
        return "bool"
    if _ZERO_DATE_RE.match(text):
        return "zero_date"
    try:
        if _DATE_RE.match(text):
            date.fromisoformat(text)
            return "date"
        if _TIMESTAMP_RE.match(text):
            date.fromisoformat(text[:10])
            return "timestamp"
    except ValueError:
        return "string"
    return "string"


def _decimal_shape(values: Iterable[Any]) -> Optional[Tuple[int, int]]:
    """Return (integer digits, scale) covering all exact values, or None."""
    int_digits = 1
    scale = 0
    for value in values:
        if isinstance(value, bool) or not isinstance(value, (int, Decimal)):
            continue
        _, digits, exponent = Decimal(value).as_tuple()
        scale = max(scale, -exponent)
        int_digits = max(int_digits, len(digits) + exponent)
    if int_digits + scale > MAX_DECIMAL_PRECISION:
        return None
    return int_digits, scale


def infer_column(name: str, values: Sequence[Any]) -> ColumnSpec:
    """Infer the type of one column from its sample values.

    Args:
        name: Output column name.
        values: Every value of the column in the first batch.

    Returns:
        The inferred ColumnSpec.
    """
    present = [v for v in values if not is_null(v)]
    kinds = {_value_kind(v) for v in present}

    if not kinds:
        return ColumnSpec(name, ColumnType.STRING)
    if kinds <= {"int"}:
        return ColumnSpec(name, ColumnType.INTEGER)
    if kinds <= {"int", "decimal"}:
        shape = _decimal_shape(present)
        if shape is not None:
            return ColumnSpec(name, ColumnType.DECIMAL, MAX_DECIMAL_PRECISION, shape[1])
        return ColumnSpec(name, ColumnType.STRING)
    if kinds <= {"int", "decimal", "float"}:
        return ColumnSpec(name, ColumnType.FLOAT)
    if kinds <= {"bool"}:
        return ColumnSpec(name, ColumnType.BOOLEAN)
    if kinds <= {"date", "zero_date"}:
        return ColumnSpec(name, ColumnType.DATE)
    if kinds <= {"date", "timestamp", "zero_date"}:
        spec = ColumnSpec(name, ColumnType.TIMESTAMP)
        try:
            convert_column(spec, present)
        except SchemaConflictError:
            return ColumnSpec(name, ColumnType.STRING)
        return spec
    return ColumnSpec(name, ColumnType.STRING)


_DECLARED_TYPES = {
    ColumnType.INTEGER: (
        "int", "integer", "bigint", "smallint", "tinyint", "mediumint", "int2", "int4", "int8",
        "serial", "bigserial", "smallserial", "year",
    ),
    ColumnType.DECIMAL: ("decimal", "numeric", "dec", "fixed"),
    ColumnType.FLOAT: ("float", "double", "real", "float4", "float8"),
    ColumnType.DATE: ("date",),
    ColumnType.TIMESTAMP: ("datetime", "timestamp", "timestamptz"),
    ColumnType.BOOLEAN: ("bool", "boolean"),
}

_DECLARED_LOOKUP = {
    alias: column_type for column_type, aliases in _DECLARED_TYPES.items() for alias in aliases
}

_DECLARED_RE = re.compile(
    r"^\s*([A-Za-z_][A-Za-z0-9_]*)(?:\s+precision)?\s*(?:\(\s*(\d+)\s*(?:,\s*(\d+)\s*)?\))?",
    re.IGNORECASE,
)


def map_declared_type(name: str, declared: str) -> Optional[ColumnSpec]:
    """Map a SQL column type declaration to a ColumnSpec.

    Args:
        name: Column name.
        declared: Type text as written, e.g. ``DECIMAL(10,2) NOT NULL``.

    Returns:
        The mapped ColumnSpec, or None when the declaration is not recognised
        and the column should be inferred instead.
    """
    match = _DECLARED_RE.match(declared)
    if not match:
        return None
    base = match.group(1).lower()
    rest = declared.lower()

    column_type = _DECLARED_LOOKUP.get(base)
    if column_type is None:
        text_like = ("char", "varchar", "text", "tinytext", "mediumtext", "longtext", "enum", "set",
                     "json", "blob", "tinyblob", "mediumblob", "longblob", "binary", "varbinary",
                     "time", "bit", "uuid", "character", "nvarchar", "nchar", "clob")
        if base in text_like:
            return ColumnSpec(name, ColumnType.STRING)
        return None

    if column_type is ColumnType.INTEGER and base == "bigint" and "unsigned" in rest:
        return ColumnSpec(name, ColumnType.DECIMAL, 20, 0)
    if column_type is ColumnType.DECIMAL:
        precision = int(match.group(2)) if match.group(2) else 10
        scale = int(match.group(3)) if match.group(3) else 0
        if precision > MAX_DECIMAL_PRECISION:
            return ColumnSpec(name, ColumnType.STRING)
        return ColumnSpec(name, ColumnType.DECIMAL, precision, scale)
    return ColumnSpec(name, column_type)


def _unique_names(columns: Sequence[str]) -> List[str]:
    """Fill blank column names and suffix duplicates."""
    seen = set()
    names: List[str] = []
    for index, raw in enumerate(columns):
        base = str(raw).strip() or f"col_{index}"
        candidate, suffix = base, 0
        while candidate in seen:
            suffix += 1
            candidate = f"{base}_{suffix}"
        seen.add(candidate)
        names.append(candidate)
    return names


def resolve_schema(
    first_batch: RowBatch,
    declared_hints: Optional[Sequence[ColumnSpec]] = None,
    infer_types: bool = True,
) -> ColumnSchema:
    """Resolve the frozen schema of a table from its first batch.

    Args:
        first_batch: First non-empty batch read from the source.
        declared_hints: Column types declared by the source, matched by name.
        infer_types: When False, every column without a hint is a string.

    Returns:
        The resolved ColumnSchema.

    Raises:
        ValueError: If the batch is empty.
    """
    if not first_batch.rows:
        raise ValueError("Cannot resolve a schema from an empty batch")

    hints = {hint.name: hint for hint in declared_hints or ()}
    hints_folded = {hint.name.lower(): hint for hint in declared_hints or ()}

    specs: List[ColumnSpec] = []
    names = _unique_names(first_batch.columns)
    for index, (source_name, name) in enumerate(zip(first_batch.columns, names)):
        hint = hints.get(source_name) or hints_folded.get(str(source_name).lower())
        if hint is not None:
            specs.append(ColumnSpec(name, hint.type, hint.precision, hint.scale))
        elif not infer_types:
            specs.append(ColumnSpec(name, ColumnType.STRING))
        else:
            values = [row[index] for row in first_batch.rows if index < len(row)]
            specs.append(infer_column(name, values))

    schema = ColumnSchema(columns=tuple(specs), source_columns=tuple(first_batch.columns))
    log.info("Resolved schema with %d columns: %s", len(schema), schema.describe())
    return schema


def arrow_type(spec: ColumnSpec) -> pa.DataType:
    """Return the Arrow type used to store a column."""
    if spec.type is ColumnType.INTEGER:
        return pa.int64()
    if spec.type is ColumnType.FLOAT:
        return pa.float64()
    if spec.type is ColumnType.DECIMAL:
        return pa.decimal128(spec.precision or MAX_DECIMAL_PRECISION, spec.scale or 0)
    if spec.type is ColumnType.DATE:
        return pa.date32()
    if spec.type is ColumnType.TIMESTAMP:
        return pa.timestamp("us")
    if spec.type is ColumnType.BOOLEAN:
        return pa.bool_()
    return pa.string()


_PARSED_TYPES = frozenset({ColumnType.INTEGER, ColumnType.FLOAT, ColumnType.DECIMAL, ColumnType.TIMESTAMP})

CONVERSION_ERRORS = (ValueError, TypeError, OverflowError, pa.ArrowException)


def _to_string(value: Any) -> Optional[str]:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _BOOL_TEXT:
            return _BOOL_TEXT[text]
        if text in ("0", "1"):
            return text == "1"
    raise ValueError("not a boolean")


def _to_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        if value.time() != time(0):
            raise ValueError("has a time component")
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if _ZERO_DATE_RE.match(text):
            return None
        if _DATE_RE.match(text):
            return date.fromisoformat(text)
    raise ValueError("not a date")


def _to_text(spec: ColumnSpec, value: Any) -> Optional[str]:
    """Render a value as the text Arrow parses into a numeric or timestamp column."""
    if is_null(value):
        return None
    if isinstance(value, bool):
        raise TypeError(f"boolean is not a {spec.type.value}")

    if spec.type is ColumnType.TIMESTAMP:
        if isinstance(value, datetime):
            if value.tzinfo is not None:
                value = value.astimezone(timezone.utc).replace(tzinfo=None)
            return value.isoformat(sep=" ")
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, str):
            text = value.strip()
            return None if _ZERO_DATE_RE.match(text) else text
        raise ValueError("not a timestamp")

    if isinstance(value, int):
        if spec.type is ColumnType.INTEGER and not INT64_MIN <= value <= INT64_MAX:
            raise OverflowError("outside the 64-bit integer range")
        return str(value)
    if isinstance(value, float):
        if spec.type is ColumnType.INTEGER and value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, Decimal):
        if spec.type is ColumnType.INTEGER and value == value.to_integral_value():
            return str(int(value))
        return format(value, "f")
    if isinstance(value, str):
        text = value.strip()
        return text[1:] if text.startswith("+") else text
    raise ValueError(f"not a {spec.type.value}")


def _convert(spec: ColumnSpec, value: Any) -> Any:
    """Python-side step: null handling plus the conversions Arrow has no rule for."""
    if spec.type is ColumnType.STRING:
        return _to_string(value)
    if spec.type in _PARSED_TYPES:
        return _to_text(spec, value)
    if is_null(value):
        return None
    if spec.type is ColumnType.BOOLEAN:
        return _to_boolean(value)
    return _to_date(value)


def _build_array(spec: ColumnSpec, converted: List[Any]) -> pa.Array:
    """Arrow-side step: a safe cast from text for parsed types."""
    if spec.type in _PARSED_TYPES:
        return pc.cast(pa.array(converted, type=pa.string()), arrow_type(spec), safe=True)
    return pa.array(converted, type=arrow_type(spec))


def coerce_value(spec: ColumnSpec, value: Any) -> Any:
    """Convert one source value into the Python value stored for ``spec``.

    Raises:
        ValueError, TypeError, OverflowError: If the value does not fit the
            column type without loss. Arrow parse failures raise
            ``pyarrow.ArrowInvalid``, a ValueError.
    """
    return _build_array(spec, [_convert(spec, value)])[0].as_py()


def convert_column(spec: ColumnSpec, values: Sequence[Any]) -> pa.Array:
    """Convert every value of one column into a typed Arrow array.

    Raises:
        SchemaConflictError: If a value does not fit the column type without
            loss; the context names the first offending row.
    """
    converted = []
    for row_index, value in enumerate(values):
        try:
            converted.append(_convert(spec, value))
        except CONVERSION_ERRORS as exc:
            raise _conflict(spec, row_index, value, exc) from exc

    try:
        return _build_array(spec, converted)
    except CONVERSION_ERRORS as exc:
        for row_index, value in enumerate(values):
            try:
                _build_array(spec, [converted[row_index]])
            except CONVERSION_ERRORS as row_exc:
                raise _conflict(spec, row_index, value, row_exc) from exc
        raise _conflict(spec, 0, values[0] if values else None, exc) from exc


def _conflict(spec: ColumnSpec, row_index: int, value: Any, exc: BaseException) -> SchemaConflictError:
    return SchemaConflictError(
        f"Column '{spec.name}' cannot hold {value!r} as {spec.type.value}: {exc}",
        context={"row": row_index, "column": spec.name},
    )
