"""Literal typing and serialization for bound query parameters.

Every literal embedded in an expression becomes a named placeholder
``{p_N:Type}``. The type is inferred here, and the value is serialized the
same way whether it comes from a full compilation or from a fingerprint walk
(so cached templates bind exactly what a fresh compilation would).
"""

import datetime
import decimal
import json
import re
import uuid
from typing import Any, Mapping, Optional

from ..column import Column

UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
"""Canonical lowercase UUID text (36 characters)."""

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
NUMERIC_TYPE_PATTERN = re.compile(r"^(U?Int\d+|Float\d+|Decimal)")


def _context_type(column: Column) -> Optional[str]:
    """Type imposed by the column a literal is compared against, if any."""
    declared = column.type
    if declared.startswith("Nullable(") and declared.endswith(")"):
        declared = declared[len("Nullable("):-1]
    if declared == "UUID" or NUMERIC_TYPE_PATTERN.match(declared):
        return column.type
    return None


def infer_type(value: Any, column: Optional[Column] = None) -> str:
    """ClickHouse type for a literal value.

    The column the literal follows (e.g. ``eq(users.id, 5)``) wins when it is
    a UUID, integer, float or decimal column. Otherwise: ``None`` -> String,
    bool -> Bool, int -> Int32, float/Decimal -> Float64, date/datetime ->
    DateTime, sequences -> ``Array(<type of first element>)`` (``Array(String)``
    when empty), canonical UUID text or ``uuid.UUID`` -> UUID, anything else
    (mappings included, sent as JSON text) -> String.
    """
    if column is not None:
        context_type = _context_type(column)
        if context_type is not None:
            if isinstance(value, (list, tuple)):
                return f"Array({context_type})"
            return context_type
    if value is None:
        return "String"
    # bool is an int subclass: test it first
    if isinstance(value, bool):
        return "Bool"
    if isinstance(value, int):
        return "Int32"
    if isinstance(value, (float, decimal.Decimal)):
        return "Float64"
    if isinstance(value, (datetime.datetime, datetime.date)):
        return "DateTime"
    if isinstance(value, (list, tuple)):
        if value:
            return f"Array({infer_type(value[0])})"
        return "Array(String)"
    if isinstance(value, uuid.UUID):
        return "UUID"
    if isinstance(value, str) and len(value) == 36 and UUID_PATTERN.match(value):
        return "UUID"
    return "String"


def format_datetime(value: datetime.date) -> str:
    """``YYYY-MM-DD HH:MM:SS`` in UTC, truncated to seconds (naive datetimes are taken as UTC)."""
    if not isinstance(value, datetime.datetime):
        value = datetime.datetime(value.year, value.month, value.day)
    if value.tzinfo is not None:
        value = value.astimezone(datetime.timezone.utc)
    return value.strftime(DATETIME_FORMAT)


def serialize_literal(value: Any) -> Any:
    """Convert a literal to the form sent as a query parameter."""
    if isinstance(value, (datetime.datetime, datetime.date)):
        return format_datetime(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Mapping):
        return json.dumps(value, default=str)
    if isinstance(value, (list, tuple)):
        return [serialize_literal(item) for item in value]
    return value


__all__ = ["UUID_PATTERN", "infer_type", "format_datetime", "serialize_literal"]
