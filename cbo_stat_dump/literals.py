"""Render decoded catalog values as typed SQL literals.

Values arrive decoded from ``row_to_json`` output, so they are untyped:
numbers, booleans, strings, lists and dicts. The literal form depends on
the column the value belongs to:

    stanumbers*  -> '{0.5,0.5}'::real[]
    stavalues*   -> array_in('{"10", "20"}', 'pg_catalog.int4'::regtype, -1)::anyarray
    stxdexpr     -> ARRAY[(<pg_statistic fields>), ...]::pg_statistic[]
    otherwise    -> <value>::<type>

stavalues goes through array_in because its element type is only known
per column (the column's runtime type), so a plain array literal cannot
be typed generically.
"""

from __future__ import annotations

import json
import re
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .errors import LiteralEncodingError
from .version_policy import VersionEpoch

# Element type used for stavalues of expression statistics inside stxdexpr.
# The expression's real result type is not looked up.
EXPRESSION_VALUES_TYPE = "pg_catalog.int4"

COMPOSITE_TYPE = "pg_statistic"

_SIMPLE_IDENT = re.compile(r"^[a-z_][a-z0-9_$]*$")


class FieldRole(str, Enum):
    """How a catalog column's value is rendered."""

    SCALAR = "scalar"
    NUMBERS = "numbers"
    VALUES = "values"
    COMPOSITE = "composite"


# Column-name prefix -> role. Anything unmatched is a scalar.
ROLE_PREFIXES: Dict[str, FieldRole] = {
    "stanumbers": FieldRole.NUMBERS,
    "stavalues": FieldRole.VALUES,
    "stxdexpr": FieldRole.COMPOSITE,
}


def field_role(column: str) -> FieldRole:
    """Return the rendering role of a catalog column."""
    for prefix, role in ROLE_PREFIXES.items():
        if column.startswith(prefix):
            return role
    return FieldRole.SCALAR


def quote_literal(text: str) -> str:
    """Quote a string as a SQL string literal."""
    return "'" + text.replace("'", "''") + "'"


def quote_ident(name: str) -> str:
    """Quote an identifier unless it is already a plain lower-case name."""
    if _SIMPLE_IDENT.match(name):
        return name
    return '"' + name.replace('"', '""') + '"'


def qualified_name(schema: Optional[str], name: str) -> str:
    """Build ``schema.name`` with each part quoted as needed."""
    if schema:
        return f"{quote_ident(schema)}.{quote_ident(name)}"
    return quote_ident(name)


def values_type(typnspname: Optional[str], typname: str) -> str:
    """Schema-qualified runtime type of a column, defaulting to pg_catalog."""
    return f"{typnspname or 'pg_catalog'}.{typname}"


def _plain_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def is_array_type(type_name: str) -> bool:
    """True for array types (``pg_catalog._int4``), whose names start with ``_``."""
    return type_name.rpartition(".")[2].lstrip('"').startswith("_")


def _array_text(value: Any) -> str:
    """PostgreSQL array input text of a nested list, e.g. ``{1,2}``."""
    items = []
    for item in value:
        if item is None:
            items.append("NULL")
        elif isinstance(item, list):
            items.append(_array_text(item))
        elif isinstance(item, (bool, int, float, Decimal)):
            items.append(_plain_text(item))
        else:
            text = _plain_text(item).replace("\\", "\\\\").replace('"', '\\"')
            items.append(f'"{text}"')
    return "{" + ",".join(items) + "}"


def _array_element(value: Any, array_elements: bool = False) -> str:
    if value is None:
        return "NULL"
    if array_elements and isinstance(value, list):
        text = _array_text(value)
    else:
        text = _plain_text(value)
    # Order matters: backslashes first so the escapes added below survive.
    text = text.replace("\\", "\\\\")
    text = text.replace('"', '\\"')
    text = text.replace("'", "''")
    return f'"{text}"'


class LiteralEncoder:
    """Encode catalog values for one catalog epoch."""

    def __init__(self, epoch: VersionEpoch, expression_values_type: str = EXPRESSION_VALUES_TYPE):
        self.epoch = epoch
        self.expression_values_type = expression_values_type

    def encode(self, column: str, value: Any, declared_type: str) -> str:
        """Encode ``value`` of catalog column ``column`` as ``declared_type``."""
        role = field_role(column)
        if role is FieldRole.COMPOSITE:
            return self.encode_composite(value)
        if value is None:
            return f"NULL::{declared_type}"
        if role is FieldRole.NUMBERS:
            return self.encode_numbers(column, value, declared_type)
        if role is FieldRole.VALUES:
            return self.encode_values(column, value, declared_type)
        return self.encode_scalar(value, declared_type)

    def encode_scalar(self, value: Any, declared_type: str) -> str:
        if value is None:
            return f"NULL::{declared_type}"
        if isinstance(value, str):
            return f"{quote_literal(value)}::{declared_type}"
        if isinstance(value, (bool, int, float, Decimal)):
            return f"{_plain_text(value)}::{declared_type}"
        raise LiteralEncodingError(f"cannot encode {type(value).__name__} as scalar {declared_type}")

    def encode_numbers(self, column: str, value: Any, declared_type: str = "real[]") -> str:
        """Frequency numbers as a curly-brace array literal."""
        if not isinstance(value, list):
            raise LiteralEncodingError(f"{column}: expected a list of numbers, got {type(value).__name__}")
        items = []
        for number in value:
            if isinstance(number, bool) or not isinstance(number, (int, float, Decimal)):
                raise LiteralEncodingError(f"{column}: non-numeric element {number!r}")
            items.append(str(number))
        return f"'{{{','.join(items)}}}'::{declared_type}"

    def encode_values(self, column: str, value: Any, element_type: str) -> str:
        """Representative values parsed by array_in against ``element_type``."""
        if not isinstance(value, list):
            raise LiteralEncodingError(f"{column}: expected a list of values, got {type(value).__name__}")
        # Elements of array-typed columns are arrays themselves; json/jsonb keep JSON text.
        nested = is_array_type(element_type)
        elements = ", ".join(_array_element(v, nested) for v in value)
        return f"array_in('{{{elements}}}', {quote_literal(element_type)}::regtype, -1)::anyarray"

    def field_type(self, column: str, stavalues_type: str) -> str:
        """Declared type of a pg_statistic column."""
        if field_role(column) is FieldRole.VALUES:
            return stavalues_type
        try:
            return self.epoch.column_type(column)
        except KeyError:
            raise LiteralEncodingError(f"no declared type for column {column!r}") from None

    def encode_record(self, record: Mapping[str, Any]) -> str:
        """One pg_statistic row literal in the epoch's fixed field order."""
        if not isinstance(record, Mapping):
            raise LiteralEncodingError(f"expected a pg_statistic record, got {type(record).__name__}")
        fields = []
        for column in self.epoch.composite_fields:
            declared = self.field_type(column, self.expression_values_type)
            # Older servers omit some fields entirely rather than emitting null.
            fields.append(self.encode(column, record.get(column), declared))
        return "(" + ", ".join(fields) + ")"

    def encode_composite(self, records: Optional[Iterable[Mapping[str, Any]]]) -> str:
        """Per-expression statistics as an array of pg_statistic records."""
        if records is None:
            return "NULL"
        if not isinstance(records, list):
            raise LiteralEncodingError(f"expected a list of pg_statistic records, got {type(records).__name__}")
        elements: List[str] = [self.encode_record(record) for record in records]
        return f"ARRAY[{', '.join(elements)}]::{COMPOSITE_TYPE}[]"
