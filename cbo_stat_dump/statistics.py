"""Base statistics: pg_class cardinalities and pg_statistic rows.

Rows are fetched as ``row_to_json(t)::text`` and kept twice: the server's
own text goes verbatim into statistics.json, the decoded form is rendered
into import_statistics.sql.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Collection, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import StatisticsDecodeError
from .literals import LiteralEncoder, qualified_name, quote_ident, quote_literal, values_type
from .version_policy import VersionEpoch

logger = logging.getLogger(__name__)

SYSTEM_SCHEMAS = ("pg_catalog", "pg_toast", "information_schema")

RELATION_FIELDS = ("nspname", "relname", "relpages", "reltuples", "relallvisible")
COLUMN_IDENTITY_FIELDS = ("nspname", "relname", "attname", "typname")

PG_CLASS_QUERY = """
SELECT row_to_json(t)::text FROM
    (SELECT c.relname, c.relpages, c.reltuples, c.relallvisible, n.nspname
       FROM pg_class c
       JOIN pg_namespace n ON c.relnamespace = n.oid
      WHERE {conditions}) t
"""

PG_STATISTIC_QUERY = """
SELECT row_to_json(t)::text FROM
    (SELECT n.nspname,
            c.relname,
            a.attname,
            (SELECT nspname FROM pg_namespace WHERE oid = ty.typnamespace) AS typnspname,
            ty.typname,
            {columns}
       FROM pg_class c
       JOIN pg_namespace n ON c.relnamespace = n.oid
       JOIN pg_statistic s ON s.starelid = c.oid
       JOIN pg_attribute a ON a.attrelid = c.oid AND a.attnum = s.staattnum
       JOIN pg_type ty ON a.atttypid = ty.oid
      WHERE {conditions}) t
"""


def regclass_text(relation: str) -> str:
    """Turn ``schema.name`` from a plan into regclass input text."""
    schema, dot, name = relation.partition(".")
    if not dot:
        return quote_ident(relation)
    return qualified_name(schema, name)


def scope_conditions(scope: Optional[Collection[str]]) -> Tuple[str, Optional[Dict[str, Any]]]:
    """WHERE conditions (on ``c`` / ``n``) limiting rows to the scope.

    An empty scope means every relation outside the system schemas. A
    non-empty scope also keeps the indexes of the scoped relations.
    """
    excluded = ", ".join(quote_literal(s) for s in SYSTEM_SCHEMAS)
    conditions = [f"n.nspname NOT IN ({excluded})"]
    if not scope:
        return conditions[0], None
    conditions.append(
        "(c.oid = ANY(%(relations)s::regclass[])"
        " OR c.oid IN (SELECT indexrelid FROM pg_index WHERE indrelid = ANY(%(relations)s::regclass[])))"
    )
    return " AND ".join(conditions), {"relations": sorted(regclass_text(r) for r in scope)}


def decode_row(raw: str, table: str, required: Sequence[str], stage: str = "statistics") -> Dict[str, Any]:
    """Decode one row_to_json row and check its required keys.

    Numbers decode to ``Decimal`` so the server's numeric text is what
    ends up in the replay literals.
    """
    try:
        row = json.loads(raw, parse_float=Decimal)
    except (TypeError, json.JSONDecodeError) as e:
        raise StatisticsDecodeError(stage, f"{table} row is not valid JSON: {e}") from e
    if not isinstance(row, dict):
        raise StatisticsDecodeError(stage, f"{table} row is not a JSON object: {raw[:80]}")
    missing = [key for key in required if key not in row]
    if missing:
        raise StatisticsDecodeError(stage, f"{table} row is missing {', '.join(missing)}: {raw[:80]}")
    return row


@dataclass(frozen=True)
class RelationStat:
    """Size estimates of one relation (table, index, ...)."""

    nspname: str
    relname: str
    relpages: int
    reltuples: Any
    relallvisible: int
    raw: str = field(default="", repr=False, compare=False)

    @classmethod
    def from_json(cls, raw: str) -> "RelationStat":
        row = decode_row(raw, "pg_class", RELATION_FIELDS)
        return cls(**{key: row[key] for key in RELATION_FIELDS}, raw=raw)

    @property
    def qualified_name(self) -> str:
        return f"{self.nspname}.{self.relname}"


@dataclass(frozen=True)
class ColumnStat:
    """One pg_statistic row.

    ``fields`` holds the statistic columns of the epoch, in catalog order.
    Slot i of stakind/staop/stacoll/stanumbers/stavalues describes one
    statistic kind.
    """

    nspname: str
    relname: str
    attname: str
    typnspname: Optional[str]
    typname: str
    fields: Mapping[str, Any]
    raw: str = field(default="", repr=False, compare=False)

    @classmethod
    def from_json(cls, raw: str, epoch: VersionEpoch) -> "ColumnStat":
        columns = epoch.statistic_columns
        row = decode_row(raw, "pg_statistic", COLUMN_IDENTITY_FIELDS + tuple(columns))
        return cls(
            nspname=row["nspname"],
            relname=row["relname"],
            attname=row["attname"],
            typnspname=row.get("typnspname"),
            typname=row["typname"],
            fields=MappingProxyType({column: row[column] for column in columns}),
            raw=raw,
        )

    @property
    def values_type(self) -> str:
        """Element type of stavalues1..5: the column's runtime type."""
        return values_type(self.typnspname, self.typname)


def relation_update_statement(stat: RelationStat) -> str:
    """UPDATE pg_class for a relation and its ``<name>_pkey`` index."""
    return (
        f"UPDATE pg_class SET reltuples = {stat.reltuples}, relpages = {stat.relpages}, "
        f"relallvisible = {stat.relallvisible} "
        f"WHERE relnamespace = {quote_literal(quote_ident(stat.nspname))}::regnamespace "
        f"AND (relname = {quote_literal(stat.relname)} OR relname = {quote_literal(stat.relname + '_pkey')});"
    )


class StatisticsExtractor:
    """Extract base statistics for a relation scope.

    Args:
        conn: Open connection.
        epoch: Catalog epoch of the server.
    """

    def __init__(self, conn, epoch: VersionEpoch):
        self.conn = conn
        self.epoch = epoch

    def fetch_relation_stats(self, scope: Optional[Collection[str]] = None) -> List[RelationStat]:
        conditions, params = scope_conditions(scope)
        rows = self.conn.fetch_json_rows(PG_CLASS_QUERY.format(conditions=conditions), params)
        return [RelationStat.from_json(raw) for raw in rows]

    def fetch_column_stats(self, scope: Optional[Collection[str]] = None) -> List[ColumnStat]:
        conditions, params = scope_conditions(scope)
        columns = ",\n            ".join(f"s.{column}" for column in self.epoch.statistic_columns)
        sql = PG_STATISTIC_QUERY.format(columns=columns, conditions=conditions)
        rows = self.conn.fetch_json_rows(sql, params)
        return [ColumnStat.from_json(raw, self.epoch) for raw in rows]

    def extract(self, scope: Optional[Collection[str]] = None) -> Tuple[List[RelationStat], List[ColumnStat]]:
        """Fetch pg_class and pg_statistic rows for the scope."""
        relation_stats = self.fetch_relation_stats(scope)
        column_stats = self.fetch_column_stats(scope)
        logger.info(
            "Extracted %d relation(s), %d column statistic(s)", len(relation_stats), len(column_stats)
        )
        return relation_stats, column_stats


def column_statistic_statements(stat: ColumnStat, encoder: LiteralEncoder) -> List[str]:
    """DELETE + INSERT replaying one pg_statistic row.

    The DELETE makes the replay idempotent against a catalog that already
    holds a row for the column.
    """
    starelid = f"{quote_literal(qualified_name(stat.nspname, stat.relname))}::regclass"
    staattnum = (
        f"(SELECT a.attnum FROM pg_attribute a WHERE a.attrelid = {starelid} "
        f"AND a.attname = {quote_literal(stat.attname)})"
    )
    stavalues_type = stat.values_type
    values = []
    for column in encoder.epoch.statistic_columns:
        if column not in stat.fields:
            raise StatisticsDecodeError(
                "statistics", f"{stat.nspname}.{stat.relname}.{stat.attname} has no {column}"
            )
        declared = encoder.field_type(column, stavalues_type)
        values.append(encoder.encode(column, stat.fields[column], declared))
    return [
        f"DELETE FROM pg_statistic WHERE starelid = {starelid} AND staattnum = {staattnum};",
        f"INSERT INTO pg_statistic VALUES ({starelid}, {staattnum}, {', '.join(values)});",
    ]


def replay_statements(
    relation_stats: Sequence[RelationStat], column_stats: Sequence[ColumnStat], encoder: LiteralEncoder
) -> List[str]:
    """Relation updates first, then one DELETE/INSERT pair per column."""
    statements = [relation_update_statement(stat) for stat in relation_stats]
    for stat in column_stats:
        statements.extend(column_statistic_statements(stat, encoder))
    return statements
