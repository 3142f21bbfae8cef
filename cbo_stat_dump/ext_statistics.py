"""Extended (multi-column) statistics: pg_statistic_ext and its data.

The statistics objects themselves come back with the DDL; only their
computed data (pg_statistic_ext_data) is replayed. Per-expression
statistics (stxdexpr) are pg_statistic records and are re-encoded through
the same field-order contract as base column statistics.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Collection, List, Mapping, Optional, Sequence, Tuple

from .errors import StatisticsDecodeError
from .literals import LiteralEncoder, quote_literal
from .statistics import decode_row, scope_conditions
from .version_policy import VersionEpoch

logger = logging.getLogger(__name__)

STAGE = "extended statistics"

DESCRIPTOR_FIELDS = ("relname", "stxname", "nspname", "stxowner", "stxstattarget", "stxkeys", "stxkind", "stxexprs")
PAYLOAD_FIELDS = ("stxname", "stxdinherit", "stxdndistinct", "stxddependencies", "stxdmcv", "stxdexpr")

PG_STATISTIC_EXT_QUERY = """
SELECT row_to_json(t)::text FROM
    (SELECT c.relname,
            s.stxname,
            n.nspname,
            s.stxowner,
            s.stxstattarget,
            (SELECT string_agg(a.attname, ',' ORDER BY a.attnum)
               FROM pg_attribute a
              WHERE a.attrelid = s.stxrelid AND a.attnum = ANY(s.stxkeys)) AS stxkeys,
            s.stxkind,
            s.stxexprs
       FROM pg_statistic_ext s
       JOIN pg_class c ON c.oid = s.stxrelid
       JOIN pg_namespace n ON c.relnamespace = n.oid
      WHERE {conditions}) t
"""

PG_STATISTIC_EXT_DATA_QUERY = """
SELECT row_to_json(t)::text FROM
    (SELECT s.stxname,
            d.stxdinherit,
            d.stxdndistinct::bytea AS stxdndistinct,
            d.stxddependencies::bytea AS stxddependencies,
            d.stxdmcv::bytea AS stxdmcv,
            d.stxdexpr
       FROM pg_statistic_ext s
       JOIN pg_statistic_ext_data d ON s.oid = d.stxoid
       JOIN pg_class c ON c.oid = s.stxrelid
       JOIN pg_namespace n ON c.relnamespace = n.oid
      WHERE {conditions}) t
"""


def _split_list(value: Any) -> List[str]:
    """Normalize ``"a,b"``, ``"{d,f}"`` or ``["d", "f"]`` to a list."""
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value]
    text = str(value).strip()
    if text.startswith("{") and text.endswith("}"):
        text = text[1:-1]
    return [part for part in text.split(",") if part]


@dataclass(frozen=True)
class ExtendedStatDescriptor:
    """A statistics object defined on a relation."""

    nspname: str
    relname: str
    stxname: str
    stxowner: Any
    stxstattarget: Any
    columns: Tuple[str, ...]
    kinds: Tuple[str, ...]
    expressions: Optional[str] = None
    raw: str = field(default="", repr=False, compare=False)

    @classmethod
    def from_json(cls, raw: str) -> "ExtendedStatDescriptor":
        row = decode_row(raw, "pg_statistic_ext", DESCRIPTOR_FIELDS, stage=STAGE)
        return cls(
            nspname=row["nspname"],
            relname=row["relname"],
            stxname=row["stxname"],
            stxowner=row["stxowner"],
            stxstattarget=row["stxstattarget"],
            columns=tuple(_split_list(row["stxkeys"])),
            kinds=tuple(_split_list(row["stxkind"])),
            expressions=row["stxexprs"],
            raw=raw,
        )


@dataclass(frozen=True)
class ExtendedStatPayload:
    """Computed data of one statistics object.

    ``expressions`` is None when the object has no per-expression data,
    otherwise one pg_statistic-shaped field map per expression.
    """

    stxname: str
    stxdinherit: bool
    stxdndistinct: Optional[str]
    stxddependencies: Optional[str]
    stxdmcv: Optional[str]
    expressions: Optional[List[Mapping[str, Any]]] = None
    raw: str = field(default="", repr=False, compare=False)

    @classmethod
    def from_json(cls, raw: str) -> "ExtendedStatPayload":
        row = decode_row(raw, "pg_statistic_ext_data", PAYLOAD_FIELDS, stage=STAGE)
        expressions = row["stxdexpr"]
        if expressions is not None and (
            not isinstance(expressions, list) or not all(isinstance(e, dict) for e in expressions)
        ):
            raise StatisticsDecodeError(STAGE, f"stxdexpr of {row['stxname']} is not a list of records")
        return cls(
            stxname=row["stxname"],
            stxdinherit=row["stxdinherit"],
            stxdndistinct=row["stxdndistinct"],
            stxddependencies=row["stxddependencies"],
            stxdmcv=row["stxdmcv"],
            expressions=expressions,
            raw=raw,
        )


def _blob(value: Optional[str]) -> str:
    return "NULL" if value is None else f"{quote_literal(value)}::bytea"


class ExtendedStatisticsExtractor:
    """Extract extended statistics for a relation scope.

    Only meaningful when ``epoch.supports_extended_statistics``.
    """

    def __init__(self, conn, epoch: VersionEpoch):
        self.conn = conn
        self.epoch = epoch

    def fetch_descriptors(self, scope: Optional[Collection[str]] = None) -> List[ExtendedStatDescriptor]:
        conditions, params = scope_conditions(scope)
        rows = self.conn.fetch_json_rows(PG_STATISTIC_EXT_QUERY.format(conditions=conditions), params)
        return [ExtendedStatDescriptor.from_json(raw) for raw in rows]

    def fetch_payloads(self, scope: Optional[Collection[str]] = None) -> List[ExtendedStatPayload]:
        conditions, params = scope_conditions(scope)
        rows = self.conn.fetch_json_rows(PG_STATISTIC_EXT_DATA_QUERY.format(conditions=conditions), params)
        return [ExtendedStatPayload.from_json(raw) for raw in rows]

    def extract(
        self, scope: Optional[Collection[str]] = None
    ) -> Tuple[List[ExtendedStatDescriptor], List[ExtendedStatPayload]]:
        descriptors = self.fetch_descriptors(scope)
        payloads = self.fetch_payloads(scope)
        logger.info("Extracted %d statistics object(s), %d with data", len(descriptors), len(payloads))
        return descriptors, payloads


def payload_statements(payload: ExtendedStatPayload, encoder: LiteralEncoder) -> List[str]:
    """DELETE + INSERT replaying one pg_statistic_ext_data row."""
    stxoid = f"(SELECT oid FROM pg_statistic_ext WHERE stxname = {quote_literal(payload.stxname)})"
    inherit = "true" if payload.stxdinherit else "false"
    exprs = encoder.encode_composite(payload.expressions)
    return [
        f"DELETE FROM pg_statistic_ext_data WHERE stxoid = {stxoid};",
        f"INSERT INTO pg_statistic_ext_data VALUES ({stxoid}, {inherit}, "
        f"{_blob(payload.stxdndistinct)}, {_blob(payload.stxddependencies)}, "
        f"{_blob(payload.stxdmcv)}, {exprs});",
    ]


def replay_statements(payloads: Sequence[ExtendedStatPayload], encoder: LiteralEncoder) -> List[str]:
    statements: List[str] = []
    for payload in payloads:
        statements.extend(payload_statements(payload, encoder))
    return statements
