"""Pytest configuration and fixtures for cbo-stat-dump tests."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from cbo_stat_dump.version_policy import SLOTS, VersionEpoch, epoch_for


# =============================================================================
# FAKE CONNECTION
# =============================================================================

class FakeConnection:
    """Stand-in for PostgresConnection answering SQL by substring.

    ``responses`` is an ordered list of ``(needle, rows)``; the first needle
    contained in the SQL wins. Rows may be dicts (returned by ``execute``)
    or plain values (returned by ``fetch_column`` as-is). A response that
    is an exception instance is raised instead.
    """

    def __init__(self, responses: Optional[Sequence[Tuple[str, Any]]] = None, version_num: int = 150004):
        self.responses = list(responses or [])
        self.version_num = version_num
        self.calls: List[Tuple[str, Any]] = []
        self.closed = False

    def _lookup(self, sql: str) -> List[Any]:
        for needle, rows in self.responses:
            if needle in sql:
                if isinstance(rows, Exception):
                    raise rows
                return list(rows)
        return []

    def connect(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "FakeConnection":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def execute(self, sql: str, params: Any = None) -> List[Dict[str, Any]]:
        self.calls.append((sql, params))
        return self._lookup(sql)

    def execute_script(self, sql_script: str) -> None:
        self.calls.append((sql_script, None))
        self._lookup(sql_script)

    def fetch_column(self, sql: str, params: Any = None) -> List[Any]:
        rows = self.execute(sql, params)
        return [next(iter(row.values())) if isinstance(row, dict) else row for row in rows]

    def fetch_json_rows(self, sql: str, params: Any = None) -> List[str]:
        return self.fetch_column(sql, params)

    def server_version_num(self) -> int:
        self.calls.append(("SHOW server_version_num", None))
        return self.version_num

    def set_parameter(self, name: str, value: str) -> None:
        self.execute(f"SET {name}={value}")

    @property
    def statements(self) -> List[str]:
        return [sql for sql, _ in self.calls]


# =============================================================================
# CATALOG ROW BUILDERS
# =============================================================================

def statistic_fields(epoch: VersionEpoch, **overrides: Any) -> Dict[str, Any]:
    """A pg_statistic field map for ``epoch`` with one histogram slot."""
    fields: Dict[str, Any] = {
        "stainherit": False,
        "stanullfrac": 0,
        "stawidth": 4,
        "stadistinct": -1,
    }
    for i in SLOTS:
        fields[f"stakind{i}"] = 0
        fields[f"staop{i}"] = 0
        if epoch.has_collation:
            fields[f"stacoll{i}"] = 0
        fields[f"stanumbers{i}"] = None
        fields[f"stavalues{i}"] = None
    fields.update(overrides)
    return fields


def column_row(epoch: VersionEpoch, nspname="public", relname="orders", attname="id",
               typnspname="pg_catalog", typname="int4", **overrides: Any) -> str:
    row = {
        "nspname": nspname,
        "relname": relname,
        "attname": attname,
        "typnspname": typnspname,
        "typname": typname,
        **statistic_fields(epoch, **overrides),
    }
    return json.dumps(row)


def class_row(nspname="public", relname="orders", relpages=10, reltuples=1000, relallvisible=0) -> str:
    return json.dumps({
        "relname": relname,
        "relpages": relpages,
        "reltuples": reltuples,
        "relallvisible": relallvisible,
        "nspname": nspname,
    })


# Plan of: SELECT * FROM orders o JOIN customers c ON c.id = o.customer_id
ORDERS_CUSTOMERS_PLAN = [{
    "Plan": {
        "Node Type": "Hash Join",
        "Plans": [
            {"Node Type": "Seq Scan", "Relation Name": "orders", "Schema": "public", "Alias": "o"},
            {
                "Node Type": "Hash",
                "Plans": [
                    {"Node Type": "Seq Scan", "Relation Name": "customers", "Schema": "public", "Alias": "c"},
                ],
            },
        ],
    },
}]


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def pg15() -> VersionEpoch:
    return epoch_for(15)


@pytest.fixture
def pg11() -> VersionEpoch:
    return epoch_for(11)


@pytest.fixture
def fake_conn():
    """Factory for scripted connections."""
    def _make(responses=None, version_num=150004) -> FakeConnection:
        return FakeConnection(responses, version_num=version_num)
    return _make
