"""Tests for the dump pipeline and its stage-tagged errors."""

import subprocess

import httpx
import psycopg2
import pytest

from cbo_stat_dump import dumper, exports
from cbo_stat_dump.config import DumpSettings
from cbo_stat_dump.dumper import Dumper, stage
from cbo_stat_dump.errors import DumpError, LiteralEncodingError

from conftest import ORDERS_CUSTOMERS_PLAN, FakeConnection, class_row, column_row
from test_ext_statistics import descriptor_row, payload_row


def _responses(epoch, **overrides):
    responses = {
        "EXPLAIN (VERBOSE, FORMAT JSON)": [ORDERS_CUSTOMERS_PLAN],
        "EXPLAIN ": ["Hash Join  (cost=1.00..2.00 rows=1 width=8)"],
        "version()": ["PostgreSQL 15.4"],
        "pg_settings": [{"name": "enable_hashjoin", "setting": "off"}],
        "pg_statistic_ext_data d": [payload_row()],
        "FROM pg_statistic_ext s": [descriptor_row()],
        "JOIN pg_statistic s": [column_row(epoch)],
        "c.relpages": [class_row(), class_row(relname="customers")],
    }
    responses.update(overrides)
    return list(responses.items())


@pytest.fixture
def settings(tmp_path):
    def _make(**overrides):
        values = dict(
            database="prod",
            user="postgres",
            output_dir=str(tmp_path / "out"),
            skip_ddl=True,
        )
        values.update(overrides)
        return DumpSettings(**values)
    return _make


@pytest.fixture
def query_file(tmp_path):
    path = tmp_path / "q1.sql"
    path.write_text("SELECT * FROM orders o JOIN customers c ON c.id = o.customer_id")
    return path


class TestStage:

    def test_wraps_database_errors(self):
        with pytest.raises(DumpError) as excinfo:
            with stage("statistics"):
                raise psycopg2.Error("relation does not exist")
        assert excinfo.value.stage == "statistics"
        assert str(excinfo.value) == "statistics: relation does not exist"
        assert isinstance(excinfo.value.__cause__, psycopg2.Error)

    def test_wraps_encoding_errors(self):
        with pytest.raises(DumpError, match="^snapshot: bad value$"):
            with stage("snapshot"):
                raise LiteralEncodingError("bad value")

    def test_wraps_type_and_value_errors(self):
        with pytest.raises(DumpError, match="^statistics: expected JSON text, got dict$"):
            with stage("statistics"):
                raise TypeError("expected JSON text, got dict")
        with pytest.raises(DumpError, match="^server version: "):
            with stage("server version"):
                int("not-a-number")

    def test_dump_errors_pass_through(self):
        with pytest.raises(DumpError) as excinfo:
            with stage("snapshot"):
                raise DumpError("statistics", "inner")
        assert excinfo.value.stage == "statistics"

    def test_other_errors_propagate(self):
        with pytest.raises(KeyError):
            with stage("snapshot"):
                raise KeyError("x")


class TestDumper:

    def test_full_dump_with_query(self, settings, query_file, pg15):
        conn = FakeConnection(_responses(pg15), version_num=150004)
        result = Dumper(conn, settings(query_file=str(query_file))).dump()

        assert result.relations == {"public.orders", "public.customers"}
        assert result.relation_count == 2
        assert result.column_count == 1
        assert result.extended_count == 1
        names = sorted(p.name for p in result.files)
        assert names == sorted([
            "query.sql", "query_plan.txt", "statistics.json", "import_statistics.sql",
            "statistic_ext.json", "import_statistics_ext.sql", "version.txt", "overridden_gucs.sql",
        ])
        assert (result.output_dir / "overridden_gucs.sql").read_text() == "SET enable_hashjoin='off';\n"

        catalog_params = [params for sql, params in conn.calls if "row_to_json" in sql]
        assert len(catalog_params) == 4
        assert all(p == {"relations": ["public.customers", "public.orders"]} for p in catalog_params)

    def test_whole_database_without_query(self, settings, pg15):
        conn = FakeConnection(_responses(pg15))
        result = Dumper(conn, settings()).dump()
        assert result.relations == set()
        assert not any(sql.startswith("EXPLAIN") for sql in conn.statements)
        assert all(params is None for sql, params in conn.calls if "row_to_json" in sql)

    def test_extended_statistics_skipped_before_15(self, settings, pg15):
        conn = FakeConnection(_responses(pg15), version_num=140009)
        result = Dumper(conn, settings()).dump()
        assert result.extended_count is None
        assert not (result.output_dir / "statistic_ext.json").exists()
        assert not any("pg_statistic_ext" in sql for sql in conn.statements)

    def test_pre_collation_server(self, settings, pg11):
        conn = FakeConnection(_responses(pg11), version_num=110022)
        result = Dumper(conn, settings()).dump()
        assert not result.epoch.has_collation
        assert "stacoll" not in (result.output_dir / "import_statistics.sql").read_text()

    def test_statistics_failure_names_stage(self, settings, pg15):
        conn = FakeConnection(_responses(pg15, **{"JOIN pg_statistic s": psycopg2.Error("permission denied")}))
        with pytest.raises(DumpError) as excinfo:
            Dumper(conn, settings()).dump()
        assert excinfo.value.stage == "statistics"
        assert "permission denied" in str(excinfo.value)

    def test_non_text_rows_name_stage(self, settings, pg15):
        conn = FakeConnection(_responses(pg15, **{"c.relpages": TypeError("expected JSON text, got dict")}))
        with pytest.raises(DumpError) as excinfo:
            Dumper(conn, settings()).dump()
        assert excinfo.value.stage == "statistics"

    def test_unparsable_server_version(self, settings, pg15):
        conn = FakeConnection(_responses(pg15), version_num="devel")
        with pytest.raises(DumpError) as excinfo:
            Dumper(conn, settings()).dump()
        assert excinfo.value.stage == "server version"

    def test_bad_plan_names_scope(self, settings, query_file, pg15):
        conn = FakeConnection(_responses(pg15, **{"EXPLAIN (VERBOSE, FORMAT JSON)": ["{"]}))
        with pytest.raises(DumpError) as excinfo:
            Dumper(conn, settings(query_file=str(query_file))).dump()
        assert excinfo.value.stage == "scope"

    def test_missing_query_file(self, settings, tmp_path, pg15):
        conn = FakeConnection(_responses(pg15))
        with pytest.raises(DumpError) as excinfo:
            Dumper(conn, settings(query_file=str(tmp_path / "missing.sql"))).dump()
        assert excinfo.value.stage == "query"

    def test_ddl_failure(self, settings, monkeypatch, pg15):
        monkeypatch.setattr(
            exports.subprocess, "run",
            lambda command, **kwargs: subprocess.CompletedProcess(command, 1, stdout="", stderr="boom\n"),
        )
        conn = FakeConnection(_responses(pg15))
        with pytest.raises(DumpError) as excinfo:
            Dumper(conn, settings(skip_ddl=False)).dump()
        assert excinfo.value.stage == "ddl"
        assert str(excinfo.value) == "ddl: pg_dump exited with 1: boom"

    def test_gflags_failure_is_not_fatal(self, settings, monkeypatch, pg15):
        def fake_get(url, timeout):
            raise httpx.ConnectError("refused")

        monkeypatch.setattr(exports.httpx, "get", fake_get)
        conn = FakeConnection(_responses(pg15))
        result = Dumper(conn, settings(yb_mode=True)).dump()
        assert not (result.output_dir / "gflags.json").exists()
        script = (result.output_dir / "import_statistics.sql").read_text()
        assert script.startswith("SET yb_non_ddl_txn_for_sys_tables_allowed = ON;")

    def test_cost_model_only_in_yb_mode(self, settings, query_file, pg15):
        conn = FakeConnection(_responses(pg15))
        Dumper(conn, settings(query_file=str(query_file), enable_base_scans_cost_model=True)).dump()
        assert "SET yb_enable_base_scans_cost_model=ON" not in conn.statements


class TestRun:

    def test_connection_released(self, settings, monkeypatch, pg15):
        conns = []

        def factory(**kwargs):
            conns.append(FakeConnection(_responses(pg15)))
            return conns[-1]

        monkeypatch.setattr(dumper, "PostgresConnection", factory)
        dumper.run(settings())
        assert conns[0].closed

    def test_connection_released_on_failure(self, settings, monkeypatch, pg15):
        conns = []

        def factory(**kwargs):
            conns.append(FakeConnection(_responses(pg15, **{"c.relpages": psycopg2.Error("gone")})))
            return conns[-1]

        monkeypatch.setattr(dumper, "PostgresConnection", factory)
        with pytest.raises(DumpError):
            dumper.run(settings())
        assert conns[0].closed

    def test_connect_failure(self, settings, monkeypatch):
        class Unreachable(FakeConnection):
            def connect(self):
                raise psycopg2.OperationalError("could not connect to server")

        monkeypatch.setattr(dumper, "PostgresConnection", lambda **kwargs: Unreachable())
        with pytest.raises(DumpError) as excinfo:
            dumper.run(settings())
        assert excinfo.value.stage == "connect"
