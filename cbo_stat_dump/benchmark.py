"""Plan-reproduction self-test.

For every query of a benchmark directory (``<benchmark_path>/queries/*.sql``):

  1. dump statistics of the query's relations from the production database
  2. create a scratch database and replay ddl.sql + import_statistics.sql
  3. EXPLAIN the query there with the captured planner settings applied
  4. diff the resulting plan against the captured query_plan.txt

A query passes when both plans are identical.
"""

from __future__ import annotations

import difflib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import psycopg2

from . import dumper, exports
from .config import BenchmarkSettings, DumpSettings
from .connection import PostgresConnection
from .literals import quote_ident
from .scope import COST_MODEL_PARAMETER
from .snapshot import IMPORT_STATISTICS_EXT_SQL_FILE, IMPORT_STATISTICS_SQL_FILE

logger = logging.getLogger(__name__)

SIM_QUERY_PLAN_FILE = "sim_query_plan.txt"
QUERY_PLAN_DIFF_FILE = "query_plan_diff.txt"
SIMULATION_PARAMETER = "enable_cbo_statistics_simulation"


@dataclass
class BenchmarkReport:
    """Outcome of a benchmark run."""

    passed: List[str] = field(default_factory=list)
    failed: List[Tuple[str, Path]] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def compare_plans(query_out_dir: Path) -> Optional[Path]:
    """Diff the captured and replayed plans; return the diff file on mismatch."""
    expected = (query_out_dir / exports.QUERY_PLAN_FILE).read_text(encoding="utf-8")
    actual = (query_out_dir / SIM_QUERY_PLAN_FILE).read_text(encoding="utf-8")
    if expected == actual:
        return None

    diff = difflib.unified_diff(
        expected.splitlines(),
        actual.splitlines(),
        fromfile=exports.QUERY_PLAN_FILE,
        tofile=SIM_QUERY_PLAN_FILE,
        lineterm="",
    )
    path = query_out_dir / QUERY_PLAN_DIFF_FILE
    path.write_text("\n".join(diff) + "\n", encoding="utf-8")
    return path


def guc_statements(gucs_file: Path) -> List[str]:
    """Non-empty lines of an overridden_gucs.sql file."""
    if not gucs_file.exists():
        return []
    return [line.strip() for line in gucs_file.read_text(encoding="utf-8").splitlines() if line.strip()]


class BenchmarkRunner:
    """Run the self-test described in the module docstring."""

    def __init__(self, settings: BenchmarkSettings):
        self.settings = settings.resolved()
        self.benchmark_path = Path(self.settings.benchmark_path)
        self.out_dir = Path(self.settings.out_dir)

    # --- connections ------------------------------------------------------

    def _prod(self, database: str = "postgres", autocommit: bool = True) -> PostgresConnection:
        s = self.settings
        return PostgresConnection(
            host=s.prod_host, port=s.prod_port, database=database,
            user=s.prod_user, password=s.prod_password, autocommit=autocommit,
        )

    def _test(self, database: str = "postgres", autocommit: bool = True) -> PostgresConnection:
        s = self.settings
        return PostgresConnection(
            host=s.test_host, port=s.test_port, database=database,
            user=s.test_user, password=s.test_password, autocommit=autocommit,
        )

    # --- database lifecycle ----------------------------------------------

    def recreate_database(self, admin: PostgresConnection, name: str) -> None:
        admin.execute(f"DROP DATABASE IF EXISTS {quote_ident(name)}")
        create = f"CREATE DATABASE {quote_ident(name)}"
        if self.settings.colocation:
            create += " WITH colocation = true"
        admin.execute(create)

    def create_production_database(self) -> None:
        s = self.settings
        create_sql = self.benchmark_path / ("create.yb.sql" if s.yb_mode else "create.sql")
        logger.info("Creating production database %s from %s", s.prod_database, create_sql)
        with self._prod() as admin:
            self.recreate_database(admin, s.prod_database)
        with self._prod(s.prod_database, autocommit=False) as conn:
            conn.execute_script(create_sql.read_text(encoding="utf-8"))

    # --- per query --------------------------------------------------------

    def dump_settings(self, query_file: Path, query_out_dir: Path) -> DumpSettings:
        s = self.settings
        return DumpSettings(
            host=s.prod_host,
            port=s.prod_port,
            database=s.prod_database,
            user=s.prod_user,
            password=s.prod_password,
            output_dir=str(query_out_dir),
            query_file=str(query_file),
            yb_mode=s.yb_mode,
            enable_base_scans_cost_model=s.enable_base_scans_cost_model,
        )

    def replay_files(self, query_out_dir: Path) -> List[Path]:
        files = [query_out_dir / exports.DDL_FILE, query_out_dir / IMPORT_STATISTICS_SQL_FILE]
        ext_script = query_out_dir / IMPORT_STATISTICS_EXT_SQL_FILE
        if self.settings.import_extended_statistics and ext_script.exists():
            files.append(ext_script)
        return files

    def explain_on_test_database(self, conn: PostgresConnection, query: str, query_out_dir: Path) -> Path:
        """EXPLAIN with the captured settings; failing SETs only warn."""
        statements = guc_statements(query_out_dir / exports.OVERRIDDEN_GUCS_FILE)
        if self.settings.yb_mode and self.settings.enable_base_scans_cost_model:
            statements.append(f"SET {COST_MODEL_PARAMETER}=ON")
        if not self.settings.yb_mode and self.settings.enable_cbo_statistics_simulation:
            statements.append(f"SET {SIMULATION_PARAMETER}=ON")

        for statement in statements:
            try:
                conn.execute(statement)
            except psycopg2.Error as e:
                logger.warning("Failed to apply %r: %s", statement, str(e).strip())

        return exports.export_query_plan(conn, query, query_out_dir, filename=SIM_QUERY_PLAN_FILE)

    def run_query(self, query_file: Path, report: BenchmarkReport) -> None:
        s = self.settings
        query_name = query_file.stem
        query_out_dir = self.out_dir / query_name

        if s.ignore_ran_tests and query_out_dir.exists():
            logger.debug("Skipping %s", query_name)
            report.skipped.append(query_name)
            return

        logger.info("Testing %s", query_name)
        dumper.run(self.dump_settings(query_file, query_out_dir))

        test_db = f"{s.benchmark}_{query_name}_test_db"
        with self._test() as admin:
            self.recreate_database(admin, test_db)
        try:
            with self._test(test_db, autocommit=False) as conn:
                for path in self.replay_files(query_out_dir):
                    logger.debug("Replaying %s", path)
                    conn.execute_script(path.read_text(encoding="utf-8"))
            with self._test(test_db) as conn:
                self.explain_on_test_database(conn, query_file.read_text(encoding="utf-8"), query_out_dir)
        finally:
            with self._test() as admin:
                admin.execute(f"DROP DATABASE IF EXISTS {quote_ident(test_db)}")

        diff = compare_plans(query_out_dir)
        if diff is None:
            report.passed.append(query_name)
        else:
            report.failed.append((query_file.name, diff))

    def run(self) -> BenchmarkReport:
        if self.settings.create_prod_db:
            self.create_production_database()

        queries_dir = self.benchmark_path / "queries"
        if not queries_dir.is_dir():
            raise FileNotFoundError(f"Queries directory not found: {queries_dir}")

        report = BenchmarkReport()
        for query_file in sorted(p for p in queries_dir.iterdir() if p.is_file()):
            self.run_query(query_file, report)
        return report
