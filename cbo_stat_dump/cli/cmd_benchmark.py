"""cbo-stat-dump benchmark: check that replayed statistics reproduce plans."""

from __future__ import annotations

import click


@click.command()
@click.option("-b", "--benchmark", required=True, help="Benchmark name (directory under test/).")
@click.option("--benchmark-path", default=None, help="Benchmark directory. [default: test/<benchmark>]")
@click.option("--out-dir", default=None, help="Output directory. [default: test_out_dir/<benchmark>]")
@click.option("--yb-mode", is_flag=True, help="Target is YugabyteDB.")
@click.option("--create-prod-db", is_flag=True, help="(Re)create the production database from create.sql.")
@click.option("--ignore-ran-tests", is_flag=True, help="Skip queries with an existing output directory.")
@click.option("--enable-base-scans-cost-model", is_flag=True,
              help="Plan with yb_enable_base_scans_cost_model=ON (YugabyteDB only).")
@click.option("--colocation", is_flag=True, help="Create colocated databases (YugabyteDB only).")
@click.option("--prod-host", default=None, help="Production host. [default: localhost]")
@click.option("--prod-port", type=int, default=None, help="Production port. [default: 5432, 5433 with --yb-mode]")
@click.option("--prod-user", default=None, help="Production user. [default: postgres / yugabyte]")
@click.option("--prod-password", default=None, help="Production password.")
@click.option("--prod-database", default=None, help="Production database. [default: <benchmark>_db]")
@click.option("--test-host", default=None, help="Test host. [default: production host]")
@click.option("--test-port", type=int, default=None, help="Test port. [default: production port]")
@click.option("--test-user", default=None, help="Test user. [default: production user]")
@click.option("--test-password", default=None, help="Test password. [default: production password]")
@click.option("--import-ext-stats", "import_extended_statistics", is_flag=True,
              help="Also replay import_statistics_ext.sql into the test database.")
@click.pass_context
def benchmark(ctx: click.Context, **options) -> None:
    """Dump, replay and compare the plan of every query of a benchmark.

    Exits 1 when at least one replayed plan differs from the captured one.
    """
    import psycopg2

    from ..benchmark import BenchmarkRunner
    from ..config import BenchmarkSettings
    from ..errors import DumpError
    from ._common import console, print_error, print_header, print_success, settings_overrides

    settings = BenchmarkSettings().model_copy(update=settings_overrides(**options))
    if settings.colocation and not settings.yb_mode:
        print_error("--colocation requires --yb-mode")
        raise SystemExit(1)

    runner = BenchmarkRunner(settings)
    print_header(f"Benchmark {runner.settings.benchmark} ({runner.benchmark_path})")
    try:
        report = runner.run()
    except (DumpError, psycopg2.Error, OSError) as e:
        print_error(str(e).strip())
        raise SystemExit(1)

    console.print(
        f"  Passed: {len(report.passed)}  Failed: {len(report.failed)}  Skipped: {len(report.skipped)}"
    )
    if not report.ok:
        for name, diff in report.failed:
            console.print(f"  [red]{name}[/red] -> {diff}")
        print_error(f"{len(report.failed)} query plan(s) differ")
        raise SystemExit(1)
    print_success("All query plans reproduced")
