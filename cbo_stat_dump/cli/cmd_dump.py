"""cbo-stat-dump dump: capture statistics of a database or of one query."""

from __future__ import annotations

import click


@click.command()
@click.option("-h", "--host", default=None, help="Database host. [default: localhost]")
@click.option("-p", "--port", type=int, default=None, help="Database port. [default: 5433]")
@click.option("-d", "--database", default=None, help="Database name.")
@click.option("-u", "--user", default=None, help="Database user.")
@click.option("-W", "--password", default=None, help="Database password.")
@click.option("-o", "--output-dir", default=None, help="Directory receiving the snapshot.")
@click.option("-q", "--query-file", type=click.Path(exists=True, dir_okay=False), default=None,
              help="Restrict the dump to the relations this query plans over.")
@click.option("--yb-mode", is_flag=True, help="Target is YugabyteDB (catalog-write toggles, gflags).")
@click.option("--enable-base-scans-cost-model", is_flag=True,
              help="Plan with yb_enable_base_scans_cost_model=ON (YugabyteDB only).")
@click.option("--skip-ddl", is_flag=True, help="Do not run pg_dump.")
@click.option("--inline-ext-stats", "inline_extended_statistics", is_flag=True,
              help="Also append extended statistics to import_statistics.sql.")
@click.pass_context
def dump(
    ctx: click.Context,
    host: str,
    port: int,
    database: str,
    user: str,
    password: str,
    output_dir: str,
    query_file: str,
    yb_mode: bool,
    enable_base_scans_cost_model: bool,
    skip_ddl: bool,
    inline_extended_statistics: bool,
) -> None:
    """Dump pg_class / pg_statistic contents as JSON and replayable SQL.

    Options fall back to CBO_* environment variables (or a .env file).
    """
    from rich.table import Table

    from ..config import get_settings
    from ..dumper import run
    from ..errors import DumpError
    from ._common import console, print_error, print_header, print_success, settings_overrides

    settings = get_settings().model_copy(update=settings_overrides(
        host=host,
        port=port,
        database=database,
        user=user,
        password=password,
        output_dir=output_dir,
        query_file=query_file,
        yb_mode=yb_mode,
        enable_base_scans_cost_model=enable_base_scans_cost_model,
        skip_ddl=skip_ddl,
        inline_extended_statistics=inline_extended_statistics,
    ))

    missing = [
        flag for flag, value in (("-d/--database", settings.database),
                                 ("-u/--user", settings.user),
                                 ("-o/--output-dir", settings.output_dir))
        if not value
    ]
    if missing:
        print_error(f"Missing required option(s): {', '.join(missing)}")
        raise SystemExit(1)

    if settings.enable_base_scans_cost_model and not settings.yb_mode:
        console.print("[yellow]Warning: --enable-base-scans-cost-model only applies with --yb-mode[/yellow]")

    print_header(f"Dumping {settings.database} @ {settings.host}:{settings.port}")
    try:
        result = run(settings)
    except DumpError as e:
        print_error(str(e))
        raise SystemExit(1)

    if ctx.obj.get("quiet"):
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Item")
    table.add_column("Value", justify="right")
    table.add_row("Server major version", str(result.epoch.major_version))
    table.add_row("Relations in scope", str(len(result.relations)) if result.relations else "all")
    table.add_row("pg_class rows", str(result.relation_count))
    table.add_row("pg_statistic rows", str(result.column_count))
    table.add_row(
        "pg_statistic_ext_data rows",
        "skipped" if result.extended_count is None else str(result.extended_count),
    )
    console.print(table)
    print_success(f"Wrote {len(result.files)} files to {result.output_dir}")
