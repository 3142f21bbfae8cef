"""Companion artifacts of a statistics dump.

DDL (via pg_dump), server version, overridden planner settings, the text
plan of the query, a copy of the query itself and, on YugabyteDB, the
custom gflags of the master. All of them are plain I/O wrappers.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import subprocess
from pathlib import Path
from typing import Any, Collection, Dict, Iterable, List, Mapping, Optional

import httpx

from .config import CBO_RELEVANT_GUC_PARAMS
from .literals import quote_literal
from .statistics import regclass_text

logger = logging.getLogger(__name__)

DDL_FILE = "ddl.sql"
VERSION_FILE = "version.txt"
OVERRIDDEN_GUCS_FILE = "overridden_gucs.sql"
QUERY_PLAN_FILE = "query_plan.txt"
QUERY_FILE = "query.sql"
GFLAGS_FILE = "gflags.json"

# pg_dump noise that would break or pollute a replay on another server.
# Lines starting with a backslash are psql meta-commands (\restrict ...).
DDL_NOISE = re.compile(
    r"(?:^--)|(?:^SET)|(?:^SELECT pg_catalog)|(?:^ALTER .+ OWNER TO)|(?:^CREATE SCHEMA public;$)|(?:^\\)"
)


def filter_ddl(dump: str) -> str:
    """Drop comments, session settings, ownership and blank lines."""
    kept = [line for line in dump.splitlines() if line.strip() and not DDL_NOISE.search(line)]
    return "".join(line + "\n" for line in kept)


def pg_dump_command(
    pg_dump_bin: str, host: str, port: int, database: str, user: str, relations: Collection[str] = ()
) -> List[str]:
    """Schema-only pg_dump invocation, limited to ``relations`` if given."""
    command = [pg_dump_bin, "-h", host, "-p", str(port), "-d", database, "-U", user, "-s"]
    for relation in sorted(relations):
        command.extend(["-t", regclass_text(relation)])
    return command


def export_ddl(
    output_dir: Path,
    host: str,
    port: int,
    database: str,
    user: str,
    password: str = "",
    relations: Collection[str] = (),
    pg_dump_bin: str = "pg_dump",
) -> Path:
    """Run pg_dump and write the filtered schema to ddl.sql.

    Raises:
        subprocess.CalledProcessError: pg_dump exited non-zero.
        FileNotFoundError: pg_dump is not installed.
    """
    command = pg_dump_command(pg_dump_bin, host, port, database, user, relations)
    env = dict(os.environ)
    if password:
        env["PGPASSWORD"] = password

    logger.debug("Running %s", " ".join(command))
    result = subprocess.run(command, capture_output=True, text=True, env=env)
    if result.returncode != 0:
        raise subprocess.CalledProcessError(result.returncode, command, result.stdout, result.stderr)

    path = output_dir / DDL_FILE
    path.write_text(filter_ddl(result.stdout), encoding="utf-8")
    return path


def export_version(conn, output_dir: Path) -> Path:
    """Write ``SELECT version()`` to version.txt."""
    version = conn.fetch_column("SELECT version()")[0]
    path = output_dir / VERSION_FILE
    path.write_text(version, encoding="utf-8")
    return path


def overridden_guc_statements(settings: Iterable[Mapping[str, Any]]) -> str:
    """SET statements for the planner-relevant settings among ``settings``."""
    lines = [
        f"SET {row['name']}={quote_literal(str(row['setting']))};\n"
        for row in settings
        if row["name"] in CBO_RELEVANT_GUC_PARAMS
    ]
    return "".join(lines)


def export_overridden_gucs(conn, output_dir: Path) -> Path:
    """Write planner settings that differ from their boot value."""
    rows = conn.execute("SELECT name, setting FROM pg_settings WHERE setting <> boot_val")
    path = output_dir / OVERRIDDEN_GUCS_FILE
    path.write_text(overridden_guc_statements(rows), encoding="utf-8")
    return path


def export_query_plan(conn, query: str, output_dir: Path, filename: str = QUERY_PLAN_FILE) -> Path:
    """Write the text EXPLAIN of ``query``, one plan line per line."""
    lines = conn.fetch_column(f"EXPLAIN {query}")
    path = output_dir / filename
    path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")
    return path


def export_query_file(query_file: Path, output_dir: Path) -> Path:
    """Copy the analysed query next to its statistics."""
    path = output_dir / QUERY_FILE
    shutil.copyfile(query_file, path)
    return path


def custom_gflags(varz: Mapping[str, Any]) -> Dict[str, Any]:
    """Pick ``{name: value}`` of the flags whose type is "Custom"."""
    flags = varz.get("flags") or []
    return {
        flag["name"]: flag.get("value")
        for flag in flags
        if isinstance(flag, dict) and flag.get("type") == "Custom" and isinstance(flag.get("name"), str)
    }


def export_gflags(host: str, output_dir: Path, port: int = 7000, timeout: float = 2.0) -> Optional[Path]:
    """Fetch custom gflags from the YugabyteDB master and write gflags.json.

    The flags are diagnostic only: any failure is logged and None returned.
    """
    url = f"http://{host}:{port}/api/v1/varz"
    try:
        response = httpx.get(url, timeout=timeout)
        response.raise_for_status()
        varz = response.json()
    except httpx.HTTPError as e:
        logger.warning("Failed to fetch gflags from %s: %s", url, e)
        return None
    except ValueError as e:
        logger.warning("Failed to parse gflags from %s: %s", url, e)
        return None

    if not isinstance(varz, dict):
        logger.warning("Unexpected gflags payload from %s", url)
        return None

    path = output_dir / GFLAGS_FILE
    path.write_text(json.dumps(custom_gflags(varz), indent=4), encoding="utf-8")
    return path
