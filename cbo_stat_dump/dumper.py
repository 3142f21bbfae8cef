"""Run a complete statistics dump against one database.

Stages run strictly one after another on a single connection. Any stage
failure aborts the run as a ``DumpError`` naming the stage; only the
gflags export is allowed to fail.
"""

from __future__ import annotations

import logging
import subprocess
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional, Set

import psycopg2

from . import exports
from .config import DumpSettings
from .connection import PostgresConnection
from .errors import DumpError
from .ext_statistics import ExtendedStatisticsExtractor
from .scope import RelationScopeResolver
from .snapshot import SnapshotWriter
from .statistics import StatisticsExtractor
from .version_policy import VersionEpoch, epoch_for, major_version_from_num

logger = logging.getLogger(__name__)


def _describe(error: Exception) -> str:
    if isinstance(error, subprocess.CalledProcessError):
        detail = (error.stderr or error.stdout or "").strip()
        return f"{error.cmd[0]} exited with {error.returncode}: {detail}"
    if isinstance(error, psycopg2.Error) and error.pgerror:
        return error.pgerror.strip()
    return str(error) or type(error).__name__


@contextmanager
def stage(name: str) -> Iterator[None]:
    """Re-raise failures inside the block as ``DumpError(name, ...)``."""
    logger.debug("Stage: %s", name)
    try:
        yield
    except DumpError:
        raise
    # LiteralEncodingError is a ValueError.
    except (psycopg2.Error, OSError, subprocess.CalledProcessError, TypeError, ValueError) as e:
        raise DumpError(name, _describe(e)) from e


@dataclass
class DumpResult:
    """What a dump produced."""

    output_dir: Path
    epoch: VersionEpoch
    relations: Set[str] = field(default_factory=set)
    relation_count: int = 0
    column_count: int = 0
    extended_count: Optional[int] = None
    files: List[Path] = field(default_factory=list)


class Dumper:
    """Dump statistics and companion artifacts over an open connection."""

    def __init__(self, conn, settings: DumpSettings):
        self.conn = conn
        self.settings = settings
        self.output_dir = Path(settings.output_dir)

    def detect_epoch(self) -> VersionEpoch:
        with stage("server version"):
            major = major_version_from_num(self.conn.server_version_num())
        epoch = epoch_for(major)
        logger.debug(
            "Server major version %d (collation columns: %s, extended statistics: %s)",
            major, epoch.has_collation, epoch.supports_extended_statistics,
        )
        return epoch

    def dump(self) -> DumpResult:
        with stage("output"):
            self.output_dir.mkdir(parents=True, exist_ok=True)

        epoch = self.detect_epoch()
        result = DumpResult(output_dir=self.output_dir, epoch=epoch)

        if self.settings.query_file:
            query_file = Path(self.settings.query_file)
            with stage("query"):
                query = query_file.read_text(encoding="utf-8")

            logger.info("Analyzing query file to identify relations...")
            with stage("scope"):
                resolver = RelationScopeResolver(
                    self.conn, enable_base_scans_cost_model=self.settings.use_base_scans_cost_model
                )
                result.relations = resolver.resolve(query)
            if not result.relations:
                logger.warning("Query references no relations; dumping the whole database")

            with stage("query plan"):
                result.files.append(exports.export_query_file(query_file, self.output_dir))
                result.files.append(exports.export_query_plan(self.conn, query, self.output_dir))

        if not self.settings.skip_ddl:
            logger.info("Exporting DDL...")
            with stage("ddl"):
                result.files.append(exports.export_ddl(
                    self.output_dir,
                    host=self.settings.host,
                    port=self.settings.port,
                    database=self.settings.database,
                    user=self.settings.user,
                    password=self.settings.password,
                    relations=result.relations,
                    pg_dump_bin=self.settings.pg_dump_bin,
                ))

        logger.info("Exporting statistics...")
        with stage("statistics"):
            relation_stats, column_stats = StatisticsExtractor(self.conn, epoch).extract(result.relations)
        result.relation_count = len(relation_stats)
        result.column_count = len(column_stats)

        ext_descriptors = ext_payloads = None
        if epoch.supports_extended_statistics:
            logger.info("Exporting extended statistics...")
            with stage("extended statistics"):
                ext_descriptors, ext_payloads = ExtendedStatisticsExtractor(self.conn, epoch).extract(
                    result.relations
                )
            result.extended_count = len(ext_payloads)
        else:
            logger.info("Skipping extended statistics (server version %d)", epoch.major_version)

        with stage("snapshot"):
            writer = SnapshotWriter(
                self.output_dir,
                epoch,
                yb_mode=self.settings.yb_mode,
                inline_extended_statistics=self.settings.inline_extended_statistics,
            )
            result.files.extend(writer.write(relation_stats, column_stats, ext_descriptors, ext_payloads))

        logger.info("Exporting version and overridden settings...")
        with stage("version"):
            result.files.append(exports.export_version(self.conn, self.output_dir))
        with stage("gucs"):
            result.files.append(exports.export_overridden_gucs(self.conn, self.output_dir))

        if self.settings.yb_mode:
            logger.info("Exporting gflags...")
            gflags = exports.export_gflags(
                self.settings.host,
                self.output_dir,
                port=self.settings.gflags_port,
                timeout=self.settings.gflags_timeout,
            )
            if gflags is not None:
                result.files.append(gflags)

        return result


def run(settings: DumpSettings) -> DumpResult:
    """Connect, dump, and release the connection whatever happens."""
    conn = PostgresConnection(
        host=settings.host,
        port=settings.port,
        database=settings.database,
        user=settings.user,
        password=settings.password,
    )
    with stage("connect"):
        conn.connect()
    with conn:
        return Dumper(conn, settings).dump()
