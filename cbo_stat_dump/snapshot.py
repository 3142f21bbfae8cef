"""Write statistics snapshots: JSON documents and SQL replay scripts.

Documents keep each catalog row exactly as the server rendered it, one row
per line, so a re-dump can be compared byte for byte. Only the enclosing
object is pretty-printed.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from . import ext_statistics, statistics
from .ext_statistics import ExtendedStatDescriptor, ExtendedStatPayload
from .literals import LiteralEncoder
from .statistics import ColumnStat, RelationStat
from .version_policy import VersionEpoch

logger = logging.getLogger(__name__)

STATISTICS_JSON_FILE = "statistics.json"
IMPORT_STATISTICS_SQL_FILE = "import_statistics.sql"
STATISTIC_EXT_JSON_FILE = "statistic_ext.json"
IMPORT_STATISTICS_EXT_SQL_FILE = "import_statistics_ext.sql"

STATISTICS_FORMAT_VERSION = "1.0.0"
EXT_STATISTICS_FORMAT_VERSION = "0.0.1"

# YugabyteDB treats catalog tables as regular tables: writes need an
# explicit session permission, and catalog caches need a version bump.
YB_PREAMBLE = "SET yb_non_ddl_txn_for_sys_tables_allowed = ON;\n\n"
YB_EPILOGUE = (
    "\nupdate pg_yb_catalog_version set current_version=current_version+1 where db_oid=1;\n"
    "SET yb_non_ddl_txn_for_sys_tables_allowed = OFF;\n"
)

_INDENT = "    "


def format_raw_document(version: str, sections: Sequence[Tuple[str, Sequence[str]]]) -> str:
    """Render ``{"version": ..., <section>: [<raw row>, ...], ...}``.

    Rows are inserted verbatim; they must already be valid JSON.
    """
    lines = ["{", f"{_INDENT}{json.dumps('version')}: {json.dumps(version)},"]
    for index, (name, rows) in enumerate(sections):
        lines.append(f"{_INDENT}{json.dumps(name)}: [")
        for position, row in enumerate(rows):
            separator = "," if position < len(rows) - 1 else ""
            lines.append(f"{_INDENT * 2}{row.strip()}{separator}")
        closing = "]," if index < len(sections) - 1 else "]"
        lines.append(f"{_INDENT}{closing}")
    lines.append("}")
    return "\n".join(lines)


def render_script(blocks: Sequence[Sequence[str]], yb_mode: bool = False) -> str:
    """Join statement blocks into one replay script."""
    parts = []
    if yb_mode:
        parts.append(YB_PREAMBLE)
    for statements in blocks:
        parts.extend(statement + "\n" for statement in statements)
    if yb_mode:
        parts.append(YB_EPILOGUE)
    return "".join(parts)


@dataclass
class Snapshot:
    """Rendered artifacts, keyed by file name."""

    files: Dict[str, str] = field(default_factory=dict)


class SnapshotWriter:
    """Render and write snapshot artifacts into ``output_dir``.

    Args:
        output_dir: Directory receiving the files (created if missing).
        epoch: Catalog epoch the statistics were taken from.
        yb_mode: Wrap replay scripts in YugabyteDB catalog-write toggles.
        inline_extended_statistics: Also append extended statistics to
            import_statistics.sql (they always get their own script).
    """

    def __init__(
        self,
        output_dir: Path | str,
        epoch: VersionEpoch,
        yb_mode: bool = False,
        inline_extended_statistics: bool = False,
    ):
        self.output_dir = Path(output_dir)
        self.epoch = epoch
        self.yb_mode = yb_mode
        self.inline_extended_statistics = inline_extended_statistics
        self.encoder = LiteralEncoder(epoch)

    def render(
        self,
        relation_stats: Sequence[RelationStat],
        column_stats: Sequence[ColumnStat],
        ext_descriptors: Optional[Sequence[ExtendedStatDescriptor]] = None,
        ext_payloads: Optional[Sequence[ExtendedStatPayload]] = None,
    ) -> Snapshot:
        """Render every artifact in memory.

        Extended statistics are considered captured when ``ext_payloads``
        is not None (an empty list still produces empty artifacts).
        """
        snapshot = Snapshot()
        snapshot.files[STATISTICS_JSON_FILE] = format_raw_document(
            STATISTICS_FORMAT_VERSION,
            [
                ("pg_class", [stat.raw for stat in relation_stats]),
                ("pg_statistic", [stat.raw for stat in column_stats]),
            ],
        )

        blocks: List[List[str]] = [statistics.replay_statements(relation_stats, column_stats, self.encoder)]

        if ext_payloads is not None:
            ext_statements = ext_statistics.replay_statements(ext_payloads, self.encoder)
            snapshot.files[STATISTIC_EXT_JSON_FILE] = format_raw_document(
                EXT_STATISTICS_FORMAT_VERSION,
                [
                    ("pg_statistic_ext", [d.raw for d in ext_descriptors or []]),
                    ("pg_statistic_ext_data", [p.raw for p in ext_payloads]),
                ],
            )
            snapshot.files[IMPORT_STATISTICS_EXT_SQL_FILE] = render_script([ext_statements], self.yb_mode)
            if self.inline_extended_statistics:
                blocks.append(ext_statements)

        snapshot.files[IMPORT_STATISTICS_SQL_FILE] = render_script(blocks, self.yb_mode)
        return snapshot

    def write(
        self,
        relation_stats: Sequence[RelationStat],
        column_stats: Sequence[ColumnStat],
        ext_descriptors: Optional[Sequence[ExtendedStatDescriptor]] = None,
        ext_payloads: Optional[Sequence[ExtendedStatPayload]] = None,
    ) -> List[Path]:
        """Render all artifacts, then write them. Returns the written paths."""
        snapshot = self.render(relation_stats, column_stats, ext_descriptors, ext_payloads)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        written = []
        for name, content in snapshot.files.items():
            path = self.output_dir / name
            path.write_text(content, encoding="utf-8")
            logger.debug("Wrote %s (%d bytes)", path, len(content))
            written.append(path)
        return written
