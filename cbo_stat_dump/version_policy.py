"""Catalog shape per PostgreSQL major version.

The statistics catalogs only change shape at two points that matter here:

  - per-slot collation columns (stacoll1..5) appear in pg_statistic
  - pg_statistic_ext_data gains stxdinherit / stxdexpr, which the
    extended statistics replay statements depend on

Everything that is ordered (the columns requested from pg_statistic, the
positional VALUES of the replay INSERT, the field order of a pg_statistic
composite literal) is derived from the epoch below and never from the
data itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple

COLLATION_MIN_MAJOR_VERSION = 12
EXTENDED_STATS_MIN_MAJOR_VERSION = 15

SLOTS = range(1, 6)

# Declared types of the fixed-type pg_statistic columns.
# stavalues1..5 are typed per column at encode time.
STATISTIC_COLUMN_TYPES: Dict[str, str] = {
    "starelid": "oid",
    "staattnum": "smallint",
    "stainherit": "boolean",
    "stanullfrac": "real",
    "stawidth": "integer",
    "stadistinct": "real",
    **{f"stakind{i}": "smallint" for i in SLOTS},
    **{f"staop{i}": "oid" for i in SLOTS},
    **{f"stacoll{i}": "oid" for i in SLOTS},
    **{f"stanumbers{i}": "real[]" for i in SLOTS},
}

_HEAD_COLUMNS: Tuple[str, ...] = ("stainherit", "stanullfrac", "stawidth", "stadistinct")
_KIND_COLUMNS = tuple(f"stakind{i}" for i in SLOTS)
_OP_COLUMNS = tuple(f"staop{i}" for i in SLOTS)
_COLL_COLUMNS = tuple(f"stacoll{i}" for i in SLOTS)
_NUMBERS_COLUMNS = tuple(f"stanumbers{i}" for i in SLOTS)
_VALUES_COLUMNS = tuple(f"stavalues{i}" for i in SLOTS)


@dataclass(frozen=True)
class VersionEpoch:
    """Catalog shape for one major version."""

    major_version: int
    has_collation: bool
    supports_extended_statistics: bool

    @property
    def statistic_columns(self) -> List[str]:
        """pg_statistic columns after (starelid, staattnum), in catalog order."""
        columns = list(_HEAD_COLUMNS + _KIND_COLUMNS + _OP_COLUMNS)
        if self.has_collation:
            columns.extend(_COLL_COLUMNS)
        columns.extend(_NUMBERS_COLUMNS + _VALUES_COLUMNS)
        return columns

    @property
    def composite_fields(self) -> List[str]:
        """Field order of a pg_statistic row literal (used by stxdexpr)."""
        return ["starelid", "staattnum"] + self.statistic_columns

    def column_type(self, column: str) -> str:
        """Declared type of a fixed-type pg_statistic column of this epoch."""
        if column not in self.composite_fields or column not in STATISTIC_COLUMN_TYPES:
            raise KeyError(column)
        return STATISTIC_COLUMN_TYPES[column]


def epoch_for(major_version: int) -> VersionEpoch:
    """Return the catalog epoch of a PostgreSQL major version."""
    return VersionEpoch(
        major_version=major_version,
        has_collation=major_version >= COLLATION_MIN_MAJOR_VERSION,
        supports_extended_statistics=major_version >= EXTENDED_STATS_MIN_MAJOR_VERSION,
    )


def major_version_from_num(server_version_num: int | str) -> int:
    """Convert ``SHOW server_version_num`` output (e.g. 150004) to 15."""
    return int(str(server_version_num).strip()) // 10000
