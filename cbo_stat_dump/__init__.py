"""cbo-stat-dump: capture and replay PostgreSQL / YugabyteDB planner statistics."""

from .dumper import Dumper, DumpResult, run
from .errors import DumpError, LiteralEncodingError, PlanParseError, StatisticsDecodeError
from .literals import LiteralEncoder
from .scope import RelationScopeResolver
from .snapshot import SnapshotWriter
from .statistics import StatisticsExtractor
from .ext_statistics import ExtendedStatisticsExtractor
from .version_policy import VersionEpoch, epoch_for

__version__ = "0.1.0"

__all__ = [
    "Dumper",
    "DumpResult",
    "run",
    "DumpError",
    "LiteralEncodingError",
    "PlanParseError",
    "StatisticsDecodeError",
    "LiteralEncoder",
    "RelationScopeResolver",
    "SnapshotWriter",
    "StatisticsExtractor",
    "ExtendedStatisticsExtractor",
    "VersionEpoch",
    "epoch_for",
]
