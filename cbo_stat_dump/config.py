"""Configuration for cbo-stat-dump, loaded from the environment (CBO_*)."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings

# Planner parameters worth carrying over to the replay database when they
# differ from their boot value.
CBO_RELEVANT_GUC_PARAMS = frozenset({
    "enable_seqscan",
    "enable_indexscan",
    "enable_bitmapscan",
    "enable_indexonlyscan",
    "enable_tidscan",
    "enable_sort",
    "enable_hashagg",
    "enable_nestloop",
    "enable_material",
    "enable_mergejoin",
    "enable_hashjoin",
    "enable_gathermerge",
    "enable_partitionwise_join",
    "enable_partitionwise_aggregate",
    "enable_parallel_append",
    "enable_parallel_hash",
    "enable_partition_pruning",
    "random_page_cost",
    "seq_page_cost",
    "cpu_tuple_cost",
    "cpu_index_tuple_cost",
    "cpu_operator_cost",
    "effective_cache_size",
    "shared_buffers",
    "work_mem",
    "maintenance_work_mem",
    "default_statistics_target",
    "max_parallel_workers_per_gather",
    "yb_enable_geolocation_costing",
    "yb_enable_batchednl",
    "yb_enable_parallel_append",
    "yb_enable_bitmapscan",
    "yb_enable_base_scans_cost_model",
    "yb_bnl_batch_size",
    "yb_enable_expression_pushdown",
    "yb_test_planner_custom_plan_threshold",
})


class DumpSettings(BaseSettings):
    """Settings of one statistics dump.

    Every field can be set through a ``CBO_``-prefixed environment variable
    (e.g. ``CBO_HOST``, ``CBO_YB_MODE``) or a ``.env`` file; CLI options
    take precedence.
    """

    # Connection
    host: str = "localhost"
    port: int = 5433
    database: str = ""
    user: str = ""
    password: str = ""

    # Output
    output_dir: str = ""
    query_file: Optional[str] = None

    # YugabyteDB
    yb_mode: bool = False
    enable_base_scans_cost_model: bool = False
    gflags_port: int = 7000
    gflags_timeout: float = 2.0

    # Artifacts
    skip_ddl: bool = False
    pg_dump_bin: str = "pg_dump"
    inline_extended_statistics: bool = False

    class Config:
        env_prefix = "CBO_"
        env_file = ".env"
        extra = "ignore"

    @property
    def use_base_scans_cost_model(self) -> bool:
        """The cost-model switch only exists on YugabyteDB."""
        return self.yb_mode and self.enable_base_scans_cost_model


class BenchmarkSettings(BaseSettings):
    """Settings of the plan-reproduction self-test."""

    benchmark: str = ""
    benchmark_path: str = ""
    out_dir: str = ""
    yb_mode: bool = False
    create_prod_db: bool = False
    ignore_ran_tests: bool = False
    enable_base_scans_cost_model: bool = False
    colocation: bool = False

    prod_host: str = "localhost"
    prod_port: int = 5432
    prod_user: str = ""
    prod_password: str = ""
    prod_database: str = ""

    test_host: str = ""
    test_port: int = 0
    test_user: str = ""
    test_password: str = ""

    # Also replay import_statistics_ext.sql into the test database.
    import_extended_statistics: bool = False
    enable_cbo_statistics_simulation: bool = True

    class Config:
        env_prefix = "CBO_BENCH_"
        env_file = ".env"
        extra = "ignore"

    def resolved(self) -> "BenchmarkSettings":
        """Fill defaults that depend on other fields."""
        prod_user = self.prod_user or ("yugabyte" if self.yb_mode else "postgres")
        prod_port = self.prod_port
        if self.yb_mode and "prod_port" not in self.model_fields_set:
            prod_port = 5433
        return self.model_copy(update={
            "benchmark_path": self.benchmark_path or f"test/{self.benchmark}",
            "out_dir": self.out_dir or f"test_out_dir/{self.benchmark}",
            "prod_user": prod_user,
            "prod_port": prod_port,
            "prod_database": self.prod_database or f"{self.benchmark}_db",
            "test_host": self.test_host or self.prod_host,
            "test_port": self.test_port or prod_port,
            "test_user": self.test_user or prod_user,
            "test_password": self.test_password or self.prod_password,
        })


@lru_cache
def get_settings() -> DumpSettings:
    """Get cached settings instance."""
    return DumpSettings()
