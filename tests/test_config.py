"""Tests for environment-driven settings."""

import pytest

from cbo_stat_dump.config import CBO_RELEVANT_GUC_PARAMS, BenchmarkSettings, DumpSettings, get_settings


class TestDumpSettings:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CBO_HOST", raising=False)
        monkeypatch.delenv("CBO_PORT", raising=False)
        settings = DumpSettings(_env_file=None)
        assert settings.host == "localhost"
        assert settings.port == 5433
        assert settings.gflags_port == 7000
        assert settings.gflags_timeout == 2.0
        assert not settings.yb_mode

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("CBO_HOST", "db1")
        monkeypatch.setenv("CBO_PORT", "5432")
        monkeypatch.setenv("CBO_YB_MODE", "true")
        settings = DumpSettings(_env_file=None)
        assert (settings.host, settings.port, settings.yb_mode) == ("db1", 5432, True)

    def test_cost_model_requires_yb_mode(self):
        assert not DumpSettings(enable_base_scans_cost_model=True, _env_file=None).use_base_scans_cost_model
        assert DumpSettings(
            yb_mode=True, enable_base_scans_cost_model=True, _env_file=None
        ).use_base_scans_cost_model

    def test_get_settings_cached(self):
        get_settings.cache_clear()
        assert get_settings() is get_settings()
        get_settings.cache_clear()


class TestBenchmarkSettings:

    def test_resolved_postgres_defaults(self):
        settings = BenchmarkSettings(benchmark="tpch", _env_file=None).resolved()
        assert settings.benchmark_path == "test/tpch"
        assert settings.out_dir == "test_out_dir/tpch"
        assert settings.prod_database == "tpch_db"
        assert (settings.prod_user, settings.prod_port) == ("postgres", 5432)
        assert (settings.test_host, settings.test_port, settings.test_user) == ("localhost", 5432, "postgres")

    def test_resolved_yb_defaults(self):
        settings = BenchmarkSettings(benchmark="tpch", yb_mode=True, _env_file=None).resolved()
        assert (settings.prod_user, settings.prod_port) == ("yugabyte", 5433)
        assert settings.test_port == 5433

    def test_explicit_port_kept_in_yb_mode(self):
        settings = BenchmarkSettings(benchmark="tpch", yb_mode=True, prod_port=5432, _env_file=None).resolved()
        assert settings.prod_port == 5432

    def test_extended_statistics_replay_off_by_default(self):
        assert not BenchmarkSettings(_env_file=None).import_extended_statistics


@pytest.mark.parametrize("name", ["enable_nestloop", "random_page_cost", "yb_enable_base_scans_cost_model"])
def test_planner_parameters_whitelisted(name):
    assert name in CBO_RELEVANT_GUC_PARAMS
