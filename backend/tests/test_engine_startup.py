"""
授权引擎装配 / 启动校验 / 缓存清理任务
"""
import pytest

from app.config import Settings
from app.main import CACHE_SWEEP_JOB_ID, start_cache_sweep, validate_operation_coverage
from app.security import permissions as ops
from app.security.engine import build_engine, get_engine, legacy_table_for
from app.system.services.scheduler_backend import APSchedulerBackend
from core.scheduler import SchedulerRegistry
from core.security.legacy import LEGACY_ROLE_TABLE_V1


class TestBuildEngine:
    def test_components_share_cache(self, session_factory, test_settings):
        engine = build_engine(session_factory, test_settings)
        try:
            assert engine.evaluator.cache is engine.cache
            assert engine.evaluator.aggregator is engine.aggregator
            assert engine.aggregator.store is engine.store
            assert engine.cache.ttl_seconds == 300.0
            assert engine.registry.has(ops.ROLE_ASSIGN)
        finally:
            engine.shutdown()

    def test_cache_can_be_disabled(self, session_factory):
        engine = build_engine(session_factory, Settings(PERMISSION_CACHE_ENABLED=False))
        try:
            assert not engine.cache.enabled
        finally:
            engine.shutdown()

    def test_legacy_table_version(self):
        assert legacy_table_for(None) is LEGACY_ROLE_TABLE_V1
        assert legacy_table_for(LEGACY_ROLE_TABLE_V1.version) is LEGACY_ROLE_TABLE_V1
        with pytest.raises(ValueError):
            legacy_table_for("1999.1")

    def test_unknown_legacy_table_version_fails_build(self, session_factory):
        with pytest.raises(ValueError):
            build_engine(session_factory, Settings(LEGACY_ROLE_TABLE_VERSION="1999.1"))

    def test_set_engine_replaces_global(self, permission_engine):
        assert get_engine() is permission_engine


class TestOperationCoverage:
    def test_seeded_catalog_covers_every_operation(self, seeded_db, session_factory, permission_engine):
        report = validate_operation_coverage(permission_engine, session_factory)
        assert report.ok

    def test_empty_catalog_fails(self, session_factory, permission_engine):
        with pytest.raises(RuntimeError):
            validate_operation_coverage(permission_engine, session_factory)

    def test_undeclared_operation_fails(self, seeded_db, session_factory, permission_engine,
                                        monkeypatch):
        monkeypatch.setattr("app.main.DECLARED_OPERATIONS", {ops.ROLE_READ, "spa.book"})
        with pytest.raises(RuntimeError, match="spa.book"):
            validate_operation_coverage(permission_engine, session_factory)


class TestCacheSweep:
    def test_disabled_when_interval_is_zero(self, permission_engine, test_settings):
        assert start_cache_sweep(permission_engine, test_settings) is None

    def test_disabled_when_cache_is_off(self, session_factory):
        config = Settings(PERMISSION_CACHE_ENABLED=False, PERMISSION_CACHE_SWEEP_SECONDS=60)
        engine = build_engine(session_factory, config)
        try:
            assert start_cache_sweep(engine, config) is None
        finally:
            engine.shutdown()

    def test_registers_interval_job(self, permission_engine):
        config = Settings(PERMISSION_CACHE_SWEEP_SECONDS=60)
        backend = start_cache_sweep(permission_engine, config)
        try:
            assert isinstance(backend, APSchedulerBackend)
            assert backend.scheduler.running
            jobs = backend.get_jobs()
            assert [j["id"] for j in jobs] == [CACHE_SWEEP_JOB_ID]
            assert jobs[0]["next_run_time"] is not None
            assert SchedulerRegistry().get_backend() is backend
        finally:
            backend.shutdown()
            SchedulerRegistry().clear()

    def test_remove_job(self):
        backend = APSchedulerBackend()
        backend.add_interval_job("sweep", lambda: None, 30)
        backend.start()
        try:
            backend.remove_job("sweep")
            backend.remove_job("sweep")
            assert backend.get_jobs() == []
        finally:
            backend.shutdown()


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}

