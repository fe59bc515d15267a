"""
Hotel Operations Hub 授权服务入口
多租户作用域权限引擎 + 授权管理 API
"""
import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from app.config import Settings, settings
from app.database import SessionLocal, init_db
from app.security.engine import PermissionEngine, build_engine, set_engine
from app.security.permissions import DECLARED_OPERATIONS
from app.system.routers import rbac_router
from app.system.services.catalog_service import PermissionCatalogService
from app.system.services.rbac_seed import seed_rbac_data
from app.system.services.scheduler_backend import APSchedulerBackend
from core.scheduler import SchedulerRegistry
from core.security.registry import CoverageReport

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

CACHE_SWEEP_JOB_ID = "permission_cache_sweep"


def validate_operation_coverage(engine: PermissionEngine,
                                session_factory: Callable[[], Session]) -> CoverageReport:
    """
    启动时校验：每个受保护的操作都声明了权限，且声明的权限都在目录中

    Raises:
        RuntimeError: 校验失败
    """
    db = session_factory()
    try:
        catalog = PermissionCatalogService(db).all_permissions()
    finally:
        db.close()

    report = engine.registry.validate(DECLARED_OPERATIONS, catalog)
    if not report.ok:
        logger.error(f"Operation permission coverage failed: {report.summary()}")
        raise RuntimeError(f"Operation permission coverage failed: {report.summary()}")
    logger.info(
        f"Operation permission coverage ok ({len(engine.registry.operations())} operations, "
        f"{len(report.unused_permissions)} catalog permissions not required by any operation)"
    )
    return report


def start_cache_sweep(engine: PermissionEngine, config: Settings) -> Optional[APSchedulerBackend]:
    """后台定期清理过期的缓存条目（与评估路径无关）"""
    if not engine.cache.enabled or config.PERMISSION_CACHE_SWEEP_SECONDS <= 0:
        return None
    backend = APSchedulerBackend()
    backend.add_interval_job(CACHE_SWEEP_JOB_ID, engine.cache.sweep,
                             config.PERMISSION_CACHE_SWEEP_SECONDS)
    backend.start()
    SchedulerRegistry().set_backend(backend)
    return backend


def startup(session_factory: Callable[[], Session] = SessionLocal,
            config: Settings = settings) -> PermissionEngine:
    """建表、写入种子数据、装配引擎、校验操作覆盖"""
    init_db()

    if config.SEED_ON_STARTUP:
        seed_db = session_factory()
        try:
            seed_stats = seed_rbac_data(seed_db)
            if any(seed_stats.values()):
                logger.info(f"RBAC seed data initialized: {seed_stats}")
        finally:
            seed_db.close()

    engine = build_engine(session_factory, config)
    validate_operation_coverage(engine, session_factory)
    set_engine(engine)
    return engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    engine = startup()
    scheduler = start_cache_sweep(engine, settings)

    yield

    if scheduler is not None:
        scheduler.shutdown()
        SchedulerRegistry().clear()
    set_engine(None)


app = FastAPI(
    title=settings.APP_NAME,
    description="多租户作用域权限引擎与授权管理 API",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 生产环境应限制具体域名
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rbac_router.router)


@app.get("/")
def root():
    """根路径"""
    return {
        "name": settings.APP_NAME,
        "version": "0.1.0",
    }


@app.get("/health")
def health_check():
    """健康检查"""
    return {"status": "healthy"}
