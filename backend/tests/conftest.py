"""
Pytest 配置和共享 fixtures
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient
from jose import jwt

from app.config import Settings, settings
from app.database import Base, get_db
from app.main import app
from app.security.engine import build_engine, set_engine
from app.system.models.rbac import User
from app.system.services.rbac_seed import seed_rbac_data
from core.security.legacy import LegacyRole


@pytest.fixture(scope="function")
def db_engine():
    """创建内存数据库引擎"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def session_factory(db_engine):
    """与 db_session 共用同一个内存库的会话工厂（权限存储使用）"""
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """创建数据库会话"""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def test_settings():
    """测试配置：不启动后台清理任务"""
    return Settings(
        PERMISSION_CACHE_ENABLED=True,
        PERMISSION_CACHE_TTL_SECONDS=300.0,
        PERMISSION_CACHE_SWEEP_SECONDS=0,
        PERMISSION_STORE_TIMEOUT_SECONDS=2.0,
        SEED_ON_STARTUP=False,
    )


@pytest.fixture
def permission_engine(session_factory, test_settings):
    """基于内存库装配的授权引擎，注册为全局实例"""
    engine = build_engine(session_factory, test_settings)
    set_engine(engine)
    yield engine
    set_engine(None)


@pytest.fixture
def seeded_db(db_session):
    """写入默认权限目录与系统角色"""
    seed_rbac_data(db_session)
    return db_session


@pytest.fixture(scope="function")
def client(db_session, permission_engine):
    """创建测试客户端（不触发 lifespan，引擎由 permission_engine 提供）"""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()


# ============== 用户 / 认证 ==============

@pytest.fixture
def make_user(db_session):
    """创建用户的工厂"""
    counter = {"n": 0}

    def _make(legacy_role=None, organization_id=None, property_id=None,
              department_id=None, is_active=True, name=None):
        counter["n"] += 1
        user = User(
            email=f"user{counter['n']}@example.com",
            name=name or f"用户{counter['n']}",
            legacy_role=legacy_role,
            organization_id=organization_id,
            property_id=property_id,
            department_id=department_id,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


def _auth_header(user) -> dict:
    token = jwt.encode({"sub": str(user.id)}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    """为任意用户生成认证请求头"""
    return _auth_header


@pytest.fixture
def platform_admin(make_user):
    return make_user(LegacyRole.PLATFORM_ADMIN, name="平台管理员")


@pytest.fixture
def org_admin(make_user):
    return make_user(LegacyRole.ORGANIZATION_ADMIN, organization_id=1, property_id=10,
                     name="组织管理员")


@pytest.fixture
def org_owner(make_user):
    return make_user(LegacyRole.ORGANIZATION_OWNER, organization_id=1, name="组织所有者")


@pytest.fixture
def staff_user(make_user):
    return make_user(LegacyRole.STAFF, organization_id=1, property_id=10, department_id=100,
                     name="前台员工")


@pytest.fixture
def other_org_user(make_user):
    return make_user(LegacyRole.STAFF, organization_id=2, property_id=20, department_id=200,
                     name="其他组织员工")


@pytest.fixture
def platform_headers(platform_admin):
    return _auth_header(platform_admin)


@pytest.fixture
def org_owner_headers(org_owner):
    return _auth_header(org_owner)


@pytest.fixture
def staff_headers(staff_user):
    return _auth_header(staff_user)
