"""
应用配置
从环境变量 / .env 读取配置
"""
from typing import Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用设置"""

    # 应用基础配置
    APP_NAME: str = "Hotel Operations Hub"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # 数据库配置
    DATABASE_URL: str = "sqlite:///./hotel_ops.db"

    # Bearer token 校验（签发不在本服务）
    SECRET_KEY: str = "your-secret-key-change-in-production"
    ALGORITHM: str = "HS256"

    # 权限缓存
    PERMISSION_CACHE_ENABLED: bool = True
    PERMISSION_CACHE_TTL_SECONDS: float = 300.0
    PERMISSION_CACHE_SWEEP_SECONDS: float = 60.0  # 0 关闭后台清理

    # 有效权限加载超时（超时即拒绝）
    PERMISSION_STORE_TIMEOUT_SECONDS: float = 2.0

    # 启动时写入默认权限目录与系统角色（幂等）
    SEED_ON_STARTUP: bool = True

    # 旧版角色映射版本（未设置时使用当前版本）
    LEGACY_ROLE_TABLE_VERSION: Optional[str] = None

    model_config = ConfigDict(env_file=".env", case_sensitive=True)


# 全局设置实例
settings = Settings()
