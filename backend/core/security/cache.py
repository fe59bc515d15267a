"""
core/security/cache.py - 有效权限缓存

按用户缓存聚合后的有效权限集合，带 TTL。
缓存只是性能优化：启用、冷启动或禁用时评估结果必须完全一致。

并发模型：
- 读：直接字典查找，不加锁
- 写（put / invalidate）：单把锁保证单个用户键的原子性
- generation 计数防止"失效之前开始计算、失效之后才写回"的陈旧数据
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from core.security.permission import EffectivePermissions

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0


@dataclass(frozen=True)
class _CacheEntry:
    value: EffectivePermissions
    expires_at: float


class DecisionCache:
    """
    有效权限缓存

    Example:
        >>> cache = DecisionCache(ttl_seconds=300)
        >>> token = cache.generation(42)
        >>> cache.put(42, effective, token=token)
        >>> cache.get(42) is effective
        True
        >>> cache.invalidate(42)
        >>> cache.get(42) is None
        True
    """

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, enabled: bool = True,
                 clock: Optional[Callable[[], float]] = None):
        self._ttl = float(ttl_seconds)
        self._enabled = enabled
        self._clock = clock or time.monotonic
        self._entries: Dict[int, _CacheEntry] = {}
        self._generations: Dict[int, int] = {}
        self._epoch = 0
        self._lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        return len(self._entries)

    def generation(self, user_id: int) -> tuple:
        """计算开始前获取的令牌，put 时用于判断期间是否发生过失效"""
        return (self._epoch, self._generations.get(user_id, 0))

    def get(self, user_id: int) -> Optional[EffectivePermissions]:
        entry = self._entries.get(user_id) if self._enabled else None
        if entry is None or entry.expires_at <= self._clock():
            self._count(hit=False)
            return None
        self._count(hit=True)
        return entry.value

    def _count(self, hit: bool) -> None:
        with self._stats_lock:
            if hit:
                self.hits += 1
            else:
                self.misses += 1

    def put(self, user_id: int, value: EffectivePermissions,
            ttl: Optional[float] = None, token: Optional[tuple] = None) -> bool:
        """
        写入缓存

        Args:
            token: generation() 返回的令牌；期间发生过失效则丢弃本次写入

        Returns:
            是否写入
        """
        if not self._enabled:
            return False
        ttl = self._ttl if ttl is None else float(ttl)
        if ttl <= 0:
            return False
        with self._lock:
            if token is not None and token != (self._epoch, self._generations.get(user_id, 0)):
                logger.debug(f"Discarding stale permission set for user {user_id}")
                return False
            self._entries[user_id] = _CacheEntry(value=value, expires_at=self._clock() + ttl)
        return True

    def invalidate(self, user_id: int) -> None:
        """同步失效单个用户"""
        with self._lock:
            self._generations[user_id] = self._generations.get(user_id, 0) + 1
            self._entries.pop(user_id, None)
        logger.debug(f"Invalidated permission cache for user {user_id}")

    def invalidate_all(self) -> None:
        """全量失效（角色 / 权限目录级别的修改）"""
        with self._lock:
            self._epoch += 1
            self._entries.clear()
            self._generations.clear()
        logger.debug("Invalidated all permission cache entries")

    def sweep(self) -> int:
        """
        清理过期条目，返回清理数量

        同时回收没有缓存条目的用户的 generation 计数；回收后推进 epoch，
        使回收前取得的令牌全部失效。
        """
        now = self._clock()
        with self._lock:
            expired = [uid for uid, e in self._entries.items() if e.expires_at <= now]
            for uid in expired:
                del self._entries[uid]
            idle = [uid for uid in self._generations if uid not in self._entries]
            for uid in idle:
                del self._generations[uid]
            if idle:
                self._epoch += 1
        if expired:
            logger.debug(f"Swept {len(expired)} expired permission cache entries")
        return len(expired)

    def stats(self) -> Dict[str, object]:
        return {
            "enabled": self._enabled,
            "ttl_seconds": self._ttl,
            "size": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "generations": len(self._generations),
        }


__all__ = ["DecisionCache", "DEFAULT_TTL_SECONDS"]
