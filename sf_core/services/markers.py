"""
短期标记存储

批次通知去重使用的 key-value 标记（带过期时间），只是尽力而为的提示，
不是严格的分布式锁。
"""
from datetime import datetime, timedelta
from typing import Dict, Optional, Protocol

import redis.asyncio as redis

from sf_core.utils.clock import Clock, SystemClock
from sf_core.utils.redis import marker_key


class MarkerStore(Protocol):
    async def mark(self, key: str, ttl_seconds: int) -> bool:
        """写入标记；key 不存在（或已过期）时返回 True"""
        ...

    async def seen(self, key: str) -> bool:
        """标记是否存在且未过期"""
        ...


class RedisMarkerStore:
    """基于 Redis SET NX EX 的标记存储"""

    def __init__(self, client: redis.Redis):
        self.client = client

    async def mark(self, key: str, ttl_seconds: int) -> bool:
        created = await self.client.set(marker_key(key), "1", ex=ttl_seconds, nx=True)
        return bool(created)

    async def seen(self, key: str) -> bool:
        return bool(await self.client.exists(marker_key(key)))


class InMemoryMarkerStore:
    """进程内标记存储（单进程开发环境和测试使用）"""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()
        self._expires_at: Dict[str, datetime] = {}

    async def mark(self, key: str, ttl_seconds: int) -> bool:
        now = self.clock.now()
        expires_at = self._expires_at.get(key)
        if expires_at is not None and expires_at > now:
            return False
        self._expires_at[key] = now + timedelta(seconds=ttl_seconds)
        return True

    async def seen(self, key: str) -> bool:
        expires_at = self._expires_at.get(key)
        if expires_at is None:
            return False
        if expires_at <= self.clock.now():
            del self._expires_at[key]
            return False
        return True
