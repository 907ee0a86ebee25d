"""
Redis 工具模块

API 进程和 arq worker 共用同一个连接池：批次标记写在 settings.redis_db，
arq 队列使用独立的 arq_redis_db，两者互不干扰。
"""
import redis.asyncio as redis
from typing import Optional

from sf_core.config import Settings, get_settings
from sf_core.utils.logger import get_logger

logger = get_logger(__name__)

# 批次标记统一加前缀，方便按前缀排查和清理
MARKER_KEY_PREFIX = "sf:marker:"

_redis_client: Optional[redis.Redis] = None
_connection_pool: Optional[redis.ConnectionPool] = None


def marker_key(key: str) -> str:
    return MARKER_KEY_PREFIX + key


async def get_redis(settings: Optional[Settings] = None) -> redis.Redis:
    """
    获取 Redis 异步客户端单例（使用连接池）

    Returns:
        redis.Redis: Redis 异步客户端
    """
    global _redis_client, _connection_pool

    if _redis_client is None:
        settings = settings or get_settings()
        _connection_pool = redis.ConnectionPool.from_url(
            settings.redis_url,
            max_connections=settings.redis_max_connections,
            encoding="utf-8",
            decode_responses=True,
        )
        _redis_client = redis.Redis(connection_pool=_connection_pool)
        logger.info("Created Redis connection pool", db=settings.redis_db)

    return _redis_client


async def check_redis(settings: Optional[Settings] = None) -> bool:
    """启动时检查 Redis 是否可用"""
    try:
        client = await get_redis(settings)
        await client.ping()
        logger.info("Redis connection check passed")
        return True
    except Exception:
        logger.error("Redis connection check failed", exc_info=True)
        return False


async def close_redis() -> None:
    """关闭 Redis 连接和连接池"""
    global _redis_client, _connection_pool

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None

    if _connection_pool is not None:
        await _connection_pool.disconnect()
        _connection_pool = None
