"""
ARQ Worker 配置

执行下单流程投递的延迟任务（批次通知检查）。
启动命令：arq sf_core.tasks.arq_worker.WorkerSettings
"""
from typing import Any

from sf_core.config import get_settings
from sf_core.database import get_db_manager
from sf_core.services.batch_correlator import BatchCorrelator
from sf_core.services.markers import RedisMarkerStore
from sf_core.services.notifications import create_dispatcher
from sf_core.utils.logger import get_logger, setup_logging
from sf_core.utils.redis import close_redis, get_redis
from .order_tasks import TASK_FUNCTIONS
from .queue import ArqTaskQueue, get_redis_settings

logger = get_logger(__name__)


async def startup(ctx: dict[str, Any]) -> None:
    """
    Worker 启动时初始化

    所有任务共享数据库连接池、Redis 标记存储和通知分发器。
    """
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format, settings.log_pii_masking)
    logger.info("ARQ Worker starting up...")

    db_manager = get_db_manager()
    ctx["db_manager"] = db_manager
    ctx["batch_correlator"] = BatchCorrelator(
        dispatcher=create_dispatcher(settings),
        markers=RedisMarkerStore(await get_redis(settings)),
        # 任务内部不再投递新任务，复用 worker 自身的连接
        task_queue=ArqTaskQueue(ctx["redis"]),
        settings=settings,
        db_manager=db_manager,
    )

    logger.info("ARQ Worker started successfully")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker 关闭时清理资源"""
    logger.info("ARQ Worker shutting down...")

    await close_redis()
    db_manager = ctx.get("db_manager")
    if db_manager is not None:
        await db_manager.close()

    logger.info("ARQ Worker shutdown complete")


async def on_job_start(ctx: dict[str, Any]) -> None:
    logger.info("Job started", job_id=ctx.get("job_id", "unknown"), job_try=ctx.get("job_try", 1))


async def on_job_end(ctx: dict[str, Any]) -> None:
    logger.info("Job completed", job_id=ctx.get("job_id", "unknown"))


class WorkerSettings:
    """ARQ Worker 配置类"""

    redis_settings = get_redis_settings()

    functions: list = list(TASK_FUNCTIONS)

    on_startup = startup
    on_shutdown = shutdown
    on_job_start = on_job_start
    on_job_end = on_job_end

    # 延迟检查可被取消
    allow_abort_jobs = True

    max_jobs = 50
    job_timeout = 60
    # 通知是尽力而为，失败不重试，避免重复发信
    max_tries = 1
    poll_delay = 0.5
    queue_read_limit = 100

    health_check_interval = 60
    health_check_key = "arq:health-check"
