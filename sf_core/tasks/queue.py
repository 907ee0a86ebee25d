"""
延迟任务队列

下单流程只依赖 DeferredTaskQueue 接口：
- ArqTaskQueue: 生产环境，arq `_defer_by` 延迟投递，由独立 worker 执行
- LocalTaskQueue: 单进程开发环境，asyncio 定时执行
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Optional, Protocol

from arq import ArqRedis, create_pool
from arq.connections import RedisSettings
from arq.jobs import Job

from sf_core.config import Settings, get_settings
from sf_core.utils.clock import Clock, SystemClock
from sf_core.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ScheduledTask:
    """已调度任务句柄，可用于取消"""
    task_id: str
    name: str
    run_at: datetime
    kwargs: Dict[str, Any] = field(default_factory=dict)
    cancelled: bool = False
    done: bool = False


class DeferredTaskQueue(Protocol):
    async def schedule(self, delay_seconds: float, name: str, **kwargs: Any) -> ScheduledTask:
        ...

    async def cancel(self, task: ScheduledTask) -> bool:
        ...


def get_redis_settings(settings: Optional[Settings] = None) -> RedisSettings:
    """arq 使用独立的 Redis database"""
    settings = settings or get_settings()
    return RedisSettings(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password,
        database=settings.arq_redis_db,
    )


class ArqTaskQueue:
    """基于 arq 的延迟任务队列"""

    def __init__(self, pool: ArqRedis, clock: Optional[Clock] = None):
        self.pool = pool
        self.clock = clock or SystemClock()

    @classmethod
    async def connect(cls, settings: Optional[Settings] = None, clock: Optional[Clock] = None) -> "ArqTaskQueue":
        pool = await create_pool(get_redis_settings(settings))
        logger.info("Created ARQ connection pool")
        return cls(pool, clock)

    async def schedule(self, delay_seconds: float, name: str, **kwargs: Any) -> ScheduledTask:
        job_id = f"{name}:{uuid.uuid4().hex}"
        job = await self.pool.enqueue_job(
            name,
            _job_id=job_id,
            _defer_by=timedelta(seconds=delay_seconds),
            **kwargs
        )
        if job is None:
            raise RuntimeError(f"Job {job_id} already enqueued")

        logger.info("Enqueued deferred task", task=name, job_id=job.job_id, delay_seconds=delay_seconds)
        return ScheduledTask(
            task_id=job.job_id,
            name=name,
            run_at=self.clock.now() + timedelta(seconds=delay_seconds),
            kwargs=kwargs,
        )

    async def cancel(self, task: ScheduledTask) -> bool:
        """请求中止任务（worker 需开启 allow_abort_jobs）"""
        job = Job(task.task_id, self.pool)
        try:
            aborted = await job.abort(timeout=0)
        except asyncio.TimeoutError:
            # 中止请求已写入，任务尚未到期
            aborted = True
        task.cancelled = aborted
        logger.info("Deferred task abort requested", job_id=task.task_id, aborted=aborted)
        return aborted

    async def close(self) -> None:
        await self.pool.aclose()
        logger.info("Closed ARQ connection pool")


class LocalTaskQueue:
    """进程内延迟任务队列（asyncio 定时器）"""

    def __init__(
        self,
        functions: Iterable[Callable],
        ctx: Optional[Dict[str, Any]] = None,
        clock: Optional[Clock] = None
    ):
        self.clock = clock or SystemClock()
        self.functions = {func.__name__: func for func in functions}
        self.ctx: Dict[str, Any] = ctx if ctx is not None else {}
        self._handles: Dict[str, asyncio.TimerHandle] = {}
        self._running: Dict[str, asyncio.Task] = {}

    async def schedule(self, delay_seconds: float, name: str, **kwargs: Any) -> ScheduledTask:
        if name not in self.functions:
            raise KeyError(f"Unknown task: {name}")

        task = ScheduledTask(
            task_id=f"{name}:{uuid.uuid4().hex}",
            name=name,
            run_at=self.clock.now() + timedelta(seconds=delay_seconds),
            kwargs=kwargs,
        )
        loop = asyncio.get_running_loop()
        self._handles[task.task_id] = loop.call_later(delay_seconds, self._start, task)
        return task

    def _start(self, task: ScheduledTask) -> None:
        self._handles.pop(task.task_id, None)
        self._running[task.task_id] = asyncio.ensure_future(self._run(task))

    async def _run(self, task: ScheduledTask) -> None:
        func = self.functions[task.name]
        try:
            await func(dict(self.ctx, job_id=task.task_id), **task.kwargs)
        except Exception:
            logger.error("Deferred task failed", task=task.name, task_id=task.task_id, exc_info=True)
        finally:
            task.done = True
            self._running.pop(task.task_id, None)

    async def cancel(self, task: ScheduledTask) -> bool:
        handle = self._handles.pop(task.task_id, None)
        if handle is None:
            return False
        handle.cancel()
        task.cancelled = True
        return True

    async def close(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        if self._running:
            await asyncio.gather(*self._running.values(), return_exceptions=True)
