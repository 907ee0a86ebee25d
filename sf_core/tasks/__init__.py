"""
延迟任务
"""
from .queue import ScheduledTask, DeferredTaskQueue, ArqTaskQueue, LocalTaskQueue, get_redis_settings
from .order_tasks import check_order_batch, TASK_FUNCTIONS

__all__ = [
    "ScheduledTask",
    "DeferredTaskQueue",
    "ArqTaskQueue",
    "LocalTaskQueue",
    "get_redis_settings",
    "check_order_batch",
    "TASK_FUNCTIONS",
]
