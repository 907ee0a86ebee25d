"""
订单相关的延迟任务

任务函数签名遵循 arq 约定：第一个参数为 worker 上下文 ctx。
"""
from typing import Any, Dict

from sf_core.utils.logger import get_logger

logger = get_logger(__name__)


async def check_order_batch(ctx: Dict[str, Any], order_id: int, customer_email: str) -> Dict[str, Any]:
    """延迟批次检查：合并同一客户短时间内的多笔订单通知"""
    correlator = ctx["batch_correlator"]
    decision = await correlator.run_deferred_check(order_id, customer_email)

    logger.info(
        "Order batch check finished",
        job_id=ctx.get("job_id"),
        order_id=order_id,
        mode=decision.mode,
        order_count=len(decision.orders),
    )
    return {"mode": decision.mode, "order_ids": [order.id for order in decision.orders]}


TASK_FUNCTIONS = [check_order_batch]
