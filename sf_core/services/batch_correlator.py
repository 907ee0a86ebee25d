"""
下单批次检测

结账页按购物车行逐条创建订单，同一客户短时间内的多笔订单
只发送一组合并通知（客户 + 管理员）。

时间窗口只是启发式判断：并发请求可能看到不同的快照，
不保证严格的恰好一次。
"""
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sf_core.config import Settings, get_settings
from sf_core.database import DatabaseManager
from sf_core.models import Order
from sf_core.tasks.queue import DeferredTaskQueue, ScheduledTask
from sf_core.utils.clock import Clock, SystemClock
from sf_core.utils.logger import LogContext
from .base import BaseService
from .markers import MarkerStore
from .notifications import NotificationDispatcher, send_safely

CHECK_ORDER_BATCH_TASK = "check_order_batch"


@dataclass
class BatchDecision:
    """批次判断结果

    mode:
    - single: 发送单笔订单通知
    - grouped: 发送合并通知
    - deferred: 已调度延迟检查
    - suppressed: 窗口内的订单都已由其他检查发送
    - empty: 窗口内没有订单
    """
    mode: str
    orders: List[Order] = field(default_factory=list)
    task: Optional[ScheduledTask] = None

    @property
    def total_amount(self) -> Decimal:
        return sum((order.total_amount for order in self.orders), Decimal("0"))


def pending_marker_key(customer_email: str) -> str:
    return f"order_batch:{customer_email.lower()}"


def sent_marker_key(customer_email: str, order_id: int) -> str:
    return f"order_batch_sent:{customer_email.lower()}:{order_id}"


class BatchCorrelator(BaseService):
    """按客户邮箱和创建时间窗口聚合订单通知"""

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        markers: MarkerStore,
        task_queue: DeferredTaskQueue,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
        db_manager: Optional[DatabaseManager] = None
    ):
        super().__init__(db_manager)
        self.dispatcher = dispatcher
        self.markers = markers
        self.task_queue = task_queue
        self.clock = clock or SystemClock()
        self.settings = settings or get_settings()

    async def evaluate(self, order: Order, is_batch_order: bool = False) -> BatchDecision:
        """订单提交后调用，决定立即发送还是延迟合并发送"""
        with LogContext(order_id=order.id):
            recent = await self.recent_orders(order.customer_email, self.settings.burst_window_seconds)

            # 只写不读：供运维排查最近下单的客户，是否发送由窗口查询决定
            await self._mark(pending_marker_key(order.customer_email), self.settings.batch_marker_ttl_seconds)

            if is_batch_order:
                task = await self._schedule_check(order)
                if task is not None:
                    return BatchDecision(mode="deferred", orders=recent, task=task)
                self.logger.warning("Falling back to immediate notification", customer_email=order.customer_email)

            if len(recent) > 1:
                await self.notify_grouped(recent)
                return BatchDecision(mode="grouped", orders=recent)

            await self.notify_single(order)
            return BatchDecision(mode="single", orders=[order])

    async def run_deferred_check(self, order_id: int, customer_email: str) -> BatchDecision:
        """延迟检查：重新查询近期订单，只为尚未通知过的订单发送"""
        with LogContext(order_id=order_id):
            window = self.settings.batch_recheck_window_seconds
            recent = await self.recent_orders(customer_email, window)

            if not recent:
                self.logger.info("No recent orders left for batch check", customer_email=customer_email)
                return BatchDecision(mode="empty")

            claimed = await self._claim_orders(customer_email, recent)
            if not claimed:
                self.logger.info(
                    "Batch already notified",
                    customer_email=customer_email,
                    order_count=len(recent),
                )
                return BatchDecision(mode="suppressed", orders=recent)

            if len(claimed) > 1:
                await self.notify_grouped(claimed)
                return BatchDecision(mode="grouped", orders=claimed)

            await self.notify_single(claimed[0])
            return BatchDecision(mode="single", orders=claimed)

    async def _claim_orders(self, customer_email: str, orders: Sequence[Order]) -> List[Order]:
        """认领尚未被其他检查通知过的订单

        每笔订单单独认领，先到期的检查只覆盖它看到的订单，
        之后到达的订单仍由自己的检查发送。
        """
        # 标记必须在订单离开复查窗口之后才过期
        ttl = self.settings.batch_recheck_window_seconds + self.settings.batch_defer_seconds
        claimed = []
        for order in orders:
            if await self._mark(sent_marker_key(customer_email, order.id), ttl, default=True):
                claimed.append(order)
        return claimed

    async def recent_orders(self, customer_email: str, window_seconds: int) -> List[Order]:
        """同一客户在窗口内创建的订单，按创建时间升序"""
        return await self.execute_with_session(self._recent_orders_query, customer_email, window_seconds)

    async def _recent_orders_query(
        self,
        session: AsyncSession,
        customer_email: str,
        window_seconds: int
    ) -> List[Order]:
        cutoff = self.clock.now() - timedelta(seconds=window_seconds)
        stmt = (
            select(Order)
            .where(Order.customer_email == customer_email, Order.created_at >= cutoff)
            .order_by(Order.created_at.asc(), Order.id.asc())
        )
        return list((await session.execute(stmt)).scalars().all())

    async def notify_single(self, order: Order) -> None:
        context = {"order_id": order.id, "unique_id": order.unique_id, "customer_email": order.customer_email}
        await send_safely(self.dispatcher.send_order_placed, order, label="customer order", **context)
        # 管理员邮件独立发送，客户邮件失败不影响
        await send_safely(self.dispatcher.send_order_placed_admin, order, label="admin order", **context)

    async def notify_grouped(self, orders: Sequence[Order]) -> None:
        total = sum((order.total_amount for order in orders), Decimal("0"))
        context = {
            "order_ids": [order.id for order in orders],
            "order_count": len(orders),
            "customer_email": orders[0].customer_email,
        }
        await send_safely(
            self.dispatcher.send_multi_order_placed, orders, total, label="customer multi-order", **context
        )
        await send_safely(
            self.dispatcher.send_multi_order_placed_admin, orders, total, label="admin multi-order", **context
        )

    async def _schedule_check(self, order: Order) -> Optional[ScheduledTask]:
        try:
            return await self.task_queue.schedule(
                self.settings.batch_defer_seconds,
                CHECK_ORDER_BATCH_TASK,
                order_id=order.id,
                customer_email=order.customer_email,
            )
        except Exception:
            self.logger.error("Failed to schedule batch check", exc_info=True)
            return None

    async def _mark(self, key: str, ttl_seconds: int, default: bool = False) -> bool:
        """写入标记；标记存储不可用时返回 default"""
        try:
            return await self.markers.mark(key, ttl_seconds)
        except Exception:
            self.logger.error("Marker store unavailable", key=key, exc_info=True)
            return default
