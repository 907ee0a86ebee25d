"""
订单通知分发

客户/管理员邮件的组装与投递。投递失败以 NotificationError 抛出，
由调用方捕获并记录，不影响已提交的订单。
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

import httpx

from sf_core.config import Settings, get_settings
from sf_core.models import Order
from sf_core.utils.errors import NotificationError
from sf_core.utils.logger import get_logger

logger = get_logger(__name__)


class NotificationDispatcher(Protocol):
    async def send_order_placed(self, order: Order) -> None: ...

    async def send_order_placed_admin(self, order: Order) -> None: ...

    async def send_multi_order_placed(self, orders: Sequence[Order], total: Decimal) -> None: ...

    async def send_multi_order_placed_admin(self, orders: Sequence[Order], total: Decimal) -> None: ...

    async def send_status_updated(self, order: Order, from_status: str, to_status: str) -> None: ...


@dataclass
class MailMessage:
    """待投递邮件"""
    to: str
    subject: str
    text: str
    reply_to: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)


STATUS_SUBJECTS = {
    "confirmed": "Order Confirmed",
    "processing": "Order is Being Processed",
    "shipped": "Order Shipped",
    "delivered": "Order Delivered",
    "cancelled": "Order Cancelled",
}


def _order_line(order: Order) -> str:
    size = order.product_size or "N/A"
    line = f"{order.unique_id}  {order.product_name}  size {size}  x{order.quantity}  {order.total_amount} EUR"
    if order.product_color:
        line += f"  ({order.product_color})"
    return line


def _customer_block(order: Order) -> str:
    return "\n".join([
        order.customer_full_name,
        order.customer_email,
        order.customer_phone,
        order.customer_address,
        f"{order.customer_city}, {order.country_label}",
    ])


class MailDispatcher:
    """通知分发基类：负责组装邮件，deliver 由子类实现"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    async def deliver(self, message: MailMessage) -> None:
        raise NotImplementedError

    async def send_order_placed(self, order: Order) -> None:
        text = "\n".join([
            f"Thank you for your order, {order.customer_full_name}!",
            "",
            _order_line(order),
            "",
            "Payment: cash on delivery",
            "Shipping to:",
            _customer_block(order),
        ])
        await self.deliver(self._customer_message(
            order.customer_email,
            f"Order Confirmation - {order.unique_id}",
            text,
            tag="order-placed",
        ))

    async def send_order_placed_admin(self, order: Order) -> None:
        text = "\n".join([
            "A new order has been placed.",
            "",
            _order_line(order),
            "",
            _customer_block(order),
            f"Notes: {order.notes or '-'}",
        ])
        await self.deliver(MailMessage(
            to=self.settings.admin_email,
            subject=f"New Order - {order.unique_id}",
            text=text,
            tags=["order-admin"],
        ))

    async def send_multi_order_placed(self, orders: Sequence[Order], total: Decimal) -> None:
        first = orders[0]
        text = "\n".join(
            [f"Thank you for your order, {first.customer_full_name}!", ""]
            + [_order_line(order) for order in orders]
            + ["", f"Total: {total} EUR", "", "Shipping to:", _customer_block(first)]
        )
        await self.deliver(self._customer_message(
            first.customer_email,
            f"Order Confirmation - {len(orders)} Items Ordered",
            text,
            tag="multi-order-placed",
        ))

    async def send_multi_order_placed_admin(self, orders: Sequence[Order], total: Decimal) -> None:
        first = orders[0]
        text = "\n".join(
            [f"A new multi-item order has been placed ({len(orders)} items).", ""]
            + [_order_line(order) for order in orders]
            + ["", f"Total: {total} EUR", "", _customer_block(first)]
        )
        await self.deliver(MailMessage(
            to=self.settings.admin_email,
            subject=f"New Multi-Order - {len(orders)} Items",
            text=text,
            tags=["multi-order-admin"],
        ))

    async def send_status_updated(self, order: Order, from_status: str, to_status: str) -> None:
        prefix = STATUS_SUBJECTS.get(to_status, "Order Status Updated")
        text = "\n".join([
            f"Hello {order.customer_full_name},",
            "",
            f"Your order {order.unique_id} changed from {from_status} to {to_status}.",
            "",
            _order_line(order),
        ])
        await self.deliver(self._customer_message(
            order.customer_email,
            f"{prefix} - {self.settings.shop_name}",
            text,
            tag="order-status-updated",
        ))

    def _customer_message(self, to: str, subject: str, text: str, tag: str) -> MailMessage:
        return MailMessage(
            to=to,
            subject=subject,
            text=text,
            reply_to=self.settings.mail_reply_to,
            headers={"List-Unsubscribe": f"<mailto:{self.settings.mail_reply_to}?subject=unsubscribe>"},
            tags=[tag],
        )


class HttpMailDispatcher(MailDispatcher):
    """通过 HTTP 邮件 API 投递"""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        super().__init__(settings)
        self._client = client

    async def deliver(self, message: MailMessage) -> None:
        payload = {
            "from": self.settings.mail_from,
            "to": [message.to],
            "subject": message.subject,
            "text": message.text,
            "reply_to": message.reply_to,
            "headers": message.headers,
            "tags": message.tags,
        }
        headers = {}
        if self.settings.mail_api_key:
            headers["Authorization"] = f"Bearer {self.settings.mail_api_key}"

        try:
            if self._client is not None:
                response = await self._client.post(self.settings.mail_api_url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.settings.mail_timeout_seconds) as client:
                    response = await client.post(self.settings.mail_api_url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise NotificationError(code="MAIL_TIMEOUT", detail=f"Mail API timeout: {message.subject}") from e
        except httpx.HTTPStatusError as e:
            raise NotificationError(
                code="MAIL_REJECTED",
                detail=f"Mail API returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise NotificationError(code="MAIL_TRANSPORT_ERROR", detail=str(e)) from e

        logger.info("Mail delivered", subject=message.subject, to=message.to)


class LogMailDispatcher(MailDispatcher):
    """未配置邮件 API 时只记录日志"""

    async def deliver(self, message: MailMessage) -> None:
        logger.info("Mail not sent (no mail API configured)", subject=message.subject, to=message.to)


def create_dispatcher(settings: Optional[Settings] = None) -> MailDispatcher:
    settings = settings or get_settings()
    if settings.mail_api_url:
        return HttpMailDispatcher(settings)
    return LogMailDispatcher(settings)


async def send_safely(
    send: Callable[..., Awaitable[None]],
    *args: Any,
    label: str,
    **context: Any
) -> bool:
    """执行一次通知发送，失败只记录日志，返回是否成功"""
    try:
        await send(*args)
    except Exception as e:
        logger.error(
            f"Failed to send {label} notification",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
            **context
        )
        return False

    logger.info(f"{label} notification sent", **context)
    return True
