"""
订单服务
处理订单的创建（含库存预留）、状态流转和后台查询
"""
import math
import secrets
import string
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, or_, asc, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sf_core.config import Settings, get_settings
from sf_core.database import DatabaseManager
from sf_core.models import (
    Order, OrderStatus, Country, Product,
    STATUS_TIMESTAMP_FIELDS, ORDER_STATUS_TRANSITIONS,
)
from sf_core.utils.clock import Clock, SystemClock
from sf_core.utils.errors import InternalServerError, NotFoundError, ValidationError
from sf_core.utils.logger import LogContext
from .base import BaseService, RepositoryMixin
from .batch_correlator import BatchCorrelator, BatchDecision
from .catalog import CatalogReader
from .inventory import InventoryLedger
from .notifications import NotificationDispatcher, send_safely
from .pricing import quote

UNIQUE_ID_PREFIX = "ORD-"
UNIQUE_ID_ALPHABET = string.ascii_uppercase + string.digits
UNIQUE_ID_LENGTH = 8

ORDERS_PER_PAGE = 15

SORTABLE_FIELDS = (
    "created_at",
    "customer_full_name",
    "total_amount",
    "status",
    "customer_country",
    "payment_method",
)

SEARCH_FIELDS = ("unique_id", "batch_id", "customer_full_name", "customer_email", "product_name")

REQUIRED_FIELDS = [
    "customer_full_name",
    "customer_email",
    "customer_phone",
    "customer_address",
    "customer_city",
    "customer_country",
    "product_id",
    "product_price",
    "quantity",
    "total_amount",
]


def generate_unique_id() -> str:
    """对外订单号 ORD-XXXXXXXX"""
    token = "".join(secrets.choice(UNIQUE_ID_ALPHABET) for _ in range(UNIQUE_ID_LENGTH))
    return UNIQUE_ID_PREFIX + token


@dataclass
class PlacedOrder:
    order: Order
    product: Optional[Product]
    batch: Optional[BatchDecision] = None


@dataclass
class StatusTransition:
    order: Order
    product: Optional[Product]
    from_status: str
    to_status: str

    @property
    def changed(self) -> bool:
        return self.from_status != self.to_status


class OrderService(BaseService, RepositoryMixin):
    """订单服务

    创建流程：校验 → 锁定并预留库存 → 写入订单 → 提交 → 批次检测与通知。
    通知在提交之后发送，失败只记录日志。
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        correlator: BatchCorrelator,
        inventory: Optional[InventoryLedger] = None,
        catalog: Optional[CatalogReader] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
        db_manager: Optional[DatabaseManager] = None
    ):
        super().__init__(db_manager)
        self.settings = settings or get_settings()
        self.dispatcher = dispatcher
        self.correlator = correlator
        self.inventory = inventory or InventoryLedger(self.db_manager)
        self.catalog = catalog or CatalogReader(self.db_manager, self.settings)
        self.clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # 创建
    # ------------------------------------------------------------------

    async def create_order(self, order_data: Dict[str, Any]) -> PlacedOrder:
        """创建订单并预留库存；库存不足或校验失败时不会写入任何订单"""
        data = self._validate_order_data(order_data)

        order = await self.execute_with_transaction(self._create_order_tx, data)

        with LogContext(order_id=order.id):
            self.logger.info(
                "Order created",
                unique_id=order.unique_id,
                product_id=order.product_id,
                size=order.product_size,
                quantity=order.quantity,
                customer_email=order.customer_email,
            )

            batch = await self._evaluate_batch(order, bool(data.get("is_batch_order")))
            product = await self._load_product(order.product_id)

        return PlacedOrder(order=order, product=product, batch=batch)

    async def _create_order_tx(self, session: AsyncSession, data: Dict[str, Any]) -> Order:
        product = await self.catalog.find_product_with_size_stocks(session, data["product_id"])
        if product is None:
            raise ValidationError(
                code="VALIDATION_FAILED",
                detail="Validation failed",
                errors={"product_id": ["The selected product id is invalid."]},
            )

        size = data.get("product_size") or None
        await self.inventory.reserve(session, product.id, size, data["quantity"])

        unit_price, total_amount = await self._price(session, product, data)
        now = self.clock.now()

        order = Order(
            batch_id=data.get("batch_id") or None,
            customer_full_name=data["customer_full_name"],
            customer_email=data["customer_email"],
            customer_phone=data["customer_phone"],
            customer_address=data["customer_address"],
            customer_city=data["customer_city"],
            customer_country=data["customer_country"],
            product_id=product.id,
            product_name=product.name,
            product_price=unit_price,
            product_image=self.catalog.resolve_product_image(product),
            product_size=size,
            product_color=data.get("product_color") or product.color,
            quantity=data["quantity"],
            total_amount=total_amount,
            payment_method="cash",
            status=OrderStatus.PENDING.value,
            notes=data.get("notes"),
            created_at=now,
            updated_at=now,
        )
        await self._insert_with_unique_id(session, order)
        return order

    async def _insert_with_unique_id(self, session: AsyncSession, order: Order) -> None:
        """生成订单号并写入；订单号冲突时在保存点内重试"""
        attempts = self.settings.unique_id_max_attempts
        for attempt in range(1, attempts + 1):
            order.unique_id = generate_unique_id()
            try:
                async with session.begin_nested():
                    session.add(order)
                    await session.flush()
                return
            except IntegrityError:
                self.logger.warning("Order unique_id collision", unique_id=order.unique_id, attempt=attempt)

        raise InternalServerError(
            code="UNIQUE_ID_EXHAUSTED",
            detail=f"Could not generate a unique order id after {attempts} attempts",
        )

    async def _price(self, session: AsyncSession, product: Product, data: Dict[str, Any]) -> Tuple[Decimal, Decimal]:
        """返回 (单价, 总金额)；未开启服务端计价时使用客户端提交的金额"""
        if not self.settings.server_side_pricing:
            return data["product_price"], data["total_amount"]

        campaign_price = await self.catalog.active_campaign_price(session, product.id, self.clock.now().date())
        price = quote(product.price, data["quantity"], data["customer_country"], campaign_price, self.settings)
        if price.total_amount != data["total_amount"]:
            self.logger.info(
                "Client total replaced by server quote",
                product_id=product.id,
                client_total=str(data["total_amount"]),
                server_total=str(price.total_amount),
            )
        return price.unit_price, price.total_amount

    async def _evaluate_batch(self, order: Order, is_batch_order: bool) -> Optional[BatchDecision]:
        # 订单已提交，批次检测的任何失败都不影响下单结果
        try:
            decision = await self.correlator.evaluate(order, is_batch_order)
        except Exception:
            self.logger.error("Batch evaluation failed", exc_info=True)
            return None

        self.logger.info("Batch evaluated", mode=decision.mode, order_count=len(decision.orders))
        return decision

    def _validate_order_data(self, order_data: Dict[str, Any]) -> Dict[str, Any]:
        """校验并规范化下单数据，所有字段错误一次性返回"""
        self.validate_required_fields(order_data, REQUIRED_FIELDS)

        data = dict(order_data)
        errors: Dict[str, List[str]] = {}

        if data["customer_country"] not in {c.value for c in Country}:
            errors["customer_country"] = ["The selected customer country is invalid."]

        try:
            quantity = int(data["quantity"])
        except (TypeError, ValueError):
            errors["quantity"] = ["The quantity must be an integer."]
        else:
            if not 1 <= quantity <= 100:
                errors["quantity"] = ["The quantity must be between 1 and 100."]
            data["quantity"] = quantity

        try:
            data["product_id"] = int(data["product_id"])
        except (TypeError, ValueError):
            errors["product_id"] = ["The product id must be an integer."]

        for field in ("product_price", "total_amount", "shipping_fee"):
            if data.get(field) is None:
                continue
            try:
                amount = Decimal(str(data[field]))
            except InvalidOperation:
                errors[field] = [f"The {field.replace('_', ' ')} must be a number."]
                continue
            if amount < 0:
                errors[field] = [f"The {field.replace('_', ' ')} must be at least 0."]
            data[field] = amount

        if errors:
            raise ValidationError(code="VALIDATION_FAILED", detail="Validation failed", errors=errors)
        return data

    # ------------------------------------------------------------------
    # 状态流转
    # ------------------------------------------------------------------

    async def transition_status(
        self,
        order_id: int,
        status: str,
        notes: Optional[str] = None
    ) -> StatusTransition:
        """更新订单状态

        状态变化时首次写入对应时间戳并通知客户；通知失败不回滚状态。
        notes 不为 None 时覆盖原备注。
        """
        if status not in OrderStatus.values():
            raise ValidationError(
                code="INVALID_STATUS",
                detail="Validation failed",
                errors={"status": ["The selected status is invalid."]},
            )

        with LogContext(order_id=order_id):
            order, from_status = await self.execute_with_transaction(
                self._transition_status_tx, order_id, OrderStatus(status), notes
            )
            result = StatusTransition(
                order=order,
                product=await self._load_product(order.product_id),
                from_status=from_status,
                to_status=order.status,
            )

            if result.changed:
                self.logger.info("Order status changed", from_status=from_status, to_status=order.status)
                await send_safely(
                    self.dispatcher.send_status_updated,
                    order,
                    from_status,
                    order.status,
                    label="status update",
                    order_id=order.id,
                    unique_id=order.unique_id,
                )

        return result

    async def _transition_status_tx(
        self,
        session: AsyncSession,
        order_id: int,
        status: OrderStatus,
        notes: Optional[str]
    ) -> Tuple[Order, str]:
        stmt = select(Order).where(Order.id == order_id).with_for_update()
        order = (await session.execute(stmt)).scalar_one_or_none()
        if order is None:
            raise NotFoundError(code="ORDER_NOT_FOUND", resource=f"Order {order_id}")

        from_status = order.status
        changed = from_status != status.value

        if changed and self.settings.enforce_status_graph:
            allowed = ORDER_STATUS_TRANSITIONS[OrderStatus(from_status)]
            if status not in allowed:
                raise ValidationError(
                    code="INVALID_TRANSITION",
                    detail=f"Cannot change order status from {from_status} to {status.value}",
                    errors={"status": [f"Allowed: {', '.join(sorted(s.value for s in allowed)) or 'none'}"]},
                )

        now = self.clock.now()
        order.status = status.value
        if changed:
            timestamp_field = STATUS_TIMESTAMP_FIELDS.get(status)
            if timestamp_field and getattr(order, timestamp_field) is None:
                setattr(order, timestamp_field, now)
        if notes is not None:
            order.notes = notes
        order.updated_at = now
        await session.flush()

        if changed and status is OrderStatus.CANCELLED:
            await self._on_cancelled(session, order)

        return order, from_status

    async def _on_cancelled(self, session: AsyncSession, order: Order) -> None:
        """订单取消时的库存处理（默认不归还库存）"""
        if not self.settings.restock_on_cancel or order.product_id is None:
            return
        await self.inventory.release(session, order.product_id, order.product_size, order.quantity)

    # ------------------------------------------------------------------
    # 查询与删除
    # ------------------------------------------------------------------

    async def get_order(self, order_id: int) -> PlacedOrder:
        order = await self.execute_with_session(self.get_by_id, Order, order_id)
        if order is None:
            raise NotFoundError(code="ORDER_NOT_FOUND", resource=f"Order {order_id}")
        return PlacedOrder(order=order, product=await self._load_product(order.product_id))

    async def find_by_unique_id(self, unique_id: str) -> PlacedOrder:
        """下单成功页按对外订单号查询"""
        order = await self.execute_with_session(self.get_by_field, Order, "unique_id", unique_id)
        if order is None:
            raise NotFoundError(code="ORDER_NOT_FOUND", resource=f"Order {unique_id}")
        return PlacedOrder(order=order, product=await self._load_product(order.product_id))

    async def delete_order(self, order_id: int) -> None:
        """后台删除订单（不归还库存）"""
        await self.execute_with_transaction(self._delete_order_tx, order_id)
        self.logger.info("Order deleted", order_id=order_id)

    async def _delete_order_tx(self, session: AsyncSession, order_id: int) -> None:
        order = await self.get_by_id(session, Order, order_id)
        if order is None:
            raise NotFoundError(code="ORDER_NOT_FOUND", resource=f"Order {order_id}")
        await self.delete(session, order)

    async def list_orders(
        self,
        search: Optional[str] = None,
        status: Optional[str] = None,
        country: Optional[str] = None,
        payment_method: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        sort: str = "created_at",
        direction: str = "desc",
        page: int = 1
    ) -> Dict[str, Any]:
        """后台订单列表

        同一 batch_id 的订单合并为一行，按分组分页。
        """
        orders = await self.execute_with_session(
            self._list_orders_query, search, status, country, payment_method, date_from, date_to, sort, direction
        )
        groups = group_orders(orders)

        total = len(groups)
        last_page = max(1, math.ceil(total / ORDERS_PER_PAGE))
        page = max(1, page)
        start = (page - 1) * ORDERS_PER_PAGE
        items = groups[start:start + ORDERS_PER_PAGE]

        return {
            "data": items,
            "current_page": page,
            "last_page": last_page,
            "per_page": ORDERS_PER_PAGE,
            "total": total,
            "from": start + 1 if items else None,
            "to": start + len(items) if items else None,
        }

    async def _list_orders_query(
        self,
        session: AsyncSession,
        search: Optional[str],
        status: Optional[str],
        country: Optional[str],
        payment_method: Optional[str],
        date_from: Optional[date],
        date_to: Optional[date],
        sort: str,
        direction: str
    ) -> List[Order]:
        stmt = select(Order)

        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(*(getattr(Order, name).ilike(pattern) for name in SEARCH_FIELDS)))
        if status:
            stmt = stmt.where(Order.status == status)
        if country:
            stmt = stmt.where(Order.customer_country == country)
        if payment_method:
            stmt = stmt.where(Order.payment_method == payment_method)
        if date_from:
            stmt = stmt.where(Order.created_at >= _start_of_day(date_from))
        if date_to:
            stmt = stmt.where(Order.created_at < _start_of_day(date_to) + timedelta(days=1))

        if sort not in SORTABLE_FIELDS:
            sort = "created_at"
        order_by = asc if direction == "asc" else desc
        stmt = stmt.order_by(order_by(getattr(Order, sort)), order_by(Order.id))

        return list((await session.execute(stmt)).scalars().all())

    async def _load_product(self, product_id: Optional[int]) -> Optional[Product]:
        if product_id is None:
            return None
        return await self.execute_with_session(self.catalog.find_product_with_size_stocks, product_id)


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def group_orders(orders: List[Order]) -> List[Dict[str, Any]]:
    """按 batch_id 合并订单；分组位置取该批次第一条订单出现的位置"""
    groups: List[Dict[str, Any]] = []
    batches: Dict[str, Dict[str, Any]] = {}

    for order in orders:
        row = order.to_dict()
        if not order.batch_id:
            row["is_batch"] = False
            groups.append(row)
            continue

        group = batches.get(order.batch_id)
        if group is None:
            group = {
                "is_batch": True,
                "unique_id": order.batch_id,
                "batch_id": order.batch_id,
                "customer_full_name": order.customer_full_name,
                "customer_email": order.customer_email,
                "customer_phone": order.customer_phone,
                "customer_country": order.customer_country,
                "payment_method": order.payment_method,
                "status": order.status,
                "created_at": row["created_at"],
                "total_amount": Decimal("0"),
                "quantity": 0,
                "orders": [],
            }
            batches[order.batch_id] = group
            groups.append(group)

        group["orders"].append(row)
        group["total_amount"] += order.total_amount
        group["quantity"] += order.quantity

    for group in batches.values():
        group["total_amount"] = str(group["total_amount"])

    return groups
