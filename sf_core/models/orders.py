"""
订单数据模型
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Optional

from sqlalchemy import (
    String, Text, Integer, Numeric,
    CheckConstraint, Index, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, BigIntPK
from .catalog import Product


class OrderStatus(str, Enum):
    """订单状态"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def values(cls) -> list:
        return [s.value for s in cls]


class Country(str, Enum):
    """可配送国家"""
    ALBANIA = "albania"
    KOSOVO = "kosovo"
    MACEDONIA = "macedonia"

    @property
    def label(self) -> str:
        return self.value.capitalize()


# 首次进入状态时写入的时间戳字段
STATUS_TIMESTAMP_FIELDS: Dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
}

# 严格流程下允许的状态流转；仅在 enforce_status_graph 开启时生效
ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


class Order(Base):
    """订单表

    每个购物车行对应一条订单；商品名称、价格、图片在下单时快照。
    """
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    # 对外订单号 ORD-XXXXXXXX
    unique_id: Mapped[str] = mapped_column(String(16), nullable=False, comment="对外订单号")
    # 同一次结账的多商品订单共享
    batch_id: Mapped[Optional[str]] = mapped_column(String(64), comment="结账批次ID")

    # 客户信息
    customer_full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    customer_address: Mapped[str] = mapped_column(String(1000), nullable=False)
    customer_city: Mapped[str] = mapped_column(String(100), nullable=False)
    customer_country: Mapped[str] = mapped_column(
        String(20),
        CheckConstraint("customer_country IN ('albania','kosovo','macedonia')", name="ck_orders_country"),
        nullable=False,
    )

    # 商品快照
    product_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("products.id", ondelete="SET NULL"),
        comment="商品ID"
    )
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    product_image: Mapped[Optional[str]] = mapped_column(String(500))
    product_size: Mapped[Optional[str]] = mapped_column(String(50))
    product_color: Mapped[Optional[str]] = mapped_column(String(50))

    quantity: Mapped[int] = mapped_column(
        Integer,
        CheckConstraint("quantity BETWEEN 1 AND 100", name="ck_orders_quantity"),
        nullable=False,
    )
    # 已包含运费
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    payment_method: Mapped[str] = mapped_column(String(20), nullable=False, default="cash")
    status: Mapped[str] = mapped_column(
        String(20),
        CheckConstraint(
            "status IN ('pending','confirmed','processing','shipped','delivered','cancelled')",
            name="ck_orders_status"
        ),
        nullable=False,
        default=OrderStatus.PENDING.value,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # 状态时间戳（首次进入对应状态时写入）
    confirmed_at: Mapped[Optional[datetime]] = mapped_column()
    shipped_at: Mapped[Optional[datetime]] = mapped_column()
    delivered_at: Mapped[Optional[datetime]] = mapped_column()

    # 由服务层按注入的时钟写入，批次窗口查询依赖它
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    __table_args__ = (
        UniqueConstraint("unique_id", name="uq_orders_unique_id"),
        Index("ix_orders_customer_created", "customer_email", "created_at"),
        Index("ix_orders_batch", "batch_id"),
        Index("ix_orders_status", "status"),
        Index("ix_orders_created_at", "created_at"),
    )

    product: Mapped[Optional["Product"]] = relationship("Product", lazy="raise")

    @property
    def country_label(self) -> str:
        return Country(self.customer_country).label
