"""
商品目录数据模型
分类、商品、尺码库存、促销活动
"""
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    String, Text, Boolean, Integer, Date, Numeric,
    CheckConstraint, Index, ForeignKey, UniqueConstraint, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, BigIntPK


class Category(Base):
    """商品分类表"""
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, comment="分类名称")
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, comment="URL 标识")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, comment="是否启用")

    products: Mapped[List["Product"]] = relationship("Product", back_populates="category")


class Product(Base):
    """商品表

    有任意尺码库存记录时按尺码扣减，stock_quantity 仅作旧数据兼容。
    """
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, comment="商品名称")
    description: Mapped[Optional[str]] = mapped_column(Text, comment="商品描述")
    price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        CheckConstraint("price >= 0"),
        nullable=False,
        comment="标价"
    )

    # 图片：media_url 为媒体库地址，image 为旧的存储路径
    image: Mapped[Optional[str]] = mapped_column(String(500), comment="图片存储路径")
    media_url: Mapped[Optional[str]] = mapped_column(String(500), comment="媒体库图片地址")

    color: Mapped[Optional[str]] = mapped_column(String(50), comment="颜色")
    stock_quantity: Mapped[int] = mapped_column(
        Integer,
        CheckConstraint("stock_quantity >= 0", name="ck_products_stock_quantity"),
        nullable=False,
        default=0,
        comment="总库存（无尺码库存时使用）"
    )

    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL"),
        comment="分类ID"
    )

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
        comment="创建时间"
    )
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="更新时间"
    )

    __table_args__ = (
        Index("ix_products_category", "category_id"),
    )

    category: Mapped[Optional["Category"]] = relationship("Category", back_populates="products")
    size_stocks: Mapped[List["SizeStock"]] = relationship(
        "SizeStock",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="SizeStock.id",
    )
    campaigns: Mapped[List["Campaign"]] = relationship(
        "Campaign", back_populates="product", cascade="all, delete-orphan"
    )


class SizeStock(Base):
    """商品尺码库存表"""
    __tablename__ = "product_size_stocks"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        comment="商品ID"
    )
    size: Mapped[str] = mapped_column(String(50), nullable=False, comment="尺码")
    quantity: Mapped[int] = mapped_column(
        Integer,
        CheckConstraint("quantity >= 0", name="ck_size_stocks_quantity"),
        nullable=False,
        default=0,
        comment="可售数量"
    )

    __table_args__ = (
        UniqueConstraint("product_id", "size", name="uq_size_stocks_product_size"),
    )

    product: Mapped["Product"] = relationship("Product", back_populates="size_stocks")


class Campaign(Base):
    """促销活动表（活动期内以活动价出售）"""
    __tablename__ = "campaigns"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    title: Mapped[Optional[str]] = mapped_column(String(255), comment="活动标题")
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        comment="商品ID"
    )
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, comment="活动价")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        Index("ix_campaigns_product_active", "product_id", "is_active"),
    )

    product: Mapped["Product"] = relationship("Product", back_populates="campaigns")
