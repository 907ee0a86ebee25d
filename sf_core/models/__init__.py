"""
Storefront 数据模型包
"""
from .base import Base
from .catalog import Category, Product, SizeStock, Campaign
from .orders import (
    Order, OrderStatus, Country,
    STATUS_TIMESTAMP_FIELDS, ORDER_STATUS_TRANSITIONS,
)

__all__ = [
    "Base",
    "Category",
    "Product",
    "SizeStock",
    "Campaign",
    "Order",
    "OrderStatus",
    "Country",
    "STATUS_TIMESTAMP_FIELDS",
    "ORDER_STATUS_TRANSITIONS",
]
