"""
商品目录读取服务
为下单流程提供商品、尺码库存、图片和活动价查询
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sf_core.config import Settings, get_settings
from sf_core.database import DatabaseManager
from sf_core.models import Campaign, Product
from sf_core.utils.errors import NotFoundError
from .base import BaseService


class CatalogReader(BaseService):
    """商品目录只读服务"""

    def __init__(self, db_manager: Optional[DatabaseManager] = None, settings: Optional[Settings] = None):
        super().__init__(db_manager)
        self.settings = settings or get_settings()

    async def find_product_with_size_stocks(self, session: AsyncSession, product_id: int) -> Optional[Product]:
        """加载商品及其尺码库存"""
        stmt = (
            select(Product)
            .where(Product.id == product_id)
            .options(selectinload(Product.size_stocks))
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def get_product(self, product_id: int) -> Product:
        """加载商品，不存在时抛出 NotFoundError"""
        product = await self.execute_with_session(self.find_product_with_size_stocks, product_id)
        if product is None:
            raise NotFoundError(code="PRODUCT_NOT_FOUND", resource=f"Product {product_id}")
        return product

    async def active_campaign_price(
        self,
        session: AsyncSession,
        product_id: int,
        today: date
    ) -> Optional[Decimal]:
        """当日有效的活动价"""
        stmt = (
            select(Campaign.price)
            .where(
                Campaign.product_id == product_id,
                Campaign.is_active.is_(True),
                Campaign.start_date <= today,
                Campaign.end_date >= today,
            )
            .order_by(Campaign.id)
            .limit(1)
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    def resolve_product_image(self, product: Product) -> str:
        """商品图片地址：优先媒体库地址，其次存储路径，最后默认图"""
        if product.media_url:
            return self._relative_url(product.media_url)
        if product.image:
            return self._relative_url(product.image)
        return self.settings.default_product_image

    def _relative_url(self, value: str) -> str:
        # 去掉站点域名，保证在任何域名下都能访问
        if self.settings.app_url and value.startswith(self.settings.app_url):
            value = value[len(self.settings.app_url):]
        parsed = urlparse(value)
        if parsed.scheme in ("http", "https"):
            value = parsed.path
        return "/" + value.lstrip("/")

    def total_stock(self, product: Product) -> int:
        if product.size_stocks:
            return sum(stock.quantity for stock in product.size_stocks)
        return product.stock_quantity

    def stock_status(self, total: int) -> str:
        if total <= 0:
            return "out of stock"
        if total <= self.settings.low_stock_threshold:
            return "low stock"
        return "in stock"

    def size_availability(self, product: Product) -> Dict[str, Dict[str, Any]]:
        """{尺码: {quantity, available, stock_status}}"""
        return {
            stock.size: {
                "quantity": stock.quantity,
                "available": stock.quantity > 0,
                "stock_status": self.stock_status(stock.quantity),
            }
            for stock in product.size_stocks
        }

    def product_summary(self, product: Product) -> Dict[str, Any]:
        """接口返回用的商品信息"""
        data = product.to_dict()
        total = self.total_stock(product)
        data.update({
            "image_url": self.resolve_product_image(product),
            "total_stock": total,
            "stock_status": self.stock_status(total),
            "size_stocks": self.size_availability(product),
        })
        return data
