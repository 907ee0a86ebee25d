"""
库存台账服务
按 (商品, 尺码) 预留和归还库存，保证并发下单不超卖
"""
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select, update as sql_update
from sqlalchemy.ext.asyncio import AsyncSession

from sf_core.models import Product, SizeStock
from sf_core.utils.errors import (
    NotFoundError, ValidationError, SizeRequiredError,
    SizeUnavailableError, InsufficientStockError
)
from .base import BaseService


@dataclass
class Reservation:
    """一次库存预留的结果"""
    product_id: int
    size: Optional[str]
    quantity: int
    remaining: int
    per_size: bool


class InventoryLedger(BaseService):
    """库存台账

    reserve/release 必须在调用方的事务内执行：先对库存行加排他锁再读数量，
    扣减与订单写入一起提交或回滚。
    """

    async def reserve(
        self,
        session: AsyncSession,
        product_id: int,
        size: Optional[str],
        quantity: int
    ) -> Reservation:
        """预留库存，返回扣减后的剩余数量"""
        if quantity < 1:
            raise ValidationError(
                code="INVALID_QUANTITY",
                detail=f"Quantity must be at least 1, got: {quantity}",
                errors={"quantity": ["The quantity must be at least 1."]},
            )

        sizes = await self.get_sizes(session, product_id)
        if sizes:
            return await self._reserve_size(session, product_id, sizes, size, quantity)
        return await self._reserve_total(session, product_id, quantity)

    async def release(
        self,
        session: AsyncSession,
        product_id: int,
        size: Optional[str],
        quantity: int
    ) -> int:
        """归还库存，返回归还后的数量"""
        if quantity < 1:
            raise ValidationError(
                code="INVALID_QUANTITY",
                detail=f"Quantity must be at least 1, got: {quantity}",
            )

        sizes = await self.get_sizes(session, product_id)
        if sizes:
            if not size:
                raise SizeRequiredError(available_sizes=sizes)
            stock = await self._lock_size_stock(session, product_id, size)
            if stock is None:
                raise SizeUnavailableError(requested_size=size, available_sizes=sizes)
            stock.quantity += quantity
            await session.flush()
            remaining = stock.quantity
        else:
            product = await self._lock_product(session, product_id)
            product.stock_quantity += quantity
            await session.flush()
            remaining = product.stock_quantity

        self.logger.info(
            "Stock released",
            product_id=product_id,
            size=size,
            quantity=quantity,
            remaining=remaining,
        )
        return remaining

    async def reserve_stock(self, product_id: int, size: Optional[str], quantity: int) -> Reservation:
        """在独立事务中预留库存"""
        return await self.execute_with_transaction(self.reserve, product_id, size, quantity)

    async def release_stock(self, product_id: int, size: Optional[str], quantity: int) -> int:
        """在独立事务中归还库存"""
        return await self.execute_with_transaction(self.release, product_id, size, quantity)

    async def get_sizes(self, session: AsyncSession, product_id: int) -> List[str]:
        """商品的全部尺码（按录入顺序）"""
        stmt = (
            select(SizeStock.size)
            .where(SizeStock.product_id == product_id)
            .order_by(SizeStock.id)
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def _reserve_size(
        self,
        session: AsyncSession,
        product_id: int,
        sizes: List[str],
        size: Optional[str],
        quantity: int
    ) -> Reservation:
        """按尺码扣减"""
        if not size:
            self.logger.warning("Size required but not provided", product_id=product_id)
            raise SizeRequiredError(available_sizes=sizes)

        stock = await self._lock_size_stock(session, product_id, size)
        if stock is None:
            self.logger.warning(
                "Size not found",
                product_id=product_id,
                requested_size=size,
                available_sizes=sizes,
            )
            raise SizeUnavailableError(requested_size=size, available_sizes=sizes)

        if stock.quantity < quantity:
            raise InsufficientStockError(available=stock.quantity, requested=quantity, size=size)

        # 条件更新：即使数据库不支持行锁也不会减到负数
        stmt = (
            sql_update(SizeStock)
            .where(SizeStock.id == stock.id, SizeStock.quantity >= quantity)
            .values(quantity=SizeStock.quantity - quantity)
            .returning(SizeStock.quantity)
        )
        remaining = (await session.execute(stmt)).scalar_one_or_none()
        if remaining is None:
            await session.refresh(stock)
            raise InsufficientStockError(available=stock.quantity, requested=quantity, size=size)

        self.logger.info(
            "Size stock reserved",
            product_id=product_id,
            size=size,
            quantity=quantity,
            remaining=remaining,
        )
        return Reservation(product_id, size, quantity, remaining, per_size=True)

    async def _reserve_total(self, session: AsyncSession, product_id: int, quantity: int) -> Reservation:
        """无尺码库存的旧商品：扣减总库存"""
        product = await self._lock_product(session, product_id)

        if product.stock_quantity < quantity:
            raise InsufficientStockError(available=product.stock_quantity, requested=quantity)

        stmt = (
            sql_update(Product)
            .where(Product.id == product_id, Product.stock_quantity >= quantity)
            .values(stock_quantity=Product.stock_quantity - quantity)
            .returning(Product.stock_quantity)
        )
        remaining = (await session.execute(stmt)).scalar_one_or_none()
        if remaining is None:
            await session.refresh(product)
            raise InsufficientStockError(available=product.stock_quantity, requested=quantity)

        self.logger.info(
            "Total stock reserved",
            product_id=product_id,
            quantity=quantity,
            remaining=remaining,
        )
        return Reservation(product_id, None, quantity, remaining, per_size=False)

    async def _lock_size_stock(self, session: AsyncSession, product_id: int, size: str) -> Optional[SizeStock]:
        stmt = (
            select(SizeStock)
            .where(SizeStock.product_id == product_id, SizeStock.size == size)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def _lock_product(self, session: AsyncSession, product_id: int) -> Product:
        stmt = (
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        product = (await session.execute(stmt)).scalar_one_or_none()
        if product is None:
            raise NotFoundError(code="PRODUCT_NOT_FOUND", resource=f"Product {product_id}")
        return product
