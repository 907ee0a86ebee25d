"""
商品库存查询路由
"""
from fastapi import APIRouter, Depends

from sf_core.services.catalog import CatalogReader
from .dependencies import get_catalog_reader

router = APIRouter()


@router.get("/{product_id}/stock")
async def get_product_stock(
    product_id: int,
    catalog: CatalogReader = Depends(get_catalog_reader)
):
    """商品各尺码库存（结账页选尺码用）"""
    product = await catalog.get_product(product_id)
    total = catalog.total_stock(product)
    return {
        "product_id": product.id,
        "total_stock": total,
        "stock_status": catalog.stock_status(total),
        "has_sizes": bool(product.size_stocks),
        "sizes": catalog.size_availability(product),
    }
