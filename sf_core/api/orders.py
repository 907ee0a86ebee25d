"""
订单 API 路由
"""
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from sf_core.services.catalog import CatalogReader
from sf_core.services.orders import OrderService, PlacedOrder
from sf_core.utils.errors import StorefrontException
from sf_core.utils.logger import get_logger
from .dependencies import get_catalog_reader, get_order_service
from .models import CreateOrderRequest, UpdateOrderStatusRequest

router = APIRouter()
logger = get_logger(__name__)


def _order_payload(result: PlacedOrder, catalog: CatalogReader) -> Dict[str, Any]:
    return {
        "order": result.order.to_dict(),
        "product": catalog.product_summary(result.product) if result.product is not None else None,
    }


@router.post("", status_code=201)
async def create_order(
    request: Request,
    payload: CreateOrderRequest,
    orders_service: OrderService = Depends(get_order_service),
    catalog: CatalogReader = Depends(get_catalog_reader)
):
    """结账下单"""
    try:
        result = await orders_service.create_order(payload.model_dump())
    except StorefrontException as e:
        if e.status < 500:
            raise
        return _create_failed(request, e)
    except Exception as e:
        logger.error("Order creation failed", exc_info=True)
        return _create_failed(request, e)

    return {"message": "Order created successfully", **_order_payload(result, catalog)}


def _create_failed(request: Request, error: Exception) -> JSONResponse:
    debug = request.app.state.settings.api_debug
    return JSONResponse(
        status_code=500,
        content={
            "message": "Failed to create order",
            "error": str(error) if debug else "Internal server error",
        },
    )


@router.get("")
async def list_orders(
    search: Optional[str] = Query(None, description="订单号/批次号/姓名/邮箱/商品名"),
    status: Optional[str] = Query(None),
    country: Optional[str] = Query(None),
    payment_method: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    sort: str = Query("created_at"),
    direction: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(1, ge=1),
    orders_service: OrderService = Depends(get_order_service)
):
    """后台订单列表（同批次订单合并显示）"""
    return await orders_service.list_orders(
        search=search,
        status=status,
        country=country,
        payment_method=payment_method,
        date_from=date_from,
        date_to=date_to,
        sort=sort,
        direction=direction,
        page=page,
    )


@router.get("/lookup/{unique_id}")
async def lookup_order(
    unique_id: str,
    orders_service: OrderService = Depends(get_order_service),
    catalog: CatalogReader = Depends(get_catalog_reader)
):
    """按对外订单号查询（下单成功页）"""
    result = await orders_service.find_by_unique_id(unique_id)
    return _order_payload(result, catalog)


@router.get("/{order_id}")
async def get_order(
    order_id: int,
    orders_service: OrderService = Depends(get_order_service),
    catalog: CatalogReader = Depends(get_catalog_reader)
):
    result = await orders_service.get_order(order_id)
    return _order_payload(result, catalog)


@router.put("/{order_id}")
async def update_order_status(
    order_id: int,
    payload: UpdateOrderStatusRequest,
    orders_service: OrderService = Depends(get_order_service),
    catalog: CatalogReader = Depends(get_catalog_reader)
):
    """修改订单状态；通知结果不影响响应"""
    result = await orders_service.transition_status(order_id, payload.status, payload.notes)
    return {
        "message": "Order status updated successfully",
        "from_status": result.from_status,
        **_order_payload(result, catalog),
    }


@router.delete("/{order_id}")
async def delete_order(
    order_id: int,
    orders_service: OrderService = Depends(get_order_service)
):
    await orders_service.delete_order(order_id)
    return {"message": "Order deleted successfully"}
