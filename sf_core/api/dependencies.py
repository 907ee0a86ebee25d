"""
依赖注入：服务实例在应用启动时创建并挂在 app.state 上
"""
from fastapi import Request

from sf_core.services.catalog import CatalogReader
from sf_core.services.orders import OrderService


def get_order_service(request: Request) -> OrderService:
    return request.app.state.order_service


def get_catalog_reader(request: Request) -> CatalogReader:
    return request.app.state.catalog_reader
