"""
Storefront 服务层
"""
from typing import Optional

from sf_core.config import Settings
from sf_core.database import DatabaseManager
from sf_core.tasks.queue import DeferredTaskQueue
from sf_core.utils.clock import Clock
from .base import BaseService, RepositoryMixin
from .batch_correlator import BatchCorrelator, BatchDecision
from .catalog import CatalogReader
from .inventory import InventoryLedger, Reservation
from .markers import MarkerStore, RedisMarkerStore, InMemoryMarkerStore
from .notifications import (
    NotificationDispatcher, MailDispatcher, HttpMailDispatcher, LogMailDispatcher,
    create_dispatcher, send_safely,
)
from .orders import OrderService, PlacedOrder, StatusTransition
from .pricing import PriceQuote, quote


def build_order_service(
    settings: Settings,
    db_manager: DatabaseManager,
    dispatcher: NotificationDispatcher,
    markers: MarkerStore,
    task_queue: DeferredTaskQueue,
    clock: Optional[Clock] = None
) -> OrderService:
    """组装下单流程使用的服务"""
    catalog = CatalogReader(db_manager, settings)
    correlator = BatchCorrelator(
        dispatcher=dispatcher,
        markers=markers,
        task_queue=task_queue,
        clock=clock,
        settings=settings,
        db_manager=db_manager,
    )
    return OrderService(
        dispatcher=dispatcher,
        correlator=correlator,
        inventory=InventoryLedger(db_manager),
        catalog=catalog,
        clock=clock,
        settings=settings,
        db_manager=db_manager,
    )


__all__ = [
    "BaseService",
    "RepositoryMixin",
    "BatchCorrelator",
    "BatchDecision",
    "CatalogReader",
    "InventoryLedger",
    "Reservation",
    "MarkerStore",
    "RedisMarkerStore",
    "InMemoryMarkerStore",
    "NotificationDispatcher",
    "MailDispatcher",
    "HttpMailDispatcher",
    "LogMailDispatcher",
    "create_dispatcher",
    "send_safely",
    "OrderService",
    "PlacedOrder",
    "StatusTransition",
    "PriceQuote",
    "quote",
    "build_order_service",
]
