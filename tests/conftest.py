"""
Pytest 配置和 fixtures
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from sf_core.app import create_app, install_services
from sf_core.config import Settings
from sf_core.database import DatabaseManager, set_db_manager
from sf_core.models import Order, Product, SizeStock
from sf_core.services import InMemoryMarkerStore, build_order_service
from sf_core.tasks import TASK_FUNCTIONS, ScheduledTask
from sf_core.utils.errors import NotificationError


class FakeClock:
    """可手动推进的时钟"""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class ManualTaskQueue:
    """虚拟时间任务队列：advance() 推进时钟并按到期顺序执行任务"""

    def __init__(self, clock: FakeClock, functions: Iterable[Callable]):
        self.clock = clock
        self.functions = {func.__name__: func for func in functions}
        self.ctx: Dict[str, Any] = {}
        self.tasks: List[ScheduledTask] = []
        self.results: List[Any] = []

    async def schedule(self, delay_seconds: float, name: str, **kwargs: Any) -> ScheduledTask:
        task = ScheduledTask(
            task_id=f"{name}:{uuid.uuid4().hex}",
            name=name,
            run_at=self.clock.now() + timedelta(seconds=delay_seconds),
            kwargs=kwargs,
        )
        self.tasks.append(task)
        return task

    async def cancel(self, task: ScheduledTask) -> bool:
        if task.done or task.cancelled:
            return False
        task.cancelled = True
        return True

    @property
    def pending(self) -> List[ScheduledTask]:
        return [t for t in self.tasks if not t.done and not t.cancelled]

    async def advance(self, seconds: float) -> None:
        target = self.clock.now() + timedelta(seconds=seconds)
        while True:
            due = sorted((t for t in self.pending if t.run_at <= target), key=lambda t: t.run_at)
            if not due:
                break
            task = due[0]
            if task.run_at > self.clock.current:
                self.clock.current = task.run_at
            task.done = True
            func = self.functions[task.name]
            self.results.append(await func(dict(self.ctx, job_id=task.task_id), **task.kwargs))
        self.clock.current = target


class RecordingDispatcher:
    """记录所有通知调用"""

    def __init__(self):
        self.calls: List[Tuple[str, tuple]] = []

    def named(self, name: str) -> List[tuple]:
        return [args for call_name, args in self.calls if call_name == name]

    async def send_order_placed(self, order: Order) -> None:
        self.calls.append(("send_order_placed", (order,)))

    async def send_order_placed_admin(self, order: Order) -> None:
        self.calls.append(("send_order_placed_admin", (order,)))

    async def send_multi_order_placed(self, orders: Sequence[Order], total: Decimal) -> None:
        self.calls.append(("send_multi_order_placed", (list(orders), total)))

    async def send_multi_order_placed_admin(self, orders: Sequence[Order], total: Decimal) -> None:
        self.calls.append(("send_multi_order_placed_admin", (list(orders), total)))

    async def send_status_updated(self, order: Order, from_status: str, to_status: str) -> None:
        self.calls.append(("send_status_updated", (order, from_status, to_status)))


class FailingDispatcher(RecordingDispatcher):
    """每次发送都失败（仍记录调用）"""

    async def send_order_placed(self, order):
        await super().send_order_placed(order)
        raise NotificationError(detail="mail transport down")

    async def send_order_placed_admin(self, order):
        await super().send_order_placed_admin(order)
        raise NotificationError(detail="mail transport down")

    async def send_multi_order_placed(self, orders, total):
        await super().send_multi_order_placed(orders, total)
        raise NotificationError(detail="mail transport down")

    async def send_multi_order_placed_admin(self, orders, total):
        await super().send_multi_order_placed_admin(orders, total)
        raise NotificationError(detail="mail transport down")

    async def send_status_updated(self, order, from_status, to_status):
        await super().send_status_updated(order, from_status, to_status)
        raise RuntimeError("unexpected mail failure")


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        database_url_override=f"sqlite+aiosqlite:///{tmp_path / 'storefront_test.db'}",
        redis_enabled=False,
        log_level="WARNING",
        log_format="text",
        mail_api_url=None,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings_overrides() -> Dict[str, Any]:
    """单个测试可覆盖此 fixture 修改配置"""
    return {}


@pytest.fixture
def settings(tmp_path, settings_overrides) -> Settings:
    return make_settings(tmp_path, **settings_overrides)


@pytest_asyncio.fixture
async def db_manager(settings):
    """每个测试使用独立的 SQLite 文件数据库"""
    manager = DatabaseManager(settings)
    await manager.create_tables()
    set_db_manager(manager)

    yield manager

    set_db_manager(None)
    await manager.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def task_queue(clock) -> ManualTaskQueue:
    return ManualTaskQueue(clock, TASK_FUNCTIONS)


@pytest.fixture
def markers(clock) -> InMemoryMarkerStore:
    return InMemoryMarkerStore(clock)


@pytest.fixture
def mail_failures() -> bool:
    """覆盖为 True 时所有通知发送都失败"""
    return False


@pytest.fixture
def dispatcher(mail_failures) -> RecordingDispatcher:
    return FailingDispatcher() if mail_failures else RecordingDispatcher()


@pytest.fixture
def order_service(settings, db_manager, dispatcher, markers, task_queue, clock):
    service = build_order_service(settings, db_manager, dispatcher, markers, task_queue, clock)
    task_queue.ctx["batch_correlator"] = service.correlator
    return service


@pytest_asyncio.fixture
async def client(settings, order_service):
    """不经过 lifespan 的测试客户端，服务由 fixture 注入"""
    app = create_app(settings)
    install_services(app, order_service)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def api_prefix(settings) -> str:
    return settings.api_prefix


@pytest.fixture
def create_product(db_manager):
    """创建商品；sizes 为 {尺码: 数量}，为空时使用总库存"""

    async def _create(
        name: str = "Sneaker",
        price: str = "49.90",
        sizes: Optional[Dict[str, int]] = None,
        stock_quantity: int = 0,
        **fields: Any
    ) -> Product:
        async with db_manager.get_transaction() as session:
            product = Product(
                name=name,
                price=Decimal(price),
                stock_quantity=stock_quantity,
                **fields
            )
            for size, quantity in (sizes or {}).items():
                product.size_stocks.append(SizeStock(size=size, quantity=quantity))
            session.add(product)
            await session.flush()
            return product

    return _create


@pytest.fixture
def order_data() -> Callable[..., Dict[str, Any]]:
    """下单请求数据"""

    def _data(product_id: int, **overrides: Any) -> Dict[str, Any]:
        data = {
            "customer_full_name": "Arta Krasniqi",
            "customer_email": "a@x.com",
            "customer_phone": "+38344123456",
            "customer_address": "Rruga Agim Ramadani 12",
            "customer_city": "Prishtina",
            "customer_country": "kosovo",
            "product_id": product_id,
            "product_price": "49.90",
            "product_size": None,
            "product_color": None,
            "quantity": 1,
            "total_amount": "52.30",
            "shipping_fee": "2.40",
            "notes": None,
        }
        data.update(overrides)
        return data

    return _data


@pytest.fixture
def size_quantity(db_manager):
    """读取某尺码的当前库存"""

    async def _quantity(product_id: int, size: str) -> int:
        async with db_manager.get_session() as session:
            stmt = select(SizeStock.quantity).where(SizeStock.product_id == product_id, SizeStock.size == size)
            return (await session.execute(stmt)).scalar_one()

    return _quantity


@pytest.fixture
def product_stock(db_manager):
    """读取商品总库存字段"""

    async def _stock(product_id: int) -> int:
        async with db_manager.get_session() as session:
            stmt = select(Product.stock_quantity).where(Product.id == product_id)
            return (await session.execute(stmt)).scalar_one()

    return _stock


@pytest.fixture
def order_count(db_manager):
    """当前订单总数"""

    async def _count() -> int:
        async with db_manager.get_session() as session:
            return (await session.execute(select(func.count(Order.id)))).scalar_one()

    return _count
