"""
订单服务测试：创建、状态流转、查询
"""
import asyncio
import re
from datetime import timedelta
from decimal import Decimal

import pytest

from sf_core.models import OrderStatus
from sf_core.services import orders as orders_module
from sf_core.utils.errors import (
    InsufficientStockError, NotFoundError, SizeUnavailableError, ValidationError,
)

UNIQUE_ID_PATTERN = re.compile(r"^ORD-[A-Z0-9]{8}$")


class TestCreateOrder:

    async def test_creates_pending_cash_order(self, order_service, create_product, order_data, size_quantity):
        product = await create_product(sizes={"41": 5}, color="black", image="products/sneaker.jpg")

        result = await order_service.create_order(order_data(product.id, product_size="41", quantity=2))

        order = result.order
        assert UNIQUE_ID_PATTERN.match(order.unique_id)
        assert order.status == "pending"
        assert order.payment_method == "cash"
        assert order.product_name == "Sneaker"
        assert order.product_price == Decimal("49.90")
        assert order.product_image == "/products/sneaker.jpg"
        assert order.product_color == "black"
        assert order.total_amount == Decimal("52.30")
        assert order.confirmed_at is None
        assert result.product.id == product.id
        assert await size_quantity(product.id, "41") == 3

    async def test_failed_reservation_writes_no_order(
        self, order_service, create_product, order_data, order_count, size_quantity
    ):
        product = await create_product(sizes={"40": 0, "41": 5})
        before = await order_count()

        with pytest.raises(InsufficientStockError):
            await order_service.create_order(order_data(product.id, product_size="40"))
        with pytest.raises(SizeUnavailableError):
            await order_service.create_order(order_data(product.id, product_size="42"))

        assert await order_count() == before
        assert await size_quantity(product.id, "41") == 5

    async def test_unique_ids_do_not_collide(self, order_service, create_product, order_data):
        product = await create_product(stock_quantity=50)

        ids = set()
        for _ in range(20):
            result = await order_service.create_order(order_data(product.id))
            assert UNIQUE_ID_PATTERN.match(result.order.unique_id)
            ids.add(result.order.unique_id)

        assert len(ids) == 20

    async def test_unique_id_collision_is_retried(self, order_service, create_product, order_data, monkeypatch):
        product = await create_product(stock_quantity=5)
        generated = iter(["ORD-AAAAAAAA", "ORD-AAAAAAAA", "ORD-BBBBBBBB"])
        monkeypatch.setattr(orders_module, "generate_unique_id", lambda: next(generated))

        first = await order_service.create_order(order_data(product.id))
        second = await order_service.create_order(order_data(product.id))

        assert first.order.unique_id == "ORD-AAAAAAAA"
        assert second.order.unique_id == "ORD-BBBBBBBB"

    async def test_validation_errors_are_collected(self, order_service, create_product, order_data):
        product = await create_product(stock_quantity=5)

        with pytest.raises(ValidationError) as exc:
            await order_service.create_order(
                order_data(product.id, customer_country="serbia", quantity=101, total_amount="-1")
            )

        errors = exc.value.to_dict()["errors"]
        assert set(errors) == {"customer_country", "quantity", "total_amount"}

    async def test_missing_fields(self, order_service, create_product, order_data):
        product = await create_product(stock_quantity=5)

        with pytest.raises(ValidationError) as exc:
            await order_service.create_order(order_data(product.id, customer_email="", customer_city=None))

        assert exc.value.code == "MISSING_REQUIRED_FIELDS"
        assert set(exc.value.to_dict()["errors"]) == {"customer_email", "customer_city"}

    async def test_unknown_product_is_validation_error(self, order_service, order_data, order_count):
        with pytest.raises(ValidationError) as exc:
            await order_service.create_order(order_data(12345))

        assert "product_id" in exc.value.to_dict()["errors"]
        assert await order_count() == 0

    async def test_concurrent_orders_never_oversell(
        self, order_service, create_product, order_data, order_count, size_quantity
    ):
        product = await create_product(sizes={"41": 3})

        results = await asyncio.gather(
            *(order_service.create_order(order_data(product.id, product_size="41",
                                                    customer_email=f"c{i}@x.com"))
              for i in range(7)),
            return_exceptions=True,
        )

        assert sum(1 for r in results if not isinstance(r, Exception)) == 3
        assert all(isinstance(r, InsufficientStockError) for r in results if isinstance(r, Exception))
        assert await order_count() == 3
        assert await size_quantity(product.id, "41") == 0

    async def test_batch_id_is_stored(self, order_service, create_product, order_data):
        product = await create_product(stock_quantity=5)

        result = await order_service.create_order(order_data(product.id, batch_id="BATCH-1"))

        assert result.order.batch_id == "BATCH-1"


class TestNotificationIsolation:

    @pytest.fixture
    def mail_failures(self):
        return True

    async def test_order_committed_when_mail_fails(self, order_service, dispatcher, create_product, order_data,
                                                   order_count):
        product = await create_product(stock_quantity=5)

        result = await order_service.create_order(order_data(product.id))

        assert result.order.id is not None
        assert await order_count() == 1
        # 客户邮件失败后仍尝试发送管理员邮件
        assert [name for name, _ in dispatcher.calls] == ["send_order_placed", "send_order_placed_admin"]

    async def test_transition_committed_when_mail_fails(self, order_service, dispatcher, create_product,
                                                        order_data):
        product = await create_product(stock_quantity=5)
        created = await order_service.create_order(order_data(product.id))

        result = await order_service.transition_status(created.order.id, "confirmed")

        assert result.order.status == "confirmed"
        stored = await order_service.get_order(created.order.id)
        assert stored.order.status == "confirmed"
        assert len(dispatcher.named("send_status_updated")) == 1


class TestTransitionStatus:

    @pytest.fixture
    async def order(self, order_service, create_product, order_data):
        product = await create_product(sizes={"41": 5})
        result = await order_service.create_order(order_data(product.id, product_size="41", quantity=2))
        return result.order

    async def test_timestamp_set_once(self, order_service, order, clock, dispatcher):
        first = await order_service.transition_status(order.id, "shipped")
        shipped_at = first.order.shipped_at
        assert shipped_at == clock.now()

        clock.advance(60)
        second = await order_service.transition_status(order.id, "shipped")

        assert second.changed is False
        assert second.order.shipped_at == shipped_at
        assert len(dispatcher.named("send_status_updated")) == 1

    async def test_reentering_status_keeps_first_timestamp(self, order_service, order, clock):
        await order_service.transition_status(order.id, "confirmed")
        confirmed_at = clock.now()

        clock.advance(30)
        await order_service.transition_status(order.id, "pending")
        clock.advance(30)
        result = await order_service.transition_status(order.id, "confirmed")

        assert result.order.confirmed_at == confirmed_at
        assert result.order.updated_at == confirmed_at + timedelta(seconds=60)

    async def test_any_to_any_by_default(self, order_service, order, dispatcher):
        result = await order_service.transition_status(order.id, "delivered")

        assert result.order.status == "delivered"
        assert result.order.delivered_at is not None
        assert result.order.shipped_at is None
        assert dispatcher.named("send_status_updated")[-1][1:] == ("pending", "delivered")

    async def test_invalid_status_leaves_order_unchanged(self, order_service, order, dispatcher):
        with pytest.raises(ValidationError) as exc:
            await order_service.transition_status(order.id, "shipped-ish")

        assert exc.value.code == "INVALID_STATUS"
        stored = (await order_service.get_order(order.id)).order
        assert stored.status == "pending"
        assert stored.shipped_at is None
        assert dispatcher.named("send_status_updated") == []

    async def test_notes_replaced(self, order_service, order):
        result = await order_service.transition_status(order.id, "confirmed", notes="call before delivery")

        assert result.order.notes == "call before delivery"

    async def test_unknown_order(self, order_service, db_manager):
        with pytest.raises(NotFoundError):
            await order_service.transition_status(404, "confirmed")

    async def test_cancel_does_not_restock_by_default(self, order_service, order, size_quantity):
        await order_service.transition_status(order.id, "cancelled")

        assert await size_quantity(order.product_id, "41") == 3


class TestRestockOnCancel:

    @pytest.fixture
    def settings_overrides(self):
        return {"restock_on_cancel": True}

    async def test_cancel_releases_stock(self, order_service, create_product, order_data, size_quantity):
        product = await create_product(sizes={"41": 5})
        created = await order_service.create_order(order_data(product.id, product_size="41", quantity=2))

        await order_service.transition_status(created.order.id, "cancelled")
        await order_service.transition_status(created.order.id, "cancelled")

        assert await size_quantity(product.id, "41") == 5


class TestStatusGraph:

    @pytest.fixture
    def settings_overrides(self):
        return {"enforce_status_graph": True}

    async def test_disallowed_transition(self, order_service, create_product, order_data):
        product = await create_product(stock_quantity=5)
        created = await order_service.create_order(order_data(product.id))

        with pytest.raises(ValidationError) as exc:
            await order_service.transition_status(created.order.id, OrderStatus.DELIVERED.value)
        assert exc.value.code == "INVALID_TRANSITION"

        result = await order_service.transition_status(created.order.id, "confirmed")
        assert result.order.status == "confirmed"


class TestServerSidePricing:

    @pytest.fixture
    def settings_overrides(self):
        return {"server_side_pricing": True}

    async def test_total_recomputed(self, order_service, create_product, order_data):
        product = await create_product(price="20.00", stock_quantity=5)

        result = await order_service.create_order(
            order_data(product.id, quantity=2, customer_country="albania", product_price="1.00", total_amount="1.00")
        )

        assert result.order.product_price == Decimal("20.00")
        assert result.order.total_amount == Decimal("45.00")


class TestQueries:

    async def test_find_by_unique_id(self, order_service, create_product, order_data):
        product = await create_product(stock_quantity=5)
        created = await order_service.create_order(order_data(product.id))

        found = await order_service.find_by_unique_id(created.order.unique_id)

        assert found.order.id == created.order.id
        with pytest.raises(NotFoundError):
            await order_service.find_by_unique_id("ORD-NOPE0000")

    async def test_delete_does_not_restock(self, order_service, create_product, order_data, order_count,
                                           product_stock):
        product = await create_product(stock_quantity=5)
        created = await order_service.create_order(order_data(product.id))

        await order_service.delete_order(created.order.id)

        assert await order_count() == 0
        assert await product_stock(product.id) == 4
        with pytest.raises(NotFoundError):
            await order_service.delete_order(created.order.id)

    async def test_list_groups_batches(self, order_service, create_product, order_data, clock):
        product = await create_product(stock_quantity=20)
        for i in range(2):
            await order_service.create_order(order_data(product.id, batch_id="B-1", customer_email="b@x.com"))
            clock.advance(20)
        single = await order_service.create_order(order_data(product.id, customer_email="s@x.com"))

        page = await order_service.list_orders()

        assert page["total"] == 2
        assert page["per_page"] == 15
        first, second = page["data"]
        assert first["unique_id"] == single.order.unique_id
        assert first["is_batch"] is False
        assert second["is_batch"] is True
        assert second["unique_id"] == "B-1"
        assert len(second["orders"]) == 2
        assert second["total_amount"] == "104.60"

    async def test_list_filters_and_paginates(self, order_service, create_product, order_data, clock):
        product = await create_product(stock_quantity=40)
        for i in range(17):
            await order_service.create_order(order_data(product.id, customer_email=f"p{i}@x.com"))
            clock.advance(20)
        await order_service.create_order(order_data(product.id, customer_country="albania",
                                                    customer_full_name="Besa Hoxha"))

        page_two = await order_service.list_orders(page=2, country="kosovo")
        assert page_two["total"] == 17
        assert page_two["last_page"] == 2
        assert len(page_two["data"]) == 2
        assert page_two["from"] == 16

        found = await order_service.list_orders(search="besa")
        assert [row["customer_full_name"] for row in found["data"]] == ["Besa Hoxha"]
