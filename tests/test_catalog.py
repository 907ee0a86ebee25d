"""
商品目录与计价测试
"""
from datetime import date, timedelta
from decimal import Decimal

import pytest

from sf_core.database import DatabaseManager
from sf_core.models import Campaign, Product, SizeStock
from sf_core.services import CatalogReader
from sf_core.services.pricing import quote, shipping_fee_for


@pytest.fixture
def catalog(settings) -> CatalogReader:
    return CatalogReader(DatabaseManager(settings), settings)


class TestProductImage:

    def test_prefers_media_url(self, catalog):
        product = Product(name="Boot", price=Decimal("10"), media_url="/media/12/boot.webp", image="old/boot.jpg")
        assert catalog.resolve_product_image(product) == "/media/12/boot.webp"

    def test_stored_path_gets_leading_slash(self, catalog):
        product = Product(name="Boot", price=Decimal("10"), image="products/boot.jpg")
        assert catalog.resolve_product_image(product) == "/products/boot.jpg"

    def test_absolute_url_reduced_to_path(self, catalog):
        product = Product(name="Boot", price=Decimal("10"), media_url="https://cdn.example.com/media/boot.webp")
        assert catalog.resolve_product_image(product) == "/media/boot.webp"

    def test_default_image(self, catalog, settings):
        product = Product(name="Boot", price=Decimal("10"))
        assert catalog.resolve_product_image(product) == settings.default_product_image


class TestStockSummary:

    def test_per_size_total(self, catalog):
        product = Product(name="Boot", price=Decimal("10"), stock_quantity=99)
        product.size_stocks = [SizeStock(size="40", quantity=2), SizeStock(size="41", quantity=0)]

        assert catalog.total_stock(product) == 2
        assert catalog.size_availability(product)["41"]["available"] is False

    def test_legacy_total(self, catalog):
        product = Product(name="Boot", price=Decimal("10"), stock_quantity=7)
        product.size_stocks = []

        assert catalog.total_stock(product) == 7

    @pytest.mark.parametrize("total,expected", [(0, "out of stock"), (10, "low stock"), (11, "in stock")])
    def test_stock_status(self, catalog, total, expected):
        assert catalog.stock_status(total) == expected


class TestCampaignPrice:

    async def test_active_campaign(self, catalog, db_manager, create_product):
        product = await create_product(price="30.00", stock_quantity=3)
        today = date(2026, 3, 2)
        async with db_manager.get_transaction() as session:
            session.add_all([
                Campaign(product_id=product.id, price=Decimal("19.99"), is_active=True,
                         start_date=today - timedelta(days=1), end_date=today + timedelta(days=1)),
                Campaign(product_id=product.id, price=Decimal("9.99"), is_active=False,
                         start_date=today, end_date=today),
            ])

        async with db_manager.get_session() as session:
            assert await catalog.active_campaign_price(session, product.id, today) == Decimal("19.99")
            assert await catalog.active_campaign_price(session, product.id, today + timedelta(days=5)) is None


class TestPricing:

    def test_shipping_fee_per_country(self, settings):
        assert shipping_fee_for("kosovo", settings) == Decimal("2.40")
        assert shipping_fee_for("albania", settings) == Decimal("5.00")
        assert shipping_fee_for("atlantis", settings) == settings.default_shipping_fee

    def test_campaign_price_overrides_list_price(self, settings):
        price = quote(Decimal("30.00"), 2, "kosovo", campaign_price=Decimal("19.99"), settings=settings)

        assert price.unit_price == Decimal("19.99")
        assert price.shipping_fee == Decimal("2.40")
        assert price.total_amount == Decimal("42.38")
