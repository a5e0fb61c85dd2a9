"""
Tests for the catalog store.
"""
import asyncio
from decimal import Decimal

import pytest

from core.catalog import SAMPLE_PRODUCTS
from core.exceptions import NotFoundError, ValidationError


class TestCatalogStore:
    """Product create, read, update and delete."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_product_assigns_id_and_defaults(self, services, make_product) -> None:
        product = await make_product()

        assert len(product.id) == 36
        assert product.price == Decimal("1200.00")
        assert product.available is True
        assert product.images == []

        stored = await services.catalog.get_product(product.id)
        assert stored.title == "Fresh Broiler Chicken"
        assert stored.quantity == 50

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"title": ""},
            {"description": None},
            {"category": "   "},
            {"price": None},
            {"price": 0},
            {"price": "-5"},
            {"price": "abc"},
            {"quantity": None},
            {"quantity": -1},
            {"quantity": "2.5"},
            {"price": "100000000"},
            {"price": "1e30"},
            {"quantity": 2**31},
        ],
    )
    async def test_create_product_rejects_invalid_fields(
        self, services, make_product, overrides
    ) -> None:
        with pytest.raises(ValidationError):
            await make_product(**overrides)

        assert await services.catalog.count_products() == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_missing_product_is_not_found(self, services) -> None:
        with pytest.raises(NotFoundError):
            await services.catalog.get_product("does-not-exist")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_listing_shows_available_products_newest_first(
        self, services, make_product
    ) -> None:
        older = await make_product(title="Kienyeji Chicken")
        await asyncio.sleep(0.01)
        hidden = await make_product(title="Whole Turkey", available=False)
        await asyncio.sleep(0.01)
        newer = await make_product(title="Fresh Eggs (Tray)")

        public = await services.catalog.list_products()
        assert [p.id for p in public] == [newer.id, older.id]

        everything = await services.catalog.list_products(available_only=False)
        assert {p.id for p in everything} == {older.id, hidden.id, newer.id}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_update_replaces_every_field(self, services, make_product) -> None:
        product = await make_product()

        updated = await services.catalog.update_product(
            product.id,
            title="Broiler (Large)",
            description="Bigger bird",
            category="Broiler",
            price="1350.50",
            quantity=12,
            available=False,
            images=["https://example.com/a.jpg"],
        )

        assert updated.category == "broiler"
        stored = await services.catalog.get_product(product.id)
        assert stored.title == "Broiler (Large)"
        assert stored.price == Decimal("1350.50")
        assert stored.quantity == 12
        assert stored.available is False
        assert stored.images == ["https://example.com/a.jpg"]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_update_missing_product_is_not_found(self, services) -> None:
        with pytest.raises(NotFoundError):
            await services.catalog.update_product(
                "missing", "t", "d", "c", price=10, quantity=1
            )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delete_removes_product(self, services, make_product) -> None:
        product = await make_product()

        await services.catalog.delete_product(product.id)

        with pytest.raises(NotFoundError):
            await services.catalog.get_product(product.id)
        with pytest.raises(NotFoundError):
            await services.catalog.delete_product(product.id)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_seed_only_fills_empty_catalog(self, services, make_product) -> None:
        inserted = await services.catalog.seed_sample_products()
        assert inserted == len(SAMPLE_PRODUCTS)
        assert await services.catalog.count_products() == len(SAMPLE_PRODUCTS)

        assert await services.catalog.seed_sample_products() == 0
        assert await services.catalog.count_products() == len(SAMPLE_PRODUCTS)
