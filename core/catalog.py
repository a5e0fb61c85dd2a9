"""
Catalog store: persisted product records.

Pure data access. The only rules are field validation on write and
existence checks on lookup.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import structlog
from sqlalchemy import func, select

from core.exceptions import NotFoundError, ValidationError
from core.validation import require_text, to_money, to_whole_number
from database import Database, Product
from database.models import utcnow

logger = structlog.get_logger(__name__)

SAMPLE_PRODUCTS: List[Dict[str, Any]] = [
    {
        "title": "Fresh Broiler Chicken",
        "description": "Freshly processed broiler chicken, perfect for roasting or frying",
        "category": "broiler",
        "price": Decimal("1200"),
        "quantity": 50,
        "images": [
            "https://images.unsplash.com/photo-1564759224907-65b945ff0e84?auto=format&fit=crop&w=500&q=80"
        ],
    },
    {
        "title": "Kienyeji Chicken",
        "description": "Free-range indigenous chicken, naturally raised",
        "category": "kienyeji",
        "price": Decimal("2500"),
        "quantity": 30,
        "images": [
            "https://images.unsplash.com/photo-1564759224907-65b945ff0e84?auto=format&fit=crop&w=500&q=80"
        ],
    },
    {
        "title": "Fresh Eggs (Tray)",
        "description": "30 fresh eggs from free-range chickens",
        "category": "eggs",
        "price": Decimal("800"),
        "quantity": 100,
        "images": [
            "https://images.unsplash.com/photo-1582722872445-44dc5f7e3c8f?auto=format&fit=crop&w=500&q=80"
        ],
    },
    {
        "title": "Whole Turkey",
        "description": "Large whole turkey for special occasions",
        "category": "other",
        "price": Decimal("4500"),
        "quantity": 10,
        "images": [
            "https://images.unsplash.com/photo-1564759224907-65b945ff0e84?auto=format&fit=crop&w=500&q=80"
        ],
    },
]


class CatalogStore:
    """
    Product persistence.

    Listing contract: the public listing only returns available products,
    newest first. Admin callers can pass available_only=False.
    """

    def __init__(self, database: Database):
        self.database = database

    @staticmethod
    def _validate_product(
        title: Optional[str],
        description: Optional[str],
        category: Optional[str],
        price: Any,
        quantity: Any,
        images: Optional[Sequence[str]],
    ) -> Dict[str, Any]:
        """
        Validate and normalise product fields.

        Raises:
            ValidationError: If a required field is missing or out of range
        """
        fields = {
            "title": require_text("title", title),
            "description": require_text("description", description),
            "category": require_text("category", category).lower(),
        }

        if price is None:
            raise ValidationError("Missing required field: price")
        fields["price"] = to_money("price", price)
        if fields["price"] <= 0:
            raise ValidationError("price must be positive")

        if quantity is None:
            raise ValidationError("Missing required field: quantity")
        fields["quantity"] = to_whole_number("quantity", quantity)
        if fields["quantity"] < 0:
            raise ValidationError("quantity cannot be negative")

        fields["images"] = [str(image) for image in (images or [])]
        return fields

    async def list_products(self, available_only: bool = True) -> List[Product]:
        stmt = select(Product).order_by(Product.created_at.desc(), Product.id)
        if available_only:
            stmt = stmt.where(Product.available.is_(True))

        async with self.database.transaction() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def get_product(self, product_id: str) -> Product:
        """
        Get a product by ID.

        Raises:
            NotFoundError: If no product has this ID
        """
        async with self.database.transaction() as db:
            product = await db.get(Product, product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", user_message="Product not found")
        return product

    async def create_product(
        self,
        title: Optional[str],
        description: Optional[str],
        category: Optional[str],
        price: Any,
        quantity: Any,
        available: bool = True,
        images: Optional[Sequence[str]] = None,
    ) -> Product:
        """
        Create a product with a fresh ID.

        Args:
            title: Display title
            description: Product description
            category: Category tag (broiler, kienyeji, eggs, other, ...)
            price: Unit price, must be positive
            quantity: Quantity on hand, must not be negative
            available: Listed publicly (defaults to True)
            images: Ordered image URLs (defaults to none)

        Returns:
            Product: The persisted product

        Raises:
            ValidationError: If a required field is missing or invalid
        """
        fields = self._validate_product(title, description, category, price, quantity, images)
        now = utcnow()
        product = Product(available=bool(available), created_at=now, updated_at=now, **fields)

        async with self.database.transaction() as db:
            db.add(product)

        logger.info(
            "product_created",
            product_id=product.id,
            category=product.category,
            price=str(product.price),
        )
        return product

    async def update_product(
        self,
        product_id: str,
        title: Optional[str],
        description: Optional[str],
        category: Optional[str],
        price: Any,
        quantity: Any,
        available: bool = True,
        images: Optional[Sequence[str]] = None,
    ) -> Product:
        """
        Replace every field of an existing product.

        Raises:
            ValidationError: If a required field is missing or invalid
            NotFoundError: If no product has this ID
        """
        fields = self._validate_product(title, description, category, price, quantity, images)

        async with self.database.transaction() as db:
            product = await db.get(Product, product_id, with_for_update=True)
            if product is None:
                raise NotFoundError(
                    f"Product {product_id} not found", user_message="Product not found"
                )
            for name, value in fields.items():
                setattr(product, name, value)
            product.available = bool(available)
            product.updated_at = utcnow()

        logger.info("product_updated", product_id=product_id)
        return product

    async def delete_product(self, product_id: str) -> None:
        """
        Permanently remove a product.

        Raises:
            NotFoundError: If no product has this ID
        """
        async with self.database.transaction() as db:
            product = await db.get(Product, product_id)
            if product is None:
                raise NotFoundError(
                    f"Product {product_id} not found", user_message="Product not found"
                )
            await db.delete(product)

        logger.info("product_deleted", product_id=product_id)

    async def count_products(self) -> int:
        async with self.database.transaction() as db:
            return int(await db.scalar(select(func.count()).select_from(Product)) or 0)

    async def seed_sample_products(self) -> int:
        """
        Insert the sample products when the catalog is empty.

        Returns:
            int: Number of products inserted
        """
        async with self.database.transaction() as db:
            existing = await db.scalar(select(func.count()).select_from(Product))
            if existing:
                return 0
            now = utcnow()
            for sample in SAMPLE_PRODUCTS:
                fields = dict(sample, images=list(sample["images"]))
                db.add(Product(available=True, created_at=now, updated_at=now, **fields))

        logger.info("sample_products_seeded", count=len(SAMPLE_PRODUCTS))
        return len(SAMPLE_PRODUCTS)
