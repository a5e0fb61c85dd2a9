"""
Order ledger: persisted customer orders and their status state machine.

Orders are created pending and unverified. Status changes go through the
transition table in core.status; confirming an order stamps its estimated
delivery time.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import NotFoundError, ValidationError
from core.identifiers import generate_order_id
from core.status import OrderStatus, parse_order_status
from core.validation import (
    require_text,
    to_coordinate,
    to_money,
    to_whole_number,
    validate_email,
)
from database import Database, Order, Product
from database.models import utcnow

logger = structlog.get_logger(__name__)

DEFAULT_ETA_MINUTES = 45


def _item_field(item: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if item.get(name) is not None:
            return item[name]
    return None


class OrderLedger:
    """
    Customer order persistence and status transitions.

    Total policy: the subtotal is computed from catalog prices at checkout,
    and the submitted total must equal subtotal + delivery fee.
    """

    def __init__(
        self,
        database: Database,
        default_delivery_fee: Decimal = Decimal("200"),
        eta_minutes: int = DEFAULT_ETA_MINUTES,
    ):
        """
        Initialize the order ledger.

        Args:
            database: Database handle
            default_delivery_fee: Fee used when the client sends none
            eta_minutes: Minutes from confirmation to estimated delivery
        """
        self.database = database
        self.default_delivery_fee = default_delivery_fee
        self.eta_minutes = eta_minutes

    @staticmethod
    def _validate_customer(
        customer_name: Optional[str],
        email: Optional[str],
        phone: Optional[str],
        location: Optional[str],
        items: Optional[Sequence[Mapping[str, Any]]],
        total: Any,
    ) -> Dict[str, Any]:
        """
        Check the fields every order needs.

        Raises:
            ValidationError: If a required field is missing or malformed
        """
        missing = [
            name
            for name, value in (
                ("customerName", customer_name),
                ("email", email),
                ("phone", phone),
                ("location", location),
                ("total", total),
            )
            if value is None or (isinstance(value, str) and not value.strip())
        ]
        if not items:
            missing.append("items")
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        return {
            "customer_name": require_text("customerName", customer_name),
            "email": validate_email(require_text("email", email)),
            "phone": require_text("phone", phone),
            "location": require_text("location", location),
        }

    @staticmethod
    async def _snapshot_items(
        db: AsyncSession, items: Sequence[Mapping[str, Any]]
    ) -> List[Dict[str, Any]]:
        """
        Resolve line items against the catalog and freeze title and price.

        Raises:
            ValidationError: If a product is unknown, unavailable or short of stock
        """
        snapshot: List[Dict[str, Any]] = []
        for position, item in enumerate(items):
            product_id = _item_field(item, "product_id", "productId", "id")
            if not product_id:
                raise ValidationError(f"items[{position}]: missing productId")

            raw_quantity = _item_field(item, "quantity")
            quantity = to_whole_number(
                f"items[{position}].quantity", 1 if raw_quantity is None else raw_quantity
            )
            if quantity < 1:
                raise ValidationError(f"items[{position}]: quantity must be at least 1")

            product = await db.get(Product, str(product_id))
            if product is None:
                raise ValidationError(f"items[{position}]: unknown product {product_id}")
            if not product.available:
                raise ValidationError(f"items[{position}]: {product.title} is not available")
            if quantity > product.quantity:
                raise ValidationError(
                    f"items[{position}]: only {product.quantity} of {product.title} in stock"
                )

            snapshot.append(
                {
                    "product_id": product.id,
                    "title": product.title,
                    "quantity": quantity,
                    "unit_price": str(product.price),
                }
            )
        return snapshot

    async def create_order(
        self,
        customer_name: Optional[str],
        email: Optional[str],
        phone: Optional[str],
        location: Optional[str],
        items: Optional[Sequence[Mapping[str, Any]]],
        total: Any,
        subtotal: Any = None,
        delivery_fee: Any = None,
        latitude: Any = None,
        longitude: Any = None,
        delivery_notes: Optional[str] = None,
    ) -> Order:
        """
        Create a pending, unverified order.

        Flow:
        1. Validate required customer fields
        2. Resolve items against the catalog and snapshot prices
        3. Check subtotal and total against the computed amounts
        4. Persist with a fresh order ID

        Returns:
            Order: The persisted order

        Raises:
            ValidationError: If input is missing, malformed or inconsistent
        """
        customer = self._validate_customer(customer_name, email, phone, location, items, total)
        total_amount = to_money("total", total)
        fee = (
            to_money("deliveryFee", delivery_fee)
            if delivery_fee is not None
            else self.default_delivery_fee
        )
        if fee < 0:
            raise ValidationError("deliveryFee cannot be negative")
        lat = to_coordinate("latitude", latitude, 90) if latitude is not None else None
        lng = to_coordinate("longitude", longitude, 180) if longitude is not None else None

        now = utcnow()
        async with self.database.transaction() as db:
            line_items = await self._snapshot_items(db, items or [])
            computed_subtotal = sum(
                (Decimal(line["unit_price"]) * line["quantity"] for line in line_items),
                Decimal("0"),
            )

            if subtotal is not None and to_money("subtotal", subtotal) != computed_subtotal:
                raise ValidationError(
                    f"subtotal {subtotal} does not match item prices ({computed_subtotal})"
                )
            if total_amount != computed_subtotal + fee:
                raise ValidationError(
                    f"total {total_amount} must equal subtotal {computed_subtotal} "
                    f"plus delivery fee {fee}"
                )

            order = Order(
                id=generate_order_id(),
                items=line_items,
                subtotal=computed_subtotal,
                delivery_fee=fee,
                total=total_amount,
                latitude=lat,
                longitude=lng,
                delivery_notes=delivery_notes or None,
                status=OrderStatus.PENDING.value,
                payment_verified=False,
                estimated_delivery=None,
                created_at=now,
                updated_at=now,
                **customer,
            )
            db.add(order)

        logger.info(
            "order_created",
            order_id=order.id,
            total=str(order.total),
            item_count=len(line_items),
        )
        return order

    async def list_orders(self) -> List[Order]:
        """List all orders, most recent first."""
        stmt = select(Order).order_by(Order.created_at.desc(), Order.id.desc())
        async with self.database.transaction() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def get_order(self, order_id: str) -> Order:
        """
        Get an order by ID.

        Raises:
            NotFoundError: If no order has this ID
        """
        async with self.database.transaction() as db:
            order = await db.get(Order, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", user_message="Order not found")
        return order

    @staticmethod
    async def load_for_update(db: AsyncSession, order_id: str) -> Order:
        """
        Load an order with a row lock inside an open transaction.

        Raises:
            NotFoundError: If no order has this ID
        """
        order = await db.get(Order, order_id, with_for_update=True, populate_existing=True)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", user_message="Order not found")
        return order

    async def update_status(
        self, order_id: str, status: Any, now: Optional[datetime] = None
    ) -> Order:
        """
        Move an order to a new status.

        Setting the status it already has is a no-op. Confirming sets
        estimated_delivery to now + eta_minutes; other moves keep it.

        Args:
            order_id: Order ID
            status: Target status (pending, confirmed, delivered, cancelled)
            now: Time of the request (defaults to current UTC time)

        Returns:
            Order: The updated order

        Raises:
            ValidationError: If the status is unknown or the move is not allowed
            NotFoundError: If no order has this ID
        """
        target = parse_order_status(status)
        now = now or utcnow()

        async with self.database.transaction() as db:
            order = await self.load_for_update(db, order_id)
            previous = order.status
            changed = order.transition_to(target, now, self.eta_minutes)

        if changed:
            logger.info(
                "order_status_updated",
                order_id=order_id,
                from_status=previous,
                to_status=target.value,
            )
        else:
            logger.info("order_status_unchanged", order_id=order_id, status=target.value)
        return order
