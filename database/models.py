"""SQLAlchemy database models for the catalog, orders and payments."""
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from core.status import OrderStatus, PaymentStatus, check_transition

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntegerPK = BigInteger().with_variant(Integer(), "sqlite")

Money = Numeric(10, 2)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Product(Base):
    """
    Product catalog table.

    Pure data: the only rule the store enforces is existence on lookup.
    """

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    images: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("price > 0", name="positive_price"),
        CheckConstraint("quantity >= 0", name="non_negative_quantity"),
    )

    def __repr__(self) -> str:
        """String representation of Product."""
        return f"<Product(id={self.id}, title={self.title}, price={self.price})>"


class Order(Base):
    """
    Customer orders table.

    Line items are a snapshot taken at checkout ({product_id, title, quantity,
    unit_price}); they are not kept in sync with the catalog afterwards.
    """

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    location: Mapped[str] = mapped_column(Text, nullable=False)
    latitude: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 8), nullable=True)
    longitude: Mapped[Optional[Decimal]] = mapped_column(Numeric(11, 8), nullable=True)
    delivery_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    items: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False)
    delivery_fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total: Mapped[Decimal] = mapped_column(Money, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OrderStatus.PENDING.value, index=True
    )
    payment_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    estimated_delivery: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'delivered', 'cancelled')",
            name="valid_order_status",
        ),
        Index("idx_orders_status_created", "status", "created_at"),
    )

    @property
    def order_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    def transition_to(self, target: OrderStatus, now: datetime, eta_minutes: int) -> bool:
        """
        Move the order to a new status.

        Confirming sets the estimated delivery; every other move leaves it as is.

        Returns:
            bool: False if the order already had the target status

        Raises:
            ValidationError: If the transition table forbids the move
        """
        current = self.order_status
        if current == target:
            return False

        check_transition(current, target)
        self.status = target.value
        if target == OrderStatus.CONFIRMED:
            self.estimated_delivery = now + timedelta(minutes=eta_minutes)
        self.updated_at = now
        return True

    def __repr__(self) -> str:
        """String representation of Order."""
        return f"<Order(id={self.id}, total={self.total}, status={self.status})>"


class Payment(Base):
    """
    Payment attempts table.

    Correlated to an order by order_id. The domain intends one completed
    payment per order; several pending attempts may exist.
    """

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    order_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("orders.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="KES")
    transaction_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True
    )
    gateway_response: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_amount"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed')",
            name="valid_payment_status",
        ),
        Index("idx_payments_order_status", "order_id", "status"),
    )

    def __repr__(self) -> str:
        """String representation of Payment."""
        return (
            f"<Payment(id={self.id}, order_id={self.order_id}, "
            f"amount={self.amount}, status={self.status})>"
        )


class PaymentEvent(Base):
    """
    Payment events audit trail table.

    Written in the same transaction as the change it records. Gateway event
    ids are unique so a redelivered webhook is recognised.
    """

    __tablename__ = "payment_events"

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    payment_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    order_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    event_data: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False)
    correlation_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    external_event_id: Mapped[Optional[str]] = mapped_column(
        String(255), unique=True, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )

    __table_args__ = (Index("idx_payment_events_type", "event_type"),)

    def __repr__(self) -> str:
        """String representation of PaymentEvent."""
        return (
            f"<PaymentEvent(id={self.id}, order_id={self.order_id}, "
            f"type={self.event_type})>"
        )
