"""
Payment tracker: persisted payment attempts correlated to orders.

Creating a payment does not contact any gateway. It records a pending
attempt and hands back a simulated checkout reference.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import NotFoundError, ValidationError
from core.identifiers import generate_transaction_id
from core.orders import OrderLedger
from core.status import OrderStatus, PaymentStatus
from core.validation import to_money
from database import Database, Order, Payment, PaymentEvent
from database.models import utcnow

logger = structlog.get_logger(__name__)


@dataclass
class PaymentCheckout:
    """What the client needs to continue paying for an order."""

    payment: Payment
    checkout_url: str

    @property
    def payment_id(self) -> str:
        return self.payment.id

    @property
    def transaction_id(self) -> str:
        return self.payment.transaction_id


async def record_payment_event(
    db: AsyncSession,
    order_id: str,
    event_type: str,
    event_data: Dict[str, Any],
    correlation_id: str,
    payment_id: Optional[str] = None,
    external_event_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PaymentEvent:
    """
    Record a payment event for the audit trail.

    Must be called inside the transaction that makes the change it describes.

    Args:
        db: Database session
        order_id: Order the event belongs to
        event_type: Event type (e.g., 'payment.verified')
        event_data: Event data
        correlation_id: Correlation ID for tracing
        payment_id: Payment ID, when one is involved
        external_event_id: Gateway event ID, for webhook deduplication
        now: Event time
    """
    event = PaymentEvent(
        order_id=order_id,
        payment_id=payment_id,
        event_type=event_type,
        event_data=event_data,
        correlation_id=correlation_id,
        external_event_id=external_event_id,
        created_at=now or utcnow(),
    )
    db.add(event)
    return event


class PaymentTracker:
    """Creates and reads payment attempts."""

    def __init__(
        self,
        database: Database,
        default_currency: str = "KES",
        checkout_base_url: str = "https://pay.kukuyetu.co.ke/checkout",
    ):
        self.database = database
        self.default_currency = default_currency
        self.checkout_base_url = checkout_base_url.rstrip("/")

    @staticmethod
    def _validate_payment_request(order: Order, amount: Any, currency: str) -> None:
        """
        Validate payment request parameters against the order.

        Raises:
            ValidationError: If validation fails
        """
        amount_value = to_money("amount", amount)
        if amount_value <= 0:
            raise ValidationError("Amount must be positive")

        if len(currency) != 3 or not currency.isalpha():
            raise ValidationError("Currency must be 3-letter code")

        if amount_value != order.total:
            raise ValidationError(f"Amount {amount_value} does not match order total {order.total}")

        if order.payment_verified:
            raise ValidationError(f"Order {order.id} has already been paid")

        if order.status not in (OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value):
            raise ValidationError(f"Cannot take payment for a {order.status} order")

    async def create_payment(
        self,
        order_id: Optional[str],
        amount: Any,
        currency: Optional[str] = None,
    ) -> PaymentCheckout:
        """
        Create a pending payment for an order.

        Flow:
        1. Lock the order row (NotFoundError if absent)
        2. Validate amount and currency against the order
        3. Create the payment with a fresh transaction ID
        4. Copy the transaction ID onto the order
        5. Record the creation event

        Returns:
            PaymentCheckout: The payment and its simulated checkout URL

        Raises:
            ValidationError: If input is missing or inconsistent with the order
            NotFoundError: If the order does not exist
        """
        if not order_id or amount is None:
            raise ValidationError("Order ID and amount are required")

        currency_code = (currency or self.default_currency).strip().upper()
        correlation_id = str(uuid.uuid4())
        now = utcnow()

        async with self.database.transaction() as db:
            order = await OrderLedger.load_for_update(db, order_id)
            self._validate_payment_request(order, amount, currency_code)

            payment = Payment(
                id=str(uuid.uuid4()),
                order_id=order.id,
                amount=to_money("amount", amount),
                currency=currency_code,
                transaction_id=generate_transaction_id(),
                status=PaymentStatus.PENDING.value,
                created_at=now,
            )
            db.add(payment)

            order.transaction_id = payment.transaction_id
            order.updated_at = now

            await record_payment_event(
                db=db,
                order_id=order.id,
                payment_id=payment.id,
                event_type="payment.created",
                event_data={
                    "amount": str(payment.amount),
                    "currency": payment.currency,
                    "transaction_id": payment.transaction_id,
                    "status": payment.status,
                },
                correlation_id=correlation_id,
                now=now,
            )

        logger.info(
            "payment_created",
            correlation_id=correlation_id,
            order_id=order_id,
            payment_id=payment.id,
            transaction_id=payment.transaction_id,
        )
        return PaymentCheckout(
            payment=payment,
            checkout_url=f"{self.checkout_base_url}/{payment.transaction_id}",
        )

    async def get_payment(self, payment_id: str) -> Payment:
        """
        Get a payment by ID.

        Raises:
            NotFoundError: If no payment has this ID
        """
        async with self.database.transaction() as db:
            payment = await db.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found", user_message="Payment not found")
        return payment

    async def list_payments_for_order(self, order_id: str) -> List[Payment]:
        """List the payments of an order, newest first."""
        stmt = (
            select(Payment)
            .where(Payment.order_id == order_id)
            .order_by(Payment.created_at.desc(), Payment.id)
        )
        async with self.database.transaction() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    @staticmethod
    async def find_payment_for_update(
        db: AsyncSession,
        order_id: str,
        transaction_id: Optional[str] = None,
        status: Optional[PaymentStatus] = PaymentStatus.PENDING,
    ) -> Optional[Payment]:
        """
        Find the payment to settle for an order, row-locked.

        Matches on transaction_id when given, otherwise takes the newest
        payment with the requested status.
        """
        stmt = select(Payment).where(Payment.order_id == order_id)
        if transaction_id:
            stmt = stmt.where(Payment.transaction_id == transaction_id)
        if status is not None:
            stmt = stmt.where(Payment.status == status.value)
        stmt = stmt.order_by(Payment.created_at.desc()).limit(1).with_for_update()

        result = await db.execute(stmt)
        return result.scalar_one_or_none()
