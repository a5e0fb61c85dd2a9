"""
Order-payment workflow.

Reconciles a verification result by updating the payment and its order in
one transaction: the payment becomes completed and the order becomes
payment-verified and confirmed, or neither changes.

Concurrency:
- verifications of one order are serialised by a per-order asyncio lock in
  this process and by SELECT ... FOR UPDATE on the order row across processes
- an order that is already verified is returned as is (idempotent re-run)
- the verifier is consulted between transactions; the row is re-read under
  FOR UPDATE before anything is written
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import NotFoundError, PaymentVerificationError, ValidationError
from core.locks import KeyedLock
from core.orders import DEFAULT_ETA_MINUTES, OrderLedger
from core.payments import PaymentTracker, record_payment_event
from core.status import OrderStatus, PaymentStatus
from core.verification import PaymentVerifier
from database import Database, Order, Payment, PaymentEvent
from database.models import utcnow

logger = structlog.get_logger(__name__)

COMPLETED_EVENT = "payment.completed"
FAILED_EVENT = "payment.failed"


@dataclass
class VerificationOutcome:
    """Order and payment after a verification attempt."""

    order: Order
    payment: Optional[Payment]
    already_verified: bool = False


class OrderPaymentWorkflow:
    """Coordinates payment verification with the order state machine."""

    def __init__(
        self,
        database: Database,
        verifier: PaymentVerifier,
        eta_minutes: int = DEFAULT_ETA_MINUTES,
        locks: Optional[KeyedLock] = None,
    ):
        """
        Initialize the workflow.

        Args:
            database: Database handle
            verifier: Decides whether a pending payment succeeded
            eta_minutes: Minutes from confirmation to estimated delivery
            locks: Per-order locks (shared between workflow instances if given)
        """
        self.database = database
        self.verifier = verifier
        self.eta_minutes = eta_minutes
        self.locks = locks or KeyedLock()

    @staticmethod
    def _ensure_confirmable(order: Order) -> None:
        if order.status not in (OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value):
            raise ValidationError(f"Cannot verify payment for a {order.status} order")

    async def _apply_verification(
        self,
        db: AsyncSession,
        order: Order,
        payment: Payment,
        now: datetime,
        correlation_id: str,
        gateway_response: Optional[Dict[str, Any]] = None,
        external_event_id: Optional[str] = None,
    ) -> None:
        """Dual update: payment completed, order verified and confirmed."""
        payment.status = PaymentStatus.COMPLETED.value
        payment.verified_at = now
        if gateway_response is not None:
            payment.gateway_response = gateway_response

        order.payment_verified = True
        order.transaction_id = payment.transaction_id
        order.transition_to(OrderStatus.CONFIRMED, now, self.eta_minutes)
        order.updated_at = now

        await record_payment_event(
            db=db,
            order_id=order.id,
            payment_id=payment.id,
            event_type="payment.verified",
            event_data={
                "transaction_id": payment.transaction_id,
                "amount": str(payment.amount),
                "source": "webhook" if external_event_id else "manual",
            },
            correlation_id=correlation_id,
            external_event_id=external_event_id,
            now=now,
        )

    async def _already_verified(
        self, db: AsyncSession, order: Order, correlation_id: str
    ) -> VerificationOutcome:
        logger.info(
            "payment_already_verified",
            correlation_id=correlation_id,
            order_id=order.id,
        )
        payment = await PaymentTracker.find_payment_for_update(
            db, order.id, status=PaymentStatus.COMPLETED
        )
        return VerificationOutcome(order=order, payment=payment, already_verified=True)

    @staticmethod
    def _no_pending_payment(order_id: str) -> NotFoundError:
        return NotFoundError(
            f"No pending payment for order {order_id}",
            user_message="No pending payment found for this order",
        )

    async def verify_payment(self, order_id: str) -> VerificationOutcome:
        """
        Verify the pending payment of an order.

        The verifier may call the gateway over HTTP, so it runs between two
        short transactions rather than inside one: no pooled connection or
        row lock is held while waiting on it.

        Flow:
        1. Hold the per-order lock for the whole call
        2. Read the order; return early if it is already payment-verified
        3. Take the newest pending payment and ask the verifier
        4. On rejection nothing is written
        5. Re-lock the order row, re-check its state (a webhook may have
           settled it meanwhile) and apply the dual update

        Returns:
            VerificationOutcome: Final order and payment state

        Raises:
            NotFoundError: If the order or a pending payment is missing
            ValidationError: If the order is delivered or cancelled
            PaymentVerificationError: If the verifier rejects the payment
            StoreError: If the store fails (both rows are rolled back)
        """
        correlation_id = str(uuid.uuid4())

        async with self.locks.hold(order_id):
            async with self.database.transaction() as db:
                order = await OrderLedger.load_for_update(db, order_id)
                if order.payment_verified:
                    return await self._already_verified(db, order, correlation_id)

                self._ensure_confirmable(order)
                payment = await PaymentTracker.find_payment_for_update(db, order_id)
                if payment is None:
                    raise self._no_pending_payment(order_id)

            result = await self.verifier.verify(order, payment)
            if not result.approved:
                logger.warning(
                    "payment_verification_rejected",
                    correlation_id=correlation_id,
                    order_id=order_id,
                    payment_id=payment.id,
                    verifier=self.verifier.name,
                    reason=result.reason,
                )
                raise PaymentVerificationError(
                    f"Payment verification failed for order {order_id}: {result.reason}",
                    user_message="Payment verification failed",
                )

            async with self.database.transaction() as db:
                order = await OrderLedger.load_for_update(db, order_id)
                if order.payment_verified:
                    return await self._already_verified(db, order, correlation_id)

                self._ensure_confirmable(order)
                payment = await PaymentTracker.find_payment_for_update(
                    db, order_id, transaction_id=payment.transaction_id
                )
                if payment is None:
                    raise self._no_pending_payment(order_id)

                await self._apply_verification(
                    db,
                    order,
                    payment,
                    now=utcnow(),
                    correlation_id=correlation_id,
                    gateway_response=result.gateway_response,
                )

        logger.info(
            "payment_verified",
            correlation_id=correlation_id,
            order_id=order_id,
            payment_id=payment.id,
            verifier=self.verifier.name,
        )
        return VerificationOutcome(order=order, payment=payment)

    @staticmethod
    def _event_order_id(data: Mapping[str, Any]) -> Optional[str]:
        for key in ("orderId", "order_id", "reference", "accountReference"):
            value = data.get(key)
            if value:
                return str(value)
        return None

    @staticmethod
    def _event_transaction_id(data: Mapping[str, Any]) -> Optional[str]:
        for key in ("transactionId", "transaction_id"):
            value = data.get(key)
            if value:
                return str(value)
        return None

    @staticmethod
    async def _already_processed(db: AsyncSession, external_event_id: Optional[str]) -> bool:
        if not external_event_id:
            return False
        stmt = select(PaymentEvent.id).where(PaymentEvent.external_event_id == external_event_id)
        return (await db.scalar(stmt)) is not None

    async def handle_gateway_event(
        self, gateway: str, event: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """
        Apply a signature-verified webhook event.

        payment.completed with a known order applies the same dual update as
        verify_payment and keeps the raw payload on the payment for audit.
        payment.failed marks the pending payment failed and leaves the order
        alone. Redelivered events are acknowledged without being re-applied.
        The result is only returned after the transaction has committed.

        Args:
            gateway: Gateway name from the webhook URL
            event: Parsed payload ({"id", "type", "data": {...}})

        Returns:
            Dict[str, Any]: Processing result with a "status" field
        """
        event_id = str(event.get("id") or "") or None
        event_type = str(event.get("type") or "")
        data = event.get("data") or {}
        if not isinstance(data, Mapping):
            data = {}

        order_id = self._event_order_id(data)
        correlation_id = str(uuid.uuid4())
        external_event_id = f"{gateway}:{event_id}" if event_id else None
        base = {"eventId": event_id, "eventType": event_type, "orderId": order_id}

        if order_id is None:
            logger.warning(
                "webhook_event_uncorrelated",
                gateway=gateway,
                event_id=event_id,
                event_type=event_type,
            )
            return {**base, "status": "ignored", "message": "Event carries no order id"}

        async with self.locks.hold(order_id):
            async with self.database.transaction() as db:
                if await self._already_processed(db, external_event_id):
                    logger.info(
                        "webhook_event_already_processed",
                        gateway=gateway,
                        event_id=event_id,
                    )
                    return {**base, "status": "duplicate", "message": "Event already processed"}

                order = await db.get(Order, order_id, with_for_update=True, populate_existing=True)
                if order is None:
                    logger.warning("webhook_order_not_found", gateway=gateway, order_id=order_id)
                    return {**base, "status": "ignored", "message": "Unknown order"}

                if event_type == COMPLETED_EVENT:
                    status = await self._apply_completed(
                        db, order, data, dict(event), correlation_id, external_event_id
                    )
                elif event_type == FAILED_EVENT:
                    status = await self._apply_failed(
                        db, order, data, dict(event), correlation_id, external_event_id
                    )
                else:
                    status = "ignored"

                if status in ("ignored", "already_verified") and external_event_id:
                    await record_payment_event(
                        db=db,
                        order_id=order.id,
                        event_type=f"webhook.{gateway}.{event_type or 'unknown'}",
                        event_data={"status": status},
                        correlation_id=correlation_id,
                        external_event_id=external_event_id,
                    )

        logger.info(
            "webhook_event_applied",
            correlation_id=correlation_id,
            gateway=gateway,
            event_id=event_id,
            event_type=event_type,
            order_id=order_id,
            status=status,
        )
        return {**base, "status": status}

    async def _apply_completed(
        self,
        db: AsyncSession,
        order: Order,
        data: Mapping[str, Any],
        raw_event: Dict[str, Any],
        correlation_id: str,
        external_event_id: Optional[str],
    ) -> str:
        if order.payment_verified:
            return "already_verified"

        if order.status not in (OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value):
            logger.warning(
                "webhook_payment_for_closed_order",
                order_id=order.id,
                order_status=order.status,
            )
            return "ignored"

        payment = await PaymentTracker.find_payment_for_update(
            db, order.id, transaction_id=self._event_transaction_id(data)
        )
        if payment is None:
            logger.warning("webhook_payment_not_found", order_id=order.id)
            return "ignored"

        await self._apply_verification(
            db,
            order,
            payment,
            now=utcnow(),
            correlation_id=correlation_id,
            gateway_response=raw_event,
            external_event_id=external_event_id,
        )
        return "applied"

    async def _apply_failed(
        self,
        db: AsyncSession,
        order: Order,
        data: Mapping[str, Any],
        raw_event: Dict[str, Any],
        correlation_id: str,
        external_event_id: Optional[str],
    ) -> str:
        payment = await PaymentTracker.find_payment_for_update(
            db, order.id, transaction_id=self._event_transaction_id(data)
        )
        if payment is None:
            return "ignored"

        now = utcnow()
        payment.status = PaymentStatus.FAILED.value
        payment.gateway_response = raw_event

        await record_payment_event(
            db=db,
            order_id=order.id,
            payment_id=payment.id,
            event_type="payment.failed",
            event_data={
                "transaction_id": payment.transaction_id,
                "reason": str(data.get("reason") or data.get("message") or "unknown"),
            },
            correlation_id=correlation_id,
            external_event_id=external_event_id,
            now=now,
        )
        return "failed"
