"""
Payment gateway webhook handler with signature verification and routing.

Gateways sign deliveries with the Stripe scheme: a "t=<unix>,v1=<hex>"
header where v1 is HMAC-SHA256 of "<t>.<raw body>" under the gateway's
secret. Verification, including the replay tolerance, is done by the stripe
library; each gateway has its own secret.

Deduplication of redelivered events happens in the store, inside the same
transaction that applies the event (see core.workflow).
"""
import json
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import stripe
import structlog

from core.exceptions import NotFoundError, ValidationError, WebhookSignatureError

logger = structlog.get_logger(__name__)

EventHandler = Callable[[str, Mapping[str, Any]], Awaitable[Dict[str, Any]]]


def build_signature_header(secret: str, payload: bytes, timestamp: Optional[int] = None) -> str:
    """
    Build a signature header value the way a gateway would send it.

    Used by tests and by operators replaying a delivery by hand.
    """
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed_payload = f"{timestamp}.{payload.decode('utf-8')}"
    signature = stripe.WebhookSignature._compute_signature(signed_payload, secret)
    return f"t={timestamp},{stripe.WebhookSignature.EXPECTED_SCHEME}={signature}"


class WebhookHandler:
    """
    Handles gateway webhook events.

    Features:
    - Signature verification using per-gateway webhook secrets
    - Rejects deliveries whose timestamp is older than the tolerance window
    - Event type routing to appropriate handlers
    """

    def __init__(self, secrets: Mapping[str, str], tolerance_seconds: int = 300):
        """
        Initialize webhook handler.

        Args:
            secrets: Signing secret per gateway name
            tolerance_seconds: Accepted age of a signature timestamp
        """
        self.secrets = {name.lower(): secret for name, secret in secrets.items()}
        self.tolerance_seconds = tolerance_seconds
        self.event_handlers: Dict[str, EventHandler] = {}

        logger.info("webhook_handler_initialized", gateways=sorted(self.secrets))

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Register a handler for a specific event type.

        Args:
            event_type: Gateway event type (e.g., 'payment.completed')
            handler: Async callable taking (gateway, event)

        Example:
            handler.register_handler('payment.completed', workflow.handle_gateway_event)
        """
        self.event_handlers[event_type] = handler
        logger.info("webhook_handler_registered", event_type=event_type)

    def verify_signature(
        self, gateway: str, payload: bytes, signature: Optional[str]
    ) -> Dict[str, Any]:
        """
        Verify webhook signature and parse the event.

        Args:
            gateway: Gateway name from the webhook URL
            payload: Raw request body as bytes
            signature: Signature header value ("t=<unix>,v1=<hex>")

        Returns:
            Dict[str, Any]: Verified event

        Raises:
            NotFoundError: If no secret is configured for the gateway
            WebhookSignatureError: If the signature is missing, stale or wrong
            ValidationError: If the body is not UTF-8 or not a JSON object
        """
        secret = self.secrets.get(gateway.lower())
        if secret is None:
            raise NotFoundError(
                f"No webhook secret configured for gateway {gateway}",
                user_message="Unknown payment gateway",
            )

        if not signature:
            logger.warning("webhook_signature_missing", gateway=gateway)
            raise WebhookSignatureError("Missing webhook signature")
        # a valid header is hex and digits; the str comparison downstream rejects non-ASCII
        if not signature.isascii():
            logger.warning("webhook_signature_malformed", gateway=gateway)
            raise WebhookSignatureError(
                "Non-ASCII webhook signature", user_message="Invalid webhook signature"
            )

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError("Webhook body is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(
                body, signature, secret, tolerance=self.tolerance_seconds
            )
        except stripe.error.SignatureVerificationError as e:
            logger.error(
                "webhook_signature_verification_failed", gateway=gateway, error=str(e)
            )
            raise WebhookSignatureError(
                f"Webhook signature rejected: {e}", user_message="Invalid webhook signature"
            ) from e

        try:
            event = json.loads(body)
        except ValueError as e:
            raise ValidationError("Webhook body is not valid JSON") from e
        if not isinstance(event, dict):
            raise ValidationError("Webhook body must be a JSON object")

        logger.info(
            "webhook_signature_verified",
            gateway=gateway,
            event_id=event.get("id"),
            event_type=event.get("type"),
        )
        return event

    async def process_event(self, gateway: str, event: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Route a verified event to its handler.

        Args:
            gateway: Gateway name
            event: Verified event

        Returns:
            Dict[str, Any]: Processing result
        """
        event_id = event.get("id")
        event_type = str(event.get("type") or "")

        logger.info(
            "processing_webhook_event",
            gateway=gateway,
            event_id=event_id,
            event_type=event_type,
        )

        handler = self.event_handlers.get(event_type)
        if handler is None:
            logger.warning(
                "webhook_no_handler",
                gateway=gateway,
                event_id=event_id,
                event_type=event_type,
            )
            return {
                "status": "ignored",
                "eventId": event_id,
                "eventType": event_type,
                "message": f"No handler registered for event type: {event_type}",
            }

        return await handler(gateway, event)
