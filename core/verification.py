"""
Payment verifiers.

The workflow depends only on PaymentVerifier. Variants:
- AlwaysApproveVerifier: approves everything (reference behaviour, test double)
- RandomApprovalVerifier: approves with a fixed probability (demo stub)
- GatewayVerifier: asks the external gateway for the transaction status
"""
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import structlog

from config import Settings
from database import Order, Payment
from integrations.gateway_client import GatewayClient, GatewayError

logger = structlog.get_logger(__name__)

GATEWAY_SUCCESS_STATUSES = frozenset({"completed", "success", "succeeded", "paid"})


@dataclass
class VerificationResult:
    """Outcome of asking a verifier about one payment."""

    approved: bool
    reason: Optional[str] = None
    gateway_response: Optional[Dict[str, Any]] = field(default=None)


class PaymentVerifier(ABC):
    """Decides whether a pending payment has succeeded."""

    name = "abstract"

    @abstractmethod
    async def verify(self, order: Order, payment: Payment) -> VerificationResult:
        ...

    async def close(self) -> None:
        return None


class AlwaysApproveVerifier(PaymentVerifier):
    name = "always_approve"

    async def verify(self, order: Order, payment: Payment) -> VerificationResult:
        return VerificationResult(approved=True, reason="auto-approved")


class RandomApprovalVerifier(PaymentVerifier):
    """Approves a fixed share of payments at random."""

    name = "random"

    def __init__(self, approval_rate: float = 0.9, rng: Optional[random.Random] = None):
        if not 0.0 <= approval_rate <= 1.0:
            raise ValueError("approval_rate must be between 0 and 1")
        self.approval_rate = approval_rate
        self._rng = rng or random.Random()

    async def verify(self, order: Order, payment: Payment) -> VerificationResult:
        approved = self._rng.random() < self.approval_rate
        return VerificationResult(
            approved=approved,
            reason="simulated approval" if approved else "simulated decline",
        )


class GatewayVerifier(PaymentVerifier):
    """Treats a payment as successful when the gateway reports it paid."""

    name = "gateway"

    def __init__(self, client: GatewayClient):
        self.client = client

    async def verify(self, order: Order, payment: Payment) -> VerificationResult:
        try:
            data = await self.client.get_transaction(payment.transaction_id)
        except GatewayError as e:
            logger.warning(
                "gateway_verification_unavailable",
                order_id=order.id,
                transaction_id=payment.transaction_id,
                error=str(e),
            )
            return VerificationResult(approved=False, reason=str(e))

        status = str(data.get("status", "")).lower()
        approved = status in GATEWAY_SUCCESS_STATUSES
        return VerificationResult(
            approved=approved,
            reason=f"gateway status: {status or 'unknown'}",
            gateway_response=data,
        )

    async def close(self) -> None:
        await self.client.close()


def build_verifier(settings: Settings) -> PaymentVerifier:
    """Create the verifier selected by settings.payment_verifier."""
    if settings.payment_verifier == "random":
        return RandomApprovalVerifier(settings.verification_approval_rate)
    if settings.payment_verifier == "gateway":
        client = GatewayClient(
            base_url=settings.payment_gateway_url or "",
            api_key=settings.payment_gateway_api_key,
            timeout=settings.payment_gateway_timeout,
        )
        return GatewayVerifier(client)
    return AlwaysApproveVerifier()
