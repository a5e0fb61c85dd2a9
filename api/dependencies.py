"""
Service wiring and request dependencies.

Services are built once per application from one Database handle and kept
on app.state; routes reach them through get_services.
"""
import hmac
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog
from fastapi import Depends, Header, Request

from config import Settings
from core.catalog import CatalogStore
from core.exceptions import AuthError
from core.orders import OrderLedger
from core.payments import PaymentTracker
from core.reporting import ReportingService
from core.security import AdminTokenSigner, verify_password
from core.verification import PaymentVerifier, build_verifier
from core.workflow import COMPLETED_EVENT, FAILED_EVENT, OrderPaymentWorkflow
from database import Database
from integrations.webhook_handler import WebhookHandler
from monitoring.health import HealthCheck

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    """Everything the routes need, sharing one Database handle."""

    settings: Settings
    database: Database
    catalog: CatalogStore
    orders: OrderLedger
    payments: PaymentTracker
    workflow: OrderPaymentWorkflow
    reporting: ReportingService
    webhooks: WebhookHandler
    signer: AdminTokenSigner
    health: HealthCheck

    async def close(self) -> None:
        await self.workflow.verifier.close()
        await self.database.dispose()


def build_services(
    database: Database,
    settings: Settings,
    verifier: Optional[PaymentVerifier] = None,
) -> Services:
    """
    Construct the service graph.

    Args:
        database: Database handle shared by every service
        settings: Application settings
        verifier: Payment verifier (built from settings if not given)
    """
    workflow = OrderPaymentWorkflow(
        database,
        verifier or build_verifier(settings),
        eta_minutes=settings.delivery_eta_minutes,
    )

    webhooks = WebhookHandler(
        settings.get_webhook_secrets(),
        tolerance_seconds=settings.webhook_tolerance_seconds,
    )
    webhooks.register_handler(COMPLETED_EVENT, workflow.handle_gateway_event)
    webhooks.register_handler(FAILED_EVENT, workflow.handle_gateway_event)

    return Services(
        settings=settings,
        database=database,
        catalog=CatalogStore(database),
        orders=OrderLedger(
            database,
            default_delivery_fee=settings.default_delivery_fee,
            eta_minutes=settings.delivery_eta_minutes,
        ),
        payments=PaymentTracker(
            database,
            default_currency=settings.default_currency,
            checkout_base_url=settings.checkout_base_url,
        ),
        workflow=workflow,
        reporting=ReportingService(database),
        webhooks=webhooks,
        signer=AdminTokenSigner(settings.admin_token_secret, settings.admin_token_ttl_seconds),
        health=HealthCheck(database),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def check_admin_credentials(services: Services, username: Optional[str], password: Optional[str]) -> None:
    """
    Check a login attempt against the configured administrator.

    Raises:
        AuthError: If the username or password is wrong
    """
    settings = services.settings
    username_ok = hmac.compare_digest(
        (username or "").encode(), settings.admin_username.encode()
    )
    password_ok = verify_password(password or "", settings.admin_password_hash)
    if not (username_ok and password_ok):
        logger.warning("admin_login_failed", username=username)
        raise AuthError("Invalid administrator credentials", user_message="Invalid credentials")


def authenticate_admin(services: Services, authorization: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Validate a bearer token when admin auth is enabled.

    Returns:
        Optional[Dict[str, Any]]: Token claims, or None when auth is disabled

    Raises:
        AuthError: If the token is missing, malformed, tampered with or expired
    """
    if not services.settings.admin_auth_enabled:
        return None

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Missing bearer token", user_message="Authentication required")
    return services.signer.verify(token.strip())


async def require_admin(
    services: Services = Depends(get_services),
    authorization: Optional[str] = Header(default=None),
) -> Optional[Dict[str, Any]]:
    return authenticate_admin(services, authorization)
