"""Payment gateway integrations."""
from .gateway_client import GatewayClient, GatewayError
from .webhook_handler import WebhookHandler, build_signature_header

__all__ = ["GatewayClient", "GatewayError", "WebhookHandler", "build_signature_header"]
