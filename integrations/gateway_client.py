"""
HTTP client for looking up transaction status at the payment gateway.

Only a status lookup is implemented: the gateway is asked whether a
transaction id has been paid. Charging, refunds and the gateway's own
checkout page are outside this service.
"""
from typing import Any, Dict, Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)


class GatewayError(Exception):
    """Raised when the gateway cannot be reached or answers with an error."""

    pass


class GatewayClient:
    """
    Thin async wrapper around the gateway's transaction status endpoint.

    GET {base_url}/transactions/{transaction_id} is expected to answer with
    JSON containing at least a "status" field.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize gateway client.

        Args:
            base_url: Gateway API base URL
            api_key: Optional bearer key sent with every request
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        logger.info("gateway_client_initialized", base_url=base_url)

    async def get_transaction(self, transaction_id: str) -> Dict[str, Any]:
        """
        Fetch the gateway's view of a transaction.

        Raises:
            GatewayError: On network failure, non-2xx answer or non-JSON body
        """
        try:
            response = await self._client.get(f"/transactions/{transaction_id}")
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "gateway_status_error",
                transaction_id=transaction_id,
                status_code=e.response.status_code,
            )
            raise GatewayError(f"Gateway answered {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error("gateway_request_failed", transaction_id=transaction_id, error=str(e))
            raise GatewayError(f"Gateway request failed: {e}") from e
        except ValueError as e:
            raise GatewayError("Gateway returned a non-JSON body") from e

        if not isinstance(data, dict):
            raise GatewayError("Gateway returned an unexpected body")
        return data

    async def close(self) -> None:
        await self._client.aclose()
