"""
Mercado Pago Gateway - thin async client for the preapproval (recurring
subscription) API plus webhook signature verification.
"""

import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any

import httpx

from config.settings import settings
from services.exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)

PREAPPROVAL_PATH = "/preapproval"


def format_mercadopago_date(value: datetime) -> str:
    """
    Format a datetime the way the preapproval API expects it:
    2024-05-01T13:45:00.000+00:00 (milliseconds and a numeric offset).
    Naive datetimes are taken as UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat(timespec="milliseconds")


def verify_webhook_signature(
    secret: str,
    x_signature: Optional[str],
    x_request_id: Optional[str],
    data_id: Optional[str],
) -> bool:
    """
    Check the x-signature header Mercado Pago attaches to webhooks.

    The header looks like "ts=1704908010,v1=<hex>" and v1 is the
    HMAC-SHA256 of "id:<data.id>;request-id:<x-request-id>;ts:<ts>;".
    """
    if not x_signature:
        return False

    parts = {}
    for chunk in x_signature.split(","):
        key, _, value = chunk.strip().partition("=")
        parts[key] = value

    ts = parts.get("ts")
    received = parts.get("v1")
    if not ts or not received:
        return False

    manifest = ""
    if data_id:
        # Alphanumeric ids are signed lowercased
        manifest += f"id:{str(data_id).lower()};"
    if x_request_id:
        manifest += f"request-id:{x_request_id};"
    manifest += f"ts:{ts};"

    expected = hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, received)


class MercadoPagoGateway:
    """
    Async client for the Mercado Pago preapproval endpoints.

    A gateway is built per request from settings (see get_gateway) and can be
    swapped out in tests through FastAPI dependency overrides or by passing an
    httpx transport.
    """

    def __init__(
        self,
        access_token: Optional[str],
        base_url: str = "https://api.mercadopago.com",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, payload: Optional[dict] = None) -> Dict[str, Any]:
        if not self.is_configured:
            raise PaymentGatewayError("Mercado Pago access token is not configured.")

        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
                response = await client.request(method, url, headers=self._headers(), json=payload)
        except httpx.TimeoutException as e:
            logger.warning(f"Mercado Pago {method} {path} timed out after {self.timeout}s: {e}")
            raise PaymentGatewayError("The payment service did not respond in time. Please try again.") from e
        except httpx.RequestError as e:
            logger.warning(f"Mercado Pago {method} {path} request failed: {e}")
            raise PaymentGatewayError("Error communicating with the payment service.") from e

        if not response.is_success:
            try:
                body = response.json()
            except ValueError:
                body = {}
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning(f"Mercado Pago {method} {path} returned {response.status_code}: {response.text}")
            raise PaymentGatewayError(
                message or "Error communicating with the payment service.",
                provider_status=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            logger.warning(f"Mercado Pago {method} {path} returned a non-JSON body: {response.text[:200]}")
            raise PaymentGatewayError("Unexpected response from the payment service.") from e
        if not isinstance(body, dict):
            logger.warning(f"Mercado Pago {method} {path} returned {type(body).__name__} instead of an object")
            raise PaymentGatewayError("Unexpected response from the payment service.")
        return body

    async def create_subscription(self, payload: dict) -> Dict[str, Any]:
        """
        Create a preapproval.

        Returns:
            The provider record; "id" and "init_point" are always present
        """
        return await self._request("POST", PREAPPROVAL_PATH, payload)

    async def get_subscription(self, preapproval_id: str) -> Dict[str, Any]:
        """
        Fetch a preapproval by id.

        Returns:
            The provider record, including "status" and "external_reference"
        """
        return await self._request("GET", f"{PREAPPROVAL_PATH}/{preapproval_id}")


def get_gateway() -> MercadoPagoGateway:
    """FastAPI dependency building the gateway from current settings."""
    return MercadoPagoGateway(
        access_token=settings.mercadopago_access_token,
        base_url=settings.mercadopago_api_url,
        timeout=settings.mercadopago_timeout_seconds,
    )
