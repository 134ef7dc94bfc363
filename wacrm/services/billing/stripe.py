"""Payment processor client (Stripe SDK)."""

from collections.abc import Awaitable, Callable
from typing import Any

import stripe
import structlog

from wacrm.core.config import settings
from wacrm.core.exceptions import (
    ConfigurationError,
    UpstreamError,
    ValidationFailed,
    raise_for_upstream_status,
)

logger = structlog.get_logger()

PROVIDER = "stripe"

# Signed webhook timestamps older than this are rejected
SIGNATURE_TOLERANCE_SECONDS = 300


def construct_webhook_event(payload: bytes, signature_header: str | None, secret: str) -> dict[str, Any]:
    """Check a ``Stripe-Signature`` header and return the decoded event.

    Raises:
        ValidationFailed: If the header is missing, stale or does not match
    """
    try:
        event = stripe.Webhook.construct_event(
            payload,
            signature_header or "",
            secret,
            tolerance=SIGNATURE_TOLERANCE_SECONDS,
        )
    except stripe.SignatureVerificationError as e:
        logger.warning("Payment webhook signature rejected", error=str(e))
        raise ValidationFailed("Invalid signature")
    except ValueError:
        raise ValidationFailed("Invalid JSON body")
    return event.to_dict()


def _compact(params: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in params.items() if value is not None}


class StripeGateway:
    """Async wrapper over the handful of Stripe calls we make."""

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        client: stripe.StripeClient | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key
        self.api_base = api_base or settings.stripe_api_base
        self._client = client

    @property
    def client(self) -> stripe.StripeClient:
        """Lazy initialization of the SDK client."""
        if self._client is None:
            if not self.api_key:
                raise ConfigurationError("STRIPE_SECRET_KEY is not set")
            self._client = stripe.StripeClient(
                self.api_key,
                base_addresses={"api": self.api_base},
                http_client=stripe.HTTPXClient(timeout=settings.http_timeout_seconds),
                max_network_retries=2,
            )
        return self._client

    async def _call(
        self,
        action: str,
        method: Callable[..., Awaitable[Any]],
        params: dict[str, Any],
    ) -> Any:
        try:
            return await method(params=_compact(params))
        except stripe.APIConnectionError as e:
            logger.error("Stripe unreachable", action=action, error=str(e))
            raise UpstreamError("Payment processor unreachable", provider=PROVIDER)
        except stripe.StripeError as e:
            message = e.user_message or "Payment processor error"
            logger.error("Stripe API error", action=action, status_code=e.http_status, message=message)
            raise_for_upstream_status(e.http_status or 502, message, PROVIDER)
            raise

    async def find_customer_id(self, email: str) -> str | None:
        """First customer registered under an email, if any."""
        result = await self._call(
            "customers.list",
            self.client.v1.customers.list_async,
            {"email": email, "limit": 1},
        )
        return result.data[0].id if result.data else None

    async def list_active_subscriptions(self, customer_id: str, limit: int = 1) -> list[dict[str, Any]]:
        result = await self._call(
            "subscriptions.list",
            self.client.v1.subscriptions.list_async,
            {"customer": customer_id, "status": "active", "limit": limit},
        )
        return [subscription.to_dict() for subscription in result.data]

    async def create_checkout_session(
        self,
        *,
        mode: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        customer_id: str | None = None,
        customer_email: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "mode": mode,
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
        }
        if customer_id:
            params["customer"] = customer_id
        else:
            params["customer_email"] = customer_email
        session = await self._call("checkout.sessions.create", self.client.v1.checkout.sessions.create_async, params)
        return session.to_dict()

    async def create_portal_session(
        self,
        customer_id: str,
        return_url: str,
        flow_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        session = await self._call(
            "billing_portal.sessions.create",
            self.client.v1.billing_portal.sessions.create_async,
            {"customer": customer_id, "return_url": return_url, "flow_data": flow_data},
        )
        return session.to_dict()


# Singleton instance
_stripe_gateway: StripeGateway | None = None


def get_stripe_gateway() -> StripeGateway:
    """Get or create the Stripe gateway singleton."""
    global _stripe_gateway
    if _stripe_gateway is None:
        _stripe_gateway = StripeGateway()
    return _stripe_gateway
