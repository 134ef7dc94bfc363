"""Subscription checkout, status sync and billing portal."""

from datetime import datetime, timezone
from typing import Any

import structlog

from wacrm.core.clock import utcnow
from wacrm.core.exceptions import Conflict, NotFound, ValidationFailed
from wacrm.core.security import AuthUser
from wacrm.models import PlanKey, Subscription, SubscriptionStatus
from wacrm.models.billing import PRODUCT_TO_PLAN, PLANS, get_plan
from wacrm.services.billing.stripe import StripeGateway
from wacrm.storage.base import StorageBackend

logger = structlog.get_logger()

TOKEN_PURCHASE_TYPE = "ai_tokens_purchase"

# Portal flows that act on the current subscription
_SUBSCRIPTION_FLOWS = {
    "cancel": "subscription_cancel",
    "update_plan": "subscription_update",
}


def _require_email(user: AuthUser) -> str:
    if not user.email:
        raise ValidationFailed("User not authenticated or email not available")
    return user.email


class BillingService:
    """Drives the payment processor on behalf of the signed-in user."""

    def __init__(self, storage: StorageBackend, stripe: StripeGateway) -> None:
        self.storage = storage
        self.stripe = stripe

    async def create_checkout(self, user: AuthUser, plan_key: str | None, origin: str) -> dict[str, str]:
        """Open a subscription checkout for a paid plan.

        The plan is checked before anything is sent to the processor.
        """
        plan = get_plan(plan_key or "")
        if plan is None:
            raise ValidationFailed(f"Invalid plan: {plan_key}", details={"plan": plan_key})
        if plan.key == PlanKey.FREE or not plan.price_id:
            raise ValidationFailed("The free plan does not require checkout", details={"plan": plan_key})
        email = _require_email(user)

        customer_id = await self.stripe.find_customer_id(email)
        session = await self.stripe.create_checkout_session(
            mode="subscription",
            price_id=plan.price_id,
            customer_id=customer_id,
            customer_email=email,
            success_url=f"{origin}/subscription?success=true&plan={plan.key.value}",
            cancel_url=f"{origin}/subscription?canceled=true",
            metadata={"user_id": user.id, "plan": plan.key.value},
        )

        logger.info("Checkout session created", user_id=user.id, plan=plan.key.value, session_id=session.get("id"))
        return {"url": session["url"]}

    async def purchase_tokens(self, user: AuthUser, package_id: str | None, origin: str) -> dict[str, str]:
        """Open a one-off payment checkout for an AI token package."""
        if not package_id:
            raise ValidationFailed("packageId is required")
        package = await self.storage.get_token_package(package_id)
        if package is None or not package.is_active:
            raise NotFound("Package not found or inactive", details={"package_id": package_id})
        email = _require_email(user)

        customer_id = await self.stripe.find_customer_id(email)
        session = await self.stripe.create_checkout_session(
            mode="payment",
            price_id=package.stripe_price_id,
            customer_id=customer_id,
            customer_email=email,
            success_url=f"{origin}/settings?tab=ai-tokens&purchase=success&tokens={package.tokens}",
            cancel_url=f"{origin}/settings?tab=ai-tokens&purchase=cancelled",
            metadata={
                "user_id": user.id,
                "package_id": package.id,
                "tokens": str(package.tokens),
                "type": TOKEN_PURCHASE_TYPE,
            },
        )

        logger.info("Token checkout session created", user_id=user.id, package_id=package.id)
        return {"url": session["url"]}

    async def check_subscription(self, user: AuthUser) -> dict[str, Any]:
        """Mirror the processor's view of the user's subscription locally."""
        email = _require_email(user)
        subscription = await self.storage.get_subscription(user.id) or Subscription(user_id=user.id)
        if subscription.manual_override:
            return self._status_payload(subscription)

        customer_id = await self.stripe.find_customer_id(email)
        free = PLANS[PlanKey.FREE]
        subscription.plan = PlanKey.FREE
        subscription.status = SubscriptionStatus.INACTIVE
        subscription.stripe_customer_id = customer_id
        subscription.stripe_subscription_id = None
        subscription.stripe_price_id = None
        subscription.current_period_end = None
        subscription.max_instances = free.limits.instances
        subscription.max_contacts = free.limits.contacts

        if customer_id:
            active = await self.stripe.list_active_subscriptions(customer_id)
            if active:
                remote = active[0]
                item = remote["items"]["data"][0]
                price = item["price"]
                plan_key = PRODUCT_TO_PLAN.get(price.get("product"), PlanKey.FREE)
                plan = PLANS[plan_key]
                subscription.plan = plan_key
                subscription.status = SubscriptionStatus.ACTIVE
                subscription.stripe_subscription_id = remote["id"]
                subscription.stripe_price_id = price.get("id")
                subscription.max_instances = plan.limits.instances
                subscription.max_contacts = plan.limits.contacts
                # Newer API versions report the period on the subscription item
                period_end = item.get("current_period_end") or remote.get("current_period_end")
                if period_end:
                    subscription.current_period_end = datetime.fromtimestamp(period_end, tz=timezone.utc)
                if plan_key == PlanKey.FREE:
                    logger.warning("Active subscription with unknown product", product_id=price.get("product"))

        subscription.updated_at = utcnow()
        await self.storage.save_subscription(subscription)

        logger.info(
            "Subscription checked",
            user_id=user.id,
            plan=subscription.plan.value,
            status=subscription.status.value,
        )
        return self._status_payload(subscription)

    @staticmethod
    def _status_payload(subscription: Subscription) -> dict[str, Any]:
        return {
            "subscribed": subscription.status == SubscriptionStatus.ACTIVE,
            "plan": subscription.plan.value,
            "max_instances": subscription.max_instances,
            "max_contacts": subscription.max_contacts,
            "subscription_end": (
                subscription.current_period_end.isoformat() if subscription.current_period_end else None
            ),
        }

    async def customer_portal(self, user: AuthUser, origin: str, flow: str | None = None) -> dict[str, str]:
        """Open the processor's billing portal, optionally deep-linked to a flow."""
        email = _require_email(user)
        local = await self.storage.get_subscription(user.id)
        if local is not None and local.manual_override:
            raise Conflict(
                "Sua assinatura é gerenciada manualmente. Entre em contato com o suporte para alterações.",
                code="MANUAL_SUBSCRIPTION",
            )

        customer_id = await self.stripe.find_customer_id(email)
        if not customer_id:
            raise NotFound("Nenhuma assinatura ativa encontrada. Assine um plano primeiro.")

        flow_data: dict[str, Any] | None = None
        if flow in _SUBSCRIPTION_FLOWS:
            active = await self.stripe.list_active_subscriptions(customer_id)
            if not active:
                raise NotFound("No active subscription found")
            flow_type = _SUBSCRIPTION_FLOWS[flow]
            flow_data = {"type": flow_type, flow_type: {"subscription": active[0]["id"]}}
        elif flow == "payment_method":
            flow_data = {"type": "payment_method_update"}

        session = await self.stripe.create_portal_session(customer_id, f"{origin}/subscription", flow_data)
        return {"url": session["url"]}
