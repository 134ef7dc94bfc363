"""Billing: subscriptions, checkout and AI token accounting."""

from wacrm.services.billing.checkout import BillingService
from wacrm.services.billing.stripe import StripeGateway, construct_webhook_event, get_stripe_gateway
from wacrm.services.billing.tokens import TokenLedger

__all__ = [
    "BillingService",
    "StripeGateway",
    "TokenLedger",
    "construct_webhook_event",
    "get_stripe_gateway",
]
