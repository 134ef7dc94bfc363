"""Tests for checkout, subscription sync, billing portal and AI tokens."""

import hashlib
import hmac
import json
import time
from types import SimpleNamespace

import pytest
import pytest_asyncio
import stripe

from wacrm.core.config import settings
from wacrm.core.exceptions import (
    ConfigurationError,
    Conflict,
    InsufficientTokens,
    NotFound,
    RateLimitExceeded,
    UpstreamError,
    ValidationFailed,
)
from wacrm.core.security import AuthUser
from wacrm.models import PlanKey, Subscription, SubscriptionStatus, TokenBalance, TokenPackage
from wacrm.models.billing import PLANS
from wacrm.services.billing import (
    BillingService,
    StripeGateway,
    TokenLedger,
    construct_webhook_event,
    get_stripe_gateway,
)

USER = AuthUser(id="user-1", email="owner@example.com")
ORIGIN = "https://app.example.com"


class Record(dict):
    """Dict with attribute access and ``to_dict``, like an SDK object."""

    def __getattr__(self, name: str):
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name)

    def to_dict(self) -> dict:
        return dict(self)


class FakeStripe:
    """Records SDK calls and answers like the payment processor."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.customers: dict[str, str] = {}
        self.subscriptions: list[dict] = []
        self.error: Exception | None = None
        self.v1 = SimpleNamespace(
            customers=SimpleNamespace(list_async=self._endpoint("customers.list", self._list_customers)),
            subscriptions=SimpleNamespace(
                list_async=self._endpoint("subscriptions.list", lambda params: self._page(self.subscriptions))
            ),
            checkout=SimpleNamespace(
                sessions=SimpleNamespace(
                    create_async=self._endpoint(
                        "checkout.sessions.create",
                        lambda params: Record(id="cs_1", url="https://checkout.stripe.test/cs_1"),
                    )
                )
            ),
            billing_portal=SimpleNamespace(
                sessions=SimpleNamespace(
                    create_async=self._endpoint(
                        "billing_portal.sessions.create",
                        lambda params: Record(id="bps_1", url="https://billing.stripe.test/bps_1"),
                    )
                )
            ),
        )

    @staticmethod
    def _page(items: list[dict]) -> SimpleNamespace:
        return SimpleNamespace(data=[Record(item) for item in items])

    def _list_customers(self, params: dict) -> SimpleNamespace:
        email = params.get("email")
        return self._page([{"id": self.customers[email]}] if email in self.customers else [])

    def _endpoint(self, name, answer):
        async def call(params=None, options=None):
            self.calls.append((name, params or {}))
            if self.error is not None:
                raise self.error
            return answer(params or {})

        return call

    def params(self, index: int = -1) -> dict:
        return self.calls[index][1]

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def fake_stripe():
    return FakeStripe()


@pytest.fixture
def stripe_gateway(fake_stripe):
    return StripeGateway(api_key="sk_test", client=fake_stripe)


@pytest.fixture
def billing(storage, stripe_gateway):
    return BillingService(storage, stripe_gateway)


@pytest_asyncio.fixture
async def package(storage):
    pkg = TokenPackage(id="pkg-1", name="10k", tokens=10000, price_brl=49.9, stripe_price_id="price_tokens")
    await storage.save_token_package(pkg)
    return pkg


def active_subscription(plan: PlanKey, period_end: int = 1767225600) -> dict:
    return {
        "id": "sub_1",
        "items": {
            "data": [
                {
                    "current_period_end": period_end,
                    "price": {"id": PLANS[plan].price_id, "product": PLANS[plan].product_id},
                }
            ]
        },
    }


# ==================== Checkout ====================


@pytest.mark.asyncio
async def test_invalid_plan_makes_no_external_call(billing, fake_stripe):
    with pytest.raises(ValidationFailed) as exc:
        await billing.create_checkout(USER, "platinum", ORIGIN)
    assert exc.value.message == "Invalid plan: platinum"
    assert fake_stripe.calls == []


@pytest.mark.asyncio
async def test_free_plan_cannot_be_checked_out(billing, fake_stripe):
    with pytest.raises(ValidationFailed):
        await billing.create_checkout(USER, "free", ORIGIN)
    assert fake_stripe.calls == []


@pytest.mark.asyncio
async def test_checkout_for_new_customer(billing, fake_stripe):
    result = await billing.create_checkout(USER, "profissional", ORIGIN)

    assert result == {"url": "https://checkout.stripe.test/cs_1"}
    params = fake_stripe.params()
    assert params["mode"] == "subscription"
    assert params["line_items"][0]["price"] == PLANS[PlanKey.PROFISSIONAL].price_id
    assert params["customer_email"] == USER.email
    assert params["success_url"] == f"{ORIGIN}/subscription?success=true&plan=profissional"
    assert params["cancel_url"] == f"{ORIGIN}/subscription?canceled=true"


@pytest.mark.asyncio
async def test_checkout_reuses_existing_customer(billing, fake_stripe):
    fake_stripe.customers[USER.email] = "cus_1"

    await billing.create_checkout(USER, "essencial", ORIGIN)

    params = fake_stripe.params()
    assert params["customer"] == "cus_1"
    assert "customer_email" not in params


@pytest.mark.asyncio
async def test_checkout_rate_limit_maps_to_429(billing, fake_stripe):
    fake_stripe.error = stripe.RateLimitError("Too many requests", http_status=429)
    with pytest.raises(RateLimitExceeded):
        await billing.create_checkout(USER, "essencial", ORIGIN)


@pytest.mark.asyncio
async def test_checkout_processor_errors(billing, fake_stripe):
    fake_stripe.error = stripe.InvalidRequestError("No such price", param="line_items", http_status=400)
    with pytest.raises(UpstreamError) as exc:
        await billing.create_checkout(USER, "essencial", ORIGIN)
    assert exc.value.details["upstream_status"] == 400

    fake_stripe.error = stripe.APIConnectionError("connection reset")
    with pytest.raises(UpstreamError) as exc:
        await billing.create_checkout(USER, "essencial", ORIGIN)
    assert exc.value.message == "Payment processor unreachable"


@pytest.mark.asyncio
async def test_missing_api_key_is_a_configuration_error(storage):
    billing = BillingService(storage, StripeGateway(api_key=""))
    with pytest.raises(ConfigurationError):
        await billing.create_checkout(USER, "essencial", ORIGIN)


@pytest.mark.asyncio
async def test_purchase_tokens(billing, fake_stripe, package):
    result = await billing.purchase_tokens(USER, "pkg-1", ORIGIN)

    assert result["url"].startswith("https://checkout.stripe.test/")
    params = fake_stripe.params()
    assert params["mode"] == "payment"
    assert params["line_items"][0]["price"] == "price_tokens"
    assert params["metadata"]["type"] == "ai_tokens_purchase"
    assert params["metadata"]["tokens"] == "10000"
    assert params["metadata"]["user_id"] == "user-1"


@pytest.mark.asyncio
async def test_purchase_inactive_package(billing, storage, package):
    package.is_active = False
    await storage.save_token_package(package)
    with pytest.raises(NotFound):
        await billing.purchase_tokens(USER, "pkg-1", ORIGIN)
    with pytest.raises(ValidationFailed):
        await billing.purchase_tokens(USER, None, ORIGIN)


# ==================== Subscription sync ====================


@pytest.mark.asyncio
async def test_check_subscription_without_customer(billing, storage):
    result = await billing.check_subscription(USER)

    assert result == {
        "subscribed": False,
        "plan": "free",
        "max_instances": 1,
        "max_contacts": 500,
        "subscription_end": None,
    }
    stored = await storage.get_subscription("user-1")
    assert stored.status == SubscriptionStatus.INACTIVE


@pytest.mark.asyncio
async def test_check_subscription_maps_product_to_plan(billing, fake_stripe, storage):
    fake_stripe.customers[USER.email] = "cus_1"
    fake_stripe.subscriptions = [active_subscription(PlanKey.AGENCIA)]

    result = await billing.check_subscription(USER)

    assert result["subscribed"] is True
    assert result["plan"] == "agencia"
    assert result["max_instances"] == 30
    assert result["max_contacts"] is None
    assert result["subscription_end"].startswith("2026-01-01")
    stored = await storage.get_subscription("user-1")
    assert stored.stripe_subscription_id == "sub_1"
    assert stored.stripe_customer_id == "cus_1"


@pytest.mark.asyncio
async def test_check_subscription_downgrades_when_nothing_active(billing, fake_stripe, storage):
    await storage.save_subscription(
        Subscription(user_id="user-1", plan=PlanKey.AGENCIA, status=SubscriptionStatus.ACTIVE, max_instances=30)
    )
    fake_stripe.customers[USER.email] = "cus_1"

    result = await billing.check_subscription(USER)

    assert result["plan"] == "free"
    assert result["max_instances"] == 1


@pytest.mark.asyncio
async def test_manual_subscription_is_left_alone(billing, fake_stripe, storage):
    await storage.save_subscription(
        Subscription(
            user_id="user-1",
            plan=PlanKey.AVANCADO,
            status=SubscriptionStatus.ACTIVE,
            max_instances=50,
            manual_override=True,
        )
    )

    result = await billing.check_subscription(USER)

    assert result["plan"] == "avancado"
    assert fake_stripe.calls == []
    with pytest.raises(Conflict) as exc:
        await billing.customer_portal(USER, ORIGIN)
    assert exc.value.code == "MANUAL_SUBSCRIPTION"


# ==================== Portal ====================


@pytest.mark.asyncio
async def test_portal_requires_customer(billing):
    with pytest.raises(NotFound):
        await billing.customer_portal(USER, ORIGIN)


@pytest.mark.asyncio
async def test_portal_cancel_flow(billing, fake_stripe):
    fake_stripe.customers[USER.email] = "cus_1"
    fake_stripe.subscriptions = [active_subscription(PlanKey.ESSENCIAL)]

    result = await billing.customer_portal(USER, ORIGIN, flow="cancel")

    assert result == {"url": "https://billing.stripe.test/bps_1"}
    params = fake_stripe.params()
    assert params["flow_data"]["type"] == "subscription_cancel"
    assert params["flow_data"]["subscription_cancel"]["subscription"] == "sub_1"
    assert params["return_url"] == f"{ORIGIN}/subscription"


@pytest.mark.asyncio
async def test_portal_payment_method_flow(billing, fake_stripe):
    fake_stripe.customers[USER.email] = "cus_1"
    await billing.customer_portal(USER, ORIGIN, flow="payment_method")
    assert fake_stripe.params()["flow_data"]["type"] == "payment_method_update"
    assert "subscriptions.list" not in fake_stripe.names()


# ==================== Tokens ====================


@pytest.mark.asyncio
async def test_consume_tokens(storage):
    await storage.save_token_balance(TokenBalance(user_id="user-1", balance=100))
    ledger = TokenLedger(storage)

    result = await ledger.consume("user-1", 30, "Assistente")

    assert result == {
        "success": True,
        "consumed": 30,
        "balance": 70,
        "message": "30 tokens consumidos com sucesso.",
    }
    [transaction] = await storage.list_token_transactions("user-1")
    assert transaction.amount == -30
    assert transaction.balance_after == 70
    balance = await storage.get_token_balance("user-1")
    assert balance.total_consumed == 30


@pytest.mark.asyncio
@pytest.mark.parametrize("tokens", [0, -5, "10", 1.5, True, None])
async def test_consume_rejects_non_positive_amounts(storage, tokens):
    with pytest.raises(ValidationFailed):
        await TokenLedger(storage).consume("user-1", tokens)


@pytest.mark.asyncio
async def test_consume_more_than_balance(storage):
    await storage.save_token_balance(TokenBalance(user_id="user-1", balance=10))
    with pytest.raises(InsufficientTokens) as exc:
        await TokenLedger(storage).consume("user-1", 11)
    assert exc.value.details == {"balance": 10, "required": 11}
    assert (await storage.get_token_balance("user-1")).balance == 10


def token_checkout(session_id: str = "cs_1", tokens: str = "5000") -> dict:
    return {
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "metadata": {"user_id": "user-2", "tokens": tokens, "package_id": "pkg-1", "type": "ai_tokens_purchase"},
            }
        },
    }


@pytest.mark.asyncio
async def test_checkout_event_credits_tokens(storage):
    assert await TokenLedger(storage).handle_checkout_event(token_checkout()) == {"received": True}

    balance = await storage.get_token_balance("user-2")
    assert balance.balance == 5000
    assert balance.total_purchased == 5000
    [transaction] = await storage.list_token_transactions("user-2")
    assert transaction.id == "checkout-cs_1"
    assert transaction.metadata["checkout_session_id"] == "cs_1"


@pytest.mark.asyncio
async def test_redelivered_checkout_event_credits_once(storage):
    ledger = TokenLedger(storage)

    await ledger.handle_checkout_event(token_checkout("cs_7", "1000"))
    result = await ledger.handle_checkout_event(token_checkout("cs_7", "1000"))
    await ledger.handle_checkout_event(token_checkout("cs_8", "1000"))

    assert result == {"received": True, "duplicate": True}
    assert (await storage.get_token_balance("user-2")).balance == 2000
    assert len(await storage.list_token_transactions("user-2")) == 2


@pytest.mark.asyncio
async def test_checkout_event_for_subscription_is_skipped(storage):
    event = {"type": "checkout.session.completed", "data": {"object": {"id": "cs_1", "metadata": {}}}}
    assert await TokenLedger(storage).handle_checkout_event(event) == {"received": True, "skipped": True}


# ==================== Webhook signatures ====================


def sign(payload: bytes, secret: str, timestamp: int) -> str:
    digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def test_construct_webhook_event():
    payload = json.dumps({"id": "evt_1", "object": "event", "type": "checkout.session.completed"}).encode()

    event = construct_webhook_event(payload, sign(payload, "whsec", int(time.time())), "whsec")

    assert event["type"] == "checkout.session.completed"
    assert event["id"] == "evt_1"


@pytest.mark.parametrize(
    "header",
    [None, "garbage", "t=1,v1=deadbeef"],
)
def test_construct_webhook_event_rejects(header):
    with pytest.raises(ValidationFailed):
        construct_webhook_event(b"{}", header, "whsec")


def test_stale_signature_is_rejected():
    payload = b"{}"
    with pytest.raises(ValidationFailed):
        construct_webhook_event(payload, sign(payload, "whsec", int(time.time()) - 301), "whsec")


# ==================== Functions ====================


@pytest.fixture
def billing_app(app, stripe_gateway):
    app.dependency_overrides[get_stripe_gateway] = lambda: stripe_gateway
    return app


@pytest.mark.asyncio
async def test_create_checkout_function(billing_app, client, auth_headers, fake_stripe):
    response = await client.post(
        "/functions/v1/create-checkout",
        json={"plan": "essencial"},
        headers={**auth_headers, "Origin": ORIGIN},
    )
    assert response.status_code == 200
    assert response.json() == {"url": "https://checkout.stripe.test/cs_1"}
    assert fake_stripe.params()["success_url"].startswith(ORIGIN)


@pytest.mark.asyncio
async def test_create_checkout_function_invalid_plan(billing_app, client, auth_headers, fake_stripe):
    response = await client.post("/functions/v1/create-checkout", json={"plan": "gold"}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid plan: gold"
    assert fake_stripe.calls == []


@pytest.mark.asyncio
async def test_consume_tokens_function_insufficient(billing_app, client, auth_headers, storage):
    await storage.save_token_balance(TokenBalance(user_id="user-1", balance=5))

    response = await client.post("/functions/v1/consume-ai-tokens", json={"tokens": 50}, headers=auth_headers)

    assert response.status_code == 402
    body = response.json()
    assert body["error"] == "insufficient_balance"
    assert body["balance"] == 5
    assert body["required"] == 50


@pytest.mark.asyncio
async def test_consume_tokens_function_rejects_zero(billing_app, client, auth_headers):
    response = await client.post("/functions/v1/consume-ai-tokens", json={"tokens": 0}, headers=auth_headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_signed_tokens_webhook(billing_app, client, storage, monkeypatch):
    monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_test")
    payload = json.dumps(
        {
            "type": "checkout.session.completed",
            "data": {"object": {"id": "cs_9", "metadata": {"user_id": "user-1", "tokens": "1000", "type": "ai_tokens_purchase"}}},
        }
    ).encode()

    bad = await client.post(
        "/functions/v1/stripe-tokens-webhook",
        content=payload,
        headers={"Stripe-Signature": sign(payload, "wrong", int(time.time()))},
    )
    assert bad.status_code == 400
    assert await storage.get_token_balance("user-1") is None

    good = await client.post(
        "/functions/v1/stripe-tokens-webhook",
        content=payload,
        headers={"Stripe-Signature": sign(payload, "whsec_test", int(time.time()))},
    )
    assert good.status_code == 200
    assert (await storage.get_token_balance("user-1")).balance == 1000
