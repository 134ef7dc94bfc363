"""Subscription plans, feature gating and AI token accounting."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from wacrm.core.clock import utcnow


class PlanKey(str, Enum):
    FREE = "free"
    ESSENCIAL = "essencial"
    PROFISSIONAL = "profissional"
    AGENCIA = "agencia"
    AVANCADO = "avancado"


class PlanLimits(BaseModel):
    """None means unlimited."""

    instances: int | None
    messages: int | None
    contacts: int | None
    leads: int | None


class Plan(BaseModel):
    key: PlanKey
    name: str
    price: int
    price_id: str | None = None
    product_id: str | None = None
    limits: PlanLimits
    features: list[str] = Field(default_factory=list)


PLANS: dict[PlanKey, Plan] = {
    PlanKey.FREE: Plan(
        key=PlanKey.FREE,
        name="Gratuito",
        price=0,
        limits=PlanLimits(instances=1, messages=300, contacts=500, leads=50),
        features=["1 instância", "300 mensagens/mês", "500 contatos", "50 leads"],
    ),
    PlanKey.ESSENCIAL: Plan(
        key=PlanKey.ESSENCIAL,
        name="Essencial",
        price=147,
        price_id="price_1SijenIuIJFtamjKuzbqG8xt",
        product_id="prod_Tg5qEVTAzaY2d1",
        limits=PlanLimits(instances=3, messages=10000, contacts=10000, leads=1000),
        features=["3 instâncias", "10.000 mensagens/mês", "Aquecimento", "Funis de venda"],
    ),
    PlanKey.PROFISSIONAL: Plan(
        key=PlanKey.PROFISSIONAL,
        name="Profissional",
        price=297,
        price_id="price_1SijezIuIJFtamjK45VHVMhV",
        product_id="prod_Tg5qspfPups3iN",
        limits=PlanLimits(instances=10, messages=None, contacts=50000, leads=5000),
        features=["10 instâncias", "Mensagens ilimitadas", "Agente de IA", "Automações"],
    ),
    PlanKey.AGENCIA: Plan(
        key=PlanKey.AGENCIA,
        name="Agência",
        price=597,
        price_id="price_1SijfBIuIJFtamjKkRlLwfkh",
        product_id="prod_Tg5qcEw3OK7hU3",
        limits=PlanLimits(instances=30, messages=None, contacts=None, leads=25000),
        features=["30 instâncias", "Contatos ilimitados", "Multi-equipe", "Suporte prioritário"],
    ),
    PlanKey.AVANCADO: Plan(
        key=PlanKey.AVANCADO,
        name="Avançado",
        price=797,
        price_id="price_1SijfUIuIJFtamjKrRwGYD7o",
        product_id="prod_Tg5rhArqyzOqTt",
        limits=PlanLimits(instances=50, messages=None, contacts=None, leads=100000),
        features=["50 instâncias", "Contatos ilimitados", "100.000 leads", "Suporte prioritário"],
    ),
}

PRODUCT_TO_PLAN: dict[str, PlanKey] = {
    plan.product_id: key for key, plan in PLANS.items() if plan.product_id
}

_ALL = frozenset(PlanKey)
_PAID = _ALL - {PlanKey.FREE}
_PRO = frozenset({PlanKey.PROFISSIONAL, PlanKey.AGENCIA, PlanKey.AVANCADO})
_AGENCY = frozenset({PlanKey.AGENCIA, PlanKey.AVANCADO})

FEATURE_ACCESS: dict[str, frozenset[PlanKey]] = {
    "inbox": _ALL,
    "templates": _ALL,
    "campaigns": _ALL,
    "contacts": _ALL,
    "broadcast": _PAID,
    "funnels": _PAID,
    "warming": _PAID,
    "lead_search": _PAID,
    "analysis": _PRO,
    "automations": _PRO,
    "ai_agent": _PRO,
    "api": _PRO,
    "webhooks": _PRO,
    "multi_team": _AGENCY,
    "priority_support": _AGENCY,
}


def get_plan(key: str) -> Plan | None:
    try:
        return PLANS[PlanKey(key)]
    except ValueError:
        return None


def has_feature_access(plan: PlanKey | str, feature: str) -> bool:
    """Features missing from the table are open to every plan."""
    allowed = FEATURE_ACCESS.get(feature)
    if allowed is None:
        return True
    try:
        return PlanKey(plan) in allowed
    except ValueError:
        return False


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    TRIALING = "trialing"
    CANCELED = "canceled"


class Subscription(BaseModel):
    """Local mirror of the payment processor subscription, one per user."""

    user_id: str
    plan: PlanKey = PlanKey.FREE
    status: SubscriptionStatus = SubscriptionStatus.INACTIVE
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    stripe_price_id: str | None = None
    max_instances: int | None = None
    max_contacts: int | None = None
    current_period_end: datetime | None = None
    # Set by support when the plan is granted outside the payment processor
    manual_override: bool = False
    updated_at: datetime = Field(default_factory=utcnow)


class TokenPackage(BaseModel):
    """AI token pack sold as a one-off payment."""

    id: str
    name: str
    tokens: int = Field(..., gt=0)
    price_brl: float
    stripe_price_id: str
    stripe_product_id: str | None = None
    is_active: bool = True
    position: int = 0


class TokenBalance(BaseModel):
    user_id: str
    balance: int = Field(default=0, ge=0)
    total_purchased: int = Field(default=0, ge=0)
    total_consumed: int = Field(default=0, ge=0)
    updated_at: datetime = Field(default_factory=utcnow)


class TokenTransactionType(str, Enum):
    PURCHASE = "purchase"
    CONSUMPTION = "consumption"
    TRANSFER = "transfer"


class TokenTransaction(BaseModel):
    """Ledger entry. Consumption amounts are negative."""

    id: str
    user_id: str
    type: TokenTransactionType
    amount: int
    balance_after: int
    description: str | None = None
    package_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
