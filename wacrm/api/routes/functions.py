"""Serverless function surface: one ``POST /functions/v1/<name>`` per function."""

from typing import Any

import structlog
from fastapi import APIRouter, Header, Request
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from wacrm.api.dependencies import (
    CurrentUserDep,
    GeoDataDep,
    LLMDep,
    OriginDep,
    SpeechDep,
    StorageDep,
    StripeDep,
    WhatsAppDep,
)
from wacrm.core.config import settings
from wacrm.core.exceptions import AuthenticationFailed, ConfigurationError, ValidationFailed
from wacrm.services.billing import BillingService, TokenLedger, construct_webhook_event
from wacrm.services.geodata import normalize_ufs
from wacrm.services.inbox import InboxSender, WebhookProcessor
from wacrm.services.instances import InstanceManager
from wacrm.services.intents import IntentClassifier, parse_intents
from wacrm.services.warming import WarmingProcessor, advance_warming_day

logger = structlog.get_logger()

router = APIRouter(prefix="/functions/v1", tags=["Functions"])


# ==================== Pydantic Schemas ====================


class FunctionBody(BaseModel):
    """Request bodies use camelCase keys, like the web app sends them."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class CheckoutRequest(FunctionBody):
    plan: str | None = None


class PurchaseTokensRequest(FunctionBody):
    package_id: str | None = None


class PortalRequest(FunctionBody):
    flow: str | None = None


class ConsumeTokensRequest(FunctionBody):
    tokens: Any = None
    description: str | None = None
    metadata: dict[str, Any] | None = None


class CreateInstanceRequest(FunctionBody):
    instance_name: Any = None
    force_recreate: bool = False
    is_notification_only: bool = False


class InstanceRequest(FunctionBody):
    instance_name: str | None = None


class TextToSpeechRequest(FunctionBody):
    text: str | None = None
    voice_id: str | None = None


class IntentConditionRequest(FunctionBody):
    user_message: str | None = None
    intents: list[dict[str, Any]] | None = None
    intent_description: str | None = None
    ai_config_id: str | None = None


class SendInboxMessageRequest(FunctionBody):
    conversation_id: str | None = None
    content: str | None = None
    instance_id: str | None = None


class GeoDataRequest(FunctionBody):
    uf: Any = None
    ufs: Any = None


# ==================== Billing ====================


@router.post("/create-checkout")
async def create_checkout(
    body: CheckoutRequest,
    user: CurrentUserDep,
    storage: StorageDep,
    stripe: StripeDep,
    origin: OriginDep,
) -> dict[str, str]:
    """Start a subscription checkout for a plan."""
    return await BillingService(storage, stripe).create_checkout(user, body.plan, origin)


@router.post("/purchase-ai-tokens")
async def purchase_ai_tokens(
    body: PurchaseTokensRequest,
    user: CurrentUserDep,
    storage: StorageDep,
    stripe: StripeDep,
    origin: OriginDep,
) -> dict[str, str]:
    """Start a one-off checkout for an AI token package."""
    return await BillingService(storage, stripe).purchase_tokens(user, body.package_id, origin)


@router.post("/check-subscription")
async def check_subscription(
    user: CurrentUserDep,
    storage: StorageDep,
    stripe: StripeDep,
) -> dict[str, Any]:
    """Sync the caller's subscription with the payment processor."""
    return await BillingService(storage, stripe).check_subscription(user)


@router.post("/customer-portal")
async def customer_portal(
    user: CurrentUserDep,
    storage: StorageDep,
    stripe: StripeDep,
    origin: OriginDep,
    body: PortalRequest | None = None,
) -> dict[str, str]:
    """Open the billing portal, optionally on a specific flow."""
    flow = body.flow if body else None
    return await BillingService(storage, stripe).customer_portal(user, origin, flow)


@router.post("/consume-ai-tokens")
async def consume_ai_tokens(
    body: ConsumeTokensRequest,
    user: CurrentUserDep,
    storage: StorageDep,
) -> dict[str, Any]:
    """Debit AI tokens from the caller's balance."""
    return await TokenLedger(storage).consume(user.id, body.tokens, body.description, body.metadata)


@router.post("/stripe-tokens-webhook")
async def stripe_tokens_webhook(
    request: Request,
    storage: StorageDep,
    stripe_signature: str | None = Header(None),
) -> dict[str, Any]:
    """Credit purchased tokens once the payment processor confirms a checkout."""
    payload = await request.body()
    if settings.stripe_webhook_secret:
        event = construct_webhook_event(payload, stripe_signature, settings.stripe_webhook_secret)
    elif settings.is_development:
        logger.warning("Accepting unsigned payment webhook in development mode")
        try:
            event = await request.json()
        except ValueError:
            raise ValidationFailed("Invalid JSON body")
    else:
        raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not set")

    logger.info("Payment webhook received", event_type=event.get("type"))
    return await TokenLedger(storage).handle_checkout_event(event)


# ==================== Instances ====================


@router.post("/create-instance")
async def create_instance(
    body: CreateInstanceRequest,
    user: CurrentUserDep,
    storage: StorageDep,
    whatsapp: WhatsAppDep,
) -> dict[str, Any]:
    """Create a WhatsApp instance on the gateway."""
    return await InstanceManager(storage, whatsapp).create(
        user.id,
        body.instance_name,
        force_recreate=body.force_recreate,
        is_notification_only=body.is_notification_only,
    )


@router.post("/connect-instance")
async def connect_instance(
    body: InstanceRequest,
    user: CurrentUserDep,
    storage: StorageDep,
    whatsapp: WhatsAppDep,
) -> dict[str, Any]:
    """Fetch a pairing QR code."""
    return await InstanceManager(storage, whatsapp).connect(user.id, body.instance_name)


@router.post("/check-connection-status")
async def check_connection_status(
    body: InstanceRequest,
    user: CurrentUserDep,
    storage: StorageDep,
    whatsapp: WhatsAppDep,
) -> dict[str, Any]:
    """Refresh an instance's connection status and profile."""
    return await InstanceManager(storage, whatsapp).check_status(user.id, body.instance_name)


@router.post("/delete-instance")
async def delete_instance(
    body: InstanceRequest,
    user: CurrentUserDep,
    storage: StorageDep,
    whatsapp: WhatsAppDep,
) -> dict[str, Any]:
    """Delete an instance on the gateway and locally."""
    return await InstanceManager(storage, whatsapp).delete(user.id, body.instance_name)


# ==================== Speech ====================


@router.post("/text-to-speech")
async def text_to_speech(
    body: TextToSpeechRequest,
    user: CurrentUserDep,
    speech: SpeechDep,
) -> dict[str, str]:
    """Synthesize text and return the stored audio URL."""
    audio_url = await speech.text_to_speech(user.id, body.text, body.voice_id)
    return {"audioUrl": audio_url}


@router.post("/list-voices")
async def list_voices(user: CurrentUserDep, speech: SpeechDep) -> dict[str, Any]:
    """Voices available for synthesis."""
    return {"voices": await speech.list_voices()}


# ==================== Chatbot ====================


@router.post("/chatbot-ai-condition")
async def chatbot_ai_condition(
    body: IntentConditionRequest,
    user: CurrentUserDep,
    storage: StorageDep,
    llm: LLMDep,
) -> dict[str, Any]:
    """Classify a user message against chatbot intents."""
    agent = await storage.get_agent_config(body.ai_config_id) if body.ai_config_id else None
    if agent is not None and agent.user_id != user.id:
        logger.warning("Ignoring agent config owned by another user", user_id=user.id, ai_config_id=agent.id)
        agent = None
    result = await IntentClassifier(llm).classify(
        body.user_message,
        intents=parse_intents(body.intents),
        intent_description=body.intent_description,
        agent=agent,
    )
    return result.to_dict()


# ==================== Warming ====================


@router.post("/process-warming")
async def process_warming(
    user: CurrentUserDep,
    storage: StorageDep,
    whatsapp: WhatsAppDep,
) -> dict[str, Any]:
    """Run one warming tick."""
    logger.info("Warming tick requested", user_id=user.id)
    return await WarmingProcessor(storage, whatsapp).run()


@router.post("/advance-warming-day")
async def advance_day(user: CurrentUserDep, storage: StorageDep) -> dict[str, Any]:
    """Advance every active warming schedule by one day."""
    logger.info("Warming day advance requested", user_id=user.id)
    report = await advance_warming_day(storage)
    return report.to_dict()


# ==================== Inbox ====================


@router.post("/receive-webhook")
async def receive_webhook(
    request: Request,
    storage: StorageDep,
    whatsapp: WhatsAppDep,
    apikey: str | None = Header(None),
) -> dict[str, Any]:
    """Gateway webhook. Authenticated by the gateway api key, not a bearer token."""
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationFailed("Invalid JSON body")
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid JSON body")

    if not whatsapp.validate_webhook(apikey or payload.get("apikey")):
        logger.warning("Rejected gateway webhook", instance=payload.get("instance"))
        raise AuthenticationFailed("Invalid webhook api key")

    return await WebhookProcessor(storage, whatsapp).handle(payload)


@router.post("/send-inbox-message")
async def send_inbox_message(
    body: SendInboxMessageRequest,
    user: CurrentUserDep,
    storage: StorageDep,
    whatsapp: WhatsAppDep,
) -> dict[str, Any]:
    """Send a text reply from the inbox."""
    return await InboxSender(storage, whatsapp).send(user.id, body.conversation_id, body.content, body.instance_id)


# ==================== Geodata ====================


@router.post("/geodata-municipalities")
async def geodata_municipalities(
    body: GeoDataRequest,
    user: CurrentUserDep,
    geodata: GeoDataDep,
) -> dict[str, Any]:
    """Municipality names for one or more states."""
    ufs = normalize_ufs(body.uf, body.ufs)
    return {"ufs": ufs, "municipalities": await geodata.municipalities(ufs)}


@router.post("/geodata-districts")
async def geodata_districts(
    body: GeoDataRequest,
    user: CurrentUserDep,
    geodata: GeoDataDep,
) -> dict[str, Any]:
    """District names for one or more states."""
    ufs = normalize_ufs(body.uf, body.ufs)
    return {"ufs": ufs, "districts": await geodata.districts(ufs)}
