"""Evolution API WhatsApp gateway adapter."""

import hmac
import uuid
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from wacrm.core.config import settings
from wacrm.core.exceptions import ChannelError, UpstreamError, raise_for_upstream_status
from wacrm.core.phone import extract_phone_from_jid, is_group_jid, to_whatsapp_number
from wacrm.models import (
    ConnectionUpdate,
    IncomingWebhookMessage,
    MessageStatus,
    MessageStatusUpdate,
    MessageType,
    OutgoingMessage,
)
from wacrm.services.channels.base import ChannelAdapter

logger = structlog.get_logger()

PROVIDER = "evolution"

WEBHOOK_EVENTS = ["MESSAGES_UPSERT", "MESSAGES_UPDATE", "CONNECTION_UPDATE"]

# Gateway ack names -> local status
ACK_STATUSES: dict[str, MessageStatus] = {
    "ERROR": MessageStatus.FAILED,
    "PENDING": MessageStatus.PENDING,
    "SERVER_ACK": MessageStatus.SENT,
    "DELIVERY_ACK": MessageStatus.DELIVERED,
    "READ": MessageStatus.READ,
    "PLAYED": MessageStatus.READ,
    "2": MessageStatus.SENT,
    "3": MessageStatus.DELIVERED,
    "4": MessageStatus.READ,
}


def normalize_event(event: str | None) -> str:
    """``MESSAGES_UPSERT`` and ``messages.upsert`` are the same event."""
    return (event or "").lower().replace("_", ".")


def _extract_content(message: dict[str, Any]) -> tuple[MessageType, str, str | None]:
    """Pull type, text and media URL out of a Baileys message object."""
    content = message.get("conversation") or (message.get("extendedTextMessage") or {}).get("text") or ""

    if image := message.get("imageMessage"):
        return MessageType.IMAGE, image.get("caption") or "", image.get("url")
    if audio := message.get("audioMessage"):
        kind = MessageType.VOICE if audio.get("ptt") else MessageType.AUDIO
        return kind, "", audio.get("url")
    if video := message.get("videoMessage"):
        return MessageType.VIDEO, video.get("caption") or "", video.get("url")
    if document := message.get("documentMessage"):
        file_name = document.get("fileName") or "Documento"
        caption = document.get("caption") or document.get("title") or ""
        text = f"{file_name}\n\n{caption}" if caption else file_name
        return MessageType.DOCUMENT, text, document.get("url")
    if sticker := message.get("stickerMessage"):
        return MessageType.STICKER, "", sticker.get("url")
    if location := message.get("locationMessage"):
        lat, lng = location.get("degreesLatitude"), location.get("degreesLongitude")
        return MessageType.LOCATION, location.get("name") or f"{lat},{lng}", None
    if contact := message.get("contactMessage"):
        return MessageType.CONTACT, contact.get("displayName") or "", None

    return MessageType.TEXT, content, None


class EvolutionWhatsAppAdapter(ChannelAdapter):
    """WhatsApp adapter for the Evolution API gateway.

    Handles:
    - Webhook parsing for message, status and connection events
    - Sending text and media messages
    - Instance lifecycle (create, QR code, state, delete)
    - Webhook apikey validation
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or settings.evolution_api_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.evolution_api_key
        self._client = http_client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)

        if self.api_key:
            logger.info("Evolution WhatsApp adapter initialized", base_url=self.base_url)
        else:
            logger.warning("Evolution API key not configured")

    @property
    def channel_name(self) -> str:
        return "whatsapp"

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Call the gateway and return the decoded JSON body."""
        if not self.api_key:
            raise ChannelError(
                "Evolution API not configured",
                channel="whatsapp",
                details={"reason": "missing_credentials"},
            )
        try:
            response = await self._client.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                params=params,
                headers={"apikey": self.api_key},
            )
        except httpx.HTTPError as e:
            logger.error("Evolution API unreachable", path=path, error=str(e))
            raise ChannelError("WhatsApp gateway unreachable", channel="whatsapp")

        if response.is_error:
            logger.error(
                "Evolution API error",
                path=path,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise_for_upstream_status(response.status_code, self._error_message(response), PROVIDER)

        if not response.content:
            return {}
        return response.json()

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or "WhatsApp gateway error"
        messages = (data.get("response") or {}).get("message") if isinstance(data, dict) else None
        if messages:
            return ", ".join(messages) if isinstance(messages, list) else str(messages)
        if isinstance(data, dict) and data.get("message"):
            return str(data["message"])
        return "WhatsApp gateway error"

    # ==================== Webhooks ====================

    def parse_webhook(self, payload: dict[str, Any]) -> list[IncomingWebhookMessage]:
        """Parse a ``messages.upsert`` payload.

        The gateway sends either one message as ``data`` or a batch under
        ``data.messages``. Group chats, status broadcasts and messages without
        text or media are dropped.
        """
        instance_name = payload.get("instance") or ""
        data = payload.get("data") or {}
        raw_messages = data.get("messages") if isinstance(data.get("messages"), list) else [data]

        parsed: list[IncomingWebhookMessage] = []
        for raw in raw_messages:
            key = raw.get("key") or {}
            remote_jid = key.get("remoteJid")
            if not remote_jid or not key.get("id"):
                logger.debug("Webhook message without key, skipping")
                continue
            if is_group_jid(remote_jid):
                logger.debug("Skipping group or status message", remote_jid=remote_jid)
                continue

            jid = remote_jid
            # Ads leads arrive with a label id; the real number is in remoteJidAlt
            if remote_jid.endswith("@lid") and key.get("remoteJidAlt"):
                jid = key["remoteJidAlt"]
            phone = to_whatsapp_number(extract_phone_from_jid(jid))
            if not phone:
                logger.warning("Could not extract phone from JID", remote_jid=remote_jid)
                continue

            message_type, content, media_url = _extract_content(raw.get("message") or {})
            if not content and not media_url:
                logger.debug("Message without content or media, skipping")
                continue

            timestamp = raw.get("messageTimestamp")
            parsed.append(
                IncomingWebhookMessage(
                    instance_name=instance_name,
                    whatsapp_message_id=key["id"],
                    remote_jid=remote_jid,
                    phone=phone,
                    from_me=key.get("fromMe") is True,
                    push_name=raw.get("pushName"),
                    content=content,
                    message_type=message_type,
                    media_url=media_url,
                    timestamp=(
                        datetime.fromtimestamp(int(timestamp), tz=timezone.utc).replace(tzinfo=None)
                        if timestamp
                        else None
                    ),
                    raw_payload=raw,
                )
            )

        logger.info("Parsed WhatsApp messages", instance_name=instance_name, count=len(parsed))
        return parsed

    def parse_status_update(self, payload: dict[str, Any]) -> MessageStatusUpdate | None:
        data = payload.get("data") or {}
        message_id = data.get("messageId") or data.get("keyId") or (data.get("key") or {}).get("id")
        raw_status = data.get("status")
        if not message_id or raw_status is None:
            return None
        status = ACK_STATUSES.get(str(raw_status).upper())
        if status is None:
            logger.debug("Unknown message status", status=raw_status)
            return None
        return MessageStatusUpdate(
            instance_name=payload.get("instance") or "",
            whatsapp_message_id=message_id,
            status=status,
        )

    def parse_connection_update(self, payload: dict[str, Any]) -> ConnectionUpdate | None:
        state = (payload.get("data") or {}).get("state")
        if not state:
            return None
        return ConnectionUpdate(instance_name=payload.get("instance") or "", state=state)

    def validate_webhook(self, api_key: str | None) -> bool:
        """Compare the ``apikey`` the gateway sent with the configured key."""
        if not self.api_key:
            if settings.is_development:
                logger.warning("Skipping webhook validation in development mode")
                return True
            return False
        if not api_key:
            return False
        return hmac.compare_digest(api_key.encode(), self.api_key.encode())

    # ==================== Messages ====================

    async def send_message(self, message: OutgoingMessage) -> dict[str, Any]:
        """Send a text, media or voice message.

        Returns:
            Dict with the gateway message ID and status
        """
        number = message.number
        if message.message_type == MessageType.TEXT:
            path = f"/message/sendText/{message.instance_name}"
            body: dict[str, Any] = {"number": number, "text": message.content}
        else:
            if not message.media_url:
                raise ChannelError(
                    "Media message without media_url",
                    channel="whatsapp",
                    details={"message_type": message.message_type.value},
                )
            endpoint = (
                "sendWhatsAppAudio"
                if message.message_type in (MessageType.AUDIO, MessageType.VOICE)
                else "sendMedia"
            )
            path = f"/message/{endpoint}/{message.instance_name}"
            body = {"number": number, "media": message.media_url, "caption": message.content}
            if endpoint == "sendMedia":
                body["mediatype"] = message.message_type.value

        result = await self._request("POST", path, json=body)
        message_id = (result.get("key") or {}).get("id") if isinstance(result, dict) else None

        logger.info(
            "Sent WhatsApp message",
            instance_name=message.instance_name,
            message_type=message.message_type.value,
            message_id=message_id,
        )
        return {"message_id": message_id, "status": "sent", "to": number}

    # ==================== Instances ====================

    async def fetch_instance(self, instance_name: str) -> dict[str, Any] | None:
        """Find an instance on the gateway by exact name. A 404 means it does not exist."""
        try:
            result = await self._request(
                "GET",
                "/instance/fetchInstances",
                params={"instanceName": instance_name},
            )
        except UpstreamError as e:
            if e.details.get("upstream_status") == 404:
                return None
            raise
        items = result if isinstance(result, list) else [result] if result else []
        for item in items:
            inner = item.get("instance") if isinstance(item.get("instance"), dict) else item
            if instance_name in (inner.get("name"), inner.get("instanceName")):
                return inner
        return None

    async def create_instance(self, instance_name: str, webhook_url: str) -> dict[str, Any]:
        """Create an instance that posts its events to ``webhook_url``."""
        body = {
            "instanceName": instance_name,
            "integration": "WHATSAPP-BAILEYS",
            "token": str(uuid.uuid4()),
            "qrcode": True,
            "webhook": {
                "enabled": True,
                "url": webhook_url,
                "byEvents": False,
                "base64": False,
                "headers": {},
                "events": WEBHOOK_EVENTS,
            },
        }
        result = await self._request("POST", "/instance/create", json=body)
        logger.info("Instance created on gateway", instance_name=instance_name)
        return result

    async def connect_instance(self, instance_name: str) -> dict[str, Any]:
        """Ask the gateway for a QR code / pairing code."""
        result = await self._request("GET", f"/instance/connect/{instance_name}")
        qrcode = result.get("qrcode") or {}
        return {
            "base64": result.get("base64") or qrcode.get("base64"),
            "pairingCode": result.get("pairingCode") or qrcode.get("pairingCode"),
            "code": result.get("code") or qrcode.get("code"),
        }

    async def connection_state(self, instance_name: str) -> str:
        result = await self._request("GET", f"/instance/connectionState/{instance_name}")
        return result.get("state") or (result.get("instance") or {}).get("state") or "close"

    async def delete_instance(self, instance_name: str) -> None:
        await self._request("DELETE", f"/instance/delete/{instance_name}")
        logger.info("Instance deleted on gateway", instance_name=instance_name)


# Singleton instance
_whatsapp_adapter: EvolutionWhatsAppAdapter | None = None


def get_whatsapp_adapter() -> EvolutionWhatsAppAdapter:
    """Get or create the WhatsApp adapter singleton."""
    global _whatsapp_adapter
    if _whatsapp_adapter is None:
        _whatsapp_adapter = EvolutionWhatsAppAdapter()
    return _whatsapp_adapter
