"""Text-to-speech through ElevenLabs."""

import uuid
from typing import Any

import httpx
import structlog

from wacrm.core.config import settings
from wacrm.core.exceptions import (
    ConfigurationError,
    UpstreamError,
    ValidationFailed,
    raise_for_upstream_status,
)
from wacrm.services.speech.object_store import ObjectStore, get_object_store

logger = structlog.get_logger()

PROVIDER = "elevenlabs"
DEFAULT_VOICE_ID = "EXAVITQu4vr4xnSDxMaL"
MAX_TEXT_LENGTH = 5000

VOICE_SETTINGS = {
    "stability": 0.5,
    "similarity_boost": 0.75,
    "style": 0.0,
    "use_speaker_boost": True,
}


class SpeechService:
    """Synthesizes speech and publishes the audio through object storage."""

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        model_id: str | None = None,
        store: ObjectStore | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.elevenlabs_api_key
        self.api_url = (api_url or settings.elevenlabs_api_url).rstrip("/")
        self.model_id = model_id or settings.elevenlabs_model_id
        self.store = store or get_object_store()
        self._client = http_client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        if not self.api_key:
            raise ConfigurationError("ElevenLabs API key not configured")
        try:
            response = await self._client.request(
                method,
                f"{self.api_url}{path}",
                headers={"xi-api-key": self.api_key},
                **kwargs,
            )
        except httpx.HTTPError as e:
            logger.error("ElevenLabs unreachable", path=path, error=str(e))
            raise UpstreamError("Speech provider unreachable", provider=PROVIDER)

        if response.is_error:
            logger.error(
                "ElevenLabs API error",
                path=path,
                status_code=response.status_code,
                body=response.text[:300],
            )
            raise_for_upstream_status(response.status_code, "Speech provider error", PROVIDER)
        return response

    async def list_voices(self) -> list[dict[str, Any]]:
        """Voices available to the account."""
        response = await self._request("GET", "/voices")
        voices = response.json().get("voices") or []
        return [
            {
                "voice_id": v.get("voice_id"),
                "name": v.get("name"),
                "category": v.get("category"),
                "labels": v.get("labels") or {},
                "preview_url": v.get("preview_url"),
            }
            for v in voices
        ]

    async def synthesize(self, text: str | None, voice_id: str | None = None) -> bytes:
        """Render ``text`` as MP3 audio."""
        text = (text or "").strip()
        if not text:
            raise ValidationFailed("text is required")
        if len(text) > MAX_TEXT_LENGTH:
            raise ValidationFailed(
                f"text must be at most {MAX_TEXT_LENGTH} characters",
                details={"length": len(text)},
            )

        voice = voice_id or DEFAULT_VOICE_ID
        response = await self._request(
            "POST",
            f"/text-to-speech/{voice}",
            json={"text": text, "model_id": self.model_id, "voice_settings": VOICE_SETTINGS},
            headers={"Accept": "audio/mpeg"},
        )
        logger.info("Speech synthesized", voice_id=voice, chars=len(text), bytes=len(response.content))
        return response.content

    async def text_to_speech(self, user_id: str, text: str | None, voice_id: str | None = None) -> str:
        """Synthesize and store audio, returning its URL."""
        audio = await self.synthesize(text, voice_id)
        key = f"tts/{user_id}/{uuid.uuid4()}.mp3"
        return await self.store.put(key, audio, "audio/mpeg")


# Singleton instance
_speech_service: SpeechService | None = None


def get_speech_service() -> SpeechService:
    """Get or create the speech service singleton."""
    global _speech_service
    if _speech_service is None:
        _speech_service = SpeechService()
    return _speech_service
