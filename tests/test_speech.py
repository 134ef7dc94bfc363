"""Tests for text-to-speech and object storage."""

import json

import httpx
import pytest

from wacrm.core.exceptions import ConfigurationError, PaymentRequired, UpstreamError, ValidationFailed
from wacrm.services.speech import InMemoryObjectStore, S3ObjectStore, SpeechService, get_speech_service
from wacrm.services.speech.elevenlabs import DEFAULT_VOICE_ID, MAX_TEXT_LENGTH

AUDIO = b"ID3fake-mp3"


class FakeElevenLabs:
    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status != 200:
            return httpx.Response(self.status, json={"detail": {"status": "quota_exceeded"}})
        if request.url.path == "/v1/voices":
            return httpx.Response(
                200,
                json={"voices": [{"voice_id": "v1", "name": "Sarah", "category": "premade", "labels": {"accent": "american"}}]},
            )
        return httpx.Response(200, content=AUDIO, headers={"content-type": "audio/mpeg"})


class FakeS3Client:
    def __init__(self, fail: bool = False) -> None:
        self.objects: list[dict] = []
        self.fail = fail

    def put_object(self, **kwargs):
        if self.fail:
            raise RuntimeError("access denied")
        self.objects.append(kwargs)
        return {"ETag": "etag"}


@pytest.fixture
def elevenlabs():
    return FakeElevenLabs()


@pytest.fixture
def store():
    return InMemoryObjectStore(base_url="https://cdn.test")


@pytest.fixture
def speech(elevenlabs, store):
    client = httpx.AsyncClient(transport=httpx.MockTransport(elevenlabs.handler))
    return SpeechService(api_key="xi-key", api_url="https://tts.test/v1", store=store, http_client=client)


@pytest.mark.asyncio
async def test_text_to_speech_stores_audio(speech, elevenlabs, store):
    url = await speech.text_to_speech("user-1", "  Olá, tudo bem?  ")

    assert url.startswith("https://cdn.test/tts/user-1/")
    assert url.endswith(".mp3")
    [(data, content_type)] = store.objects.values()
    assert data == AUDIO
    assert content_type == "audio/mpeg"

    request = elevenlabs.requests[0]
    assert request.url.path == f"/v1/text-to-speech/{DEFAULT_VOICE_ID}"
    assert request.headers["xi-api-key"] == "xi-key"
    assert json.loads(request.content)["text"] == "Olá, tudo bem?"


@pytest.mark.asyncio
async def test_custom_voice(speech, elevenlabs):
    await speech.synthesize("oi", voice_id="voice-42")
    assert elevenlabs.requests[0].url.path == "/v1/text-to-speech/voice-42"


@pytest.mark.asyncio
@pytest.mark.parametrize("text", [None, "", "   ", "x" * (MAX_TEXT_LENGTH + 1)])
async def test_synthesize_validation(speech, elevenlabs, text):
    with pytest.raises(ValidationFailed):
        await speech.synthesize(text)
    assert elevenlabs.requests == []


@pytest.mark.asyncio
async def test_quota_exceeded(speech, elevenlabs):
    elevenlabs.status = 402
    with pytest.raises(PaymentRequired):
        await speech.synthesize("oi")


@pytest.mark.asyncio
async def test_missing_api_key(store):
    with pytest.raises(ConfigurationError):
        await SpeechService(api_key="", store=store).synthesize("oi")


@pytest.mark.asyncio
async def test_list_voices(speech):
    [voice] = await speech.list_voices()
    assert voice["voice_id"] == "v1"
    assert voice["labels"] == {"accent": "american"}
    assert voice["preview_url"] is None


@pytest.mark.asyncio
async def test_s3_object_store():
    client = FakeS3Client()
    store = S3ObjectStore(bucket="media", client=client, public_base_url="https://media.test/")

    url = await store.put("tts/a.mp3", AUDIO, "audio/mpeg")

    assert url == "https://media.test/tts/a.mp3"
    assert client.objects == [{"Bucket": "media", "Key": "tts/a.mp3", "Body": AUDIO, "ContentType": "audio/mpeg"}]


@pytest.mark.asyncio
async def test_s3_upload_failure():
    store = S3ObjectStore(bucket="media", client=FakeS3Client(fail=True), public_base_url="https://media.test")
    with pytest.raises(UpstreamError):
        await store.put("tts/a.mp3", AUDIO, "audio/mpeg")


@pytest.mark.asyncio
async def test_speech_functions(app, client, auth_headers, speech):
    app.dependency_overrides[get_speech_service] = lambda: speech

    response = await client.post("/functions/v1/text-to-speech", json={"text": "Bom dia"}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["audioUrl"].startswith("https://cdn.test/tts/user-1/")

    response = await client.post("/functions/v1/list-voices", headers=auth_headers)
    assert response.json()["voices"][0]["name"] == "Sarah"

    response = await client.post("/functions/v1/text-to-speech", json={"text": ""}, headers=auth_headers)
    assert response.status_code == 400
