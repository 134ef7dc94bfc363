"""Text-to-speech and media object storage."""

from wacrm.services.speech.elevenlabs import SpeechService, get_speech_service
from wacrm.services.speech.object_store import (
    InMemoryObjectStore,
    ObjectStore,
    S3ObjectStore,
    get_object_store,
)

__all__ = [
    "InMemoryObjectStore",
    "ObjectStore",
    "S3ObjectStore",
    "SpeechService",
    "get_object_store",
    "get_speech_service",
]
