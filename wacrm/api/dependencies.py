"""FastAPI dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends, Header, Request

from wacrm.core.config import Settings, settings
from wacrm.core.security import AuthUser, decode_access_token, parse_bearer
from wacrm.services.billing import StripeGateway, get_stripe_gateway
from wacrm.services.channels.whatsapp import EvolutionWhatsAppAdapter, get_whatsapp_adapter
from wacrm.services.geodata import GeoDataService, get_geodata_service
from wacrm.services.llm.provider import LLMProvider, get_llm_provider
from wacrm.services.realtime import ConnectionManager, QueryCache
from wacrm.services.speech import SpeechService, get_speech_service
from wacrm.storage.base import StorageBackend
from wacrm.storage.memory import InMemoryStorage


# Storage singleton
_storage: StorageBackend | None = None


def get_storage() -> StorageBackend:
    """Get the storage backend singleton.

    Uses in-memory storage for development, Firestore for production.
    """
    global _storage
    if _storage is None:
        if settings.is_production and settings.gcp_project_id:
            from wacrm.storage.firestore import FirestoreStorage
            _storage = FirestoreStorage(project_id=settings.gcp_project_id)
        else:
            _storage = InMemoryStorage()
    return _storage


_connection_manager: ConnectionManager | None = None
_query_cache: QueryCache | None = None


def get_connection_manager() -> ConnectionManager:
    global _connection_manager
    if _connection_manager is None:
        _connection_manager = ConnectionManager()
    return _connection_manager


def get_query_cache() -> QueryCache:
    global _query_cache
    if _query_cache is None:
        _query_cache = QueryCache()
    return _query_cache


async def get_current_user(authorization: str | None = Header(None)) -> AuthUser:
    """Resolve the caller from the bearer token."""
    return decode_access_token(parse_bearer(authorization))


def get_origin(request: Request) -> str:
    """Origin used to build redirect URLs back into the web app."""
    return request.headers.get("origin") or settings.app_origin


# Type aliases for cleaner dependency injection
StorageDep = Annotated[StorageBackend, Depends(get_storage)]
SettingsDep = Annotated[Settings, Depends(lambda: settings)]
CurrentUserDep = Annotated[AuthUser, Depends(get_current_user)]
OriginDep = Annotated[str, Depends(get_origin)]

WhatsAppDep = Annotated[EvolutionWhatsAppAdapter, Depends(get_whatsapp_adapter)]
StripeDep = Annotated[StripeGateway, Depends(get_stripe_gateway)]
SpeechDep = Annotated[SpeechService, Depends(get_speech_service)]
GeoDataDep = Annotated[GeoDataService, Depends(get_geodata_service)]
LLMDep = Annotated[LLMProvider, Depends(get_llm_provider)]
ConnectionsDep = Annotated[ConnectionManager, Depends(get_connection_manager)]
QueryCacheDep = Annotated[QueryCache, Depends(get_query_cache)]
