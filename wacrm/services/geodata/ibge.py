"""Brazilian municipalities and districts from the IBGE localities API."""

import asyncio
from typing import Any

import httpx
import structlog

from wacrm.core.config import settings
from wacrm.core.exceptions import UpstreamError, ValidationFailed, raise_for_upstream_status

logger = structlog.get_logger()

PROVIDER = "ibge"

BRAZILIAN_UFS = frozenset(
    {
        "AC", "AL", "AM", "AP", "BA", "CE", "DF", "ES", "GO",
        "MA", "MG", "MS", "MT", "PA", "PB", "PE", "PI", "PR",
        "RJ", "RN", "RO", "RR", "RS", "SC", "SE", "SP", "TO",
    }
)

MUNICIPALITIES = "municipios"
DISTRICTS = "distritos"


def normalize_ufs(uf: Any = None, ufs: Any = None) -> list[str]:
    """Collect and validate region codes from ``uf`` and/or ``ufs``."""
    raw: list[Any] = []
    if uf:
        raw.append(uf)
    if isinstance(ufs, (list, tuple)):
        raw.extend(ufs)

    codes: list[str] = []
    for value in raw:
        code = str(value).strip().upper()
        if code not in BRAZILIAN_UFS:
            raise ValidationFailed(f"Invalid UF: {value}", details={"uf": value})
        if code not in codes:
            codes.append(code)
    if not codes:
        raise ValidationFailed("uf is required")
    return codes


class GeoDataService:
    """Looks up locality names per state, caching each state's list."""

    def __init__(self, base_url: str | None = None, http_client: httpx.AsyncClient | None = None) -> None:
        self.base_url = (base_url or settings.ibge_api_url).rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        self._cache: dict[tuple[str, str], list[str]] = {}

    async def close(self) -> None:
        await self._client.aclose()

    async def _names(self, kind: str, uf: str) -> list[str]:
        key = (kind, uf)
        if key in self._cache:
            return self._cache[key]

        url = f"{self.base_url}/estados/{uf}/{kind}"
        try:
            response = await self._client.get(url, params={"orderBy": "nome"})
        except httpx.HTTPError as e:
            logger.error("IBGE API unreachable", uf=uf, kind=kind, error=str(e))
            raise UpstreamError("Geodata API unreachable", provider=PROVIDER)
        if response.is_error:
            logger.error("IBGE API error", uf=uf, kind=kind, status_code=response.status_code)
            raise_for_upstream_status(response.status_code, "Geodata API error", PROVIDER)

        names = sorted({item["nome"] for item in response.json() if item.get("nome")})
        self._cache[key] = names
        logger.debug("Loaded IBGE localities", uf=uf, kind=kind, count=len(names))
        return names

    async def _lookup(self, kind: str, ufs: list[str]) -> list[str]:
        results = await asyncio.gather(*(self._names(kind, uf) for uf in ufs))
        return sorted({name for names in results for name in names})

    async def municipalities(self, ufs: list[str]) -> list[str]:
        return await self._lookup(MUNICIPALITIES, ufs)

    async def districts(self, ufs: list[str]) -> list[str]:
        return await self._lookup(DISTRICTS, ufs)


# Singleton instance
_geodata_service: GeoDataService | None = None


def get_geodata_service() -> GeoDataService:
    """Get or create the geodata service singleton."""
    global _geodata_service
    if _geodata_service is None:
        _geodata_service = GeoDataService()
    return _geodata_service
