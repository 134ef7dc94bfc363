"""Client for the ``/functions/v1`` surface."""

from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog

logger = structlog.get_logger()

TokenRefresher = Callable[[], Awaitable[str | None]]


class FunctionError(Exception):
    """Non-2xx response from a function."""

    def __init__(self, status: int, message: str, body: Any = None) -> None:
        super().__init__(f"{status}: {message}")
        self.status = status
        self.message = message
        self.body = body


class FunctionsClient:
    """Invokes serverless functions with the caller's access token.

    A 401 triggers ``refresh_token`` once and the call is retried with the
    new token. Every other error surfaces as ``FunctionError``.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str | None = None,
        refresh_token: TokenRefresher | None = None,
        api_key: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self._refresh_token = refresh_token
        self.api_key = api_key
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        if self.api_key:
            headers["apikey"] = self.api_key
        return headers

    async def _post(self, name: str, body: dict[str, Any] | None) -> httpx.Response:
        return await self._client.post(
            f"{self.base_url}/functions/v1/{name}",
            json=body or {},
            headers=self._headers(),
        )

    async def invoke(self, name: str, body: dict[str, Any] | None = None) -> Any:
        """Call a function and return its decoded JSON body.

        Raises:
            FunctionError: On any non-2xx response or transport failure
        """
        try:
            response = await self._post(name, body)
            if response.status_code == 401 and self._refresh_token is not None:
                logger.info("Function returned 401, refreshing session", function=name)
                new_token = await self._refresh_token()
                if new_token:
                    self.access_token = new_token
                    response = await self._post(name, body)
        except httpx.HTTPError as e:
            logger.error("Function call failed", function=name, error=str(e))
            raise FunctionError(0, str(e))

        if response.status_code >= 400:
            raise FunctionError(response.status_code, _error_message(response), _json_or_none(response))
        return _json_or_none(response)

    async def close(self) -> None:
        await self._client.aclose()


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _error_message(response: httpx.Response) -> str:
    body = _json_or_none(response)
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.text or response.reason_phrase
