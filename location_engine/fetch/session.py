"""HTTP session for the backend location service."""
from __future__ import annotations

import contextlib
import time
from typing import Any, AsyncIterator, Dict, Optional

import httpx
import orjson

from location_engine.errors import MalformedResponseError, NetworkError, RequestTimeoutError
from location_engine.observability.tracing import log_call_result
from location_engine.settings import BackendSettings


def _decode(response: httpx.Response) -> Any:
    try:
        return orjson.loads(response.content)
    except orjson.JSONDecodeError as exc:
        raise MalformedResponseError("Response body is not valid JSON", status=response.status_code) from exc


class LocationSession:
    """Thin wrapper over ``httpx.AsyncClient`` speaking the location routes.

    Every method returns the decoded JSON envelope untouched; transport
    failures are translated into the engine's error taxonomy here so callers
    only ever see :class:`~location_engine.errors.LocationError` subclasses.
    """

    def __init__(self, client: Optional[httpx.AsyncClient], settings: Optional[BackendSettings] = None) -> None:
        self._client = client
        self._settings = settings or BackendSettings()

    async def _get(self, path: str, *, params: Dict[str, Any], timeout: float) -> Any:
        if self._client is None:
            raise NetworkError("No location session available")
        start = time.perf_counter()
        try:
            response = await self._client.get(path, params=params, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError() from exc
        except httpx.HTTPError as exc:
            raise NetworkError(str(exc) or None) from exc
        log_call_result(
            endpoint=path,
            status=response.status_code,
            bytes_read=len(response.content or b""),
            elapsed_ms=int((time.perf_counter() - start) * 1000),
        )
        if response.status_code == httpx.codes.NOT_FOUND:
            # A JSON 404 is the service saying "no such city"; anything else is a missing route.
            try:
                return _decode(response)
            except MalformedResponseError as exc:
                raise NetworkError("API endpoint not found", status=404) from exc
        if response.is_client_error or response.is_server_error:
            message = None
            with contextlib.suppress(MalformedResponseError):
                body = _decode(response)
                if isinstance(body, dict):
                    message = body.get("message")
            raise NetworkError(message or f"HTTP {response.status_code}", status=response.status_code)
        return _decode(response)

    def _country_name(self, country: str) -> str:
        return self._settings.country_names.get(country.strip().upper(), country)

    async def search(self, query: str, *, country: Optional[str] = None, limit: int = 20) -> Any:
        """Call the autocomplete route for ``query``."""
        params: Dict[str, Any] = {"q": query, "limit": limit}
        if country:
            params["country"] = self._country_name(country)
        return await self._get("/locations/search", params=params, timeout=self._settings.search_timeout_seconds)

    async def resolve(self, city: str, *, state: Optional[str] = None, country: Optional[str] = None) -> Any:
        """Fetch the canonical location record for ``city``."""
        params: Dict[str, Any] = {"city": city}
        if country:
            params["country"] = self._country_name(country)
        if state:
            params["state"] = state
        return await self._get("/locations", params=params, timeout=self._settings.resolve_timeout_seconds)

    async def list_locations(self, **filters: Any) -> Any:
        """Return one page of the administrative location listing."""
        params = {key: value for key, value in filters.items() if value not in (None, "")}
        return await self._get("/locations/all", params=params, timeout=self._settings.listing_timeout_seconds)


@contextlib.asynccontextmanager
async def create_location_session(settings: BackendSettings) -> AsyncIterator[LocationSession]:
    """Yield a configured :class:`LocationSession` for the duration of the context."""
    headers = {"User-Agent": settings.user_agent, "Accept": "application/json"}
    limits = httpx.Limits(max_connections=settings.max_connections, max_keepalive_connections=settings.max_connections)
    async with httpx.AsyncClient(base_url=settings.base_url, headers=headers, limits=limits) as client:
        yield LocationSession(client, settings)
