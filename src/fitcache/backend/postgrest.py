"""
PostgREST client for the hosted database.

Translates Query objects into PostgREST requests:
- GET  {base}/rest/v1/{table}?select=...&col=eq.value&order=col.desc&limit=n
- POST {base}/rest/v1/rpc/{function}

Transient failures (timeouts, connection errors, 5xx) are retried with
exponential backoff. Anything else surfaces as BackendError.
"""

from __future__ import annotations

from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from fitcache.backend.base import Query, RowMode
from fitcache.config import Settings
from fitcache.exceptions import BackendError, ConfigurationError
from fitcache.logging import get_logger

logger = get_logger(__name__)

REST_PATH = "/rest/v1"
OBJECT_ACCEPT = "application/vnd.pgrst.object+json"


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.ConnectError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


def _render_filter_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_params(query: Query) -> list[tuple[str, str]]:
    """Build PostgREST query-string parameters for a Query."""
    params: list[tuple[str, str]] = [("select", query.columns)]
    for column, operator, value in query.filters:
        params.append((column, f"{operator}.{_render_filter_value(value)}"))
    if query.order:
        params.append((
            "order",
            ",".join(f"{col}.{'asc' if asc else 'desc'}" for col, asc in query.order),
        ))
    if query.limit is not None:
        params.append(("limit", str(query.limit)))
    elif query.mode is RowMode.MAYBE_SINGLE:
        # Two rows are enough to tell "one" from "several".
        params.append(("limit", "2"))
    return params


class PostgrestBackend:
    """Async client for a PostgREST-compatible database service.

    Sends the API key as both ``apikey`` and bearer token, as the hosted
    service expects for anonymous and service-role keys alike.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout_s: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Service base URL, without the /rest/v1 suffix.
            api_key: API key for the service.
            timeout_s: Request timeout in seconds.
            client: Pre-built httpx client (tests pass one with a mock transport).
        """
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_s = timeout_s
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client with auth headers."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self._headers(),
                timeout=self._timeout_s,
            )
        return self._client

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
            "Accept": "application/json",
        }

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @retry(
        retry=retry_if_exception(_is_transient),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        reraise=True,
    )
    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: list[tuple[str, str]] | None = None,
        json_body: Any = None,
        accept: str | None = None,
    ) -> httpx.Response:
        client = await self._get_client()
        headers = self._headers()
        if accept:
            headers["Accept"] = accept
        response = await client.request(
            method,
            f"{self.base_url}{REST_PATH}{path}",
            params=params,
            json=json_body,
            headers=headers,
        )
        if response.status_code >= 500:
            logger.warning(
                "Backend server error, retrying",
                path=path,
                status_code=response.status_code,
            )
            response.raise_for_status()
        return response

    async def _request(self, resource: str, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._send(method, path, **kwargs)
        except httpx.HTTPStatusError as e:
            raise self._error(resource, e.response) from e
        except httpx.HTTPError as e:
            raise BackendError(
                f"Backend request failed for {resource}",
                context={"resource": resource, "error": str(e)},
            ) from e

        if response.status_code >= 400:
            raise self._error(resource, response)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise BackendError(
                f"Backend returned invalid JSON for {resource}",
                context={"resource": resource, "status_code": response.status_code},
                status_code=response.status_code,
            ) from e

    @staticmethod
    def _error(resource: str, response: httpx.Response) -> BackendError:
        try:
            details: Any = response.json()
        except ValueError:
            details = response.text[:500]
        message = details.get("message") if isinstance(details, dict) else None
        return BackendError(
            message or f"Backend returned HTTP {response.status_code} for {resource}",
            context={
                "resource": resource,
                "status_code": response.status_code,
                "details": details,
            },
            status_code=response.status_code,
        )

    async def select(self, query: Query) -> Any:
        """Run a select.

        Returns:
            A list of rows for MANY, one row for SINGLE, a row or None for
            MAYBE_SINGLE.

        Raises:
            BackendError: On HTTP errors, invalid payloads, or a SINGLE query
                matching zero or several rows.
        """
        accept = OBJECT_ACCEPT if query.mode is RowMode.SINGLE else None
        data = await self._request(
            query.table,
            "GET",
            f"/{query.table}",
            params=build_params(query),
            accept=accept,
        )

        if query.mode is RowMode.MAYBE_SINGLE:
            rows = data or []
            if len(rows) > 1:
                raise BackendError(
                    f"Expected at most one row from {query.table}",
                    context={"resource": query.table, "rows": len(rows)},
                )
            return rows[0] if rows else None

        if query.mode is RowMode.MANY and data is None:
            return []
        return data

    async def rpc(self, function: str, params: dict[str, Any] | None = None) -> Any:
        """Call a remote database function and return its JSON result."""
        return await self._request(
            function, "POST", f"/rpc/{function}", json_body=params or {}
        )


def create_backend(settings: Settings) -> PostgrestBackend:
    """Build a backend client from settings.

    Raises:
        ConfigurationError: If BACKEND_URL or BACKEND_API_KEY is missing.
    """
    if not settings.BACKEND_URL or not settings.BACKEND_API_KEY:
        raise ConfigurationError(
            "Backend is not configured",
            context={
                "BACKEND_URL": bool(settings.BACKEND_URL),
                "BACKEND_API_KEY": bool(settings.BACKEND_API_KEY),
            },
        )
    return PostgrestBackend(
        settings.BACKEND_URL,
        settings.BACKEND_API_KEY,
        timeout_s=settings.BACKEND_TIMEOUT_S,
    )
