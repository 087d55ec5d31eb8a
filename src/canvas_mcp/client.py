"""Canvas REST API client.

Async HTTP client for the Canvas LMS API. Every failure is raised as a
classified CanvasAPIError subclass so the server can tell transient
trouble from a rejected request.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from canvas_mcp import __version__
from canvas_mcp.config import CanvasConfig
from canvas_mcp.diagnostics import null_logger
from canvas_mcp.errors import (
    CanvasAPIError,
    CanvasAuthenticationError,
    CanvasForbiddenError,
    CanvasNetworkError,
    CanvasNotFoundError,
    CanvasRateLimitError,
)

USER_AGENT = f"canvas-mcp/{__version__}"

REQUEST_TIMEOUT = 30.0
CONNECT_TIMEOUT = 10.0
MAX_KEEPALIVE_CONNECTIONS = 10
KEEPALIVE_EXPIRY = 90.0

DEFAULT_PAGE_SIZE = 50
DEFAULT_MAX_PAGES = 20


class CanvasClient:
    """Async client for the Canvas REST API."""

    def __init__(
        self,
        config: CanvasConfig,
        logger: logging.Logger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the Canvas client.

        Args:
            config: Canvas connection settings.
            logger: Diagnostic logger.
            transport: Optional httpx transport (used by tests).
        """
        self.config = config
        self._log = logger or null_logger()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> CanvasClient:
        """Async context manager entry."""
        self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    @property
    def base_url(self) -> str:
        return self.config.api_url

    def build_url(self, path: str) -> str:
        """Join the API base URL and a resource path with exactly one slash."""
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.config.api_url.rstrip('/')}/{path.lstrip('/')}"

    def is_same_origin(self, url: str) -> bool:
        """True when url points at the configured Canvas scheme, host and port."""
        target = httpx.URL(url)
        base = httpx.URL(self.config.api_url)
        return (target.scheme, target.host, target.port) == (base.scheme, base.host, base.port)

    def _get_headers(self) -> dict[str, str]:
        """Get request headers with authentication."""
        return {
            "Authorization": f"Bearer {self.config.api_token}",
            "User-Agent": USER_AGENT,
            "Accept": "application/json",
        }

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the pooled HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers=self._get_headers(),
                timeout=httpx.Timeout(REQUEST_TIMEOUT, connect=CONNECT_TIMEOUT),
                limits=httpx.Limits(
                    max_keepalive_connections=MAX_KEEPALIVE_CONNECTIONS,
                    keepalive_expiry=KEEPALIVE_EXPIRY,
                ),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
    ) -> httpx.Response:
        """Send a request and return the successful response.

        Raises:
            CanvasNetworkError: On timeouts and connection failures.
            CanvasAPIError: On a non-2xx response (classified subclass).
        """
        client = self._get_client()
        url = self.build_url(path)
        self._log.debug("Canvas %s %s", method, url)

        try:
            response = await client.request(method, url, params=params, json=json_body)
        except httpx.TimeoutException as e:
            raise CanvasNetworkError(
                f"Request timeout: {type(e).__name__}", details={"path": path}
            ) from e
        except httpx.RequestError as e:
            raise CanvasNetworkError(
                f"Request failed: {type(e).__name__}", details={"path": path}
            ) from e

        if response.is_success:
            return response
        raise self._error_from_response(response, path)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Pull a human-readable message out of an error body."""
        body = response.text
        try:
            data = response.json()
        except ValueError:
            return body[:200] if body else (response.reason_phrase or "Unknown error")

        if isinstance(data, dict):
            if isinstance(data.get("message"), str):
                return data["message"]
            errors = data.get("errors")
            if isinstance(errors, list) and errors and isinstance(errors[0], dict):
                message = errors[0].get("message")
                if isinstance(message, str):
                    return message
            if isinstance(data.get("error"), str):
                return data["error"]
        return body[:200]

    def _error_from_response(self, response: httpx.Response, path: str) -> CanvasAPIError:
        """Convert an error response into a classified CanvasAPIError."""
        status = response.status_code
        message = self._error_message(response)
        self._log.info("Canvas returned HTTP %d for %s: %s", status, path, message)

        if status == 401:
            return CanvasAuthenticationError(message)
        if status == 403:
            return CanvasForbiddenError(f"Forbidden: {message}")
        if status == 404:
            return CanvasNotFoundError(message, path=path)
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            return CanvasRateLimitError(
                f"Rate limit exceeded: {message}",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        return CanvasAPIError(message, status_code=status, details={"path": path})

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise CanvasAPIError(
                f"Failed to parse Canvas API response: {response.text[:200]}",
                status_code=response.status_code,
            ) from e

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """Execute a GET request and decode the JSON response."""
        return self._decode(await self._send("GET", path, params=params))

    async def post(self, path: str, body: Any, params: dict[str, Any] | None = None) -> Any:
        """Execute a POST request with a JSON body."""
        return self._decode(await self._send("POST", path, params=params, json_body=body))

    async def put(self, path: str, body: Any, params: dict[str, Any] | None = None) -> Any:
        """Execute a PUT request with a JSON body."""
        return self._decode(await self._send("PUT", path, params=params, json_body=body))

    async def delete(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """Execute a DELETE request."""
        return self._decode(await self._send("DELETE", path, params=params))

    async def get_paginated(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        max_pages: int = DEFAULT_MAX_PAGES,
    ) -> list[Any]:
        """Fetch a list resource, following ``rel="next"`` Link headers.

        Args:
            path: Resource path.
            params: Query parameters for the first page.
            max_pages: Upper bound on pages fetched.

        Returns:
            Items of every page, concatenated.
        """
        query = {"per_page": DEFAULT_PAGE_SIZE, **(params or {})}
        url: str | None = path
        items: list[Any] = []
        pages = 0

        while url and pages < max_pages:
            response = await self._send("GET", url, params=query)
            page = self._decode(response)
            if isinstance(page, list):
                items.extend(page)
            elif page is not None:
                items.append(page)
            pages += 1

            url = response.links.get("next", {}).get("url")
            if url and not self.is_same_origin(url):
                # The token must never leave the configured host
                self._log.warning(
                    "Ignoring next link for %s to another host: %s", path, httpx.URL(url).host
                )
                return items
            # The next link already carries the query string
            query = None

        if url:
            self._log.warning("Stopped paginating %s after %d pages", path, max_pages)
        return items

    async def get_current_user(self) -> dict[str, Any]:
        """Get the current user (useful for testing the connection)."""
        return await self.get("/users/self")
