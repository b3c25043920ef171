"""MISP REST API client.

Thin async wrapper over httpx that authenticates with the MISP API key,
speaks JSON in both directions, and turns HTTP failures into MispError
subclasses.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from misp_mcp import __version__
from misp_mcp.plugins.misp.exceptions import (
    MispAPIError,
    MispAuthenticationError,
    MispNotFoundError,
)

logger = logging.getLogger(__name__)

USER_AGENT = f"misp-mcp/{__version__}"


class MispClient:
    """Async client for the MISP REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        verify_tls: bool = True,
        timeout: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize MISP client.

        Args:
            base_url: MISP server base URL, e.g. https://misp.local
            api_key: MISP automation key
            verify_tls: Whether to verify the server certificate
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        if not base_url:
            raise ValueError("MISP URL cannot be empty")
        if not api_key:
            raise ValueError("API key cannot be empty")

        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.verify_tls = verify_tls
        self.timeout = timeout
        self._transport = transport

        self._client: httpx.AsyncClient | None = None

        if not verify_tls:
            logger.warning("TLS certificate verification is disabled")

    async def __aenter__(self) -> MispClient:
        """Enter the client context."""
        await self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Close the connection pool on exit."""
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        """Return the shared AsyncClient, opening a new one if needed."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                verify=self.verify_tls,
                headers=self._get_headers(),
                transport=self._transport,
            )
        return self._client

    def _get_headers(self) -> dict:
        """Headers MISP expects on every call, including the authkey."""
        return {
            "Authorization": self.api_key,
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }

    async def close(self) -> None:
        """Release the underlying connection pool."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def request(self, method: str, path: str, body: Any | None = None) -> Any:
        """Make an HTTP request and decode the JSON response.

        Args:
            method: HTTP method (GET or POST)
            path: Endpoint path relative to the base URL
            body: JSON body for POST requests

        Returns:
            Parsed JSON response

        Raises:
            MispAuthenticationError: When the API key is rejected
            MispNotFoundError: When the resource doesn't exist
            MispAPIError: For other HTTP errors, transport failures and bad JSON
        """
        client = await self._get_client()
        logger.debug("%s %s", method, path)

        try:
            response = await client.request(method, path, json=body)
        except httpx.TimeoutException as e:
            raise MispAPIError(
                f"Request timeout: {e}",
                status_code=408,
                details={"endpoint": path},
            ) from e
        except httpx.RequestError as e:
            raise MispAPIError(
                f"HTTP request failed: {e}",
                details={"endpoint": path, "error": str(e)},
            ) from e

        if not response.is_success:
            self._raise_for_status(response)

        try:
            return response.json()
        except ValueError as e:
            logger.error("Failed to parse JSON response from %s: %s", path, e)
            raise MispAPIError(
                f"JSON serialization/deserialization failed: {e}",
                status_code=response.status_code,
                details={"endpoint": path},
            ) from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Raise the MispError matching an unsuccessful response.

        Raises:
            MispAuthenticationError: 401 or 403 status
            MispNotFoundError: 404 status
            MispAPIError: Other error statuses
        """
        status_code = response.status_code
        logger.error("HTTP error %d: %s", status_code, response.text)

        if status_code in (401, 403):
            raise MispAuthenticationError(status_code)

        if status_code == 404:
            raise MispNotFoundError(str(response.url))

        raise MispAPIError(
            f"MISP API error: {status_code} - {response.text}",
            status_code=status_code,
        )

    async def get(self, path: str) -> Any:
        """GET an endpoint and return the decoded JSON."""
        return await self.request("GET", path)

    async def post(self, path: str, body: Any) -> Any:
        """POST a JSON body to an endpoint and return the decoded JSON."""
        return await self.request("POST", path, body)
