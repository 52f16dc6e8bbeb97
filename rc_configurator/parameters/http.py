"""Endpoint-backed configuration source.

Fetches the parameter catalog as JSON from ``<endpoint>/parameters.json``.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from rc_configurator.parameters.source import (
    CatalogConfigurationSource,
    ConfigurationError,
)

logger = logging.getLogger(__name__)

CATALOG_PATH = "parameters.json"


class HttpConfigurationSource(CatalogConfigurationSource):
    """Configuration source reading a catalog over HTTP.

    Args:
        endpoint: Base URL serving the catalog.
        timeout: Request timeout in seconds.
        client: Optional shared client; one is created per fetch otherwise.
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__()
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self._client = client

    @property
    def catalog_url(self) -> str:
        """URL the catalog is fetched from."""
        return f"{self.endpoint}/{CATALOG_PATH}"

    async def _get(self, client: httpx.AsyncClient) -> dict[str, Any]:
        url = self.catalog_url
        logger.info("Fetching parameter catalog from %s", url)
        try:
            response = await client.get(url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ConfigurationError(
                f"Catalog request failed with HTTP {e.response.status_code}: {url}",
                code="source_unavailable",
            ) from e
        except httpx.HTTPError as e:
            raise ConfigurationError(
                f"Catalog request failed: {e}", code="source_unavailable"
            ) from e
        except ValueError as e:
            raise ConfigurationError(
                f"Catalog at {url} is not valid JSON", code="invalid_catalog"
            ) from e
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Expected a JSON object from {url}, got {type(data).__name__}",
                code="invalid_catalog",
            )
        return data

    async def _fetch_catalog(self) -> dict[str, Any]:
        if self._client is not None:
            return await self._get(self._client)
        async with httpx.AsyncClient(follow_redirects=True) as client:
            return await self._get(client)


__all__ = ["CATALOG_PATH", "HttpConfigurationSource"]
