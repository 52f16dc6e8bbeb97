"""Endpoint-backed targets loader.

Fetches ``<endpoint>/<ref>/targets.json`` for each requested version.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import quote

import httpx

from rc_configurator.targets.loader import TargetsError, TargetsListLoader, parse_targets

if TYPE_CHECKING:
    from rc_configurator.firmware.models import FirmwareSource

logger = logging.getLogger(__name__)

TARGETS_PATH = "targets.json"


class HttpTargetsLoader(TargetsListLoader):
    """Targets loader reading documents over HTTP.

    Args:
        endpoint: Base URL; versions are served below it by ref.
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

    def targets_url(self, source: FirmwareSource) -> str:
        """URL the targets of ``source`` are fetched from."""
        return f"{self.endpoint}/{quote(source.ref or '', safe='')}/{TARGETS_PATH}"

    async def _get(self, client: httpx.AsyncClient, url: str) -> list[str]:
        logger.info("Fetching targets from %s", url)
        try:
            response = await client.get(url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise TargetsError(
                f"Targets request failed with HTTP {e.response.status_code}: {url}"
            ) from e
        except httpx.HTTPError as e:
            raise TargetsError(f"Targets request failed: {e}") from e
        except ValueError as e:
            raise TargetsError(
                f"Targets at {url} are not valid JSON", code="invalid_targets"
            ) from e
        if not isinstance(data, dict):
            raise TargetsError(
                f"Expected a JSON object from {url}, got {type(data).__name__}",
                code="invalid_targets",
            )
        return parse_targets(data)

    async def _fetch_targets(self, source: FirmwareSource) -> list[str]:
        url = self.targets_url(source)
        if self._client is not None:
            return await self._get(self._client, url)
        async with httpx.AsyncClient(follow_redirects=True) as client:
            return await self._get(client, url)


__all__ = ["TARGETS_PATH", "HttpTargetsLoader"]
