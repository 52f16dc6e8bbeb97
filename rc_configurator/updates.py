"""Release update check.

This module handles:
- Fetching the latest published release from the GitHub releases API
- Comparing its tag against the running version
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

# GitHub REST API base URL
GITHUB_API_BASE = "https://api.github.com"

# Timeout for the release lookup (seconds)
UPDATE_CHECK_TIMEOUT = 15.0

_VERSION_RE = re.compile(r"^v?(\d+(?:\.\d+)*)")


class UpdateCheckError(Exception):
    """Raised when the latest release cannot be determined."""

    def __init__(self, message: str, code: str = "update_check_failed") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class UpdateInfo:
    """Outcome of an update check."""

    current: str
    latest: str
    update_available: bool
    url: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "current": self.current,
            "latest": self.latest,
            "update_available": self.update_available,
            "url": self.url,
        }


def parse_version(value: str) -> tuple[int, ...]:
    """Parse the numeric part of a version tag.

    ``v1.5.0``, ``1.5.0`` and ``1.5.0-rc1`` all parse to ``(1, 5, 0)``.

    Raises:
        ValueError: If the tag has no leading numeric version.
    """
    match = _VERSION_RE.match(value.strip())
    if match is None:
        raise ValueError(f"Not a version: {value!r}")
    return tuple(int(part) for part in match.group(1).split("."))


def is_newer(latest: str, current: str) -> bool:
    """Whether ``latest`` is a higher version than ``current``."""
    a, b = parse_version(latest), parse_version(current)
    width = max(len(a), len(b))
    return a + (0,) * (width - len(a)) > b + (0,) * (width - len(b))


def latest_release_url(repository: str, base_url: str = GITHUB_API_BASE) -> str:
    return f"{base_url.rstrip('/')}/repos/{repository}/releases/latest"


async def check_for_updates(
    current_version: str,
    repository: str,
    client: httpx.AsyncClient | None = None,
    base_url: str = GITHUB_API_BASE,
) -> UpdateInfo:
    """Compare the running version with the repository's latest release.

    Args:
        current_version: Version of the running application.
        repository: ``owner/name`` of the GitHub repository.
        client: Optional HTTP client; a short-lived one is created if None.
        base_url: GitHub API base URL.

    Returns:
        UpdateInfo describing the latest release.

    Raises:
        UpdateCheckError: On HTTP errors or an unusable response.
    """
    url = latest_release_url(repository, base_url)
    headers = {"Accept": "application/vnd.github+json"}
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=UPDATE_CHECK_TIMEOUT) as own_client:
                response = await own_client.get(url, headers=headers)
        else:
            response = await client.get(url, headers=headers)
        response.raise_for_status()
        payload = response.json()
    except httpx.HTTPStatusError as e:
        raise UpdateCheckError(
            f"Release lookup failed with HTTP {e.response.status_code}"
        ) from e
    except httpx.HTTPError as e:
        raise UpdateCheckError(f"Release lookup failed: {e}") from e
    except ValueError as e:
        raise UpdateCheckError(f"Release response is not JSON: {e}") from e

    tag = payload.get("tag_name") if isinstance(payload, dict) else None
    if not isinstance(tag, str) or not tag:
        raise UpdateCheckError("Release response has no tag_name")

    try:
        available = is_newer(tag, current_version)
    except ValueError as e:
        raise UpdateCheckError(str(e), code="invalid_version") from e

    logger.debug("Latest release of %s is %s", repository, tag)
    return UpdateInfo(
        current=current_version,
        latest=tag.removeprefix("v"),
        update_available=available,
        url=payload.get("html_url"),
    )


__all__ = [
    "GITHUB_API_BASE",
    "UpdateCheckError",
    "UpdateInfo",
    "check_for_updates",
    "is_newer",
    "latest_release_url",
    "parse_version",
]
