"""
Base class and shared helpers for release providers.

A provider knows how to turn one upstream platform's release listing into
normalized ``Release`` objects. Providers never write to the cache; the
orchestrator decides what to persist.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

from checkup.constants import ARCHIVE_CONTENT_TYPES
from checkup.log_utils import logger

from .client import AsyncUpstreamClient
from .models import Asset, PlatformKind, Release, RepositoryKey


class ReleaseProvider(ABC):
    """
    Abstract base class for platform-specific release providers.

    Subclasses set `platform` and implement `fetch`.
    """

    platform: PlatformKind

    def __init__(
        self,
        client: AsyncUpstreamClient,
        tokens: Optional[Mapping[str, str]] = None,
    ) -> None:
        """
        Parameters:
            client (AsyncUpstreamClient): Shared HTTP client.
            tokens (Optional[Mapping[str, str]]): Optional access tokens keyed by upstream host.
        """
        self.client = client
        self.tokens: Dict[str, str] = dict(tokens or {})

    def token_for(self, host: str) -> Optional[str]:
        return self.tokens.get(host)

    @abstractmethod
    async def fetch(self, key: RepositoryKey) -> List[Release]:
        """
        Fetch the repository's releases, newest first.

        Raises:
            ProviderError: A subclass describing why the upstream could not be read.
        """


def coerce_count(value: Any) -> int:
    """Return `value` as a non-negative int, or 0 when it is missing or invalid."""
    if isinstance(value, bool):
        return 0
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return 0
    return max(parsed, 0)


def optional_str(value: Any) -> Optional[str]:
    """Return `value` if it is a non-empty string, otherwise None."""
    if isinstance(value, str) and value:
        return value
    return None


def valid_tag_name(item: Any, source: str) -> Optional[str]:
    """
    Return the stripped tag name of an upstream release entry.

    Logs a warning and returns None for entries that are not objects or that
    carry a missing or non-string tag, so callers can skip them.
    """
    if not isinstance(item, dict):
        logger.warning(
            f"Skipping malformed release entry from {source}: expected object, got {type(item).__name__}"
        )
        return None
    tag_name = item.get("tag_name")
    if not isinstance(tag_name, str) or not tag_name.strip():
        logger.warning(f"Skipping release entry from {source} with invalid tag_name")
        return None
    return tag_name.strip()


def source_archive_assets(
    tag_name: str, tarball_url: Optional[str], zipball_url: Optional[str]
) -> List[Asset]:
    """
    Build synthetic assets for a release's generated source archives.

    They are appended after uploaded assets so that a `latest.tar.gz` request
    still resolves for releases that only publish source code.
    """
    assets = []
    if tarball_url:
        assets.append(
            Asset(
                name=f"{tag_name}.tar.gz",
                url=tarball_url,
                content_type=ARCHIVE_CONTENT_TYPES["tar.gz"],
            )
        )
    if zipball_url:
        assets.append(
            Asset(
                name=f"{tag_name}.zip",
                url=zipball_url,
                content_type=ARCHIVE_CONTENT_TYPES["zip"],
            )
        )
    return assets
