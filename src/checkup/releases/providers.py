"""
Provider dispatch over the closed set of supported platforms.
"""

from typing import Dict, List, Mapping, Optional, Tuple, Type

from .base import ReleaseProvider
from .cgit import CgitProvider
from .client import AsyncUpstreamClient
from .forgejo import ForgejoProvider
from .github import GitHubProvider
from .gitlab import GitLabProvider
from .models import PlatformKind, Release, RepositoryKey

PROVIDER_CLASSES: Tuple[Type[ReleaseProvider], ...] = (
    GitHubProvider,
    GitLabProvider,
    ForgejoProvider,
    CgitProvider,
)


class ProviderRegistry:
    """Holds one provider per platform, all sharing a single HTTP client."""

    def __init__(
        self,
        client: AsyncUpstreamClient,
        tokens: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.client = client
        self._providers: Dict[PlatformKind, ReleaseProvider] = {
            provider_cls.platform: provider_cls(client, tokens)
            for provider_cls in PROVIDER_CLASSES
        }

    def for_key(self, key: RepositoryKey) -> ReleaseProvider:
        return self._providers[key.platform]

    async def fetch(self, key: RepositoryKey) -> List[Release]:
        """Fetch normalized releases for `key` from its platform's provider."""
        return await self.for_key(key).fetch(key)

    async def close(self) -> None:
        await self.client.close()
