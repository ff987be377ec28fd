"""
Forgejo / Gitea release provider.

Both forges expose the same ``/api/v1/repos/{owner}/{repo}/releases``
endpoint, whose release objects share GitHub's field names.
"""

from typing import Dict, List

from checkup.constants import FORGEJO_API_PATH, FORGEJO_PAGE_LIMIT
from checkup.log_utils import logger

from .base import ReleaseProvider
from .github import parse_github_release
from .models import PlatformKind, Release, RepositoryKey


class ForgejoProvider(ReleaseProvider):
    """Release provider for self-hosted Forgejo and Gitea instances."""

    platform = PlatformKind.FORGEJO

    def releases_url(self, key: RepositoryKey) -> str:
        return f"https://{key.host}/{FORGEJO_API_PATH}/{key.owner}/{key.repo}/releases"

    def _headers(self, key: RepositoryKey) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self.token_for(key.host)
        if token:
            headers["Authorization"] = f"token {token}"
        return headers

    async def fetch(self, key: RepositoryKey) -> List[Release]:
        url = self.releases_url(key)
        items = await self.client.get_paginated(
            url, params={"limit": FORGEJO_PAGE_LIMIT}, headers=self._headers(key)
        )

        releases = []
        for item in items:
            release = parse_github_release(item, url)
            if release is not None:
                releases.append(release)

        logger.debug(f"Parsed {len(releases)} releases for {key}")
        return releases
