"""
GitHub release provider.

Reads ``/repos/{owner}/{repo}/releases`` from the GitHub REST API, following
pagination, and maps each release field-for-field into the normalized model.
"""

from typing import Any, Dict, List, Optional

from checkup.constants import (
    GITHUB_ACCEPT_HEADER,
    GITHUB_API_BASE,
    GITHUB_API_VERSION,
    GITHUB_MAX_PER_PAGE,
)
from checkup.log_utils import logger
from checkup.utils import parse_iso_datetime_utc

from .base import (
    ReleaseProvider,
    coerce_count,
    optional_str,
    source_archive_assets,
    valid_tag_name,
)
from .models import Asset, PlatformKind, Release, RepositoryKey


class GitHubProvider(ReleaseProvider):
    """Release provider for github.com."""

    platform = PlatformKind.GITHUB

    def releases_url(self, key: RepositoryKey) -> str:
        return f"{GITHUB_API_BASE}/{key.owner}/{key.repo}/releases"

    def _headers(self, key: RepositoryKey) -> Dict[str, str]:
        headers = {
            "Accept": GITHUB_ACCEPT_HEADER,
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        token = self.token_for(key.host)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def fetch(self, key: RepositoryKey) -> List[Release]:
        url = self.releases_url(key)
        items = await self.client.get_paginated(
            url,
            params={"per_page": GITHUB_MAX_PER_PAGE},
            headers=self._headers(key),
        )

        releases = []
        for item in items:
            release = parse_github_release(item, url)
            if release is not None:
                releases.append(release)

        logger.debug(f"Parsed {len(releases)} releases for {key}")
        return releases


def parse_github_release(item: Any, source: str) -> Optional[Release]:
    """
    Map one GitHub (or Forgejo/Gitea) release object to a Release.

    Returns:
        Release or None when the entry is malformed and should be skipped.
    """
    tag_name = valid_tag_name(item, source)
    if tag_name is None:
        return None

    assets_data = item.get("assets") or []
    if not isinstance(assets_data, list):
        logger.warning(
            f"Ignoring assets for release {tag_name} due to invalid assets type {type(assets_data).__name__}"
        )
        assets_data = []

    assets: List[Asset] = []
    for asset in assets_data:
        if not isinstance(asset, dict):
            logger.warning(
                f"Skipping malformed asset in release {tag_name}: expected object, got {type(asset).__name__}"
            )
            continue
        name = asset.get("name")
        url = asset.get("browser_download_url")
        if not isinstance(name, str) or not name or not isinstance(url, str) or not url:
            logger.warning(f"Skipping asset without name or URL in release {tag_name}")
            continue
        assets.append(
            Asset(
                name=name,
                url=url,
                content_type=optional_str(asset.get("content_type")),
                size=coerce_count(asset.get("size")),
                download_count=coerce_count(asset.get("download_count")),
            )
        )

    tarball_url = optional_str(item.get("tarball_url"))
    zipball_url = optional_str(item.get("zipball_url"))
    assets.extend(source_archive_assets(tag_name, tarball_url, zipball_url))

    return Release(
        tag_name=tag_name,
        name=optional_str(item.get("name")),
        published_at=parse_iso_datetime_utc(item.get("published_at")),
        html_url=optional_str(item.get("html_url")),
        body=item.get("body") if isinstance(item.get("body"), str) else None,
        prerelease=item.get("prerelease") is True,
        draft=item.get("draft") is True,
        assets=assets,
        source_tarball=tarball_url,
        source_zipball=zipball_url,
    )
