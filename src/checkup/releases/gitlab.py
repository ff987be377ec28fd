"""
GitLab release provider.

GitLab addresses projects by their URL-encoded full path, so nested groups
(``group/subgroup/project``) work the same way as plain ``owner/repo``.
"""

from typing import Any, Dict, List, Optional
from urllib.parse import quote

from checkup.constants import ARCHIVE_CONTENT_TYPES, GITLAB_API_PATH, GITLAB_MAX_PER_PAGE
from checkup.log_utils import logger
from checkup.utils import parse_iso_datetime_utc

from .base import ReleaseProvider, optional_str, valid_tag_name
from .models import Asset, PlatformKind, Release, RepositoryKey


class GitLabProvider(ReleaseProvider):
    """Release provider for gitlab.com and self-managed GitLab hosts."""

    platform = PlatformKind.GITLAB

    def releases_url(self, key: RepositoryKey) -> str:
        project = quote(key.repo_path, safe="")
        return f"https://{key.host}/{GITLAB_API_PATH}/{project}/releases"

    def _headers(self, key: RepositoryKey) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self.token_for(key.host)
        if token:
            headers["PRIVATE-TOKEN"] = token
        return headers

    async def fetch(self, key: RepositoryKey) -> List[Release]:
        url = self.releases_url(key)
        items = await self.client.get_paginated(
            url, params={"per_page": GITLAB_MAX_PER_PAGE}, headers=self._headers(key)
        )

        releases = []
        for item in items:
            release = parse_gitlab_release(item, url)
            if release is not None:
                releases.append(release)

        logger.debug(f"Parsed {len(releases)} releases for {key}")
        return releases


def parse_gitlab_release(item: Any, source: str) -> Optional[Release]:
    """
    Map one GitLab release object to a Release.

    GitLab has no prerelease or draft flags, so both are always False.
    """
    tag_name = valid_tag_name(item, source)
    if tag_name is None:
        return None

    assets_data = item.get("assets")
    if not isinstance(assets_data, dict):
        assets_data = {}

    assets: List[Asset] = []
    source_tarball = None
    source_zipball = None

    for archive in _list_of_dicts(assets_data.get("sources")):
        archive_format = archive.get("format")
        url = archive.get("url")
        if not isinstance(archive_format, str) or not archive_format:
            continue
        if not isinstance(url, str) or not url:
            continue
        archive_format = archive_format.lower()
        assets.append(
            Asset(
                name=f"{tag_name}.{archive_format}",
                url=url,
                content_type=ARCHIVE_CONTENT_TYPES.get(
                    archive_format, f"application/{archive_format}"
                ),
            )
        )
        if archive_format == "tar.gz":
            source_tarball = url
        elif archive_format == "zip":
            source_zipball = url

    for link in _list_of_dicts(assets_data.get("links")):
        name = link.get("name")
        url = optional_str(link.get("direct_asset_url")) or optional_str(link.get("url"))
        if not isinstance(name, str) or not name or not url:
            logger.warning(f"Skipping asset link without name or URL in release {tag_name}")
            continue
        assets.append(Asset(name=name, url=url))

    links = item.get("_links")
    html_url = optional_str(links.get("self")) if isinstance(links, dict) else None

    return Release(
        tag_name=tag_name,
        name=optional_str(item.get("name")),
        published_at=parse_iso_datetime_utc(
            item.get("released_at") or item.get("created_at")
        ),
        html_url=html_url,
        body=item.get("description") if isinstance(item.get("description"), str) else None,
        prerelease=False,
        draft=False,
        assets=assets,
        source_tarball=source_tarball,
        source_zipball=source_zipball,
    )


def _list_of_dicts(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, dict)]
