"""
Normalized release data model shared by all providers.

Every upstream shape (GitHub, GitLab, Forgejo/Gitea and scraped cgit pages)
is converted into these types before anything is cached or served. The JSON
storage form produced by ``to_dict`` is lossless: parsing it back with
``from_dict`` yields equal objects, absent optional fields included.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from checkup.constants import DEFAULT_GITHUB_HOST, DEFAULT_GITLAB_HOST
from checkup.exceptions import InvalidRequestError
from checkup.utils import format_rfc3339, parse_iso_datetime_utc


class PlatformKind(str, Enum):
    """The closed set of supported upstream platforms."""

    GITHUB = "github"
    GITLAB = "gitlab"
    FORGEJO = "forgejo"
    CGIT = "cgit"

    @property
    def default_host(self) -> Optional[str]:
        """Host used when a request does not name one, or None if the host is mandatory."""
        return _DEFAULT_HOSTS.get(self)


_DEFAULT_HOSTS = {
    PlatformKind.GITHUB: DEFAULT_GITHUB_HOST,
    PlatformKind.GITLAB: DEFAULT_GITLAB_HOST,
}


@dataclass(frozen=True)
class RepositoryKey:
    """Identifies one cache partition and one single-flight lock."""

    platform: PlatformKind
    host: str
    owner: str
    repo: str

    @classmethod
    def for_platform(
        cls,
        platform: PlatformKind,
        owner: str,
        repo: str,
        host: Optional[str] = None,
    ) -> "RepositoryKey":
        """
        Build a key, filling in the platform's default host when none is given.

        Raises:
            InvalidRequestError: If the platform has no default host and none was provided.
        """
        platform = PlatformKind(platform)
        resolved_host = host or platform.default_host
        if not resolved_host:
            raise InvalidRequestError(
                f"A host is required for {platform.value} repositories"
            )
        return cls(platform=platform, host=resolved_host, owner=owner, repo=repo)

    @property
    def repo_path(self) -> str:
        """Repository path on its host (`owner/repo`, or just `repo` when there is no owner)."""
        if self.owner:
            return f"{self.owner}/{self.repo}"
        return self.repo

    @property
    def cache_key(self) -> str:
        """`host/owner/repo` string stored alongside cached releases."""
        return f"{self.host}/{self.repo_path}"

    @property
    def route_path(self) -> str:
        """Path of this repository under its platform route prefix."""
        if self.platform.default_host is not None and self.host == self.platform.default_host:
            return self.repo_path
        return self.cache_key

    def __str__(self) -> str:
        return f"{self.platform.value}:{self.cache_key}"


@dataclass
class Asset:
    """A downloadable file attached to a release."""

    name: str
    url: str
    content_type: Optional[str] = None
    size: int = 0
    download_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "url": self.url,
            "content_type": self.content_type,
            "size": self.size,
            "download_count": self.download_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Asset":
        return cls(
            name=_require_str(data, "name"),
            url=_require_str(data, "url"),
            content_type=_optional_str(data, "content_type"),
            size=_non_negative_int(data, "size"),
            download_count=_non_negative_int(data, "download_count"),
        )


@dataclass
class Release:
    """A normalized release; `draft` and `prerelease` are independent flags."""

    tag_name: str
    html_url: Optional[str] = None
    name: Optional[str] = None
    published_at: Optional[datetime] = None
    body: Optional[str] = None
    prerelease: bool = False
    draft: bool = False
    assets: List[Asset] = field(default_factory=list)
    source_tarball: Optional[str] = None
    source_zipball: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.tag_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag_name": self.tag_name,
            "name": self.name,
            "published_at": (
                format_rfc3339(self.published_at) if self.published_at else None
            ),
            "html_url": self.html_url,
            "body": self.body,
            "prerelease": self.prerelease,
            "draft": self.draft,
            "assets": [asset.to_dict() for asset in self.assets],
            "source_tarball": self.source_tarball,
            "source_zipball": self.source_zipball,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Release":
        assets = data.get("assets") or []
        if not isinstance(assets, list):
            raise TypeError("assets must be a list")
        raw_published = data.get("published_at")
        published_at = parse_iso_datetime_utc(raw_published)
        if raw_published is not None and published_at is None:
            raise ValueError(f"Invalid published_at value: {raw_published!r}")
        return cls(
            tag_name=_require_str(data, "tag_name"),
            name=_optional_str(data, "name"),
            published_at=published_at,
            html_url=_optional_str(data, "html_url"),
            body=_optional_str(data, "body"),
            prerelease=_require_bool(data, "prerelease"),
            draft=_require_bool(data, "draft"),
            assets=[Asset.from_dict(asset) for asset in assets],
            source_tarball=_optional_str(data, "source_tarball"),
            source_zipball=_optional_str(data, "source_zipball"),
        )


@dataclass
class CacheEntry:
    """One committed snapshot of a repository's releases."""

    releases: List[Release]
    cached_at: datetime
    repo_path: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "releases": [release.to_dict() for release in self.releases],
            "cached_at": format_rfc3339(self.cached_at),
            "repo_path": self.repo_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        if not isinstance(data, dict):
            raise TypeError(f"Cache entry must be an object, got {type(data).__name__}")
        releases = data.get("releases")
        if not isinstance(releases, list):
            raise TypeError("releases must be a list")
        cached_at = parse_iso_datetime_utc(data.get("cached_at"))
        if cached_at is None:
            raise ValueError(f"Invalid cached_at value: {data.get('cached_at')!r}")
        return cls(
            releases=[Release.from_dict(release) for release in releases],
            cached_at=cached_at,
            repo_path=_require_str(data, "repo_path"),
        )


def _require_str(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string, got {type(value).__name__}")
    return value


def _optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string or null, got {type(value).__name__}")
    return value


def _require_bool(data: Dict[str, Any], key: str) -> bool:
    value = data.get(key, False)
    if not isinstance(value, bool):
        raise TypeError(f"{key} must be a boolean, got {type(value).__name__}")
    return value


def _non_negative_int(data: Dict[str, Any], key: str) -> int:
    value = data.get(key, 0)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{key} must be a non-negative integer, got {value!r}")
    return value
