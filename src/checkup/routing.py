"""
Request path parsing.

Turns the part of a request path after ``/{platform}/`` into a RepositoryKey
plus the requested operation:

- ``/github/{owner}/{repo}``
- ``/gitlab/{group}[/{subgroup}...]/{project}`` (the default host is gitlab.com)
- ``/forgejo/{host}/{owner}/{repo}``
- ``/cgit/{host}/{repository path}``

Each form may end in ``/cache`` (JSON) or ``/latest.{ext}`` (redirect).

Suffixes are matched before the repository path is split, so a repository
whose last segment is literally ``cache`` or starts with ``latest.`` (for
example the cgit repository ``pub/latest.git``) has no HTML route. Its JSON
and redirect routes still work because only the final suffix is stripped:
``pub/latest.git/cache`` and ``pub/latest.git/latest.tar.gz``.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from checkup.constants import CACHE_PATH_SUFFIX, LATEST_PATH_MARKER
from checkup.exceptions import InvalidRequestError
from checkup.releases.models import PlatformKind, RepositoryKey

_HOST_PATTERN = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9.-]*[A-Za-z0-9])?(?::\d{1,5})?$")


class Operation(str, Enum):
    HTML = "html"
    JSON = "json"
    LATEST = "latest"


@dataclass(frozen=True)
class ParsedRequest:
    key: RepositoryKey
    operation: Operation
    extension: Optional[str] = None


def _split_operation(tail: str) -> Tuple[str, Operation, Optional[str]]:
    """Strip the `/cache` or `/latest.{ext}` suffix from a repository path."""
    if tail.endswith(CACHE_PATH_SUFFIX):
        return tail[: -len(CACHE_PATH_SUFFIX)], Operation.JSON, None

    position = tail.rfind(LATEST_PATH_MARKER)
    if position != -1:
        extension = tail[position + len(LATEST_PATH_MARKER) :]
        if "/" not in extension:
            if not extension:
                raise InvalidRequestError("Missing extension after 'latest.'", path=tail)
            return tail[:position], Operation.LATEST, extension

    return tail, Operation.HTML, None


def _segments(path: str) -> List[str]:
    segments = path.strip("/").split("/")
    for segment in segments:
        if not segment:
            raise InvalidRequestError("Empty path segment", path=path)
        if segment in (".", ".."):
            raise InvalidRequestError("Relative path segments are not allowed", path=path)
        if "\\" in segment or "\x00" in segment:
            raise InvalidRequestError("Invalid character in path segment", path=path)
    return segments


def _validate_host(host: str, path: str) -> str:
    if not _HOST_PATTERN.match(host):
        raise InvalidRequestError(f"Invalid host name '{host}'", path=path)
    return host.lower()


def parse_repository_path(platform: PlatformKind, path: str) -> RepositoryKey:
    """
    Build the RepositoryKey for a repository path without any operation suffix.

    Raises:
        InvalidRequestError: If the path has the wrong shape for the platform.
    """
    platform = PlatformKind(platform)
    segments = _segments(path)

    if platform is PlatformKind.GITHUB:
        if len(segments) != 2:
            raise InvalidRequestError("Expected /github/{owner}/{repo}", path=path)
        return RepositoryKey.for_platform(platform, segments[0], segments[1])

    if platform is PlatformKind.GITLAB:
        if len(segments) < 2:
            raise InvalidRequestError(
                "Expected /gitlab/{group}/{project}", path=path
            )
        return RepositoryKey.for_platform(
            platform, "/".join(segments[:-1]), segments[-1]
        )

    if platform is PlatformKind.FORGEJO:
        if len(segments) != 3:
            raise InvalidRequestError(
                "Expected /forgejo/{host}/{owner}/{repo}", path=path
            )
        host = _validate_host(segments[0], path)
        return RepositoryKey.for_platform(platform, segments[1], segments[2], host=host)

    if len(segments) < 2:
        raise InvalidRequestError("Expected /cgit/{host}/{repository path}", path=path)
    host = _validate_host(segments[0], path)
    return RepositoryKey.for_platform(platform, "", "/".join(segments[1:]), host=host)


def parse_request_path(platform: PlatformKind, tail: str) -> ParsedRequest:
    """
    Parse the path after `/{platform}/` into a key and an operation.

    Raises:
        InvalidRequestError: If the path is malformed.
    """
    repo_path, operation, extension = _split_operation(tail)
    key = parse_repository_path(platform, repo_path)
    return ParsedRequest(key=key, operation=operation, extension=extension)


def parse_repository_spec(spec: str) -> RepositoryKey:
    """
    Parse a `platform/path` repository reference as used by warm lists and the CLI.

    Examples:
        "github/sharkdp/bat", "cgit/git.kernel.org/pub/scm/git/git.git"

    Raises:
        InvalidRequestError: If the platform is unknown or the path is malformed.
    """
    platform_name, _, path = spec.strip().strip("/").partition("/")
    try:
        platform = PlatformKind(platform_name.lower())
    except ValueError:
        raise InvalidRequestError(
            f"Unknown platform '{platform_name}'", path=spec
        ) from None
    return parse_repository_path(platform, path)
