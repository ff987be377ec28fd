"""
"Latest asset" resolution.

"Latest" binds to the newest non-draft release only: when that release has
no asset with the requested extension, resolution fails rather than falling
back to an older release.
"""

from typing import Iterable, Optional

from checkup.constants import DOUBLE_EXTENSIONS
from checkup.exceptions import NoMatchingAssetError

from .models import Asset, Release


def latest_release(releases: Iterable[Release]) -> Optional[Release]:
    """Return the first non-draft release in upstream order (prereleases are eligible)."""
    for release in releases:
        if not release.draft:
            return release
    return None


def resolve_latest(releases: Iterable[Release], extension: str) -> Asset:
    """
    Pick the asset a `latest.{extension}` request should redirect to.

    The match is an exact, case-sensitive tail match on the whole requested
    extension, so `tar.gz` only matches names ending in `.tar.gz` and never a
    name that merely ends in `.gz`. An asset whose entire name equals the
    requested token also matches.

    Parameters:
        releases: Releases in upstream order, newest first.
        extension (str): Requested extension, with or without a leading dot.

    Returns:
        Asset: The first matching asset of the newest eligible release.

    Raises:
        NoMatchingAssetError: If there is no eligible release or it has no matching asset.
    """
    extension = extension.lstrip(".")
    if not extension:
        raise NoMatchingAssetError("No extension requested", extension=extension)

    release = latest_release(releases)
    if release is None:
        raise NoMatchingAssetError(
            f"No published release found for extension '{extension}'",
            extension=extension,
        )

    suffix = f".{extension}"
    for asset in release.assets:
        # Dot-less names are addressed by their whole name
        if asset.name.endswith(suffix) or asset.name == extension:
            return asset

    raise NoMatchingAssetError(
        f"No asset with extension '{extension}' found in release {release.tag_name}",
        extension=extension,
        tag_name=release.tag_name,
    )


def extract_extension(name: str) -> str:
    """
    Extract the extension used in `latest.{ext}` links for an asset name.

    Examples:
        "v0.1.0.tar.gz" -> "tar.gz", "package-1.0.0.zip" -> "zip",
        "grab-linux-x86_64" -> "grab-linux-x86_64"
    """
    for double in DOUBLE_EXTENSIONS:
        if name.endswith(double):
            return double[1:]
    if "." in name:
        return name.rsplit(".", 1)[1]
    return name
