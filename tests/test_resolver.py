"""
Tests for "latest asset" resolution.
"""

import pytest

from checkup.exceptions import NoMatchingAssetError
from checkup.releases.resolver import (
    extract_extension,
    latest_release,
    resolve_latest,
)

pytestmark = [pytest.mark.unit]


class TestResolveLatest:
    """Test resolve_latest suffix matching and release selection."""

    def test_picks_first_matching_asset_of_newest_release(self, make_release):
        releases = [
            make_release("v2", ["tool-2.deb", "tool-2.tar.gz", "tool-2-arm.tar.gz"]),
            make_release("v1", ["tool-1.tar.gz"]),
        ]

        asset = resolve_latest(releases, "tar.gz")

        assert asset.name == "tool-2.tar.gz"

    def test_leading_dot_is_tolerated(self, make_release):
        releases = [make_release("v1", ["tool.zip"])]

        assert resolve_latest(releases, ".zip").name == "tool.zip"

    def test_multi_segment_extension_is_matched_whole(self, make_release):
        releases = [make_release("v1", ["tool.gz", "tool.tar.gz"])]

        assert resolve_latest(releases, "tar.gz").name == "tool.tar.gz"
        assert resolve_latest(releases, "gz").name == "tool.gz"

    def test_match_is_case_sensitive(self, make_release):
        releases = [make_release("v1", ["TOOL.ZIP"])]

        with pytest.raises(NoMatchingAssetError):
            resolve_latest(releases, "zip")

    def test_no_fallback_to_older_release(self, make_release):
        releases = [
            make_release("v2", ["tool-2.zip"]),
            make_release("v1", ["tool-1.tar.gz"]),
        ]

        with pytest.raises(NoMatchingAssetError) as exc_info:
            resolve_latest(releases, "tar.gz")

        assert exc_info.value.tag_name == "v2"
        assert exc_info.value.extension == "tar.gz"

    def test_drafts_are_skipped_and_prereleases_eligible(self, make_release):
        releases = [
            make_release("v3-draft", ["tool-3.tar.gz"], draft=True),
            make_release("v3-rc1", ["tool-3rc1.tar.gz"], prerelease=True),
            make_release("v2", ["tool-2.tar.gz"]),
        ]

        assert resolve_latest(releases, "tar.gz").name == "tool-3rc1.tar.gz"

    def test_only_drafts_raises(self, make_release):
        releases = [make_release("v1", ["tool.tar.gz"], draft=True)]

        with pytest.raises(NoMatchingAssetError):
            resolve_latest(releases, "tar.gz")

    def test_empty_release_list_raises(self):
        with pytest.raises(NoMatchingAssetError):
            resolve_latest([], "zip")

    def test_empty_extension_raises(self, make_release):
        with pytest.raises(NoMatchingAssetError):
            resolve_latest([make_release("v1", ["tool.zip"])], ".")

    def test_dotless_asset_matched_by_whole_name(self, make_release):
        releases = [make_release("v1", ["grab-linux-x86_64", "grab.zip"])]

        assert resolve_latest(releases, "grab-linux-x86_64").name == "grab-linux-x86_64"


def test_latest_release_returns_none_for_drafts_only(make_release):
    assert latest_release([make_release("v1", draft=True)]) is None


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("v0.1.0.tar.gz", "tar.gz"),
        ("linux-5.10.tar.xz", "tar.xz"),
        ("archive.tar.zst", "tar.zst"),
        ("package-1.0.0.zip", "zip"),
        ("tool_1.0_amd64.deb", "deb"),
        ("grab-linux-x86_64", "grab-linux-x86_64"),
    ],
)
def test_extract_extension(name, expected):
    assert extract_extension(name) == expected
