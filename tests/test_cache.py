"""
Tests for the on-disk cache store.

Covers:
- Commit layout and lossless round trips
- Cross-file consistency checks (torn commits are treated as absent)
- Write failures leaving no temporary files behind
- Path containment and deletion
"""

import json
import os
from datetime import datetime, timedelta, timezone

import pytest

from checkup.exceptions import CacheIOError, InvalidRequestError
from checkup.releases.cache import CacheStore
from checkup.releases.models import CacheEntry, PlatformKind, RepositoryKey
from checkup.render import render_releases_html

pytestmark = [pytest.mark.unit]


@pytest.fixture
def store(tmp_path):
    return CacheStore(tmp_path / "cache", render_releases_html)


def _later(entry, minutes=5):
    return CacheEntry(
        releases=entry.releases[:1],
        cached_at=entry.cached_at + timedelta(minutes=minutes),
        repo_path=entry.repo_path,
    )


class TestCommitLayout:
    """Test what put writes and get reads back."""

    def test_path_layout(self, store, github_key, tmp_path):
        assert store.path_for(github_key) == (
            tmp_path / "cache" / "repo" / "github.com" / "sharkdp" / "bat"
        )

    def test_cgit_path_keeps_nested_repository_path(self, store, tmp_path):
        key = RepositoryKey.for_platform(
            PlatformKind.CGIT, "", "pub/scm/git/git.git", host="git.kernel.org"
        )

        assert store.path_for(key) == (
            tmp_path / "cache" / "repo" / "git.kernel.org" / "pub" / "scm" / "git" / "git.git"
        )

    def test_put_then_get_round_trip(self, store, github_key, sample_entry):
        store.put(github_key, sample_entry)

        assert store.get(github_key) == sample_entry

    def test_put_writes_all_three_files(self, store, github_key, sample_entry):
        store.put(github_key, sample_entry)

        directory = store.path_for(github_key)
        assert sorted(os.listdir(directory)) == ["index.html", "last_updated", "releases.json"]
        marker = (directory / "last_updated").read_text(encoding="utf-8").strip()
        stored = json.loads((directory / "releases.json").read_text(encoding="utf-8"))
        assert stored["cached_at"] == marker
        assert marker in (directory / "index.html").read_text(encoding="utf-8")

    def test_put_replaces_entry_wholesale(self, store, github_key, sample_entry):
        store.put(github_key, sample_entry)
        newer = _later(sample_entry)

        store.put(github_key, newer)

        assert store.get(github_key) == newer

    def test_get_absent_returns_none(self, store, github_key):
        assert store.get(github_key) is None

    @pytest.mark.asyncio
    async def test_read_html_returns_committed_page(self, store, github_key, sample_entry):
        store.put(github_key, sample_entry)

        page = await store.read_html(github_key)

        assert page is not None
        assert "Releases for github.com/sharkdp/bat" in page

    @pytest.mark.asyncio
    async def test_read_html_absent_returns_none(self, store, github_key):
        assert await store.read_html(github_key) is None


class TestConsistency:
    """Readers must never combine files from different commits."""

    def test_marker_mismatch_is_treated_as_absent(self, store, github_key, sample_entry):
        store.put(github_key, sample_entry)
        marker = store.path_for(github_key) / "last_updated"
        marker.write_text("2001-01-01T00:00:00Z\n", encoding="utf-8")

        assert store.get(github_key) is None

    @pytest.mark.asyncio
    async def test_html_from_other_commit_is_rejected(
        self, store, github_key, sample_entry
    ):
        store.put(github_key, sample_entry)
        directory = store.path_for(github_key)
        old_page = (directory / "index.html").read_text(encoding="utf-8")
        store.put(github_key, _later(sample_entry))
        (directory / "index.html").write_text(old_page, encoding="utf-8")

        assert await store.read_html(github_key) is None

    def test_undecodable_json_is_treated_as_absent(self, store, github_key, sample_entry):
        store.put(github_key, sample_entry)
        (store.path_for(github_key) / "releases.json").write_text("{not json", encoding="utf-8")

        assert store.get(github_key) is None

    def test_invalid_schema_is_treated_as_absent(self, store, github_key, sample_entry):
        store.put(github_key, sample_entry)
        (store.path_for(github_key) / "releases.json").write_text(
            json.dumps({"releases": "nope", "cached_at": "x", "repo_path": 1}),
            encoding="utf-8",
        )

        assert store.get(github_key) is None

    def test_missing_marker_is_treated_as_absent(self, store, github_key, sample_entry):
        store.put(github_key, sample_entry)
        (store.path_for(github_key) / "last_updated").unlink()

        assert store.get(github_key) is None


class TestWriteFailures:
    """Test put failure handling."""

    def test_failed_replace_keeps_previous_commit(
        self, store, github_key, sample_entry, mocker
    ):
        store.put(github_key, sample_entry)
        mocker.patch(
            "checkup.releases.cache.os.replace", side_effect=OSError("disk full")
        )

        with pytest.raises(CacheIOError):
            store.put(github_key, _later(sample_entry))

        mocker.stopall()
        assert store.get(github_key) == sample_entry
        assert not [
            name for name in os.listdir(store.path_for(github_key)) if name.startswith("tmp-")
        ]

    def test_torn_commit_is_never_served(self, store, github_key, sample_entry, mocker):
        store.put(github_key, sample_entry)
        real_replace = os.replace
        calls = []

        def _fail_on_marker(src, dst):
            calls.append(dst)
            if str(dst).endswith("last_updated"):
                raise OSError("crash before marker")
            return real_replace(src, dst)

        mocker.patch("checkup.releases.cache.os.replace", side_effect=_fail_on_marker)

        with pytest.raises(CacheIOError):
            store.put(github_key, _later(sample_entry))

        assert len(calls) == 3
        assert store.get(github_key) is None

    def test_unwritable_cache_root_raises(self, tmp_path, mocker):
        mocker.patch("pathlib.Path.mkdir", side_effect=PermissionError("denied"))

        with pytest.raises(CacheIOError):
            CacheStore(tmp_path / "nope", render_releases_html)


class TestPathsAndDeletion:
    """Test containment checks and delete."""

    def test_path_escaping_cache_dir_is_rejected(self, store):
        key = RepositoryKey(PlatformKind.GITHUB, "github.com", "../../..", "etc")

        with pytest.raises(InvalidRequestError):
            store.path_for(key)

    def test_delete_removes_files(self, store, github_key, sample_entry):
        store.put(github_key, sample_entry)

        assert store.delete(github_key) is True
        assert store.get(github_key) is None
        assert not store.path_for(github_key).exists()

    def test_delete_absent_returns_false(self, store, github_key):
        assert store.delete(github_key) is False

    def test_delete_keeps_nested_repositories(self, store, sample_entry):
        parent = RepositoryKey.for_platform(
            PlatformKind.CGIT, "", "pub/tools", host="git.example.org"
        )
        child = RepositoryKey.for_platform(
            PlatformKind.CGIT, "", "pub/tools/sub.git", host="git.example.org"
        )
        store.put(parent, sample_entry)
        store.put(child, sample_entry)

        store.delete(parent)

        assert store.get(parent) is None
        assert store.get(child) == sample_entry


class TestFreshness:
    """Test the TTL comparison."""

    def test_is_fresh_within_ttl(self, store, sample_entry):
        assert store.is_fresh(sample_entry, timedelta(hours=24)) is True

    def test_is_stale_after_ttl(self, store, stale_entry):
        assert store.is_fresh(stale_entry, timedelta(hours=24)) is False

    def test_boundary_is_stale(self, store, sample_entry):
        now = sample_entry.cached_at + timedelta(hours=1)

        assert store.is_fresh(sample_entry, timedelta(hours=1), now=now) is False

    def test_explicit_now(self, store):
        entry = CacheEntry(
            releases=[],
            cached_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            repo_path="github.com/o/r",
        )

        assert store.is_fresh(
            entry, timedelta(hours=2), now=datetime(2024, 1, 1, 1, tzinfo=timezone.utc)
        )
