from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, Mock

import aiohttp
import platformdirs
import pytest

from checkup.releases.models import (
    Asset,
    CacheEntry,
    PlatformKind,
    Release,
    RepositoryKey,
)

_ASYNC_NETWORK_BLOCK_MSG = (
    "Async network access is blocked during tests. Mock aiohttp.ClientSession."
)


async def _async_block_network(*_args, **_kwargs):
    """
    Prevent async network calls during tests by raising a RuntimeError.

    Raises:
        RuntimeError: `_ASYNC_NETWORK_BLOCK_MSG` suggesting to mock `aiohttp.ClientSession`.
    """
    raise RuntimeError(_ASYNC_NETWORK_BLOCK_MSG)


def pytest_configure(config):
    """
    Register the custom markers used across the test suite.

    Parameters:
        config: pytest.Config
    """
    config.addinivalue_line(
        "markers", "asyncio: mark test as an asyncio test (auto-detected)"
    )
    config.addinivalue_line("markers", "unit: fast isolated unit tests")
    config.addinivalue_line(
        "markers", "integration: tests exercising several components together"
    )


@pytest.fixture(autouse=True)
def _isolate_test_environment(tmp_path_factory, monkeypatch):
    """
    Point platformdirs and the environment at a temporary directory layout.

    Removes token and log-level variables so the developer's environment never
    leaks into configuration tests.
    """
    base = tmp_path_factory.mktemp("checkup")
    cache_dir = base / "cache"
    config_dir = base / "config"
    log_dir = base / "log"

    for path in (cache_dir, config_dir, log_dir):
        path.mkdir(parents=True, exist_ok=True)

    monkeypatch.setenv("XDG_CACHE_HOME", str(cache_dir))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_dir))
    for env_var in ("GITHUB_TOKEN", "GITLAB_TOKEN", "CHECKUP_LOG_LEVEL"):
        monkeypatch.delenv(env_var, raising=False)

    monkeypatch.setattr(
        platformdirs, "user_cache_dir", lambda *_args, **_kwargs: str(cache_dir)
    )
    monkeypatch.setattr(
        platformdirs, "user_config_dir", lambda *_args, **_kwargs: str(config_dir)
    )
    monkeypatch.setattr(
        platformdirs, "user_log_dir", lambda *_args, **_kwargs: str(log_dir)
    )


def pytest_runtest_setup():
    """
    Prevent real upstream requests by replacing aiohttp's request shortcuts with a blocker.

    `ClientSession.request` stays intact because aiohttp's in-process
    TestClient goes through it to reach the TestServer.
    """
    aiohttp.request = _async_block_network
    aiohttp.ClientSession.get = _async_block_network  # type: ignore[assignment]
    aiohttp.ClientSession.post = _async_block_network  # type: ignore[assignment]
    aiohttp.ClientSession.put = _async_block_network  # type: ignore[assignment]
    aiohttp.ClientSession.delete = _async_block_network  # type: ignore[assignment]
    aiohttp.ClientSession.head = _async_block_network  # type: ignore[assignment]
    aiohttp.ClientSession.patch = _async_block_network  # type: ignore[assignment]
    aiohttp.ClientSession.options = _async_block_network  # type: ignore[assignment]


# =============================================================================
# HTTP Mock Fixtures
# =============================================================================


@pytest.fixture
def mock_aiohttp_session(mocker):
    """Provide a mock aiohttp.ClientSession with `closed` set to False."""
    mock_session = mocker.MagicMock(spec=aiohttp.ClientSession)
    mock_session.closed = False
    return mock_session


@pytest.fixture
def mock_async_response():
    """
    Provide a factory for mocked aiohttp responses usable as `async with session.get(...)`.

    The factory accepts `status`, `headers`, `json_data`, `text` and
    `next_url` (exposed through `response.links` the way aiohttp parses a
    `Link: <...>; rel="next"` header).
    """

    def _create_response(
        status=200, headers=None, json_data=None, text="", next_url=None
    ):
        response = MagicMock()
        response.status = status
        response.headers = headers or {}
        response.json = AsyncMock(return_value=json_data)
        response.text = AsyncMock(return_value=text)
        response.links = {"next": {"url": next_url}} if next_url else {}
        response.__aenter__ = AsyncMock(return_value=response)
        response.__aexit__ = AsyncMock(return_value=None)
        return response

    return _create_response


@pytest.fixture
def client_with_session(mocker, mock_aiohttp_session):
    """
    Provide an AsyncUpstreamClient whose session is the mocked aiohttp session.

    Tests set `mock_aiohttp_session.get` to a Mock returning responses built
    with `mock_async_response`.
    """
    from checkup.releases.client import AsyncUpstreamClient

    client = AsyncUpstreamClient(timeout=5)
    mocker.patch.object(
        client, "_ensure_session", AsyncMock(return_value=mock_aiohttp_session)
    )
    return client


@pytest.fixture
def mock_upstream_client():
    """A stand-in for AsyncUpstreamClient with async fetch methods."""
    client = Mock()
    client.get_paginated = AsyncMock(return_value=[])
    client.get_json = AsyncMock(return_value=None)
    client.get_text = AsyncMock(return_value="")
    client.close = AsyncMock()
    return client


# =============================================================================
# Domain Fixtures
# =============================================================================


@pytest.fixture
def github_key():
    return RepositoryKey.for_platform(PlatformKind.GITHUB, "sharkdp", "bat")


@pytest.fixture
def sample_github_releases():
    """Sample GitHub `/releases` payload, newest first."""
    return [
        {
            "tag_name": "v0.25.0",
            "name": "v0.25.0",
            "html_url": "https://github.com/sharkdp/bat/releases/tag/v0.25.0",
            "published_at": "2025-01-07T20:10:00Z",
            "body": "## Features\n\n- Faster startup\n- New themes\n- Bug fixes",
            "prerelease": False,
            "draft": False,
            "tarball_url": "https://api.github.com/repos/sharkdp/bat/tarball/v0.25.0",
            "zipball_url": "https://api.github.com/repos/sharkdp/bat/zipball/v0.25.0",
            "assets": [
                {
                    "name": "bat-v0.25.0-x86_64-unknown-linux-gnu.tar.gz",
                    "browser_download_url": "https://github.com/sharkdp/bat/releases/download/v0.25.0/bat-v0.25.0-x86_64-unknown-linux-gnu.tar.gz",
                    "content_type": "application/gzip",
                    "size": 2952192,
                    "download_count": 1500,
                },
                {
                    "name": "bat_0.25.0_amd64.deb",
                    "browser_download_url": "https://github.com/sharkdp/bat/releases/download/v0.25.0/bat_0.25.0_amd64.deb",
                    "content_type": "application/vnd.debian.binary-package",
                    "size": 1781760,
                    "download_count": 900,
                },
            ],
        },
        {
            "tag_name": "v0.24.0",
            "name": None,
            "html_url": "https://github.com/sharkdp/bat/releases/tag/v0.24.0",
            "published_at": "2023-10-11T18:00:00Z",
            "body": None,
            "prerelease": False,
            "draft": False,
            "tarball_url": "https://api.github.com/repos/sharkdp/bat/tarball/v0.24.0",
            "zipball_url": "https://api.github.com/repos/sharkdp/bat/zipball/v0.24.0",
            "assets": [],
        },
    ]


@pytest.fixture
def sample_gitlab_releases():
    """Sample GitLab `/projects/:id/releases` payload."""
    return [
        {
            "tag_name": "v16.0.0",
            "name": "Release 16.0.0",
            "description": "Changelog\n\n* Improved pipelines",
            "created_at": "2024-05-01T10:00:00.000Z",
            "released_at": "2024-05-02T12:00:00.000Z",
            "assets": {
                "count": 3,
                "sources": [
                    {
                        "format": "zip",
                        "url": "https://gitlab.com/group/sub/project/-/archive/v16.0.0/project-v16.0.0.zip",
                    },
                    {
                        "format": "tar.gz",
                        "url": "https://gitlab.com/group/sub/project/-/archive/v16.0.0/project-v16.0.0.tar.gz",
                    },
                ],
                "links": [
                    {
                        "name": "project-linux-amd64",
                        "url": "https://gitlab.com/group/sub/project/-/package_files/1/download",
                        "direct_asset_url": "https://gitlab.com/group/sub/project/-/releases/v16.0.0/downloads/project-linux-amd64",
                    },
                    {
                        "name": "checksums.txt",
                        "url": "https://example.com/checksums.txt",
                    },
                ],
            },
            "_links": {
                "self": "https://gitlab.com/group/sub/project/-/releases/v16.0.0"
            },
        }
    ]


@pytest.fixture
def cgit_tags_page():
    """A `refs/tags` page in cgit's markup, with one header row and one snapshot-less tag."""
    return """<!DOCTYPE html>
<html><head><title>git.git - refs</title></head>
<body>
<div id="cgit">
<table class="tabs"><tr><td><a href="/pub/scm/git/git.git/">summary</a></td></tr></table>
<div class="content">
<table summary="tag list" class="list nowrap">
<tr class="nohover"><th class="left">Tag</th><th class="left">Download</th><th class="left">Author</th><th class="left" colspan="2">Age</th></tr>
<tr><td><a href="/pub/scm/git/git.git/tag/?h=v2.44.0">v2.44.0</a></td>
<td><a href="/pub/scm/git/git.git/snapshot/git-2.44.0.tar.gz">git-2.44.0.tar.gz</a>&nbsp;&nbsp;<a href="/pub/scm/git/git.git/snapshot/git-2.44.0.zip">git-2.44.0.zip</a></td>
<td>Junio C Hamano</td>
<td colspan="2"><span title="2024-02-23 09:20:13 -0800">12 months</span></td></tr>
<tr><td><a href="/pub/scm/git/git.git/tag/?h=v2.45.0">v2.45.0</a></td>
<td><a href="/pub/scm/git/git.git/snapshot/git-2.45.0.tar.xz">git-2.45.0.tar.xz</a></td>
<td>Junio C Hamano</td>
<td colspan="2"><span title="2024-04-29 10:00:00 -0700">10 months</span></td></tr>
<tr><td><a href="/pub/scm/git/git.git/tag/?h=gitgui-0.6.0">gitgui-0.6.0</a></td>
<td></td>
<td>Shawn O. Pearce</td>
<td colspan="2"><span title="2007-01-20 12:00:00 +0000">18 years</span></td></tr>
<tr><td>broken row without a link</td><td></td><td></td><td colspan="2"></td></tr>
</table>
</div>
</div>
</body></html>
"""


def _make_release(tag_name, assets=(), draft=False, prerelease=False, published_at=None):
    return Release(
        tag_name=tag_name,
        html_url=f"https://github.com/sharkdp/bat/releases/tag/{tag_name}",
        name=tag_name,
        published_at=published_at,
        draft=draft,
        prerelease=prerelease,
        assets=[
            Asset(name=name, url=f"https://example.com/{tag_name}/{name}")
            for name in assets
        ],
    )


@pytest.fixture
def make_release():
    """Provide a factory building Releases whose assets are named by `assets`."""
    return _make_release


@pytest.fixture
def sample_entry():
    """A CacheEntry holding two GitHub releases, cached now."""
    return CacheEntry(
        releases=[
            _make_release(
                "v2.0.0",
                assets=["tool-2.0.0.tar.gz", "tool-2.0.0.zip"],
                published_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
            ),
            _make_release(
                "v1.0.0",
                assets=["tool-1.0.0.tar.gz", "tool-1.0.0.deb"],
                published_at=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
            ),
        ],
        cached_at=datetime.now(timezone.utc),
        repo_path="github.com/sharkdp/bat",
    )


@pytest.fixture
def stale_entry(sample_entry):
    """`sample_entry` cached two days ago."""
    return CacheEntry(
        releases=sample_entry.releases,
        cached_at=datetime.now(timezone.utc) - timedelta(days=2),
        repo_path=sample_entry.repo_path,
    )
