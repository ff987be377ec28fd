"""
Checkup Release Subsystem

Fetching, normalizing and caching release metadata from code-hosting platforms.

Core Components:
- models: Repository keys and the normalized Release/Asset/CacheEntry types
- client: Shared aiohttp client with rate-limit bookkeeping
- github, gitlab, forgejo, cgit: One provider per platform
- providers: Dispatch from a repository key to its provider
- cache: Atomic on-disk cache of JSON, HTML and the commit marker
- resolver: "Latest asset" resolution by extension
- orchestrator: Freshness decisions and single-flight background fetches
"""

from .base import ReleaseProvider
from .cache import CacheStore
from .cgit import CgitProvider
from .client import AsyncUpstreamClient
from .forgejo import ForgejoProvider
from .github import GitHubProvider
from .gitlab import GitLabProvider
from .models import Asset, CacheEntry, PlatformKind, Release, RepositoryKey
from .orchestrator import (
    FetchOrchestrator,
    FetchState,
    FetchStatus,
    ResolveResult,
    ResolveStatus,
)
from .providers import ProviderRegistry
from .resolver import extract_extension, latest_release, resolve_latest

__all__ = [
    # Models
    "PlatformKind",
    "RepositoryKey",
    "Asset",
    "Release",
    "CacheEntry",
    # Upstream access
    "AsyncUpstreamClient",
    "ReleaseProvider",
    "GitHubProvider",
    "GitLabProvider",
    "ForgejoProvider",
    "CgitProvider",
    "ProviderRegistry",
    # Storage and orchestration
    "CacheStore",
    "FetchOrchestrator",
    "FetchState",
    "FetchStatus",
    "ResolveResult",
    "ResolveStatus",
    # Resolution
    "resolve_latest",
    "latest_release",
    "extract_extension",
]
