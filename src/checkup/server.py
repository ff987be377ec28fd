"""
HTTP front end for Checkup (aiohttp.web).

Routes:

- ``GET /``: index page
- ``GET /health``: liveness probe, ``200 OK``
- ``GET /{platform}/{repository path}``: HTML release page
- ``GET /{platform}/{repository path}/cache``: CacheEntry as JSON
- ``GET /{platform}/{repository path}/latest.{ext}``: 307 redirect to the newest asset

Handlers only consult the fetch orchestrator and the cache store; upstream
fetches always run in background tasks, so no request waits on a platform API.
"""

import asyncio
from typing import AsyncIterator, Dict, Optional

from aiohttp import web

from checkup.config import Settings
from checkup.constants import (
    CACHE_STATUS_HEADER,
    PROCESSING_RETRY_AFTER_SECONDS,
    REFRESH_ERROR_HEADER,
)
from checkup.exceptions import InvalidRequestError, NoMatchingAssetError
from checkup.log_utils import logger
from checkup.releases.cache import CacheStore
from checkup.releases.client import AsyncUpstreamClient
from checkup.releases.models import PlatformKind, RepositoryKey
from checkup.releases.orchestrator import (
    FetchOrchestrator,
    ResolveResult,
    ResolveStatus,
)
from checkup.releases.providers import ProviderRegistry
from checkup.releases.resolver import resolve_latest
from checkup.render import (
    render_error_html,
    render_index_html,
    render_processing_html,
    render_releases_html,
)
from checkup.routing import Operation, parse_repository_spec, parse_request_path

SETTINGS_KEY = web.AppKey("settings", Settings)
ORCHESTRATOR_KEY = web.AppKey("orchestrator", FetchOrchestrator)
WARM_TASK_KEY = web.AppKey("warm_task", asyncio.Task)

_HTML = "text/html"


def build_orchestrator(settings: Settings) -> FetchOrchestrator:
    """Wire the upstream client, providers and cache store described by `settings`."""
    client = AsyncUpstreamClient(timeout=settings.request_timeout)
    registry = ProviderRegistry(client, settings.tokens)
    store = CacheStore(settings.cache_dir, render_releases_html)
    return FetchOrchestrator(store, registry, settings.ttl)


def _cache_headers(result: ResolveResult) -> Dict[str, str]:
    headers = {CACHE_STATUS_HEADER: result.status.value}
    if result.status is ResolveStatus.STALE and result.message:
        # Header values must stay on one line
        headers[REFRESH_ERROR_HEADER] = " ".join(result.message.split())
    return headers


def _failure_status(result: ResolveResult) -> int:
    return 404 if result.not_found else 502


def _retry_headers() -> Dict[str, str]:
    return {"Retry-After": str(PROCESSING_RETRY_AFTER_SECONDS)}


async def _html_response(
    orchestrator: FetchOrchestrator, key: RepositoryKey, result: ResolveResult
) -> web.Response:
    if result.status is ResolveStatus.PROCESSING:
        return web.Response(
            text=render_processing_html(key, PROCESSING_RETRY_AFTER_SECONDS),
            status=202,
            content_type=_HTML,
            headers=_retry_headers(),
        )
    if result.status is ResolveStatus.FAILED:
        return web.Response(
            text=render_error_html(key, result.message or "Unknown error"),
            status=_failure_status(result),
            content_type=_HTML,
        )

    page = await orchestrator.store.read_html(key)
    if page is None:
        # The stored page belongs to another commit; render the entry we hold
        page = render_releases_html(result.entry, key)
    return web.Response(text=page, content_type=_HTML, headers=_cache_headers(result))


def _json_response(result: ResolveResult) -> web.Response:
    if result.status is ResolveStatus.PROCESSING:
        return web.json_response(
            {"error": "Releases are not cached yet; a fetch is in progress"},
            status=404,
            headers=_retry_headers(),
        )
    if result.status is ResolveStatus.FAILED:
        return web.json_response(
            {"error": result.message}, status=_failure_status(result)
        )
    return web.json_response(result.entry.to_dict(), headers=_cache_headers(result))


def _latest_response(result: ResolveResult, extension: str) -> web.Response:
    if result.status is ResolveStatus.PROCESSING:
        return web.Response(
            text="Releases are being fetched, retry shortly\n",
            status=503,
            headers=_retry_headers(),
        )
    if result.status is ResolveStatus.FAILED:
        return web.Response(
            text=f"{result.message}\n", status=_failure_status(result)
        )

    try:
        asset = resolve_latest(result.entry.releases, extension)
    except NoMatchingAssetError as e:
        return web.Response(text=f"{e}\n", status=404, headers=_cache_headers(result))

    headers = _cache_headers(result)
    headers["Location"] = asset.url
    return web.Response(status=307, headers=headers)


def _platform_handler(platform: PlatformKind):
    async def handler(request: web.Request) -> web.Response:
        orchestrator = request.app[ORCHESTRATOR_KEY]
        try:
            parsed = parse_request_path(platform, request.match_info["tail"])
            result = await orchestrator.resolve(parsed.key)
        except InvalidRequestError as e:
            logger.debug(f"Rejected request {request.path}: {e}")
            return web.Response(text=f"{e}\n", status=400)

        if parsed.operation is Operation.JSON:
            return _json_response(result)
        if parsed.operation is Operation.LATEST:
            return _latest_response(result, parsed.extension or "")
        return await _html_response(orchestrator, parsed.key, result)

    return handler


async def index(request: web.Request) -> web.Response:
    return web.Response(text=render_index_html(), content_type=_HTML)


async def health(request: web.Request) -> web.Response:
    return web.Response(text="OK")


async def _warm_configured(app: web.Application) -> None:
    settings = app[SETTINGS_KEY]
    keys = []
    for spec in settings.warm:
        try:
            keys.append(parse_repository_spec(spec))
        except InvalidRequestError as e:
            logger.warning(f"Skipping invalid warm entry '{spec}': {e}")
    if keys:
        logger.info(f"Warming {len(keys)} configured repositories")
        await app[ORCHESTRATOR_KEY].warm(keys, settings.warm_concurrency)


def _orchestrator_ctx(orchestrator: Optional[FetchOrchestrator], warm: bool):
    async def ctx(app: web.Application) -> AsyncIterator[None]:
        app[ORCHESTRATOR_KEY] = orchestrator or build_orchestrator(app[SETTINGS_KEY])
        if warm and app[SETTINGS_KEY].warm:
            app[WARM_TASK_KEY] = asyncio.create_task(_warm_configured(app))
        yield
        warm_task = app.get(WARM_TASK_KEY)
        if warm_task is not None and not warm_task.done():
            warm_task.cancel()
        await app[ORCHESTRATOR_KEY].close()

    return ctx


def create_app(
    settings: Settings,
    orchestrator: Optional[FetchOrchestrator] = None,
    warm: bool = True,
) -> web.Application:
    """
    Build the aiohttp application.

    Parameters:
        settings (Settings): Process settings.
        orchestrator (FetchOrchestrator | None): Pre-built orchestrator; built from
            `settings` at startup when omitted.
        warm (bool): Refresh the repositories listed in `settings.warm` in the background at startup.

    Returns:
        web.Application: The configured application.
    """
    app = web.Application()
    app[SETTINGS_KEY] = settings
    app.cleanup_ctx.append(_orchestrator_ctx(orchestrator, warm))

    app.router.add_get("/", index)
    app.router.add_get("/health", health)
    for platform in PlatformKind:
        app.router.add_get(
            f"/{platform.value}/{{tail:.+}}", _platform_handler(platform)
        )
    return app


def run_server(settings: Settings, warm: bool = True) -> None:
    """Serve the application until interrupted."""
    logger.info(
        f"Serving releases on http://{settings.host}:{settings.port} "
        f"(cache: {settings.cache_dir}, TTL: {settings.cache_hours}h)"
    )
    web.run_app(
        create_app(settings, warm=warm),
        host=settings.host,
        port=settings.port,
        print=None,
    )
