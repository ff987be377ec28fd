"""
HTML rendering for release pages.

Rendering is pure: every function maps data to an HTML string and performs
no caching or I/O. Release pages embed the entry's ``cached_at`` stamp in a
``<meta>`` tag so the cache store can check that a stored page belongs to the
same commit as the stored JSON.
"""

from html import escape
from typing import List, Optional

from checkup.constants import HTML_STAMP_META_NAME
from checkup.releases.models import Asset, CacheEntry, Release, RepositoryKey
from checkup.releases.resolver import extract_extension, latest_release
from checkup.utils import format_rfc3339

_DISPLAY_TIME_FORMAT = "%Y-%m-%d %H:%M:%S UTC"

_PAGE_STYLE = """
        body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 800px; margin: 0 auto; padding: 20px; }
        h1 { color: #333; }
        ul { list-style-type: none; padding: 0; }
        li.release { margin-bottom: 25px; padding: 20px; border: 1px solid #e1e4e8; border-radius: 8px; }
        a { color: #0366d6; text-decoration: none; }
        a:hover { text-decoration: underline; }
        .latest { margin-bottom: 30px; padding: 20px; background: #f0fff4; border: 2px solid #28a745; border-radius: 12px; }
        .asset { padding: 8px; margin: 4px 0; border: 1px solid #e1e4e8; border-radius: 6px; color: #777; }
        .badge { padding: 2px 6px; border-radius: 3px; font-size: 0.8em; }
        .badge-latest { background: #28a745; color: white; }
        .badge-prerelease { background: #f0ad4e; }
        .badge-draft { background: #777; color: white; }
        .download { background: #28a745; color: white; padding: 4px 10px; border-radius: 4px; float: right; }
        pre.notes { padding: 10px; background: #f6f8fa; border-radius: 6px; white-space: pre-wrap; }
"""


def format_size(size: int) -> str:
    """Format a byte count for display (B, KB, MB or GB)."""
    kb = 1024
    mb = kb * 1024
    gb = mb * 1024
    if size >= gb:
        return f"{size / gb:.2f} GB"
    if size >= mb:
        return f"{size / mb:.2f} MB"
    if size >= kb:
        return f"{size / kb:.2f} KB"
    return f"{size} B"


def stamp_meta_tag(entry: CacheEntry) -> str:
    return f'<meta name="{HTML_STAMP_META_NAME}" content="{format_rfc3339(entry.cached_at)}">'


def _page(title: str, body: str, head_extra: str = "") -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{escape(title)}</title>
    {head_extra}
    <style>{_PAGE_STYLE}    </style>
</head>
<body>
{body}
</body>
</html>
"""


def _published(release: Release) -> str:
    if release.published_at is None:
        return "unknown date"
    return release.published_at.strftime(_DISPLAY_TIME_FORMAT)


def _asset_line(asset: Asset, latest_url: Optional[str] = None) -> str:
    parts = [f'<a href="{escape(asset.url)}">{escape(asset.name)}</a>']
    if asset.size > 0:
        parts.append(f" ({format_size(asset.size)})")
    if asset.download_count > 0:
        parts.append(f" &middot; {asset.download_count} downloads")
    if latest_url:
        parts.insert(0, f'<a class="download" href="{escape(latest_url)}">Latest link</a>')
    return f'<div class="asset">{"".join(parts)}</div>'


def _latest_box(release: Release, key: RepositoryKey) -> str:
    if not release.assets:
        return ""
    prefix = f"/{key.platform.value}/{key.route_path}"
    lines = "\n".join(
        _asset_line(asset, f"{prefix}/latest.{extract_extension(asset.name)}")
        for asset in release.assets
    )
    return f"""<div class="latest">
    <h2>Latest Release: {escape(release.display_name)}</h2>
    <p>Published: {_published(release)} &middot; {len(release.assets)} files</p>
    {lines}
</div>"""


def _release_item(release: Release, is_latest: bool) -> str:
    badges = []
    if is_latest:
        badges.append('<span class="badge badge-latest">Latest</span>')
    if release.prerelease:
        badges.append('<span class="badge badge-prerelease">Pre-release</span>')
    if release.draft:
        badges.append('<span class="badge badge-draft">Draft</span>')

    title = escape(release.display_name)
    if release.html_url:
        title = f'<a href="{escape(release.html_url)}" target="_blank">{title}</a>'

    assets_html = ""
    if release.assets:
        lines = "\n".join(_asset_line(asset) for asset in release.assets)
        assets_html = f"<p><strong>Downloads ({len(release.assets)} files):</strong></p>\n{lines}"

    notes_html = ""
    if release.body:
        preview = "\n".join(release.body.splitlines()[:3])
        notes_html = f"""<details>
        <summary>Show release notes</summary>
        <pre class="notes">{escape(preview)}</pre>
    </details>"""

    return f"""<li class="release">
    <strong>{title}</strong> {" ".join(badges)}
    <br><small>Published: {_published(release)}</small>
    {assets_html}
    {notes_html}
</li>"""


def render_releases_html(entry: CacheEntry, key: RepositoryKey) -> str:
    """
    Render the release page for one cache entry.

    Parameters:
        entry (CacheEntry): Committed releases of the repository.
        key (RepositoryKey): Repository the entry belongs to; used for titles and `latest` links.

    Returns:
        str: A complete HTML document.
    """
    latest = latest_release(entry.releases)
    latest_box = _latest_box(latest, key) if latest else ""
    items: List[str] = [
        _release_item(release, release is latest) for release in entry.releases
    ]
    releases_html = "\n".join(items) if items else "<li>No releases found.</li>"

    body = f"""<h1>Releases for {escape(entry.repo_path)}</h1>
<p><em>Cached at: {entry.cached_at.strftime(_DISPLAY_TIME_FORMAT)}</em></p>
{latest_box}
<h2>All Releases</h2>
<ul>
{releases_html}
</ul>"""
    return _page(f"Releases - {entry.repo_path}", body, head_extra=stamp_meta_tag(entry))


def render_processing_html(key: RepositoryKey, retry_after: int) -> str:
    """Render the placeholder page shown while the first fetch of a repository runs."""
    body = f"""<h1>Fetching releases for {escape(key.cache_key)}</h1>
<p>The release list is being retrieved from {escape(key.host)}. This page reloads automatically.</p>"""
    return _page(
        f"Fetching - {key.cache_key}",
        body,
        head_extra=f'<meta http-equiv="refresh" content="{retry_after}">',
    )


def render_error_html(key: RepositoryKey, message: str) -> str:
    """Render the page describing the last recorded fetch failure."""
    body = f"""<h1>Could not fetch releases for {escape(key.cache_key)}</h1>
<p>{escape(message)}</p>
<p>Reload this page to retry.</p>"""
    return _page(f"Error - {key.cache_key}", body)


def render_index_html() -> str:
    """Render the landing page describing the available routes."""
    body = """<h1>checkup</h1>
<p>Cached release listings for code-hosting platforms.</p>
<ul>
    <li><code>/github/{owner}/{repo}</code></li>
    <li><code>/gitlab/{group}/{project}</code></li>
    <li><code>/forgejo/{host}/{owner}/{repo}</code></li>
    <li><code>/cgit/{host}/{repository path}</code></li>
</ul>
<p>Append <code>/cache</code> for JSON or <code>/latest.{ext}</code> to be redirected
to the newest asset with that extension, for example
<code>/github/sharkdp/bat/latest.tar.gz</code>.</p>"""
    return _page("checkup", body)
