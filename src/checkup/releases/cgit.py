"""
cgit release provider.

cgit has no structured API, so releases are scraped from the repository's
``refs/tags`` page. Each row of the ``table.list`` tag table yields one
release when it links at least one snapshot archive (cgit serves those under
``/snapshot/``). Parsing is best-effort: rows that cannot be interpreted are
skipped and counted instead of failing the whole page.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import parse_qs, quote, urljoin, urlsplit

from bs4 import BeautifulSoup
from bs4.element import Tag

from checkup.constants import (
    ARCHIVE_CONTENT_TYPES,
    CGIT_DATE_FORMAT,
    CGIT_SNAPSHOT_SEGMENT,
    CGIT_TABLE_CLASS,
    CGIT_TAGS_PATH,
)
from checkup.exceptions import ParseFailureError
from checkup.log_utils import logger

from .base import ReleaseProvider
from .models import Asset, PlatformKind, Release, RepositoryKey


@dataclass
class CgitParseResult:
    """Best-effort outcome of parsing a cgit tags page."""

    releases: List[Release]
    skipped: int = 0
    """Rows that could not be interpreted as a tag, or repeated an earlier tag"""

    dropped: int = 0
    """Tags without any downloadable snapshot archive"""


def archive_content_type(name: str) -> Optional[str]:
    """Guess a MIME type from an archive file name, or None for unknown suffixes."""
    for suffix in sorted(ARCHIVE_CONTENT_TYPES, key=len, reverse=True):
        if name.endswith(f".{suffix}"):
            return ARCHIVE_CONTENT_TYPES[suffix]
    return None


def _parse_row_date(row: Tag) -> Optional[datetime]:
    for span in row.select("span[title]"):
        try:
            return datetime.strptime(span["title"].strip(), CGIT_DATE_FORMAT).astimezone(
                timezone.utc
            )
        except ValueError:
            continue
    return None


def _tag_from_href(href: str) -> Optional[str]:
    values = parse_qs(urlsplit(href).query).get("h")
    if values and values[0].strip():
        return values[0].strip()
    return None


def _is_blank(cells: List[Tag]) -> bool:
    return all(not cell.find("a") and not cell.get_text(strip=True) for cell in cells)


def _tag_name(cell: Tag) -> Optional[str]:
    anchor = cell.find("a")
    if anchor is None:
        return None
    return anchor.get_text(strip=True) or _tag_from_href(anchor.get("href", ""))


def _snapshot_assets(row: Tag, base_url: str) -> List[Asset]:
    assets: List[Asset] = []
    seen_urls = set()
    for anchor in row.select(f'a[href*="{CGIT_SNAPSHOT_SEGMENT}"]'):
        url = urljoin(base_url, anchor["href"])
        if url in seen_urls:
            continue
        seen_urls.add(url)
        name = urlsplit(url).path.rsplit("/", 1)[-1]
        if not name:
            continue
        assets.append(Asset(name=name, url=url, content_type=archive_content_type(name)))
    return assets


def parse_cgit_tags(page: str, host: str, repo_path: str) -> CgitParseResult:
    """
    Extract releases from the HTML of a cgit `refs/tags` page.

    Parameters:
        page (str): Raw HTML of the page.
        host (str): cgit host, used to absolutize relative links.
        repo_path (str): Repository path on the host.

    Returns:
        CgitParseResult: Releases in page order (re-sorted newest first when every
        release has a date), plus counts of skipped and dropped rows.

    Raises:
        ParseFailureError: If the page has no tag table at all.
    """
    soup = BeautifulSoup(page, "html.parser")
    table = soup.select_one(f"table.{CGIT_TABLE_CLASS}")
    if table is None:
        raise ParseFailureError(
            f"No tag table found on cgit page for {host}/{repo_path}",
            url=f"https://{host}/{repo_path}/{CGIT_TAGS_PATH}",
        )

    base_url = f"https://{host}/"
    repo_path = repo_path.strip("/")
    releases: List[Release] = []
    seen_tags = set()
    skipped = 0
    dropped = 0

    for row in table.select("tr"):
        # Header rows only carry th cells
        cells = row.find_all("td", recursive=False)
        if not cells or _is_blank(cells):
            continue

        tag_name = _tag_name(cells[0])
        if not tag_name:
            skipped += 1
            logger.debug(f"Skipping unparsable cgit row on {host}/{repo_path}")
            continue
        if tag_name in seen_tags:
            skipped += 1
            logger.debug(f"Skipping duplicate cgit tag {tag_name} on {host}/{repo_path}")
            continue
        seen_tags.add(tag_name)

        assets = _snapshot_assets(row, base_url)
        if not assets:
            dropped += 1
            continue

        releases.append(
            Release(
                tag_name=tag_name,
                name=tag_name,
                published_at=_parse_row_date(row),
                html_url=f"https://{host}/{repo_path}/tag/?h={quote(tag_name, safe='')}",
                body=None,
                prerelease=False,
                draft=False,
                assets=assets,
                source_tarball=next(
                    (a.url for a in assets if a.name.endswith(".tar.gz")), None
                ),
                source_zipball=next(
                    (a.url for a in assets if a.name.endswith(".zip")), None
                ),
            )
        )

    if releases and all(release.published_at for release in releases):
        releases.sort(key=lambda release: release.published_at, reverse=True)

    return CgitParseResult(releases=releases, skipped=skipped, dropped=dropped)


class CgitProvider(ReleaseProvider):
    """Release provider that scrapes cgit web front-ends."""

    platform = PlatformKind.CGIT

    def tags_url(self, key: RepositoryKey) -> str:
        return f"https://{key.host}/{key.repo_path.strip('/')}/{CGIT_TAGS_PATH}"

    async def fetch(self, key: RepositoryKey) -> List[Release]:
        url = self.tags_url(key)
        page = await self.client.get_text(url, headers={"Accept": "text/html"})
        result = parse_cgit_tags(page, key.host, key.repo_path)

        if result.skipped:
            logger.warning(
                f"Skipped {result.skipped} malformed tag rows while parsing {url}"
            )
        if result.dropped:
            logger.debug(f"Dropped {result.dropped} tags without snapshots from {url}")
        logger.debug(f"Parsed {len(result.releases)} releases for {key}")
        return result.releases
