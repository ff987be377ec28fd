"""
Cache Store for Checkup

This module persists normalized releases on disk, one directory per
repository under ``{root}/repo/{host}/{owner}/{repo}/``:

- ``releases.json``: the CacheEntry in its JSON storage form
- ``index.html``: the pre-rendered release page
- ``last_updated``: RFC3339 timestamp of the last successful fetch

All three files are written to temporary files first and moved into place
with ``os.replace``; the marker is replaced last. The marker, the JSON
``cached_at`` and the stamp embedded in the HTML must agree for a read to be
accepted, so a torn commit is never served.
"""

import json
import os
import re
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import aiofiles  # type: ignore[import-untyped]

from checkup.constants import (
    CACHE_HTML_FILE,
    CACHE_JSON_FILE,
    CACHE_MARKER_FILE,
    CACHE_READ_ATTEMPTS,
    CACHE_REPO_DIR,
    HTML_STAMP_META_NAME,
)
from checkup.exceptions import CacheIOError, InvalidRequestError
from checkup.log_utils import logger
from checkup.utils import format_rfc3339, parse_iso_datetime_utc, utc_now

from .models import CacheEntry, RepositoryKey

Renderer = Callable[[CacheEntry, RepositoryKey], str]

_STAMP_PATTERN = re.compile(
    r'<meta name="' + re.escape(HTML_STAMP_META_NAME) + r'" content="([^"]+)"'
)


def _is_within_base(real_base_dir: Path, candidate: Path) -> bool:
    """Return True if `candidate` resolves to a path inside `real_base_dir`."""
    try:
        candidate.resolve().relative_to(real_base_dir)
    except ValueError:
        return False
    return True


def _stage_file(directory: Path, content: str, suffix: str) -> str:
    """
    Write `content` to a new temporary file in `directory` and flush it to disk.

    Returns:
        str: Path of the temporary file.

    Raises:
        OSError: If the file cannot be created or written; no temporary file is left behind.
    """
    temp_fd, temp_path = tempfile.mkstemp(dir=directory, prefix="tmp-", suffix=suffix)
    try:
        with os.fdopen(temp_fd, "w", encoding="utf-8") as temp_f:
            temp_f.write(content)
            temp_f.flush()
            os.fsync(temp_f.fileno())
    except (OSError, UnicodeEncodeError):
        _remove_quietly(temp_path)
        raise
    return temp_path


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.debug(f"Could not remove temporary file {path}: {e}")


class CacheStore:
    """
    On-disk store of committed CacheEntries, one partition per RepositoryKey.

    The store renders the HTML form itself (through the injected renderer) so
    that `put` always writes the JSON, HTML and marker of the same fetch.
    """

    def __init__(self, cache_dir: os.PathLike, renderer: Renderer) -> None:
        """
        Parameters:
            cache_dir: Root cache directory; created if missing.
            renderer: Pure function turning an entry into its HTML page.

        Raises:
            CacheIOError: If the cache directory cannot be created.
        """
        self.cache_dir = Path(cache_dir)
        self.renderer = renderer
        self._ensure_cache_dir_exists()
        self._real_cache_dir = self.cache_dir.resolve()

    def _ensure_cache_dir_exists(self) -> None:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Could not create cache directory {self.cache_dir}: {e}")
            raise CacheIOError(
                "Could not create cache directory", path=str(self.cache_dir), details=str(e)
            ) from e

    def path_for(self, key: RepositoryKey) -> Path:
        """
        Directory holding the files of one repository.

        Raises:
            InvalidRequestError: If the key would resolve outside the cache directory.
        """
        path = self.cache_dir / CACHE_REPO_DIR / key.host
        if key.owner:
            path = path / key.owner
        path = path / key.repo
        if not _is_within_base(self._real_cache_dir, path):
            raise InvalidRequestError(
                f"Repository path escapes the cache directory: {key.cache_key}",
                path=key.cache_key,
            )
        return path

    def is_fresh(
        self, entry: CacheEntry, ttl: timedelta, now: Optional[datetime] = None
    ) -> bool:
        """Return True if the entry is younger than `ttl`."""
        return (now or utc_now()) - entry.cached_at < ttl

    def _read_committed(self, directory: Path) -> Tuple[CacheEntry, datetime]:
        marker_text = (directory / CACHE_MARKER_FILE).read_text(encoding="utf-8")
        marker = parse_iso_datetime_utc(marker_text)
        if marker is None:
            raise ValueError(f"Invalid marker timestamp {marker_text.strip()!r}")
        with open(directory / CACHE_JSON_FILE, "r", encoding="utf-8") as f:
            entry = CacheEntry.from_dict(json.load(f))
        return entry, marker

    def get(self, key: RepositoryKey) -> Optional[CacheEntry]:
        """
        Load the committed entry for `key`.

        Returns:
            CacheEntry or None when nothing is cached, the files cannot be read
            or decoded, or the JSON does not belong to the committed marker.
        """
        directory = self.path_for(key)
        for attempt in range(1, CACHE_READ_ATTEMPTS + 1):
            try:
                entry, marker = self._read_committed(directory)
            except FileNotFoundError:
                return None
            except (OSError, ValueError, TypeError) as e:
                logger.warning(f"Ignoring unreadable cache for {key}: {e}")
                return None

            if entry.cached_at == marker:
                logger.debug(f"Cache hit for {key} (cached at {format_rfc3339(marker)})")
                return entry
            logger.debug(
                f"Cache files for {key} belong to different commits (attempt {attempt})"
            )

        logger.warning(f"Ignoring inconsistent cache for {key}")
        return None

    async def read_html(self, key: RepositoryKey) -> Optional[str]:
        """
        Read the pre-rendered page for `key`.

        Returns:
            str or None when it is missing, unreadable, or not stamped with the committed marker.
        """
        directory = self.path_for(key)
        try:
            async with aiofiles.open(
                directory / CACHE_MARKER_FILE, "r", encoding="utf-8"
            ) as f:
                marker = parse_iso_datetime_utc(await f.read())
            async with aiofiles.open(
                directory / CACHE_HTML_FILE, "r", encoding="utf-8"
            ) as f:
                page = await f.read()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Ignoring unreadable cached page for {key}: {e}")
            return None

        match = _STAMP_PATTERN.search(page)
        stamp = parse_iso_datetime_utc(match.group(1)) if match else None
        if marker is None or stamp != marker:
            logger.debug(f"Cached page for {key} does not match the committed marker")
            return None
        return page

    def put(self, key: RepositoryKey, entry: CacheEntry) -> None:
        """
        Commit `entry` as the current state of `key`.

        The JSON, HTML and marker are staged as temporary files and then moved
        into place, marker last. If anything fails the marker still names the
        previous commit, so readers keep rejecting the partially replaced files
        until the next successful put.

        Raises:
            CacheIOError: If any file cannot be staged or replaced.
        """
        directory = self.path_for(key)
        html = self.renderer(entry, key)
        payload = json.dumps(entry.to_dict(), indent=2)
        marker = format_rfc3339(entry.cached_at) + "\n"

        staged: List[Tuple[str, Path]] = []
        try:
            directory.mkdir(parents=True, exist_ok=True)
            for name, content, suffix in (
                (CACHE_JSON_FILE, payload, ".json"),
                (CACHE_HTML_FILE, html, ".html"),
                (CACHE_MARKER_FILE, marker, ".txt"),
            ):
                staged.append((_stage_file(directory, content, suffix), directory / name))
            for temp_path, target in staged:
                os.replace(temp_path, target)
        except (OSError, UnicodeEncodeError) as e:
            logger.error(f"Could not write cache for {key}: {e}")
            raise CacheIOError(
                f"Could not write cache for {key.cache_key}",
                path=str(directory),
                details=str(e),
            ) from e
        finally:
            for temp_path, _target in staged:
                if os.path.exists(temp_path):
                    _remove_quietly(temp_path)

        logger.debug(f"Committed {len(entry.releases)} releases for {key} to {directory}")

    def delete(self, key: RepositoryKey) -> bool:
        """
        Remove the cached files of `key`.

        Only the store's own files are removed, so nested cgit repositories
        sharing a path prefix are left intact.

        Returns:
            bool: True if anything was removed.

        Raises:
            CacheIOError: If a file exists but cannot be removed.
        """
        directory = self.path_for(key)
        removed = False
        for name in (CACHE_MARKER_FILE, CACHE_JSON_FILE, CACHE_HTML_FILE):
            try:
                (directory / name).unlink()
                removed = True
            except FileNotFoundError:
                continue
            except OSError as e:
                raise CacheIOError(
                    f"Could not delete cache for {key.cache_key}",
                    path=str(directory / name),
                    details=str(e),
                ) from e
        try:
            directory.rmdir()
        except OSError:
            # Still holds nested repositories
            pass
        return removed
