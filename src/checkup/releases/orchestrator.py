"""
Fetch Orchestrator for Checkup

Decides, per repository, whether a request is answered from the cache or
needs an upstream fetch, and runs at most one fetch per repository at a time.

Per-key state machine:

    Absent/Stale --(request, no fetch in flight)--> Fetching
    Fetching     --(concurrent request)----------> Fetching (no new upstream call)
    Fetching     --(success)-----------------------> Idle, cache committed
    Fetching     --(failure)-----------------------> Error(message)
    Error        --(request)-----------------------> Fetching (retry)
    Fresh        --(request)-----------------------> served, no transition

Requests never wait for a fetch: expired entries are served as STALE while
the refresh runs in a background task, and absent entries report PROCESSING
(or the last recorded failure) until a fetch commits.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import AsyncIterator, Dict, Iterable, List, Optional

from checkup.constants import DEFAULT_WARM_CONCURRENCY
from checkup.exceptions import CheckupError, UpstreamNotFoundError
from checkup.log_utils import logger
from checkup.utils import utc_now

from .cache import CacheStore
from .models import CacheEntry, RepositoryKey
from .providers import ProviderRegistry


class FetchStatus(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    ERROR = "error"


@dataclass(frozen=True)
class FetchState:
    """
    In-memory fetch state of one repository.

    `message`, `occurred_at` and `not_found` describe the last failure. They are
    kept while a retry is in flight and cleared once a fetch succeeds.
    """

    status: FetchStatus = FetchStatus.IDLE
    message: Optional[str] = None
    occurred_at: Optional[datetime] = None
    not_found: bool = False


IDLE_STATE = FetchState()


class ResolveStatus(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    PROCESSING = "processing"
    FAILED = "failed"


@dataclass(frozen=True)
class ResolveResult:
    """
    Outcome of resolving a repository for a request.

    FRESH and STALE carry the committed entry; a STALE result may also carry
    the message of a failed refresh. FAILED carries the last recorded error.
    """

    status: ResolveStatus
    entry: Optional[CacheEntry] = None
    message: Optional[str] = None
    not_found: bool = False


class KeyLocks:
    """Per-repository asyncio locks, dropped once nothing holds or waits for them."""

    def __init__(self) -> None:
        self._locks: Dict[RepositoryKey, asyncio.Lock] = {}
        self._users: Dict[RepositoryKey, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, key: object) -> bool:
        return key in self._locks

    @asynccontextmanager
    async def hold(self, key: RepositoryKey) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


class FetchOrchestrator:
    """
    Coordinates cache lookups and single-flight background fetches.

    The state map, the per-key locks and the in-flight tasks are owned by the
    instance; a new instance (for example after a restart) starts with every
    repository idle and no remembered errors.
    """

    def __init__(
        self, store: CacheStore, providers: ProviderRegistry, ttl: timedelta
    ) -> None:
        self.store = store
        self.providers = providers
        self.ttl = ttl
        self._states: Dict[RepositoryKey, FetchState] = {}
        self._locks = KeyLocks()
        self._tasks: Dict[RepositoryKey, "asyncio.Task[None]"] = {}

    async def _read_entry(self, key: RepositoryKey) -> Optional[CacheEntry]:
        # Cache reads and commits do blocking file I/O (commits fsync), keep them off the loop
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.store.get, key)

    async def _write_entry(self, key: RepositoryKey, entry: CacheEntry) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.store.put, key, entry)

    def fetch_state(self, key: RepositoryKey) -> FetchState:
        return self._states.get(key, IDLE_STATE)

    def in_flight(self, key: RepositoryKey) -> bool:
        return key in self._tasks

    async def resolve(self, key: RepositoryKey) -> ResolveResult:
        """
        Answer a request for `key` without blocking on upstream I/O.

        Returns:
            ResolveResult: FRESH when the cache is within the TTL (no provider is
            involved), STALE when an expired entry is served while it refreshes,
            PROCESSING when nothing is cached yet and a fetch is running, or
            FAILED with the last recorded error when nothing is cached and the
            last attempt failed. Any request that finds no fetch in flight for a
            stale, absent or failed repository starts one.
        """
        entry = await self._read_entry(key)
        if entry is not None and self.store.is_fresh(entry, self.ttl):
            return ResolveResult(ResolveStatus.FRESH, entry)

        async with self._locks.hold(key):
            state = self.fetch_state(key)
            if state.status is not FetchStatus.FETCHING:
                # A fetch may have committed while this request waited for the lock
                entry = await self._read_entry(key)
                if entry is not None and self.store.is_fresh(entry, self.ttl):
                    return ResolveResult(ResolveStatus.FRESH, entry)
                self._start_fetch(key, state)
            return self._pending_result(entry, state)

    def _pending_result(
        self, entry: Optional[CacheEntry], state: FetchState
    ) -> ResolveResult:
        if entry is not None:
            return ResolveResult(ResolveStatus.STALE, entry, message=state.message)
        if state.message is not None:
            return ResolveResult(
                ResolveStatus.FAILED, message=state.message, not_found=state.not_found
            )
        return ResolveResult(ResolveStatus.PROCESSING)

    def _start_fetch(self, key: RepositoryKey, previous: FetchState) -> None:
        """Mark `key` as fetching and launch its background task. Caller holds the key's lock."""
        self._states[key] = replace(previous, status=FetchStatus.FETCHING)
        task = asyncio.create_task(self._run_fetch(key), name=f"fetch:{key}")
        self._tasks[key] = task

        def _forget(finished: "asyncio.Task[None]") -> None:
            if self._tasks.get(key) is finished:
                del self._tasks[key]

        task.add_done_callback(_forget)

    async def _run_fetch(self, key: RepositoryKey) -> None:
        logger.info(f"Fetching releases for {key}")
        try:
            releases = await self.providers.fetch(key)
            entry = CacheEntry(
                releases=releases, cached_at=utc_now(), repo_path=key.cache_key
            )
            await self._write_entry(key, entry)
        except asyncio.CancelledError:
            async with self._locks.hold(key):
                self._states.pop(key, None)
            raise
        except CheckupError as e:
            await self._record_error(
                key, str(e), not_found=isinstance(e, UpstreamNotFoundError)
            )
        except Exception as e:
            logger.exception(f"Unexpected error while fetching releases for {key}")
            await self._record_error(key, f"Unexpected error: {e}")
        else:
            async with self._locks.hold(key):
                self._states.pop(key, None)
            logger.info(f"Cached {len(releases)} releases for {key}")

    async def _record_error(
        self, key: RepositoryKey, message: str, not_found: bool = False
    ) -> None:
        logger.error(f"Failed to fetch releases for {key}: {message}")
        async with self._locks.hold(key):
            self._states[key] = FetchState(
                status=FetchStatus.ERROR,
                message=message,
                occurred_at=utc_now(),
                not_found=not_found,
            )

    async def refresh(self, key: RepositoryKey) -> ResolveResult:
        """
        Fetch `key` now and wait for the outcome.

        Joins the fetch already in flight for `key` instead of starting a
        second one. Cancelling the caller does not cancel the fetch.

        Returns:
            ResolveResult: FRESH with the committed entry, or FAILED with the error.
        """
        async with self._locks.hold(key):
            task = self._tasks.get(key)
            if task is None:
                self._start_fetch(key, self.fetch_state(key))
                task = self._tasks[key]
        await asyncio.shield(task)

        state = self.fetch_state(key)
        if state.status is FetchStatus.ERROR:
            return ResolveResult(
                ResolveStatus.FAILED, message=state.message, not_found=state.not_found
            )
        entry = await self._read_entry(key)
        if entry is None:
            return ResolveResult(
                ResolveStatus.FAILED,
                message="Fetched releases could not be read back from the cache",
            )
        return ResolveResult(ResolveStatus.FRESH, entry)

    async def ensure_fresh(self, key: RepositoryKey) -> ResolveResult:
        """Return the cached entry if it is fresh, otherwise refresh and wait."""
        entry = await self._read_entry(key)
        if entry is not None and self.store.is_fresh(entry, self.ttl):
            return ResolveResult(ResolveStatus.FRESH, entry)
        return await self.refresh(key)

    async def warm(
        self,
        keys: Iterable[RepositoryKey],
        concurrency: int = DEFAULT_WARM_CONCURRENCY,
    ) -> Dict[RepositoryKey, ResolveResult]:
        """
        Make sure every key has a fresh cache entry, refreshing up to `concurrency` at once.

        Returns:
            dict: Outcome per key.
        """
        semaphore = asyncio.Semaphore(max(1, concurrency))
        unique_keys: List[RepositoryKey] = list(dict.fromkeys(keys))

        async def _warm_one(key: RepositoryKey) -> ResolveResult:
            async with semaphore:
                return await self.ensure_fresh(key)

        results = await asyncio.gather(*(_warm_one(key) for key in unique_keys))
        outcome = dict(zip(unique_keys, results))
        failed = sum(1 for result in results if result.status is ResolveStatus.FAILED)
        logger.info(f"Warmed {len(unique_keys) - failed}/{len(unique_keys)} repositories")
        return outcome

    async def drain(self) -> None:
        """Wait until no fetch is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def close(self) -> None:
        """Let in-flight fetches finish, then release the upstream client."""
        await self.drain()
        await self.providers.close()
