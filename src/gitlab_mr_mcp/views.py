"""Merge request view orchestration: cache, client and normalizer combined."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from .cache import CacheStats, Fingerprint, ViewCache, get_default_cache
from .client import GitLabClient, Sleep
from .exceptions import GitLabError, GitLabUnknownError
from .models.approvals import ApprovalInfo
from .models.common import Diff
from .models.merge_requests import Commit, Discussion, MergeRequestSummary, MergeRequestView
from .models.pipelines import Job, Pipeline
from .normalize import (
    merge_request_node,
    normalize_commit,
    normalize_discussion,
    normalize_merge_request,
    normalize_rest_approvals,
    normalize_rest_diff,
    normalize_rest_job,
    normalize_rest_merge_request,
    normalize_rest_pipeline,
)
from .pagination import Page, PageInfo, fetch_all

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 50
DEFAULT_POLL_INTERVAL = 25.0


async def _classified(awaitable: Awaitable[T], context: str) -> T:
    """Await *awaitable*, turning anything that is not a GitLabError into UNKNOWN_ERROR."""
    try:
        return await awaitable
    except GitLabError:
        raise
    except Exception as e:
        raise GitLabUnknownError(f"{context}: {e}") from e


class MergeRequestService:
    """Entry point for reading merge requests.

    Concurrent calls for the same fingerprint are not coalesced: two cache
    misses both fetch, and whichever finishes last is the one left cached.
    """

    def __init__(self, client: GitLabClient, cache: ViewCache | None = None) -> None:
        self.client = client
        self.cache = cache if cache is not None else get_default_cache()

    # ── Views ─────────────────────────────────────────────────────

    async def get_view(
        self,
        fingerprint: Fingerprint,
        *,
        force_refresh: bool = False,
        use_cache: bool = True,
        commits_first: int = DEFAULT_PAGE_SIZE,
        discussions_first: int = DEFAULT_PAGE_SIZE,
        include_diffs: bool = False,
        include_approvals: bool = False,
    ) -> MergeRequestView:
        """Return the current normalized view of a merge request.

        A cached view is served without refetching the merge request unless
        ``force_refresh`` is set or ``use_cache`` is off. Fresh views are
        written back to the cache. Diffs and approvals are layered on from REST
        when requested, on cache hits too (diffs come from the diff cache when
        present); failures there are logged and leave the defaults in place.
        """
        if use_cache and not force_refresh:
            cached = self.cache.get(fingerprint)
            if cached is not None:
                await self._enrich(fingerprint, cached, include_diffs, include_approvals, True)
                return cached

        view = await _classified(
            self._fetch_view(fingerprint, commits_first, discussions_first),
            "Failed to fetch merge request view",
        )
        await self._enrich(fingerprint, view, include_diffs, include_approvals, use_cache)

        if use_cache:
            self.cache.set(fingerprint, view)
        return view

    async def _fetch_view(
        self, fingerprint: Fingerprint, commits_first: int, discussions_first: int
    ) -> MergeRequestView:
        data = await self.client.get_merge_request(
            fingerprint.project_path,
            fingerprint.mr_iid,
            commits_first=commits_first,
            discussions_first=discussions_first,
        )
        return normalize_merge_request(data)

    async def _enrich(
        self,
        fingerprint: Fingerprint,
        view: MergeRequestView,
        include_diffs: bool,
        include_approvals: bool,
        use_cache: bool,
    ) -> None:
        if include_diffs:
            try:
                view.diffs = await self.get_diffs(fingerprint, use_cache=use_cache)
            except GitLabError as e:
                logger.warning("Could not load diffs for %s: %s", fingerprint, e.message)
        if include_approvals:
            try:
                view.approvals = await self.get_approvals(fingerprint)
            except GitLabError as e:
                logger.warning("Could not load approvals for %s: %s", fingerprint, e.message)

    # ── Paginated collections ─────────────────────────────────────

    async def fetch_page_of_commits(
        self, fingerprint: Fingerprint, cursor: str | None, first: int = DEFAULT_PAGE_SIZE
    ) -> Page[Commit]:
        data = await self.client.get_merge_request(
            fingerprint.project_path,
            fingerprint.mr_iid,
            commits_first=first,
            commits_after=cursor,
        )
        commits = merge_request_node(data).get("commits") or {}
        return Page(
            items=[normalize_commit(node) for node in commits.get("nodes") or []],
            page_info=PageInfo.from_graphql(commits.get("pageInfo")),
        )

    async def fetch_page_of_discussions(
        self, fingerprint: Fingerprint, cursor: str | None, first: int = DEFAULT_PAGE_SIZE
    ) -> Page[Discussion]:
        data = await self.client.get_merge_request(
            fingerprint.project_path,
            fingerprint.mr_iid,
            discussions_first=first,
            discussions_after=cursor,
        )
        discussions = merge_request_node(data).get("discussions") or {}
        return Page(
            items=[normalize_discussion(node) for node in discussions.get("nodes") or []],
            page_info=PageInfo.from_graphql(discussions.get("pageInfo")),
        )

    async def fetch_all_commits(
        self,
        fingerprint: Fingerprint,
        first: int = DEFAULT_PAGE_SIZE,
        max_pages: int | None = None,
    ) -> list[Commit]:
        """Every commit of the merge request, each at most once, in server order."""

        async def fetch_page(cursor: str | None) -> Page[Commit]:
            return await self.fetch_page_of_commits(fingerprint, cursor, first)

        return await _classified(
            fetch_all(fetch_page, max_pages=max_pages), "Failed to fetch commits"
        )

    async def fetch_all_discussions(
        self,
        fingerprint: Fingerprint,
        first: int = DEFAULT_PAGE_SIZE,
        max_pages: int | None = None,
    ) -> list[Discussion]:
        """Every discussion thread of the merge request, each at most once."""

        async def fetch_page(cursor: str | None) -> Page[Discussion]:
            return await self.fetch_page_of_discussions(fingerprint, cursor, first)

        return await _classified(
            fetch_all(fetch_page, max_pages=max_pages), "Failed to fetch discussions"
        )

    # ── REST-backed data ──────────────────────────────────────────

    async def get_diffs(self, fingerprint: Fingerprint, *, use_cache: bool = True) -> list[Diff]:
        if use_cache:
            cached = self.cache.get_diffs(fingerprint)
            if cached is not None:
                return cached

        async def fetch() -> list[Diff]:
            data = await self.client.get_merge_request_changes(
                fingerprint.project_path, fingerprint.mr_iid
            )
            return [normalize_rest_diff(change) for change in (data or {}).get("changes") or []]

        diffs = await _classified(fetch(), "Failed to fetch merge request diffs")
        if use_cache:
            self.cache.set_diffs(fingerprint, diffs)
        return diffs

    async def get_approvals(self, fingerprint: Fingerprint) -> ApprovalInfo:
        async def fetch() -> ApprovalInfo:
            data = await self.client.get_merge_request_approvals(
                fingerprint.project_path, fingerprint.mr_iid
            )
            return normalize_rest_approvals(data or {})

        return await _classified(fetch(), "Failed to fetch merge request approvals")

    async def list_merge_requests_by_user(
        self,
        username: str,
        project_path: str | None = None,
        state: str | None = None,
    ) -> list[MergeRequestSummary]:
        """Merge requests authored by *username*, optionally limited to one project and state."""

        async def fetch() -> list[MergeRequestSummary]:
            data = await self.client.list_merge_requests(
                author_username=username, project_id=project_path, state=state
            )
            return [normalize_rest_merge_request(mr) for mr in data]

        return await _classified(fetch(), "Failed to list merge requests")

    async def get_pipelines(self, fingerprint: Fingerprint) -> list[Pipeline]:
        async def fetch() -> list[Pipeline]:
            data = await self.client.list_merge_request_pipelines(
                fingerprint.project_path, fingerprint.mr_iid
            )
            return [normalize_rest_pipeline(p) for p in data]

        return await _classified(fetch(), "Failed to fetch merge request pipelines")

    async def get_pipeline(self, project_path: str, pipeline_id: str | int) -> Pipeline:
        async def fetch() -> Pipeline:
            return normalize_rest_pipeline(
                await self.client.get_pipeline(project_path, pipeline_id)
            )

        return await _classified(fetch(), "Failed to fetch pipeline")

    async def get_pipeline_jobs(
        self, project_path: str, pipeline_id: str | int, scope: str | None = None
    ) -> list[Job]:
        async def fetch() -> list[Job]:
            data = await self.client.list_pipeline_jobs(project_path, pipeline_id, scope)
            return [normalize_rest_job(job) for job in data]

        return await _classified(fetch(), "Failed to fetch pipeline jobs")

    # ── Cache introspection ───────────────────────────────────────

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def invalidate(self, fingerprint: Fingerprint) -> None:
        self.cache.invalidate(fingerprint)

    def clear_cache(self) -> None:
        self.cache.clear()


class ViewPoller:
    """Re-fetch a merge request on a fixed cadence and report changes.

    The first successful fetch only records ``updated_at``; later fetches call
    ``on_update`` when it differs. Errors, including exceptions raised by
    ``on_update``, go to ``on_error`` and polling continues. ``stop()`` prevents further
    ticks but lets a fetch that is already running finish.
    """

    def __init__(
        self,
        service: MergeRequestService,
        fingerprint: Fingerprint,
        *,
        interval: float = DEFAULT_POLL_INTERVAL,
        on_update: Callable[[MergeRequestView], Any] | None = None,
        on_error: Callable[[GitLabError], Any] | None = None,
        sleep: Sleep = asyncio.sleep,
        **view_options: Any,
    ) -> None:
        self.service = service
        self.fingerprint = fingerprint
        self.interval = interval
        self.on_update = on_update
        self.on_error = on_error
        self._sleep = sleep
        self._view_options = view_options
        self._last_updated_at: str | None = None
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def poll_once(self) -> bool:
        """Fetch once. Returns True when ``updated_at`` changed since the last fetch."""
        try:
            view = await self.service.get_view(
                self.fingerprint, force_refresh=True, **self._view_options
            )
        except GitLabError as e:
            self._report(e)
            return False

        changed = self._last_updated_at is not None and view.updated_at != self._last_updated_at
        self._last_updated_at = view.updated_at
        if changed and self.on_update:
            try:
                self.on_update(view)
            except Exception as e:
                error = GitLabUnknownError(f"on_update callback failed: {e}")
                error.__cause__ = e
                self._report(error)
        return changed

    def _report(self, error: GitLabError) -> None:
        logger.warning("Polling %s failed: %s", self.fingerprint, error.message)
        if self.on_error:
            self.on_error(error)

    async def run(self) -> None:
        """Poll until :meth:`stop` is called."""
        self._running = True
        while self._running:
            await self.poll_once()
            if not self._running:
                break
            await self._sleep(self.interval)

    def start(self) -> asyncio.Task[None]:
        """Start polling, or resume a loop that was stopped mid-fetch."""
        self._running = True
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    def stop(self) -> None:
        self._running = False
