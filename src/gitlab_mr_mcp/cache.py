"""In-memory LRU + TTL cache for normalized merge request views."""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from cachetools import TTLCache

from .models.base import GitLabModel
from .models.common import Diff
from .models.merge_requests import MergeRequestView

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 100
DEFAULT_TTL = 30.0
DEFAULT_DIFF_TTL = 120.0


@dataclass(frozen=True)
class Fingerprint:
    """Identifies one merge request: project full path plus MR iid."""

    project_path: str
    mr_iid: str

    @property
    def key(self) -> str:
        return f"project:{self.project_path}:mr:{self.mr_iid}"

    def __str__(self) -> str:
        return f"{self.project_path}!{self.mr_iid}"


class CacheStats(GitLabModel):
    main_size: int
    diff_size: int


class ViewCache:
    """Two independent cache spaces keyed by :class:`Fingerprint`.

    Views expire after ``ttl`` seconds and diffs after ``diff_ttl`` seconds.
    Expiry is lazy: an expired entry reads as absent whether or not it has
    been physically removed. When a space is full the least recently used
    entry is evicted first. Reads return copies, so callers never share
    cached objects.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        ttl: float = DEFAULT_TTL,
        diff_ttl: float = DEFAULT_DIFF_TTL,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_size = max_size
        self.ttl = ttl
        self.diff_ttl = diff_ttl
        self._views: TTLCache[str, MergeRequestView] = TTLCache(
            maxsize=max_size, ttl=ttl, timer=timer
        )
        self._diffs: TTLCache[str, list[Diff]] = TTLCache(
            maxsize=max_size, ttl=diff_ttl, timer=timer
        )

    def get(self, fingerprint: Fingerprint) -> MergeRequestView | None:
        view = self._views.get(fingerprint.key)
        if view is None:
            logger.debug("Cache miss for %s", fingerprint)
            return None
        logger.debug("Cache hit for %s", fingerprint)
        return view.model_copy(deep=True)

    def set(self, fingerprint: Fingerprint, view: MergeRequestView) -> None:
        # Re-inserting resets both the TTL clock and recency.
        self._views.pop(fingerprint.key, None)
        self._views[fingerprint.key] = view.model_copy(deep=True)

    def get_diffs(self, fingerprint: Fingerprint) -> list[Diff] | None:
        diffs = self._diffs.get(fingerprint.key)
        if diffs is None:
            logger.debug("Diff cache miss for %s", fingerprint)
            return None
        logger.debug("Diff cache hit for %s", fingerprint)
        return copy.deepcopy(diffs)

    def set_diffs(self, fingerprint: Fingerprint, diffs: list[Diff]) -> None:
        self._diffs.pop(fingerprint.key, None)
        self._diffs[fingerprint.key] = copy.deepcopy(diffs)

    def invalidate(self, fingerprint: Fingerprint) -> None:
        self._views.pop(fingerprint.key, None)
        self._diffs.pop(fingerprint.key, None)

    def clear(self) -> None:
        self._views.clear()
        self._diffs.clear()

    def stats(self) -> CacheStats:
        self._views.expire()
        self._diffs.expire()
        return CacheStats(main_size=len(self._views), diff_size=len(self._diffs))


_default_cache: ViewCache | None = None


def get_default_cache(**options: Any) -> ViewCache:
    """Return the process-wide cache, building it on first use.

    Options only apply to the first call. Tests and embedders that need
    isolation construct their own :class:`ViewCache` instead.
    """
    global _default_cache
    if _default_cache is None:
        _default_cache = ViewCache(**options)
    return _default_cache
