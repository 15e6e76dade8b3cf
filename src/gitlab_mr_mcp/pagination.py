"""Cursor-based pagination over GraphQL connections."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Hashable, Iterable
from dataclasses import dataclass
from operator import attrgetter
from typing import Any, Generic, TypeVar

from .models.base import GitLabModel

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PageInfo(GitLabModel):
    has_next_page: bool = False
    end_cursor: str | None = None

    @classmethod
    def from_graphql(cls, raw: dict[str, Any] | None) -> PageInfo:
        raw = raw or {}
        return cls(
            has_next_page=bool(raw.get("hasNextPage")),
            end_cursor=raw.get("endCursor"),
        )


@dataclass
class Page(Generic[T]):
    items: list[T]
    page_info: PageInfo


FetchPage = Callable[[str | None], Awaitable[Page[T]]]


def deduplicate_by_id(
    items: Iterable[T], key: Callable[[T], Hashable] = attrgetter("id")
) -> list[T]:
    """Drop repeated items, keeping each id at its first-seen position."""
    seen: set[Hashable] = set()
    unique: list[T] = []
    for item in items:
        item_id = key(item)
        if item_id in seen:
            continue
        seen.add(item_id)
        unique.append(item)
    return unique


async def fetch_all(
    fetch_page: FetchPage[T],
    *,
    key: Callable[[T], Hashable] = attrgetter("id"),
    max_pages: int | None = None,
) -> list[T]:
    """Walk a connection from the first page until the server reports no more.

    The walk also stops when a page returns a cursor already followed, or after
    ``max_pages`` pages when given. A failing page fetch propagates its error
    and nothing collected so far is returned.
    """
    page = await fetch_page(None)
    items = list(page.items)
    pages = 1
    cursor = page.page_info.end_cursor
    seen: set[str] = set()

    while page.page_info.has_next_page and cursor:
        if max_pages is not None and pages >= max_pages:
            logger.warning("Stopping pagination after %d pages", pages)
            break
        seen.add(cursor)
        page = await fetch_page(cursor)
        items.extend(page.items)
        pages += 1
        cursor = page.page_info.end_cursor
        if page.page_info.has_next_page and cursor in seen:
            logger.warning("Cursor %r repeated, treating connection as exhausted", cursor)
            break

    return deduplicate_by_id(items, key)
