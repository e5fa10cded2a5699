"""Offset-encoded cursors for upstream list calls with unreliable paging.

Several Azure DevOps list endpoints accept ``$top`` but never hand back a
usable continuation token. We over-fetch by exactly one record past the page
to learn whether another page exists, and encode the next offset as the
cursor. Offsets are only meaningful while the upstream ordering is stable
between requests; a collection mutated between pages can skip or repeat a row.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Generic, Sequence, TypeVar


T = TypeVar("T")

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


@dataclass(frozen=True)
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    continuation_token: str | None = None
    has_more: bool = False


def decode_token(token: str | None) -> int:
    if token is None or str(token).strip() == "":
        return 0
    raw = str(token).strip()
    if not raw.isdigit():
        raise ValueError(f"Invalid continuation token: {token!r}")
    return int(raw)


def encode_token(offset: int) -> str:
    return str(offset)


def clamp_limit(limit: int | None, default_limit: int = DEFAULT_PAGE_SIZE, maximum: int = MAX_PAGE_SIZE) -> int:
    if limit is None:
        return default_limit
    return max(1, min(int(limit), maximum))


def paginate_overfetch(
    fetch: Callable[[int], Sequence[T]],
    limit: int | None = None,
    continuation_token: str | None = None,
    default_limit: int = DEFAULT_PAGE_SIZE,
) -> Page[T]:
    """Fetch ``offset + limit + 1`` rows in one call and slice out one page."""

    offset = decode_token(continuation_token)
    page_size = clamp_limit(limit, default_limit)
    fetched = list(fetch(offset + page_size + 1))
    return _page_from(fetched, offset, page_size)


def paginate_slice(
    items: Sequence[T],
    limit: int | None = None,
    continuation_token: str | None = None,
    default_limit: int = DEFAULT_PAGE_SIZE,
    maximum: int = MAX_PAGE_SIZE,
) -> Page[T]:
    """Same cursor contract over a sequence that is already fully materialized."""

    offset = decode_token(continuation_token)
    page_size = clamp_limit(limit, default_limit, maximum=max(maximum, default_limit))
    return _page_from(list(items), offset, page_size)


def _page_from(rows: list[T], offset: int, page_size: int) -> Page[T]:
    end = offset + page_size
    has_more = len(rows) > end
    return Page(
        items=rows[offset:end],
        continuation_token=encode_token(end) if has_more else None,
        has_more=has_more,
    )
