"""Query-string paging for the list endpoints.

``?page=2&page_size=25&sort=-gpa`` becomes a :class:`PageRequest`. Once the
matching document count is known, :meth:`PageRequest.window` clamps the page
and produces the skip/limit pair and the response envelope.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Tuple

from pymongo import ASCENDING, DESCENDING


class PagingParamError(ValueError):
    """Raised when pagination or sort query parameters are invalid."""


@dataclass(frozen=True)
class PageWindow:
    page: int
    page_size: int
    skip: int
    total: int

    @property
    def page_count(self) -> int:
        return -(-self.total // self.page_size) if self.total else 0

    def envelope(self, items: List[Any]) -> Dict[str, Any]:
        return {
            "items": items,
            "page": self.page,
            "page_size": self.page_size,
            "total": self.total,
            "has_next": self.page < self.page_count,
            "has_prev": self.page > 1,
        }


@dataclass(frozen=True)
class PageRequest:
    page: int
    page_size: int
    sort: Tuple[str, int]
    sort_key: str

    def window(self, total: int) -> PageWindow:
        """Clamp the requested page into ``1..page_count`` for ``total`` items."""

        if not total:
            return PageWindow(page=1, page_size=self.page_size, skip=0, total=0)
        last_page = -(-total // self.page_size)
        page = min(self.page, last_page)
        return PageWindow(
            page=page,
            page_size=self.page_size,
            skip=(page - 1) * self.page_size,
            total=total,
        )


def _bounded_int(raw: str | None, name: str, default: int, low: int, high: int | None) -> int:
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise PagingParamError(f"{name} must be an integer.") from None
    if value < low:
        raise PagingParamError(f"{name} must be at least {low}.")
    if high is not None and value > high:
        raise PagingParamError(f"{name} must be at most {high}.")
    return value


def parse_page_request(
    args: Mapping[str, str],
    *,
    sort_fields: Mapping[str, str],
    default_sort: str,
    default_page_size: int = 20,
    max_page_size: int = 100,
) -> PageRequest:
    """Read ``page``, ``page_size`` and ``sort`` from request args.

    ``sort_fields`` maps public sort keys to document fields; a leading ``-``
    on the key sorts descending.
    """

    sort_key = args.get("sort") or default_sort
    descending = sort_key.startswith("-")
    field_key = sort_key.lstrip("-")
    if field_key not in sort_fields:
        options = ", ".join(sorted(sort_fields))
        raise PagingParamError(f"sort must be one of: {options} (prefix '-' to reverse).")

    return PageRequest(
        page=_bounded_int(args.get("page"), "page", 1, 1, None),
        page_size=_bounded_int(
            args.get("page_size"), "page_size", default_page_size, 1, max_page_size
        ),
        sort=(sort_fields[field_key], DESCENDING if descending else ASCENDING),
        sort_key=("-" if descending else "") + field_key,
    )


__all__ = ["PagingParamError", "PageRequest", "PageWindow", "parse_page_request"]
