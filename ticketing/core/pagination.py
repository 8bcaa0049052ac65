"""
Page/size handling for list endpoints.

Page sizes are capped by API_MAX_PAGE_SIZE; totals travel back to clients in
the X-Total-Count / X-Page / X-Page-Size headers.
"""

from __future__ import annotations

import os
from typing import Any, Optional

from fastapi import Response


MAX_PAGE_SIZE_FALLBACK = 100


def max_page_size() -> int:
    try:
        configured = int(os.getenv("API_MAX_PAGE_SIZE", ""))
    except ValueError:
        return MAX_PAGE_SIZE_FALLBACK
    return configured if configured > 0 else MAX_PAGE_SIZE_FALLBACK


def clamp_page_size(page_size: int) -> int:
    return max(1, min(page_size, max_page_size()))


def paginate(query: Any, *, page: int, page_size: int) -> tuple[list, int]:
    """Return one page of `query` and the unpaged row count."""
    page_size = clamp_page_size(page_size)
    offset = (max(1, page) - 1) * page_size
    total = query.order_by(None).count()
    return query.offset(offset).limit(page_size).all(), total


def set_pagination_headers(
    response: Optional[Response],
    *,
    total: Optional[int],
    page: int,
    page_size: int,
) -> None:
    if response is None:
        return
    headers = {"X-Page": str(page), "X-Page-Size": str(page_size)}
    if total is not None:
        headers["X-Total-Count"] = str(total)
    response.headers.update(headers)
