"""Pagination helpers shared by list endpoints."""

import math

from cams.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE


def normalize_paging(page=None, page_size=None):
    """Clamp page to >= 1 and page_size to 1..MAX_PAGE_SIZE."""
    try:
        page = int(page) if page is not None else 1
    except (TypeError, ValueError):
        page = 1
    try:
        page_size = int(page_size) if page_size is not None else DEFAULT_PAGE_SIZE
    except (TypeError, ValueError):
        page_size = DEFAULT_PAGE_SIZE
    return max(page, 1), min(max(page_size, 1), MAX_PAGE_SIZE)


def paged_result(items, total_count, page, page_size):
    return {
        "items": items,
        "total_count": total_count,
        "page": page,
        "page_size": page_size,
        "total_pages": math.ceil(total_count / page_size) if page_size else 0,
    }
