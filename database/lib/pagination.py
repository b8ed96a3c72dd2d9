"""Pagination helpers shared by the list queries."""
import math
from typing import Dict, Any, Tuple

MAX_PAGE_SIZE = 100


def page_bounds(page: int, limit: int) -> Tuple[int, int, int]:
    """Clamp page and limit and compute the row offset.

    Returns:
        Tuple of (page, limit, offset)
    """
    page = max(1, int(page))
    limit = min(MAX_PAGE_SIZE, max(1, int(limit)))
    return page, limit, (page - 1) * limit


def page_info(page: int, limit: int, total_count: int) -> Dict[str, Any]:
    """Build pagination metadata for a list response."""
    total_pages = math.ceil(total_count / limit) if total_count else 0
    return {
        'page': page,
        'limit': limit,
        'total_count': total_count,
        'total_pages': total_pages,
        'has_next': page < total_pages,
        'has_prev': page > 1
    }
