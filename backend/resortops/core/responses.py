"""List envelopes shared by the stock and finance endpoints.

    {"items": [...], "total": <int>}
    {"items": [...], "total": <int>, "skip": <int>, "limit": <int>, "has_more": <bool>}

Single rows are returned bare.
"""

from typing import Any, Callable, List

from sqlalchemy.orm import Query


def list_response(items: List[Any]) -> dict:
    return {"items": items, "total": len(items)}


def page_response(
    query: Query,
    skip: int,
    limit: int,
    serialize: Callable[[Any], Any],
) -> dict:
    """Count *query*, fetch one page of it and serialize each row.

    The query must already carry its ORDER BY; the count ignores it.
    """
    total = query.order_by(None).count()
    rows = query.offset(skip).limit(limit).all()
    return {
        "items": [serialize(row) for row in rows],
        "total": total,
        "skip": skip,
        "limit": limit,
        "has_more": skip + len(rows) < total,
    }
