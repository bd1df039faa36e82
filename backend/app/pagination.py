# Overview: Shared page/per_page handling for list endpoints.

from __future__ import annotations

import math

from flask import current_app, request


def page_args() -> tuple[int, int]:
    """
    Read page/per_page from the query string.

    page is 1-indexed; per_page defaults to DEFAULT_PER_PAGE and is capped
    at MAX_PER_PAGE.
    """
    default = current_app.config.get("DEFAULT_PER_PAGE", 15)
    cap = current_app.config.get("MAX_PER_PAGE", 100)

    page = request.args.get("page", 1, type=int) or 1
    per_page = request.args.get("per_page", default, type=int) or default

    return max(page, 1), min(max(per_page, 1), cap)


def paginate(query, serializer=None) -> dict:
    """
    Apply offset/limit to a SQLAlchemy query and shape the list envelope.

    Returns {"data", "current_page", "per_page", "total", "total_pages"}.
    """
    page, per_page = page_args()
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * per_page).limit(per_page).all()

    serializer = serializer or (lambda row: row.to_dict())
    return {
        "data": [serializer(row) for row in rows],
        "current_page": page,
        "per_page": per_page,
        "total": total,
        "total_pages": math.ceil(total / per_page) if total else 0,
    }
