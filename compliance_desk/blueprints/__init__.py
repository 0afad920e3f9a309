"""
Compliance Desk
Blueprint registry.
"""

from flask import request


def page_params(default_limit=200, max_limit=1000):
    """Read limit/offset query params.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)
    """
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return limit, offset


def paginate_items(items, default_limit=200, max_limit=1000):
    """Slice an already-filtered list. Returns (page, total)."""
    limit, offset = page_params(default_limit, max_limit)
    return items[offset:offset + limit], len(items)
