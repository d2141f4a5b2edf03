"""
GRC Compliance Tracker
Blueprint registry and shared request helpers.
"""

from flask import g, request

from grc.core.context import TenantContext


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit: max items (default 200, capped at max_limit)
        offset: starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def current_context() -> TenantContext:
    """TenantContext resolved by the tenant middleware for this request."""
    ctx = getattr(g, "tenant_context", None)
    if ctx is None:
        raise RuntimeError("tenant context middleware did not run for this request")
    return ctx


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
