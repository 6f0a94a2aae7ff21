"""
Field Sync Service
Blueprint registry.
"""

from flask import g, request

from fieldsync.utils.errors import E, api_error


def paginate_query(query, default_limit=50, max_limit=200):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 50, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    if limit <= 0:
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def require_identity():
    """Return ``((user_id, organization_id), None)`` or ``(None, 401 response)``."""
    user_id = getattr(g, "user_id", None)
    organization_id = getattr(g, "organization_id", None)
    if not user_id or not organization_id:
        return None, api_error(E.UNAUTHENTICATED, "Authentication required")
    return (user_id, organization_id), None
