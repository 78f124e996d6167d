"""
KPI Portal
Blueprint registry and shared request helpers.
"""

import math

from flask import request

from kpi_portal.core.exceptions import ValidationError


def paginate_list(items, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to an in-memory list.

    Query params:
        limit  — max items (default 200, capped at max_limit; negative means default)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = len(items)
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    if limit < 0:
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return list(items[offset:offset + limit]), total


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def pick_fields(data: dict, mapping: dict) -> dict:
    """Translate present camelCase body keys to service keyword names."""
    return {attr: data[key] for key, attr in mapping.items() if key in data}


def number_field(data: dict, key: str, default=None, *, required=False):
    """Read a numeric body field. An explicit JSON null counts as missing."""
    value = data.get(key, default)
    if value is None:
        if required:
            raise ValidationError(f"{key} is required", details={key: "required"})
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        try:
            value = float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{key} must be a number", details={key: "invalid"}) from None
    if not math.isfinite(value):
        raise ValidationError(f"{key} must be a finite number", details={key: "invalid"})
    return int(value) if float(value).is_integer() else value
