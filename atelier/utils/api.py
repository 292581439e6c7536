# --- atelier/utils/api.py ---
from datetime import datetime, timezone
from flask import jsonify


def _api_time():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

def api_ok(message, data=None):
    return {
        "status": True,
        "message": message,
        "data": {
            **(data or {}),
            "api_time": _api_time(),
        }
    }

def api_error(message, data=None):
    return {
        "status": False,
        "message": message,
        "data": {
            **(data or {}),
            "api_time": _api_time(),
        }
    }

# unified response helpers
def ok(message: str, data=None, status=200):
    resp = jsonify(api_ok(message, data))
    resp.status_code = status
    return resp

def err(message: str, status=400, data=None):
    resp = jsonify(api_error(message, data))
    resp.status_code = status
    return resp

def _to_int(v, default=None):
    try:
        return int(v)
    except (TypeError, ValueError):
        return default

def paginate(query, page, per_page, default_per_page=20):
    page = max(_to_int(page, 1), 1)
    per_page = min(max(_to_int(per_page, default_per_page), 1), 100)
    items = query.paginate(page=page, per_page=per_page, error_out=False)
    return {
        "meta": {
            "page": items.page,
            "pages": items.pages or 1,
            "per_page": per_page,
            "total": items.total,
        },
        "items": items.items,
    }
