# api_utils.py
from flask import jsonify, request


def require_json(*keys):
    """Extract required keys from JSON body, return a 400 if any are missing."""
    body = request.get_json(silent=True) or {}
    missing = [k for k in keys if k not in body]
    if missing:
        return None, (jsonify(error="missing_fields", fields=missing), 400)
    return body, None
