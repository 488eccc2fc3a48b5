# auth.py
"""
Request identity helpers.

Authentication itself happens upstream; by the time a request reaches us the
acting user is named in the X-User-ID header. Admin endpoints additionally
accept an admin session, the X-Admin-Password header, or a user whose role
is "admin".

Both helpers follow the blueprint convention of returning (value, error)
where error is a ready-made (response, status) tuple.
"""

import hmac
import os

from flask import jsonify, request, session

from services.rosters import get_user


def current_user_id():
    raw = request.headers.get("X-User-ID")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def require_user(conn):
    user_id = current_user_id()
    if user_id is None:
        return None, (jsonify(error="unauthorized", message="X-User-ID header required"), 401)

    user = get_user(conn, user_id)
    if not user:
        return None, (jsonify(error="unauthorized", message=f"Unknown user {user_id}"), 401)
    return user, None


def _admin_password_ok() -> bool:
    needed = os.getenv("ADMIN_PASSWORD", "")
    given = request.headers.get("X-Admin-Password", "")
    return bool(needed) and hmac.compare_digest(needed, given)


def require_admin(conn):
    """
    Returns (user_or_None, error). The user is None when access was granted
    by session or password rather than by an admin account.
    """
    user = None
    user_id = current_user_id()
    if user_id is not None:
        user = get_user(conn, user_id)

    if session.get("admin") is True or _admin_password_ok():
        return user, None

    if user and user.get("role") == "admin":
        return user, None

    return None, (jsonify(error="unauthorized", message="Admin access required"), 401)
