# admin/__init__.py
"""
League admin blueprint: season phase, drafting order, draft timer and
roster wipe. All endpoints under /admin.

Access: an admin session (POST /admin/login), the X-Admin-Password header,
or an X-User-ID naming a user with role "admin".
"""

import logging
import os

from flask import Blueprint, jsonify, request, session
from sqlalchemy.exc import SQLAlchemyError

from api_utils import require_json
from auth import require_admin
from db import get_engine
from services.rosters import wipe_rosters
from services.season import (
    adjust_drafting_order,
    create_draft_entries_for_all_users,
    get_draft_timer,
    get_drafting_order,
    get_season_state,
    pause_draft_timer,
    random_assign_draft_order,
    reset_draft_timer,
    resume_draft_timer,
    set_current_drafting_user,
    set_draft_timer_duration,
    set_season_state,
    start_draft_timer,
)
from services.websocket_manager import ws_manager

admin_bp = Blueprint("admin", __name__)
logger = logging.getLogger("app")

_TIMER_ACTIONS = {
    "start": start_draft_timer,
    "pause": pause_draft_timer,
    "resume": resume_draft_timer,
    "reset": reset_draft_timer,
}


def _run_admin(op, event=None, payload_fn=None):
    """
    Run `op(conn)` in one transaction behind the admin check, then broadcast
    `event` if the operation succeeded.
    """
    try:
        engine = get_engine()
        with engine.begin() as conn:
            user, err = require_admin(conn)
            if err:
                return err
            result = op(conn, user)

        if not result.get("success"):
            return jsonify(error="validation", message=result.get("error")), 400

        if event:
            ws_manager.broadcast_event(user, event, payload_fn(result) if payload_fn else {})
        return jsonify(result), 200
    except (TypeError, ValueError) as e:
        return jsonify(error="validation", message=str(e)), 400
    except SQLAlchemyError:
        logger.exception("admin operation failed")
        return jsonify(error="db_error", message="Database error"), 500


# -----------------------------------------------------------------------
# Session
# -----------------------------------------------------------------------

@admin_bp.post("/admin/login")
def admin_login():
    data = request.get_json(silent=True) or {}
    # If ADMIN_PASSWORD is empty: allow login with no password (local use)
    needed = os.getenv("ADMIN_PASSWORD", "")
    if needed and data.get("password") != needed:
        return jsonify(ok=False, error="bad_password"), 401
    session["admin"] = True
    return jsonify(ok=True)


@admin_bp.post("/admin/logout")
def admin_logout():
    session.clear()
    return jsonify(ok=True)


# -----------------------------------------------------------------------
# Season phase
# -----------------------------------------------------------------------

@admin_bp.get("/admin/season/state")
def api_get_season_state():
    try:
        engine = get_engine()
        with engine.connect() as conn:
            _, err = require_admin(conn)
            if err:
                return err
            current = get_season_state(conn)
        if current is None:
            return jsonify(error="not_found", message="No active season found"), 404
        return jsonify(current), 200
    except SQLAlchemyError:
        logger.exception("season state query failed")
        return jsonify(error="db_error", message="Database error"), 500


@admin_bp.put("/admin/season/state")
def api_set_season_state():
    body, err = require_json("state")
    if err:
        return err
    return _run_admin(
        lambda conn, user: set_season_state(
            conn, body["state"], acting_user_id=user["id"] if user else None
        ),
        event="season-state-update",
        payload_fn=lambda r: {
            "from_state": r["from_state"],
            "state": r["state"],
            "current_drafting_user_id": r["current_drafting_user_id"],
        },
    )


# -----------------------------------------------------------------------
# Drafting order
# -----------------------------------------------------------------------

@admin_bp.get("/admin/draft/order")
def api_get_drafting_order():
    try:
        engine = get_engine()
        with engine.connect() as conn:
            _, err = require_admin(conn)
            if err:
                return err
            order = get_drafting_order(conn)
        return jsonify(order=order), 200
    except SQLAlchemyError:
        logger.exception("drafting order query failed")
        return jsonify(error="db_error", message="Database error"), 500


@admin_bp.post("/admin/draft/order/adjust")
def api_adjust_drafting_order():
    body, err = require_json("user_id", "direction")
    if err:
        return err
    return _run_admin(
        lambda conn, user: adjust_drafting_order(conn, int(body["user_id"]), body["direction"]),
        event="draft-order-update",
        payload_fn=lambda r: {"order": r["order"]},
    )


@admin_bp.post("/admin/draft/order/randomize")
def api_randomize_drafting_order():
    return _run_admin(
        lambda conn, user: random_assign_draft_order(conn),
        event="draft-order-update",
        payload_fn=lambda r: {"order": r["order"]},
    )


@admin_bp.post("/admin/draft/order/sync")
def api_sync_drafting_order():
    return _run_admin(
        lambda conn, user: create_draft_entries_for_all_users(conn),
        event="draft-order-update",
        payload_fn=lambda r: {"added": r["added"]},
    )


@admin_bp.put("/admin/draft/current-user")
def api_set_current_drafting_user():
    body, err = require_json("user_id")
    if err:
        return err
    return _run_admin(
        lambda conn, user: set_current_drafting_user(conn, int(body["user_id"])),
        event="draft-update",
        payload_fn=lambda r: {"current_drafting_user_id": r["current_drafting_user_id"]},
    )


# -----------------------------------------------------------------------
# Draft timer
# -----------------------------------------------------------------------

@admin_bp.get("/admin/draft/timer")
def api_get_draft_timer():
    try:
        engine = get_engine()
        with engine.connect() as conn:
            _, err = require_admin(conn)
            if err:
                return err
            timer = get_draft_timer(conn)
        if timer is None:
            return jsonify(error="not_found", message="No active season found"), 404
        return jsonify(timer), 200
    except SQLAlchemyError:
        logger.exception("draft timer query failed")
        return jsonify(error="db_error", message="Database error"), 500


@admin_bp.post("/admin/draft/timer/<action>")
def api_draft_timer_action(action: str):
    fn = _TIMER_ACTIONS.get(action)
    if fn is None:
        return jsonify(error="not_found", message=f"Unknown timer action '{action}'"), 404
    return _run_admin(
        lambda conn, user: fn(conn),
        event="draft-timer-update",
        payload_fn=lambda r: {"action": action, "timer": r["timer"]},
    )


@admin_bp.put("/admin/draft/timer/duration")
def api_set_draft_timer_duration():
    body, err = require_json("seconds")
    if err:
        return err
    return _run_admin(
        lambda conn, user: set_draft_timer_duration(conn, int(body["seconds"])),
        event="draft-timer-update",
        payload_fn=lambda r: {"action": "duration", "timer": r["timer"]},
    )


# -----------------------------------------------------------------------
# Rosters
# -----------------------------------------------------------------------

def _wipe(conn, user):
    wipe_rosters(conn)
    return {"success": True}


@admin_bp.post("/admin/rosters/wipe")
def api_wipe_rosters():
    return _run_admin(_wipe, event="draft-update")
