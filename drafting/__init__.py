# drafting/__init__.py
"""
Draft blueprint: board, picks, pre-drafts and stars.
All endpoints under /draft. The acting user comes from X-User-ID.
"""

import logging

from flask import Blueprint, jsonify
from sqlalchemy.exc import SQLAlchemyError

from api_utils import require_json
from auth import current_user_id, require_user
from db import get_engine
from services.draft import (
    clear_pre_draft,
    draft_player,
    get_draft_board,
    set_player_starred,
    set_pre_draft,
)
from services.websocket_manager import ws_manager

drafting_bp = Blueprint("drafting", __name__)
logger = logging.getLogger("app")


@drafting_bp.get("/draft")
def api_draft_board():
    try:
        engine = get_engine()
        with engine.connect() as conn:
            board = get_draft_board(conn, current_user_id())
        return jsonify(board), 200
    except SQLAlchemyError:
        logger.exception("draft board query failed")
        return jsonify(error="db_error", message="Database error"), 500


@drafting_bp.post("/draft/pick")
def api_draft_pick():
    body, err = require_json("player_id")
    if err:
        return err
    try:
        engine = get_engine()
        with engine.begin() as conn:
            user, err = require_user(conn)
            if err:
                return err
            result = draft_player(conn, user["id"], int(body["player_id"]))

        if not result["success"]:
            return jsonify(error="validation", message=result["error"]), 400

        ws_manager.broadcast_event(user, "draft-update", {
            "player_ids": [p["player_id"] for p in result["picks"]],
            "current_drafting_user_id": result["current_drafting_user_id"],
        })
        return jsonify(result), 200
    except (TypeError, ValueError) as e:
        return jsonify(error="validation", message=str(e)), 400
    except SQLAlchemyError:
        logger.exception("draft pick failed")
        return jsonify(error="db_error", message="Database error"), 500


@drafting_bp.put("/draft/pre-draft")
def api_set_pre_draft():
    body, err = require_json("player_id")
    if err:
        return err
    try:
        engine = get_engine()
        with engine.begin() as conn:
            user, err = require_user(conn)
            if err:
                return err
            result = set_pre_draft(conn, user["id"], int(body["player_id"]))

        if not result["success"]:
            return jsonify(error="validation", message=result["error"]), 400

        ws_manager.broadcast_event(user, "pre-draft-update", {
            "player_id": result["pre_draft_player_id"],
        })
        return jsonify(result), 200
    except (TypeError, ValueError) as e:
        return jsonify(error="validation", message=str(e)), 400
    except SQLAlchemyError:
        logger.exception("set pre-draft failed")
        return jsonify(error="db_error", message="Database error"), 500


@drafting_bp.delete("/draft/pre-draft")
def api_clear_pre_draft():
    try:
        engine = get_engine()
        with engine.begin() as conn:
            user, err = require_user(conn)
            if err:
                return err
            result = clear_pre_draft(conn, user["id"])

        if not result["success"]:
            return jsonify(error="validation", message=result["error"]), 400

        ws_manager.broadcast_event(user, "pre-draft-update", {"player_id": None})
        return jsonify(result), 200
    except SQLAlchemyError:
        logger.exception("clear pre-draft failed")
        return jsonify(error="db_error", message="Database error"), 500


@drafting_bp.post("/draft/star")
def api_star_player():
    body, err = require_json("player_id")
    if err:
        return err
    try:
        engine = get_engine()
        with engine.begin() as conn:
            user, err = require_user(conn)
            if err:
                return err
            result = set_player_starred(conn, user["id"], int(body["player_id"]))

        if not result["success"]:
            return jsonify(error="validation", message=result["error"]), 400

        ws_manager.broadcast_event(user, "player-star-update", {
            "player_id": result["player_id"],
            "is_starred": result["is_starred"],
        })
        return jsonify(result), 200
    except (TypeError, ValueError) as e:
        return jsonify(error="validation", message=str(e)), 400
    except SQLAlchemyError:
        logger.exception("star toggle failed")
        return jsonify(error="db_error", message="Database error"), 500
