# trading/__init__.py
"""
Trading blueprint: propose, accept, deny and list trades.
All endpoints under /trades. The acting user comes from X-User-ID.
"""

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from api_utils import require_json
from auth import require_user
from db import get_engine
from services.trading import (
    accept_trade,
    create_trade_request,
    deny_trade,
    get_pending_trades_for_user,
    get_trade_by_id,
    get_trades,
)
from services.websocket_manager import ws_manager

trading_bp = Blueprint("trading", __name__)
logger = logging.getLogger("app")


def _id_list(value):
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError("Player ids must be a list")
    return [int(v) for v in value]


# -----------------------------------------------------------------------
# Proposals
# -----------------------------------------------------------------------

@trading_bp.post("/trades")
def api_create_trade():
    body, err = require_json("to_user_id")
    if err:
        return err
    try:
        from_player_ids = _id_list(body.get("from_player_ids"))
        to_player_ids = _id_list(body.get("to_player_ids"))
        to_user_id = int(body["to_user_id"])

        engine = get_engine()
        with engine.begin() as conn:
            user, err = require_user(conn)
            if err:
                return err
            result = create_trade_request(
                conn,
                from_user_id=user["id"],
                to_user_id=to_user_id,
                from_player_ids=from_player_ids,
                to_player_ids=to_player_ids,
                proposal_text=body.get("proposal_text"),
            )

        if not result["success"]:
            return jsonify(error="validation", message=result["error"]), 400

        ws_manager.broadcast_event(user, "trade-proposed", {
            "trade_id": result["trade_id"],
            "to_user_id": to_user_id,
        })
        return jsonify(result), 201
    except (TypeError, ValueError) as e:
        return jsonify(error="validation", message=str(e)), 400
    except SQLAlchemyError:
        logger.exception("trade proposal failed")
        return jsonify(error="db_error", message="Database error"), 500


@trading_bp.put("/trades/<int:trade_id>/accept")
def api_accept_trade(trade_id: int):
    body = request.get_json(silent=True) or {}
    try:
        engine = get_engine()
        with engine.begin() as conn:
            user, err = require_user(conn)
            if err:
                return err
            result = accept_trade(conn, trade_id, user["id"], body.get("response_text"))

        if not result["success"]:
            return jsonify(error="validation", message=result["error"]), 400

        ws_manager.broadcast_event(user, "trade-accepted", {"trade_id": trade_id})
        return jsonify(result), 200
    except SQLAlchemyError:
        logger.exception("trade accept failed")
        return jsonify(error="db_error", message="Database error"), 500


@trading_bp.put("/trades/<int:trade_id>/deny")
def api_deny_trade(trade_id: int):
    body = request.get_json(silent=True) or {}
    try:
        engine = get_engine()
        with engine.begin() as conn:
            user, err = require_user(conn)
            if err:
                return err
            result = deny_trade(conn, trade_id, user["id"], body.get("response_text"))

        if not result["success"]:
            return jsonify(error="validation", message=result["error"]), 400

        ws_manager.broadcast_event(user, "trade-denied", {
            "trade_id": trade_id,
            "status": result["status"],
        })
        return jsonify(result), 200
    except SQLAlchemyError:
        logger.exception("trade deny failed")
        return jsonify(error="db_error", message="Database error"), 500


# -----------------------------------------------------------------------
# Reads
# -----------------------------------------------------------------------

@trading_bp.get("/trades")
def api_list_trades():
    page = request.args.get("page", 1, type=int)
    page_size = request.args.get("page_size", 20, type=int)
    user_id = request.args.get("user_id", type=int)
    order = request.args.get("order", "desc")
    if order not in ("asc", "desc"):
        return jsonify(error="validation", message="order must be 'asc' or 'desc'"), 400
    try:
        engine = get_engine()
        with engine.connect() as conn:
            result = get_trades(conn, page=page, page_size=page_size,
                                user_id=user_id, order=order)
        return jsonify(result), 200
    except SQLAlchemyError:
        logger.exception("trade list failed")
        return jsonify(error="db_error", message="Database error"), 500


@trading_bp.get("/trades/pending")
def api_pending_trades():
    try:
        engine = get_engine()
        with engine.connect() as conn:
            user, err = require_user(conn)
            if err:
                return err
            trades = get_pending_trades_for_user(conn, user["id"])
        return jsonify(trades=trades), 200
    except SQLAlchemyError:
        logger.exception("pending trades query failed")
        return jsonify(error="db_error", message="Database error"), 500


@trading_bp.get("/trades/<int:trade_id>")
def api_get_trade(trade_id: int):
    try:
        engine = get_engine()
        with engine.connect() as conn:
            trade = get_trade_by_id(conn, trade_id)
        if trade is None:
            return jsonify(error="not_found", message=f"Trade {trade_id} not found"), 404
        return jsonify(trade), 200
    except SQLAlchemyError:
        logger.exception("trade query failed")
        return jsonify(error="db_error", message="Database error"), 500
