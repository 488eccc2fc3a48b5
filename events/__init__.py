# events/__init__.py
"""
League event feed: picks, trades, phase changes and trade-block edits,
newest first.
"""

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from db import get_engine
from services.events import get_events

events_bp = Blueprint("events", __name__)
logger = logging.getLogger("app")


@events_bp.get("/events")
def api_events():
    page = request.args.get("page", 1, type=int)
    page_size = request.args.get("page_size", 30, type=int)
    try:
        engine = get_engine()
        with engine.connect() as conn:
            result = get_events(conn, page=page, page_size=page_size)
        return jsonify(result), 200
    except SQLAlchemyError:
        logger.exception("event feed query failed")
        return jsonify(error="db_error", message="Database error"), 500
