# teams/__init__.py
from flask import Blueprint, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

import logging

from auth import require_user
from db import get_engine
from services.events import create_trade_preferences_event
from services.rosters import (
    get_team,
    get_team_with_players,
    get_teams,
    update_team_lineup,
    update_trade_preferences,
)
from services.season import get_season_state
from services.errors import LeagueIntegrityError
from services.websocket_manager import ws_manager

teams_bp = Blueprint("teams", __name__)
logger = logging.getLogger("app")


def _db_unavailable():
    return (
        jsonify(
            {
                "error": {
                    "code": "db_unavailable",
                    "message": "Database temporarily unavailable",
                }
            }
        ),
        503,
    )


def _owned_team(conn, team_id: int):
    """Resolve (user, team) for an edit, or an error response."""
    user, err = require_user(conn)
    if err:
        return None, None, err
    team = get_team(conn, team_id)
    if not team:
        return None, None, (jsonify(error="not_found", message=f"Team {team_id} not found"), 404)
    if team["user_id"] != user["id"]:
        return None, None, (
            jsonify(error="validation", message="You can only edit your own team"), 400
        )
    return user, team, None


@teams_bp.get("/teams")
def list_teams():
    """Every team, alphabetical."""
    try:
        engine = get_engine()
        with engine.connect() as conn:
            rows = get_teams(conn)
        return jsonify(rows), 200
    except SQLAlchemyError:
        return _db_unavailable()


@teams_bp.get("/teams/<int:team_id>")
def get_team_detail(team_id: int):
    """
    Return a team with its roster. Each player carries its lineup slot
    (fielding_position / batting_order, null on the bench) plus
    is_captain and is_starred flags.
    """
    try:
        engine = get_engine()
        with engine.connect() as conn:
            team = get_team_with_players(conn, team_id)
        if team is None:
            return jsonify(error="not_found", message=f"Team {team_id} not found"), 404
        return jsonify(team), 200
    except SQLAlchemyError:
        return _db_unavailable()


@teams_bp.put("/teams/<int:team_id>/lineup")
def put_team_lineup(team_id: int):
    """
    Replace the team's lineup.

    Body:
      {"lineup": [{"player_id", "fielding_position", "batting_order"}, ...],
       "captain_id": optional}
    """
    body = request.get_json(silent=True) or {}
    entries = body.get("lineup")
    if not isinstance(entries, list):
        return jsonify(error="missing_fields", fields=["lineup"]), 400

    try:
        entries = [
            {
                "player_id": int(e["player_id"]),
                "fielding_position": e.get("fielding_position"),
                "batting_order": (
                    int(e["batting_order"]) if e.get("batting_order") is not None else None
                ),
            }
            for e in entries
        ]
        captain_id = body.get("captain_id")
        captain_id = int(captain_id) if captain_id is not None else None

        engine = get_engine()
        with engine.begin() as conn:
            user, team, err = _owned_team(conn, team_id)
            if err:
                return err
            result = update_team_lineup(conn, team["id"], entries, captain_id=captain_id)

        if not result["success"]:
            return jsonify(error="validation", message=result["error"]), 400

        ws_manager.broadcast_event(user, "lineup-update", {"team_id": team_id})
        return jsonify(result), 200
    except (KeyError, TypeError, ValueError) as e:
        return jsonify(error="validation", message=f"Malformed lineup entry: {e}"), 400
    except SQLAlchemyError:
        logger.exception("lineup update failed")
        return jsonify(error="db_error", message="Database error"), 500


@teams_bp.put("/teams/<int:team_id>/trade-block")
def put_trade_block(team_id: int):
    """Update the free-text "looking for" / "willing to trade" notes."""
    body = request.get_json(silent=True) or {}
    try:
        engine = get_engine()
        with engine.begin() as conn:
            user, team, err = _owned_team(conn, team_id)
            if err:
                return err
            result = update_trade_preferences(
                conn, team["id"], body.get("looking_for"), body.get("willing_to_trade")
            )
            if not result["success"]:
                return jsonify(error="validation", message=result["error"]), 400

            current = get_season_state(conn)
            if not current:
                raise LeagueIntegrityError("No active season found")
            create_trade_preferences_event(
                conn, user["id"], team["id"],
                result["looking_for"], result["willing_to_trade"], current["id"],
            )

        ws_manager.broadcast_event(user, "trade-block-update", {"team_id": team_id})
        return jsonify(result), 200
    except SQLAlchemyError:
        logger.exception("trade block update failed")
        return jsonify(error="db_error", message="Database error"), 500
