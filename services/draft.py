# services/draft.py
"""
Draft engine: snake-draft picks, turn advancement, pre-drafts and stars.

Every public function takes a `conn` (caller manages commit/rollback).
A pick and every auto-draft it triggers run inside that one transaction:

    with engine.begin() as conn:
        result = draft_player(conn, user_id, player_id)

The season row is locked FOR UPDATE before anything is validated, so two
concurrent picks serialize on it and the second one sees the first one's
turn advance.
"""

import logging
import random
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, select, update

from services import constants
from services.constants import SeasonPhase
from services.errors import LeagueIntegrityError
from services.events import create_draft_event
from services.rosters import (
    add_player_to_lineup,
    assign_captain_if_vacant,
    assign_players_to_team,
    count_rostered_players,
    count_team_players,
    get_free_agents,
    get_player,
    get_team_for_user,
    toggle_player_star,
)
from services.schema import season, users_seasons
from services.season import get_draft_timer, get_drafting_order, get_season_state

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def snake_draft_index(total_picks: int, drafter_count: int) -> int:
    """
    Index into the drafting order of whoever makes pick number `total_picks`
    (0-based). Even rounds run forward, odd rounds run in reverse.

    With three drafters: 0,1,2 | 2,1,0 | 0,1,2 ...
    """
    if drafter_count <= 0:
        raise ValueError("drafter_count must be positive")
    round_number, position = divmod(total_picks, drafter_count)
    if round_number % 2 == 0:
        return position
    return drafter_count - 1 - position


def should_auto_star(prior_roster_size: int) -> bool:
    """A team's first drafted player is starred automatically."""
    return prior_roster_size == 0


def validate_draft_pick(conn, user_id: int, player_id: int,
                        lock: bool = False) -> Dict[str, Any]:
    """
    Check whether `user_id` may draft `player_id` right now.

    Returns {"valid": True} or {"valid": False, "error": msg} for the first
    rule that fails. Never mutates. With lock=True the season and player
    rows are read FOR UPDATE.
    """
    current = get_season_state(conn, for_update=lock)
    if not current:
        return {"valid": False, "error": "No active season found"}

    if current["state"] != SeasonPhase.DRAFTING.value:
        return {
            "valid": False,
            "error": f'Season is in "{current["state"]}" state, not drafting',
        }

    if current["current_drafting_user_id"] != user_id:
        return {"valid": False, "error": "It is not your turn to draft"}

    player = get_player(conn, player_id, for_update=lock)
    if not player:
        return {"valid": False, "error": "Player not found"}
    if player["team_id"] is not None:
        return {"valid": False, "error": "Player is already assigned to a team"}

    team = get_team_for_user(conn, user_id)
    if not team:
        return {"valid": False, "error": "User does not have a team"}

    if count_team_players(conn, team["id"]) >= constants.TEAM_SIZE:
        return {
            "valid": False,
            "error": f"Team already has {constants.TEAM_SIZE} players (maximum allowed)",
        }

    # TODO: reject picks that would leave another team unable to draft a
    # captain, and force a team's last pick to be a captain when it has none.

    return {"valid": True}


# ---------------------------------------------------------------------------
# Pick execution
# ---------------------------------------------------------------------------

def _execute_pick(conn, user_id: int, player_id: int, season_id: int,
                  rng: Optional[random.Random] = None) -> Dict[str, Any]:
    team = get_team_for_user(conn, user_id, for_update=True)
    if not team:
        raise LeagueIntegrityError(f"Team for user {user_id} not found")

    prior_size = count_team_players(conn, team["id"])
    starred = should_auto_star(prior_size)

    assign_players_to_team(conn, [player_id], team["id"])

    player = get_player(conn, player_id)
    is_captain = assign_captain_if_vacant(conn, team, player)
    slot = add_player_to_lineup(conn, team["id"], player_id, should_star=starred, rng=rng)

    event = create_draft_event(conn, user_id, player_id, team["id"], season_id)
    clear_pre_draft_for_player(conn, player_id, season_id)

    return {
        "user_id": user_id,
        "player_id": player_id,
        "team_id": team["id"],
        "pick_number": event["pick_number"],
        "starred": starred,
        "captain": is_captain,
        "lineup_slot": slot,
    }


def _advance_to_next_drafter(conn) -> int:
    """Recompute whose turn it is from the number of rostered players."""
    current = get_season_state(conn, for_update=True)
    if not current or current["state"] != SeasonPhase.DRAFTING.value:
        raise LeagueIntegrityError("Season is not in drafting state")

    order = get_drafting_order(conn, current["id"])
    if not order:
        raise LeagueIntegrityError("No users in drafting order")

    total_picks = count_rostered_players(conn)
    next_user_id = order[snake_draft_index(total_picks, len(order))]["user_id"]

    conn.execute(
        update(season)
        .where(season.c.id == current["id"])
        .values(current_drafting_user_id=next_user_id)
    )
    return next_user_id


def draft_player(conn, user_id: int, player_id: int,
                 skip_auto_draft: bool = False,
                 rng: Optional[random.Random] = None) -> Dict[str, Any]:
    """
    Draft `player_id` onto `user_id`'s team and hand the turn on.

    Unless skip_auto_draft is set, queued pre-drafts are then resolved in a
    loop: while the drafter now on the clock has a pre-draft that still
    validates, it is drafted for them. The first stale pre-draft is cleared
    and the turn stays with that drafter.

    Returns:
        {"success": True, "picks": [...], "current_drafting_user_id": id}
        or {"success": False, "error": msg}.
    """
    validation = validate_draft_pick(conn, user_id, player_id, lock=True)
    if not validation["valid"]:
        return {"success": False, "error": validation["error"]}

    season_id = get_season_state(conn)["id"]

    picks = [_execute_pick(conn, user_id, player_id, season_id, rng)]
    next_user_id = _advance_to_next_drafter(conn)

    while not skip_auto_draft:
        queued = get_pre_draft(conn, next_user_id)
        if queued is None:
            break

        check = validate_draft_pick(conn, next_user_id, queued, lock=True)
        if not check["valid"]:
            logger.info(
                "Auto-draft of player %s for user %s skipped: %s",
                queued, next_user_id, check["error"],
            )
            clear_pre_draft(conn, next_user_id)
            break

        picks.append(_execute_pick(conn, next_user_id, queued, season_id, rng))
        logger.info("Auto-drafted player %s for user %s", queued, next_user_id)
        next_user_id = _advance_to_next_drafter(conn)

    return {
        "success": True,
        "picks": picks,
        "current_drafting_user_id": next_user_id,
    }


# ---------------------------------------------------------------------------
# Pre-drafts
# ---------------------------------------------------------------------------

def _draft_entry_filter(user_id: int, season_id: int):
    return and_(
        users_seasons.c.user_id == user_id,
        users_seasons.c.season_id == season_id,
    )


def set_pre_draft(conn, user_id: int, player_id: int) -> Dict[str, Any]:
    current = get_season_state(conn)
    if not current:
        return {"success": False, "error": "No active season found"}

    if current["state"] != SeasonPhase.DRAFTING.value:
        return {
            "success": False,
            "error": f'Season is in "{current["state"]}" state, not drafting',
        }

    player = get_player(conn, player_id)
    if not player:
        return {"success": False, "error": "Player not found"}
    if player["team_id"] is not None:
        return {"success": False, "error": "Player is already assigned to a team"}

    result = conn.execute(
        update(users_seasons)
        .where(_draft_entry_filter(user_id, current["id"]))
        .values(pre_draft_player_id=player_id)
    )
    if result.rowcount == 0:
        return {"success": False, "error": "User is not in the drafting order"}

    return {"success": True, "pre_draft_player_id": player_id}


def clear_pre_draft(conn, user_id: int) -> Dict[str, Any]:
    current = get_season_state(conn)
    if not current:
        return {"success": False, "error": "No active season found"}

    conn.execute(
        update(users_seasons)
        .where(_draft_entry_filter(user_id, current["id"]))
        .values(pre_draft_player_id=None)
    )
    return {"success": True}


def get_pre_draft(conn, user_id: int) -> Optional[int]:
    current = get_season_state(conn)
    if not current:
        return None
    return conn.execute(
        select(users_seasons.c.pre_draft_player_id)
        .where(_draft_entry_filter(user_id, current["id"]))
    ).scalar_one_or_none()


def clear_pre_draft_for_player(conn, player_id: int, season_id: int) -> None:
    """Drop `player_id` from every user's pre-draft in the season."""
    conn.execute(
        update(users_seasons)
        .where(and_(
            users_seasons.c.pre_draft_player_id == player_id,
            users_seasons.c.season_id == season_id,
        ))
        .values(pre_draft_player_id=None)
    )


# ---------------------------------------------------------------------------
# Stars
# ---------------------------------------------------------------------------

def set_player_starred(conn, user_id: int, player_id: int) -> Dict[str, Any]:
    """Toggle the star on one of the caller's own players while drafting."""
    current = get_season_state(conn)
    if not current:
        return {"success": False, "error": "No active season found"}

    if current["state"] != SeasonPhase.DRAFTING.value:
        return {
            "success": False,
            "error": f'Season is in "{current["state"]}" state, not drafting',
        }

    team = get_team_for_user(conn, user_id, for_update=True)
    if not team:
        return {"success": False, "error": "User does not have a team"}

    player = get_player(conn, player_id)
    if not player:
        return {"success": False, "error": "Player not found"}
    if player["team_id"] != team["id"]:
        return {"success": False, "error": "Player does not belong to your team"}

    is_starred = toggle_player_star(conn, team["id"], player_id)
    return {"success": True, "player_id": player_id, "is_starred": is_starred}


# ---------------------------------------------------------------------------
# Board
# ---------------------------------------------------------------------------

def get_draft_board(conn, user_id: Optional[int] = None) -> Dict[str, Any]:
    """Everything a drafting client needs to render the current turn."""
    current = get_season_state(conn)
    if not current:
        raise LeagueIntegrityError("Season row is missing")

    board: Dict[str, Any] = {
        "state": current["state"],
        "current_drafting_user_id": current["current_drafting_user_id"],
        "order": get_drafting_order(conn, current["id"]),
        "picks_made": count_rostered_players(conn),
        "timer": get_draft_timer(conn),
        "free_agents": get_free_agents(conn),
    }
    if user_id is not None:
        board["pre_draft_player_id"] = get_pre_draft(conn, user_id)
    return board
