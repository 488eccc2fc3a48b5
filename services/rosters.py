# services/rosters.py
"""
Roster store: teams, player assignment, captains and lineup slots.

Functions take a `conn`; the caller owns the transaction. Lookups used on
contended rows accept `for_update=True` so the draft and trade engines can
lock the team / player rows they are about to mutate.
"""

import logging
import random
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, func, select, update

from services import constants
from services.constants import FIELDING_POSITIONS
from services.schema import players, stats, team_lineups, teams, users, utcnow

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------
# Lookups
# -------------------------------------------------------------------

def get_team_for_user(conn, user_id: int, for_update: bool = False) -> Optional[Dict[str, Any]]:
    stmt = select(teams).where(teams.c.user_id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    row = conn.execute(stmt).mappings().first()
    return dict(row) if row else None


def get_teams(conn) -> List[Dict[str, Any]]:
    rows = conn.execute(select(teams).order_by(teams.c.name)).mappings().all()
    return [dict(r) for r in rows]


def get_team(conn, team_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute(select(teams).where(teams.c.id == team_id)).mappings().first()
    return dict(row) if row else None


def get_player(conn, player_id: int, for_update: bool = False) -> Optional[Dict[str, Any]]:
    stmt = select(players).where(players.c.id == player_id)
    if for_update:
        stmt = stmt.with_for_update()
    row = conn.execute(stmt).mappings().first()
    return dict(row) if row else None


def get_user(conn, user_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute(select(users).where(users.c.id == user_id)).mappings().first()
    return dict(row) if row else None


def get_team_player_ids(conn, team_id: int) -> List[int]:
    rows = conn.execute(
        select(players.c.id).where(players.c.team_id == team_id).order_by(players.c.id)
    ).all()
    return [r[0] for r in rows]


def count_team_players(conn, team_id: int) -> int:
    return int(conn.execute(
        select(func.count()).select_from(players).where(players.c.team_id == team_id)
    ).scalar_one())


def count_rostered_players(conn) -> int:
    """Players currently assigned to any team (the league-wide pick count)."""
    return int(conn.execute(
        select(func.count()).select_from(players).where(players.c.team_id.is_not(None))
    ).scalar_one())


def count_free_agents(conn) -> int:
    return int(conn.execute(
        select(func.count()).select_from(players).where(players.c.team_id.is_(None))
    ).scalar_one())


def get_free_agents(conn) -> List[Dict[str, Any]]:
    rows = conn.execute(
        select(players)
        .where(players.c.team_id.is_(None))
        .order_by(players.c.sort_position, players.c.id)
    ).mappings().all()
    return [dict(r) for r in rows]


# -------------------------------------------------------------------
# Captain
# -------------------------------------------------------------------

def is_captain_eligible(conn, player: Dict[str, Any]) -> bool:
    character = player.get("stats_character")
    if not character:
        return False
    captain = conn.execute(
        select(stats.c.captain).where(stats.c.character == character)
    ).scalar_one_or_none()
    return bool(captain)


def assign_captain_if_vacant(conn, team: Dict[str, Any], player: Dict[str, Any]) -> bool:
    """
    Make `player` the team captain when the team has none and the player's
    stats character is flagged captain-eligible. Returns True if assigned.
    """
    if team.get("captain_id") is not None:
        return False
    if not is_captain_eligible(conn, player):
        return False

    conn.execute(
        update(teams).where(teams.c.id == team["id"]).values(captain_id=player["id"])
    )
    logger.info("Player %s set as captain of team %s", player["id"], team["id"])
    return True


# -------------------------------------------------------------------
# Lineup slots
# -------------------------------------------------------------------

def get_team_lineup(conn, team_id: int) -> List[Dict[str, Any]]:
    rows = conn.execute(
        select(team_lineups)
        .select_from(team_lineups.join(players, players.c.id == team_lineups.c.player_id))
        .where(players.c.team_id == team_id)
    ).mappings().all()
    return [dict(r) for r in rows]


def add_player_to_lineup(conn, team_id: int, player_id: int,
                         should_star: bool = False,
                         rng: Optional[random.Random] = None) -> Optional[Dict[str, Any]]:
    """
    Give a newly rostered player a lineup slot if the team still has room.

    Fielding position and batting order are drawn uniformly from the ones
    the team is not using yet. Returns the inserted slot, or None when the
    lineup is already full.
    """
    rng = rng or random
    current = get_team_lineup(conn, team_id)

    # Slot rows with no position (starred bench players) do not occupy the lineup
    occupied = [r for r in current if r["fielding_position"] is not None]
    if len(occupied) >= constants.LINEUP_SIZE:
        return None

    used_positions = {r["fielding_position"] for r in occupied}
    used_orders = {r["batting_order"] for r in current if r["batting_order"] is not None}

    open_positions = [p for p in FIELDING_POSITIONS if p not in used_positions]
    open_orders = [n for n in range(1, constants.LINEUP_SIZE + 1) if n not in used_orders]
    if not open_positions or not open_orders:
        return None

    slot = {
        "player_id": player_id,
        "fielding_position": rng.choice(open_positions),
        "batting_order": rng.choice(open_orders),
        "is_starred": bool(should_star),
    }
    conn.execute(team_lineups.delete().where(team_lineups.c.player_id == player_id))
    conn.execute(team_lineups.insert().values(**slot))
    return slot


def clear_lineup_slots(conn, player_ids: Iterable[int]) -> None:
    player_ids = list(player_ids)
    if player_ids:
        conn.execute(team_lineups.delete().where(team_lineups.c.player_id.in_(player_ids)))


def get_starred_player_ids(conn, team_id: int) -> List[int]:
    rows = conn.execute(
        select(team_lineups.c.player_id)
        .select_from(team_lineups.join(players, players.c.id == team_lineups.c.player_id))
        .where(and_(players.c.team_id == team_id, team_lineups.c.is_starred.is_(True)))
    ).all()
    return [r[0] for r in rows]


def toggle_player_star(conn, team_id: int, player_id: int) -> bool:
    """
    Toggle the star on `player_id`. Starring unstars every teammate first so a
    team never holds more than one starred player. Returns the new state.
    """
    existing = conn.execute(
        select(team_lineups.c.is_starred).where(team_lineups.c.player_id == player_id)
    ).first()

    if existing is not None and existing[0]:
        conn.execute(
            update(team_lineups)
            .where(team_lineups.c.player_id == player_id)
            .values(is_starred=False)
        )
        return False

    teammate_ids = get_team_player_ids(conn, team_id)
    if teammate_ids:
        conn.execute(
            update(team_lineups)
            .where(team_lineups.c.player_id.in_(teammate_ids))
            .values(is_starred=False)
        )

    if existing is not None:
        conn.execute(
            update(team_lineups)
            .where(team_lineups.c.player_id == player_id)
            .values(is_starred=True)
        )
    else:
        # Bench player without a slot yet
        conn.execute(
            team_lineups.insert().values(
                player_id=player_id,
                fielding_position=None,
                batting_order=None,
                is_starred=True,
            )
        )
    return True


# -------------------------------------------------------------------
# Roster moves
# -------------------------------------------------------------------

def assign_players_to_team(conn, player_ids: Iterable[int], team_id: Optional[int]) -> None:
    player_ids = list(player_ids)
    if player_ids:
        conn.execute(
            update(players).where(players.c.id.in_(player_ids)).values(team_id=team_id)
        )


def wipe_rosters(conn) -> None:
    """Release every player, drop every lineup slot and unset all captains."""
    conn.execute(team_lineups.delete())
    conn.execute(update(players).values(team_id=None))
    conn.execute(update(teams).values(captain_id=None))
    logger.info("All rosters wiped")


# -------------------------------------------------------------------
# Team editing
# -------------------------------------------------------------------

def update_team_lineup(conn, team_id: int, entries: List[Dict[str, Any]],
                       captain_id: Optional[int] = None) -> Dict[str, Any]:
    """
    Replace a team's lineup.

    entries: [{player_id, fielding_position, batting_order}, ...]
    Players with a fielding position are starters; the rest are bench.
    Stars are carried over from the existing rows.
    """
    team_player_ids = set(get_team_player_ids(conn, team_id))

    for entry in entries:
        if entry.get("player_id") not in team_player_ids:
            return {
                "success": False,
                "error": f"Player {entry.get('player_id')} does not belong to this team",
            }

    if len({e["player_id"] for e in entries}) != len(entries):
        return {"success": False, "error": "Each player may only appear once in the lineup"}

    if captain_id is not None:
        captain_entry = next((e for e in entries if e["player_id"] == captain_id), None)
        if captain_entry is None or captain_entry.get("fielding_position") is None:
            return {"success": False, "error": "Captain must be playing in the game (not on bench)"}

    playing = [e for e in entries if e.get("fielding_position") is not None]
    bench = [e for e in entries if e.get("fielding_position") is None]

    if len(playing) != constants.LINEUP_SIZE:
        return {
            "success": False,
            "error": f"Exactly {constants.LINEUP_SIZE} players must be assigned to fielding positions",
        }

    positions = [e["fielding_position"] for e in playing]
    if any(p not in FIELDING_POSITIONS for p in positions):
        return {"success": False, "error": "Unknown fielding position"}
    if len(set(positions)) != len(positions):
        return {"success": False, "error": "Each fielding position must be assigned to exactly one player"}

    orders = [e.get("batting_order") for e in playing if e.get("batting_order") is not None]
    if len(orders) != constants.LINEUP_SIZE:
        return {"success": False, "error": "All playing players must have a batting order"}
    if set(orders) != set(range(1, constants.LINEUP_SIZE + 1)):
        return {
            "success": False,
            "error": f"Batting order must include all numbers from 1 to {constants.LINEUP_SIZE}",
        }

    if any(e.get("batting_order") is not None for e in bench):
        return {"success": False, "error": "Players on bench should not have a batting order"}

    starred = set(get_starred_player_ids(conn, team_id))
    clear_lineup_slots(conn, team_player_ids)
    for entry in entries:
        conn.execute(
            team_lineups.insert().values(
                player_id=entry["player_id"],
                fielding_position=entry.get("fielding_position"),
                batting_order=entry.get("batting_order"),
                is_starred=entry["player_id"] in starred,
            )
        )
    return {"success": True}


def update_trade_preferences(conn, team_id: int, looking_for: Optional[str],
                             willing_to_trade: Optional[str]) -> Dict[str, Any]:
    looking_for = (looking_for or "").strip() or None
    willing_to_trade = (willing_to_trade or "").strip() or None

    result = conn.execute(
        update(teams)
        .where(teams.c.id == team_id)
        .values(
            looking_for=looking_for,
            willing_to_trade=willing_to_trade,
            trade_block_updated_at=utcnow(),
        )
    )
    if result.rowcount == 0:
        return {"success": False, "error": "Team not found"}
    return {"success": True, "looking_for": looking_for, "willing_to_trade": willing_to_trade}


def get_team_with_players(conn, team_id: int) -> Optional[Dict[str, Any]]:
    team = get_team(conn, team_id)
    if not team:
        return None

    rows = conn.execute(
        select(
            players.c.id,
            players.c.name,
            players.c.stats_character,
            players.c.image_url,
            team_lineups.c.fielding_position,
            team_lineups.c.batting_order,
            func.coalesce(team_lineups.c.is_starred, False).label("is_starred"),
        )
        .select_from(players.outerjoin(team_lineups, team_lineups.c.player_id == players.c.id))
        .where(players.c.team_id == team_id)
        .order_by(team_lineups.c.batting_order.is_(None), team_lineups.c.batting_order, players.c.id)
    ).mappings().all()

    team["players"] = [
        {**dict(r), "is_captain": r["id"] == team["captain_id"], "is_starred": bool(r["is_starred"])}
        for r in rows
    ]
    return team
