# services/trading.py
"""
Trade engine: multi-player swaps between two teams.

Every public function takes a `conn` (caller manages commit/rollback).
A trade moves through pending -> accepted | denied | cancelled; every
terminal state is final. Acceptance re-runs the full validation against
current rosters, so a trade that went stale while pending is refused.

Trade event rows are written inside a SAVEPOINT: a failure there is logged
and dropped without undoing the roster change.
"""

import logging
import math
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from services import constants
from services.constants import SeasonPhase, TradeAction, TradeStatus
from services.errors import LeagueIntegrityError
from services.events import create_trade_event
from services.rosters import (
    assign_players_to_team,
    clear_lineup_slots,
    get_team_for_user,
    get_team_player_ids,
)
from services.schema import (
    players,
    team_lineups,
    teams,
    trade_players,
    trades,
    users,
    utcnow,
)
from services.season import get_season_state

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _log_trade_event(conn, user_id: int, trade_id: int, action: TradeAction) -> None:
    """Best-effort trade event; failures never undo the trade itself."""
    current = get_season_state(conn)
    if not current:
        raise LeagueIntegrityError("No active season found")

    try:
        with conn.begin_nested():
            create_trade_event(conn, user_id, trade_id, current["id"], action)
    except SQLAlchemyError:
        logger.exception("Failed to record %s event for trade %s", action.value, trade_id)


def _pending_conflicts(conn, player_ids: List[int], user_ids: Iterable[int],
                       exclude_trade_id: Optional[int] = None) -> List[int]:
    """Players already on another pending trade involving any of `user_ids`."""
    user_ids = list(user_ids)
    conditions = [
        trades.c.status == TradeStatus.PENDING.value,
        trade_players.c.player_id.in_(player_ids),
        or_(trades.c.from_user_id.in_(user_ids), trades.c.to_user_id.in_(user_ids)),
    ]
    if exclude_trade_id is not None:
        conditions.append(trades.c.id != exclude_trade_id)

    rows = conn.execute(
        select(trade_players.c.player_id)
        .select_from(trade_players.join(trades, trades.c.id == trade_players.c.trade_id))
        .where(and_(*conditions))
    ).all()
    return sorted({r[0] for r in rows})


def _get_trade_row(conn, trade_id: int, for_update: bool = False) -> Optional[Dict[str, Any]]:
    stmt = select(trades).where(trades.c.id == trade_id)
    if for_update:
        stmt = stmt.with_for_update()
    row = conn.execute(stmt).mappings().first()
    return dict(row) if row else None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_trade_request(conn, from_user_id: int, to_user_id: int,
                           from_player_ids: List[int], to_player_ids: List[int],
                           exclude_trade_id: Optional[int] = None) -> Dict[str, Any]:
    """
    Check a proposed swap against current rosters.

    from_player_ids leave the proposer's team, to_player_ids leave the
    recipient's. Returns {"valid": True} or {"valid": False, "error": msg}
    for the first failing rule. Never mutates.
    """
    current = get_season_state(conn)
    if not current:
        return {"valid": False, "error": "No active season found"}

    if current["state"] != SeasonPhase.PLAYING.value:
        return {
            "valid": False,
            "error": (
                f'Season is in "{current["state"]}" state, '
                "trading is only available during playing state"
            ),
        }

    if from_user_id == to_user_id:
        return {"valid": False, "error": "Cannot trade with yourself"}

    from_team = get_team_for_user(conn, from_user_id)
    if not from_team:
        return {"valid": False, "error": "You do not have a team"}

    to_team = get_team_for_user(conn, to_user_id)
    if not to_team:
        return {"valid": False, "error": "Other user does not have a team"}

    from_roster = set(get_team_player_ids(conn, from_team["id"]))
    to_roster = set(get_team_player_ids(conn, to_team["id"]))

    if any(pid not in from_roster for pid in from_player_ids):
        return {"valid": False, "error": "Some players do not belong to your team"}

    if any(pid not in to_roster for pid in to_player_ids):
        return {"valid": False, "error": "Some players do not belong to the other team"}

    all_player_ids = list(from_player_ids) + list(to_player_ids)
    if not all_player_ids:
        return {"valid": False, "error": "Must trade at least one player"}

    if len(set(all_player_ids)) != len(all_player_ids):
        return {"valid": False, "error": "A player may only be listed once in a trade"}

    if from_team["captain_id"] is not None and from_team["captain_id"] in from_player_ids:
        return {"valid": False, "error": "Cannot trade your team captain"}

    if to_team["captain_id"] is not None and to_team["captain_id"] in to_player_ids:
        return {"valid": False, "error": "Cannot trade the other team's captain"}

    if _pending_conflicts(conn, all_player_ids, (from_user_id, to_user_id), exclude_trade_id):
        return {
            "valid": False,
            "error": "Some players are already involved in pending trades with this user",
        }

    from_size_after = len(from_roster) - len(from_player_ids) + len(to_player_ids)
    to_size_after = len(to_roster) - len(to_player_ids) + len(from_player_ids)

    if from_size_after > constants.TEAM_SIZE:
        return {
            "valid": False,
            "error": f"Trade would exceed maximum team size of {constants.TEAM_SIZE}",
        }
    if to_size_after > constants.TEAM_SIZE:
        return {
            "valid": False,
            "error": f"Trade would exceed other team's maximum size of {constants.TEAM_SIZE}",
        }
    if from_size_after < constants.LINEUP_SIZE:
        return {
            "valid": False,
            "error": (
                f"Trade would leave your team with less than {constants.LINEUP_SIZE} "
                "players (minimum required for lineup)"
            ),
        }
    if to_size_after < constants.LINEUP_SIZE:
        return {
            "valid": False,
            "error": (
                f"Trade would leave other team with less than {constants.LINEUP_SIZE} "
                "players (minimum required for lineup)"
            ),
        }

    return {"valid": True}


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def create_trade_request(conn, from_user_id: int, to_user_id: int,
                         from_player_ids: List[int], to_player_ids: List[int],
                         proposal_text: Optional[str] = None) -> Dict[str, Any]:
    """Validate and record a pending trade plus one leg per player."""
    from_player_ids = [int(p) for p in from_player_ids]
    to_player_ids = [int(p) for p in to_player_ids]

    validation = validate_trade_request(
        conn, from_user_id, to_user_id, from_player_ids, to_player_ids
    )
    if not validation["valid"]:
        return {"success": False, "error": validation["error"]}

    from_team_id = get_team_for_user(conn, from_user_id)["id"]
    to_team_id = get_team_for_user(conn, to_user_id)["id"]

    now = utcnow()
    result = conn.execute(
        trades.insert().values(
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            status=TradeStatus.PENDING.value,
            proposal_text=proposal_text or None,
            created_at=now,
            updated_at=now,
        )
    )
    trade_id = result.inserted_primary_key[0]

    legs = [
        {"trade_id": trade_id, "player_id": pid,
         "from_team_id": from_team_id, "to_team_id": to_team_id}
        for pid in from_player_ids
    ] + [
        {"trade_id": trade_id, "player_id": pid,
         "from_team_id": to_team_id, "to_team_id": from_team_id}
        for pid in to_player_ids
    ]
    conn.execute(trade_players.insert(), legs)

    logger.info(
        "Trade %s proposed: user %s -> user %s (%d players)",
        trade_id, from_user_id, to_user_id, len(legs),
    )
    _log_trade_event(conn, from_user_id, trade_id, TradeAction.PROPOSED)

    return {"success": True, "trade_id": trade_id}


def accept_trade(conn, trade_id: int, user_id: int,
                 response_text: Optional[str] = None) -> Dict[str, Any]:
    """
    Recipient accepts a pending trade.

    The trade row and both team rows are locked before re-validating, so of
    two concurrent accepts exactly one succeeds and the other sees
    "Trade is not pending".
    """
    trade = _get_trade_row(conn, trade_id, for_update=True)
    if not trade:
        return {"success": False, "error": "Trade not found"}

    if trade["status"] != TradeStatus.PENDING.value:
        return {"success": False, "error": "Trade is not pending"}

    if trade["to_user_id"] != user_id:
        return {"success": False, "error": "You are not the recipient of this trade"}

    legs = conn.execute(
        select(trade_players).where(trade_players.c.trade_id == trade_id)
    ).mappings().all()
    if not legs:
        return {"success": False, "error": "Trade has no players"}

    from_team = get_team_for_user(conn, trade["from_user_id"], for_update=True)
    to_team = get_team_for_user(conn, trade["to_user_id"], for_update=True)
    if not from_team or not to_team:
        return {"success": False, "error": "One of the users no longer has a team"}

    from_player_ids = [leg["player_id"] for leg in legs if leg["from_team_id"] == from_team["id"]]
    to_player_ids = [leg["player_id"] for leg in legs if leg["from_team_id"] == to_team["id"]]
    if len(from_player_ids) + len(to_player_ids) != len(legs):
        return {"success": False, "error": "Trade no longer matches the teams involved"}

    validation = validate_trade_request(
        conn, trade["from_user_id"], trade["to_user_id"],
        from_player_ids, to_player_ids, exclude_trade_id=trade_id,
    )
    if not validation["valid"]:
        return {"success": False, "error": validation["error"]}

    clear_lineup_slots(conn, from_player_ids + to_player_ids)
    assign_players_to_team(conn, from_player_ids, to_team["id"])
    assign_players_to_team(conn, to_player_ids, from_team["id"])

    conn.execute(
        update(trades)
        .where(trades.c.id == trade_id)
        .values(
            status=TradeStatus.ACCEPTED.value,
            response_text=response_text or None,
            updated_at=utcnow(),
        )
    )
    logger.info("Trade %s accepted by user %s", trade_id, user_id)
    _log_trade_event(conn, user_id, trade_id, TradeAction.ACCEPTED)

    return {"success": True, "trade_id": trade_id}


def deny_trade(conn, trade_id: int, user_id: int,
               response_text: Optional[str] = None) -> Dict[str, Any]:
    """
    Close a pending trade without moving anyone. The proposer withdrawing
    it cancels it; the recipient refusing it denies it.
    """
    trade = _get_trade_row(conn, trade_id, for_update=True)
    if not trade:
        return {"success": False, "error": "Trade not found"}

    if trade["status"] != TradeStatus.PENDING.value:
        return {"success": False, "error": "Trade is not pending"}

    if user_id not in (trade["from_user_id"], trade["to_user_id"]):
        return {"success": False, "error": "You are not authorized to deny this trade"}

    if trade["from_user_id"] == user_id:
        status, action = TradeStatus.CANCELLED, TradeAction.CANCELLED
    else:
        status, action = TradeStatus.DENIED, TradeAction.REJECTED

    conn.execute(
        update(trades)
        .where(trades.c.id == trade_id)
        .values(
            status=status.value,
            response_text=response_text or None,
            updated_at=utcnow(),
        )
    )
    logger.info("Trade %s %s by user %s", trade_id, status.value, user_id)
    _log_trade_event(conn, user_id, trade_id, action)

    return {"success": True, "trade_id": trade_id, "status": status.value}


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def _serialize_trades(conn, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Attach users, teams and player legs (with lineup slots) to trade rows."""
    if not rows:
        return []

    trade_ids = [r["id"] for r in rows]
    user_ids = {r["from_user_id"] for r in rows} | {r["to_user_id"] for r in rows}

    user_map = {
        u["id"]: dict(u) for u in conn.execute(
            select(users.c.id, users.c.name).where(users.c.id.in_(user_ids))
        ).mappings().all()
    }
    team_map = {
        t["user_id"]: dict(t) for t in conn.execute(
            select(teams.c.id, teams.c.name, teams.c.abbreviation,
                   teams.c.color, teams.c.user_id)
            .where(teams.c.user_id.in_(user_ids))
        ).mappings().all()
    }

    legs_by_trade: Dict[int, List[Dict[str, Any]]] = {}
    leg_rows = conn.execute(
        select(
            trade_players.c.trade_id,
            trade_players.c.player_id,
            trade_players.c.from_team_id,
            trade_players.c.to_team_id,
            players.c.name.label("player_name"),
            players.c.image_url,
            team_lineups.c.fielding_position,
            team_lineups.c.batting_order,
        )
        .select_from(
            trade_players
            .join(players, players.c.id == trade_players.c.player_id)
            .outerjoin(team_lineups, team_lineups.c.player_id == players.c.id)
        )
        .where(trade_players.c.trade_id.in_(trade_ids))
        .order_by(trade_players.c.trade_id, trade_players.c.player_id)
    ).mappings().all()
    for leg in leg_rows:
        d = dict(leg)
        legs_by_trade.setdefault(d.pop("trade_id"), []).append(d)

    results = []
    for r in rows:
        d = dict(r)
        d["from_user"] = user_map.get(r["from_user_id"])
        d["to_user"] = user_map.get(r["to_user_id"])
        d["from_team"] = team_map.get(r["from_user_id"])
        d["to_team"] = team_map.get(r["to_user_id"])
        d["players"] = legs_by_trade.get(r["id"], [])
        results.append(d)
    return results


def get_pending_trades_for_user(conn, user_id: int) -> List[Dict[str, Any]]:
    rows = conn.execute(
        select(trades)
        .where(and_(
            or_(trades.c.from_user_id == user_id, trades.c.to_user_id == user_id),
            trades.c.status == TradeStatus.PENDING.value,
        ))
        .order_by(trades.c.created_at.desc(), trades.c.id.desc())
    ).mappings().all()
    return _serialize_trades(conn, [dict(r) for r in rows])


def get_trades(conn, page: int = 1, page_size: int = 20,
               user_id: Optional[int] = None, order: str = "desc") -> Dict[str, Any]:
    """Paginated trade history, optionally limited to one user's trades."""
    page = max(1, int(page))
    page_size = max(1, int(page_size))

    where = None
    if user_id is not None:
        where = or_(trades.c.from_user_id == user_id, trades.c.to_user_id == user_id)

    if order == "asc":
        ordering = (trades.c.created_at.asc(), trades.c.id.asc())
    else:
        ordering = (trades.c.created_at.desc(), trades.c.id.desc())

    stmt = select(trades).order_by(*ordering).limit(page_size).offset((page - 1) * page_size)
    count_stmt = select(func.count()).select_from(trades)
    if where is not None:
        stmt = stmt.where(where)
        count_stmt = count_stmt.where(where)

    rows = conn.execute(stmt).mappings().all()
    total = int(conn.execute(count_stmt).scalar_one())

    return {
        "trades": _serialize_trades(conn, [dict(r) for r in rows]),
        "page": page,
        "page_size": page_size,
        "total": total,
        "total_pages": math.ceil(total / page_size),
    }


def get_trade_by_id(conn, trade_id: int) -> Optional[Dict[str, Any]]:
    row = _get_trade_row(conn, trade_id)
    if not row:
        return None
    return _serialize_trades(conn, [row])[0]
