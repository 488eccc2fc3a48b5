# services/season.py
"""
Season service: the single-row `season` table (ID=1) and the drafting order.

The season row tracks which phase the league is in, whose turn it is during
the draft, and the advisory draft timer. It is re-read inside every
transaction that depends on it; nothing here caches season state in memory.

All functions take a `conn` and leave commit/rollback to the caller.
Rule violations come back as {"success": False, "error": ...}.
"""

import logging
import random
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, select, update

from services.constants import CURRENT_SEASON_ID, SEASON_PHASES, SeasonPhase
from services.events import create_season_state_change_event
from services.rosters import wipe_rosters
from services.schema import season, users, users_seasons, utcnow

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------
# Season row
# -------------------------------------------------------------------

def get_season_state(conn, for_update: bool = False) -> Optional[Dict[str, Any]]:
    """
    Fetch the season row (ID=1).

    Args:
        for_update: lock the row until the surrounding transaction ends.
            Every writer of current_drafting_user_id goes through this.

    Returns:
        The row as a dict, or None if the season has not been created.
    """
    stmt = select(season).where(season.c.id == CURRENT_SEASON_ID)
    if for_update:
        stmt = stmt.with_for_update()
    row = conn.execute(stmt).mappings().first()
    return dict(row) if row else None


def set_season_state(conn, new_state: str, acting_user_id: Optional[int] = None) -> Dict[str, Any]:
    """
    Move the league to a new phase.

    pre-season -> drafting wipes every roster and lineup and hands the first
    turn to the top of the drafting order. Entering drafting from any other
    phase keeps the rosters and also seats the top of the order; staying in
    drafting keeps whoever is on the clock. Moving into drafting is refused
    while the drafting order is empty. Leaving drafting by any route clears
    the drafter.
    """
    if new_state not in SEASON_PHASES:
        return {"success": False, "error": f"Unknown season state '{new_state}'"}

    current = get_season_state(conn, for_update=True)
    from_state = current["state"] if current else None

    values: Dict[str, Any] = {"state": new_state}

    if new_state == SeasonPhase.DRAFTING.value:
        order = get_drafting_order(conn)
        if not order:
            return {"success": False, "error": "No users in drafting order"}

        seated = current["current_drafting_user_id"] if current else None
        if from_state != SeasonPhase.DRAFTING.value or seated is None:
            seated = order[0]["user_id"]
        if from_state == SeasonPhase.PRE_SEASON.value:
            wipe_rosters(conn)
        values["current_drafting_user_id"] = seated
    else:
        values["current_drafting_user_id"] = None

    if current:
        conn.execute(update(season).where(season.c.id == CURRENT_SEASON_ID).values(**values))
    else:
        conn.execute(season.insert().values(id=CURRENT_SEASON_ID, **values))

    create_season_state_change_event(
        conn, acting_user_id, from_state, new_state, CURRENT_SEASON_ID
    )

    return {
        "success": True,
        "from_state": from_state,
        "state": new_state,
        "current_drafting_user_id": values.get("current_drafting_user_id"),
    }


def set_current_drafting_user(conn, user_id: int) -> Dict[str, Any]:
    """Admin override of whose turn it is. Only valid while drafting."""
    current = get_season_state(conn, for_update=True)
    if not current:
        return {"success": False, "error": "No active season found"}
    if current["state"] != SeasonPhase.DRAFTING.value:
        return {"success": False, "error": "Season is not in drafting state"}

    in_order = conn.execute(
        select(users_seasons.c.user_id).where(and_(
            users_seasons.c.user_id == user_id,
            users_seasons.c.season_id == current["id"],
        ))
    ).first()
    if not in_order:
        return {"success": False, "error": "User is not in the drafting order"}

    conn.execute(
        update(season)
        .where(season.c.id == current["id"])
        .values(current_drafting_user_id=user_id)
    )
    logger.info("Current drafter overridden to user %s", user_id)
    return {"success": True, "current_drafting_user_id": user_id}


# -------------------------------------------------------------------
# Drafting order
# -------------------------------------------------------------------

def get_drafting_order(conn, season_id: int = CURRENT_SEASON_ID) -> List[Dict[str, Any]]:
    """Drafting order for a season, ascending by turn."""
    rows = conn.execute(
        select(
            users_seasons.c.user_id,
            users.c.name.label("user_name"),
            users_seasons.c.drafting_turn,
            users_seasons.c.pre_draft_player_id,
        )
        .select_from(users_seasons.join(users, users.c.id == users_seasons.c.user_id))
        .where(users_seasons.c.season_id == season_id)
        .order_by(users_seasons.c.drafting_turn.asc(), users_seasons.c.user_id.asc())
    ).mappings().all()
    return [dict(r) for r in rows]


def _renumber_turns(conn, season_id: int, user_ids: List[int]) -> None:
    for idx, uid in enumerate(user_ids, start=1):
        conn.execute(
            update(users_seasons)
            .where(and_(
                users_seasons.c.user_id == uid,
                users_seasons.c.season_id == season_id,
            ))
            .values(drafting_turn=idx)
        )


def adjust_drafting_order(conn, user_id: int, direction: str) -> Dict[str, Any]:
    """
    Swap a user with their neighbour in the drafting order ("up" = earlier
    turn), then renumber every entry to a dense 1..N sequence.
    """
    if direction not in ("up", "down"):
        return {"success": False, "error": "Direction must be 'up' or 'down'"}

    current = get_season_state(conn)
    if not current:
        return {"success": False, "error": "No current season found"}

    order = get_drafting_order(conn, current["id"])
    user_ids = [r["user_id"] for r in order]
    if user_id not in user_ids:
        return {"success": False, "error": "User not found in current season"}

    idx = user_ids.index(user_id)
    target = idx - 1 if direction == "up" else idx + 1
    if target < 0 or target >= len(user_ids):
        return {"success": False, "error": "No user at target position"}

    user_ids[idx], user_ids[target] = user_ids[target], user_ids[idx]
    _renumber_turns(conn, current["id"], user_ids)
    return {"success": True, "order": user_ids}


def random_assign_draft_order(conn, rng: Optional[random.Random] = None) -> Dict[str, Any]:
    current = get_season_state(conn)
    if not current:
        return {"success": False, "error": "No current season found"}

    user_ids = [r["user_id"] for r in get_drafting_order(conn, current["id"])]
    (rng or random).shuffle(user_ids)
    _renumber_turns(conn, current["id"], user_ids)
    return {"success": True, "order": user_ids}


def create_draft_entries_for_all_users(conn) -> Dict[str, Any]:
    """Append every user missing from the drafting order to its end."""
    current = get_season_state(conn)
    if not current:
        return {"success": False, "error": "No current season found"}

    existing = get_drafting_order(conn, current["id"])
    existing_ids = {r["user_id"] for r in existing}
    max_turn = max((r["drafting_turn"] for r in existing), default=0)

    all_user_ids = [r[0] for r in conn.execute(select(users.c.id).order_by(users.c.id)).all()]
    new_ids = [uid for uid in all_user_ids if uid not in existing_ids]

    for offset, uid in enumerate(new_ids, start=1):
        conn.execute(
            users_seasons.insert().values(
                user_id=uid,
                season_id=current["id"],
                drafting_turn=max_turn + offset,
            )
        )
    return {"success": True, "added": new_ids}


# -------------------------------------------------------------------
# Draft timer (advisory; never forces a pick)
# -------------------------------------------------------------------

def _timer_view(row: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    started = row.get("draft_timer_started_at")
    paused = row.get("draft_timer_paused_at")
    duration = int(row.get("draft_timer_duration") or 0)

    if started is None:
        remaining = duration
    else:
        elapsed = ((paused or now) - started).total_seconds()
        remaining = max(0, int(duration - elapsed))

    return {
        "duration_seconds": duration,
        "started_at": started,
        "paused_at": paused,
        "running": started is not None and paused is None,
        "remaining_seconds": remaining,
    }


def get_draft_timer(conn, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    current = get_season_state(conn)
    if not current:
        return None
    return _timer_view(current, now)


def _write_timer(conn, now: Optional[datetime], **values) -> Dict[str, Any]:
    conn.execute(update(season).where(season.c.id == CURRENT_SEASON_ID).values(**values))
    return {"success": True, "timer": get_draft_timer(conn, now)}


def start_draft_timer(conn, now: Optional[datetime] = None) -> Dict[str, Any]:
    if not get_season_state(conn, for_update=True):
        return {"success": False, "error": "No active season found"}
    now = now or utcnow()
    return _write_timer(conn, now, draft_timer_started_at=now, draft_timer_paused_at=None)


def pause_draft_timer(conn, now: Optional[datetime] = None) -> Dict[str, Any]:
    current = get_season_state(conn, for_update=True)
    if not current:
        return {"success": False, "error": "No active season found"}
    if current["draft_timer_started_at"] is None or current["draft_timer_paused_at"] is not None:
        return {"success": False, "error": "Draft timer is not running"}
    now = now or utcnow()
    return _write_timer(conn, now, draft_timer_paused_at=now)


def resume_draft_timer(conn, now: Optional[datetime] = None) -> Dict[str, Any]:
    current = get_season_state(conn, for_update=True)
    if not current:
        return {"success": False, "error": "No active season found"}
    paused = current["draft_timer_paused_at"]
    if paused is None:
        return {"success": False, "error": "Draft timer is not paused"}
    now = now or utcnow()
    # Shift the start forward by the time spent paused
    started = current["draft_timer_started_at"] + (now - paused)
    return _write_timer(conn, now, draft_timer_started_at=started, draft_timer_paused_at=None)


def reset_draft_timer(conn, now: Optional[datetime] = None) -> Dict[str, Any]:
    if not get_season_state(conn, for_update=True):
        return {"success": False, "error": "No active season found"}
    return _write_timer(conn, now, draft_timer_started_at=None, draft_timer_paused_at=None)


def set_draft_timer_duration(conn, seconds: int, now: Optional[datetime] = None) -> Dict[str, Any]:
    if seconds <= 0:
        return {"success": False, "error": "Draft timer duration must be positive"}
    if not get_season_state(conn, for_update=True):
        return {"success": False, "error": "No active season found"}
    return _write_timer(conn, now, draft_timer_duration=int(seconds))
