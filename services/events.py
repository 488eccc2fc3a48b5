# services/events.py
"""
League event log.

Every public writer takes a `conn` (caller manages commit/rollback) and
inserts an `events` row plus its typed detail row. Draft events are written
inside the pick's transaction, so a failed insert aborts the pick.
"""

import logging
import math
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, select

from services.constants import EventType, TradeAction
from services.schema import (
    events,
    event_draft,
    event_season_state_change,
    event_trade,
    event_trade_preferences_update,
    players,
    teams,
    users,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Writers
# ---------------------------------------------------------------------------

def _insert_event(conn, event_type: EventType, user_id: Optional[int],
                  season_id: int) -> int:
    result = conn.execute(
        events.insert().values(
            event_type=event_type.value,
            user_id=user_id,
            season_id=season_id,
        )
    )
    return result.inserted_primary_key[0]


def get_pick_number(conn, season_id: int) -> int:
    """Next pick number: draft events already logged this season, plus one."""
    count = conn.execute(
        select(func.count())
        .select_from(events)
        .where(and_(
            events.c.season_id == season_id,
            events.c.event_type == EventType.DRAFT.value,
        ))
    ).scalar_one()
    return int(count) + 1


def create_draft_event(conn, user_id: int, player_id: int, team_id: int,
                       season_id: int) -> Dict[str, Any]:
    pick_number = get_pick_number(conn, season_id)
    event_id = _insert_event(conn, EventType.DRAFT, user_id, season_id)
    conn.execute(
        event_draft.insert().values(
            event_id=event_id,
            player_id=player_id,
            team_id=team_id,
            pick_number=pick_number,
        )
    )
    logger.info(
        "Pick #%s: player %s drafted by user %s to team %s",
        pick_number, player_id, user_id, team_id,
    )
    return {"event_id": event_id, "pick_number": pick_number}


def create_season_state_change_event(conn, user_id: Optional[int],
                                     from_state: Optional[str], to_state: str,
                                     season_id: int) -> int:
    event_id = _insert_event(conn, EventType.SEASON_STATE_CHANGE, user_id, season_id)
    conn.execute(
        event_season_state_change.insert().values(
            event_id=event_id,
            from_state=from_state,
            to_state=to_state,
        )
    )
    logger.info("Season state change: %s -> %s (user %s)", from_state, to_state, user_id)
    return event_id


def create_trade_event(conn, user_id: int, trade_id: int, season_id: int,
                       action: TradeAction) -> int:
    event_id = _insert_event(conn, EventType.TRADE, user_id, season_id)
    conn.execute(
        event_trade.insert().values(
            event_id=event_id,
            trade_id=trade_id,
            action=action.value,
        )
    )
    logger.info("Trade %s %s by user %s", trade_id, action.value, user_id)
    return event_id


def create_trade_preferences_event(conn, user_id: int, team_id: int,
                                   looking_for: Optional[str],
                                   willing_to_trade: Optional[str],
                                   season_id: int) -> int:
    event_id = _insert_event(conn, EventType.TRADE_PREFERENCES_UPDATE, user_id, season_id)
    conn.execute(
        event_trade_preferences_update.insert().values(
            event_id=event_id,
            team_id=team_id,
            looking_for=looking_for,
            willing_to_trade=willing_to_trade,
        )
    )
    return event_id


# ---------------------------------------------------------------------------
# Feed
# ---------------------------------------------------------------------------

def _load_draft_details(conn, event_ids: List[int]) -> Dict[int, Dict[str, Any]]:
    if not event_ids:
        return {}
    rows = conn.execute(
        select(
            event_draft.c.event_id,
            event_draft.c.pick_number,
            event_draft.c.player_id,
            players.c.name.label("player_name"),
            event_draft.c.team_id,
            teams.c.name.label("team_name"),
        )
        .select_from(
            event_draft
            .join(players, players.c.id == event_draft.c.player_id)
            .join(teams, teams.c.id == event_draft.c.team_id)
        )
        .where(event_draft.c.event_id.in_(event_ids))
    ).mappings().all()
    return {r["event_id"]: {k: v for k, v in r.items() if k != "event_id"} for r in rows}


def _load_simple_details(conn, table, event_ids: List[int]) -> Dict[int, Dict[str, Any]]:
    if not event_ids:
        return {}
    rows = conn.execute(
        select(table).where(table.c.event_id.in_(event_ids))
    ).mappings().all()
    return {r["event_id"]: {k: v for k, v in r.items() if k != "event_id"} for r in rows}


def get_events(conn, page: int = 1, page_size: int = 30) -> Dict[str, Any]:
    """
    Paginated event feed, newest first, with each event's typed details
    under "details".
    """
    page = max(1, int(page))
    page_size = max(1, int(page_size))
    offset = (page - 1) * page_size

    rows = conn.execute(
        select(
            events,
            users.c.name.label("user_name"),
        )
        .select_from(events.outerjoin(users, users.c.id == events.c.user_id))
        .order_by(events.c.created_at.desc(), events.c.id.desc())
        .limit(page_size)
        .offset(offset)
    ).mappings().all()

    total = conn.execute(select(func.count()).select_from(events)).scalar_one()

    by_type: Dict[str, List[int]] = {}
    for r in rows:
        by_type.setdefault(r["event_type"], []).append(r["id"])

    details = {}
    details.update(_load_draft_details(conn, by_type.get(EventType.DRAFT.value, [])))
    details.update(_load_simple_details(
        conn, event_trade, by_type.get(EventType.TRADE.value, [])))
    details.update(_load_simple_details(
        conn, event_season_state_change,
        by_type.get(EventType.SEASON_STATE_CHANGE.value, [])))
    details.update(_load_simple_details(
        conn, event_trade_preferences_update,
        by_type.get(EventType.TRADE_PREFERENCES_UPDATE.value, [])))

    results = []
    for r in rows:
        d = dict(r)
        d["details"] = details.get(r["id"])
        results.append(d)

    return {
        "events": results,
        "page": page,
        "page_size": page_size,
        "total": int(total),
        "total_pages": math.ceil(total / page_size),
    }
