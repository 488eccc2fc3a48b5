# services/constants.py
"""
League-wide constants and enumerations.

TEAM_SIZE and LINEUP_SIZE can be overridden through the environment; the
lineup size can never exceed the team size.
"""

import os
from enum import Enum

TEAM_SIZE = int(os.getenv("TEAM_SIZE", "10"))
LINEUP_SIZE = min(int(os.getenv("LINEUP_SIZE", "9")), TEAM_SIZE)

DRAFT_TIMER_DEFAULT_S = int(os.getenv("DRAFT_TIMER_DEFAULT_S", "120"))

CURRENT_SEASON_ID = 1

FIELDING_POSITIONS = ("C", "1B", "2B", "3B", "SS", "LF", "CF", "RF", "P")


class SeasonPhase(str, Enum):
    PRE_SEASON = "pre-season"
    DRAFTING = "drafting"
    PLAYING = "playing"
    POST_SEASON = "post-season"


class TradeStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DENIED = "denied"
    CANCELLED = "cancelled"


class TradeAction(str, Enum):
    PROPOSED = "proposed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class EventType(str, Enum):
    DRAFT = "draft"
    SEASON_STATE_CHANGE = "season_state_change"
    TRADE = "trade"
    TRADE_PREFERENCES_UPDATE = "trade_preferences_update"


SEASON_PHASES = tuple(p.value for p in SeasonPhase)
