# services/schema.py
"""
Table definitions for the league database.

Everything lives on one MetaData so init_db() (and the test suite) can
create the full schema in one call. Column names follow the production
database; services address them through these Table objects only.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    MetaData, Table, Column, Integer, String, Text, Boolean, DateTime,
    ForeignKey, PrimaryKeyConstraint,
)

from services.constants import DRAFT_TIMER_DEFAULT_S


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("role", String(20), nullable=False, default="user"),
)

stats = Table(
    "stats",
    metadata,
    Column("character", String(100), primary_key=True),
    Column("character_class", String(50), nullable=True),
    Column("captain", Boolean, nullable=False, default=False),
)

teams = Table(
    "teams",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("abbreviation", String(10), nullable=False),
    Column("color", String(30), nullable=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"),
           nullable=False, unique=True),
    Column("captain_id", Integer,
           ForeignKey("players.id", ondelete="SET NULL", use_alter=True),
           nullable=True),
    Column("looking_for", Text, nullable=True),
    Column("willing_to_trade", Text, nullable=True),
    Column("trade_block_updated_at", DateTime, nullable=True),
)

players = Table(
    "players",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("team_id", Integer, ForeignKey("teams.id", ondelete="SET NULL"),
           nullable=True, index=True),
    Column("stats_character", String(100), ForeignKey("stats.character"),
           nullable=True),
    Column("image_url", Text, nullable=True),
    Column("sort_position", Integer, nullable=True),
)

season = Table(
    "season",
    metadata,
    Column("id", Integer, primary_key=True, default=1),
    Column("state", String(20), nullable=False, default="pre-season"),
    Column("current_drafting_user_id", Integer,
           ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    Column("draft_timer_started_at", DateTime, nullable=True),
    Column("draft_timer_paused_at", DateTime, nullable=True),
    Column("draft_timer_duration", Integer, nullable=False,
           default=DRAFT_TIMER_DEFAULT_S),
)

users_seasons = Table(
    "users_seasons",
    metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"),
           nullable=False),
    Column("season_id", Integer, ForeignKey("season.id"), nullable=False),
    Column("drafting_turn", Integer, nullable=False),
    Column("pre_draft_player_id", Integer,
           ForeignKey("players.id", ondelete="SET NULL"), nullable=True),
    PrimaryKeyConstraint("user_id", "season_id"),
)

team_lineups = Table(
    "team_lineups",
    metadata,
    Column("player_id", Integer, ForeignKey("players.id", ondelete="CASCADE"),
           primary_key=True),
    Column("fielding_position", String(2), nullable=True),
    Column("batting_order", Integer, nullable=True),
    Column("is_starred", Boolean, nullable=False, default=False),
)

trades = Table(
    "trades",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("from_user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"),
           nullable=False),
    Column("to_user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"),
           nullable=False),
    Column("status", String(20), nullable=False, default="pending"),
    Column("proposal_text", Text, nullable=True),
    Column("response_text", Text, nullable=True),
    Column("created_at", DateTime, nullable=False, default=utcnow),
    Column("updated_at", DateTime, nullable=False, default=utcnow),
)

trade_players = Table(
    "trade_players",
    metadata,
    Column("trade_id", Integer, ForeignKey("trades.id", ondelete="CASCADE"),
           nullable=False),
    Column("player_id", Integer, ForeignKey("players.id", ondelete="CASCADE"),
           nullable=False),
    Column("from_team_id", Integer, ForeignKey("teams.id", ondelete="CASCADE"),
           nullable=False),
    Column("to_team_id", Integer, ForeignKey("teams.id", ondelete="CASCADE"),
           nullable=False),
    PrimaryKeyConstraint("trade_id", "player_id"),
)

events = Table(
    "events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("event_type", String(40), nullable=False),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="SET NULL"),
           nullable=True),
    Column("season_id", Integer, ForeignKey("season.id", ondelete="CASCADE"),
           nullable=False),
    Column("created_at", DateTime, nullable=False, default=utcnow),
)

event_draft = Table(
    "event_draft",
    metadata,
    Column("event_id", Integer, ForeignKey("events.id", ondelete="CASCADE"),
           primary_key=True),
    Column("player_id", Integer, ForeignKey("players.id", ondelete="CASCADE"),
           nullable=False),
    Column("team_id", Integer, ForeignKey("teams.id", ondelete="CASCADE"),
           nullable=False),
    Column("pick_number", Integer, nullable=False),
)

event_season_state_change = Table(
    "event_season_state_change",
    metadata,
    Column("event_id", Integer, ForeignKey("events.id", ondelete="CASCADE"),
           primary_key=True),
    Column("from_state", String(20), nullable=True),
    Column("to_state", String(20), nullable=False),
)

event_trade = Table(
    "event_trade",
    metadata,
    Column("event_id", Integer, ForeignKey("events.id", ondelete="CASCADE"),
           primary_key=True),
    Column("trade_id", Integer, ForeignKey("trades.id", ondelete="CASCADE"),
           nullable=False),
    Column("action", String(20), nullable=False),
)

event_trade_preferences_update = Table(
    "event_trade_preferences_update",
    metadata,
    Column("event_id", Integer, ForeignKey("events.id", ondelete="CASCADE"),
           primary_key=True),
    Column("team_id", Integer, ForeignKey("teams.id", ondelete="CASCADE"),
           nullable=False),
    Column("looking_for", Text, nullable=True),
    Column("willing_to_trade", Text, nullable=True),
)
