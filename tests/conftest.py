"""Pytest configuration and fixtures."""

import json
import random

import pytest
from sqlalchemy import select, update


class LeagueBuilder:
    """Seeds users, teams, players and the drafting order straight into the DB."""

    def __init__(self, engine):
        self.engine = engine
        self._player_seq = 0

    def add_user(self, name, role="user", with_team=True):
        from services.schema import teams, users

        with self.engine.begin() as conn:
            user_id = conn.execute(
                users.insert().values(name=name, role=role)
            ).inserted_primary_key[0]
            if with_team:
                conn.execute(
                    teams.insert().values(
                        name=f"{name} Team",
                        abbreviation=name[:3].upper(),
                        user_id=user_id,
                    )
                )
        return user_id

    def team_id(self, user_id):
        from services.schema import teams

        with self.engine.connect() as conn:
            return conn.execute(
                select(teams.c.id).where(teams.c.user_id == user_id)
            ).scalar_one()

    def add_player(self, name=None, team_id=None, captain=False):
        from services.schema import players, stats

        self._player_seq += 1
        name = name or f"Player {self._player_seq}"
        with self.engine.begin() as conn:
            conn.execute(stats.insert().values(character=name, captain=captain))
            return conn.execute(
                players.insert().values(
                    name=name,
                    team_id=team_id,
                    stats_character=name,
                    sort_position=self._player_seq,
                )
            ).inserted_primary_key[0]

    def add_players(self, count, team_id=None):
        return [self.add_player(team_id=team_id) for _ in range(count)]

    def set_order(self, user_ids):
        from services.schema import users_seasons

        with self.engine.begin() as conn:
            conn.execute(users_seasons.delete())
            for turn, uid in enumerate(user_ids, start=1):
                conn.execute(
                    users_seasons.insert().values(
                        user_id=uid, season_id=1, drafting_turn=turn
                    )
                )

    def set_state(self, state, current_drafting_user_id=None):
        from services.schema import season

        with self.engine.begin() as conn:
            conn.execute(
                update(season)
                .where(season.c.id == 1)
                .values(state=state, current_drafting_user_id=current_drafting_user_id)
            )

    def set_captain(self, team_id, player_id):
        from services.schema import teams

        with self.engine.begin() as conn:
            conn.execute(
                update(teams).where(teams.c.id == team_id).values(captain_id=player_id)
            )

    def team_of(self, player_id):
        from services.schema import players

        with self.engine.connect() as conn:
            return conn.execute(
                select(players.c.team_id).where(players.c.id == player_id)
            ).scalar_one()

    def drafter(self):
        from services.schema import season

        with self.engine.connect() as conn:
            return conn.execute(
                select(season.c.current_drafting_user_id).where(season.c.id == 1)
            ).scalar_one()


@pytest.fixture
def engine(tmp_path, monkeypatch):
    """A fresh SQLite league database per test, installed as the app engine."""
    import db

    eng = db.create_engine_for_url(f"sqlite:///{tmp_path / 'league.db'}")
    db.init_db(eng)
    monkeypatch.setattr(db, "_engine", eng)
    yield eng
    eng.dispose()


@pytest.fixture
def league(engine):
    return LeagueBuilder(engine)


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def drafting_league(league):
    """Three users in order [U1, U2, U3], nine free agents, drafting with U1 up."""
    u1 = league.add_user("Alice")
    u2 = league.add_user("Bruno")
    u3 = league.add_user("Chen")
    league.set_order([u1, u2, u3])
    player_ids = league.add_players(9)
    league.set_state("drafting", current_drafting_user_id=u1)
    return {"users": [u1, u2, u3], "players": player_ids}


@pytest.fixture
def trading_league(league):
    """Two users with ten rostered players each, season playing."""
    u1 = league.add_user("Alice")
    u2 = league.add_user("Bruno")
    t1 = league.team_id(u1)
    t2 = league.team_id(u2)
    p1 = league.add_players(10, team_id=t1)
    p2 = league.add_players(10, team_id=t2)
    league.set_state("playing")
    return {"users": (u1, u2), "teams": (t1, t2), "players": (p1, p2)}


class RecordingConnection:
    def __init__(self):
        self.messages = []

    def send(self, message):
        self.messages.append(message)

    @property
    def events(self):
        return [json.loads(m)["event"] for m in self.messages]


@pytest.fixture
def broadcasts():
    """Capture live-update messages sent through ws_manager."""
    from services.websocket_manager import ws_manager

    ws = RecordingConnection()
    ws_manager.add_connection(ws)
    yield ws
    ws_manager.remove_connection(ws)


@pytest.fixture
def client(engine):
    from app import Config, create_app

    class TestConfig(Config):
        TESTING = True
        ENABLE_PROMETHEUS = False
        RATE_LIMIT_REQUESTS = 10000
        DB_AUTO_CREATE = False

    app = create_app(TestConfig)
    return app.test_client()
