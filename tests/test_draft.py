"""Tests for the draft engine."""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from services import constants
from services.constants import FIELDING_POSITIONS
from services.draft import (
    clear_pre_draft,
    draft_player,
    get_draft_board,
    get_pre_draft,
    set_player_starred,
    set_pre_draft,
    should_auto_star,
    snake_draft_index,
    validate_draft_pick,
)
from services.rosters import (
    count_free_agents,
    count_team_players,
    get_starred_player_ids,
    get_team_lineup,
)
from services.schema import event_draft, teams


def _draft(engine, user_id, player_id, **kwargs):
    with engine.begin() as conn:
        return draft_player(conn, user_id, player_id, **kwargs)


def _validate(engine, user_id, player_id):
    with engine.connect() as conn:
        return validate_draft_pick(conn, user_id, player_id)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def test_snake_draft_index_three_drafters():
    """Three drafters pick forward, reverse, forward."""
    order = [snake_draft_index(p, 3) for p in range(9)]
    assert order == [0, 1, 2, 2, 1, 0, 0, 1, 2]


@pytest.mark.parametrize("drafters", [1, 2, 4, 7])
def test_snake_draft_index_alternates_every_round(drafters):
    for round_number in range(4):
        picks = [
            snake_draft_index(round_number * drafters + i, drafters)
            for i in range(drafters)
        ]
        expected = list(range(drafters))
        if round_number % 2 == 1:
            expected.reverse()
        assert picks == expected


def test_snake_draft_index_rejects_empty_order():
    with pytest.raises(ValueError):
        snake_draft_index(0, 0)


def test_should_auto_star_only_first_pick():
    assert should_auto_star(0) is True
    assert should_auto_star(1) is False
    assert should_auto_star(5) is False


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def test_validate_requires_drafting_phase(league, engine):
    uid = league.add_user("Alice")
    pid = league.add_player()

    result = _validate(engine, uid, pid)

    assert result == {
        "valid": False,
        "error": 'Season is in "pre-season" state, not drafting',
    }


def test_validate_requires_turn(drafting_league, engine):
    u1, u2, _ = drafting_league["users"]
    pid = drafting_league["players"][0]

    assert _validate(engine, u2, pid)["error"] == "It is not your turn to draft"
    assert _validate(engine, u1, pid) == {"valid": True}


def test_validate_player_checks(drafting_league, league, engine):
    u1, u2, _ = drafting_league["users"]
    taken = league.add_player(team_id=league.team_id(u2))

    assert _validate(engine, u1, 9999)["error"] == "Player not found"
    assert _validate(engine, u1, taken)["error"] == "Player is already assigned to a team"


def test_validate_team_size_limit(drafting_league, league, engine, monkeypatch):
    monkeypatch.setattr(constants, "TEAM_SIZE", 2)
    u1 = drafting_league["users"][0]
    league.add_players(2, team_id=league.team_id(u1))

    result = _validate(engine, u1, drafting_league["players"][0])

    assert result["error"] == "Team already has 2 players (maximum allowed)"


def test_validate_user_without_team(league, engine):
    uid = league.add_user("Nomad", with_team=False)
    league.set_order([uid])
    league.set_state("drafting", current_drafting_user_id=uid)
    pid = league.add_player()

    assert _validate(engine, uid, pid)["error"] == "User does not have a team"


# ---------------------------------------------------------------------------
# Picks
# ---------------------------------------------------------------------------

def test_full_snake_draft_order(drafting_league, league, engine, rng):
    """Three drafters over three rounds: U1,U2,U3 | U3,U2,U1 | U1,U2,U3."""
    u1, u2, u3 = drafting_league["users"]
    expected = [u1, u2, u3, u3, u2, u1, u1, u2, u3]

    for player_id, drafter in zip(drafting_league["players"], expected):
        assert league.drafter() == drafter
        result = _draft(engine, drafter, player_id, rng=rng)
        assert result["success"] is True

    with engine.connect() as conn:
        for uid in (u1, u2, u3):
            assert count_team_players(conn, league.team_id(uid)) == 3


def test_pick_moves_exactly_one_player(drafting_league, league, engine):
    u1 = drafting_league["users"][0]
    pid = drafting_league["players"][0]
    team_id = league.team_id(u1)

    with engine.connect() as conn:
        free_before = count_free_agents(conn)
        roster_before = count_team_players(conn, team_id)

    _draft(engine, u1, pid)

    with engine.connect() as conn:
        assert count_free_agents(conn) == free_before - 1
        assert count_team_players(conn, team_id) == roster_before + 1
    assert league.team_of(pid) == team_id


def test_first_pick_is_starred_later_picks_are_not(drafting_league, league, engine, rng):
    u1, u2, u3 = drafting_league["users"]
    order = [u1, u2, u3, u3, u2, u1]
    first_pick = {}

    for player_id, drafter in zip(drafting_league["players"], order):
        first_pick.setdefault(drafter, player_id)
        _draft(engine, drafter, player_id, rng=rng)

    with engine.connect() as conn:
        for uid in (u1, u2, u3):
            assert get_starred_player_ids(conn, league.team_id(uid)) == [first_pick[uid]]


def test_pick_result_reports_next_drafter(drafting_league, engine):
    u1, u2, _ = drafting_league["users"]
    pid = drafting_league["players"][0]

    result = _draft(engine, u1, pid)

    assert result["current_drafting_user_id"] == u2
    assert len(result["picks"]) == 1
    pick = result["picks"][0]
    assert pick["player_id"] == pid
    assert pick["pick_number"] == 1
    assert pick["starred"] is True


def test_failed_pick_returns_error_and_changes_nothing(drafting_league, league, engine):
    u2 = drafting_league["users"][1]
    pid = drafting_league["players"][0]

    result = _draft(engine, u2, pid)

    assert result == {"success": False, "error": "It is not your turn to draft"}
    assert league.team_of(pid) is None
    assert league.drafter() == drafting_league["users"][0]


def test_event_failure_aborts_whole_pick(drafting_league, league, engine, monkeypatch):
    u1 = drafting_league["users"][0]
    pid = drafting_league["players"][0]

    def boom(*args, **kwargs):
        raise SQLAlchemyError("event insert failed")

    monkeypatch.setattr("services.draft.create_draft_event", boom)

    with pytest.raises(SQLAlchemyError):
        _draft(engine, u1, pid)

    assert league.team_of(pid) is None
    assert league.drafter() == u1
    with engine.connect() as conn:
        assert get_team_lineup(conn, league.team_id(u1)) == []


def test_pick_numbers_follow_draft_events(drafting_league, engine):
    u1, u2, u3 = drafting_league["users"]
    p = drafting_league["players"]

    _draft(engine, u1, p[0])
    _draft(engine, u2, p[1])
    result = _draft(engine, u3, p[2])

    assert result["picks"][0]["pick_number"] == 3
    with engine.connect() as conn:
        numbers = conn.execute(
            select(event_draft.c.pick_number).order_by(event_draft.c.pick_number)
        ).scalars().all()
    assert numbers == [1, 2, 3]


def test_lineup_slots_unique_for_full_lineup(league, engine, rng):
    uid = league.add_user("Solo")
    league.set_order([uid])
    players = league.add_players(constants.LINEUP_SIZE)
    league.set_state("drafting", current_drafting_user_id=uid)

    for pid in players:
        assert _draft(engine, uid, pid, rng=rng)["success"]

    with engine.connect() as conn:
        lineup = get_team_lineup(conn, league.team_id(uid))
    positions = [r["fielding_position"] for r in lineup]
    orders = [r["batting_order"] for r in lineup]
    assert sorted(positions) == sorted(FIELDING_POSITIONS[:constants.LINEUP_SIZE])
    assert sorted(orders) == list(range(1, constants.LINEUP_SIZE + 1))


def test_player_beyond_lineup_size_gets_no_slot(league, engine, monkeypatch, rng):
    monkeypatch.setattr(constants, "LINEUP_SIZE", 2)
    uid = league.add_user("Solo")
    league.set_order([uid])
    players = league.add_players(3)
    league.set_state("drafting", current_drafting_user_id=uid)

    for pid in players:
        _draft(engine, uid, pid, rng=rng)

    with engine.connect() as conn:
        lineup = get_team_lineup(conn, league.team_id(uid))
        assert count_team_players(conn, league.team_id(uid)) == 3
    assert {r["player_id"] for r in lineup} == set(players[:2])


def test_captain_assigned_once(league, engine):
    u1 = league.add_user("Alice")
    league.set_order([u1])
    plain = league.add_player()
    first_captain = league.add_player(name="Mario", captain=True)
    second_captain = league.add_player(name="Luigi", captain=True)
    league.set_state("drafting", current_drafting_user_id=u1)

    _draft(engine, u1, plain)
    with engine.connect() as conn:
        assert conn.execute(
            select(teams.c.captain_id).where(teams.c.user_id == u1)
        ).scalar_one() is None

    first = _draft(engine, u1, first_captain)
    second = _draft(engine, u1, second_captain)

    assert first["picks"][0]["captain"] is True
    assert second["picks"][0]["captain"] is False
    with engine.connect() as conn:
        assert conn.execute(
            select(teams.c.captain_id).where(teams.c.user_id == u1)
        ).scalar_one() == first_captain


# ---------------------------------------------------------------------------
# Pre-drafts and auto-draft
# ---------------------------------------------------------------------------

def test_set_pre_draft_rules(drafting_league, league, engine):
    u1, u2, _ = drafting_league["users"]
    outsider = league.add_user("Outsider")
    taken = league.add_player(team_id=league.team_id(u1))
    free = drafting_league["players"][0]

    with engine.begin() as conn:
        assert set_pre_draft(conn, u2, 9999)["error"] == "Player not found"
        assert set_pre_draft(conn, u2, taken)["error"] == "Player is already assigned to a team"
        assert set_pre_draft(conn, outsider, free)["error"] == "User is not in the drafting order"
        assert set_pre_draft(conn, u2, free)["success"] is True
        assert get_pre_draft(conn, u2) == free

        assert clear_pre_draft(conn, u2) == {"success": True}
        assert get_pre_draft(conn, u2) is None


def test_set_pre_draft_requires_drafting(league, engine):
    uid = league.add_user("Alice")
    league.set_order([uid])
    pid = league.add_player()

    with engine.begin() as conn:
        result = set_pre_draft(conn, uid, pid)

    assert result["error"] == 'Season is in "pre-season" state, not drafting'


def test_pre_draft_auto_drafts_when_turn_arrives(league, engine):
    u1 = league.add_user("Alice")
    u2 = league.add_user("Bruno")
    league.set_order([u1, u2])
    p1, p2, _ = league.add_players(3)
    league.set_state("drafting", current_drafting_user_id=u1)

    with engine.begin() as conn:
        set_pre_draft(conn, u2, p2)

    result = _draft(engine, u1, p1)

    assert [p["player_id"] for p in result["picks"]] == [p1, p2]
    assert league.team_of(p2) == league.team_id(u2)
    # Snake turn: U2 picks again at the start of round two
    assert result["current_drafting_user_id"] == u2
    with engine.connect() as conn:
        assert get_pre_draft(conn, u2) is None


def test_auto_draft_chains_through_queued_drafters(drafting_league, engine):
    u1, u2, u3 = drafting_league["users"]
    p1, p2, p3 = drafting_league["players"][:3]

    with engine.begin() as conn:
        set_pre_draft(conn, u2, p2)
        set_pre_draft(conn, u3, p3)

    result = _draft(engine, u1, p1)

    assert [p["user_id"] for p in result["picks"]] == [u1, u2, u3]
    assert result["current_drafting_user_id"] == u3


def test_drafted_player_removed_from_other_pre_drafts(drafting_league, engine):
    u1, u2, u3 = drafting_league["users"]
    contested = drafting_league["players"][0]

    with engine.begin() as conn:
        set_pre_draft(conn, u3, contested)

    _draft(engine, u1, contested)

    with engine.connect() as conn:
        assert get_pre_draft(conn, u3) is None


def test_stale_pre_draft_cleared_and_turn_kept(league, engine, monkeypatch):
    monkeypatch.setattr(constants, "TEAM_SIZE", 1)
    u1 = league.add_user("Alice")
    u2 = league.add_user("Bruno")
    league.set_order([u1, u2])
    league.add_player(team_id=league.team_id(u2))
    p1, p2 = league.add_players(2)
    league.set_state("drafting", current_drafting_user_id=u1)

    with engine.begin() as conn:
        set_pre_draft(conn, u2, p2)

    result = _draft(engine, u1, p1)

    assert result["success"] is True
    assert len(result["picks"]) == 1
    assert result["current_drafting_user_id"] == u2
    assert league.team_of(p2) is None
    with engine.connect() as conn:
        assert get_pre_draft(conn, u2) is None


def test_skip_auto_draft_leaves_pre_draft_queued(league, engine):
    u1 = league.add_user("Alice")
    u2 = league.add_user("Bruno")
    league.set_order([u1, u2])
    p1, p2 = league.add_players(2)
    league.set_state("drafting", current_drafting_user_id=u1)

    with engine.begin() as conn:
        set_pre_draft(conn, u2, p2)

    result = _draft(engine, u1, p1, skip_auto_draft=True)

    assert len(result["picks"]) == 1
    assert league.team_of(p2) is None
    with engine.connect() as conn:
        assert get_pre_draft(conn, u2) == p2


# ---------------------------------------------------------------------------
# Stars
# ---------------------------------------------------------------------------

def test_star_toggle_keeps_at_most_one_starred(drafting_league, league, engine):
    u1 = drafting_league["users"][0]
    team_id = league.team_id(u1)
    a = league.add_player(team_id=team_id)
    b = league.add_player(team_id=team_id)

    with engine.begin() as conn:
        assert set_player_starred(conn, u1, a)["is_starred"] is True
        assert get_starred_player_ids(conn, team_id) == [a]

        assert set_player_starred(conn, u1, b)["is_starred"] is True
        assert get_starred_player_ids(conn, team_id) == [b]

        assert set_player_starred(conn, u1, b)["is_starred"] is False
        assert get_starred_player_ids(conn, team_id) == []


def test_star_bench_player_creates_empty_slot(drafting_league, league, engine):
    u1 = drafting_league["users"][0]
    team_id = league.team_id(u1)
    pid = league.add_player(team_id=team_id)

    with engine.begin() as conn:
        set_player_starred(conn, u1, pid)
        lineup = get_team_lineup(conn, team_id)

    assert lineup == [{
        "player_id": pid,
        "fielding_position": None,
        "batting_order": None,
        "is_starred": True,
    }]


def test_star_rejects_other_teams_player(drafting_league, league, engine):
    u1, u2, _ = drafting_league["users"]
    theirs = league.add_player(team_id=league.team_id(u2))

    with engine.begin() as conn:
        result = set_player_starred(conn, u1, theirs)

    assert result == {"success": False, "error": "Player does not belong to your team"}


def test_star_requires_drafting(league, engine):
    uid = league.add_user("Alice")
    pid = league.add_player(team_id=league.team_id(uid))

    with engine.begin() as conn:
        result = set_player_starred(conn, uid, pid)

    assert result["success"] is False
    assert "not drafting" in result["error"]


# ---------------------------------------------------------------------------
# Board
# ---------------------------------------------------------------------------

def test_draft_board(drafting_league, engine):
    u1, u2, _ = drafting_league["users"]
    p = drafting_league["players"]
    _draft(engine, u1, p[0])

    with engine.connect() as conn:
        board = get_draft_board(conn, u2)
        draft_events = conn.execute(
            select(func.count()).select_from(event_draft)
        ).scalar_one()

    assert board["state"] == "drafting"
    assert board["current_drafting_user_id"] == u2
    assert board["picks_made"] == 1 == draft_events
    assert [o["user_id"] for o in board["order"]] == drafting_league["users"]
    assert len(board["free_agents"]) == len(p) - 1
    assert board["pre_draft_player_id"] is None
    assert board["timer"]["running"] is False
