"""
CFB Pick'em - Test Configuration
Application, database and factory fixtures for the test suite.
"""

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from cfb_pickem import create_app
from cfb_pickem import db as _db
from cfb_pickem.models import Game, Pick, User

ADMIN_HEADERS = {"Authorization": "Bearer test-admin-token"}

_ids = itertools.count(1)


def utcnow():
    """Naive UTC now, the form kickoff times are stored in"""
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


@pytest.fixture
def app():
    """Fresh application with an empty in-memory database per test."""
    app = create_app("testing")
    ctx = app.app_context()
    ctx.push()
    yield app
    _db.session.remove()
    _db.drop_all()
    ctx.pop()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def admin_headers():
    return dict(ADMIN_HEADERS)


@pytest.fixture
def make_user(db):
    """Factory for users."""

    def _make(email=None, name=None, **kwargs):
        n = next(_ids)
        user = User(email=email or f"player{n}@example.com", name=name or f"Player {n}", **kwargs)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_game(db):
    """
    Factory for classified games. Games are scheduled two days out unless a
    start time is given or they are created completed.
    """

    def _make(
        home_team="Ohio State",
        away_team="Michigan",
        week=12,
        season=2024,
        spread=-3.0,
        notes=None,
        start_time=None,
        completed=False,
        home_score=None,
        away_score=None,
        **kwargs,
    ):
        if start_time is None:
            offset = timedelta(days=-1) if completed else timedelta(days=2)
            start_time = utcnow() + offset

        game = Game(
            cfb_id=str(400000000 + next(_ids)),
            home_team=home_team,
            away_team=away_team,
            week=week,
            season=season,
            spread=spread,
            notes=notes,
            start_time=start_time,
            completed=completed,
            home_score=home_score,
            away_score=away_score,
            **kwargs,
        )
        game.classify()
        db.session.add(game)
        db.session.commit()
        return game

    return _make


@pytest.fixture
def make_pick(db):
    """Factory for picks written directly, bypassing submission rules."""

    def _make(user, game, picked_team=None, locked_spread=None, is_double_down=False, **kwargs):
        pick = Pick(
            user_id=user.id,
            game_id=game.id,
            picked_team=picked_team or game.home_team,
            locked_spread=game.spread if locked_spread is None else locked_spread,
            is_double_down=is_double_down,
            **kwargs,
        )
        db.session.add(pick)
        db.session.commit()
        return pick

    return _make


def finish_game(db, game, home_score, away_score):
    """Mark a game final with the given score."""
    game.home_score = home_score
    game.away_score = away_score
    game.completed = True
    db.session.commit()
    return game
