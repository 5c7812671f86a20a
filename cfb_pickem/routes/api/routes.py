import logging

from flask import jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from cfb_pickem import db
from cfb_pickem.models import Game, Pick, User
from cfb_pickem.routes.api import bp
from cfb_pickem.utils.cache_utils import cached_route, invalidate_model_cache
from cfb_pickem.utils.pick_rules import (
    validate_removal,
    validate_submission,
    validate_week_picks,
    week_pick_rules,
)
from cfb_pickem.utils.timezone_utils import current_season_year

logger = logging.getLogger(__name__)


def _as_bool(value):
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _season_arg():
    return request.args.get("season", type=int) or current_season_year()


@bp.route("/health")
def health():
    """Liveness check including the database connection"""
    try:
        db.session.execute(text("SELECT 1"))
        return jsonify({"status": "healthy", "database": "connected"})
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return jsonify({"status": "unhealthy", "database": "disconnected"}), 503


@bp.route("/games")
def games():
    """Games for a season, optionally filtered to one week"""
    season = _season_arg()
    week = request.args.get("week", type=int)

    query = Game.query.filter_by(season=season)
    if week is not None:
        query = query.filter_by(week=week)

    games = query.order_by(Game.week, Game.start_time).all()
    return jsonify([game.to_dict(include_picks_count=True) for game in games])


@bp.route("/games/<int:game_id>")
def game_detail(game_id):
    game = db.get_or_404(Game, game_id)
    return jsonify(game.to_dict(include_picks_count=True))


@bp.route("/weeks/<int:season>/<int:week>/rules")
def week_rules(season, week):
    """Pick obligations for a week, derived from its game categories"""
    games = Game.get_games_for_week(season, week)
    return jsonify(
        {
            "season": season,
            "week": week,
            "rules": week_pick_rules(games),
            "games": [
                {
                    "id": g.id,
                    "matchup": f"{g.away_team} @ {g.home_team}",
                    "category": g.category.value,
                    "description": g.description,
                }
                for g in games
            ],
        }
    )


@bp.route("/picks")
def user_picks():
    """A user's picks for a season or a single week"""
    user_id = request.args.get("user_id", type=int)
    if not user_id:
        return jsonify({"error": "user_id is required"}), 400

    user = db.get_or_404(User, user_id)
    season = _season_arg()
    week = request.args.get("week", type=int)

    if week is None:
        picks = (
            Pick.query.join(Game)
            .filter(Pick.user_id == user.id, Game.season == season)
            .order_by(Game.week, Game.start_time)
            .all()
        )
        return jsonify(
            {
                "user": user.to_dict(),
                "season": season,
                "picks": [p.to_dict(include_game=True) for p in picks],
            }
        )

    picks = Pick.get_week_picks(user.id, season, week)
    games = Game.get_games_for_week(season, week)

    return jsonify(
        {
            "user": user.to_dict(),
            "season": season,
            "week": week,
            "picks": [p.to_dict(include_game=True) for p in picks],
            "validation": validate_week_picks(picks, games),
        }
    )


@bp.route("/picks", methods=["POST"])
def submit_pick():
    """Create or update a pick, locking the game's current spread"""
    data = request.get_json(silent=True) or {}

    user_id = data.get("user_id")
    game_id = data.get("game_id")
    picked_team = data.get("picked_team")
    is_double_down = _as_bool(data.get("is_double_down", False))

    if not user_id or not game_id or not picked_team:
        return jsonify({"error": "Missing required fields"}), 400

    game = db.session.get(Game, game_id)
    if not game:
        return jsonify({"error": "Game not found"}), 404

    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        return jsonify({"error": "User not found"}), 404

    existing_pick = Pick.query.filter_by(user_id=user.id, game_id=game.id).first()
    week_picks = Pick.get_week_picks(user.id, game.season, game.week)

    valid, message = validate_submission(
        game, picked_team, is_double_down, week_picks, existing_pick
    )
    if not valid:
        logger.info(f"Rejected pick for user {user.id} game {game.id}: {message}")
        return jsonify({"error": message}), 400

    try:
        if existing_pick:
            pick = existing_pick
            status = 200
        else:
            pick = Pick(user_id=user.id, game_id=game.id)
            db.session.add(pick)
            status = 201

        pick.picked_team = picked_team
        pick.locked_spread = game.spread
        pick.is_double_down = is_double_down

        db.session.commit()

    except IntegrityError:
        db.session.rollback()
        return jsonify({"error": "A pick for this game already exists"}), 409

    invalidate_model_cache("Pick")
    logger.info(
        f"User {user.id} picked {picked_team} ({pick.locked_spread:+g}) in game {game.id}"
        f"{' as double down' if is_double_down else ''}"
    )
    return jsonify(pick.to_dict(include_game=True)), status


@bp.route("/picks", methods=["DELETE"])
def remove_pick():
    user_id = request.args.get("user_id", type=int)
    game_id = request.args.get("game_id", type=int)

    if not user_id or not game_id:
        return jsonify({"error": "Missing user_id or game_id"}), 400

    game = db.session.get(Game, game_id)
    if not game:
        return jsonify({"error": "Game not found"}), 404

    pick = Pick.query.filter_by(user_id=user_id, game_id=game_id).first()
    if not pick:
        return jsonify({"error": "Pick not found"}), 404

    week_picks = Pick.get_week_picks(user_id, game.season, game.week)
    valid, message = validate_removal(pick, week_picks)
    if not valid:
        return jsonify({"error": message}), 400

    deleted = pick.to_dict()
    db.session.delete(pick)
    db.session.commit()
    invalidate_model_cache("Pick")

    return jsonify({"message": "Pick removed successfully", "deleted_pick": deleted})


@bp.route("/leaderboard")
@cached_route(timeout=300, key_prefix="leaderboard")
def leaderboard():
    """Users ordered by running total, with per-season breakdown"""
    season = _season_arg()
    return {"season": season, "leaderboard": User.get_leaderboard(season)}


@bp.route("/users/<int:user_id>/stats")
def user_stats(user_id):
    user = db.get_or_404(User, user_id)
    season = request.args.get("season", type=int)
    return jsonify(
        {"user": user.to_dict(), "season": season, **user.get_season_stats(season)}
    )
