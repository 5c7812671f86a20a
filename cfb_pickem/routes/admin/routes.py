import hmac
import logging
from functools import wraps

from flask import current_app, jsonify, request

from cfb_pickem.routes.admin import bp
from cfb_pickem.utils.data_sync import DataSync
from cfb_pickem.utils.scoring import ScoringEngine
from cfb_pickem.utils.timezone_utils import current_season_year

logger = logging.getLogger(__name__)


def admin_token_required(f):
    """Require ``Authorization: Bearer <ADMIN_TOKEN>``"""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = current_app.config.get("ADMIN_TOKEN")
        if not token:
            return jsonify({"error": "Admin endpoints are disabled"}), 403

        header = request.headers.get("Authorization", "")
        supplied = header[len("Bearer "):] if header.startswith("Bearer ") else ""
        if not supplied or not hmac.compare_digest(supplied, token):
            logger.warning(f"Unauthorized admin request to {request.path}")
            return jsonify({"error": "Unauthorized"}), 401

        return f(*args, **kwargs)

    return decorated_function


def _request_flag(name):
    value = request.args.get(name)
    if value is None:
        value = (request.get_json(silent=True) or {}).get(name, False)
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


@bp.route("/sync", methods=["POST"])
@admin_token_required
def sync_games():
    """Sync one week (or the postseason) from CollegeFootballData, then score"""
    season = request.args.get("season", type=int) or current_season_year()
    postseason = _request_flag("postseason")

    data_sync = DataSync()
    if postseason:
        success, message = data_sync.sync_postseason(season)
    else:
        week = request.args.get("week", type=int) or data_sync.get_current_week(season)
        success, message = data_sync.sync_week(season, week)

    if not success:
        return jsonify({"success": False, "error": message}), 502

    points = ScoringEngine().calculate_points()

    return jsonify(
        {
            "success": True,
            "message": message,
            "stats": data_sync.last_sync_stats,
            "points_calculation": points,
        }
    )


@bp.route("/calculate-points", methods=["POST"])
@admin_token_required
def calculate_points():
    """Score completed picks, apply missing pick penalties, send result emails"""
    result = ScoringEngine().calculate_points(notify=not _request_flag("skip_emails"))
    return jsonify(
        {
            "message": f"Updated {result['updated_picks']} picks with points",
            **result,
        }
    )


@bp.route("/audit-scores")
@admin_token_required
def audit_scores():
    return jsonify(ScoringEngine().audit_user_totals())


@bp.route("/recompute-totals", methods=["POST"])
@admin_token_required
def recompute_totals():
    result = ScoringEngine().recompute_user_totals()
    return jsonify({"message": f"Recomputed {result['updated_users']} users", **result})


@bp.route("/fix-special-picks", methods=["POST"])
@admin_token_required
def fix_special_picks():
    """Force double-down on special games and rescore bowls/playoffs by tier"""
    dry_run = _request_flag("dry_run")
    result = ScoringEngine().fix_special_game_picks(dry_run=dry_run)
    return jsonify(
        {
            "message": "Dry run complete, no changes made" if dry_run else "Special game picks fixed",
            **result,
        }
    )


@bp.route("/diagnose-bowl-picks")
@admin_token_required
def diagnose_bowl_picks():
    return jsonify(ScoringEngine().diagnose_tiered_picks())


@bp.route("/scheduler", methods=["GET", "POST"])
@admin_token_required
def scheduler():
    """Scheduler status, or run/pause/resume a job"""
    from cfb_pickem.services.scheduler_service import scheduler_service

    if request.method == "GET":
        return jsonify(scheduler_service.get_status())

    data = request.get_json(silent=True) or {}
    action = data.get("action", "run")
    job = data.get("job", "live")

    if action == "run":
        success, message = scheduler_service.force_sync(job)
    elif action == "pause":
        success, message = scheduler_service.pause_job(job)
    elif action == "resume":
        success, message = scheduler_service.resume_job(job)
    else:
        return jsonify({"error": f"Unknown action: {action}"}), 400

    return jsonify({"success": success, "message": message}), 200 if success else 400
