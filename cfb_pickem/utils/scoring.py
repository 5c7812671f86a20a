"""
Scoring Engine for CFB Pick'em

This module is the only place that decides who covered the spread and how
many points a pick is worth. Everything that needs either answer (the games
API, the points batch, the repair commands) goes through it.

Scoring rules:
    Regular, championship and Army-Navy games use the double-down table
        win: +2 double-down / +1 normal
        loss or push: -1 double-down / 0 normal
    Bowl and playoff games are scored by tier, the double-down flag is ignored
        PREMIUM (New Year's Six and playoff): +2 win, -1 loss or push
        STANDARD (every other bowl): +1 win, 0 loss or push
    Missing a PREMIUM bowl or playoff pick costs 1 point.

User.total_score is a running sum. Every change to a pick's points is written
in the same transaction as the matching increment to the user's total.
"""

import logging
from collections import namedtuple
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from cfb_pickem import db
from cfb_pickem.models import Game, Pick, User
from cfb_pickem.models.pick import (
    NO_PICK,
    RESULT_LOSS,
    RESULT_NO_PICK,
    RESULT_PUSH,
    RESULT_WIN,
)
from cfb_pickem.utils.game_classification import (
    SPECIAL_CATEGORIES,
    TIERED_CATEGORIES,
    BowlTier,
    GameCategory,
    is_tiered,
    tier_for,
)

logger = logging.getLogger(__name__)

PUSH = "Push"
MISSING_PICK_PENALTY = -1

ScoreOutcome = namedtuple("ScoreOutcome", ["points", "result", "winner", "bowl_tier"])

ScoredPick = namedtuple(
    "ScoredPick",
    [
        "pick_id",
        "user_id",
        "game_id",
        "picked_team",
        "is_double_down",
        "points",
        "result",
        "winner",
    ],
)


def spread_winner(home_score, away_score, spread, home_team, away_team):
    """
    Determine who covered the spread.

    The spread is stored from the home team's perspective, negative when the
    home team is favored, so the home team covers when
    ``home_score + spread > away_score``.

    Returns the covering team's name, or "Push" on an exact tie.
    """
    adjusted = home_score + spread

    if adjusted > away_score:
        return home_team
    if adjusted < away_score:
        return away_team
    return PUSH


def compute_points(category, bowl_tier, is_win, is_push, is_double_down):
    """Points for a single pick outcome, see the module docstring for the table"""
    if is_tiered(category):
        if bowl_tier is not None and BowlTier(bowl_tier) == BowlTier.PREMIUM:
            return 2 if is_win and not is_push else -1
        return 1 if is_win and not is_push else 0

    if is_push:
        return -1 if is_double_down else 0

    if is_win:
        return 2 if is_double_down else 1

    return -1 if is_double_down else 0


def result_label(is_win, is_push):
    if is_push:
        return RESULT_PUSH
    return RESULT_WIN if is_win else RESULT_LOSS


def score_pick(pick, game=None, is_double_down=None):
    """
    Score one pick against its completed game.

    Always uses the spread locked on the pick, never the game's current line.
    ``is_double_down`` overrides the pick's stored flag when given.
    Returns None when the game has no final score yet.
    """
    game = game or pick.game
    if game is None or not game.has_final_score:
        return None

    if is_double_down is None:
        is_double_down = pick.is_double_down

    winner = spread_winner(
        game.home_score,
        game.away_score,
        pick.locked_spread,
        game.home_team,
        game.away_team,
    )
    is_push = winner == PUSH
    is_win = not is_push and winner == pick.picked_team

    bowl_tier = tier_for(game.category, game.notes)
    points = compute_points(game.category, bowl_tier, is_win, is_push, is_double_down)

    return ScoreOutcome(points, result_label(is_win, is_push), winner, bowl_tier)


class ScoringEngine:
    """Batch scoring, penalties and score repair over the database"""

    def score_completed_picks(self):
        """
        Score every unscored pick whose game is final.

        Each pick is claimed with ``UPDATE ... WHERE points IS NULL`` and the
        user's total is incremented in the same commit, so re-running (or an
        overlapping run) never scores a pick twice. A failure on one pick is
        rolled back and logged; the rest of the batch continues.
        """
        candidates = (
            Pick.query.join(Game)
            .filter(
                Pick.points.is_(None),
                Game.completed.is_(True),
                Game.home_score.isnot(None),
                Game.away_score.isnot(None),
            )
            .order_by(Game.start_time, Pick.id)
            .all()
        )

        summary = {
            "processed": len(candidates),
            "scored": 0,
            "skipped": 0,
            "failed": 0,
            "points_awarded": 0,
            "scored_picks": [],
        }

        if not candidates:
            return summary

        logger.info(f"Processing {len(candidates)} picks for point calculation")

        for pick in candidates:
            pick_id = pick.id
            try:
                outcome = score_pick(pick)
                if outcome is None:
                    summary["skipped"] += 1
                    continue

                claimed = Pick.query.filter(
                    Pick.id == pick_id, Pick.points.is_(None)
                ).update(
                    {
                        Pick.points: outcome.points,
                        Pick.result: outcome.result,
                        Pick.updated_at: datetime.now(timezone.utc),
                    },
                    synchronize_session=False,
                )

                if not claimed:
                    # Scored by another run since we selected it
                    db.session.rollback()
                    summary["skipped"] += 1
                    continue

                User.adjust_total_score(pick.user_id, outcome.points)
                scored = ScoredPick(
                    pick_id,
                    pick.user_id,
                    pick.game_id,
                    pick.picked_team,
                    pick.is_double_down,
                    outcome.points,
                    outcome.result,
                    outcome.winner,
                )
                db.session.commit()

            except Exception as e:
                db.session.rollback()
                summary["failed"] += 1
                logger.error(f"Failed to score pick {pick_id}: {e}", exc_info=True)
                continue

            summary["scored"] += 1
            summary["points_awarded"] += outcome.points
            summary["scored_picks"].append(scored)

            logger.info(
                f"Pick {pick_id}: user {scored.user_id} picked {scored.picked_team} "
                f"({'DOUBLE DOWN' if scored.is_double_down else 'NORMAL'}) - "
                f"spread winner: {scored.winner} - {scored.result} - points: {scored.points}"
            )

        if summary["scored"]:
            _invalidate_score_caches()

        logger.info(
            f"Scored {summary['scored']} picks ({summary['points_awarded']} points), "
            f"skipped {summary['skipped']}, failed {summary['failed']}"
        )
        return summary

    def apply_missing_pick_penalties(self):
        """
        Penalize active users who skipped a completed PREMIUM bowl or playoff
        game.

        A NO_PICK pick worth -1 is created and the user's total decremented in
        one commit. The pick row itself marks the penalty as applied, and the
        (user, game) unique constraint rejects a concurrent duplicate.
        """
        summary = {"games_checked": 0, "penalties": 0, "failed": 0}

        games = Game.query.filter(
            Game.completed.is_(True),
            Game.category.in_(list(TIERED_CATEGORIES)),
        ).all()
        premium_games = [g for g in games if g.bowl_tier == BowlTier.PREMIUM]
        if not premium_games:
            return summary

        users = User.query.filter_by(is_active=True).all()

        for game in premium_games:
            summary["games_checked"] += 1
            game_id = game.id
            locked_spread = game.spread
            picked_user_ids = self._picked_user_ids(game_id)

            for user in users:
                user_id = user.id
                if user_id in picked_user_ids:
                    continue

                try:
                    db.session.add(
                        Pick(
                            user_id=user_id,
                            game_id=game_id,
                            picked_team=NO_PICK,
                            locked_spread=locked_spread,
                            is_double_down=True,
                            points=MISSING_PICK_PENALTY,
                            result=RESULT_NO_PICK,
                        )
                    )
                    db.session.flush()
                    User.adjust_total_score(user_id, MISSING_PICK_PENALTY)
                    db.session.commit()

                except IntegrityError:
                    db.session.rollback()
                    logger.info(
                        f"User {user_id} already has a pick for game {game_id}, no penalty"
                    )
                    continue
                except Exception as e:
                    db.session.rollback()
                    summary["failed"] += 1
                    logger.error(
                        f"Failed to apply missing pick penalty for user {user_id} "
                        f"game {game_id}: {e}",
                        exc_info=True,
                    )
                    continue

                summary["penalties"] += 1
                logger.info(
                    f"Missing pick penalty: user {user_id} game {game_id} "
                    f"({MISSING_PICK_PENALTY} point)"
                )

        if summary["penalties"]:
            _invalidate_score_caches()

        return summary

    def calculate_points(self, notify=True):
        """
        Score newly completed picks, apply missing-pick penalties, then send
        result emails. Email delivery happens after every score commit and
        cannot undo it.
        """
        scoring = self.score_completed_picks()
        penalties = self.apply_missing_pick_penalties()

        emails_sent = 0
        if notify and scoring["scored_picks"]:
            from cfb_pickem.utils.email_service import send_game_results

            try:
                emails_sent = send_game_results(scoring["scored_picks"])
            except Exception as e:
                logger.error(f"Failed to send game result emails: {e}", exc_info=True)

        return {
            "updated_picks": scoring["scored"],
            "skipped_picks": scoring["skipped"],
            "failed_picks": scoring["failed"],
            "total_points_awarded": scoring["points_awarded"],
            "missing_pick_penalties": penalties["penalties"],
            "emails_sent": emails_sent,
        }

    def audit_user_totals(self):
        """Compare each user's running total with the sum of their pick points"""
        computed = dict(
            db.session.query(Pick.user_id, db.func.coalesce(db.func.sum(Pick.points), 0))
            .filter(Pick.points.isnot(None))
            .group_by(Pick.user_id)
            .all()
        )

        users = []
        for user in User.query.order_by(User.id).all():
            calculated = int(computed.get(user.id, 0))
            discrepancy = user.total_score - calculated
            users.append(
                {
                    "id": user.id,
                    "name": user.display_name,
                    "email": user.email,
                    "stored_total": user.total_score,
                    "calculated_total": calculated,
                    "discrepancy": discrepancy,
                    "has_discrepancy": discrepancy != 0,
                }
            )

        users.sort(key=lambda u: abs(u["discrepancy"]), reverse=True)

        return {
            "summary": {
                "total_users": len(users),
                "users_with_discrepancies": sum(1 for u in users if u["has_discrepancy"]),
                "total_discrepancy": sum(u["discrepancy"] for u in users),
            },
            "users": users,
        }

    def recompute_user_totals(self):
        """
        Disaster recovery: overwrite every user's running total with the sum
        of their scored picks. Not part of normal operation.
        """
        audit = self.audit_user_totals()
        updated = 0

        try:
            for entry in audit["users"]:
                if not entry["has_discrepancy"]:
                    continue
                User.query.filter(User.id == entry["id"]).update(
                    {User.total_score: entry["calculated_total"]},
                    synchronize_session=False,
                )
                updated += 1
                logger.warning(
                    f"Recomputed total for user {entry['id']}: "
                    f"{entry['stored_total']} -> {entry['calculated_total']}"
                )
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        if updated:
            _invalidate_score_caches()

        logger.info(f"Recomputed totals for {updated} users")
        return {"updated_users": updated, "checked_users": len(audit["users"])}

    def diagnose_tiered_picks(self):
        """Stored vs correct points for every scored bowl/playoff pick"""
        picks = (
            Pick.query.join(Game)
            .filter(
                Game.category.in_(list(TIERED_CATEGORIES)),
                Game.completed.is_(True),
                Game.home_score.isnot(None),
                Game.away_score.isnot(None),
                Pick.picked_team != NO_PICK,
            )
            .order_by(Game.start_time.desc())
            .all()
        )

        diagnostics = []
        for pick in picks:
            game = pick.game
            outcome = score_pick(pick, game)
            diagnostics.append(
                {
                    "pick_id": pick.id,
                    "user_id": pick.user_id,
                    "game": f"{game.away_team} @ {game.home_team}",
                    "category": game.category.value,
                    "bowl_tier": outcome.bowl_tier.value if outcome.bowl_tier else None,
                    "picked_team": pick.picked_team,
                    "locked_spread": pick.locked_spread,
                    "spread_winner": outcome.winner,
                    "result": outcome.result,
                    "is_double_down": pick.is_double_down,
                    "current_points": pick.points,
                    "correct_points": outcome.points,
                    "is_correct": pick.points == outcome.points,
                }
            )

        incorrect = [d for d in diagnostics if not d["is_correct"]]
        by_tier = {}
        for tier in BowlTier:
            tier_rows = [d for d in diagnostics if d["bowl_tier"] == tier.value]
            by_tier[tier.value] = {
                "total": len(tier_rows),
                "incorrect": sum(1 for d in tier_rows if not d["is_correct"]),
            }

        return {
            "summary": {
                "total_picks": len(diagnostics),
                "issues_found": len(incorrect),
                "by_tier": by_tier,
            },
            "incorrect_picks": incorrect,
            "all_picks": diagnostics,
        }

    def fix_special_game_picks(self, dry_run=False):
        """
        Repair special-game picks after a rule change.

        1. Force is_double_down on every championship, bowl, playoff and
           Army-Navy pick.
        2. Rescore already scored special-game picks as double-downs (tier
           scoring for bowls and playoff games) and move each user's total
           by the difference.
        3. Apply missing-pick penalties for PREMIUM games.
        """
        results = {"dry_run": dry_run}

        # Step 1: mandatory double-down flags
        flag_ids = [
            pick_id
            for (pick_id,) in db.session.query(Pick.id)
            .join(Game)
            .filter(
                Game.category.in_(list(SPECIAL_CATEGORIES)),
                Pick.is_double_down.is_(False),
            )
        ]
        if flag_ids and not dry_run:
            try:
                Pick.query.filter(Pick.id.in_(flag_ids)).update(
                    {Pick.is_double_down: True}, synchronize_session=False
                )
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
        results["double_down_flags_fixed"] = len(flag_ids)

        # Step 2: rescore with the mandatory double-down applied
        picks = (
            Pick.query.join(Game)
            .filter(
                Game.category.in_(list(SPECIAL_CATEGORIES)),
                Game.completed.is_(True),
                Game.home_score.isnot(None),
                Game.away_score.isnot(None),
                Pick.points.isnot(None),
                Pick.picked_team != NO_PICK,
            )
            .order_by(Pick.id)
            .all()
        )

        rescored = 0
        failed = 0
        user_changes = {}
        for pick in picks:
            pick_id = pick.id
            user_id = pick.user_id
            try:
                outcome = score_pick(pick, is_double_down=True)
                delta = outcome.points - pick.points
                if delta == 0 and pick.result == outcome.result:
                    continue

                if not dry_run:
                    Pick.query.filter(Pick.id == pick_id).update(
                        {
                            Pick.points: outcome.points,
                            Pick.result: outcome.result,
                            Pick.is_double_down: True,
                        },
                        synchronize_session=False,
                    )
                    User.adjust_total_score(user_id, delta)
                    db.session.commit()

            except Exception as e:
                db.session.rollback()
                failed += 1
                logger.error(f"Failed to rescore pick {pick_id}: {e}", exc_info=True)
                continue

            rescored += 1
            user_changes[user_id] = user_changes.get(user_id, 0) + delta
            logger.info(
                f"Rescored pick {pick_id} for user {user_id}: {outcome.result}, "
                f"{delta:+d} points"
            )

        results["picks_rescored"] = rescored
        results["failed"] = failed
        results["user_score_changes"] = [
            {"user_id": user_id, "change": change}
            for user_id, change in user_changes.items()
            if change
        ]

        # Step 3: missing pick penalties
        if dry_run:
            results["missing_pick_penalties"] = self._count_missing_penalties()
        else:
            results["missing_pick_penalties"] = self.apply_missing_pick_penalties()[
                "penalties"
            ]
            if rescored:
                _invalidate_score_caches()

        return results

    @staticmethod
    def _picked_user_ids(game_id):
        return {
            user_id
            for (user_id,) in db.session.query(Pick.user_id).filter(Pick.game_id == game_id)
        }

    def _count_missing_penalties(self):
        games = Game.query.filter(
            Game.completed.is_(True),
            Game.category.in_(list(TIERED_CATEGORIES)),
        ).all()
        user_ids = [u.id for u in User.query.filter_by(is_active=True).all()]

        missing = 0
        for game in games:
            if game.bowl_tier != BowlTier.PREMIUM:
                continue
            picked = self._picked_user_ids(game.id)
            missing += sum(1 for user_id in user_ids if user_id not in picked)
        return missing


def _invalidate_score_caches():
    from cfb_pickem.utils.cache_utils import invalidate_model_cache

    invalidate_model_cache("Pick")
    invalidate_model_cache("User")


__all__ = [
    "PUSH",
    "MISSING_PICK_PENALTY",
    "GameCategory",
    "ScoreOutcome",
    "ScoredPick",
    "ScoringEngine",
    "compute_points",
    "result_label",
    "score_pick",
    "spread_winner",
]
