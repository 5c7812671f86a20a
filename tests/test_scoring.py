"""
Tests for the scoring engine: spread winner, points table, batch scoring,
missing pick penalties and score repair.
"""

from unittest.mock import patch

import pytest
from conftest import finish_game

from cfb_pickem.models import Pick, User
from cfb_pickem.models.pick import NO_PICK
from cfb_pickem.utils import scoring
from cfb_pickem.utils.game_classification import BowlTier, GameCategory
from cfb_pickem.utils.scoring import (
    PUSH,
    ScoringEngine,
    compute_points,
    score_pick,
    spread_winner,
)


class TestSpreadWinner:
    """Home-perspective spread, negative when the home team is favored."""

    def test_exact_cover_is_push(self):
        assert spread_winner(24, 21, -3, "Home", "Away") == PUSH

    def test_half_point_home_covers(self):
        assert spread_winner(24, 21, -2.5, "Home", "Away") == "Home"

    def test_favorite_wins_but_does_not_cover(self):
        assert spread_winner(24, 21, -7, "Home", "Away") == "Away"

    def test_home_underdog_covers_in_loss(self):
        assert spread_winner(20, 24, 6.5, "Home", "Away") == "Home"

    def test_pick_em_tie_is_push(self):
        assert spread_winner(17, 17, 0, "Home", "Away") == PUSH


REGULAR_TABLE = [
    # is_win, is_push, is_double_down, points
    (True, False, True, 2),
    (True, False, False, 1),
    (False, False, True, -1),
    (False, False, False, 0),
    (False, True, True, -1),
    (False, True, False, 0),
]

TIER_TABLE = [
    # tier, is_win, is_push, points
    (BowlTier.PREMIUM, True, False, 2),
    (BowlTier.PREMIUM, False, False, -1),
    (BowlTier.PREMIUM, False, True, -1),
    (BowlTier.STANDARD, True, False, 1),
    (BowlTier.STANDARD, False, False, 0),
    (BowlTier.STANDARD, False, True, 0),
]


class TestComputePoints:
    """Every combination of the points tables."""

    @pytest.mark.parametrize(
        "category",
        [GameCategory.REGULAR, GameCategory.CHAMPIONSHIP, GameCategory.ARMY_NAVY],
    )
    @pytest.mark.parametrize("is_win,is_push,is_double_down,expected", REGULAR_TABLE)
    def test_double_down_table(self, category, is_win, is_push, is_double_down, expected):
        assert compute_points(category, None, is_win, is_push, is_double_down) == expected

    @pytest.mark.parametrize("category", [GameCategory.BOWL, GameCategory.PLAYOFF])
    @pytest.mark.parametrize("tier,is_win,is_push,expected", TIER_TABLE)
    @pytest.mark.parametrize("is_double_down", [True, False])
    def test_tier_table_ignores_double_down(
        self, category, tier, is_win, is_push, expected, is_double_down
    ):
        assert compute_points(category, tier, is_win, is_push, is_double_down) == expected

    def test_bowl_without_tier_scores_standard(self):
        assert compute_points(GameCategory.BOWL, None, True, False, True) == 1


class TestScorePick:
    def test_ohio_state_michigan_push(self, make_user, make_game, make_pick, db):
        user = make_user()
        game = make_game(home_team="Ohio State", away_team="Michigan", spread=-3, notes="", week=12)
        pick = make_pick(user, game, picked_team="Michigan", locked_spread=-3)
        finish_game(db, game, 30, 27)

        outcome = score_pick(pick)

        assert outcome.winner == PUSH
        assert outcome.points == 0
        assert outcome.result == "push"

    def test_unfinished_game_is_not_scored(self, make_user, make_game, make_pick):
        pick = make_pick(make_user(), make_game())
        assert score_pick(pick) is None


class TestScoreCompletedPicks:
    """Batch scoring with running totals."""

    def test_scores_pick_and_updates_total(self, make_user, make_game, make_pick, db):
        user = make_user()
        game = make_game(spread=-3)
        make_pick(user, game, picked_team="Ohio State", is_double_down=True)
        finish_game(db, game, 35, 20)

        summary = ScoringEngine().score_completed_picks()

        assert summary["scored"] == 1
        assert summary["points_awarded"] == 2
        pick = Pick.query.one()
        assert pick.points == 2
        assert pick.result == "win"
        assert db.session.get(User, user.id).total_score == 2

    def test_second_run_is_noop(self, make_user, make_game, make_pick, db):
        user = make_user()
        game = make_game(spread=-3)
        make_pick(user, game, picked_team="Ohio State")
        finish_game(db, game, 35, 20)

        engine = ScoringEngine()
        engine.score_completed_picks()
        second = engine.score_completed_picks()

        assert second["processed"] == 0
        assert db.session.get(User, user.id).total_score == 1

    def test_locked_spread_beats_line_movement(self, make_user, make_game, make_pick, db):
        user = make_user()
        game = make_game(spread=-3)
        make_pick(user, game, picked_team="Ohio State", locked_spread=-3)

        game.spread = -7
        finish_game(db, game, 28, 23)

        ScoringEngine().score_completed_picks()

        pick = Pick.query.one()
        # 28 - 3 > 23 covers the locked line, 28 - 7 < 23 would not
        assert pick.result == "win"
        assert pick.points == 1

    def test_skips_completed_game_without_scores(self, make_user, make_game, make_pick, db):
        user = make_user()
        game = make_game()
        make_pick(user, game)
        game.completed = True
        db.session.commit()

        summary = ScoringEngine().score_completed_picks()

        assert summary["processed"] == 0
        assert Pick.query.one().points is None

    def test_failure_does_not_stop_batch(self, make_user, make_game, make_pick, db):
        first, second = make_user(), make_user()
        game = make_game(spread=-3)
        make_pick(first, game, picked_team="Ohio State")
        make_pick(second, game, picked_team="Ohio State")
        finish_game(db, game, 35, 20)

        real_score_pick = scoring.score_pick
        calls = []

        def flaky(pick, game=None):
            calls.append(pick.id)
            if len(calls) == 1:
                raise ValueError("malformed game")
            return real_score_pick(pick, game)

        with patch.object(scoring, "score_pick", side_effect=flaky):
            summary = ScoringEngine().score_completed_picks()

        assert summary["failed"] == 1
        assert summary["scored"] == 1
        totals = sorted(u.total_score for u in User.query.all())
        assert totals == [0, 1]

    def test_premium_bowl_uses_tier_scoring(self, make_user, make_game, make_pick, db):
        user = make_user()
        game = make_game(
            home_team="Georgia", away_team="Notre Dame", week=16, spread=-1.5, notes="Sugar Bowl"
        )
        make_pick(user, game, picked_team="Georgia", is_double_down=True)
        finish_game(db, game, 10, 23)

        ScoringEngine().score_completed_picks()

        assert Pick.query.one().points == -1
        assert db.session.get(User, user.id).total_score == -1

    def test_pick_scored_by_overlapping_run_is_skipped(self, make_user, make_game, make_pick, db):
        user = make_user()
        game = make_game(spread=-3)
        pick = make_pick(user, game, picked_team="Ohio State")
        finish_game(db, game, 35, 20)
        pick_id, user_id = pick.id, user.id

        real_score_pick = scoring.score_pick

        def scored_elsewhere_first(pick, game=None):
            # Another run claims the pick after this run selected it
            Pick.query.filter(Pick.id == pick_id).update(
                {Pick.points: 1, Pick.result: "win"}, synchronize_session=False
            )
            User.adjust_total_score(user_id, 1)
            db.session.commit()
            return real_score_pick(pick, game)

        with patch.object(scoring, "score_pick", side_effect=scored_elsewhere_first):
            summary = ScoringEngine().score_completed_picks()

        assert summary["processed"] == 1
        assert summary["scored"] == 0
        assert summary["skipped"] == 1
        assert summary["scored_picks"] == []
        assert db.session.get(User, user_id).total_score == 1

    def test_returns_scored_picks_for_notifications(self, make_user, make_game, make_pick, db):
        user = make_user()
        game = make_game(spread=-3)
        make_pick(user, game, picked_team="Michigan")
        finish_game(db, game, 35, 20)

        summary = ScoringEngine().score_completed_picks()

        scored = summary["scored_picks"][0]
        assert scored.user_id == user.id
        assert scored.result == "loss"
        assert scored.winner == "Ohio State"


class TestMissingPickPenalties:
    def _premium_bowl(self, make_game, db, notes="Orange Bowl"):
        game = make_game(home_team="Penn State", away_team="Boise State", week=16, spread=-11, notes=notes)
        return finish_game(db, game, 31, 14)

    def test_penalizes_user_without_pick(self, make_user, make_game, db):
        user = make_user()
        game = self._premium_bowl(make_game, db)

        summary = ScoringEngine().apply_missing_pick_penalties()

        assert summary["penalties"] == 1
        pick = Pick.query.filter_by(user_id=user.id, game_id=game.id).one()
        assert pick.picked_team == NO_PICK
        assert pick.points == -1
        assert pick.result == "no_pick"
        assert pick.locked_spread == -11
        assert db.session.get(User, user.id).total_score == -1

    def test_is_idempotent(self, make_user, make_game, db):
        user = make_user()
        self._premium_bowl(make_game, db)

        engine = ScoringEngine()
        engine.apply_missing_pick_penalties()
        second = engine.apply_missing_pick_penalties()

        assert second["penalties"] == 0
        assert Pick.query.count() == 1
        assert db.session.get(User, user.id).total_score == -1

    def test_penalty_inserted_by_overlapping_run_is_not_repeated(self, make_user, make_game, db):
        user = make_user()
        self._premium_bowl(make_game, db)
        engine = ScoringEngine()
        engine.apply_missing_pick_penalties()

        # The lookup misses the penalty row, the unique constraint still holds
        with patch.object(ScoringEngine, "_picked_user_ids", return_value=set()):
            second = engine.apply_missing_pick_penalties()

        assert second["games_checked"] == 1
        assert second["penalties"] == 0
        assert second["failed"] == 0
        assert Pick.query.count() == 1
        assert db.session.get(User, user.id).total_score == -1

    def test_user_with_pick_is_not_penalized(self, make_user, make_game, make_pick, db):
        user = make_user()
        game = self._premium_bowl(make_game, db)
        make_pick(user, game, picked_team="Penn State", is_double_down=True)

        assert ScoringEngine().apply_missing_pick_penalties()["penalties"] == 0

    def test_standard_bowl_has_no_penalty(self, make_user, make_game, db):
        make_user()
        self._premium_bowl(make_game, db, notes="Las Vegas Bowl")

        assert ScoringEngine().apply_missing_pick_penalties()["penalties"] == 0
        assert Pick.query.count() == 0

    def test_inactive_users_are_skipped(self, make_user, make_game, db):
        make_user(is_active=False)
        self._premium_bowl(make_game, db)

        assert ScoringEngine().apply_missing_pick_penalties()["penalties"] == 0


class TestAuditAndRecompute:
    def test_audit_finds_drift_and_recompute_fixes_it(self, make_user, make_game, make_pick, db):
        user = make_user()
        game = make_game(spread=-3)
        make_pick(user, game, picked_team="Ohio State")
        finish_game(db, game, 35, 20)

        engine = ScoringEngine()
        engine.score_completed_picks()

        user = db.session.get(User, user.id)
        user.total_score = 10
        db.session.commit()

        audit = engine.audit_user_totals()
        assert audit["summary"]["users_with_discrepancies"] == 1
        assert audit["users"][0]["calculated_total"] == 1
        assert audit["users"][0]["discrepancy"] == 9

        result = engine.recompute_user_totals()
        assert result["updated_users"] == 1
        assert db.session.get(User, user.id).total_score == 1
        assert engine.audit_user_totals()["summary"]["users_with_discrepancies"] == 0


class TestCalculatePoints:
    def test_scores_then_penalizes(self, make_user, make_game, make_pick, db):
        picker, skipper = make_user(), make_user()
        game = make_game(home_team="Texas", away_team="Arizona State", week=16, spread=-13.5, notes="Peach Bowl")
        make_pick(picker, game, picked_team="Arizona State", is_double_down=True)
        finish_game(db, game, 39, 31)

        result = ScoringEngine().calculate_points()

        assert result["updated_picks"] == 1
        assert result["missing_pick_penalties"] == 1
        assert result["emails_sent"] == 0  # SMTP not configured in tests
        assert db.session.get(User, picker.id).total_score == 2
        assert db.session.get(User, skipper.id).total_score == -1


class TestFixSpecialGamePicks:
    def _scored_standard_bowl_pick(self, make_user, make_game, make_pick, db):
        user = make_user()
        game = make_game(home_team="Memphis", away_team="West Virginia", week=16, spread=-4, notes="Frisco Bowl")
        finish_game(db, game, 42, 37)
        # Scored under the old double-down table: +2 instead of +1
        make_pick(user, game, picked_team="Memphis", is_double_down=False, points=2, result="win")
        User.adjust_total_score(user.id, 2)
        db.session.commit()
        return user

    def test_dry_run_changes_nothing(self, make_user, make_game, make_pick, db):
        user = self._scored_standard_bowl_pick(make_user, make_game, make_pick, db)

        result = ScoringEngine().fix_special_game_picks(dry_run=True)

        assert result["double_down_flags_fixed"] == 1
        assert result["picks_rescored"] == 1
        assert result["user_score_changes"] == [{"user_id": user.id, "change": -1}]
        pick = Pick.query.one()
        assert pick.points == 2
        assert pick.is_double_down is False

    def test_rescores_and_adjusts_total(self, make_user, make_game, make_pick, db):
        user = self._scored_standard_bowl_pick(make_user, make_game, make_pick, db)

        ScoringEngine().fix_special_game_picks()

        pick = Pick.query.one()
        assert pick.points == 1
        assert pick.is_double_down is True
        assert db.session.get(User, user.id).total_score == 1

    def _scored_championship_pick(self, make_user, make_game, make_pick, db):
        user = make_user()
        game = make_game(home_team="Georgia", away_team="Texas", week=15, spread=-3, notes="SEC Championship")
        make_pick(user, game, picked_team="Georgia", is_double_down=False)
        finish_game(db, game, 30, 20)
        ScoringEngine().score_completed_picks()
        return user

    def test_scored_championship_pick_rescored_as_double_down(
        self, make_user, make_game, make_pick, db
    ):
        user = self._scored_championship_pick(make_user, make_game, make_pick, db)
        assert Pick.query.one().points == 1

        result = ScoringEngine().fix_special_game_picks()

        pick = Pick.query.one()
        assert pick.is_double_down is True
        assert pick.points == 2
        assert pick.points == score_pick(pick).points
        assert result["picks_rescored"] == 1
        assert result["user_score_changes"] == [{"user_id": user.id, "change": 1}]
        assert db.session.get(User, user.id).total_score == 2

    def test_dry_run_reports_championship_change(self, make_user, make_game, make_pick, db):
        user = self._scored_championship_pick(make_user, make_game, make_pick, db)

        result = ScoringEngine().fix_special_game_picks(dry_run=True)

        assert result["user_score_changes"] == [{"user_id": user.id, "change": 1}]
        assert Pick.query.one().points == 1
        assert db.session.get(User, user.id).total_score == 1

    def test_bad_row_does_not_stop_repair(self, make_user, make_game, make_pick, db):
        self._scored_standard_bowl_pick(make_user, make_game, make_pick, db)
        self._scored_standard_bowl_pick(make_user, make_game, make_pick, db)

        real_score_pick = scoring.score_pick
        calls = []

        def flaky(pick, game=None, is_double_down=None):
            calls.append(pick.id)
            if len(calls) == 1:
                raise ValueError("malformed game")
            return real_score_pick(pick, game, is_double_down)

        with patch.object(scoring, "score_pick", side_effect=flaky):
            result = ScoringEngine().fix_special_game_picks()

        assert result["failed"] == 1
        assert result["picks_rescored"] == 1
        assert sorted(p.points for p in Pick.query.all()) == [1, 2]

    def test_diagnose_reports_incorrect_pick(self, make_user, make_game, make_pick, db):
        self._scored_standard_bowl_pick(make_user, make_game, make_pick, db)

        report = ScoringEngine().diagnose_tiered_picks()

        assert report["summary"]["issues_found"] == 1
        assert report["incorrect_picks"][0]["correct_points"] == 1
        assert report["summary"]["by_tier"]["STANDARD"]["incorrect"] == 1
