"""
Unit tests for pick submission and removal rules.
"""

import itertools
from datetime import datetime, timedelta

import pytest

from cfb_pickem.utils.game_classification import GameCategory, describe
from cfb_pickem.utils.pick_rules import (
    validate_removal,
    validate_submission,
    validate_week_picks,
    week_pick_rules,
)

NOW = datetime(2024, 11, 30, 12, 0)
_ids = itertools.count(1)


class FakeGame:
    def __init__(self, category=GameCategory.REGULAR, start_time=None, completed=False):
        self.id = next(_ids)
        self.home_team = f"Home {self.id}"
        self.away_team = f"Away {self.id}"
        self.category = category
        self.start_time = start_time or NOW + timedelta(hours=3)
        self.completed = completed

    def involves(self, team):
        return team in (self.home_team, self.away_team)

    @property
    def description(self):
        return describe(self.category)


class FakePick:
    def __init__(self, game, is_double_down=False, picked_team=None):
        self.id = next(_ids)
        self.game = game
        self.game_id = game.id
        self.is_double_down = is_double_down
        self.picked_team = picked_team or game.home_team

    @property
    def is_penalty(self):
        return self.picked_team == "NO_PICK"


def regular_picks(count, double_downs=0):
    return [
        FakePick(FakeGame(), is_double_down=i < double_downs) for i in range(count)
    ]


def submit(game, week_picks, is_double_down=False, existing_pick=None, team=None):
    return validate_submission(
        game,
        team or game.home_team,
        is_double_down,
        week_picks,
        existing_pick=existing_pick,
        now=NOW,
    )


class TestKickoff:
    def test_started_game_rejected(self):
        game = FakeGame(start_time=NOW - timedelta(minutes=1))
        valid, message = submit(game, [])
        assert not valid
        assert "already started" in message

    def test_kickoff_instant_counts_as_started(self):
        game = FakeGame(start_time=NOW)
        assert not submit(game, [])[0]

    def test_completed_game_rejected(self):
        game = FakeGame(completed=True)
        assert not submit(game, [])[0]

    def test_team_not_in_game_rejected(self):
        valid, message = submit(FakeGame(), [], team="Vanderbilt")
        assert not valid
        assert "not playing" in message


class TestSpecialGames:
    @pytest.mark.parametrize(
        "category,fragment",
        [
            (GameCategory.CHAMPIONSHIP, "Championship games"),
            (GameCategory.BOWL, "Bowl games"),
            (GameCategory.PLAYOFF, "Playoff games"),
            (GameCategory.ARMY_NAVY, "Army-Navy"),
        ],
    )
    def test_requires_double_down(self, category, fragment):
        valid, message = submit(FakeGame(category), [])
        assert not valid
        assert fragment in message

    def test_special_double_down_accepted_alongside_regular_double_down(self):
        week = regular_picks(3, double_downs=1)
        assert submit(FakeGame(GameCategory.ARMY_NAVY), week, is_double_down=True)[0]

    def test_bowls_are_not_capped(self):
        week = regular_picks(5, double_downs=1)
        assert submit(FakeGame(GameCategory.BOWL), week, is_double_down=True)[0]

    def test_championship_counts_toward_cap(self):
        week = regular_picks(5, double_downs=1)
        valid, message = submit(FakeGame(GameCategory.CHAMPIONSHIP), week, is_double_down=True)
        assert not valid
        assert "5 picks per week" in message


class TestWeeklyQuota:
    def test_sixth_regular_pick_rejected(self):
        valid, message = submit(FakeGame(), regular_picks(5, double_downs=1))
        assert not valid
        assert "5 picks per week" in message

    def test_special_picks_do_not_use_quota(self):
        week = regular_picks(4, double_downs=1) + [
            FakePick(FakeGame(GameCategory.BOWL), is_double_down=True),
            FakePick(FakeGame(GameCategory.BOWL), is_double_down=True),
        ]
        assert submit(FakeGame(), week)[0]

    def test_fifth_pick_without_double_down_rejected(self):
        valid, message = submit(FakeGame(), regular_picks(4))
        assert not valid
        assert "must be a double down" in message

    def test_fifth_pick_with_double_down_accepted(self):
        assert submit(FakeGame(), regular_picks(4), is_double_down=True)[0]

    def test_fifth_pick_ok_when_double_down_already_held(self):
        assert submit(FakeGame(), regular_picks(4, double_downs=1))[0]

    def test_repick_at_full_quota_allowed(self):
        week = regular_picks(5, double_downs=1)
        existing = week[-1]
        assert submit(existing.game, week, existing_pick=existing, team=existing.game.away_team)[0]

    def test_repick_cannot_drop_only_double_down_at_full_quota(self):
        week = regular_picks(5, double_downs=1)
        existing = week[0]
        valid, _ = submit(existing.game, week, is_double_down=False, existing_pick=existing)
        assert not valid


class TestDoubleDownCap:
    def test_second_regular_double_down_rejected(self):
        valid, message = submit(FakeGame(), regular_picks(2, double_downs=1), is_double_down=True)
        assert not valid
        assert "one double down" in message

    def test_moving_double_down_on_same_pick_allowed(self):
        week = regular_picks(2, double_downs=1)
        existing = week[0]
        assert submit(existing.game, week, is_double_down=True, existing_pick=existing)[0]


class TestRemoval:
    def test_started_game_cannot_be_removed(self):
        pick = FakePick(FakeGame(start_time=NOW - timedelta(hours=1)))
        valid, message = validate_removal(pick, [pick], now=NOW)
        assert not valid
        assert "already started" in message

    def test_removal_before_kickoff(self):
        week = regular_picks(5, double_downs=1)
        assert validate_removal(week[2], week, now=NOW)[0]

    def test_removal_leaving_five_without_double_down_rejected(self):
        week = regular_picks(5) + [FakePick(FakeGame(), is_double_down=True)]
        valid, message = validate_removal(week[-1], week, now=NOW)
        assert not valid
        assert "without a double down" in message


class TestWeekAggregation:
    def test_week_pick_rules(self):
        games = (
            [FakeGame() for _ in range(8)]
            + [FakeGame(GameCategory.BOWL) for _ in range(3)]
            + [FakeGame(GameCategory.PLAYOFF)]
        )
        rules = week_pick_rules(games)

        assert rules["max_regular_picks"] == 5
        assert rules["required_bowl_picks"] == 3
        assert rules["required_playoff_picks"] == 1
        assert rules["min_required_picks"] == 4
        assert rules["max_total_picks"] == 12

    def test_max_regular_limited_by_games_available(self):
        assert week_pick_rules([FakeGame(), FakeGame()])["max_regular_picks"] == 2

    def test_valid_week(self):
        report = validate_week_picks(regular_picks(5, double_downs=1))
        assert report["is_valid"]
        assert report["summary"]["regular_picks"] == 5
        assert report["summary"]["total_double_downs"] == 1

    def test_invalid_week_reports_each_problem(self):
        picks = regular_picks(6, double_downs=2) + [
            FakePick(FakeGame(GameCategory.BOWL), is_double_down=False)
        ]
        report = validate_week_picks(picks)

        assert not report["is_valid"]
        assert any("Too many regular season picks" in e for e in report["errors"])
        assert any("one regular season double down" in e for e in report["errors"])
        assert any("bowl games must be double downs" in e for e in report["errors"])

    def test_missing_must_pick_game_is_warning(self):
        bowl = FakeGame(GameCategory.BOWL)
        report = validate_week_picks([], games=[bowl, FakeGame()])

        assert report["is_valid"]
        assert len(report["warnings"]) == 1

    def test_penalty_picks_ignored(self):
        penalty = FakePick(FakeGame(GameCategory.BOWL), is_double_down=False, picked_team="NO_PICK")
        assert validate_week_picks([penalty])["is_valid"]
