"""
Pick submission rules for CFB Pick'em

Validators return ``(is_valid, message)`` tuples. They only read the objects
passed in, so the caller decides what to load and when to write.

``week_picks`` is always the user's existing picks for the same
(season, week) as the game being picked, each with its ``game`` loaded.
"""

from cfb_pickem.utils.game_classification import (
    MAX_REGULAR_PICKS,
    GameCategory,
    rules_for,
)
from cfb_pickem.utils.timezone_utils import has_started

SPECIAL_PICK_MESSAGES = {
    GameCategory.CHAMPIONSHIP: "Championship games must be double down picks",
    GameCategory.BOWL: "Bowl games must be double down picks",
    GameCategory.PLAYOFF: "Playoff games must be double down picks",
    GameCategory.ARMY_NAVY: "Army-Navy game must be a double down pick",
}


def _is_regular(pick_or_game):
    game = getattr(pick_or_game, "game", pick_or_game)
    return GameCategory(game.category) == GameCategory.REGULAR


def _regular_picks(week_picks):
    return [p for p in week_picks if _is_regular(p)]


def validate_submission(
    game, picked_team, is_double_down, week_picks, existing_pick=None, now=None
):
    """
    Validate a new pick or a re-pick before it is written.

    Args:
        game: the game being picked
        picked_team: team name chosen by the user
        is_double_down: requested double-down flag
        week_picks: the user's picks for the game's (season, week)
        existing_pick: the user's current pick on this game, if re-picking
        now: override for the current time

    Returns:
        tuple: (is_valid, message)
    """
    if game.completed or has_started(game.start_time, now):
        return False, "Cannot pick a game that has already started"

    if not game.involves(picked_team):
        return False, f"{picked_team} is not playing in this game"

    category = GameCategory(game.category)
    is_regular = category == GameCategory.REGULAR

    if not is_regular and not is_double_down:
        return False, SPECIAL_PICK_MESSAGES.get(
            category, "This special game requires a double down pick"
        )

    other_picks = [
        p for p in week_picks if existing_pick is None or p.id != existing_pick.id
    ]
    other_regular = _regular_picks(other_picks)

    if existing_pick is None and rules_for(category).counts_toward_weekly_limit:
        if len(other_regular) >= MAX_REGULAR_PICKS:
            return False, f"You can only make {MAX_REGULAR_PICKS} picks per week"

    if is_regular:
        if is_double_down and any(p.is_double_down for p in other_regular):
            return False, "You can only have one double down pick per week"

        if len(other_regular) + 1 == MAX_REGULAR_PICKS and not (
            is_double_down or any(p.is_double_down for p in other_regular)
        ):
            return (
                False,
                f"One of your {MAX_REGULAR_PICKS} picks this week must be a double down",
            )

    return True, "Valid pick"


def validate_removal(pick, week_picks, now=None):
    """Validate that a user may delete ``pick``"""
    game = pick.game

    if game.completed or has_started(game.start_time, now):
        return False, "Cannot remove a pick for a game that has already started"

    remaining = _regular_picks([p for p in week_picks if p.id != pick.id])
    if len(remaining) == MAX_REGULAR_PICKS and not any(
        p.is_double_down for p in remaining
    ):
        return (
            False,
            f"Removing this pick would leave {MAX_REGULAR_PICKS} picks without a double down",
        )

    return True, "Valid removal"


def week_pick_rules(games):
    """Aggregate pick obligations for one week's games"""
    counts = {category: 0 for category in GameCategory}
    for game in games:
        counts[GameCategory(game.category)] += 1

    regular = counts[GameCategory.REGULAR]
    championship = counts[GameCategory.CHAMPIONSHIP]
    bowl = counts[GameCategory.BOWL]
    playoff = counts[GameCategory.PLAYOFF]
    army_navy = counts[GameCategory.ARMY_NAVY]

    return {
        "max_regular_picks": min(MAX_REGULAR_PICKS, regular),
        "max_championship_picks": championship,
        "required_bowl_picks": bowl,
        "required_playoff_picks": playoff,
        "required_army_navy_picks": army_navy,
        "championship_double_downs": championship,
        "bowl_double_downs": bowl,
        "playoff_double_downs": playoff,
        "army_navy_double_downs": army_navy,
        "total_games": len(games),
        "min_required_picks": bowl + playoff + army_navy,
        "max_total_picks": len(games),
    }


def validate_week_picks(picks, games=None):
    """
    Audit a user's whole week of picks.

    Penalty picks are ignored. When ``games`` is given, must-pick games
    without a pick are reported as warnings.
    """
    errors = []
    warnings = []

    picks = [p for p in picks if not p.is_penalty]
    by_category = {category: [] for category in GameCategory}
    for pick in picks:
        by_category[GameCategory(pick.game.category)].append(pick)

    regular = by_category[GameCategory.REGULAR]
    if len(regular) > MAX_REGULAR_PICKS:
        errors.append(
            f"Too many regular season picks ({len(regular)}/{MAX_REGULAR_PICKS})"
        )

    regular_double_downs = [p for p in regular if p.is_double_down]
    if len(regular_double_downs) > 1:
        errors.append(
            f"Only one regular season double down allowed ({len(regular_double_downs)} found)"
        )
    if len(regular) == MAX_REGULAR_PICKS and not regular_double_downs:
        errors.append(f"One of your {MAX_REGULAR_PICKS} picks must be a double down")

    labels = {
        GameCategory.CHAMPIONSHIP: "championship games",
        GameCategory.BOWL: "bowl games",
        GameCategory.PLAYOFF: "playoff games",
    }
    for category, label in labels.items():
        missing = [p for p in by_category[category] if not p.is_double_down]
        if missing:
            errors.append(f"All {label} must be double downs ({len(missing)} missing)")

    if any(not p.is_double_down for p in by_category[GameCategory.ARMY_NAVY]):
        errors.append("Army-Navy game must be double down")

    if games is not None:
        picked_ids = {p.game_id for p in picks}
        for game in games:
            if rules_for(game.category).must_pick_all and game.id not in picked_ids:
                warnings.append(
                    f"No pick yet for {game.away_team} @ {game.home_team} ({game.description})"
                )

    return {
        "is_valid": not errors,
        "errors": errors,
        "warnings": warnings,
        "summary": {
            "regular_picks": len(regular),
            "championship_picks": len(by_category[GameCategory.CHAMPIONSHIP]),
            "bowl_picks": len(by_category[GameCategory.BOWL]),
            "playoff_picks": len(by_category[GameCategory.PLAYOFF]),
            "army_navy_picks": len(by_category[GameCategory.ARMY_NAVY]),
            "total_double_downs": sum(1 for p in picks if p.is_double_down),
        },
    }
