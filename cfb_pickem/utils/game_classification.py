"""
Game classification for CFB Pick'em

Decides which category a game belongs to (regular season, conference
championship, bowl, playoff or the Army-Navy game) and which pick rules that
category imposes. Classification is driven by the team names and the free-text
``notes`` field supplied by the upstream data source.

Everything in this module is a pure function of its inputs.
"""

import enum
from collections import namedtuple

MAX_REGULAR_PICKS = 5


class GameCategory(str, enum.Enum):
    REGULAR = "REGULAR"
    CHAMPIONSHIP = "CHAMPIONSHIP"
    BOWL = "BOWL"
    PLAYOFF = "PLAYOFF"
    ARMY_NAVY = "ARMY_NAVY"


class BowlTier(str, enum.Enum):
    PREMIUM = "PREMIUM"  # New Year's Six bowls and playoff games
    STANDARD = "STANDARD"  # every other bowl


SPECIAL_CATEGORIES = frozenset(
    [
        GameCategory.CHAMPIONSHIP,
        GameCategory.BOWL,
        GameCategory.PLAYOFF,
        GameCategory.ARMY_NAVY,
    ]
)

TIERED_CATEGORIES = frozenset([GameCategory.BOWL, GameCategory.PLAYOFF])

CHAMPIONSHIP_KEYWORDS = [
    "championship",
    "title",
    "conference championship",
    "acc championship",
    "big 10 championship",
    "big ten championship",
    "big 12 championship",
    "pac-12 championship",
    "sec championship",
    "mountain west championship",
    "american championship",
    "mac championship",
    "c-usa championship",
    "sun belt championship",
]

PLAYOFF_KEYWORDS = [
    "playoff",
    "semifinal",
    "national championship",
    "cfp",
    "college football playoff",
]

BOWL_KEYWORDS = [
    "bowl",
    "cotton bowl",
    "rose bowl",
    "sugar bowl",
    "orange bowl",
    "fiesta bowl",
    "peach bowl",
    "citrus bowl",
    "outback bowl",
    "gator bowl",
    "holiday bowl",
    "alamo bowl",
    "armed forces bowl",
    "independence bowl",
    "liberty bowl",
    "new mexico bowl",
    "las vegas bowl",
    "hawaii bowl",
    "new orleans bowl",
    "cure bowl",
]

# New Year's Six
PREMIUM_BOWLS = [
    "rose bowl",
    "sugar bowl",
    "orange bowl",
    "cotton bowl",
    "fiesta bowl",
    "peach bowl",
]

PREMIUM_PLAYOFF_KEYWORDS = [
    "national championship",
    "semifinal",
    "semi-final",
    "playoff",
]


PickRules = namedtuple(
    "PickRules",
    ["mandatory_double_down", "counts_toward_weekly_limit", "must_pick_all"],
)

_RULES = {
    GameCategory.REGULAR: PickRules(False, True, False),
    GameCategory.CHAMPIONSHIP: PickRules(True, True, False),
    GameCategory.PLAYOFF: PickRules(True, True, True),
    # Bowls are additional to the weekly cap
    GameCategory.BOWL: PickRules(True, False, True),
    GameCategory.ARMY_NAVY: PickRules(True, True, False),
}


def _contains_any(text, keywords):
    return any(keyword in text for keyword in keywords)


def _is_army_navy(home_team, away_team):
    home = (home_team or "").lower()
    away = (away_team or "").lower()
    return ("army" in home and "navy" in away) or ("navy" in home and "army" in away)


def classify(home_team, away_team, week, season, notes=None):
    """
    Classify a game. The first matching rule wins:

    1. Army-Navy, detected from team names regardless of week or notes
    2. Conference championship, from notes
    3. Playoff, from notes
    4. Bowl, from notes
    5. Regular season

    ``week`` and ``season`` are accepted so callers classify with the full
    game identity, but championship weeks move from season to season and the
    notes text is authoritative.

    Notes that carry playoff language ("CFP National Championship") are
    never treated as a conference title game even though they contain the
    bare word "championship".
    """
    if _is_army_navy(home_team, away_team):
        return GameCategory.ARMY_NAVY

    notes_lower = (notes or "").lower()
    is_playoff = _contains_any(notes_lower, PLAYOFF_KEYWORDS)

    if not is_playoff and _contains_any(notes_lower, CHAMPIONSHIP_KEYWORDS):
        return GameCategory.CHAMPIONSHIP

    if is_playoff:
        return GameCategory.PLAYOFF

    if _contains_any(notes_lower, BOWL_KEYWORDS):
        return GameCategory.BOWL

    return GameCategory.REGULAR


def rules_for(category):
    """Pick rules imposed by a game category"""
    return _RULES[GameCategory(category)]


def is_special(category):
    return GameCategory(category) in SPECIAL_CATEGORIES


def is_tiered(category):
    """Bowl and playoff games are scored by tier instead of double-down"""
    return GameCategory(category) in TIERED_CATEGORIES


def determine_bowl_tier(notes=None):
    """Playoff games and New Year's Six bowls are PREMIUM, the rest STANDARD"""
    notes_lower = (notes or "").lower()

    if _contains_any(notes_lower, PREMIUM_PLAYOFF_KEYWORDS):
        return BowlTier.PREMIUM

    if _contains_any(notes_lower, PREMIUM_BOWLS):
        return BowlTier.PREMIUM

    return BowlTier.STANDARD


def tier_for(category, notes=None):
    """Bowl tier for tiered categories, None for everything else"""
    if is_tiered(category):
        return determine_bowl_tier(notes)
    return None


def describe(category, bowl_tier=None):
    """Human readable label for a category, used in logs and API payloads"""
    category = GameCategory(category)

    if category == GameCategory.ARMY_NAVY:
        return "Army-Navy Game (Mandatory Double Down)"
    if category == GameCategory.CHAMPIONSHIP:
        return "Conference Championship (Mandatory Double Down)"

    if category in TIERED_CATEGORIES:
        if bowl_tier is None:
            bowl_tier = BowlTier.STANDARD
        points = (
            "2 pts win / -1 loss"
            if BowlTier(bowl_tier) == BowlTier.PREMIUM
            else "1 pt win / 0 loss"
        )
        if category == GameCategory.PLAYOFF:
            return f"College Football Playoff (Must Pick, {points})"
        return f"Bowl Game (Must Pick, {points})"

    return "Regular Season Game"


def is_suspicious_regular(category, week, postseason_start_week):
    """
    True when a game in a postseason week still classified as REGULAR.

    The notes field is the only championship/bowl signal, so an upstream
    rename or an empty notes value silently downgrades special games.
    """
    if week is None or postseason_start_week is None:
        return False
    return GameCategory(category) == GameCategory.REGULAR and week >= postseason_start_week
