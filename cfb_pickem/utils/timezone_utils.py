"""
Timezone utility functions for the CFB Pick'em application

Kickoff times are stored as naive UTC datetimes. Anything naive coming in is
treated as UTC unless noted otherwise.
"""

from datetime import datetime, timezone

import pytz
from flask import current_app, has_app_context

# The season rolls over in August, games played in January belong to the
# previous calendar year's season.
SEASON_START_MONTH = 8


def get_app_timezone():
    """Get the application's configured timezone"""
    if not has_app_context():
        return pytz.UTC
    try:
        timezone_name = current_app.config.get("TIMEZONE", "UTC")
        return pytz.timezone(timezone_name)
    except pytz.UnknownTimeZoneError:
        # Fallback to UTC if timezone is invalid
        return pytz.UTC


def get_current_time():
    """Get current time in the application's timezone"""
    return datetime.now(get_app_timezone())


def get_utc_time():
    """Get current time in UTC"""
    return datetime.now(timezone.utc)


def ensure_utc(dt):
    """Return ``dt`` as an aware UTC datetime, assuming UTC when naive"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_naive_utc(dt):
    """Aware or naive datetime to the naive UTC form stored in the database"""
    if dt is None:
        return None
    return ensure_utc(dt).replace(tzinfo=None)


def parse_api_datetime(value):
    """Parse an ISO-8601 timestamp from the data provider into naive UTC"""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return to_naive_utc(parsed)


def has_started(start_time, now=None):
    """A game has started once the current time reaches its kickoff"""
    if start_time is None:
        return False
    now = ensure_utc(now) if now is not None else get_utc_time()
    return now >= ensure_utc(start_time)


def current_season_year(now=None):
    """
    Season year for a moment in time: August onwards belongs to this year's
    season, January through July to last year's.
    """
    now = now or get_current_time()
    if now.month >= SEASON_START_MONTH:
        return now.year
    return now.year - 1


def convert_to_app_timezone(dt):
    """Convert a datetime to the application's timezone"""
    if dt is None:
        return None
    return ensure_utc(dt).astimezone(get_app_timezone())


def format_game_time(dt, format_str="%a %m/%d at %I:%M %p %Z"):
    """Format a kickoff time in the application's timezone"""
    if dt is None:
        return "TBD"

    app_time = convert_to_app_timezone(dt)
    return app_time.strftime(format_str)
