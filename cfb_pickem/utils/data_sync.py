import logging
import time
from datetime import datetime, timedelta, timezone
from functools import wraps

import requests
from flask import current_app, has_app_context

from cfb_pickem import db
from cfb_pickem.models import Game
from cfb_pickem.utils.game_classification import GameCategory, is_suspicious_regular
from cfb_pickem.utils.timezone_utils import (
    current_season_year,
    ensure_utc,
    get_utc_time,
    parse_api_datetime,
)

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.collegefootballdata.com"
DEFAULT_LINE_PROVIDERS = ["DraftKings", "ESPN Bet", "Bovada"]
SEASON_TYPE_REGULAR = "regular"
SEASON_TYPE_POSTSEASON = "postseason"


class CFBDataError(Exception):
    """Raised when the CollegeFootballData API cannot be reached or answers badly"""


def rate_limit_decorator(max_retries=3, base_delay=1.0, backoff_factor=2.0):
    """
    Decorator to handle API rate limiting with exponential backoff
    """

    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            last_error = None
            for attempt in range(max_retries):
                try:
                    return func(self, *args, **kwargs)

                except requests.exceptions.HTTPError as e:
                    last_error = e
                    status = e.response.status_code if e.response is not None else 0

                    if status == 429:  # Too Many Requests
                        delay = float(
                            e.response.headers.get(
                                "Retry-After", base_delay * (backoff_factor**attempt)
                            )
                        )
                        logger.warning(
                            f"Rate limited. Waiting {delay}s before retry {attempt + 1}/{max_retries}"
                        )
                    elif status >= 500:  # Server errors
                        delay = base_delay * (backoff_factor**attempt)
                        logger.warning(
                            f"Server error {status}. Waiting {delay}s before retry {attempt + 1}/{max_retries}"
                        )
                    else:
                        # Client errors won't get better by retrying
                        raise CFBDataError(f"CFB API error {status}: {e}") from e

                except requests.exceptions.RequestException as e:
                    last_error = e
                    delay = base_delay * (backoff_factor**attempt)
                    logger.warning(
                        f"Request failed: {e}. Waiting {delay}s before retry {attempt + 1}/{max_retries}"
                    )

                if attempt < max_retries - 1:
                    time.sleep(delay)

            raise CFBDataError(
                f"Max retries ({max_retries}) exceeded: {last_error}"
            ) from last_error

        return wrapper

    return decorator


def _first(data, *keys, default=None):
    """First present, non-None value among camelCase/snake_case spellings"""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


class DataSync:
    """
    Synchronizes college football games, betting lines and scores from the
    CollegeFootballData API, with rate limiting and retries.

    Every game is classified at ingest. Only FBS-vs-FBS games are stored.
    """

    def __init__(
        self,
        api_base_url=None,
        api_key=None,
        preferred_providers=None,
        postseason_week=None,
        postseason_start_week=None,
    ):
        app_config = current_app.config if has_app_context() else {}

        self.api_base_url = (
            api_base_url or app_config.get("CFB_API_BASE_URL") or DEFAULT_API_BASE_URL
        ).rstrip("/")
        self.api_key = api_key or app_config.get("CFB_API_KEY")
        self.preferred_providers = (
            preferred_providers
            or app_config.get("PREFERRED_LINE_PROVIDERS")
            or DEFAULT_LINE_PROVIDERS
        )
        self.postseason_week = postseason_week or app_config.get("POSTSEASON_WEEK", 16)
        self.postseason_start_week = postseason_start_week or app_config.get(
            "POSTSEASON_START_WEEK", 15
        )

        self.session = requests.Session()
        self.session.headers.update(
            {"User-Agent": "CFB-Pickem-App/1.0", "Accept": "application/json"}
        )
        if self.api_key:
            self.session.headers["Authorization"] = f"Bearer {self.api_key}"
        else:
            logger.warning("CFB_API_KEY not set, CollegeFootballData requests will fail")

        # Rate limiting configuration
        self.last_request_time = 0
        self.min_request_interval = 0.5  # Minimum 500ms between requests
        self.max_requests_per_minute = 60  # Conservative limit
        self.request_timestamps = []

        self.last_sync_stats = {}

    def _enforce_rate_limit(self):
        """Enforce rate limiting before making requests"""
        current_time = time.time()

        # Remove timestamps older than 1 minute
        self.request_timestamps = [
            ts for ts in self.request_timestamps if current_time - ts < 60
        ]

        if len(self.request_timestamps) >= self.max_requests_per_minute:
            sleep_time = 60 - (current_time - self.request_timestamps[0])
            if sleep_time > 0:
                logger.info(f"Rate limit reached. Sleeping for {sleep_time:.1f}s")
                time.sleep(sleep_time)
                self.request_timestamps = []

        time_since_last = current_time - self.last_request_time
        if time_since_last < self.min_request_interval:
            time.sleep(self.min_request_interval - time_since_last)

        self.last_request_time = time.time()
        self.request_timestamps.append(self.last_request_time)

    @rate_limit_decorator(max_retries=3, base_delay=2.0)
    def _make_api_request(self, endpoint, params=None):
        """GET an API endpoint and return the decoded JSON body"""
        self._enforce_rate_limit()

        url = f"{self.api_base_url}{endpoint}"
        try:
            response = self.session.get(url, params=params, timeout=30)
            response.raise_for_status()
        except requests.exceptions.Timeout:
            logger.warning(f"Request timeout for {url}")
            raise
        except requests.exceptions.ConnectionError:
            logger.warning(f"Connection error for {url}")
            raise

        try:
            return response.json()
        except ValueError as e:
            raise CFBDataError(f"Invalid JSON from {url}") from e

    # Upstream endpoints

    def fetch_games(self, season, week=None, season_type=SEASON_TYPE_REGULAR):
        params = {"year": season, "seasonType": season_type, "classification": "fbs"}
        if week is not None:
            params["week"] = week
        return self._make_api_request("/games", params=params) or []

    def fetch_lines(self, season, week=None, season_type=SEASON_TYPE_REGULAR):
        params = {"year": season, "seasonType": season_type}
        if week is not None:
            params["week"] = week
        return self._make_api_request("/lines", params=params) or []

    def fetch_fbs_teams(self, season=None):
        params = {"year": season} if season else None
        return self._make_api_request("/teams/fbs", params=params) or []

    def fetch_calendar(self, season):
        return self._make_api_request("/calendar", params={"year": season}) or []

    def get_current_week(self, season=None, now=None):
        """
        Current week from the season calendar, counting a week as current
        until seven days after its last kickoff. Defaults to week 1.
        """
        season = season or current_season_year()
        now = ensure_utc(now) if now is not None else get_utc_time()

        for entry in self.fetch_calendar(season):
            first = parse_api_datetime(
                _first(entry, "startDate", "firstGameStart", "first_game_start")
            )
            last = parse_api_datetime(
                _first(entry, "endDate", "lastGameStart", "last_game_start")
            )
            if not first or not last:
                continue
            if ensure_utc(first) <= now <= ensure_utc(last) + timedelta(days=7):
                week = entry.get("week", 1)
                if _first(entry, "seasonType", "season_type") == SEASON_TYPE_POSTSEASON:
                    return self.postseason_week
                return week

        return 1

    def select_line(self, lines):
        """Pick the most preferred sportsbook line, else the first one offered"""
        usable = [line for line in lines or [] if line.get("spread") is not None]
        if not usable:
            return None

        for provider in self.preferred_providers:
            for line in usable:
                if line.get("provider") == provider:
                    return line
        return usable[0]

    def _build_lines_map(self, cfb_lines):
        lines_map = {}
        for entry in cfb_lines:
            line = self.select_line(entry.get("lines"))
            if line is None:
                continue

            sources = ", ".join(
                f"{l.get('provider')}: {l.get('spread')}" for l in entry.get("lines", [])
            )
            logger.debug(
                f"Game {entry.get('id')}: using spread {line.get('spread')} from "
                f"{line.get('provider')} ({sources})"
            )
            lines_map[str(entry.get("id"))] = line
        return lines_map

    @staticmethod
    def is_fbs_matchup(cfb_game, fbs_team_ids=None):
        home_class = _first(cfb_game, "homeClassification", "home_classification")
        away_class = _first(cfb_game, "awayClassification", "away_classification")
        if home_class is not None or away_class is not None:
            return home_class == "fbs" and away_class == "fbs"

        if fbs_team_ids:
            home_id = str(_first(cfb_game, "homeId", "home_id", default=""))
            away_id = str(_first(cfb_game, "awayId", "away_id", default=""))
            return home_id in fbs_team_ids and away_id in fbs_team_ids

        return True

    # Sync operations

    def sync_week(self, season, week, postseason=False):
        """
        Sync games, lines and scores for a week and classify every game.

        Postseason games are requested with ``seasonType=postseason`` and
        stored under the configured postseason week.

        Returns:
            tuple: (success, message)
        """
        season_type = SEASON_TYPE_POSTSEASON if postseason else SEASON_TYPE_REGULAR
        request_week = None if postseason else week
        store_week = self.postseason_week if postseason else week

        try:
            logger.info(f"Syncing games for week {store_week}, season {season} ({season_type})")

            cfb_games = self.fetch_games(season, request_week, season_type)
            cfb_lines = self.fetch_lines(season, request_week, season_type)
            logger.info(f"Fetched {len(cfb_games)} games and {len(cfb_lines)} lines")

            fbs_team_ids = None
            if any(
                _first(g, "homeClassification", "home_classification") is None
                for g in cfb_games
            ):
                fbs_team_ids = {str(t.get("id")) for t in self.fetch_fbs_teams(season)}

            lines_map = self._build_lines_map(cfb_lines)

            stats = {"created": 0, "updated": 0, "skipped": 0, "special": 0}
            now = get_utc_time()

            for cfb_game in cfb_games:
                if not self.is_fbs_matchup(cfb_game, fbs_team_ids):
                    stats["skipped"] += 1
                    continue

                outcome = self._upsert_game(
                    cfb_game, lines_map, season, store_week, season_type, now
                )
                if outcome is None:
                    stats["skipped"] += 1
                    continue

                game, created = outcome
                stats["created" if created else "updated"] += 1
                if game.category != GameCategory.REGULAR:
                    stats["special"] += 1

            db.session.commit()
            self.last_sync_stats = stats
            _invalidate_game_cache()

            message = (
                f"Synced week {store_week} ({season}): {stats['created']} created, "
                f"{stats['updated']} updated, {stats['skipped']} skipped, "
                f"{stats['special']} special"
            )
            logger.info(message)
            return True, message

        except Exception as e:
            db.session.rollback()
            logger.error(f"Error syncing week {store_week}: {str(e)}", exc_info=True)
            return False, str(e)

    def sync_postseason(self, season):
        """Sync bowl, playoff and other postseason games"""
        return self.sync_week(season, self.postseason_week, postseason=True)

    def _upsert_game(self, cfb_game, lines_map, season, week, season_type, now):
        """Create or update one Game from an upstream record, returns (game, created)"""
        cfb_id = str(cfb_game.get("id", ""))
        home_team = _first(cfb_game, "homeTeam", "home_team")
        away_team = _first(cfb_game, "awayTeam", "away_team")
        start_time = parse_api_datetime(_first(cfb_game, "startDate", "start_date"))

        if not cfb_id or not home_team or not away_team or start_time is None:
            logger.warning(f"Skipping incomplete game record: {cfb_game.get('id')}")
            return None

        game = Game.query.filter_by(cfb_id=cfb_id).first()
        created = game is None
        if created:
            game = Game(cfb_id=cfb_id)
            db.session.add(game)

        game.season = season
        game.week = week
        game.season_type = season_type
        game.home_team = home_team
        game.away_team = away_team
        game.home_team_cfb_id = str(_first(cfb_game, "homeId", "home_id", default="")) or None
        game.away_team_cfb_id = str(_first(cfb_game, "awayId", "away_id", default="")) or None
        game.start_time = start_time
        game.notes = cfb_game.get("notes")

        # Lines freeze at kickoff; picks carry their own locked spread anyway
        line = lines_map.get(cfb_id)
        if line is not None and (created or now < ensure_utc(start_time)):
            game.spread = float(line["spread"])
            over_under = _first(line, "overUnder", "over_under")
            game.over_under = float(over_under) if over_under is not None else None
            game.line_provider = line.get("provider")
        elif created:
            game.spread = 0.0

        self._apply_score(game, cfb_game)

        game.classify()
        if game.category != GameCategory.REGULAR:
            logger.info(f"Special game detected: {away_team} @ {home_team} - {game.description}")
        elif is_suspicious_regular(game.category, week, self.postseason_start_week):
            logger.warning(
                f"Game {cfb_id} ({away_team} @ {home_team}) in week {week} classified "
                f"as REGULAR, notes={game.notes!r}"
            )

        return game, created

    @staticmethod
    def _apply_score(game, cfb_game):
        """Copy scores and completion status, returns True when anything changed"""
        home_score = _first(cfb_game, "homePoints", "home_points")
        away_score = _first(cfb_game, "awayPoints", "away_points")
        completed = bool(cfb_game.get("completed", False))

        changed = False
        if home_score is not None and game.home_score != int(home_score):
            game.home_score = int(home_score)
            changed = True
        if away_score is not None and game.away_score != int(away_score):
            game.away_score = int(away_score)
            changed = True
        if completed != bool(game.completed):
            game.completed = completed
            changed = True

        return changed

    def update_live_scores(self, now=None):
        """
        Refresh scores for games that have kicked off but are not final.

        Returns:
            tuple: (success, message)
        """
        try:
            now = now or datetime.now(timezone.utc)
            ongoing = Game.query.filter(
                Game.completed.is_(False),
                Game.start_time <= now.replace(tzinfo=None),
            ).all()

            if not ongoing:
                return True, "No games in progress"

            by_week = {}
            for game in ongoing:
                by_week.setdefault((game.season, game.week, game.season_type), {})[
                    game.cfb_id
                ] = game

            updates = 0
            completed = 0
            for (season, week, season_type), games in by_week.items():
                request_week = None if season_type == SEASON_TYPE_POSTSEASON else week
                for cfb_game in self.fetch_games(season, request_week, season_type):
                    game = games.get(str(cfb_game.get("id")))
                    if game is None:
                        continue
                    if self._apply_score(game, cfb_game):
                        updates += 1
                        if game.completed:
                            completed += 1
                            logger.info(
                                f"Final: {game.away_team} {game.away_score} @ "
                                f"{game.home_team} {game.home_score}"
                            )

            db.session.commit()
            if updates:
                _invalidate_game_cache()

            return True, f"Updated {updates} games ({completed} completed)"

        except Exception as e:
            db.session.rollback()
            logger.error(f"Error updating live scores: {str(e)}", exc_info=True)
            return False, str(e)


def _invalidate_game_cache():
    from cfb_pickem.utils.cache_utils import invalidate_model_cache

    invalidate_model_cache("Game")
