from datetime import datetime, timezone

from cfb_pickem import db
from cfb_pickem.utils.game_classification import (
    GameCategory,
    classify,
    describe,
    rules_for,
    tier_for,
)


class Game(db.Model):
    __tablename__ = "games"

    id = db.Column(db.Integer, primary_key=True)

    # External ID from CollegeFootballData
    cfb_id = db.Column(db.String(50), unique=True, index=True)

    # Game identification
    season = db.Column(db.Integer, nullable=False)
    week = db.Column(db.Integer, nullable=False)
    season_type = db.Column(db.String(20), nullable=False, default="regular")

    # Teams
    home_team = db.Column(db.String(100), nullable=False)
    away_team = db.Column(db.String(100), nullable=False)
    home_team_cfb_id = db.Column(db.String(50))
    away_team_cfb_id = db.Column(db.String(50))

    # Game timing
    start_time = db.Column(db.DateTime, nullable=False)

    # Betting line (home perspective: negative = home favored)
    spread = db.Column(db.Float, nullable=False, default=0.0)
    over_under = db.Column(db.Float)
    line_provider = db.Column(db.String(50))

    # Scores
    home_score = db.Column(db.Integer)
    away_score = db.Column(db.Integer)
    completed = db.Column(db.Boolean, default=False, nullable=False)

    # Upstream free-text notes ("Rose Bowl Game", "SEC Championship", ...)
    notes = db.Column(db.String(255))
    category = db.Column(
        db.Enum(GameCategory, name="game_category"),
        nullable=False,
        default=GameCategory.REGULAR,
    )

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    picks = db.relationship(
        "Pick", backref="game", lazy="dynamic", cascade="all, delete-orphan"
    )

    # Indexes
    __table_args__ = (
        db.Index("idx_game_season_week", "season", "week"),
        db.Index("idx_game_start_time", "start_time"),
        db.Index("idx_game_completed", "completed"),
        db.CheckConstraint("home_team != away_team", name="different_teams"),
    )

    def __repr__(self):
        return f"<Game {self.away_team} @ {self.home_team} Week {self.week} {self.season}>"

    def classify(self):
        """Recompute the category from team names, week, season and notes"""
        self.category = classify(
            self.home_team, self.away_team, self.week, self.season, self.notes
        )
        return self.category

    @property
    def bowl_tier(self):
        """Scoring tier for bowl and playoff games (None otherwise)"""
        return tier_for(self.category, self.notes)

    @property
    def rules(self):
        return rules_for(self.category)

    @property
    def description(self):
        return describe(self.category, self.bowl_tier)

    @property
    def has_final_score(self):
        """Completed with both scores present, i.e. ready for scoring"""
        return (
            bool(self.completed)
            and self.home_score is not None
            and self.away_score is not None
        )

    def has_started(self, now=None):
        """Check if game has started"""
        from cfb_pickem.utils.timezone_utils import has_started

        return has_started(self.start_time, now)

    def is_pickable(self, now=None):
        """Check if game is available for picks (hasn't started yet)"""
        return not self.has_started(now) and not self.completed

    @property
    def status(self):
        """Get game status as string"""
        if self.completed:
            return "completed"
        if self.has_started():
            return "in_progress"
        return "scheduled"

    def spread_winner(self, spread=None):
        """
        Team covering the spread on the current score, or "Push".

        Uses the game's current line unless a locked spread is given. Returns
        None while there is no score.
        """
        from cfb_pickem.utils.scoring import spread_winner

        if self.home_score is None or self.away_score is None:
            return None

        return spread_winner(
            self.home_score,
            self.away_score,
            self.spread if spread is None else spread,
            self.home_team,
            self.away_team,
        )

    def involves(self, team_name):
        return team_name in (self.home_team, self.away_team)

    @staticmethod
    def get_games_for_week(season, week):
        """Get all games for a specific week ordered by kickoff"""
        return (
            Game.query.filter_by(season=season, week=week)
            .order_by(Game.start_time)
            .all()
        )

    def to_dict(self, include_picks_count=False):
        """Convert game to dictionary for API responses"""
        rules = self.rules
        bowl_tier = self.bowl_tier
        data = {
            "id": self.id,
            "cfb_id": self.cfb_id,
            "season": self.season,
            "week": self.week,
            "season_type": self.season_type,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "home_score": self.home_score,
            "away_score": self.away_score,
            "completed": self.completed,
            "spread": self.spread,
            "over_under": self.over_under,
            "line_provider": self.line_provider,
            "notes": self.notes,
            "category": self.category.value if self.category else None,
            "bowl_tier": bowl_tier.value if bowl_tier else None,
            "description": self.description,
            "rules": rules._asdict(),
            "spread_winner": self.spread_winner(),
            "is_pickable": self.is_pickable(),
            "status": self.status,
        }

        if include_picks_count:
            data["picks_count"] = self.picks.count()

        return data
