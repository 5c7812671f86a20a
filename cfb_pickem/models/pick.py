from datetime import datetime, timezone

from cfb_pickem import db

NO_PICK = "NO_PICK"

RESULT_WIN = "win"
RESULT_LOSS = "loss"
RESULT_PUSH = "push"
RESULT_NO_PICK = "no_pick"


class Pick(db.Model):
    __tablename__ = "picks"

    id = db.Column(db.Integer, primary_key=True)

    # Pick identification
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    game_id = db.Column(db.Integer, db.ForeignKey("games.id"), nullable=False)

    # Pick details
    picked_team = db.Column(db.String(100), nullable=False)
    locked_spread = db.Column(db.Float, nullable=False)  # line at pick time
    is_double_down = db.Column(db.Boolean, default=False, nullable=False)

    # Results (set once by the scoring engine)
    points = db.Column(db.Integer)
    result = db.Column(db.String(10))

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Constraints and indexes
    __table_args__ = (
        db.UniqueConstraint("user_id", "game_id", name="unique_user_game_pick"),
        db.Index("idx_pick_user", "user_id"),
        db.Index("idx_pick_game", "game_id"),
        db.Index("idx_pick_unscored", "points"),
    )

    def __repr__(self):
        return f"<Pick user_id={self.user_id} game_id={self.game_id} team={self.picked_team}>"

    @property
    def week(self):
        """Get the week number from the associated game"""
        return self.game.week if self.game else None

    @property
    def is_penalty(self):
        return self.picked_team == NO_PICK

    @staticmethod
    def get_week_picks(user_id, season, week):
        """All of a user's picks for games in one (season, week)"""
        from .game import Game

        return (
            Pick.query.join(Game)
            .filter(
                Pick.user_id == user_id,
                Game.season == season,
                Game.week == week,
            )
            .order_by(Game.start_time)
            .all()
        )

    def to_dict(self, include_game=False):
        """Convert pick to dictionary for API responses"""
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "game_id": self.game_id,
            "week": self.week,
            "picked_team": self.picked_team,
            "locked_spread": self.locked_spread,
            "is_double_down": self.is_double_down,
            "points": self.points,
            "result": self.result,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

        if include_game and self.game:
            data["game"] = self.game.to_dict()

        return data
