from datetime import datetime, timezone

from cfb_pickem import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    name = db.Column(db.String(100))

    # Running score, only changed by increment/decrement next to a pick write
    total_score = db.Column(db.Integer, default=0, nullable=False)

    # Account status
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    email_notifications = db.Column(db.Boolean, default=True, nullable=False)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    picks = db.relationship(
        "Pick", backref="user", lazy="dynamic", cascade="all, delete-orphan"
    )

    __table_args__ = (db.Index("idx_user_total_score", "total_score"),)

    def __repr__(self):
        return f"<User {self.email}>"

    @property
    def display_name(self):
        return self.name or self.email.split("@")[0]

    @staticmethod
    def adjust_total_score(user_id, delta):
        """
        Atomically add ``delta`` to a user's running total.

        Issued as ``UPDATE users SET total_score = total_score + :delta`` so
        concurrent writers never lose an increment. The caller owns the
        transaction and commits it together with the pick write.
        """
        if not delta:
            return 0
        return User.query.filter(User.id == user_id).update(
            {User.total_score: User.total_score + delta},
            synchronize_session=False,
        )

    def get_scored_picks(self, season=None):
        from .game import Game
        from .pick import Pick

        query = self.picks.filter(Pick.points.isnot(None))
        if season is not None:
            query = query.join(Game).filter(Game.season == season)
        return query.all()

    def get_season_stats(self, season=None):
        """Win/loss/push breakdown and weekly points from scored picks"""
        picks = self.get_scored_picks(season)

        wins = sum(1 for p in picks if p.result == "win")
        losses = sum(1 for p in picks if p.result == "loss")
        pushes = sum(1 for p in picks if p.result == "push")
        missed = sum(1 for p in picks if p.result == "no_pick")
        double_downs = [p for p in picks if p.is_double_down and not p.is_penalty]
        decided = wins + losses + pushes

        weekly = {}
        for pick in picks:
            key = (pick.game.season, pick.game.week)
            if key not in weekly:
                weekly[key] = {
                    "season": pick.game.season,
                    "week": pick.game.week,
                    "picks": 0,
                    "points": 0,
                }
            weekly[key]["picks"] += 1
            weekly[key]["points"] += pick.points

        return {
            "computed_total": sum(p.points for p in picks),
            "total_picks": len(picks),
            "wins": wins,
            "losses": losses,
            "pushes": pushes,
            "missed_picks": missed,
            "win_percentage": (wins / decided * 100) if decided else 0,
            "double_downs": len(double_downs),
            "double_down_wins": sum(1 for p in double_downs if p.result == "win"),
            "weekly": sorted(
                weekly.values(), key=lambda w: (w["season"], w["week"]), reverse=True
            ),
        }

    @staticmethod
    def get_leaderboard(season=None):
        """Active users ordered by running total score"""
        users = (
            User.query.filter_by(is_active=True)
            .order_by(User.total_score.desc(), User.name)
            .all()
        )

        leaderboard = []
        for rank, user in enumerate(users, start=1):
            stats = user.get_season_stats(season)
            leaderboard.append(
                {
                    "rank": rank,
                    "user": user.to_dict(),
                    "total_score": user.total_score,
                    **stats,
                }
            )

        return leaderboard

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.display_name,
            "email": self.email,
            "total_score": self.total_score,
            "is_active": self.is_active,
        }
