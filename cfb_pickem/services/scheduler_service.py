"""
CFB Pick'em Background Scheduler Service

Keeps games, lines and scores in sync with CollegeFootballData and scores
picks as games go final, using APScheduler.
"""

import atexit
import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from cfb_pickem import db
from cfb_pickem.models import Game
from cfb_pickem.utils.data_sync import DataSync
from cfb_pickem.utils.scoring import ScoringEngine
from cfb_pickem.utils.timezone_utils import current_season_year

logger = logging.getLogger(__name__)

# Hours after kickoff a game is still considered possibly live
LIVE_WINDOW_HOURS = 6


class SchedulerService:
    """Manages automatic background scheduling for CFB data syncing and scoring"""

    def __init__(self, app=None):
        self.scheduler = None
        self.app = app
        self.data_sync = None
        self.scoring_engine = None
        self.is_running = False
        self.sync_stats = self._empty_stats()

        if app:
            self.init_app(app)

    @staticmethod
    def _empty_stats():
        return {
            "last_sync": None,
            "total_syncs": 0,
            "successful_syncs": 0,
            "failed_syncs": 0,
            "last_error": None,
            "picks_scored": 0,
            "penalties_applied": 0,
        }

    def init_app(self, app):
        """Initialize scheduler with Flask app"""
        self.app = app
        self.scheduler = BackgroundScheduler(daemon=True, timezone="UTC")

        with app.app_context():
            self.data_sync = DataSync()
            self.scoring_engine = ScoringEngine()

        atexit.register(self.shutdown)

        if app.config.get("SCHEDULER_ENABLED", True):
            self.start()

    def start(self):
        """Start the background scheduler"""
        if self.is_running:
            return

        try:
            self.scheduler.remove_all_jobs()
            self._add_core_jobs()
            self.scheduler.start()
            self.is_running = True
            logger.info("Scheduler started successfully")

        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")
            raise

    def stop(self):
        """Stop the background scheduler"""
        if not self.is_running:
            return

        try:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Scheduler stopped")

        except Exception as e:
            logger.error(f"Error stopping scheduler: {e}")

    def shutdown(self):
        """Graceful shutdown"""
        self.stop()

    def _add_core_jobs(self):
        """Add core scheduled jobs"""

        self.scheduler.add_job(
            func=self._sync_live_scores,
            trigger=IntervalTrigger(minutes=5),
            id="sync_live_scores",
            name="Sync Live Scores",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )

        self.scheduler.add_job(
            func=self._calculate_points,
            trigger=IntervalTrigger(minutes=10),
            id="calculate_points",
            name="Calculate Points",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=120,
        )

        # Top of every hour: games, lines and classification for the current week
        self.scheduler.add_job(
            func=self._hourly_sync,
            trigger=CronTrigger(minute=0),
            id="hourly_sync",
            name="Hourly Week Sync",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
        )

        # 9 AM UTC: compare running totals with pick points
        self.scheduler.add_job(
            func=self._daily_score_audit,
            trigger=CronTrigger(hour=9, minute=0),
            id="daily_score_audit",
            name="Daily Score Audit",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
        )

        logger.info("Core scheduled jobs added")

    def _has_live_games(self, now=None):
        now = (now or datetime.now(timezone.utc)).replace(tzinfo=None)
        return (
            Game.query.filter(
                Game.completed.is_(False),
                Game.start_time <= now,
                Game.start_time >= now - timedelta(hours=LIVE_WINDOW_HOURS),
            ).count()
            > 0
        )

    def _sync_live_scores(self):
        """Score refresh for games in progress, then scoring when any went final"""
        with self.app.app_context():
            try:
                if not self._has_live_games():
                    return

                success, message = self.data_sync.update_live_scores()
                self._update_stats(success)
                if not success:
                    self.sync_stats["last_error"] = message
                    logger.warning(f"Live score sync issues: {message}")
                    return

                logger.info(f"Live score sync: {message}")
                self._run_points_calculation()

            except Exception as e:
                db.session.rollback()
                self._update_stats(False)
                self.sync_stats["last_error"] = str(e)
                logger.error(f"Error in live score sync: {e}", exc_info=True)

    def _calculate_points(self):
        with self.app.app_context():
            try:
                self._run_points_calculation()
            except Exception as e:
                db.session.rollback()
                self.sync_stats["last_error"] = str(e)
                logger.error(f"Error calculating points: {e}", exc_info=True)

    def _run_points_calculation(self):
        result = self.scoring_engine.calculate_points()
        self.sync_stats["picks_scored"] += result["updated_picks"]
        self.sync_stats["penalties_applied"] += result["missing_pick_penalties"]

        if result["updated_picks"] or result["missing_pick_penalties"]:
            logger.info(
                f"Points calculation: {result['updated_picks']} picks scored, "
                f"{result['missing_pick_penalties']} penalties, "
                f"{result['emails_sent']} emails sent"
            )
        return result

    def _hourly_sync(self):
        """Sync the current week (or the postseason) and classify its games"""
        with self.app.app_context():
            try:
                season = current_season_year()
                week = self.data_sync.get_current_week(season)

                if week >= self.data_sync.postseason_week:
                    success, message = self.data_sync.sync_postseason(season)
                else:
                    success, message = self.data_sync.sync_week(season, week)

                self._update_stats(success)
                if success:
                    logger.info(f"Hourly sync completed: {message}")
                else:
                    self.sync_stats["last_error"] = message
                    logger.warning(f"Hourly sync issues: {message}")

            except Exception as e:
                db.session.rollback()
                self._update_stats(False)
                self.sync_stats["last_error"] = str(e)
                logger.error(f"Error in hourly sync: {e}", exc_info=True)

    def _daily_score_audit(self):
        with self.app.app_context():
            try:
                summary = self.scoring_engine.audit_user_totals()["summary"]
                if summary["users_with_discrepancies"]:
                    logger.warning(
                        f"Score audit: {summary['users_with_discrepancies']} users with "
                        f"total discrepancy {summary['total_discrepancy']}"
                    )
                else:
                    logger.info(f"Score audit: {summary['total_users']} users consistent")

            except Exception as e:
                logger.error(f"Error in daily score audit: {e}", exc_info=True)

    def _update_stats(self, success):
        """Update sync statistics"""
        self.sync_stats["last_sync"] = datetime.now(timezone.utc)
        self.sync_stats["total_syncs"] += 1

        if success:
            self.sync_stats["successful_syncs"] += 1
            self.sync_stats["last_error"] = None
        else:
            self.sync_stats["failed_syncs"] += 1

    def get_status(self):
        """Get scheduler status information"""
        jobs = []
        if self.scheduler:
            for job in self.scheduler.get_jobs():
                next_run = getattr(job, "next_run_time", None)
                jobs.append(
                    {
                        "id": job.id,
                        "name": job.name,
                        "next_run": next_run.isoformat() if next_run else None,
                        "trigger": str(job.trigger),
                    }
                )

        stats = dict(self.sync_stats)
        if stats["last_sync"]:
            stats["last_sync"] = stats["last_sync"].isoformat()

        return {"is_running": self.is_running, "jobs": jobs, "stats": stats}

    def force_sync(self, sync_type="live"):
        """Manually trigger a job"""
        jobs = {
            "live": self._sync_live_scores,
            "points": self._calculate_points,
            "hourly": self._hourly_sync,
            "audit": self._daily_score_audit,
        }
        if sync_type not in jobs:
            return False, f"Unknown sync type: {sync_type}"

        if self.app is None:
            return False, "Scheduler not initialized"

        jobs[sync_type]()
        return True, f"Manual {sync_type} sync completed"

    def pause_job(self, job_id):
        """Pause a specific job"""
        try:
            self.scheduler.pause_job(job_id)
            return True, f"Job {job_id} paused"
        except Exception as e:
            return False, f"Failed to pause job: {e}"

    def resume_job(self, job_id):
        """Resume a specific job"""
        try:
            self.scheduler.resume_job(job_id)
            return True, f"Job {job_id} resumed"
        except Exception as e:
            return False, f"Failed to resume job: {e}"


# Global scheduler instance
scheduler_service = SchedulerService()
