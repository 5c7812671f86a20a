#!/usr/bin/env python3
"""
CFB Pick'em Management CLI

Command-line access to syncing, scoring and maintenance for the CFB Pick'em
application.
"""

import os

# Background jobs belong to the web process, not one-off commands
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import click  # noqa: E402
from flask.cli import with_appcontext  # noqa: E402
from flask_migrate import downgrade, migrate, upgrade  # noqa: E402
from sqlalchemy import text  # noqa: E402
from sqlalchemy.exc import IntegrityError  # noqa: E402

from cfb_pickem import create_app, db  # noqa: E402
from cfb_pickem.models import Game, Pick, User  # noqa: E402
from cfb_pickem.utils.data_sync import DataSync  # noqa: E402
from cfb_pickem.utils.game_classification import classify as classify_game  # noqa: E402
from cfb_pickem.utils.game_classification import describe, rules_for, tier_for  # noqa: E402
from cfb_pickem.utils.scoring import ScoringEngine  # noqa: E402
from cfb_pickem.utils.cache_utils import get_cache_stats  # noqa: E402
from cfb_pickem.utils.timezone_utils import current_season_year, format_game_time, get_utc_time  # noqa: E402

app = create_app()


@click.group()
def cli():
    """CFB Pick'em Management CLI"""
    pass


# Data Sync Commands
@cli.group()
def sync():
    """Data synchronization commands"""
    pass


@sync.command()
@click.option("--season", type=int, help="Season year (default: current season)")
@click.option("--week", type=int, help="Week number (default: current week)")
@with_appcontext
def week(season, week):
    """Sync games, lines and scores for one week"""
    season = season or current_season_year()
    data_sync = DataSync()
    week = week or data_sync.get_current_week(season)

    click.echo(f"Syncing week {week} of the {season} season...")
    success, message = data_sync.sync_week(season, week)
    click.echo(f"✅ {message}" if success else f"❌ {message}")


@sync.command()
@click.option("--season", type=int, help="Season year (default: current season)")
@with_appcontext
def postseason(season):
    """Sync bowl and playoff games"""
    season = season or current_season_year()
    click.echo(f"Syncing postseason games for {season}...")

    success, message = DataSync().sync_postseason(season)
    click.echo(f"✅ {message}" if success else f"❌ {message}")


@sync.command()
@with_appcontext
def scores():
    """Update scores for games in progress"""
    click.echo("Updating live scores...")
    success, message = DataSync().update_live_scores()
    click.echo(f"✅ {message}" if success else f"❌ {message}")


# Scoring Commands
@cli.group()
def score():
    """Scoring and score repair commands"""
    pass


@score.command("run")
@click.option("--no-email", is_flag=True, help="Skip game result emails")
@with_appcontext
def run_scoring(no_email):
    """Score completed picks and apply missing pick penalties"""
    result = ScoringEngine().calculate_points(notify=not no_email)

    click.echo(f"✅ Scored {result['updated_picks']} picks ({result['total_points_awarded']:+d} points)")
    click.echo(f"   Missing pick penalties: {result['missing_pick_penalties']}")
    click.echo(f"   Emails sent: {result['emails_sent']}")
    if result["failed_picks"]:
        click.echo(f"⚠️  {result['failed_picks']} picks failed, see logs")


@score.command()
@with_appcontext
def penalties():
    """Apply missing pick penalties for premium bowl and playoff games"""
    result = ScoringEngine().apply_missing_pick_penalties()
    click.echo(
        f"✅ Checked {result['games_checked']} games, applied {result['penalties']} penalties"
    )


@score.command()
@with_appcontext
def audit():
    """Compare stored user totals with the sum of their pick points"""
    report = ScoringEngine().audit_user_totals()
    summary = report["summary"]

    for entry in report["users"]:
        marker = "⚠️ " if entry["has_discrepancy"] else "✅"
        click.echo(
            f"  {marker} {entry['name']}: stored {entry['stored_total']}, "
            f"calculated {entry['calculated_total']}"
        )

    click.echo(
        f"{summary['users_with_discrepancies']}/{summary['total_users']} users with "
        f"discrepancies (total {summary['total_discrepancy']:+d})"
    )


@score.command()
@with_appcontext
def recompute():
    """⚠️  Overwrite every user's total with the sum of their pick points"""
    if not click.confirm("This rewrites all user totals. Continue?"):
        click.echo("Cancelled.")
        return

    result = ScoringEngine().recompute_user_totals()
    click.echo(f"✅ Recomputed {result['updated_users']} of {result['checked_users']} users")


@score.command("fix-special")
@click.option("--dry-run", is_flag=True, help="Report changes without writing")
@with_appcontext
def fix_special(dry_run):
    """Force double downs on special games and rescore their scored picks"""
    result = ScoringEngine().fix_special_game_picks(dry_run=dry_run)

    prefix = "🔍 Dry run:" if dry_run else "✅"
    click.echo(f"{prefix} {result['double_down_flags_fixed']} double down flags")
    click.echo(f"{prefix} {result['picks_rescored']} picks rescored")
    if result["failed"]:
        click.echo(f"❌ {result['failed']} picks failed to rescore, see logs")
    click.echo(f"{prefix} {result['missing_pick_penalties']} missing pick penalties")
    for change in result["user_score_changes"]:
        click.echo(f"   user {change['user_id']}: {change['change']:+d}")


@cli.command()
@click.argument("home_team")
@click.argument("away_team")
@click.option("--notes", default="", help="Upstream notes text")
@click.option("--week", type=int, default=1)
@click.option("--season", type=int)
def classify(home_team, away_team, notes, week, season):
    """Show how a matchup would be classified"""
    category = classify_game(home_team, away_team, week, season, notes)
    tier = tier_for(category, notes)
    rules = rules_for(category)

    click.echo(f"🏈 {away_team} @ {home_team}: {category.value}")
    if tier:
        click.echo(f"   Tier: {tier.value}")
    click.echo(f"   {describe(category, tier)}")
    for name, value in rules._asdict().items():
        click.echo(f"   {name}: {'yes' if value else 'no'}")


# User Management Commands
@cli.group()
def user():
    """User management commands"""
    pass


@user.command()
@click.argument("email")
@click.option("--name", help="Display name")
@with_appcontext
def create(email, name):
    """Create a player"""
    try:
        db.session.add(User(email=email.lower(), name=name))
        db.session.commit()
        click.echo(f"✅ Created user {email}")
    except IntegrityError:
        db.session.rollback()
        click.echo(f"❌ User with email '{email}' already exists!")


@user.command("list")
@with_appcontext
def list_users():
    """List all users by total score"""
    users = User.query.order_by(User.total_score.desc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("Users:")
    for u in users:
        status = "🟢" if u.is_active else "🔴"
        click.echo(f"  {status} {u.display_name} ({u.email}) - {u.total_score} pts")


# Database Commands
@cli.group()
def db_cmd():
    """Database commands"""
    pass


@db_cmd.command("init")
@with_appcontext
def init_db():
    """Initialize database tables"""
    try:
        db.create_all()
        click.echo("✅ Database tables created successfully!")
    except Exception as e:
        click.echo(f"❌ Error initializing database: {str(e)}")


@db_cmd.command()
@with_appcontext
def reset():
    """⚠️  DANGER: Drop and recreate all tables"""
    if not click.confirm("This will DELETE ALL DATA. Are you sure?"):
        click.echo("Cancelled.")
        return

    try:
        db.drop_all()
        db.create_all()
        click.echo("✅ Database reset successfully!")
    except Exception as e:
        click.echo(f"❌ Error resetting database: {str(e)}")


# Database Migration Commands
@cli.group()
def db_migrate():
    """Database migration commands"""
    pass


@db_migrate.command("create")
@click.option("-m", "--message", required=True, help="Migration message")
@with_appcontext
def create_migration(message):
    """Create a new migration"""
    try:
        migrate(message=message)
        click.echo(f"✅ Migration created: {message}")
    except Exception as e:
        click.echo(f"❌ Error creating migration: {str(e)}")


@db_migrate.command("upgrade")
@click.option("--revision", default="head", help="Revision to upgrade to")
@with_appcontext
def apply_migrations(revision):
    """Apply migrations to database"""
    try:
        upgrade(revision=revision)
        click.echo(f"✅ Migrations applied to {revision}")
    except Exception as e:
        click.echo(f"❌ Error applying migrations: {str(e)}")


@db_migrate.command("downgrade")
@click.option("--revision", required=True, help="Revision to downgrade to")
@with_appcontext
def rollback_migration(revision):
    """Rollback migrations to specific revision"""
    try:
        downgrade(revision=revision)
        click.echo(f"✅ Rolled back to {revision}")
    except Exception as e:
        click.echo(f"❌ Error rolling back: {str(e)}")


@cli.command()
@with_appcontext
def status():
    """Show application status"""
    click.echo("🏈 CFB Pick'em Application Status")
    click.echo("=" * 40)

    try:
        db.session.execute(text("SELECT 1"))
        click.echo("✅ Database: Connected")
    except Exception as e:
        click.echo(f"❌ Database: Error - {str(e)}")

    season = current_season_year()
    click.echo(f"📅 Season: {season}")

    user_count = User.query.filter_by(is_active=True).count()
    click.echo(f"👥 Active Users: {user_count}")

    game_count = Game.query.filter_by(season=season).count()
    final_count = Game.query.filter_by(season=season, completed=True).count()
    click.echo(f"🏈 Games: {final_count}/{game_count} completed")

    unscored = (
        Pick.query.join(Game)
        .filter(Pick.points.is_(None), Game.completed.is_(True))
        .count()
    )
    click.echo(f"⏳ Unscored picks on final games: {unscored}")

    next_game = (
        Game.query.filter(Game.start_time > get_utc_time().replace(tzinfo=None))
        .order_by(Game.start_time)
        .first()
    )
    if next_game:
        click.echo(
            f"🕒 Next kickoff: {next_game.away_team} @ {next_game.home_team}, "
            f"{format_game_time(next_game.start_time)}"
        )

    cache_stats = get_cache_stats()
    click.echo(f"🗄️  Cache: {cache_stats['type']} (timeout {cache_stats['timeout']}s)")

    if not app.config.get("CFB_API_KEY"):
        click.echo("⚠️  CFB_API_KEY not set")
    if not app.config.get("ADMIN_TOKEN"):
        click.echo("⚠️  ADMIN_TOKEN not set")


if __name__ == "__main__":
    with app.app_context():
        cli()
