"""
Email Service for CFB Pick'em

Sends game result emails after picks are scored. Delivery problems are
logged and reported as ``False``; they never propagate into scoring.
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app

logger = logging.getLogger(__name__)


class EmailService:
    """Handles all email sending functionality"""

    def __init__(self):
        self.smtp_server = current_app.config.get("MAIL_SERVER") or "localhost"
        self.smtp_port = current_app.config.get("MAIL_PORT", 587)
        self.smtp_username = current_app.config.get("MAIL_USERNAME")
        self.smtp_password = current_app.config.get("MAIL_PASSWORD")
        self.from_email = current_app.config.get("FROM_EMAIL") or current_app.config.get(
            "MAIL_USERNAME", "noreply@cfbpickem.com"
        )
        self.from_name = current_app.config.get("FROM_NAME", "CFB Pick'em")
        self.use_tls = current_app.config.get("MAIL_USE_TLS", True)

    @property
    def is_configured(self):
        return bool(self.smtp_username and self.smtp_password)

    def _create_message(self, to_email, subject, body_text, body_html=None):
        """Create email message"""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email

        msg.attach(MIMEText(body_text, "plain"))
        if body_html:
            msg.attach(MIMEText(body_html, "html"))

        return msg

    def _send_email(self, message):
        """Send email message"""
        try:
            if not self.is_configured:
                logger.warning("SMTP credentials not configured. Email not sent.")
                return False

            with smtplib.SMTP(self.smtp_server, self.smtp_port) as server:
                if self.use_tls:
                    server.starttls()
                server.login(self.smtp_username, self.smtp_password)
                server.sendmail(self.from_email, [message["To"]], message.as_string())

            logger.info(f"Email sent successfully to {message['To']}")
            return True

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {message['To']}: {str(e)}")
            return False

    def send_game_results_email(self, user, results):
        """
        Send one user the outcome of their newly scored picks.

        Args:
            user: the User being notified
            results: list of dicts with ``game``, ``picked_team``,
                ``is_double_down``, ``result`` and ``points``
        """
        if not results:
            return False

        total = sum(r["points"] for r in results)
        subject = f"Your CFB Pick'em results: {total:+d} points"

        lines = []
        rows = []
        for r in results:
            game = r["game"]
            matchup = f"{game.away_team} {game.away_score} @ {game.home_team} {game.home_score}"
            pick_label = r["picked_team"] + (" (double down)" if r["is_double_down"] else "")
            lines.append(
                f"- {matchup}: picked {pick_label}, {r['result']}, {r['points']:+d}"
            )
            rows.append(
                f"<tr><td>{matchup}</td><td>{pick_label}</td>"
                f"<td>{r['result']}</td><td>{r['points']:+d}</td></tr>"
            )

        body_text = (
            f"Hi {user.display_name},\n\n"
            "Your picks have been scored:\n\n"
            + "\n".join(lines)
            + f"\n\nPoints this round: {total:+d}\n"
            f"Season total: {user.total_score}\n\n"
            "The CFB Pick'em Team\n"
        )

        body_html = f"""
        <html>
        <body>
            <h2>Your picks have been scored</h2>
            <p>Hi {user.display_name},</p>
            <table>
                <tr><th>Game</th><th>Your pick</th><th>Result</th><th>Points</th></tr>
                {''.join(rows)}
            </table>
            <p><strong>Points this round:</strong> {total:+d}<br>
            <strong>Season total:</strong> {user.total_score}</p>
        </body>
        </html>
        """

        message = self._create_message(user.email, subject, body_text, body_html)
        return self._send_email(message)


def send_game_results(scored_picks):
    """
    Email every opted-in user a summary of their newly scored picks.

    Returns the number of emails sent.
    """
    from cfb_pickem.models import Game, User

    by_user = {}
    for scored in scored_picks:
        by_user.setdefault(scored.user_id, []).append(scored)

    if not by_user:
        return 0

    service = EmailService()
    if not service.is_configured:
        logger.info("Email not configured, skipping game result notifications")
        return 0

    games = {
        g.id: g
        for g in Game.query.filter(
            Game.id.in_({s.game_id for s in scored_picks})
        ).all()
    }

    sent = 0
    for user in User.query.filter(User.id.in_(by_user.keys())).all():
        if not user.is_active or not user.email_notifications:
            continue

        results = [
            {
                "game": games[s.game_id],
                "picked_team": s.picked_team,
                "is_double_down": s.is_double_down,
                "result": s.result,
                "points": s.points,
            }
            for s in by_user[user.id]
            if s.game_id in games
        ]
        if service.send_game_results_email(user, results):
            sent += 1

    logger.info(f"Sent {sent} game result emails")
    return sent
