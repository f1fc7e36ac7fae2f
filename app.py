from flask import Flask
from flask_migrate import Migrate

from config import Config
from models import db


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    register_cli(app)

    return app

#-------------------------
import time

import click
from sqlalchemy import select

from models.user import User
from security.accounts import create_user, unlock_user
from security.errors import AuthError
from security.otp import sweep_otps
from security.tokens import sweep_expired_tokens
from utils.scheduler import create_scheduler


def _user_by_email(email):
    return db.session.execute(
        select(User).where(User.email == email.strip().lower())
    ).scalar_one_or_none()


def register_cli(app):
    @app.cli.command("create-user")
    @click.argument("email")
    @click.option("--phone", default=None, help="E.164 phone number.")
    @click.password_option()
    def create_user_cmd(email, phone, password):
        """Create an ACTIVE user."""
        try:
            user = create_user(email, password, phone_number=phone)
        except AuthError as exc:
            raise click.ClickException(exc.message) from exc
        click.echo(f"Created user {user.id} ({user.email})")

    @app.cli.command("unlock-user")
    @click.argument("email")
    def unlock_user_cmd(email):
        """Reset a LOCKED user to ACTIVE."""
        user = _user_by_email(email)
        if not user:
            raise click.ClickException("User not found")
        unlock_user(user.id)
        click.echo(f"{user.email} unlocked")

    @app.cli.command("sweep-otps")
    def sweep_otps_cmd():
        """Expire overdue OTPs and delete old expired ones."""
        expired, deleted = sweep_otps()
        click.echo(f"OTPs expired: {expired}, deleted: {deleted}")

    @app.cli.command("sweep-tokens")
    def sweep_tokens_cmd():
        """Delete expired and revoked auth tokens."""
        deleted = sweep_expired_tokens()
        click.echo(f"Tokens deleted: {deleted}")

    @app.cli.command("run-sweeper")
    def run_sweeper_cmd():
        """Run both sweeps every SWEEP_INTERVAL_SECONDS until interrupted."""
        scheduler = create_scheduler(app)
        scheduler.start()
        click.echo(f"Sweeper running every {app.config['SWEEP_INTERVAL_SECONDS']}s")
        try:
            while True:
                time.sleep(1)
        except (KeyboardInterrupt, SystemExit):
            scheduler.shutdown(wait=True)

#-------------------------


if __name__ == "__main__":
    app = create_app()
    with app.app_context():
        db.create_all()
