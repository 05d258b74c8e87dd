from __future__ import annotations

import json

import typer

from .config import settings
from .db.session import SessionLocal
from .models import User
from .services.auth import AuthService
from .services.reminders import dispatch_reminders, queue_reminders, run_notification_sweep
from .services.two_factor import TwoFactorService

app = typer.Typer(help="Document tracker administrative CLI")


@app.command()
def create_user(
    email: str = typer.Argument(..., help="User email"),
    full_name: str = typer.Option("", "--full-name", "-f", help="Optional full name"),
    locale: str = typer.Option("en", "--locale", "-l", show_default=True, help="Preferred locale"),
    notifications: bool = typer.Option(True, "--notifications/--no-notifications", help="Email reminders"),
) -> None:
    """Create a user (or update an existing one) without sending a sign-in link."""
    db = SessionLocal()
    try:
        user = AuthService(db).get_or_create_user(email.strip().lower(), locale)
        if full_name:
            user.full_name = full_name
        user.email_notifications = notifications
        db.commit()
        typer.echo(f"User {user.email} ready ({user.id})")
    finally:
        db.close()


@app.command()
def send_magic_link(email: str = typer.Argument(...)) -> None:
    """Send a login magic link to an email address."""
    db = SessionLocal()
    try:
        AuthService(db).request_magic_link(email)
        typer.echo(f"Magic link sent to {email}. Check {settings.api_url}/auth/callback in inbox")
    finally:
        db.close()


@app.command()
def disable_two_factor(email: str = typer.Argument(...)) -> None:
    """Turn off two-factor for a locked-out user."""
    db = SessionLocal()
    try:
        user = AuthService(db).find_user(email)
        if user is None:
            typer.echo(f"No user with email {email}", err=True)
            raise typer.Exit(code=1)
        TwoFactorService(db).disable(user)
        db.commit()
        typer.echo(f"Two-factor disabled for {user.email}")
    finally:
        db.close()


@app.command()
def queue() -> None:
    """Schedule reminder jobs for every document with an upcoming expiration."""
    db = SessionLocal()
    try:
        stats = queue_reminders(db)
        db.commit()
        typer.echo(json.dumps(stats))
    finally:
        db.close()


@app.command()
def dispatch(batch_size: int = typer.Option(50, "--batch-size", "-b", show_default=True)) -> None:
    """Send reminder jobs that are due now."""
    db = SessionLocal()
    try:
        stats = dispatch_reminders(db, batch_size=batch_size)
        db.commit()
        typer.echo(json.dumps(stats))
    finally:
        db.close()


@app.command()
def sweep() -> None:
    """Run the daily notification sweep once, as the cron endpoint does."""
    db = SessionLocal()
    try:
        result = run_notification_sweep(db)
        db.commit()
        typer.echo(json.dumps(result.to_dict()))
    finally:
        db.close()


@app.command()
def list_users() -> None:
    db = SessionLocal()
    try:
        for user in db.query(User).order_by(User.created_at.asc()).all():
            flags = "2fa" if user.two_factor_enabled else "-"
            typer.echo(f"{user.id}  {user.email}  {flags}")
    finally:
        db.close()


if __name__ == "__main__":
    app()
