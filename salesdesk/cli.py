# salesdesk/cli.py
from __future__ import annotations

import click
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db
from .models import AdminUser
from .utils.passwords import hash_password, validate_password


def _services():
    return current_app.extensions["salesdesk"]


# =========================================================
# Periodic jobs (cron / scheduler)
# =========================================================
@click.command("mark-expired-quotations")
def mark_expired_quotations():
    """Expire PENDING/APPROVED quotations past valid_until."""
    count = _services().quotations.mark_expired_quotations()
    click.echo(f"Expired {count} quotation(s).")


@click.command("mark-overdue-invoices")
def mark_overdue_invoices():
    """Mark PENDING invoices past their due date as OVERDUE."""
    count = _services().invoices.mark_overdue_invoices()
    click.echo(f"Marked {count} invoice(s) overdue.")


# =========================================================
# Admin bootstrap
# =========================================================
@click.command("create-admin")
@click.option("--email", required=True)
@click.option("--name", default="Sales Admin", show_default=True)
@click.option("--role", default="admin", show_default=True)
@click.password_option()
def create_admin(email, name, role, password):
    """Create (or reset the password of) an admin user."""
    ok, msg = validate_password(password)
    if not ok:
        raise click.BadParameter(msg, param_hint="password")

    email = email.strip().lower()
    user = AdminUser.query.filter(db.func.lower(AdminUser.email) == email).first()
    if user:
        user.password_hash = hash_password(password)
        user.is_active = True
        action = "updated"
    else:
        user = AdminUser(name=name, email=email, role=role, password_hash=hash_password(password))
        db.session.add(user)
        action = "created"

    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("create-admin failed for %s", email)
        raise click.ClickException("Could not save admin user.")

    click.echo(f"Admin {action}: {email}")


def register_commands(app) -> None:
    app.cli.add_command(mark_expired_quotations)
    app.cli.add_command(mark_overdue_invoices)
    app.cli.add_command(create_admin)
