"""
Operator commands, run as `flask --app santaspin santa <command>`.
"""
from __future__ import annotations

from functools import wraps

import click
from flask import current_app
from flask.cli import AppGroup

from .errors import SantaError
from .extensions import broadcaster, db
from .security import hash_passkey
from .services import admin as admin_service
from .services.assignments import engine_rng
from .services.dashboard import list_spun, search_names
from .services.imports import import_rows, read_rows
from .services.repair import repair_unmatched
from .store import find_by_display_name

santa_cli = AppGroup("santa", help="Secret Santa administration.")


def reports_errors(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SantaError as e:
            raise click.ClickException(str(e)) from e
    return wrapper


@santa_cli.command("init-db")
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("Database initialised.")


@santa_cli.command("hash-passkey")
@click.password_option("--passphrase", prompt="Admin passphrase")
def hash_passkey_command(passphrase):
    """Print the value for SANTA_ADMIN_PASSKEY_HASH."""
    click.echo(hash_passkey(passphrase))


@santa_cli.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.argument("group")
@click.option("--key", type=click.Choice(["external_id", "name"]), default=None)
@reports_errors
def import_command(path, group, key):
    """Import staff from an xlsx or csv sheet into GROUP."""
    with open(path, "rb") as fh:
        rows = read_rows(fh.read(), path)
    report = import_rows(rows, group, key=key or current_app.config["SANTA_IMPORT_KEY"])
    click.echo(report.message)
    for skipped in report.skipped:
        click.echo(f"  skipped row {skipped['row']}: {skipped['reason']}")


@santa_cli.command("reset-user")
@click.argument("employee_id")
@reports_errors
def reset_user(employee_id):
    """Undo EMPLOYEE_ID's spin and free their recipient."""
    recipient = admin_service.reset_participant(employee_id)
    released = recipient.display_name if recipient else "nobody"
    click.echo(f"Reset {employee_id} (released {released}).")


@santa_cli.command("set-replays")
@click.argument("employee_id")
@click.argument("count", type=int)
@reports_errors
def set_replays(employee_id, count):
    """Allow EMPLOYEE_ID to see their result COUNT more times."""
    participant = admin_service.grant_replays(employee_id, count)
    click.echo(f"{participant.external_id} {participant.display_name}: {participant.replays_remaining} replays")


@santa_cli.command("assign")
@click.argument("spinner")
@click.argument("recipient")
@click.option("--by-name", is_flag=True, help="Treat SPINNER and RECIPIENT as display names.")
@reports_errors
def assign(spinner, recipient, by_name):
    """Manually make SPINNER give to RECIPIENT."""
    if by_name:
        spinner = _single_by_name(spinner).external_id
        recipient = _single_by_name(recipient).external_id
    giver, receiver = admin_service.assign_directly(spinner, recipient, notifier=broadcaster)
    click.echo(f"Assigned {giver.external_id} {giver.display_name} -> {receiver.external_id} {receiver.display_name}")


def _single_by_name(name: str):
    matches = find_by_display_name(name)
    if not matches:
        raise click.ClickException(f"No staff found with name {name}")
    if len(matches) > 1:
        ids = ", ".join(p.external_id for p in matches)
        raise click.ClickException(f"Name {name} is ambiguous ({ids}); use employee IDs")
    return matches[0]


@santa_cli.command("change-id")
@click.argument("name")
@click.argument("new_employee_id")
@reports_errors
def change_id(name, new_employee_id):
    """Give the person called NAME a new employee ID."""
    participant = _single_by_name(name)
    old_id = participant.external_id
    participant = admin_service.change_external_id(old_id, new_employee_id)
    click.echo(f"{participant.display_name}: {old_id} -> {participant.external_id}")


@santa_cli.command("list-users")
@click.argument("query")
def list_users(query):
    """List names containing QUERY."""
    names = search_names(query, limit=20)
    click.echo(f"Found {len(names)} matching users:")
    for name in names:
        click.echo(f"  {name}")


@santa_cli.command("list-spun")
@click.option("--search", default="")
@click.option("--page", default=1, type=int)
def list_spun_command(search, page):
    """Show who has spun and who they picked."""
    listing = list_spun(page=page, search=search, per_page=current_app.config["SANTA_PAGE_SIZE"])
    for row in listing["staff"]:
        click.echo(f"  {row['employeeId']} {row['name']} -> {row['spinResult']} ({row['spinResultDept']})")
    click.echo(f"Page {listing['currentPage']} of {listing['pages']} ({listing['total']} total)")


@santa_cli.command("repair")
@reports_errors
def repair():
    """Join everyone who spun but was never picked into cycles."""
    report = repair_unmatched(rng=engine_rng(), notifier=broadcaster)
    click.echo(f"Repaired {report.repaired} participants.")
    for group, count in report.groups.items():
        click.echo(f"  {group}: {count}")
    if report.skipped:
        click.echo(f"Left unmatched (alone in their group): {', '.join(report.skipped)}")
