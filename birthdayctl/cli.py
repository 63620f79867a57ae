import json
from dataclasses import replace

import click

from .config import MailSettings
from .db import DB_FILE, connect_db, init_db
from .errors import StoreError
from .log import add_file_sinks, configure_logging
from .mailer import build_mailer
from .repository import counts, get_config, list_jobs, load_settings, set_config
from .scheduler import Scheduler
from .service import cancel_birthday, replace_birthday
from .users import create_user, delete_user, get_user, list_users, update_user
from .utils import parse_delay_to_seconds


def _fail(e):
    click.secho(f"Error: {e}", fg="red")
    raise SystemExit(1)


@click.group(help="birthdayctl — birthday email scheduler")
@click.option("--db", "db_path", envvar="BIRTHDAYCTL_DB", default=DB_FILE, show_default=True,
              help="SQLite job store path")
@click.option("--log-level", default="INFO", show_default=True)
@click.pass_context
def cli(ctx, db_path, log_level):
    configure_logging(log_level)
    # Ensure DB/schema exist before any command runs
    try:
        init_db(db_path)
    except StoreError as e:
        _fail(e)
    ctx.obj = db_path


def _user_line(u):
    return f"{u.id:>5} | {u.name:<20} | {u.email:<30} | {u.birthday} | {u.timezone}"


# ---------- Users ----------
@cli.group("user", help="Manage users (each user gets a yearly birthday email)")
def user_group():
    pass


@user_group.command("add")
@click.option("--name", required=True)
@click.option("--email", required=True)
@click.option("--birthday", required=True, help="YYYY-MM-DD")
@click.option("--tz", "timezone", default="UTC", show_default=True, help="IANA timezone")
@click.pass_obj
def user_add(db_path, name, email, birthday, timezone):
    conn = connect_db(db_path)
    try:
        settings = load_settings(conn)
        user = create_user(conn, name, email, birthday, timezone, hour=settings.send_hour)
        click.secho(f"Created user {user.id} ({user.email})", fg="green")
    except (ValueError, RuntimeError) as e:
        _fail(e)
    finally:
        conn.close()


@user_group.command("list")
@click.option("--page", default=1, type=int, show_default=True)
@click.option("--limit", default=10, type=int, show_default=True)
@click.option("--search", default=None, help="Case-insensitive name filter")
@click.pass_obj
def user_list(db_path, page, limit, search):
    conn = connect_db(db_path)
    try:
        users, total = list_users(conn, page=page, limit=limit, search=search)
    except ValueError as e:
        _fail(e)
    finally:
        conn.close()

    if not users:
        click.echo("No users found.")
        return
    for u in users:
        click.echo(_user_line(u))
    click.echo(f"page {page} · {len(users)} of {total}")


@user_group.command("show")
@click.argument("user_id", type=int)
@click.pass_obj
def user_show(db_path, user_id):
    conn = connect_db(db_path)
    try:
        user = get_user(conn, user_id)
        jobs = list_jobs(conn, email=user.email) if user else []
    finally:
        conn.close()

    if not user:
        _fail(f"User {user_id} not found.")
    click.echo(_user_line(user))
    for j in jobs:
        click.echo(f"      next={j.next_run_at} last={j.last_outcome} attempts={j.attempts}")


@user_group.command("update")
@click.argument("user_id", type=int)
@click.option("--name", default=None)
@click.option("--email", default=None)
@click.option("--birthday", default=None, help="YYYY-MM-DD")
@click.option("--tz", "timezone", default=None, help="IANA timezone")
@click.pass_obj
def user_update(db_path, user_id, name, email, birthday, timezone):
    conn = connect_db(db_path)
    try:
        settings = load_settings(conn)
        user = update_user(conn, user_id, hour=settings.send_hour,
                           name=name, email=email, birthday=birthday, timezone=timezone)
        if user is None:
            raise click.ClickException(f"User {user_id} not found.")
        click.secho(f"Updated user {user.id} ({user.email})", fg="green")
    except (ValueError, RuntimeError, click.ClickException) as e:
        _fail(e)
    finally:
        conn.close()


@user_group.command("delete")
@click.argument("user_id", type=int)
@click.pass_obj
def user_delete(db_path, user_id):
    conn = connect_db(db_path)
    try:
        if not delete_user(conn, user_id):
            raise click.ClickException(f"User {user_id} not found.")
        click.secho(f"Deleted user {user_id}.", fg="green")
    except (RuntimeError, click.ClickException) as e:
        _fail(e)
    finally:
        conn.close()


# ---------- Jobs ----------
@cli.command("schedule", help="Schedule (or replace) the yearly birthday email for EMAIL")
@click.argument("email")
@click.argument("name")
@click.argument("birthday")
@click.option("--tz", "timezone", default="UTC", show_default=True)
@click.pass_obj
def schedule_cmd(db_path, email, name, birthday, timezone):
    conn = connect_db(db_path)
    try:
        settings = load_settings(conn)
        job_id = replace_birthday(conn, email, name, birthday, timezone, hour=settings.send_hour)
        click.secho(f"Scheduled {job_id} for {email}", fg="green")
    except (ValueError, RuntimeError) as e:
        _fail(e)
    finally:
        conn.close()


@cli.command("cancel", help="Remove every birthday job for EMAIL")
@click.argument("email")
@click.pass_obj
def cancel_cmd(db_path, email):
    conn = connect_db(db_path)
    try:
        removed = cancel_birthday(conn, email)
    except RuntimeError as e:
        _fail(e)
    finally:
        conn.close()

    if not removed:
        click.echo(f"No jobs for {email}.")
        return
    click.secho(f"Canceled {len(removed)} job(s) for {email}.", fg="yellow")


@cli.command("jobs")
@click.option("--email", default=None)
@click.pass_obj
def jobs_cmd(db_path, email):
    conn = connect_db(db_path)
    try:
        rows = list_jobs(conn, email=email)
    finally:
        conn.close()

    if not rows:
        click.echo("No jobs.")
        return

    for j in rows:
        click.echo(
            f"{j.id} | {j.correlation_key:<30} | next={j.next_run_at} | tz={j.timezone} "
            f"| locked={j.locked_at or '-'} | last={j.last_outcome or '-'} | attempts={j.attempts}"
        )


@cli.command("status")
@click.pass_obj
def status_cmd(db_path):
    conn = connect_db(db_path)
    try:
        click.echo(json.dumps(counts(conn), indent=2))
    finally:
        conn.close()


# ---------- Scheduler ----------
@cli.group("scheduler", help="Run the birthday scheduler")
def scheduler_group():
    pass


@scheduler_group.command("start")
@click.option("--interval", "interval_str", default=None,
              help="Polling interval, e.g. 30m, 1m, 90s (default from config)")
@click.option("--concurrency", default=None, type=int, help="Max concurrent sends (default from config)")
@click.option("--once", is_flag=True, help="Run a single tick, wait for its sends, and exit")
@click.option("--log-dir", default=None, help="Also write error.log and combined.log here")
@click.pass_obj
def scheduler_start(db_path, interval_str, concurrency, once, log_dir):
    if log_dir:
        add_file_sinks(log_dir)
    conn = connect_db(db_path)
    try:
        settings = load_settings(conn)
        overrides = {}
        if interval_str:
            overrides["poll_interval_seconds"] = parse_delay_to_seconds(interval_str)
        if concurrency is not None:
            overrides["max_concurrency"] = concurrency
        settings = replace(settings, **overrides)
        mailer = build_mailer(MailSettings.from_env())
        scheduler = Scheduler(db_path, mailer, settings)
    except ValueError as e:
        _fail(e)
    finally:
        conn.close()

    if once:
        for f in scheduler.tick():
            f.result()
        scheduler.stop()
        return

    click.secho(
        f"Scheduler started (every {settings.poll_interval_seconds}s, "
        f"concurrency {settings.max_concurrency}). Press Ctrl+C to stop…",
        fg="cyan",
    )
    scheduler.setup_signal_handlers()
    try:
        scheduler.run_forever()
    finally:
        scheduler.stop(wait=True)
    click.secho("Scheduler stopped.", fg="yellow")


# ---------- Config ----------
@cli.group("config", help="Configuration")
def config_group():
    pass


@config_group.command("get")
@click.pass_obj
def config_get(db_path):
    conn = connect_db(db_path)
    try:
        click.echo(json.dumps(get_config(conn), indent=2))
    finally:
        conn.close()


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_obj
def config_set_cmd(db_path, key, value):
    conn = connect_db(db_path)
    try:
        set_config(conn, key, value)
        click.secho(f"Config updated: {key}={value}", fg="green")
    except ValueError as e:
        _fail(e)
    finally:
        conn.close()


def main():
    cli()
