"""In-process surface used by the user directory: schedule and cancel birthday jobs."""
from datetime import date, datetime
from typing import List, Optional, Union

from loguru import logger

from .errors import ValidationError
from .models import Job, JobKind
from .recurrence import SEND_HOUR, next_occurrence, resolve_timezone
from .repository import insert_job, remove_matching, rename_recipient, restore_jobs
from .utils import utc_now


def parse_birthday(value: Union[str, date]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(value or "", "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError("Birthday must be in YYYY-MM-DD format")


def schedule_birthday(
    conn,
    email: str,
    recipient_name: str,
    birthday: Union[str, date],
    timezone: str = "UTC",
    *,
    now: Optional[datetime] = None,
    hour: int = SEND_HOUR,
) -> str:
    """Insert the annual job for `email`; returns its id. Does not cancel an existing one."""
    if not email or not email.strip():
        raise ValidationError("Email is required")
    anchor = parse_birthday(birthday)
    resolve_timezone(timezone)

    first_run = next_occurrence(anchor.month, anchor.day, timezone, now or utc_now(), hour)
    job = insert_job(
        conn,
        name=JobKind.BIRTHDAY_SEND.value,
        correlation_key=email,
        recipient_name=recipient_name,
        anniversary=anchor.isoformat(),
        timezone=timezone,
        next_run_at=first_run,
    )
    logger.info(f"Scheduled birthday email for {recipient_name} <{email}> at {job.next_run_at}")
    return job.id


def cancel_birthday(conn, email: str) -> List[Job]:
    """Remove every birthday job for `email`. Empty list when there was none."""
    removed = remove_matching(conn, JobKind.BIRTHDAY_SEND.value, email)
    if removed:
        logger.info(f"Canceled {len(removed)} birthday job(s) for {email}")
    return removed


def replace_birthday(
    conn,
    email: str,
    recipient_name: str,
    birthday,
    timezone: str = "UTC",
    *,
    old_email: Optional[str] = None,
    **kwargs,
) -> str:
    """Cancel the jobs under `old_email` (default `email`) and schedule a fresh one.

    If scheduling fails the canceled jobs are put back, so the user keeps exactly one.
    """
    removed = cancel_birthday(conn, old_email or email)
    try:
        return schedule_birthday(conn, email, recipient_name, birthday, timezone, **kwargs)
    except Exception:
        restore_jobs(conn, removed)
        raise


def rename_birthday(conn, email: str, recipient_name: str) -> int:
    return rename_recipient(conn, JobKind.BIRTHDAY_SEND.value, email, recipient_name)
