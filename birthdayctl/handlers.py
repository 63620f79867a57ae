from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict

from loguru import logger

from .config import BIRTHDAY_SUBJECT, Settings
from .errors import DeliveryError
from .mailer import Mailer
from .models import FAILURE, SKIPPED, SUCCESS, Job, JobKind
from .recurrence import next_occurrence, resolve_timezone
from .repository import reschedule


@dataclass
class HandlerContext:
    conn: object
    mailer: Mailer
    settings: Settings
    now: datetime


def send_birthday(ctx: HandlerContext, job: Job) -> str:
    """Send one birthday email, then move the job to next year or to a short retry."""
    month, day = job.anniversary_month_day
    year = ctx.now.astimezone(resolve_timezone(job.timezone)).year
    try:
        ctx.mailer.send(job.correlation_key, BIRTHDAY_SUBJECT, job.recipient_name, year=year)
    except DeliveryError as e:
        attempts = job.attempts + 1
        cap = ctx.settings.max_delivery_attempts
        if cap and attempts >= cap:
            next_at = next_occurrence(month, day, job.timezone, ctx.now, ctx.settings.send_hour)
            logger.warning(
                f"Giving up on {job.correlation_key} after {attempts} attempts; next try {next_at.isoformat()}"
            )
            reschedule(ctx.conn, job.id, next_at, outcome=SKIPPED, attempts=0, error=str(e))
            return SKIPPED
        next_at = ctx.now + timedelta(seconds=ctx.settings.retry_backoff_seconds)
        logger.warning(f"Failed to send email to {job.recipient_name} (attempt {attempts}): {e}")
        reschedule(ctx.conn, job.id, next_at, outcome=FAILURE, attempts=attempts, error=str(e))
        return FAILURE

    next_at = next_occurrence(month, day, job.timezone, ctx.now, ctx.settings.send_hour)
    logger.info(f"Email sent to {job.recipient_name} <{job.correlation_key}>; next on {next_at.isoformat()}")
    if not reschedule(ctx.conn, job.id, next_at, outcome=SUCCESS, attempts=0):
        logger.info(f"Job {job.id} was canceled while sending; nothing to reschedule")
    return SUCCESS


HANDLERS: Dict[JobKind, Callable[[HandlerContext, Job], str]] = {
    JobKind.BIRTHDAY_SEND: send_birthday,
}


def dispatch(ctx: HandlerContext, job: Job) -> str:
    return HANDLERS[job.kind](ctx, job)
