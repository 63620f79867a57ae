import sqlite3
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from .config import ALLOWED_CONFIG_KEYS, Settings
from .errors import StoreError
from .models import Job
from .utils import now_iso, to_iso


# ---------- Config ----------
def get_config(conn) -> Dict[str, str]:
    cur = conn.execute("SELECT key, value FROM config")
    return {r["key"]: r["value"] for r in cur.fetchall()}


def set_config(conn, key: str, value: str):
    if key not in ALLOWED_CONFIG_KEYS:
        raise ValueError(f"Allowed keys: {', '.join(sorted(ALLOWED_CONFIG_KEYS))}")
    Settings.from_mapping({**get_config(conn), key: str(value)})
    with conn:
        conn.execute(
            "INSERT INTO config(key,value) VALUES(?,?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
            (key, str(value)),
        )


def load_settings(conn) -> Settings:
    return Settings.from_mapping(get_config(conn))


# ---------- Jobs: insert / find due / claim / reschedule / remove ----------
def insert_job(
    conn,
    *,
    name: str,
    correlation_key: str,
    recipient_name: str,
    anniversary: str,
    timezone: str,
    next_run_at: datetime,
) -> Job:
    ts = now_iso()
    job = Job(
        id=uuid.uuid4().hex,
        name=name,
        correlation_key=correlation_key,
        recipient_name=recipient_name,
        anniversary=anniversary,
        timezone=timezone,
        next_run_at=to_iso(next_run_at),
        created_at=ts,
        updated_at=ts,
    )
    try:
        with conn:
            conn.execute(
                """INSERT INTO jobs
                   (id, name, correlation_key, recipient_name, anniversary, timezone,
                    next_run_at, attempts, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, ?)""",
                (job.id, job.name, job.correlation_key, job.recipient_name, job.anniversary,
                 job.timezone, job.next_run_at, ts, ts),
            )
    except sqlite3.Error as e:
        raise StoreError(f"DB error while inserting job: {e}")
    return job


def find_due(conn, before: datetime, limit: int) -> List[Job]:
    """Unlocked jobs with next_run_at <= before, earliest first. Callers must still claim()."""
    try:
        rows = conn.execute(
            """SELECT * FROM jobs
               WHERE locked_at IS NULL AND next_run_at <= ?
               ORDER BY next_run_at ASC
               LIMIT ?""",
            (to_iso(before), int(limit)),
        ).fetchall()
    except sqlite3.Error as e:
        raise StoreError(f"DB error while finding due jobs: {e}")
    return [Job.from_row(r) for r in rows]


def claim(conn, job_id: str, now: Optional[datetime] = None) -> bool:
    locked_at = to_iso(now) if now is not None else now_iso()
    try:
        with conn:
            updated = conn.execute(
                "UPDATE jobs SET locked_at=?, updated_at=? WHERE id=? AND locked_at IS NULL",
                (locked_at, locked_at, job_id),
            )
    except sqlite3.Error as e:
        raise StoreError(f"DB error while claiming job {job_id}: {e}")
    return updated.rowcount == 1


def reschedule(
    conn,
    job_id: str,
    next_run_at: datetime,
    *,
    outcome: Optional[str] = None,
    attempts: Optional[int] = None,
    error: Optional[str] = None,
) -> bool:
    """Unlock the job and move it to next_run_at. False if the job no longer exists."""
    try:
        with conn:
            updated = conn.execute(
                """UPDATE jobs
                   SET next_run_at=?, locked_at=NULL, updated_at=?,
                       last_outcome=COALESCE(?, last_outcome),
                       attempts=COALESCE(?, attempts),
                       last_error=?
                   WHERE id=?""",
                (to_iso(next_run_at), now_iso(), outcome, attempts,
                 error[:500] if error else None, job_id),
            )
    except sqlite3.Error as e:
        raise StoreError(f"DB error while rescheduling job {job_id}: {e}")
    return updated.rowcount == 1


def remove_matching(conn, name: str, correlation_key: str) -> List[Job]:
    try:
        with conn:
            rows = conn.execute(
                "SELECT * FROM jobs WHERE name=? AND correlation_key=?",
                (name, correlation_key),
            ).fetchall()
            conn.execute(
                "DELETE FROM jobs WHERE name=? AND correlation_key=?",
                (name, correlation_key),
            )
    except sqlite3.Error as e:
        raise StoreError(f"DB error while removing jobs for {correlation_key}: {e}")
    return [Job.from_row(r) for r in rows]


def restore_jobs(conn, jobs: List[Job]):
    """Put back rows returned by remove_matching, ids and state unchanged."""
    try:
        with conn:
            for job in jobs:
                fields = job.__dict__
                conn.execute(
                    f"INSERT OR REPLACE INTO jobs ({', '.join(fields)}) "
                    f"VALUES ({', '.join('?' for _ in fields)})",
                    tuple(fields.values()),
                )
    except sqlite3.Error as e:
        raise StoreError(f"DB error while restoring jobs: {e}")


def rename_recipient(conn, name: str, correlation_key: str, recipient_name: str) -> int:
    """Change the display name on matching jobs without touching their schedule."""
    try:
        with conn:
            updated = conn.execute(
                "UPDATE jobs SET recipient_name=?, updated_at=? WHERE name=? AND correlation_key=?",
                (recipient_name, now_iso(), name, correlation_key),
            )
    except sqlite3.Error as e:
        raise StoreError(f"DB error while renaming recipient {correlation_key}: {e}")
    return updated.rowcount


def release_stale_locks(conn, older_than: datetime) -> int:
    """Unlock jobs whose claim is older than `older_than` (crashed or hung executions)."""
    try:
        with conn:
            updated = conn.execute(
                "UPDATE jobs SET locked_at=NULL, updated_at=? WHERE locked_at IS NOT NULL AND locked_at < ?",
                (now_iso(), to_iso(older_than)),
            )
    except sqlite3.Error as e:
        raise StoreError(f"DB error while releasing stale locks: {e}")
    return updated.rowcount


# ---------- Queries ----------
def get_job(conn, job_id: str) -> Optional[Job]:
    row = conn.execute("SELECT * FROM jobs WHERE id=?", (job_id,)).fetchone()
    return Job.from_row(row) if row else None


def list_jobs(conn, email: Optional[str] = None) -> List[Job]:
    if email:
        rows = conn.execute(
            "SELECT * FROM jobs WHERE correlation_key=? ORDER BY next_run_at ASC",
            (email,),
        ).fetchall()
    else:
        rows = conn.execute("SELECT * FROM jobs ORDER BY next_run_at ASC").fetchall()
    return [Job.from_row(r) for r in rows]


def counts(conn, now: Optional[datetime] = None) -> Dict[str, int]:
    now_s = to_iso(now) if now is not None else now_iso()
    queries = {
        "total": ("SELECT COUNT(1) AS c FROM jobs", ()),
        "due": ("SELECT COUNT(1) AS c FROM jobs WHERE locked_at IS NULL AND next_run_at <= ?", (now_s,)),
        "locked": ("SELECT COUNT(1) AS c FROM jobs WHERE locked_at IS NOT NULL", ()),
        "failing": ("SELECT COUNT(1) AS c FROM jobs WHERE last_outcome=?", ("failure",)),
    }
    out = {}
    for key, (sql, args) in queries.items():
        out[key] = conn.execute(sql, args).fetchone()["c"]
    return out
