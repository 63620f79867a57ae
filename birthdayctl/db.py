import os
import sqlite3
import time
from dataclasses import dataclass

from loguru import logger

from .config import DEFAULT_CONFIG
from .errors import StoreError

DB_FILE = os.environ.get("BIRTHDAYCTL_DB", "birthdays.db")

SCHEMA = """
PRAGMA journal_mode=WAL;
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    correlation_key TEXT NOT NULL,
    recipient_name TEXT NOT NULL,
    anniversary TEXT NOT NULL,
    timezone TEXT NOT NULL,
    next_run_at TEXT NOT NULL,
    locked_at TEXT,
    last_outcome TEXT,
    attempts INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_jobs_lock_next ON jobs(locked_at, next_run_at);
CREATE INDEX IF NOT EXISTS idx_jobs_name_key ON jobs(name, correlation_key);
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    birthday TEXT NOT NULL,
    timezone TEXT NOT NULL DEFAULT 'UTC'
);
CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


@dataclass
class RetryState:
    """Connection attempts so far; owned by whoever is connecting."""
    max_retries: int = 5
    delay_seconds: float = 5.0
    attempts: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_retries


def connect_db(path: str = None):
    # Each thread opens its own connection; the timeout lets concurrent claimers queue on the write lock.
    conn = sqlite3.connect(path or DB_FILE, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.executescript(SCHEMA)
    return conn


def connect_with_retry(path: str = None, retry: RetryState = None, sleep=time.sleep):
    retry = retry if retry is not None else RetryState()
    while True:
        try:
            conn = connect_db(path)
            logger.info(f"Job store connected: {path or DB_FILE}")
            return conn
        except sqlite3.Error as e:
            logger.error(f"Job store connection error: {e}")
            if retry.exhausted:
                raise StoreError(f"Could not open job store after {retry.attempts} retries: {e}")
            retry.attempts += 1
            sleep(retry.delay_seconds)


def init_db(path: str = None):
    try:
        conn = connect_db(path)
    except sqlite3.Error as e:
        raise StoreError(f"Could not open job store: {e}")
    try:
        with conn:
            # seed defaults
            for k, v in DEFAULT_CONFIG.items():
                conn.execute(
                    "INSERT OR IGNORE INTO config(key, value) VALUES(?,?)", (k, v)
                )
    finally:
        conn.close()
