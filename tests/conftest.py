import threading
from datetime import datetime, timedelta, timezone

import pytest

from birthdayctl.db import connect_db, init_db
from birthdayctl.errors import DeliveryError
from birthdayctl.models import JobKind
from birthdayctl.repository import insert_job


class FakeMailer:
    """Records sends; fails for addresses in `failing` or for everyone when fail_all is set."""

    def __init__(self, fail_all=False, failing=()):
        self.fail_all = fail_all
        self.failing = set(failing)
        self.sent = []
        self.attempts = []
        self.years = []
        self._lock = threading.Lock()

    def send(self, to, subject, name, *, year=None):
        with self._lock:
            self.attempts.append(to)
            self.years.append(year)
        if self.fail_all or to in self.failing:
            raise DeliveryError(f"mailbox unavailable: {to}")
        with self._lock:
            self.sent.append((to, subject, name))


class GateMailer(FakeMailer):
    """Blocks every send until `gate` is set, tracking how many run at once."""

    def __init__(self):
        super().__init__()
        self.gate = threading.Event()
        self.started = threading.Semaphore(0)
        self.active = 0
        self.peak = 0

    def send(self, to, subject, name, *, year=None):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        self.started.release()
        try:
            self.gate.wait(10)
            super().send(to, subject, name, year=year)
        finally:
            with self._lock:
                self.active -= 1


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "test.db")
    init_db(path)
    return path


@pytest.fixture
def conn(db_path):
    c = connect_db(db_path)
    yield c
    c.close()


@pytest.fixture
def clock():
    return Clock(datetime(2030, 3, 15, 9, 0, tzinfo=timezone.utc))


def add_job(conn, email, next_run_at, name="Jane Doe", anniversary="1990-03-15", tz="UTC"):
    return insert_job(
        conn,
        name=JobKind.BIRTHDAY_SEND.value,
        correlation_key=email,
        recipient_name=name,
        anniversary=anniversary,
        timezone=tz,
        next_run_at=next_run_at,
    )
