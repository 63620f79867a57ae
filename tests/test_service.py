from datetime import date, datetime, timezone

import pytest

from birthdayctl.errors import StoreError, ValidationError
from birthdayctl.repository import get_job, list_jobs
from birthdayctl.service import cancel_birthday, replace_birthday, schedule_birthday

NOW = datetime(2028, 5, 5, tzinfo=timezone.utc)


def test_schedule_inserts_first_occurrence(conn):
    job_id = schedule_birthday(conn, "jane@example.com", "Jane Doe", "1992-08-01", "UTC", now=NOW)
    job = get_job(conn, job_id)
    assert job.correlation_key == "jane@example.com"
    assert job.recipient_name == "Jane Doe"
    assert job.anniversary == "1992-08-01"
    assert job.next_run_at == "2028-08-01T09:00:00.000000Z"
    assert job.locked_at is None


def test_schedule_leap_birthday_in_common_year(conn):
    job_id = schedule_birthday(conn, "leap@example.com", "Leap Kid", date(1992, 2, 29), "UTC",
                               now=datetime(2029, 1, 1, tzinfo=timezone.utc))
    assert get_job(conn, job_id).next_run_at == "2029-02-28T09:00:00.000000Z"


def test_schedule_honours_timezone(conn):
    job_id = schedule_birthday(conn, "tokyo@example.com", "Kenji", "1985-12-01", "Asia/Tokyo", now=NOW)
    assert get_job(conn, job_id).next_run_at == "2028-12-01T00:00:00.000000Z"


@pytest.mark.parametrize("kwargs", [
    {"birthday": "01/02/1990"},
    {"birthday": "1990-02-30"},
    {"timezone": "Nowhere/Special"},
    {"timezone": "America"},
    {"email": ""},
])
def test_schedule_validation(conn, kwargs):
    args = {"email": "a@example.com", "recipient_name": "Anna", "birthday": "1990-01-02", "timezone": "UTC"}
    args.update(kwargs)
    with pytest.raises(ValidationError):
        schedule_birthday(conn, **args, now=NOW)
    assert list_jobs(conn) == []


def test_cancel_on_empty_store_returns_empty(conn):
    assert cancel_birthday(conn, "none@example.com") == []


def test_cancel_twice(conn):
    schedule_birthday(conn, "jane@example.com", "Jane Doe", "1992-08-01", now=NOW)
    first = cancel_birthday(conn, "jane@example.com")
    second = cancel_birthday(conn, "jane@example.com")
    assert [j.correlation_key for j in first] == ["jane@example.com"]
    assert second == []


def test_replace_keeps_one_live_job(conn):
    schedule_birthday(conn, "jane@example.com", "Jane Doe", "1992-08-01", now=NOW)
    new_id = replace_birthday(conn, "jane@example.com", "Jane Doe", "1992-09-01", now=NOW)
    jobs = list_jobs(conn, email="jane@example.com")
    assert [j.id for j in jobs] == [new_id]
    assert jobs[0].anniversary == "1992-09-01"


def test_replace_restores_old_job_when_insert_fails(conn, monkeypatch):
    old_id = schedule_birthday(conn, "jane@example.com", "Jane Doe", "1992-08-01", now=NOW)
    before = list_jobs(conn)

    def _fail(*args, **kwargs):
        raise StoreError("DB error while inserting job: database is locked")

    monkeypatch.setattr("birthdayctl.service.insert_job", _fail)
    with pytest.raises(StoreError):
        replace_birthday(conn, "jane@example.com", "Jane Doe", "1992-09-01", now=NOW)

    assert list_jobs(conn) == before
    assert [j.id for j in before] == [old_id]
