import re
import sqlite3
from typing import List, Optional, Tuple

from .errors import StoreError, ValidationError
from .models import User
from .recurrence import SEND_HOUR, resolve_timezone
from .repository import restore_jobs
from .service import cancel_birthday, parse_birthday, rename_birthday, replace_birthday, schedule_birthday

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

USER_FIELDS = ("name", "email", "birthday", "timezone")


def validate_user(name: str, email: str, birthday: str, timezone: str):
    if not name or not email or not birthday or not timezone:
        raise ValidationError("Name, email, birthday, and timezone are required")
    errors = []
    if len(name) < 3:
        errors.append("Name must be at least 3 characters long")
    if not EMAIL_RE.match(email):
        errors.append("Email is not valid")
    if not DATE_RE.match(birthday):
        errors.append("Birthday must be in YYYY-MM-DD format")
    else:
        try:
            parse_birthday(birthday)
        except ValidationError as e:
            errors.append(str(e))
    try:
        resolve_timezone(timezone)
    except ValidationError:
        errors.append("Invalid timezone")
    if errors:
        raise ValidationError("; ".join(errors))


def _email_taken(conn, email: str, exclude_id: Optional[int] = None) -> bool:
    row = conn.execute("SELECT id FROM users WHERE email=?", (email,)).fetchone()
    return bool(row) and row["id"] != exclude_id


def create_user(conn, name: str, email: str, birthday: str, timezone: str = "UTC", *, hour: int = SEND_HOUR) -> User:
    validate_user(name, email, birthday, timezone)
    if _email_taken(conn, email):
        raise ValidationError("Email already exists")
    try:
        with conn:
            cur = conn.execute(
                "INSERT INTO users(name, email, birthday, timezone) VALUES(?,?,?,?)",
                (name, email, birthday, timezone),
            )
    except sqlite3.IntegrityError:
        raise ValidationError("Email already exists")
    except sqlite3.Error as e:
        raise StoreError(f"DB error while inserting user: {e}")
    try:
        schedule_birthday(conn, email, name, birthday, timezone, hour=hour)
    except Exception:
        # no user without a birthday job
        with conn:
            conn.execute("DELETE FROM users WHERE id=?", (cur.lastrowid,))
        raise
    return User(id=cur.lastrowid, name=name, email=email, birthday=birthday, timezone=timezone)


def get_user(conn, user_id: int) -> Optional[User]:
    row = conn.execute("SELECT * FROM users WHERE id=?", (user_id,)).fetchone()
    return User.from_row(row) if row else None


def list_users(conn, page: int = 1, limit: int = 10, search: Optional[str] = None) -> Tuple[List[User], int]:
    """One page of users, plus the total number of users matching `search`."""
    errors = []
    if page < 1 or limit < 1:
        errors.append("Page and limit must be greater than 0")
    if limit > 100:
        errors.append("Limit cannot exceed 100")
    if errors:
        raise ValidationError("; ".join(errors))

    where, args = "", ()
    if search:
        where, args = "WHERE LOWER(name) LIKE ?", (f"%{search.lower()}%",)
    total = conn.execute(f"SELECT COUNT(1) AS c FROM users {where}", args).fetchone()["c"]
    rows = conn.execute(
        f"SELECT * FROM users {where} ORDER BY id ASC LIMIT ? OFFSET ?",
        args + (limit, (page - 1) * limit),
    ).fetchall()
    return [User.from_row(r) for r in rows], total


def update_user(conn, user_id: int, *, hour: int = SEND_HOUR, **fields) -> Optional[User]:
    unknown = set(fields) - set(USER_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
    user = get_user(conn, user_id)
    if user is None:
        return None

    changes = {k: v for k, v in fields.items() if v is not None and getattr(user, k) != v}
    if not changes:
        return user
    updated = User(**{**user.__dict__, **changes})
    validate_user(updated.name, updated.email, updated.birthday, updated.timezone)
    if "email" in changes and _email_taken(conn, updated.email, exclude_id=user_id):
        raise ValidationError("Email already exists")

    _write_user(conn, updated)
    try:
        if changes.keys() & {"email", "birthday", "timezone"}:
            # the old job is keyed by the old email
            replace_birthday(conn, updated.email, updated.name, updated.birthday, updated.timezone,
                             old_email=user.email, hour=hour)
        else:
            rename_birthday(conn, user.email, updated.name)
    except Exception:
        _write_user(conn, user)
        raise
    return updated


def _write_user(conn, user: User):
    try:
        with conn:
            conn.execute(
                "UPDATE users SET name=?, email=?, birthday=?, timezone=? WHERE id=?",
                (user.name, user.email, user.birthday, user.timezone, user.id),
            )
    except sqlite3.IntegrityError:
        raise ValidationError("Email already exists")
    except sqlite3.Error as e:
        raise StoreError(f"DB error while updating user {user.id}: {e}")


def delete_user(conn, user_id: int) -> bool:
    user = get_user(conn, user_id)
    if user is None:
        return False
    removed = cancel_birthday(conn, user.email)
    try:
        with conn:
            conn.execute("DELETE FROM users WHERE id=?", (user_id,))
    except sqlite3.Error as e:
        restore_jobs(conn, removed)
        raise StoreError(f"DB error while deleting user {user_id}: {e}")
    return True
