from dataclasses import dataclass
from enum import Enum
from typing import Optional


class JobKind(str, Enum):
    BIRTHDAY_SEND = "send birthday"


# Outcomes
SUCCESS = "success"
FAILURE = "failure"
SKIPPED = "skipped"  # occurrence abandoned after max_delivery_attempts


@dataclass
class Job:
    id: str
    name: str
    correlation_key: str
    recipient_name: str
    anniversary: str            # YYYY-MM-DD; only month/day drive recurrence
    timezone: str
    next_run_at: str
    locked_at: Optional[str] = None
    last_outcome: Optional[str] = None
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def kind(self) -> JobKind:
        return JobKind(self.name)

    @property
    def anniversary_month_day(self):
        _, month, day = (int(p) for p in self.anniversary.split("-"))
        return month, day

    @classmethod
    def from_row(cls, row) -> "Job":
        return cls(**{k: row[k] for k in row.keys()})


@dataclass
class User:
    id: int
    name: str
    email: str
    birthday: str
    timezone: str = "UTC"

    @classmethod
    def from_row(cls, row) -> "User":
        return cls(**{k: row[k] for k in row.keys()})
