"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table and uses relationships where appropriate.
"""

import json
from typing import Optional
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime, timezone
from typing import List


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    """A registered user.

    Fields:
    - `username`: unique login name
    - `email`: optional unique address, also accepted at login
    - `password_hash`: hashed password string (never store plaintext)
    - `status`: `active` or `disabled`; disabled users cannot log in
    - `couple_id`: the couple space this user belongs to, if any
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, nullable=False, unique=True)
    email: Optional[str] = Field(default=None, index=True, unique=True)
    display_name: Optional[str] = None
    password_hash: str
    status: str = Field(default="active")
    couple_id: Optional[int] = Field(default=None, foreign_key='couple.id', index=True)
    created_at: datetime = Field(default_factory=utcnow)
    last_login: Optional[datetime] = None

    @property
    def name(self) -> str:
        return self.display_name or self.username


class Couple(SQLModel, table=True):
    """A shared space for two users, created from an invite code.

    `person1_id` is the user who generated the invite; `person2_id` is
    filled in once someone joins, at which point `is_complete` flips.
    `free_time_computed_at` is stamped whenever the cached slots are rebuilt.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    invite_code: str = Field(index=True, unique=True)
    person1_id: int = Field(index=True)
    person2_id: Optional[int] = Field(default=None, index=True)
    is_complete: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    free_time_computed_at: Optional[datetime] = None


class Course(SQLModel, table=True):
    """A course owned by a single user."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    name: str
    code: Optional[str] = None
    instructor: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    credits: Optional[float] = None
    color: str = "#3B82F6"
    created_at: datetime = Field(default_factory=utcnow)
    schedules: List['CourseSchedule'] = Relationship(
        back_populates='course',
        sa_relationship_kwargs={'cascade': 'all, delete-orphan'},
    )


class CourseSchedule(SQLModel, table=True):
    """A recurring weekly meeting of a `Course`.

    `start_time`/`end_time` are wall-clock `HH:MM` strings. `weeks` holds
    a JSON list of semester week numbers; an empty list means every week.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    course_id: int = Field(foreign_key='course.id', index=True)
    day_of_week: int = Field(index=True)
    start_time: str
    end_time: str
    weeks: str = "[]"
    course: Optional[Course] = Relationship(back_populates='schedules')

    def week_list(self) -> List[int]:
        try:
            return [int(w) for w in json.loads(self.weeks or "[]")]
        except (ValueError, TypeError):
            return []

    def runs_in_week(self, week: int) -> bool:
        weeks = self.week_list()
        return not weeks or week in weeks


class FreeTimeSlot(SQLModel, table=True):
    """Cached mutual free slot for a couple.

    Rows are derived data: every recomputation deletes the couple's rows
    and inserts the fresh result.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    couple_id: int = Field(foreign_key='couple.id', index=True)
    day_of_week: int
    start_time: str
    end_time: str
    duration: int
    created_at: datetime = Field(default_factory=utcnow)


class SecuritySettings(SQLModel, table=True):
    """Singleton row holding the login lockout and password policy."""
    id: Optional[int] = Field(default=None, primary_key=True)
    max_login_attempts: int = 5
    lockout_minutes: int = 30
    password_min_length: int = 6
    password_require_uppercase: bool = False
    password_require_lowercase: bool = False
    password_require_numbers: bool = False
    password_require_special_chars: bool = False
    updated_at: datetime = Field(default_factory=utcnow)


class LoginAttempt(SQLModel, table=True):
    """Audit row for every login attempt, successful or not."""
    id: Optional[int] = Field(default=None, primary_key=True)
    ip: str = Field(index=True)
    user_agent: Optional[str] = None
    user_id: Optional[int] = Field(default=None, index=True)
    username: Optional[str] = None
    success: bool = False
    reason: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow, index=True)


class UserLockout(SQLModel, table=True):
    """Failed-attempt counter keyed by user and/or client IP.

    `unlock_at` is set once the counter reaches the configured maximum.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[int] = Field(default=None, index=True)
    ip: Optional[str] = Field(default=None, index=True)
    attempts: int = 0
    locked_at: Optional[datetime] = None
    unlock_at: Optional[datetime] = None
