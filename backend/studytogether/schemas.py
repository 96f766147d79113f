"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests.
"""

import re
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Any, Dict, List, Optional

from .utils.free_time import time_to_minutes

_HHMM = re.compile(r"^\d{2}:\d{2}$")


class RegisterIn(BaseModel):
    """Payload for user registration."""
    username: str = Field(min_length=1, max_length=64)
    password: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    invite_code: Optional[str] = None


class LoginIn(BaseModel):
    """Login accepts either the username or the email as `username`."""
    username: str
    password: str


class PasswordIn(BaseModel):
    password: str


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str


class JoinCoupleIn(BaseModel):
    invite_code: str


class ScheduleIn(BaseModel):
    """One weekly meeting of a course."""
    day_of_week: int = Field(ge=1, le=7)
    start_time: str
    end_time: str
    weeks: List[int] = Field(default_factory=list)

    @field_validator("start_time", "end_time")
    @classmethod
    def _check_time(cls, v: str) -> str:
        if not _HHMM.match(v):
            raise ValueError("time must be formatted as HH:MM")
        time_to_minutes(v)
        return v

    @field_validator("weeks")
    @classmethod
    def _check_weeks(cls, v: List[int]) -> List[int]:
        if any(w < 1 for w in v):
            raise ValueError("week numbers start at 1")
        return v

    @model_validator(mode="after")
    def _check_order(self):
        if time_to_minutes(self.start_time) >= time_to_minutes(self.end_time):
            raise ValueError("start_time must be before end_time")
        return self


class CourseIn(BaseModel):
    """Request body for creating a course."""
    name: str = Field(min_length=1)
    code: Optional[str] = None
    instructor: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    credits: Optional[float] = None
    color: str = "#3B82F6"
    schedules: List[ScheduleIn] = Field(default_factory=list)


class CourseUpdate(BaseModel):
    """Partial update; when `schedules` is present it replaces every schedule."""
    name: Optional[str] = Field(default=None, min_length=1)
    code: Optional[str] = None
    instructor: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    credits: Optional[float] = None
    color: Optional[str] = None
    schedules: Optional[List[ScheduleIn]] = None


class CourseImportIn(BaseModel):
    """Bulk import of spreadsheet-style rows."""
    courses: List[Dict[str, Any]]
    replace_all: bool = False
