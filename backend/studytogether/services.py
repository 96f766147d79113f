"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories,
parsers and auxiliary logic. Services are intentionally thin: they
perform validation, execute domain logic and persist aggregates via
repositories. Validation problems are raised as `ValueError`; the
controllers translate them (and the few domain exceptions below) into
HTTP status codes.
"""

import json
import logging
import re
import secrets
import string
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import jwt
from passlib.context import CryptContext
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .utils.course_import import normalize_row, parse_course_file, parse_day_of_week, parse_time, parse_weeks
from .utils.free_time import (
    DayFreeTime,
    FreeSlot,
    WeeklyFreeTime,
    compute_weekly_free_time,
    group_by_day,
    time_to_minutes,
)

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
INVITE_CODE_ALPHABET = string.ascii_uppercase + string.digits
INVITE_CODE_LENGTH = 6
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_SPECIAL_CHARS = set('!@#$%^&*(),.?":{}|<>')

logger = logging.getLogger("studytogether.services")


class NotFoundError(LookupError):
    """Requested record does not exist (or is not visible to the caller)."""


class AccountDisabledError(Exception):
    """Login refused because the account is not active."""


class AccountLockedError(Exception):
    """Login refused because too many attempts failed recently."""
    def __init__(self, unlock_at: datetime):
        super().__init__(f"account locked until {unlock_at.isoformat()}")
        self.unlock_at = unlock_at


def _as_utc(dt: datetime) -> datetime:
    # SQLite hands datetimes back without tzinfo; they were stored as UTC
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


class SecurityService:
    """Password policy, login audit trail and lockout bookkeeping."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.SecurityRepository(session)

    def get_settings(self) -> models.SecuritySettings:
        """Return the security settings row, creating it from config on first use."""
        s = self.repo.get_settings()
        if s is None:
            s = self.repo.save_settings(models.SecuritySettings(
                max_login_attempts=settings.MAX_LOGIN_ATTEMPTS,
                lockout_minutes=settings.LOCKOUT_MINUTES,
                password_min_length=settings.PASSWORD_MIN_LENGTH,
            ))
        return s

    def validate_password(self, password: str) -> List[str]:
        """Return the list of policy violations for `password` (empty when valid)."""
        policy = self.get_settings()
        errors = []
        if len(password) < policy.password_min_length:
            errors.append(f"password must be at least {policy.password_min_length} characters")
        if policy.password_require_uppercase and not any(c.isupper() for c in password):
            errors.append("password must contain an uppercase letter")
        if policy.password_require_lowercase and not any(c.islower() for c in password):
            errors.append("password must contain a lowercase letter")
        if policy.password_require_numbers and not any(c.isdigit() for c in password):
            errors.append("password must contain a number")
        if policy.password_require_special_chars and not any(c in _SPECIAL_CHARS for c in password):
            errors.append("password must contain a special character")
        return errors

    def record_attempt(self, ip: str, user_agent: Optional[str], success: bool,
                       user_id: Optional[int] = None, username: Optional[str] = None,
                       reason: Optional[str] = None) -> None:
        self.repo.add_attempt(models.LoginAttempt(
            ip=ip, user_agent=user_agent, user_id=user_id, username=username,
            success=success, reason=reason,
        ))

    def check_lockout(self, user_id: Optional[int], ip: Optional[str]) -> Optional[datetime]:
        """Return the unlock time if the user or IP is locked, else `None`.

        Lockouts whose unlock time has passed are deleted on the way.
        """
        now = datetime.now(timezone.utc)
        rows = self.repo.lockouts_matching(user_id, ip)
        expired = [r for r in rows if r.unlock_at and _as_utc(r.unlock_at) <= now]
        if expired:
            self.repo.delete_lockouts(expired)
        active = [_as_utc(r.unlock_at) for r in rows if r.unlock_at and _as_utc(r.unlock_at) > now]
        return max(active) if active else None

    def register_failure(self, ip: str, user_agent: Optional[str], user_id: Optional[int] = None,
                         username: Optional[str] = None, reason: str = "invalid credentials") -> Optional[datetime]:
        """Record a failed login and bump the lockout counter.

        Returns the unlock time when this failure triggered a lock.
        """
        policy = self.get_settings()
        self.record_attempt(ip, user_agent, False, user_id=user_id, username=username, reason=reason)
        rows = self.repo.lockouts_matching(user_id, ip)
        lockout = rows[0] if rows else models.UserLockout(user_id=user_id, ip=ip, attempts=0)
        lockout.attempts += 1
        unlock_at = None
        if lockout.attempts >= policy.max_login_attempts:
            now = datetime.now(timezone.utc)
            unlock_at = now + timedelta(minutes=policy.lockout_minutes)
            lockout.locked_at = now
            lockout.unlock_at = unlock_at
        self.repo.save_lockout(lockout)
        if unlock_at:
            logger.warning("login locked user_id=%s ip=%s until %s", user_id, ip, unlock_at.isoformat())
        return unlock_at

    def clear_failures(self, ip: str, user_agent: Optional[str], user_id: int) -> None:
        """Record a successful login and drop lockout rows for the user and IP."""
        self.record_attempt(ip, user_agent, True, user_id=user_id)
        self.repo.delete_lockouts(self.repo.lockouts_matching(user_id, ip))

    def login_stats(self, days: int = 7) -> dict:
        """Summarize login attempts over the last `days` days."""
        since = datetime.now(timezone.utc) - timedelta(days=days)
        attempts = self.repo.attempts_since(since)
        reasons = Counter(a.reason for a in attempts if not a.success and a.reason)
        return {
            'total_attempts': len(attempts),
            'successful_logins': sum(1 for a in attempts if a.success),
            'failed_attempts': sum(1 for a in attempts if not a.success),
            'unique_ips': len({a.ip for a in attempts}),
            'top_failure_reasons': [{'reason': r, 'count': c} for r, c in reasons.most_common(5)],
        }

    def cleanup_attempts(self, days_to_keep: int = 30) -> int:
        """Delete login audit rows older than `days_to_keep` days."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days_to_keep)
        return self.repo.delete_attempts_before(cutoff)


class AuthService:
    """Authentication related operations (register + authenticate)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.security = SecurityService(session)

    def register(self, username: str, password: str, email: Optional[str] = None,
                 display_name: Optional[str] = None, invite_code: Optional[str] = None) -> models.User:
        """Create a new user with a hashed password.

        When `invite_code` is given the new user joins that couple space
        immediately. Returns the persisted `User` instance.
        """
        username = username.strip()
        if not username:
            raise ValueError("username is required")
        if email is not None:
            email = email.strip().lower() or None
        if email and not _EMAIL_RE.match(email):
            raise ValueError("invalid email address")
        errors = self.security.validate_password(password)
        if errors:
            raise ValueError("; ".join(errors))
        if self.user_repo.get_by_username(username):
            raise ValueError("username already taken")
        if email and self.user_repo.get_by_email(email):
            raise ValueError("email already registered")
        couples = CoupleService(self.session)
        if invite_code:
            # fail before the user row exists
            couples.find_open_invite(invite_code)
        u = models.User(
            username=username,
            email=email,
            display_name=(display_name or "").strip() or username,
            password_hash=PWD_CTX.hash(password),
        )
        user = self.user_repo.create(u)
        if invite_code:
            couples.join(user.id, invite_code)
            self.session.refresh(user)
        logger.info("registered user id=%s username=%s", user.id, user.username)
        return user

    def authenticate(self, identifier: str, password: str, ip: str = "unknown",
                     user_agent: Optional[str] = None) -> Optional[str]:
        """Verify credentials and return a signed JWT token on success.

        Returns `None` if the credentials are wrong. Raises
        `AccountLockedError` while a lockout is active and
        `AccountDisabledError` for inactive accounts.
        """
        user = self.user_repo.get_by_login(identifier.strip())
        user_id = user.id if user else None
        unlock_at = self.security.check_lockout(user_id, ip)
        if unlock_at:
            self.security.record_attempt(ip, user_agent, False, user_id=user_id, username=identifier, reason="locked")
            raise AccountLockedError(unlock_at)
        if not user or not PWD_CTX.verify(password, user.password_hash):
            unlock_at = self.security.register_failure(ip, user_agent, user_id=user_id, username=identifier)
            if unlock_at:
                raise AccountLockedError(unlock_at)
            return None
        if user.status != "active":
            self.security.record_attempt(ip, user_agent, False, user_id=user.id, username=identifier, reason="disabled")
            raise AccountDisabledError("account is disabled")
        self.security.clear_failures(ip, user_agent, user.id)
        user.last_login = datetime.now(timezone.utc)
        self.user_repo.save(user)
        return self.issue_token(user)

    def issue_token(self, user: models.User) -> str:
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {"user_id": user.id, "username": user.username, "exp": int(expire.timestamp())}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


class CoupleService:
    """Invite-code pairing of two users into a couple space."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.CoupleRepository(session)
        self.user_repo = repositories.UserRepository(session)

    def _new_invite_code(self) -> str:
        while True:
            code = "".join(secrets.choice(INVITE_CODE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))
            if not self.repo.invite_code_exists(code):
                return code

    def find_open_invite(self, invite_code: str) -> models.Couple:
        """Return the pending couple for `invite_code` or raise."""
        code = (invite_code or "").strip().upper()
        if not code:
            raise ValueError("invite code is required")
        couple = self.repo.get_by_invite_code(code)
        if not couple:
            raise NotFoundError("invite code not found")
        if couple.is_complete:
            raise ValueError("invite code already used")
        return couple

    def create_invite(self, user_id: int) -> models.Couple:
        """Return the user's pending invite, creating one if needed.

        A completed couple is dissolved first, so generating a new code
        always leaves the user with exactly one pending space.
        """
        existing = self.repo.get_for_user(user_id)
        if existing and not existing.is_complete:
            return existing
        if existing:
            logger.info("dissolving couple id=%s before new invite", existing.id)
            self.repo.delete(existing)
        couple = self.repo.save(models.Couple(invite_code=self._new_invite_code(), person1_id=user_id))
        self.repo.link_users(couple)
        return couple

    def join(self, user_id: int, invite_code: str) -> models.Couple:
        """Join the couple behind `invite_code` as the second member."""
        couple = self.find_open_invite(invite_code)
        if couple.person1_id == user_id:
            raise ValueError("cannot join your own invite")
        own = self.repo.get_for_user(user_id)
        if own and own.is_complete:
            raise ValueError("already paired with a partner")
        if own:
            # a pending invite of one's own is abandoned in favour of the partner's
            self.repo.delete(own)
        couple.person2_id = user_id
        couple.is_complete = True
        couple = self.repo.save(couple)
        self.repo.link_users(couple)
        logger.info("couple id=%s completed", couple.id)
        return couple

    def unbind(self, user_id: int) -> Optional[models.User]:
        """Dissolve the user's couple and return the former partner (if any)."""
        couple = self.repo.get_for_user(user_id)
        if not couple:
            raise ValueError("no couple to unbind")
        partner_id = couple.person2_id if couple.person1_id == user_id else couple.person1_id
        partner = self.user_repo.get(partner_id) if partner_id else None
        self.repo.delete(couple)
        return partner

    def get_partner(self, user_id: int) -> Tuple[Optional[models.Couple], Optional[models.User]]:
        """Return `(couple, partner)`; the partner is `None` until the couple is complete."""
        couple = self.repo.get_for_user(user_id)
        if not couple:
            return None, None
        partner_id = couple.person2_id if couple.person1_id == user_id else couple.person1_id
        partner = self.user_repo.get(partner_id) if partner_id else None
        return couple, partner


def _build_schedules(items) -> List[models.CourseSchedule]:
    return [
        models.CourseSchedule(
            day_of_week=s.day_of_week,
            start_time=s.start_time,
            end_time=s.end_time,
            weeks=json.dumps(sorted(set(s.weeks))),
        )
        for s in items
    ]


class CourseService:
    """Course and weekly schedule management for a single owner."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.CourseRepository(session)

    def list_courses(self, user_id: int) -> List[models.Course]:
        return self.repo.list_for_user(user_id)

    def get(self, user_id: int, course_id: int) -> models.Course:
        course = self.repo.get_owned(course_id, user_id)
        if not course:
            raise NotFoundError("course not found")
        return course

    def create(self, user_id: int, data) -> models.Course:
        """Create a course from a validated `CourseIn` payload."""
        fields = data.model_dump(exclude={"schedules"})
        course = models.Course(user_id=user_id, **fields)
        return self.repo.create(course, _build_schedules(data.schedules))

    def update(self, user_id: int, course_id: int, data) -> models.Course:
        """Apply a partial `CourseUpdate`; a `schedules` list replaces all schedules."""
        course = self.get(user_id, course_id)
        changes = data.model_dump(exclude_unset=True, exclude={"schedules"})
        for key, value in changes.items():
            if key in ("name", "color") and value is None:
                continue
            setattr(course, key, value)
        schedules = _build_schedules(data.schedules) if data.schedules is not None else None
        return self.repo.update(course, schedules)

    def delete(self, user_id: int, course_id: int) -> None:
        self.repo.delete(self.get(user_id, course_id))

    def import_rows(self, user_id: int, rows: List[dict], replace_all: bool = False) -> dict:
        """Import spreadsheet-style rows, one optional schedule entry per row.

        Each row is validated on its own; failures are collected per row
        (1-based) and do not stop the rest of the import.
        """
        if not isinstance(rows, list) or not rows:
            raise ValueError("no course rows provided")
        if replace_all:
            removed = self.repo.delete_all_for_user(user_id)
            logger.info("import replace_all removed %s courses for user_id=%s", removed, user_id)
        results = {'success': 0, 'failed': 0, 'errors': []}
        for idx, row in enumerate(rows, start=1):
            try:
                if not isinstance(row, dict):
                    raise ValueError('row must be an object')
                course, schedules = self._row_to_course(user_id, normalize_row(row))
            except ValueError as e:
                results['failed'] += 1
                results['errors'].append({'row': idx, 'error': str(e)})
                continue
            self.repo.create(course, schedules)
            results['success'] += 1
        return results

    def import_file(self, user_id: int, file_bytes: bytes, filename: str, replace_all: bool = False) -> dict:
        rows = parse_course_file(file_bytes, filename)
        return self.import_rows(user_id, rows, replace_all=replace_all)

    def _row_to_course(self, user_id: int, row: dict) -> Tuple[models.Course, List[models.CourseSchedule]]:
        name = str(row.get('name') or '').strip()
        if not name:
            raise ValueError('course name is required')
        credits = row.get('credits')
        if credits is not None:
            try:
                credits = float(credits)
            except (TypeError, ValueError):
                raise ValueError(f'invalid credits: {credits!r}')
        course = models.Course(
            user_id=user_id,
            name=name,
            code=row.get('code'),
            instructor=row.get('instructor'),
            location=row.get('location'),
            description=row.get('description'),
            credits=credits,
            color=row.get('color') or '#3B82F6',
        )
        schedules = []
        day, start, end = row.get('day_of_week'), row.get('start_time'), row.get('end_time')
        if day is not None and start and end:
            start_time, end_time = parse_time(start), parse_time(end)
            if time_to_minutes(start_time) >= time_to_minutes(end_time):
                raise ValueError(f'start time {start_time} must be before end time {end_time}')
            schedules.append(models.CourseSchedule(
                day_of_week=parse_day_of_week(day),
                start_time=start_time,
                end_time=end_time,
                weeks=json.dumps(parse_weeks(row.get('weeks'))),
            ))
        elif any(v is not None for v in (day, start, end)):
            raise ValueError('day_of_week, start_time and end_time must be given together')
        return course, schedules


class FreeTimeService:
    """Compute and cache the mutual weekly free time of a couple."""
    def __init__(self, session: Session):
        self.session = session
        self.course_repo = repositories.CourseRepository(session)
        self.free_repo = repositories.FreeTimeRepository(session)
        self.couples = CoupleService(session)

    def _week_schedule(self, user_id: int, week: Optional[int]) -> Dict[int, list]:
        rows = self.course_repo.list_schedules_for_user(user_id)
        if week is not None:
            rows = [r for r in rows if r.runs_in_week(week)]
        return group_by_day((r.day_of_week, r.start_time, r.end_time) for r in rows)

    def _require_partner(self, user_id: int) -> Tuple[models.Couple, models.User]:
        couple, partner = self.couples.get_partner(user_id)
        if not couple or not partner:
            raise NotFoundError("no partner found")
        return couple, partner

    def compute_for_user(self, user_id: int, week: Optional[int] = None) -> dict:
        """Compute the couple's weekly free time and replace the cached rows.

        `week` restricts both schedules to entries that run in that
        semester week; `None` uses every schedule entry.
        """
        if week is not None and week < 1:
            raise ValueError("week must be >= 1")
        couple, partner = self._require_partner(user_id)
        user = repositories.UserRepository(self.session).get(user_id)
        weekly = compute_weekly_free_time(
            self._week_schedule(user_id, week),
            self._week_schedule(partner.id, week),
            day_start=settings.FREE_TIME_DAY_START,
            day_end=settings.FREE_TIME_DAY_END,
            min_slot_minutes=settings.FREE_TIME_MIN_SLOT_MINUTES,
        )
        couple_id = couple.id
        self.free_repo.replace_for_couple(couple_id, [
            models.FreeTimeSlot(
                couple_id=couple_id,
                day_of_week=day,
                start_time=slot.start_time,
                end_time=slot.end_time,
                duration=slot.duration_minutes,
            )
            for day, slot in weekly.iter_slots()
        ])
        couple.free_time_computed_at = models.utcnow()
        self.couples.repo.save(couple)
        logger.info(
            "free time computed couple_id=%s week=%s slots=%s total=%s",
            couple_id, week, weekly.total_free_slots, weekly.total_weekly_free_minutes,
        )
        out = weekly.to_dict()
        out['couple'] = {
            'id': couple_id,
            'users': [
                {'id': user.id, 'displayName': user.name, 'courseCount': self.course_repo.count_for_user(user.id)},
                {'id': partner.id, 'displayName': partner.name, 'courseCount': self.course_repo.count_for_user(partner.id)},
            ],
        }
        return out

    def cached_for_user(self, user_id: int) -> dict:
        """Return the last stored result in the same shape as a fresh computation.

        Raises `NotFoundError` until free time has been computed once.
        """
        couple, _partner = self._require_partner(user_id)
        if couple.free_time_computed_at is None:
            raise NotFoundError("free time has not been computed yet")
        days = {day: DayFreeTime(day_of_week=day) for day in range(1, 8)}
        for row in self.free_repo.list_for_couple(couple.id):
            if row.day_of_week in days:
                days[row.day_of_week].slots.append(FreeSlot(row.start_time, row.end_time, row.duration))
        out = WeeklyFreeTime(days=days).to_dict()
        out['computedAt'] = _as_utc(couple.free_time_computed_at).isoformat()
        return out
