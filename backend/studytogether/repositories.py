"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
couples, courses, cached free time, security bookkeeping). Repositories
return SQLModel objects and perform commits/refreshes where appropriate.
"""

from datetime import datetime
from typing import List, Optional
from sqlmodel import Session, select
from sqlalchemy import delete, func, or_
from . import models


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def save(self, user: models.User) -> models.User:
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_by_username(self, username: str) -> Optional[models.User]:
        """Return a `User` by username or `None` if not found."""
        stmt = select(models.User).where(models.User.username == username)
        return self.session.exec(stmt).first()

    def get_by_email(self, email: str) -> Optional[models.User]:
        stmt = select(models.User).where(models.User.email == email)
        return self.session.exec(stmt).first()

    def get_by_login(self, identifier: str) -> Optional[models.User]:
        """Look a user up by username or email."""
        stmt = select(models.User).where(
            or_(models.User.username == identifier, models.User.email == identifier)
        )
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)


class CoupleRepository:
    """Persistence for couple spaces and the users' back-references."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, couple_id: int) -> Optional[models.Couple]:
        return self.session.get(models.Couple, couple_id)

    def get_by_invite_code(self, code: str) -> Optional[models.Couple]:
        stmt = select(models.Couple).where(models.Couple.invite_code == code)
        return self.session.exec(stmt).first()

    def get_for_user(self, user_id: int) -> Optional[models.Couple]:
        """Return the couple where `user_id` is either member."""
        stmt = select(models.Couple).where(
            or_(models.Couple.person1_id == user_id, models.Couple.person2_id == user_id)
        )
        return self.session.exec(stmt).first()

    def invite_code_exists(self, code: str) -> bool:
        stmt = select(models.Couple.id).where(models.Couple.invite_code == code)
        return self.session.exec(stmt).first() is not None

    def save(self, couple: models.Couple) -> models.Couple:
        self.session.add(couple)
        self.session.commit()
        self.session.refresh(couple)
        return couple

    def link_users(self, couple: models.Couple) -> None:
        """Point both members' `couple_id` at `couple`."""
        for uid in (couple.person1_id, couple.person2_id):
            if uid is None:
                continue
            user = self.session.get(models.User, uid)
            if user:
                user.couple_id = couple.id
                self.session.add(user)
        self.session.commit()

    def delete(self, couple: models.Couple) -> None:
        """Remove a couple, its cached free time and both users' links."""
        stmt = select(models.User).where(models.User.couple_id == couple.id)
        for user in self.session.exec(stmt).all():
            user.couple_id = None
            self.session.add(user)
        self.session.exec(delete(models.FreeTimeSlot).where(models.FreeTimeSlot.couple_id == couple.id))
        self.session.delete(couple)
        self.session.commit()


class CourseRepository:
    """CRUD operations for `Course` and its `CourseSchedule` rows.

    Schedules hang off `Course.schedules` with a delete-orphan cascade, so
    replacing the list or deleting the course removes the old rows.
    """
    def __init__(self, session: Session):
        self.session = session

    def create(self, course: models.Course, schedules: List[models.CourseSchedule]) -> models.Course:
        """Create a course together with its schedules in one commit."""
        course.schedules = list(schedules)
        self.session.add(course)
        self.session.commit()
        self.session.refresh(course)
        return course

    def list_for_user(self, user_id: int) -> List[models.Course]:
        """Return a user's courses, newest first."""
        stmt = (
            select(models.Course)
            .where(models.Course.user_id == user_id)
            .order_by(models.Course.created_at.desc(), models.Course.id.desc())
        )
        return self.session.exec(stmt).all()

    def count_for_user(self, user_id: int) -> int:
        stmt = select(func.count(models.Course.id)).where(models.Course.user_id == user_id)
        return self.session.exec(stmt).one()

    def get_owned(self, course_id: int, user_id: int) -> Optional[models.Course]:
        """Fetch a course only if it belongs to `user_id`."""
        stmt = select(models.Course).where(models.Course.id == course_id, models.Course.user_id == user_id)
        return self.session.exec(stmt).first()

    def list_schedules(self, course_id: int) -> List[models.CourseSchedule]:
        stmt = (
            select(models.CourseSchedule)
            .where(models.CourseSchedule.course_id == course_id)
            .order_by(models.CourseSchedule.day_of_week, models.CourseSchedule.start_time)
        )
        return self.session.exec(stmt).all()

    def list_schedules_for_user(self, user_id: int) -> List[models.CourseSchedule]:
        """All schedule rows across every course owned by `user_id`."""
        stmt = (
            select(models.CourseSchedule)
            .join(models.Course, models.Course.id == models.CourseSchedule.course_id)
            .where(models.Course.user_id == user_id)
        )
        return self.session.exec(stmt).all()

    def update(self, course: models.Course, schedules: Optional[List[models.CourseSchedule]] = None) -> models.Course:
        """Persist course field changes; a schedule list replaces all existing rows."""
        if schedules is not None:
            course.schedules = list(schedules)
        self.session.add(course)
        self.session.commit()
        self.session.refresh(course)
        return course

    def delete(self, course: models.Course) -> None:
        self.session.delete(course)
        self.session.commit()

    def delete_all_for_user(self, user_id: int) -> int:
        courses = self.list_for_user(user_id)
        for c in courses:
            self.session.delete(c)
        self.session.commit()
        return len(courses)


class FreeTimeRepository:
    """Cached free-time rows per couple."""
    def __init__(self, session: Session):
        self.session = session

    def replace_for_couple(self, couple_id: int, slots: List[models.FreeTimeSlot]) -> None:
        """Delete the couple's cached rows and insert `slots` in one commit."""
        self.session.exec(delete(models.FreeTimeSlot).where(models.FreeTimeSlot.couple_id == couple_id))
        for s in slots:
            s.couple_id = couple_id
            self.session.add(s)
        self.session.commit()

    def list_for_couple(self, couple_id: int) -> List[models.FreeTimeSlot]:
        stmt = (
            select(models.FreeTimeSlot)
            .where(models.FreeTimeSlot.couple_id == couple_id)
            .order_by(models.FreeTimeSlot.day_of_week, models.FreeTimeSlot.start_time)
        )
        return self.session.exec(stmt).all()


class SecurityRepository:
    """Security settings, login audit rows and lockout counters."""
    def __init__(self, session: Session):
        self.session = session

    def get_settings(self) -> Optional[models.SecuritySettings]:
        return self.session.exec(select(models.SecuritySettings)).first()

    def save_settings(self, s: models.SecuritySettings) -> models.SecuritySettings:
        self.session.add(s)
        self.session.commit()
        self.session.refresh(s)
        return s

    def add_attempt(self, attempt: models.LoginAttempt) -> None:
        self.session.add(attempt)
        self.session.commit()

    def attempts_since(self, since: datetime) -> List[models.LoginAttempt]:
        stmt = select(models.LoginAttempt).where(models.LoginAttempt.timestamp >= since)
        return self.session.exec(stmt).all()

    def delete_attempts_before(self, cutoff: datetime) -> int:
        result = self.session.exec(delete(models.LoginAttempt).where(models.LoginAttempt.timestamp < cutoff))
        self.session.commit()
        return result.rowcount or 0

    def lockouts_matching(self, user_id: Optional[int], ip: Optional[str]) -> List[models.UserLockout]:
        """Return lockout rows keyed by either the user or the client IP."""
        conds = []
        if user_id is not None:
            conds.append(models.UserLockout.user_id == user_id)
        if ip:
            conds.append(models.UserLockout.ip == ip)
        if not conds:
            return []
        stmt = select(models.UserLockout).where(or_(*conds)).order_by(models.UserLockout.id)
        return self.session.exec(stmt).all()

    def save_lockout(self, lockout: models.UserLockout) -> models.UserLockout:
        self.session.add(lockout)
        self.session.commit()
        self.session.refresh(lockout)
        return lockout

    def delete_lockouts(self, lockouts: List[models.UserLockout]) -> None:
        for lo in lockouts:
            self.session.delete(lo)
        self.session.commit()
