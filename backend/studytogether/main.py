"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints used by the StudyTogether
backend. Controllers are intentionally thin: they accept requests,
delegate to services, and return JSON responses.

Endpoints implemented:
- POST /auth/register
- POST /auth/login
- GET /auth/me
- POST /auth/validate-password
- POST /couples/invite
- POST /couples/join
- POST /couples/unbind
- GET, POST /courses
- GET, PUT, DELETE /courses/{course_id}
- POST /courses/import
- POST /courses/import_file
- GET /courses/free-time
- GET /courses/free-time/cached
- GET /health
"""

from fastapi import FastAPI, Depends, UploadFile, File, HTTPException, Form, Request
from fastapi.responses import Response
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
from typing import Optional
import json
import logging
import os
import time
import uuid
from .database import create_db_and_tables, get_session
from . import services, models
from .auth import get_current_user, client_ip
from .schemas import RegisterIn, LoginIn, PasswordIn, TokenOut, JoinCoupleIn, CourseIn, CourseUpdate, CourseImportIn
from .config import settings

app = FastAPI(title="StudyTogether API")
logger = logging.getLogger("studytogether.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

# Wide-open CORS keeps a locally served frontend working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    logger.info(
        "request_done %s",
        json.dumps(
            {
                "request_id": req_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
                "client": request.client.host if request.client else "unknown",
            },
            ensure_ascii=True,
        ),
    )
    return response


def _user_out(user: models.User, db: Session) -> dict:
    couple, partner = services.CoupleService(db).get_partner(user.id)
    return {
        'id': user.id,
        'username': user.username,
        'email': user.email,
        'display_name': user.name,
        'status': user.status,
        'couple_id': couple.id if couple else None,
        'partner_id': partner.id if partner else None,
        'partner_name': partner.name if partner else None,
        'created_at': user.created_at.isoformat() if user.created_at else None,
        'last_login': user.last_login.isoformat() if user.last_login else None,
    }


def _couple_out(couple: models.Couple) -> dict:
    return {
        'id': couple.id,
        'invite_code': couple.invite_code,
        'person1_id': couple.person1_id,
        'person2_id': couple.person2_id,
        'is_complete': couple.is_complete,
    }


def _course_out(course: models.Course) -> dict:
    schedules = sorted(course.schedules, key=lambda s: (s.day_of_week, s.start_time))
    return {
        'id': course.id,
        'name': course.name,
        'code': course.code,
        'instructor': course.instructor,
        'location': course.location,
        'description': course.description,
        'credits': course.credits,
        'color': course.color,
        'created_at': course.created_at.isoformat() if course.created_at else None,
        'schedules': [
            {
                'id': s.id,
                'day_of_week': s.day_of_week,
                'start_time': s.start_time,
                'end_time': s.end_time,
                'weeks': s.week_list(),
            }
            for s in schedules
        ],
    }


@app.post('/auth/register', status_code=201)
def register(payload: RegisterIn, db: Session = Depends(get_session)):
    """Register a new user and return it with an access token.

    An optional `invite_code` pairs the new account with the inviter
    straight away.
    """
    auth = services.AuthService(db)
    try:
        user = auth.register(
            payload.username,
            payload.password,
            email=payload.email,
            display_name=payload.display_name,
            invite_code=payload.invite_code,
        )
    except (services.NotFoundError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'user': _user_out(user, db), 'access_token': auth.issue_token(user)}


@app.post('/auth/login', response_model=TokenOut)
def login(payload: LoginIn, request: Request, db: Session = Depends(get_session)):
    """Authenticate a user and return a JWT token.

    Repeated failures lock the account (and the client IP) for the
    configured number of minutes; while locked the endpoint answers 423.
    """
    auth = services.AuthService(db)
    try:
        token = auth.authenticate(
            payload.username,
            payload.password,
            ip=client_ip(request),
            user_agent=request.headers.get('user-agent'),
        )
    except services.AccountLockedError as e:
        raise HTTPException(
            status_code=423,
            detail=f'too many failed attempts; locked until {e.unlock_at.isoformat()}',
        )
    except services.AccountDisabledError as e:
        raise HTTPException(status_code=403, detail=str(e))
    if not token:
        raise HTTPException(status_code=401, detail='invalid credentials')
    return {'access_token': token}


@app.get('/auth/me')
def me(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return the authenticated user together with partner information."""
    return _user_out(user, db)


@app.post('/auth/validate-password')
def validate_password(payload: PasswordIn, db: Session = Depends(get_session)):
    """Check a candidate password against the current password policy."""
    errors = services.SecurityService(db).validate_password(payload.password)
    return {'valid': not errors, 'errors': errors}


@app.post('/couples/invite')
def create_invite(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return the caller's pending invite code, generating one if needed."""
    couple = services.CoupleService(db).create_invite(user.id)
    return {'couple': _couple_out(couple)}


@app.post('/couples/join')
def join_couple(payload: JoinCoupleIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Join a partner's couple space using their invite code."""
    try:
        couple = services.CoupleService(db).join(user.id, payload.invite_code)
    except services.NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'couple': _couple_out(couple), 'user': _user_out(user, db)}


@app.post('/couples/unbind')
def unbind_couple(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Dissolve the caller's couple space."""
    try:
        partner = services.CoupleService(db).unbind(user.id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'status': 'ok', 'partner_name': partner.name if partner else None}


@app.get('/courses')
def list_courses(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """List the caller's courses (newest first) with their schedules."""
    courses = services.CourseService(db).list_courses(user.id)
    return {'courses': [_course_out(c) for c in courses]}


@app.post('/courses', status_code=201)
def create_course(payload: CourseIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Create a course with zero or more weekly schedule entries."""
    course = services.CourseService(db).create(user.id, payload)
    return {'course': _course_out(course)}


# registered before /courses/{course_id} so the literal paths win
@app.get('/courses/free-time')
def free_time(week: Optional[int] = None, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Compute the mutual free time of the caller and their partner.

    Busy time of either person blocks a slot. The result replaces the
    couple's cached slots. `week` limits both timetables to entries that
    run in that semester week.
    """
    try:
        return services.FreeTimeService(db).compute_for_user(user.id, week=week)
    except services.NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get('/courses/free-time/cached')
def cached_free_time(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return the most recently computed free time without recomputing."""
    try:
        return services.FreeTimeService(db).cached_for_user(user.id)
    except services.NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.post('/courses/import')
def import_courses(payload: CourseImportIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Import spreadsheet-style course rows.

    Returns counts of imported and failed rows plus per-row errors.
    """
    try:
        results = services.CourseService(db).import_rows(user.id, payload.courses, replace_all=payload.replace_all)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'results': results}


@app.post('/courses/import_file')
def import_course_file(
    file: UploadFile = File(...),
    replace_all: bool = Form(default=False),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """Upload a CSV or JSON timetable export and import its rows."""
    if not file.filename:
        raise HTTPException(status_code=400, detail='no file')
    content = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail='file too large')
    try:
        results = services.CourseService(db).import_file(user.id, content, file.filename, replace_all=replace_all)
    except (ValueError, UnicodeDecodeError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {'results': results}


@app.get('/courses/{course_id}')
def get_course(course_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    try:
        course = services.CourseService(db).get(user.id, course_id)
    except services.NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {'course': _course_out(course)}


@app.put('/courses/{course_id}')
def update_course(course_id: int, payload: CourseUpdate, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Update course fields; a `schedules` list replaces all existing schedules."""
    try:
        course = services.CourseService(db).update(user.id, course_id, payload)
    except services.NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {'course': _course_out(course)}


@app.delete('/courses/{course_id}')
def delete_course(course_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    try:
        services.CourseService(db).delete(user.id, course_id)
    except services.NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {'status': 'ok'}


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
