"""Authentication helpers and FastAPI security dependency.

This module provides utilities to decode JWT tokens and a FastAPI
dependency `get_current_user` that validates the bearer token and
returns the corresponding `User` model instance from the database.

Token verification raises HTTPExceptions on failure so it can be used
directly inside route dependencies.
"""

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlmodel import Session
from .config import settings
from .database import get_session
from . import models, repositories

bearer_scheme = HTTPBearer()


def decode_token(token: str):
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail='invalid token')


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency that returns the authenticated user.

    The user is loaded through the request's own session so handlers can
    pass it straight to services. Disabled accounts are rejected like
    unknown ones.
    """
    payload = decode_token(credentials.credentials)
    user_id = payload.get('user_id')
    if not user_id:
        raise HTTPException(status_code=401, detail='invalid token payload')
    user = repositories.UserRepository(db).get(user_id)
    if not user:
        raise HTTPException(status_code=401, detail='user not found')
    if user.status != 'active':
        raise HTTPException(status_code=403, detail='account is disabled')
    return user


def client_ip(request: Request) -> str:
    """Best-effort client address, honouring `X-Forwarded-For` from a proxy."""
    forwarded = request.headers.get('x-forwarded-for')
    if forwarded:
        return forwarded.split(',')[0].strip()
    real_ip = request.headers.get('x-real-ip')
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else 'unknown'
