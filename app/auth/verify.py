"""
verify.py
---------
Purpose:
    Session token verification (HS256 JWT issued by the auth service).

Notes:
    - Token is read from `Authorization: Bearer <token>` or the session cookie,
      so browser beacons and EventSource requests authenticate too.
    - `sub` claim is the user id, which is also the worker id.
    - Provides `session_dependency` for protected routes and
      `optional_session` for routes that must not answer 401.
"""

import jwt
from fastapi import HTTPException, status
from fastapi.requests import HTTPConnection

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def _extract_token(connection: HTTPConnection) -> str | None:
    authorization = connection.headers.get("authorization")
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return connection.cookies.get(settings.SESSION_COOKIE_NAME)


def verify_session_token(token: str) -> dict:
    if not settings.SESSION_JWT_SECRET:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session verification not configured",
        )
    try:
        options = {"verify_exp": True, "verify_aud": bool(settings.SESSION_JWT_AUDIENCE)}
        return jwt.decode(
            token,
            settings.SESSION_JWT_SECRET,
            algorithms=["HS256"],
            audience=settings.SESSION_JWT_AUDIENCE,
            options=options,
        )
    except jwt.PyJWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid session token: {e}",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def session_dependency(connection: HTTPConnection) -> dict:
    token = _extract_token(connection)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing session token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    claims = verify_session_token(token)
    if not claims.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return claims


def optional_session(connection: HTTPConnection) -> dict | None:
    try:
        return session_dependency(connection)
    except HTTPException as e:
        logger.debug("Session rejected", detail=e.detail)
        return None
