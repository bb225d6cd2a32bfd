"""Clinical session resolution.

A clinical session is created by the EHR launch (outside this service) and
identifies the patient in context, the provider acting, and the bearer
token for the EHR APIs. The browser holds a signed session cookie::

    <cookie_name>=<HS256 JWT {sub: session_id, exp, type: "session"}>

Protected paths (``/api/*``) resolve the cookie to a ``ClinicalSession``
and set ``request.state.clinical_session``; anything else gets 401. The
manifest endpoint, ``/health`` and ``/metrics`` are never protected.

This module provides:
  1. ``ClinicalSession`` / ``ClinicalSessionStore`` / in-memory store.
  2. ``issue_session_token`` / ``verify_session_token`` -- PyJWT helpers.
  3. ``ClinicalSessionMiddleware`` and the ``get_clinical_session`` dependency.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

import jwt
from fastapi import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ..links.model import utcnow

DEFAULT_SESSION_TTL_SECONDS = 3600
DEFAULT_PROTECTED_PREFIXES: tuple[str, ...] = ('/api/',)


@dataclass(frozen=True, slots=True)
class ClinicalSession:
    """EHR context for one signed-in provider.

    ``access_token`` is a bearer credential: never log it or put it in an
    audit event.
    """

    session_id: str
    patient_id: str
    provider_id: str
    provider_name: str
    fhir_base_url: str
    access_token: str = field(repr=False)
    expires_at: datetime = field(
        default_factory=lambda: utcnow() + timedelta(seconds=DEFAULT_SESSION_TTL_SECONDS),
    )

    def is_expired_at(self, now: datetime) -> bool:
        return now >= self.expires_at


class ClinicalSessionStore(Protocol):
    async def get(self, session_id: str) -> ClinicalSession | None: ...

    async def save(self, session: ClinicalSession) -> None: ...

    async def delete(self, session_id: str) -> None: ...


class InMemoryClinicalSessionStore:
    """Session store for local development and tests."""

    def __init__(self) -> None:
        self._sessions: dict[str, ClinicalSession] = {}

    async def get(self, session_id: str) -> ClinicalSession | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if session.is_expired_at(utcnow()):
            self._sessions.pop(session_id, None)
            return None
        return session

    async def save(self, session: ClinicalSession) -> None:
        self._sessions[session.session_id] = session

    async def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)


# ── Session cookie ────────────────────────────────────────────────────


def issue_session_token(
    session_id: str, secret: str, ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
) -> str:
    now = int(time.time())
    payload = {
        'sub': session_id,
        'iat': now,
        'exp': now + ttl_seconds,
        'type': 'session',
    }
    return jwt.encode(payload, secret, algorithm='HS256')


def verify_session_token(token: str, secret: str) -> dict:
    """Verify and decode a session cookie.

    Raises:
        jwt.InvalidTokenError: If verification fails.
    """
    return jwt.decode(
        token,
        secret,
        algorithms=['HS256'],
        options={'require': ['sub', 'exp', 'type'], 'verify_exp': True},
    )


def _unauthorized(code: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={'error': 'unauthorized', 'code': code, 'detail': detail},
    )


class ClinicalSessionMiddleware(BaseHTTPMiddleware):
    """Resolve the session cookie on protected paths.

    Args:
        app: The ASGI application.
        store: Session store resolving ``sub`` to a ``ClinicalSession``.
        session_secret: HS256 secret for the cookie.
        cookie_name: Name of the session cookie.
        protected_prefixes: Path prefixes requiring a session.
    """

    def __init__(
        self,
        app,
        store: ClinicalSessionStore,
        session_secret: str,
        cookie_name: str = 'healthlink_session',
        protected_prefixes: tuple[str, ...] = DEFAULT_PROTECTED_PREFIXES,
    ) -> None:
        super().__init__(app)
        self._store = store
        self._secret = session_secret
        self._cookie_name = cookie_name
        self._protected_prefixes = protected_prefixes

    def _is_protected(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self._protected_prefixes)

    async def dispatch(self, request: Request, call_next) -> Response:
        request.state.clinical_session = None
        if not self._is_protected(request.url.path):
            return await call_next(request)

        cookie = request.cookies.get(self._cookie_name)
        if not cookie:
            return _unauthorized('no_session', 'No valid session found')

        try:
            claims = verify_session_token(cookie, self._secret)
        except jwt.ExpiredSignatureError:
            return _unauthorized('session_expired', 'Session has expired')
        except jwt.InvalidTokenError:
            return _unauthorized('invalid_session', 'Session cookie is invalid')

        session = await self._store.get(claims['sub'])
        if session is None:
            return _unauthorized('session_expired', 'Session has expired')

        request.state.clinical_session = session
        return await call_next(request)


def get_clinical_session(request: Request) -> ClinicalSession:
    """FastAPI dependency returning the resolved clinical session.

    Raises:
        HTTPException: 401 if the request carries no session.
    """
    session: ClinicalSession | None = getattr(request.state, 'clinical_session', None)
    if session is None:
        raise HTTPException(
            status_code=401,
            detail={'error': 'unauthorized', 'code': 'no_session'},
        )
    return session
