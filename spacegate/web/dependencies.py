"""FastAPI dependencies: engine lookup, bearer token extraction, live context."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from spacegate.authz.context import AccessContext
from spacegate.engine import AccessEngine
from spacegate.exceptions import SessionExpired

SESSION_COOKIE = "session"


def get_access_engine(request: Request) -> AccessEngine:
    return request.app.state.engine  # type: ignore[no-any-return]


def session_token(request: Request) -> str:
    """Token from ``Authorization: Bearer`` or the session cookie."""
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        msg = "Not authenticated"
        raise SessionExpired(msg)
    return token


EngineDep = Annotated[AccessEngine, Depends(get_access_engine)]
TokenDep = Annotated[str, Depends(session_token)]


async def require_context(engine: EngineDep, token: TokenDep) -> AccessContext:
    """Resolve the caller's live membership on every request."""
    return await engine.current_context(token)


ContextDep = Annotated[AccessContext, Depends(require_context)]
