"""Authentication routes: login, logout, session context, space switching."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, Response
from pydantic import BaseModel

from spacegate.authz.context import AccessContext
from spacegate.config.settings import get_settings
from spacegate.models.domain import AvailableSpace, Session
from spacegate.web.dependencies import (
    SESSION_COOKIE,
    ContextDep,
    EngineDep,
    TokenDep,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: str
    password: str


class SwitchSpaceRequest(BaseModel):
    membership_id: str


class SessionResponse(BaseModel):
    token: str
    person_id: str
    active_membership_id: str
    expires_at: datetime


def set_session_cookie(response: Response, session: Session) -> None:
    settings = get_settings()
    response.set_cookie(
        key=SESSION_COOKIE,
        value=session.token,
        httponly=True,
        secure=not settings.debug,
        samesite="lax",
        max_age=settings.session_ttl_seconds,
    )


def session_response(session: Session) -> SessionResponse:
    return SessionResponse(
        token=session.token,
        person_id=session.person_id,
        active_membership_id=session.active_membership_id,
        expires_at=session.expires_at,
    )


def context_payload(context: AccessContext) -> dict[str, Any]:
    return {
        "person_id": context.person_id,
        "email": context.email,
        "membership_id": context.membership_id,
        "org_id": context.org_id,
        "role": context.role.value,
        "space": context.space.value,
        "account_id": context.scope.account_id,
        "vendor_id": context.scope.vendor_id,
        "active_project_ids": sorted(context.scope.active_project_ids),
    }


@router.post("/login")
async def login(
    body: LoginRequest, response: Response, engine: EngineDep
) -> SessionResponse:
    session = await engine.authenticate(body.email, body.password)
    set_session_cookie(response, session)
    return session_response(session)


@router.post("/logout")
async def logout(response: Response, engine: EngineDep, token: TokenDep) -> dict[str, str]:
    await engine.logout(token)
    response.delete_cookie(SESSION_COOKIE)
    return {"status": "ok"}


@router.get("/session")
async def current_session(context: ContextDep) -> dict[str, Any]:
    return context_payload(context)


@router.get("/spaces")
async def available_spaces(engine: EngineDep, token: TokenDep) -> list[AvailableSpace]:
    return await engine.available_spaces(token)


@router.post("/switch-space")
async def switch_space(
    body: SwitchSpaceRequest,
    response: Response,
    engine: EngineDep,
    token: TokenDep,
) -> SessionResponse:
    session = await engine.switch_space(token, body.membership_id)
    set_session_cookie(response, session)
    return session_response(session)
