from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field, field_validator

from ..auth_state import AuthState, get_auth_state, get_refresh_state, require_user
from ..schemas import Profile, ProfileUpdate, UserRole, self_assignable_role

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])
logger = logging.getLogger(__name__)


class SignInPayload(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class SignUpPayload(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=1)
    role: UserRole = UserRole.PARENT

    check_role = field_validator("role")(self_assignable_role)


class ResetPasswordPayload(BaseModel):
    email: str = Field(..., min_length=3)


class SessionOut(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None


class AuthStateOut(BaseModel):
    user: Optional[Profile] = None
    is_admin: bool = False
    loading: bool = False
    error: Optional[str] = None
    session: Optional[SessionOut] = None


def _state_out(state: AuthState, *, include_session: bool = False) -> AuthStateOut:
    session = None
    if include_session and state.session is not None:
        session = SessionOut(
            access_token=state.session.access_token,
            refresh_token=state.session.refresh_token,
            expires_at=state.session.expires_at,
        )
    return AuthStateOut(
        user=state.user,
        is_admin=state.is_admin,
        loading=state.loading,
        error=state.error,
        session=session,
    )


@router.post("/sign-in", response_model=AuthStateOut)
async def sign_in_endpoint(
    payload: SignInPayload,
    state: AuthState = Depends(get_auth_state),
) -> AuthStateOut:
    await state.sign_in(payload.email.strip(), payload.password)
    logger.info("signed in", extra={"user_id": state.user.id if state.user else None})
    return _state_out(state, include_session=True)


@router.post("/sign-up", response_model=AuthStateOut)
async def sign_up_endpoint(
    payload: SignUpPayload,
    state: AuthState = Depends(get_auth_state),
) -> AuthStateOut:
    await state.sign_up(payload.email.strip(), payload.password, payload.full_name.strip(), payload.role)
    return _state_out(state, include_session=True)


@router.post("/sign-out", response_model=AuthStateOut)
async def sign_out_endpoint(state: AuthState = Depends(get_auth_state)) -> AuthStateOut:
    await state.sign_out()
    return _state_out(state)


@router.post("/reset-password")
async def reset_password_endpoint(
    payload: ResetPasswordPayload,
    state: AuthState = Depends(get_auth_state),
) -> dict:
    await state.reset_password(payload.email.strip())
    return {"status": "ok"}


@router.post("/refresh-token", response_model=AuthStateOut)
async def refresh_token_endpoint(
    refresh_token: Optional[str] = Header(None, alias="X-Refresh-Token"),
    state: AuthState = Depends(get_refresh_state),
) -> AuthStateOut:
    await state.refresh_token(refresh_token)
    await state.refresh_user()
    return _state_out(state, include_session=True)


@router.post("/refresh", response_model=AuthStateOut)
async def refresh_user_endpoint(state: AuthState = Depends(require_user)) -> AuthStateOut:
    await state.refresh_user()
    return _state_out(state)


@router.get("/me", response_model=AuthStateOut)
async def me_endpoint(state: AuthState = Depends(require_user)) -> AuthStateOut:
    return _state_out(state)


@router.patch("/me", response_model=AuthStateOut)
async def update_me_endpoint(
    payload: ProfileUpdate,
    state: AuthState = Depends(require_user),
) -> AuthStateOut:
    await state.update_profile(payload)
    return _state_out(state)
