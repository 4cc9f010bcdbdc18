"""Per-caller authentication state kept in sync with the Supabase auth-event stream."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import Depends, Header, HTTPException

from .config import CONFIG
from .schemas import Profile, ProfileUpdate, UserRole
from .supabase import (
    AuthEvent,
    AuthSession,
    AuthUser,
    Subscription,
    SupabaseAuth,
    SupabaseClient,
    build_clients,
    session_from_headers,
)

logger = logging.getLogger(__name__)

AUTH_EVENT_ERROR = "Error handling auth state change"


def _error_message(exc: Exception, fallback: str) -> str:
    if isinstance(exc, HTTPException) and isinstance(exc.detail, str) and exc.detail:
        return exc.detail
    return str(exc) or fallback


def _default_full_name(user: AuthUser) -> str:
    metadata = user.user_metadata or {}
    if metadata.get("full_name"):
        return metadata["full_name"]
    if metadata.get("name"):
        return metadata["name"]
    if user.email:
        return user.email.split("@")[0]
    return "User"


class AuthState:
    """Current profile, admin flag, loading and error for one caller.

    The holder subscribes to ``SupabaseAuth`` events once, on ``initialize``,
    and stops reacting to them after ``close``.
    """

    def __init__(
        self,
        auth: SupabaseAuth,
        supabase: SupabaseClient,
        *,
        default_role: UserRole = UserRole.PARENT,
    ) -> None:
        self.auth = auth
        self.supabase = supabase
        self.default_role = default_role
        self.user: Optional[Profile] = None
        self.is_admin = False
        self.loading = True
        self.error: Optional[str] = None
        self._initialized = False
        self._closed = False
        self._subscription: Optional[Subscription] = None

    @property
    def session(self) -> Optional[AuthSession]:
        return self.auth.session

    async def fetch_profile(self, user_id: str) -> Optional[Profile]:
        try:
            rows = await self.supabase.select(
                "profiles",
                params={"select": "*", "id": f"eq.{user_id}", "limit": "1"},
            )
        except HTTPException as exc:
            logger.warning("profile lookup failed", extra={"user_id": user_id, "detail": exc.detail})
            return None

        if rows:
            return Profile.model_validate(rows[0])

        logger.info("profile not found, creating", extra={"user_id": user_id})
        try:
            auth_user = await self.auth.get_user()
        except HTTPException as exc:
            logger.warning("auth user lookup failed", extra={"user_id": user_id, "detail": exc.detail})
            return None
        if auth_user is None:
            return None

        now = datetime.now(timezone.utc).isoformat()
        payload: Dict[str, Any] = {
            "id": user_id,
            "email": auth_user.email or "",
            "full_name": _default_full_name(auth_user),
            "role": (auth_user.user_metadata or {}).get("role") or self.default_role.value,
            "created_at": now,
            "updated_at": now,
        }
        try:
            created = await self.supabase.insert("profiles", payload)
        except HTTPException as exc:
            logger.warning("profile creation failed", extra={"user_id": user_id, "detail": exc.detail})
            return None
        return Profile.model_validate(created[0] if created else payload)

    async def check_admin_status(self, user_id: str) -> bool:
        try:
            rows = await self.supabase.select(
                "profiles",
                params={"select": "role", "id": f"eq.{user_id}", "limit": "1"},
            )
        except HTTPException as exc:
            logger.warning("admin check failed", extra={"user_id": user_id, "detail": exc.detail})
            return False
        if not rows:
            return False
        return rows[0].get("role") == UserRole.ADMIN.value

    async def update_last_login(self, user_id: str) -> None:
        try:
            await self.supabase.update(
                "profiles",
                {"last_login": datetime.now(timezone.utc).isoformat()},
                params={"id": f"eq.{user_id}"},
            )
        except HTTPException as exc:
            logger.warning("last login update failed", extra={"user_id": user_id, "detail": exc.detail})

    async def _load_user(self, user_id: str) -> None:
        profile = await self.fetch_profile(user_id)
        if profile is None or self._closed:
            return
        self.user = profile
        is_admin = await self.check_admin_status(user_id)
        if not self._closed:
            self.is_admin = is_admin

    def _bind_token(self, session: Optional[AuthSession]) -> None:
        self.supabase.access_token = session.access_token if session else self.supabase.anon_key

    async def _handle_auth_event(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        if self._closed:
            return
        logger.info("auth state changed", extra={"event": event.value})
        try:
            if event == AuthEvent.SIGNED_IN:
                if session is not None:
                    self.loading = True
                    self._bind_token(session)
                    await self.update_last_login(session.user.id)
                    await self._load_user(session.user.id)
            elif event == AuthEvent.SIGNED_OUT:
                self._bind_token(None)
                self.user = None
                self.is_admin = False
                self.error = None
            elif event == AuthEvent.TOKEN_REFRESHED:
                if session is not None:
                    self._bind_token(session)
        except Exception:
            logger.exception("auth state change handling failed", extra={"event": event.value})
            if not self._closed:
                self.error = AUTH_EVENT_ERROR
        finally:
            if not self._closed:
                self.loading = False

    async def initialize(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        try:
            session = await self.auth.get_session()
            if session is not None:
                await self._load_user(session.user.id)
            self._subscription = self.auth.on_auth_state_change(self._handle_auth_event)
        finally:
            self.loading = False

    def close(self) -> None:
        self._closed = True
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def sign_in(self, email: str, password: str) -> None:
        try:
            self.loading = True
            self.error = None
            await self.auth.sign_in_with_password(email, password)
        except Exception as exc:
            logger.warning("sign in failed", extra={"email": email})
            self.error = _error_message(exc, "Sign in failed")
            raise
        finally:
            self.loading = False

    async def sign_up(self, email: str, password: str, full_name: str, role: UserRole) -> None:
        try:
            self.loading = True
            self.error = None
            await self.auth.sign_up(
                email,
                password,
                data={"full_name": full_name, "role": role.value},
            )
        except Exception as exc:
            logger.warning("sign up failed", extra={"email": email})
            self.error = _error_message(exc, "Sign up failed")
            raise
        finally:
            self.loading = False

    async def sign_out(self) -> None:
        try:
            self.loading = True
            await self.auth.sign_out()
            self.user = None
            self.is_admin = False
            self.error = None
        except Exception as exc:
            logger.warning("sign out failed")
            self.error = _error_message(exc, "Sign out failed")
            raise
        finally:
            self.loading = False

    async def update_profile(self, updates: ProfileUpdate) -> Profile:
        try:
            if self.user is None:
                raise HTTPException(status_code=401, detail="No user found")
            changes = updates.model_dump(mode="json", exclude_unset=True)
            if changes:
                merged = Profile.model_validate({**self.user.model_dump(), **changes})
                await self.supabase.update("profiles", changes, params={"id": f"eq.{self.user.id}"})
                self.user = merged
                if "role" in changes:
                    self.is_admin = await self.check_admin_status(merged.id)
            return self.user
        except Exception as exc:
            logger.warning("profile update failed")
            self.error = _error_message(exc, "Profile update failed")
            raise

    async def reset_password(self, email: str) -> None:
        try:
            await self.auth.reset_password_for_email(email, CONFIG.password_reset_redirect_url)
        except Exception as exc:
            logger.warning("password reset failed", extra={"email": email})
            self.error = _error_message(exc, "Password reset failed")
            raise

    async def refresh_user(self) -> None:
        try:
            session = await self.auth.get_session()
            if session is not None:
                profile = await self.fetch_profile(session.user.id)
                if profile is not None:
                    self.user = profile
                    self.is_admin = await self.check_admin_status(session.user.id)
        except Exception as exc:
            logger.warning("user refresh failed")
            self.error = _error_message(exc, "User refresh failed")
            raise

    async def refresh_token(self, refresh_token: Optional[str] = None) -> AuthSession:
        try:
            return await self.auth.refresh_session(refresh_token)
        except Exception as exc:
            logger.warning("session refresh failed")
            self.error = _error_message(exc, "Session refresh failed")
            raise

    def clear_error(self) -> None:
        self.error = None


async def get_auth_state(
    authorization: Optional[str] = Header(None),
    refresh_token: Optional[str] = Header(None, alias="X-Refresh-Token"),
) -> AsyncIterator[AuthState]:
    session = await session_from_headers(authorization, refresh_token)
    state = await _open_state(session)
    try:
        yield state
    finally:
        state.close()


async def get_refresh_state() -> AsyncIterator[AuthState]:
    """Holder for the token refresh route.

    The bearer token is ignored: a caller refreshes because it has expired,
    and the refresh token alone identifies the session to GoTrue.
    """
    state = await _open_state(None)
    try:
        yield state
    finally:
        state.close()


async def _open_state(session: Optional[AuthSession]) -> AuthState:
    auth, supabase = build_clients(session)
    state = AuthState(auth, supabase, default_role=CONFIG.default_profile_role)
    await state.initialize()
    return state


async def require_user(state: AuthState = Depends(get_auth_state)) -> AuthState:
    if state.user is None:
        raise HTTPException(status_code=401, detail="Authentication required.")
    return state
