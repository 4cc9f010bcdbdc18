from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import UUID, uuid4

import httpx
import jwt
from fastapi import HTTPException
from jwt import PyJWKClient

logger = logging.getLogger(__name__)


@lru_cache
def _supabase_config() -> tuple[str, str]:
    url = os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL")
    anon_key = os.getenv("SUPABASE_ANON_KEY") or os.getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY")
    if not url or not anon_key:
        raise RuntimeError("Missing SUPABASE_URL/SUPABASE_ANON_KEY for API access.")
    return url.rstrip("/"), anon_key


@lru_cache
def _jwks_url() -> str:
    base_url, _ = _supabase_config()
    return os.getenv("SUPABASE_JWKS_URL") or f"{base_url}/auth/v1/keys"


@lru_cache
def _jwks_client() -> PyJWKClient:
    return PyJWKClient(_jwks_url())


def _parse_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization token.")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid authorization token.")
    return parts[1]


def _parse_uuid(value: Optional[str], label: str) -> str:
    if not value:
        raise HTTPException(status_code=400, detail=f"Missing {label}.")
    try:
        return str(UUID(value))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {label}.") from exc


def resolve_optional_uuid(value: Optional[str], label: str) -> Optional[str]:
    if not value or value == "all":
        return None
    return _parse_uuid(value, label)


async def _describe_response(resp: httpx.Response) -> str:
    try:
        return resp.text or "<empty response>"
    except Exception:
        return "<unable to read response>"


async def _raise_supabase_error(
    resp: httpx.Response,
    action: str,
    *,
    object_label: Optional[str] = None,
) -> None:
    detail = await _describe_response(resp)
    label = f" ({object_label})" if object_label else ""
    status = resp.status_code if resp.status_code >= 400 else 500
    raise HTTPException(
        status_code=status,
        detail=f"Supabase {action} failed{label}: status={resp.status_code}, body={detail}",
    )


def _auth_error_message(resp: httpx.Response, fallback: str) -> str:
    try:
        body = resp.json()
    except ValueError:
        return fallback
    if not isinstance(body, dict):
        return fallback
    for key in ("error_description", "msg", "message", "error"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return fallback


async def _verify_access_token(token: str) -> Dict[str, Any]:
    audience = os.getenv("SUPABASE_JWT_AUD", "authenticated")
    options = {"verify_aud": bool(audience)}
    try:
        signing_key = _jwks_client().get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            audience=audience if audience else None,
            options=options,
        )
    except Exception:
        pass

    secret = os.getenv("SUPABASE_JWT_SECRET")
    if secret:
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=["HS256"],
                audience=audience if audience else None,
                options=options,
            )
        except Exception as exc:
            raise HTTPException(status_code=401, detail="Invalid or expired token.") from exc

    base_url, anon_key = _supabase_config()
    async with httpx.AsyncClient(timeout=10.0) as client:
        resp = await client.get(
            f"{base_url}/auth/v1/user",
            headers={
                "Authorization": f"Bearer {token}",
                "apikey": anon_key,
            },
        )
    if resp.status_code >= 400:
        raise HTTPException(status_code=401, detail="Invalid or expired token.")
    data = resp.json() if resp.content else {}
    user_id = data.get("id")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid or expired token.")
    return {
        "sub": user_id,
        "email": data.get("email"),
        "user_metadata": data.get("user_metadata") or {},
    }


@dataclass
class SupabaseClient:
    base_url: str
    anon_key: str
    access_token: str

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        url = f"{self.base_url}/rest/v1/{table}"
        async with httpx.AsyncClient(timeout=15.0) as client:
            return await client.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(headers),
            )

    async def select(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        resp = await self.request("GET", table, params=params)
        if resp.status_code >= 400:
            await _raise_supabase_error(resp, "select", object_label=f"table={table}")
        return resp.json()

    async def insert(
        self,
        table: str,
        payload: Dict[str, Any],
        *,
        params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        resp = await self.request(
            "POST",
            table,
            params=params,
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        if resp.status_code >= 400:
            await _raise_supabase_error(resp, "insert", object_label=f"table={table}")
        return resp.json() if resp.content else []

    async def update(
        self,
        table: str,
        payload: Dict[str, Any],
        params: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        resp = await self.request(
            "PATCH",
            table,
            params=params,
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        if resp.status_code >= 400:
            await _raise_supabase_error(resp, "update", object_label=f"table={table}")
        return resp.json() if resp.content else []


class AuthEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


@dataclass
class AuthUser:
    id: str
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "AuthUser":
        return cls(
            id=data["id"],
            email=data.get("email"),
            user_metadata=data.get("user_metadata") or {},
        )


@dataclass
class AuthSession:
    access_token: str
    user: AuthUser
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "AuthSession":
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=data.get("expires_at"),
            user=AuthUser.from_payload(data["user"]),
        )

    @classmethod
    def from_claims(
        cls,
        access_token: str,
        claims: Dict[str, Any],
        refresh_token: Optional[str] = None,
    ) -> "AuthSession":
        """Build a session from a verified JWT (or the /user fallback payload)."""

        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=claims.get("exp"),
            user=AuthUser(
                id=_parse_uuid(claims.get("sub"), "user_id"),
                email=claims.get("email"),
                user_metadata=claims.get("user_metadata") or {},
            ),
        )


AuthListener = Callable[[AuthEvent, Optional[AuthSession]], Awaitable[None]]


@dataclass
class Subscription:
    id: str
    callback: AuthListener
    _listeners: Dict[str, AuthListener]

    def unsubscribe(self) -> None:
        self._listeners.pop(self.id, None)


@dataclass
class SupabaseAuth:
    """GoTrue client holding one caller's session and its auth-event listeners."""

    base_url: str
    anon_key: str
    session: Optional[AuthSession] = None
    transport: Optional[httpx.AsyncBaseTransport] = None
    _listeners: Dict[str, AuthListener] = field(default_factory=dict)

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {access_token or self.anon_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        access_token: Optional[str] = None,
    ) -> httpx.Response:
        url = f"{self.base_url}/auth/v1/{path}"
        async with httpx.AsyncClient(timeout=10.0, transport=self.transport) as client:
            return await client.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(access_token),
            )

    def _raise_auth_error(self, resp: httpx.Response, fallback: str) -> None:
        raise HTTPException(
            status_code=resp.status_code if resp.status_code >= 400 else 500,
            detail=_auth_error_message(resp, fallback),
        )

    def on_auth_state_change(self, callback: AuthListener) -> Subscription:
        subscription_id = str(uuid4())
        self._listeners[subscription_id] = callback
        return Subscription(id=subscription_id, callback=callback, _listeners=self._listeners)

    async def _notify(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        for listener in list(self._listeners.values()):
            await listener(event, session)

    async def get_session(self) -> Optional[AuthSession]:
        return self.session

    async def get_user(self) -> Optional[AuthUser]:
        if self.session is None:
            return None
        resp = await self._request("GET", "user", access_token=self.session.access_token)
        if resp.status_code >= 400:
            self._raise_auth_error(resp, "Could not load user")
        data = resp.json() if resp.content else {}
        if not data.get("id"):
            return None
        return AuthUser.from_payload(data)

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        resp = await self._request(
            "POST",
            "token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        if resp.status_code >= 400:
            self._raise_auth_error(resp, "Invalid login credentials")
        self.session = AuthSession.from_payload(resp.json())
        await self._notify(AuthEvent.SIGNED_IN, self.session)
        return self.session

    async def sign_up(
        self,
        email: str,
        password: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuthSession]:
        resp = await self._request(
            "POST",
            "signup",
            json={"email": email, "password": password, "data": data or {}},
        )
        if resp.status_code >= 400:
            self._raise_auth_error(resp, "Sign up failed")
        body = resp.json() if resp.content else {}
        if not body.get("access_token"):
            # Email confirmation pending, no session yet.
            return None
        self.session = AuthSession.from_payload(body)
        await self._notify(AuthEvent.SIGNED_IN, self.session)
        return self.session

    async def sign_out(self) -> None:
        if self.session is not None:
            resp = await self._request("POST", "logout", access_token=self.session.access_token)
            # 401/403/404 mean the token is already gone upstream.
            if resp.status_code >= 400 and resp.status_code not in {401, 403, 404}:
                self._raise_auth_error(resp, "Sign out failed")
        self.session = None
        await self._notify(AuthEvent.SIGNED_OUT, None)

    async def reset_password_for_email(self, email: str, redirect_to: Optional[str] = None) -> None:
        params = {"redirect_to": redirect_to} if redirect_to else None
        resp = await self._request("POST", "recover", params=params, json={"email": email})
        if resp.status_code >= 400:
            self._raise_auth_error(resp, "Password reset failed")

    async def refresh_session(self, refresh_token: Optional[str] = None) -> AuthSession:
        """Exchange a refresh token for a new session; the current access token may be expired."""

        token = refresh_token or (self.session.refresh_token if self.session else None)
        if not token:
            raise HTTPException(status_code=401, detail="Missing refresh token.")
        resp = await self._request(
            "POST",
            "token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": token},
        )
        if resp.status_code >= 400:
            self._raise_auth_error(resp, "Session refresh failed")
        self.session = AuthSession.from_payload(resp.json())
        await self._notify(AuthEvent.TOKEN_REFRESHED, self.session)
        return self.session


def build_clients(session: Optional[AuthSession] = None) -> tuple[SupabaseAuth, SupabaseClient]:
    base_url, anon_key = _supabase_config()
    auth = SupabaseAuth(base_url=base_url, anon_key=anon_key, session=session)
    token = session.access_token if session else anon_key
    return auth, SupabaseClient(base_url=base_url, anon_key=anon_key, access_token=token)


async def session_from_headers(
    authorization: Optional[str],
    refresh_token: Optional[str] = None,
) -> Optional[AuthSession]:
    """Resolve the caller's session from request headers; anonymous when no token is sent."""

    if not authorization:
        return None
    token = _parse_bearer_token(authorization)
    claims = await _verify_access_token(token)
    session = AuthSession.from_claims(token, claims, refresh_token)
    logger.info("session resolved", extra={"user_id": session.user.id})
    return session
