from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

import httpx
from fastapi import HTTPException

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")

from caretrack.supabase import AuthSession, AuthUser, SupabaseAuth  # noqa: E402

BASE_URL = "http://localhost:54321"
ANON_KEY = "test-anon-key"


class FakeSupabase:
    def __init__(self, *, select_queue=None, insert_queue=None, fail_tables=None):
        self.select_queue = {
            table: list(items) for table, items in (select_queue or {}).items()
        }
        self.insert_queue = {
            table: list(items) for table, items in (insert_queue or {}).items()
        }
        self.fail_tables = set(fail_tables or [])
        self.anon_key = ANON_KEY
        self.access_token = ANON_KEY
        self.calls = []

    def _maybe_fail(self, table):
        if table in self.fail_tables:
            raise HTTPException(status_code=500, detail=f"Supabase request failed (table={table})")

    async def select(self, table, params):
        self.calls.append(("select", table, params))
        self._maybe_fail(table)
        queue = self.select_queue.get(table)
        if queue:
            return queue.pop(0)
        return []

    async def insert(self, table, payload, *, params=None):
        self.calls.append(("insert", table, payload, params))
        self._maybe_fail(table)
        queue = self.insert_queue.get(table)
        if queue:
            return queue.pop(0)
        return [payload]

    async def update(self, table, payload, params):
        self.calls.append(("update", table, payload, params))
        self._maybe_fail(table)
        return []

    def calls_for(self, kind, table):
        return [call for call in self.calls if call[0] == kind and call[1] == table]


def make_user(*, email: str = "ana@example.com", metadata: Optional[Dict[str, Any]] = None) -> AuthUser:
    return AuthUser(id=str(uuid4()), email=email, user_metadata=metadata or {})


def make_session(user: Optional[AuthUser] = None, *, token: str = "access-1") -> AuthSession:
    return AuthSession(
        access_token=token,
        refresh_token="refresh-1",
        expires_at=1_900_000_000,
        user=user or make_user(),
    )


def session_payload(user: AuthUser, *, token: str = "access-1") -> Dict[str, Any]:
    return {
        "access_token": token,
        "refresh_token": f"refresh-for-{token}",
        "expires_at": 1_900_000_000,
        "user": {"id": user.id, "email": user.email, "user_metadata": user.user_metadata},
    }


def profile_row(user_id: str, **overrides: Any) -> Dict[str, Any]:
    row = {
        "id": user_id,
        "email": "ana@example.com",
        "full_name": "Ana Ruiz",
        "role": "parent",
        "created_at": "2025-01-01T00:00:00+00:00",
        "updated_at": "2025-01-01T00:00:00+00:00",
    }
    row.update(overrides)
    return row


class GoTrueStub:
    """Answers /auth/v1 requests from canned responses and records every call."""

    def __init__(self, responses: Optional[Dict[str, httpx.Response]] = None):
        self.responses = responses or {}
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.rsplit("/auth/v1/", 1)[-1]
        grant_type = request.url.params.get("grant_type")
        key = f"{path}:{grant_type}" if grant_type else path
        response = self.responses.get(key)
        if response is None:
            return httpx.Response(404, json={"msg": f"no stub for {key}"})
        return response

    def auth(self, session: Optional[AuthSession] = None) -> SupabaseAuth:
        return SupabaseAuth(
            base_url=BASE_URL,
            anon_key=ANON_KEY,
            session=session,
            transport=httpx.MockTransport(self),
        )


def child_row(**overrides: Any) -> Dict[str, Any]:
    row = {
        "id": str(uuid4()),
        "name": "Mateo",
        "birth_date": "2019-05-10",
        "diagnosis": None,
        "notes": None,
        "is_active": True,
        "created_at": "2025-01-01T00:00:00+00:00",
        "updated_at": "2025-02-01T00:00:00+00:00",
        "relationship_type": "parent",
        "can_edit": True,
        "can_export": False,
        "is_relation_active": True,
        "creator_name": "Ana Ruiz",
    }
    row.update(overrides)
    return row


def log_row(*, created_at: datetime, **overrides: Any) -> Dict[str, Any]:
    row = {
        "id": str(uuid4()),
        "child_id": str(uuid4()),
        "category_id": None,
        "title": "Morning check-in",
        "content": "Calm arrival, joined circle time.",
        "mood_score": None,
        "intensity_level": None,
        "follow_up_required": False,
        "follow_up_date": None,
        "reviewed_by": None,
        "reviewer_name": None,
        "log_date": created_at.isoformat(),
        "created_at": created_at.isoformat(),
        "category": None,
    }
    row.update(overrides)
    return row


NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)
