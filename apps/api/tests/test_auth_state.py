from __future__ import annotations

import asyncio

import httpx
import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from caretrack.auth_state import AUTH_EVENT_ERROR, AuthState
from caretrack.schemas import ProfileUpdate, UserRole
from caretrack.supabase import AuthEvent

from supabase_fakes import (
    FakeSupabase,
    GoTrueStub,
    make_session,
    make_user,
    profile_row,
    session_payload,
)


def _state(stub: GoTrueStub, fake: FakeSupabase, session=None) -> AuthState:
    return AuthState(stub.auth(session), fake)


def test_initialize_loads_existing_profile_and_admin_flag() -> None:
    session = make_session()
    user_id = session.user.id
    fake = FakeSupabase(
        select_queue={"profiles": [[profile_row(user_id, role="admin")], [{"role": "admin"}]]}
    )
    state = _state(GoTrueStub(), fake, session)

    asyncio.run(state.initialize())

    assert state.user is not None
    assert state.user.id == user_id
    assert state.is_admin is True
    assert state.loading is False
    assert fake.calls_for("insert", "profiles") == []


def test_missing_profile_is_created_once_with_parent_role() -> None:
    user = make_user(email="lola.diaz@example.com")
    session = make_session(user)
    stub = GoTrueStub(
        {"user": httpx.Response(200, json={"id": user.id, "email": user.email, "user_metadata": {}})}
    )
    fake = FakeSupabase(select_queue={"profiles": [[], [{"role": "parent"}]]})
    state = _state(stub, fake, session)

    asyncio.run(state.initialize())

    inserts = fake.calls_for("insert", "profiles")
    assert len(inserts) == 1
    payload = inserts[0][2]
    assert payload["id"] == user.id
    assert payload["role"] == "parent"
    assert payload["full_name"] == "lola.diaz"
    assert state.user.role == UserRole.PARENT
    assert state.is_admin is False


def test_created_profile_uses_metadata_role_and_name() -> None:
    user = make_user(metadata={"full_name": "Dr. Paz", "role": "specialist"})
    stub = GoTrueStub(
        {
            "user": httpx.Response(
                200,
                json={"id": user.id, "email": user.email, "user_metadata": user.user_metadata},
            )
        }
    )
    fake = FakeSupabase()
    state = _state(stub, fake, make_session(user))

    profile = asyncio.run(state.fetch_profile(user.id))

    payload = fake.calls_for("insert", "profiles")[0][2]
    assert payload["role"] == "specialist"
    assert payload["full_name"] == "Dr. Paz"
    assert profile.role == UserRole.SPECIALIST


def test_profile_lookup_failure_yields_no_user() -> None:
    session = make_session()
    fake = FakeSupabase(fail_tables={"profiles"})
    state = _state(GoTrueStub(), fake, session)

    asyncio.run(state.initialize())

    assert state.user is None
    assert state.is_admin is False
    assert state.loading is False


def test_initialize_registers_a_single_listener() -> None:
    stub = GoTrueStub()
    auth = stub.auth()
    state = AuthState(auth, FakeSupabase())

    async def run() -> None:
        await state.initialize()
        await state.initialize()

    asyncio.run(run())
    assert len(auth._listeners) == 1


def test_signed_out_event_clears_user_and_admin() -> None:
    session = make_session()
    fake = FakeSupabase(
        select_queue={"profiles": [[profile_row(session.user.id, role="admin")], [{"role": "admin"}]]}
    )
    stub = GoTrueStub({"logout": httpx.Response(204)})
    state = _state(stub, fake, session)

    async def run() -> None:
        await state.initialize()
        assert state.is_admin is True
        await state.auth.sign_out()

    asyncio.run(run())
    assert state.user is None
    assert state.is_admin is False
    assert state.error is None
    assert fake.access_token == fake.anon_key


def test_sign_in_event_loads_profile_and_updates_last_login() -> None:
    user = make_user()
    stub = GoTrueStub({"token:password": httpx.Response(200, json=session_payload(user, token="fresh"))})
    fake = FakeSupabase(select_queue={"profiles": [[profile_row(user.id)], [{"role": "parent"}]]})
    state = _state(stub, fake)

    async def run() -> None:
        await state.initialize()
        await state.sign_in("ana@example.com", "secret")

    asyncio.run(run())
    assert state.user.id == user.id
    assert state.loading is False
    assert fake.access_token == "fresh"
    updates = fake.calls_for("update", "profiles")
    assert len(updates) == 1
    assert "last_login" in updates[0][2]


def test_token_refresh_keeps_user_and_rebinds_token() -> None:
    session = make_session()
    user_id = session.user.id
    stub = GoTrueStub(
        {"token:refresh_token": httpx.Response(200, json=session_payload(session.user, token="access-2"))}
    )
    fake = FakeSupabase(select_queue={"profiles": [[profile_row(user_id)], [{"role": "parent"}]]})
    state = _state(stub, fake, session)

    async def run() -> None:
        await state.initialize()
        await state.refresh_token()

    asyncio.run(run())
    assert state.user.id == user_id
    assert fake.access_token == "access-2"


def test_sign_in_failure_stores_message_and_reraises() -> None:
    stub = GoTrueStub(
        {
            "token:password": httpx.Response(
                400,
                json={"error": "invalid_grant", "error_description": "Invalid login credentials"},
            )
        }
    )
    state = _state(stub, FakeSupabase())
    asyncio.run(state.initialize())

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(state.sign_in("ana@example.com", "wrong"))

    assert excinfo.value.status_code == 400
    assert state.error == "Invalid login credentials"
    assert state.loading is False
    assert state.user is None

    state.clear_error()
    assert state.error is None


def test_listener_failure_sets_generic_error() -> None:
    session = make_session()
    state = _state(GoTrueStub(), FakeSupabase(), None)

    async def boom(user_id: str) -> None:
        raise RuntimeError("profile service down")

    state._load_user = boom
    asyncio.run(state._handle_auth_event(AuthEvent.SIGNED_IN, session))

    assert state.error == AUTH_EVENT_ERROR
    assert state.loading is False


def test_closed_state_ignores_events() -> None:
    session = make_session()
    fake = FakeSupabase(select_queue={"profiles": [[profile_row(session.user.id)], [{"role": "parent"}]]})
    state = _state(GoTrueStub(), fake, session)

    async def run() -> None:
        await state.initialize()
        listener = state._subscription.callback
        state.close()
        assert state.auth._listeners == {}
        await listener(AuthEvent.SIGNED_OUT, None)

    asyncio.run(run())
    assert state.user is not None


def test_update_profile_without_user_fails() -> None:
    state = _state(GoTrueStub(), FakeSupabase())
    asyncio.run(state.initialize())

    with pytest.raises(HTTPException):
        asyncio.run(state.update_profile(ProfileUpdate(full_name="New name")))
    assert state.error == "No user found"


def test_update_profile_merges_changes() -> None:
    session = make_session()
    fake = FakeSupabase(select_queue={"profiles": [[profile_row(session.user.id)], [{"role": "parent"}]]})
    state = _state(GoTrueStub(), fake, session)

    async def run() -> None:
        await state.initialize()
        await state.update_profile(ProfileUpdate(full_name="Ana María Ruiz"))

    asyncio.run(run())
    assert state.user.full_name == "Ana María Ruiz"
    _, table, payload, params = fake.calls_for("update", "profiles")[-1]
    assert payload == {"full_name": "Ana María Ruiz"}
    assert params == {"id": f"eq.{session.user.id}"}


def test_reset_password_failure_is_stored() -> None:
    stub = GoTrueStub({"recover": httpx.Response(429, json={"msg": "Email rate limit exceeded"})})
    state = _state(stub, FakeSupabase())

    with pytest.raises(HTTPException):
        asyncio.run(state.reset_password("ana@example.com"))
    assert state.error == "Email rate limit exceeded"


def test_role_change_recomputes_admin_flag() -> None:
    session = make_session()
    fake = FakeSupabase(
        select_queue={
            "profiles": [
                [profile_row(session.user.id, role="admin")],
                [{"role": "admin"}],
                [{"role": "teacher"}],
            ]
        }
    )
    state = _state(GoTrueStub(), fake, session)

    async def run() -> None:
        await state.initialize()
        assert state.is_admin is True
        await state.update_profile(ProfileUpdate(role=UserRole.TEACHER))

    asyncio.run(run())
    assert state.user.role == UserRole.TEACHER
    assert state.is_admin is False


def test_profile_update_cannot_grant_admin_or_clear_name() -> None:
    with pytest.raises(ValidationError):
        ProfileUpdate(role=UserRole.ADMIN)
    with pytest.raises(ValidationError):
        ProfileUpdate.model_validate({"full_name": None})
    assert ProfileUpdate.model_validate({"phone": None}).model_dump(exclude_unset=True) == {"phone": None}


def test_refresh_token_with_explicit_refresh_token_and_no_session() -> None:
    user = make_user()
    stub = GoTrueStub(
        {"token:refresh_token": httpx.Response(200, json=session_payload(user, token="access-3"))}
    )
    fake = FakeSupabase()
    state = _state(stub, fake)

    async def run() -> None:
        await state.initialize()
        await state.refresh_token("r-7")

    asyncio.run(run())
    assert state.session.access_token == "access-3"
    assert fake.access_token == "access-3"
