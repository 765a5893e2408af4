# tests/test_session.py

"""
Tests for the session store: restore, license checks, sign-out.
"""

import asyncio
from datetime import date, timedelta
from types import SimpleNamespace

import pytest

from core.config import settings
from core.errors import AuthError, BackendError, ValidationError
from models.enums import Role, SessionState
from sync.session import MemoryStorage, SessionStore
from tests.conftest import make_session, profile_row


TODAY = date(2024, 6, 15)


async def signed_in_store(backend, notifier, **profile_overrides):
    backend.seed("profiles", profile_row("user-1", **profile_overrides))
    backend.session = make_session("user-1")
    store = SessionStore(backend, notifier=notifier)
    await store.initialize()
    return store


class TestInitialize:
    @pytest.mark.asyncio
    async def test_restores_session_and_profile(self, backend, notifier):
        store = await signed_in_store(backend, notifier, coordination_staff_id="staff-1")

        identity = store.current_identity()
        assert store.state == SessionState.authenticated
        assert identity.user_id == "user-1"
        assert identity.condominium_id == "condo-1"
        assert store.is_coordination_member() is True

    @pytest.mark.asyncio
    async def test_subscribes_before_reading_session(self, backend, notifier):
        order = []
        original = backend.get_session

        def on_change(callback):
            order.append("subscribe")
            return SimpleNamespace(unsubscribe=lambda: None)

        async def get_session():
            order.append("get_session")
            return await original()

        backend.on_auth_state_change = on_change
        backend.get_session = get_session

        await SessionStore(backend, notifier=notifier).initialize()

        assert order == ["subscribe", "get_session"]

    @pytest.mark.asyncio
    async def test_corrupt_token_clears_storage(self, backend, notifier):
        storage = MemoryStorage({settings.AUTH_STORAGE_KEY: "{not json", "other": "x"})
        store = SessionStore(backend, storage=storage, notifier=notifier)

        identity = await store.initialize()

        assert identity is None
        assert len(storage) == 0
        assert store.state == SessionState.anonymous

    @pytest.mark.asyncio
    async def test_retrieval_error_fails_open_to_anonymous(self, backend, notifier):
        backend.failures["get_session"] = AuthError("refresh token revoked")
        store = SessionStore(backend, notifier=notifier)

        assert await store.initialize() is None
        assert store.state == SessionState.anonymous

    @pytest.mark.asyncio
    async def test_missing_profile_stays_authenticated(self, backend, notifier):
        backend.session = make_session("user-9")
        store = SessionStore(backend, notifier=notifier)

        identity = await store.initialize()

        assert store.state == SessionState.authenticated
        assert identity is not None
        assert identity.profile is None

    @pytest.mark.asyncio
    async def test_stale_profile_fetch_is_discarded(self, backend, notifier):
        backend.seed("profiles", profile_row("user-1"), profile_row("user-2", condominium_id="condo-2"))
        backend.session = make_session("user-1")
        store = SessionStore(backend, notifier=notifier)
        await store.initialize()

        gate = asyncio.Event()
        original = backend.select

        async def slow_select(table, filters=None, **kwargs):
            if filters == {"user_id": "user-1"}:
                await gate.wait()
            return await original(table, filters, **kwargs)

        backend.select = slow_select
        refresh = asyncio.ensure_future(store.refresh_profile())
        await asyncio.sleep(0)

        backend.fire_auth("SIGNED_IN", make_session("user-2"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        gate.set()
        await refresh

        assert store.current_identity().user_id == "user-2"
        assert store.current_identity().condominium_id == "condo-2"


class TestCheckLicense:
    @pytest.mark.asyncio
    async def test_super_admin_is_always_licensed(self, backend, notifier):
        store = await signed_in_store(backend, notifier, role=Role.super_admin.value, condominium_id=None)
        assert await store.check_license(TODAY) is True

    @pytest.mark.asyncio
    async def test_active_and_not_expired(self, backend, notifier):
        backend.seed("licenses", {"condominium_id": "condo-1", "status": "active",
                                  "end_date": (TODAY + timedelta(days=30)).isoformat()})
        store = await signed_in_store(backend, notifier)
        assert await store.check_license(TODAY) is True

    @pytest.mark.asyncio
    async def test_paused_is_unlicensed_even_far_in_future(self, backend, notifier):
        backend.seed("licenses", {"condominium_id": "condo-1", "status": "paused", "end_date": "2099-12-31"})
        store = await signed_in_store(backend, notifier)
        assert await store.check_license(TODAY) is False

    @pytest.mark.asyncio
    async def test_active_but_expired(self, backend, notifier):
        backend.seed("licenses", {"condominium_id": "condo-1", "status": "active",
                                  "end_date": (TODAY - timedelta(days=1)).isoformat()})
        store = await signed_in_store(backend, notifier)
        assert await store.check_license(TODAY) is False

    @pytest.mark.asyncio
    async def test_missing_license(self, backend, notifier):
        store = await signed_in_store(backend, notifier)
        assert await store.check_license(TODAY) is False

    @pytest.mark.asyncio
    async def test_lookup_error_is_unlicensed(self, backend, notifier):
        store = await signed_in_store(backend, notifier)
        backend.failures["select:licenses"] = BackendError("down")
        assert await store.check_license(TODAY) is False


class TestSignIn:
    @pytest.mark.asyncio
    async def test_signs_in_and_loads_profile(self, backend, notifier):
        backend.seed("profiles", profile_row("user-1"))
        store = SessionStore(backend, notifier=notifier)
        await store.initialize()
        backend.session = make_session("user-1")

        identity = await store.sign_in(" User1@Example.com ", "secret")

        assert identity.user_id == "user-1"
        assert store.state == SessionState.authenticated

    @pytest.mark.asyncio
    async def test_timeout_returns_to_anonymous(self, backend, notifier):
        store = SessionStore(backend, notifier=notifier)
        await store.initialize()
        backend.failures["sign_in"] = BackendError("Request timed out", code="TIMEOUT")

        with pytest.raises(BackendError):
            await store.sign_in("user1@example.com", "secret")

        assert store.state == SessionState.anonymous
        assert store.current_identity() is None

    @pytest.mark.asyncio
    async def test_rejected_credentials_return_to_anonymous(self, backend, notifier):
        store = SessionStore(backend, notifier=notifier)
        await store.initialize()
        backend.failures["sign_in"] = AuthError("Invalid login credentials")

        with pytest.raises(AuthError):
            await store.sign_in("user1@example.com", "wrong")

        assert store.state == SessionState.anonymous


class TestSignOut:
    @pytest.mark.asyncio
    async def test_clears_state_and_reloads(self, backend, notifier):
        reloads = []

        async def reload():
            reloads.append(True)

        backend.seed("profiles", profile_row("user-1"))
        backend.session = make_session("user-1")
        storage = MemoryStorage()
        store = SessionStore(backend, storage=storage, notifier=notifier, reload=reload)
        await store.initialize()
        assert storage.get_item(settings.AUTH_STORAGE_KEY) is not None

        assert await store.sign_out() is True

        assert store.current_identity() is None
        assert store.state == SessionState.anonymous
        assert len(storage) == 0
        assert reloads == [True]

    @pytest.mark.asyncio
    async def test_expired_session_is_a_successful_logout(self, backend, notifier):
        store = await signed_in_store(backend, notifier)
        backend.sign_out_error = AuthError("sign out failed: Auth session missing!")

        assert await store.sign_out() is True
        assert store.current_identity() is None
        assert notifier.titles("error") == []

    @pytest.mark.asyncio
    async def test_remote_failure_still_clears_locally(self, backend, notifier):
        store = await signed_in_store(backend, notifier)
        backend.sign_out_error = BackendError("network unreachable")
        hooks = []

        async def hook():
            hooks.append(True)

        store.on_sign_out(hook)

        assert await store.sign_out() is False
        assert store.current_identity() is None
        assert store.state == SessionState.anonymous
        assert hooks == [True]


class TestSignUp:
    @pytest.mark.asyncio
    async def test_empty_credentials_rejected_before_backend(self, backend, notifier):
        store = SessionStore(backend, notifier=notifier)
        with pytest.raises(ValidationError):
            await store.sign_up("", "secret")
        with pytest.raises(ValidationError):
            await store.sign_in("a@b.c", "")

    @pytest.mark.asyncio
    async def test_waits_for_trigger_created_profile(self, backend, notifier):
        store = SessionStore(backend, notifier=notifier)
        calls = []
        original = backend.select

        async def select(table, filters=None, **kwargs):
            calls.append(table)
            if len(calls) == 3:
                backend.seed("profiles", profile_row("new-user"))
            return await original(table, filters, **kwargs)

        backend.select = select

        profile = await store.ensure_profile("new-user", attempts=5, initial_delay=0, backoff=1)

        assert profile.user_id == "new-user"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_profile_timeout(self, backend, notifier):
        store = SessionStore(backend, notifier=notifier)

        with pytest.raises(BackendError) as exc:
            await store.ensure_profile("ghost", attempts=2, initial_delay=0, backoff=1)

        assert exc.value.code == "PROFILE_TIMEOUT"
