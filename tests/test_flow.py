"""Tests for the login flow controller."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from summits_auth.auth.errors import (
    ExchangeFailed,
    MissingPendingState,
    ProviderDenied,
    RegistrationFailed,
    SessionDestroyFailed,
    StateMismatch,
    StorageUnavailable,
    UnknownProvider,
)
from summits_auth.auth.flow import AuthFlowController, local_redirect_target
from summits_auth.auth.providers.registry import ProviderRegistry
from summits_auth.auth.session import (
    OAUTH_STATE_KEY,
    REDIRECT_KEY,
    USER_ID_KEY,
    SessionManager,
)
from summits_auth.auth.stores import MemorySessionStore, SessionStoreError
from summits_auth.database.storage import Storage, StorageError, UserAlreadyExistsError


@pytest.fixture
def provider() -> MagicMock:
    provider = MagicMock()
    provider.name = "mock"
    provider.source_id = 1
    provider.authorization_url.side_effect = lambda state: f"https://oauth.mock.test/authorize?state={state}"
    provider.exchange_code = AsyncMock(return_value={"access_token": "t"})
    provider.resolve_external_user_id = AsyncMock(return_value="2343")
    provider.register = AsyncMock(return_value=11)
    return provider


@pytest.fixture
def storage_mock() -> AsyncMock:
    storage = AsyncMock(spec=Storage)
    storage.get_user.return_value = None
    return storage


@pytest.fixture
def flow(provider: MagicMock, storage_mock: AsyncMock, sessions: SessionManager) -> AuthFlowController:
    return AuthFlowController(ProviderRegistry({"mock": provider}), storage_mock, sessions)


async def pending_session(flow: AuthFlowController, referer: str | None = None):
    """Return a session with a pending round trip and its state."""
    session = await flow.sessions.load(None)
    await flow.begin_login(session, "mock", referer)
    return session, session.get(OAUTH_STATE_KEY)


class TestLocalRedirectTarget:
    """Tests for extracting the post-login page from a Referer."""

    @pytest.mark.parametrize(
        ("referer", "expected"),
        [
            ("http://example.com/some/page?x=1", "/some/page?x=1"),
            ("/some/page?x=1", "/some/page?x=1"),
            ("/summit/ridge/peak", "/summit/ridge/peak"),
            ("http://example.com", None),
            ("http://example.com//evil.test/x", None),
            ("http://example.com/\\evil.test", None),
            ("javascript:alert(1)", None),
            ("", None),
            (None, None),
        ],
    )
    def test_targets(self, referer, expected):
        assert local_redirect_target(referer) == expected


class TestBeginLogin:
    """Tests for starting a round trip."""

    @pytest.mark.asyncio
    async def test_stores_state(self, flow: AuthFlowController, memory_store: MemorySessionStore):
        session = await flow.sessions.load(None)

        url = await flow.begin_login(session, "mock")

        state = session.get(OAUTH_STATE_KEY)
        assert len(state) >= 22
        assert url.endswith(f"state={state}")
        stored = await flow.sessions.load(session.token)
        assert stored.get(OAUTH_STATE_KEY) == state
        assert len(memory_store) == 1

    @pytest.mark.asyncio
    async def test_states_are_unique(self, flow: AuthFlowController):
        states = set()
        for _ in range(20):
            _, state = await pending_session(flow)
            states.add(state)

        assert len(states) == 20

    @pytest.mark.asyncio
    async def test_stores_redirect_target(self, flow: AuthFlowController):
        session, _ = await pending_session(flow, "http://example.com/summits?page=2")

        assert session.get(REDIRECT_KEY) == "/summits?page=2"

    @pytest.mark.asyncio
    async def test_new_round_trip_replaces_state(self, flow: AuthFlowController):
        session, first = await pending_session(flow, "/old")

        await flow.begin_login(session, "mock")

        assert session.get(OAUTH_STATE_KEY) != first
        assert session.get(REDIRECT_KEY) is None

    @pytest.mark.asyncio
    async def test_authenticated_shortcut(self, flow: AuthFlowController, provider: MagicMock):
        session = await flow.sessions.load(None)
        session.put(USER_ID_KEY, 5)

        assert await flow.begin_login(session, "mock") == "/user/me"
        provider.authorization_url.assert_not_called()
        assert session.get(OAUTH_STATE_KEY) is None

    @pytest.mark.asyncio
    async def test_unknown_provider(self, flow: AuthFlowController):
        session = await flow.sessions.load(None)

        with pytest.raises(UnknownProvider):
            await flow.begin_login(session, "nope")


class TestCompleteLogin:
    """Tests for handling the callback."""

    @pytest.mark.asyncio
    async def test_registers_new_user(
        self, flow: AuthFlowController, provider: MagicMock, storage_mock: AsyncMock
    ):
        session, state = await pending_session(flow)
        old_token = session.token

        location = await flow.complete_login(session, "mock", {"state": state, "code": "abc"})

        assert location == "/user/me"
        assert session.user_id == 11
        assert session.token != old_token
        provider.exchange_code.assert_awaited_once_with("abc")
        provider.register.assert_awaited_once_with({"access_token": "t"}, storage_mock)
        storage_mock.get_user.assert_awaited_once_with("2343", 1)

        assert await flow.sessions.store.find(old_token) is None
        assert (await flow.sessions.load(session.token)).user_id == 11

    @pytest.mark.asyncio
    async def test_existing_user(
        self, flow: AuthFlowController, provider: MagicMock, storage_mock: AsyncMock
    ):
        storage_mock.get_user.return_value = SimpleNamespace(id=3)
        session, state = await pending_session(flow)

        await flow.complete_login(session, "mock", {"state": state, "code": "abc"})

        assert session.user_id == 3
        provider.register.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redirect_target_consumed(self, flow: AuthFlowController):
        session, state = await pending_session(flow, "/summits")

        location = await flow.complete_login(session, "mock", {"state": state, "code": "abc"})

        assert location == "/summits"
        assert session.get(REDIRECT_KEY) is None

    @pytest.mark.asyncio
    async def test_provider_denied(self, flow: AuthFlowController, provider: MagicMock):
        session, state = await pending_session(flow)

        with pytest.raises(ProviderDenied):
            await flow.complete_login(session, "mock", {"error": "access_denied", "state": state})

        provider.exchange_code.assert_not_awaited()
        assert session.user_id is None

    @pytest.mark.asyncio
    async def test_missing_state(self, flow: AuthFlowController, provider: MagicMock):
        session = await flow.sessions.load(None)

        with pytest.raises(MissingPendingState):
            await flow.complete_login(session, "mock", {"state": "x", "code": "abc"})

        provider.exchange_code.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_mismatch_consumes_state(self, flow: AuthFlowController, provider: MagicMock):
        session, state = await pending_session(flow)

        with pytest.raises(StateMismatch):
            await flow.complete_login(session, "mock", {"state": state + "x", "code": "abc"})

        stored = await flow.sessions.load(session.token)
        assert stored.get(OAUTH_STATE_KEY) is None
        with pytest.raises(MissingPendingState):
            await flow.complete_login(stored, "mock", {"state": state, "code": "abc"})
        provider.exchange_code.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_code(self, flow: AuthFlowController, provider: MagicMock):
        session, state = await pending_session(flow)

        with pytest.raises(ExchangeFailed):
            await flow.complete_login(session, "mock", {"state": state})

        provider.exchange_code.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exchange_failure_keeps_session_anonymous(
        self, flow: AuthFlowController, provider: MagicMock
    ):
        provider.exchange_code.side_effect = ExchangeFailed("mock", "invalid_grant")
        session, state = await pending_session(flow)

        with pytest.raises(ExchangeFailed):
            await flow.complete_login(session, "mock", {"state": state, "code": "abc"})

        assert session.user_id is None
        provider.resolve_external_user_id.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_registration(
        self, flow: AuthFlowController, provider: MagicMock, storage_mock: AsyncMock
    ):
        storage_mock.get_user.side_effect = [None, SimpleNamespace(id=9)]
        provider.register.side_effect = UserAlreadyExistsError("2343", 1)
        session, state = await pending_session(flow)

        await flow.complete_login(session, "mock", {"state": state, "code": "abc"})

        assert session.user_id == 9
        assert storage_mock.get_user.await_count == 2

    @pytest.mark.asyncio
    async def test_duplicate_without_user(
        self, flow: AuthFlowController, provider: MagicMock, storage_mock: AsyncMock
    ):
        provider.register.side_effect = UserAlreadyExistsError("2343", 1)
        session, state = await pending_session(flow)

        with pytest.raises(RegistrationFailed):
            await flow.complete_login(session, "mock", {"state": state, "code": "abc"})

    @pytest.mark.asyncio
    async def test_storage_lookup_failure(
        self, flow: AuthFlowController, storage_mock: AsyncMock
    ):
        storage_mock.get_user.side_effect = StorageError("database is locked")
        session, state = await pending_session(flow)

        with pytest.raises(StorageUnavailable):
            await flow.complete_login(session, "mock", {"state": state, "code": "abc"})

    @pytest.mark.asyncio
    async def test_unknown_provider(self, flow: AuthFlowController):
        session, state = await pending_session(flow)

        with pytest.raises(UnknownProvider):
            await flow.complete_login(session, "nope", {"state": state, "code": "abc"})

        # The pending round trip is untouched
        assert session.get(OAUTH_STATE_KEY) == state


class TestLogout:
    """Tests for destroying the session."""

    @pytest.mark.asyncio
    async def test_logout(self, flow: AuthFlowController, memory_store: MemorySessionStore):
        session, state = await pending_session(flow)
        await flow.complete_login(session, "mock", {"state": state, "code": "abc"})

        assert await flow.logout(session) == "/"

        assert session.user_id is None
        assert len(memory_store) == 0

    @pytest.mark.asyncio
    async def test_logout_store_failure(self, flow: AuthFlowController, memory_store: MemorySessionStore):
        session, _ = await pending_session(flow)
        memory_store.delete = AsyncMock(side_effect=SessionStoreError("store is down"))

        with pytest.raises(SessionDestroyFailed):
            await flow.logout(session)
