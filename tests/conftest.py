"""Pytest fixtures for the summits auth tests.

This module provides test fixtures that ensure:
1. No external API calls are made (OAuth servers are httpx mock transports)
2. Databases are in-memory SQLite
3. Isolated test environment with controlled configuration
"""

import os
from typing import Callable
from urllib.parse import parse_qs

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

# Set test environment BEFORE importing application modules
# This ensures no real services are contacted during test collection
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SESSION_STORE", "memory")
os.environ.setdefault("BASE_URL", "http://testserver")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DEBUG", "true")

from summits_auth.api import create_app
from summits_auth.auth.errors import IdentityResolutionFailed, RegistrationFailed
from summits_auth.auth.providers.base import OAuthProvider, ProviderProfile
from summits_auth.auth.providers.registry import ProviderRegistry
from summits_auth.auth.session import SessionManager
from summits_auth.auth.stores import MemorySessionStore, SessionStore
from summits_auth.config import Settings
from summits_auth.database.connection import Database
from summits_auth.database.storage import Storage

MOCK_CLIENT_ID = "mock_client_id"
MOCK_CLIENT_SECRET = "mock_client_secret"
MOCK_ACCESS_TOKEN = "mock_access_token"
MOCK_OAUTH_USER_ID = "2343"
MOCK_CODE = "abc"
MOCK_OAUTH_URL = "https://oauth.mock.test"


# =============================================================================
# Mock OAuth server
# =============================================================================


class MockOAuthServer:
    """OAuth server answering through an httpx mock transport.

    The token endpoint accepts only the mock client credentials and the
    configured code. Extra routes can be added per test.
    """

    def __init__(
        self,
        code: str = MOCK_CODE,
        token_response: dict | None = None,
        token_path: str = "/access_token",
    ):
        self.code = code
        self.token_path = token_path
        self.token_response = token_response or {
            "token_type": "Bearer",
            "access_token": MOCK_ACCESS_TOKEN,
            "expires_in": 43200,
            "user_id": MOCK_OAUTH_USER_ID,
        }
        self.routes: dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    @property
    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == self.token_path]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == self.token_path:
            return self._access_token(request)
        handler = self.routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404, text="Not Found")
        return handler(request)

    def _access_token(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        error = None
        if form.get("client_id") != MOCK_CLIENT_ID or form.get("client_secret") != MOCK_CLIENT_SECRET:
            error = "invalid_client"
        elif form.get("code") != self.code:
            error = "invalid_grant"

        if error:
            return httpx.Response(
                401,
                json={"error": error, "error_description": "Oauth Server Error"},
            )
        return httpx.Response(200, json=self.token_response)


# =============================================================================
# Mock providers
# =============================================================================


class MockProvider(OAuthProvider):
    """Provider talking to `MockOAuthServer` with a fixed identity."""

    name = "mock"
    source_id = 1
    authorize_url = MOCK_OAUTH_URL + "/authorize"
    token_url = MOCK_OAUTH_URL + "/access_token"

    def __init__(self, server: MockOAuthServer, **kwargs):
        super().__init__(
            client_id=MOCK_CLIENT_ID,
            client_secret=MOCK_CLIENT_SECRET,
            redirect_uri="http://testserver/auth/authorized/mock",
            transport=server.transport,
            **kwargs,
        )
        self.register_calls = 0

    async def resolve_external_user_id(self, token):
        if token["access_token"] != MOCK_ACCESS_TOKEN:
            raise IdentityResolutionFailed(self.name, "incorrect access token")
        return MOCK_OAUTH_USER_ID

    async def fetch_profile(self, token):
        return ProviderProfile(oauth_id=MOCK_OAUTH_USER_ID, name="Mock Mock")

    async def register(self, token, storage):
        self.register_calls += 1
        return await super().register(token, storage)


class MockProviderUserIdError(MockProvider):
    async def resolve_external_user_id(self, token):
        raise IdentityResolutionFailed(self.name, "Failed to get user ID")


class MockProviderRegisterError(MockProvider):
    async def register(self, token, storage):
        self.register_calls += 1
        raise RegistrationFailed(self.name, "Failed to register user")


# =============================================================================
# Test Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset settings cache before each test to ensure clean state."""
    from summits_auth.config import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    """Settings for an isolated app instance."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        session_store="memory",
        base_url="http://testserver",
    )


@pytest.fixture
def oauth_server() -> MockOAuthServer:
    return MockOAuthServer()


@pytest.fixture
def mock_provider(oauth_server: MockOAuthServer) -> MockProvider:
    return MockProvider(oauth_server)


@pytest.fixture
def make_client(settings: Settings):
    """Factory for test clients serving an app with the given provider."""
    clients: list[TestClient] = []

    def _make(provider: OAuthProvider, session_store: SessionStore | None = None) -> TestClient:
        app = create_app(
            settings,
            providers=ProviderRegistry({provider.name: provider}),
            session_store=session_store,
        )
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client, mock_provider: MockProvider) -> TestClient:
    """Test client for an app with the mock provider registered."""
    return make_client(mock_provider)


# =============================================================================
# Async Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def database():
    """In-memory database with all tables created."""
    db = Database("sqlite+aiosqlite:///:memory:")
    await db.create_tables()
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def storage(database: Database) -> Storage:
    return Storage(database)


@pytest.fixture
def memory_store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
def sessions(memory_store: MemorySessionStore) -> SessionManager:
    return SessionManager(memory_store, lifetime_seconds=3600)
