"""Base OAuth2 identity provider.

Every provider implements the same contract, so the login flow never needs
to know which concrete provider it talks to:

- `authorization_url(state)`: consent screen URL carrying the CSRF state
- `exchange_code(code)`: authorization code for an access token
- `resolve_external_user_id(token)`: the provider-scoped user id
- `source_id`: constant distinguishing this provider's user ids from others
- `register(token, storage)`: create the local user for a new identity

## Registration

`register` is a template method. Subclasses only implement `fetch_profile`,
which returns the display name and avatar URLs. The base class creates the
user and then stores the avatars as a best-effort post step: download,
upload or storage failures are logged and never undo the registration.

## Network calls

All calls go through authlib's httpx client with a per-request timeout.
Profile reads are retried on timeouts and connection errors. The code
exchange is never retried because authorization codes are single-use. If the
inbound request is cancelled, the in-flight call is cancelled with it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx
from authlib.integrations.httpx_client import AsyncOAuth2Client, OAuthError
from authlib.oauth2.rfc6749 import OAuth2Token
from authlib.oauth2.rfc6749.parameters import prepare_grant_uri
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from summits_auth.auth.errors import ExchangeFailed, RegistrationFailed
from summits_auth.database.storage import Storage, StorageError, UserAlreadyExistsError
from summits_auth.images import ImageManager, ImageUploadError

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """A provider API call failed or returned an unusable response."""

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


# Failures of any call made on behalf of a user token
PROVIDER_CALL_ERRORS = (ProviderError, OAuthError, httpx.HTTPError)


@dataclass
class ProviderProfile:
    """User data needed to register a new local user."""

    oauth_id: str
    name: str
    # (url, size) pairs
    avatars: list[tuple[str, str]] = field(default_factory=list)


_retry_transient = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
    reraise=True,
)


class OAuthProvider(ABC):
    """Abstract base class for OAuth2 identity providers.

    Attributes:
        name: Provider name used in URLs ("vk", "su")
        source_id: Stable id stored with users registered through this provider
        authorize_url: Consent screen endpoint
        token_url: Token endpoint
        scopes: Scopes to request

    Example:
        ```python
        class MyProvider(OAuthProvider):
            name = "my"
            source_id = 7
            authorize_url = "https://id.example.com/authorize"
            token_url = "https://id.example.com/token"

            async def resolve_external_user_id(self, token):
                return str(token["user_id"])

            async def fetch_profile(self, token):
                data = await self._get_json(token, "https://api.example.com/me")
                return ProviderProfile(oauth_id=str(data["id"]), name=data["name"])
        ```
    """

    name: str
    source_id: int
    authorize_url: str
    token_url: str
    scopes: tuple[str, ...] = ()

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        image_manager: ImageManager | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the provider.

        Args:
            client_id: OAuth client id issued by the provider
            client_secret: OAuth client secret issued by the provider
            redirect_uri: Callback URL registered with the provider
            image_manager: Destination for avatars (skipped when None)
            timeout: Timeout in seconds for every provider request
            transport: Custom httpx transport (used by tests)
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.image_manager = image_manager
        self.timeout = timeout
        self._transport = transport

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    def _client_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"timeout": self.timeout}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return kwargs

    def _oauth_client(self, token: OAuth2Token | None = None) -> AsyncOAuth2Client:
        """Client that authenticates as this application, or as the token's user."""
        return AsyncOAuth2Client(
            client_id=self.client_id,
            client_secret=self.client_secret,
            token_endpoint_auth_method="client_secret_post",
            scope=" ".join(self.scopes) or None,
            redirect_uri=self.redirect_uri,
            token=token,
            **self._client_kwargs(),
        )

    def authorization_url(self, state: str) -> str:
        """Build the consent screen URL.

        Args:
            state: Random single-use value bound to the user's session

        Returns:
            URL to redirect the browser to
        """
        return prepare_grant_uri(
            self.authorize_url,
            self.client_id,
            "code",
            redirect_uri=self.redirect_uri,
            scope=" ".join(self.scopes) or None,
            state=state,
            access_type="offline",
        )

    async def exchange_code(self, code: str) -> OAuth2Token:
        """Exchange an authorization code for a token.

        Raises:
            ExchangeFailed: On transport errors or provider-reported errors
                (invalid client credentials, invalid or expired code)
        """
        try:
            async with self._oauth_client() as client:
                token = await client.fetch_token(self.token_url, code=code)
        except (OAuthError, httpx.HTTPError, ValueError) as e:
            raise ExchangeFailed(self.name, f"Token exchange failed: {e}") from e

        if not token or "access_token" not in token:
            raise ExchangeFailed(self.name, "Token response has no access_token")

        token = OAuth2Token.from_dict(token)
        # VK omits token_type; authlib needs it to sign API requests
        token.setdefault("token_type", "Bearer")
        return self._normalize_token(token)

    def _normalize_token(self, token: OAuth2Token) -> OAuth2Token:
        """Adjust provider quirks in the token response."""
        return token

    @abstractmethod
    async def resolve_external_user_id(self, token: OAuth2Token) -> str:
        """Return the provider-scoped id of the token's user.

        Raises:
            IdentityResolutionFailed: If the id cannot be determined
        """

    @abstractmethod
    async def fetch_profile(self, token: OAuth2Token) -> ProviderProfile:
        """Fetch the data needed to register the token's user.

        Raises:
            ProviderError: If the provider reports an error or returns
                an unusable response
        """

    async def register(self, token: OAuth2Token, storage: Storage) -> int:
        """Create a local user for the token's user.

        Returns:
            Id of the new local user

        Raises:
            RegistrationFailed: If the profile cannot be fetched or the
                user cannot be created
            UserAlreadyExistsError: If a concurrent login registered the
                same identity first
        """
        try:
            profile = await self.fetch_profile(token)
        except PROVIDER_CALL_ERRORS as e:
            raise RegistrationFailed(self.name, f"Failed to fetch profile: {e}") from e

        try:
            user_id = await storage.create_user(
                profile.name, profile.oauth_id, self.source_id
            )
        except UserAlreadyExistsError:
            raise
        except StorageError as e:
            raise RegistrationFailed(self.name, str(e)) from e

        logger.info(f"Registered user {user_id} via {self.name}")

        await self._store_avatars(storage, user_id, profile.avatars)
        return user_id

    async def _store_avatars(
        self,
        storage: Storage,
        user_id: int,
        avatars: list[tuple[str, str]],
    ) -> None:
        """Download, upload and record avatars. Failures are only logged."""
        if not avatars:
            return
        if self.image_manager is None:
            logger.info(f"Image storage not configured, skipping avatars of user {user_id}")
            return

        for url, size in avatars:
            key = f"users/{user_id}_{size}.jpg"
            try:
                data = await self._download(url)
                await self.image_manager.upload(data, key)
                await storage.update_user_image(user_id, size, key)
            except (
                ProviderError,
                httpx.HTTPError,
                httpx.InvalidURL,
                ImageUploadError,
                StorageError,
            ) as e:
                logger.warning(f"Failed to store {size} image for user {user_id}: {e}")

    @_retry_transient
    async def _api_get(
        self,
        token: OAuth2Token,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """GET a provider API URL authenticated with the user's token."""
        async with self._oauth_client(token) as client:
            return await client.get(
                url, params=params, headers={"Accept": "application/json"}
            )

    async def _get_json(
        self,
        token: OAuth2Token,
        url: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """GET a provider API URL and decode the JSON body.

        Raises:
            ProviderError: On error status codes or a non-JSON body
        """
        response = await self._api_get(token, url, params)

        if response.status_code >= 400:
            raise ProviderError(
                f"API request failed: {response.status_code}",
                provider=self.name,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(
                f"API returned invalid JSON: {e}",
                provider=self.name,
                status_code=response.status_code,
            ) from e

    @_retry_transient
    async def _download(self, url: str) -> bytes:
        """Download a public file, such as an avatar.

        No credentials are sent: avatar URLs point at third-party hosts.
        """
        async with httpx.AsyncClient(**self._client_kwargs()) as client:
            response = await client.get(url)

        if response.status_code != 200:
            raise ProviderError(
                f"Failed to download {url}: unexpected status {response.status_code}",
                provider=self.name,
                status_code=response.status_code,
            )
        return response.content
