"""OAuth login flow.

## Flow

1. GET /auth/oauth/{provider}: `begin_login` stores a random state (and the
   page the user came from) in the session and returns the consent URL
2. The provider redirects back to GET /auth/authorized/{provider}
3. `complete_login` pops the state and compares it with the callback's,
   exchanges the code, resolves the provider user id, finds or registers the
   local user and stores its id in the session
4. GET /auth/logout: `logout` destroys the whole session

## Session states

```
Anonymous --begin_login--> Pending(state, redirect_target?)
Pending --complete_login--> Authenticated(user_id) | Anonymous (on error)
```

The state is popped before it is compared, and the session is committed
whatever the outcome, so each issued state can be presented only once.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Mapping
from urllib.parse import urlsplit

from authlib.oauth2.rfc6749 import OAuth2Token

from summits_auth.auth.errors import (
    AuthError,
    ExchangeFailed,
    MissingPendingState,
    ProviderDenied,
    RegistrationFailed,
    SessionDestroyFailed,
    StateMismatch,
    StorageUnavailable,
)
from summits_auth.auth.providers.base import OAuthProvider
from summits_auth.auth.providers.registry import ProviderRegistry
from summits_auth.auth.session import (
    OAUTH_STATE_KEY,
    REDIRECT_KEY,
    USER_ID_KEY,
    Session,
    SessionManager,
)
from summits_auth.auth.stores import SessionStoreError
from summits_auth.auth.tokens import OAUTH_STATE_SIZE, generate_random_string
from summits_auth.database.models import User
from summits_auth.database.storage import Storage, StorageError, UserAlreadyExistsError

logger = logging.getLogger(__name__)


def local_redirect_target(referer: str | None) -> str | None:
    """Extract path and query from a Referer URL.

    Returns None unless the result is a path on this site, so a crafted
    Referer cannot turn the post-login redirect into an open redirect.
    """
    if not referer:
        return None

    try:
        parts = urlsplit(referer)
    except ValueError:
        return None

    target = parts.path
    if parts.query:
        target += "?" + parts.query

    if not target.startswith("/") or target.startswith(("//", "/\\")):
        return None
    return target


class AuthFlowController:
    """Drives the OAuth round trip for one session at a time.

    Example:
        ```python
        flow = AuthFlowController(providers, storage, sessions)

        location = await flow.begin_login(session, "vk", referer="/summits")
        # ... provider redirects back ...
        location = await flow.complete_login(session, "vk", request.query_params)
        ```
    """

    def __init__(
        self,
        providers: ProviderRegistry,
        storage: Storage,
        sessions: SessionManager,
        login_landing_path: str = "/user/me",
        logout_landing_path: str = "/",
    ):
        self.providers = providers
        self.storage = storage
        self.sessions = sessions
        self.login_landing_path = login_landing_path
        self.logout_landing_path = logout_landing_path

    async def begin_login(
        self,
        session: Session,
        provider_name: str,
        referer: str | None = None,
    ) -> str:
        """Start a login round trip.

        Returns:
            The provider's consent URL, or the landing path if the session
            is already authenticated

        Raises:
            UnknownProvider: If `provider_name` is not registered
        """
        provider = self.providers.get(provider_name)

        if session.user_id is not None:
            return self.login_landing_path

        # Drop the target of an earlier abandoned round trip
        session.pop(REDIRECT_KEY)
        target = local_redirect_target(referer)
        if target:
            session.put(REDIRECT_KEY, target)

        state = generate_random_string(OAUTH_STATE_SIZE)
        session.put(OAUTH_STATE_KEY, state)
        await self.sessions.commit(session)

        return provider.authorization_url(state)

    async def complete_login(
        self,
        session: Session,
        provider_name: str,
        params: Mapping[str, str],
    ) -> str:
        """Handle the provider's callback.

        Args:
            session: Session that started the round trip
            provider_name: Provider name from the callback URL
            params: Callback query parameters (code, state, error, ...)

        Returns:
            The page to redirect to after login

        Raises:
            UnknownProvider: If `provider_name` is not registered
            ProviderDenied: If the provider reported an error
            MissingPendingState: If no round trip is pending
            StateMismatch: If the state does not match
            ExchangeFailed: If the code cannot be exchanged
            IdentityResolutionFailed: If the user id cannot be resolved
            RegistrationFailed: If a new user cannot be registered
            StorageUnavailable: If the user lookup fails
        """
        provider = self.providers.get(provider_name)

        try:
            if params.get("error"):
                raise ProviderDenied(
                    provider.name,
                    f"Error returned by oauth provider: {params.get('error')}, "
                    f"{params.get('error_description', '')}",
                )

            user_id = await self._authenticate(session, provider, params)

            session.put(USER_ID_KEY, user_id)
            self.sessions.renew_token(session)
            target = session.pop(REDIRECT_KEY)
        except AuthError as e:
            logger.warning(f"Login via {provider.name} failed ({type(e).__name__}): {e}")
            raise
        finally:
            await self.sessions.commit(session)

        logger.info(f"User {user_id} logged in via {provider.name}")
        return target or self.login_landing_path

    async def logout(self, session: Session) -> str:
        """Destroy the session.

        Raises:
            SessionDestroyFailed: If the session store cannot delete it
        """
        try:
            await self.sessions.destroy(session)
        except SessionStoreError as e:
            logger.error(f"Failed to destroy session data: {e}")
            raise SessionDestroyFailed(detail=str(e)) from e

        return self.logout_landing_path

    async def _authenticate(
        self,
        session: Session,
        provider: OAuthProvider,
        params: Mapping[str, str],
    ) -> int:
        """Validate the callback and return the local user id."""
        expected_state = session.pop(OAUTH_STATE_KEY)
        if expected_state is None:
            raise MissingPendingState(provider.name, "OAuth state not found in session")

        received_state = params.get("state") or ""
        if not secrets.compare_digest(
            expected_state.encode("utf-8"), received_state.encode("utf-8")
        ):
            raise StateMismatch(provider.name, "OAuth state does not match")

        code = params.get("code")
        if not code:
            raise ExchangeFailed(provider.name, "Callback has no authorization code")

        token = await provider.exchange_code(code)
        external_id = await provider.resolve_external_user_id(token)

        user = await self._find_user(provider, external_id)
        if user is not None:
            return user.id

        return await self._register(provider, token, external_id)

    async def _register(
        self,
        provider: OAuthProvider,
        token: OAuth2Token,
        external_id: str,
    ) -> int:
        try:
            return await provider.register(token, self.storage)
        except UserAlreadyExistsError:
            # Another request registered the same identity first
            logger.info(f"Concurrent registration via {provider.name}, repeating lookup")

        user = await self._find_user(provider, external_id)
        if user is None:
            raise RegistrationFailed(provider.name, "User missing after duplicate registration")
        return user.id

    async def _find_user(self, provider: OAuthProvider, external_id: str) -> User | None:
        try:
            return await self.storage.get_user(external_id, provider.source_id)
        except StorageError as e:
            raise StorageUnavailable(provider.name, str(e)) from e
