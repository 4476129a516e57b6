"""Server-side sessions.

The browser holds only an opaque random token in an HTTP-only cookie. The
session contents live in a `SessionStore`:

```json
{
  "deadline": 1735689600.0,
  "user_id": 42,
  "oauth_state": "rY3...",
  "redirect_target": "/summit/ridge/peak?tab=climbs"
}
```

`oauth_state` and `redirect_target` exist only while an OAuth round trip is
pending. `user_id` is set once the user has logged in.

## Lifecycle

1. A request without a known token gets a fresh session and a new token
2. Handlers mutate the session through `put` / `pop`
3. `SessionManager.commit` persists it, only when it was modified
4. `SessionManager.write_cookie` sends the token back to the browser
5. `SessionManager.destroy` deletes the record on logout

A destroyed or expired token is never revived: presenting it again yields a
new, empty session under a different token.

## Security

- Tokens carry 256 bits of entropy from the OS CSPRNG
- The token is rotated when the user logs in
- Cookies are HTTP-only, SameSite=Lax, scoped to `/`, Secure in production
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ValidationError
from starlette.responses import Response

from summits_auth.auth.stores import SessionStore
from summits_auth.auth.tokens import SESSION_TOKEN_SIZE, generate_random_string
from summits_auth.config import Settings

logger = logging.getLogger(__name__)

# Session keys
USER_ID_KEY = "user_id"
OAUTH_STATE_KEY = "oauth_state"
REDIRECT_KEY = "redirect_target"


class SessionData(BaseModel):
    """Typed values stored in a session."""

    deadline: float
    user_id: int | None = None
    oauth_state: str | None = None
    redirect_target: str | None = None


_VALUE_KEYS = frozenset({USER_ID_KEY, OAUTH_STATE_KEY, REDIRECT_KEY})


class SessionStatus(str, Enum):
    """Whether the session needs to be written back."""

    UNMODIFIED = "unmodified"
    MODIFIED = "modified"
    DESTROYED = "destroyed"


class Session:
    """A loaded session and its pending changes."""

    def __init__(self, token: str, data: SessionData):
        self.token = token
        self.data = data
        self.status = SessionStatus.UNMODIFIED
        self.replaced_token: str | None = None

    def get(self, key: str) -> Any:
        self._check_key(key)
        return getattr(self.data, key)

    def put(self, key: str, value: Any) -> None:
        self._check_key(key)
        setattr(self.data, key, value)
        self.status = SessionStatus.MODIFIED

    def pop(self, key: str) -> Any:
        """Return the value and remove it from the session."""
        self._check_key(key)
        value = getattr(self.data, key)
        if value is not None:
            setattr(self.data, key, None)
            self.status = SessionStatus.MODIFIED
        return value

    @property
    def user_id(self) -> int | None:
        return self.data.user_id

    @property
    def deadline(self) -> float:
        return self.data.deadline

    @staticmethod
    def _check_key(key: str) -> None:
        if key not in _VALUE_KEYS:
            raise KeyError(f"Unknown session key: {key}")

    def __repr__(self) -> str:
        return f"<Session status={self.status.value} user_id={self.user_id}>"


class SessionManager:
    """Loads, persists and destroys sessions in a `SessionStore`.

    Example:
        ```python
        sessions = SessionManager(MemorySessionStore())

        session = await sessions.load(request.cookies.get(sessions.cookie_name))
        session.put(USER_ID_KEY, 42)

        response = RedirectResponse("/user/me")
        await sessions.save(session, response)
        ```
    """

    def __init__(
        self,
        store: SessionStore,
        lifetime_seconds: int = 60 * 60 * 24,
        cookie_name: str = "session",
        cookie_secure: bool = False,
    ):
        self.store = store
        self.lifetime_seconds = lifetime_seconds
        self.cookie_name = cookie_name
        self.cookie_secure = cookie_secure

    @classmethod
    def from_settings(cls, store: SessionStore, settings: Settings) -> SessionManager:
        return cls(
            store,
            lifetime_seconds=settings.session_lifetime_seconds,
            cookie_name=settings.session_cookie_name,
            cookie_secure=settings.is_production,
        )

    async def load(self, token: str | None) -> Session:
        """Load the session for a token, or start a new one.

        Raises:
            SessionStoreError: If the store cannot be read
        """
        if token:
            raw = await self.store.find(token)
            if raw is not None:
                try:
                    data = SessionData.model_validate_json(raw)
                except ValidationError as e:
                    logger.warning(f"Discarding undecodable session record: {e}")
                else:
                    if data.deadline > time.time():
                        return Session(token, data)

        return Session(
            generate_random_string(SESSION_TOKEN_SIZE),
            SessionData(deadline=time.time() + self.lifetime_seconds),
        )

    async def commit(self, session: Session) -> None:
        """Persist the session if it was modified.

        Raises:
            SessionStoreError: If the store cannot be written
        """
        if session.status is not SessionStatus.MODIFIED:
            return

        if session.replaced_token is not None:
            await self.store.delete(session.replaced_token)
            session.replaced_token = None

        await self.store.commit(
            session.token,
            session.data.model_dump_json(exclude_none=True).encode(),
            session.deadline,
        )

    def renew_token(self, session: Session) -> None:
        """Move the session to a new token.

        The record under the old token is deleted on the next commit.
        """
        if session.replaced_token is None:
            session.replaced_token = session.token
        session.token = generate_random_string(SESSION_TOKEN_SIZE)
        session.status = SessionStatus.MODIFIED

    async def destroy(self, session: Session) -> None:
        """Delete the session record and clear its values.

        Raises:
            SessionStoreError: If the record cannot be deleted
        """
        await self.store.delete(session.token)
        if session.replaced_token is not None:
            await self.store.delete(session.replaced_token)
            session.replaced_token = None

        session.data = SessionData(deadline=session.deadline)
        session.status = SessionStatus.DESTROYED

    def write_cookie(self, session: Session, response: Response) -> None:
        """Set or clear the session cookie on a response."""
        if session.status is SessionStatus.DESTROYED:
            response.delete_cookie(
                key=self.cookie_name,
                path="/",
                httponly=True,
                secure=self.cookie_secure,
                samesite="lax",
            )
        elif session.status is SessionStatus.MODIFIED:
            response.set_cookie(
                key=self.cookie_name,
                value=session.token,
                max_age=max(int(session.deadline - time.time()), 0),
                path="/",
                httponly=True,
                secure=self.cookie_secure,
                samesite="lax",
            )

    async def save(self, session: Session, response: Response) -> None:
        """Commit the session and write its cookie."""
        await self.commit(session)
        self.write_cookie(session, response)
