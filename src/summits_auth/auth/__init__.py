"""Authentication module.

Provides OAuth sign-in through VK and SU, and server-side sessions.

## OAuth Flow

1. User clicks "Login with VK"
2. Redirect to the provider's consent screen, with a random state stored
   in the session
3. The provider redirects back with an authorization code and the state
4. Verify the state, exchange the code for an access token
5. Find the local user for the provider's user id, or register one
6. Store the user id in the session and redirect back

## Security

- The state is single-use and bound to the session
- Session cookies carry only a random token; data stays on the server
- Raw tokens and client secrets are never logged
"""

from summits_auth.auth.dependencies import (
    get_current_user,
    get_current_user_id,
    get_current_user_optional,
    load_session,
)
from summits_auth.auth.errors import AuthError
from summits_auth.auth.flow import AuthFlowController
from summits_auth.auth.session import Session, SessionData, SessionManager
from summits_auth.auth.stores import (
    DatabaseSessionStore,
    MemorySessionStore,
    SessionStore,
    SessionStoreError,
)

__all__ = [
    "AuthError",
    "AuthFlowController",
    "Session",
    "SessionData",
    "SessionManager",
    "SessionStore",
    "SessionStoreError",
    "DatabaseSessionStore",
    "MemorySessionStore",
    "get_current_user",
    "get_current_user_id",
    "get_current_user_optional",
    "load_session",
]
