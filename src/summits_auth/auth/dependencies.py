"""FastAPI dependencies for sessions and authentication.

Application-wide collaborators (session manager, storage, login flow) are
created in the app lifespan and stored on `app.state`. These dependencies
hand them to route handlers explicitly.

## Usage

```python
from fastapi import Depends
from summits_auth.auth import get_current_user
from summits_auth.database import User

@router.get("/profile")
async def get_profile(user: User = Depends(get_current_user)):
    return {"id": user.id, "name": user.name}
```
"""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status

from summits_auth.auth.flow import AuthFlowController
from summits_auth.auth.session import Session, SessionManager
from summits_auth.auth.stores import SessionStoreError
from summits_auth.database.models import User
from summits_auth.database.storage import Storage, StorageError

logger = logging.getLogger(__name__)


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.sessions


def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_auth_flow(request: Request) -> AuthFlowController:
    return request.app.state.auth_flow


async def load_session(
    request: Request,
    sessions: SessionManager = Depends(get_session_manager),
) -> Session:
    """Load the session named by the request's session cookie.

    A request without a known token gets a new, empty session.
    """
    try:
        return await sessions.load(request.cookies.get(sessions.cookie_name))
    except SessionStoreError as e:
        logger.error(f"Failed to load session: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from e


def get_current_user_id(session: Session = Depends(load_session)) -> int | None:
    """Get just the user ID from the session without a database lookup."""
    return session.user_id


async def get_current_user_optional(
    user_id: int | None = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
) -> User | None:
    """Get the current user if logged in, or None."""
    if user_id is None:
        return None

    try:
        user = await storage.get_user_by_id(user_id)
    except StorageError as e:
        logger.error(f"Failed to load user {user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from e

    if user is None:
        logger.warning(f"Session for non-existent user: {user_id}")
    return user


async def get_current_user(
    user: User | None = Depends(get_current_user_optional),
) -> User:
    """Get the current authenticated user.

    Raises 401 if not authenticated.
    """
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )

    return user
