"""FastAPI application factory.

Creates and configures the FastAPI application with all routes and error
handlers.

## Usage

```python
from summits_auth.api import create_app

app = create_app()

# Run with uvicorn
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=5000)
```

## Configuration

The app is configured via environment variables. See `summits_auth.config`
for available settings. Collaborators can be replaced by passing them to
`create_app`, which is how the tests plug in mock providers.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from summits_auth.auth.errors import AuthError, UnknownProvider
from summits_auth.auth.flow import AuthFlowController
from summits_auth.auth.providers.registry import ProviderRegistry, build_providers
from summits_auth.auth.session import SessionManager
from summits_auth.auth.stores import (
    DatabaseSessionStore,
    MemorySessionStore,
    SessionStore,
    SessionStoreError,
)
from summits_auth.config import Settings, get_settings
from summits_auth.database.connection import Database
from summits_auth.database.storage import Storage
from summits_auth.images import ImageManager, S3ImageManager

logger = logging.getLogger(__name__)


def _create_session_store(settings: Settings, database: Database) -> SessionStore:
    if settings.session_store == "memory":
        logger.warning(
            "Using in-memory session store: sessions are lost on restart "
            "and not shared between worker processes"
        )
        return MemorySessionStore()
    return DatabaseSessionStore(database)


async def _sweep_expired_sessions(store: SessionStore, interval: float) -> None:
    """Periodically delete expired session records."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await store.delete_expired()
        except SessionStoreError as e:
            logger.warning(f"Expired session cleanup failed: {e}")
            continue
        if removed:
            logger.debug(f"Removed {removed} expired sessions")


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render login flow errors without leaking their details."""
    if isinstance(exc, UnknownProvider):
        # Same body as any other unknown route
        return JSONResponse({"detail": "Not Found"}, status_code=404)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


async def session_store_error_handler(
    request: Request, exc: SessionStoreError
) -> JSONResponse:
    logger.error(f"Session store failure on {request.url.path}: {exc}")
    return JSONResponse({"error": "internal_error"}, status_code=500)


def create_app(
    settings: Settings | None = None,
    *,
    providers: ProviderRegistry | None = None,
    image_manager: ImageManager | None = None,
    session_store: SessionStore | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Application settings (default: loaded from environment)
        providers: Provider registry (default: built from settings)
        image_manager: Avatar storage (default: S3 when configured)
        session_store: Session backend (default: chosen by settings)

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Wire collaborators onto app.state and clean up on shutdown."""
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")

        database = Database.from_settings(settings)
        await database.create_tables()

        store = (
            session_store
            if session_store is not None
            else _create_session_store(settings, database)
        )
        sessions = SessionManager.from_settings(store, settings)

        images = image_manager
        if images is None and settings.s3_configured:
            images = S3ImageManager.from_settings(settings)

        storage = Storage(database)
        app.state.database = database
        app.state.storage = storage
        app.state.sessions = sessions
        app.state.auth_flow = AuthFlowController(
            providers if providers is not None else build_providers(settings, images),
            storage,
            sessions,
            login_landing_path=settings.login_landing_path,
            logout_landing_path=settings.logout_landing_path,
        )

        sweeper = asyncio.create_task(
            _sweep_expired_sessions(store, settings.session_cleanup_interval_seconds)
        )

        yield

        logger.info("Shutting down")
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
        await database.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="OAuth sign-in and sessions for the summits climbing log",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(SessionStoreError, session_store_error_handler)

    # Include routers
    from summits_auth.api.routes import auth, users

    app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
    app.include_router(users.router, prefix="/api/user", tags=["Users"])

    # Health check endpoint
    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "version": settings.app_version}

    return app
