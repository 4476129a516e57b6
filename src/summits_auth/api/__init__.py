"""FastAPI application and routes.

## API Structure

- /auth - OAuth login, callback and logout
- /api/user - Current user profile
- /health - Health check

## Authentication

Requests are associated with a server-side session through an HTTP-only
cookie holding an opaque token. Sessions become authenticated during OAuth
login.
"""

from summits_auth.api.app import create_app

__all__ = ["create_app"]
