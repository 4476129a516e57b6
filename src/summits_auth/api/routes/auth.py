"""Authentication routes.

Handles the OAuth login flow and logout.

## OAuth Flow

1. GET /auth/oauth/{provider} - Redirect to the provider's consent screen
2. GET /auth/authorized/{provider} - Handle the OAuth callback
3. GET /auth/logout - Destroy the session

All three answer with 307 redirects on success. Callback failures answer
400 with `{"error": "<code>"}`, an unknown provider answers 404.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import RedirectResponse

from summits_auth.auth.dependencies import get_auth_flow, load_session
from summits_auth.auth.flow import AuthFlowController
from summits_auth.auth.session import Session

router = APIRouter()


@router.get("/oauth/{provider}")
async def oauth_redirect(
    provider: str,
    request: Request,
    session: Session = Depends(load_session),
    flow: AuthFlowController = Depends(get_auth_flow),
) -> RedirectResponse:
    """Initiate OAuth login.

    The Referer header, when present, becomes the page to return to after
    a successful login. Already authenticated users are sent straight to
    the landing page.
    """
    location = await flow.begin_login(session, provider, request.headers.get("referer"))

    response = RedirectResponse(url=location, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
    flow.sessions.write_cookie(session, response)
    return response


@router.get("/authorized/{provider}")
async def oauth_callback(
    provider: str,
    request: Request,
    session: Session = Depends(load_session),
    flow: AuthFlowController = Depends(get_auth_flow),
) -> RedirectResponse:
    """Handle the OAuth callback and log the user in."""
    location = await flow.complete_login(session, provider, request.query_params)

    response = RedirectResponse(url=location, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
    flow.sessions.write_cookie(session, response)
    return response


@router.get("/logout")
async def logout(
    session: Session = Depends(load_session),
    flow: AuthFlowController = Depends(get_auth_flow),
) -> RedirectResponse:
    """Log out the current user by destroying the whole session."""
    location = await flow.logout(session)

    response = RedirectResponse(url=location, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
    flow.sessions.write_cookie(session, response)
    return response
