"""Errors raised by the login flow.

Every error carries the HTTP status it maps to and a short message that is
safe to show to the client. Details (provider responses, exception text)
go to the log only. Both CSRF failures share one client message so a caller
cannot tell which check rejected the callback.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for login flow failures."""

    status_code: int = 400
    message: str = "invalid_request"

    def __init__(self, provider: str | None = None, detail: str | None = None):
        super().__init__(detail or self.message)
        self.provider = provider
        self.detail = detail


class UnknownProvider(AuthError):
    """No provider is registered under the requested name."""

    status_code = 404
    message = "Not Found"


class ProviderDenied(AuthError):
    """The provider redirected back with an authorization error."""

    message = "authorization_denied"


class MissingPendingState(AuthError):
    """The session has no OAuth round trip in progress."""

    message = "invalid_state"


class StateMismatch(AuthError):
    """The callback state does not match the one issued for this session."""

    message = "invalid_state"


class ExchangeFailed(AuthError):
    """The authorization code could not be exchanged for a token."""

    message = "exchange_failed"


class IdentityResolutionFailed(AuthError):
    """The provider user id could not be determined from the token."""

    message = "identity_unavailable"


class RegistrationFailed(AuthError):
    """A local user could not be created for a new external identity."""

    message = "registration_failed"


class StorageUnavailable(AuthError):
    """User storage failed while resolving the local user."""

    status_code = 500
    message = "internal_error"


class SessionDestroyFailed(AuthError):
    """The session store could not delete the session on logout."""

    status_code = 500
    message = "internal_error"
