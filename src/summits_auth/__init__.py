"""Summits: OAuth2 sign-in and server-side sessions for the climbing log."""

__version__ = "0.1.0"
