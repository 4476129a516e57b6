"""Random tokens for sessions and OAuth state."""

from __future__ import annotations

import secrets

# Sizes in bytes of entropy
SESSION_TOKEN_SIZE = 32
OAUTH_STATE_SIZE = 16


def generate_random_string(size: int) -> str:
    """Return `size` random bytes as URL-safe base64 without padding."""
    return secrets.token_urlsafe(size)
