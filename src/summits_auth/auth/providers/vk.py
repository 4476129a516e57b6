"""VK identity provider.

## OAuth Endpoints

- Authorization: https://oauth.vk.com/authorize
- Token: https://oauth.vk.com/access_token
- Profile: https://api.vk.com/method/users.get

## Identity

VK returns the user id next to the access token:

```json
{"access_token": "...", "expires_in": 0, "user_id": 1234567}
```

`expires_in` is 0 for offline tokens, which never expire.

## Profile

`users.get` answers with either a `response` list or an `error` object:

```json
{"response": [{"id": 1234567, "first_name": "Ivan", "last_name": "Petrov",
               "has_photo": 1, "photo_50": "https://...", "photo_200_orig": "https://..."}]}
{"error": {"error_code": 5, "error_msg": "User authorization failed"}}
```
"""

from __future__ import annotations

from typing import Any

from authlib.oauth2.rfc6749 import OAuth2Token

from summits_auth.auth.errors import IdentityResolutionFailed
from summits_auth.auth.providers.base import OAuthProvider, ProviderError, ProviderProfile
from summits_auth.database.models import IMAGE_MEDIUM, IMAGE_SMALL

VK_AUTHORIZE_URL = "https://oauth.vk.com/authorize"
VK_TOKEN_URL = "https://oauth.vk.com/access_token"
VK_API_BASE_URL = "https://api.vk.com"
VK_API_VERSION = "5.131"

AUTH_SRC_VK = 1


def _format_user_id(value: Any) -> str:
    """Normalize a VK user id (JSON number or numeric string)."""
    if isinstance(value, bool):
        raise ValueError("user_id must be a number")
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, str) and value.isdigit():
        return value
    raise ValueError(f"Unexpected user_id type: {type(value).__name__}")


class VKProvider(OAuthProvider):
    """VK sign-in.

    The user id comes with the token. Registration makes one authenticated
    `users.get` call for the name and avatar URLs.
    """

    name = "vk"
    source_id = AUTH_SRC_VK
    authorize_url = VK_AUTHORIZE_URL
    token_url = VK_TOKEN_URL

    def __init__(self, *args: Any, api_base_url: str = VK_API_BASE_URL, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.api_base_url = api_base_url.rstrip("/")

    def _normalize_token(self, token: OAuth2Token) -> OAuth2Token:
        # Offline tokens report expires_in=0; they must not be treated as expired
        if "expires_in" in token and not token["expires_in"]:
            token.pop("expires_in", None)
            token.pop("expires_at", None)
        return token

    async def resolve_external_user_id(self, token: OAuth2Token) -> str:
        try:
            return _format_user_id(token.get("user_id"))
        except ValueError as e:
            raise IdentityResolutionFailed(
                self.name, f"Failed to get VK user id: {e}"
            ) from e

    async def fetch_profile(self, token: OAuth2Token) -> ProviderProfile:
        data = await self._get_json(
            token,
            f"{self.api_base_url}/method/users.get",
            params={
                "v": VK_API_VERSION,
                "lang": "ru",
                "fields": "photo_50,photo_200_orig,has_photo",
            },
        )
        if not isinstance(data, dict):
            raise ProviderError("Unexpected users.get response", provider=self.name)

        error = data.get("error")
        if error:
            code = error.get("error_code") if isinstance(error, dict) else None
            message = error.get("error_msg") if isinstance(error, dict) else error
            raise ProviderError(f"VK API error {code}: {message}", provider=self.name)

        users = data.get("response")
        if not isinstance(users, list) or not users or not isinstance(users[0], dict):
            raise ProviderError("VK API returned no user data", provider=self.name)

        user = users[0]
        try:
            oauth_id = _format_user_id(user.get("id"))
        except ValueError as e:
            raise ProviderError(f"Invalid VK user id: {e}", provider=self.name) from e

        name = f"{user.get('first_name', '')} {user.get('last_name', '')}".strip()

        avatars = []
        if user.get("has_photo"):
            for key, size in (("photo_50", IMAGE_SMALL), ("photo_200_orig", IMAGE_MEDIUM)):
                if user.get(key):
                    avatars.append((user[key], size))

        return ProviderProfile(oauth_id=oauth_id, name=name, avatars=avatars)
