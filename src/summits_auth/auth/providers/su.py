"""SU identity provider (OpenID Connect style).

## OAuth Endpoints

- Authorization: https://www.southural.ru/oauth2/authorize
- Token: https://www.southural.ru/oauth2/token
- User Info: https://www.southural.ru/oauth2/UserInfo

## Scopes Used

- openid: Required for the `sub` claim
- profile: Display name and picture

The user id is the `sub` claim of the UserInfo response. Both identity
resolution and registration read UserInfo.
"""

from __future__ import annotations

from typing import Any

from authlib.oauth2.rfc6749 import OAuth2Token

from summits_auth.auth.errors import IdentityResolutionFailed
from summits_auth.auth.providers.base import (
    PROVIDER_CALL_ERRORS,
    OAuthProvider,
    ProviderError,
    ProviderProfile,
)
from summits_auth.database.models import IMAGE_MEDIUM

SU_API_BASE_URL = "https://www.southural.ru/oauth2/"

AUTH_SRC_SU = 2


class SUProvider(OAuthProvider):
    """SU sign-in through the standard UserInfo endpoint."""

    name = "su"
    source_id = AUTH_SRC_SU
    authorize_url = SU_API_BASE_URL + "authorize"
    token_url = SU_API_BASE_URL + "token"
    userinfo_url = SU_API_BASE_URL + "UserInfo"
    scopes = ("openid", "profile")

    async def _fetch_user_info(self, token: OAuth2Token) -> dict[str, Any]:
        data = await self._get_json(token, self.userinfo_url)

        if not isinstance(data, dict):
            raise ProviderError("Unexpected user info response", provider=self.name)
        if "error" in data:
            raise ProviderError(
                f"Error in user info: {data['error']}", provider=self.name
            )

        sub = data.get("sub")
        if not isinstance(sub, str) or not sub:
            raise ProviderError("Missing 'sub' in user info", provider=self.name)

        return data

    async def resolve_external_user_id(self, token: OAuth2Token) -> str:
        try:
            data = await self._fetch_user_info(token)
        except PROVIDER_CALL_ERRORS as e:
            raise IdentityResolutionFailed(self.name, str(e)) from e
        return data["sub"]

    async def fetch_profile(self, token: OAuth2Token) -> ProviderProfile:
        data = await self._fetch_user_info(token)

        name = data.get("name")
        picture = data.get("picture")

        return ProviderProfile(
            oauth_id=data["sub"],
            name=name if isinstance(name, str) else "",
            avatars=[(picture, IMAGE_MEDIUM)] if isinstance(picture, str) and picture else [],
        )
