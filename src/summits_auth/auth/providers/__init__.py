"""OAuth2 identity providers."""

from summits_auth.auth.providers.base import OAuthProvider, ProviderError, ProviderProfile
from summits_auth.auth.providers.registry import ProviderRegistry, build_providers
from summits_auth.auth.providers.su import SUProvider
from summits_auth.auth.providers.vk import VKProvider

__all__ = [
    "OAuthProvider",
    "ProviderError",
    "ProviderProfile",
    "ProviderRegistry",
    "build_providers",
    "SUProvider",
    "VKProvider",
]
