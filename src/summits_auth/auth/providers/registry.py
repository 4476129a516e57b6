"""Provider registry.

Built once at startup from settings and treated as read-only afterwards.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from types import MappingProxyType

from summits_auth.auth.errors import UnknownProvider
from summits_auth.auth.providers.base import OAuthProvider
from summits_auth.auth.providers.su import SUProvider
from summits_auth.auth.providers.vk import VKProvider
from summits_auth.config import Settings
from summits_auth.images import ImageManager

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Immutable mapping of provider name to provider."""

    def __init__(self, providers: Mapping[str, OAuthProvider]):
        self._providers = MappingProxyType(dict(providers))

    def get(self, name: str) -> OAuthProvider:
        """Look up a provider by name.

        Raises:
            UnknownProvider: If no provider is registered under `name`
        """
        provider = self._providers.get(name)
        if provider is None:
            raise UnknownProvider(name, f"Unknown provider: {name}")
        return provider

    @property
    def names(self) -> list[str]:
        return list(self._providers)

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __iter__(self) -> Iterator[OAuthProvider]:
        return iter(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)


def build_providers(
    settings: Settings,
    image_manager: ImageManager | None = None,
) -> ProviderRegistry:
    """Create the providers whose credentials are configured."""
    providers: dict[str, OAuthProvider] = {}

    for provider_class, client_id, client_secret in (
        (VKProvider, settings.vk_client_id, settings.vk_client_secret),
        (SUProvider, settings.su_client_id, settings.su_client_secret),
    ):
        name = provider_class.name
        if not client_id or not client_secret:
            logger.warning(
                f"{name} OAuth not configured. Set {name.upper()}_CLIENT_ID and "
                f"{name.upper()}_CLIENT_SECRET environment variables."
            )
            continue

        providers[name] = provider_class(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=settings.redirect_uri(name),
            image_manager=image_manager,
            timeout=settings.provider_timeout_seconds,
        )

    logger.info(f"OAuth providers enabled: {', '.join(providers) or 'none'}")
    return ProviderRegistry(providers)
