import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator

from grantkeeper.errors import ProviderNotFoundError, ValidationError
from grantkeeper.providers.aws_sso import AWSSSOProvider
from grantkeeper.providers.base import ArgOptioner, Provider
from grantkeeper.providers.ecs_shell_sso import ECSShellSSOProvider
from grantkeeper.providers.testvault import TestVaultProvider

logger = logging.getLogger(__name__)

# provider type -> class. Every class exposes from_config(cfg).
PROVIDER_TYPES = {
    "aws-ecs-shell-sso": ECSShellSSOProvider,
    "aws-sso": AWSSSOProvider,
    "testvault": TestVaultProvider,
}


@dataclass(frozen=True)
class RegisteredProvider:
    id: str
    type: str
    provider: Provider

    @property
    def supports_options(self) -> bool:
        return isinstance(self.provider, ArgOptioner)


class ProviderRegistry:
    """
    Immutable map of configured provider ID -> provider instance.
    Built once at startup and shared read-only afterwards.
    """
    def __init__(self, providers: Dict[str, RegisteredProvider]):
        self._providers = dict(providers)

    def __repr__(self):
        return f"ProviderRegistry({sorted(self._providers)})"

    def __iter__(self) -> Iterator[RegisteredProvider]:
        return iter(self._providers.values())

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def lookup(self, provider_id: str) -> RegisteredProvider:
        try:
            return self._providers[provider_id]
        except KeyError:
            raise ProviderNotFoundError(provider_id)

    def get(self, provider_id: str) -> Provider:
        return self.lookup(provider_id).provider

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ProviderRegistry":
        """
        Builds providers from the `providers` section of the config file:

            providers:
              ecs-shell:
                uses: aws-ecs-shell-sso
                with:
                  instanceArn: ...
        """
        providers = {}
        for provider_id, entry in (config.get("providers") or {}).items():
            provider_type = (entry or {}).get("uses")
            if provider_type not in PROVIDER_TYPES:
                raise ValidationError(f"provider {provider_id} uses unknown type: {provider_type}")
            instance = PROVIDER_TYPES[provider_type].from_config(entry.get("with") or {})
            providers[provider_id] = RegisteredProvider(id=provider_id, type=provider_type, provider=instance)
            logger.info(f"Registered provider {provider_id} ({provider_type})")
        return cls(providers)
