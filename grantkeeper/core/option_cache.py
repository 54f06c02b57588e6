import logging
from typing import List

from grantkeeper.core.context import Context
from grantkeeper.errors import ValidationError
from grantkeeper.providers.base import Option
from grantkeeper.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


class ProviderOptionCache:
    """
    Read-through cache of provider argument options, persisted in the state table
    so the request form does not hit AWS on every page load.
    """
    def __init__(self, registry: ProviderRegistry, store):
        self.registry = registry
        self.store = store

    def load(self, ctx: Context, provider_id: str, arg_id: str) -> List[Option]:
        cached = self.store.get_provider_options(provider_id, arg_id)
        if cached is not None:
            logger.debug(f"Option cache hit for {provider_id}/{arg_id}")
            return cached
        return self.refresh(ctx, provider_id, arg_id)

    def refresh(self, ctx: Context, provider_id: str, arg_id: str) -> List[Option]:
        """Queries the provider again and overwrites the cached options."""
        registered = self.registry.lookup(provider_id)
        if not registered.supports_options:
            raise ValidationError(f"provider {provider_id} does not list options for its arguments")

        options = registered.provider.options(ctx, arg_id)
        self.store.save_provider_options(provider_id, arg_id, options)
        logger.info(f"Refreshed {len(options)} options for {provider_id}/{arg_id}")
        return options
