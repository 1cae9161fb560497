from __future__ import annotations

import logging

from railfleet.core.config import Settings, get_settings
from railfleet.providers.search.azure_search import AzureSearchProvider
from railfleet.providers.search.base import SearchProvider
from railfleet.providers.search.fake import FakeSearchProvider


logger = logging.getLogger(__name__)


def get_search_provider(settings: Settings | None = None) -> SearchProvider | None:
    # None means retrieval is disabled and chat answers without context.
    settings = settings or get_settings()
    provider = (settings.search_provider or "none").lower()

    if provider == "none":
        return None
    if provider == "fake":
        return FakeSearchProvider()
    if provider == "azure":
        if not settings.search_configured:
            logger.warning("search_not_configured provider=azure")
            return None
        return AzureSearchProvider(settings=settings)

    logger.warning("search_provider_unsupported provider=%s", provider)
    return None
