from __future__ import annotations

import logging

from railfleet.core.config import Settings, get_settings
from railfleet.providers.completion.azure_openai import AzureOpenAIProvider
from railfleet.providers.completion.base import CompletionProvider
from railfleet.providers.completion.fake import FakeCompletionProvider


logger = logging.getLogger(__name__)


def get_completion_provider(settings: Settings | None = None) -> CompletionProvider | None:
    # None means chat replies with a labeled placeholder instead of a model answer.
    settings = settings or get_settings()
    provider = (settings.completion_provider or "none").lower()

    if provider == "none":
        return None
    if provider == "fake":
        return FakeCompletionProvider()
    if provider == "azure":
        if not settings.completion_configured:
            logger.warning("completion_not_configured provider=azure")
            return None
        return AzureOpenAIProvider(settings=settings)

    logger.warning("completion_provider_unsupported provider=%s", provider)
    return None
