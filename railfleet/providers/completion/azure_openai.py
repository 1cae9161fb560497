from __future__ import annotations

import time

import httpx

from railfleet.core.config import Settings, get_settings
from railfleet.core.errors import CompletionError
from railfleet.services.resilience import default_retry_policy, default_retryable, retry_async


NO_RESPONSE_TEXT = "No response generated"


class AzureOpenAIProvider:
    def __init__(self, client: httpx.AsyncClient | None = None, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per provider for connection pooling.
        timeout_s = self._settings.ext_call_timeout_ms / 1000.0
        self._client = httpx.AsyncClient(timeout=timeout_s)
        return self._client

    def _url(self) -> str:
        endpoint = (self._settings.azure_openai_endpoint or "").rstrip("/")
        return f"{endpoint}/openai/deployments/{self._settings.azure_openai_deployment}/chat/completions"

    async def complete(self, messages: list[dict[str, str]]) -> str:
        if not self._settings.completion_configured:
            raise CompletionError("AZURE_OPENAI_ENDPOINT and AZURE_OPENAI_KEY are required for chat")

        payload = {
            "messages": messages,
            "temperature": self._settings.chat_temperature,
            "max_tokens": self._settings.chat_max_tokens,
            "top_p": self._settings.chat_top_p,
        }
        headers = {"api-key": self._settings.azure_openai_key or ""}
        params = {"api-version": self._settings.azure_openai_api_version}
        client = self._get_client()

        async def _call() -> httpx.Response:
            response = await client.post(self._url(), json=payload, headers=headers, params=params)
            if response.status_code >= 500 or response.status_code == 429:
                response.raise_for_status()
            return response

        start = time.monotonic()
        try:
            response = await retry_async(
                _call,
                policy=default_retry_policy(self._settings),
                retryable=default_retryable,
                operation="completion",
            )
        except (httpx.HTTPError, TimeoutError) as exc:
            raise CompletionError(
                "Chat completion request failed",
                details={"latency_ms": round((time.monotonic() - start) * 1000.0, 1)},
            ) from exc

        if response.status_code in {401, 403}:
            raise CompletionError("Chat completion auth error: check AZURE_OPENAI_KEY")
        if response.status_code >= 400:
            raise CompletionError(
                f"Chat completion error: {response.status_code}",
                details={"status_code": response.status_code},
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise CompletionError("Chat completion returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise CompletionError("Chat completion returned an unexpected payload")
        choices = body.get("choices") or []
        if not choices:
            return NO_RESPONSE_TEXT
        first = choices[0] if isinstance(choices, list) else None
        message = (first.get("message") or {}) if isinstance(first, dict) else None
        if not isinstance(message, dict):
            raise CompletionError("Chat completion returned an unexpected payload")
        content = message.get("content")
        return content or NO_RESPONSE_TEXT
