from __future__ import annotations

import time

import httpx

from railfleet.core.config import Settings, get_settings
from railfleet.core.errors import SearchError
from railfleet.providers.search.base import SearchHit
from railfleet.services.resilience import default_retry_policy, default_retryable, retry_async


class AzureSearchProvider:
    """Full-text document search against an Azure AI Search index (REST API)."""

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
        endpoint = (self._settings.azure_search_endpoint or "").rstrip("/")
        return f"{endpoint}/indexes/{self._settings.azure_search_index}/docs/search"

    async def search(self, query: str, top: int) -> list[SearchHit]:
        if not self._settings.search_configured:
            raise SearchError("AZURE_SEARCH_ENDPOINT and AZURE_SEARCH_KEY are required for search")

        payload = {
            "search": query,
            "top": top,
            "select": "content,metadata_storage_name",
            "searchMode": "all",
            "queryType": "simple",
        }
        headers = {"api-key": self._settings.azure_search_key or ""}
        params = {"api-version": self._settings.azure_search_api_version}
        client = self._get_client()

        async def _call() -> httpx.Response:
            response = await client.post(self._url(), json=payload, headers=headers, params=params)
            if response.status_code >= 500 or response.status_code == 429:
                # Raise inside the attempt so the retry helper sees the status.
                response.raise_for_status()
            return response

        start = time.monotonic()
        try:
            response = await retry_async(
                _call,
                policy=default_retry_policy(self._settings),
                retryable=default_retryable,
                operation="search",
            )
        except (httpx.HTTPError, TimeoutError) as exc:
            raise SearchError(
                "Document search request failed",
                details={"latency_ms": round((time.monotonic() - start) * 1000.0, 1)},
            ) from exc

        if response.status_code >= 400:
            raise SearchError(
                f"Document search error: {response.status_code}",
                details={"status_code": response.status_code},
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise SearchError("Document search returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise SearchError("Document search returned an unexpected payload")
        documents = body.get("value") or []
        if not isinstance(documents, list) or not all(isinstance(item, dict) for item in documents):
            raise SearchError("Document search returned an unexpected payload")

        hits: list[SearchHit] = []
        for document in documents:
            hits.append(
                SearchHit(
                    content=document.get("content") or "",
                    source=document.get("metadata_storage_name") or "Unknown",
                    score=float(document.get("@search.score") or 0.0),
                )
            )
        return hits
