from __future__ import annotations

from railfleet.providers.search.base import SearchHit


class FakeSearchProvider:
    def __init__(self, hits: list[SearchHit] | None = None) -> None:
        # Deterministic hits keep chat tests stable without external calls.
        self._hits = list(hits) if hits is not None else [
            SearchHit(content="Reset the HVAC controller after replacing the filter.", source="hvac-manual.pdf"),
        ]
        self.queries: list[str] = []

    async def search(self, query: str, top: int) -> list[SearchHit]:
        self.queries.append(query)
        return self._hits[:top]
