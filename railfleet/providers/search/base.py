from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class SearchHit:
    content: str
    source: str
    score: float = 0.0


class SearchProvider(Protocol):
    async def search(self, query: str, top: int) -> list[SearchHit]:
        ...
