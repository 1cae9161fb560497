from __future__ import annotations


class FakeCompletionProvider:
    def __init__(self, response: str = "This is a fake response.") -> None:
        self._response = response
        self.calls: list[list[dict[str, str]]] = []

    async def complete(self, messages: list[dict[str, str]]) -> str:
        # Record prompts so tests can assert on composition.
        self.calls.append(messages)
        return self._response
